"""Clients that validate authentication tokens against the auth service."""

from __future__ import annotations

import abc
from dataclasses import dataclass

import requests

from homecase.config import env_field
from homecase.context import current_trace_id

TRACE_ID_HEADER = "X-Request-ID"
AUTHORIZATION_HEADER = "Authorization"
DEFAULT_AUTH_URL = "http://localhost:8080/auth/validate"


class AuthClient(abc.ABC):
    """Validates authentication tokens."""

    @abc.abstractmethod
    def validate(self, token: str) -> str | None:
        """Return the username the token belongs to, or None if it is not valid.

        Raises if the validation itself cannot be carried out.
        """


@dataclass
class HTTPClientConfig:
    """Settings of the HTTP auth client."""

    auth_url: str = env_field("AUTH_URL", DEFAULT_AUTH_URL)


class HTTPAuthClient(AuthClient):
    """Validates tokens by posting them to the auth service's validation endpoint."""

    def __init__(
        self,
        config: HTTPClientConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config if config is not None else HTTPClientConfig()
        self.session = session if session is not None else requests.Session()

    def validate(self, token: str) -> str | None:
        headers = {AUTHORIZATION_HEADER: token}
        trace_id = current_trace_id()
        if trace_id is not None:
            headers[TRACE_ID_HEADER] = trace_id

        with self.session.post(self.config.auth_url, headers=headers) as response:
            if response.status_code != requests.codes.ok:
                return None
            return response.content.decode("utf-8", errors="replace")