"""Domain objects: blobs, media with metadata, users, and domain errors."""

from __future__ import annotations

import hashlib
import io
import json
from dataclasses import dataclass, field, replace
from typing import Any, BinaryIO

from homecase.crockford import encode_crockford_b32lc

BlobID = str
"""Identifier of a blob, usually a Crockford Base32 hash of its content."""

MediaID = BlobID
"""Identifier of a media object."""


class DomainError(Exception):
    """Base class of domain errors."""

    default_message = "domain error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class ImageTypeNotSupportedError(DomainError):
    default_message = "image type not supported"


class ImageTypeMismatchError(DomainError):
    default_message = "image ext does not match content type"


class ImageTooLargeError(DomainError):
    default_message = "image too large"


class MediaTooLargeError(DomainError):
    default_message = "media too large"


class NoMediaIDError(DomainError):
    default_message = "no media ID"


class UnauthorizedError(DomainError):
    default_message = "unauthorized"


class UserAlreadyExistsError(DomainError):
    default_message = "user already exists"


class UserNotFoundError(DomainError):
    default_message = "user not found"


class InvalidCredentialsError(DomainError):
    default_message = "invalid credentials"


@dataclass
class Blob:
    """A binary object with an identifier."""

    id: BlobID
    body: bytes = b""

    @property
    def size(self) -> int:
        return len(self.body)

    def read(self) -> BinaryIO:
        """Return a fresh reader over the content."""
        return io.BytesIO(self.body)

    def write_to(self, writer: BinaryIO) -> int:
        """Write the content to ``writer`` and return the number of bytes written."""
        written = writer.write(self.body)
        return len(self.body) if written is None else written

    def read_from(self, reader: BinaryIO) -> int:
        """Replace the content with everything ``reader`` yields; return its length."""
        self.body = bytes(reader.read())
        return len(self.body)


# (JSON key, attribute, type)
_META_FIELDS = (
    ("filename", "filename", str),
    ("id", "id", str),
    ("hash", "hash", str),
    ("size", "size", int),
    ("owner", "owner", str),
    ("mimeType", "mime_type", str),
)

_MISSING = object()

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _lookup(document: dict[str, Any], lowered: dict[str, Any], key: str) -> Any:
    if key in document:
        return document[key]
    return lowered.get(key.lower(), _MISSING)


@dataclass(frozen=True)
class MediaMeta:
    """Metadata of a media file."""

    filename: str = ""
    id: MediaID = ""
    hash: str = ""
    size: int = 0
    owner: str = ""
    mime_type: str = ""

    @classmethod
    def from_blob(cls, blob: Blob) -> MediaMeta:
        """Decode metadata from a JSON blob; raise ValueError on invalid content."""
        try:
            document = json.loads(blob.body)
        except ValueError as exc:
            raise ValueError(f"unmarshal metadata: {exc}") from exc

        if document is None:
            return cls()
        if not isinstance(document, dict):
            raise ValueError("unmarshal metadata: expected a JSON object")

        lowered = {key.lower(): value for key, value in document.items()}
        values: dict[str, Any] = {}
        for key, attr, kind in _META_FIELDS:
            value = _lookup(document, lowered, key)
            if value is _MISSING or value is None:
                continue
            if kind is int:
                valid = isinstance(value, int) and not isinstance(value, bool)
            else:
                valid = isinstance(value, str)
            if not valid:
                raise ValueError(f"unmarshal metadata: field {key!r} must be {kind.__name__}")
            values[attr] = value
        return cls(**values)

    def as_blob(self) -> Blob:
        """Encode the metadata as a compact JSON blob identified by the media ID."""
        document = {key: getattr(self, attr) for key, attr, _ in _META_FIELDS}
        text = json.dumps(document, ensure_ascii=False, separators=(",", ":"))
        for char, escape in _JSON_ESCAPES.items():
            text = text.replace(char, escape)
        return Blob(self.id, text.encode("utf-8"))


def _refreshed(meta: MediaMeta, data: bytes) -> MediaMeta:
    content_hash = encode_crockford_b32lc(hashlib.sha256(data).digest())
    hasher = hashlib.sha256()
    for part in (content_hash, meta.filename, meta.mime_type, meta.owner):
        hasher.update(part.encode("utf-8"))
    return replace(
        meta,
        hash=content_hash,
        size=len(data),
        id=encode_crockford_b32lc(hasher.digest()),
    )


class Media:
    """Media content together with metadata derived from it."""

    __slots__ = ("_data", "_meta")

    def __init__(self, data: bytes | None, meta: MediaMeta) -> None:
        self._data = bytes(data) if data else b""
        self._meta = _refreshed(meta, self._data)

    def __repr__(self) -> str:
        return f"Media(id={self.id!r}, size={self.size}, mime_type={self.mime_type!r})"

    @property
    def id(self) -> MediaID:
        return self._meta.id

    @property
    def hash(self) -> str:
        return self._meta.hash

    @property
    def meta(self) -> MediaMeta:
        return self._meta

    @property
    def mime_type(self) -> str:
        return self._meta.mime_type

    @property
    def owner(self) -> str:
        return self._meta.owner

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def size(self) -> int:
        return len(self._data)

    def read(self) -> BinaryIO:
        """Return a fresh reader over the content."""
        return io.BytesIO(self._data)

    def write_to(self, writer: BinaryIO) -> int:
        """Write the content to ``writer`` and return the number of bytes written."""
        written = writer.write(self._data)
        return len(self._data) if written is None else written

    def as_blob(self) -> Blob:
        """Return the content as a blob identified by its content hash."""
        return Blob(self._meta.hash, self._data)


@dataclass(frozen=True)
class MediaIDResponse:
    """A media file's identifier and name as returned to clients."""

    id: str
    filename: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "filename": self.filename}


@dataclass
class User:
    """An account that can authenticate."""

    id: int
    username: str
    password_hash: bytes = field(repr=False)
    created_at: int