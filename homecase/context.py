"""Request-scoped values: the trace ID and the authenticated username."""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_trace_id: ContextVar[str | None] = ContextVar("trace_id", default=None)
_username: ContextVar[str | None] = ContextVar("username", default=None)


def current_trace_id() -> str | None:
    """Return the trace ID of the current scope, or None if none is set."""
    return _trace_id.get()


@contextmanager
def trace_id_scope(trace_id: str) -> Iterator[str]:
    """Set the trace ID for the duration of the ``with`` block."""
    previous = _trace_id.set(trace_id)
    try:
        yield trace_id
    finally:
        _trace_id.reset(previous)


def current_username() -> str | None:
    """Return the authenticated username of the current scope, or None."""
    return _username.get()


@contextmanager
def username_scope(username: str) -> Iterator[str]:
    """Set the authenticated username for the duration of the ``with`` block."""
    previous = _username.set(username)
    try:
        yield username
    finally:
        _username.reset(previous)