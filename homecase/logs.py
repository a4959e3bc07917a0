"""Logging setup: coloured console or JSON output, per-package levels and trace IDs."""

from __future__ import annotations

import datetime as _dt
import json as _json
import logging
import sys
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, TextIO

from homecase.config import env_field
from homecase.context import current_trace_id

ANSI_RESET = "\033[0m"
ANSI_RED = "\033[31m"
ANSI_GREEN = "\033[32m"
ANSI_YELLOW = "\033[33m"
ANSI_CYAN = "\033[36m"
ANSI_GRAY = "\033[90m"
ANSI_UNDERLINE = "\033[4m"

_LEVELS_BY_NAME = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_LEVEL_LABELS = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}

_LEVEL_COLORS = {
    logging.DEBUG: ANSI_CYAN,
    logging.INFO: ANSI_GREEN,
    logging.WARNING: ANSI_YELLOW,
    logging.ERROR: ANSI_RED,
}

_RESERVED = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

_EXCEPTION_FORMATTER = logging.Formatter()


@dataclass
class LoggerConfig:
    """Logging settings; ``output`` is stdout, stderr, discard or a file path."""

    app_name: str = ""
    output: str = env_field("OUTPUT", "stderr")
    level: str = env_field("LEVEL", "info")
    filter: str = env_field("FILTER", "")
    json: bool = env_field("JSON", False)
    output_handle: TextIO | None = field(default=None, repr=False, compare=False)


def parse_log_level(text: str, fallback: int = logging.INFO) -> int:
    """Map debug/info/warn/error (any case, surrounding space ignored) to a level."""
    return _LEVELS_BY_NAME.get(text.strip().lower(), fallback)


def parse_pkg_levels(filter_spec: str) -> dict[str, int]:
    """Parse ``pkg:level,pkg:level``; malformed entries are skipped."""
    levels: dict[str, int] = {}
    for entry in filter_spec.split(","):
        parts = entry.split(":")
        if len(parts) != 2:
            continue
        levels[parts[0]] = parse_log_level(parts[1], logging.DEBUG)
    return levels


class TracingFilter(logging.Filter):
    """Attach the current trace ID to records as a ``trace`` group."""

    def filter(self, record: logging.LogRecord) -> bool:
        trace_id = current_trace_id()
        if trace_id is not None:
            record.trace = {"id": trace_id}
        return True


class _AppFilter(logging.Filter):
    def __init__(self, app_name: str) -> None:
        super().__init__()
        self.app_name = app_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.app = self.app_name
        return True


def _attributes(record: logging.LogRecord) -> list[tuple[str, Any]]:
    attrs = [(key, value) for key, value in vars(record).items() if key not in _RESERVED]
    attrs.append(("logger", record.name))
    return attrs


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "<nil>"
    return str(value)


def _render_attrs(prefix: str, attrs: Iterable[tuple[str, Any]]) -> str:
    parts = []
    for key, value in attrs:
        if isinstance(value, Mapping):
            parts.append(_render_attrs(f"{prefix}{key}.", value.items()))
        else:
            parts.append(f" {prefix}{key}={ANSI_GRAY}{_render_value(value)}{ANSI_RESET}")
    return "".join(parts)


class ConsoleHandler(logging.Handler):
    """Human-readable, coloured output with per-package minimum levels."""

    def __init__(
        self,
        stream: TextIO | None = None,
        level: int = logging.INFO,
        pkg_levels: Mapping[str, int] | None = None,
    ) -> None:
        super().__init__(level)
        self.stream = sys.stderr if stream is None else stream
        self.pkg_levels = dict(pkg_levels or {})

    def _suppressed(self, record: logging.LogRecord) -> bool:
        parts = record.name.split(".")
        for dropped in range(len(parts) + 1):
            key = ".".join(parts[: len(parts) - dropped]) if dropped < len(parts) else ""
            threshold = self.pkg_levels.get(key)
            if threshold is not None:
                return record.levelno < threshold
        return False

    def _render(self, record: logging.LogRecord) -> str:
        stamp = _dt.datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")
        label = _LEVEL_LABELS.get(record.levelno, record.levelname)
        color = _LEVEL_COLORS.get(record.levelno, "")

        line = f"{ANSI_GRAY}{stamp}{ANSI_RESET} {color}[{label}]{ANSI_RESET} {record.getMessage()}"
        attrs = _attributes(record)
        if attrs:
            line += f" {ANSI_GRAY}|{ANSI_RESET}" + _render_attrs("", attrs)
        line += f"\n-> {ANSI_GRAY}{record.module}.{record.funcName}()"
        line += f" in {ANSI_UNDERLINE}{record.pathname}:{record.lineno}{ANSI_RESET}"
        if record.exc_info:
            line += "\n" + _EXCEPTION_FORMATTER.formatException(record.exc_info)
        return line

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if self._suppressed(record):
                return
            self.stream.write(self._render(record) + "\n")
            flush = getattr(self.stream, "flush", None)
            if flush is not None:
                flush()
        except Exception:
            self.handleError(record)


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object with source location and attributes."""

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "time": _dt.datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": _LEVEL_LABELS.get(record.levelno, record.levelname),
            "source": {
                "function": f"{record.module}.{record.funcName}",
                "file": record.pathname,
                "line": record.lineno,
            },
            "msg": record.getMessage(),
        }
        for key, value in _attributes(record):
            document[key] = value
        if record.exc_info:
            document["exc_info"] = self.formatException(record.exc_info)
        return _json.dumps(document, default=str)


_lock = threading.Lock()
_installed: logging.Handler | None = None
_owned_stream: TextIO | None = None


def _open_output(config: LoggerConfig) -> tuple[TextIO | None, bool]:
    if config.output_handle is not None:
        return config.output_handle, False
    if config.output in ("", "discard"):
        return None, False
    if config.output == "stdout":
        return sys.stdout, False
    if config.output == "stderr":
        return sys.stderr, False
    return open(config.output, "a", encoding="utf-8"), True


def configure(config: LoggerConfig, app_name: str = "") -> logging.Handler:
    """Install the configured handler on the root logger and return it."""
    global _installed, _owned_stream

    stream, owned = _open_output(config)
    level = parse_log_level(config.level, logging.INFO)

    handler: logging.Handler
    if stream is None:
        handler = logging.NullHandler()
    elif config.json:
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter())
        handler.setLevel(level)
    else:
        handler = ConsoleHandler(stream, level, parse_pkg_levels(config.filter))

    handler.addFilter(TracingFilter())
    if app_name:
        handler.addFilter(_AppFilter(app_name))

    with _lock:
        root = logging.getLogger()
        if _installed is not None:
            root.removeHandler(_installed)
            _installed.close()
        if _owned_stream is not None:
            _owned_stream.close()
        root.addHandler(handler)
        root.setLevel(level)
        _installed = handler
        _owned_stream = stream if owned else None

    logging.getLogger(__name__).debug(
        "logging configured",
        extra={
            "config": {
                "appName": app_name,
                "output": config.output,
                "level": config.level,
                "filter": config.filter,
                "json": config.json,
            }
        },
    )
    return handler