"""Configuration loaded from environment variables into dataclasses."""

from __future__ import annotations

import dataclasses
import os
import re
from collections.abc import Mapping
from typing import Any, TypeVar

_ENV_KEY = "env"
_DEFAULT_KEY = "env_default"
_PREFIX_KEY = "env_prefix"
_NESTED_KEY = "env_nested"

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1

_BOOL_VALUES = {
    "1": True,
    "t": True,
    "T": True,
    "TRUE": True,
    "true": True,
    "True": True,
    "0": False,
    "f": False,
    "F": False,
    "FALSE": False,
    "false": False,
    "False": False,
}

_KINDS = {str: str, int: int, bool: bool, "str": str, "int": int, "bool": bool}

T = TypeVar("T", bound="EnvConfig")


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


_NO_DEFAULT: Any = _NoDefault()
_MISSING: Any = object()


class ConfigError(Exception):
    """Base class of configuration errors."""


class InvalidConfigError(ConfigError, TypeError):
    """Raised when the target is not a dataclass type derived from EnvConfig."""

    def __init__(self, message: str = "config must be a dataclass type derived from EnvConfig") -> None:
        super().__init__(message)


class VarNotSetError(ConfigError):
    """Raised when a required environment variable is unset and has no default."""


class UnsupportedVarTypeError(ConfigError):
    """Raised when a field has a type that cannot be read from the environment."""


class InvalidValueError(ConfigError, ValueError):
    """Raised when an environment value cannot be converted to the field's type."""


@dataclasses.dataclass
class EnvConfig:
    """Base of top-level configurations; records the namespace they were read with."""

    namespace: str = dataclasses.field(default="", init=False, repr=False, compare=False)


def env_field(name: str, default: Any = _NO_DEFAULT) -> Any:
    """Declare a field read from the environment variable ``name``.

    Without a default the variable is required.
    """
    metadata = {_ENV_KEY: name, _DEFAULT_KEY: default}
    if default is _NO_DEFAULT:
        return dataclasses.field(metadata=metadata)
    return dataclasses.field(default=default, metadata=metadata)


def nested_field(config_type: type, prefix: str = "") -> Any:
    """Declare a nested configuration whose variables carry ``prefix``."""
    return dataclasses.field(
        default_factory=config_type,
        metadata={_PREFIX_KEY: prefix, _NESTED_KEY: config_type},
    )


def parse(config_type: type[T], namespace: str = "", environ: Mapping[str, str] | None = None) -> T:
    """Build ``config_type`` from environment variables under ``namespace``.

    For a namespace ``A_B`` a variable ``X`` is looked up as ``A_B_X`` and then
    ``A_X``; the most specific name that is set wins.
    """
    if not (
        isinstance(config_type, type)
        and dataclasses.is_dataclass(config_type)
        and issubclass(config_type, EnvConfig)
    ):
        raise InvalidConfigError()

    env = os.environ if environ is None else environ
    config = _build(config_type, namespace, "", env)
    object.__setattr__(config, "namespace", namespace)
    return config


def _is_dataclass_type(hint: Any) -> bool:
    return isinstance(hint, type) and dataclasses.is_dataclass(hint)


def _nested_type(field: dataclasses.Field) -> type | None:
    nested = field.metadata.get(_NESTED_KEY)
    if nested is not None:
        return nested
    if _is_dataclass_type(field.type):
        return field.type
    factory = field.default_factory
    if factory is not dataclasses.MISSING and _is_dataclass_type(factory):
        return factory
    return None


def _field_kind(field: dataclasses.Field) -> type | None:
    hint = field.type
    if isinstance(hint, str):
        return _KINDS.get(hint.strip())
    if isinstance(hint, type):
        return _KINDS.get(hint)
    return None


def _build(cls: type, namespace: str, prefix: str, env: Mapping[str, str]) -> Any:
    values: dict[str, Any] = {}

    for field in dataclasses.fields(cls):
        if not field.init:
            continue

        nested_type = _nested_type(field)
        if nested_type is not None:
            nested_prefix = prefix + field.metadata.get(_PREFIX_KEY, "")
            values[field.name] = _build(nested_type, namespace, nested_prefix, env)
            continue

        tag = field.metadata.get(_ENV_KEY)
        if not tag:
            continue
        values[field.name] = _field_value(
            namespace, prefix, tag, field.metadata[_DEFAULT_KEY], field, env
        )

    try:
        return cls(**values)
    except TypeError as exc:
        raise InvalidConfigError(f"cannot build {cls.__name__}: {exc}") from exc


def _lookup(namespace: str, prefix: str, tag: str, env: Mapping[str, str]) -> Any:
    parts = namespace.split("_")
    for count in range(len(parts), 0, -1):
        head = "_".join(parts[:count])
        name = f"{head}_{prefix}{tag}" if head else f"{prefix}{tag}"
        if name in env:
            return env[name]
    return _MISSING


def _field_value(
    namespace: str,
    prefix: str,
    tag: str,
    default: Any,
    field: dataclasses.Field,
    env: Mapping[str, str],
) -> Any:
    raw = _lookup(namespace, prefix, tag, env)
    if raw is _MISSING:
        if default is _NO_DEFAULT:
            raise VarNotSetError(f"env var not set: {tag}")
        raw = default

    kind = _field_kind(field)
    if kind is None:
        raise UnsupportedVarTypeError(f"unsupported env var type: {tag} ({field.type})")

    if not isinstance(raw, str):
        return raw
    return _convert(kind, tag, raw)


def _convert(kind: type, tag: str, raw: str) -> Any:
    if kind is str:
        return raw
    if kind is int:
        if not _INT_PATTERN.fullmatch(raw):
            raise InvalidValueError(f"invalid type for {tag}: {raw!r} is not an integer")
        value = int(raw)
        if not _INT_MIN <= value <= _INT_MAX:
            raise InvalidValueError(f"invalid type for {tag}: {raw!r} is out of range")
        return value
    try:
        return _BOOL_VALUES[raw]
    except KeyError:
        raise InvalidValueError(f"invalid type for {tag}: {raw!r} is not a boolean") from None