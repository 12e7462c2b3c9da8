"""Strict configuration namespace helper for `validatekit`.

Every read marks a key as consumed; `assert_consumed()` rejects anything left over so
typos in workflow or run config files fail before a single job is scheduled.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from validatekit.errors import ConfigurationError

_MISSING = object()


def _join_path(parent: str, key: str) -> str:
    if not parent:
        return key
    return f"{parent}.{key}"


@dataclass
class ConfigNamespace:
    """Small helper for config parsing with consumed-keys enforcement."""

    data: Mapping[str, Any]
    path: str
    _consumed: set[str] = field(default_factory=set, init=False, repr=False)
    _children: dict[str, "ConfigNamespace"] = field(default_factory=dict, init=False, repr=False)
    _effective: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def keys(self) -> tuple[str, ...]:
        return tuple(str(k) for k in self.data.keys())

    def _consume(self, key: str) -> None:
        self._consumed.add(key)

    def consumed_keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._consumed))

    def unconsumed_keys(self) -> tuple[str, ...]:
        return tuple(sorted(str(k) for k in self.data.keys() if k not in self._consumed))

    def assert_consumed(self) -> None:
        unknown = list(self.unconsumed_keys())
        if unknown:
            path = self.path or "<root>"
            consumed = ", ".join(self.consumed_keys()) or "<none>"
            raise ConfigurationError(
                f"Unknown config keys under {path}: {', '.join(unknown)} (consumed: {consumed})"
            )
        for child in self._children.values():
            child.assert_consumed()

    def effective_values(self) -> dict[str, Any]:
        out = dict(self._effective)
        for key, child in self._children.items():
            child_effective = child.effective_values()
            if child_effective:
                out[key] = child_effective
        return out

    def _record_effective(self, key: str, value: Any) -> None:
        self._effective[key.strip()] = value

    def _get_raw(self, key: str, *, default: Any) -> Any:
        if not isinstance(key, str) or not key.strip():
            raise TypeError("ConfigNamespace key must be a non-empty string")
        normalized = key.strip()
        if normalized in self._children:
            raise ConfigurationError(
                f"{_join_path(self.path, normalized)} already accessed as a nested namespace"
            )

        if normalized not in self.data:
            if default is _MISSING:
                raise ConfigurationError(
                    f"Missing required config key: {_join_path(self.path, normalized)}"
                )
            self._consume(normalized)
            return default

        self._consume(normalized)
        return self.data.get(normalized)

    def namespace(
        self,
        key: str,
        *,
        default: Mapping[str, Any] | None | object = _MISSING,
    ) -> "ConfigNamespace":
        normalized = (key or "").strip()
        if not normalized:
            raise TypeError("ConfigNamespace key must be a non-empty string")
        if normalized in self._children:
            return self._children[normalized]

        raw = self.data.get(normalized) if normalized in self.data else None
        self._consume(normalized)
        child_path = _join_path(self.path, normalized)

        if raw is None:
            if default is _MISSING:
                raise ConfigurationError(f"Missing required config namespace: {child_path}")
            if default is not None and not isinstance(default, Mapping):
                raise TypeError(f"default for {child_path} must be a mapping or None")
            child = ConfigNamespace(dict(default or {}), path=child_path)
        elif not isinstance(raw, Mapping):
            raise ConfigurationError(
                f"{child_path} must be a mapping (type={type(raw).__name__})"
            )
        else:
            child = ConfigNamespace(dict(raw), path=child_path)

        self._children[normalized] = child
        return child

    def get_bool(self, key: str, *, default: bool | object = _MISSING) -> bool:
        if default is not _MISSING and not isinstance(default, bool):
            raise TypeError(f"{_join_path(self.path, key.strip())} default must be a boolean")

        value = self._get_raw(key, default=default)
        if not isinstance(value, bool):
            raise ConfigurationError(
                f"{_join_path(self.path, key.strip())} must be a boolean (type={type(value).__name__})"
            )
        self._record_effective(key, value)
        return value

    def get_optional_int(
        self,
        key: str,
        *,
        default: int | None | object = _MISSING,
        min_value: int | None = None,
    ) -> int | None:
        raw = self._get_raw(key, default=default)
        if raw is None:
            self._record_effective(key, None)
            return None
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ConfigurationError(
                f"{_join_path(self.path, key.strip())} must be an int or null (type={type(raw).__name__})"
            )
        if min_value is not None and raw < min_value:
            raise ConfigurationError(
                f"{_join_path(self.path, key.strip())} must be >= {min_value} (got {raw})"
            )
        self._record_effective(key, raw)
        return raw

    def get_optional_float(
        self,
        key: str,
        *,
        default: float | None | object = _MISSING,
        min_value: float | None = None,
    ) -> float | None:
        """Parse an optional number (int or float accepted, bools rejected)."""

        raw = self._get_raw(key, default=default)
        if raw is None:
            self._record_effective(key, None)
            return None
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise ConfigurationError(
                f"{_join_path(self.path, key.strip())} must be a number or null (type={type(raw).__name__})"
            )
        value = float(raw)
        if min_value is not None and value < float(min_value):
            raise ConfigurationError(
                f"{_join_path(self.path, key.strip())} must be >= {float(min_value)} (got {value})"
            )
        self._record_effective(key, value)
        return value

    def get_str(
        self,
        key: str,
        *,
        default: str | None | object = _MISSING,
        allow_empty: bool = False,
        choices: tuple[str, ...] | None = None,
    ) -> str | None:
        if default is not _MISSING and default is not None and not isinstance(default, str):
            raise TypeError(f"{_join_path(self.path, key.strip())} default must be a string or None")

        raw = self._get_raw(key, default=default)
        if raw is None:
            self._record_effective(key, None)
            return None
        if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
            raise ConfigurationError(
                f"{_join_path(self.path, key.strip())} must be a string (type={type(raw).__name__})"
            )
        value = str(raw).strip()
        if not value and not allow_empty:
            raise ConfigurationError(f"{_join_path(self.path, key.strip())} cannot be empty")
        if choices is not None and value not in choices:
            allowed = ", ".join(choices) or "<none>"
            raise ConfigurationError(
                f"{_join_path(self.path, key.strip())} must be one of: {allowed} (got {value!r})"
            )
        self._record_effective(key, value)
        return value

    def get_list_str(
        self,
        key: str,
        *,
        default: list[str] | tuple[str, ...] | object = _MISSING,
        allow_empty: bool = False,
        allow_scalar: bool = False,
    ) -> list[str]:
        """Parse a list of strings; `allow_scalar` also accepts a single string (`needs: check`)."""

        raw = self._get_raw(key, default=default)
        label = _join_path(self.path, key.strip())
        if raw is None:
            raw = []
        if allow_scalar and isinstance(raw, str):
            raw = [raw]
        if not isinstance(raw, (list, tuple)):
            raise ConfigurationError(f"{label} must be a list[str] (type={type(raw).__name__})")

        items: list[str] = []
        for idx, item in enumerate(raw):
            if isinstance(item, bool) or not isinstance(item, (str, int, float)):
                raise ConfigurationError(
                    f"{label}[{idx}] must be a string (type={type(item).__name__})"
                )
            trimmed = str(item).strip()
            if not trimmed:
                raise ConfigurationError(f"{label}[{idx}] cannot be empty")
            items.append(trimmed)

        if not items and not allow_empty:
            raise ConfigurationError(f"{label} cannot be empty")

        self._record_effective(key, list(items))
        return items

    def get_list_mapping(
        self,
        key: str,
        *,
        default: list[Mapping[str, Any]] | tuple[Mapping[str, Any], ...] | object = _MISSING,
        allow_empty: bool = False,
    ) -> list[dict[str, Any]]:
        """Parse a list of mapping objects (converted to dicts)."""

        raw = self._get_raw(key, default=default)
        label = _join_path(self.path, key.strip())
        if raw is None:
            raw = []
        if not isinstance(raw, (list, tuple)):
            raise ConfigurationError(f"{label} must be a list of mappings (type={type(raw).__name__})")

        items: list[dict[str, Any]] = []
        for idx, item in enumerate(raw):
            if not isinstance(item, Mapping):
                raise ConfigurationError(
                    f"{label}[{idx}] must be a mapping (type={type(item).__name__})"
                )
            items.append(dict(item))

        if not items and not allow_empty:
            raise ConfigurationError(f"{label} cannot be empty")

        self._record_effective(key, list(items))
        return items

    def get_mapping(
        self,
        key: str,
        *,
        default: Mapping[str, Any] | None | object = _MISSING,
    ) -> dict[str, Any]:
        """Return a mapping verbatim (no nested key enforcement), e.g. step `with:` inputs."""

        raw = self._get_raw(key, default=default)
        label = _join_path(self.path, key.strip())
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"{label} must be a mapping (type={type(raw).__name__})")
        value = {str(k): v for k, v in raw.items()}
        self._record_effective(key, dict(value))
        return value
