"""Strict option blocks for task and stage builders."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable

_REQUIRED = object()


@dataclass
class ConfigNamespace:
    """Typed reads over one option block.

    Each getter records the key it read. `assert_consumed()` then fails on
    anything the builder never asked for, so a typo in an option name is an
    error instead of a silently ignored setting.
    """

    data: Mapping[str, Any]
    path: str
    _read: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def from_optional(cls, data: Any, *, path: str) -> "ConfigNamespace":
        if data is None:
            return cls({}, path=path)
        if not isinstance(data, Mapping):
            raise TypeError(f"{path} must be a mapping (type={type(data).__name__})")
        return cls(dict(data), path=path)

    def label(self, key: str) -> str:
        return f"{self.path}.{key}" if self.path else key

    def unconsumed_keys(self) -> tuple[str, ...]:
        return tuple(sorted(str(k) for k in self.data if k not in self._read))

    def assert_consumed(self) -> None:
        unknown = self.unconsumed_keys()
        if not unknown:
            return
        known = ", ".join(sorted(self._read)) or "<none>"
        raise ValueError(f"Unknown config keys under {self.path or '<root>'}: {', '.join(unknown)} (consumed: {known})")

    def effective_values(self) -> dict[str, Any]:
        return dict(self._read)

    def _raw(self, key: str, default: Any) -> Any:
        if not isinstance(key, str) or not key.strip():
            raise TypeError("ConfigNamespace key must be a non-empty string")
        if key in self.data:
            return self.data[key]
        if default is _REQUIRED:
            raise ValueError(f"Missing required config key: {self.label(key)}")
        return default

    def _typed(self, key: str, value: Any, kind: type | tuple[type, ...], noun: str) -> None:
        if isinstance(value, bool) and kind is int:
            kind = ()
        if not isinstance(value, kind):
            raise TypeError(f"{self.label(key)} must be {noun} (type={type(value).__name__})")

    def _keep(self, key: str, value: Any) -> Any:
        self._read[key] = value
        return value

    def get_bool(self, key: str, *, default: bool | object = _REQUIRED) -> bool:
        value = self._raw(key, default)
        self._typed(key, value, bool, "a boolean")
        return self._keep(key, value)

    def get_int(
        self,
        key: str,
        *,
        default: int | object = _REQUIRED,
        min_value: int | None = None,
        max_value: int | None = None,
    ) -> int:
        value = self._raw(key, default)
        self._typed(key, value, int, "an int")
        if min_value is not None and value < min_value:
            raise ValueError(f"{self.label(key)} must be >= {min_value} (got {value})")
        if max_value is not None and value > max_value:
            raise ValueError(f"{self.label(key)} must be <= {max_value} (got {value})")
        return self._keep(key, value)

    def get_str(
        self,
        key: str,
        *,
        default: str | None | object = _REQUIRED,
        allow_empty: bool = False,
        choices: Iterable[str] | None = None,
    ) -> str | None:
        value = self._raw(key, default)
        if value is None:
            return self._keep(key, None)
        self._typed(key, value, str, "a string")
        value = value.strip()
        if not value and not allow_empty:
            raise ValueError(f"{self.label(key)} cannot be empty")
        if choices is not None:
            allowed = sorted(choices)
            if value not in allowed:
                raise ValueError(f"{self.label(key)} must be one of: {', '.join(allowed)} (got {value!r})")
        return self._keep(key, value)

    def get_list_str(
        self,
        key: str,
        *,
        default: list[str] | tuple[str, ...] | object = _REQUIRED,
        allow_empty: bool = False,
    ) -> list[str]:
        raw = self._raw(key, default)
        self._typed(key, raw, (list, tuple), "a list[str]")
        items: list[str] = []
        for index, item in enumerate(raw):
            self._typed(f"{key}[{index}]", item, str, "a string")
            if not item.strip():
                raise ValueError(f"{self.label(key)}[{index}] cannot be empty")
            items.append(item.strip())
        if not items and not allow_empty:
            raise ValueError(f"{self.label(key)} cannot be empty")
        self._keep(key, list(items))
        return items
