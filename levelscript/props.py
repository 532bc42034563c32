"""
Property tables for Tiled objects.

Tiled stores custom properties either as an array of
``{"name", "type", "value"}`` records (the JSON export) or, after some
tooling, as a plain mapping. Both normalize here into a PropertyTable:
a read-only, case-insensitive mapping from key to scalar.

Provides:
- parse_props: raw object -> dict with stripped, lowercased keys
- PropertyTable: typed accessors (flag, number, text, csv lists)
- numbered_keys: ``dialogue``, ``dialogue2``, ``dialogue3`` ... up to the first gap
- split_csv / truthy / to_float / to_int / clamp: coercion helpers

Usage:
    props = PropertyTable.from_object(obj)
    if props.flag("once"):
        ...
    for key in numbered_keys(props, "dialogue"):
        print(props.text(key))
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, Iterator

MAX_NUMBERED_KEYS = 99


def parse_props(obj: Any) -> dict[str, Any]:
    """
    Normalize an object's property bag.

    Accepts an object with a ``properties`` entry (array-of-pairs or
    mapping). Keys are stripped and lowercased; empty keys are dropped.
    Anything malformed yields an empty dict.
    """
    if isinstance(obj, Mapping):
        raw = obj.get("properties")
    else:
        raw = getattr(obj, "properties", None)

    out: dict[str, Any] = {}
    if isinstance(raw, (list, tuple)):
        for entry in raw:
            if not isinstance(entry, Mapping):
                continue
            key = str(entry.get("name") or "").strip().lower()
            if key:
                out[key] = entry.get("value")
    elif isinstance(raw, Mapping):
        for name, value in raw.items():
            key = str(name if name is not None else "").strip().lower()
            if key:
                out[key] = value
    return out


def split_csv(value: Any) -> list[str]:
    """Split ``"a, b,,c"`` into ``["a", "b", "c"]``. Lists pass through as strings."""
    if value is None or value == "" or value is False:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def truthy(value: Any) -> bool:
    """True for ``True``, ``"true"``, ``1`` and ``"1"`` (case-insensitive)."""
    if value is True:
        return True
    if value is False or value is None:
        return False
    if isinstance(value, (int, float)):
        return value == 1
    return str(value).strip().lower() in ("true", "1")


def falsy(value: Any) -> bool:
    """True only for an explicit false (``False``, ``"false"``, ``0``, ``"0"``)."""
    if value is False:
        return True
    if value is True or value is None:
        return False
    if isinstance(value, (int, float)):
        return value == 0
    return str(value).strip().lower() in ("false", "0")


def to_float(value: Any, default: float | None = None) -> float | None:
    """Coerce to a finite float; anything else gives ``default``."""
    if value is None or value == "" or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def to_int(value: Any, default: int | None = None) -> int | None:
    number = to_float(value)
    return default if number is None else int(number)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class PropertyTable(Mapping):
    """
    Read-only, case-insensitive view of an object's properties.

    Absent keys read as ``None``. Typed accessors never raise; a value
    that cannot be coerced reads as the accessor's default.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = {}
        for key, value in (data or {}).items():
            norm = str(key).strip().lower()
            if norm:
                self._data[norm] = value

    @classmethod
    def from_object(cls, obj: Any) -> PropertyTable:
        table = cls()
        table._data = parse_props(obj)
        return table

    # Mapping protocol

    def __getitem__(self, key: str) -> Any:
        return self._data[key.lower()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key.lower(), default)

    def __repr__(self) -> str:
        return f"PropertyTable({self._data!r})"

    # Typed accessors

    def has(self, key: str) -> bool:
        """Key present with a non-empty value."""
        value = self.get(key)
        return value is not None and value != ""

    def flag(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None or value == "":
            return default
        if truthy(value):
            return True
        if falsy(value):
            return False
        return default

    def text(self, key: str, default: str = "") -> str:
        value = self.get(key)
        if value is None:
            return default
        result = str(value).strip()
        return result if result else default

    def number(self, key: str, default: float | None = None) -> float | None:
        return to_float(self.get(key), default)

    def integer(self, key: str, default: int | None = None) -> int | None:
        return to_int(self.get(key), default)

    def csv(self, key: str) -> list[str]:
        return split_csv(self.get(key))

    def first_text(self, *keys: str, default: str = "") -> str:
        """Text of the first key that carries a non-empty value."""
        for key in keys:
            value = self.text(key)
            if value:
                return value
        return default

    def first_number(self, *keys: str, default: float | None = None) -> float | None:
        for key in keys:
            value = self.number(key)
            if value is not None:
                return value
        return default


def numbered_keys(props: Mapping[str, Any], base: str) -> list[str]:
    """
    Collect ``base``, ``base2``, ``base3`` ... stopping at the first gap.

    A missing ``base`` does not stop the scan at ``base2``; gaps are only
    counted from index 2 onward.
    """
    base = base.lower()
    keys: list[str] = []
    if _present(props, base):
        keys.append(base)
    for i in range(2, MAX_NUMBERED_KEYS + 1):
        key = f"{base}{i}"
        if not _present(props, key):
            break
        keys.append(key)
    return keys


def _present(props: Mapping[str, Any], key: str) -> bool:
    return props.get(key) is not None
