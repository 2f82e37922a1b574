"""Conversion between untyped input values and the typed storage slots.

Every stored attribute value carries a `ValueKind` and exactly one populated
column out of eight. `encode` produces the column representation
(`TypedSlots`), `decode` is its exact inverse.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from campuseav_core.errors import InvalidValueKind

STRING_MAX_LENGTH = 500

_TRUE_VALUES = frozenset({"true", "1"})
_FALSE_VALUES = frozenset({"false", "0"})

# SQLite INTEGER is a signed 64-bit value.
_INTEGER_MIN = -(2**63)
_INTEGER_MAX = 2**63 - 1


class ValueKind(StrEnum):
    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    TEXT = "text"
    JSON = "json"

    @property
    def slot(self) -> str:
        return f"value_{self.value}"


def parse_value_kind(raw: ValueKind | str) -> ValueKind:
    if isinstance(raw, ValueKind):
        return raw
    name = str(raw).strip().lower()
    if name == "structured":
        return ValueKind.JSON
    try:
        return ValueKind(name)
    except ValueError as err:
        raise InvalidValueKind(name or "<empty>", "unknown value kind") from err


@dataclass(frozen=True)
class TypedSlots:
    """Column representation of one value: `kind` plus exactly one non-null slot."""

    kind: ValueKind
    value_string: str | None = None
    value_integer: int | None = None
    value_decimal: str | None = None
    value_boolean: int | None = None
    value_date: str | None = None
    value_datetime: str | None = None
    value_text: str | None = None
    value_json: str | None = None

    def __post_init__(self) -> None:
        populated = [name for name, value in self.columns().items() if value is not None]
        if populated != [self.kind.slot]:
            raise InvalidValueKind(
                self.kind.value,
                f"expected exactly {self.kind.slot} to be set, got {populated or 'none'}",
            )

    def columns(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "kind"}

    @property
    def stored(self) -> Any:
        return getattr(self, self.kind.slot)

    @classmethod
    def from_row(cls, row: Any) -> TypedSlots:
        """Build from anything exposing `value_kind` and the slot columns.

        Accepts mappings, `sqlite3.Row` and row dataclasses alike.
        """

        def get(name: str) -> Any:
            if isinstance(row, Mapping) or hasattr(row, "keys"):
                return row[name] if name in row.keys() else None
            return getattr(row, name, None)

        kind = parse_value_kind(get("value_kind"))
        return cls(kind=kind, **{kind.slot: get(kind.slot)})


def _coerce_integer(raw: Any) -> int:
    value = _parse_integer(raw)
    if not _INTEGER_MIN <= value <= _INTEGER_MAX:
        raise InvalidValueKind("integer", "out of range")
    return value


def _parse_integer(raw: Any) -> int:
    if isinstance(raw, bool):
        raise InvalidValueKind("integer", "booleans are not integers")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if not raw.is_integer():
            raise InvalidValueKind("integer", f"{raw!r} is not integral")
        return int(raw)
    if isinstance(raw, Decimal):
        if raw != raw.to_integral_value():
            raise InvalidValueKind("integer", f"{raw} is not integral")
        return int(raw)
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return int(text, 10)
        except ValueError as err:
            raise InvalidValueKind("integer", f"{raw!r} is not an integer") from err
    raise InvalidValueKind("integer", f"unsupported type {type(raw).__name__}")


def _coerce_decimal(raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise InvalidValueKind("decimal", "booleans are not decimals")
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float, str)):
        try:
            value = Decimal(str(raw).strip())
        except InvalidOperation as err:
            raise InvalidValueKind("decimal", f"{raw!r} is not a number") from err
    else:
        raise InvalidValueKind("decimal", f"unsupported type {type(raw).__name__}")
    if not value.is_finite():
        raise InvalidValueKind("decimal", f"{raw!r} is not finite")
    return value


def _coerce_boolean(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
    raise InvalidValueKind("boolean", f"{raw!r} is not one of true/false/1/0")


def _coerce_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw.strip())
        except ValueError as err:
            raise InvalidValueKind("date", f"{raw!r} is not an ISO date") from err
    raise InvalidValueKind("date", f"unsupported type {type(raw).__name__}")


def _coerce_datetime(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day)
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError as err:
            raise InvalidValueKind("datetime", f"{raw!r} is not an ISO datetime") from err
    raise InvalidValueKind("datetime", f"unsupported type {type(raw).__name__}")


def _coerce_json(raw: Any) -> Any:
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as err:
            raise InvalidValueKind("json", f"malformed document: {err.msg}") from err
    try:
        json.dumps(raw)
    except (TypeError, ValueError) as err:
        raise InvalidValueKind("json", str(err)) from err
    return raw


def coerce(raw: Any, kind: ValueKind | str) -> Any:
    """Interpret `raw` as a Python value of `kind` (no truncation)."""

    kind = parse_value_kind(kind)
    if raw is None:
        raise InvalidValueKind(kind.value, "value is missing")

    match kind:
        case ValueKind.STRING | ValueKind.TEXT:
            if isinstance(raw, (dict, list, tuple, set, bytes)):
                raise InvalidValueKind(kind.value, f"unsupported type {type(raw).__name__}")
            return raw if isinstance(raw, str) else str(raw)
        case ValueKind.INTEGER:
            return _coerce_integer(raw)
        case ValueKind.DECIMAL:
            return _coerce_decimal(raw)
        case ValueKind.BOOLEAN:
            return _coerce_boolean(raw)
        case ValueKind.DATE:
            return _coerce_date(raw)
        case ValueKind.DATETIME:
            return _coerce_datetime(raw)
        case ValueKind.JSON:
            return _coerce_json(raw)


def encode(raw: Any, kind: ValueKind | str) -> TypedSlots:
    kind = parse_value_kind(kind)
    value = coerce(raw, kind)

    match kind:
        case ValueKind.STRING:
            stored: Any = value[:STRING_MAX_LENGTH]
        case ValueKind.TEXT:
            stored = value
        case ValueKind.INTEGER:
            stored = value
        case ValueKind.DECIMAL:
            stored = str(value)
        case ValueKind.BOOLEAN:
            stored = 1 if value else 0
        case ValueKind.DATE | ValueKind.DATETIME:
            stored = value.isoformat()
        case ValueKind.JSON:
            # Already well-formed text is kept byte-for-byte.
            stored = raw if isinstance(raw, str) else json.dumps(value, ensure_ascii=False)

    return TypedSlots(kind=kind, **{kind.slot: stored})


def decode(row: TypedSlots | Any) -> Any:
    slots = row if isinstance(row, TypedSlots) else TypedSlots.from_row(row)
    stored = slots.stored

    match slots.kind:
        case ValueKind.STRING | ValueKind.TEXT:
            return stored
        case ValueKind.INTEGER:
            return int(stored)
        case ValueKind.DECIMAL:
            return Decimal(stored)
        case ValueKind.BOOLEAN:
            return bool(int(stored))
        case ValueKind.DATE:
            return date.fromisoformat(stored)
        case ValueKind.DATETIME:
            return datetime.fromisoformat(stored)
        case ValueKind.JSON:
            return json.loads(stored)


def decode_default(text: str | None, kind: ValueKind | str) -> Any:
    """Interpret a definition's text default; None when the definition has none."""

    if text is None:
        return None
    return coerce(text, kind)


def to_json_compatible(value: Any) -> Any:
    """Render a decoded value for JSON transport (audit rows, API payloads)."""

    if isinstance(value, Decimal):
        return float(value) if value != value.to_integral_value() else int(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, list):
        return [to_json_compatible(v) for v in value]
    if isinstance(value, dict):
        return {k: to_json_compatible(v) for k, v in value.items()}
    return value
