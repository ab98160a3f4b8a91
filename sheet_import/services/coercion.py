from __future__ import annotations

import math
import re
import types
import typing
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

import pandas as pd

"""Value coercion: raw parsed scalar -> destination field type.

Rules (applied in order):
1. Optional[T] / T | None is unwrapped to T; nullability is remembered
2. Missing or whitespace-only input falls back to the configured default
   (coerced against the original type), then to None for nullable/reference
   types, then to the zero value of the type
3. A value that already has the target type passes through unchanged
4. Otherwise the value is converted by target type: UUID, Enum (by member
   name, case-insensitive), bool (true/false, 1/0, yes/no, y/n, on/off),
   datetime/date/time from a spreadsheet serial number, and a locale independent
   conversion for everything else

The module has no state; identical inputs always give identical outputs.
"""

__all__ = [
    "ConversionError",
    "SPREADSHEET_EPOCH",
    "convert",
    "from_serial_date",
    "to_text",
    "type_name",
    "unwrap_optional",
]

# シリアル日付の基準日 (1900 年うるう年バグ込みの Excel 互換)
SPREADSHEET_EPOCH = datetime(1899, 12, 30)

_TRUE_TEXT = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_TEXT = frozenset({"false", "0", "no", "n", "off"})

_INT_RE = re.compile(r"[+-]?\d+")
_FLOAT_RE = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_PLAIN_NUMBER_RE = re.compile(r"[+-]?\d+(\.\d+)?")

_ZERO_VALUES: dict[type, Any] = {
    int: 0,
    float: 0.0,
    Decimal: Decimal(0),
    bool: False,
    datetime: datetime.min,
    date: date.min,
    time: time.min,
    timedelta: timedelta(0),
    uuid.UUID: uuid.UUID(int=0),
}


class ConversionError(ValueError):
    """Raised when a raw value cannot become the target type."""

    def __init__(self, text: str, target_type: Any, reason: str | None = None) -> None:
        self.text = text
        self.target_type = target_type
        message = f"Cannot convert '{text}' to {type_name(target_type)}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


def type_name(target_type: Any) -> str:
    inner, nullable = unwrap_optional(target_type)
    name = getattr(inner, "__name__", None) or str(inner)
    return f"{name} | None" if nullable else name


def unwrap_optional(target_type: Any) -> tuple[Any, bool]:
    """Return (underlying type, accepts None)."""
    if target_type is None or target_type is type(None):
        return type(None), True
    origin = typing.get_origin(target_type)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(target_type) if a is not type(None)]
        nullable = len(args) != len(typing.get_args(target_type))
        if len(args) == 1:
            return args[0], nullable
        # 複数型の Union は変換先を決められないので Any 扱い
        return object, nullable
    return target_type, False


def _is_value_type(target_type: Any) -> bool:
    if isinstance(target_type, type) and issubclass(target_type, Enum):
        return True
    return target_type in _ZERO_VALUES


def _zero_value(target_type: Any) -> Any:
    if isinstance(target_type, type) and issubclass(target_type, Enum):
        return next(iter(target_type))
    return _ZERO_VALUES[target_type]


def _is_blank(raw_value: Any) -> bool:
    if raw_value is None:
        return True
    if isinstance(raw_value, float) and math.isnan(raw_value):
        return True
    return isinstance(raw_value, str) and not raw_value.strip()


def _is_number(raw_value: Any) -> bool:
    return isinstance(raw_value, (int, float, Decimal)) and not isinstance(raw_value, bool)


def to_text(raw_value: Any) -> str:
    """Locale independent text form of a parsed scalar."""
    if isinstance(raw_value, float) and raw_value.is_integer():
        return str(int(raw_value))
    if isinstance(raw_value, (datetime, date, time)):
        return raw_value.isoformat()
    return str(raw_value)


def from_serial_date(serial: float) -> datetime:
    """Spreadsheet serial number (days since 1899-12-30) -> datetime."""
    try:
        return SPREADSHEET_EPOCH + timedelta(days=float(serial))
    except (OverflowError, ValueError) as e:
        raise ConversionError(to_text(serial), datetime, str(e)) from e


def _parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in _TRUE_TEXT:
        return True
    if lowered in _FALSE_TEXT:
        return False
    raise ConversionError(text, bool)


def _parse_enum(text: str, enum_type: type[Enum]) -> Enum:
    wanted = text.strip().casefold()
    for member in enum_type:
        if member.name.casefold() == wanted:
            return member
    raise ConversionError(text, enum_type, f"expected one of {[m.name for m in enum_type]}")


def _parse_datetime(raw_value: Any, text: str) -> datetime:
    if _is_number(raw_value):
        return from_serial_date(raw_value)
    if isinstance(raw_value, datetime):
        return raw_value
    if isinstance(raw_value, date):
        return datetime.combine(raw_value, time.min)
    stripped = text.strip()
    # 数字のみの文字列は日付として解釈しない (dateutil が当日基準で補完するため)
    if _PLAIN_NUMBER_RE.fullmatch(stripped):
        raise ConversionError(text, datetime)
    try:
        parsed = pd.to_datetime(stripped, dayfirst=False)
    except (ValueError, OverflowError, TypeError) as e:
        raise ConversionError(text, datetime) from e
    if pd.isna(parsed):
        raise ConversionError(text, datetime)
    return parsed.to_pydatetime()


def _convert_general(raw_value: Any, text: str, target_type: Any) -> Any:
    stripped = text.strip()
    if target_type is str:
        return to_text(raw_value)
    if target_type is int:
        if isinstance(raw_value, bool):
            return int(raw_value)
        if _is_number(raw_value):
            if not math.isfinite(raw_value):
                raise ConversionError(text, int)
            # 銀行丸め (round half to even)
            return int(round(raw_value))
        if _INT_RE.fullmatch(stripped):
            return int(stripped)
        raise ConversionError(text, int)
    if target_type is float:
        if isinstance(raw_value, bool) or _is_number(raw_value):
            return float(raw_value)
        candidate = stripped.replace(",", "")
        if _FLOAT_RE.fullmatch(candidate):
            return float(candidate)
        raise ConversionError(text, float)
    if target_type is Decimal:
        if isinstance(raw_value, bool) or _is_number(raw_value):
            return Decimal(str(raw_value))
        candidate = stripped.replace(",", "")
        if not _FLOAT_RE.fullmatch(candidate):
            raise ConversionError(text, Decimal)
        try:
            return Decimal(candidate)
        except InvalidOperation as e:
            raise ConversionError(text, Decimal) from e
    if target_type is datetime:
        return _parse_datetime(raw_value, text)
    if target_type is time:
        return _parse_datetime(raw_value, text).time()
    if target_type is date:
        return _parse_datetime(raw_value, text).date()
    if target_type is object:
        return raw_value
    if not callable(target_type):
        raise ConversionError(text, target_type, "unsupported target type")
    try:
        return target_type(raw_value)
    except (TypeError, ValueError, ArithmeticError) as e:
        raise ConversionError(text, target_type, str(e)) from e


def convert(raw_value: Any, target_type: Any, default_value: str | None = None) -> Any:
    """Coerce ``raw_value`` into ``target_type``.

    Args:
        raw_value: Scalar produced by the tabular parser (or any Python value)
        target_type: Destination type; ``Optional[T]`` marks a nullable field
        default_value: Text used when the raw value is missing or blank

    Returns:
        The converted value

    Raises:
        ConversionError: The value is not recognised for the target type
    """
    effective_type, nullable = unwrap_optional(target_type)

    if _is_blank(raw_value):
        if default_value:
            return convert(default_value, target_type)
        if nullable or not _is_value_type(effective_type):
            return None
        return _zero_value(effective_type)

    if type(raw_value) is effective_type:
        return raw_value
    if isinstance(effective_type, type) and issubclass(effective_type, Enum) and isinstance(raw_value, effective_type):
        return raw_value

    text = to_text(raw_value)

    if effective_type is uuid.UUID:
        try:
            return uuid.UUID(text.strip())
        except ValueError as e:
            raise ConversionError(text, uuid.UUID) from e

    if isinstance(effective_type, type) and issubclass(effective_type, Enum):
        return _parse_enum(text, effective_type)

    if effective_type is bool:
        return _parse_bool(text)

    if effective_type in (datetime, date, time) and _is_number(raw_value):
        converted = from_serial_date(raw_value)
        if effective_type is time:
            # 小数部 = 時刻
            return converted.time()
        return converted if effective_type is datetime else converted.date()

    return _convert_general(raw_value, text, effective_type)
