"""Per-type value handlers converting source values into target bind values."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Tuple

from dbtransfer.models import Attribute, DataKind

logger = logging.getLogger(__name__)

_TRUE_STRINGS = frozenset(("true", "t", "yes", "y", "1", "on"))
_FALSE_STRINGS = frozenset(("false", "f", "no", "n", "0", "off"))


class ValueHandler:
    """Pass-through handler; base class for typed handlers.

    ``to_target`` raises ``ValueError`` when a value cannot be represented in the target
    type.
    """

    kind = DataKind.UNKNOWN

    def to_target(self, value: Any) -> Any:
        return value

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class NumberValueHandler(ValueHandler):
    kind = DataKind.NUMERIC

    def __init__(self, integer: bool = False, decimal_binding: bool = True):
        self.integer = integer
        self.decimal_binding = decimal_binding

    def to_target(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            value = self._parse(text)
        if self.integer:
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"Cannot store {value!r} in an integer column")
            if isinstance(value, Decimal) and value != value.to_integral_value():
                raise ValueError(f"Cannot store {value!r} in an integer column")
            return int(value)
        if isinstance(value, Decimal) and not self.decimal_binding:
            return float(value)
        if isinstance(value, (int, float, Decimal)):
            return value
        raise ValueError(f"Not a number: {value!r}")

    def _parse(self, text: str) -> Any:
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Not a number: {text!r}") from None


class BooleanValueHandler(ValueHandler):
    kind = DataKind.BOOLEAN

    def to_target(self, value: Any) -> Any:
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, (int, float, Decimal)):
            return value != 0
        if isinstance(value, str):
            text = value.strip().lower()
            if not text:
                return None
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
        raise ValueError(f"Not a boolean: {value!r}")


class StringValueHandler(ValueHandler):
    kind = DataKind.STRING

    def to_target(self, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).decode("utf-8")
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        return str(value)


class DateTimeValueHandler(ValueHandler):
    kind = DataKind.DATETIME

    def __init__(self, as_text: bool = False):
        self.as_text = as_text

    def to_target(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            value = self._parse(text)
        if not isinstance(value, (datetime, date, time)):
            raise ValueError(f"Not a date/time value: {value!r}")
        if self.as_text:
            return value.isoformat(sep=" ") if isinstance(value, datetime) else value.isoformat()
        return value

    def _parse(self, text: str) -> Any:
        for parser in (datetime.fromisoformat, date.fromisoformat, time.fromisoformat):
            try:
                return parser(text)
            except ValueError:
                continue
        raise ValueError(f"Not a date/time value: {text!r}")


class BinaryValueHandler(ValueHandler):
    kind = DataKind.BINARY

    def to_target(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode("utf-8")
        raise ValueError(f"Not binary data: {value!r}")


def find_value_handler(dialect, attribute: Attribute) -> ValueHandler:
    """Choose the value handler for a target attribute."""
    kind = attribute.data_kind
    if kind == DataKind.UNKNOWN and attribute.type_name:
        kind = dialect.data_kind(attribute.type_name)
    if kind == DataKind.NUMERIC:
        return NumberValueHandler(
            integer=dialect.is_integer_type(attribute.type_name),
            decimal_binding=dialect.supports_decimal_binding
        )
    if kind == DataKind.BOOLEAN:
        return BooleanValueHandler()
    if kind == DataKind.STRING:
        return StringValueHandler()
    if kind == DataKind.DATETIME:
        return DateTimeValueHandler(as_text=dialect.binds_datetime_as_text)
    if kind == DataKind.BINARY:
        return BinaryValueHandler()
    return ValueHandler()


def _value_type(value: Any) -> str:
    if isinstance(value, bool):
        return "BOOLEAN"
    if isinstance(value, int):
        return "INTEGER"
    if isinstance(value, (float, Decimal)):
        return "DOUBLE"
    if isinstance(value, datetime):
        return "TIMESTAMP"
    if isinstance(value, date):
        return "DATE"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "BLOB"
    if isinstance(value, str):
        text = value.strip()
        try:
            int(text)
            return "INTEGER"
        except ValueError:
            pass
        try:
            float(text)
            return "DOUBLE"
        except ValueError:
            pass
        if text.lower() in ("true", "false"):
            return "BOOLEAN"
    return "TEXT"


_INFERRED_KINDS = {
    "BOOLEAN": DataKind.BOOLEAN,
    "INTEGER": DataKind.NUMERIC,
    "DOUBLE": DataKind.NUMERIC,
    "TIMESTAMP": DataKind.DATETIME,
    "DATE": DataKind.DATETIME,
    "BLOB": DataKind.BINARY,
    "TEXT": DataKind.STRING,
}


def infer_type(values) -> Tuple[DataKind, str]:
    """Infer (data kind, type name) of a column from sample values.

    NULLs and empty strings are ignored. Mixed integer/real samples give a real type;
    any other mix gives text.
    """
    seen = set()
    for value in values:
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        seen.add(_value_type(value))
    if not seen:
        type_name = "TEXT"
    elif len(seen) == 1:
        type_name = seen.pop()
    elif seen <= {"INTEGER", "DOUBLE"}:
        type_name = "DOUBLE"
    else:
        type_name = "TEXT"
    return _INFERRED_KINDS[type_name], type_name
