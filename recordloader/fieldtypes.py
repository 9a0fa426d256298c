from datetime import date, datetime, timezone
from typing import Any, Optional

from .exceptions import ConversionError
from .models import FieldType

TEXT_TYPES = frozenset(
    {
        FieldType.ID,
        FieldType.REFERENCE,
        FieldType.STRING,
        FieldType.TEXTAREA,
        FieldType.PICKLIST,
        FieldType.EMAIL,
    }
)
DATE_TYPES = frozenset({FieldType.DATE, FieldType.DATETIME})

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")
_DATETIME_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)
_TRUE = {"true", "yes", "y", "1", "on"}
_FALSE = {"false", "no", "n", "0", "off"}


def is_text(field_type: FieldType) -> bool:
    return field_type in TEXT_TYPES


def is_date(field_type: FieldType) -> bool:
    return field_type in DATE_TYPES


def parse_date(value: str) -> date:
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    raise ConversionError(f"Failed to parse date: {value}")


def parse_datetime(value: str) -> datetime:
    text = value.strip().replace("Z", "+00:00")
    for fmt in _DATETIME_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    # the store reports date and datetime parse failures with one message
    raise ConversionError(f"Failed to parse date: {value}")


def coerce_value(field_type: FieldType, value: Any, field: Optional[str] = None) -> Any:
    """Convert a raw wire value to the Python value stored for ``field_type``.

    Empty strings and None become None. Raises ConversionError carrying the
    store's message when the value does not fit the type.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        return value
    try:
        if field_type == FieldType.DATE:
            return parse_date(value)
        if field_type == FieldType.DATETIME:
            return parse_datetime(value)
        if field_type == FieldType.INT:
            try:
                return int(value.strip())
            except ValueError:
                raise ConversionError(f"Failed to parse number: {value}") from None
        if field_type == FieldType.DOUBLE:
            try:
                return float(value.strip())
            except ValueError:
                raise ConversionError(f"Failed to parse number: {value}") from None
        if field_type == FieldType.BOOLEAN:
            flag = value.strip().lower()
            if flag in _TRUE:
                return True
            if flag in _FALSE:
                return False
            raise ConversionError(f"Failed to parse boolean: {value}")
    except ConversionError as exc:
        exc.field = field
        raise
    return value
