"""Null-sentinel substitution for source records.

Source files mark "set this field to null" with the reserved value ``#N/A``.
What that marker turns into depends on the transport: the bulk transport has a
native null token, the synchronous transport does not. Each transport declares
a :class:`NullHandling` table and the normalizer applies it per field type.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Union

from .exceptions import ConversionError, SetupError
from .fieldtypes import coerce_value, is_date, is_text
from .models import FieldType, NormalizedRecord, Record

NULL_MARKER = "#N/A"

# Bulk CSV payloads use the marker itself as the null token.
BULK_NULL_TOKEN = NULL_MARKER


class NullPolicy(str, Enum):
    LITERAL = "literal"  # keep the marker as ordinary data
    NATIVE_NULL = "native_null"  # replace with the transport's null encoding
    REJECT = "reject"  # fail the record with a conversion error


@dataclass(frozen=True)
class NullHandling:
    text: NullPolicy
    date: NullPolicy
    other: NullPolicy
    null_encoding: Optional[str] = None

    def policy_for(self, field_type: FieldType) -> NullPolicy:
        if is_text(field_type):
            return self.text
        if is_date(field_type):
            return self.date
        return self.other


# Synchronous saves cannot express null for a text value, and dates go
# through strict parsing, so the marker fails there. Kept for compatibility.
SYNC_NULL_HANDLING = NullHandling(
    text=NullPolicy.LITERAL,
    date=NullPolicy.REJECT,
    other=NullPolicy.LITERAL,
)

BULK_NULL_HANDLING = NullHandling(
    text=NullPolicy.NATIVE_NULL,
    date=NullPolicy.NATIVE_NULL,
    other=NullPolicy.NATIVE_NULL,
    null_encoding=BULK_NULL_TOKEN,
)


class NullSentinelNormalizer:
    """Rewrites marker values of one object type's records."""

    def __init__(self, field_types: Dict[str, FieldType], handling: NullHandling):
        self.field_types = dict(field_types)
        self.handling = handling

    def validate_columns(self, columns: Iterable[str]) -> None:
        unknown = [name for name in columns if name not in self.field_types]
        if unknown:
            raise SetupError(
                f"Columns not defined on the target object: {', '.join(unknown)}",
                {"columns": unknown},
            )

    def normalize_value(self, field: str, value: Any) -> Any:
        if value != NULL_MARKER:
            return value
        field_type = self.field_types.get(field, FieldType.STRING)
        policy = self.handling.policy_for(field_type)
        if policy == NullPolicy.NATIVE_NULL:
            return self.handling.null_encoding
        if policy == NullPolicy.REJECT:
            # raises the same message the remote side would produce
            return coerce_value(field_type, value, field)
        return value

    def normalize(
        self, record: Union[Record, NormalizedRecord], position: int = 0
    ) -> NormalizedRecord:
        """Return a new NormalizedRecord; never mutates ``record``.

        Passing an already normalized record is a no-op: invalid records come
        back unchanged and valid ones normalize to the same fields.
        """
        if isinstance(record, NormalizedRecord):
            if not record.is_valid:
                return record
            original, raw, position = record.original, record.fields, record.position
        else:
            original, raw = dict(record), record

        fields: Dict[str, Any] = {}
        for name, value in raw.items():
            try:
                fields[name] = self.normalize_value(name, value)
            except ConversionError as exc:
                return NormalizedRecord(
                    position=position,
                    original=original,
                    fields=dict(raw),
                    error=exc.message,
                )
        return NormalizedRecord(position=position, original=original, fields=fields)
