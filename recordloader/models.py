from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

Record = Dict[str, Any]


class TransportKind(str, Enum):
    SYNCHRONOUS = "synchronous"
    BULK = "bulk"


class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


class FieldType(str, Enum):
    ID = "id"
    REFERENCE = "reference"
    STRING = "string"
    TEXTAREA = "textarea"
    PICKLIST = "picklist"
    EMAIL = "email"
    DATE = "date"
    DATETIME = "datetime"
    INT = "int"
    DOUBLE = "double"
    BOOLEAN = "boolean"


class RunState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    SUBMITTING = "submitting"
    RECONCILING = "reconciling"
    DONE = "done"
    FAILED = "failed"


class NormalizedRecord(BaseModel):
    """A source record after null-sentinel substitution.

    Either ``error`` is None and ``fields`` is ready for submission, or
    ``error`` holds the single conversion cause that failed the record.
    """

    model_config = ConfigDict(frozen=True)

    position: int
    original: Record
    fields: Dict[str, Any]
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None


class Batch(BaseModel):
    """Ordered group of valid records sent in one transport call."""

    model_config = ConfigDict(frozen=True)

    object_type: str
    operation: Operation
    records: Tuple[NormalizedRecord, ...]

    def __len__(self) -> int:
        return len(self.records)


class Outcome(BaseModel):
    """Result of one record's submission, matched to it by position."""

    model_config = ConfigDict(frozen=True)

    success: bool
    id: Optional[str] = None
    created: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, record_id: str, created: bool) -> "Outcome":
        return cls(success=True, id=record_id, created=created)

    @classmethod
    def failed(cls, message: str) -> "Outcome":
        return cls(success=False, error=message)


class RunSummary(BaseModel):
    started_at: datetime
    finished_at: datetime
    transport: TransportKind
    operation: Operation
    object_type: str
    total: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    success_sink: str = ""
    error_sink: str = ""

    @property
    def succeeded(self) -> int:
        return self.inserted + self.updated

    @property
    def exit_code(self) -> int:
        return 1 if self.failed or self.cancelled else 0


class SaveResult(BaseModel):
    """Per-record response of the remote store's save and bulk APIs."""

    success: bool
    id: Optional[str] = None
    created: bool = False
    errors: List[str] = Field(default_factory=list)
