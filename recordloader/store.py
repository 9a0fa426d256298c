"""In-process stand-in for the remote CRM object store.

Exposes the two APIs the transports talk to: the synchronous save calls
(``create``/``update``) and the bulk job calls (``create_job`` ... ``get_batch_results``).
Failures can be injected to exercise transport error handling.
"""

import csv
import io
import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from loguru import logger

from .exceptions import ConversionError, ObjectTypeNotFound, TransportError
from .fieldtypes import coerce_value
from .models import FieldType, Operation, SaveResult
from .normalizer import BULK_NULL_TOKEN

BULK_RESULT_COLUMNS = ["Id", "Success", "Created", "Error"]


@dataclass(frozen=True)
class ObjectSchema:
    name: str
    key_prefix: str
    fields: Dict[str, FieldType]
    required: Tuple[str, ...] = ()


DEFAULT_SCHEMAS = (
    ObjectSchema(
        name="Task",
        key_prefix="00T",
        fields={
            "Id": FieldType.ID,
            "OwnerId": FieldType.REFERENCE,
            "Subject": FieldType.STRING,
            "Description": FieldType.TEXTAREA,
            "ActivityDate": FieldType.DATE,
            "ReminderDateTime": FieldType.DATETIME,
            "Priority": FieldType.PICKLIST,
        },
    ),
    ObjectSchema(
        name="Account",
        key_prefix="001",
        fields={
            "Id": FieldType.ID,
            "Name": FieldType.STRING,
            "NumberOfEmployees": FieldType.INT,
            "AnnualRevenue": FieldType.DOUBLE,
            "Website": FieldType.STRING,
            "IsActive": FieldType.BOOLEAN,
        },
        required=("Name",),
    ),
)


class RecordRejected(Exception):
    pass


class MockObjectTable:
    """Rows of one object type, keyed by generated record id."""

    def __init__(self, schema: ObjectSchema):
        self.schema = schema
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return f"{self.schema.key_prefix}{next(self._ids):012d}"

    def _convert(self, values: Dict[str, Any], null_token: Optional[str]) -> Dict[str, Any]:
        converted: Dict[str, Any] = {}
        for name, value in values.items():
            field_type = self.schema.fields.get(name)
            if field_type is None:
                raise RecordRejected(
                    f"No such column '{name}' on entity '{self.schema.name}'"
                )
            if name == "Id":
                continue
            if null_token is not None and value == null_token:
                converted[name] = None
                continue
            if value is None or value == "":
                # blank means "leave unchanged"
                continue
            try:
                converted[name] = coerce_value(field_type, value, name)
            except ConversionError as exc:
                raise RecordRejected(exc.message) from exc
        return converted

    def insert(self, values: Dict[str, Any], null_token: Optional[str] = None) -> str:
        if values.get("Id"):
            raise RecordRejected("cannot specify Id in an insert call")
        row = self._convert(values, null_token)
        missing = [name for name in self.schema.required if row.get(name) is None]
        if missing:
            raise RecordRejected(f"Required fields are missing: [{', '.join(missing)}]")
        record_id = self._next_id()
        stored: Dict[str, Any] = {name: None for name in self.schema.fields}
        stored.update(row)
        stored["Id"] = record_id
        self._rows[record_id] = stored
        return record_id

    def update(self, values: Dict[str, Any], null_token: Optional[str] = None) -> str:
        record_id = values.get("Id")
        if not record_id:
            raise RecordRejected("Id not specified in an update call")
        if record_id not in self._rows:
            raise RecordRejected("invalid cross reference id")
        changes = self._convert(values, null_token)
        for name in self.schema.required:
            if name in changes and changes[name] is None:
                raise RecordRejected(f"Required fields are missing: [{name}]")
        self._rows[record_id].update(changes)
        return record_id

    def save(
        self, operation: Operation, values: Dict[str, Any], null_token: Optional[str] = None
    ) -> SaveResult:
        try:
            if operation == Operation.INSERT:
                return SaveResult(success=True, id=self.insert(values, null_token), created=True)
            return SaveResult(success=True, id=self.update(values, null_token), created=False)
        except RecordRejected as exc:
            return SaveResult(success=False, errors=[str(exc)])

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        row = self._rows.get(record_id)
        return dict(row) if row is not None else None

    def __len__(self) -> int:
        return len(self._rows)


@dataclass
class BulkBatch:
    id: str
    columns: List[str]
    rows: List[Dict[str, str]]
    polls_remaining: int
    state: str = "Queued"
    state_message: str = ""
    results: Optional[str] = None


@dataclass
class BulkJob:
    id: str
    object_type: str
    operation: Operation
    state: str = "Open"
    batches: Dict[str, BulkBatch] = field(default_factory=dict)


class ObjectStore:
    """Collection of mocked object tables behind a CRM-style API."""

    def __init__(
        self,
        schemas: Sequence[ObjectSchema] = DEFAULT_SCHEMAS,
        bulk_polls_to_complete: int = 1,
    ):
        self.tables: Dict[str, MockObjectTable] = {
            schema.name: MockObjectTable(schema) for schema in schemas
        }
        self.bulk_polls_to_complete = max(bulk_polls_to_complete, 1)
        self.stall_bulk = False
        self.jobs: Dict[str, BulkJob] = {}
        self.calls: List[str] = []
        self._job_ids = itertools.count(1)
        self._batch_ids = itertools.count(1)
        self._faults: List[Tuple[Optional[Set[str]], Exception]] = []

    def inject_failures(
        self, count: int, exc: Exception, calls: Optional[Sequence[str]] = None
    ) -> None:
        """Make the next ``count`` API calls (optionally only ``calls``) raise ``exc``."""
        targets = set(calls) if calls else None
        self._faults.extend((targets, exc) for _ in range(count))

    def _enter(self, call: str) -> None:
        self.calls.append(call)
        for index, (targets, exc) in enumerate(self._faults):
            if targets is None or call in targets:
                del self._faults[index]
                logger.debug("Injected failure on {}: {}", call, exc)
                raise exc

    def _table(self, object_type: str) -> MockObjectTable:
        if object_type not in self.tables:
            raise ObjectTypeNotFound(object_type)
        return self.tables[object_type]

    def seed(self, object_type: str, values: Dict[str, Any]) -> str:
        return self._table(object_type).insert(values)

    def stats(self) -> Dict[str, int]:
        return {name: len(table) for name, table in self.tables.items()}

    # synchronous API

    async def describe(self, object_type: str) -> Dict[str, FieldType]:
        self._enter("describe")
        return dict(self._table(object_type).schema.fields)

    async def get(self, object_type: str, record_id: str) -> Optional[Dict[str, Any]]:
        self._enter("get")
        return self._table(object_type).get(record_id)

    async def create(self, object_type: str, rows: List[Dict[str, Any]]) -> List[SaveResult]:
        self._enter("create")
        table = self._table(object_type)
        return [table.save(Operation.INSERT, row) for row in rows]

    async def update(self, object_type: str, rows: List[Dict[str, Any]]) -> List[SaveResult]:
        self._enter("update")
        table = self._table(object_type)
        return [table.save(Operation.UPDATE, row) for row in rows]

    # bulk API

    def _job(self, job_id: str) -> BulkJob:
        if job_id not in self.jobs:
            raise TransportError(f"InvalidJob: unknown job {job_id}")
        return self.jobs[job_id]

    async def create_job(self, object_type: str, operation: Operation) -> str:
        self._enter("create_job")
        self._table(object_type)
        job_id = f"750{next(self._job_ids):012d}"
        self.jobs[job_id] = BulkJob(id=job_id, object_type=object_type, operation=operation)
        return job_id

    async def add_batch(self, job_id: str, payload: str) -> str:
        self._enter("add_batch")
        job = self._job(job_id)
        if job.state != "Open":
            raise TransportError(f"InvalidJobState: job {job_id} is {job.state}")
        reader = csv.DictReader(io.StringIO(payload))
        batch = BulkBatch(
            id=f"751{next(self._batch_ids):012d}",
            columns=list(reader.fieldnames or []),
            rows=[dict(row) for row in reader],
            polls_remaining=self.bulk_polls_to_complete,
        )
        if not batch.columns:
            batch.state = "Failed"
            batch.state_message = "InvalidBatch: Empty batch payload"
        job.batches[batch.id] = batch
        return batch.id

    async def close_job(self, job_id: str) -> None:
        self._enter("close_job")
        job = self._job(job_id)
        if job.state == "Open":
            job.state = "Closed"

    async def abort_job(self, job_id: str) -> None:
        self._enter("abort_job")
        job = self._job(job_id)
        job.state = "Aborted"
        for batch in job.batches.values():
            if batch.state in ("Queued", "InProgress"):
                batch.state = "Not Processed"

    async def get_batch(self, job_id: str, batch_id: str) -> Dict[str, str]:
        self._enter("get_batch")
        job = self._job(job_id)
        batch = job.batches[batch_id]
        if batch.state in ("Queued", "InProgress"):
            batch.state = "InProgress"
            if not self.stall_bulk:
                batch.polls_remaining -= 1
                if batch.polls_remaining <= 0:
                    self._process(job, batch)
        return {"id": batch.id, "state": batch.state, "stateMessage": batch.state_message}

    async def get_batch_results(self, job_id: str, batch_id: str) -> str:
        self._enter("get_batch_results")
        batch = self._job(job_id).batches[batch_id]
        if batch.results is None:
            raise TransportError(f"InvalidBatch: batch {batch_id} is {batch.state}")
        return batch.results

    def _process(self, job: BulkJob, batch: BulkBatch) -> None:
        table = self.tables[job.object_type]
        out = io.StringIO()
        writer = csv.writer(out)
        writer.writerow(BULK_RESULT_COLUMNS)
        for row in batch.rows:
            result = table.save(job.operation, row, null_token=BULK_NULL_TOKEN)
            writer.writerow(
                [
                    result.id or "",
                    str(result.success).lower(),
                    str(result.created).lower(),
                    ":".join(result.errors),
                ]
            )
        batch.results = out.getvalue()
        batch.state = "Completed"
        logger.debug("Bulk batch {} processed {} rows", batch.id, len(batch.rows))
