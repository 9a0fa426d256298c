import asyncio
from typing import Dict, List, Sequence, Tuple

from loguru import logger

from .models import NormalizedRecord, Outcome
from .sinks import RecordSink

ID_COLUMN = "ID"
STATUS_COLUMN = "STATUS"
ERROR_COLUMN = "ERROR"
STATUS_CREATED = "Item Created"
STATUS_UPDATED = "Item Updated"


class ResultReconciler:
    """Writes outcomes to the success and error sinks in input order.

    Chunks may arrive in any order; rows are held back until every earlier
    position has been written.
    """

    def __init__(self, success_sink: RecordSink, error_sink: RecordSink):
        self.success_sink = success_sink
        self.error_sink = error_sink
        self.inserted = 0
        self.updated = 0
        self.failed = 0
        self._pending: Dict[int, Tuple[NormalizedRecord, Outcome]] = {}
        self._next_position = 0
        self._buffer_lock = asyncio.Lock()
        self._success_lock = asyncio.Lock()
        self._error_lock = asyncio.Lock()

    def open(self, columns: Sequence[str]) -> None:
        self.success_sink.open([ID_COLUMN, *columns, STATUS_COLUMN])
        self.error_sink.open([*columns, ERROR_COLUMN])

    def close(self) -> None:
        try:
            self.success_sink.close()
        finally:
            self.error_sink.close()

    @property
    def written(self) -> int:
        return self.inserted + self.updated + self.failed

    async def accept(
        self, records: Sequence[NormalizedRecord], outcomes: Sequence[Outcome]
    ) -> None:
        if len(records) != len(outcomes):
            raise ValueError(
                f"Got {len(outcomes)} outcomes for {len(records)} records"
            )
        async with self._buffer_lock:
            for record, outcome in zip(records, outcomes):
                position = record.position
                if position < self._next_position or position in self._pending:
                    raise ValueError(f"Outcome for position {position} already reconciled")
                self._pending[position] = (record, outcome)
            await self._flush()

    async def _flush(self) -> None:
        while self._next_position in self._pending:
            record, outcome = self._pending.pop(self._next_position)
            await self._write(record, outcome)
            self._next_position += 1

    async def _write(self, record: NormalizedRecord, outcome: Outcome) -> None:
        if outcome.success:
            row = {ID_COLUMN: outcome.id, **record.original}
            row[STATUS_COLUMN] = STATUS_CREATED if outcome.created else STATUS_UPDATED
            async with self._success_lock:
                self.success_sink.write_row(row)
            if outcome.created:
                self.inserted += 1
            else:
                self.updated += 1
        else:
            row = {**record.original, ERROR_COLUMN: outcome.error}
            async with self._error_lock:
                self.error_sink.write_row(row)
            self.failed += 1

    def finish(self, expected: int) -> None:
        """Check that positions ``0..expected-1`` were each written once."""
        if self._pending or self._next_position != expected:
            missing = [
                p for p in range(self._next_position, expected) if p not in self._pending
            ]
            raise RuntimeError(
                f"Reconciled {self._next_position} of {expected} records; "
                f"{len(self._pending)} still buffered, first missing {missing[:5]}"
            )
        logger.info(
            "Reconciled {} records: {} inserted, {} updated, {} failed",
            expected,
            self.inserted,
            self.updated,
            self.failed,
        )

    def pending_positions(self) -> List[int]:
        return sorted(self._pending)
