import asyncio
import itertools
from typing import Dict, Iterable, Iterator, List

from loguru import logger

from .models import Batch, NormalizedRecord, Operation, Outcome
from .reconciler import ResultReconciler
from .transports import BaseTransport


class BatchSubmitter:
    """Drains normalized records into bounded batches and submits them.

    Up to ``max_concurrency`` batches are in flight at once. A batch keeps
    its records in input order; records that failed normalization never
    reach the transport.
    """

    def __init__(
        self,
        transport: BaseTransport,
        reconciler: ResultReconciler,
        object_type: str,
        operation: Operation,
        batch_size: int,
        max_concurrency: int = 1,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.transport = transport
        self.reconciler = reconciler
        self.object_type = object_type
        self.operation = operation
        self.batch_size = batch_size
        self.max_concurrency = max(max_concurrency, 1)
        self.read = 0
        self.dispatched = 0
        self.skipped = 0
        self.batches_sent = 0
        self._cancel_requested = False

    def cancel(self) -> None:
        """Stop dispatching; batches already in flight still complete."""
        self._cancel_requested = True

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def _chunks(self, records: Iterable[NormalizedRecord]) -> Iterator[List[NormalizedRecord]]:
        iterator = iter(records)
        while not self._cancel_requested:
            chunk = list(itertools.islice(iterator, self.batch_size))
            if not chunk:
                return
            self.read += len(chunk)
            yield chunk

    async def run(self, records: Iterable[NormalizedRecord]) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks: List[asyncio.Task] = []

        async def guarded(chunk: List[NormalizedRecord]) -> None:
            try:
                await self.process_chunk(chunk)
            finally:
                semaphore.release()

        try:
            for chunk in self._chunks(records):
                await semaphore.acquire()
                _raise_first_failure(tasks)
                if self._cancel_requested:
                    semaphore.release()
                    self.skipped += len(chunk)
                    logger.warning("Cancelled; {} records not dispatched", len(chunk))
                    break
                self.dispatched += len(chunk)
                tasks.append(asyncio.create_task(guarded(chunk)))
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def process_chunk(self, chunk: List[NormalizedRecord]) -> None:
        outcomes: Dict[int, Outcome] = {
            record.position: Outcome.failed(record.error)
            for record in chunk
            if not record.is_valid
        }
        valid = tuple(record for record in chunk if record.is_valid)
        if valid:
            batch = Batch(object_type=self.object_type, operation=self.operation, records=valid)
            self.batches_sent += 1
            logger.info(
                "Submitting batch {} ({} records, {} pre-failed) via {}",
                self.batches_sent,
                len(valid),
                len(chunk) - len(valid),
                self.transport.kind.value,
            )
            results = await self.transport.submit(batch)
            for record, outcome in zip(valid, results):
                outcomes[record.position] = outcome
        await self.reconciler.accept(chunk, [outcomes[record.position] for record in chunk])


def _raise_first_failure(tasks: List[asyncio.Task]) -> None:
    for task in tasks:
        if task.done() and not task.cancelled() and task.exception() is not None:
            raise task.exception()
