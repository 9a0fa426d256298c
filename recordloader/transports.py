import asyncio
import csv
import io
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from loguru import logger

from .config import BULK_DEFAULT_BATCH_SIZE, SYNC_DEFAULT_BATCH_SIZE, Settings
from .exceptions import SetupError, TransportError
from .models import Batch, FieldType, Operation, Outcome, SaveResult, TransportKind
from .normalizer import BULK_NULL_HANDLING, SYNC_NULL_HANDLING, NullHandling
from .retry import ExponentialBackoffRetry, RetryConfig


class ObjectStoreClient(Protocol):
    async def describe(self, object_type: str) -> Dict[str, FieldType]:
        ...

    async def create(self, object_type: str, rows: List[Dict[str, Any]]) -> List[SaveResult]:
        ...

    async def update(self, object_type: str, rows: List[Dict[str, Any]]) -> List[SaveResult]:
        ...

    async def create_job(self, object_type: str, operation: Operation) -> str:
        ...

    async def add_batch(self, job_id: str, payload: str) -> str:
        ...

    async def close_job(self, job_id: str) -> None:
        ...

    async def abort_job(self, job_id: str) -> None:
        ...

    async def get_batch(self, job_id: str, batch_id: str) -> Dict[str, str]:
        ...

    async def get_batch_results(self, job_id: str, batch_id: str) -> str:
        ...


class BaseTransport:
    """Shared submit contract: one Outcome per record, in batch order."""

    kind: TransportKind
    null_handling: NullHandling
    default_batch_size: int

    def __init__(self, client: ObjectStoreClient, retry_config: Optional[RetryConfig] = None):
        self.client = client
        self.retry_config = retry_config or RetryConfig()

    async def _call(self, name: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        retry = ExponentialBackoffRetry(self.retry_config, f"{self.kind.value}.{name}")
        return await retry.execute(func, *args)

    async def describe(self, object_type: str) -> Dict[str, FieldType]:
        return await self._call("describe", self.client.describe, object_type)

    async def submit(self, batch: Batch) -> List[Outcome]:
        if not batch.records:
            return []
        try:
            outcomes = await self._send(batch)
        except SetupError:
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error(
                "{} batch of {} records failed ({}): {}",
                self.kind.value,
                len(batch),
                type(exc).__name__,
                message,
            )
            return [Outcome.failed(message) for _ in batch.records]
        if len(outcomes) != len(batch):
            message = (
                f"Transport returned {len(outcomes)} results for {len(batch)} records"
            )
            logger.error(message)
            return [Outcome.failed(message) for _ in batch.records]
        return outcomes

    async def _send(self, batch: Batch) -> List[Outcome]:
        raise NotImplementedError


class SynchronousTransport(BaseTransport):
    """Immediate save calls; the store coerces every field strictly."""

    kind = TransportKind.SYNCHRONOUS
    null_handling = SYNC_NULL_HANDLING
    default_batch_size = SYNC_DEFAULT_BATCH_SIZE

    async def _send(self, batch: Batch) -> List[Outcome]:
        rows = [dict(record.fields) for record in batch.records]
        if batch.operation == Operation.INSERT:
            results = await self._call("create", self.client.create, batch.object_type, rows)
        else:
            results = await self._call("update", self.client.update, batch.object_type, rows)
        return [
            Outcome.ok(result.id, result.created)
            if result.success
            else Outcome.failed("; ".join(result.errors) or "Unknown error")
            for result in results
        ]


class BulkTransport(BaseTransport):
    """Queued bulk jobs: one job and one CSV batch per submitted Batch."""

    kind = TransportKind.BULK
    null_handling = BULK_NULL_HANDLING
    default_batch_size = BULK_DEFAULT_BATCH_SIZE

    def __init__(
        self,
        client: ObjectStoreClient,
        retry_config: Optional[RetryConfig] = None,
        job_timeout: timedelta = timedelta(minutes=5),
        poll_interval: timedelta = timedelta(seconds=1),
    ):
        super().__init__(client, retry_config)
        self.job_timeout = job_timeout.total_seconds()
        self.poll_interval = poll_interval.total_seconds()

    def encode(self, batch: Batch) -> str:
        columns: List[str] = []
        for record in batch.records:
            columns.extend(name for name in record.fields if name not in columns)
        out = io.StringIO()
        writer = csv.writer(out)
        writer.writerow(columns)
        null_token = self.null_handling.null_encoding
        for record in batch.records:
            row = []
            for name in columns:
                value = record.fields.get(name, "")
                row.append(null_token if value is None else value)
            writer.writerow(row)
        return out.getvalue()

    @staticmethod
    def decode(payload: str) -> List[Outcome]:
        outcomes = []
        for row in csv.DictReader(io.StringIO(payload)):
            if row.get("Success", "").lower() == "true":
                outcomes.append(Outcome.ok(row["Id"], row.get("Created", "").lower() == "true"))
            else:
                outcomes.append(Outcome.failed(row.get("Error") or "Unknown error"))
        return outcomes

    async def _send(self, batch: Batch) -> List[Outcome]:
        # the timeout covers the whole job, including setup calls and their retries
        deadline = asyncio.get_running_loop().time() + self.job_timeout
        job_id = await self._call(
            "create_job", self.client.create_job, batch.object_type, batch.operation
        )
        try:
            batch_id = await self._call(
                "add_batch", self.client.add_batch, job_id, self.encode(batch)
            )
            await self._call("close_job", self.client.close_job, job_id)
            logger.debug(
                "Bulk job {} batch {} queued with {} records", job_id, batch_id, len(batch)
            )
            await self._wait_for(job_id, batch_id, deadline)
            payload = await self._call(
                "get_batch_results", self.client.get_batch_results, job_id, batch_id
            )
        except Exception:
            await self._abort(job_id)
            raise
        return self.decode(payload)

    async def _wait_for(self, job_id: str, batch_id: str, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        while True:
            status = await self._call("get_batch", self.client.get_batch, job_id, batch_id)
            state = status.get("state")
            if state == "Completed":
                return
            if state in ("Failed", "Not Processed"):
                raise TransportError(
                    status.get("stateMessage") or f"Bulk batch {batch_id} {state.lower()}",
                    {"job_id": job_id, "batch_id": batch_id},
                )
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TransportError(
                    f"Bulk job {job_id} timed out after {self.job_timeout:g}s",
                    {"job_id": job_id, "batch_id": batch_id},
                )
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _abort(self, job_id: str) -> None:
        try:
            await self.client.abort_job(job_id)
        except Exception as exc:
            # the original failure is the one reported for the batch
            logger.warning("Could not abort bulk job {}: {}", job_id, exc)


def create_transport(settings: Settings, client: ObjectStoreClient) -> BaseTransport:
    retry_config = RetryConfig(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )
    if settings.transport == TransportKind.BULK:
        return BulkTransport(
            client,
            retry_config,
            job_timeout=settings.bulk_job_timeout,
            poll_interval=settings.bulk_poll_interval,
        )
    return SynchronousTransport(client, retry_config)
