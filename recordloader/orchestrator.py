import csv
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from loguru import logger

from .config import Settings
from .exceptions import SetupError, TransportError
from .models import NormalizedRecord, Operation, RunState, RunSummary
from .normalizer import NullSentinelNormalizer
from .reconciler import ResultReconciler
from .sinks import CsvRecordSink, RecordSink
from .sources import CsvRecordSource, RecordSource
from .submitter import BatchSubmitter
from .transports import BaseTransport, ObjectStoreClient, create_transport


class LoadProcess:
    """One load run: read, normalize, submit and reconcile.

    States move ``idle -> reading -> submitting -> reconciling -> done``;
    any error that escapes the run moves to ``failed`` and is re-raised. A
    process object runs once; start a new one to retry.
    """

    def __init__(
        self,
        settings: Settings,
        client: ObjectStoreClient,
        source: RecordSource,
        success_sink: RecordSink,
        error_sink: RecordSink,
        transport: Optional[BaseTransport] = None,
    ):
        self.settings = settings
        self.source = source
        self.success_sink = success_sink
        self.error_sink = error_sink
        self.transport = transport or create_transport(settings, client)
        self.state = RunState.IDLE
        self.history: List[RunState] = [RunState.IDLE]
        self.summary: Optional[RunSummary] = None
        self.error: Optional[Exception] = None
        self.submitter: Optional[BatchSubmitter] = None
        self._cancel_requested = False

    def _transition(self, state: RunState) -> None:
        logger.debug("Load process {} -> {}", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def cancel(self) -> None:
        self._cancel_requested = True
        if self.submitter is not None:
            self.submitter.cancel()

    async def run(self) -> RunSummary:
        if self.state != RunState.IDLE:
            raise RuntimeError(f"Load process already {self.state.value}")
        started_at = datetime.now(timezone.utc)
        reconciler = ResultReconciler(self.success_sink, self.error_sink)
        try:
            self._transition(RunState.READING)
            normalizer = await self._prepare(reconciler)

            self._transition(RunState.SUBMITTING)
            self.submitter = BatchSubmitter(
                self.transport,
                reconciler,
                object_type=self.settings.target_object_type,
                operation=self.settings.operation,
                batch_size=self.settings.max_batch_size or self.transport.default_batch_size,
                max_concurrency=self.settings.max_concurrency,
            )
            if self._cancel_requested:
                self.submitter.cancel()
            await self.submitter.run(self._normalized(normalizer))

            self._transition(RunState.RECONCILING)
            reconciler.finish(self.submitter.dispatched)
        except SetupError as exc:
            self._fail(exc)
            raise
        except (OSError, csv.Error) as exc:
            error = SetupError(f"I/O failure during load: {exc}")
            self._fail(error)
            raise error from exc
        except Exception as exc:
            self._fail(exc)
            raise
        finally:
            self.source.close()
            reconciler.close()

        self.summary = RunSummary(
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            transport=self.transport.kind,
            operation=self.settings.operation,
            object_type=self.settings.target_object_type,
            total=self.submitter.read,
            inserted=reconciler.inserted,
            updated=reconciler.updated,
            failed=reconciler.failed,
            skipped=self.submitter.skipped,
            cancelled=self.submitter.cancelled,
            success_sink=self.success_sink.describe(),
            error_sink=self.error_sink.describe(),
        )
        self._transition(RunState.DONE)
        logger.info(
            "Load of {} finished: {} inserted, {} updated, {} failed, {} skipped",
            self.summary.object_type,
            self.summary.inserted,
            self.summary.updated,
            self.summary.failed,
            self.summary.skipped,
        )
        return self.summary

    def _fail(self, error: Exception) -> None:
        self.error = error
        self._transition(RunState.FAILED)
        if isinstance(error, SetupError):
            logger.error("Load process failed: {}", error.message)
        else:
            logger.opt(exception=error).error(
                "Load process failed unexpectedly: {}", type(error).__name__
            )

    def _check_limits(self) -> None:
        limits = {
            "max_batch_size": self.settings.max_batch_size,
            "max_concurrency": self.settings.max_concurrency,
        }
        for name, value in limits.items():
            if value is not None and value < 1:
                raise SetupError(
                    f"{name} must be at least 1, got {value}", {name: value}
                )

    async def _prepare(self, reconciler: ResultReconciler) -> NullSentinelNormalizer:
        self._check_limits()
        object_type = self.settings.target_object_type
        try:
            field_types = await self.transport.describe(object_type)
        except (TransportError, OSError) as exc:
            raise SetupError(f"Could not describe '{object_type}': {exc}") from exc
        normalizer = NullSentinelNormalizer(field_types, self.transport.null_handling)

        try:
            self.source.open()
        except OSError as exc:
            raise SetupError(f"Cannot open record source: {exc}") from exc
        columns = list(self.source.columns)
        if not self.source.has_next():
            raise SetupError("Record source contains no records")
        normalizer.validate_columns(columns)
        if self.settings.operation == Operation.UPDATE and "Id" not in columns:
            raise SetupError("An update requires an Id column")

        try:
            reconciler.open(columns)
        except OSError as exc:
            raise SetupError(f"Cannot open output sink: {exc}") from exc
        return normalizer

    def _normalized(self, normalizer: NullSentinelNormalizer) -> Iterator[NormalizedRecord]:
        position = 0
        while self.source.has_next():
            yield normalizer.normalize(self.source.next(), position)
            position += 1


async def run_csv_process(
    settings: Settings,
    client: ObjectStoreClient,
    input_path: str,
    success_path: str,
    error_path: str,
) -> RunSummary:
    """Load a delimited file and write success and error files."""
    process = LoadProcess(
        settings,
        client,
        CsvRecordSource(input_path),
        CsvRecordSink(success_path),
        CsvRecordSink(error_path),
    )
    return await process.run()
