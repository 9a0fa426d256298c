import asyncio

import pytest

from recordloader.models import NormalizedRecord, Operation, Outcome, TransportKind
from recordloader.normalizer import SYNC_NULL_HANDLING
from recordloader.reconciler import ResultReconciler
from recordloader.sinks import InMemoryRecordSink
from recordloader.submitter import BatchSubmitter
from recordloader.transports import BaseTransport


class StubTransport(BaseTransport):
    """Succeeds every record; optional per-batch delays control completion order."""

    kind = TransportKind.SYNCHRONOUS
    null_handling = SYNC_NULL_HANDLING
    default_batch_size = 3

    def __init__(self, delays=None, on_submit=None):
        super().__init__(client=None)
        self.delays = list(delays or [])
        self.on_submit = on_submit
        self.batches = []
        self.completed = []

    async def _send(self, batch):
        index = len(self.batches)
        self.batches.append([r.position for r in batch.records])
        if self.on_submit:
            self.on_submit(index)
        if index < len(self.delays):
            await asyncio.sleep(self.delays[index])
        self.completed.append(index)
        return [Outcome.ok(f"id-{r.position}", created=True) for r in batch.records]


def records(count, invalid=()):
    out = []
    for position in range(count):
        raw = {"Subject": f"task {position}"}
        error = "bad value" if position in invalid else None
        out.append(NormalizedRecord(position=position, original=raw, fields=raw, error=error))
    return out


def make_submitter(transport, batch_size=3, max_concurrency=1):
    success, error = InMemoryRecordSink("success"), InMemoryRecordSink("error")
    reconciler = ResultReconciler(success, error)
    reconciler.open(["Subject"])
    submitter = BatchSubmitter(
        transport,
        reconciler,
        object_type="Task",
        operation=Operation.INSERT,
        batch_size=batch_size,
        max_concurrency=max_concurrency,
    )
    return submitter, success, error


class TestBatchSubmitter:
    @pytest.mark.asyncio
    async def test_batches_bounded_and_ordered(self):
        transport = StubTransport()
        submitter, success, _ = make_submitter(transport, batch_size=3)

        await submitter.run(records(7))

        assert transport.batches == [[0, 1, 2], [3, 4, 5], [6]]
        assert [row["ID"] for row in success.rows] == [f"id-{i}" for i in range(7)]
        assert (submitter.read, submitter.dispatched, submitter.skipped) == (7, 7, 0)

    @pytest.mark.asyncio
    async def test_invalid_records_bypass_transport(self):
        transport = StubTransport()
        submitter, success, error = make_submitter(transport, batch_size=4)

        await submitter.run(records(6, invalid={1, 4, 5}))

        assert transport.batches == [[0, 2, 3]]
        assert [row["Subject"] for row in success.rows] == ["task 0", "task 2", "task 3"]
        assert error.rows == [
            {"Subject": "task 1", "ERROR": "bad value"},
            {"Subject": "task 4", "ERROR": "bad value"},
            {"Subject": "task 5", "ERROR": "bad value"},
        ]
        assert submitter.batches_sent == 1

    @pytest.mark.asyncio
    async def test_write_order_independent_of_completion_order(self):
        transport = StubTransport(delays=[0.06, 0.03, 0.0])
        submitter, success, _ = make_submitter(transport, batch_size=3, max_concurrency=3)

        await submitter.run(records(9))

        assert transport.completed == [2, 1, 0]
        assert [row["ID"] for row in success.rows] == [f"id-{i}" for i in range(9)]
        submitter.reconciler.finish(9)

    @pytest.mark.asyncio
    async def test_cancel_stops_dispatch_and_drains_in_flight(self):
        submitter = None

        def cancel_on_first(index):
            if index == 0:
                submitter.cancel()

        transport = StubTransport(delays=[0.01], on_submit=cancel_on_first)
        submitter, success, _ = make_submitter(transport, batch_size=3, max_concurrency=1)

        await submitter.run(records(12))

        assert submitter.cancelled
        assert transport.batches == [[0, 1, 2]]
        assert len(success.rows) == 3
        assert submitter.dispatched == 3
        assert submitter.skipped == 3
        assert submitter.read == 6

    @pytest.mark.asyncio
    async def test_sink_failure_propagates(self):
        class BrokenSink(InMemoryRecordSink):
            def write_row(self, row):
                raise OSError("disk full")

        reconciler = ResultReconciler(BrokenSink(), InMemoryRecordSink())
        reconciler.open(["Subject"])
        submitter = BatchSubmitter(
            StubTransport(), reconciler, "Task", Operation.INSERT, batch_size=2, max_concurrency=2
        )
        with pytest.raises(OSError, match="disk full"):
            await submitter.run(records(6))

    def test_rejects_zero_batch_size(self):
        with pytest.raises(ValueError):
            make_submitter(StubTransport(), batch_size=0)
