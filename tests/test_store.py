import csv
import io
from datetime import date

import pytest

from recordloader.exceptions import ObjectTypeNotFound, TransportError
from recordloader.models import FieldType, Operation
from recordloader.store import ObjectStore, RecordRejected


class TestSyncApi:
    @pytest.mark.asyncio
    async def test_describe(self, store):
        fields = await store.describe("Task")
        assert fields["ActivityDate"] == FieldType.DATE
        with pytest.raises(ObjectTypeNotFound):
            await store.describe("Opportunity")

    @pytest.mark.asyncio
    async def test_create_coerces_and_assigns_ids(self, store):
        results = await store.create(
            "Task", [{"Subject": "a", "ActivityDate": "2024-02-01"}, {"Subject": "b"}]
        )
        assert [r.success for r in results] == [True, True]
        assert results[0].id.startswith("00T") and len(results[0].id) == 15
        assert results[0].id != results[1].id
        row = await store.get("Task", results[0].id)
        assert row["ActivityDate"] == date(2024, 2, 1)
        assert row["Description"] is None

    @pytest.mark.asyncio
    async def test_create_rejections(self, store):
        results = await store.create(
            "Account",
            [
                {"NumberOfEmployees": "10"},
                {"Name": "Acme", "NumberOfEmployees": "ten"},
                {"Name": "Acme", "Id": "001000000000009"},
                {"Name": "Acme", "Colour": "red"},
            ],
        )
        assert [r.errors for r in results] == [
            ["Required fields are missing: [Name]"],
            ["Error converting value to correct data type: Failed to parse number: ten"],
            ["cannot specify Id in an insert call"],
            ["No such column 'Colour' on entity 'Account'"],
        ]

    @pytest.mark.asyncio
    async def test_update(self, store):
        record_id = store.seed("Task", {"Subject": "s", "Description": "asdf"})
        results = await store.update(
            "Task",
            [
                {"Id": record_id, "Description": "changed", "Subject": ""},
                {"Subject": "no id"},
                {"Id": "00T999999999999"},
            ],
        )
        assert results[0].success and not results[0].created
        assert results[1].errors == ["Id not specified in an update call"]
        assert results[2].errors == ["invalid cross reference id"]
        row = await store.get("Task", record_id)
        assert row["Description"] == "changed"
        assert row["Subject"] == "s"

    def test_seed_rejects_bad_values(self, store):
        with pytest.raises(RecordRejected):
            store.seed("Account", {})
        assert store.stats()["Account"] == 0


class TestBulkApi:
    async def _queue(self, store, payload, operation=Operation.INSERT):
        job_id = await store.create_job("Task", operation)
        batch_id = await store.add_batch(job_id, payload)
        await store.close_job(job_id)
        return job_id, batch_id

    @pytest.mark.asyncio
    async def test_batch_completes_after_polls(self):
        store = ObjectStore(bulk_polls_to_complete=3)
        job_id, batch_id = await self._queue(store, "Subject,Description\nx,#N/A\n")
        states = [(await store.get_batch(job_id, batch_id))["state"] for _ in range(3)]
        assert states == ["InProgress", "InProgress", "Completed"]

        results = list(csv.DictReader(io.StringIO(await store.get_batch_results(job_id, batch_id))))
        assert len(results) == 1
        assert results[0]["Success"] == "true"
        assert results[0]["Created"] == "true"
        row = await store.get("Task", results[0]["Id"])
        assert row["Description"] is None

    @pytest.mark.asyncio
    async def test_results_before_completion(self, store):
        store.stall_bulk = True
        job_id, batch_id = await self._queue(store, "Subject\nx\n")
        assert (await store.get_batch(job_id, batch_id))["state"] == "InProgress"
        with pytest.raises(TransportError, match="InvalidBatch"):
            await store.get_batch_results(job_id, batch_id)
        await store.abort_job(job_id)
        assert (await store.get_batch(job_id, batch_id))["state"] == "Not Processed"

    @pytest.mark.asyncio
    async def test_empty_payload_fails_batch(self, store):
        job_id, batch_id = await self._queue(store, "")
        status = await store.get_batch(job_id, batch_id)
        assert status["state"] == "Failed"
        assert status["stateMessage"] == "InvalidBatch: Empty batch payload"

    @pytest.mark.asyncio
    async def test_closed_job_rejects_batches(self, store):
        job_id, _ = await self._queue(store, "Subject\nx\n")
        with pytest.raises(TransportError, match="InvalidJobState"):
            await store.add_batch(job_id, "Subject\ny\n")


class TestFaultInjection:
    @pytest.mark.asyncio
    async def test_targeted_failures(self, store):
        store.inject_failures(1, ConnectionError("reset"), calls=["create"])
        await store.describe("Task")
        with pytest.raises(ConnectionError):
            await store.create("Task", [{"Subject": "x"}])
        results = await store.create("Task", [{"Subject": "x"}])
        assert results[0].success
        assert store.calls == ["describe", "create", "create"]
