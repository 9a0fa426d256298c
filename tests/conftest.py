# tests/conftest.py
from datetime import timedelta

import pytest

from recordloader.config import Settings
from recordloader.matrix import config_id, config_product
from recordloader.models import TransportKind
from recordloader.orchestrator import LoadProcess
from recordloader.sinks import InMemoryRecordSink
from recordloader.sources import InMemoryRecordSource
from recordloader.store import ObjectStore

# Fast polling and no backoff so bulk and retry paths finish quickly.
BASE_SETTINGS = Settings(
    target_object_type="Task",
    max_concurrency=2,
    bulk_poll_interval=timedelta(milliseconds=1),
    bulk_job_timeout=timedelta(seconds=5),
    retry_base_delay=0.0,
    retry_max_delay=0.0,
)

TRANSPORT_AXES = ("transport",)
TRANSPORT_MATRIX = config_product(BASE_SETTINGS, transport=list(TransportKind))


@pytest.fixture(params=TRANSPORT_MATRIX, ids=lambda s: config_id(s, TRANSPORT_AXES))
def loader_settings(request) -> Settings:
    """Runs the requesting test once per transport."""
    return request.param


@pytest.fixture
def base_settings() -> Settings:
    return BASE_SETTINGS.model_copy()


@pytest.fixture
def store() -> ObjectStore:
    return ObjectStore()


@pytest.fixture
def run_load(store):
    """Run a load of in-memory records; returns (process, success rows, error rows)."""

    async def _run(settings, records, columns=None):
        success = InMemoryRecordSink("success")
        errors = InMemoryRecordSink("error")
        process = LoadProcess(
            settings, store, InMemoryRecordSource(records, columns), success, errors
        )
        await process.run()
        return process, success.rows, errors.rows

    return _run
