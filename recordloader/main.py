import asyncio
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, HTTPException
from loguru import logger
from pydantic import BaseModel

from .config import settings
from .exceptions import ObjectTypeNotFound, SetupError
from .log_config import LogConfig, configure_logging
from .models import Operation, TransportKind
from .orchestrator import LoadProcess
from .sinks import InMemoryRecordSink
from .sources import InMemoryRecordSource
from .store import ObjectStore, RecordRejected


class SeedPayload(BaseModel):
    values: Dict[str, str]


class ProcessRequest(BaseModel):
    records: List[Dict[str, str]]
    transport: Optional[TransportKind] = None
    operation: Optional[Operation] = None
    target_object_type: Optional[str] = None
    max_batch_size: Optional[int] = None


configure_logging(LogConfig(level=settings.log_level, format=settings.log_format))

app = FastAPI(
    title="Record Loader",
    version="0.1.0",
    description="Batch record loader for a CRM-style object store.",
)

store = ObjectStore()
last_run: Dict[str, Any] = {}
# the event loop only holds weak references to tasks
background_tasks: Set["asyncio.Task[None]"] = set()


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/objects/stats")
async def object_stats() -> dict:
    return {"objects": store.stats()}


@app.get("/objects/{object_type}/describe")
async def describe_object(object_type: str) -> dict:
    try:
        fields = await store.describe(object_type)
    except ObjectTypeNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {"object_type": object_type, "fields": fields}


@app.post("/objects/{object_type}")
async def seed_object(object_type: str, payload: SeedPayload) -> dict:
    try:
        record_id = store.seed(object_type, payload.values)
    except ObjectTypeNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except RecordRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"id": record_id}


@app.get("/objects/{object_type}/{record_id}")
async def get_object(object_type: str, record_id: str) -> dict:
    try:
        record = await store.get(object_type, record_id)
    except ObjectTypeNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    if record is None:
        raise HTTPException(status_code=404, detail=f"No {object_type} with id {record_id}")
    return {"record": record}


async def _run_process(request: ProcessRequest) -> dict:
    overrides = request.model_dump(exclude_none=True, exclude={"records"})
    run_settings = settings.model_copy(update=overrides)
    success_sink = InMemoryRecordSink("success")
    error_sink = InMemoryRecordSink("error")
    process = LoadProcess(
        run_settings,
        store,
        InMemoryRecordSource(request.records),
        success_sink,
        error_sink,
    )
    summary = await process.run()
    result = {
        "summary": summary,
        "exit_code": summary.exit_code,
        "success": success_sink.rows,
        "errors": error_sink.rows,
    }
    last_run.clear()
    last_run.update(result)
    return result


async def _run_in_background(request: ProcessRequest) -> None:
    try:
        await _run_process(request)
    except SetupError as exc:
        last_run.clear()
        last_run.update({"error": exc.message})
        logger.error("Background load failed: {}", exc.message)
    except Exception as exc:
        last_run.clear()
        last_run.update({"error": f"{type(exc).__name__}: {exc}"})
        logger.opt(exception=exc).error("Background load crashed")


@app.post("/process/run")
async def process_run(request: ProcessRequest, async_mode: bool = False) -> dict:
    if async_mode:
        task = asyncio.create_task(_run_in_background(request))
        background_tasks.add(task)
        task.add_done_callback(background_tasks.discard)
        return {"status": "scheduled"}
    try:
        result = await _run_process(request)
    except SetupError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    return {"status": "completed", "result": result}


@app.get("/process/status")
async def process_status() -> dict:
    return {"last_run": last_run or None}
