from __future__ import annotations
import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.errors import SinkError
from services.pipeline import Pipeline, build_default_pipeline

logger = logging.getLogger(__name__)

_SHUTDOWN_TIMEOUT_SECONDS = 5.0


def _run_pipeline(pipeline: Pipeline) -> None:
    try:
        pipeline.run()
    except SinkError:
        # Already logged by the pipeline; the state stays visible via /pipeline.
        return


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    pipeline = build_default_pipeline()
    worker = threading.Thread(
        target=_run_pipeline,
        args=(pipeline,),
        name="TelemetryPipeline",
        daemon=True,
    )
    worker.start()
    try:
        yield
    finally:
        pipeline.stop()
        worker.join(timeout=_SHUTDOWN_TIMEOUT_SECONDS)
        close = getattr(pipeline.sink, "close", None)
        if callable(close):
            try:
                close()
            except SinkError as exc:
                logger.error("Sink failed while flushing on shutdown", extra={"reason": str(exc)})
        build_default_pipeline.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Robot Telemetry Bridge",
        description="Streams robot UDP telemetry into InfluxDB and reports ingest status.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
