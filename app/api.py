"""HTTP route definitions for the status service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from app.schemas import PipelineStatus, SinkStatus
from services.pipeline import Pipeline, build_default_pipeline

router = APIRouter()


def get_pipeline() -> Pipeline:
    return build_default_pipeline()


def describe_pipeline(pipeline: Pipeline) -> PipelineStatus:
    stats = pipeline.stats
    sink_status = None
    if all(hasattr(pipeline.sink, name) for name in ("points_written", "batches_written", "queued")):
        sink_status = SinkStatus(
            points_written=pipeline.sink.points_written,  # type: ignore[attr-defined]
            batches_written=pipeline.sink.batches_written,  # type: ignore[attr-defined]
            queued=pipeline.sink.queued,  # type: ignore[attr-defined]
        )
    return PipelineStatus(
        state=pipeline.state,
        datagrams_received=stats.datagrams_received,
        decode_errors=stats.decode_errors,
        empty_batches=stats.empty_batches,
        points_emitted=stats.points_emitted,
        sink=sink_status,
        last_error=pipeline.last_error,
    )


@router.get(
    "/pipeline",
    response_model=PipelineStatus,
    summary="Report pipeline state and counters.",
)
async def get_pipeline_status(
    pipeline: Pipeline = Depends(get_pipeline),
) -> PipelineStatus:
    return describe_pipeline(pipeline)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /pipeline for ingest status."}
