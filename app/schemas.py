"""Pydantic schemas for the status HTTP layer."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PipelineState(str, Enum):
    """Lifecycle states of the telemetry pipeline."""

    running = "running"
    stopped = "stopped"


class SinkStatus(BaseModel):
    """Counters reported by the storage sink."""

    points_written: int = Field(..., ge=0)
    batches_written: int = Field(..., ge=0)
    queued: int = Field(..., ge=0)


class PipelineStatus(BaseModel):
    """Snapshot of the pipeline exposed via ``GET /pipeline``."""

    state: PipelineState
    datagrams_received: int = Field(..., ge=0)
    decode_errors: int = Field(..., ge=0)
    empty_batches: int = Field(..., ge=0)
    points_emitted: int = Field(..., ge=0)
    sink: Optional[SinkStatus] = None
    last_error: Optional[str] = Field(
        default=None, description="Reason the pipeline stopped, if a sink failure stopped it."
    )
