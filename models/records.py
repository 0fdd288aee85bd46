"""Domain records passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(slots=True)
class SingleMeasurement:
    """One named reading; the real value is ``value * 10 ** ten_fold_multiplier``."""

    label: str
    value: float
    ten_fold_multiplier: int = 0


@dataclass(slots=True)
class MeasurementBatch:
    """A decoded telemetry datagram from a single robot."""

    robot_id: int
    measurements: List[SingleMeasurement] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Point:
    """Storage-facing record. The backend assigns the timestamp on write."""

    measurement_name: str
    fields: Dict[str, float]
