"""Filtering and point construction for decoded measurement batches."""

from __future__ import annotations

import math
from typing import Dict

from models.records import MeasurementBatch, Point, SingleMeasurement

MEASUREMENT_PREFIX = "Robot #"


def is_significant(batch: MeasurementBatch) -> bool:
    """Heartbeat-only batches carry no readings and are not stored."""
    return bool(batch.measurements)


def normalize(measurement: SingleMeasurement) -> float:
    """Scale a reading by its base-10 exponent.

    Results outside the float range are passed through as IEEE-754 computes
    them (``inf``, ``0.0`` or ``nan``). InfluxDB cannot store non-finite
    values, so the sink leaves such fields out of the written point.
    """
    try:
        scale = 10.0 ** measurement.ten_fold_multiplier
    except OverflowError:
        scale = math.inf
    return measurement.value * scale


class PointMapper:
    """Pure mapping component that can be unit tested in isolation."""

    def to_point(self, batch: MeasurementBatch) -> Point:
        fields: Dict[str, float] = {}
        # Duplicate labels: the later reading overwrites the earlier one.
        for measurement in batch.measurements:
            fields[measurement.label] = normalize(measurement)

        return Point(
            measurement_name=f"{MEASUREMENT_PREFIX}{batch.robot_id}",
            fields=fields,
        )
