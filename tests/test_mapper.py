"""Unit tests for the filtering and point mapping logic."""

from __future__ import annotations

import math

import pytest

from models.records import MeasurementBatch, Point, SingleMeasurement
from services.decoder import decode, encode
from services.mapper import PointMapper, is_significant, normalize


def _reading(label: str, value: float, multiplier: int = 0) -> SingleMeasurement:
    """Helper to build deterministic readings."""

    return SingleMeasurement(label=label, value=value, ten_fold_multiplier=multiplier)


def test_empty_batch_is_not_significant() -> None:
    assert is_significant(MeasurementBatch(robot_id=7, measurements=[])) is False
    assert is_significant(MeasurementBatch(robot_id=7, measurements=[_reading("a", 1.0)])) is True


def test_to_point_names_measurement_after_robot() -> None:
    point = PointMapper().to_point(MeasurementBatch(robot_id=42, measurements=[_reading("a", 1.0)]))

    assert point.measurement_name == "Robot #42"


def test_duplicate_labels_last_write_wins() -> None:
    batch = MeasurementBatch(
        robot_id=3,
        measurements=[_reading("temp", 21.0, 0), _reading("temp", 5.0, 1)],
    )

    point = PointMapper().to_point(batch)

    assert point == Point(measurement_name="Robot #3", fields={"temp": 50.0})


def test_normalization_applies_negative_exponents() -> None:
    batch = MeasurementBatch(
        robot_id=1,
        measurements=[
            _reading("current", 1250.0, -3),
            _reading("distance", 4.0, 2),
            _reading("raw", 0.5, 0),
        ],
    )

    point = PointMapper().to_point(batch)

    assert point.fields == pytest.approx({"current": 1.25, "distance": 400.0, "raw": 0.5})


def test_normalize_passes_float_range_overflow_through() -> None:
    assert normalize(_reading("big", 2.0, 400)) == math.inf
    assert normalize(_reading("negative", -2.0, 400)) == -math.inf
    assert normalize(_reading("tiny", 2.0, -400)) == 0.0


def test_mapping_twice_yields_equal_points() -> None:
    batch = MeasurementBatch(robot_id=5, measurements=[_reading("a", 1.5, 1), _reading("b", 3.0, -1)])
    mapper = PointMapper()

    first = mapper.to_point(batch)
    second = mapper.to_point(batch)

    assert first == second
    assert first is not second


def test_decoded_batch_maps_to_last_reading_per_label() -> None:
    batch = MeasurementBatch(
        robot_id=9,
        measurements=[
            _reading("speed", 1.0, 0),
            _reading("heading", 9.0, 1),
            _reading("speed", 2.5, 2),
            _reading("heading", 1.8, 2),
        ],
    )

    point = PointMapper().to_point(decode(encode(batch)))

    assert point.fields == pytest.approx({"speed": 250.0, "heading": 180.0})
