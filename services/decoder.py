"""Binary codec for robot measurement datagrams.

Layout (version 1, network byte order)::

    uint8   schema version
    int32   robot id
    uint16  measurement count
    count x (uint16 label length, label bytes (UTF-8), float64 value,
             int32 tenfold multiplier)

The whole buffer must be consumed; anything left over is rejected.
"""

from __future__ import annotations

import struct

from models.records import MeasurementBatch, SingleMeasurement
from services.errors import DecodeError

SCHEMA_VERSION = 1

_HEADER = struct.Struct("!BiH")
_LABEL_LENGTH = struct.Struct("!H")
_READING = struct.Struct("!di")

_MAX_COUNT = 0xFFFF
_MAX_LABEL_BYTES = 0xFFFF


def decode(data: bytes) -> MeasurementBatch:
    """Decode a datagram payload into a :class:`MeasurementBatch`.

    Raises:
        DecodeError: if the payload is truncated, carries trailing bytes,
            uses an unsupported schema version or contains an invalid label.
    """
    view = memoryview(data)
    if len(view) < _HEADER.size:
        raise DecodeError(
            f"Datagram too short for header: {len(view)} < {_HEADER.size} bytes."
        )

    version, robot_id, count = _HEADER.unpack_from(view, 0)
    if version != SCHEMA_VERSION:
        raise DecodeError(f"Unsupported schema version {version}.")

    offset = _HEADER.size
    measurements: list[SingleMeasurement] = []
    for index in range(count):
        if offset + _LABEL_LENGTH.size > len(view):
            raise DecodeError(f"Truncated label length in measurement {index}.")
        (label_length,) = _LABEL_LENGTH.unpack_from(view, offset)
        offset += _LABEL_LENGTH.size

        if label_length == 0:
            raise DecodeError(f"Empty label in measurement {index}.")
        if offset + label_length + _READING.size > len(view):
            raise DecodeError(f"Truncated measurement {index}.")
        try:
            label = bytes(view[offset : offset + label_length]).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Label of measurement {index} is not valid UTF-8.") from exc
        offset += label_length

        value, multiplier = _READING.unpack_from(view, offset)
        offset += _READING.size
        measurements.append(
            SingleMeasurement(label=label, value=value, ten_fold_multiplier=multiplier)
        )

    if offset != len(view):
        raise DecodeError(f"{len(view) - offset} trailing bytes after measurements.")

    return MeasurementBatch(robot_id=robot_id, measurements=measurements)


def encode(batch: MeasurementBatch) -> bytes:
    """Serialize a batch using the current schema version."""
    if len(batch.measurements) > _MAX_COUNT:
        raise ValueError(f"Too many measurements: {len(batch.measurements)} > {_MAX_COUNT}.")

    try:
        parts = [_HEADER.pack(SCHEMA_VERSION, batch.robot_id, len(batch.measurements))]
        for measurement in batch.measurements:
            label = measurement.label.encode("utf-8")
            if not label:
                raise ValueError("Measurement labels must not be empty.")
            if len(label) > _MAX_LABEL_BYTES:
                raise ValueError(f"Label {measurement.label[:32]!r}... is too long.")
            parts.append(_LABEL_LENGTH.pack(len(label)))
            parts.append(label)
            parts.append(
                _READING.pack(float(measurement.value), measurement.ten_fold_multiplier)
            )
    except struct.error as exc:
        raise ValueError(f"Batch does not fit the wire layout: {exc}") from exc
    return b"".join(parts)
