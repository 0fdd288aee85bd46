"""Exceptions raised across the telemetry pipeline."""

from __future__ import annotations


class DecodeError(ValueError):
    """Raised when a datagram does not match the measurement schema."""


class SinkError(RuntimeError):
    """Raised when the storage sink gives up on writing points."""
