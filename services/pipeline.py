"""Streaming orchestration from UDP datagrams to time-series points."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from functools import lru_cache
from threading import Event, Lock
from typing import Callable, Iterable, Iterator, Optional, Protocol

from app.schemas import PipelineState
from models.records import MeasurementBatch, Point
from network.udp_source import build_default_source
from services.decoder import decode
from services.errors import DecodeError, SinkError
from services.mapper import PointMapper, is_significant
from storage.influx import build_default_sink

logger = logging.getLogger(__name__)


class DatagramSource(Protocol):
    def __iter__(self) -> Iterator[bytes]:
        ...


class PersistenceSink(Protocol):
    def consume(self, points: Iterable[Point]) -> None:
        ...


@dataclass
class PipelineStats:
    """Counters describing what happened to received datagrams."""

    datagrams_received: int = 0
    decode_errors: int = 0
    empty_batches: int = 0
    points_emitted: int = 0


class Pipeline:
    """Pulls datagrams from a source and pushes points into a sink.

    Decode, filter and map run synchronously on the thread calling
    :meth:`run`, one datagram at a time, so points reach the sink in arrival
    order. The sink applies backpressure by blocking ``consume``.
    """

    def __init__(
        self,
        source: DatagramSource,
        sink: PersistenceSink,
        decoder: Callable[[bytes], MeasurementBatch] = decode,
        mapper: Optional[PointMapper] = None,
    ) -> None:
        self.source = source
        self.sink = sink
        self.decoder = decoder
        self.mapper = mapper or PointMapper()
        self.state = PipelineState.running
        self.last_error: Optional[str] = None
        self._stop_requested = Event()
        self._sink_failure: Optional[SinkError] = None
        self._stats = PipelineStats()
        self._stats_lock = Lock()
        add_failure_listener = getattr(sink, "add_failure_listener", None)
        if callable(add_failure_listener):
            add_failure_listener(self._on_sink_failure)

    @property
    def stats(self) -> PipelineStats:
        with self._stats_lock:
            return dataclasses.replace(self._stats)

    def run(self) -> None:
        """Process datagrams until stopped, the source ends or the sink fails.

        Raises:
            SinkError: when the sink reports an unrecoverable failure.
            RuntimeError: when the pipeline has already stopped.
        """
        if self._sink_failure is not None:
            raise self._sink_failure
        if self.state is PipelineState.stopped:
            raise RuntimeError("Pipeline is stopped; build a new one to restart.")

        logger.info("Pipeline running", extra={"state": self.state.value})
        try:
            self.sink.consume(self._points())
            if self._sink_failure is not None:
                raise self._sink_failure
        except SinkError as exc:
            self.last_error = str(exc)
            self.state = PipelineState.stopped
            logger.error(
                "Pipeline stopped by sink failure",
                extra={"reason": str(exc), "state": self.state.value},
            )
            raise
        finally:
            self.state = PipelineState.stopped

        if not self._stop_requested.is_set():
            logger.info("Datagram source exhausted")
        stats = self.stats
        logger.info(
            "Pipeline stopped",
            extra={
                "state": self.state.value,
                "point_count": stats.points_emitted,
                "error_count": stats.decode_errors,
            },
        )

    def stop(self) -> None:
        """Stop admitting datagrams; the one in flight still completes."""
        if self._stop_requested.is_set():
            return
        self._stop_requested.set()
        self.state = PipelineState.stopped
        close = getattr(self.source, "close", None)
        if callable(close):
            close()

    def _on_sink_failure(self, failure: SinkError) -> None:
        # Called from the sink's writer thread; closing the source wakes a
        # blocked receive so run() can raise the failure.
        self._sink_failure = failure
        self.last_error = str(failure)
        self.state = PipelineState.stopped
        close = getattr(self.source, "close", None)
        if callable(close):
            close()

    def process(self, datagram: bytes) -> Optional[Point]:
        """Decode, filter and map one datagram; ``None`` means it was dropped."""
        with self._stats_lock:
            self._stats.datagrams_received += 1

        try:
            batch = self.decoder(datagram)
        except DecodeError as exc:
            with self._stats_lock:
                self._stats.decode_errors += 1
                error_count = self._stats.decode_errors
            logger.warning(
                "Dropping undecodable datagram",
                extra={
                    "reason": str(exc),
                    "datagram_bytes": len(datagram),
                    "error_count": error_count,
                },
            )
            return None

        if not is_significant(batch):
            with self._stats_lock:
                self._stats.empty_batches += 1
            logger.debug("Skipping empty batch", extra={"robot_id": batch.robot_id})
            return None

        point = self.mapper.to_point(batch)
        with self._stats_lock:
            self._stats.points_emitted += 1
        return point

    def _points(self) -> Iterator[Point]:
        for datagram in self.source:
            if self._stop_requested.is_set() or self._sink_failure is not None:
                break
            point = self.process(datagram)
            if point is not None:
                yield point


@lru_cache
def build_default_pipeline() -> Pipeline:
    """Factory that wires the pipeline with the UDP source and InfluxDB sink."""
    return Pipeline(source=build_default_source(), sink=build_default_sink())
