from __future__ import annotations

import logging
import queue
import threading
import time
import math
from typing import Any, Callable, Iterable, List, Optional, Protocol

from influxdb_client import InfluxDBClient
from influxdb_client import Point as InfluxPoint
from influxdb_client.client.write.retry import WritesRetry
from influxdb_client.client.write_api import SYNCHRONOUS

from models.records import Point
from services.errors import SinkError
from settings import get_settings

logger = logging.getLogger(__name__)

_CLOSE = object()
_PUT_POLL_SECONDS = 0.1
# InfluxDB 1.8+ ignores the org on its v2-compatible write endpoint.
_COMPAT_ORG = "-"


class WriteApi(Protocol):
    def write(self, bucket: str, record: Any, **kwargs: Any) -> Any:
        ...


class InfluxSink:
    """Buffers points in a bounded queue and writes them in batches.

    ``write`` blocks while the queue is full, so a slow backend slows the
    caller down instead of growing memory. Retries are handled by the
    client's retry policy; once a batch fails for good the sink stops,
    notifies its failure listeners from the writer thread and every later
    call raises :class:`SinkError`.

    InfluxDB cannot store ``inf`` or ``nan``: such fields are left out of
    the written record, and a point left without fields is skipped and not
    counted in :attr:`points_written`.
    """

    def __init__(
        self,
        write_api: WriteApi,
        bucket: str,
        batch_size: int = 100,
        flush_interval: float = 1.0,
        queue_size: int = 1000,
        client: Optional[InfluxDBClient] = None,
    ) -> None:
        self.bucket = bucket
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self._write_api = write_api
        self._client = client
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=queue_size)
        self._lock = threading.Lock()
        self._failure: Optional[SinkError] = None
        self._failure_listeners: List[Callable[[SinkError], None]] = []
        self._closed = False
        self._points_written = 0
        self._batches_written = 0
        self._thread = threading.Thread(
            target=self._run,
            name="InfluxSinkWriter",
            daemon=True,
        )
        self._thread.start()

    @property
    def points_written(self) -> int:
        with self._lock:
            return self._points_written

    @property
    def batches_written(self) -> int:
        with self._lock:
            return self._batches_written

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    @property
    def failure(self) -> Optional[SinkError]:
        return self._failure

    def add_failure_listener(self, listener: Callable[[SinkError], None]) -> None:
        """Register ``listener`` to be called once the sink has failed for good.

        Listeners run on the writer thread; a listener added after the
        failure is called immediately.
        """
        with self._lock:
            failure = self._failure
            if failure is None:
                self._failure_listeners.append(listener)
        if failure is not None:
            listener(failure)

    def write(self, point: Point) -> None:
        """Queue a point, blocking while the buffer is full."""
        if self._closed:
            raise SinkError("Sink is closed.")
        self._put(point)

    def consume(self, points: Iterable[Point]) -> None:
        """Write every point of a (possibly unbounded) iterable in order.

        Raises:
            SinkError: when the writer failed, even if it failed after the
                last point was queued.
        """
        for point in points:
            self.write(point)
        self._raise_if_failed()

    def close(self) -> None:
        """Flush queued points, stop the writer and release the client."""
        if self._closed:
            return
        self._closed = True
        try:
            if self._thread.is_alive():
                self._put(_CLOSE)
                self._thread.join()
        finally:
            if self._client is not None:
                self._client.close()
        self._raise_if_failed()

    def _put(self, item: object) -> None:
        while True:
            self._raise_if_failed()
            if not self._thread.is_alive():
                self._raise_if_failed()
                raise SinkError("Sink writer is not running.")
            try:
                self._queue.put(item, timeout=_PUT_POLL_SECONDS)
                return
            except queue.Full:
                continue

    def _raise_if_failed(self) -> None:
        if self._failure is not None:
            raise self._failure

    def _run(self) -> None:
        batch: List[Point] = []
        deadline = 0.0
        while True:
            if batch:
                timeout: Optional[float] = max(0.0, deadline - time.monotonic())
            else:
                timeout = None
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                item = None

            if item is _CLOSE:
                if batch:
                    self._flush(batch)
                return
            if item is not None:
                if not batch:
                    deadline = time.monotonic() + self.flush_interval
                batch.append(item)  # type: ignore[arg-type]

            if batch and (len(batch) >= self.batch_size or time.monotonic() >= deadline):
                if not self._flush(batch):
                    return
                batch = []

    def _flush(self, batch: List[Point]) -> bool:
        records = [record for record in map(self._to_record, batch) if record is not None]
        if not records:
            return True
        try:
            self._write_api.write(bucket=self.bucket, record=records)
        except Exception as exc:  # noqa: BLE001 - surfaced through SinkError
            logger.exception(
                "Giving up on batch after retries",
                extra={"batch_size": len(records), "db_name": self.bucket},
            )
            failure = SinkError(f"Failed to write {len(records)} points: {exc}")
            failure.__cause__ = exc
            self._fail(failure)
            return False

        with self._lock:
            self._points_written += len(records)
            self._batches_written += 1
        logger.debug("Wrote batch", extra={"batch_size": len(records)})
        return True

    def _fail(self, failure: SinkError) -> None:
        with self._lock:
            self._failure = failure
            listeners = list(self._failure_listeners)
            self._failure_listeners.clear()
        for listener in listeners:
            try:
                listener(failure)
            except Exception:  # noqa: BLE001 - the failure itself is already recorded
                logger.exception("Sink failure listener raised")

    @staticmethod
    def _to_record(point: Point) -> Optional[InfluxPoint]:
        record = InfluxPoint(point.measurement_name)
        written = 0
        for label, value in point.fields.items():
            if not math.isfinite(value):
                logger.debug(
                    "Skipping non-finite field",
                    extra={"measurement": point.measurement_name, "reason": f"{label}={value}"},
                )
                continue
            record.field(label, value)
            written += 1
        if not written:
            logger.debug(
                "Skipping point without storable fields",
                extra={"measurement": point.measurement_name},
            )
            return None
        return record


def _token(username: Optional[str], password: Optional[str]) -> Optional[str]:
    if not username:
        return None
    return f"{username}:{password or ''}"


def build_default_sink(
    address: Optional[str] = None,
    name: Optional[str] = None,
) -> InfluxSink:
    settings = get_settings()
    db_address = settings.db_address if address is None else address
    db_name = settings.db_name if name is None else name
    retries = WritesRetry(
        total=settings.max_retries,
        retry_interval=settings.retry_interval,
        exponential_base=2,
    )
    client = InfluxDBClient(
        url=db_address.rstrip("/"),
        token=_token(settings.db_username, settings.db_password),
        org=_COMPAT_ORG,
        retries=retries,
    )
    logger.info(
        "Connecting sink",
        extra={"db_address": db_address, "db_name": db_name},
    )
    return InfluxSink(
        write_api=client.write_api(write_options=SYNCHRONOUS),
        bucket=db_name,
        batch_size=settings.batch_size,
        flush_interval=settings.flush_interval,
        queue_size=settings.queue_size,
        client=client,
    )
