import queue
import time
from typing import Any, Callable, Iterator, List

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from models.records import MeasurementBatch, Point, SingleMeasurement
from services.decoder import encode
from services.errors import SinkError
from services.pipeline import Pipeline
from storage.influx import InfluxSink


class QueueSource:
    def __init__(self) -> None:
        self.datagrams: "queue.Queue[bytes]" = queue.Queue()
        self.closed = False

    def __iter__(self) -> Iterator[bytes]:
        while not self.closed:
            try:
                yield self.datagrams.get(timeout=0.05)
            except queue.Empty:
                continue

    def close(self) -> None:
        self.closed = True


class FakeWriteApi:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.records: List[Any] = []

    def write(self, bucket: str, record: Any, **kwargs: Any) -> None:
        if self.error is not None:
            raise self.error
        self.records.extend(record)


def _datagram(robot_id: int) -> bytes:
    return encode(
        MeasurementBatch(
            robot_id=robot_id,
            measurements=[SingleMeasurement(label="temp", value=1.5, ten_fold_multiplier=1)],
        )
    )


def _install_pipeline(monkeypatch, write_api: FakeWriteApi) -> Pipeline:
    source = QueueSource()
    sink = InfluxSink(write_api, bucket="test", batch_size=1, flush_interval=0.05)
    pipeline = Pipeline(source=source, sink=sink)
    cleared: List[bool] = []

    def build_test_pipeline() -> Pipeline:
        return pipeline

    build_test_pipeline.cache_clear = lambda: cleared.append(True)  # type: ignore[attr-defined]
    build_test_pipeline.cleared = cleared  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_pipeline", build_test_pipeline)
    monkeypatch.setattr("app.api.build_default_pipeline", build_test_pipeline)
    monkeypatch.setattr("services.pipeline.build_default_pipeline", build_test_pipeline)
    return pipeline


def _poll_status(
    client: TestClient,
    condition: Callable[[dict], bool],
    timeout: float = 5.0,
) -> dict:
    deadline = time.monotonic() + timeout
    last_payload: dict | None = None
    while time.monotonic() < deadline:
        response = client.get("/pipeline")
        assert response.status_code == 200
        payload = response.json()
        last_payload = payload
        if condition(payload):
            return payload
        time.sleep(0.05)
    pytest.fail(f"Pipeline never reached the expected status: {last_payload}")


def test_status_reports_ingest_progress(monkeypatch) -> None:
    write_api = FakeWriteApi()
    pipeline = _install_pipeline(monkeypatch, write_api)

    with TestClient(create_app()) as client:
        pipeline.source.datagrams.put(_datagram(1))
        pipeline.source.datagrams.put(b"\x02junk")
        pipeline.source.datagrams.put(_datagram(2))

        payload = _poll_status(
            client,
            lambda body: body["sink"] is not None and body["sink"]["points_written"] == 2,
        )

        assert payload["state"] == "running"
        assert payload["datagrams_received"] == 3
        assert payload["decode_errors"] == 1
        assert payload["points_emitted"] == 2
        assert payload["last_error"] is None

    assert pipeline.state.value == "stopped"
    assert pipeline.source.closed is True
    with pytest.raises(SinkError):
        pipeline.sink.write(Point(measurement_name="Robot #9", fields={"temp": 1.0}))
    lines = [record.to_line_protocol() for record in write_api.records]
    assert [line.split(" temp=")[0] for line in lines] == ["Robot\\ #1", "Robot\\ #2"]


def test_status_reports_fatal_sink_failure(monkeypatch) -> None:
    write_api = FakeWriteApi(error=ConnectionError("influx is down"))
    pipeline = _install_pipeline(monkeypatch, write_api)

    with TestClient(create_app()) as client:
        pipeline.source.datagrams.put(_datagram(5))
        payload = _poll_status(client, lambda body: body["state"] == "stopped")

    assert "influx is down" in payload["last_error"]
    assert payload["sink"]["points_written"] == 0
    assert payload["points_emitted"] == 1
    assert pipeline.source.closed is True


def test_lifespan_clears_pipeline_cache(monkeypatch) -> None:
    pipeline = _install_pipeline(monkeypatch, FakeWriteApi())
    from app import main

    with TestClient(create_app()):
        assert pipeline.state.value == "running"

    assert main.build_default_pipeline.cleared == [True]


def test_health_endpoints(monkeypatch) -> None:
    _install_pipeline(monkeypatch, FakeWriteApi())

    with TestClient(create_app()) as client:
        health = client.get("/health")
        root = client.get("/")

    assert health.status_code == 200
    assert health.json() == {"status": "ok"}
    assert root.status_code == 200
    assert root.json()["status"] == "ok"
