from __future__ import annotations

import signal
from dataclasses import dataclass
from typing import List, Optional

import typer

from cli.client import StatusClient
from cli.config import DEFAULT_SEND_HOST, CLIConfig, load_config
from cli.render import render_status
from cli.sender import parse_measurement, send_datagrams
from logging_config import configure_logging
from models.records import MeasurementBatch
from network.udp_source import build_default_source
from services.decoder import encode
from services.errors import SinkError
from services.pipeline import Pipeline
from settings import get_settings
from storage.influx import build_default_sink


@dataclass
class CLIState:
    config: CLIConfig
    client: StatusClient


app = typer.Typer(
    help="Bridge robot UDP telemetry into InfluxDB.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _install_stop_handlers(pipeline: Pipeline) -> dict:
    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, lambda _signum, _frame: pipeline.stop())
    return previous


def _restore_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Status service base URL (defaults to STATUS_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for the status service to answer.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = StatusClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("run")
def run_command(
    local_port: Optional[int] = typer.Option(
        None,
        "--local-port",
        "-p",
        min=0,
        max=65535,
        help="UDP port to listen on (defaults to ROBOT_UDP_PORT env or 10000).",
    ),
    db_address: Optional[str] = typer.Option(
        None,
        "--db-address",
        help="InfluxDB URL (defaults to INFLUX_ADDRESS env or http://localhost:8086/).",
    ),
    db_name: Optional[str] = typer.Option(
        None,
        "--db-name",
        help="Database to write measurements to (defaults to INFLUX_DATABASE env or test).",
    ),
) -> None:
    """Receive measurement datagrams and persist them until interrupted."""
    configure_logging()
    settings = get_settings()
    address = db_address or settings.db_address
    name = db_name or settings.db_name

    source = build_default_source(port=local_port)
    try:
        sink = build_default_sink(address=address, name=name)
    except Exception:
        source.close()
        raise
    pipeline = Pipeline(source=source, sink=sink)

    typer.echo(f"Forwarding udp://{source.host}:{source.port} to {address} (database {name!r}) ...")
    failure: Optional[SinkError] = None
    previous = _install_stop_handlers(pipeline)
    try:
        pipeline.run()
    except SinkError as exc:
        failure = exc
    finally:
        _restore_handlers(previous)
        source.close()
        try:
            sink.close()
        except SinkError as exc:
            failure = failure or exc

    if failure is not None:
        typer.secho(f"Pipeline stopped: {failure}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    stats = pipeline.stats
    typer.secho(
        f"Pipeline stopped. points={stats.points_emitted} decode_errors={stats.decode_errors}",
        fg=typer.colors.GREEN,
    )


@app.command("send")
def send_command(
    robot_id: int = typer.Option(..., "--robot-id", "-r", help="Robot identifier."),
    measurement: List[str] = typer.Option(
        [],
        "--measurement",
        "-m",
        help="Reading as label:value[:multiplier]; repeat for several readings.",
    ),
    host: str = typer.Option(DEFAULT_SEND_HOST, "--host", help="Destination host."),
    port: Optional[int] = typer.Option(
        None,
        "--port",
        min=1,
        max=65535,
        help="Destination UDP port (defaults to ROBOT_UDP_PORT env or 10000).",
    ),
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of datagrams to send."),
    interval: float = typer.Option(0.0, "--interval", min=0.0, help="Seconds between datagrams."),
) -> None:
    """Encode a measurement batch and send it as UDP datagrams."""
    batch = MeasurementBatch(
        robot_id=robot_id,
        measurements=[parse_measurement(text) for text in measurement],
    )
    try:
        payload = encode(batch)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    destination_port = port if port is not None else get_settings().local_port
    typer.echo(
        f"Sending {len(batch.measurements)} readings for robot {robot_id} "
        f"to udp://{host}:{destination_port} ..."
    )
    sent = send_datagrams(payload, host, destination_port, count=count, interval=interval)
    typer.secho(f"Sent {sent} datagram(s) of {len(payload)} bytes.", fg=typer.colors.GREEN)


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Show pipeline state and counters from the status service."""
    state = _get_state(ctx)
    payload = state.client.get_status()
    render_status(payload)
