from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_status(payload: Dict[str, Any]) -> None:
    echo_heading("Pipeline")
    state = payload.get("state")
    color = typer.colors.GREEN if state == "running" else typer.colors.RED
    typer.secho(f"state: {state}", fg=color)
    echo_key_values(
        [
            ("datagrams_received", payload.get("datagrams_received")),
            ("decode_errors", payload.get("decode_errors")),
            ("empty_batches", payload.get("empty_batches")),
            ("points_emitted", payload.get("points_emitted")),
        ]
    )
    if payload.get("last_error"):
        typer.secho(f"last_error: {payload['last_error']}", fg=typer.colors.RED)

    sink = payload.get("sink") or {}
    typer.echo()
    echo_heading("Sink")
    if sink:
        echo_key_values(
            [
                ("points_written", sink.get("points_written")),
                ("batches_written", sink.get("batches_written")),
                ("queued", sink.get("queued")),
            ]
        )
    else:
        typer.echo("No sink counters available.")
