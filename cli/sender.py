"""UDP test producer for measurement datagrams."""
from __future__ import annotations

import socket
import time
from typing import Callable, Optional

import typer

from models.records import SingleMeasurement


def parse_measurement(text: str) -> SingleMeasurement:
    """Parse ``label:value[:multiplier]`` into a measurement."""
    parts = text.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise typer.BadParameter(
            f"Expected label:value[:multiplier], got {text!r}.", param_hint="--measurement"
        )
    try:
        value = float(parts[1])
        multiplier = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as exc:
        raise typer.BadParameter(
            f"Invalid number in {text!r}.", param_hint="--measurement"
        ) from exc
    return SingleMeasurement(label=parts[0], value=value, ten_fold_multiplier=multiplier)


def send_datagrams(
    payload: bytes,
    host: str,
    port: int,
    count: int = 1,
    interval: float = 0.0,
    on_sent: Optional[Callable[[int], None]] = None,
) -> int:
    """Send ``payload`` ``count`` times, sleeping ``interval`` seconds in between."""
    sent = 0
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        destination = (host, port)
        for index in range(count):
            sock.sendto(payload, destination)
            sent += 1
            if on_sent is not None:
                on_sent(sent)
            if interval and index < count - 1:
                time.sleep(interval)
    return sent
