"""Blocking UDP datagram source for the telemetry pipeline."""
from __future__ import annotations

import logging
import socket
import threading
from typing import Iterator, Optional

from settings import get_settings

logger = logging.getLogger(__name__)

BUFFER_SIZE = 65535  # maximum UDP payload


class UdpDatagramSource:
    """Iterates over payloads received on a local UDP port.

    Iteration blocks until a datagram arrives and ends once :meth:`close`
    is called. The socket is polled with a timeout so closing from another
    thread is noticed promptly.
    """

    def __init__(
        self,
        port: int,
        host: str = "0.0.0.0",
        poll_interval: float = 0.5,
    ) -> None:
        self._closed = threading.Event()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind((host, port))
        self._sock.settimeout(poll_interval)
        self.host, self.port = self._sock.getsockname()[:2]

    def __iter__(self) -> Iterator[bytes]:
        while not self._closed.is_set():
            try:
                data, _ = self._sock.recvfrom(BUFFER_SIZE)
            except socket.timeout:
                continue
            except OSError:
                if self._closed.is_set():
                    break
                raise
            yield data

    def __enter__(self) -> "UdpDatagramSource":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Stop iteration and release the socket."""
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._sock.close()
        except OSError:
            pass
        logger.info("UDP source closed", extra={"local_port": self.port})


def build_default_source(port: Optional[int] = None) -> UdpDatagramSource:
    settings = get_settings()
    local_port = settings.local_port if port is None else port
    source = UdpDatagramSource(port=local_port)
    logger.info("Listening for datagrams", extra={"local_port": source.port})
    return source
