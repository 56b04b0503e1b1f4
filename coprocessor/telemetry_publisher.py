"""
telemetry_publisher.py

Sends detection telemetry to the robot controller as JSON datagrams, one
frame per datagram, stamped with a ``packet_number`` that increases by one
per frame.
"""

import logging
import socket
import threading
import time
from typing import Any, Callable, Optional

import wire

log = logging.getLogger(__name__)

MAX_DATAGRAM_SIZE = 4096


class TelemetryPublisher:
    """UDP telemetry sender for the vision pipeline."""

    def __init__(
        self,
        host: str,
        port: int,
        clock: Callable[[], int] = time.monotonic_ns,
    ):
        self.address = (host, port)
        self.clock = clock
        self.packet_number = 0
        self._lock = threading.Lock()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def publish(self, fields: Optional[dict[str, Any]] = None) -> int:
        """
        Send one telemetry frame.

        ``packet_number`` and ``timestamp_ns`` are added to *fields*; a caller
        supplied ``timestamp_ns`` is kept.

        Returns:
            int: The packet number used for this frame.
        Raises:
            ValueError: If the encoded frame is larger than one datagram.
        """
        with self._lock:
            frame = dict(fields or {})
            frame.setdefault("timestamp_ns", self.clock())
            frame["packet_number"] = self.packet_number + 1
            payload = wire.encode(frame)
            if len(payload) > MAX_DATAGRAM_SIZE:
                raise ValueError(
                    f"Telemetry frame is {len(payload)} bytes, limit is {MAX_DATAGRAM_SIZE}"
                )
            self.packet_number += 1
            try:
                self._sock.sendto(payload, self.address)
            except OSError as e:
                log.warning(f"Failed to send telemetry frame #{self.packet_number}: {e}")
            return self.packet_number

    def close(self):
        self._sock.close()
