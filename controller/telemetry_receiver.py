"""
telemetry_receiver.py

Implements TelemetryReceiver, the UDP listener for detection telemetry sent
by the vision coprocessor. Decodes each datagram into an immutable snapshot
on a background thread and tracks ``packet_number`` to report lost frames.
"""

import logging
import socket
import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional

import wire

from .exceptions import BindError, FieldNotFound, FieldTypeError
from .snapshot import TelemetrySnapshot

log = logging.getLogger(__name__)

MAX_DATAGRAM_SIZE = 4096
NO_SEQUENCE = -1


@dataclass(frozen=True)
class PacketLoss:
    """Inclusive range of packet numbers that never arrived."""

    first: int
    last: int

    @property
    def count(self) -> int:
        return self.last - self.first + 1


@dataclass
class ReceiverStats:
    frames_received: int = 0
    frames_dropped: int = 0
    loss_events: int = 0
    packets_lost: int = 0


def sequence_number(snapshot: Optional[TelemetrySnapshot]) -> int:
    """Return ``packet_number`` from a snapshot, or -1 if unavailable."""
    if not snapshot:
        return NO_SEQUENCE
    try:
        return snapshot.get_int("packet_number")
    except FieldNotFound:
        log.debug("packet_number not found in telemetry frame.")
    except FieldTypeError as e:
        log.debug(f"Error parsing packet_number: {e}")
    return NO_SEQUENCE


def detect_loss(previous: int, current: int) -> Optional[PacketLoss]:
    """
    Compare a packet number against the previous one.

    Any value other than ``previous + 1`` is reported, including duplicates
    and counter resets, which produce a range with ``first > last``.
    """
    if current != previous + 1:
        return PacketLoss(previous + 1, current - 1)
    return None


class TelemetryReceiver:
    """
    Background UDP receiver for coprocessor telemetry.

    - Binds in start() so that bind failures reach the caller.
    - Runs one daemon thread until stop() is called.
    - Replaces the snapshot and updates the sequence counter under one lock,
      so readers never see a snapshot that disagrees with loss detection.
    """

    def __init__(
        self,
        port: int,
        host: str = "0.0.0.0",
        poll_delay: float = 0.025,
        socket_timeout: float = 0.2,
        on_packet_loss: Optional[Callable[[PacketLoss], None]] = None,
    ):
        """
        Args:
            port (int): UDP port to listen on (0 picks an ephemeral port).
            host (str): Local address to bind.
            poll_delay (float): Pause between receives, in seconds.
            socket_timeout (float): Receive timeout used to check for stop().
            on_packet_loss: Optional callback invoked for each loss event.
        """
        self.host = host
        self._requested_port = port
        self.poll_delay = poll_delay
        self.socket_timeout = socket_timeout
        self.on_packet_loss = on_packet_loss

        self._lock = threading.Lock()
        self._stats = ReceiverStats()
        self._snapshot: Optional[TelemetrySnapshot] = None
        self._previous_packet_number = 0

        self._sock: Optional[socket.socket] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        """Bound port once started, otherwise the configured port."""
        if self._sock is not None:
            return self._sock.getsockname()[1]
        return self._requested_port

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def previous_packet_number(self) -> int:
        with self._lock:
            return self._previous_packet_number

    @property
    def stats(self) -> ReceiverStats:
        """Copy of the frame counters, taken under the receiver lock."""
        with self._lock:
            return replace(self._stats)

    def reset_stats(self):
        with self._lock:
            self._stats = ReceiverStats()

    def start(self):
        """
        Bind the telemetry socket and start the receive thread.

        Raises:
            BindError: If the socket cannot be bound.
            RuntimeError: If the receiver is already running.
        """
        if self.running:
            raise RuntimeError("TelemetryReceiver is already running")

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((self.host, self._requested_port))
        except OSError as e:
            sock.close()
            log.error(f"Failed to bind telemetry socket: {e}")
            raise BindError(self.host, self._requested_port, e) from e
        sock.settimeout(self.socket_timeout)

        self._sock = sock
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._receive_loop, name="TelemetryReceiverThread", daemon=True
        )
        self._thread.start()
        log.info(f"Waiting for UDP telemetry on {self.host}:{self.port}")

    def stop(self, timeout: Optional[float] = None):
        """Signal the receive thread to stop, wait for it and close the socket."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning("TelemetryReceiver thread did not stop in time.")
            else:
                self._thread = None
        if self._sock is not None and self._thread is None:
            self._sock.close()
            self._sock = None
            log.info("TelemetryReceiver stopped.")

    def latest_snapshot(self) -> Optional[TelemetrySnapshot]:
        """Return the most recent telemetry frame, or None before the first one."""
        with self._lock:
            return self._snapshot

    def last_sequence_number(self) -> int:
        """Return ``packet_number`` of the latest frame, or -1 if unavailable."""
        return sequence_number(self.latest_snapshot())

    def process_datagram(self, data: bytes) -> Optional[PacketLoss]:
        """
        Decode one datagram, publish it and run loss detection.

        Malformed frames are logged and dropped; the current snapshot stays.

        Returns:
            PacketLoss or None: The loss event reported for this frame.
        """
        try:
            fields = wire.decode_object(data)
        except wire.MalformedPayload as e:
            with self._lock:
                self._stats.frames_dropped += 1
            log.warning(f"Dropping malformed telemetry frame: {e}")
            return None

        snapshot = TelemetrySnapshot(fields)
        loss = None
        with self._lock:
            self._snapshot = snapshot
            self._stats.frames_received += 1
            current = sequence_number(snapshot)
            if current == NO_SEQUENCE:
                log.debug("Invalid packet number received, skipping packet loss check.")
            else:
                loss = detect_loss(self._previous_packet_number, current)
                if loss is not None:
                    self._stats.loss_events += 1
                    self._stats.packets_lost += max(loss.count, 0)
                self._previous_packet_number = current

        if loss is not None:
            log.warning(
                f"Packet loss detected: Packets {loss.first} to {loss.last} were lost."
            )
            if self.on_packet_loss:
                try:
                    self.on_packet_loss(loss)
                except Exception as e:
                    log.error(f"Packet loss callback failed: {e}")
        return loss

    def _receive_loop(self):
        """Thread main loop: receive, process, pace, until stop() is called."""
        sock = self._sock
        while not self._stop_event.is_set():
            try:
                data, addr = sock.recvfrom(MAX_DATAGRAM_SIZE)
            except socket.timeout:
                continue
            except OSError as e:
                if self._stop_event.is_set():
                    break
                log.error(f"Error in TelemetryReceiver: {e}")
                self._stop_event.wait(timeout=self.poll_delay)
                continue

            log.debug(f"Received {len(data)} bytes from {addr[0]}:{addr[1]}")
            try:
                self.process_datagram(data)
            except Exception:
                log.exception("Error processing telemetry frame")
            self._stop_event.wait(timeout=self.poll_delay)
