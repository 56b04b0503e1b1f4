"""
time_sync_server.py

UDP responder for clock synchronization requests from the robot controller.
Replies to every ``TIME_SYNC`` datagram with the local receive and send
times, in nanoseconds.
"""

import logging
import socket
import threading
import time
from typing import Callable, Optional

import wire

log = logging.getLogger(__name__)

TIME_SYNC_REQUEST = b"TIME_SYNC"


class TimeSyncServer:
    """
    Threaded time-sync responder.

    - Binds in start(), answers requests on a daemon thread.
    - Requests other than TIME_SYNC are ignored.
    - Can be safely started and stopped.
    """

    def __init__(
        self,
        port: int,
        host: str = "0.0.0.0",
        clock: Callable[[], int] = time.monotonic_ns,
        socket_timeout: float = 0.2,
    ):
        """
        Args:
            port (int): UDP port to answer on (0 picks an ephemeral port).
            host (str): Local address to bind.
            clock: Nanosecond clock used for t2 and t3.
            socket_timeout (float): Receive timeout used to check for stop().
        """
        self.host = host
        self.port = port
        self.clock = clock
        self.socket_timeout = socket_timeout
        self.requests_served = 0
        self._sock: Optional[socket.socket] = None
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    @property
    def bound_port(self) -> int:
        if self._sock is not None:
            return self._sock.getsockname()[1]
        return self.port

    def start(self):
        """
        Bind the socket and start answering in a background thread.

        Raises:
            RuntimeError: If the server is already running.
        """
        if self.thread is not None and self.thread.is_alive():
            raise RuntimeError("TimeSyncServer is already running")

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((self.host, self.port))
        except OSError:
            sock.close()
            raise
        sock.settimeout(self.socket_timeout)
        self._sock = sock
        self.stop_event.clear()
        self.thread = threading.Thread(
            target=self._serve_loop, name="TimeSyncServerThread", daemon=True
        )
        self.thread.start()
        log.info(f"Time sync server listening on {self.host}:{self.bound_port}")

    def stop(self):
        """Signal the thread to stop and release the socket."""
        self.stop_event.set()
        if self.thread is not None:
            self.thread.join()
            self.thread = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        log.info("Time sync server stopped.")

    def _serve_loop(self):
        while not self.stop_event.is_set():
            try:
                data, addr = self._sock.recvfrom(64)
            except socket.timeout:
                continue
            except OSError as e:
                if self.stop_event.is_set():
                    break
                log.warning(f"Time sync receive failed: {e}")
                continue

            t2 = self.clock()
            if data.strip() != TIME_SYNC_REQUEST:
                log.debug(f"Ignoring unknown request from {addr[0]}: {data[:32]!r}")
                continue

            t3 = self.clock()
            try:
                self._sock.sendto(wire.encode({"t2": t2, "t3": t3}), addr)
                self.requests_served += 1
            except OSError as e:
                log.warning(f"Time sync reply to {addr[0]} failed: {e}")
