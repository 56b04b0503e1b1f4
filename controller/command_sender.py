"""
command_sender.py

Implements CommandSender, the TCP client that pushes configuration and
commands to the vision coprocessor as newline-delimited JSON.
"""

import enum
import logging
import socket
import threading
from typing import Any, Optional

import wire

from .exceptions import ConnectError, NotConnected, SendError

log = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class CommandSender:
    """
    TCP client for sending commands to the coprocessor.

    - One command per line, JSON encoded, no reply expected.
    - connect, send, reconnect and close share a single lock, so a send never
      runs against a session that another thread is tearing down.
    - Reconnection is explicit; nothing is retried internally.
    """

    def __init__(self, connect_timeout: float = 5.0):
        """
        Args:
            connect_timeout (float): Seconds allowed for connect and each write.
        """
        self.connect_timeout = connect_timeout
        self._sock: Optional[socket.socket] = None
        self._peer: Optional[tuple[str, int]] = None
        self._lock = threading.Lock()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            if self._sock is not None:
                return ConnectionState.CONNECTED
            return ConnectionState.DISCONNECTED

    @property
    def peer(self) -> Optional[tuple[str, int]]:
        return self._peer

    def connect(self, host: str, port: int):
        """
        Open a TCP session, closing any session that is already open.

        Raises:
            ConnectError: On timeout, refusal or an unresolvable host.
        """
        with self._lock:
            self._close_locked()
            self._connect_locked(host, port)

    def reconnect(self, host: str, port: int):
        """Close the current session and open a new one as a single operation."""
        with self._lock:
            log.info(f"Reconnecting to {host}:{port}...")
            self._close_locked()
            self._connect_locked(host, port)

    def send(self, command: Any):
        """
        Serialize a command and write it to the open session.

        Args:
            command: Any value the wire codec can encode.
        Raises:
            NotConnected: If no session is open.
            SendError: If the write fails; the session is closed.
        """
        payload = wire.encode(command) + b"\n"
        with self._lock:
            if self._sock is None:
                raise NotConnected()
            try:
                self._sock.sendall(payload)
            except OSError as e:
                log.error(f"Failed to send command: {e}")
                self._close_locked()
                raise SendError(f"Failed to send command: {e}") from e
        log.debug(f"Sent command ({len(payload)} bytes)")

    def close(self):
        """Close the session. Safe to call repeatedly."""
        with self._lock:
            self._close_locked()

    def is_connected(self) -> bool:
        with self._lock:
            return self._sock is not None

    def _connect_locked(self, host: str, port: int):
        try:
            sock = socket.create_connection((host, port), timeout=self.connect_timeout)
        except OSError as e:
            log.error(f"Connection error to {host}:{port}: {e}")
            raise ConnectError(host, port, e) from e
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self._sock = sock
        self._peer = (host, port)
        log.info(f"Connected to {host}:{port}")

    def _close_locked(self):
        if self._sock is None:
            return
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # peer already gone
        try:
            self._sock.close()
        except OSError as e:
            log.warning(f"Error closing CommandSender socket: {e}")
        finally:
            self._sock = None
            self._peer = None
            log.info("Command connection closed.")
