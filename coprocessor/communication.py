"""
communication.py

Implements CommunicationManager, the async TCP server on the coprocessor that
receives newline-delimited JSON commands from the robot controller.
Only trusted client addresses are accepted; nothing is sent back.
"""

import asyncio
import logging
from typing import Any, Optional

import wire

log = logging.getLogger(__name__)


class CommunicationManager:
    """
    Asynchronous TCP command server for the vision coprocessor.

    - Accepts connections from trusted clients only (IP prefixes).
    - Reads one JSON command per line and queues it for the main loop.
    - Drops malformed lines with a warning and keeps reading.
    - A new connection from the controller replaces the previous one.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 5801,
        trusted_clients: Optional[list[str]] = None,
        max_line_bytes: int = 65536,
    ):
        """
        Args:
            host (str): Address to bind to (usually "0.0.0.0").
            port (int): TCP port to listen on (0 picks an ephemeral port).
            trusted_clients (list[str]): IPs or prefixes allowed to connect.
            max_line_bytes (int): Longest command line accepted.
        """
        self.host = host
        self.port = port
        self.trusted_clients = trusted_clients if trusted_clients is not None else ["127.0.0.1"]
        self.max_line_bytes = max_line_bytes
        self.connected = False
        self.server: Optional[asyncio.base_events.Server] = None
        self._commands: asyncio.Queue = asyncio.Queue()
        self._client_task: Optional[asyncio.Task] = None

    @property
    def bound_port(self) -> int:
        if self.server and self.server.sockets:
            return self.server.sockets[0].getsockname()[1]
        return self.port

    async def start_server(self):
        """Start listening for the controller's command connection."""
        self.server = await asyncio.start_server(
            self._handle_client, self.host, self.port, limit=self.max_line_bytes
        )
        log.info(f"Command server started on {self.host}:{self.bound_port}")

    async def stop_server(self):
        if self._client_task and not self._client_task.done():
            self._client_task.cancel()
            try:
                await self._client_task
            except asyncio.CancelledError:
                pass
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
        self.connected = False
        log.info("Command server stopped")

    def _is_trusted(self, ip: str) -> bool:
        """
        Check if the client's IP address is in the trusted list.

        Args:
            ip (str): Client IP address.
        Returns:
            bool: True if trusted, False otherwise.
        """
        return any(ip.startswith(trusted) for trusted in self.trusted_clients)

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ):
        addr = writer.get_extra_info("peername")
        if not addr or not self._is_trusted(addr[0]):
            log.warning(f"Rejected connection from untrusted IP: {addr}")
            writer.close()
            await writer.wait_closed()
            return

        if self._client_task and not self._client_task.done():
            log.info("New controller connection, dropping the previous one")
            self._client_task.cancel()
        self._client_task = asyncio.current_task()
        self.connected = True
        log.info(f"Controller connected from {addr[0]}:{addr[1]}")

        try:
            await self._read_commands(reader)
        finally:
            if self._client_task is asyncio.current_task():
                self.connected = False
                self._client_task = None
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionResetError, BrokenPipeError):
                pass
            log.info(f"Controller {addr[0]}:{addr[1]} disconnected")

    async def _read_commands(self, reader: asyncio.StreamReader):
        while True:
            try:
                line = await reader.readline()
            except ValueError:
                log.warning("Command line exceeds the size limit, closing connection")
                return
            except (ConnectionResetError, BrokenPipeError) as e:
                log.warning(f"Controller connection lost: {e}")
                return
            if not line:
                return
            if not line.strip():
                continue
            try:
                command = wire.decode(line)
            except wire.MalformedPayload as e:
                log.warning(f"Failed to parse JSON command: {e}")
                continue
            log.debug(f"Command received: {command}")
            await self._commands.put(command)

    async def next_command(self, timeout: Optional[float] = None) -> Optional[Any]:
        """
        Wait for the next command from the controller.

        Returns:
            The decoded command, or None if none arrived within *timeout*.
        """
        if timeout is not None and timeout <= 0:
            try:
                return self._commands.get_nowait()
            except asyncio.QueueEmpty:
                return None
        try:
            return await asyncio.wait_for(self._commands.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
