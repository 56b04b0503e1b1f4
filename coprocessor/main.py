"""
main.py

Entry point for the coprocessor side of the vision link. Answers time-sync
requests, accepts commands from the robot controller, and streams telemetry
frames at a fixed rate. Detection results are supplied by the vision
pipeline; without one, frames carry an empty target list.

Usage:
    python -m coprocessor.main [config.json]
"""

import asyncio
import logging
import sys
import time
from typing import Any

from config import Settings, load_config
from logging_setup import setup_logging

from .communication import CommunicationManager
from .telemetry_publisher import TelemetryPublisher
from .time_sync_server import TimeSyncServer

log = logging.getLogger(__name__)


class PipelineState:
    """Settings pushed by the controller, echoed back in every frame."""

    def __init__(self):
        self.config: dict[str, Any] = {}
        self.clock_offset_ns = 0.0
        self.targets: list[dict[str, Any]] = []

    def apply_command(self, command: Any):
        if not isinstance(command, dict):
            log.warning(f"Ignoring non-object command: {command!r}")
            return

        cmd_type = command.get("command")
        if cmd_type == "clock_offset":
            offset = command.get("offset_ns")
            if isinstance(offset, (int, float)) and not isinstance(offset, bool):
                self.clock_offset_ns = float(offset)
                log.info(f"Controller clock offset: {self.clock_offset_ns / 1e6:.3f}ms")
            else:
                log.warning(f"clock_offset command without numeric offset_ns: {command}")
        elif cmd_type == "set_config":
            settings = command.get("settings", {})
            if isinstance(settings, dict):
                self.config.update(settings)
                log.info(f"Pipeline config updated: {settings}")
            else:
                log.warning(f"set_config command without settings object: {command}")
        else:
            log.warning(f"Unknown command type received: {cmd_type}")

    def frame(self) -> dict[str, Any]:
        return {"targets": self.targets, "config": self.config}


async def async_network_loop(
    comm: CommunicationManager,
    publisher: TelemetryPublisher,
    state: PipelineState,
    rate_hz: int,
):
    """
    Main asyncio loop: apply incoming commands and publish telemetry.
    """
    await comm.start_server()
    log.info("Async network loop running")

    period = 1.0 / rate_hz
    next_publish = time.monotonic()
    try:
        while True:
            timeout = max(0.0, next_publish - time.monotonic())
            command = await comm.next_command(timeout=timeout)
            if command is not None:
                state.apply_command(command)
                continue

            publisher.publish(state.frame())
            next_publish += period
            if next_publish < time.monotonic():
                next_publish = time.monotonic() + period
    finally:
        await comm.stop_server()


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    config: Settings = load_config(argv[0]) if argv else load_config()
    setup_logging(logfile=config.log_file_path)

    sync_server = TimeSyncServer(config.time_sync_port)
    comm = CommunicationManager("0.0.0.0", config.command_port, config.trusted_clients)
    publisher = TelemetryPublisher(config.controller_host, config.telemetry_port)
    state = PipelineState()

    sync_server.start()
    try:
        asyncio.run(
            async_network_loop(comm, publisher, state, config.telemetry_rate_hz)
        )
    except KeyboardInterrupt:
        log.info("Keyboard interrupt received, shutting down...")
    finally:
        sync_server.stop()
        publisher.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
