"""
main.py

Entry point for the controller side of the vision link. Starts the telemetry
receiver, synchronizes clocks with the coprocessor, opens the command session,
and then polls the latest telemetry until interrupted.

Usage:
    python -m controller.main [config.json]
"""

import logging
import sys
import time

from config import Settings, load_config
from logging_setup import setup_logging

from .clock_sync import ClockEstimate, ClockSynchronizer
from .command_sender import CommandSender
from .exceptions import BindError, ConnectError, LinkError
from .telemetry_receiver import TelemetryReceiver

log = logging.getLogger(__name__)


def run_clock_sync(config: Settings) -> ClockEstimate:
    synchronizer = ClockSynchronizer(timeout=config.sync_timeout_s)
    estimate = synchronizer.synchronize(
        config.coprocessor_host, config.time_sync_port, config.time_sync_samples
    )
    if not estimate.complete:
        log.warning(
            f"Clock estimate built from {estimate.sample_count} of "
            f"{estimate.requested_samples} samples."
        )
    return estimate


def connect_sender(sender: CommandSender, config: Settings) -> bool:
    try:
        sender.connect(config.coprocessor_host, config.command_port)
        return True
    except ConnectError as e:
        log.error(f"Command channel unavailable: {e}")
        return False


def push_clock_offset(sender: CommandSender, estimate: ClockEstimate):
    """Tell the coprocessor the current offset so it can stamp frames in our time base."""
    if not sender.is_connected():
        return
    try:
        sender.send({"command": "clock_offset", "offset_ns": estimate.average_offset_ns})
    except LinkError as e:
        log.warning(f"Could not push clock offset: {e}")


def log_status(receiver: TelemetryReceiver, estimate: ClockEstimate):
    """Log the latest frame, with its timestamp in the local time base if present."""
    snapshot = receiver.latest_snapshot()
    if snapshot is None:
        log.info("No telemetry received yet.")
        return

    seq = receiver.last_sequence_number()
    stats = receiver.stats
    message = (
        f"Telemetry #{seq}: {len(snapshot)} fields, "
        f"received={stats.frames_received} dropped={stats.frames_dropped} "
        f"lost={stats.packets_lost}"
    )
    try:
        remote_ns = snapshot.get_int("timestamp_ns")
    except LinkError:
        pass  # frame carries no timestamp
    else:
        age_ms = (time.monotonic_ns() - estimate.remote_to_local_ns(remote_ns)) / 1e6
        message += f" age={age_ms:.1f}ms"
    log.info(message)


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    config = load_config(argv[0]) if argv else load_config()
    setup_logging(logfile=config.log_file_path)

    receiver = TelemetryReceiver(
        config.telemetry_port,
        host=config.telemetry_bind_host,
        poll_delay=config.receiver_poll_delay_s,
    )
    sender = CommandSender(connect_timeout=config.connect_timeout_s)

    try:
        receiver.start()
    except BindError as e:
        log.critical(f"Telemetry receiver failed to start: {e}")
        return 1

    try:
        estimate = run_clock_sync(config)
        last_sync = time.monotonic()
        if connect_sender(sender, config):
            push_clock_offset(sender, estimate)

        while True:
            time.sleep(config.status_interval_s)
            log_status(receiver, estimate)

            if not sender.is_connected():
                try:
                    sender.reconnect(config.coprocessor_host, config.command_port)
                except ConnectError as e:
                    log.debug(f"Reconnect failed: {e}")

            interval = config.time_sync_interval_s
            if interval > 0 and time.monotonic() - last_sync >= interval:
                estimate = run_clock_sync(config)
                last_sync = time.monotonic()
                push_clock_offset(sender, estimate)
    except KeyboardInterrupt:
        log.info("Keyboard interrupt received, shutting down...")
    finally:
        receiver.stop(timeout=2.0)
        sender.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
