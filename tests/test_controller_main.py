import logging

from controller.clock_sync import ClockEstimate
from controller.command_sender import CommandSender
from controller.exceptions import SendError
from controller.main import log_status, push_clock_offset
from controller.telemetry_receiver import TelemetryReceiver


ESTIMATE = ClockEstimate(
    average_offset_ns=250.0, average_delay_ns=40.0, sample_count=10, requested_samples=10
)


class RecordingSender(CommandSender):
    def __init__(self, connected=True, fail=False):
        super().__init__()
        self.connected = connected
        self.fail = fail
        self.sent = []

    def is_connected(self):
        return self.connected

    def send(self, command):
        if self.fail:
            raise SendError("broken pipe")
        self.sent.append(command)


def test_push_clock_offset_sends_command():
    sender = RecordingSender()

    push_clock_offset(sender, ESTIMATE)

    assert sender.sent == [{"command": "clock_offset", "offset_ns": 250.0}]


def test_push_clock_offset_skips_when_disconnected():
    sender = RecordingSender(connected=False)

    push_clock_offset(sender, ESTIMATE)

    assert sender.sent == []


def test_push_clock_offset_logs_send_failures(caplog):
    sender = RecordingSender(fail=True)

    with caplog.at_level(logging.WARNING):
        push_clock_offset(sender, ESTIMATE)

    assert "Could not push clock offset" in caplog.text


def test_log_status_before_first_frame(caplog):
    receiver = TelemetryReceiver(0)

    with caplog.at_level(logging.INFO, logger="controller.main"):
        log_status(receiver, ESTIMATE)

    assert "No telemetry received yet." in caplog.text


def test_log_status_reports_sequence_and_age(caplog):
    receiver = TelemetryReceiver(0)
    receiver.process_datagram(b'{"packet_number": 3, "timestamp_ns": 1000}')

    with caplog.at_level(logging.INFO, logger="controller.main"):
        log_status(receiver, ESTIMATE)

    assert "Telemetry #3" in caplog.text
    assert "age=" in caplog.text
