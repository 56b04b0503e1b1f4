"""
controller package

Robot controller side of the vision link: receives detection telemetry from
the coprocessor over UDP, sends commands over TCP, and estimates the clock
offset between the two devices.
"""

from .clock_sync import ClockEstimate, ClockSample, ClockSynchronizer
from .command_sender import CommandSender, ConnectionState
from .exceptions import (
    BindError,
    ConnectError,
    FieldNotFound,
    FieldTypeError,
    LinkError,
    NotConnected,
    SendError,
    SyncTimeout,
)
from .snapshot import TelemetrySnapshot
from .telemetry_receiver import PacketLoss, TelemetryReceiver

__all__ = [
    "BindError",
    "ClockEstimate",
    "ClockSample",
    "ClockSynchronizer",
    "CommandSender",
    "ConnectError",
    "ConnectionState",
    "FieldNotFound",
    "FieldTypeError",
    "LinkError",
    "NotConnected",
    "PacketLoss",
    "SendError",
    "SyncTimeout",
    "TelemetryReceiver",
    "TelemetrySnapshot",
]
