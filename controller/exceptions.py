"""
exceptions.py

Exceptions raised by the controller side of the vision link.

Decode failures on the wire are reported with ``wire.MalformedPayload``;
everything else derives from ``LinkError`` so callers can catch link problems
without also catching unrelated errors.
"""


class LinkError(Exception):
    """Root for all link exceptions, never raised directly."""


class BindError(LinkError):
    """Raised when the telemetry socket cannot be bound to its port."""

    def __init__(self, host: str, port: int, reason: Exception):
        self.host = host
        self.port = port
        super().__init__(f"Cannot bind telemetry socket to {host}:{port}: {reason}")


class ConnectError(LinkError):
    """Raised when the command session cannot be opened (timeout or refusal)."""

    def __init__(self, host: str, port: int, reason: Exception):
        self.host = host
        self.port = port
        super().__init__(f"Cannot connect to {host}:{port}: {reason}")


class NotConnected(LinkError):
    """Raised when a command is sent without an open session."""

    def __init__(self):
        super().__init__("TCP connection is not open. Unable to send data.")


class SendError(LinkError):
    """Raised when writing to an open session fails. The session is closed."""


class SyncTimeout(LinkError, TimeoutError):
    """Raised when no time-sync response arrives within the per-sample bound."""


class FieldNotFound(LinkError, KeyError):
    """Raised when a telemetry field is absent."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(key)

    def __str__(self):
        return f"Field {self.key!r} not found"


class FieldTypeError(LinkError, TypeError):
    """Raised when a telemetry field holds a value of the wrong type."""

    def __init__(self, key: str, expected: str, value):
        self.key = key
        self.expected = expected
        self.value = value
        super().__init__(
            f"Field {key!r} expected {expected}, got {type(value).__name__}"
        )
