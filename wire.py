"""
wire.py

JSON wire codec shared by the controller and the vision coprocessor.
Every payload on the link (telemetry datagrams, command lines, time-sync
responses) is a single line of UTF-8 JSON text.
"""

import dataclasses
import json
from typing import Any

from pydantic import BaseModel


class MalformedPayload(ValueError):
    """Raised when a payload is not valid UTF-8 JSON."""

    def __init__(self, message: str, payload: bytes | str = b""):
        self.payload = payload
        preview = payload[:64]
        super().__init__(f"{message} (payload={preview!r})")


def _default(value: Any):
    if isinstance(value, BaseModel):
        return value.model_dump()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not serializable")


def _reject_constant(name: str):
    raise ValueError(f"Non-standard JSON constant {name}")


def encode(value: Any) -> bytes:
    """
    Encode a structured value as one line of UTF-8 JSON.

    Args:
        value: dict/list/str/number/bool/None, a pydantic model or a dataclass.
    Returns:
        bytes: Compact JSON text with no trailing newline.
    Raises:
        TypeError: If the value holds an unsupported type.
        ValueError: If the value holds NaN or infinity.
    """
    text = json.dumps(
        value,
        default=_default,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return text.encode("utf-8")


def decode(data: bytes | str) -> Any:
    """
    Decode one JSON payload. Unknown fields are passed through untouched.

    Raises:
        MalformedPayload: On empty input, invalid UTF-8, invalid JSON or
            nesting deeper than the interpreter's recursion limit.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        try:
            text = bytes(data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayload(f"Invalid UTF-8: {e}", bytes(data)) from e
    else:
        text = data

    if not text.strip():
        raise MalformedPayload("Empty payload", data)
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise MalformedPayload(f"Invalid JSON: {e.msg}", data) from e
    except ValueError as e:
        raise MalformedPayload(str(e), data) from e
    except RecursionError as e:
        raise MalformedPayload("Payload nested too deeply", data) from e


def decode_object(data: bytes | str) -> dict[str, Any]:
    """Decode a payload that must be a JSON object at top level."""
    value = decode(data)
    if not isinstance(value, dict):
        raise MalformedPayload(
            f"Expected JSON object, got {type(value).__name__}", data
        )
    return value
