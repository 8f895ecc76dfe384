"""
Device Link Wire Protocol

UTF-8 JSON records over one WebSocket per device:

Outbound:
    {"type": "register", "deviceNumber": "042", "timestamp": 1700000000000}
    {"type": "status", "status": "ready"}
    {"type": "ping", "timestamp": ..., "deviceId": "042"}
    {"type": "connection_test", "timestamp": ...}
    {"type": "disconnect", "deviceId": "042", "timestamp": ...}

Inbound:
    {"type": "pong", "timestamp": ..., "echo": <ping timestamp>}
    {"type": "system", "action": "register_success", "deviceNumber": "042"}
    {"action": "toggleAirplane", "targetDevice": "042", "content": "..."}

Timestamps are epoch milliseconds. Unknown fields are ignored and absent
optional fields default to empty.
"""
import json
import time
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from wscontroller import constants
from .exceptions import MalformedMessage


def now_ms() -> int:
    """Current wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# Outbound frames
# =============================================================================

@dataclass
class Frame:
    """Base outbound frame."""

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def encode(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @property
    def frame_type(self) -> str:
        return self.to_dict().get("type", "")


@dataclass
class RegisterFrame(Frame):
    deviceNumber: str
    timestamp: int = field(default_factory=now_ms)
    type: str = constants.TYPE_REGISTER


@dataclass
class StatusFrame(Frame):
    status: str = constants.STATUS_READY
    type: str = constants.TYPE_STATUS


@dataclass
class PingFrame(Frame):
    deviceId: str
    timestamp: int = field(default_factory=now_ms)
    checkConnection: Optional[bool] = None
    verifyConnection: Optional[bool] = None
    type: str = constants.TYPE_PING


@dataclass
class ConnectionTestFrame(Frame):
    timestamp: int = field(default_factory=now_ms)
    type: str = constants.TYPE_CONNECTION_TEST


@dataclass
class DisconnectFrame(Frame):
    deviceId: str
    timestamp: int = field(default_factory=now_ms)
    type: str = constants.TYPE_DISCONNECT


# =============================================================================
# Inbound frames
# =============================================================================

class InboundMessage(BaseModel):
    """One parsed inbound frame."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str = ""
    action: str = ""
    target_device: str = Field(default="", alias="targetDevice")
    content: str = ""
    message: str = ""
    status: str = ""
    device_number: str = Field(default="", alias="deviceNumber")
    timestamp: Optional[int] = None
    echo: Optional[int] = None
    raw: str = Field(default="", exclude=True)

    @field_validator("type", "action", "target_device", "content", "message", "status",
                     "device_number", mode="before")
    @classmethod
    def coerce_text(cls, v):
        """Peers send numbers for device codes; nested values are not text."""
        if v is None:
            return ""
        if isinstance(v, bool):
            return str(v).lower()
        if isinstance(v, (int, float)):
            return str(v)
        if isinstance(v, str):
            return v
        return json.dumps(v, ensure_ascii=False)

    @field_validator("timestamp", "echo", mode="before")
    @classmethod
    def coerce_millis(cls, v):
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @property
    def is_pong(self) -> bool:
        return self.type == constants.TYPE_PONG

    @property
    def pong_timestamp(self) -> Optional[int]:
        """Timestamp used to attribute a pong to a ping.

        The server echoes the ping's own timestamp, which is immune to clock
        skew; its wall clock is the fallback.
        """
        if self.echo is not None:
            return self.echo
        return self.timestamp

    @property
    def display_text(self) -> str:
        """Human-readable body for notifications."""
        return self.message or self.content or self.raw


def parse_message(raw: str) -> InboundMessage:
    """Parse an inbound frame.

    Raises:
        MalformedMessage: frame is not a JSON object
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(raw, str(e)) from e

    if not isinstance(data, dict):
        raise MalformedMessage(raw, f"expected object, got {type(data).__name__}")

    try:
        message = InboundMessage.model_validate(data)
    except ValidationError as e:
        raise MalformedMessage(raw, str(e)) from e
    message.raw = raw
    return message
