"""
Device Link Module

Persistent control channel between this device and the command server.

Connection: ws://<host>:<port>/device/<3-digit code>

Components:
- client.py: ConnectionController (session lifecycle, debounce, reconnect loop)
- heartbeat.py: HeartbeatMonitor (ping/pong liveness)
- reconnect.py: backoff policies
- router.py: MessageRouter (pong / target filter / toggle dispatch)
- registration.py: RegistrationProtocol (register + ready, status refresh)
- protocol.py: wire frames
- socket.py: aiohttp WebSocket transport
- broadcaster.py: listener events and notifications
- identity.py: IdentityStore (device code persistence)
- manager.py: global controller instance management
"""

from .client import ConnectionController, ConnectionStatus
from .exceptions import (
    LinkError,
    InvalidIdentity,
    TransportUnreachable,
    TransientSendFailure,
    MalformedMessage,
    CapabilityUnavailable,
)
from .manager import start_link, close_link, get_controller

__all__ = [
    "ConnectionController",
    "ConnectionStatus",
    "LinkError",
    "InvalidIdentity",
    "TransportUnreachable",
    "TransientSendFailure",
    "MalformedMessage",
    "CapabilityUnavailable",
    "start_link",
    "close_link",
    "get_controller",
]
