"""Centralized wire-protocol constants.

Single source of truth for frame types, close codes and notification channels
shared by the link services and the operator API.
"""

from typing import FrozenSet

# =============================================================================
# FRAME TYPES
# =============================================================================

TYPE_REGISTER = "register"
TYPE_STATUS = "status"
TYPE_PING = "ping"
TYPE_PONG = "pong"
TYPE_DISCONNECT = "disconnect"
TYPE_CONNECTION_TEST = "connection_test"
TYPE_SYSTEM = "system"

STATUS_READY = "ready"

# System frames the server sends as acknowledgements; never worth a notification
SILENT_SYSTEM_ACTIONS: FrozenSet[str] = frozenset([
    'welcome',
    'register_success',
    'status_updated',
])

# =============================================================================
# CLOSE CODES
# =============================================================================

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_ABNORMAL = 1006

# Closures that end the session deliberately; no reconnect is scheduled
NORMAL_CLOSE_CODES: FrozenSet[int] = frozenset([
    CLOSE_NORMAL,
    CLOSE_GOING_AWAY,
])

# =============================================================================
# NOTIFICATIONS
# =============================================================================

MESSAGE_CHANNEL = "message_channel"
CONNECTION_CHANNEL = "connection_channel"

MESSAGE_TITLE = "New message"
CONNECTION_TITLE = "Connected"
CONNECTION_BODY = "Connected to server"
