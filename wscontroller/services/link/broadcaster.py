"""
Device Link Event Broadcaster

Delivers link events to the registered listener and decides which inbound
frames deserve a user notification. Events are queued on the controller's
loop, so listeners see them in the order they happened and never run inside
a state transition.
"""
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Protocol

import structlog

from wscontroller import constants
from .protocol import InboundMessage
from .timers import TimerSet

logger = structlog.get_logger()


class LinkListener(Protocol):
    def on_message_received(self, message: str) -> None:
        ...

    def on_connection_state_changed(self, connected: bool) -> None:
        ...

    def on_capability_required(self) -> None:
        ...


class NotificationSink(Protocol):
    def notify(self, title: str, body: str, channel_id: str) -> None:
        ...


class LogNotificationSink:
    """Notification sink that only writes to the log."""

    def notify(self, title: str, body: str, channel_id: str) -> None:
        logger.info("[Notify] " + title, body=body, channel=channel_id)


class EventLogListener:
    """Default listener: logs events and keeps the most recent ones for the status API."""

    def __init__(self, max_events: int = 200):
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)
        self.connected = False

    def _record(self, event: str, **data) -> None:
        self._events.append({"event": event, "at": datetime.now().isoformat(), **data})

    def on_message_received(self, message: str) -> None:
        logger.info("[Listener] Message", message=message)
        self._record("message", message=message)

    def on_connection_state_changed(self, connected: bool) -> None:
        self.connected = connected
        logger.info("[Listener] Connection state", connected=connected)
        self._record("connection_state", connected=connected)

    def on_capability_required(self) -> None:
        logger.warning("[Listener] Network-toggle capability required but unavailable")
        self._record("capability_required")

    def recent_events(self, limit: int = 50) -> List[Dict[str, Any]]:
        return list(self._events)[-limit:]


def should_notify(message: Optional[InboundMessage]) -> bool:
    """Whether an inbound frame warrants a user notification.

    Unparseable frames, pongs and server acknowledgements are suppressed.
    """
    if message is None or message.is_pong:
        return False
    if message.type == constants.TYPE_SYSTEM and message.action in constants.SILENT_SYSTEM_ACTIONS:
        return False
    return True


class EventBroadcaster:
    """Queues listener callbacks and notifications on the loop."""

    def __init__(self, timers: TimerSet, listener: Optional[LinkListener] = None,
                 notifier: Optional[NotificationSink] = None):
        self._timers = timers
        self.listener = listener
        self.notifier = notifier

    def _post(self, method: str, *args) -> None:
        if self.listener is None:
            return
        self._timers.call_soon(self._deliver, method, args)

    def _deliver(self, method: str, args: tuple) -> None:
        if self.listener is None:
            return
        try:
            getattr(self.listener, method)(*args)
        except Exception as e:
            logger.warning("[Broadcaster] Listener failed", callback=method, error=str(e), exc_info=True)

    def message_received(self, text: str) -> None:
        self._post("on_message_received", text)

    def connection_state_changed(self, connected: bool) -> None:
        self._post("on_connection_state_changed", connected)

    def capability_required(self) -> None:
        self._post("on_capability_required")

    def _notify(self, title: str, body: str, channel_id: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(title, body, channel_id)
        except Exception as e:
            logger.warning("[Broadcaster] Notification failed", error=str(e))

    def notify_message(self, message: Optional[InboundMessage]) -> bool:
        if not should_notify(message):
            return False
        self._timers.call_soon(self._notify, constants.MESSAGE_TITLE,
                               message.display_text, constants.MESSAGE_CHANNEL)
        return True

    def notify_connected(self) -> None:
        self._timers.call_soon(self._notify, constants.CONNECTION_TITLE,
                               constants.CONNECTION_BODY, constants.CONNECTION_CHANNEL)
