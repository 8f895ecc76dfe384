"""
Named timers on the controller's event loop.

Every delayed action of a session (heartbeat tick, pong timeout, reconnect
delay, status refresh, connection check, register retry) is a named handle in
one TimerSet, so a teardown can cancel all of them in a single call. Scheduling
a name that is already pending replaces the old handle.
"""
import asyncio
from typing import Callable, Dict, Optional

import structlog

logger = structlog.get_logger()

# Timer names
HEARTBEAT_TICK = "heartbeat_tick"
HEARTBEAT_TIMEOUT = "heartbeat_timeout"
RECONNECT = "reconnect"
STATUS_REFRESH = "status_refresh"
CONNECTION_CHECK = "connection_check"
CONNECTION_CHECK_TIMEOUT = "connection_check_timeout"
CONNECTION_CHECK_GRACE = "connection_check_grace"
VERIFY_TIMEOUT = "verify_timeout"
RETRY_CONNECT = "retry_connect"


class TimerSet:
    """asyncio-backed named timers. Must be used from the loop thread."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handles: Dict[str, asyncio.TimerHandle] = {}

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def call_later(self, name: str, delay: float, callback: Callable[[], None]) -> None:
        self.cancel(name)

        def fire():
            self._handles.pop(name, None)
            callback()

        self._handles[name] = self.loop.call_later(delay, fire)

    def call_soon(self, callback: Callable, *args) -> None:
        """Queue a callback behind everything already scheduled on the loop."""
        self.loop.call_soon(callback, *args)

    def cancel(self, name: str) -> bool:
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        if self._handles:
            logger.debug("[Timers] Cancelled pending timers", names=sorted(self._handles))
        self._handles.clear()

    def is_pending(self, name: str) -> bool:
        return name in self._handles

    @property
    def pending(self) -> list:
        return sorted(self._handles)
