"""Registration handshake and periodic status refresh for a connected session."""
from typing import Callable

import structlog

from wscontroller import constants
from . import timers as t
from .protocol import Frame, RegisterFrame, StatusFrame
from .timers import TimerSet

logger = structlog.get_logger()


class RegistrationProtocol:
    """Sends register + ready on every new session and refreshes status while connected."""

    def __init__(
        self,
        timers: TimerSet,
        send: Callable[[Frame], bool],
        device_id: Callable[[], str],
        on_register_failed: Callable[[], None],
        refresh_interval: float = 300.0,
    ):
        self._timers = timers
        self._send = send
        self._device_id = device_id
        self._on_register_failed = on_register_failed
        self.refresh_interval = refresh_interval
        self._running = False

    def on_connected(self) -> bool:
        """Run the handshake. Returns False if registration could not be sent."""
        if not self.send_registration():
            logger.warning("[Registration] Register send failed, connection may be gone")
            self._on_register_failed()
            return False

        self.send_status(constants.STATUS_READY)
        self._running = True
        self._timers.call_later(t.STATUS_REFRESH, self.refresh_interval, self._refresh)
        return True

    def send_registration(self) -> bool:
        frame = RegisterFrame(deviceNumber=self._device_id())
        sent = self._send(frame)
        logger.info("[Registration] Register sent", device_number=frame.deviceNumber, sent=sent)
        return sent

    def send_status(self, status: str) -> bool:
        return self._send(StatusFrame(status=status))

    def stop(self) -> None:
        self._running = False
        self._timers.cancel(t.STATUS_REFRESH)

    def _refresh(self) -> None:
        if not self._running:
            return
        sent = self.send_status(constants.STATUS_READY)
        logger.debug("[Registration] Periodic status refresh", sent=sent)
        self._timers.call_later(t.STATUS_REFRESH, self.refresh_interval, self._refresh)
