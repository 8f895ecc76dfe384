"""
Heartbeat Monitor

Ping/pong liveness prober for one connected session.

- Every `interval` seconds a ping {"type": "ping", "timestamp", "deviceId"} is sent
- A failed send counts as a failed check right away
- A sent ping arms a `timeout` check; no pong with timestamp >= the ping's
  counts as a failed check
- A pong resolving the latest ping resets the failure counter
- Reaching `required_failed_checks` hands over to the controller's failure path
"""
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from . import timers as t
from .protocol import Frame, PingFrame, now_ms
from .timers import TimerSet

logger = structlog.get_logger()


@dataclass
class HeartbeatState:
    """Liveness bookkeeping. Timestamps are epoch milliseconds, 0 means never."""
    last_ping_sent_at: int = 0
    last_pong_received_at: int = 0
    last_pong_timestamp: int = 0
    consecutive_failed_checks: int = 0

    def reset(self) -> None:
        self.last_ping_sent_at = 0
        self.last_pong_received_at = 0
        self.last_pong_timestamp = 0
        self.consecutive_failed_checks = 0


class HeartbeatMonitor:
    """Periodic ping sender and pong tracker."""

    def __init__(
        self,
        timers: TimerSet,
        send: Callable[[Frame], bool],
        device_id: Callable[[], str],
        on_liveness_lost: Callable[[], None],
        interval: float = 20.0,
        timeout: float = 15.0,
        required_failed_checks: int = 2,
        clock: Callable[[], int] = now_ms,
    ):
        self._timers = timers
        self._send = send
        self._device_id = device_id
        self._on_liveness_lost = on_liveness_lost
        self.interval = interval
        self.timeout = timeout
        self.required_failed_checks = required_failed_checks
        self._clock = clock

        self.state = HeartbeatState()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def failed_checks(self) -> int:
        return self.state.consecutive_failed_checks

    def start(self) -> None:
        """Begin ticking for a fresh Connected session."""
        self.stop()
        self.state.reset()
        self._running = True
        self._timers.call_later(t.HEARTBEAT_TICK, self.interval, self._tick)
        logger.debug("[Heartbeat] Started", interval=self.interval, timeout=self.timeout)

    def stop(self) -> None:
        self._running = False
        self._timers.cancel(t.HEARTBEAT_TICK)
        self._timers.cancel(t.HEARTBEAT_TIMEOUT)

    def reset(self) -> None:
        """Forget all liveness history (session ended)."""
        self.state.reset()

    def reset_failures(self) -> None:
        self.state.consecutive_failed_checks = 0

    # =========================================================================
    # Ticking
    # =========================================================================

    def _tick(self) -> None:
        if not self._running:
            return

        sent_at = self._clock()
        self.state.last_ping_sent_at = sent_at
        frame = PingFrame(deviceId=self._device_id(), timestamp=sent_at)

        if self._send(frame):
            self._timers.call_later(t.HEARTBEAT_TIMEOUT, self.timeout,
                                    lambda: self._check_pong(sent_at))
        else:
            logger.warning("[Heartbeat] Ping send failed", sent_at=sent_at)
            self._record_failure("send_failed")

        # The failure path may have stopped us
        if self._running:
            self._timers.call_later(t.HEARTBEAT_TICK, self.interval, self._tick)

    def _check_pong(self, sent_at: int) -> None:
        if not self._running:
            return
        if self.pong_since(sent_at):
            return
        logger.warning("[Heartbeat] No pong within timeout", sent_at=sent_at, timeout=self.timeout)
        self._record_failure("pong_timeout")

    def _record_failure(self, reason: str) -> None:
        self.state.consecutive_failed_checks += 1
        logger.info("[Heartbeat] Failed check",
                    reason=reason,
                    failed_checks=self.state.consecutive_failed_checks,
                    required=self.required_failed_checks)
        if self.state.consecutive_failed_checks >= self.required_failed_checks:
            self._on_liveness_lost()

    # =========================================================================
    # Pongs and probes
    # =========================================================================

    def on_pong(self, pong_timestamp: Optional[int]) -> bool:
        """Record a pong. Returns True if it resolves the latest ping."""
        received_at = self._clock()
        self.state.last_pong_received_at = received_at

        ts = pong_timestamp if pong_timestamp is not None else received_at
        if ts < self.state.last_ping_sent_at:
            logger.debug("[Heartbeat] Stale pong ignored",
                         pong_timestamp=ts, last_ping_sent_at=self.state.last_ping_sent_at)
            return False

        self.state.last_pong_timestamp = max(self.state.last_pong_timestamp, ts)
        self.state.consecutive_failed_checks = 0
        return True

    def pong_since(self, sent_at: int) -> bool:
        """True if a pong at or after `sent_at` has been seen."""
        return self.state.last_pong_timestamp > 0 and self.state.last_pong_timestamp >= sent_at

    def send_probe(self, **flags) -> Optional[int]:
        """Send an out-of-band ping (connection check / verification).

        Probes do not move `last_ping_sent_at`, so a heartbeat pong arriving
        later still resolves its own ping. Returns the probe timestamp or None
        when the send failed.
        """
        sent_at = self._clock()
        frame = PingFrame(deviceId=self._device_id(), timestamp=sent_at, **flags)
        if not self._send(frame):
            return None
        return sent_at

    def pong_age(self) -> Optional[float]:
        """Seconds since the last pong, None if none has arrived this session."""
        if not self.state.last_pong_received_at:
            return None
        return (self._clock() - self.state.last_pong_received_at) / 1000.0
