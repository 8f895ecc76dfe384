"""
Device Link Connection Controller

Owns the WebSocket session to the command server and is the only writer of
connection state.

Connection flow:
1. connect() opens ws://<host>:<port>/device/<code>
2. On open: state Connected, register + ready status, heartbeat starts
3. Inbound frames go through the MessageRouter (pong -> heartbeat, toggle -> effector)
4. On close/failure: state Disconnected, reconnect scheduled by the backoff policy

Every method here runs on the controller's event loop and completes without
awaiting, so each public call, socket callback and timer firing is one
uninterrupted step. Other threads hand work over with post().
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from wscontroller import constants
from wscontroller.core.config import Settings
from wscontroller.core.logging import log_state_change
from wscontroller.core.network import Reachability
from . import timers as t
from .broadcaster import EventBroadcaster, LinkListener, NotificationSink
from .effector import Effector
from .exceptions import TransientSendFailure, TransportUnreachable
from .heartbeat import HeartbeatMonitor
from .identity import validate_device_code
from .protocol import ConnectionTestFrame, DisconnectFrame, Frame, now_ms
from .reconnect import ReconnectPolicy, create_policy
from .registration import RegistrationProtocol
from .router import MessageRouter, RouteKind
from .socket import aiohttp_socket_factory
from .timers import TimerSet

logger = structlog.get_logger()


class ConnectionStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TransitionCause(Enum):
    """Origin of a state change request."""
    TRANSPORT = "transport"   # socket open/closed/failed callback
    PROBE = "probe"           # heartbeat liveness failure
    LOCAL = "local"           # explicit API call


@dataclass
class ConnectionSession:
    """One socket lifetime."""
    socket: Any
    url: str
    device_id: str
    created_at: int
    opened_at: Optional[int] = None


class ConnectionController:
    """Connection lifecycle and session protocol engine for one device."""

    def __init__(
        self,
        settings: Settings,
        identity,
        effector: Effector,
        reachability: Reachability,
        listener: Optional[LinkListener] = None,
        notifier: Optional[NotificationSink] = None,
        socket_factory: Optional[Callable] = None,
        timers: Optional[TimerSet] = None,
        policy: Optional[ReconnectPolicy] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Args:
            settings: Link settings (intervals, thresholds, server address)
            identity: Device code store with get()/set(code)
            effector: Network-toggle capability
            reachability: Network route check consulted before each connect
            listener: Receives message/state/capability events
            notifier: Notification sink for inbound messages
            socket_factory: (url, events) -> socket; aiohttp transport by default
            timers: Named timer set bound to the controller's loop
            policy: Reconnect backoff policy; chosen from settings by default
            clock: Epoch-millisecond clock
        """
        self.settings = settings
        self._identity = identity
        self._reachability = reachability
        self._socket_factory = socket_factory or aiohttp_socket_factory(settings.open_timeout)
        self._timers = timers or TimerSet()
        self._clock = clock
        self.policy = policy or create_policy(settings)

        self.status = ConnectionStatus.DISCONNECTED
        self._session: Optional[ConnectionSession] = None
        self._auto_reconnect = True
        self._last_flip_at = 0
        self.waiting_for_network = False

        self.events = EventBroadcaster(self._timers, listener, notifier)
        self.heartbeat = HeartbeatMonitor(
            self._timers,
            send=self._send,
            device_id=self._device_id,
            on_liveness_lost=self._on_liveness_lost,
            interval=settings.heartbeat_interval,
            timeout=settings.heartbeat_timeout,
            required_failed_checks=settings.required_failed_checks,
            clock=clock,
        )
        self.registration = RegistrationProtocol(
            self._timers,
            send=self._send,
            device_id=self._device_id,
            on_register_failed=self._on_register_failed,
            refresh_interval=settings.status_refresh_interval,
        )
        self.router = MessageRouter(
            identity=self._identity.get,
            effector=effector,
            on_pong=self.heartbeat.on_pong,
            on_capability_required=self.events.capability_required,
            trigger_phrase=settings.trigger_phrase,
            toggle_action=settings.toggle_action,
        )

    @property
    def timers(self) -> TimerSet:
        return self._timers

    @property
    def auto_reconnect(self) -> bool:
        return self._auto_reconnect

    @property
    def session(self) -> Optional[ConnectionSession]:
        return self._session

    def _device_id(self) -> str:
        if self._session is not None:
            return self._session.device_id
        return self._identity.get() or ""

    # =========================================================================
    # Public API
    # =========================================================================

    def connect(self) -> bool:
        """Open a new session. Returns True if a socket is being opened."""
        self._auto_reconnect = True

        if self.status is ConnectionStatus.CONNECTING:
            logger.debug("[Link] Connect ignored, already connecting")
            return False

        code = self._identity.get()
        if not code:
            logger.info("[Link] Connect ignored, no device code set")
            return False

        dropped = self._end_session(send_notice=True, reason="reconnecting")

        if not self._reachability.is_reachable():
            error = TransportUnreachable("No network route, connection not attempted")
            logger.warning("[Link] " + str(error), device_id=code)
            self.waiting_for_network = True
            if not dropped:
                self.events.connection_state_changed(False)
            return False

        self.waiting_for_network = False
        url = self.settings.device_url(code)
        socket = self._socket_factory(url, self)
        self._session = ConnectionSession(socket=socket, url=url, device_id=code, created_at=self._clock())
        self.status = ConnectionStatus.CONNECTING
        logger.info("[Link] Connecting...", url=url, attempt=self.policy.attempts)
        socket.start()
        return True

    def disconnect(self) -> None:
        """User stop: no automatic reconnect until connect() is called again."""
        logger.info("[Link] Disconnect requested by user")
        self._auto_reconnect = False
        self.force_disconnect()

    def force_disconnect(self) -> None:
        """Tear the session down now, cancelling every pending timer."""
        logger.info("[Link] Forcing disconnect", status=self.status.value)
        self._end_session(send_notice=True, reason="client disconnect")
        self.heartbeat.reset()
        self.policy.reset()

    def update_identity(self, code: str) -> None:
        """Persist a new device code and reconnect with it.

        Raises:
            InvalidIdentity: code is not exactly three digits
        """
        validate_device_code(code)
        self._identity.set(code)
        logger.info("[Link] Device code updated", device_id=code)
        self.force_disconnect()
        self.connect()

    def is_connected(self) -> bool:
        """Connected and, once pongs have been seen, the last one is recent."""
        if self.status is not ConnectionStatus.CONNECTED or self._session is None:
            return False
        age = self.heartbeat.pong_age()
        if age is not None and age >= self.settings.pong_staleness:
            return False
        return True

    def on_network_available(self) -> bool:
        """External signal that the network is back."""
        if not self._auto_reconnect or self.status is not ConnectionStatus.DISCONNECTED:
            return False
        logger.info("[Link] Network available, reconnecting")
        return self.connect()

    def send_status(self, status: str) -> bool:
        return self.registration.send_status(status)

    def post(self, callback: Callable, *args) -> None:
        """Run a callback on the controller's loop from any thread."""
        self._timers.loop.call_soon_threadsafe(callback, *args)

    # =========================================================================
    # Socket callbacks
    # =========================================================================

    def _is_current(self, socket) -> bool:
        return self._session is not None and self._session.socket is socket

    def on_socket_open(self, socket) -> None:
        if not self._is_current(socket):
            logger.debug("[Link] Open from stale socket ignored")
            return

        self._session.opened_at = self._clock()
        logger.info("[Link] Connection established", url=self._session.url)
        self._set_connected()
        self.events.notify_connected()

        if not self.registration.on_connected():
            return
        self.heartbeat.start()
        self._schedule_connection_check()

    def on_socket_message(self, socket, text: str) -> None:
        if not self._is_current(socket):
            return

        decision = self.router.classify(text)
        if decision.kind is not RouteKind.PONG:
            logger.debug("[Link] Received message", kind=decision.kind.value)
            self.events.message_received(text)
            self.events.notify_message(decision.message)
        self.router.dispatch(decision)

    def on_socket_closed(self, socket, code: int, reason: str) -> None:
        if not self._is_current(socket):
            return
        logger.info("[Link] Connection closed", code=code, reason=reason)
        self._transport_lost(reconnect=code not in constants.NORMAL_CLOSE_CODES)

    def on_socket_failure(self, socket, error: BaseException) -> None:
        if not self._is_current(socket):
            return
        logger.warning("[Link] Connection failed", error=str(error) or type(error).__name__)
        self._transport_lost(reconnect=True)

    # =========================================================================
    # State transitions
    # =========================================================================

    def _set_connected(self) -> None:
        previous = self.status
        self.status = ConnectionStatus.CONNECTED
        self.heartbeat.reset()
        self._timers.cancel(t.RECONNECT)
        self.policy.reset()
        if previous is not ConnectionStatus.CONNECTED:
            self._flip(True, TransitionCause.TRANSPORT)

    def _flip(self, connected: bool, cause: TransitionCause) -> None:
        self._last_flip_at = self._clock()
        log_state_change(logger, connected, cause.value, device_id=self._device_id())
        self.events.connection_state_changed(connected)

    def _end_session(self, send_notice: bool, reason: str = "",
                     close_code: int = constants.CLOSE_GOING_AWAY,
                     cause: TransitionCause = TransitionCause.LOCAL) -> bool:
        """Cancel all timers, close the socket, mark Disconnected.

        Returns True if this reported a drop from Connected to the listener.
        """
        self._timers.cancel_all()
        self.heartbeat.stop()
        self.registration.stop()

        session, self._session = self._session, None
        if session is not None:
            socket = session.socket
            if send_notice and not socket.send(DisconnectFrame(deviceId=session.device_id).encode()):
                logger.debug("[Link] Disconnect notice not sent", device_id=session.device_id)
            socket.close(close_code, reason, grace=self.settings.close_grace)

        previous = self.status
        self.status = ConnectionStatus.DISCONNECTED
        if previous is ConnectionStatus.CONNECTED:
            self._flip(False, cause)
            return True
        return False

    def _transport_lost(self, reconnect: bool) -> None:
        """The socket is gone; an authoritative signal, applied immediately."""
        session = self._session
        self._timers.cancel_all()
        self.heartbeat.stop()
        self.registration.stop()
        self._session = None
        session.socket.cancel()

        previous = self.status
        self.status = ConnectionStatus.DISCONNECTED
        if previous is ConnectionStatus.CONNECTED:
            self._flip(False, TransitionCause.TRANSPORT)

        if reconnect:
            self._schedule_reconnect()
        else:
            logger.info("[Link] Normal closure, not reconnecting")

    def _on_liveness_lost(self) -> None:
        """Heartbeat failure path, debounced."""
        if self.status is not ConnectionStatus.CONNECTED or self._session is None:
            return
        if self.heartbeat.failed_checks < self.settings.required_failed_checks:
            return

        now = self._clock()
        cooldown_ms = self.settings.state_change_cooldown * 1000
        if now - self._last_flip_at < cooldown_ms:
            logger.info("[Link] Liveness lost within state cooldown, keeping state",
                        since_last_change_ms=now - self._last_flip_at)
            return

        # One direct write decides between a slow probe path and a dead socket
        if self._session.socket.send(ConnectionTestFrame(timestamp=now).encode()):
            logger.info("[Link] Liveness write succeeded, keeping connection",
                        failed_checks=self.heartbeat.failed_checks)
            self.heartbeat.reset_failures()
            return

        logger.warning("[Link] Liveness lost, dropping connection",
                       failed_checks=self.heartbeat.failed_checks)
        self._end_session(send_notice=False, reason="liveness lost", cause=TransitionCause.PROBE)
        self._schedule_reconnect()

    def _on_register_failed(self) -> None:
        self.force_disconnect()
        self._timers.call_later(t.RETRY_CONNECT, self.settings.register_retry_delay, self._retry_connect)

    # =========================================================================
    # Reconnect loop
    # =========================================================================

    def _schedule_reconnect(self) -> None:
        if not self._auto_reconnect:
            logger.info("[Link] Auto-reconnect disabled, staying disconnected")
            return
        delay = self.policy.next_delay()
        logger.info("[Link] Reconnect scheduled",
                    delay=delay, attempt=self.policy.attempts, strategy=self.policy.name)
        self._timers.call_later(t.RECONNECT, delay, self._reconnect_now)

    def _reconnect_now(self) -> None:
        if not self._auto_reconnect or self.status is not ConnectionStatus.DISCONNECTED:
            return
        self.connect()

    def _retry_connect(self) -> None:
        if self._auto_reconnect:
            self.connect()

    def _restart_session(self, delay: Optional[float] = None) -> None:
        self.force_disconnect()
        if delay:
            self._timers.call_later(t.RETRY_CONNECT, delay, self._retry_connect)
        else:
            self._retry_connect()

    # =========================================================================
    # Server connection check
    # =========================================================================

    def _schedule_connection_check(self) -> None:
        interval = self.settings.connection_check_interval
        if interval > 0:
            self._timers.call_later(t.CONNECTION_CHECK, interval, self._run_connection_check)

    def _run_connection_check(self) -> None:
        if self.status is not ConnectionStatus.CONNECTED:
            return
        self.check_connection_with_server()
        if self.status is ConnectionStatus.CONNECTED:
            self._schedule_connection_check()

    def check_connection_with_server(self) -> None:
        """Ping; on silence re-register, and on continued silence reconnect."""
        if self._session is None:
            return
        sent_at = self.heartbeat.send_probe(checkConnection=True)
        if sent_at is None:
            logger.warning("[Link] Connection check ping not sent, reconnecting",
                           error=str(TransientSendFailure(constants.TYPE_PING)))
            self._restart_session(delay=self.settings.register_retry_delay)
            return
        self._timers.call_later(t.CONNECTION_CHECK_TIMEOUT, self.settings.connection_check_timeout,
                                lambda: self._connection_check_timeout(sent_at))

    def _connection_check_timeout(self, sent_at: int) -> None:
        if self.status is not ConnectionStatus.CONNECTED or self.heartbeat.pong_since(sent_at):
            return
        logger.warning("[Link] Connection check timed out, re-registering")
        self.registration.send_registration()
        self._timers.call_later(t.CONNECTION_CHECK_GRACE, self.settings.connection_check_grace,
                                lambda: self._connection_check_grace(sent_at))

    def _connection_check_grace(self, sent_at: int) -> None:
        if self.heartbeat.pong_since(sent_at):
            logger.info("[Link] Connection recovered after re-registering")
            return
        logger.warning("[Link] Still no response after re-registering, reconnecting")
        self._restart_session()

    def verify_connection(self) -> bool:
        """On-demand check: reconnect unless a pong answers within the check timeout."""
        if self.status is not ConnectionStatus.CONNECTED or self._session is None:
            return False
        sent_at = self.heartbeat.send_probe(verifyConnection=True)
        if sent_at is None:
            logger.warning("[Link] Verification ping not sent, reconnecting")
            self._restart_session()
            return False
        self._timers.call_later(t.VERIFY_TIMEOUT, self.settings.connection_check_timeout,
                                lambda: self._verify_timeout(sent_at))
        return True

    def _verify_timeout(self, sent_at: int) -> None:
        if self.status is not ConnectionStatus.CONNECTED:
            return
        if self.heartbeat.pong_since(sent_at):
            self.send_status(constants.STATUS_READY)
            return
        logger.warning("[Link] Verification timed out, reconnecting")
        self._restart_session()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _send(self, frame: Frame) -> bool:
        session = self._session
        if session is None:
            logger.debug("[Link] " + str(TransientSendFailure(frame.frame_type, "no session")))
            return False
        sent = session.socket.send(frame.encode())
        if not sent:
            logger.debug("[Link] " + str(TransientSendFailure(frame.frame_type)))
        return sent

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view of the link for status reporting."""
        state = self.heartbeat.state
        return {
            "status": self.status.value,
            "connected": self.is_connected(),
            "device_id": self._device_id() or None,
            "url": self._session.url if self._session else None,
            "auto_reconnect": self._auto_reconnect,
            "heartbeat": {
                "last_ping_sent_at": state.last_ping_sent_at or None,
                "last_pong_received_at": state.last_pong_received_at or None,
                "consecutive_failed_checks": state.consecutive_failed_checks,
            },
            "reconnect": {
                "strategy": self.policy.name,
                "attempts": self.policy.attempts,
                "pending": self._timers.is_pending(t.RECONNECT),
            },
            "toggle_state": self.router.toggle_state.value,
        }
