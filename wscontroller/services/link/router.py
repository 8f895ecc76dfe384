"""
Inbound message routing.

Classification order for every frame:
1. pong                         -> heartbeat monitor, nothing else
2. targetDevice for another id  -> dropped
3. toggle action / trigger text -> effector, once per in-flight window
4. system acknowledgements      -> control traffic, logged
5. anything else                -> logged as unrecognized

Frames that are not JSON objects are scanned as plain text for the trigger
phrase before being dropped.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog

from wscontroller import constants
from .effector import Effector
from .exceptions import CapabilityUnavailable, MalformedMessage
from .protocol import InboundMessage, parse_message

logger = structlog.get_logger()


class RouteKind(Enum):
    PONG = "pong"
    FOREIGN = "foreign"
    TOGGLE = "toggle"
    CONTROL = "control"
    UNRECOGNIZED = "unrecognized"
    MALFORMED = "malformed"


class ToggleState(Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


@dataclass
class RoutingDecision:
    kind: RouteKind
    message: Optional[InboundMessage] = None
    raw: str = ""
    reason: str = ""


class MessageRouter:
    """Classifies inbound frames and invokes the effector for toggle requests."""

    def __init__(
        self,
        identity: Callable[[], Optional[str]],
        effector: Effector,
        on_pong: Callable[[Optional[int]], bool],
        on_capability_required: Callable[[], None],
        trigger_phrase: str = "请切换网络",
        toggle_action: str = "toggleAirplane",
        spawn: Callable[[Awaitable], "asyncio.Future"] = asyncio.ensure_future,
    ):
        self._identity = identity
        self._effector = effector
        self._on_pong = on_pong
        self._on_capability_required = on_capability_required
        self.trigger_phrase = trigger_phrase
        self.toggle_action = toggle_action
        self._spawn = spawn

        self.toggle_state = ToggleState.IDLE
        self.toggle_count = 0

    # =========================================================================
    # Classification (no side effects)
    # =========================================================================

    def classify(self, raw: str) -> RoutingDecision:
        try:
            message = parse_message(raw)
        except MalformedMessage as e:
            if self.trigger_phrase in raw:
                return RoutingDecision(RouteKind.TOGGLE, raw=raw, reason="text_match")
            return RoutingDecision(RouteKind.MALFORMED, raw=raw, reason=str(e))

        if message.is_pong:
            return RoutingDecision(RouteKind.PONG, message, raw)

        local = self._identity()
        if message.target_device and message.target_device != local:
            return RoutingDecision(RouteKind.FOREIGN, message, raw, reason=message.target_device)

        if message.action == self.toggle_action:
            return RoutingDecision(RouteKind.TOGGLE, message, raw, reason="action")
        if self.trigger_phrase in message.content or self.trigger_phrase in raw:
            return RoutingDecision(RouteKind.TOGGLE, message, raw, reason="trigger_phrase")

        if message.type == constants.TYPE_SYSTEM:
            return RoutingDecision(RouteKind.CONTROL, message, raw, reason=message.action)

        return RoutingDecision(RouteKind.UNRECOGNIZED, message, raw, reason=message.action)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def route(self, raw: str) -> RoutingDecision:
        decision = self.classify(raw)
        self.dispatch(decision)
        return decision

    def dispatch(self, decision: RoutingDecision) -> None:
        kind = decision.kind
        if kind is RouteKind.PONG:
            self._on_pong(decision.message.pong_timestamp)
        elif kind is RouteKind.FOREIGN:
            logger.debug("[Router] Frame for another device ignored", target_device=decision.reason)
        elif kind is RouteKind.TOGGLE:
            logger.info("[Router] Network toggle requested", matched_by=decision.reason)
            self.request_toggle()
        elif kind is RouteKind.CONTROL:
            logger.debug("[Router] Control frame", action=decision.reason)
        elif kind is RouteKind.MALFORMED:
            logger.warning("[Router] Malformed frame dropped", error=decision.reason, raw=decision.raw)
        else:
            logger.warning("[Router] Unrecognized action", action=decision.reason)

    def request_toggle(self) -> bool:
        """Invoke the effector unless a toggle is already running."""
        if self.toggle_state is ToggleState.IN_FLIGHT:
            logger.info("[Router] Toggle already in flight, request ignored")
            return False

        if not self._effector.is_available():
            error = CapabilityUnavailable("Network-toggle effector is not available")
            logger.error("[Router] Cannot toggle network", error=str(error))
            self._on_capability_required()
            return False

        self.toggle_state = ToggleState.IN_FLIGHT
        try:
            future = self._spawn(self._effector.execute())
        except Exception as e:
            self.toggle_state = ToggleState.IDLE
            logger.error("[Router] Effector failed to start", error=str(e))
            return False

        self.toggle_count += 1
        future.add_done_callback(self._on_toggle_done)
        return True

    def _on_toggle_done(self, future: "asyncio.Future") -> None:
        self.toggle_state = ToggleState.IDLE
        if future.cancelled():
            logger.warning("[Router] Toggle cancelled")
            return
        error = future.exception()
        if error is not None:
            logger.error("[Router] Toggle failed", error=str(error))
        else:
            logger.info("[Router] Toggle completed")
