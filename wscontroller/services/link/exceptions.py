"""Device link exception hierarchy."""


class LinkError(Exception):
    """Base exception for all device link errors."""


class InvalidIdentity(LinkError, ValueError):
    """Device code is not exactly three ASCII digits."""

    def __init__(self, code):
        self.code = code
        super().__init__(f"Device code must be exactly 3 digits, got {code!r}")


class TransportUnreachable(LinkError):
    """No network route to the command server at connect time."""


class TransientSendFailure(LinkError):
    """A frame could not be handed to the socket."""

    def __init__(self, frame_type: str, reason: str = "socket closed"):
        self.frame_type = frame_type
        super().__init__(f"Failed to send {frame_type}: {reason}")


class MalformedMessage(LinkError):
    """Inbound frame is not a JSON object."""

    def __init__(self, raw: str, reason: str):
        self.raw = raw
        super().__init__(f"Malformed frame: {reason}")


class CapabilityUnavailable(LinkError):
    """The network-toggle effector is not available on this device."""
