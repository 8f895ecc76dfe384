"""Network reachability checks.

`is_reachable()` asks the kernel for a route by connecting a UDP socket; no
packet leaves the host, so the call is cheap enough for the event loop.
"""
import socket
from typing import Protocol

from wscontroller.core.logging import get_logger

logger = get_logger(__name__)


class Reachability(Protocol):
    def is_reachable(self) -> bool:
        ...


class RouteReachability:
    """Reports whether a route to `host:port` exists."""

    def __init__(self, host: str = "8.8.8.8", port: int = 53):
        self.host = host
        self.port = port

    def is_reachable(self) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
                probe.connect((self.host, self.port))
            return True
        except OSError as e:
            logger.debug("No route to network", host=self.host, error=str(e))
            return False
