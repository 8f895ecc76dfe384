"""
Device Link Manager

Global controller instance management for the agent process, plus the
network watcher that raises the network-available signal.
"""
import asyncio
from typing import Optional

import structlog

from wscontroller.core.network import Reachability
from .client import ConnectionController

logger = structlog.get_logger()

# Global controller instance
_controller: Optional[ConnectionController] = None
_watcher_task: Optional[asyncio.Task] = None


async def start_link(controller: ConnectionController, reachability: Reachability,
                     poll_interval: float = 10.0) -> ConnectionController:
    """Bind the controller to the running loop, connect, and start watching the network."""
    global _controller, _watcher_task

    if _controller is not None and _controller is not controller:
        await close_link()

    controller.timers.bind(asyncio.get_running_loop())
    _controller = controller

    if not controller.connect():
        logger.info("[Manager] Not connected at startup",
                    waiting_for_network=controller.waiting_for_network)

    _watcher_task = asyncio.create_task(watch_network(controller, reachability, poll_interval))
    return controller


async def watch_network(controller: ConnectionController, reachability: Reachability,
                        poll_interval: float) -> None:
    """Signal the controller when the route it was waiting for comes back."""
    try:
        while True:
            await asyncio.sleep(poll_interval)
            if controller.waiting_for_network and reachability.is_reachable():
                logger.info("[Manager] Network reachable again")
                controller.on_network_available()
    except asyncio.CancelledError:
        pass


async def close_link():
    """Stop the watcher and disconnect the global controller."""
    global _controller, _watcher_task
    if _watcher_task and not _watcher_task.done():
        _watcher_task.cancel()
        try:
            await _watcher_task
        except asyncio.CancelledError:
            pass
    _watcher_task = None

    if _controller:
        logger.info("[Manager] Closing link")
        _controller.disconnect()
        _controller = None


def get_controller() -> Optional[ConnectionController]:
    return _controller
