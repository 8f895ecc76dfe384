"""
Network-toggle effector capability.

The link never performs the toggle itself; it queries `is_available()` and
awaits `execute()` on an injected capability. `CommandEffector` shells out to a
configured command (for example an adb airplane-mode toggle) in a subprocess so
nothing blocks the controller's loop.
"""
import asyncio
import shutil
from typing import List, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()


@runtime_checkable
class Effector(Protocol):
    def is_available(self) -> bool:
        ...

    async def execute(self) -> None:
        ...


class UnavailableEffector:
    """Placeholder used when no toggle mechanism is configured."""

    def is_available(self) -> bool:
        return False

    async def execute(self) -> None:
        raise RuntimeError("No network-toggle effector configured")


class CommandEffector:
    """Runs an external toggle command, e.g. ["adb", "shell", "cmd", "connectivity", "airplane-mode", "enable"]."""

    def __init__(self, command: List[str], timeout: float = 30.0):
        self.command = list(command)
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.command) and shutil.which(self.command[0]) is not None

    async def execute(self) -> None:
        logger.info("[Effector] Running toggle command", command=self.command)
        process = await asyncio.create_subprocess_exec(
            *self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RuntimeError(f"Toggle command timed out after {self.timeout}s")

        if process.returncode != 0:
            raise RuntimeError(
                f"Toggle command exited with {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        logger.info("[Effector] Toggle command finished", output=stdout.decode(errors="replace").strip())


def create_effector(command: List[str], timeout: float = 30.0) -> Effector:
    if command:
        return CommandEffector(command, timeout=timeout)
    return UnavailableEffector()
