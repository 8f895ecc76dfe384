import sys

import pytest

from wscontroller.services.link.effector import (
    CommandEffector,
    Effector,
    UnavailableEffector,
    create_effector,
)


def test_create_effector():
    assert isinstance(create_effector([]), UnavailableEffector)
    effector = create_effector(["adb", "shell"], timeout=5)
    assert isinstance(effector, CommandEffector)
    assert isinstance(effector, Effector)


def test_missing_binary_is_unavailable():
    assert not CommandEffector(["definitely-not-a-real-binary-xyz"]).is_available()
    assert not UnavailableEffector().is_available()


async def test_command_runs():
    effector = CommandEffector([sys.executable, "-c", "print('toggled')"])
    assert effector.is_available()
    await effector.execute()


async def test_failing_command_raises():
    effector = CommandEffector([sys.executable, "-c", "import sys; sys.exit(3)"])
    with pytest.raises(RuntimeError, match="exited with 3"):
        await effector.execute()


async def test_slow_command_times_out():
    effector = CommandEffector([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)
    with pytest.raises(RuntimeError, match="timed out"):
        await effector.execute()
