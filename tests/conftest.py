"""
Test Configuration

Deterministic doubles for the device link: a manual clock, a manual timer set
driven by that clock, and a scripted socket. Timers and listener events only
run when a test advances time or drains the ready queue.
"""
import asyncio
import json
from collections import deque
from typing import Any, Callable, Dict, List, Optional

import pytest

from wscontroller.core.config import Settings
from wscontroller.services.link.client import ConnectionController

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class ManualTimers:
    """Drop-in for TimerSet keyed on a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._timers: Dict[str, tuple] = {}
        self._ready: deque = deque()
        self._loop = None
        self._seq = 0

    @property
    def loop(self):
        return self._loop

    def bind(self, loop) -> None:
        self._loop = loop

    def call_later(self, name: str, delay: float, callback: Callable[[], None]) -> None:
        self._seq += 1
        self._timers[name] = (self.clock.now + int(delay * 1000), self._seq, callback)

    def call_soon(self, callback: Callable, *args) -> None:
        self._ready.append((callback, args))

    def cancel(self, name: str) -> bool:
        return self._timers.pop(name, None) is not None

    def cancel_all(self) -> None:
        self._timers.clear()

    def is_pending(self, name: str) -> bool:
        return name in self._timers

    @property
    def pending(self) -> list:
        return sorted(self._timers)

    def delay_of(self, name: str) -> float:
        """Seconds until the named timer fires."""
        return (self._timers[name][0] - self.clock.now) / 1000.0

    def run_ready(self) -> None:
        while self._ready:
            callback, args = self._ready.popleft()
            callback(*args)

    def fire(self, name: str) -> None:
        """Jump the clock to the named timer and run it."""
        due, _, callback = self._timers.pop(name)
        self.clock.now = max(self.clock.now, due)
        callback()
        self.run_ready()

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        target = self.clock.now + int(seconds * 1000)
        while True:
            due = [(when, seq, name) for name, (when, seq, _) in self._timers.items() if when <= target]
            if not due:
                break
            when, _, name = min(due)
            _, _, callback = self._timers.pop(name)
            self.clock.now = max(self.clock.now, when)
            callback()
            self.run_ready()
        self.clock.now = target
        self.run_ready()


class FakeSocket:
    """Scripted transport. Tests drive the server side through the helpers."""

    def __init__(self, url: str, events):
        self.url = url
        self.events = events
        self.sent: List[str] = []
        self.accept_sends = True
        self.started = False
        self.closed_with: Optional[tuple] = None
        self.cancelled = False

    # Transport interface
    def start(self) -> None:
        self.started = True

    def send(self, text: str) -> bool:
        if not self.accept_sends or self.closed_with is not None:
            return False
        self.sent.append(text)
        return True

    def close(self, code: int = 1001, reason: str = "", grace: float = 1.0) -> None:
        self.closed_with = (code, reason)

    def cancel(self) -> None:
        self.cancelled = True

    # Server side
    def open(self) -> None:
        self.events.on_socket_open(self)

    def receive(self, payload: Any) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
        self.events.on_socket_message(self, text)

    def server_close(self, code: int, reason: str = "") -> None:
        self.events.on_socket_closed(self, code, reason)

    def fail(self, error: Optional[BaseException] = None) -> None:
        self.events.on_socket_failure(self, error or ConnectionResetError("reset by peer"))

    # Inspection
    @property
    def frames(self) -> List[Dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    def frames_of(self, frame_type: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.frames if frame.get("type") == frame_type]


class FakeSocketFactory:
    def __init__(self):
        self.sockets: List[FakeSocket] = []

    def __call__(self, url: str, events) -> FakeSocket:
        socket = FakeSocket(url, events)
        self.sockets.append(socket)
        return socket

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


class FakeIdentity:
    def __init__(self, code: Optional[str] = "042"):
        self.code = code

    def get(self) -> Optional[str]:
        return self.code

    def has_identity(self) -> bool:
        return bool(self.code)

    def set(self, code: str) -> None:
        self.code = code


class FakeReachability:
    def __init__(self, reachable: bool = True):
        self.reachable = reachable

    def is_reachable(self) -> bool:
        return self.reachable


class FakeEffector:
    """Effector whose execute() blocks until released."""

    def __init__(self, available: bool = True, blocking: bool = False):
        self.available = available
        self.blocking = blocking
        self.executions = 0
        self.release = None

    def is_available(self) -> bool:
        return self.available

    async def execute(self) -> None:
        self.executions += 1
        if self.blocking:
            if self.release is None:
                self.release = asyncio.Event()
            await self.release.wait()


class FakeFuture:
    """Stand-in for the effector task when no event loop is running."""

    def __init__(self):
        self._callbacks = []
        self._done = False
        self._exception = None

    def add_done_callback(self, callback) -> None:
        self._callbacks.append(callback)

    def cancelled(self) -> bool:
        return False

    def exception(self):
        return self._exception

    def finish(self, exception: Optional[BaseException] = None) -> None:
        self._done = True
        self._exception = exception
        for callback in self._callbacks:
            callback(self)


class Spawner:
    """Records effector coroutines instead of scheduling them."""

    def __init__(self):
        self.futures: List[FakeFuture] = []

    def __call__(self, coroutine) -> FakeFuture:
        coroutine.close()
        future = FakeFuture()
        self.futures.append(future)
        return future


class RecordingListener:
    def __init__(self):
        self.events: List[tuple] = []

    def on_message_received(self, message: str) -> None:
        self.events.append(("message", message))

    def on_connection_state_changed(self, connected: bool) -> None:
        self.events.append(("state", connected))

    def on_capability_required(self) -> None:
        self.events.append(("capability",))

    @property
    def states(self) -> List[bool]:
        return [event[1] for event in self.events if event[0] == "state"]

    @property
    def messages(self) -> List[str]:
        return [event[1] for event in self.events if event[0] == "message"]


class RecordingNotifier:
    def __init__(self):
        self.notifications: List[tuple] = []

    def notify(self, title: str, body: str, channel_id: str) -> None:
        self.notifications.append((title, body, channel_id))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def make_settings(tmp_path):
    def factory(**overrides) -> Settings:
        values = dict(
            identity_file=str(tmp_path / "data" / "device_number.txt"),
            preferences_file=str(tmp_path / "data" / "device_prefs.json"),
            server_host="relay.test",
            server_port=9000,
            connection_check_interval=0,
        )
        values.update(overrides)
        return Settings(**values)
    return factory


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return ManualTimers(clock)


@pytest.fixture
def sockets():
    return FakeSocketFactory()


@pytest.fixture
def identity():
    return FakeIdentity("042")


@pytest.fixture
def reachability():
    return FakeReachability(True)


@pytest.fixture
def effector():
    return FakeEffector()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def spawner():
    return Spawner()


@pytest.fixture
def make_controller(identity, effector, reachability, listener, notifier,
                    sockets, timers, clock, spawner):
    def factory(settings: Settings, **overrides) -> ConnectionController:
        values = dict(
            settings=settings,
            identity=identity,
            effector=effector,
            reachability=reachability,
            listener=listener,
            notifier=notifier,
            socket_factory=sockets,
            timers=timers,
            clock=clock,
        )
        values.update(overrides)
        controller = ConnectionController(**values)
        controller.router._spawn = spawner
        return controller
    return factory


@pytest.fixture
def controller(make_controller, settings):
    return make_controller(settings)


@pytest.fixture
def connected(controller, sockets, timers):
    """Controller with an open, registered session."""
    controller.connect()
    sockets.latest.open()
    timers.run_ready()
    return controller
