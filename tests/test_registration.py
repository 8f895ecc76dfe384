import json

from wscontroller.services.link import timers as t
from wscontroller.services.link.registration import RegistrationProtocol


class Wire:
    def __init__(self):
        self.frames = []
        self.accept = True
        self.failed = 0

    def send(self, frame):
        if not self.accept:
            return False
        self.frames.append(json.loads(frame.encode()))
        return True

    def on_failed(self):
        self.failed += 1


def make_protocol(timers, wire):
    return RegistrationProtocol(timers, send=wire.send, device_id=lambda: "042",
                                on_register_failed=wire.on_failed, refresh_interval=300)


def test_handshake_sends_register_then_ready(timers):
    wire = Wire()
    protocol = make_protocol(timers, wire)

    assert protocol.on_connected() is True

    assert [f["type"] for f in wire.frames] == ["register", "status"]
    assert wire.frames[0]["deviceNumber"] == "042"
    assert isinstance(wire.frames[0]["timestamp"], int)
    assert timers.delay_of(t.STATUS_REFRESH) == 300.0


def test_register_send_failure(timers):
    wire = Wire()
    wire.accept = False
    protocol = make_protocol(timers, wire)

    assert protocol.on_connected() is False
    assert wire.failed == 1
    assert not timers.is_pending(t.STATUS_REFRESH)


def test_status_refresh_repeats_until_stopped(timers):
    wire = Wire()
    protocol = make_protocol(timers, wire)
    protocol.on_connected()

    timers.advance(600)
    assert [f["type"] for f in wire.frames] == ["register", "status", "status", "status"]

    protocol.stop()
    timers.advance(600)
    assert len(wire.frames) == 4
