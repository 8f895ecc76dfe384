from wscontroller.services.link.broadcaster import (
    EventBroadcaster,
    EventLogListener,
    should_notify,
)
from wscontroller.services.link.protocol import parse_message

from conftest import RecordingListener, RecordingNotifier


class ExplodingListener(RecordingListener):
    def on_message_received(self, message):
        raise RuntimeError("listener bug")


def test_should_notify():
    assert should_notify(parse_message('{"type": "chat", "message": "hi"}'))
    assert should_notify(parse_message('{"type": "system", "action": "maintenance"}'))
    assert not should_notify(None)
    assert not should_notify(parse_message('{"type": "pong"}'))
    assert not should_notify(parse_message('{"type": "system", "action": "welcome"}'))
    assert not should_notify(parse_message('{"type": "system", "action": "status_updated"}'))


def test_events_are_queued_in_order(timers):
    listener = RecordingListener()
    broadcaster = EventBroadcaster(timers, listener)

    broadcaster.connection_state_changed(True)
    broadcaster.message_received("one")
    broadcaster.capability_required()
    assert listener.events == []

    timers.run_ready()
    assert listener.events == [("state", True), ("message", "one"), ("capability",)]


def test_listener_errors_do_not_stop_delivery(timers):
    listener = ExplodingListener()
    broadcaster = EventBroadcaster(timers, listener)

    broadcaster.message_received("boom")
    broadcaster.connection_state_changed(False)
    timers.run_ready()

    assert listener.events == [("state", False)]


def test_no_listener_is_fine(timers):
    broadcaster = EventBroadcaster(timers)
    broadcaster.connection_state_changed(True)
    timers.run_ready()


def test_notifications(timers):
    notifier = RecordingNotifier()
    broadcaster = EventBroadcaster(timers, notifier=notifier)

    assert broadcaster.notify_message(parse_message('{"content": "update ready"}')) is True
    assert broadcaster.notify_message(parse_message('{"type": "pong"}')) is False
    broadcaster.notify_connected()
    timers.run_ready()

    assert notifier.notifications == [
        ("New message", "update ready", "message_channel"),
        ("Connected", "Connected to server", "connection_channel"),
    ]


def test_event_log_listener_keeps_recent_events():
    listener = EventLogListener(max_events=3)
    listener.on_connection_state_changed(True)
    for i in range(3):
        listener.on_message_received(f"m{i}")

    events = listener.recent_events()
    assert [e["event"] for e in events] == ["message", "message", "message"]
    assert listener.connected is True
    assert [e["message"] for e in listener.recent_events(limit=2)] == ["m1", "m2"]
