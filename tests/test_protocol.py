import json

import pytest

from wscontroller.services.link.exceptions import MalformedMessage
from wscontroller.services.link.protocol import (
    ConnectionTestFrame,
    DisconnectFrame,
    PingFrame,
    RegisterFrame,
    StatusFrame,
    parse_message,
)


def test_outbound_frames_use_wire_field_names():
    assert json.loads(RegisterFrame(deviceNumber="042", timestamp=1).encode()) == {
        "type": "register", "deviceNumber": "042", "timestamp": 1,
    }
    assert json.loads(StatusFrame().encode()) == {"type": "status", "status": "ready"}
    assert json.loads(ConnectionTestFrame(timestamp=5).encode()) == {"type": "connection_test", "timestamp": 5}
    assert json.loads(DisconnectFrame(deviceId="042", timestamp=7).encode()) == {
        "type": "disconnect", "deviceId": "042", "timestamp": 7,
    }


def test_ping_omits_unset_probe_flags():
    assert json.loads(PingFrame(deviceId="042", timestamp=3).encode()) == {
        "type": "ping", "deviceId": "042", "timestamp": 3,
    }
    frame = PingFrame(deviceId="042", timestamp=3, verifyConnection=True)
    assert frame.to_dict()["verifyConnection"] is True
    assert frame.frame_type == "ping"


def test_encode_keeps_unicode():
    assert "请切换网络" in StatusFrame(status="请切换网络").encode()


def test_parse_defaults_and_unknown_fields():
    message = parse_message('{"type": "system", "extra": {"a": 1}}')

    assert message.type == "system"
    assert message.action == ""
    assert message.target_device == ""
    assert message.timestamp is None
    assert message.raw == '{"type": "system", "extra": {"a": 1}}'


def test_parse_coerces_numeric_device_code():
    message = parse_message('{"action": "toggleAirplane", "targetDevice": 42, "deviceNumber": "042"}')
    assert message.target_device == "42"
    assert message.device_number == "042"


def test_pong_timestamp_prefers_echo():
    assert parse_message('{"type": "pong", "timestamp": 200, "echo": 100}').pong_timestamp == 100
    assert parse_message('{"type": "pong", "timestamp": 200}').pong_timestamp == 200
    assert parse_message('{"type": "pong"}').pong_timestamp is None


def test_bad_timestamp_is_dropped():
    assert parse_message('{"type": "pong", "timestamp": "soon"}').timestamp is None


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"text"', ""])
def test_non_object_frames_are_malformed(raw):
    with pytest.raises(MalformedMessage) as exc_info:
        parse_message(raw)
    assert exc_info.value.raw == raw


def test_display_text_falls_back_to_raw():
    assert parse_message('{"message": "hello", "content": "x"}').display_text == "hello"
    assert parse_message('{"content": "x"}').display_text == "x"
    assert parse_message('{"type": "notice"}').display_text == '{"type": "notice"}'
