"""Tests for frame decoding and outbound message payloads."""

import pytest

from chanrelay.exceptions import ProtocolError, Severity
from chanrelay.protocol import Chat, Info, OnlineAdd, OnlineRemove, OnlineSet, Warn, decode_frame


class TestDecodeFrame:
    def test_command_and_args(self):
        cmd, args = decode_frame('{"cmd": "join", "channel": "lobby", "nick": "alice"}')
        assert cmd == "join"
        assert args == {"cmd": "join", "channel": "lobby", "nick": "alice"}

    def test_nested_values_are_kept(self):
        _, args = decode_frame('{"cmd": "chat", "text": {"a": [1, 2]}}')
        assert args["text"] == {"a": [1, 2]}

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "",
            "[1, 2, 3]",
            '"chat"',
            "{}",
            '{"cmd": 5}',
            '{"cmd": null}',
            '{"cmd": ["chat"]}',
            '{"cmd": "chat"',
        ],
    )
    def test_malformed_frames_raise(self, raw):
        with pytest.raises(ProtocolError) as exc_info:
            decode_frame(raw)
        assert exc_info.value.severity == Severity.CONNECTION
        assert exc_info.value.drops_connection


class TestOutbound:
    def test_optional_chat_fields_are_omitted(self):
        payload = Chat(nick="alice", text="hi").to_payload()
        assert payload == {"cmd": "chat", "nick": "alice", "text": "hi"}

    def test_chat_with_annotations(self):
        payload = Chat(nick="root", text="hi", admin=True, trip="abcdef").to_payload()
        assert payload == {
            "cmd": "chat",
            "nick": "root",
            "text": "hi",
            "admin": True,
            "trip": "abcdef",
        }

    @pytest.mark.parametrize(
        "message, expected",
        [
            (Warn(text="no"), {"cmd": "warn", "text": "no"}),
            (Info(text="yes"), {"cmd": "info", "text": "yes"}),
            (OnlineAdd(nick="bob"), {"cmd": "onlineAdd", "nick": "bob"}),
            (OnlineRemove(nick="bob"), {"cmd": "onlineRemove", "nick": "bob"}),
            (OnlineSet(nicks=["a", "b"]), {"cmd": "onlineSet", "nicks": ["a", "b"]}),
        ],
    )
    def test_payload_shapes(self, message, expected):
        assert message.to_payload() == expected
