"""Tests for the inbound frame pipeline."""

import json

import pytest

from chanrelay.commands.base import Command
from chanrelay.exceptions import ProtocolError


class TestFrameGuards:
    def test_oversized_frame_is_ignored(self, joined, dispatcher, ctx):
        alice = joined("alice")
        alice.transport.clear()
        before = ctx.police.score(alice.address)

        frame = json.dumps({"cmd": "chat", "text": "x" * 70000})
        dispatcher.handle_frame(alice, frame)
        assert alice.transport.sent == []
        assert ctx.police.score(alice.address) == before

    def test_size_is_measured_in_bytes(self, joined, dispatcher, ctx):
        ctx.config.settings["max_frame_bytes"] = 100
        alice = joined("alice")
        alice.transport.clear()
        # 40 characters, 120 bytes
        frame = json.dumps({"cmd": "chat", "text": "€" * 40}, ensure_ascii=False)
        dispatcher.handle_frame(alice, frame)
        assert alice.transport.sent == []

    def test_unknown_command_is_ignored(self, connect, send, ctx):
        alice = connect()
        send(alice, cmd="selfdestruct")
        send(alice, cmd="__init__")
        assert alice.transport.sent == []
        assert ctx.police.score(alice.address) == 0

    @pytest.mark.parametrize("raw", ["garbage", "[]", '{"text": "hi"}', '{"cmd": 1}'])
    def test_malformed_frame_raises(self, connect, dispatcher, raw):
        alice = connect("10.2.2.2")
        with pytest.raises(ProtocolError) as exc_info:
            dispatcher.handle_frame(alice, raw)
        assert exc_info.value.address == "10.2.2.2"
        assert exc_info.value.drops_connection

    def test_bytes_frame_is_decoded(self, connect, dispatcher):
        alice = connect()
        dispatcher.handle_frame(alice, b'{"cmd": "join", "channel": "lobby", "nick": "alice"}')
        assert alice.joined

    def test_non_utf8_bytes_raise(self, connect, dispatcher):
        alice = connect()
        with pytest.raises(ProtocolError):
            dispatcher.handle_frame(alice, b'{"cmd": "\xff"}')


class TestPipeline:
    def _add(self, dispatcher, **kwargs):
        calls = []
        kwargs.setdefault("handler", lambda connection, args: calls.append(args))
        dispatcher.commands.add(Command("probe", **kwargs))
        return calls

    def test_cost_is_evaluated_once_and_args_normalized(self, connect, send, dispatcher, ctx):
        evaluations = []

        def cost(connection, args):
            evaluations.append(args)
            return 4, {**args, "text": args["text"].upper()}

        seen = []
        calls = self._add(
            dispatcher,
            cost=cost,
            precondition=lambda connection, args: seen.append(args["text"]) or True,
        )
        alice = connect()
        send(alice, cmd="probe", text="quiet")
        assert len(evaluations) == 1
        assert seen == ["QUIET"]
        assert calls[0]["text"] == "QUIET"
        assert ctx.police.score(alice.address) == 4

    def test_failed_precondition_is_silent_but_charged(self, connect, send, dispatcher, ctx):
        calls = self._add(dispatcher, cost=2, precondition=lambda connection, args: False)
        alice = connect()
        send(alice, cmd="probe")
        assert calls == []
        assert alice.transport.sent == []
        assert ctx.police.score(alice.address) == 2

    def test_penalized_sender_gets_default_warning(self, connect, send, dispatcher):
        calls = self._add(dispatcher, cost=20)
        alice = connect()
        send(alice, cmd="probe")
        assert calls == []
        assert alice.transport.sent[0]["cmd"] == "warn"
        assert alice.transport.sent[0]["text"] == "You are doing stuff too much! Wait a bit!"

    def test_callable_penalty_response(self, connect, send, dispatcher):
        penalized = []
        self._add(
            dispatcher,
            cost=20,
            on_penalized=lambda connection, args: penalized.append(connection),
        )
        alice = connect()
        send(alice, cmd="probe")
        assert penalized == [alice]
        assert alice.transport.sent == []

    def test_arrested_sender_is_penalized(self, connect, send, dispatcher, ctx):
        calls = self._add(dispatcher, cost=0)
        ctx.police.arrest("10.0.0.1")
        alice = connect("10.0.0.1")
        send(alice, cmd="probe")
        assert calls == []
        assert alice.transport.sent[0]["cmd"] == "warn"

    def test_handler_failure_raises_protocol_error(self, connect, send, dispatcher):
        def explode(connection, args):
            raise KeyError("boom")

        self._add(dispatcher, handler=explode)
        alice = connect()
        with pytest.raises(ProtocolError) as exc_info:
            send(alice, cmd="probe")
        assert exc_info.value.module == "dispatcher"
        assert isinstance(exc_info.value.__cause__, KeyError)


class TestLifecycle:
    def test_open_registers_connection(self, connect, ctx):
        alice = connect()
        assert alice in ctx.connections
        assert not alice.joined

    def test_close_announces_departure(self, joined, dispatcher, ctx):
        alice = joined("alice")
        bob = joined("bob")
        carol = joined("carol", channel="dev")
        alice.transport.clear()
        carol.transport.clear()

        dispatcher.handle_close(bob)
        assert bob not in ctx.connections
        assert alice.transport.sent == [
            {"cmd": "onlineRemove", "nick": "bob", "time": 1700000000000}
        ]
        assert carol.transport.sent == []

    def test_close_frees_nick(self, joined, dispatcher, connect, send):
        bob = joined("bob")
        dispatcher.handle_close(bob)
        again = connect("10.9.9.9")
        send(again, cmd="join", channel="lobby", nick="bob")
        assert again.joined

    def test_close_before_join_is_quiet(self, connect, joined, dispatcher, ctx):
        alice = joined("alice")
        alice.transport.clear()
        lurker = connect("10.9.9.9")
        dispatcher.handle_close(lurker)
        assert lurker not in ctx.connections
        assert alice.transport.sent == []

    def test_close_twice_is_harmless(self, joined, dispatcher):
        alice = joined("alice")
        bob = joined("bob")
        alice.transport.clear()
        dispatcher.handle_close(bob)
        dispatcher.handle_close(bob)
        assert len(alice.transport.of("onlineRemove")) == 1

    def test_closed_transport_is_skipped(self, joined, send):
        alice = joined("alice")
        bob = joined("bob")
        bob.transport.is_open = False
        bob.transport.clear()
        send(alice, cmd="chat", text="hi")
        assert bob.transport.sent == []
        assert len(alice.transport.of("chat")) == 1
