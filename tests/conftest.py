"""Shared fixtures: an in-memory relay with fake sockets and a fake clock."""

import itertools
import json

import pytest
import yaml

from chanrelay.broadcast import BroadcastEngine
from chanrelay.commands import ServerContext, build_registry
from chanrelay.config import Config
from chanrelay.connections import ConnectionRegistry
from chanrelay.dispatcher import Dispatcher
from chanrelay.moderation import ModerationPolicy
from chanrelay.police import RateLimiter

SENT_AT = 1700000000000

_ENV_VARS = (
    "CHANRELAY_HOST",
    "CHANRELAY_PORT",
    "CHANRELAY_SALT",
    "CHANRELAY_ADMIN",
    "CHANRELAY_PASSWORD",
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records every frame delivered to it, decoded."""

    def __init__(self):
        self.sent = []
        self.is_open = True

    def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def of(self, cmd: str) -> list:
        return [frame for frame in self.sent if frame["cmd"] == cmd]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def settings():
    return {
        "salt": "pepper",
        "admin": "root",
        "password": "hunter2",
        "mods": [],
    }


@pytest.fixture
def config(tmp_path, monkeypatch, settings):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    (tmp_path / "settings.yaml").write_text(yaml.safe_dump(settings))
    return Config(config_dir=tmp_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ctx(config, clock):
    police = RateLimiter(halflife=30, threshold=15, clock=clock)
    connections = ConnectionRegistry()
    return ServerContext(
        config=config,
        police=police,
        connections=connections,
        broadcaster=BroadcastEngine(connections, clock=lambda: SENT_AT),
        moderation=ModerationPolicy(config, police),
    )


@pytest.fixture
def dispatcher(ctx):
    return Dispatcher(ctx, build_registry(ctx))


@pytest.fixture
def connect(dispatcher):
    """Open a fake socket; returns its Connection."""
    def _connect(address: str = "10.0.0.1"):
        return dispatcher.open(address, FakeTransport())
    return _connect


@pytest.fixture
def send(dispatcher):
    """Send a frame built from keyword arguments."""
    def _send(connection, **frame):
        dispatcher.handle_frame(connection, json.dumps(frame))
    return _send


@pytest.fixture
def joined(connect, send):
    """Open a socket on a fresh address and join it."""
    hosts = itertools.count(1)

    def _joined(nick: str, channel: str = "lobby"):
        connection = connect(f"10.0.1.{next(hosts)}")
        send(connection, cmd="join", channel=channel, nick=nick)
        assert connection.joined, connection.transport.sent
        return connection
    return _joined
