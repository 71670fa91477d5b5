"""Connection registry for chanrelay.

A Connection is the server-side identity of one live socket: its
network address and, once joined, its channel, nickname and optional
trip. Channels are not stored anywhere; they are derived by grouping
live connections on their ``channel`` field.

Key classes:
    Transport: Protocol the socket layer implements for delivery.
    Connection: Per-socket identity record.
    ConnectionRegistry: Owns every live Connection.

Key functions:
    nickname_valid: The nickname character/length rule.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Protocol

_NICKNAME_PATTERN = re.compile(r"[A-Za-z0-9_]{1,24}")


def nickname_valid(nick: str) -> bool:
    """Up to 24 letters, digits and underscores."""
    return _NICKNAME_PATTERN.fullmatch(nick) is not None


class Transport(Protocol):
    """What a Connection needs from its socket."""

    @property
    def is_open(self) -> bool: ...

    def send_text(self, data: str) -> None: ...


@dataclass(eq=False)
class Connection:
    """Identity of one live socket.

    ``nick`` and ``channel`` are set together by a successful join
    and never change afterwards.

    Attributes:
        address: Client network address (the rate-limit identity).
        transport: Back-reference to the socket, used for delivery only.
        nick: Nickname, once joined.
        channel: Channel label, once joined.
        trip: Trip hash derived from the join password, if any.
    """
    address: str
    transport: Optional[Transport] = field(default=None, repr=False)
    nick: Optional[str] = None
    channel: Optional[str] = None
    trip: Optional[str] = None

    @property
    def joined(self) -> bool:
        return self.channel is not None and self.nick is not None

    def join(self, channel: str, nick: str, trip: Optional[str] = None) -> None:
        """Bind this connection to a channel and nickname.

        Raises:
            RuntimeError: If the connection already joined.
        """
        if self.joined:
            raise RuntimeError("connection already joined a channel")
        self.channel = channel
        self.nick = nick
        self.trip = trip


class ConnectionRegistry:
    """Tracks every live connection.

    Iteration order is connection order, so member listings come out
    in the order people arrived.
    """

    def __init__(self):
        self._connections: List[Connection] = []

    def add(self, connection: Connection) -> None:
        if connection not in self._connections:
            self._connections.append(connection)

    def remove(self, connection: Connection) -> bool:
        """Forget a connection.

        Returns:
            True if it was registered.
        """
        try:
            self._connections.remove(connection)
        except ValueError:
            return False
        return True

    def all_connections(self) -> List[Connection]:
        """Snapshot of every live connection, joined or not."""
        return list(self._connections)

    def joined_connections(self) -> List[Connection]:
        return [c for c in self._connections if c.joined]

    def connections_in_channel(self, channel: str) -> List[Connection]:
        return [c for c in self._connections if c.joined and c.channel == channel]

    def is_nick_taken_in_channel(self, channel: str, nick: str) -> bool:
        """Case-insensitive nickname check within one channel."""
        folded = nick.lower()
        return any(
            c.nick.lower() == folded for c in self.connections_in_channel(channel)
        )

    def find_in_channel(self, channel: str, nick: str) -> Optional[Connection]:
        """Exact-match nickname lookup within one channel."""
        for connection in self.connections_in_channel(channel):
            if connection.nick == nick:
                return connection
        return None

    def channels(self) -> Dict[str, List[str]]:
        """Map of channel label to member nicknames."""
        listing: Dict[str, List[str]] = {}
        for connection in self.joined_connections():
            listing.setdefault(connection.channel, []).append(connection.nick)
        return listing

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections))

    def __contains__(self, connection: object) -> bool:
        return connection in self._connections
