"""Core command handler for chanrelay.

Handles: ping, join, chat, invite, stats.
"""

from __future__ import annotations

import re
import secrets
import string
from typing import List, Optional, Tuple

import structlog

from ..connections import Connection, nickname_valid
from ..protocol import Chat, OnlineAdd, OnlineSet
from .base import Args, BaseCommandHandler, Command, text_arg

logger = structlog.get_logger("chanrelay.commands")

# Leading blank lines, an all-whitespace text, or trailing blank lines
_EDGE_BLANK_LINES = re.compile(r"^\s*\n|^\s+\Z|\n\s*\Z")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")

INVITE_TOKEN_LENGTH = 8
_INVITE_ALPHABET = string.ascii_lowercase + string.digits


def normalize_chat_text(text: str) -> str:
    """Trim blank lines at both ends and squeeze 3+ newlines to 2."""
    text = _EDGE_BLANK_LINES.sub("", text)
    return _EXCESS_NEWLINES.sub("\n\n", text)


def split_nick(raw: str) -> Tuple[str, Optional[str]]:
    """Split ``nick#password`` into its trimmed nick and the password."""
    nick, sep, password = raw.partition("#")
    return nick.strip(), (password if sep else None)


def new_invite_channel() -> str:
    return "".join(secrets.choice(_INVITE_ALPHABET) for _ in range(INVITE_TOKEN_LENGTH))


class CoreCommandHandler(BaseCommandHandler):
    """Handles the commands available to every client."""

    def get_commands(self) -> List[Command]:
        return [
            Command("ping", self.handle_ping, cost=0),
            Command(
                "join",
                self.handle_join,
                precondition=self.can_join,
                cost=3,
                on_penalized="You are joining channels too fast. Wait a moment and try again.",
            ),
            Command(
                "chat",
                self.handle_chat,
                precondition=self.can_chat,
                cost=self.chat_cost,
                on_penalized=(
                    "You are sending too much text. Wait a moment and try again.\n"
                    "Press the up arrow key to restore your last message."
                ),
            ),
            Command(
                "invite",
                self.handle_invite,
                precondition=self.can_invite,
                cost=2,
                on_penalized="You are sending invites too fast. Wait a moment before trying again.",
            ),
            Command("stats", self.handle_stats, cost=0),
        ]

    # --- Preconditions ---

    def can_join(self, connection: Connection, args: Args) -> bool:
        return (
            not connection.joined
            and text_arg(args, "channel") is not None
            and text_arg(args, "nick") is not None
        )

    def can_chat(self, connection: Connection, args: Args) -> bool:
        return connection.joined and bool(args.get("text"))

    def can_invite(self, connection: Connection, args: Args) -> bool:
        return connection.joined and text_arg(args, "nick") is not None

    # --- Costs ---

    def chat_cost(self, connection: Connection, args: Args) -> Tuple[float, Args]:
        """Cost grows with the normalized text length, plus one per message.

        Text arrives coerced to a string and normalized; the normalized
        text replaces the raw one in the returned args.
        """
        raw = text_arg(args, "text") or ""
        text = normalize_chat_text(raw)
        return len(text) / 83 / 4 + 1, {**args, "text": text}

    # --- Handlers ---

    def handle_ping(self, connection: Connection, args: Args) -> None:
        """Keepalive; nothing to do."""

    def handle_join(self, connection: Connection, args: Args) -> None:
        """Claim a nickname in a channel.

        Validation failures warn the sender and leave the connection
        untouched. On success the channel hears ``onlineAdd`` and the
        joiner receives the full member list, itself included.
        """
        channel = text_arg(args, "channel").strip()
        if not channel:
            return

        nick, password = split_nick(text_arg(args, "nick"))
        if not nickname_valid(nick):
            self.warn(
                connection,
                "Nickname must consist of up to 24 letters, numbers, and underscores",
            )
            return

        moderation = self.ctx.moderation
        trip = None
        if moderation.is_admin_name(nick):
            if not moderation.check_admin_claim(nick, password):
                logger.warning(
                    "admin_impersonation_attempt",
                    address=connection.address,
                    channel=channel,
                )
                self.warn(connection, "Cannot impersonate the admin")
                return
        elif password:
            trip = moderation.trip_hash(password)

        registry = self.ctx.connections
        if registry.is_nick_taken_in_channel(channel, nick):
            self.warn(connection, "Nickname taken")
            return

        self.ctx.broadcaster.broadcast(OnlineAdd(nick=nick), channel)
        connection.join(channel, nick, trip)
        logger.info(
            "user_joined",
            address=connection.address,
            channel=channel,
            nick=nick,
            trip=trip,
        )

        nicks = [c.nick for c in registry.connections_in_channel(channel)]
        self.ctx.broadcaster.send(OnlineSet(nicks=nicks), connection)

    def handle_chat(self, connection: Connection, args: Args) -> None:
        moderation = self.ctx.moderation
        admin = moderation.is_admin(connection)
        message = Chat(
            nick=connection.nick,
            text=args["text"],
            admin=admin or None,
            mod=(not admin and moderation.is_mod(connection)) or None,
            trip=connection.trip,
        )
        self.ctx.broadcaster.broadcast(message, connection.channel)

    def handle_invite(self, connection: Connection, args: Args) -> None:
        """Privately point two users at a fresh random channel."""
        nick = text_arg(args, "nick")
        friend = self.ctx.connections.find_in_channel(connection.channel, nick)
        if friend is None:
            self.warn(connection, "Could not find user in channel")
            return
        if friend is connection:
            return

        channel = new_invite_channel()
        self.info(connection, f"You invited {friend.nick} to ?{channel}")
        self.info(friend, f"{connection.nick} invited you to ?{channel}")

    def handle_stats(self, connection: Connection, args: Args) -> None:
        joined = self.ctx.connections.joined_connections()
        addresses = {c.address for c in joined}
        channels = {c.channel for c in joined}
        self.info(connection, f"{len(addresses)} unique IPs in {len(channels)} channels")
