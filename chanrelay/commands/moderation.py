"""Moderator and admin command handlers for chanrelay.

Moderators (the admin, or anyone whose trip is in the ``mods`` list)
can ban and unban. The admin alone can list every channel and send a
server-wide notice.
"""

from __future__ import annotations

from typing import List

from ..connections import Connection
from ..protocol import Info
from .base import Args, BaseCommandHandler, Command, text_arg


class ModerationCommandHandler(BaseCommandHandler):
    """Handles ban and unban."""

    def get_commands(self) -> List[Command]:
        return [
            # Tiny cost so a moderator can't spam bans either
            Command("ban", self.handle_ban, precondition=self.can_ban, cost=0.1),
            Command("unban", self.handle_unban, precondition=self.can_unban, cost=0),
        ]

    def _is_joined_mod(self, connection: Connection) -> bool:
        return connection.joined and self.ctx.moderation.is_mod(connection)

    def can_ban(self, connection: Connection, args: Args) -> bool:
        return self._is_joined_mod(connection) and text_arg(args, "nick") is not None

    def can_unban(self, connection: Connection, args: Args) -> bool:
        return self._is_joined_mod(connection) and text_arg(args, "ip") is not None

    def handle_ban(self, connection: Connection, args: Args) -> None:
        """Arrest the address of a user in the moderator's channel."""
        nick = text_arg(args, "nick")
        target = self.ctx.connections.find_in_channel(connection.channel, nick)
        if target is None:
            self.warn(connection, f"Could not find {nick}")
            return

        if not self.ctx.moderation.ban(connection, target):
            self.warn(connection, "Cannot ban moderator")
            return

        self.ctx.broadcaster.broadcast(Info(text=f"Banned {nick}"), connection.channel)

    def handle_unban(self, connection: Connection, args: Args) -> None:
        ip = text_arg(args, "ip")
        self.ctx.moderation.unban(connection, ip)
        self.info(connection, f"Unbanned {ip}")


class AdminCommandHandler(BaseCommandHandler):
    """Handles listUsers and broadcast."""

    def get_commands(self) -> List[Command]:
        return [
            Command("listUsers", self.handle_list_users, precondition=self.is_admin, cost=0),
            Command("broadcast", self.handle_broadcast, precondition=self.can_broadcast, cost=0),
        ]

    def is_admin(self, connection: Connection, args: Args) -> bool:
        return self.ctx.moderation.is_admin(connection)

    def can_broadcast(self, connection: Connection, args: Args) -> bool:
        return text_arg(args, "text") is not None and self.ctx.moderation.is_admin(connection)

    def handle_list_users(self, connection: Connection, args: Args) -> None:
        """Report every channel and its members.

        The headline counts all live connections, including ones that
        have not joined a channel yet.
        """
        registry = self.ctx.connections
        lines = [
            f"?{channel} {', '.join(nicks)}"
            for channel, nicks in registry.channels().items()
        ]
        text = f"{len(registry)} users online:\n\n" + "\n".join(lines)
        self.info(connection, text)

    def handle_broadcast(self, connection: Connection, args: Args) -> None:
        text = text_arg(args, "text")
        self.ctx.broadcaster.broadcast(Info(text=f"Server broadcast: {text}"))
