"""Inbound frame dispatcher for chanrelay.

Runs every client frame through the same pipeline:

    size guard -> decode -> lookup -> cost -> rate limit
        -> precondition -> handler

Oversized frames and unknown commands are dropped without a trace.
A rate-limited sender gets the command's penalty response. A failed
precondition is a silent no-op. Anything that goes wrong inside a
command is logged and surfaces as a ProtocolError, which tells the
transport to drop the connection.

Every method here is synchronous: a frame is handled to completion
before the event loop can deliver the next one, which keeps
multi-step checks such as "is the nick free, then take it" atomic.
"""

from typing import Optional, Union

import structlog

from .commands.base import Command, CommandRegistry, ServerContext
from .connections import Connection, Transport
from .exceptions import ProtocolError
from .protocol import OnlineRemove, Warn, decode_frame

logger = structlog.get_logger("chanrelay.server")


class Dispatcher:
    """Feeds client frames and socket lifecycle events into the core.

    Args:
        ctx: Shared registries and policies.
        commands: Command table to dispatch against.
    """

    def __init__(self, ctx: ServerContext, commands: CommandRegistry):
        self.ctx = ctx
        self.commands = commands

    def open(self, address: str, transport: Optional[Transport] = None) -> Connection:
        """Register a newly accepted socket."""
        connection = Connection(address=address, transport=transport)
        self.ctx.connections.add(connection)
        logger.debug("connection_opened", address=address, total=len(self.ctx.connections))
        return connection

    def handle_frame(self, connection: Connection, raw: Union[str, bytes]) -> None:
        """Process one inbound frame.

        Raises:
            ProtocolError: If the frame is malformed or the command
                failed. The caller must close the connection.
        """
        if isinstance(raw, str):
            size = len(raw.encode("utf-8"))
        else:
            size = len(raw)
        if size > self.ctx.config.max_frame_bytes:
            logger.debug("frame_too_large", address=connection.address, size=size)
            return

        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ProtocolError(
                    "Frame is not UTF-8", address=connection.address
                ) from e

        try:
            name, args = decode_frame(raw)
        except ProtocolError as e:
            e.address = connection.address
            raise

        command = self.commands.get(name)
        if command is None:
            return

        try:
            self._run(command, connection, args)
        except Exception as e:
            logger.exception(
                "command_failed",
                cmd=name,
                address=connection.address,
                error=str(e),
            )
            raise ProtocolError(
                f"Command {name} failed",
                address=connection.address,
                module="dispatcher",
                cmd=name,
            ) from e

    def _run(self, command: Command, connection: Connection, args: dict) -> None:
        cost, args = command.evaluate_cost(connection, args)

        if not self.ctx.police.check(connection.address, cost):
            logger.debug(
                "command_penalized",
                cmd=command.name,
                address=connection.address,
                cost=cost,
            )
            self._penalize(command, connection, args)
            return

        if command.precondition(connection, args):
            command.handler(connection, args)

    def _penalize(self, command: Command, connection: Connection, args: dict) -> None:
        response = command.on_penalized
        if callable(response):
            response(connection, args)
        else:
            self.ctx.broadcaster.send(Warn(text=response), connection)

    def handle_close(self, connection: Connection) -> None:
        """Forget a closed socket and tell its channel it left."""
        if not self.ctx.connections.remove(connection):
            return
        logger.debug(
            "connection_closed",
            address=connection.address,
            nick=connection.nick,
            channel=connection.channel,
        )
        if connection.joined:
            try:
                self.ctx.broadcaster.broadcast(
                    OnlineRemove(nick=connection.nick), connection.channel
                )
            except Exception as e:
                logger.warning("close_broadcast_failed", error=str(e))
