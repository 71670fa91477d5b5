"""Base classes for the command framework.

Every client action is a Command record: a precondition, a penalty
cost, a response for when the sender is rate-limited, and a handler.
Commands are grouped into classes that extend BaseCommandHandler and
are registered with a CommandRegistry that maps command names to
records.

Cost functions are pure: they return the cost together with the
normalized arguments, and the dispatcher hands those normalized
arguments to the precondition and handler.

Key classes:
    ServerContext: Dependency container shared by all handlers.
    Command: One registry entry.
    BaseCommandHandler: ABC that handler groups must implement.
    CommandRegistry: Maps command names to Command records.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Union

import structlog

from ..connections import Connection
from ..protocol import Info, Warn

if TYPE_CHECKING:
    from ..broadcast import BroadcastEngine
    from ..config import Config
    from ..connections import ConnectionRegistry
    from ..moderation import ModerationPolicy
    from ..police import RateLimiter

logger = structlog.get_logger("chanrelay.commands")

DEFAULT_PENALTY_TEXT = "You are doing stuff too much! Wait a bit!"

Args = Dict[str, Any]
Precondition = Callable[[Connection, Args], bool]
CostFunction = Callable[[Connection, Args], Tuple[float, Args]]
Handler = Callable[[Connection, Args], None]
PenaltyResponse = Callable[[Connection, Args], None]


def always(connection: Connection, args: Args) -> bool:
    return True


def text_arg(args: Args, key: str) -> Optional[str]:
    """Read a command field as text.

    Strings and non-zero numbers are accepted; anything missing,
    empty or structured counts as not given.
    """
    value = args.get(key)
    if isinstance(value, str):
        return value or None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return str(value) if value else None


@dataclass
class ServerContext:
    """Dependency container for command handlers and the dispatcher.

    Owns no state of its own; every registry lives in exactly one of
    these and is passed by reference.
    """

    config: "Config"
    police: "RateLimiter"
    connections: "ConnectionRegistry"
    broadcaster: "BroadcastEngine"
    moderation: "ModerationPolicy"


@dataclass(frozen=True)
class Command:
    """A named client action.

    Attributes:
        name: Value of the ``cmd`` field that selects this command.
        handler: Runs the action once the sender passed both checks.
        precondition: Whether the action applies at all. Failing it is
            a silent no-op.
        cost: Constant penalty, or a function returning
            ``(cost, normalized_args)``.
        on_penalized: Warning text sent to a rate-limited sender, or a
            callable taking over the response entirely.
    """
    name: str
    handler: Handler
    precondition: Precondition = always
    cost: Union[float, CostFunction] = 1
    on_penalized: Union[str, PenaltyResponse] = DEFAULT_PENALTY_TEXT

    def evaluate_cost(self, connection: Connection, args: Args) -> Tuple[float, Args]:
        """Return ``(cost, normalized_args)`` for one invocation."""
        if callable(self.cost):
            return self.cost(connection, args)
        return float(self.cost), args


class BaseCommandHandler(ABC):
    """Abstract base class for command handler groups.

    Subclasses implement get_commands() to return the Command records
    they contribute. Handlers receive (connection, args) and report
    back through ``self.ctx.broadcaster``.

    Args:
        ctx: Shared ServerContext dependency container.
    """

    def __init__(self, ctx: ServerContext):
        self.ctx = ctx

    @abstractmethod
    def get_commands(self) -> List[Command]:
        """Return the commands this group provides."""
        ...

    def warn(self, connection: Connection, text: str) -> None:
        self.ctx.broadcaster.send(Warn(text=text), connection)

    def info(self, connection: Connection, text: str) -> None:
        self.ctx.broadcaster.send(Info(text=text), connection)


class CommandRegistry:
    """Maps command names to Command records.

    Registration order is kept, so the table reads in the order the
    groups were registered.
    """

    def __init__(self):
        self._commands: Dict[str, Command] = {}

    def register(self, handler: BaseCommandHandler) -> None:
        """Register all commands from a BaseCommandHandler subclass."""
        for command in handler.get_commands():
            self.add(command, source=type(handler).__name__)

    def add(self, command: Command, source: str = "external") -> None:
        if command.name in self._commands:
            logger.warning(
                "command_handler_conflict",
                command=command.name,
                source=source,
            )
        self._commands[command.name] = command

    def get(self, name: str) -> Optional[Command]:
        """Look up a command by name."""
        return self._commands.get(name)

    @property
    def command_names(self) -> List[str]:
        """All registered command names, in registration order."""
        return list(self._commands)

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)
