"""Command framework for chanrelay.

Provides the Command record, the BaseCommandHandler ABC, the
ServerContext dependency container and the CommandRegistry, plus the
built-in handler groups.
"""

from .base import BaseCommandHandler, Command, CommandRegistry, ServerContext
from .core import CoreCommandHandler
from .moderation import AdminCommandHandler, ModerationCommandHandler

__all__ = [
    "BaseCommandHandler",
    "Command",
    "CommandRegistry",
    "ServerContext",
    "CoreCommandHandler",
    "ModerationCommandHandler",
    "AdminCommandHandler",
    "build_registry",
]


def build_registry(ctx: ServerContext) -> CommandRegistry:
    """Registry holding every built-in command."""
    registry = CommandRegistry()
    registry.register(CoreCommandHandler(ctx))
    registry.register(ModerationCommandHandler(ctx))
    registry.register(AdminCommandHandler(ctx))
    return registry
