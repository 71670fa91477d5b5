"""Custom exception hierarchy for chanrelay.

Classifies failures by how far their damage reaches: a single
connection, nothing at all (the user gets a warning), or the process
environment (bad configuration). The dispatcher and transport decide
whether to tear a socket down by looking at ``severity``.
"""

from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    """Classification of errors for teardown decisions."""
    CONNECTION = "connection"          # Drop the offending socket
    RECOVERABLE = "recoverable"        # Warn the originator, keep going
    INFRASTRUCTURE = "infrastructure"  # Config or environment problem


class ChanRelayError(Exception):
    """Base exception for all chanrelay errors.

    Attributes:
        message: Human-readable error description.
        severity: How far the failure reaches.
        module: Originating module name (e.g. "dispatcher").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        severity: Severity = Severity.RECOVERABLE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.severity = severity
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def drops_connection(self) -> bool:
        """Whether the connection that caused this must be closed."""
        return self.severity == Severity.CONNECTION

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, severity={self.severity.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Protocol exceptions
# ---------------------------------------------------------------------------

class ProtocolError(ChanRelayError):
    """A client sent something the server cannot process.

    Covers unparseable frames, frames that are not JSON objects, a
    missing or non-string ``cmd`` and any unexpected failure while a
    command ran. Always fatal to the connection.

    Attributes:
        address: Client address of the offending connection (if known).
    """

    def __init__(
        self,
        message: str = "",
        *,
        address: Optional[str] = None,
        severity: Severity = Severity.CONNECTION,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.address = address
        super().__init__(
            message, severity=severity, module=module or "protocol", **context
        )


# ---------------------------------------------------------------------------
# Configuration exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(ChanRelayError):
    """Invalid or missing configuration.

    Defaults to INFRASTRUCTURE because config issues are environmental
    and no client action can fix them.
    """

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        severity: Severity = Severity.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(
            message, severity=severity, module=module or "config", **context
        )
