"""Wire protocol for chanrelay.

Inbound frames are JSON objects with a string ``cmd`` field plus
command-specific fields. Outbound frames are pydantic models that
serialize to ``{"cmd": ..., ...}``; the broadcast engine adds
``time`` (milliseconds since the epoch) at send time.

Outbound shapes:
    warn{text}, info{text}, chat{nick, text, admin?, mod?, trip?},
    onlineAdd{nick}, onlineRemove{nick}, onlineSet{nicks}
"""

from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError

from .exceptions import ProtocolError


class InboundFrame(BaseModel):
    """A decoded client frame. Unknown fields are kept as command args."""

    model_config = ConfigDict(extra="allow")

    cmd: StrictStr


def decode_frame(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse a client frame into its command name and arguments.

    Returns:
        ``(cmd, args)`` where args is the full frame as a dict.

    Raises:
        ProtocolError: If the frame is not a JSON object with a string
            ``cmd``.
    """
    try:
        frame = InboundFrame.model_validate_json(raw)
    except ValidationError as e:
        raise ProtocolError(
            "Malformed frame", module="protocol", errors=e.error_count()
        ) from e
    return frame.cmd, frame.model_dump()


class OutboundMessage(BaseModel):
    """Base for every server-to-client frame."""

    cmd: str

    def to_payload(self) -> Dict[str, Any]:
        """Dict form with unset optional fields left out."""
        return self.model_dump(exclude_none=True)


class Warn(OutboundMessage):
    cmd: Literal["warn"] = "warn"
    text: str


class Info(OutboundMessage):
    cmd: Literal["info"] = "info"
    text: str


class Chat(OutboundMessage):
    """A chat line. ``admin`` and ``mod`` are mutually exclusive."""

    cmd: Literal["chat"] = "chat"
    nick: str
    text: str
    admin: Optional[bool] = None
    mod: Optional[bool] = None
    trip: Optional[str] = None


class OnlineAdd(OutboundMessage):
    cmd: Literal["onlineAdd"] = "onlineAdd"
    nick: str


class OnlineRemove(OutboundMessage):
    cmd: Literal["onlineRemove"] = "onlineRemove"
    nick: str


class OnlineSet(OutboundMessage):
    cmd: Literal["onlineSet"] = "onlineSet"
    nicks: List[str]
