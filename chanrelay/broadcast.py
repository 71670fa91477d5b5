"""Message delivery for chanrelay.

Stamps outbound messages with the send time, serializes them to
compact JSON and hands them to connection transports. Delivery is
best-effort: closed sockets are skipped and transport failures are
logged and dropped, never retried.
"""

import json
import time
from typing import Callable, Optional

import structlog

from .connections import Connection, ConnectionRegistry
from .protocol import OutboundMessage

logger = structlog.get_logger("chanrelay.server")


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class BroadcastEngine:
    """Delivers messages to one connection or a whole channel.

    Args:
        registry: Source of channel membership.
        clock: Millisecond wall-clock source (injectable for tests).
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.registry = registry
        self._clock = clock or now_ms

    def send(self, message: OutboundMessage, connection: Connection) -> None:
        """Stamp, serialize and deliver a message to one connection."""
        payload = message.to_payload()
        payload["time"] = self._clock()
        transport = connection.transport
        if transport is None or not transport.is_open:
            return
        try:
            transport.send_text(
                json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
            )
        except Exception as e:
            logger.debug(
                "delivery_failed",
                address=connection.address,
                cmd=payload.get("cmd"),
                error=str(e),
            )

    def broadcast(self, message: OutboundMessage, channel: Optional[str] = None) -> None:
        """Deliver to a channel, or to every joined connection if no channel."""
        if channel is None:
            recipients = self.registry.joined_connections()
        else:
            recipients = self.registry.connections_in_channel(channel)
        for connection in recipients:
            self.send(message, connection)
