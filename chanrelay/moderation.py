"""Moderation policy for chanrelay.

Derives admin and moderator status from the configured credentials,
computes trip hashes, and carries out bans through the rate limiter.
Credentials are read from the config on every call so a hot-reloaded
moderator list takes effect immediately.
"""

import base64
import hashlib
import hmac
from typing import Optional

import structlog

from .config import Config
from .connections import Connection
from .police import RateLimiter

logger = structlog.get_logger("chanrelay.security")

TRIP_LENGTH = 6


class ModerationPolicy:
    """Admin/moderator rules and ban bookkeeping.

    Args:
        config: Source of salt, admin name, admin password and mods.
        police: Rate limiter that enforces bans.
    """

    def __init__(self, config: Config, police: RateLimiter):
        self.config = config
        self.police = police

    def trip_hash(self, password: str) -> str:
        """Six-character pseudonymous marker for a password.

        Not a credential: collisions are expected at this length.
        """
        digest = hashlib.sha256((password + self.config.salt).encode("utf-8")).digest()
        return base64.b64encode(digest).decode("ascii")[:TRIP_LENGTH]

    def is_admin_name(self, nick: str) -> bool:
        admin = self.config.admin
        return bool(admin) and nick.lower() == admin.lower()

    def check_admin_claim(self, nick: str, password: Optional[str]) -> bool:
        """Whether ``nick`` may be used with ``password``.

        Any nickname other than the admin's is fine. The admin's
        nickname (in any letter case) requires the admin password.
        """
        if not self.is_admin_name(nick):
            return True
        expected = self.config.password
        if not expected or password is None:
            return False
        return hmac.compare_digest(password.encode("utf-8"), expected.encode("utf-8"))

    def is_admin(self, connection: Connection) -> bool:
        admin = self.config.admin
        return bool(admin) and connection.nick == admin

    def is_mod(self, connection: Connection) -> bool:
        if self.is_admin(connection):
            return True
        return connection.trip is not None and connection.trip in self.config.mods

    def ban(self, moderator: Connection, target: Connection) -> bool:
        """Arrest the target's address.

        Returns:
            False (and leaves the target alone) if the target is a
            moderator.
        """
        if self.is_mod(target):
            logger.warning(
                "ban_refused_moderator",
                moderator=moderator.nick,
                target=target.nick,
                channel=moderator.channel,
            )
            return False
        self.police.arrest(target.address)
        logger.info(
            "user_banned",
            moderator=moderator.nick,
            moderator_trip=moderator.trip,
            target=target.nick,
            address=target.address,
            channel=moderator.channel,
        )
        return True

    def unban(self, moderator: Connection, address: str) -> None:
        self.police.pardon(address)
        logger.info(
            "address_unbanned",
            moderator=moderator.nick,
            moderator_trip=moderator.trip,
            address=address,
            channel=moderator.channel,
        )
