"""Abuse-rate limiter for chanrelay.

Every client action carries a penalty cost. Costs accumulate into a
per-identity score that decays exponentially: after one half-life an
idle identity's score has halved. Bursts of legitimate activity are
forgiven quickly while sustained flooding outruns the decay and trips
the threshold.

Identities can also be arrested (blocked regardless of score) and
pardoned. The startup jail file is a plain list of identities to
arrest.

Key classes:
    RateRecord: Per-identity abuse state.
    RateLimiter: Scores, checks and blocks identities.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

import structlog

logger = structlog.get_logger("chanrelay.police")

DEFAULT_HALFLIFE_SECONDS = 30.0
DEFAULT_THRESHOLD = 15.0


@dataclass
class RateRecord:
    """Abuse state for one identity.

    Attributes:
        score: Decayed abuse score as of ``last_update``.
        last_update: Clock reading of the last score update.
        arrested: Blocked regardless of score.
    """
    score: float
    last_update: float
    arrested: bool = False


class RateLimiter:
    """Tracks a time-decayed abuse score per identity.

    Args:
        halflife: Seconds for a score to decay to half its value.
        threshold: Scores at or above this are rejected.
        clock: Monotonic time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        halflife: float = DEFAULT_HALFLIFE_SECONDS,
        threshold: float = DEFAULT_THRESHOLD,
        clock: Optional[Callable[[], float]] = None,
    ):
        if halflife <= 0:
            raise ValueError("halflife must be positive")
        self.halflife = halflife
        self.threshold = threshold
        self._clock = clock or time.monotonic
        self._records: Dict[str, RateRecord] = {}

    def _search(self, identity: str) -> RateRecord:
        """Return the record for an identity, creating it on first use."""
        record = self._records.get(identity)
        if record is None:
            record = RateRecord(score=0.0, last_update=self._clock())
            self._records[identity] = record
        return record

    def _decayed(self, record: RateRecord, now: float) -> float:
        elapsed = max(0.0, now - record.last_update)
        return record.score * 2 ** (-elapsed / self.halflife)

    def check(self, identity: str, cost: float) -> bool:
        """Add ``cost`` to an identity's decayed score and test it.

        A cost of zero is a probe: decay still applies, so an expired
        high score can drop back under the threshold.

        Returns:
            True if the identity is allowed to act, False if it is
            arrested or its score reached the threshold.
        """
        record = self._search(identity)
        if record.arrested:
            return False

        now = self._clock()
        record.score = self._decayed(record, now) + cost
        record.last_update = now

        if record.score >= self.threshold:
            logger.info(
                "identity_over_threshold",
                identity=identity,
                score=round(record.score, 2),
                threshold=self.threshold,
            )
            return False
        return True

    def arrest(self, identity: str) -> None:
        """Block an identity until it is pardoned."""
        record = self._search(identity)
        if not record.arrested:
            logger.info("identity_arrested", identity=identity)
        record.arrested = True

    def pardon(self, identity: str) -> None:
        """Lift a block. The score is left as it is."""
        record = self._search(identity)
        if record.arrested:
            logger.info("identity_pardoned", identity=identity)
        record.arrested = False

    def is_arrested(self, identity: str) -> bool:
        record = self._records.get(identity)
        return record is not None and record.arrested

    def score(self, identity: str) -> float:
        """Current decayed score, without updating the record."""
        record = self._records.get(identity)
        if record is None:
            return 0.0
        return self._decayed(record, self._clock())

    def import_blocklist(self, entries: Iterable[str]) -> int:
        """Arrest every identity in a jail listing.

        Blank lines and lines starting with ``#`` are skipped.

        Returns:
            Number of entries arrested.
        """
        count = 0
        for entry in entries:
            entry = entry.rstrip()
            if not entry or entry.startswith("#"):
                continue
            self.arrest(entry)
            count += 1
        return count

    def load_blocklist(self, path: Path) -> int:
        """Arrest the identities listed in a jail file.

        The file only exists when someone wants bans to survive a
        restart, so a missing or unreadable file is not an error.
        Undecodable bytes are replaced rather than rejected.

        Returns:
            Number of entries arrested.
        """
        try:
            text = Path(path).read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.debug("jail_file_missing", path=str(path))
            return 0
        except OSError as e:
            logger.warning("jail_file_unreadable", path=str(path), error=str(e))
            return 0
        count = self.import_blocklist(text.splitlines())
        logger.info("jail_loaded", path=str(path), arrested=count)
        return count

    def __len__(self) -> int:
        return len(self._records)
