"""Quality-of-service accounting keyed by network identity.

Every download outcome is booked against the identity (exit node) that was
active when the request went out. The rotator consults these counters to
decide whether an identity is worth keeping.
"""

from __future__ import annotations

import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY = "default"
RECENT_ERRORS = 10
DYSFUNCTIONAL_MIN_SAMPLES = 3


@dataclass
class QoSStats:
    """Counters for a single identity."""

    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    cumulative_seconds: float = 0.0
    cumulative_bytes: int = 0
    last_outcome: str = "success"
    last_outcome_streak: int = 0
    errors: dict[str, int] = field(default_factory=dict)
    recent_errors: deque[str] = field(
        default_factory=lambda: deque(maxlen=RECENT_ERRORS)
    )

    @property
    def success_ratio(self) -> float:
        return self.success_count / self.total if self.total else 1.0

    @property
    def bytes_per_second(self) -> float:
        if self.cumulative_seconds <= 0:
            return 0.0
        return self.cumulative_bytes / self.cumulative_seconds

    def register(self, outcome: str) -> None:
        self.total += 1
        if outcome == "success":
            self.success_count += 1
        else:
            self.failure_count += 1

        if self.last_outcome == outcome:
            self.last_outcome_streak += 1
        else:
            self.last_outcome = outcome
            self.last_outcome_streak = 1

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "success": self.success_count,
            "failure": self.failure_count,
            "seconds": round(self.cumulative_seconds, 3),
            "bytes": self.cumulative_bytes,
            "speed": round(self.bytes_per_second, 1),
            "success_ratio": round(self.success_ratio, 3),
            "last_outcome": self.last_outcome,
            "last_outcome_streak": self.last_outcome_streak,
            "errors": dict(self.errors),
        }


class QualityTracker:
    """In-memory per-identity QoS counters.

    Args:
        max_identities: Upper bound on tracked identities. The least recently
            used identity other than the active one is evicted first.
    """

    def __init__(self, max_identities: int = 256) -> None:
        self._max_identities = max(1, max_identities)
        self._stats: OrderedDict[str, QoSStats] = OrderedDict()
        self._active = DEFAULT_IDENTITY
        self._touch(self._active)

    @property
    def active_identity(self) -> str:
        return self._active

    def set_identity(self, identity: str = DEFAULT_IDENTITY) -> str:
        """Make *identity* the key for subsequent outcomes."""
        self._active = identity
        self._touch(identity)
        return identity

    def add_success(self, elapsed: float, size: int) -> None:
        stats = self._touch(self._active)
        stats.cumulative_seconds += elapsed
        stats.cumulative_bytes += size
        stats.register("success")

    def add_failure(self, error: str) -> None:
        stats = self._touch(self._active)
        stats.errors[error] = stats.errors.get(error, 0) + 1
        stats.recent_errors.append(error)
        stats.register("failure")

    def get_stats(self, identity: str | None = None) -> QoSStats:
        """Stats for *identity* (active by default); unknown identities read as zero."""
        return self._stats.get(identity or self._active) or QoSStats()

    def is_dysfunctional(self, identity: str | None = None) -> bool:
        stats = self.get_stats(identity)
        return stats.total >= DYSFUNCTIONAL_MIN_SAMPLES and stats.success_count == 0

    def identities(self) -> list[str]:
        return list(self._stats)

    def snapshot(self, identity: str | None = None) -> dict:
        return self.get_stats(identity).as_dict()

    def _touch(self, identity: str) -> QoSStats:
        stats = self._stats.get(identity)
        if stats is None:
            stats = self._stats[identity] = QoSStats()
            self._evict()
        else:
            self._stats.move_to_end(identity)
        return stats

    def _evict(self) -> None:
        while len(self._stats) > self._max_identities:
            for identity in self._stats:
                if identity != self._active:
                    del self._stats[identity]
                    logger.debug("Evicted QoS stats for identity %s", identity)
                    break
            else:
                return
