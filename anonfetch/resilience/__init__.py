"""Resilience components: per-host throttling and per-identity QoS."""

from anonfetch.resilience.quality import DEFAULT_IDENTITY, QoSStats, QualityTracker
from anonfetch.resilience.rate_limiter import ThrottleWindow, Throttler, host_of

__all__ = [
    "DEFAULT_IDENTITY",
    "QoSStats",
    "QualityTracker",
    "ThrottleWindow",
    "Throttler",
    "host_of",
]
