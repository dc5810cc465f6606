"""Configuration module: settings and throttle rules."""

from anonfetch.config.settings import DEFAULT_IDENTITY_ORACLES, FetchSettings
from anonfetch.config.throttle_rules import (
    ThrottleRule,
    load_throttle_rules,
    parse_throttle_rules,
)

__all__ = [
    "DEFAULT_IDENTITY_ORACLES",
    "FetchSettings",
    "ThrottleRule",
    "load_throttle_rules",
    "parse_throttle_rules",
]
