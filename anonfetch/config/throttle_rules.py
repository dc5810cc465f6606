"""Throttle rule models and YAML loader.

Provides a typed Pydantic model for per-host throttling rules and a loader
function that parses the YAML config into those models.

Expected layout::

    throttle:
      example.com: {time: 10, max: 2}
      api.example.org: {time: 1, max: 1}
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class ThrottleRule(BaseModel):
    """At most ``max_requests`` requests per ``max_seconds`` for one host."""

    model_config = ConfigDict(populate_by_name=True)

    max_seconds: float = Field(default=0, ge=0, alias="time")
    max_requests: int = Field(default=0, ge=0, alias="max")


UNTHROTTLED = ThrottleRule()


def parse_throttle_rules(raw: object) -> dict[str, ThrottleRule]:
    """Validate a ``{host: {time, max}}`` mapping.

    Invalid entries are logged and replaced by an unthrottled rule so a typo
    never blocks a host forever.
    """
    if not isinstance(raw, dict):
        logger.warning("Throttle rules must be a mapping, got %s", type(raw).__name__)
        return {}

    rules: dict[str, ThrottleRule] = {}
    for host, config in raw.items():
        try:
            rules[str(host).lower()] = ThrottleRule.model_validate(config)
        except ValidationError as exc:
            logger.warning(
                "Invalid throttle configuration for host %r: %r (%s); leaving it unthrottled",
                host,
                config,
                exc,
            )
            rules[str(host).lower()] = UNTHROTTLED
    return rules


def load_throttle_rules(yaml_path: str) -> dict[str, ThrottleRule]:
    """Parse a throttle rules YAML file.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        A dict mapping host names to ThrottleRule instances. If the file is
        missing or unreadable, returns an empty dict (everything unthrottled).
    """
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Throttle rules file not found at %s, no throttling", yaml_path)
        return {}

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse throttle rules YAML at %s: %s", yaml_path, exc)
        return {}

    if not isinstance(raw, dict) or "throttle" not in raw:
        logger.warning("Throttle rules YAML missing 'throttle' key, no throttling")
        return {}

    rules = parse_throttle_rules(raw["throttle"] or {})
    logger.info("Loaded throttle rules for %d hosts from %s", len(rules), yaml_path)
    return rules
