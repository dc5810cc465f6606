"""Browser impersonation profiles.

Loads a JSON catalog of browser header sets and renders one random profile
per call. Header templates may reference randomizer variables as
``${name}``; each render draws fresh values, so two renders of the same
catalog entry can differ in e.g. the minor browser version.

Catalog entry layout::

    {
      "name": "Chrome 131 / Windows",
      "headers": {"User-Agent": "Mozilla/5.0 ... Chrome/131.0.${build}.0 ..."},
      "randomizers": {"build": ["random", 6700, 6800]}
    }
"""

from __future__ import annotations

import json
import logging
import random
import re
from dataclasses import dataclass, field
from pathlib import Path

from anonfetch.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "ua-headers.json"

FALLBACK_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z0-9_]+)\}")


@dataclass
class UserAgentProfile:
    """One catalog entry before randomization."""

    display_name: str
    headers: dict[str, str]
    randomizers: dict[str, list] = field(default_factory=dict)


@dataclass
class RenderedProfile:
    """A profile ready for the transport.

    ``headers`` never contains ``User-Agent``; the user agent travels
    separately as ``user_agent``.
    """

    user_agent: str
    headers: dict[str, str]
    display_name: str = ""


class UserAgentProfileProvider:
    """Random profile selection over a JSON catalog.

    The catalog is read once, on first use.
    """

    def __init__(
        self,
        catalog_path: str | Path | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._catalog_path = Path(catalog_path) if catalog_path else DEFAULT_CATALOG_PATH
        self._rng = rng or random.Random()
        self._profiles: list[UserAgentProfile] | None = None

    @property
    def profiles(self) -> list[UserAgentProfile]:
        if self._profiles is None:
            self._profiles = self._load()
        return self._profiles

    def pick(self) -> RenderedProfile:
        """Return a uniformly drawn profile with all placeholders resolved."""
        profile = self._rng.choice(self.profiles)
        rendered = self.render(profile)
        logger.info("Selected User-Agent: %s", rendered.user_agent)
        return rendered

    def render(self, profile: UserAgentProfile) -> RenderedProfile:
        values = {
            name: self._draw(name, randomizer) for name, randomizer in profile.randomizers.items()
        }

        def substitute(match: re.Match) -> str:
            return values.get(match.group(1), match.group(0))

        headers = {
            name: _PLACEHOLDER.sub(substitute, str(template))
            for name, template in profile.headers.items()
        }
        user_agent = FALLBACK_USER_AGENT
        for name in list(headers):
            if name.lower() == "user-agent":
                user_agent = headers.pop(name)

        return RenderedProfile(
            user_agent=user_agent,
            headers=headers,
            display_name=profile.display_name,
        )

    def _draw(self, name: str, randomizer: object) -> str:
        if not isinstance(randomizer, list) or not randomizer:
            return ""
        kind = randomizer[0]
        if kind == "random":
            if len(randomizer) < 3:
                return ""
            return str(self._rng.randint(int(randomizer[1]), int(randomizer[2])))
        logger.warning(
            "Unsupported randomizer type %r for variable %r in user agent profile",
            kind,
            name,
        )
        return ""

    def _load(self) -> list[UserAgentProfile]:
        path = self._catalog_path
        if not path.exists():
            raise ConfigurationError(f"User agent catalog not found at {path}")
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigurationError(
                f"Failed to read user agent catalog {path}: {exc}"
            ) from exc

        if not isinstance(raw, list) or not raw:
            raise ConfigurationError(f"User agent catalog is empty in {path}")

        profiles = []
        for index, entry in enumerate(raw):
            if not isinstance(entry, dict):
                logger.warning("Skipping malformed user agent profile #%d", index)
                continue
            profiles.append(
                UserAgentProfile(
                    display_name=str(entry.get("name", f"profile-{index}")),
                    headers=dict(entry.get("headers") or {}),
                    randomizers=dict(entry.get("randomizers") or {}),
                )
            )
        if not profiles:
            raise ConfigurationError(f"User agent catalog has no usable profiles in {path}")

        logger.debug("Loaded %d user agent profiles from %s", len(profiles), path)
        return profiles
