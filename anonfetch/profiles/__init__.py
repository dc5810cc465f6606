"""Browser impersonation profiles."""

from anonfetch.profiles.user_agents import (
    FALLBACK_USER_AGENT,
    RenderedProfile,
    UserAgentProfile,
    UserAgentProfileProvider,
)

__all__ = [
    "FALLBACK_USER_AGENT",
    "RenderedProfile",
    "UserAgentProfile",
    "UserAgentProfileProvider",
]
