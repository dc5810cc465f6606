"""Identity rotation: capability interface, control protocol and rotator."""

from anonfetch.identity.base import IdentityProvider
from anonfetch.identity.control import ControlSession
from anonfetch.identity.rotator import (
    PROBE_IDENTITY,
    ExclusionList,
    IdentityRotator,
    RotationState,
    parse_ip,
)

__all__ = [
    "PROBE_IDENTITY",
    "ControlSession",
    "ExclusionList",
    "IdentityProvider",
    "IdentityRotator",
    "RotationState",
    "parse_ip",
]
