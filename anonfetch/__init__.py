"""Anonymization-aware HTTP fetch layer."""

from anonfetch.config.settings import FetchSettings
from anonfetch.fetch.client import FetchClient
from anonfetch.fetch.options import FetchOptions
from anonfetch.identity.rotator import IdentityRotator
from anonfetch.main import build_client

__all__ = [
    "FetchClient",
    "FetchOptions",
    "FetchSettings",
    "IdentityRotator",
    "build_client",
]
