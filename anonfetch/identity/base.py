"""Capability interface the FetchClient uses to change its network identity."""

from __future__ import annotations

from abc import ABC, abstractmethod

from anonfetch.resilience.quality import DEFAULT_IDENTITY


class IdentityProvider(ABC):
    """Something that can rotate and blacklist egress identities.

    The FetchClient holds at most one provider and calls
    :meth:`rotate_identity` when network quality degrades. Subclasses MUST
    make nested calls (e.g. from a post-rotation callback) harmless.
    """

    @property
    def identity(self) -> str:
        """The identity currently confirmed as active."""
        return DEFAULT_IDENTITY

    @abstractmethod
    async def rotate_identity(self) -> None:
        """Switch to a new egress identity."""
        ...

    @abstractmethod
    async def exclude_identity(self, identity: str) -> None:
        """Never use *identity* again."""
        ...
