"""Exit-node rotation for an anonymizing proxy.

State machine:
- Stable(identity) -> Rotating: rotation requested (retry budget spent or the
  identity's quality degraded)
- Rotating -> Probing: kept-alive connection closed, new circuit signalled
- Probing -> Rotating: probe found no address, the same address, or an
  excluded / dysfunctional one
- Probing -> Stable(new identity): post-rotation callbacks run once

Dysfunctional identities are excluded before rotating away from them, and
the exclusion list is pushed to the daemon so future circuits avoid them.
"""

from __future__ import annotations

import asyncio
import inspect
import ipaddress
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterator
from enum import Enum
from typing import TYPE_CHECKING

from anonfetch.config.settings import DEFAULT_IDENTITY_ORACLES, FetchSettings
from anonfetch.errors import FetchError, IdentityRotationError
from anonfetch.fetch.options import FetchOptions
from anonfetch.identity.base import IdentityProvider
from anonfetch.identity.control import ControlSession
from anonfetch.resilience.quality import DEFAULT_IDENTITY

if TYPE_CHECKING:
    from anonfetch.fetch.client import FetchClient

logger = logging.getLogger(__name__)

PROBE_IDENTITY = "*identity probe*"

RotationCallback = Callable[["IdentityRotator"], Awaitable[None] | None]


class RotationState(str, Enum):
    """Rotator states."""

    STABLE = "stable"
    ROTATING = "rotating"
    PROBING = "probing"


def parse_ip(text: object) -> str | None:
    """Return the normalized IP address in *text*, or None."""
    if not isinstance(text, str):
        return None
    try:
        return str(ipaddress.ip_address(text.strip()))
    except ValueError:
        return None


class ExclusionList:
    """Identities never to be used again.

    Unbounded by default. With ``max_size`` the list behaves as an LRU set
    and forgets the oldest exclusion first.
    """

    def __init__(self, max_size: int | None = None) -> None:
        self._max_size = max_size
        self._items: OrderedDict[str, None] = OrderedDict()

    def add(self, identity: str) -> bool:
        """Add *identity*; return False if it was already excluded."""
        if identity in self._items:
            self._items.move_to_end(identity)
            return False
        self._items[identity] = None
        while self._max_size is not None and len(self._items) > self._max_size:
            forgotten, _ = self._items.popitem(last=False)
            logger.info("Exclusion list full, forgetting %s", forgotten)
        return True

    def __contains__(self, identity: object) -> bool:
        return identity in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)


class IdentityRotator(IdentityProvider):
    """Rotates the exit node behind a FetchClient.

    The rotator attaches itself to *client* and probes new identities
    through it, so probes share the client's proxy, headers and cookies.

    Parameters
    ----------
    client:
        The FetchClient whose identity is rotated.
    control_factory:
        Returns a fresh, unconnected ControlSession per exchange.
    oracles:
        "What is my IP" endpoints, tried in order.
    min_signal_interval:
        Minimum seconds between two circuit signals.
    max_cycles:
        Rotate+probe cycles allowed per rotation.
    exclusions:
        Shared exclusion list; a fresh unbounded one by default.
    """

    def __init__(
        self,
        client: FetchClient,
        control_factory: Callable[[], ControlSession],
        *,
        oracles: list[str] | None = None,
        min_signal_interval: float = 10.0,
        max_cycles: int = 10,
        exclusions: ExclusionList | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._quality = client.quality
        self._control_factory = control_factory
        self._oracles = list(oracles if oracles is not None else DEFAULT_IDENTITY_ORACLES)
        self._min_signal_interval = min_signal_interval
        self._max_cycles = max(1, max_cycles)
        self._exclusions = exclusions if exclusions is not None else ExclusionList()
        self._clock = clock
        self._sleep = sleep

        self._state = RotationState.STABLE
        self._identity: str | None = None
        self._last_signal: float | None = None
        self._callbacks: list[RotationCallback] = []
        self._in_progress = False
        self._rotations = 0

        client.attach_rotator(self)

    @classmethod
    def from_settings(cls, client: FetchClient, settings: FetchSettings) -> IdentityRotator:
        host, port, password = settings.require_control()

        def control_factory() -> ControlSession:
            return ControlSession(host, port, password, settings.control_timeout_seconds)

        return cls(
            client,
            control_factory,
            oracles=settings.identity_oracles,
            min_signal_interval=settings.rotation_min_interval_seconds,
            max_cycles=settings.rotation_max_cycles,
            exclusions=ExclusionList(settings.exclusion_max_size),
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def identity(self) -> str:
        return self._identity or DEFAULT_IDENTITY

    @property
    def state(self) -> RotationState:
        return self._state

    @property
    def excluded(self) -> list[str]:
        return list(self._exclusions)

    @property
    def rotations(self) -> int:
        return self._rotations

    @property
    def requests_since_rotation(self) -> int:
        return self._quality.get_stats(self.identity).total

    def on_rotate(self, callback: RotationCallback) -> None:
        """Run *callback(rotator)* after every successful rotation.

        Rotation by default flushes cookies and randomizes the user agent
        (see :func:`anonfetch.main.build_client`); callbacks run after that
        and may set up the new identity further.
        """
        self._callbacks.append(callback)

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    async def rotate_identity(self) -> None:
        """Move to a new, working exit node."""
        if self._in_progress:
            logger.debug("Identity rotation already in progress, nested request ignored")
            return

        self._in_progress = True
        previous = self._identity
        try:
            try:
                if (
                    self._state is RotationState.STABLE
                    and previous is not None
                    and self._quality.is_dysfunctional(previous)
                ):
                    await self.exclude_identity(previous)

                identity = await self._find_new_identity(previous)
            except BaseException:
                self._state = RotationState.STABLE
                self._quality.set_identity(previous or DEFAULT_IDENTITY)
                raise

            self._identity = identity
            self._state = RotationState.STABLE
            self._quality.set_identity(identity)
            self._rotations += 1
            logger.info(
                "Refreshed circuit (new IP %s) (%s)",
                identity,
                json.dumps(self._quality.snapshot(identity)),
                extra={"identity": identity},
            )
            # The new identity stands even if a callback fails.
            await self._run_callbacks()
        finally:
            self._in_progress = False

    async def exclude_identity(self, identity: str) -> None:
        """Exclude *identity* and tell the daemon to avoid it."""
        address = parse_ip(identity)
        if address is None:
            logger.debug("Not excluding %r: not an address", identity)
            return
        if not self._exclusions.add(address):
            return

        logger.warning(
            "Excluding dysfunctional exit node %s (%s)",
            address,
            json.dumps(self._quality.snapshot(identity)),
            extra={"identity": address},
        )
        async with self._control_factory() as session:
            await session.exclude_exit_nodes(self._exclusions)

    async def probe_identity(self) -> str | None:
        """Ask the oracles for the current egress address."""
        for url in self._oracles:
            try:
                text = await self._client.download(url, options=FetchOptions(fail_fast=True))
            except FetchError as exc:
                logger.debug("Identity oracle %s failed: %s", url, exc)
                continue
            address = parse_ip(text)
            if address is not None:
                return address
            logger.debug("Identity oracle %s returned no address", url)
        return None

    async def _find_new_identity(self, previous: str | None) -> str:
        for cycle in range(1, self._max_cycles + 1):
            self._state = RotationState.ROTATING
            await self._client.close_connection()
            await self._signal_new_circuit()

            self._state = RotationState.PROBING
            self._quality.set_identity(PROBE_IDENTITY)
            candidate = await self.probe_identity()

            reason = self._rejection(candidate, previous)
            if reason is None:
                assert candidate is not None
                return candidate
            logger.warning(
                "%s. Retrying... (cycle %d/%d)",
                reason,
                cycle,
                self._max_cycles,
                extra={"identity": candidate},
            )

        raise IdentityRotationError(
            f"No usable identity after {self._max_cycles} rotation cycles",
            previous_identity=previous,
        )

    def _rejection(self, candidate: str | None, previous: str | None) -> str | None:
        if candidate is None:
            return "No identity oracle returned an address"
        if candidate == previous:
            return f"Failed to change IP address ({candidate})"
        if candidate in self._exclusions:
            return f"IP address {candidate} is excluded"
        if self._quality.is_dysfunctional(candidate):
            stats = json.dumps(self._quality.snapshot(candidate))
            return f"IP address {candidate} is dysfunctional ({stats})"
        return None

    async def _signal_new_circuit(self) -> None:
        if self._last_signal is not None:
            wait = self._min_signal_interval - (self._clock() - self._last_signal)
            if wait > 0:
                logger.debug("Waiting %.2fs before the next circuit signal", wait)
                await self._sleep(wait)
        self._last_signal = self._clock()

        async with self._control_factory() as session:
            await session.signal_newnym()

    async def _run_callbacks(self) -> None:
        for callback in list(self._callbacks):
            result = callback(self)
            if inspect.isawaitable(result):
                await result
