"""Control port sessions for the anonymizing daemon.

Wraps stem's blocking :class:`~stem.control.Controller` so the rotator can
drive it from asyncio. Every controller call runs in a worker thread under
the session timeout, and stem's failures surface as ControlProtocolError.

A session is short-lived::

    async with ControlSession(host, port, password) as session:
        await session.signal_newnym()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any

import stem
import stem.connection
from stem import Signal
from stem.control import Controller

from anonfetch.errors import ControlProtocolError

logger = logging.getLogger(__name__)

ControllerFactory = Callable[[str, int], Controller]

CONTROL_ERRORS: tuple[type[Exception], ...] = (
    stem.ControllerError,
    stem.connection.AuthenticationFailure,
)


def controller_from_port(host: str, port: int) -> Controller:
    return Controller.from_port(address=host, port=port)


class ControlSession:
    """One authenticated control connection.

    Parameters
    ----------
    host, port:
        Control endpoint address.
    password:
        Control port password; empty means cookie or no authentication.
    timeout_seconds:
        Applies to connecting and to every single controller call.
    controller_factory:
        Opens an unauthenticated controller; ``Controller.from_port`` by
        default.
    """

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        timeout_seconds: float = 30.0,
        controller_factory: ControllerFactory = controller_from_port,
    ) -> None:
        self._host = host
        self._port = port
        self._password = password
        self._timeout = timeout_seconds
        self._controller_factory = controller_factory
        self._controller: Controller | None = None

    @property
    def address(self) -> str:
        return f"{self._host}:{self._port}"

    @property
    def connected(self) -> bool:
        return self._controller is not None

    async def __aenter__(self) -> ControlSession:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the controller and authenticate."""
        try:
            controller = await self._in_thread(self._controller_factory, self._host, self._port)
        except (stem.SocketError, ValueError, asyncio.TimeoutError) as exc:
            raise ControlProtocolError(
                f"Failed to connect to control port {self.address}: {exc}",
                control_address=self.address,
            ) from exc

        try:
            await self._call(
                "AUTHENTICATE", controller.authenticate, password=self._password or None
            )
        except ControlProtocolError:
            await asyncio.to_thread(controller.close)
            raise
        self._controller = controller

    async def close(self) -> None:
        """Close the controller; stem says ``QUIT`` first. Safe to repeat."""
        controller, self._controller = self._controller, None
        if controller is None:
            return
        try:
            await self._in_thread(controller.close)
        except (stem.ControllerError, OSError, asyncio.TimeoutError) as exc:
            logger.debug("Control connection %s closed uncleanly: %s", self.address, exc)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def signal_newnym(self) -> None:
        await self._call("SIGNAL NEWNYM", self._require().signal, Signal.NEWNYM)

    async def exclude_exit_nodes(self, nodes: Iterable[str]) -> None:
        listed = ",".join(nodes)
        await self._call(
            "SETCONF ExcludeExitNodes", self._require().set_conf, "ExcludeExitNodes", listed
        )

    async def get_info(self, key: str) -> str:
        return await self._call(f"GETINFO {key}", self._require().get_info, key)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self) -> Controller:
        if self._controller is None:
            raise ControlProtocolError("Control session is not connected")
        return self._controller

    async def _in_thread(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs),
            timeout=self._timeout,
        )

    async def _call(self, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            result = await self._in_thread(func, *args, **kwargs)
        except (*CONTROL_ERRORS, asyncio.TimeoutError) as exc:
            raise ControlProtocolError(
                f"Failed to send {label} command to control port {self.address}: {exc}",
                control_address=self.address,
            ) from exc
        logger.debug("Control %s -> OK", label)
        return result
