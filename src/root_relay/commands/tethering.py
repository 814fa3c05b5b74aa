"""Tethering start/stop commands.

The platform tethering API is callback based: a request is submitted and
the outcome is reported later, possibly from another thread. The commands
bridge that into a single awaited result:

- None: the operation succeeded
- int: the platform's numeric failure code
- exception: raised when the platform reports one

The platform side is provided by registering a ``TetheringService``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from ..errors import ServiceUnavailableError
from .base import RootCommand

__all__ = [
    "StartTethering",
    "StopTethering",
    "TetheringCallback",
    "TetheringService",
    "get_tethering_service",
    "set_tethering_service",
]

logger = logging.getLogger(__name__)


class TetheringCallback:
    """Outcome receiver handed to the tethering service.

    Every method is safe to call from any thread; only the first outcome
    counts.
    """

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future[int | None] = self._loop.create_future()

    def on_succeeded(self) -> None:
        self._loop.call_soon_threadsafe(self._complete, None, None)

    def on_failed(self, error: int) -> None:
        self._loop.call_soon_threadsafe(self._complete, error, None)

    def on_exception(self, exc: BaseException) -> None:
        self._loop.call_soon_threadsafe(self._complete, None, exc)

    def _complete(self, error: int | None, exc: BaseException | None) -> None:
        if self._future.done():
            logger.debug(f"Ignoring late tethering outcome error={error} exc={exc!r}")
            return
        if exc is not None:
            self._future.set_exception(exc)
        else:
            self._future.set_result(error)

    async def wait(self) -> int | None:
        return await self._future


class TetheringService(Protocol):
    """Platform tethering API."""

    def start_tethering(
        self,
        tethering_type: int,
        show_provisioning_ui: bool,
        callback: TetheringCallback,
    ) -> None: ...

    def stop_tethering(self, tethering_type: int, callback: TetheringCallback) -> None: ...


_service: TetheringService | None = None


def set_tethering_service(service: TetheringService | None) -> None:
    """Register the platform tethering service (None to unregister)."""
    global _service
    _service = service


def get_tethering_service() -> TetheringService:
    """Return the registered service.

    Raises:
        ServiceUnavailableError: If no service is registered
    """
    if _service is None:
        raise ServiceUnavailableError("No tethering service registered")
    return _service


class StartTethering(RootCommand[Optional[int]]):
    """Start tethering of ``tethering_type``; returns None or a failure code."""

    tethering_type: int
    show_provisioning_ui: bool = False

    async def execute(self) -> int | None:
        service = get_tethering_service()
        callback = TetheringCallback()
        service.start_tethering(self.tethering_type, self.show_provisioning_ui, callback)
        return await callback.wait()


class StopTethering(RootCommand[Optional[int]]):
    """Stop tethering of ``tethering_type``; returns None or a failure code."""

    tethering_type: int

    async def execute(self) -> int | None:
        service = get_tethering_service()
        callback = TetheringCallback()
        service.stop_tethering(self.tethering_type, callback)
        return await callback.wait()
