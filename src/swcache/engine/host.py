"""In-process host that drives engine versions through their lifecycle.

:class:`EngineHost` plays the part of the browser's service-worker
registration.  It holds at most one *installing*, one *waiting* and one
*active* engine, and guarantees the ordering the engines rely on:

* install completes (or fails) before activate begins;
* activate completes before any fetch is dispatched to that engine;
* only one engine is active at a time; the previous one is retired
  (``REDUNDANT``) before its successor starts activating.

A newly installed engine activates immediately when it asked to skip waiting
or when nothing is active yet.  Otherwise it waits until a page posts a
``SKIP_WAITING`` message or every client is released.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from swcache.client.fetcher import NetworkFetcher
from swcache.engine.lifecycle import CacheEngine
from swcache.exceptions import InstallError
from swcache.models import FetchRequest

logger = logging.getLogger(__name__)


class EngineHost:
    """Registration slots and event dispatch for successive engine versions.

    Args:
        fetcher: Used for requests that no engine intercepts.
    """

    def __init__(self, fetcher: NetworkFetcher) -> None:
        self._fetcher = fetcher
        self._installing: Optional[CacheEngine] = None
        self._waiting: Optional[CacheEngine] = None
        self._active: Optional[CacheEngine] = None
        self._activation: Optional[asyncio.Task[list[str]]] = None

    @property
    def installing(self) -> Optional[CacheEngine]:
        return self._installing

    @property
    def waiting(self) -> Optional[CacheEngine]:
        return self._waiting

    @property
    def active(self) -> Optional[CacheEngine]:
        return self._active

    async def register(self, engine: CacheEngine) -> None:
        """Install *engine* and activate it if nothing holds it back.

        Raises:
            InstallError: If the install failed.  The currently active engine
                (if any) keeps serving; *engine* can be registered again.
        """
        self._installing = engine
        try:
            await engine.install()
        except InstallError:
            logger.warning("Install of %s failed; keeping current engine", engine.version)
            raise
        finally:
            self._installing = None

        if self._waiting is not None and self._waiting is not engine:
            self._waiting.retire()
        self._waiting = engine

        if engine.wants_skip_waiting or self._active is None:
            await self._promote()
        else:
            logger.info("Version %s installed and waiting", engine.version)

    async def adopt(self, engine: CacheEngine) -> None:
        """Make an already-deployed engine the active one (see :meth:`CacheEngine.resume`)."""
        await engine.resume()
        if self._active is not None and self._active is not engine:
            self._active.retire()
        self._active = engine

    async def post_message(self, message: Any) -> None:
        """Deliver a page message to the waiting engine, else to the active one."""
        target = self._waiting or self._active
        if target is None:
            logger.debug("No engine to receive message %r", message)
            return
        await target.handle_message(message)
        if self._waiting is not None and self._waiting.wants_skip_waiting:
            await self._promote()

    async def release_clients(self) -> None:
        """Every page controlled by the active engine has closed."""
        if self._waiting is not None:
            await self._promote()

    async def dispatch_fetch(self, request: FetchRequest) -> httpx.Response:
        """Route a page request through the active engine, or straight to the network.

        Raises:
            FetchError: Only for pass-through requests whose network fetch
                failed; intercepted requests always produce a response.
        """
        activation = self._activation
        if activation is not None:
            await asyncio.wait([activation])

        engine = self._active
        if engine is not None:
            response = await engine.handle_fetch(request)
            if response is not None:
                return response
        return await self._fetcher.fetch(request.method, request.url, headers=request.headers)

    async def drain(self) -> None:
        """Wait for pending background writes of every engine the host still references."""
        for engine in (self._active, self._waiting):
            if engine is not None:
                await engine.drain()

    async def _promote(self) -> None:
        engine = self._waiting
        if engine is None:
            return
        self._waiting = None

        previous = self._active
        self._active = None
        if previous is not None:
            previous.retire()

        self._activation = asyncio.get_running_loop().create_task(engine.activate())
        try:
            await self._activation
        finally:
            self._activation = None
        self._active = engine
