"""The cache lifecycle controller.

:class:`CacheEngine` is one *version* of the engine.  It walks through the
states of :class:`~swcache.models.LifecycleState`::

    INSTALLING -> INSTALLED (waiting) -> ACTIVATING -> ACTIVE -> REDUNDANT

* :meth:`CacheEngine.install` pre-caches the asset manifest as one batch.  If
  any asset fails, nothing is written and the engine stays ``INSTALLING`` so
  the install can be retried.
* :meth:`CacheEngine.activate` deletes every namespace that does not belong to
  this version, then claims clients.  Deletion failures are logged and do not
  stop activation.
* :meth:`CacheEngine.handle_fetch` serves a request cache-first, falls back
  to the network, stores successful same-origin responses in a detached
  background task, and degrades to the offline document or a synthetic 408.

Every fetch captures the namespace names of its own (frozen)
:class:`~swcache.models.EngineConfig` at dispatch, so a fetch that completes
after a newer version has started activating only ever touches the old
version's namespaces.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

import httpx
from pydantic import ValidationError

from swcache.cache.classifier import classify, resolve_url
from swcache.cache.store import CacheNamespace, CacheStorage, make_request_key
from swcache.client.fetcher import NetworkFetcher
from swcache.engine.tasks import BackgroundTasks
from swcache.exceptions import CacheStoreError, EngineStateError, FetchError, InstallError
from swcache.models import (
    CachedResponse,
    EngineConfig,
    FetchRequest,
    LifecycleState,
    RequestClassification,
)

logger = logging.getLogger(__name__)

SOURCE_EXTENSION = "swcache.source"
"""Key in :attr:`httpx.Response.extensions` recording where a response came from."""

SOURCE_CACHE = "cache"
SOURCE_NETWORK = "network"
SOURCE_OFFLINE = "offline"
SOURCE_SYNTHETIC = "synthetic"

OFFLINE_MESSAGE = "Network error happened"

MESSAGE_SKIP_WAITING = "SKIP_WAITING"
MESSAGE_CLEAR_CACHE = "CLEAR_CACHE"


def response_source(response: httpx.Response) -> Optional[str]:
    """Return how the engine produced *response* (``cache``, ``network``, ...)."""
    return response.extensions.get(SOURCE_EXTENSION)


def _tag(response: httpx.Response, source: str) -> httpx.Response:
    response.extensions[SOURCE_EXTENSION] = source
    return response


class CacheEngine:
    """One version of the cache lifecycle engine.

    Args:
        config: Frozen engine configuration; its ``version`` names the
            namespaces this engine owns.
        storage: The shared namespaced store.
        fetcher: An entered :class:`~swcache.client.fetcher.NetworkFetcher`.
        tasks: Tracker for detached cache writes.  A private one is created
            when omitted.

    Example::

        engine = CacheEngine(config, storage, fetcher)
        await engine.install()
        await engine.activate()
        response = await engine.handle_fetch(FetchRequest(url="/"))
    """

    def __init__(
        self,
        config: EngineConfig,
        storage: CacheStorage,
        fetcher: NetworkFetcher,
        tasks: Optional[BackgroundTasks] = None,
    ) -> None:
        self._config = config
        self._storage = storage
        self._fetcher = fetcher
        self._tasks = tasks if tasks is not None else BackgroundTasks()
        self._state = LifecycleState.INSTALLING
        self._skip_waiting = False
        self._clients_claimed = False

    def __repr__(self) -> str:
        return f"CacheEngine(version={self.version!r}, state={self._state.value})"

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def version(self) -> str:
        return self._config.version

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def tasks(self) -> BackgroundTasks:
        return self._tasks

    @property
    def wants_skip_waiting(self) -> bool:
        """Whether this engine should be activated without waiting for clients to close."""
        return self._skip_waiting

    @property
    def clients_claimed(self) -> bool:
        return self._clients_claimed

    # ------------------------------------------------------------------ #
    # Lifecycle transitions
    # ------------------------------------------------------------------ #

    async def install(self) -> None:
        """Pre-cache the asset manifest into this version's namespaces.

        All manifest URLs are fetched concurrently first; only when every one
        of them returned a 2xx response are they written.  The write batch is
        rolled back if the store fails part-way.

        Raises:
            InstallError: If any asset could not be fetched or stored.  The
                engine stays in ``INSTALLING`` and may be installed again.
            EngineStateError: If the engine is past ``INSTALLING``.
        """
        if self._state != LifecycleState.INSTALLING:
            raise EngineStateError(
                f"Cannot install version {self.version}: engine is {self._state.value}"
            )

        urls = list(dict.fromkeys(
            resolve_url(url, self._config.origin) for url in self._config.precache
        ))
        logger.info("Installing %s: pre-caching %d assets", self.version, len(urls))

        results = await asyncio.gather(
            *(self._fetch_manifest_entry(url) for url in urls),
            return_exceptions=True,
        )
        fetched: dict[str, httpx.Response] = {}
        failed: list[str] = []
        for url, result in zip(urls, results):
            if isinstance(result, BaseException):
                logger.error("Pre-cache of %s failed: %s", url, result)
                failed.append(url)
            else:
                fetched[url] = result
        if failed:
            raise InstallError(
                f"Install of {self.version} aborted: {len(failed)} of {len(urls)} "
                f"assets failed ({', '.join(failed)})",
                failed=failed,
            )

        created: set[str] = set()
        written: list[tuple[CacheNamespace, str, Optional[CachedResponse]]] = []
        try:
            namespaces: dict[str, CacheNamespace] = {}
            for name in self._config.namespace_names:
                if not await self._storage.has(name):
                    created.add(name)
                namespaces[name] = await self._storage.open(name)
            for url, response in fetched.items():
                namespace = namespaces[self._config.namespace_for(self._store_class(url))]
                key = make_request_key("GET", url)
                previous = None
                if namespace.name not in created:
                    previous = await self._previous_entry(namespace, key)
                await namespace.put(key, CachedResponse.from_httpx(response))
                written.append((namespace, key, previous))
        except CacheStoreError as exc:
            await self._rollback_install(created, written)
            raise InstallError(f"Install of {self.version} aborted: {exc}") from exc

        self._state = LifecycleState.INSTALLED
        if self._config.skip_waiting:
            self._skip_waiting = True
        logger.info("Installed %s", self.version)

    async def activate(self) -> list[str]:
        """Evict stale namespaces and take control of clients.

        Returns:
            The namespace names that were deleted.

        Raises:
            EngineStateError: If the engine has not been installed.
        """
        if self._state != LifecycleState.INSTALLED:
            raise EngineStateError(
                f"Cannot activate version {self.version}: engine is {self._state.value}"
            )
        self._state = LifecycleState.ACTIVATING
        logger.info("Activating %s", self.version)

        current = set(self._config.namespace_names)
        try:
            names = await self._storage.keys()
        except CacheStoreError as exc:
            logger.warning("Cannot enumerate namespaces during activation: %s", exc)
            names = []

        deleted = await self._delete_namespaces(n for n in names if n not in current)

        self._clients_claimed = True
        self._state = LifecycleState.ACTIVE
        logger.info("Activated %s", self.version)
        return deleted

    async def resume(self) -> None:
        """Mark an already-deployed version as active without installing it again.

        Raises:
            EngineStateError: If the engine is not fresh, or if this version's
                namespaces do not exist in the store.
        """
        if self._state != LifecycleState.INSTALLING:
            raise EngineStateError(
                f"Cannot resume version {self.version}: engine is {self._state.value}"
            )
        for name in self._config.namespace_names:
            if not await self._storage.has(name):
                raise EngineStateError(
                    f"Version {self.version} is not deployed (namespace '{name}' missing)"
                )
        self._clients_claimed = True
        self._state = LifecycleState.ACTIVE

    def skip_waiting(self) -> None:
        """Request activation as soon as the host allows it."""
        self._skip_waiting = True

    def retire(self) -> None:
        """Mark this engine as superseded; it stops receiving new events."""
        if self._state != LifecycleState.REDUNDANT:
            logger.info("Version %s is now redundant", self.version)
        self._state = LifecycleState.REDUNDANT

    async def drain(self) -> None:
        """Wait for all pending background cache writes."""
        await self._tasks.join()

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #

    async def handle_fetch(self, request: FetchRequest) -> Optional[httpx.Response]:
        """Serve an intercepted request.

        Returns:
            The response to hand to the page, or ``None`` when the request is
            classified ``SKIP`` and must go to the network untouched.

        Raises:
            EngineStateError: If the engine is not ``ACTIVE`` at dispatch.
        """
        if self._state != LifecycleState.ACTIVE:
            raise EngineStateError(
                f"Version {self.version} cannot handle fetches while {self._state.value}"
            )

        url = resolve_url(request.url, self._config.origin)
        classification = classify(url, request.method, self._config)
        if classification == RequestClassification.SKIP:
            logger.debug("Passing through %s %s", request.method, url)
            return None

        names = self._config.namespace_names
        key = make_request_key("GET", url)

        cached = await self._lookup(key, names)
        if cached is not None:
            logger.debug("Cache hit for %s", url)
            return _tag(cached.to_httpx(), SOURCE_CACHE)

        try:
            response = await self._fetcher.fetch(request.method, url, headers=request.headers)
        except FetchError as exc:
            logger.info("Network failed for %s: %s", url, exc)
            return await self._fallback(request, url, names)

        if self._is_cacheable(url, response):
            target = self._config.namespace_for(classification)
            entry = CachedResponse.from_httpx(response)
            self._tasks.spawn(self._store(target, key, entry), name=f"store {key} -> {target}")
        else:
            logger.debug("Not caching %s (HTTP %d)", url, response.status_code)
        return _tag(response, SOURCE_NETWORK)

    async def handle_message(self, message: Any) -> None:
        """Handle a control message posted by a page.

        Understands ``{"type": "SKIP_WAITING"}`` and ``{"type": "CLEAR_CACHE"}``;
        anything else is ignored.
        """
        kind = message.get("type") if isinstance(message, dict) else None
        if kind == MESSAGE_SKIP_WAITING:
            self.skip_waiting()
        elif kind == MESSAGE_CLEAR_CACHE:
            await self.clear_all()
        else:
            logger.debug("Ignoring message %r", message)

    async def clear_all(self) -> list[str]:
        """Delete every namespace in the store, including this version's own."""
        try:
            names = await self._storage.keys()
        except CacheStoreError as exc:
            logger.warning("Cannot enumerate namespaces to clear: %s", exc)
            return []
        return await self._delete_namespaces(names)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _fetch_manifest_entry(self, url: str) -> httpx.Response:
        response = await self._fetcher.fetch("GET", url)
        if not response.is_success:
            raise FetchError(f"{url} returned HTTP {response.status_code}")
        return response

    def _store_class(self, url: str) -> RequestClassification:
        classification = classify(url, "GET", self._config)
        if classification == RequestClassification.SKIP:
            return RequestClassification.DYNAMIC
        return classification

    async def _previous_entry(
        self, namespace: CacheNamespace, key: str
    ) -> Optional[CachedResponse]:
        try:
            return await namespace.match(key)
        except ValidationError as exc:
            logger.warning(
                "Unreadable entry %s in %s will not be restored: %s", key, namespace.name, exc
            )
            return None

    async def _rollback_install(
        self,
        created: set[str],
        written: list[tuple[CacheNamespace, str, Optional[CachedResponse]]],
    ) -> None:
        """Undo a partial install without touching data that predates it.

        Namespaces this install created are deleted.  In namespaces that
        already existed, replaced entries are put back and new ones removed.
        """
        for namespace, key, previous in reversed(written):
            if namespace.name in created:
                continue
            try:
                if previous is None:
                    await namespace.delete(key)
                else:
                    await namespace.put(key, previous)
            except CacheStoreError as exc:
                logger.warning("Cannot roll back %s in %s: %s", key, namespace.name, exc)
        for name in self._config.namespace_names:
            if name not in created:
                continue
            try:
                await self._storage.delete(name)
            except CacheStoreError as exc:
                logger.warning("Cannot roll back namespace %s: %s", name, exc)

    async def _delete_namespaces(self, names: Iterable[str]) -> list[str]:
        deleted: list[str] = []
        for name in names:
            try:
                if await self._storage.delete(name):
                    deleted.append(name)
                    logger.info("Deleted namespace %s", name)
            except (CacheStoreError, ValueError) as exc:
                logger.warning("Failed to delete namespace %s: %s", name, exc)
        return deleted

    async def _lookup(self, key: str, names: list[str]) -> Optional[CachedResponse]:
        try:
            return await self._storage.match(key, names)
        except (CacheStoreError, ValidationError) as exc:
            logger.warning("Cache read for %s failed, treating as miss: %s", key, exc)
            return None

    async def _store(self, name: str, key: str, entry: CachedResponse) -> None:
        if self._state == LifecycleState.REDUNDANT:
            logger.debug("Dropping write of %s: version %s is redundant", key, self.version)
            return
        namespace: CacheNamespace = await self._storage.open(name)
        await namespace.put(key, entry)

    def _is_cacheable(self, url: str, response: httpx.Response) -> bool:
        if not response.is_success:
            return False
        origin = self._config.origin
        if origin is None:
            return True
        parsed = httpx.URL(url)
        return f"{parsed.scheme}://{parsed.netloc.decode('ascii')}" == origin

    async def _fallback(
        self, request: FetchRequest, url: str, names: list[str]
    ) -> httpx.Response:
        if request.is_navigation:
            document = resolve_url(self._config.offline_document, self._config.origin)
            cached = await self._lookup(make_request_key("GET", document), names)
            if cached is not None:
                logger.info("Serving offline document %s for %s", document, url)
                return _tag(cached.to_httpx(), SOURCE_OFFLINE)
        return _tag(
            httpx.Response(
                408,
                headers={"Content-Type": "text/plain"},
                content=OFFLINE_MESSAGE.encode(),
                request=httpx.Request(request.method, url),
            ),
            SOURCE_SYNTHETIC,
        )
