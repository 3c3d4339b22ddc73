"""Namespaced response storage.

A :class:`CacheStorage` is partitioned into independently named
*namespaces*, one per cache generation and role (for example
``portfolio-static-v9``).  The engine only ever uses five operations: open a
namespace, match a request in it, put a response into it, delete a whole
namespace, and enumerate namespace names.

Entries are keyed by the request identity built by
:func:`make_request_key` (``"GET <absolute url>"``) and hold the
``model_dump`` of a :class:`~swcache.models.CachedResponse`.  Entries are
written without an expiry; a namespace lives until it is deleted.

:class:`DiskCacheStorage` keeps one :class:`diskcache.Cache` directory per
namespace.  diskcache is synchronous, so every call runs through
:func:`asyncio.to_thread` and the event loop is never blocked by SQLite.
SQLite gives read-your-write within a namespace and last-write-wins for
concurrent puts to the same key.

See Also:
    :class:`~swcache.engine.lifecycle.CacheEngine` -- the only caller that
    mutates a storage.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import diskcache

from swcache.exceptions import CacheStoreError
from swcache.models import CachedResponse, EngineConfig, StorageBackend

logger = logging.getLogger(__name__)

_NAMESPACE_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_DB_FILENAME = "cache.db"

_BACKEND_ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)


def make_request_key(method: str, url: str) -> str:
    """Build the request identity used as the key inside a namespace."""
    return f"{method.upper()} {url}"


def _check_name(name: str) -> None:
    if not _NAMESPACE_RE.match(name) or name in (".", ".."):
        raise ValueError(f"Invalid namespace name: {name!r}")


class CacheNamespace(ABC):
    """One named partition of a :class:`CacheStorage`."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    async def match(self, key: str) -> Optional[CachedResponse]:
        """Return the stored response for *key*, or ``None`` on a miss."""

    @abstractmethod
    async def put(self, key: str, response: CachedResponse) -> None:
        """Store *response* under *key*, overwriting any previous entry."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove the entry for *key*; return whether it existed."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """Return all request keys stored in this namespace, sorted."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class CacheStorage(ABC):
    """Abstract namespaced response store.

    Implementations raise :class:`~swcache.exceptions.CacheStoreError` for
    backend I/O failures and :class:`ValueError` for malformed namespace
    names.
    """

    @abstractmethod
    async def open(self, name: str) -> CacheNamespace:
        """Open namespace *name*, creating it if it does not exist."""

    @abstractmethod
    async def has(self, name: str) -> bool:
        """Return whether namespace *name* exists."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """Return the names of all existing namespaces, sorted."""

    @abstractmethod
    async def delete(self, name: str) -> bool:
        """Delete namespace *name* and all its entries; return whether it existed."""

    async def match(
        self, key: str, names: Optional[list[str]] = None
    ) -> Optional[CachedResponse]:
        """Look *key* up across *names* (default: every namespace), first hit wins.

        Namespaces that do not exist are skipped rather than created.
        """
        candidates = names if names is not None else await self.keys()
        for name in candidates:
            if not await self.has(name):
                continue
            namespace = await self.open(name)
            hit = await namespace.match(key)
            if hit is not None:
                return hit
        return None

    def close(self) -> None:
        """Release backend resources."""


# ------------------------------------------------------------------ #
# diskcache backend
# ------------------------------------------------------------------ #


class DiskCacheNamespace(CacheNamespace):
    """A namespace backed by one :class:`diskcache.Cache` directory."""

    def __init__(self, name: str, cache: diskcache.Cache) -> None:
        super().__init__(name)
        self._cache = cache

    async def match(self, key: str) -> Optional[CachedResponse]:
        data = await self._call(self._cache.get, key)
        if data is None:
            return None
        return CachedResponse.model_validate(data)

    async def put(self, key: str, response: CachedResponse) -> None:
        await self._call(self._cache.set, key, response.model_dump())

    async def delete(self, key: str) -> bool:
        return bool(await self._call(self._cache.delete, key))

    async def keys(self) -> list[str]:
        return sorted(await self._call(lambda: list(self._cache.iterkeys())))

    async def _call(self, func: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except _BACKEND_ERRORS as exc:
            raise CacheStoreError(f"Namespace '{self.name}': {exc}") from exc


class DiskCacheStorage(CacheStorage):
    """Disk-backed storage with one diskcache directory per namespace.

    Args:
        root: Directory holding one subdirectory per namespace.

    Example::

        storage = DiskCacheStorage("/tmp/swcache/namespaces")
        ns = await storage.open("portfolio-dynamic-v9")
        await ns.put("GET https://example.com/", CachedResponse(status_code=200))
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._handles: dict[str, diskcache.Cache] = {}
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    async def open(self, name: str) -> CacheNamespace:
        _check_name(name)
        try:
            cache = await asyncio.to_thread(self._open_sync, name)
        except _BACKEND_ERRORS as exc:
            raise CacheStoreError(f"Cannot open namespace '{name}': {exc}") from exc
        return DiskCacheNamespace(name, cache)

    async def has(self, name: str) -> bool:
        _check_name(name)
        try:
            return await asyncio.to_thread((self._root / name / _DB_FILENAME).is_file)
        except _BACKEND_ERRORS as exc:
            raise CacheStoreError(f"Cannot stat namespace '{name}': {exc}") from exc

    async def keys(self) -> list[str]:
        try:
            return await asyncio.to_thread(self._keys_sync)
        except _BACKEND_ERRORS as exc:
            raise CacheStoreError(f"Cannot list namespaces under {self._root}: {exc}") from exc

    async def delete(self, name: str) -> bool:
        _check_name(name)
        try:
            return await asyncio.to_thread(self._delete_sync, name)
        except _BACKEND_ERRORS as exc:
            raise CacheStoreError(f"Cannot delete namespace '{name}': {exc}") from exc

    def close(self) -> None:
        with self._lock:
            for cache in self._handles.values():
                cache.close()
            self._handles.clear()

    def _open_sync(self, name: str) -> diskcache.Cache:
        with self._lock:
            cache = self._handles.get(name)
            if cache is None:
                cache = diskcache.Cache(str(self._root / name))
                self._handles[name] = cache
            return cache

    def _keys_sync(self) -> list[str]:
        if not self._root.is_dir():
            return []
        return sorted(
            p.name
            for p in self._root.iterdir()
            if p.is_dir() and (p / _DB_FILENAME).is_file()
        )

    def _delete_sync(self, name: str) -> bool:
        with self._lock:
            cache = self._handles.pop(name, None)
            if cache is not None:
                cache.close()
        path = self._root / name
        if not path.is_dir():
            return False
        shutil.rmtree(path)
        return True


# ------------------------------------------------------------------ #
# In-memory backend
# ------------------------------------------------------------------ #


class MemoryCacheNamespace(CacheNamespace):
    """A namespace backed by a plain dict."""

    def __init__(self, name: str, entries: dict[str, dict[str, Any]]) -> None:
        super().__init__(name)
        self._entries = entries

    async def match(self, key: str) -> Optional[CachedResponse]:
        data = self._entries.get(key)
        return CachedResponse.model_validate(data) if data is not None else None

    async def put(self, key: str, response: CachedResponse) -> None:
        self._entries[key] = response.model_dump()

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def keys(self) -> list[str]:
        return sorted(self._entries)


class MemoryCacheStorage(CacheStorage):
    """Process-local storage; contents are lost when the object is dropped."""

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, dict[str, Any]]] = {}

    async def open(self, name: str) -> CacheNamespace:
        _check_name(name)
        entries = self._namespaces.setdefault(name, {})
        return MemoryCacheNamespace(name, entries)

    async def has(self, name: str) -> bool:
        return name in self._namespaces

    async def keys(self) -> list[str]:
        return sorted(self._namespaces)

    async def delete(self, name: str) -> bool:
        return self._namespaces.pop(name, None) is not None


def create_storage(config: EngineConfig, root: Optional[str | Path] = None) -> CacheStorage:
    """Build the storage backend selected by ``config.storage``.

    Args:
        config: Engine configuration.
        root: Namespace directory for the disk backend.  Defaults to
            ``<cache dir>/namespaces``.
    """
    if config.storage == StorageBackend.MEMORY:
        return MemoryCacheStorage()
    if root is None:
        from swcache.config import get_cache_dir

        root = get_cache_dir() / "namespaces"
    logger.debug("Using disk storage at %s", root)
    return DiskCacheStorage(root)
