"""Shared test fixtures for swcache.

Provides an in-process fake origin server (:class:`FakeSite`) served through
:class:`httpx.MockTransport`, ready-made engine configurations and storage,
isolated config environments, and output/logging resets.  These fixtures are
automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional, Union

import httpx
import pytest
import pytest_asyncio

from swcache.cache.store import CacheNamespace, MemoryCacheStorage
from swcache.client.fetcher import NetworkFetcher
from swcache.engine.lifecycle import CacheEngine
from swcache.exceptions import CacheStoreError
from swcache.models import CachedResponse, CacheLayout, EngineConfig, StorageBackend
from swcache.output import reset_output


ORIGIN = "https://portfolio.example"

INDEX_HTML = "<!doctype html><title>Portfolio</title>"


# ---------------------------------------------------------------------------
# Fake origin server
# ---------------------------------------------------------------------------


class FakeSite:
    """A scriptable web server for :class:`httpx.MockTransport`.

    Routes are registered by path (same origin) or by absolute URL (any
    origin).  Every request is recorded in :attr:`calls`.

    * ``offline`` -- every request fails with :class:`httpx.ConnectError`.
    * ``broken`` -- paths that fail with :class:`httpx.ConnectError`.
    * ``gates`` -- paths whose response is held until the event is set;
      :attr:`entered` is set as soon as a gated request arrives.
    """

    def __init__(self, origin: str = ORIGIN) -> None:
        self.origin = origin
        self.routes: dict[str, tuple[int, bytes, str]] = {}
        self.calls: list[str] = []
        self.offline = False
        self.broken: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.entered: Optional[asyncio.Event] = None

    def add(
        self,
        path_or_url: str,
        body: Union[str, bytes] = "ok",
        status: int = 200,
        content_type: str = "text/html",
    ) -> None:
        content = body.encode() if isinstance(body, str) else body
        self.routes[path_or_url] = (status, content, content_type)

    def count(self, path_or_url: str) -> int:
        """How many requests were made for *path_or_url*."""
        target = path_or_url if "://" in path_or_url else self.origin + path_or_url
        return sum(1 for call in self.calls if call == target)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        path = request.url.path
        self.calls.append(url)

        if self.offline or path in self.broken:
            raise httpx.ConnectError("Connection refused", request=request)

        gate = self.gates.get(path)
        if gate is not None:
            if self.entered is not None:
                self.entered.set()
            await gate.wait()

        route = self.routes.get(url)
        if route is None and url.startswith(self.origin):
            route = self.routes.get(path)
        if route is None:
            return httpx.Response(404, text="not found", request=request)

        status, content, content_type = route
        return httpx.Response(
            status, content=content, headers={"Content-Type": content_type}, request=request
        )


@pytest.fixture
def site() -> FakeSite:
    """A portfolio site with a home page, offline document, manifest and icon."""
    s = FakeSite()
    s.add("/", INDEX_HTML)
    s.add("/index.html", INDEX_HTML)
    s.add("/manifest.json", '{"name": "portfolio"}', content_type="application/json")
    s.add("/icons/icon-192.png", b"\x89PNG\r\n", content_type="image/png")
    s.add("/about.html", "<h1>About</h1>")
    s.add("/assets/app-abc123.js", "console.log('app')", content_type="text/javascript")
    return s


# ---------------------------------------------------------------------------
# Storage with switchable failures
# ---------------------------------------------------------------------------


class _FlakyNamespace(CacheNamespace):
    def __init__(self, inner: CacheNamespace, owner: FlakyStorage) -> None:
        super().__init__(inner.name)
        self._inner = inner
        self._owner = owner

    async def match(self, key: str) -> Optional[CachedResponse]:
        if self._owner.fail_reads:
            raise CacheStoreError(f"Namespace '{self.name}': database is locked")
        return await self._inner.match(key)

    async def put(self, key: str, response: CachedResponse) -> None:
        if self._owner.fail_puts or key in self._owner.failing_keys:
            raise CacheStoreError(f"Namespace '{self.name}': disk full")
        await self._inner.put(key, response)

    async def delete(self, key: str) -> bool:
        return await self._inner.delete(key)

    async def keys(self) -> list[str]:
        return await self._inner.keys()


class FlakyStorage(MemoryCacheStorage):
    """In-memory storage that logs every operation and fails on demand.

    * ``fail_reads`` / ``fail_puts`` -- entry reads / writes raise
      :class:`~swcache.exceptions.CacheStoreError`.
    * ``failing_keys`` -- request keys whose writes fail.
    * ``undeletable`` -- namespace names whose deletion fails.
    """

    def __init__(self) -> None:
        super().__init__()
        self.fail_reads = False
        self.fail_puts = False
        self.failing_keys: set[str] = set()
        self.undeletable: set[str] = set()
        self.operations: list[str] = []

    async def open(self, name: str) -> CacheNamespace:
        self.operations.append(f"open {name}")
        return _FlakyNamespace(await super().open(name), self)

    async def has(self, name: str) -> bool:
        self.operations.append(f"has {name}")
        return await super().has(name)

    async def keys(self) -> list[str]:
        self.operations.append("keys")
        return await super().keys()

    async def delete(self, name: str) -> bool:
        self.operations.append(f"delete {name}")
        if name in self.undeletable:
            raise CacheStoreError(f"Cannot delete namespace '{name}': resource busy")
        return await super().delete(name)

    async def entries(self, name: str) -> list[str]:
        """Request keys stored in *name* (empty if it does not exist)."""
        if not await super().has(name):
            return []
        return await (await super().open(name)).keys()


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine_config() -> EngineConfig:
    """Split-layout ``v1`` config pre-caching the home page and its shell."""
    return EngineConfig(
        version="v1",
        origin=ORIGIN,
        layout=CacheLayout.SPLIT,
        precache=["/", "/index.html", "/manifest.json", "/icons/icon-192.png"],
        storage=StorageBackend.MEMORY,
    )


@pytest.fixture
def storage() -> FlakyStorage:
    return FlakyStorage()


@pytest_asyncio.fixture
async def fetcher(engine_config: EngineConfig, site: FakeSite) -> NetworkFetcher:
    """An entered fetcher whose network is :func:`site`."""
    async with NetworkFetcher(engine_config, transport=site.transport()) as f:
        yield f


@pytest.fixture
def make_engine(
    engine_config: EngineConfig, storage: FlakyStorage, fetcher: NetworkFetcher
) -> Callable[..., CacheEngine]:
    """Factory for engines sharing one storage and fetcher.

    Keyword arguments override :func:`engine_config` fields, e.g.
    ``make_engine(version="v2", skip_waiting=False)``.
    """

    def _make(**overrides: object) -> CacheEngine:
        data = engine_config.model_dump()
        data.update(overrides)
        return CacheEngine(EngineConfig.model_validate(data), storage, fetcher)

    return _make


# ---------------------------------------------------------------------------
# Auto-reset global state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _restore_root_logger() -> None:
    """Undo ``logging.basicConfig(force=True)`` done by the CLI callback."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME, XDG_CACHE_HOME, and XDG_DATA_HOME to
    subdirectories of tmp_path so that tests never touch real user
    config or cache. Clears all SWCACHE_* environment variables and changes
    the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("swcache.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in ["SWCACHE_VERSION", "SWCACHE_ORIGIN", "SWCACHE_MANIFEST", "NO_COLOR"]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
