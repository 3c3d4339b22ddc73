"""Engine commands -- deploy a version, serve a request, inspect and clear the cache.

Each command resolves the effective :class:`~swcache.models.EngineConfig`
(see :func:`~swcache.config.resolve_config`), builds the storage backend and
network fetcher, and runs the engine on a fresh event loop with
:func:`asyncio.run`.  Errors derived from
:class:`~swcache.exceptions.SwcacheError` propagate to
:func:`swcache.app.main`, which maps them to exit codes.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional

import httpx
import typer

from swcache.exceptions import InvalidUsageError
from swcache.output import info, print_data, print_table, success, suggest, warning

if TYPE_CHECKING:
    from swcache.cache.store import CacheStorage
    from swcache.client.fetcher import NetworkFetcher
    from swcache.models import EngineConfig, FetchRequest


def _runtime_parts(config: EngineConfig) -> tuple[CacheStorage, NetworkFetcher]:
    from swcache.cache.store import create_storage
    from swcache.client.fetcher import NetworkFetcher

    return create_storage(config), NetworkFetcher(config)


# ------------------------------------------------------------------ #
# deploy
# ------------------------------------------------------------------ #


async def _deploy(config: EngineConfig) -> tuple[list[str], list[str]]:
    from swcache.engine import CacheEngine, EngineHost

    storage, fetcher = _runtime_parts(config)
    try:
        async with fetcher:
            before = await storage.keys()
            host = EngineHost(fetcher)
            await host.register(CacheEngine(config, storage, fetcher))
            after = await storage.keys()
    finally:
        storage.close()
    return [name for name in before if name not in after], after


def deploy_command(
    manifest: Optional[str] = typer.Option(
        None, "--manifest", "-m", help="Asset manifest JSON file to pre-cache."
    ),
    version_token: Optional[str] = typer.Option(
        None, "--version-token", "-t", help="Namespace version token for this deployment."
    ),
    origin: Optional[str] = typer.Option(
        None, "--origin", help="Origin the cache serves (e.g. https://example.com)."
    ),
) -> None:
    """Install and activate a cache version.

    Pre-caches every asset in the manifest into the version's namespaces,
    then deletes every namespace that belongs to another version.  If any
    asset fails to download nothing is written and the previous version
    stays in place.

    Example::

        swcache deploy --manifest dist/precache.json --version-token v9
    """
    from swcache.config import resolve_config

    _, config = resolve_config(
        cli_version=version_token, cli_origin=origin, cli_manifest=manifest
    )
    if not config.precache:
        warning("Asset manifest is empty; nothing will be available offline.")

    info(f"Deploying version {config.version} ({len(config.precache)} assets)")
    evicted, current = asyncio.run(_deploy(config))

    for name in evicted:
        info(f"Evicted {name}")
    success(f"Version {config.version} active: {', '.join(current)}")


# ------------------------------------------------------------------ #
# fetch
# ------------------------------------------------------------------ #


async def _fetch(config: EngineConfig, request: FetchRequest) -> httpx.Response:
    from swcache.engine import CacheEngine, EngineHost

    storage, fetcher = _runtime_parts(config)
    try:
        async with fetcher:
            host = EngineHost(fetcher)
            await host.adopt(CacheEngine(config, storage, fetcher))
            response = await host.dispatch_fetch(request)
            await host.drain()
    finally:
        storage.close()
    return response


def fetch_command(
    url: str = typer.Argument(help="URL or origin-relative path to request."),
    navigate: bool = typer.Option(
        False, "--navigate", help="Treat the request as a top-level page navigation."
    ),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method."),
    body: bool = typer.Option(True, "--body/--no-body", help="Print the response body."),
) -> None:
    """Serve one request through the deployed cache version.

    Prints the status line and where the response came from (``cache``,
    ``network``, ``offline``, ``synthetic``, or ``passthrough``) to stderr and
    the body to stdout.

    Raises:
        InvalidUsageError: If *url* is relative and no origin is configured.

    Example::

        swcache fetch /index.html --navigate
    """
    from swcache.config import resolve_config
    from swcache.engine import response_source
    from swcache.models import FetchRequest

    _, config = resolve_config()
    if httpx.URL(url).is_relative_url and config.origin is None:
        raise InvalidUsageError(
            f"'{url}' is relative but no origin is configured; "
            "pass an absolute URL or set SWCACHE_ORIGIN"
        )

    request = FetchRequest(
        url=url, method=method.upper(), mode="navigate" if navigate else "no-cors"
    )
    response = asyncio.run(_fetch(config, request))

    source = response_source(response) or "passthrough"
    info(f"HTTP {response.status_code} {response.reason_phrase} ({source})")
    if body and response.content:
        print_data(response.text)


# ------------------------------------------------------------------ #
# status
# ------------------------------------------------------------------ #


async def _status(config: EngineConfig) -> list[tuple[str, list[str]]]:
    storage, _ = _runtime_parts(config)
    try:
        result = []
        for name in await storage.keys():
            namespace = await storage.open(name)
            result.append((name, await namespace.keys()))
        return result
    finally:
        storage.close()


def status_command(
    entries: bool = typer.Option(False, "--entries", "-e", help="List every cached request."),
) -> None:
    """List cache namespaces and mark the ones owned by the configured version.

    Example::

        swcache status
        swcache status --entries --json
    """
    from swcache.config import resolve_config

    _, config = resolve_config()
    namespaces = asyncio.run(_status(config))
    current = set(config.namespace_names)

    if not namespaces:
        info("No cache namespaces.")
        suggest("Run 'swcache deploy' to install a version.")
        return

    if entries:
        rows = [[name, key] for name, keys in namespaces for key in keys]
        print_table(["namespace", "request"], rows, title="Cached requests")
    else:
        rows = [
            [name, str(len(keys)), "yes" if name in current else "no"]
            for name, keys in namespaces
        ]
        print_table(["namespace", "entries", "current"], rows, title=f"Version {config.version}")

    stale = [name for name, _ in namespaces if name not in current]
    if stale:
        warning(f"{len(stale)} stale namespace(s) will be evicted on the next deploy.")


# ------------------------------------------------------------------ #
# clear
# ------------------------------------------------------------------ #


async def _clear(config: EngineConfig) -> list[str]:
    from swcache.engine import CacheEngine

    storage, fetcher = _runtime_parts(config)
    try:
        return await CacheEngine(config, storage, fetcher).clear_all()
    finally:
        storage.close()


def clear_command(ctx: typer.Context) -> None:
    """Delete every cache namespace, including the current version's.

    Asks for confirmation unless ``--force`` is active.

    Example::

        swcache --force clear
    """
    from swcache.config import resolve_config

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Delete all cache namespaces?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    _, config = resolve_config()
    deleted = asyncio.run(_clear(config))
    for name in deleted:
        info(f"Deleted {name}")
    success(f"Cleared {len(deleted)} namespace(s).")
