"""Network client module for swcache.

Provides :class:`NetworkFetcher`, the asynchronous wrapper around
:class:`httpx.AsyncClient` that the engine uses to pre-cache the asset
manifest and to fill cache misses.

Example::

    from swcache.client import NetworkFetcher

    async with NetworkFetcher(config) as fetcher:
        resp = await fetcher.fetch("GET", "/manifest.json")
"""

from swcache.client.fetcher import NetworkFetcher

__all__ = ["NetworkFetcher"]
