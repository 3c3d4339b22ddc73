"""Asynchronous network fetcher used on cache misses.

This module provides :class:`NetworkFetcher`, a thin wrapper around
:class:`httpx.AsyncClient`.  It resolves relative URLs against the engine's
origin, retries network-level failures with exponential backoff, and turns
whatever is left into :class:`~swcache.exceptions.FetchError`.

Unlike a typical API client it does **not** map HTTP error statuses to
exceptions: a 404 or 500 is a perfectly valid response to hand back to the
page.  The engine decides what is cacheable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from swcache.exceptions import FetchError
from swcache.models import EngineConfig

logger = logging.getLogger(__name__)


class NetworkFetcher:
    """Asynchronous HTTP fetcher for cache misses and manifest pre-caching.

    Must be used as an async context manager.

    Args:
        config: Engine configuration supplying ``origin``, ``timeout``,
            ``verify_ssl`` and ``max_retries``.
        transport: Optional :class:`httpx.AsyncBaseTransport`, mainly for
            tests (:class:`httpx.MockTransport`).

    Example::

        async with NetworkFetcher(config) as fetcher:
            response = await fetcher.fetch("GET", "/index.html")
    """

    def __init__(
        self,
        config: EngineConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> NetworkFetcher:
        self._client = httpx.AsyncClient(
            base_url=self._config.origin or "",
            timeout=self._config.timeout,
            verify=self._config.verify_ssl,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def fetch(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Fetch *url* and return the fully-read response, whatever its status.

        Retries on connection and timeout errors up to ``max_retries`` times
        with :func:`asyncio.sleep` between attempts.  The delay doubles each
        attempt: 1 s, 2 s, 4 s, ...

        Args:
            method: HTTP method.
            url: Absolute URL, or a path relative to the configured origin.
            headers: Extra request headers.

        Returns:
            The :class:`httpx.Response` from the server.

        Raises:
            FetchError: On network / timeout errors after all retries, or
                when the URL cannot be requested at all.
        """
        assert self._client is not None, "Fetcher not initialised -- use as async context manager"

        max_retries = self._config.max_retries

        for attempt in range(max_retries + 1):
            try:
                return await self._client.request(method, url, headers=headers)
            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < max_retries:
                    delay = 2 ** attempt
                    logger.debug(
                        "Network error for %s: %s, retrying in %ss (attempt %d/%d)",
                        url, exc, delay, attempt + 1, max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise FetchError(
                    f"Fetching {url} failed after {max_retries + 1} attempts: {exc}"
                ) from exc
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise FetchError(f"Fetching {url} failed: {exc}") from exc

        raise FetchError(f"Fetching {url} failed")  # pragma: no cover
