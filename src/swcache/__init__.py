"""swcache -- a versioned, offline-first HTTP response cache engine.

This package implements the lifecycle of a service-worker style response
cache on top of :mod:`asyncio`: a build-time *version token* names a set of
cache namespaces, installation pre-caches an asset manifest, activation
evicts every namespace belonging to older versions, and steady-state fetch
handling serves requests cache-first with a network fallback and an offline
document when both fail.

Typical workflow::

    swcache deploy --manifest dist/precache.json --version-token v9
    swcache fetch /index.html --navigate
    swcache status

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and manifest loading.
    engine: Lifecycle controller, host, and background task tracking.
    cache: Namespaced storage and the request classifier.
    client: Network fetcher wrapping :mod:`httpx`.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.3.0"
