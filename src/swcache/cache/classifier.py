"""Request classification.

:func:`classify` maps a request to a
:class:`~swcache.models.RequestClassification`:

* ``SKIP`` -- non-GET methods, non-http(s) schemes (``chrome-extension:``,
  ``data:``, relative URLs that could not be resolved, ...), and anything
  matching the pass-through allowlist.  These are never intercepted.
* ``STATIC`` -- paths under a static directory or ending in a static file
  extension (style sheets, scripts, images, fonts).
* ``DYNAMIC`` -- everything else (HTML documents, JSON, API-like requests).

The static/dynamic split only selects a namespace; eviction is still
whole-namespace by version.
"""

from __future__ import annotations

from typing import Optional

import httpx

from swcache.models import EngineConfig, RequestClassification


def resolve_url(url: str, origin: Optional[str] = None) -> str:
    """Return *url* as an absolute URL without its fragment.

    Relative URLs are resolved against *origin*.  When no origin is given a
    relative URL is returned unchanged (and later classified ``SKIP``).
    Strings that are not parseable URLs are returned unchanged as well.
    """
    try:
        parsed = httpx.URL(url)
        if parsed.is_relative_url and origin:
            parsed = httpx.URL(origin).join(parsed)
        return str(parsed.copy_with(fragment=None))
    except (httpx.InvalidURL, TypeError, ValueError):
        return url


def _matches_passthrough(url: httpx.URL, raw: str, entries: list[str]) -> bool:
    host = url.host.lower()
    for entry in entries:
        if "://" in entry:
            if raw.startswith(entry):
                return True
        else:
            entry = entry.lower().strip(".")
            if host == entry or host.endswith("." + entry):
                return True
    return False


def _is_static_path(path: str, config: EngineConfig) -> bool:
    lowered = path.lower()
    if any(lowered.startswith(d.lower()) for d in config.static_dirs):
        return True
    return any(lowered.endswith(ext.lower()) for ext in config.static_extensions)


def classify(url: str, method: str, config: EngineConfig) -> RequestClassification:
    """Classify a request by method and absolute URL.

    Args:
        url: The request URL, ideally already passed through :func:`resolve_url`.
        method: HTTP method; anything but GET is skipped.
        config: Supplies the pass-through allowlist and static path rules.

    Returns:
        The request's :class:`~swcache.models.RequestClassification`.
    """
    if method.upper() != "GET":
        return RequestClassification.SKIP

    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError):
        return RequestClassification.SKIP

    if parsed.scheme not in ("http", "https") or not parsed.host:
        return RequestClassification.SKIP

    if _matches_passthrough(parsed, url, config.passthrough):
        return RequestClassification.SKIP

    if _is_static_path(parsed.path, config):
        return RequestClassification.STATIC
    return RequestClassification.DYNAMIC
