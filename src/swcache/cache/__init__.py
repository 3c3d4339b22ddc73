"""Namespaced response storage and request classification for swcache.

This package provides the two leaf components of the engine:

* :mod:`swcache.cache.store` -- :class:`CacheStorage`, an asynchronous,
  namespace-partitioned key/value store for responses, with a
  :mod:`diskcache`-backed implementation (:class:`DiskCacheStorage`) and an
  in-memory one (:class:`MemoryCacheStorage`).
* :mod:`swcache.cache.classifier` -- :func:`classify`, the pure function that
  decides whether a request is skipped, static, or dynamic.

Both are consumed by :class:`~swcache.engine.lifecycle.CacheEngine`.
"""

from swcache.cache.classifier import classify, resolve_url
from swcache.cache.store import (
    CacheNamespace,
    CacheStorage,
    DiskCacheStorage,
    MemoryCacheStorage,
    create_storage,
    make_request_key,
)

__all__ = [
    "CacheNamespace",
    "CacheStorage",
    "DiskCacheStorage",
    "MemoryCacheStorage",
    "classify",
    "create_storage",
    "make_request_key",
    "resolve_url",
]
