"""Canonical Pydantic models shared across all swcache modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into three groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`OutputConfig`, :class:`EngineConfig`, and :class:`GlobalConfig`.

**Lifecycle enums** -- shared vocabulary of the engine and its host:
    :class:`RequestClassification`, :class:`LifecycleState`,
    :class:`CacheLayout`, and :class:`StorageBackend`.

**Request/response models** -- what flows through the fetch handler and what
is persisted in a namespace:
    :class:`FetchRequest` and :class:`CachedResponse`.

All models use Pydantic v2. :class:`EngineConfig` is frozen: the version token
and the namespace names derived from it are fixed for the lifetime of an
engine, so concurrent fetch handlers never observe a changing "current
version".
"""

from __future__ import annotations

import enum
import re
import time
from typing import Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")

DEFAULT_PASSTHROUGH = [
    "https://fonts.googleapis.com",
    "https://fonts.gstatic.com",
    "https://esm.sh",
    "media.licdn.com",
    "profile-images.xing.com",
    "xingassets.com",
]
"""Origins left to the browser's own HTTP cache and never intercepted."""

DEFAULT_STATIC_EXTENSIONS = [
    ".css",
    ".js",
    ".mjs",
    ".svg",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".webp",
    ".avif",
    ".ico",
    ".woff",
    ".woff2",
]

DEFAULT_STATIC_DIRS = ["/assets/", "/asset/", "/icons/"]


# --- Lifecycle enums ---


class RequestClassification(str, enum.Enum):
    """Content class of an intercepted request.

    Decides which namespace a freshly fetched response is stored into.
    ``SKIP`` requests are never intercepted at all.
    """

    STATIC = "static"
    DYNAMIC = "dynamic"
    SKIP = "skip"


class LifecycleState(str, enum.Enum):
    """States of a single engine version, in lifecycle order."""

    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVE = "active"
    REDUNDANT = "redundant"


class CacheLayout(str, enum.Enum):
    """How an engine version partitions its cache.

    ``UNIFIED`` keeps every entry in one namespace; ``SPLIT`` separates
    content-addressed static assets from documents so the two can be evicted
    independently.
    """

    UNIFIED = "unified"
    SPLIT = "split"


class StorageBackend(str, enum.Enum):
    """Which :class:`~swcache.cache.store.CacheStorage` implementation to use."""

    DISK = "disk"
    MEMORY = "memory"


# --- Configuration models ---


class OutputConfig(BaseModel):
    """Default output preferences stored in :class:`GlobalConfig`.

    Used when neither ``--json`` nor ``--plain`` is passed on the command line.
    """

    format: Literal["auto", "json", "plain", "rich"] = Field(
        default="auto", description="Output format: auto, json, plain, rich"
    )


class EngineConfig(BaseModel):
    """Build-time settings of one engine version.

    The ``version`` token seeds every namespace name; changing it is the only
    supported way to invalidate previously cached content. Entries never
    expire on their own.

    Example::

        EngineConfig(
            version="v9",
            layout=CacheLayout.SPLIT,
            origin="https://portfolio.example",
            precache=["/", "/index.html", "/manifest.json"],
        )
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field(default="v1", description="Namespace version token")
    cache_prefix: str = Field(
        default="portfolio", description="Prefix shared by all namespace names"
    )
    layout: CacheLayout = Field(
        default=CacheLayout.SPLIT, description="unified or split (static/dynamic)"
    )
    origin: Optional[str] = Field(
        default=None,
        description="Origin the engine serves; relative URLs resolve against it "
        "and only same-origin responses are cached",
    )
    precache: list[str] = Field(
        default_factory=list, description="Asset manifest pre-cached on install"
    )
    passthrough: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PASSTHROUGH),
        description="URL prefixes (with scheme) or hosts that are never intercepted",
    )
    static_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_STATIC_EXTENSIONS)
    )
    static_dirs: list[str] = Field(default_factory=lambda: list(DEFAULT_STATIC_DIRS))
    offline_document: str = Field(
        default="/index.html",
        description="Cached document served to navigations when the network fails",
    )
    skip_waiting: bool = Field(
        default=True, description="Take over immediately after install"
    )
    storage: StorageBackend = Field(default=StorageBackend.DISK)
    timeout: float = Field(default=30, description="Network timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    max_retries: int = Field(
        default=0, ge=0, description="Retries on network errors before giving up"
    )

    @field_validator("version", "cache_prefix")
    @classmethod
    def _check_name_part(cls, value: str) -> str:
        if not _NAME_RE.match(value):
            raise ValueError(
                f"'{value}' may only contain letters, digits, '.', '_' and '-'"
            )
        return value

    @field_validator("origin")
    @classmethod
    def _check_origin(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        url = httpx.URL(value)
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"origin must be an absolute http(s) URL, got '{value}'")
        return f"{url.scheme}://{url.netloc.decode('ascii')}"

    def namespace_for(self, classification: RequestClassification) -> str:
        """Return the current namespace name a response of *classification* belongs to."""
        if self.layout == CacheLayout.UNIFIED:
            role = "cache"
        elif classification == RequestClassification.STATIC:
            role = "static"
        else:
            role = "dynamic"
        return f"{self.cache_prefix}-{role}-{self.version}"

    @property
    def namespace_names(self) -> list[str]:
        """All current namespace names for this version, in lookup order."""
        if self.layout == CacheLayout.UNIFIED:
            return [self.namespace_for(RequestClassification.DYNAMIC)]
        return [
            self.namespace_for(RequestClassification.STATIC),
            self.namespace_for(RequestClassification.DYNAMIC),
        ]


class GlobalConfig(BaseModel):
    """Top-level user configuration persisted as ``config.json``.

    Loaded and saved by :func:`~swcache.config.load_global_config` and
    :func:`~swcache.config.save_global_config`. Fields here have the
    lowest precedence and can be overridden by project-local config, environment
    variables, or CLI flags. See :func:`~swcache.config.resolve_config`.
    """

    output: OutputConfig = Field(default_factory=OutputConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)


# --- Request / response models ---


class FetchRequest(BaseModel):
    """A request intercepted by the engine.

    ``mode`` mirrors the Fetch API request mode; ``"navigate"`` marks a
    top-level document load, which is the only kind of request that receives
    the offline document when the network is unreachable.
    """

    url: str
    method: str = "GET"
    mode: str = "no-cors"
    headers: dict[str, str] = Field(default_factory=dict)

    @property
    def is_navigation(self) -> bool:
        return self.mode == "navigate"


class CachedResponse(BaseModel):
    """A response as persisted inside a cache namespace.

    Stored as a plain dict (``model_dump``) so backends never need to pickle
    library objects; converted back to an :class:`httpx.Response` on a hit.
    """

    status_code: int
    headers: list[tuple[str, str]] = Field(default_factory=list)
    content: bytes = b""
    url: str = ""
    stored_at: float = Field(default_factory=time.time)

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> CachedResponse:
        """Copy status, headers and the already-read body of *response*."""
        try:
            url = str(response.request.url)
        except RuntimeError:
            url = ""
        return cls(
            status_code=response.status_code,
            headers=[(k, v) for k, v in response.headers.multi_items()],
            content=response.content,
            url=url,
        )

    def to_httpx(self) -> httpx.Response:
        """Rebuild an :class:`httpx.Response` carrying the stored status, headers and body."""
        # The body is stored decoded, so length and encoding headers are recomputed.
        headers = [
            (k, v)
            for k, v in self.headers
            if k.lower() not in ("content-encoding", "content-length", "transfer-encoding")
        ]
        request = httpx.Request("GET", self.url) if self.url else None
        return httpx.Response(
            status_code=self.status_code,
            headers=headers,
            content=self.content,
            request=request,
        )
