"""Exception hierarchy for swcache.

All exceptions inherit from :class:`SwcacheError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`swcache.exit_codes`.
The top-level error handler in :func:`swcache.app.main` catches
``SwcacheError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Inside the engine most of these never reach a caller: store errors are
recovered as cache misses, and network errors on a miss fall back to the
offline document.  Only :class:`InstallError` and :class:`EngineStateError`
are meant to propagate out of lifecycle operations.

Subclass hierarchy::

    SwcacheError (exit 1)
    +-- InvalidUsageError   (exit 2)
    +-- InstallError        (exit 3)
    +-- EngineStateError    (exit 4)
    +-- CacheStoreError     (exit 5)
    +-- FetchError          (exit 6)
    +-- ConfigError         (exit 1)
"""

from swcache.exit_codes import (
    EXIT_CONNECTION_ERROR,
    EXIT_ENGINE_STATE,
    EXIT_GENERIC_FAILURE,
    EXIT_INSTALL_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_STORE_ERROR,
)


class SwcacheError(Exception):
    """Base exception for all swcache errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`swcache.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(SwcacheError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class InstallError(SwcacheError):
    """Raised when one or more manifest assets could not be pre-cached.

    Args:
        message: Human-readable error description.
        failed: The manifest URLs that failed to fetch.
    """

    exit_code = EXIT_INSTALL_FAILURE

    def __init__(self, message: str, failed: list[str] | None = None):
        super().__init__(message)
        self.failed = list(failed or [])


class EngineStateError(SwcacheError):
    """Raised when a lifecycle operation is invalid for the engine's current state."""

    exit_code = EXIT_ENGINE_STATE


class CacheStoreError(SwcacheError):
    """Raised when the storage backend fails to read, write, or delete."""

    exit_code = EXIT_STORE_ERROR


class FetchError(SwcacheError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused)."""

    exit_code = EXIT_CONNECTION_ERROR


class ConfigError(SwcacheError):
    """Raised for configuration problems (invalid JSON, unreadable manifest, bad values)."""

    exit_code = EXIT_GENERIC_FAILURE
