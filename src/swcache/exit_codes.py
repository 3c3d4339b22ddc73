"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~swcache.exceptions.SwcacheError` subclass.
Deployment scripts can inspect the exit code to tell a failed pre-cache
apart from a storage or network problem without parsing stderr.

Example::

    $ swcache deploy --manifest dist/precache.json
    $ echo $?
    3   # EXIT_INSTALL_FAILURE -- a manifest asset could not be fetched
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_INSTALL_FAILURE = 3
"""Pre-caching the asset manifest failed; the version was not installed."""

EXIT_ENGINE_STATE = 4
"""The engine was asked to do something its lifecycle state does not allow."""

EXIT_STORE_ERROR = 5
"""The cache storage backend raised an I/O error."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""
