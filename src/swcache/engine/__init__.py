"""Lifecycle engine for swcache.

* :mod:`~swcache.engine.lifecycle` -- :class:`CacheEngine`, one version of
  the install / activate / fetch state machine.
* :mod:`~swcache.engine.host` -- :class:`EngineHost`, which owns the
  installing / waiting / active slots and dispatches events.
* :mod:`~swcache.engine.tasks` -- :class:`BackgroundTasks`, the tracker for
  detached cache writes.
"""

from swcache.engine.host import EngineHost
from swcache.engine.lifecycle import CacheEngine, response_source
from swcache.engine.tasks import BackgroundTasks, TaskFailure

__all__ = [
    "BackgroundTasks",
    "CacheEngine",
    "EngineHost",
    "TaskFailure",
    "response_source",
]
