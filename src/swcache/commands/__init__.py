"""Built-in CLI sub-commands for swcache.

* :mod:`~swcache.commands.engine` -- ``deploy``, ``fetch``, ``status`` and
  ``clear``, registered directly on the root app.
* :mod:`~swcache.commands.config` -- the ``config`` group for viewing and
  editing global settings.
"""
