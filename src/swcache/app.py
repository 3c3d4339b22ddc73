"""Typer application and CLI entry point for swcache.

This module wires together the top-level Typer application and registers the
built-in commands (``deploy``, ``fetch``, ``status``, ``clear``, ``config``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers and invokes the Typer app;
:class:`~swcache.exceptions.SwcacheError` instances become clean exits with
their ``exit_code``, and anything else is written to a crash log under the
data directory.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import TYPE_CHECKING, Any

import typer

from swcache import __version__
from swcache.exit_codes import EXIT_GENERIC_FAILURE

if TYPE_CHECKING:
    from swcache.output import OutputFormat


app = typer.Typer(
    name="swcache",
    help="Versioned offline-first HTTP response cache.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"swcache {__version__}")
        raise typer.Exit()


def _configured_format() -> OutputFormat:
    """Output format from the global config, or ``AUTO`` if it cannot be read.

    An unreadable config file is reported by the command that loads it;
    ``config reset`` must still run.
    """
    from swcache.config import load_global_config
    from swcache.exceptions import ConfigError
    from swcache.output import OutputFormat

    try:
        return OutputFormat(load_global_config().output.format)
    except ConfigError:
        return OutputFormat.AUTO


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~swcache.output.OutputManager` (format from
    ``--json``/``--plain``, else ``output.format`` in the global config), routes
    library logging to stderr (``DEBUG`` with ``--verbose``, ``WARNING``
    otherwise), and stores shared flags in ``ctx.obj``.
    """
    from swcache.output import OutputFormat, OutputManager, set_output

    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = _configured_format()

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )

    ctx.ensure_object(dict)
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #

from swcache.commands.config import config_app  # noqa: E402
from swcache.commands.engine import (  # noqa: E402
    clear_command,
    deploy_command,
    fetch_command,
    status_command,
)

app.command("deploy")(deploy_command)
app.command("fetch")(fetch_command)
app.command("status")(status_command)
app.command("clear")(clear_command)
app.add_typer(config_app, name="config", help="Configuration management.")


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from swcache.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``swcache`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from swcache.exceptions import SwcacheError
        from swcache.output import error

        if isinstance(exc, SwcacheError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
