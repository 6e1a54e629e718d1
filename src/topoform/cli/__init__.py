"""The ``topoform`` command line.

Commands live in :mod:`topoform.cli.commands`; this module owns the app and
the global ``--version`` / ``--verbose`` flags.
"""

from __future__ import annotations

import logging
import os
import sys

import typer

from topoform import __version__

app = typer.Typer(
    name="topoform",
    help="Plan and apply declarative resource graphs.",
    no_args_is_help=True,
    add_completion=False,
)

# Apply runs provider calls on worker threads, so the thread goes in the prefix.
_LOG_FORMAT = "%(levelname)s [%(threadName)s] %(name)s: %(message)s"
_LOG_ENV = "TOPOFORM_LOG"
_VERBOSITY = (logging.INFO, logging.DEBUG)


def _level_from_env(raw: str) -> int:
    level = logging.getLevelName(raw.upper())
    if isinstance(level, int):
        return level
    print(
        f"WARNING: invalid {_LOG_ENV} level '{raw.upper()}', expected one of "
        "CRITICAL, DEBUG, ERROR, INFO, WARNING; defaulting to INFO",
        file=sys.stderr,
    )
    return logging.INFO


def _configure_logging(verbose: int) -> None:
    """Route ``topoform`` logs to stderr.

    ``TOPOFORM_LOG`` wins over ``-v``/``-vv``. With neither, logging is left
    alone and the CLI stays quiet.
    """
    raw = os.environ.get(_LOG_ENV, "")
    if raw:
        level = _level_from_env(raw)
    elif verbose > 0:
        level = _VERBOSITY[min(verbose, len(_VERBOSITY)) - 1]
    else:
        return
    # Third-party loggers stay at WARNING; only our package gets louder.
    logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    logging.getLogger("topoform").setLevel(level)


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"topoform {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Print the topoform version.",
        callback=_print_version,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Log engine activity to stderr (-v info, -vv debug).",
    ),
) -> None:
    """Declarative infrastructure graphs: plan and apply resource changes."""
    _ = version
    _configure_logging(verbose)


from topoform.cli import commands as _commands  # noqa: E402, F401
