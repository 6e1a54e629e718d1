"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from topoform.config.loader import ConfigError
    from topoform.errors import (
        ApplyCanceled,
        ApplyError,
        ConfigurationError,
        CyclicDependencyError,
        StalePlanError,
        StateCorruptionError,
        StateLockError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, CyclicDependencyError):
        _err("Dependency cycle detected:", fg=fg)
        for cycle in exc.cycles:
            _err(f"  - {' -> '.join(cycle)}", fg=fg)
    elif isinstance(exc, ConfigurationError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateCorruptionError):
        _err(f"State is corrupt: {exc}", fg=fg)
        _err("  Inspect the state file (a .backup copy sits next to it).", fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"State lock: {exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed: {exc}", fg=fg)
        for f in exc.result.failed:
            _err(f"  - {f.address} ({f.action.value}): {f.message}", fg=fg)
        if exc.result.skipped:
            _err(f"  Skipped: {', '.join(exc.result.skipped)}", fg=fg)
        _partial_result(exc.result.summary(), fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
        _partial_result(exc.result.summary(), fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1


def _partial_result(s: dict[str, int], *, fg: str | None) -> None:
    parts = [
        f"{n} {verb}"
        for n, verb in (
            (s["create"], "added"),
            (s["update"], "changed"),
            (s["delete"], "destroyed"),
        )
        if n
    ]
    if parts:
        _err(f"  Partial result: {', '.join(parts)}.", fg=fg)
