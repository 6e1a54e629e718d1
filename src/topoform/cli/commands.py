"""CLI command implementations."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from topoform.cli import app
from topoform.cli.errors import handle_error

if TYPE_CHECKING:
    from topoform.engine.engine import Engine
    from topoform.engine.types import ApplyResult, Plan

DEFAULT_CONFIG = Path("topoform.yaml")

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the declaration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

NoRefresh = Annotated[
    bool,
    typer.Option("--no-refresh", help="Skip refreshing state from the provider."),
]

Vars = Annotated[
    list[str] | None,
    typer.Option("--var", help="Set a variable (NAME=VALUE). Repeatable."),
]

Parallelism = Annotated[
    int | None,
    typer.Option("--parallelism", min=1, help="Maximum concurrent provider calls."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def parse_var_options(values: list[str] | None) -> dict[str, str]:
    """Turn ``NAME=VALUE`` options into a mapping."""
    from topoform.config.loader import ConfigError

    result: dict[str, str] = {}
    for item in values or []:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ConfigError(f"Invalid --var {item!r}: expected NAME=VALUE")
        result[name.strip()] = value
    return result


def _apply_with_progress(plan_obj: Plan, engine: Engine, *, color: bool) -> ApplyResult:
    """Apply a plan with a Rich progress bar and per-resource status lines."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from topoform.cli.formatting import action_style
    from topoform.engine.types import Action, ResourceChange

    console = Console(no_color=not color)
    actionable = [c for c in plan_obj.changes if c.action != Action.NOOP]

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=len(actionable))

        def on_progress(change: ResourceChange, event: Literal["start", "done"]) -> None:
            s = action_style(change)
            if event == "start":
                progress.update(task, description=f"{change.address}: {s.progress_verb}...")
            elif event == "done":
                progress.console.print(f"  {change.address}: {s.done_verb}")
                progress.advance(task)

        return engine.apply(plan_obj, progress=on_progress)


def _confirm_and_apply(
    plan_obj: Plan,
    engine: Engine,
    *,
    color: bool,
    auto_approve: bool,
    confirm_msg: str,
    empty_msg: str,
) -> None:
    """Shared flow: show plan -> confirm -> apply with progress -> print summary.

    A plan without resource changes still records outputs.
    """
    from topoform.cli.formatting import (
        format_apply_summary,
        format_outputs,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )

    if has_actionable_changes(plan_obj):
        typer.echo(format_plan(plan_obj, color=color))
        typer.echo()
        typer.echo(format_plan_summary(plan_obj.summary(), color=color))
        typer.echo()

        if not auto_approve:
            try:
                typer.confirm(confirm_msg, abort=True)
            except typer.Abort as e:
                typer.echo("Apply canceled.", err=True)
                raise typer.Exit(1) from e
    else:
        typer.echo(empty_msg)

    try:
        result = _apply_with_progress(plan_obj, engine, color=color)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if result.applied:
        typer.echo()
        typer.echo(format_apply_summary(result.summary(), color=color))
    if result.outputs:
        typer.echo()
        typer.echo(format_outputs(result.outputs, color=color))


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    var: Vars = None,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Show changes required by the current declarations."""
    from topoform.cli.formatting import (
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )
    from topoform.config import load
    from topoform.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg, overrides=parse_var_options(var), refresh=not no_refresh)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")

    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
    parallelism: Parallelism = None,
) -> None:
    """Apply the changes required by the current declarations."""
    from topoform.config import engine_from_config, load
    from topoform.config import plan as plan_fn
    from topoform.engine.types import Plan

    color = _use_color(no_color)
    try:
        cfg = load(config)
        engine = engine_from_config(cfg, parallelism=parallelism)
        if plan_file is not None:
            plan_obj = Plan.load(plan_file)
        else:
            plan_obj = plan_fn(
                cfg, overrides=parse_var_options(var), refresh=not no_refresh, engine=engine
            )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        engine,
        color=color,
        auto_approve=auto_approve or plan_file is not None,
        confirm_msg="Do you want to apply these changes?",
        empty_msg="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
    parallelism: Parallelism = None,
) -> None:
    """Destroy all managed resources."""
    from topoform.config import engine_from_config, load
    from topoform.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        engine = engine_from_config(cfg, parallelism=parallelism)
        plan_obj = plan_fn(cfg, overrides=parse_var_options(var), destroy=True, engine=engine)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        engine,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you really want to destroy all resources?",
        empty_msg="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Refresh state from the provider."""
    from topoform.cli.formatting import changes_summary, format_changes, format_plan_summary
    from topoform.config import load, save_state
    from topoform.config import refresh as refresh_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        changes, state = refresh_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not changes:
        typer.echo("No changes. State is up-to-date with the provider.")
        raise typer.Exit(0)

    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm("Do you want to update the state file?", abort=True)
        except typer.Abort as e:
            typer.echo("Refresh canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        save_state(cfg, state)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    count = len(state.resources)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} tracked.")


@app.command()
def output(
    name: Annotated[
        str | None,
        typer.Argument(help="Print only this output's raw value."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Show output values from the last apply."""
    import json

    from topoform.cli.formatting import format_outputs
    from topoform.config import load
    from topoform.config import outputs as outputs_fn
    from topoform.config.loader import ConfigError

    color = _use_color(no_color)
    try:
        cfg = load(config)
        values = outputs_fn(cfg)
        if name is not None and name not in values:
            raise ConfigError(f"Output '{name}' not found")
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if name is not None:
        value = values[name].get("value")
        typer.echo(value if isinstance(value, str) else json.dumps(value))
        return
    if not values:
        typer.echo("No outputs found.")
        return
    typer.echo(format_outputs(values, color=color))


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    no_color: NoColor = False,
) -> None:
    """Validate the declaration file."""
    from topoform.cli.formatting import styler
    from topoform.config import load
    from topoform.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_fn(cfg, overrides=parse_var_options(var), refresh=False)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)("Configuration is valid.", fg="green"))
