"""Plan and apply output rendering (Terraform-style)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from topoform.engine.types import Action
from topoform.lang.values import UNKNOWN_MARKER

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from topoform.engine.types import Plan, ResourceChange


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    header: str
    progress_verb: str
    done_verb: str


_STYLES: dict[Action, _ActionStyle] = {
    Action.CREATE: _ActionStyle("green", "+", "will be created", "Creating", "Creation complete"),
    Action.UPDATE: _ActionStyle(
        "yellow", "~", "will be updated in-place", "Modifying", "Modifications complete"
    ),
    Action.DELETE: _ActionStyle(
        "red", "-", "will be destroyed", "Destroying", "Destruction complete"
    ),
    Action.NOOP: _ActionStyle("bright_black", " ", "is up-to-date", "", ""),
}

_REPLACE = _ActionStyle("magenta", "-/+", "must be replaced", "Replacing", "Replacement complete")

_VERBS = {
    "plan": ("to add", "to change", "to destroy"),
    "apply": ("added", "changed", "destroyed"),
}
_COUNT_COLORS = ("green", "yellow", "red")


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def action_style(change: ResourceChange) -> _ActionStyle:
    """Progress wording for one executed action; both halves of a replacement say so."""
    return _REPLACE if change.replace else _STYLES[change.action]


def has_actionable_changes(plan: Plan) -> bool:
    return plan.has_changes()


def render_value(value: Any) -> str:
    """Display form of an attribute value; unknowns print bare."""
    if value is None:
        return "null"
    if value is True or value is False:
        return str(value).lower()
    if value == UNKNOWN_MARKER:
        return value
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, list | dict):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _aligned(pairs: Mapping[str, str]) -> Iterable[str]:
    width = max((len(k) for k in pairs), default=0)
    for key, text in pairs.items():
        yield f"{key:<{width}} = {text}"


def _attribute_lines(change: ResourceChange) -> tuple[dict[str, str], int]:
    """Rendered attribute pairs for a block, plus how many unchanged ones were hidden."""
    if change.diff and change.action in (Action.CREATE, Action.UPDATE):
        pairs = {}
        for key, d in change.diff.items():
            text = f"{render_value(d['from'])} -> {render_value(d['to'])}"
            if key in change.replace_reasons:
                text += " # forces replacement"
            pairs[key] = text
        if change.action != Action.UPDATE:
            return pairs, 0
        return pairs, sum(1 for k in change.planned or {} if k not in pairs)
    source = change.prior if change.action == Action.DELETE else change.planned
    return {k: render_value(v) for k, v in (source or {}).items()}, 0


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    style = styler(color)
    s = _REPLACE if change.replace else _STYLES[change.action]
    pairs, hidden = _attribute_lines(change)
    title = f'resource "{change.resource_type}" "{change.name}"'

    lines = [
        style(f"  # {change.address} {s.header}", fg=s.color, bold=True),
        style(f"  {s.symbol} {title} {{", fg=s.color),
    ]
    lines.extend(style(f"      {s.symbol} {line}", fg=s.color) for line in _aligned(pairs))
    if hidden:
        noun = "attribute" if hidden == 1 else "attributes"
        lines.append(style(f"        # ({hidden} unchanged {noun} hidden)", fg="bright_black"))
    lines.append(style("    }", fg=s.color))
    return "\n".join(lines)


def _shown(change: ResourceChange) -> bool:
    # a replacement renders once, on its create half
    if change.action == Action.NOOP:
        return False
    return not (change.replace and change.action == Action.DELETE)


def format_changes(changes: list[ResourceChange], *, color: bool = True) -> str:
    blocks = [format_change(c, color=color) for c in changes if _shown(c)]
    return "\n\n".join(blocks) if blocks else "No changes. Resources are up-to-date."


def format_plan(plan: Plan, *, color: bool = True) -> str:
    return format_changes(plan.changes, color=color)


def changes_summary(changes: list[ResourceChange]) -> dict[str, int]:
    """Count changes by action; a replacement counts once as add and once as destroy."""
    counts = dict.fromkeys(("create", "update", "delete"), 0)
    for c in changes:
        if c.action != Action.NOOP:
            counts[c.action.value] += 1
    return counts


def _counts(summary: Mapping[str, int], kind: str, *, color: bool) -> str:
    style = styler(color)
    values = [summary.get(a, 0) for a in ("create", "update", "delete")]
    return ", ".join(
        style(f"{n} {verb}", fg=fg) if n else f"{n} {verb}"
        for n, verb, fg in zip(values, _VERBS[kind], _COUNT_COLORS, strict=True)
    )


def format_plan_summary(
    summary: Mapping[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to destroy.``"""
    return f"{header}: {_counts(summary, 'plan', color=color)}."


def format_apply_summary(summary: Mapping[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 destroyed.``"""
    header = styler(color)("Apply complete!", fg="green", bold=True)
    return f"{header} Resources: {_counts(summary, 'apply', color=color)}."


def format_outputs(outputs: Mapping[str, Any], *, color: bool = True) -> str:
    """Render stored outputs as ``name = value`` lines; sensitive values are masked."""
    pairs = {
        name: "<sensitive>" if entry.get("sensitive") else render_value(entry.get("value"))
        for name, entry in sorted(outputs.items())
    }
    return "\n".join([styler(color)("Outputs:", bold=True), "", *_aligned(pairs)])
