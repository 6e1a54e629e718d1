"""Named output values."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from topoform.engine.scope import PlanScope
from topoform.lang.evaluator import evaluate_value
from topoform.lang.values import contains_unknown, for_display

if TYPE_CHECKING:
    from collections.abc import Mapping

    from topoform.engine.scope import BaseScope
    from topoform.resources.base import OutputDecl

logger = logging.getLogger(__name__)


def check_outputs(
    outputs: Mapping[str, OutputDecl],
    variables: Mapping[str, Any],
    expansions: Mapping[str, tuple[bool, list[str]]],
) -> None:
    """Evaluate outputs with every resource attribute unknown.

    Surfaces syntax errors and references to undeclared variables or
    resources at plan time instead of after apply.
    """
    scope = PlanScope(variables, expansions, {})
    for out in outputs.values():
        evaluate_value(out.value, scope)


def evaluate_outputs(outputs: Mapping[str, OutputDecl], scope: BaseScope) -> dict[str, Any]:
    """Evaluate outputs against final state.

    Returns ``{name: {"value": ..., "sensitive": bool}}``. Values that are
    still unknown are stored as ``None``.
    """
    result: dict[str, Any] = {}
    for name, out in outputs.items():
        value = evaluate_value(out.value, scope)
        if contains_unknown(value):
            logger.warning("Output %s has no known value after apply: %s", name, for_display(value))
            value = None
        result[name] = {"value": value, "sensitive": out.sensitive}
    return result
