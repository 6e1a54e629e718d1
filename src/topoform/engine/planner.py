"""Planner: order the resource graph and diff it against prior state."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from topoform.engine.graph import DependencyGraph
from topoform.engine.handlers import ProviderContext
from topoform.engine.scope import PlanScope
from topoform.engine.types import Action, ResourceChange
from topoform.errors import ValidationError
from topoform.lang.evaluator import evaluate
from topoform.lang.values import UNKNOWN, contains_unknown, for_display

if TYPE_CHECKING:
    from collections.abc import Iterable

    from topoform.core.state import ResourceRecord, State
    from topoform.engine.builder import ResourceGraph, ResourceInstance
    from topoform.engine.registry import ResourceTypeRegistry

logger = logging.getLogger(__name__)


def values_differ(desired: Any, prior: Any) -> bool:
    """Check whether a planned value differs from the stored value.

    - Unknown planned values always differ.
    - For dict values, only keys present in *desired* are compared; extra
      keys present only in *prior* (provider-added defaults) are ignored.
    - Lists are compared element-wise with the same rules.
    - Everything else uses strict equality.
    """
    if desired is UNKNOWN:
        return True
    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(values_differ(v, prior.get(k)) for k, v in desired.items())
    if isinstance(desired, list) and isinstance(prior, list):
        return len(desired) != len(prior) or any(
            values_differ(d, p) for d, p in zip(desired, prior, strict=True)
        )
    if contains_unknown(desired):
        return True
    return desired != prior


def _delete_change(rec: ResourceRecord, *, replace: bool = False) -> ResourceChange:
    return ResourceChange(
        address=rec.address,
        resource_type=rec.resource_type,
        name=rec.name,
        index=rec.index,
        action=Action.DELETE,
        replace=replace,
        prior=dict(rec.attributes),
        depends_on=list(rec.dependencies),
    )


def delete_order(state: State, addresses: Iterable[str]) -> list[str]:
    """Dependents before dependencies; higher indices before lower ones."""
    delete_set = set(addresses)
    deps: dict[str, list[str]] = {}
    keys: dict[str, tuple[Any, ...]] = {}
    for addr in delete_set:
        rec = state.resources[addr]
        deps[addr] = [d for d in rec.dependencies if d in delete_set]
        keys[addr] = (rec.key, -1 if rec.index is None else rec.index)
    return DependencyGraph(delete_set, deps, order_keys=keys).reverse_topological_order()


def plan_deletes(
    state: State, addresses: Iterable[str], registry: ResourceTypeRegistry
) -> list[ResourceChange]:
    changes: list[ResourceChange] = []
    for addr in delete_order(state, addresses):
        rec = state.resources[addr]
        registry.get(rec.resource_type)  # fail early if unknown
        changes.append(_delete_change(rec))
    return changes


class Planner:
    """Turns a resource graph plus a prior state snapshot into ordered changes."""

    def __init__(
        self, graph: ResourceGraph, state: State, registry: ResourceTypeRegistry
    ) -> None:
        self._graph = graph
        self._state = state
        self._registry = registry
        self._known: dict[str, dict[str, Any]] = {}
        self._scope = PlanScope(graph.variables, graph.expansions, self._known)

    def _evaluate(self, inst: ResourceInstance) -> dict[str, Any]:
        return {
            k: evaluate(node, self._scope, count_index=inst.index)
            for k, node in inst.decl.attribute_nodes().items()
        }

    def _classify(
        self, inst: ResourceInstance, planned: dict[str, Any]
    ) -> list[ResourceChange]:
        handler = self._registry.get(inst.resource_type)
        base: dict[str, Any] = {
            "address": inst.address,
            "resource_type": inst.resource_type,
            "name": inst.name,
            "index": inst.index,
            "position": inst.position,
            "desired": dict(inst.decl.attributes),
            "planned": for_display(planned),
            "depends_on": list(inst.dependencies),
        }

        prior = self._state.resources.get(inst.address)
        if prior is None:
            logger.debug("Classified %s as create", inst.address)
            self._known[inst.address] = dict(planned)
            return [ResourceChange(action=Action.CREATE, **base)]

        diff = {
            k: {"from": prior.attributes.get(k), "to": for_display(v)}
            for k, v in planned.items()
            if values_differ(v, prior.attributes.get(k))
        }
        # attributes dropped from the declaration are cleared
        removed = [k for k in prior.declared_keys if k not in planned]
        diff.update({k: {"from": prior.attributes.get(k), "to": None} for k in removed})
        reasons = sorted(k for k in diff if k in handler.force_new)
        if reasons:
            logger.debug("Classified %s as replace (%s)", inst.address, ", ".join(reasons))
            self._known[inst.address] = dict(planned)
            return [
                _delete_change(prior, replace=True),
                ResourceChange(
                    action=Action.CREATE,
                    replace=True,
                    prior=dict(prior.attributes),
                    diff=diff,
                    replace_reasons=reasons,
                    **base,
                ),
            ]

        action = Action.UPDATE if diff else Action.NOOP
        logger.debug("Classified %s as %s", inst.address, action.value)
        kept = {k: v for k, v in prior.attributes.items() if k not in removed}
        self._known[inst.address] = {**kept, "id": prior.external_id, **planned}
        return [
            ResourceChange(action=action, prior=dict(prior.attributes), diff=diff or None, **base)
        ]

    def plan(self) -> list[ResourceChange]:
        changes: list[ResourceChange] = []
        errors: list[str] = []

        for addr in self._graph.topological_order():
            inst = self._graph.instances[addr]
            planned = self._evaluate(inst)
            handler = self._registry.get(inst.resource_type)
            errors.extend(
                f"{addr}: {e}"
                for e in handler.validate(ProviderContext(addr, inst.resource_type), planned)
            )
            changes.extend(self._classify(inst, planned))

        if errors:
            raise ValidationError(errors)

        orphans = set(self._state.resources) - set(self._graph.instances)
        changes.extend(plan_deletes(self._state, orphans, self._registry))
        return changes
