"""Apply operations.

Apply runs a graph of operations: each operation knows how to apply one
change and lists the operations that must finish before it may start.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from topoform.core.state import ResourceRecord
from topoform.engine.handlers import ProviderContext
from topoform.engine.types import Action
from topoform.errors import UnresolvedReferenceError
from topoform.lang.evaluator import evaluate
from topoform.lang.parser import parse_value
from topoform.lang.values import contains_unknown

if TYPE_CHECKING:
    from collections.abc import Callable

    from topoform.core.state import State, StateStore
    from topoform.engine.registry import ResourceTypeRegistry
    from topoform.engine.scope import StateScope
    from topoform.engine.types import ResourceChange


@dataclass
class ApplyContext:
    registry: ResourceTypeRegistry
    store: StateStore
    scope: StateScope
    # Wraps a provider call with the retry policy.
    call: Callable[[str, Callable[[], Any]], Any]


class Operation(Protocol):
    key: str
    deps: list[str]
    change: ResourceChange

    def run(self, ctx: ApplyContext) -> None:
        """Execute this operation and record the outcome in state."""


def _provider_ctx(change: ResourceChange) -> ProviderContext:
    return ProviderContext(address=change.address, resource_type=change.resource_type)


def resolve_attributes(change: ResourceChange, scope: StateScope) -> dict[str, Any]:
    """Re-evaluate declared attributes now that upstream values are known."""
    if change.desired is None:
        raise ValueError(f"Missing desired config for {change.action.value}: {change.address}")
    attrs = {
        k: evaluate(parse_value(raw), scope, count_index=change.index)
        for k, raw in change.desired.items()
    }
    unresolved = sorted(k for k, v in attrs.items() if contains_unknown(v))
    if unresolved:
        raise UnresolvedReferenceError(
            f"{change.address}: attribute(s) {', '.join(unresolved)} still unknown at apply time"
        )
    return attrs


@dataclass
class CreateOperation:
    key: str
    change: ResourceChange
    deps: list[str] = field(default_factory=list)

    def run(self, ctx: ApplyContext) -> None:
        handler = ctx.registry.get(self.change.resource_type)
        attrs = resolve_attributes(self.change, ctx.scope)
        pctx = _provider_ctx(self.change)

        external_id, outputs = ctx.call(self.key, lambda: handler.create(pctx, attrs))
        ctx.store.put(
            ResourceRecord(
                address=self.change.address,
                resource_type=self.change.resource_type,
                name=self.change.name,
                index=self.change.index,
                external_id=external_id,
                attributes={**attrs, **outputs},
                dependencies=list(self.change.depends_on),
                declared_keys=sorted(attrs),
            )
        )


@dataclass
class UpdateOperation:
    key: str
    change: ResourceChange
    deps: list[str] = field(default_factory=list)

    def run(self, ctx: ApplyContext) -> None:
        handler = ctx.registry.get(self.change.resource_type)
        attrs = resolve_attributes(self.change, ctx.scope)
        prior = ctx.store.get(self.change.address)
        if prior is None:
            raise ValueError(f"Missing state for update operation: {self.change.address}")

        # keys no longer declared reach the provider as None and leave state
        removed = [k for k in prior.declared_keys if k not in attrs]
        sent = {**attrs, **dict.fromkeys(removed)}

        pctx = _provider_ctx(self.change)
        outputs = ctx.call(self.key, lambda: handler.update(pctx, prior.external_id, sent))
        kept = {k: v for k, v in prior.attributes.items() if k not in removed}
        prior.attributes = {**kept, **attrs, **outputs}
        prior.declared_keys = sorted(attrs)
        prior.dependencies = list(self.change.depends_on)
        prior.updated_at = datetime.now(UTC)
        ctx.store.put(prior)


@dataclass
class DeleteOperation:
    key: str
    change: ResourceChange
    deps: list[str] = field(default_factory=list)

    def run(self, ctx: ApplyContext) -> None:
        handler = ctx.registry.get(self.change.resource_type)
        prior = ctx.store.get(self.change.address)
        if prior is None:
            return

        pctx = _provider_ctx(self.change)
        ctx.call(self.key, lambda: handler.delete(pctx, prior.external_id))
        ctx.store.remove(self.change.address)


def _waits_for(ops: dict[str, Operation], start: str, target: str) -> bool:
    """Whether *start* already waits, directly or transitively, on *target*."""
    seen: set[str] = set()
    stack = [start]
    while stack:
        key = stack.pop()
        if key == target:
            return True
        if key not in seen:
            seen.add(key)
            stack.extend(ops[key].deps)
    return False


def build_operations(changes: list[ResourceChange], state: State) -> dict[str, Operation]:
    """Create operations for every actionable change and wire their ordering."""
    ops: dict[str, Operation] = {}
    create_update: dict[str, str] = {}  # address -> op key
    deletes: dict[str, str] = {}  # address -> op key

    for c in changes:
        op: Operation
        match c.action:
            case Action.NOOP:
                continue
            case Action.CREATE:
                op = CreateOperation(key=c.operation_key, change=c)
                create_update[c.address] = op.key
            case Action.UPDATE:
                op = UpdateOperation(key=c.operation_key, change=c)
                create_update[c.address] = op.key
            case Action.DELETE:
                op = DeleteOperation(key=c.operation_key, change=c)
                deletes[c.address] = op.key
            case _:
                raise ValueError(f"Unknown action: {c.action}")

        if op.key in ops:
            raise ValueError(f"Duplicate operation key in plan: {op.key}")
        ops[op.key] = op

    # create/update: dependencies must run before dependents; a replacement
    # create waits for the removal of the object it replaces.
    for addr, key in create_update.items():
        op = ops[key]
        op.deps.extend(create_update[d] for d in op.change.depends_on if d in create_update)
        if op.change.replace and addr in deletes:
            op.deps.append(deletes[addr])

    # deletes: dependents must be deleted before dependencies (invert edges).
    for addr, key in deletes.items():
        for dep in ops[key].change.depends_on:
            if dep in deletes and dep != addr:
                ops[deletes[dep]].deps.append(key)

    # A plain delete also waits until former dependents that stay have been
    # updated or recreated, so nothing still points at it.
    for addr, key in deletes.items():
        if ops[key].change.replace:
            continue
        for other, other_key in create_update.items():
            rec = state.resources.get(other)
            if rec is not None and addr in rec.dependencies:
                ops[key].deps.append(other_key)

    # Shrinking counts remove the highest index first, unless a dependency
    # between the instances already orders them the other way.
    by_decl: dict[str, list[ResourceChange]] = {}
    for key in deletes.values():
        change = ops[key].change
        if not change.replace and change.index is not None:
            by_decl.setdefault(change.key, []).append(change)
    for group in by_decl.values():
        group.sort(key=lambda c: c.index or 0, reverse=True)
        for higher, lower in zip(group, group[1:], strict=False):
            if _waits_for(ops, higher.operation_key, lower.operation_key):
                continue
            ops[lower.operation_key].deps.append(higher.operation_key)

    for op in ops.values():
        op.deps[:] = sorted(set(op.deps))
    return ops
