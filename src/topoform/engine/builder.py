"""Resource graph builder: count expansion and dependency edges."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from topoform.engine.graph import DependencyGraph
from topoform.engine.scope import BaseScope
from topoform.errors import (
    DuplicateAddressError,
    EvaluationError,
    InvalidCountError,
    UnresolvedReferenceError,
)
from topoform.lang.evaluator import evaluate
from topoform.lang.nodes import resource_refs
from topoform.lang.values import UNKNOWN, to_number

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from topoform.core.state import State
    from topoform.engine.registry import ResourceTypeRegistry
    from topoform.lang.nodes import Node, ResourceRef
    from topoform.resources.base import ResourceDecl

logger = logging.getLogger(__name__)

_DEPENDS_ON_RE = re.compile(r"^(?P<key>[A-Za-z_]\w*\.[A-Za-z_]\w*)(?:\[(?P<index>\d+)\])?$")


@dataclass
class ResourceInstance:
    """One declaration expanded at a concrete ``count.index``."""

    address: str
    decl: ResourceDecl
    index: int | None
    position: int
    dependencies: list[str] = field(default_factory=list)

    @property
    def resource_type(self) -> str:
        return self.decl.type

    @property
    def name(self) -> str:
        return self.decl.name

    @property
    def key(self) -> str:
        return self.decl.address

    @property
    def order_key(self) -> tuple[int, int]:
        return (self.position, -1 if self.index is None else self.index)


@dataclass
class ResourceGraph:
    """Expanded instances and their dependency edges."""

    instances: dict[str, ResourceInstance]
    expansions: dict[str, tuple[bool, list[str]]]
    variables: dict[str, Any]

    def dependency_graph(self) -> DependencyGraph:
        return DependencyGraph(
            self.instances,
            {a: i.dependencies for a, i in self.instances.items()},
            order_keys={a: i.order_key for a, i in self.instances.items()},
        )

    def topological_order(self) -> list[str]:
        """Dependencies first; ties broken by declaration order, then index."""
        return self.dependency_graph().topological_order()


class _BuildScope(BaseScope):
    """Scope used while expanding counts.

    Instance lists are requested from the builder on demand, so a count may
    depend on another declaration's count regardless of declaration order.
    Attribute lookups fall back to prior state, then to ``UNKNOWN``.
    """

    def __init__(self, builder: GraphBuilder) -> None:
        super().__init__(builder.variables, builder.expansions)
        self._builder = builder

    def instances(self, resource_type: str, name: str) -> tuple[bool, list[str]]:
        key = f"{resource_type}.{name}"
        if key not in self._builder.declarations:
            raise UnresolvedReferenceError(f"Reference to undeclared resource {key}")
        return self._builder.expand(key)

    def attribute(self, address: str, attribute: str) -> Any:
        return self._builder.declared_attribute(address, attribute)


class GraphBuilder:
    """Expands declarations into instances and links them.

    Args:
        resources: Declarations in declaration order.
        variables: Resolved variable values.
        registry: When given, every resource type must be registered.
        state: Prior state, consulted for attribute values a count expression
            needs that are not declared.
    """

    def __init__(
        self,
        resources: Sequence[ResourceDecl],
        variables: Mapping[str, Any],
        *,
        registry: ResourceTypeRegistry | None = None,
        state: State | None = None,
    ) -> None:
        self.variables = dict(variables)
        self.declarations: dict[str, ResourceDecl] = {}
        self._positions: dict[str, int] = {}
        for position, decl in enumerate(resources):
            if decl.address in self.declarations:
                raise DuplicateAddressError(decl.address)
            if registry is not None:
                registry.get(decl.type)
            self.declarations[decl.address] = decl
            self._positions[decl.address] = position
        self.expansions: dict[str, tuple[bool, list[str]]] = {}
        self._state = state
        self._expanding: list[str] = []
        self._evaluating: list[tuple[str, str]] = []
        self._scope = _BuildScope(self)

    # ── count expansion ──

    def expand(self, key: str) -> tuple[bool, list[str]]:
        """Expand a declaration's count, expanding its count dependencies first."""
        if key in self.expansions:
            return self.expansions[key]
        if key in self._expanding:
            chain = " -> ".join([*self._expanding[self._expanding.index(key) :], key])
            raise UnresolvedReferenceError(f"Count expressions depend on each other: {chain}")

        decl = self.declarations[key]
        self._expanding.append(key)
        try:
            node = decl.count_node()
            if node is None:
                result = (False, [decl.address])
            else:
                n = self._evaluate_count(decl, node)
                result = (True, [decl.instance_address(i) for i in range(n)])
        finally:
            self._expanding.pop()

        logger.debug("Expanded %s into %d instance(s)", key, len(result[1]))
        self.expansions[key] = result
        return result

    def _evaluate_count(self, decl: ResourceDecl, node: Node) -> int:
        value = evaluate(node, self._scope)
        if value is UNKNOWN:
            raise InvalidCountError(decl.address, "value known only after apply")
        try:
            number = to_number(value)
        except EvaluationError as e:
            raise InvalidCountError(decl.address, value) from e
        if isinstance(number, float):
            if not number.is_integer():
                raise InvalidCountError(decl.address, value)
            number = int(number)
        if number < 0:
            raise InvalidCountError(decl.address, value)
        return number

    def declared_attribute(self, address: str, attribute: str) -> Any:
        """Evaluate a declared attribute of an instance for count expressions."""
        key, index = _split_address(address)
        decl = self.declarations[key]
        if attribute in decl.attributes:
            marker = (address, attribute)
            if marker in self._evaluating:
                raise UnresolvedReferenceError(
                    f"Attribute {address}.{attribute} depends on itself"
                )
            self._evaluating.append(marker)
            try:
                return evaluate(decl.attribute_nodes()[attribute], self._scope, count_index=index)
            finally:
                self._evaluating.pop()
        if self._state is not None and address in self._state.resources:
            value = self._state.resources[address].lookup(attribute)
            if value is not None:
                return value
        return UNKNOWN

    # ── edges ──

    def _ref_targets(self, ref: ResourceRef, inst: ResourceInstance) -> list[str]:
        if ref.key not in self.declarations:
            raise UnresolvedReferenceError(
                f"{inst.address} references undeclared resource {ref.key}"
            )
        _, addresses = self.expand(ref.key)
        if ref.splat or ref.index is None:
            return addresses
        index = evaluate(ref.index, self._scope, count_index=inst.index)
        if index is UNKNOWN:
            return addresses
        i = int(to_number(index))
        # An out-of-range index may sit in an untaken conditional branch; the
        # evaluator reports it if it is ever actually used.
        return [addresses[i]] if 0 <= i < len(addresses) else []

    def _depends_on_targets(self, entry: str, inst: ResourceInstance) -> list[str]:
        m = _DEPENDS_ON_RE.match(entry)
        if m is None or m.group("key") not in self.declarations:
            raise UnresolvedReferenceError(
                f"Resource '{inst.address}' depends on unknown address '{entry}'"
            )
        _, addresses = self.expand(m.group("key"))
        if m.group("index") is None:
            return addresses
        if entry not in addresses:
            raise UnresolvedReferenceError(
                f"Resource '{inst.address}' depends on missing instance '{entry}'"
            )
        return [entry]

    def build(self) -> ResourceGraph:
        instances: dict[str, ResourceInstance] = {}
        for key, decl in self.declarations.items():
            counted, addresses = self.expand(key)
            for i, address in enumerate(addresses):
                instances[address] = ResourceInstance(
                    address=address,
                    decl=decl,
                    index=i if counted else None,
                    position=self._positions[key],
                )

        for inst in instances.values():
            deps: set[str] = set()
            for ref in inst.decl.references():
                deps.update(self._ref_targets(ref, inst))
            for entry in inst.decl.depends_on:
                deps.update(self._depends_on_targets(entry, inst))
            inst.dependencies = sorted(deps)

        graph = ResourceGraph(
            instances=instances, expansions=dict(self.expansions), variables=self.variables
        )
        graph.dependency_graph().check_acyclic()
        logger.info(
            "Built resource graph: %d declarations, %d instances",
            len(self.declarations),
            len(instances),
        )
        return graph


def _split_address(address: str) -> tuple[str, int | None]:
    if address.endswith("]"):
        key, _, rest = address.partition("[")
        return key, int(rest[:-1])
    return address, None


def build_graph(
    resources: Sequence[ResourceDecl],
    variables: Mapping[str, Any],
    *,
    registry: ResourceTypeRegistry | None = None,
    state: State | None = None,
) -> ResourceGraph:
    return GraphBuilder(resources, variables, registry=registry, state=state).build()
