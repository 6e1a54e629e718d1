"""Dependency graph utilities."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING, Any

from topoform.errors import CyclicDependencyError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Dependencies on nodes outside the graph are ignored. Self-dependencies are
    kept so they surface as cycles.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        order_keys: Mapping[str, tuple[Any, ...]] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._order_keys = order_keys or {}
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._nodes}

    @property
    def nodes(self) -> set[str]:
        return set(self._nodes)

    def dependencies(self, node: str) -> set[str]:
        return set(self._deps[node])

    def dependents(self) -> dict[str, set[str]]:
        result: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                result[dep].add(node)
        return result

    def _key(self, node: str) -> tuple[tuple[Any, ...], str]:
        return (self._order_keys.get(node, ()), node)

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (Kahn; order key, then lexicographic tie-break)."""
        indegree = {node: len(deps) for node, deps in self._deps.items()}
        dependents = self.dependents()

        ready = [self._key(n) for n, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, self._key(child))

        if len(order) != len(self._nodes):
            raise CyclicDependencyError(self.cycles())

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def cycles(self) -> list[list[str]]:
        """Strongly connected components that form cycles (Tarjan, iterative).

        A component counts when it has more than one member or a self loop.
        """
        index_of: dict[str, int] = {}
        low: dict[str, int] = {}
        on_stack: set[str] = set()
        stack: list[str] = []
        found: list[list[str]] = []
        counter = 0

        def visit(node: str) -> Iterator[str]:
            return iter(sorted(self._deps[node]))

        for root in sorted(self._nodes):
            if root in index_of:
                continue
            index_of[root] = low[root] = counter
            counter += 1
            stack.append(root)
            on_stack.add(root)
            work = [(root, visit(root))]

            while work:
                node, it = work[-1]
                descended = False
                for dep in it:
                    if dep not in index_of:
                        index_of[dep] = low[dep] = counter
                        counter += 1
                        stack.append(dep)
                        on_stack.add(dep)
                        work.append((dep, visit(dep)))
                        descended = True
                        break
                    if dep in on_stack:
                        low[node] = min(low[node], index_of[dep])
                if descended:
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    low[parent] = min(low[parent], low[node])
                if low[node] == index_of[node]:
                    component: list[str] = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    if len(component) > 1 or node in self._deps[node]:
                        found.append(sorted(component))

        return sorted(found)

    def check_acyclic(self) -> None:
        cycles = self.cycles()
        if cycles:
            raise CyclicDependencyError(cycles)
