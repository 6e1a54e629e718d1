from __future__ import annotations

import pytest

from topoform.engine.graph import DependencyGraph
from topoform.errors import CyclicDependencyError


def test_topological_order_respects_dependencies() -> None:
    g = DependencyGraph(["a", "b", "c"], {"b": ["a"], "c": ["b"]})
    assert g.topological_order() == ["a", "b", "c"]
    assert g.reverse_topological_order() == ["c", "b", "a"]


def test_order_keys_break_ties_before_names() -> None:
    g = DependencyGraph(
        ["z", "y", "x"],
        {},
        order_keys={"z": (0, -1), "y": (1, 0), "x": (1, 1)},
    )
    assert g.topological_order() == ["z", "y", "x"]


def test_lexicographic_tie_break_without_keys() -> None:
    g = DependencyGraph(["c", "a", "b"], {})
    assert g.topological_order() == ["a", "b", "c"]


def test_dependencies_outside_graph_are_ignored() -> None:
    g = DependencyGraph(["a"], {"a": ["missing"]})
    assert g.dependencies("a") == set()
    assert g.topological_order() == ["a"]


def test_dependents() -> None:
    g = DependencyGraph(["a", "b", "c"], {"b": ["a"], "c": ["a"]})
    assert g.dependents() == {"a": {"b", "c"}, "b": set(), "c": set()}


def test_cycle_detection() -> None:
    g = DependencyGraph(["a", "b", "c", "d"], {"a": ["b"], "b": ["c"], "c": ["a"], "d": ["a"]})
    assert g.cycles() == [["a", "b", "c"]]
    with pytest.raises(CyclicDependencyError) as exc_info:
        g.topological_order()
    assert exc_info.value.cycles == [["a", "b", "c"]]
    assert "a -> b -> c" in str(exc_info.value)


def test_self_loop_is_a_cycle() -> None:
    g = DependencyGraph(["a", "b"], {"a": ["a"]})
    assert g.cycles() == [["a"]]
    with pytest.raises(CyclicDependencyError):
        g.check_acyclic()


def test_multiple_cycles_reported() -> None:
    g = DependencyGraph(["a", "b", "c", "d"], {"a": ["b"], "b": ["a"], "c": ["d"], "d": ["c"]})
    assert g.cycles() == [["a", "b"], ["c", "d"]]


def test_acyclic_graph_has_no_cycles() -> None:
    g = DependencyGraph(["a", "b"], {"b": ["a"]})
    assert g.cycles() == []
    g.check_acyclic()
