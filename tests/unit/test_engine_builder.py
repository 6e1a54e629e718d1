"""Tests for count expansion and dependency edges."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from topoform.core.state import ResourceRecord, State
from topoform.engine.builder import build_graph
from topoform.errors import (
    CyclicDependencyError,
    DuplicateAddressError,
    InvalidCountError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from topoform.engine.registry import ResourceTypeRegistry
    from topoform.resources.base import ResourceDecl


def test_count_expands_into_indexed_instances(decl: Callable[..., ResourceDecl]) -> None:
    graph = build_graph([decl("box.a", count=3)], {})
    assert list(graph.instances) == ["box.a[0]", "box.a[1]", "box.a[2]"]
    assert [i.index for i in graph.instances.values()] == [0, 1, 2]
    assert graph.expansions == {"box.a": (True, ["box.a[0]", "box.a[1]", "box.a[2]"])}


def test_uncounted_declaration_is_a_single_instance(decl: Callable[..., ResourceDecl]) -> None:
    graph = build_graph([decl("box.a")], {})
    assert list(graph.instances) == ["box.a"]
    assert graph.instances["box.a"].index is None


def test_count_zero_yields_no_instances(decl: Callable[..., ResourceDecl]) -> None:
    graph = build_graph([decl("box.a", count="${var.on ? 1 : 0}")], {"on": False})
    assert graph.instances == {}
    assert graph.expansions["box.a"] == (True, [])


@pytest.mark.parametrize(("use_nat_instances", "expected"), [(False, 2), (True, 0)])
def test_count_arithmetic_with_booleans(
    decl: Callable[..., ResourceDecl], use_nat_instances: bool, expected: int
) -> None:
    count = "${(1 - var.use_nat_instances) * length(var.internal_subnets)}"
    graph = build_graph(
        [decl("box.nat", count=count)],
        {"use_nat_instances": use_nat_instances, "internal_subnets": ["a", "b"]},
    )
    assert len(graph.instances) == expected


def test_count_may_reference_later_declarations(decl: Callable[..., ResourceDecl]) -> None:
    graph = build_graph(
        [
            decl("link.route", count="${length(box.gw.*.id)}", target="${box.gw[count.index].id}"),
            decl("box.gw", count=2),
        ],
        {},
    )
    assert graph.expansions["link.route"][1] == ["link.route[0]", "link.route[1]"]
    assert graph.instances["link.route[1]"].dependencies == ["box.gw[1]"]


def test_count_reading_a_declared_attribute(decl: Callable[..., ResourceDecl]) -> None:
    graph = build_graph(
        [decl("box.a", names=["x", "y", "z"]), decl("box.b", count="${length(box.a.names)}")],
        {},
    )
    assert len(graph.expansions["box.b"][1]) == 3


def test_count_reading_prior_state(decl: Callable[..., ResourceDecl]) -> None:
    state = State()
    state.resources["box.a"] = ResourceRecord(
        address="box.a",
        resource_type="box",
        name="a",
        external_id="box-1",
        attributes={"size": 2},
    )
    graph = build_graph([decl("box.a"), decl("box.b", count="${box.a.size}")], {}, state=state)
    assert len(graph.expansions["box.b"][1]) == 2


def test_count_known_only_after_apply_is_rejected(decl: Callable[..., ResourceDecl]) -> None:
    with pytest.raises(InvalidCountError) as exc_info:
        build_graph([decl("box.a"), decl("box.b", count="${box.a.id}")], {})
    assert exc_info.value.address == "box.b"


@pytest.mark.parametrize("count", ["${-1}", "${1.5}", '${"many"}'])
def test_invalid_count_values(decl: Callable[..., ResourceDecl], count: str) -> None:
    with pytest.raises(InvalidCountError):
        build_graph([decl("box.a", count=count)], {})


def test_count_loop(decl: Callable[..., ResourceDecl]) -> None:
    with pytest.raises(UnresolvedReferenceError, match="depend on each other"):
        build_graph(
            [
                decl("box.a", count="${length(box.b.*.id)}"),
                decl("box.b", count="${length(box.a.*.id)}"),
            ],
            {},
        )


def test_duplicate_address(decl: Callable[..., ResourceDecl]) -> None:
    with pytest.raises(DuplicateAddressError, match="box.a"):
        build_graph([decl("box.a"), decl("box.a", count=2)], {})


def test_unknown_resource_type(
    decl: Callable[..., ResourceDecl], registry: ResourceTypeRegistry
) -> None:
    with pytest.raises(UnknownResourceTypeError, match="crate"):
        build_graph([decl("crate.a")], {}, registry=registry)


def test_reference_to_undeclared_resource(decl: Callable[..., ResourceDecl]) -> None:
    with pytest.raises(UnresolvedReferenceError, match="undeclared resource box.missing"):
        build_graph([decl("box.a", x="${box.missing.id}")], {})


def test_splat_and_unindexed_refs_depend_on_every_instance(
    decl: Callable[..., ResourceDecl],
) -> None:
    graph = build_graph(
        [
            decl("box.subnet", count=2),
            decl("link.all", ids="${box.subnet.*.id}"),
            decl("link.one", count=2, subnet="${element(box.subnet.*.id, count.index)}"),
        ],
        {},
    )
    assert graph.instances["link.all"].dependencies == ["box.subnet[0]", "box.subnet[1]"]
    assert graph.instances["link.one[0]"].dependencies == ["box.subnet[0]", "box.subnet[1]"]


def test_static_index_out_of_range_adds_no_edge(decl: Callable[..., ResourceDecl]) -> None:
    graph = build_graph(
        [
            decl("box.sg", count=0),
            decl("box.vm", sg="${var.on ? box.sg[0].id : \"none\"}"),
        ],
        {"on": False},
    )
    assert graph.instances["box.vm"].dependencies == []


def test_depends_on(decl: Callable[..., ResourceDecl]) -> None:
    graph = build_graph(
        [
            decl("box.gw", count=2),
            decl("box.a", depends_on=["box.gw"]),
            decl("box.b", depends_on=["box.gw[1]"]),
        ],
        {},
    )
    assert graph.instances["box.a"].dependencies == ["box.gw[0]", "box.gw[1]"]
    assert graph.instances["box.b"].dependencies == ["box.gw[1]"]


@pytest.mark.parametrize("entry", ["box.nope", "box.gw[5]", "not an address"])
def test_depends_on_unknown(decl: Callable[..., ResourceDecl], entry: str) -> None:
    with pytest.raises(UnresolvedReferenceError):
        build_graph([decl("box.gw", count=2), decl("box.a", depends_on=[entry])], {})


def test_reference_cycle(decl: Callable[..., ResourceDecl]) -> None:
    with pytest.raises(CyclicDependencyError) as exc_info:
        build_graph([decl("box.a", x="${box.b.id}"), decl("box.b", y="${box.a.id}")], {})
    assert exc_info.value.addresses == ["box.a", "box.b"]


def test_self_reference_is_a_cycle(decl: Callable[..., ResourceDecl]) -> None:
    with pytest.raises(CyclicDependencyError):
        build_graph([decl("box.a", x="${box.a.id}")], {})


def test_topological_order_uses_declaration_order(decl: Callable[..., ResourceDecl]) -> None:
    graph = build_graph(
        [
            decl("box.z", count=2),
            decl("box.a"),
            decl("link.y", ref="${box.a.id}"),
        ],
        {},
    )
    assert graph.topological_order() == ["box.z[0]", "box.z[1]", "box.a", "link.y"]
