"""Tests for plan classification and ordering."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from topoform.core.state import State
from topoform.engine.planner import values_differ
from topoform.engine.types import Action
from topoform.errors import ValidationError
from topoform.lang.values import UNKNOWN

if TYPE_CHECKING:
    from collections.abc import Callable

    from tests.unit.conftest import RecordingHandler
    from topoform.engine.engine import Engine
    from topoform.engine.types import Plan
    from topoform.resources.base import ResourceDecl


def _actions(plan: Plan) -> list[tuple[str, str]]:
    return [(c.operation_key, c.action.value) for c in plan.changes]


def test_values_differ() -> None:
    assert values_differ(UNKNOWN, "x")
    assert values_differ(["a", UNKNOWN], ["a", "b"])
    assert not values_differ({"a": 1}, {"a": 1, "extra": 2})
    assert values_differ([1, 2], [1])
    assert not values_differ("x", "x")


def test_first_plan_creates_in_dependency_order(
    engine: Engine, decl: Callable[..., ResourceDecl]
) -> None:
    plan = engine.plan(
        [decl("link.b", ref="${box.a.id}"), decl("box.a", size=1)],
        refresh=False,
    )
    assert _actions(plan) == [("box.a", "create"), ("link.b", "create")]
    assert plan.changes[1].planned == {"ref": "<computed>"}
    assert plan.changes[1].depends_on == ["box.a"]
    assert plan.summary() == {"create": 2, "update": 0, "delete": 0, "no-op": 0}


def test_plan_is_idempotent_after_apply(
    engine: Engine, decl: Callable[..., ResourceDecl]
) -> None:
    resources = [decl("box.a", size=1), decl("link.b", ref="${box.a.arn}")]
    engine.apply(engine.plan(resources))

    plan = engine.plan(resources)
    assert not plan.has_changes()
    assert _actions(plan) == [("box.a", "no-op"), ("link.b", "no-op")]
    assert plan.changes[1].planned == {"ref": "arn:box-1"}


def test_update_diff(engine: Engine, decl: Callable[..., ResourceDecl]) -> None:
    engine.apply(engine.plan([decl("box.a", size=1, tags={"env": "dev"})]))

    plan = engine.plan([decl("box.a", size=2, tags={"env": "dev"})])
    (change,) = plan.changes
    assert change.action == Action.UPDATE
    assert change.diff == {"size": {"from": 1, "to": 2}}


def test_force_new_change_plans_a_replacement(
    engine: Engine, decl: Callable[..., ResourceDecl]
) -> None:
    engine.apply(engine.plan([decl("box.a", zone="a"), decl("link.b", ref="${box.a.id}")]))

    plan = engine.plan([decl("box.a", zone="b"), decl("link.b", ref="${box.a.id}")])
    assert _actions(plan) == [
        ("box.a (deposed)", "delete"),
        ("box.a", "create"),
        ("link.b", "update"),
    ]
    create = plan.changes[1]
    assert create.replace
    assert create.replace_reasons == ["zone"]
    assert plan.changes[2].diff == {"ref": {"from": "box-1", "to": "<computed>"}}


def test_count_shrink_deletes_highest_index_first(
    engine: Engine, decl: Callable[..., ResourceDecl]
) -> None:
    engine.apply(engine.plan([decl("box.a", count=3)]))

    plan = engine.plan([decl("box.a", count=1)])
    assert _actions(plan) == [
        ("box.a[0]", "no-op"),
        ("box.a[2]", "delete"),
        ("box.a[1]", "delete"),
    ]


def test_orphans_deleted_dependents_first(
    engine: Engine, decl: Callable[..., ResourceDecl]
) -> None:
    engine.apply(
        engine.plan([decl("box.a"), decl("link.b", ref="${box.a.id}"), decl("box.keep")])
    )

    plan = engine.plan([decl("box.keep")])
    assert _actions(plan) == [("box.keep", "no-op"), ("link.b", "delete"), ("box.a", "delete")]


def test_validation_errors_are_collected(
    engine: Engine, handler: RecordingHandler, decl: Callable[..., ResourceDecl]
) -> None:
    handler.validate = lambda ctx, attrs: [] if "size" in attrs else ["size is required"]

    with pytest.raises(ValidationError) as exc_info:
        engine.plan([decl("box.a"), decl("box.b", size=1), decl("box.c", count=2)])
    assert exc_info.value.errors == [
        "box.a: size is required",
        "box.c[0]: size is required",
        "box.c[1]: size is required",
    ]


def test_destroy_plan_deletes_everything(
    engine: Engine, decl: Callable[..., ResourceDecl]
) -> None:
    resources = [decl("box.a", count=2), decl("link.b", ref="${box.a[1].id}")]
    engine.apply(engine.plan(resources))

    plan = engine.plan(resources, destroy=True)
    assert plan.metadata.destroy
    assert _actions(plan) == [
        ("link.b", "delete"),
        ("box.a[1]", "delete"),
        ("box.a[0]", "delete"),
    ]


def test_removed_attribute_plans_an_update(
    engine: Engine, handler: RecordingHandler, decl: Callable[..., ResourceDecl]
) -> None:
    engine.apply(engine.plan([decl("box.a", size=1, label="x")]))

    plan = engine.plan([decl("box.a", size=1)])
    assert _actions(plan) == [("box.a", "update")]
    assert plan.changes[0].diff == {"label": {"from": "x", "to": None}}

    engine.apply(plan)
    rec = State.load(engine.state_path).resources["box.a"]
    assert "label" not in rec.attributes
    assert rec.declared_keys == ["size"]
    assert "label" not in handler.store[rec.external_id]
    assert not engine.plan([decl("box.a", size=1)]).has_changes()


def test_removed_force_new_attribute_replaces(
    engine: Engine, decl: Callable[..., ResourceDecl]
) -> None:
    engine.apply(engine.plan([decl("box.a", size=1, zone="a")]))

    plan = engine.plan([decl("box.a", size=1)])
    assert _actions(plan) == [("box.a (deposed)", "delete"), ("box.a", "create")]
    assert plan.changes[1].replace_reasons == ["zone"]
