"""Tests for expression evaluation."""

from __future__ import annotations

from typing import Any

import pytest

from topoform.errors import EvaluationError, UnresolvedReferenceError
from topoform.lang.evaluator import evaluate, evaluate_value
from topoform.lang.parser import parse_expression
from topoform.lang.values import UNKNOWN


class DictScope:
    def __init__(
        self,
        variables: dict[str, Any] | None = None,
        resources: dict[str, list[dict[str, Any]]] | None = None,
        counted: set[str] | None = None,
    ) -> None:
        self._variables = variables or {}
        self._resources = resources or {}
        self._counted = counted or set()

    def variable(self, name: str) -> Any:
        return self._variables[name]

    def instances(self, resource_type: str, name: str) -> tuple[bool, list[str]]:
        key = f"{resource_type}.{name}"
        counted = key in self._counted
        n = len(self._resources.get(key, []))
        if counted:
            return True, [f"{key}[{i}]" for i in range(n)]
        return False, [key]

    def attribute(self, address: str, attribute: str) -> Any:
        key, _, rest = address.partition("[")
        i = int(rest.rstrip("]")) if rest else 0
        return self._resources[key][i].get(attribute, UNKNOWN)


def _eval(expr: str, scope: DictScope | None = None, **kwargs: Any) -> Any:
    return evaluate(parse_expression(expr), scope or DictScope(), **kwargs)


class TestArithmetic:
    def test_basic(self) -> None:
        assert _eval("1 + 2 * 3") == 7
        assert _eval("7 % 3") == 1
        assert _eval("1.5 * 2") == 3.0

    def test_integer_division_truncates_toward_zero(self) -> None:
        assert _eval("7 / 2") == 3
        assert _eval("-7 / 2") == -3

    def test_float_division(self) -> None:
        assert _eval("7.0 / 2") == 3.5

    def test_division_by_zero(self) -> None:
        with pytest.raises(EvaluationError, match="Division by zero"):
            _eval("1 / 0")

    def test_bools_coerce_to_integers(self) -> None:
        scope = DictScope({"on": True, "off": False, "subnets": ["a", "b"]})
        assert _eval("(1 - var.off) * length(var.subnets)", scope) == 2
        assert _eval("(1 - var.on) * length(var.subnets)", scope) == 0

    def test_numeric_strings(self) -> None:
        assert _eval('"2" + 3') == 5

    def test_non_number(self) -> None:
        with pytest.raises(EvaluationError, match="Expected a number"):
            _eval('"abc" + 1')


class TestLogic:
    def test_comparison(self) -> None:
        assert _eval("2 > 1") is True
        assert _eval("2 <= 1") is False

    def test_equality_across_scalar_types(self) -> None:
        assert _eval('1 == "1"') is True
        assert _eval('true != "true"') is False

    def test_conditional(self) -> None:
        scope = DictScope({"on": True})
        assert _eval("var.on ? 1 : 0", scope) == 1
        assert _eval("!var.on ? 1 : 0", scope) == 0

    def test_short_circuit(self) -> None:
        scope = DictScope({"x": UNKNOWN})
        assert _eval("false && var.x", scope) is False
        assert _eval("true || var.x", scope) is True
        assert _eval("true && var.x", scope) is UNKNOWN


class TestUnknowns:
    def test_propagate_through_operators(self) -> None:
        scope = DictScope({"x": UNKNOWN})
        assert _eval("var.x + 1", scope) is UNKNOWN
        assert _eval("-var.x", scope) is UNKNOWN
        assert _eval("var.x ? 1 : 2", scope) is UNKNOWN

    def test_template_with_unknown(self) -> None:
        scope = DictScope({"x": UNKNOWN, "name": "demo"})
        assert evaluate_value("${var.name}-${var.x}", scope) is UNKNOWN
        assert evaluate_value("${var.name}-nat", scope) == "demo-nat"

    def test_lists_keep_unknown_elements(self) -> None:
        scope = DictScope({"x": UNKNOWN})
        assert evaluate_value(["a", "${var.x}"], scope) == ["a", UNKNOWN]


class TestResources:
    @pytest.fixture
    def scope(self) -> DictScope:
        return DictScope(
            {"i": 1},
            {
                "aws_vpc.main": [{"id": "vpc-1"}],
                "aws_subnet.ext": [{"id": "subnet-a"}, {}],
            },
            counted={"aws_subnet.ext"},
        )

    def test_plain(self, scope: DictScope) -> None:
        assert _eval("aws_vpc.main.id", scope) == "vpc-1"

    def test_indexed(self, scope: DictScope) -> None:
        assert _eval("aws_subnet.ext[0].id", scope) == "subnet-a"
        assert _eval("aws_subnet.ext[var.i].id", scope) is UNKNOWN

    def test_count_index(self, scope: DictScope) -> None:
        assert _eval("aws_subnet.ext[count.index].id", scope, count_index=0) == "subnet-a"

    def test_splat(self, scope: DictScope) -> None:
        assert _eval("aws_subnet.ext.*.id", scope) == ["subnet-a", UNKNOWN]
        assert _eval("length(aws_subnet.ext.*.id)", scope) == 2

    def test_unindexed_counted_reference(self, scope: DictScope) -> None:
        with pytest.raises(UnresolvedReferenceError, match="has count set"):
            _eval("aws_subnet.ext.id", scope)

    def test_out_of_range(self, scope: DictScope) -> None:
        with pytest.raises(UnresolvedReferenceError, match="out of range"):
            _eval("aws_subnet.ext[5].id", scope)


def test_count_index_outside_counted_resource() -> None:
    with pytest.raises(EvaluationError, match="count.index"):
        _eval("count.index")


def test_index_into_list_and_map() -> None:
    scope = DictScope({"azs": ["a", "b"], "tags": {"Name": "x"}})
    assert _eval("var.azs[1]", scope) == "b"
    assert _eval('var.tags["Name"]', scope) == "x"
    with pytest.raises(EvaluationError, match="out of range"):
        _eval("var.azs[2]", scope)
