"""Expression evaluation against a symbol table.

Evaluation is pure: the same scope and tree always produce the same value.
Lookups of variables and resource attributes go through a ``Scope`` so each
phase (graph build, plan, apply) can decide what is known at that point.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from topoform.errors import EvaluationError, UnresolvedReferenceError
from topoform.lang.functions import call_function
from topoform.lang.nodes import (
    Binary,
    Conditional,
    CountIndex,
    FunctionCall,
    Index,
    ListExpr,
    Literal,
    MapExpr,
    ResourceRef,
    Template,
    Unary,
    VariableRef,
)
from topoform.lang.parser import parse_value
from topoform.lang.values import UNKNOWN, to_bool, to_int, to_number, to_string

if TYPE_CHECKING:
    from topoform.lang.nodes import Node


class Scope(Protocol):
    def variable(self, name: str) -> Any:
        """Resolved value of ``var.<name>``."""

    def instances(self, resource_type: str, name: str) -> tuple[bool, list[str]]:
        """``(counted, addresses)`` for a declaration, addresses in index order."""

    def attribute(self, address: str, attribute: str) -> Any:
        """Attribute of a resource instance, ``UNKNOWN`` if not yet known."""


def _equal(left: Any, right: Any) -> bool:
    if left == right:
        return True
    scalars = (str, int, float, bool)
    if isinstance(left, scalars) and isinstance(right, scalars):
        return to_string(left) == to_string(right)
    return False


def _arith(op: str, left: Any, right: Any) -> Any:
    a = to_number(left)
    b = to_number(right)
    match op:
        case "+":
            return a + b
        case "-":
            return a - b
        case "*":
            return a * b
        case "/" | "%":
            if b == 0:
                raise EvaluationError(f"Division by zero: {left!r} {op} {right!r}")
            if op == "%":
                return a % b
            if isinstance(a, int) and isinstance(b, int):
                return int(a / b)
            return a / b
    raise EvaluationError(f"Unknown operator {op}")  # pragma: no cover


_COMPARE = {
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
}


class Evaluator:
    """Evaluates parsed trees for one resource instance (or none)."""

    def __init__(self, scope: Scope, *, count_index: int | None = None) -> None:
        self._scope = scope
        self._count_index = count_index

    def evaluate(self, node: Node) -> Any:
        match node:
            case Literal(value=value):
                return value
            case VariableRef(name=name):
                return self._scope.variable(name)
            case CountIndex():
                if self._count_index is None:
                    raise EvaluationError("count.index used outside a resource with count")
                return self._count_index
            case ResourceRef():
                return self._resource(node)
            case FunctionCall(name=name, args=args):
                return call_function(name, [self.evaluate(a) for a in args])
            case Template(parts=parts):
                values = [self.evaluate(p) for p in parts]
                if any(v is UNKNOWN for v in values):
                    return UNKNOWN
                return "".join(to_string(v) for v in values)
            case ListExpr(items=items):
                return [self.evaluate(i) for i in items]
            case MapExpr(items=items):
                return {k: self.evaluate(v) for k, v in items}
            case Unary(op=op, operand=operand):
                value = self.evaluate(operand)
                if value is UNKNOWN:
                    return UNKNOWN
                return -to_number(value) if op == "-" else not to_bool(value)
            case Binary():
                return self._binary(node)
            case Conditional(condition=cond, if_true=if_true, if_false=if_false):
                test = self.evaluate(cond)
                if test is UNKNOWN:
                    return UNKNOWN
                return self.evaluate(if_true if to_bool(test) else if_false)
            case Index(target=target, index=index):
                return self._index(self.evaluate(target), self.evaluate(index))
        raise EvaluationError(f"Cannot evaluate {node!r}")  # pragma: no cover

    def _binary(self, node: Binary) -> Any:
        left = self.evaluate(node.left)
        if node.op in ("&&", "||") and left is not UNKNOWN:
            short = to_bool(left)
            if node.op == "&&" and not short:
                return False
            if node.op == "||" and short:
                return True
            right = self.evaluate(node.right)
            return UNKNOWN if right is UNKNOWN else to_bool(right)

        right = self.evaluate(node.right)
        if left is UNKNOWN or right is UNKNOWN:
            return UNKNOWN
        if node.op == "==":
            return _equal(left, right)
        if node.op == "!=":
            return not _equal(left, right)
        if node.op in _COMPARE:
            return _COMPARE[node.op](to_number(left), to_number(right))
        return _arith(node.op, left, right)

    @staticmethod
    def _index(target: Any, index: Any) -> Any:
        if target is UNKNOWN or index is UNKNOWN:
            return UNKNOWN
        if isinstance(target, list):
            i = to_int(index)
            if not 0 <= i < len(target):
                raise EvaluationError(f"Index {i} out of range for list of length {len(target)}")
            return target[i]
        if isinstance(target, dict):
            key = to_string(index)
            if key not in target:
                raise EvaluationError(f"Key {key!r} not found in map")
            return target[key]
        raise EvaluationError(f"Cannot index into {target!r}")

    def _resource(self, ref: ResourceRef) -> Any:
        counted, addresses = self._scope.instances(ref.resource_type, ref.name)
        if ref.splat:
            return [self._scope.attribute(a, ref.attribute) for a in addresses]
        if ref.index is None:
            if counted:
                raise UnresolvedReferenceError(
                    f"{ref.key} has count set; reference it as {ref.key}[index].{ref.attribute} "
                    f"or {ref.key}.*.{ref.attribute}"
                )
            return self._scope.attribute(addresses[0], ref.attribute)

        raw_index = self.evaluate(ref.index)
        if raw_index is UNKNOWN:
            return UNKNOWN
        i = to_int(raw_index)
        if not 0 <= i < len(addresses):
            raise UnresolvedReferenceError(
                f"Index {i} out of range for {ref.key} ({len(addresses)} instance(s))"
            )
        return self._scope.attribute(addresses[i], ref.attribute)


def evaluate(node: Node, scope: Scope, *, count_index: int | None = None) -> Any:
    return Evaluator(scope, count_index=count_index).evaluate(node)


def evaluate_value(raw: Any, scope: Scope, *, count_index: int | None = None) -> Any:
    """Parse and evaluate a declared value."""
    return evaluate(parse_value(raw), scope, count_index=count_index)
