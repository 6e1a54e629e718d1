"""Expression tree nodes.

Interpolated strings parse into a small tree instead of being handled by
string substitution, so references can be extracted statically before
anything is evaluated.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, TypeAlias


@dataclass(frozen=True, slots=True)
class Literal:
    value: Any


@dataclass(frozen=True, slots=True)
class VariableRef:
    name: str


@dataclass(frozen=True, slots=True)
class CountIndex:
    pass


@dataclass(frozen=True, slots=True)
class ResourceRef:
    """``type.name[index].attr`` or ``type.name.*.attr``.

    ``index`` is ``None`` when no index was written. ``splat`` selects every
    instance, yielding a list in instance-index order.
    """

    resource_type: str
    name: str
    attribute: str
    index: Node | None = None
    splat: bool = False

    @property
    def key(self) -> str:
        return f"{self.resource_type}.{self.name}"


@dataclass(frozen=True, slots=True)
class FunctionCall:
    name: str
    args: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class Template:
    """String concatenation of literal text and interpolations."""

    parts: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class ListExpr:
    items: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class MapExpr:
    items: tuple[tuple[str, Node], ...]


@dataclass(frozen=True, slots=True)
class Unary:
    op: str
    operand: Node


@dataclass(frozen=True, slots=True)
class Binary:
    op: str
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class Conditional:
    condition: Node
    if_true: Node
    if_false: Node


@dataclass(frozen=True, slots=True)
class Index:
    target: Node
    index: Node


Node: TypeAlias = (
    Literal
    | VariableRef
    | CountIndex
    | ResourceRef
    | FunctionCall
    | Template
    | ListExpr
    | MapExpr
    | Unary
    | Binary
    | Conditional
    | Index
)


def children(node: Node) -> tuple[Node, ...]:
    match node:
        case ResourceRef(index=index):
            return () if index is None else (index,)
        case FunctionCall(args=args):
            return args
        case Template(parts=parts):
            return parts
        case ListExpr(items=items):
            return items
        case MapExpr(items=items):
            return tuple(v for _, v in items)
        case Unary(operand=operand):
            return (operand,)
        case Binary(left=left, right=right):
            return (left, right)
        case Conditional(condition=c, if_true=t, if_false=f):
            return (c, t, f)
        case Index(target=target, index=index):
            return (target, index)
        case _:
            return ()


def walk(node: Node) -> Iterator[Node]:
    """Depth-first, pre-order traversal."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(children(current)))


def resource_refs(node: Node) -> list[ResourceRef]:
    return [n for n in walk(node) if isinstance(n, ResourceRef)]


def variable_refs(node: Node) -> list[str]:
    return [n.name for n in walk(node) if isinstance(n, VariableRef)]
