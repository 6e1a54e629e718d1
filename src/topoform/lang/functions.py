"""Built-in functions available inside interpolations."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from topoform.errors import EmptyListError, FormatError, FunctionCallError
from topoform.lang.values import (
    UNKNOWN,
    contains_unknown,
    to_bool,
    to_int,
    to_list,
    to_number,
    to_string,
)


@dataclass(frozen=True, slots=True)
class Builtin:
    name: str
    fn: Callable[..., Any]
    min_args: int
    max_args: int | None
    # Whether the function inspects unknown arguments itself instead of
    # short-circuiting to UNKNOWN.
    handles_unknown: bool = False

    def check_arity(self, count: int) -> None:
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            if self.max_args is None:
                expected = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                expected = str(self.min_args)
            else:
                expected = f"{self.min_args} to {self.max_args}"
            raise FunctionCallError(
                f"{self.name}() takes {expected} argument(s), got {count}"
            )


FUNCTIONS: dict[str, Builtin] = {}


def builtin(
    name: str, min_args: int, max_args: int | None = -1, *, handles_unknown: bool = False
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def register(fn: Callable[..., Any]) -> Callable[..., Any]:
        upper = min_args if max_args == -1 else max_args
        FUNCTIONS[name] = Builtin(name, fn, min_args, upper, handles_unknown)
        return fn

    return register


def call_function(name: str, args: list[Any]) -> Any:
    try:
        fn = FUNCTIONS[name]
    except KeyError as e:
        raise FunctionCallError(f"Unknown function: {name}()") from e
    fn.check_arity(len(args))
    if not fn.handles_unknown and any(a is UNKNOWN for a in args):
        return UNKNOWN
    return fn.fn(*args)


# ── Collections ─────────────────────────────────────────────────────


@builtin("length", 1, handles_unknown=True)
def _length(value: Any) -> Any:
    if value is UNKNOWN:
        return UNKNOWN
    if isinstance(value, list | dict | str):
        return len(value)
    raise FunctionCallError(f"length() expects a list, map or string, got {value!r}")


@builtin("element", 2)
def _element(values: Any, index: Any) -> Any:
    items = to_list(values)
    if not items:
        raise EmptyListError("element() called on an empty list")
    return items[to_int(index) % len(items)]


@builtin("join", 2, None)
def _join(sep: Any, *lists: Any) -> Any:
    items = [v for lst in lists for v in to_list(lst)]
    if contains_unknown(items):
        return UNKNOWN
    return to_string(sep).join(to_string(v) for v in items)


@builtin("compact", 1)
def _compact(values: Any) -> Any:
    items = to_list(values)
    if contains_unknown(items):
        return UNKNOWN
    return [v for v in items if v != ""]


@builtin("concat", 1, None)
def _concat(*lists: Any) -> list[Any]:
    return [v for lst in lists for v in to_list(lst)]


@builtin("split", 2)
def _split(sep: Any, text: Any) -> list[str]:
    value = to_string(text)
    if value == "":
        return []
    return value.split(to_string(sep))


@builtin("lookup", 2, 3)
def _lookup(mapping: Any, key: Any, *default: Any) -> Any:
    if not isinstance(mapping, dict):
        raise FunctionCallError(f"lookup() expects a map, got {mapping!r}")
    k = to_string(key)
    if k in mapping:
        return mapping[k]
    if default:
        return default[0]
    raise FunctionCallError(f"lookup() failed to find key {k!r}")


@builtin("coalesce", 1, None, handles_unknown=True)
def _coalesce(*values: Any) -> Any:
    for v in values:
        if v is UNKNOWN:
            return UNKNOWN
        if v is not None and v != "":
            return v
    return ""


# ── Numbers ─────────────────────────────────────────────────────────


@builtin("signum", 1)
def _signum(value: Any) -> int:
    n = to_number(value)
    return (n > 0) - (n < 0)


def _numbers(values: tuple[Any, ...], name: str) -> list[int | float]:
    if len(values) == 1 and isinstance(values[0], list):
        values = tuple(values[0])
    if not values:
        raise FunctionCallError(f"{name}() needs at least one number")
    return [to_number(v) for v in values]


@builtin("min", 1, None)
def _min(*values: Any) -> Any:
    if contains_unknown(list(values)):
        return UNKNOWN
    return min(_numbers(values, "min"))


@builtin("max", 1, None)
def _max(*values: Any) -> Any:
    if contains_unknown(list(values)):
        return UNKNOWN
    return max(_numbers(values, "max"))


# ── Strings ─────────────────────────────────────────────────────────

_VERB_RE = re.compile(
    r"%(?P<flags>[-+# 0]*)(?P<width>\d*)(?:\.(?P<precision>\d+))?(?P<verb>[A-Za-z%])"
)


def _format_one(spec: str, verb: str, arg: Any) -> str:
    match verb:
        case "s" | "v":
            return (spec + "s") % to_string(arg)
        case "d":
            return (spec + "d") % to_int(arg)
        case "x" | "X" | "o":
            return (spec + verb) % to_int(arg)
        case "f" | "e" | "g":
            return (spec + verb) % float(to_number(arg))
        case "q":
            return (spec + "s") % json.dumps(to_string(arg))
        case "t":
            return (spec + "s") % to_string(to_bool(arg))
        case _:
            raise FormatError(f"format(): unsupported verb %{verb}")


@builtin("format", 1, None)
def _format(pattern: Any, *args: Any) -> Any:
    """printf-style formatting; every verb consumes exactly one argument."""
    text = to_string(pattern)
    if contains_unknown(list(args)):
        return UNKNOWN
    out: list[str] = []
    pos = 0
    used = 0
    for m in _VERB_RE.finditer(text):
        out.append(text[pos : m.start()])
        pos = m.end()
        verb = m.group("verb")
        if verb == "%":
            out.append("%")
            continue
        if used >= len(args):
            raise FormatError(
                f"format(): not enough arguments for {text!r} (got {len(args)})"
            )
        spec = "%" + m.group("flags") + m.group("width")
        if m.group("precision") is not None:
            spec += "." + m.group("precision")
        out.append(_format_one(spec, verb, args[used]))
        used += 1
    out.append(text[pos:])
    if used != len(args):
        raise FormatError(
            f"format(): too many arguments for {text!r} (expected {used}, got {len(args)})"
        )
    return "".join(out)
