"""Runtime values and coercion rules for expressions."""

from __future__ import annotations

from typing import Any

from topoform.errors import EvaluationError

UNKNOWN_MARKER = "<computed>"


class _Unknown:
    """A value that will only be known after apply."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __copy__(self) -> _Unknown:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _Unknown:
        return self

    def __reduce__(self) -> str:
        return "UNKNOWN"


UNKNOWN = _Unknown()


def is_unknown(value: Any) -> bool:
    return value is UNKNOWN


def contains_unknown(value: Any) -> bool:
    """True if *value* or anything nested inside it is unknown."""
    if value is UNKNOWN:
        return True
    if isinstance(value, list):
        return any(contains_unknown(v) for v in value)
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    return False


def for_display(value: Any) -> Any:
    """Replace unknowns with a JSON-friendly marker, recursively."""
    if value is UNKNOWN:
        return UNKNOWN_MARKER
    if isinstance(value, list):
        return [for_display(v) for v in value]
    if isinstance(value, dict):
        return {k: for_display(v) for k, v in value.items()}
    return value


def to_number(value: Any) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int | float):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text in ("true", "false"):
            return int(text == "true")
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            pass
    raise EvaluationError(f"Expected a number, got {value!r}")


def to_int(value: Any) -> int:
    number = to_number(value)
    if isinstance(number, float):
        if not number.is_integer():
            raise EvaluationError(f"Expected an integer, got {value!r}")
        return int(number)
    return number


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1"):
            return True
        if text in ("false", "0", ""):
            return False
    raise EvaluationError(f"Expected a boolean, got {value!r}")


def to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float | str):
        return str(value)
    raise EvaluationError(
        f"Cannot interpolate {type(value).__name__} value {value!r} into a string"
    )


def to_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    raise EvaluationError(f"Expected a list, got {value!r}")
