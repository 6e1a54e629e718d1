"""Symbol tables used to evaluate expressions in each engine phase."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from topoform.errors import UnknownVariableError, UnresolvedReferenceError
from topoform.lang.values import UNKNOWN

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from topoform.core.state import ResourceRecord


class BaseScope:
    """Variables plus the expanded instance addresses of every declaration."""

    def __init__(
        self,
        variables: Mapping[str, Any],
        expansions: Mapping[str, tuple[bool, list[str]]],
    ) -> None:
        self._variables = variables
        self._expansions = expansions

    def variable(self, name: str) -> Any:
        try:
            return self._variables[name]
        except KeyError as e:
            raise UnknownVariableError(name) from e

    def instances(self, resource_type: str, name: str) -> tuple[bool, list[str]]:
        key = f"{resource_type}.{name}"
        try:
            return self._expansions[key]
        except KeyError as e:
            raise UnresolvedReferenceError(f"Reference to undeclared resource {key}") from e

    def attribute(self, address: str, attribute: str) -> Any:
        raise NotImplementedError


class PlanScope(BaseScope):
    """Plan-time view: attributes known so far, filled in topological order."""

    def __init__(
        self,
        variables: Mapping[str, Any],
        expansions: Mapping[str, tuple[bool, list[str]]],
        known: Mapping[str, Mapping[str, Any]],
    ) -> None:
        super().__init__(variables, expansions)
        self._known = known

    def attribute(self, address: str, attribute: str) -> Any:
        return self._known.get(address, {}).get(attribute, UNKNOWN)


class StateScope(BaseScope):
    """Apply-time view: attributes of instances as recorded in state."""

    def __init__(
        self,
        variables: Mapping[str, Any],
        expansions: Mapping[str, tuple[bool, list[str]]],
        lookup: Callable[[str], ResourceRecord | None],
    ) -> None:
        super().__init__(variables, expansions)
        self._lookup = lookup

    def attribute(self, address: str, attribute: str) -> Any:
        record = self._lookup(address)
        if record is None:
            return UNKNOWN
        value = record.lookup(attribute)
        return UNKNOWN if value is None else value
