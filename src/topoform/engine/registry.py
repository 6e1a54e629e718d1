"""Resource type registry for handler dispatch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from topoform.errors import UnknownResourceTypeError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from topoform.engine.handlers import ResourceHandler


class ResourceTypeRegistry:
    """Registry mapping resource type name -> handler."""

    def __init__(self) -> None:
        self._handlers: dict[str, ResourceHandler] = {}

    def register(self, resource_type: str, handler: ResourceHandler) -> None:
        if not resource_type:
            raise ValueError("Resource type must be a non-empty string")
        if resource_type in self._handlers:
            raise ValueError(f"Resource type already registered: {resource_type}")
        self._handlers[resource_type] = handler

    def get(self, resource_type: str) -> ResourceHandler:
        try:
            return self._handlers[resource_type]
        except KeyError as e:
            raise UnknownResourceTypeError(resource_type) from e

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._handlers))
