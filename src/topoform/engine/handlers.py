"""Provider-facing handler interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ProviderContext:
    """Context passed to handlers."""

    address: str
    resource_type: str


class ResourceHandler:
    """Base class for resource handlers.

    A handler performs the real create/read/update/delete calls for one
    resource type. Subclass and override the CRUD methods. Raise
    ``TransientProviderError`` for failures worth retrying and
    ``PermanentProviderError`` for the rest.

    ``force_new`` names attributes that cannot be changed in place; a change
    to any of them replaces the instance.
    """

    force_new: frozenset[str] = frozenset()

    def validate(self, ctx: ProviderContext, attributes: dict[str, Any]) -> list[str]:
        """Validate planned attributes. Unknown values may be present.

        Return list of error messages (empty = valid).
        """
        _ = ctx, attributes
        return []

    def create(
        self, ctx: ProviderContext, attributes: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Create the object. Return ``(external_id, output_attributes)``."""
        raise NotImplementedError

    def read(self, ctx: ProviderContext, external_id: str) -> dict[str, Any] | None:
        """Read the object. Return None if it no longer exists."""
        raise NotImplementedError

    def update(
        self, ctx: ProviderContext, external_id: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        """Update the object in place. Return output attributes.

        An attribute mapped to None was removed from the declaration and
        should be cleared on the object.
        """
        raise NotImplementedError

    def delete(self, ctx: ProviderContext, external_id: str) -> None:
        """Delete the object."""
        raise NotImplementedError
