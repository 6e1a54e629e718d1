"""Declaration models: variables, resources and outputs."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, computed_field, field_validator

from topoform.lang.nodes import Node, ResourceRef, resource_refs
from topoform.lang.parser import parse_value

_IDENT = r"^[A-Za-z_][A-Za-z0-9_]*$"

VariableType = Literal["string", "number", "bool", "list", "map"]


class VariableDecl(BaseModel):
    """An input variable. Resolved once at plan time, immutable afterwards."""

    model_config = ConfigDict(extra="forbid")

    description: str = ""
    default: Any = None
    type: VariableType | None = None


class ResourceDecl(BaseModel):
    """A declared resource, expanded into ``count`` instances at plan time.

    Resources are pure data. Attribute values may be literals, references or
    interpolated expressions; they are parsed lazily.
    """

    model_config = ConfigDict(extra="forbid")

    type: str = Field(pattern=_IDENT)
    name: str = Field(pattern=_IDENT)
    count: int | str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    # Lifecycle
    depends_on: list[str] = []

    @field_validator("count", mode="before")
    @classmethod
    def _check_count(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("count must be an integer or an expression, not a boolean")
        if isinstance(v, int) and v < 0:
            raise ValueError("count must not be negative")
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def address(self) -> str:
        """Address shared by every instance (e.g. 'aws_subnet.public')."""
        return f"{self.type}.{self.name}"

    def count_node(self) -> Node | None:
        return None if self.count is None else parse_value(self.count)

    def attribute_nodes(self) -> dict[str, Node]:
        return {k: parse_value(v) for k, v in self.attributes.items()}

    def references(self) -> list[ResourceRef]:
        """Resource references found in attribute expressions."""
        refs: list[ResourceRef] = []
        for node in self.attribute_nodes().values():
            refs.extend(resource_refs(node))
        return refs

    def instance_address(self, index: int | None) -> str:
        return self.address if index is None else f"{self.address}[{index}]"


def _wrap_output(v: Any) -> Any:
    return v if isinstance(v, dict) and "value" in v else {"value": v}


class OutputDecl(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: Any
    description: str = ""
    sensitive: bool = False


OutputEntry = Annotated[OutputDecl, BeforeValidator(_wrap_output)]
