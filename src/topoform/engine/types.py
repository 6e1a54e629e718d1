"""Engine types (plan, changes, metadata, apply results)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from topoform.resources.base import OutputDecl


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


class PlanMetadata(BaseModel):
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    """One planned action for one resource instance.

    ``desired`` keeps the declared (unevaluated) attribute expressions so the
    executor can re-evaluate them once upstream values are known; ``planned``
    holds the plan-time values with unknowns shown as ``<computed>``.
    """

    address: str
    resource_type: str
    name: str
    index: int | None = None
    action: Action
    replace: bool = False
    position: int = 0
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    replace_reasons: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.resource_type}.{self.name}"

    @property
    def operation_key(self) -> str:
        """Unique key among a plan's changes (replacement deletes share an address)."""
        if self.replace and self.action == Action.DELETE:
            return f"{self.address} (deposed)"
        return self.address


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]
    variables: dict[str, Any] = Field(default_factory=dict)
    # declaration address -> (declared with count, instance addresses in index order)
    expansions: dict[str, tuple[bool, list[str]]] = Field(default_factory=dict)
    outputs: dict[str, OutputDecl] = Field(default_factory=dict)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def has_changes(self) -> bool:
        return any(c.action != Action.NOOP for c in self.changes)

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class FailedChange(BaseModel):
    address: str
    action: Action
    message: str


class ApplyResult(BaseModel):
    applied: list[ResourceChange] = Field(default_factory=list)
    failed: list[FailedChange] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    canceled: bool = False
    outputs: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.canceled

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.applied:
            counts[c.action.value] += 1
        return counts
