"""State management for tracking applied resource instances."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from topoform.errors import StateCorruptionError

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's stored attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _now() -> datetime:
    return datetime.now(UTC)


class ResourceRecord(BaseModel):
    """A tracked resource instance in the state file.

    Attributes:
        address: Instance address (e.g., "aws_subnet.public[1]")
        resource_type: Type of the resource (e.g., "aws_subnet")
        name: Declared local name (e.g., "public")
        index: ``count.index`` of the instance, ``None`` without count
        external_id: Identifier assigned by the provider
        attributes: Last-applied attribute values
        attributes_hash: SHA256 hash of ``attributes``
        dependencies: Addresses this instance depended on when applied
        declared_keys: Attribute names the declaration set when last applied
    """

    address: str
    resource_type: str
    name: str
    index: int | None = None
    external_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    declared_keys: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def key(self) -> str:
        return f"{self.resource_type}.{self.name}"

    def lookup(self, attribute: str) -> Any:
        if attribute in self.attributes:
            return self.attributes[attribute]
        if attribute == "id":
            return self.external_id
        return None


class State(BaseModel):
    """Terraform-style state file.

    Attributes:
        version: State file format version
        serial: Incremented on every persisted write
        lineage: Identifies one state history across writes
        resources: Mapping of instance addresses to records
        outputs: Output values from the last successful apply
    """

    version: int = 1
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceRecord] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> State:
        """Load state from a JSON file.

        Raises:
            StateCorruptionError: if the file is unreadable, malformed, or a
                record's attributes no longer match its stored hash.
        """
        try:
            state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, PydanticValidationError) as exc:
            raise StateCorruptionError(f"Cannot read state file {path}: {exc}") from exc
        state.verify()
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path) -> State:
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for %s", path)
        return cls()

    def verify(self) -> None:
        for address, rec in self.resources.items():
            if rec.address != address:
                raise StateCorruptionError(
                    f"State record keyed {address!r} claims address {rec.address!r}"
                )
            if rec.attributes_hash != compute_attributes_hash(rec.attributes):
                raise StateCorruptionError(f"Attribute hash mismatch for {address}")


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection.
    """
    resources = [
        {
            "address": address,
            "resource_type": rec.resource_type,
            "external_id": rec.external_id,
            "attributes_hash": rec.attributes_hash,
            "dependencies": sorted(rec.dependencies),
            "declared_keys": sorted(rec.declared_keys),
        }
        for address, rec in sorted(state.resources.items(), key=lambda kv: kv[0])
    ]
    digestable = {
        "version": state.version,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    return hashlib.sha256(_canonical_json(digestable).encode("utf-8")).hexdigest()


class StateStore:
    """Single-writer access to a state file.

    Every write touches exactly one instance record, bumps the serial and is
    persisted immediately, so an interrupted apply leaves a state that matches
    whatever completed.
    """

    def __init__(self, state: State, path: Path) -> None:
        self._state = state
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def snapshot(self) -> State:
        with self._lock:
            return self._state.model_copy(deep=True)

    def get(self, address: str) -> ResourceRecord | None:
        with self._lock:
            rec = self._state.resources.get(address)
            return None if rec is None else rec.model_copy(deep=True)

    def put(self, record: ResourceRecord) -> None:
        record.attributes_hash = compute_attributes_hash(record.attributes)
        with self._lock:
            self._state.resources[record.address] = record
            self._persist()

    def remove(self, address: str) -> None:
        with self._lock:
            if self._state.resources.pop(address, None) is not None:
                self._persist()

    def set_outputs(self, outputs: dict[str, Any]) -> None:
        with self._lock:
            if outputs != self._state.outputs:
                self._state.outputs = outputs
                self._persist()

    def _persist(self) -> None:
        self._state.serial += 1
        self._state.save(self._path)
