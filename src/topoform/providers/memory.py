"""In-memory provider.

Objects live in a process-local store, optionally mirrored to a JSON file so
successive CLI runs see what earlier applies created.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import threading
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from topoform.engine.handlers import ResourceHandler
from topoform.errors import PermanentProviderError, StateCorruptionError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from topoform.engine.handlers import ProviderContext

logger = logging.getLogger(__name__)


class MemoryCloud:
    """Thread-safe object store standing in for a cloud API."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._objects: dict[str, dict[str, Any]] = {}
        if self._path is not None and self._path.exists():
            try:
                data = json.loads(self._path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise StateCorruptionError(f"Cannot read cloud file {self._path}: {exc}") from exc
            self._objects = data.get("objects", {})
            logger.debug("Loaded %d object(s) from %s", len(self._objects), self._path)

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps({"objects": self._objects}, indent=2, sort_keys=True) + "\n"
        self._path.write_text(content, encoding="utf-8")

    def create(self, resource_type: str, prefix: str, attributes: dict[str, Any]) -> str:
        object_id = f"{prefix}-{uuid.uuid4().hex[:17]}"
        with self._lock:
            self._objects[object_id] = {"type": resource_type, "attributes": dict(attributes)}
            self._save()
        logger.debug("Created %s %s", resource_type, object_id)
        return object_id

    def get(self, object_id: str) -> dict[str, Any] | None:
        with self._lock:
            obj = self._objects.get(object_id)
            return None if obj is None else dict(obj["attributes"])

    def update(self, object_id: str, attributes: dict[str, Any]) -> None:
        with self._lock:
            obj = self._objects.get(object_id)
            if obj is None:
                raise PermanentProviderError(f"{object_id} does not exist")
            merged = {**obj["attributes"], **attributes}
            obj["attributes"] = {k: v for k, v in merged.items() if v is not None}
            self._save()

    def delete(self, object_id: str) -> bool:
        with self._lock:
            removed = self._objects.pop(object_id, None) is not None
            if removed:
                self._save()
        return removed

    def objects(self, resource_type: str | None = None) -> dict[str, dict[str, Any]]:
        """Snapshot of stored objects, optionally filtered by type."""
        with self._lock:
            return {
                k: dict(v["attributes"])
                for k, v in self._objects.items()
                if resource_type is None or v["type"] == resource_type
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)


class MemoryHandler(ResourceHandler):
    """Generic CRUD handler backed by a ``MemoryCloud``.

    Args:
        cloud: Backing store.
        prefix: Id prefix (e.g. ``vpc``).
        required: Attributes that must be declared.
        force_new: Attributes that cannot change in place.
        computed: Output attributes derived from the new object's id and
            attributes.
    """

    def __init__(
        self,
        cloud: MemoryCloud,
        prefix: str,
        *,
        required: Iterable[str] = (),
        force_new: Iterable[str] = (),
        computed: Mapping[str, Callable[[str, dict[str, Any]], Any]] | None = None,
    ) -> None:
        self.cloud = cloud
        self.prefix = prefix
        self.required = tuple(required)
        self.force_new = frozenset(force_new)
        self.computed = dict(computed or {})

    def validate(self, ctx: ProviderContext, attributes: dict[str, Any]) -> list[str]:
        errors = [f"missing required attribute '{a}'" for a in self.required if a not in attributes]
        cidr = attributes.get("cidr_block")
        if isinstance(cidr, str):
            try:
                ipaddress.ip_network(cidr)
            except ValueError:
                errors.append(f"invalid cidr_block {cidr!r}")
        return errors

    def create(
        self, ctx: ProviderContext, attributes: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        object_id = self.cloud.create(ctx.resource_type, self.prefix, attributes)
        outputs = {"id": object_id}
        outputs.update({k: fn(object_id, attributes) for k, fn in self.computed.items()})
        self.cloud.update(object_id, outputs)
        return object_id, outputs

    def read(self, ctx: ProviderContext, external_id: str) -> dict[str, Any] | None:
        return self.cloud.get(external_id)

    def update(
        self, ctx: ProviderContext, external_id: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        self.cloud.update(external_id, attributes)
        return {"id": external_id}

    def delete(self, ctx: ProviderContext, external_id: str) -> None:
        if not self.cloud.delete(external_id):
            logger.debug("%s (%s) was already gone", ctx.address, external_id)


def fake_ip(network: str) -> Callable[[str, dict[str, Any]], str]:
    """Derive a stable address inside *network* from an object id."""
    net = ipaddress.ip_network(network)

    def compute(object_id: str, attributes: dict[str, Any]) -> str:
        _ = attributes
        offset = int(object_id.rsplit("-", 1)[-1], 16) % (net.num_addresses - 2) + 1
        return str(net.network_address + offset)

    return compute
