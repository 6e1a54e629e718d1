"""Shared fixtures for unit tests."""

from __future__ import annotations

import os
import threading
from typing import TYPE_CHECKING, Any

import pytest

from topoform.config import load
from topoform.engine.engine import Engine
from topoform.engine.handlers import ResourceHandler
from topoform.engine.registry import ResourceTypeRegistry
from topoform.resources.base import ResourceDecl

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from topoform.config.schema import Config
    from topoform.engine.handlers import ProviderContext


@pytest.fixture(autouse=True)
def _clean_topoform_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove TOPOFORM_* env vars so unit tests don't leak host config."""
    for var in list(os.environ):
        if var.startswith("TOPOFORM_"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("NO_COLOR", raising=False)


class RecordingHandler(ResourceHandler):
    """In-memory handler that records every call as ``(op, address)``."""

    def __init__(self, *, force_new: frozenset[str] = frozenset()) -> None:
        self.force_new = force_new
        self.calls: list[tuple[str, str]] = []
        self.store: dict[str, dict[str, Any]] = {}
        self.failures: dict[tuple[str, str], list[Exception]] = {}
        self._lock = threading.Lock()
        self._next = 0

    def fail(self, op: str, address: str, *errors: Exception) -> None:
        """Raise *errors* (one per call) on the next calls of *op* for *address*."""
        self.failures.setdefault((op, address), []).extend(errors)

    def _record(self, op: str, address: str) -> None:
        with self._lock:
            self.calls.append((op, address))
            pending = self.failures.get((op, address))
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error

    def create(
        self, ctx: ProviderContext, attributes: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        self._record("create", ctx.address)
        with self._lock:
            self._next += 1
            external_id = f"{ctx.resource_type}-{self._next}"
        self.store[external_id] = dict(attributes)
        return external_id, {"id": external_id, "arn": f"arn:{external_id}"}

    def read(self, ctx: ProviderContext, external_id: str) -> dict[str, Any] | None:
        _ = ctx
        attrs = self.store.get(external_id)
        return None if attrs is None else dict(attrs)

    def update(
        self, ctx: ProviderContext, external_id: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        self._record("update", ctx.address)
        merged = {**self.store.get(external_id, {}), **attributes}
        self.store[external_id] = {k: v for k, v in merged.items() if v is not None}
        return {"id": external_id}

    def delete(self, ctx: ProviderContext, external_id: str) -> None:
        self._record("delete", ctx.address)
        self.store.pop(external_id, None)


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler(force_new=frozenset({"zone"}))


@pytest.fixture
def registry(handler: RecordingHandler) -> ResourceTypeRegistry:
    reg = ResourceTypeRegistry()
    reg.register("box", handler)
    reg.register("link", handler)
    return reg


@pytest.fixture
def engine(tmp_path: Path, registry: ResourceTypeRegistry) -> Engine:
    return Engine(registry=registry, state_path=tmp_path / "state.json", parallelism=4)


@pytest.fixture
def decl() -> Callable[..., ResourceDecl]:
    """Factory: ``decl("box.a", count=2, size=1)`` -> ResourceDecl."""

    def _make(
        address: str,
        *,
        count: int | str | None = None,
        depends_on: list[str] | None = None,
        **attributes: Any,
    ) -> ResourceDecl:
        resource_type, name = address.split(".")
        return ResourceDecl(
            type=resource_type,
            name=name,
            count=count,
            attributes=attributes,
            depends_on=depends_on or [],
        )

    return _make


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "topoform.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "topoform.yaml")

    return _make
