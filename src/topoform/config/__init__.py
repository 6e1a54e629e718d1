"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from topoform.config.loader import ConfigError, load_config, read_dotenv
from topoform.config.registry import default_registry
from topoform.config.schema import Config, EngineSettings
from topoform.core.state import State
from topoform.engine.engine import Engine
from topoform.engine.lock import StateLock
from topoform.engine.types import Action, ResourceChange
from topoform.engine.variables import resolve_variables
from topoform.providers.memory import MemoryCloud

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from topoform.engine.executor import ProgressCallback
    from topoform.engine.registry import ResourceTypeRegistry
    from topoform.engine.types import ApplyResult, Plan

__all__ = [
    "Config",
    "ConfigError",
    "EngineSettings",
    "State",
    "apply",
    "drift",
    "engine_from_config",
    "load",
    "load_config",
    "outputs",
    "plan",
    "plan_and_apply",
    "refresh",
    "resolve",
    "save_state",
]


def load(path: Path | str) -> Config:
    """Load a YAML declaration file."""
    return load_config(path)


def resolve(config: Config, overrides: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Resolve declared variables (overrides > env > ``.env`` > default)."""
    return resolve_variables(
        config.variables,
        overrides=overrides,
        dotenv=read_dotenv(config.config_dir),
        environ=os.environ,
    )


def engine_from_config(
    config: Config,
    *,
    registry: ResourceTypeRegistry | None = None,
    parallelism: int | None = None,
) -> Engine:
    """Build an ``Engine`` from a ``Config`` instance.

    Without an explicit *registry* the bundled in-memory provider is used,
    persisted to ``settings.cloud_path`` when set.
    """
    s = config.settings
    if registry is None:
        registry = default_registry(MemoryCloud(s.cloud_path))
    return Engine(
        registry=registry,
        state_path=config.state_path,
        parallelism=parallelism or s.parallelism,
        max_retries=s.max_retries,
        backoff_base=s.backoff_base,
        backoff_max=s.backoff_max,
        lock_timeout=s.lock_timeout,
    )


def plan(
    config: Config,
    *,
    overrides: Mapping[str, Any] | None = None,
    destroy: bool = False,
    refresh: bool = True,
    engine: Engine | None = None,
) -> Plan:
    """Plan changes for the given configuration."""
    engine = engine or engine_from_config(config)
    variables = resolve(config, overrides)
    return engine.plan(
        config.resources,
        variables=variables,
        outputs=config.outputs,
        destroy=destroy,
        refresh=refresh,
    )


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    engine: Engine | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = engine or engine_from_config(config)
    return engine.apply(plan_obj, progress=progress)


def plan_and_apply(
    config: Config,
    *,
    overrides: Mapping[str, Any] | None = None,
    destroy: bool = False,
    refresh: bool = True,
) -> ApplyResult:
    """Plan and apply in one step."""
    engine = engine_from_config(config)
    plan_obj = plan(config, overrides=overrides, destroy=destroy, refresh=refresh, engine=engine)
    return apply(plan_obj, config, engine=engine)


def refresh(
    config: Config, *, engine: Engine | None = None
) -> tuple[list[ResourceChange], State]:
    """Refresh state from the provider (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state to disk.
    """
    engine = engine or engine_from_config(config)
    old_state, new_state = engine.refresh()
    return _build_drift_changes(old_state, new_state), new_state


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    with StateLock(config.state_path, timeout=config.settings.lock_timeout):
        state.serial += 1
        state.save(config.state_path)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between the state file and the provider."""
    changes, _ = refresh(config)
    return changes


def outputs(config: Config) -> dict[str, Any]:
    """Outputs recorded by the last successful apply."""
    return engine_from_config(config).outputs()


def _build_drift_changes(old_state: State, new_state: State) -> list[ResourceChange]:
    """Compare old vs new state and return a list of drift changes."""
    changes: list[ResourceChange] = []
    for addr, rec in sorted(new_state.resources.items()):
        old = old_state.resources.get(addr)
        if old is None or old.attributes == rec.attributes:
            continue
        all_keys = set(old.attributes) | set(rec.attributes)
        diff = {
            k: {"from": old.attributes.get(k), "to": rec.attributes.get(k)}
            for k in sorted(all_keys)
            if old.attributes.get(k) != rec.attributes.get(k)
        }
        changes.append(
            ResourceChange(
                address=addr,
                resource_type=rec.resource_type,
                name=rec.name,
                index=rec.index,
                action=Action.UPDATE,
                prior=dict(old.attributes),
                planned=dict(rec.attributes),
                diff=diff,
            )
        )
    for addr in sorted(set(old_state.resources) - set(new_state.resources)):
        old = old_state.resources[addr]
        changes.append(
            ResourceChange(
                address=addr,
                resource_type=old.resource_type,
                name=old.name,
                index=old.index,
                action=Action.DELETE,
                prior=dict(old.attributes),
            )
        )
    return changes
