"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from topoform import __version__
from topoform.core.state import State, StateStore, compute_attributes_hash, compute_state_digest
from topoform.engine.builder import build_graph
from topoform.engine.executor import Executor
from topoform.engine.handlers import ProviderContext
from topoform.engine.lock import StateLock
from topoform.engine.outputs import check_outputs, evaluate_outputs
from topoform.engine.planner import Planner, plan_deletes
from topoform.engine.scope import StateScope
from topoform.engine.types import ApplyResult, Plan, PlanMetadata
from topoform.errors import ApplyCanceled, ApplyError, StalePlanError

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from topoform.engine.executor import ProgressCallback
    from topoform.engine.registry import ResourceTypeRegistry
    from topoform.resources.base import OutputDecl, ResourceDecl


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_config_digest(
    resources: Sequence[ResourceDecl],
    variables: Mapping[str, Any],
    outputs: Mapping[str, OutputDecl],
) -> str:
    items = sorted((r.model_dump(mode="json") for r in resources), key=lambda x: x["address"])
    payload = {
        "resources": items,
        "variables": dict(variables),
        "outputs": {k: v.model_dump(mode="json") for k, v in outputs.items()},
    }
    return _sha256_hex(_canonical_json(payload))


class Engine:
    """Terraform-like plan/apply engine.

    Args:
        registry: Handlers for every resource type the declarations use.
        state_path: Location of the JSON state file.
        parallelism: Maximum number of concurrent provider calls during apply.
        max_retries: Retries per provider call on ``TransientProviderError``.
        backoff_base: Delay before the first retry, doubled on each attempt.
        backoff_max: Upper bound for a single retry delay.
        lock_timeout: Seconds to wait for the state lock (``None`` blocks).
    """

    def __init__(
        self,
        *,
        registry: ResourceTypeRegistry,
        state_path: Path,
        parallelism: int = 10,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        lock_timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._state_path = state_path
        self._parallelism = parallelism
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._lock_timeout = lock_timeout

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def registry(self) -> ResourceTypeRegistry:
        return self._registry

    def _lock(self) -> StateLock:
        return StateLock(self._state_path, timeout=self._lock_timeout)

    def _load_state(self) -> State:
        state = State.load_or_create(self._state_path)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def _load_state_for_apply(self, plan: Plan) -> State:
        if self._state_path.exists():
            return self._load_state()
        # If no state exists, bootstrap from the plan metadata (saved-plan semantics).
        return State(lineage=plan.metadata.state_lineage, serial=plan.metadata.state_serial)

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from provider")
        changed = False

        for address, rec in list(state.resources.items()):
            handler = self._registry.get(rec.resource_type)
            attrs = handler.read(ProviderContext(address, rec.resource_type), rec.external_id)
            if attrs is None:
                logger.info("%s no longer exists, removing it from state", address)
                del state.resources[address]
                changed = True
                continue

            merged = {**rec.attributes, **attrs}
            new_hash = compute_attributes_hash(merged)
            if new_hash != rec.attributes_hash:
                logger.info("%s drifted from state", address)
                rec.attributes = merged
                rec.attributes_hash = new_hash
                rec.updated_at = datetime.now(UTC)
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from the provider. Returns (pre_refresh, post_refresh)."""
        with self._lock():
            state = self._load_state()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                state.serial += 1
                state.save(self._state_path)
            return snapshot, state

    def plan(
        self,
        resources: Sequence[ResourceDecl],
        *,
        variables: Mapping[str, Any] | None = None,
        outputs: Mapping[str, OutputDecl] | None = None,
        destroy: bool = False,
        refresh: bool = True,
    ) -> Plan:
        variables = dict(variables or {})
        outputs = dict(outputs or {})
        logger.info(
            "Planning %d declarations (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        # Only lock when refresh may write state.
        lock_cm = self._lock() if refresh else contextlib.nullcontext()
        with lock_cm:
            state = self._load_state()

            if refresh and self._refresh_state_in_place(state):
                state.serial += 1
                state.save(self._state_path)

            if destroy:
                changes = plan_deletes(state, state.resources, self._registry)
                expansions: dict[str, tuple[bool, list[str]]] = {}
                outputs = {}
            else:
                graph = build_graph(resources, variables, registry=self._registry, state=state)
                check_outputs(outputs, variables, graph.expansions)
                changes = Planner(graph, state, self._registry).plan()
                expansions = graph.expansions

            metadata = PlanMetadata(
                created_at=datetime.now(UTC),
                destroy=destroy,
                refresh=refresh,
                state_lineage=state.lineage,
                state_serial=state.serial,
                state_digest=compute_state_digest(state),
                config_digest=compute_config_digest(
                    [] if destroy else resources, variables, outputs
                ),
                engine_version=__version__,
            )

        plan = Plan(
            metadata=metadata,
            changes=changes,
            variables=variables,
            expansions=expansions,
            outputs=outputs,
        )
        logger.info("Plan: %s", ", ".join(f"{n} to {a}" for a, n in plan.summary().items()))
        return plan

    def apply(self, plan: Plan, *, progress: ProgressCallback | None = None) -> ApplyResult:
        with self._lock():
            state = self._load_state_for_apply(plan)

            # Stale plan detection
            if state.lineage != plan.metadata.state_lineage:
                raise StalePlanError("State lineage changed; re-run plan")
            if state.serial != plan.metadata.state_serial:
                raise StalePlanError("State serial changed; re-run plan")
            if compute_state_digest(state) != plan.metadata.state_digest:
                raise StalePlanError("State digest changed; re-run plan")

            store = StateStore(state, self._state_path)
            executor = Executor(
                self._registry,
                store,
                parallelism=self._parallelism,
                max_retries=self._max_retries,
                backoff_base=self._backoff_base,
                backoff_max=self._backoff_max,
                progress=progress,
            )
            result = executor.execute(plan)

            if result.canceled:
                raise ApplyCanceled(result)
            if result.failed:
                raise ApplyError(result)

            scope = StateScope(plan.variables, plan.expansions, store.get)
            result.outputs = evaluate_outputs(plan.outputs, scope)
            store.set_outputs(result.outputs)
            return result

    def outputs(self) -> dict[str, Any]:
        """Outputs recorded by the last successful apply."""
        return dict(self._load_state().outputs)
