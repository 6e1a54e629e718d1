"""Concurrent plan executor."""

from __future__ import annotations

import heapq
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any, Literal

from topoform.engine.graph import DependencyGraph
from topoform.engine.operations import ApplyContext, build_operations
from topoform.engine.scope import StateScope
from topoform.engine.types import ApplyResult, FailedChange, ResourceChange
from topoform.errors import TransientProviderError

if TYPE_CHECKING:
    from topoform.core.state import StateStore
    from topoform.engine.operations import Operation
    from topoform.engine.registry import ResourceTypeRegistry
    from topoform.engine.types import Plan

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ResourceChange, Literal["start", "done"]], None]


class Executor:
    """Applies a plan with a bounded worker pool.

    An operation is submitted once every operation it depends on has
    succeeded. A failed operation marks all of its transitive dependents as
    skipped; unrelated work carries on. Transient provider errors are retried
    with exponential backoff capped at ``backoff_max`` seconds.

    Progress callbacks always run on the calling thread.
    """

    def __init__(
        self,
        registry: ResourceTypeRegistry,
        store: StateStore,
        *,
        parallelism: int = 10,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        sleep: Callable[[float], None] = time.sleep,
        progress: ProgressCallback | None = None,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self._registry = registry
        self._store = store
        self._parallelism = parallelism
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._sleep = sleep
        self._progress = progress
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop scheduling new operations; in-flight calls still finish."""
        self._cancel.set()

    @property
    def canceled(self) -> bool:
        return self._cancel.is_set()

    def backoff_delay(self, attempt: int) -> float:
        return min(self._backoff_max, self._backoff_base * 2**attempt)

    def _call(self, key: str, fn: Callable[[], Any]) -> Any:
        attempt = 0
        while True:
            try:
                return fn()
            except TransientProviderError as e:
                if attempt >= self._max_retries or self._cancel.is_set():
                    raise
                delay = self.backoff_delay(attempt)
                attempt += 1
                logger.warning(
                    "%s: transient provider error (attempt %d of %d), retrying in %.2fs: %s",
                    key,
                    attempt,
                    self._max_retries + 1,
                    delay,
                    e,
                )
                self._sleep(delay)

    def execute(self, plan: Plan) -> ApplyResult:
        ops = build_operations(plan.changes, self._store.snapshot())
        rank = {c.operation_key: i for i, c in enumerate(plan.changes)}
        graph = DependencyGraph(
            ops, {k: op.deps for k, op in ops.items()}, order_keys={k: (rank[k],) for k in ops}
        )
        order = graph.topological_order()
        position = {k: i for i, k in enumerate(order)}
        dependents = graph.dependents()

        ctx = ApplyContext(
            registry=self._registry,
            store=self._store,
            scope=StateScope(plan.variables, plan.expansions, self._store.get),
            call=self._call,
        )
        run = _Run(ops, dependents, position)
        logger.info("Applying %d operation(s) with parallelism %d", len(ops), self._parallelism)

        with ThreadPoolExecutor(
            max_workers=self._parallelism, thread_name_prefix="topoform-apply"
        ) as pool:
            running: dict[Future[None], str] = {}
            try:
                while run.ready or running:
                    while (
                        run.ready
                        and len(running) < self._parallelism
                        and not self._cancel.is_set()
                    ):
                        key = run.pop_ready()
                        op = ops[key]
                        logger.debug("Starting %s (%s)", key, type(op).__name__)
                        if self._progress:
                            self._progress(op.change, "start")
                        running[pool.submit(op.run, ctx)] = key
                    if not running:
                        break
                    done, _ = wait(running, return_when=FIRST_COMPLETED)
                    for fut in done:
                        self._finish(run, running.pop(fut), fut)
            except KeyboardInterrupt:
                logger.warning(
                    "Interrupted, waiting for %d in-flight operation(s)", len(running)
                )
                self._cancel.set()
                done, _ = wait(running)
                for fut in done:
                    self._finish(run, running.pop(fut), fut)

        pending = [k for k in order if k not in run.settled]
        if pending:
            logger.warning("Canceled before starting: %s", ", ".join(pending))
            run.result.skipped.extend(pending)
            run.result.canceled = True
        logger.info(
            "Apply finished: %d applied, %d failed, %d skipped",
            len(run.result.applied),
            len(run.result.failed),
            len(run.result.skipped),
        )
        return run.result

    def _finish(self, run: _Run, key: str, fut: Future[None]) -> None:
        op = run.ops[key]
        exc = fut.exception()
        if exc is None:
            logger.debug("Completed %s", key)
            run.succeed(key)
            if self._progress:
                self._progress(op.change, "done")
            return

        logger.error("%s failed: %s", key, exc)
        skipped = run.fail(key, str(exc))
        if skipped:
            logger.warning("Skipping dependents of %s: %s", key, ", ".join(skipped))


class _Run:
    """Bookkeeping for one execution. Only touched from the scheduling thread."""

    def __init__(
        self,
        ops: dict[str, Operation],
        dependents: dict[str, set[str]],
        position: dict[str, int],
    ) -> None:
        self.ops = ops
        self.result = ApplyResult()
        self.settled: set[str] = set()
        self._dependents = dependents
        self._position = position
        self._waiting = {k: len(op.deps) for k, op in ops.items()}
        self.ready: list[tuple[int, str]] = [
            (position[k], k) for k, n in self._waiting.items() if n == 0
        ]
        heapq.heapify(self.ready)

    def pop_ready(self) -> str:
        return heapq.heappop(self.ready)[1]

    def succeed(self, key: str) -> None:
        self.settled.add(key)
        self.result.applied.append(self.ops[key].change)
        for d in self._dependents.get(key, ()):
            self._waiting[d] -= 1
            if self._waiting[d] == 0 and d not in self.settled:
                heapq.heappush(self.ready, (self._position[d], d))

    def fail(self, key: str, message: str) -> list[str]:
        self.settled.add(key)
        change = self.ops[key].change
        self.result.failed.append(
            FailedChange(address=change.address, action=change.action, message=message)
        )
        skipped: list[str] = []
        stack = list(self._dependents.get(key, ()))
        while stack:
            d = stack.pop()
            if d in self.settled:
                continue
            self.settled.add(d)
            skipped.append(d)
            stack.extend(self._dependents.get(d, ()))
        skipped.sort(key=self._position.__getitem__)
        self.result.skipped.extend(skipped)
        return skipped
