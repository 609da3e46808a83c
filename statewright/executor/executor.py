"""Plan executor: walks the change set in dependency order on a worker pool."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, TypeVar

from ..config import ExecutorConfig
from ..diff.models import ChangeAction, ChangeSet, ResourceChange
from ..exceptions import (
    StateStoreUnavailable,
    TransientProviderError,
    UnresolvedReferenceError,
    ValidationError,
)
from ..graph.models import ResourceGraph, topological_sort
from ..graph.references import Resolver, collection_lookup, lookup_path
from ..providers.registry import ProviderRegistry
from ..state.models import StateRecord
from ..state.store import StateStore
from .models import ActionOutcome, ActionStatus, ApplyResult, ApplyStatus
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

APPLY = "apply"
DESTROY = "destroy"

Step = tuple[str, str]


def action_steps(change: ResourceChange) -> list[Step]:
    """The steps one change runs as; a replace is a destroy and a create."""
    if change.action is ChangeAction.DESTROY:
        return [(change.address, DESTROY)]
    if change.action is ChangeAction.REPLACE:
        if change.create_before_destroy:
            return [(change.address, APPLY), (change.address, DESTROY)]
        return [(change.address, DESTROY), (change.address, APPLY)]
    return [(change.address, APPLY)]


def action_ordering(changes: list[ResourceChange]) -> dict[Step, set[Step]]:
    """For each step, the steps that must finish first.

    Apply steps wait on the apply steps of their declared dependencies.
    A destroy step waits on the destroy steps of resources that used to
    depend on it, and on the apply steps of dependents moving away from it,
    so dependents go first. The two halves of a replace are chained in
    lifecycle order.
    """
    by_address = {c.address: c for c in changes}
    waits: dict[Step, set[Step]] = {}
    for change in changes:
        steps = action_steps(change)
        for step in steps:
            waits[step] = set()
        if len(steps) == 2:
            waits[steps[1]].add(steps[0])

    for change in changes:
        address = change.address
        if (address, APPLY) in waits:
            for dep in change.dependencies:
                if (dep, APPLY) in waits:
                    waits[(address, APPLY)].add((dep, APPLY))
        if (address, DESTROY) not in waits:
            continue
        replaced_first = change.action is ChangeAction.REPLACE and not change.create_before_destroy
        for other in changes:
            if other.address == address or not other.depends_on(address):
                continue
            if (other.address, DESTROY) in waits:
                waits[(address, DESTROY)].add((other.address, DESTROY))
            elif (other.address, APPLY) in waits and not (replaced_first and address in other.dependencies):
                waits[(address, DESTROY)].add((other.address, APPLY))
    return waits


class PlanExecutor:
    """Applies a change set through providers and records confirmed results."""

    def __init__(
        self,
        registry: ProviderRegistry,
        store: StateStore,
        config: ExecutorConfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._registry = registry
        self._store = store
        self._parallelism = config.parallelism
        self._timeout = config.call_timeout_seconds
        self._policy = RetryPolicy.from_config(config)
        self._sleep = sleep

    def apply(
        self,
        change_set: ChangeSet,
        graph: ResourceGraph,
        cancel_event: threading.Event | None = None,
    ) -> ApplyResult:
        changes = change_set.actionable()
        if not changes:
            logger.info("Nothing to apply")
            return ApplyResult(status=ApplyStatus.SUCCESS)

        for change in changes:
            self._registry.get(change.type)

        waits = action_ordering(changes)
        self._check_acyclic(waits)

        run = _Run(changes, waits, cancel_event or threading.Event())
        logger.info("Applying %d change(s) with parallelism %d", len(changes), self._parallelism)
        start = time.monotonic()

        with ThreadPoolExecutor(max_workers=self._parallelism, thread_name_prefix="statewright") as pool:
            while True:
                with run.cond:
                    while not run.should_dispatch(self._parallelism) and not run.finished():
                        run.cond.wait()
                    if run.finished():
                        break
                    step = run.ready.pop(0)
                    run.start(step)
                future = pool.submit(self._execute, step, run, graph)
                future.add_done_callback(lambda f, s=step: self._on_done(run, s, f))

        run.cancel_undispatched()
        result = ApplyResult(status=run.terminal_status(), outcomes=run.outcomes)
        logger.info(
            "Apply finished: %s",
            result.status.value,
            extra={"status": result.status.value, "elapsed_seconds": round(time.monotonic() - start, 2)},
        )
        if run.store_error is not None:
            raise run.store_error
        return result

    # ── Scheduling ──────────────────────────────────────────────────

    @staticmethod
    def _check_acyclic(waits: dict[Step, set[Step]]) -> None:
        steps = sorted(waits)
        index = {s: i for i, s in enumerate(steps)}
        preds = [[index[d] for d in waits[s]] for s in steps]
        if topological_sort(len(steps), preds, key=lambda i: steps[i]) is None:
            raise ValidationError("Planned actions form an ordering cycle; refusing to apply")

    def _on_done(self, run: _Run, step: Step, future: Future) -> None:
        exc = future.exception()
        with run.cond:
            if exc is None:
                run.succeed(step)
            else:
                if isinstance(exc, StateStoreUnavailable) and run.store_error is None:
                    run.store_error = exc
                run.fail(step, exc)
            run.cond.notify_all()

    # ── Action execution (worker threads) ───────────────────────────

    def _execute(self, step: Step, run: _Run, graph: ResourceGraph) -> None:
        address, phase = step
        change = run.changes[address]
        outcome = run.outcomes[address]
        if change.action is ChangeAction.REPLACE:
            logger.info(
                "Replace %s: %s",
                address,
                "destroy old" if phase == DESTROY else "create new",
                extra={"address": address, "action": change.action.value},
            )
        else:
            logger.info(
                "%s %s",
                change.action.value.capitalize(),
                address,
                extra={"address": address, "action": change.action.value},
            )

        if change.action is ChangeAction.CREATE:
            self._create(change, self._resolve(change, graph), outcome)
        elif change.action is ChangeAction.UPDATE:
            self._update(change, self._resolve(change, graph), graph, outcome)
        elif change.action is ChangeAction.DESTROY:
            self._destroy(change, outcome)
        elif phase == DESTROY:
            self._destroy_replaced(change, run, outcome)
        else:
            if change.create_before_destroy:
                run.replaced[address] = self._require_record(address)
            self._create(change, self._resolve(change, graph), outcome)

    def _create(self, change: ResourceChange, after: dict[str, Any], outcome: ActionOutcome) -> None:
        provider = self._registry.get(change.type)
        result = self._with_retry(outcome, "create", lambda: provider.create(after, self._timeout))
        self._store.put(change.address, StateRecord(
            address=change.address,
            type=change.type,
            id=result.id,
            attributes={**after, **result.attributes},
            dependencies=change.dependencies,
        ))

    def _update(
        self,
        change: ResourceChange,
        after: dict[str, Any],
        graph: ResourceGraph,
        outcome: ActionOutcome,
    ) -> None:
        provider = self._registry.get(change.type)
        record = self._require_record(change.address)
        node = graph.get(change.address)
        if node is not None:
            # ignored fields keep whatever the provider last reported
            after = {
                k: record.attributes[k] if node.lifecycle.ignores(k) and k in record.attributes else v
                for k, v in after.items()
            }
        result = self._with_retry(
            outcome, "update", lambda: provider.update(record.id, record.attributes, after, self._timeout),
        )
        self._store.put(change.address, StateRecord(
            address=change.address,
            type=change.type,
            id=result.id or record.id,
            attributes={**record.attributes, **after, **result.attributes},
            dependencies=change.dependencies,
        ))

    def _destroy_replaced(self, change: ResourceChange, run: _Run, outcome: ActionOutcome) -> None:
        provider = self._registry.get(change.type)
        if change.create_before_destroy:
            # the new record already sits at this address
            old = run.replaced[change.address]
            self._with_retry(outcome, "delete", lambda: provider.delete(old.id, old.attributes, self._timeout))
            return
        old = self._require_record(change.address)
        self._with_retry(outcome, "delete", lambda: provider.delete(old.id, old.attributes, self._timeout))
        self._store.delete(change.address)

    def _destroy(self, change: ResourceChange, outcome: ActionOutcome) -> None:
        provider = self._registry.get(change.type)
        record = self._store.get(change.address)
        if record is None:
            logger.info("%s already absent from state", change.address)
            return
        self._with_retry(outcome, "delete", lambda: provider.delete(record.id, record.attributes, self._timeout))
        self._store.delete(change.address)

    def _require_record(self, address: str) -> StateRecord:
        record = self._store.get(address)
        if record is None:
            raise UnresolvedReferenceError(f"{address} has no recorded state", target=address)
        return record

    def _resolve(self, change: ResourceChange, graph: ResourceGraph) -> dict[str, Any]:
        """Resolve references against state written by already-finished predecessors."""
        node = graph.get(change.address)
        if node is None:
            return dict(change.after or {})

        def value_of(address: str, attribute: str | None) -> Any:
            record = self._require_record(address)
            try:
                return lookup_path(record.outputs(), attribute)
            except (KeyError, IndexError, TypeError):
                raise UnresolvedReferenceError(
                    f"{address} has no attribute '{attribute}'",
                    source=change.address,
                    target=f"{address}.{attribute}",
                ) from None

        return Resolver(collection_lookup(graph, value_of)).resolve(node.attributes)

    def _with_retry(self, outcome: ActionOutcome, label: str, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            outcome.attempts += 1
            try:
                return call()
            except TransientProviderError as exc:
                if not self._policy.should_retry(attempt):
                    logger.error(
                        "%s of %s failed after %d attempts: %s",
                        label, outcome.address, attempt, exc,
                        extra={"address": outcome.address, "attempt": attempt},
                    )
                    raise
                delay = self._policy.delay(attempt)
                logger.warning(
                    "Transient error on %s of %s (attempt %d/%d), retrying in %.1fs: %s",
                    label, outcome.address, attempt, self._policy.max_attempts, delay, exc,
                    extra={"address": outcome.address, "attempt": attempt},
                )
                self._sleep(delay)


class _Run:
    """Mutable bookkeeping for one apply; guarded by ``cond``.

    Scheduling works on steps, outcomes on addresses. An address succeeds
    once all of its steps have.
    """

    def __init__(self, changes: list[ResourceChange], waits: dict[Step, set[Step]], cancel_event: threading.Event):
        self.cond = threading.Condition()
        self.cancel_event = cancel_event
        self.changes = {c.address: c for c in changes}
        self.outcomes = {c.address: ActionOutcome(address=c.address, action=c.action) for c in changes}
        self.replaced: dict[str, StateRecord] = {}
        self.step_status = {step: ActionStatus.PENDING for step in waits}
        self.remaining = {c.address: len(action_steps(c)) for c in changes}
        self.waiting = {s: set(deps) for s, deps in waits.items()}
        self.dependents: dict[Step, set[Step]] = {s: set() for s in waits}
        for step, deps in waits.items():
            for dep in deps:
                self.dependents[dep].add(step)
        self.ready = sorted(s for s, deps in self.waiting.items() if not deps)
        self.in_flight = 0
        self.store_error: StateStoreUnavailable | None = None

    def stopping(self) -> bool:
        return self.cancel_event.is_set() or self.store_error is not None

    def should_dispatch(self, parallelism: int) -> bool:
        return not self.stopping() and bool(self.ready) and self.in_flight < parallelism

    def finished(self) -> bool:
        return self.in_flight == 0 and (self.stopping() or not self.ready)

    def start(self, step: Step) -> None:
        self.in_flight += 1
        self.step_status[step] = ActionStatus.RUNNING
        self.outcomes[step[0]].status = ActionStatus.RUNNING

    def succeed(self, step: Step) -> None:
        self.in_flight -= 1
        self.step_status[step] = ActionStatus.SUCCEEDED
        address = step[0]
        self.remaining[address] -= 1
        if not self.remaining[address]:
            self.outcomes[address].status = ActionStatus.SUCCEEDED
        newly_ready = []
        for dependent in self.dependents[step]:
            self.waiting[dependent].discard(step)
            if not self.waiting[dependent] and self.step_status[dependent] is ActionStatus.PENDING:
                newly_ready.append(dependent)
        self.ready = sorted(self.ready + newly_ready)

    def fail(self, step: Step, exc: BaseException) -> None:
        self.in_flight -= 1
        self.step_status[step] = ActionStatus.FAILED
        address = step[0]
        outcome = self.outcomes[address]
        outcome.status = ActionStatus.FAILED
        outcome.error = f"{type(exc).__name__}: {exc}"
        logger.error(
            "%s of %s failed: %s",
            outcome.action.value, address, exc,
            extra={"address": address, "action": outcome.action.value, "status": "failed"},
        )
        self._block_dependents(step)

    def _block_dependents(self, failed: Step) -> None:
        failed_address = failed[0]
        stack = sorted(self.dependents[failed])
        while stack:
            step = stack.pop()
            if self.step_status[step] is not ActionStatus.PENDING:
                continue
            self.step_status[step] = ActionStatus.BLOCKED
            stack.extend(sorted(self.dependents[step]))
            outcome = self.outcomes[step[0]]
            if outcome.status not in (ActionStatus.PENDING, ActionStatus.RUNNING):
                continue
            outcome.status = ActionStatus.BLOCKED
            outcome.blocked_by = failed_address
            logger.warning(
                "%s blocked by failure of %s", step[0], failed_address,
                extra={"address": step[0], "status": "blocked"},
            )

    def cancel_undispatched(self) -> None:
        for step, status in self.step_status.items():
            if status is not ActionStatus.PENDING:
                continue
            self.step_status[step] = ActionStatus.CANCELLED
            outcome = self.outcomes[step[0]]
            if outcome.status in (ActionStatus.PENDING, ActionStatus.RUNNING):
                outcome.status = ActionStatus.CANCELLED

    def terminal_status(self) -> ApplyStatus:
        statuses = {o.status for o in self.outcomes.values()}
        if ActionStatus.FAILED in statuses or ActionStatus.BLOCKED in statuses:
            return ApplyStatus.PARTIAL_FAILURE
        if ActionStatus.CANCELLED in statuses:
            return ApplyStatus.CANCELLED
        return ApplyStatus.SUCCESS
