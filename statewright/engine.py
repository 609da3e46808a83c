"""One reconciliation cycle: validate -> refresh -> diff -> gate -> apply -> outputs."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .config import AppConfig, ExecutorConfig
from .declarations import DeclarationSet, load_declarations
from .diff import ChangeSet, Differ
from .exceptions import TransientProviderError, UnresolvedReferenceError, ValidationError
from .executor import ApplyResult, PlanExecutor
from .executor.retry import RetryPolicy
from .graph import ResourceGraph, build_graph
from .graph.references import find_references
from .outputs import compute_outputs
from .providers.registry import ProviderRegistry
from .providers.rest_provider import build_rest_registry
from .state import MemoryStateStore, StateRecord, StateStore, build_state_store

logger = logging.getLogger(__name__)

APPLY_AUTOMATICALLY = "apply-automatically"
REQUIRE_CONFIRMATION = "require-confirmation"
DRY_RUN = "dry-run"


@dataclass(frozen=True)
class Drift:
    """Divergence between the recorded and the observed attributes of one resource."""

    address: str
    kind: str  # "modified" or "deleted"
    fields: tuple[str, ...] = ()


@dataclass
class Plan:
    graph: ResourceGraph
    change_set: ChangeSet
    destroy: bool = False

    @property
    def has_changes(self) -> bool:
        return self.change_set.has_changes


@dataclass
class CycleReport:
    plan: Plan | None = None
    result: ApplyResult | None = None
    outputs: dict[str, Any] = field(default_factory=dict)
    drift: list[Drift] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    declined: bool = False

    @property
    def applied(self) -> bool:
        return self.result is not None

    @property
    def status(self) -> str:
        if self.result is not None:
            return self.result.status.value
        if self.plan is None or not self.plan.has_changes:
            return "no-changes"
        return "declined" if self.declined else "planned"


class Engine:
    """Wires the graph builder, differ, and executor around one state store."""

    def __init__(
        self,
        declarations: DeclarationSet,
        registry: ProviderRegistry,
        store: StateStore,
        executor_config: ExecutorConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        declaration_paths: list[str] | None = None,
    ):
        self._declarations = declarations
        self._registry = registry
        self._store = store
        self._executor_config = executor_config or ExecutorConfig()
        self._differ = Differ(registry)
        self._executor = PlanExecutor(registry, store, self._executor_config, sleep=sleep)
        self._sleep = sleep
        self._declaration_paths = declaration_paths or []

    @classmethod
    def from_config(cls, config: AppConfig) -> Engine:
        return cls(
            declarations=load_declarations(config.declarations),
            registry=build_rest_registry(config.provider),
            store=build_state_store(config.state),
            executor_config=config.executor,
            declaration_paths=list(config.declarations),
        )

    @property
    def store(self) -> StateStore:
        return self._store

    def reload(self) -> None:
        """Re-read declaration files; the next cycle plans against them."""
        if not self._declaration_paths:
            return
        self._declarations = load_declarations(self._declaration_paths)
        logger.info("Reloaded %d resource declaration(s)", len(self._declarations.resources))

    # ── Validation ──────────────────────────────────────────────────

    def validate(self) -> ResourceGraph:
        """Build the graph and check types and outputs; no provider calls."""
        graph = build_graph(self._declarations.resources)
        for node in graph.nodes:
            self._registry.get(node.type)
        for name, value in self._declarations.outputs.items():
            for ref in find_references(value):
                if not graph.reference_addresses(ref):
                    raise UnresolvedReferenceError(
                        f"Output '{name}' references undeclared resource '{ref.base_address}'",
                        source=f"output.{name}",
                        target=ref.base_address,
                    )
        return graph

    # ── Refresh ─────────────────────────────────────────────────────

    def refresh(self, persist: bool = True) -> tuple[list[Drift], list[StateRecord]]:
        """Read every recorded resource back from its provider.

        Returns the drift found and the refreshed records. With
        ``persist=False`` the store is left untouched.
        """
        drift: list[Drift] = []
        refreshed: list[StateRecord] = []
        policy = RetryPolicy.from_config(self._executor_config)
        timeout = self._executor_config.call_timeout_seconds

        for record in self._store.list_all():
            provider = self._registry.get(record.type)
            observed = self._read_with_retry(
                policy, record.address, lambda: provider.read(record.id, record.attributes, timeout),
            )

            if observed is None:
                logger.warning("Drift: %s no longer exists", record.address, extra={"address": record.address})
                drift.append(Drift(address=record.address, kind="deleted"))
                if persist:
                    self._store.delete(record.address)
                continue

            changed = tuple(sorted(k for k, v in observed.items() if record.attributes.get(k) != v))
            if not changed:
                refreshed.append(record)
                continue

            logger.warning(
                "Drift: %s changed outside of statewright (%s)",
                record.address, ", ".join(changed),
                extra={"address": record.address},
            )
            drift.append(Drift(address=record.address, kind="modified", fields=changed))
            updated = StateRecord(
                address=record.address,
                type=record.type,
                id=record.id,
                attributes={**record.attributes, **observed},
                dependencies=record.dependencies,
            )
            refreshed.append(updated)
            if persist:
                self._store.put(record.address, updated)

        return drift, refreshed

    def _read_with_retry(self, policy: RetryPolicy, address: str, call: Callable[[], Any]) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return call()
            except TransientProviderError as exc:
                if not policy.should_retry(attempt):
                    raise
                delay = policy.delay(attempt)
                logger.warning("Transient error refreshing %s, retrying in %.1fs: %s", address, delay, exc)
                self._sleep(delay)

    # ── Plan / apply ────────────────────────────────────────────────

    def plan(self, destroy: bool = False, store: StateStore | None = None) -> Plan:
        graph = self.validate()
        store = store or self._store
        if destroy:
            change_set = self._differ.diff_destroy_all(store)
        else:
            change_set = self._differ.diff(graph, store)
        for line in change_set.describe():
            logger.info("Plan: %s", line)
        return Plan(graph=graph, change_set=change_set, destroy=destroy)

    def apply(self, plan: Plan, cancel_event: threading.Event | None = None) -> ApplyResult:
        if plan.destroy:
            return self._executor.apply(plan.change_set, _EMPTY_GRAPH, cancel_event)
        return self._executor.apply(plan.change_set, plan.graph, cancel_event)

    def outputs(self, graph: ResourceGraph) -> dict[str, Any]:
        return compute_outputs(self._declarations.outputs, graph, self._store)

    def run_cycle(
        self,
        mode: str = DRY_RUN,
        refresh: bool = True,
        confirm: Callable[[Plan], bool] | None = None,
        cancel_event: threading.Event | None = None,
        destroy: bool = False,
    ) -> CycleReport:
        """Execute one full reconciliation cycle.

        Validation errors and an unavailable store raise before any provider
        mutation. Apply failures are reported in the returned report.
        """
        if mode not in (APPLY_AUTOMATICALLY, REQUIRE_CONFIRMATION, DRY_RUN):
            raise ValidationError(f"Unknown reconcile mode: '{mode}'")

        start = time.monotonic()
        report = CycleReport()
        self.validate()

        plan_store: StateStore = self._store
        if refresh:
            persist = mode != DRY_RUN
            report.drift, refreshed = self.refresh(persist=persist)
            if not persist:
                plan_store = MemoryStateStore(refreshed)

        plan = self.plan(destroy=destroy, store=plan_store)
        report.plan = plan
        summary = plan.change_set.summary()

        if not plan.has_changes:
            logger.info("No changes; infrastructure matches declarations", extra={"changes": summary})
        elif mode == DRY_RUN:
            logger.info("Dry run: plan not applied", extra={"changes": summary, "mode": mode})
        elif mode == REQUIRE_CONFIRMATION and (confirm is None or not confirm(plan)):
            logger.info("Plan awaiting confirmation; not applied", extra={"changes": summary, "mode": mode})
            report.declined = True
        else:
            report.result = self.apply(plan, cancel_event)

        if not destroy:
            report.outputs = self.outputs(plan.graph)
        report.elapsed_seconds = round(time.monotonic() - start, 2)
        logger.info(
            "Cycle complete: %s",
            report.status,
            extra={"status": report.status, "elapsed_seconds": report.elapsed_seconds},
        )
        return report

    def destroy(self, refresh: bool = True, cancel_event: threading.Event | None = None) -> CycleReport:
        """Tear down every recorded resource, dependents first."""
        return self.run_cycle(
            mode=APPLY_AUTOMATICALLY,
            refresh=refresh,
            cancel_event=cancel_event,
            destroy=True,
        )


_EMPTY_GRAPH = ResourceGraph([], [], {})
