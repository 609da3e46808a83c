"""State diff engine: declared graph vs. stored state -> change set."""

from __future__ import annotations

import logging
from typing import Any

from ..exceptions import UnresolvedReferenceError
from ..graph.models import ResourceGraph, ResourceNode
from ..graph.references import (
    UNKNOWN,
    Resolver,
    attribute_root,
    collection_lookup,
    contains_unknown,
    lookup_path,
)
from ..providers.registry import ProviderRegistry
from ..state.models import StateRecord
from ..state.store import StateStore
from .models import ChangeAction, ChangeSet, ResourceChange

logger = logging.getLogger(__name__)

_PENDING_ACTIONS = (ChangeAction.CREATE, ChangeAction.REPLACE)


class Differ:
    """Compares declared attributes against recorded state.

    Never writes to the store. For the same graph and the same stored records
    it always produces the same change set.
    """

    def __init__(self, registry: ProviderRegistry):
        self._registry = registry

    def diff(self, graph: ResourceGraph, store: StateStore) -> ChangeSet:
        snapshot = {record.address: record for record in store.list_all()}
        planned: dict[str, ResourceChange] = {}

        value_of = self._planned_value_reader(planned, snapshot)
        resolver = Resolver(collection_lookup(graph, value_of))

        # Dependencies first so a dependent sees whether its inputs are known.
        for index in graph.topological_order():
            node = graph.node(index)
            dependencies = tuple(graph.node(p).address for p in graph.predecessors(index))
            planned[node.address] = self._diff_node(
                node,
                resolver.resolve(node.attributes),
                snapshot.get(node.address),
                dependencies,
            )

        for address in sorted(snapshot):
            if address not in graph:
                record = snapshot[address]
                planned[address] = ResourceChange(
                    address=address,
                    type=record.type,
                    action=ChangeAction.DESTROY,
                    before=dict(record.attributes),
                    prior_dependencies=record.dependencies,
                )

        change_set = ChangeSet.from_changes(list(planned.values()))
        logger.info("Diff complete", extra={"changes": change_set.summary()})
        return change_set

    def diff_destroy_all(self, store: StateStore) -> ChangeSet:
        """Teardown plan: destroy every recorded resource."""
        return ChangeSet.from_changes([
            ResourceChange(
                address=record.address,
                type=record.type,
                action=ChangeAction.DESTROY,
                before=dict(record.attributes),
                prior_dependencies=record.dependencies,
            )
            for record in store.list_all()
        ])

    # ── Per-node decision ───────────────────────────────────────────

    def _diff_node(
        self,
        node: ResourceNode,
        after: dict[str, Any],
        record: StateRecord | None,
        dependencies: tuple[str, ...],
    ) -> ResourceChange:
        schema = self._registry.schema(node.type)
        base = {
            "address": node.address,
            "type": node.type,
            "after": after,
            "dependencies": dependencies,
            "create_before_destroy": node.lifecycle.create_before_destroy,
        }

        if record is None:
            logger.debug("%s not in state, planning create", node.address)
            return ResourceChange(action=ChangeAction.CREATE, **base)

        changed = []
        for key in sorted(after):
            if node.lifecycle.ignores(key):
                continue
            desired = after[key]
            if contains_unknown(desired) or key not in record.attributes or record.attributes[key] != desired:
                changed.append(key)

        force_new = [key for key in changed if schema.requires_replace(key)]
        if force_new:
            action = ChangeAction.REPLACE
        elif changed:
            action = ChangeAction.UPDATE
        else:
            action = ChangeAction.NOOP

        if action is not ChangeAction.NOOP:
            logger.debug("%s fields changed: %s", node.address, ", ".join(changed))

        return ResourceChange(
            action=action,
            before=dict(record.attributes),
            changed_fields=tuple(changed),
            force_new_fields=tuple(force_new),
            prior_dependencies=record.dependencies,
            **base,
        )

    # ── Reference values ────────────────────────────────────────────

    @staticmethod
    def _planned_value_reader(planned: dict[str, ResourceChange], snapshot: dict[str, StateRecord]):
        """Value of ``address.attribute`` as it will be once the plan is applied.

        Declared attributes take their planned value. Computed attributes of a
        resource that is about to be created or replaced are unknown.
        """

        def value_of(address: str, attribute: str | None) -> Any:
            change = planned[address]
            if attribute and change.after is not None and attribute_root(attribute) in change.after:
                try:
                    return lookup_path(change.after, attribute)
                except (KeyError, IndexError, TypeError):
                    pass
            if change.action in _PENDING_ACTIONS:
                return UNKNOWN

            record = snapshot[address]
            try:
                return lookup_path(record.outputs(), attribute)
            except (KeyError, IndexError, TypeError):
                raise UnresolvedReferenceError(
                    f"{address} has no attribute '{attribute}'",
                    target=f"{address}.{attribute}",
                ) from None

        return value_of
