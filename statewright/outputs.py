"""Named output values computed from final state records."""

from __future__ import annotations

import logging
from typing import Any

from .exceptions import ReconcileError
from .graph.models import ResourceGraph
from .graph.references import Resolver, collection_lookup, lookup_path
from .state.store import StateStore

logger = logging.getLogger(__name__)


class _MissingValue(ReconcileError):
    pass


def compute_outputs(declared: dict[str, Any], graph: ResourceGraph, store: StateStore) -> dict[str, Any]:
    """Evaluate each declared output against the store.

    Outputs whose resources are absent from state (not yet created, or
    failed) are omitted with a warning.
    """

    def value_of(address: str, attribute: str | None) -> Any:
        record = store.get(address)
        if record is None:
            raise _MissingValue(f"{address} is not in state")
        try:
            return lookup_path(record.outputs(), attribute)
        except (KeyError, IndexError, TypeError):
            raise _MissingValue(f"{address} has no attribute '{attribute}'") from None

    resolver = Resolver(collection_lookup(graph, value_of))
    outputs: dict[str, Any] = {}
    for name in sorted(declared):
        try:
            outputs[name] = resolver.resolve(declared[name])
        except _MissingValue as exc:
            logger.warning("Output '%s' is not available: %s", name, exc)
    return outputs
