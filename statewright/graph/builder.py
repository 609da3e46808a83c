"""Resource graph builder: declarations -> validated DAG."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ..exceptions import CycleError, UnresolvedReferenceError, ValidationError
from .models import Edge, Reference, ResourceDeclaration, ResourceGraph, ResourceNode, topological_sort
from .references import find_references, parse_reference, substitute_count_index

logger = logging.getLogger(__name__)


def build_graph(declarations: Iterable[ResourceDeclaration]) -> ResourceGraph:
    """Expand repeated declarations, resolve references into edges, reject cycles.

    Raises:
        ValidationError: duplicate addresses or a negative count.
        UnresolvedReferenceError: a reference or depends_on names an unknown resource.
        CycleError: the dependency edges form a cycle.
    """
    nodes = _expand(declarations)
    nodes.sort(key=lambda n: n.address)

    collections: dict[str, list[int]] = {}
    for i, node in enumerate(nodes):
        collections.setdefault(node.base_address, []).append(i)

    edges: list[Edge] = []
    for i, node in enumerate(nodes):
        targets: set[int] = set()
        for ref in find_references(node.attributes):
            targets.update(_resolve_targets(ref, node, nodes, collections))
        for dep in node.depends_on:
            targets.update(_resolve_targets(parse_reference(dep), node, nodes, collections))
        for target in sorted(targets):
            if target == i:
                raise CycleError(f"Resource {node.address} references itself", cycle=[node.address])
            edges.append(Edge(source=i, target=target))

    _check_acyclic(nodes, edges)

    logger.debug("Built resource graph: %d nodes, %d edges", len(nodes), len(edges))
    return ResourceGraph(nodes, edges, collections)


def _expand(declarations: Iterable[ResourceDeclaration]) -> list[ResourceNode]:
    """Turn each declaration into one node, or N indexed nodes for ``count``."""
    nodes: list[ResourceNode] = []
    seen: set[str] = set()
    for decl in declarations:
        if decl.base_address in seen:
            raise ValidationError(f"Duplicate resource declaration: {decl.base_address}")
        seen.add(decl.base_address)
        _check_plain(decl.attributes, decl.base_address)

        if decl.count is None:
            nodes.append(ResourceNode(
                type=decl.type,
                name=decl.name,
                attributes=dict(decl.attributes),
                lifecycle=decl.lifecycle,
                depends_on=tuple(decl.depends_on),
            ))
            continue

        if decl.count < 0:
            raise ValidationError(f"{decl.base_address}: count must be >= 0, got {decl.count}")
        for index in range(decl.count):
            nodes.append(ResourceNode(
                type=decl.type,
                name=decl.name,
                attributes=substitute_count_index(dict(decl.attributes), index),
                index=index,
                lifecycle=decl.lifecycle,
                depends_on=tuple(decl.depends_on),
            ))
    return nodes


def _check_plain(value: Any, where: str) -> None:
    """Reject attribute values that would not survive a JSON round trip."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return
    if isinstance(value, list):
        for item in value:
            _check_plain(item, where)
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(f"{where}: attribute keys must be strings, got {key!r}")
            _check_plain(item, f"{where}.{key}")
        return
    raise ValidationError(
        f"{where}: unsupported attribute value {value!r} ({type(value).__name__}); "
        "use strings, numbers, booleans, lists or mappings"
    )


def _resolve_targets(
    ref: Reference,
    source: ResourceNode,
    nodes: list[ResourceNode],
    collections: dict[str, list[int]],
) -> list[int]:
    """Map a reference to the node indices it depends on."""
    members = collections.get(ref.base_address)
    if members is None:
        raise UnresolvedReferenceError(
            f"{source.address} references undeclared resource '{ref.base_address}'",
            source=source.address,
            target=ref.base_address,
        )

    repeated = nodes[members[0]].index is not None
    if ref.index is None or ref.index == "*":
        if ref.index == "*" and not repeated:
            raise UnresolvedReferenceError(
                f"{source.address} uses [*] on '{ref.base_address}', which is not a repeated resource",
                source=source.address,
                target=str(ref),
            )
        return list(members)

    if not repeated:
        raise UnresolvedReferenceError(
            f"{source.address} indexes '{ref.base_address}', which is not a repeated resource",
            source=source.address,
            target=str(ref),
        )
    for i in members:
        if nodes[i].index == ref.index:
            return [i]
    raise UnresolvedReferenceError(
        f"{source.address} references {ref.base_address}[{ref.index}], "
        f"but only {len(members)} instance(s) are declared",
        source=source.address,
        target=str(ref),
    )


def _check_acyclic(nodes: list[ResourceNode], edges: list[Edge]) -> None:
    preds: list[list[int]] = [[] for _ in nodes]
    for edge in edges:
        preds[edge.source].append(edge.target)

    if topological_sort(len(nodes), preds, key=lambda i: nodes[i].address) is not None:
        return

    cycle = _find_cycle(preds)
    path = " -> ".join(nodes[i].address for i in cycle)
    raise CycleError(f"Dependency cycle detected: {path}", cycle=[nodes[i].address for i in cycle])


def _find_cycle(preds: list[list[int]]) -> list[int]:
    """Return one cycle as a closed path of node indices (iterative DFS)."""
    white, grey, black = 0, 1, 2
    color = [white] * len(preds)
    parent: dict[int, int] = {}

    for root in range(len(preds)):
        if color[root] != white:
            continue
        stack: list[tuple[int, int]] = [(root, 0)]
        color[root] = grey
        while stack:
            node, pos = stack[-1]
            deps = sorted(preds[node])
            if pos < len(deps):
                stack[-1] = (node, pos + 1)
                nxt = deps[pos]
                if color[nxt] == grey:
                    cycle = [nxt]
                    cur = node
                    while cur != nxt:
                        cycle.append(cur)
                        cur = parent[cur]
                    cycle.append(nxt)
                    cycle.reverse()
                    return cycle
                if color[nxt] == white:
                    color[nxt] = grey
                    parent[nxt] = node
                    stack.append((nxt, 0))
            else:
                color[node] = black
                stack.pop()
    return []
