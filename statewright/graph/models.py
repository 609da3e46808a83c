"""Declaration and graph data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Lifecycle:
    """Per-resource overrides of the default diff and replace behaviour."""

    ignore_changes: tuple[str, ...] = ()
    ignore_all_changes: bool = False
    create_before_destroy: bool = False

    def ignores(self, attribute: str) -> bool:
        return self.ignore_all_changes or attribute in self.ignore_changes


@dataclass(frozen=True)
class ResourceDeclaration:
    """One declared resource as produced by the front-end, before expansion."""

    type: str
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    count: int | None = None
    lifecycle: Lifecycle = field(default_factory=Lifecycle)

    @property
    def base_address(self) -> str:
        return f"{self.type}.{self.name}"


@dataclass(frozen=True)
class Reference:
    """A pointer from an attribute to another resource's output.

    ``index`` is None for an unindexed reference, an int for ``[i]`` and
    ``"*"`` for the whole collection. ``attribute`` is None when the
    reference names the resource itself (e.g. in ``depends_on``).
    """

    type: str
    name: str
    index: int | str | None = None
    attribute: str | None = None

    @property
    def base_address(self) -> str:
        return f"{self.type}.{self.name}"

    def __str__(self) -> str:
        text = self.base_address
        if self.index is not None:
            text += f"[{self.index}]"
        if self.attribute:
            text += f".{self.attribute}"
        return text


@dataclass(frozen=True)
class ResourceNode:
    """An expanded resource instance; immutable within one planning cycle."""

    type: str
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    index: int | None = None
    lifecycle: Lifecycle = field(default_factory=Lifecycle)
    depends_on: tuple[str, ...] = ()

    @property
    def address(self) -> str:
        if self.index is None:
            return f"{self.type}.{self.name}"
        return f"{self.type}.{self.name}[{self.index}]"

    @property
    def base_address(self) -> str:
        return f"{self.type}.{self.name}"


@dataclass(frozen=True)
class Edge:
    """``source`` depends on ``target``; both are node indices."""

    source: int
    target: int


class ResourceGraph:
    """Node/edge arena with integer indices.

    Nodes are stored in sorted address order so iteration is deterministic.
    Edges point from a dependent node to the node it depends on.
    """

    def __init__(self, nodes: list[ResourceNode], edges: list[Edge], collections: dict[str, list[int]]):
        self._nodes = nodes
        self._edges = sorted(set(edges), key=lambda e: (e.source, e.target))
        self._index = {node.address: i for i, node in enumerate(nodes)}
        self._collections = collections
        self._preds: list[list[int]] = [[] for _ in nodes]
        self._succs: list[list[int]] = [[] for _ in nodes]
        for edge in self._edges:
            self._preds[edge.source].append(edge.target)
            self._succs[edge.target].append(edge.source)

    @property
    def nodes(self) -> list[ResourceNode]:
        return list(self._nodes)

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, address: object) -> bool:
        return address in self._index

    def node(self, index: int) -> ResourceNode:
        return self._nodes[index]

    def index_of(self, address: str) -> int:
        return self._index[address]

    def get(self, address: str) -> ResourceNode | None:
        i = self._index.get(address)
        return None if i is None else self._nodes[i]

    def addresses(self) -> list[str]:
        return [n.address for n in self._nodes]

    def predecessors(self, index: int) -> list[int]:
        """Nodes that ``index`` depends on."""
        return list(self._preds[index])

    def successors(self, index: int) -> list[int]:
        """Nodes that depend on ``index``."""
        return list(self._succs[index])

    def collection(self, base_address: str) -> list[int]:
        """Indices of every instance declared under ``type.name``."""
        return list(self._collections.get(base_address, []))

    def is_repeated(self, base_address: str) -> bool:
        indices = self._collections.get(base_address, [])
        return bool(indices) and self._nodes[indices[0]].index is not None

    def reference_addresses(self, ref: Reference) -> list[str]:
        """Addresses a reference points at, in index order."""
        members = [self._nodes[i] for i in self._collections.get(ref.base_address, [])]
        if isinstance(ref.index, int):
            members = [n for n in members if n.index == ref.index]
        return [n.address for n in sorted(members, key=lambda n: n.index or 0)]

    def topological_order(self) -> list[int]:
        """Dependencies first; ties broken by address."""
        order = topological_sort(len(self._nodes), self._preds, key=lambda i: self._nodes[i].address)
        if order is None:  # the builder never hands out a cyclic graph
            raise RuntimeError("Resource graph contains a cycle")
        return order


def topological_sort(count: int, preds: list[list[int]], key) -> list[int] | None:
    """Deterministic Kahn's algorithm. Returns None if a cycle remains."""
    incoming = [len(set(p)) for p in preds]
    outgoing: list[set[int]] = [set() for _ in range(count)]
    for node, deps in enumerate(preds):
        for dep in deps:
            outgoing[dep].add(node)

    ready = sorted((i for i in range(count) if incoming[i] == 0), key=key)
    order: list[int] = []
    while ready:
        current = ready.pop(0)
        order.append(current)
        for child in outgoing[current]:
            incoming[child] -= 1
            if incoming[child] == 0:
                ready.append(child)
        ready.sort(key=key)

    if len(order) != count:
        return None
    return order
