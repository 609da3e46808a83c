"""Resource graph: declarations, references, and the DAG builder."""

from __future__ import annotations

from .builder import build_graph
from .models import Edge, Lifecycle, Reference, ResourceDeclaration, ResourceGraph, ResourceNode

__all__ = [
    "Edge",
    "Lifecycle",
    "Reference",
    "ResourceDeclaration",
    "ResourceGraph",
    "ResourceNode",
    "build_graph",
]
