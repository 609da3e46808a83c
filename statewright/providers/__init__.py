"""Provider boundary: per-type CRUD capability sets and their registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .registry import ProviderRegistry


@dataclass(frozen=True)
class ResourceSchema:
    """Provider-defined facts the Differ needs about one resource type."""

    type: str
    force_new: frozenset[str] = field(default_factory=frozenset)

    def requires_replace(self, attribute: str) -> bool:
        return attribute in self.force_new


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of a confirmed create or update."""

    id: str
    attributes: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ResourceProvider(Protocol):
    """Protocol that every resource-type implementation must satisfy."""

    schema: ResourceSchema

    def create(self, attributes: dict[str, Any], timeout: float) -> ProviderResult:
        """Create the resource and return its id and observed attributes."""
        ...

    def read(self, resource_id: str, attributes: dict[str, Any], timeout: float) -> dict[str, Any] | None:
        """Return the current attributes, or None if the resource no longer exists."""
        ...

    def update(
        self,
        resource_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
        timeout: float,
    ) -> ProviderResult:
        """Mutate the resource in place."""
        ...

    def delete(self, resource_id: str, attributes: dict[str, Any], timeout: float) -> None:
        """Delete the resource; deleting an already-absent resource succeeds."""
        ...


__all__ = ["ProviderRegistry", "ProviderResult", "ResourceProvider", "ResourceSchema"]
