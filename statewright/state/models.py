"""Persisted state record."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class StateRecord:
    """Last-observed real-world attributes of one managed resource."""

    address: str
    type: str
    id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ()

    def outputs(self) -> dict[str, Any]:
        """Attributes plus the provider-assigned ``id``, as seen by references."""
        return {**self.attributes, "id": self.id}

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "type": self.type,
            "id": self.id,
            "attributes": self.attributes,
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateRecord:
        return cls(
            address=data["address"],
            type=data["type"],
            id=str(data["id"]),
            attributes=dict(data.get("attributes") or {}),
            dependencies=tuple(data.get("dependencies") or ()),
        )
