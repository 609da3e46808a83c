"""Change actions and change sets."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChangeAction(str, Enum):
    NOOP = "noop"
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"

    @property
    def is_forward(self) -> bool:
        return self in (ChangeAction.CREATE, ChangeAction.UPDATE, ChangeAction.REPLACE)


@dataclass(frozen=True)
class ResourceChange:
    """The action planned for one resource address in one cycle.

    ``dependencies`` are the declared dependencies of the node (empty for a
    destroy); ``prior_dependencies`` are the ones recorded in state when the
    resource was last applied.
    """

    address: str
    type: str
    action: ChangeAction
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    changed_fields: tuple[str, ...] = ()
    force_new_fields: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    prior_dependencies: tuple[str, ...] = ()
    create_before_destroy: bool = False

    def depends_on(self, address: str) -> bool:
        return address in self.dependencies or address in self.prior_dependencies

    def describe(self) -> str:
        if self.action is ChangeAction.REPLACE:
            return f"{self.address}: replace (forced by {', '.join(self.force_new_fields)})"
        if self.action is ChangeAction.UPDATE:
            return f"{self.address}: update ({', '.join(self.changed_fields)})"
        return f"{self.address}: {self.action.value}"


@dataclass
class ChangeSet:
    """Per-resource changes, iterated in address order."""

    changes: dict[str, ResourceChange] = field(default_factory=dict)

    @classmethod
    def from_changes(cls, changes: list[ResourceChange]) -> ChangeSet:
        return cls(changes={c.address: c for c in sorted(changes, key=lambda c: c.address)})

    def get(self, address: str) -> ResourceChange | None:
        return self.changes.get(address)

    def __getitem__(self, address: str) -> ResourceChange:
        return self.changes[address]

    def __contains__(self, address: object) -> bool:
        return address in self.changes

    def __iter__(self) -> Iterator[ResourceChange]:
        return iter(self.changes.values())

    def __len__(self) -> int:
        return len(self.changes)

    def actionable(self) -> list[ResourceChange]:
        return [c for c in self.changes.values() if c.action is not ChangeAction.NOOP]

    @property
    def has_changes(self) -> bool:
        return bool(self.actionable())

    def summary(self) -> dict[str, int]:
        counts = Counter(c.action.value for c in self.changes.values())
        return {action.value: counts.get(action.value, 0) for action in ChangeAction}

    def describe(self) -> list[str]:
        return [c.describe() for c in self.actionable()]
