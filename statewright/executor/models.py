"""Per-action states and the apply result."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ..diff.models import ChangeAction


class ActionStatus(str, Enum):
    """PENDING -> RUNNING -> {SUCCEEDED, FAILED}.

    BLOCKED is only ever assigned to dependents of a failed or blocked
    action. CANCELLED marks actions never dispatched after cancellation.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class ApplyStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    CANCELLED = "cancelled"


@dataclass
class ActionOutcome:
    address: str
    action: ChangeAction
    status: ActionStatus = ActionStatus.PENDING
    attempts: int = 0
    error: str | None = None
    blocked_by: str | None = None


@dataclass(frozen=True)
class ApplyResult:
    status: ApplyStatus
    outcomes: dict[str, ActionOutcome] = field(default_factory=dict)

    def _with(self, status: ActionStatus) -> list[str]:
        return sorted(a for a, o in self.outcomes.items() if o.status is status)

    @property
    def succeeded(self) -> list[str]:
        return self._with(ActionStatus.SUCCEEDED)

    @property
    def failed(self) -> dict[str, str]:
        return {a: self.outcomes[a].error or "" for a in self._with(ActionStatus.FAILED)}

    @property
    def blocked(self) -> list[str]:
        return self._with(ActionStatus.BLOCKED)

    @property
    def cancelled(self) -> list[str]:
        return self._with(ActionStatus.CANCELLED)

    @property
    def ok(self) -> bool:
        return self.status is ApplyStatus.SUCCESS

    def summary(self) -> dict[str, int]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "blocked": len(self.blocked),
            "cancelled": len(self.cancelled),
        }
