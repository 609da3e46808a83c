"""Concurrent plan execution."""

from __future__ import annotations

from .executor import PlanExecutor, action_ordering
from .models import ActionOutcome, ActionStatus, ApplyResult, ApplyStatus
from .retry import RetryPolicy

__all__ = [
    "ActionOutcome",
    "ActionStatus",
    "ApplyResult",
    "ApplyStatus",
    "PlanExecutor",
    "RetryPolicy",
    "action_ordering",
]
