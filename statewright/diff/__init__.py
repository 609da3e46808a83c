"""Desired-vs-current comparison."""

from __future__ import annotations

from .differ import Differ
from .models import ChangeAction, ChangeSet, ResourceChange

__all__ = ["ChangeAction", "ChangeSet", "Differ", "ResourceChange"]
