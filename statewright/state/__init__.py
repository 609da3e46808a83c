"""State persistence: records, the store protocol, and backend factory."""

from __future__ import annotations

from ..config import StateConfig
from .models import StateRecord
from .store import FileStateStore, MemoryStateStore, StateStore


def build_state_store(config: StateConfig) -> StateStore:
    """Instantiate the configured state backend."""
    if config.backend == "memory":
        return MemoryStateStore()
    if config.backend == "s3":
        from .s3_store import S3StateStore
        return S3StateStore(config)
    return FileStateStore(config.path)


__all__ = ["FileStateStore", "MemoryStateStore", "StateRecord", "StateStore", "build_state_store"]
