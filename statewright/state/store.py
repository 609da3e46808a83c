"""State store protocol and the in-memory and local-file implementations."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..exceptions import StateStoreUnavailable, ValidationError
from .models import StateRecord

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


@runtime_checkable
class StateStore(Protocol):
    """Sole owner of persisted StateRecords, keyed by resource address."""

    def get(self, address: str) -> StateRecord | None: ...

    def put(self, address: str, record: StateRecord) -> None: ...

    def delete(self, address: str) -> None: ...

    def list_all(self) -> list[StateRecord]: ...


class MemoryStateStore:
    """Process-local store; nothing survives the process."""

    def __init__(self, records: list[StateRecord] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, StateRecord] = {r.address: r for r in records or []}

    def get(self, address: str) -> StateRecord | None:
        with self._lock:
            return self._records.get(address)

    def put(self, address: str, record: StateRecord) -> None:
        with self._lock:
            self._records[address] = record

    def delete(self, address: str) -> None:
        with self._lock:
            self._records.pop(address, None)

    def list_all(self) -> list[StateRecord]:
        with self._lock:
            return [self._records[a] for a in sorted(self._records)]


class SerializedStateStore:
    """Keeps an in-memory copy and rewrites the whole document on every change.

    Subclasses implement ``_read_document`` and ``_write_document``; the
    document is serialized once, strictly, before it reaches them. A write
    returns only after the backend confirmed it, so a successful ``put`` is
    durable before the caller moves on.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, StateRecord] | None = None

    def _read_document(self) -> dict | None:
        raise NotImplementedError

    def _write_document(self, body: str) -> None:
        raise NotImplementedError

    def _load(self) -> dict[str, StateRecord]:
        if self._records is None:
            document = self._read_document()
            records: dict[str, StateRecord] = {}
            if document:
                try:
                    for raw in document.get("resources", []):
                        record = StateRecord.from_dict(raw)
                        records[record.address] = record
                except (KeyError, TypeError, AttributeError) as exc:
                    raise StateStoreUnavailable(f"State document is malformed: {exc}") from exc
            self._records = records
            logger.debug("Loaded %d state records", len(records))
        return self._records

    def _persist(self, records: dict[str, StateRecord]) -> None:
        document = {
            "version": STATE_FORMAT_VERSION,
            "resources": [records[a].to_dict() for a in sorted(records)],
        }
        try:
            body = json.dumps(document, indent=2, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"State is not JSON-serializable: {exc}") from exc
        self._write_document(body)

    def get(self, address: str) -> StateRecord | None:
        with self._lock:
            return self._load().get(address)

    def put(self, address: str, record: StateRecord) -> None:
        with self._lock:
            updated = dict(self._load())
            updated[address] = record
            self._persist(updated)
            self._records = updated

    def delete(self, address: str) -> None:
        with self._lock:
            current = self._load()
            if address not in current:
                return
            updated = {a: r for a, r in current.items() if a != address}
            self._persist(updated)
            self._records = updated

    def list_all(self) -> list[StateRecord]:
        with self._lock:
            records = self._load()
            return [records[a] for a in sorted(records)]

    def reload(self) -> None:
        """Drop the cached copy; the next access re-reads the backend."""
        with self._lock:
            self._records = None


class FileStateStore(SerializedStateStore):
    """JSON document on local disk, replaced atomically on every write."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_document(self) -> dict | None:
        if not self._path.exists():
            return None
        try:
            with open(self._path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StateStoreUnavailable(f"Cannot read state file {self._path}: {exc}") from exc

    def _write_document(self, body: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".state-", dir=self._path.parent)
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(body)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self._path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StateStoreUnavailable(f"Cannot write state file {self._path}: {exc}") from exc
