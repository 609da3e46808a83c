"""Shared fixtures: an in-process provider that records every call."""

from __future__ import annotations

import itertools
import threading
from typing import Any

import pytest

from statewright.config import ExecutorConfig
from statewright.graph.models import Lifecycle, ResourceDeclaration
from statewright.providers import ProviderResult, ResourceSchema
from statewright.providers.registry import ProviderRegistry

FORCE_NEW = {
    "network": ["cidr_block"],
    "subnet": ["cidr_block", "network_id"],
    "load_balancer": ["scheme"],
    "cluster": [],
    "service": [],
}


class FakeProvider:
    """Keeps resources in a dict and appends ``(op, type, detail)`` to a shared log.

    Failures are queued per operation with ``fail()`` and raised on the next
    matching calls. ``hooks`` run before an operation, e.g. to flip a cancel
    event mid-apply.
    """

    def __init__(self, resource_type: str, force_new=(), log: list | None = None):
        self.schema = ResourceSchema(type=resource_type, force_new=frozenset(force_new))
        self.resources: dict[str, dict[str, Any]] = {}
        self.log = log if log is not None else []
        self.hooks: dict[str, Any] = {}
        self._errors: dict[str, list] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def fail(self, op: str, *errors: Exception, when=None) -> None:
        self._errors.setdefault(op, []).extend((e, when) for e in errors)

    def _call(self, op: str, detail: Any) -> None:
        self.log.append((op, self.schema.type, detail))
        hook = self.hooks.get(op)
        if hook is not None:
            hook(detail)
        with self._lock:
            queue = self._errors.get(op, [])
            for i, (error, when) in enumerate(queue):
                if when is None or when(detail):
                    del queue[i]
                    raise error

    def create(self, attributes, timeout):
        self._call("create", dict(attributes))
        with self._lock:
            resource_id = f"{self.schema.type}-{next(self._ids)}"
        computed = {"arn": f"arn:fake:{resource_id}"}
        self.resources[resource_id] = {**attributes, **computed}
        return ProviderResult(id=resource_id, attributes=computed)

    def read(self, resource_id, attributes, timeout):
        self._call("read", resource_id)
        current = self.resources.get(resource_id)
        return dict(current) if current is not None else None

    def update(self, resource_id, before, after, timeout):
        self._call("update", (resource_id, dict(after)))
        self.resources[resource_id] = {**self.resources.get(resource_id, {}), **after}
        return ProviderResult(id=resource_id, attributes={})

    def delete(self, resource_id, attributes, timeout):
        self._call("delete", resource_id)
        self.resources.pop(resource_id, None)

    def ops(self, op: str) -> list:
        return [entry for entry in self.log if entry[0] == op and entry[1] == self.schema.type]


def make_registry(log: list | None = None, force_new: dict | None = None) -> ProviderRegistry:
    log = log if log is not None else []
    registry = ProviderRegistry()
    for resource_type, fields in sorted((force_new or FORCE_NEW).items()):
        registry.register(resource_type, FakeProvider(resource_type, fields, log))
    return registry


def decl(rtype: str, name: str, count: int | None = None, depends_on=(), lifecycle: Lifecycle | None = None,
         **attributes) -> ResourceDeclaration:
    return ResourceDeclaration(
        type=rtype,
        name=name,
        attributes=attributes,
        depends_on=tuple(depends_on),
        count=count,
        lifecycle=lifecycle or Lifecycle(),
    )


def network_with_subnets(subnets: int = 3) -> list[ResourceDeclaration]:
    return [
        decl("network", "main", cidr_block="10.0.0.0/16"),
        decl(
            "subnet", "public",
            count=subnets,
            network_id="${network.main.id}",
            cidr_block="10.0.${count.index}.0/24",
        ),
    ]


def position(log: list, op: str, rtype: str) -> list[int]:
    """Indices in ``log`` of every ``op`` on resources of ``rtype``."""
    return [i for i, entry in enumerate(log) if entry[0] == op and entry[1] == rtype]


@pytest.fixture
def call_log():
    return []


@pytest.fixture
def registry(call_log):
    return make_registry(call_log)


@pytest.fixture
def executor_config():
    return ExecutorConfig(parallelism=4, max_attempts=3, backoff_base_seconds=0.5, max_backoff_seconds=5.0)


@pytest.fixture
def sleeps():
    return []
