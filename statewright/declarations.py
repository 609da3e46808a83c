"""YAML front-end: resource documents -> ResourceDeclaration values."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ValidationError
from .graph.models import Lifecycle, ResourceDeclaration

logger = logging.getLogger(__name__)

_RESOURCE_KEYS = {"type", "name", "attributes", "depends_on", "count", "lifecycle"}


class _DeclarationLoader(yaml.SafeLoader):
    """SafeLoader that leaves dates and timestamps as strings."""


_DeclarationLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


@dataclass
class DeclarationSet:
    """Everything declared across one or more documents."""

    resources: list[ResourceDeclaration] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)


def load_declarations(paths: Iterable[str | Path]) -> DeclarationSet:
    """Load and merge declaration documents from YAML files."""
    result = DeclarationSet()
    for path in paths:
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"Declarations file not found: {path}")
        with open(path) as f:
            try:
                doc = yaml.load(f, Loader=_DeclarationLoader)
            except yaml.YAMLError as exc:
                raise ValidationError(f"{path}: invalid YAML: {exc}") from exc
        logger.debug("Loading declarations from %s", path)
        _merge(result, parse_document(doc or {}, source=str(path)))
    return result


def parse_document(doc: Any, source: str = "<document>") -> DeclarationSet:
    """Parse one already-decoded document mapping."""
    if not isinstance(doc, dict):
        raise ValidationError(f"{source}: declaration document must be a mapping")

    raw_resources = doc.get("resources", []) or []
    if not isinstance(raw_resources, list):
        raise ValidationError(f"{source}: 'resources' must be a list")

    raw_outputs = doc.get("outputs", {}) or {}
    if not isinstance(raw_outputs, dict):
        raise ValidationError(f"{source}: 'outputs' must be a mapping")

    resources = [_parse_resource(raw, source) for raw in raw_resources]
    return DeclarationSet(resources=resources, outputs=dict(raw_outputs))


def _parse_resource(raw: Any, source: str) -> ResourceDeclaration:
    if not isinstance(raw, dict):
        raise ValidationError(f"{source}: each resource must be a mapping")

    rtype = raw.get("type")
    name = raw.get("name")
    if not isinstance(rtype, str) or not rtype:
        raise ValidationError(f"{source}: resource is missing 'type'")
    if not isinstance(name, str) or not name:
        raise ValidationError(f"{source}: resource of type '{rtype}' is missing 'name'")

    unknown = set(raw) - _RESOURCE_KEYS
    if unknown:
        raise ValidationError(f"{source}: {rtype}.{name} has unknown keys: {', '.join(sorted(unknown))}")

    attributes = raw.get("attributes", {}) or {}
    if not isinstance(attributes, dict):
        raise ValidationError(f"{source}: {rtype}.{name} 'attributes' must be a mapping")

    depends_on = raw.get("depends_on", []) or []
    if isinstance(depends_on, str):
        depends_on = [depends_on]

    count = raw.get("count")
    if count is not None and (isinstance(count, bool) or not isinstance(count, int)):
        raise ValidationError(f"{source}: {rtype}.{name} 'count' must be an integer")

    return ResourceDeclaration(
        type=rtype,
        name=name,
        attributes=attributes,
        depends_on=tuple(str(d) for d in depends_on),
        count=count,
        lifecycle=_parse_lifecycle(raw.get("lifecycle"), f"{rtype}.{name}"),
    )


def _parse_lifecycle(raw: Any, address: str) -> Lifecycle:
    if raw is None:
        return Lifecycle()
    if not isinstance(raw, dict):
        raise ValidationError(f"{address}: 'lifecycle' must be a mapping")

    ignore = raw.get("ignore_changes", [])
    ignore_all = False
    if ignore == "all":
        ignore, ignore_all = [], True
    elif isinstance(ignore, str):
        ignore = [ignore]
    elif not isinstance(ignore, list):
        raise ValidationError(f"{address}: lifecycle.ignore_changes must be a list or 'all'")

    return Lifecycle(
        ignore_changes=tuple(str(f) for f in ignore),
        ignore_all_changes=ignore_all,
        create_before_destroy=bool(raw.get("create_before_destroy", False)),
    )


def _merge(into: DeclarationSet, other: DeclarationSet) -> None:
    into.resources.extend(other.resources)
    for name, value in other.outputs.items():
        if name in into.outputs:
            raise ValidationError(f"Duplicate output: '{name}'")
        into.outputs[name] = value
