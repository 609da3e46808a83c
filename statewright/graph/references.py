"""Reference expressions: parsing, discovery, and interpolation.

A string that is exactly one ``${...}`` resolves to the referenced value with
its type preserved. A reference embedded in a longer string is stringified.
``$${`` is the escape for a literal ``${``.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

from ..exceptions import UnresolvedReferenceError, ValidationError
from .models import Reference, ResourceGraph

_INTERP_PATTERN = re.compile(r"\$\$\{|(\$\{([^{}]+)\})")
_FULL_PATTERN = re.compile(r"\$\{([^{}]+)\}")
_ADDRESS_PATTERN = re.compile(
    r"^(?P<type>[A-Za-z_][\w-]*)\.(?P<name>[A-Za-z_][\w-]*)"
    r"(?:\[(?P<index>\d+|\*)\])?(?:\.(?P<attr>[\w.\-\[\]]+))?$"
)

COUNT_INDEX = "count.index"


class _Unknown:
    """Placeholder for a value that is only known after apply."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<known after apply>"

    def __bool__(self) -> bool:
        return False


UNKNOWN = _Unknown()


def parse_reference(expr: str) -> Reference:
    """Parse ``type.name[idx].attr`` (without the ``${}`` wrapper)."""
    match = _ADDRESS_PATTERN.match(expr.strip())
    if not match:
        raise ValidationError(f"Malformed reference expression: '{expr}'")
    raw_index = match.group("index")
    index: int | str | None
    if raw_index is None:
        index = None
    elif raw_index == "*":
        index = "*"
    else:
        index = int(raw_index)
    return Reference(
        type=match.group("type"),
        name=match.group("name"),
        index=index,
        attribute=match.group("attr"),
    )


def _expressions(text: str) -> list[str]:
    return [m.group(2).strip() for m in _INTERP_PATTERN.finditer(text) if m.group(1)]


def find_references(value: Any) -> list[Reference]:
    """Return every resource reference found anywhere inside ``value``."""
    found: list[Reference] = []
    if isinstance(value, str):
        if "${" in value:
            for expr in _expressions(value):
                if expr != COUNT_INDEX:
                    found.append(parse_reference(expr))
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(find_references(item))
    elif isinstance(value, (list, tuple)):
        for item in value:
            found.extend(find_references(item))
    return found


def substitute_count_index(value: Any, index: int) -> Any:
    """Replace ``${count.index}`` in a repeated resource's attributes."""
    if isinstance(value, str):
        if "${" not in value:
            return value
        full = _FULL_PATTERN.fullmatch(value)
        if full and full.group(1).strip() == COUNT_INDEX:
            return index

        def _replace(m: re.Match) -> str:
            if m.group(1) and m.group(2).strip() == COUNT_INDEX:
                return str(index)
            return m.group(0)

        return _INTERP_PATTERN.sub(_replace, value)
    if isinstance(value, dict):
        return {k: substitute_count_index(v, index) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_count_index(v, index) for v in value]
    return value


def lookup_path(data: Any, path: str | None) -> Any:
    """Walk a dotted attribute path (``a.b[0].c``) into nested attributes."""
    if not path:
        return data
    current = data
    for part in re.findall(r"[^.\[\]]+|\[\d+\]", path):
        if part.startswith("["):
            current = current[int(part[1:-1])]
        else:
            current = current[part]
    return current


class Resolver:
    """Resolve ``${...}`` interpolations using a reference lookup callable.

    The lookup returns the referenced value, or ``UNKNOWN`` when it cannot be
    known before apply. Any unknown part makes the whole string unknown.
    """

    def __init__(self, lookup: Callable[[Reference], Any]) -> None:
        self._lookup = lookup

    def resolve(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(v) for v in value]
        if isinstance(value, str):
            return self._resolve_string(value)
        return value

    def _resolve_string(self, value: str) -> Any:
        if "${" not in value:
            return value

        full = _FULL_PATTERN.fullmatch(value)
        if full:
            return self._lookup(parse_reference(full.group(1)))

        unknown = False

        def _replace(m: re.Match) -> str:
            nonlocal unknown
            if m.group(0) == "$${":
                return "${"
            resolved = self._lookup(parse_reference(m.group(2)))
            if resolved is UNKNOWN or contains_unknown(resolved):
                unknown = True
                return ""
            return str(resolved)

        text = _INTERP_PATTERN.sub(_replace, value)
        return UNKNOWN if unknown else text


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(v) for v in value)
    return False


def collection_lookup(
    graph: ResourceGraph,
    value_of: Callable[[str, str | None], Any],
) -> Callable[[Reference], Any]:
    """Build a Resolver lookup over a graph.

    ``value_of(address, attribute)`` supplies one instance's value. An indexed
    reference or a reference to a single resource yields one value; ``[*]``
    or an unindexed reference to a repeated resource yields the list of
    values in index order.
    """

    def lookup(ref: Reference) -> Any:
        addresses = graph.reference_addresses(ref)
        if not addresses:
            raise UnresolvedReferenceError(f"Reference '{ref}' does not match any declared resource", target=str(ref))
        values = [value_of(address, ref.attribute) for address in addresses]
        if isinstance(ref.index, int) or (ref.index is None and not graph.is_repeated(ref.base_address)):
            return values[0]
        return values

    return lookup


def attribute_root(path: str) -> str:
    """Top-level attribute name of a dotted path (``tags.Name`` -> ``tags``)."""
    return re.split(r"[.\[]", path, maxsplit=1)[0]
