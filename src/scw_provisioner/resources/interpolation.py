"""``${…}`` references between resources.

A string value may embed ``${<resource_type>.<name>.<attribute>}``, e.g.
``${scaleway_rdb_instance.main.id}``. The engine resolves these against state
at plan and apply time; unresolvable references are left untouched.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_REFERENCE_RE = re.compile(
    r"\$\{(?P<type>[a-z0-9_]+)\.(?P<name>[a-zA-Z0-9_-]+)\.(?P<attr>[a-zA-Z0-9_]+)\}"
)


@dataclass(frozen=True, slots=True)
class Reference:
    resource_type: str
    name: str
    attribute: str

    @property
    def address(self) -> str:
        return f"{self.resource_type}.{self.name}"


def find_references(value: Any) -> list[Reference]:
    """Collect every ``${…}`` reference in a value, recursively, in order."""
    if isinstance(value, str):
        return [
            Reference(m.group("type"), m.group("name"), m.group("attr"))
            for m in _REFERENCE_RE.finditer(value)
        ]
    if isinstance(value, dict):
        return [ref for v in value.values() for ref in find_references(v)]
    if isinstance(value, list):
        return [ref for v in value for ref in find_references(v)]
    return []


def has_references(value: Any) -> bool:
    return bool(find_references(value))


def resolve_references(value: Any, lookup: Callable[[Reference], str | None]) -> Any:
    """Replace ``${…}`` references using *lookup*, recursively.

    *lookup* returns the replacement text, or ``None`` to leave the reference
    as written.
    """
    if isinstance(value, str):

        def _sub(m: re.Match[str]) -> str:
            ref = Reference(m.group("type"), m.group("name"), m.group("attr"))
            resolved = lookup(ref)
            return m.group(0) if resolved is None else resolved

        return _REFERENCE_RE.sub(_sub, value)
    if isinstance(value, dict):
        return {k: resolve_references(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_references(v, lookup) for v in value]
    return value
