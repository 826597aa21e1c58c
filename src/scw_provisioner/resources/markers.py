"""Declarative field markers for resource models.

Markers attach to Pydantic fields via ``Annotated``:

- ``Ref``: field holds a reference to another resource's identifier
- ``ApiField``: field maps to a path in the remote API object
- ``LocalOnly``: field is never returned by the API (write-only secrets,
  local settings); reads keep the locally known value
- ``ForceNew``: changing the field means a different remote object
- ``Compare``: field-level comparison strategy used by the engine

Helper functions introspect these markers at runtime to build request bodies,
reconcile remote attributes, and pick per-field comparison strategies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeAlias, TypeVar

from pydantic_core import PydanticUndefined

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pydantic.fields import FieldInfo

M = TypeVar("M")
CompareStrategy: TypeAlias = Literal["partial", "set", "id"]


# ── Marker dataclasses ──────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Ref:
    """Field references another resource of ``resource_type``.

    The value is either a literal identifier (``fr-par/<uuid>`` or a bare id)
    or an interpolation such as ``${scaleway_rdb_instance.main.id}``.
    """

    resource_type: str


@dataclass(frozen=True, slots=True)
class ApiField:
    """Field maps to a dot-separated path in the remote object.

    ``read_path`` is used when the API returns the value somewhere else than
    where requests set it. ``create``/``update`` say whether the field is sent
    in create requests and partial update requests; ``read`` whether it is
    reconciled from the remote object.
    """

    path: str
    read_path: str | None = None
    create: bool = True
    update: bool = True
    read: bool = True

    @property
    def source(self) -> str:
        return self.read_path or self.path


@dataclass(frozen=True, slots=True)
class LocalOnly:
    """Field is never returned by the API and must be preserved across reads."""


@dataclass(frozen=True, slots=True)
class ForceNew:
    """Changing this field requires replacing the remote object."""


@dataclass(frozen=True, slots=True)
class Compare:
    """How the engine should compare the field.

    - ``"partial"``: for dict values, only keys declared in desired are compared
    - ``"set"``: order-insensitive list comparison
    - ``"id"``: identifier comparison ignoring a missing locality prefix
    """

    strategy: CompareStrategy


# ── Shared introspection primitives ─────────────────────────────────


def _find_marker(field_info: FieldInfo, marker_type: type[M]) -> M | None:
    """Return the first marker of *marker_type* on a field, or ``None``."""
    return next((m for m in field_info.metadata if isinstance(m, marker_type)), None)


def _model_cls(model_or_cls: Any) -> Any:
    return model_or_cls if isinstance(model_or_cls, type) else type(model_or_cls)


def _iter_marked_fields(
    model_or_cls: Any,
    marker_type: type[M],
) -> list[tuple[str, FieldInfo, M]]:
    """Return ``(field_name, field_info, marker)`` for every field carrying *marker_type*."""
    return [
        (name, fi, marker)
        for name, fi in _model_cls(model_or_cls).model_fields.items()
        if (marker := _find_marker(fi, marker_type)) is not None
    ]


def resolve_path(raw: Any, path: str, default: Any = None) -> Any:
    """Resolve a dot-separated path in nested dicts; digits index into lists."""
    current: Any = raw
    for segment in path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return default
    return current


def _set_path(target: dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    for segment in parents:
        target = target.setdefault(segment, {})
    target[leaf] = value


def field_default(fi: FieldInfo) -> Any:
    """Model default for a field, or ``None`` for required fields."""
    if fi.default is not PydanticUndefined:
        return fi.default
    if fi.default_factory is not None:
        return fi.default_factory()  # type: ignore[call-arg]
    return None


# ── Public helpers ──────────────────────────────────────────────────


def ref_fields(model_or_cls: Any) -> dict[str, Ref]:
    """Map field name -> ``Ref`` marker."""
    return {name: marker for name, _, marker in _iter_marked_fields(model_or_cls, Ref)}


def local_only_fields(model_or_cls: Any) -> set[str]:
    return {name for name, _, _ in _iter_marked_fields(model_or_cls, LocalOnly)}


def force_new_fields(model_or_cls: Any) -> set[str]:
    return {name for name, _, _ in _iter_marked_fields(model_or_cls, ForceNew)}


def api_fields(model_or_cls: Any) -> dict[str, ApiField]:
    return {name: marker for name, _, marker in _iter_marked_fields(model_or_cls, ApiField)}


def optional_api_fields(model_or_cls: Any) -> set[str]:
    """Settable ``ApiField`` fields that may be left unset (model default ``None``)."""
    return {
        name
        for name, fi, marker in _iter_marked_fields(model_or_cls, ApiField)
        if (marker.create or marker.update) and not fi.is_required() and field_default(fi) is None
    }


def configured_optional_fields(resource: Any) -> list[str]:
    """Optional fields the resource sets explicitly, sorted."""
    return sorted(n for n in optional_api_fields(resource) if getattr(resource, n) is not None)


def cleared_fields(resource: Any, configured: Iterable[str]) -> set[str]:
    """Optional fields that were *configured* before and are unset now."""
    previous = set(configured)
    return {
        n for n in optional_api_fields(resource) if n in previous and getattr(resource, n) is None
    }


def collect_compare_strategies(resource_or_cls: Any) -> dict[str, CompareStrategy]:
    """Collect per-field compare strategies; ``Ref`` fields default to ``"id"``."""
    strategies: dict[str, CompareStrategy] = dict.fromkeys(ref_fields(resource_or_cls), "id")
    strategies.update(
        {name: marker.strategy for name, _, marker in _iter_marked_fields(resource_or_cls, Compare)}
    )
    return strategies


def build_api_body(
    resource: Any,
    *,
    fields: set[str] | None = None,
    action: Literal["create", "update"] = "create",
) -> dict[str, Any]:
    """Build a request body from ``ApiField`` fields.

    ``fields`` restricts the body to the given field names (partial update).
    ``None`` values are omitted from full bodies and sent as explicit nulls
    in partial ones, which is how a removed optional setting is reset.
    """
    body: dict[str, Any] = {}
    for name, marker in api_fields(resource).items():
        if fields is not None and name not in fields:
            continue
        if not getattr(marker, action):
            continue
        value = getattr(resource, name)
        if value is None and fields is None:
            continue
        _set_path(body, marker.path, value)
    return body


def extract_api_attrs(resource_cls: type, raw: dict[str, Any]) -> dict[str, Any]:
    """Extract model attrs from a remote object via readable ``ApiField`` markers."""
    local = local_only_fields(resource_cls)
    return {
        name: resolve_path(raw, marker.source, field_default(fi))
        for name, fi, marker in _iter_marked_fields(resource_cls, ApiField)
        if marker.read and name not in local
    }
