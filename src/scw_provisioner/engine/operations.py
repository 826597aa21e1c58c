"""Apply operations.

Terraform runs apply by executing a graph of operations (resource nodes + other
nodes). Each operation here is split in three steps so independent operations
can run on worker threads while state stays single-threaded:

- ``prepare`` (calling thread): snapshot what the operation needs from state
  and resolve ``${…}`` references against it
- ``execute`` (worker thread): talk to the remote API through the handler
- ``commit`` / ``abort`` (calling thread): record the outcome in state
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from scw_provisioner.core.state import ResourceInstance, State, compute_attributes_hash
from scw_provisioner.resources.interpolation import find_references, resolve_references
from scw_provisioner.resources.markers import configured_optional_fields

if TYPE_CHECKING:
    from collections.abc import Callable

    from scw_provisioner.engine.handlers import EngineContext
    from scw_provisioner.engine.registry import ResourceTypeRegistry
    from scw_provisioner.engine.types import ResourceChange
    from scw_provisioner.resources.base import Resource
    from scw_provisioner.resources.interpolation import Reference

    Lookup = Callable[[Reference], str | None]


class Operation(Protocol):
    key: str
    deps: list[str]
    change: ResourceChange | None

    def prepare(self, *, state: State, registry: ResourceTypeRegistry, lookup: Lookup) -> None:
        """Capture inputs from state. Runs on the calling thread."""

    def execute(self, *, ctx: EngineContext, registry: ResourceTypeRegistry) -> None:
        """Perform the remote work. May run on a worker thread."""

    def commit(self, state: State) -> bool:
        """Record a successful outcome.

        Returns:
            True if state should be persisted (serial bump + write).
        """

    def abort(self, state: State) -> bool:
        """Record what is known after a failure. Returns True if state changed."""


@dataclass
class BarrierOperation:
    """A no-op node used to enforce ordering between operation phases."""

    key: str
    deps: list[str] = field(default_factory=list)
    change: ResourceChange | None = None

    def prepare(self, *, state: State, registry: ResourceTypeRegistry, lookup: Lookup) -> None:
        _ = state, registry, lookup

    def execute(self, *, ctx: EngineContext, registry: ResourceTypeRegistry) -> None:
        _ = ctx, registry

    def commit(self, state: State) -> bool:
        _ = state
        return False

    def abort(self, state: State) -> bool:
        _ = state
        return False


def _desired_object(
    change: ResourceChange, registry: ResourceTypeRegistry, lookup: Lookup, *, action: str
) -> Resource:
    if change.desired is None:
        raise ValueError(f"Missing desired config for {action}: {change.address}")

    resolved = resolve_references(change.desired, lookup)
    unresolved = sorted({ref.address for ref in find_references(resolved)})
    if unresolved:
        raise ValueError(
            f"Unresolved references in {change.address}: {', '.join(unresolved)}"
        )

    desired_obj = registry.get(change.resource_type).model.model_validate(resolved)
    if desired_obj.address != change.address:
        raise ValueError(
            f"Desired address mismatch for {action}: {change.address} != {desired_obj.address}"
        )
    return desired_obj


def _prior_instance(change: ResourceChange, state: State) -> ResourceInstance:
    inst = state.resources.get(change.address)
    if inst is None:
        raise ValueError(f"Missing state for {change.action.value} operation: {change.address}")
    return inst.model_copy(deep=True)


def _new_instance(desired: Resource, resource_id: str, attrs: dict[str, Any]) -> ResourceInstance:
    now = datetime.now(UTC)
    return ResourceInstance(
        address=desired.address,
        resource_type=desired.resource_type,
        name=desired.name,
        id=resource_id,
        attributes=attrs,
        attributes_hash=compute_attributes_hash(attrs),
        dependencies=list(desired.depends_on),
        configured=configured_optional_fields(desired),
        created_at=now,
        updated_at=now,
    )


@dataclass
class CreateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)
    _desired: Resource | None = field(default=None, repr=False)
    _created: tuple[str, dict[str, Any]] | None = field(default=None, repr=False)

    def prepare(self, *, state: State, registry: ResourceTypeRegistry, lookup: Lookup) -> None:
        _ = state
        assert self.change is not None
        self._desired = _desired_object(self.change, registry, lookup, action="create")

    def execute(self, *, ctx: EngineContext, registry: ResourceTypeRegistry) -> None:
        assert self.change is not None and self._desired is not None
        handler = registry.get(self.change.resource_type).handler
        self._created = handler.create(ctx, self._desired)

    def commit(self, state: State) -> bool:
        assert self._desired is not None and self._created is not None
        resource_id, attrs = self._created
        state.resources[self.key] = _new_instance(self._desired, resource_id, attrs)
        return True

    def abort(self, state: State) -> bool:
        # A failed create never records an identifier.
        _ = state
        return False


@dataclass
class UpdateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)
    _desired: Resource | None = field(default=None, repr=False)
    _prior: ResourceInstance | None = field(default=None, repr=False)
    _attrs: dict[str, Any] | None = field(default=None, repr=False)

    def prepare(self, *, state: State, registry: ResourceTypeRegistry, lookup: Lookup) -> None:
        assert self.change is not None
        self._desired = _desired_object(self.change, registry, lookup, action="update")
        self._prior = _prior_instance(self.change, state)

    def execute(self, *, ctx: EngineContext, registry: ResourceTypeRegistry) -> None:
        assert self.change is not None and self._desired is not None and self._prior is not None
        handler = registry.get(self.change.resource_type).handler
        self._attrs = handler.update(ctx, self._desired, self._prior)

    def commit(self, state: State) -> bool:
        assert self._desired is not None and self._attrs is not None
        inst = state.resources[self.key]
        inst.attributes = self._attrs
        inst.attributes_hash = compute_attributes_hash(self._attrs)
        inst.dependencies = list(self._desired.depends_on)
        inst.configured = configured_optional_fields(self._desired)
        inst.updated_at = datetime.now(UTC)
        return True

    def abort(self, state: State) -> bool:
        _ = state
        return False


@dataclass
class ReplaceOperation:
    """Delete the existing object, then create its successor.

    If the delete succeeded but the create failed, the old instance is dropped
    from state: its identifier no longer points at anything.
    """

    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)
    _desired: Resource | None = field(default=None, repr=False)
    _prior: ResourceInstance | None = field(default=None, repr=False)
    _deleted: bool = field(default=False, repr=False)
    _created: tuple[str, dict[str, Any]] | None = field(default=None, repr=False)

    def prepare(self, *, state: State, registry: ResourceTypeRegistry, lookup: Lookup) -> None:
        assert self.change is not None
        self._desired = _desired_object(self.change, registry, lookup, action="replace")
        self._prior = _prior_instance(self.change, state)

    def execute(self, *, ctx: EngineContext, registry: ResourceTypeRegistry) -> None:
        assert self.change is not None and self._desired is not None and self._prior is not None
        handler = registry.get(self.change.resource_type).handler
        handler.delete(ctx, self._prior)
        self._deleted = True
        self._created = handler.create(ctx, self._desired)

    def commit(self, state: State) -> bool:
        assert self._desired is not None and self._created is not None
        resource_id, attrs = self._created
        state.resources[self.key] = _new_instance(self._desired, resource_id, attrs)
        return True

    def abort(self, state: State) -> bool:
        if not self._deleted:
            return False
        state.resources.pop(self.key, None)
        return True


@dataclass
class DeleteOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)
    _prior: ResourceInstance | None = field(default=None, repr=False)

    def prepare(self, *, state: State, registry: ResourceTypeRegistry, lookup: Lookup) -> None:
        _ = registry, lookup
        assert self.change is not None
        self._prior = _prior_instance(self.change, state)

    def execute(self, *, ctx: EngineContext, registry: ResourceTypeRegistry) -> None:
        assert self.change is not None and self._prior is not None
        registry.get(self.change.resource_type).handler.delete(ctx, self._prior)

    def commit(self, state: State) -> bool:
        del state.resources[self.key]
        return True

    def abort(self, state: State) -> bool:
        # A failed delete keeps the instance.
        _ = state
        return False
