"""Generic lifecycle controller for Scaleway resources.

Every managed resource follows the same shape: resolve its locality, wait for
the parent object to settle, send one conflict-retried mutation, wait for the
object itself to settle, then read it back. Subclasses describe *what* they
manage (API route, scope, parent link, status classifier) and may override
the request/flatten hooks for fields the API encodes differently.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from scw_provisioner.api.errors import NotFoundError
from scw_provisioner.engine.diff import values_differ
from scw_provisioner.engine.errors import (
    LifecycleError,
    MalformedIdentifierError,
    ResourceVanishedError,
)
from scw_provisioner.engine.handlers import R, ResourceHandler
from scw_provisioner.engine.identifier import Identifier, split_locality
from scw_provisioner.engine.locality import Scope, locality_conflict, resolve_locality
from scw_provisioner.engine.retry import mutate
from scw_provisioner.engine.waiter import Readiness, always_ready, wait_until_stable
from scw_provisioner.resources.base import Operation, Resource, Timeouts
from scw_provisioner.resources.interpolation import has_references
from scw_provisioner.resources.markers import (
    api_fields,
    build_api_body,
    cleared_fields,
    collect_compare_strategies,
    extract_api_attrs,
    force_new_fields,
    local_only_fields,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from scw_provisioner.api.client import RemoteClient
    from scw_provisioner.api.types import Handle
    from scw_provisioner.core.state import ResourceInstance
    from scw_provisioner.engine.handlers import EngineContext, PlanContext
    from scw_provisioner.engine.waiter import Deadline

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0

Classifier = Callable[["Handle"], Readiness]


@dataclass(frozen=True)
class ParentLink:
    """Describes the object a sub-resource lives on.

    Attributes:
        field: Model field holding the parent reference (``locality/id`` or ``id``)
        api_resource: Route key of the parent in the API client
        resource_type: Resource type the reference must point at
        classify: Status classifier of the parent
    """

    field: str
    api_resource: str
    resource_type: str
    classify: Classifier


class LifecycleHandler(ResourceHandler[R]):
    """Create/read/update/delete for one Scaleway resource kind.

    Class attributes:
        model: Resource model class handled
        api_resource: Route key in the API client
        scope: Whether the locality is a region or a zone
        parent: Link to the parent object for sub-resources
        side_update_fields: Create-only API fields the handler changes through a
            separate request (see ``update_side_fields``)
        asynchronous: Whether created objects must be polled until ready
        default_timeout: Budget in seconds for operations without a configured timeout
    """

    model: ClassVar[type[Resource]]
    api_resource: ClassVar[str]
    scope: ClassVar[Scope] = "region"
    parent: ClassVar[ParentLink | None] = None
    side_update_fields: ClassVar[frozenset[str]] = frozenset()
    asynchronous: ClassVar[bool] = False
    default_timeout: ClassVar[float] = DEFAULT_TIMEOUT

    # ── Descriptor helpers ──────────────────────────────────────────

    @property
    def arity(self) -> int:
        return 2 if self.parent is None else 3

    @property
    def locality_field(self) -> str:
        return self.scope

    def classify(self, handle: Handle) -> Readiness:
        """Map the remote status of an object to its readiness."""
        return always_ready(handle)

    def decode(self, raw: str) -> Identifier:
        return Identifier.decode(raw, arity=self.arity, scope=self.scope)

    def import_id(self, raw: str) -> str:
        return self.decode(raw).encode()

    def timeout_for(self, timeouts: Timeouts | Mapping[str, Any] | None, op: Operation) -> float:
        if timeouts is not None and not isinstance(timeouts, Timeouts):
            timeouts = Timeouts.model_validate(timeouts)
        configured = timeouts.for_operation(op) if timeouts is not None else None
        return configured if configured is not None else self.default_timeout

    def _default_locality(self, ctx: EngineContext) -> str | None:
        if self.scope == "zone":
            return ctx.provider.default_zone
        return ctx.provider.default_region

    def resolve(self, ctx: EngineContext, desired: R) -> tuple[str, str | None]:
        """Return ``(locality, parent_remote_id)`` for a desired resource.

        Raises:
            NoLocalityError: no explicit, inherited or default locality.
            LifecycleError: the explicit locality contradicts the parent's.
        """
        explicit = getattr(desired, self.locality_field, None)
        inherited: str | None = None
        parent_id: str | None = None
        if self.parent is not None:
            inherited, parent_id = split_locality(
                getattr(desired, self.parent.field), scope=self.scope
            )
            conflict = locality_conflict(explicit, inherited)
            if conflict:
                raise LifecycleError(f"{desired.address}: {conflict}")
        locality = resolve_locality(explicit, self._default_locality(ctx), inherited)
        return locality, parent_id

    # ── Hooks ───────────────────────────────────────────────────────

    def build_create_request(self, ctx: EngineContext, desired: R) -> dict[str, Any]:
        body = build_api_body(desired, action="create")
        if self.parent is None:
            body["project_id"] = ctx.project_id
        return body

    def build_update_request(self, desired: R, changed: set[str]) -> dict[str, Any]:
        return build_api_body(desired, fields=changed, action="update")

    def flatten(
        self, handle: Handle, ident: Identifier, local: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Build stored attributes from a remote object.

        Remote values win for every readable API field. Local-only values are
        carried over from *local* (the desired config or the prior attributes).
        """
        attrs = extract_api_attrs(self.model, handle.attributes)
        for name in local_only_fields(self.model):
            if name in local:
                attrs[name] = local[name]
        if "name" not in attrs:
            attrs["name"] = local.get("name")
        attrs[self.locality_field] = ident.locality
        if self.parent is not None:
            attrs[self.parent.field] = ident.parent
        return attrs

    def changed_fields(
        self, desired: R, prior: Mapping[str, Any], configured: Iterable[str] = ()
    ) -> set[str]:
        """Updatable fields whose desired value differs from the stored one.

        An unset optional field only counts when it is listed in *configured*,
        i.e. it was set before and has been removed since.
        """
        strategies = collect_compare_strategies(self.model)
        force_new = force_new_fields(self.model)
        cleared = cleared_fields(desired, configured)
        changed: set[str] = set()
        for name, marker in api_fields(self.model).items():
            if not marker.update or name in force_new:
                continue
            value = getattr(desired, name)
            if value is None:
                if name in cleared and prior.get(name) is not None:
                    changed.add(name)
                continue
            if values_differ(value, prior.get(name), strategy=strategies.get(name)):
                changed.add(name)
        return changed

    def create_only_changes(self, desired: R, prior: Mapping[str, Any]) -> set[str]:
        """Changed fields that only a create request can carry."""
        strategies = collect_compare_strategies(self.model)
        force_new = force_new_fields(self.model)
        return {
            name
            for name, marker in api_fields(self.model).items()
            if marker.create
            and not marker.update
            and name not in force_new
            and values_differ(
                getattr(desired, name), prior.get(name), strategy=strategies.get(name)
            )
        }

    def update_side_fields(
        self,
        ctx: EngineContext,
        ident: Identifier,
        desired: R,
        fields: set[str],
        deadline: Deadline,
    ) -> None:
        """Push changes of ``side_update_fields`` through their own request."""
        _ = ctx, ident, desired, deadline
        raise NotImplementedError(f"{type(self).__name__} cannot update {sorted(fields)}")

    # ── Remote access ───────────────────────────────────────────────

    def _client(self, ctx: EngineContext) -> RemoteClient:
        return ctx.provider.client

    def _fetch(self, ctx: EngineContext, ident: Identifier) -> Handle:
        return self._client(ctx).get(
            self.api_resource, ident.locality, ident.remote_id, ident.sub_name
        )

    def _wait_self(self, ctx: EngineContext, ident: Identifier, deadline: Deadline) -> Handle:
        return wait_until_stable(
            lambda: self._fetch(ctx, ident),
            self.classify,
            deadline,
            what=f"{self.api_resource} {ident}",
            interval=ctx.provider.poll_interval,
        )

    def _wait_parent(
        self, ctx: EngineContext, locality: str, parent_id: str, deadline: Deadline
    ) -> Handle:
        assert self.parent is not None
        link = self.parent
        return wait_until_stable(
            lambda: self._client(ctx).get(link.api_resource, locality, parent_id),
            link.classify,
            deadline,
            what=f"{link.api_resource} {locality}/{parent_id}",
            interval=ctx.provider.poll_interval,
        )

    def _settle(
        self, ctx: EngineContext, ident: Identifier, *, vanish_ok: bool = False
    ) -> Callable[[Deadline], object]:
        """Conflict callback: wait for whichever object may be transitioning."""

        def _on_conflict(deadline: Deadline) -> None:
            try:
                if self.parent is not None:
                    self._wait_parent(ctx, ident.locality, ident.remote_id, deadline)
                else:
                    self._wait_self(ctx, ident, deadline)
            except ResourceVanishedError:
                if not vanish_ok:
                    raise

        return _on_conflict

    def _read_handle(
        self, ctx: EngineContext, ident: Identifier, deadline: Deadline
    ) -> Handle | None:
        """Fetch the object, waiting if it is mid-transition. ``None`` if absent."""
        if self.parent is not None:
            try:
                self._wait_parent(ctx, ident.locality, ident.remote_id, deadline)
            except ResourceVanishedError:
                logger.info("Parent of %s %s is gone", self.api_resource, ident)
                return None
        try:
            handle = self._fetch(ctx, ident)
        except NotFoundError:
            return None

        readiness = self.classify(handle)
        if readiness is Readiness.GONE:
            return None
        if readiness is Readiness.PENDING:
            try:
                handle = self._wait_self(ctx, ident, deadline)
            except ResourceVanishedError:
                return None
        return handle

    # ── Lifecycle operations ────────────────────────────────────────

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        if self.parent is None:
            return []
        value = getattr(desired, self.parent.field)
        if has_references(value):
            return []
        try:
            inherited, _ = split_locality(value, scope=self.scope)
        except MalformedIdentifierError as e:
            return [f"{desired.address}: {self.parent.field}: {e}"]
        conflict = locality_conflict(getattr(desired, self.locality_field, None), inherited)
        return [f"{desired.address}: {conflict}"] if conflict else []

    def validate_plan(
        self,
        ctx: EngineContext,
        desired: R,
        plan_ctx: PlanContext,
    ) -> list[str]:
        if self.parent is None:
            return []
        _ = ctx
        errors: list[str] = []
        field_value = getattr(desired, self.parent.field)
        for ref in desired.references():
            ref_type = plan_ctx.resource_type_of(ref)
            if ref_type is None:
                continue
            if f"${{{ref}." in field_value and ref_type != self.parent.resource_type:
                errors.append(
                    f"{desired.address}: {self.parent.field} must reference a "
                    f"{self.parent.resource_type}, got {ref_type}"
                )
        return errors

    def create(self, ctx: EngineContext, desired: R) -> tuple[str, dict[str, Any]]:
        locality, parent_id = self.resolve(ctx, desired)
        deadline = ctx.deadline(self.timeout_for(desired.timeouts, "create"))
        client = self._client(ctx)

        on_conflict: Callable[[Deadline], object] | None = None
        if self.parent is not None:
            assert parent_id is not None
            self._wait_parent(ctx, locality, parent_id, deadline)
            on_conflict = self._settle(ctx, Identifier(locality, parent_id))

        body = self.build_create_request(ctx, desired)
        handle = mutate(
            lambda: client.create(self.api_resource, locality, body, parent_id=parent_id),
            deadline,
            what=f"create {desired.address}",
            on_conflict=on_conflict,
        )
        assert handle is not None

        if parent_id is not None:
            ident = Identifier(locality, parent_id, handle.id)
        else:
            ident = Identifier(locality, handle.id)
        try:
            ident = self.decode(ident.encode())
        except MalformedIdentifierError as e:
            logger.warning(
                "%s: create returned id %r; check the %s list for an untracked object",
                desired.address,
                handle.id,
                self.api_resource,
            )
            raise LifecycleError(
                f"create {desired.address}: the API returned no usable identifier ({e.reason})"
            ) from e
        logger.debug("Created %s as %s", desired.address, ident)

        if self.asynchronous:
            try:
                handle = self._wait_self(ctx, ident, deadline)
            except LifecycleError:
                logger.warning(
                    "%s: remote object %s was created but never became ready; "
                    "it is not tracked in state (import or delete it manually)",
                    desired.address,
                    ident,
                )
                raise

        local = desired.model_dump(exclude_none=True, exclude={"address", "depends_on"})
        return ident.encode(), self.flatten(handle, ident, local)

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        ident = self.decode(prior.id)
        deadline = ctx.deadline(self.timeout_for(prior.attributes.get("timeouts"), "read"))
        handle = self._read_handle(ctx, ident, deadline)
        if handle is None:
            return None
        return self.flatten(handle, ident, prior.attributes)

    def update(self, ctx: EngineContext, desired: R, prior: ResourceInstance) -> dict[str, Any]:
        ident = self.decode(prior.id)
        deadline = ctx.deadline(self.timeout_for(desired.timeouts, "update"))
        client = self._client(ctx)

        side = self.create_only_changes(desired, prior.attributes)
        stuck = side - self.side_update_fields
        if stuck:
            raise LifecycleError(
                f"{desired.address}: {', '.join(sorted(stuck))} cannot be changed in place"
            )

        if self.parent is not None:
            self._wait_parent(ctx, ident.locality, ident.remote_id, deadline)

        changed = self.changed_fields(desired, prior.attributes, prior.configured)
        body = self.build_update_request(desired, changed)
        if body:
            mutate(
                lambda: client.update(
                    self.api_resource,
                    ident.locality,
                    ident.remote_id,
                    body,
                    sub_name=ident.sub_name,
                ),
                deadline,
                what=f"update {desired.address}",
                on_conflict=self._settle(ctx, ident),
            )
        else:
            logger.debug("%s: no remote fields changed", desired.address)

        if side:
            self.update_side_fields(ctx, ident, desired, side, deadline)

        handle = self._read_handle(ctx, ident, deadline)
        if handle is None:
            raise ResourceVanishedError(f"{desired.address} ({ident}) disappeared after update")
        local = desired.model_dump(exclude_none=True, exclude={"address", "depends_on"})
        return self.flatten(handle, ident, local)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        ident = self.decode(prior.id)
        deadline = ctx.deadline(self.timeout_for(prior.attributes.get("timeouts"), "delete"))
        client = self._client(ctx)

        if self.parent is not None:
            try:
                self._wait_parent(ctx, ident.locality, ident.remote_id, deadline)
            except ResourceVanishedError:
                logger.info("%s: parent already gone, nothing to delete", prior.address)
                return

        mutate(
            lambda: client.delete(
                self.api_resource, ident.locality, ident.remote_id, ident.sub_name
            ),
            deadline,
            what=f"delete {prior.address}",
            on_conflict=self._settle(ctx, ident, vanish_ok=True),
            missing_ok=True,
        )
