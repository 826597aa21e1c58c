"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import threading
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from scw_provisioner import __version__
from scw_provisioner.core.state import (
    ResourceInstance,
    State,
    compute_attributes_hash,
    compute_state_digest,
)
from scw_provisioner.engine.diff import values_differ
from scw_provisioner.engine.errors import (
    AlreadyManagedError,
    ApplyCanceled,
    ApplyError,
    DuplicateAddressError,
    ImportNotFoundError,
    StalePlanError,
    StateProjectMismatchError,
    ValidationError,
)
from scw_provisioner.engine.graph import DependencyGraph
from scw_provisioner.engine.handlers import EngineContext, PlanContext
from scw_provisioner.engine.lock import StateLock
from scw_provisioner.engine.operations import (
    BarrierOperation,
    CreateOperation,
    DeleteOperation,
    ReplaceOperation,
    UpdateOperation,
)
from scw_provisioner.engine.types import Action, ApplyResult, Plan, PlanMetadata, ResourceChange
from scw_provisioner.resources.interpolation import resolve_references
from scw_provisioner.resources.markers import (
    cleared_fields,
    collect_compare_strategies,
    force_new_fields,
    local_only_fields,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ResourceChange, Literal["start", "done"]], None]

DEFAULT_PARALLELISM = 10

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from scw_provisioner.core.provider import ScalewayProvider
    from scw_provisioner.engine.operations import Operation
    from scw_provisioner.engine.registry import ResourceTypeRegistry
    from scw_provisioner.resources.base import Resource
    from scw_provisioner.resources.interpolation import Reference


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _compute_config_digest(resources: Sequence[Resource]) -> str:
    items: list[dict[str, Any]] = []
    for r in resources:
        desired = r.model_dump(exclude_none=True, exclude={"address"})
        planned = dict(desired)
        planned.pop("depends_on", None)
        items.append(
            {
                "address": r.address,
                "resource_type": r.resource_type,
                "planned": planned,
            }
        )
    items.sort(key=lambda x: x["address"])
    return _sha256_hex(_canonical_json(items))


def _state_lookup(
    state: State, unknown: set[str] | None = None
) -> Callable[[Reference], str | None]:
    """Resolve ``${type.name.attr}`` against state; ``attr == "id"`` is the identifier.

    Addresses in *unknown* resolve to nothing: their values are only known
    after apply.
    """

    def _lookup(ref: Reference) -> str | None:
        if unknown is not None and ref.address in unknown:
            return None
        inst = state.resources.get(ref.address)
        if inst is None:
            return None
        value = inst.id if ref.attribute == "id" else inst.attributes.get(ref.attribute)
        return None if value is None else str(value)

    return _lookup


class ScalewayEngine:
    """Terraform-like plan/apply engine for Scaleway resources."""

    def __init__(
        self,
        *,
        provider: ScalewayProvider,
        project_id: str,
        state_path: Path,
        registry: ResourceTypeRegistry,
    ) -> None:
        self._provider = provider
        self._project_id = project_id
        self._state_path = state_path
        self._registry = registry

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def state_path(self) -> Path:
        return self._state_path

    def _ctx(self, cancel: threading.Event | None = None) -> EngineContext:
        return EngineContext(
            provider=self._provider,
            project_id=self._project_id,
            cancel=cancel if cancel is not None else threading.Event(),
        )

    def _load_state(self) -> State:
        state = State.load_or_create(self._state_path, project_id=self._project_id)
        if state.project_id != self._project_id:
            raise StateProjectMismatchError(self._project_id, state.project_id)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def _load_state_for_apply(self, plan: Plan) -> State:
        if self._state_path.exists():
            return self._load_state()
        # If no state exists, bootstrap from the plan metadata (saved-plan semantics).
        return State(
            project_id=self._project_id,
            lineage=plan.metadata.state_lineage,
            serial=plan.metadata.state_serial,
        )

    def _persist(self, state: State) -> None:
        state.serial += 1
        state.save(self._state_path)

    # ── Refresh ─────────────────────────────────────────────────────

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from Scaleway")
        changed = False
        ctx = self._ctx()

        for address, inst in list(state.resources.items()):
            handler = self._registry.get(inst.resource_type).handler
            attrs = handler.read(ctx, inst)
            if attrs is None:
                logger.info("%s (%s) no longer exists remotely", address, inst.id)
                del state.resources[address]
                changed = True
                continue

            new_hash = compute_attributes_hash(attrs)
            if attrs != inst.attributes or new_hash != inst.attributes_hash:
                inst.attributes = attrs
                inst.attributes_hash = new_hash
                inst.updated_at = datetime.now(UTC)
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from Scaleway. Returns (pre_refresh, post_refresh)."""
        with StateLock(self._state_path):
            state = self._load_state()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                self._persist(state)
            return snapshot, state

    # ── Import ──────────────────────────────────────────────────────

    def import_resource(self, resource_type: str, name: str, raw_id: str) -> ResourceInstance:
        """Start tracking an existing remote object under ``resource_type.name``.

        The identifier is parsed without any remote call, then read once.

        Raises:
            MalformedIdentifierError: ``raw_id`` does not parse for this type.
            ImportNotFoundError: nothing exists remotely under that identifier.
            AlreadyManagedError: the address or identifier is already in state.
        """
        handler = self._registry.get(resource_type).handler
        resource_id = handler.import_id(raw_id)
        address = f"{resource_type}.{name}"

        with StateLock(self._state_path):
            state = self._load_state()
            if address in state.resources:
                raise AlreadyManagedError(f"{address} is already managed")
            existing = state.find_by_id(resource_type, resource_id)
            if existing is not None:
                raise AlreadyManagedError(f"{resource_id} is already managed as {existing.address}")

            inst = ResourceInstance(
                address=address,
                resource_type=resource_type,
                name=name,
                id=resource_id,
                attributes={"name": name},
            )
            attrs = handler.read(self._ctx(), inst)
            if attrs is None:
                raise ImportNotFoundError(address, resource_id)

            inst.attributes = attrs
            inst.attributes_hash = compute_attributes_hash(attrs)
            state.resources[address] = inst
            self._persist(state)
            logger.info("Imported %s as %s", resource_id, address)
            return inst

    # ── Plan ────────────────────────────────────────────────────────

    @staticmethod
    def _resolve_deps(desired_by_addr: dict[str, Resource]) -> dict[str, list[str]]:
        """Build dependency map: explicit depends_on + implicit from ``${…}`` references.

        Returns addr → full dep list without mutating the Resource objects.
        """
        dep_map: dict[str, list[str]] = {}
        for addr, r in desired_by_addr.items():
            deps = list(r.depends_on)
            for ref_addr in r.references():
                if ref_addr != addr and ref_addr not in deps:
                    deps.append(ref_addr)
            dep_map[addr] = deps
        return dep_map

    def _validate(self, desired_by_addr: dict[str, Resource], state: State) -> None:
        ctx = self._ctx()
        errors: list[str] = []
        for r in desired_by_addr.values():
            errors.extend(self._registry.get(r.resource_type).handler.validate(ctx, r))

        plan_ctx = PlanContext(desired_by_addr, state)
        for r in desired_by_addr.values():
            handler = self._registry.get(r.resource_type).handler
            errors.extend(handler.validate_plan(ctx, r, plan_ctx))
            for dep in r.depends_on:
                if not plan_ctx.address_exists(dep):
                    errors.append(f"Resource '{r.address}' depends on unknown address '{dep}'")
            for ref in r.references():
                if not plan_ctx.address_exists(ref):
                    errors.append(f"Resource '{r.address}' references unknown address '{ref}'")
        if errors:
            raise ValidationError(errors)

    def _classify_change(
        self,
        addr: str,
        resource: Resource,
        state: State,
        deps: list[str],
        lookup: Callable[[Reference], str | None],
    ) -> ResourceChange:
        """Classify a single resource as CREATE, UPDATE, REPLACE, or NOOP."""
        desired_dump = resource.model_dump(exclude_none=True, exclude={"address"})
        desired_dump["depends_on"] = deps
        planned = {k: v for k, v in desired_dump.items() if k != "depends_on"}
        resolved_planned = resolve_references(planned, lookup)

        prior_inst = state.resources.get(addr)
        if prior_inst is None:
            logger.debug("Classified %s as create", addr)
            return ResourceChange(
                address=addr,
                resource_type=resource.resource_type,
                action=Action.CREATE,
                desired=desired_dump,
                planned=resolved_planned,
            )

        prior = dict(prior_inst.attributes)
        compare_strategies = collect_compare_strategies(resource)
        diff = {
            k: {"from": prior.get(k), "to": v}
            for k, v in resolved_planned.items()
            if values_differ(v, prior.get(k), strategy=compare_strategies.get(k))
        }
        for k in sorted(cleared_fields(resource, prior_inst.configured)):
            if prior.get(k) is not None:
                diff[k] = {"from": prior[k], "to": None}
        # Imported objects have no recorded write-only values; adopting them is not a replacement.
        adopted = local_only_fields(resource) - prior.keys()
        replace_fields = sorted((set(diff) - adopted) & force_new_fields(resource))

        if replace_fields:
            action = Action.REPLACE
        elif diff:
            action = Action.UPDATE
        else:
            action = Action.NOOP
        logger.debug("Classified %s as %s", addr, action.value)
        return ResourceChange(
            address=addr,
            resource_type=resource.resource_type,
            action=action,
            id=prior_inst.id,
            desired=desired_dump,
            prior=prior,
            planned=resolved_planned,
            diff=diff or None,
            replace_fields=replace_fields,
        )

    def _plan_deletes(self, state: State, addrs: set[str]) -> list[ResourceChange]:
        """Plan delete changes for the given addresses in reverse dependency order."""
        order = self._delete_order(state, addrs)
        changes: list[ResourceChange] = []
        for addr in order:
            inst = state.resources[addr]
            self._registry.get(inst.resource_type)  # fail early if unknown
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=inst.resource_type,
                    action=Action.DELETE,
                    id=inst.id,
                    prior=dict(inst.attributes),
                )
            )
        return changes

    def plan(
        self, resources: Sequence[Resource], *, destroy: bool = False, refresh: bool = True
    ) -> Plan:
        logger.info(
            "Planning %d resources (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        # Only lock when refresh may write state.
        lock_cm = StateLock(self._state_path) if refresh else contextlib.nullcontext()
        with lock_cm:
            state = self._load_state()

            if refresh and self._refresh_state_in_place(state):
                self._persist(state)

            desired_by_addr: dict[str, Resource] = {}
            for r in resources:
                if r.address in desired_by_addr:
                    raise DuplicateAddressError(r.address)
                self._registry.get(r.resource_type)
                desired_by_addr[r.address] = r

            if not destroy:
                self._validate(desired_by_addr, state)

            dep_map = self._resolve_deps(desired_by_addr)
            desired_addrs = set(desired_by_addr)
            state_addrs = set(state.resources)

            if destroy:
                changes = self._plan_deletes(state, state_addrs)
            else:
                topo_deps = {a: [d for d in ds if d in desired_addrs] for a, ds in dep_map.items()}
                priorities = {addr: r.plan_priority for addr, r in desired_by_addr.items()}
                order = DependencyGraph(
                    desired_addrs, topo_deps, priorities=priorities
                ).topological_order()

                # Identifiers of resources created or replaced by this plan
                # are unknown until apply.
                unknown: set[str] = set()
                lookup = _state_lookup(state, unknown)
                changes = []
                for addr in order:
                    change = self._classify_change(
                        addr, desired_by_addr[addr], state, dep_map[addr], lookup
                    )
                    if change.action in (Action.CREATE, Action.REPLACE):
                        unknown.add(addr)
                    changes.append(change)
                changes.extend(self._plan_deletes(state, state_addrs - desired_addrs))

            metadata = PlanMetadata(
                project_id=self._project_id,
                created_at=datetime.now(UTC),
                destroy=destroy,
                refresh=refresh,
                state_lineage=state.lineage,
                state_serial=state.serial,
                state_digest=compute_state_digest(state),
                config_digest=_compute_config_digest([] if destroy else resources),
                engine_version=__version__,
            )

            return Plan(metadata=metadata, changes=changes)

    def _delete_order(self, state: State, delete_set: set[str]) -> list[str]:
        dep_map: dict[str, list[str]] = {}
        priorities: dict[str, int] = {}
        for addr in delete_set:
            inst = state.resources[addr]
            dep_map[addr] = [d for d in inst.dependencies if d in delete_set]
            priorities[addr] = self._registry.get(inst.resource_type).model.plan_priority
        return DependencyGraph(
            delete_set, dep_map, priorities=priorities
        ).reverse_topological_order()

    # ── Apply ───────────────────────────────────────────────────────

    def _operation_graph(self, ops: dict[str, Operation]) -> DependencyGraph:
        dep_map = {k: op.deps for k, op in ops.items()}
        priorities: dict[str, int] = {}
        for k, op in ops.items():
            if op.change is not None:
                reg = self._registry.get(op.change.resource_type)
                priorities[k] = reg.model.plan_priority
        return DependencyGraph(ops.keys(), dep_map, priorities=priorities)

    def _build_apply_operations(self, plan: Plan, state: State) -> dict[str, Operation]:
        ops: dict[str, Operation] = {}
        create_update_set: set[str] = set()
        delete_set: set[str] = set()

        for c in plan.changes:
            op: Operation
            match c.action:
                case Action.NOOP:
                    continue
                case Action.CREATE:
                    op = CreateOperation(key=c.address, change=c)
                    create_update_set.add(c.address)
                case Action.UPDATE:
                    op = UpdateOperation(key=c.address, change=c)
                    create_update_set.add(c.address)
                case Action.REPLACE:
                    op = ReplaceOperation(key=c.address, change=c)
                    create_update_set.add(c.address)
                case Action.DELETE:
                    op = DeleteOperation(key=c.address, change=c)
                    delete_set.add(c.address)
                case _:
                    raise ValueError(f"Unknown action: {c.action}")

            if op.key in ops:
                raise ValueError(f"Duplicate operation key in plan: {op.key}")
            ops[op.key] = op

        # create/update: dependencies must run before dependents
        for addr in create_update_set:
            op = ops[addr]
            assert op.change is not None
            if op.change.desired is None:
                raise ValueError(f"Missing desired config for {op.change.action.value}: {addr}")
            deps = op.change.desired.get("depends_on") or []
            if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
                raise ValueError(f"Invalid depends_on for {addr}: expected list[str]")
            op.deps.extend([d for d in deps if d in create_update_set])

        # deletes: dependents must be deleted before dependencies (invert edges)
        for addr in delete_set:
            inst = state.resources.get(addr)
            if inst is None:
                raise ValueError(f"Missing state for delete operation: {addr}")
            for dep in inst.dependencies:
                if dep in delete_set:
                    ops[dep].deps.append(addr)

        # Ensure create/update runs before deletes (Terraform-like default ordering).
        if create_update_set and delete_set:
            barrier_key = "__engine__.apply_barrier"
            if barrier_key in ops:
                raise ValueError(f"Barrier operation key conflicts with plan: {barrier_key}")

            ops[barrier_key] = BarrierOperation(key=barrier_key, deps=sorted(create_update_set))
            for addr in delete_set:
                ops[addr].deps.append(barrier_key)

        return ops

    def _check_plan_is_current(self, plan: Plan, state: State) -> None:
        if state.project_id != self._project_id:
            raise StateProjectMismatchError(self._project_id, state.project_id)
        if state.lineage != plan.metadata.state_lineage:
            raise StalePlanError("State lineage changed; re-run plan")
        if state.serial != plan.metadata.state_serial:
            raise StalePlanError("State serial changed; re-run plan")
        if compute_state_digest(state) != plan.metadata.state_digest:
            raise StalePlanError("State digest changed; re-run plan")

    def apply(
        self,
        plan: Plan,
        *,
        progress: ProgressCallback | None = None,
        parallelism: int = DEFAULT_PARALLELISM,
    ) -> ApplyResult:
        """Execute a plan.

        Independent operations run concurrently on up to ``parallelism``
        worker threads; state is only touched and saved on this thread. After
        the first failure no new operation starts, in-flight ones finish, and
        ``ApplyError`` is raised with what was applied so far.
        """
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")

        with StateLock(self._state_path):
            state = self._load_state_for_apply(plan)
            self._check_plan_is_current(plan, state)

            cancel = threading.Event()
            ctx = self._ctx(cancel)
            ops = self._build_apply_operations(plan, state)
            scheduler = self._operation_graph(ops).scheduler()
            lookup = _state_lookup(state)
            logger.info("Applying %d operations (parallelism=%d)", len(ops), parallelism)

            applied: list[ResourceChange] = []
            failure: tuple[str, Exception] | None = None
            inflight: dict[Future[None], Operation] = {}

            def _finish(fut: Future[None], op: Operation) -> None:
                nonlocal failure
                scheduler.mark_done(op.key)
                exc = fut.exception()
                if exc is None:
                    if op.commit(state):
                        self._persist(state)
                        assert op.change is not None
                        applied.append(op.change)
                        if progress:
                            progress(op.change, "done")
                    return

                logger.debug("%s failed: %s", op.key, exc)
                if op.abort(state):
                    self._persist(state)
                if failure is None:
                    failure = (op.key, exc if isinstance(exc, Exception) else RuntimeError(exc))
                else:
                    logger.error("%s also failed: %s", op.key, exc)

            with ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="apply") as pool:
                try:
                    while not scheduler.finished:
                        if failure is None:
                            for key in scheduler.take_ready(parallelism - len(inflight)):
                                op = ops[key]
                                try:
                                    op.prepare(state=state, registry=self._registry, lookup=lookup)
                                except Exception as e:
                                    scheduler.mark_done(key)
                                    failure = (key, e)
                                    break
                                logger.debug("Applying %s: %s", op.key, type(op).__name__)
                                if progress and op.change is not None:
                                    progress(op.change, "start")
                                fut = pool.submit(op.execute, ctx=ctx, registry=self._registry)
                                inflight[fut] = op
                        if failure is not None:
                            skipped = scheduler.abandon()
                            if skipped:
                                logger.info("Skipping %d operations after failure", len(skipped))
                        if not inflight:
                            break

                        done, _ = wait(list(inflight), return_when=FIRST_COMPLETED)
                        for fut in done:
                            _finish(fut, inflight.pop(fut))
                except KeyboardInterrupt as e:
                    logger.info("Interrupted; waiting for %d in-flight operations", len(inflight))
                    cancel.set()
                    scheduler.abandon()
                    for fut in list(inflight):
                        wait([fut])
                        _finish(fut, inflight.pop(fut))
                    raise ApplyCanceled("Apply canceled") from e

            if failure is not None:
                address, exc = failure
                raise ApplyError(applied=applied, address=address, message=str(exc)) from exc
            return ApplyResult(applied=applied)
