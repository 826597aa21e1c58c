"""Engine-facing handler interfaces."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from scw_provisioner.engine.waiter import Deadline
from scw_provisioner.resources.base import Resource

if TYPE_CHECKING:
    import threading
    from collections.abc import Mapping

    from scw_provisioner.core.provider import ScalewayProvider
    from scw_provisioner.core.state import ResourceInstance, State

R = TypeVar("R", bound=Resource)


@dataclass(frozen=True)
class EngineContext:
    """Context passed to handlers.

    ``cancel`` is shared by every operation of one apply; setting it makes
    in-flight waits return promptly with ``OperationCanceled``. Without it,
    waits use ``sleep`` so tests can drive a fake clock.
    """

    provider: ScalewayProvider
    project_id: str
    cancel: threading.Event | None = None
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep

    def deadline(self, seconds: float) -> Deadline:
        return Deadline(seconds, cancel=self.cancel, clock=self.clock, sleep=self.sleep)


class PlanContext:
    """Merged view of desired and existing resources for plan-level validation.

    Desired resources take precedence over state entries with the same address.
    """

    def __init__(self, all_desired: Mapping[str, Resource], state: State) -> None:
        self._types: dict[str, str] = {
            addr: inst.resource_type for addr, inst in state.resources.items()
        }
        self._types.update({addr: r.resource_type for addr, r in all_desired.items()})

    def address_exists(self, address: str) -> bool:
        """Check if an address exists in desired or state."""
        return address in self._types

    def resource_type_of(self, address: str) -> str | None:
        return self._types.get(address)


class ResourceHandler(Generic[R]):
    """Base class for resource handlers.

    Handlers are responsible for translating resources into Scaleway API calls.
    Subclass and override the CRUD methods. Validation methods are optional.
    """

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        """Single-resource validation. No cross-resource context needed.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired
        return []

    def validate_plan(
        self,
        ctx: EngineContext,
        desired: R,
        plan_ctx: PlanContext,
    ) -> list[str]:
        """Cross-resource validation with access to all resources.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired, plan_ctx
        return []

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Read the resource remotely. Return None if it no longer exists."""
        raise NotImplementedError

    def create(self, ctx: EngineContext, desired: R) -> tuple[str, dict[str, Any]]:
        """Create the resource. Return the identifier and stored attributes."""
        raise NotImplementedError

    def update(self, ctx: EngineContext, desired: R, prior: ResourceInstance) -> dict[str, Any]:
        """Update the resource in place. Return stored attributes."""
        raise NotImplementedError

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Delete the resource. Deleting an absent resource succeeds."""
        raise NotImplementedError

    def import_id(self, raw: str) -> str:
        """Validate an operator-supplied identifier without calling the API."""
        raise NotImplementedError
