"""Engine error types."""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource type has no registration/handler."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateAddressError(EngineError):
    """Raised when multiple desired resources share the same address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class DependencyCycleError(EngineError):
    """Raised when dependencies contain a cycle."""

    def __init__(self, addresses: list[str]) -> None:
        msg = "Dependency cycle detected"
        if addresses:
            msg += f": {', '.join(addresses)}"
        super().__init__(msg)
        self.addresses = addresses


class StateProjectMismatchError(EngineError):
    """Raised when the on-disk state belongs to a different Scaleway project."""

    def __init__(self, expected: str, got: str) -> None:
        super().__init__(f"State project_id mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class ValidationError(EngineError):
    """One or more resources failed plan validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class ImportNotFoundError(EngineError):
    """Raised when importing an identifier that does not exist remotely."""

    def __init__(self, address: str, resource_id: str) -> None:
        super().__init__(f"Cannot import {address}: remote object {resource_id} does not exist")
        self.address = address
        self.resource_id = resource_id


class AlreadyManagedError(EngineError):
    """Raised when importing an address or identifier that state already tracks."""


class ApplyError(EngineError):
    """Raised when an apply fails mid-way through.

    Carries the partial result (what was applied before the failure) so
    callers can inspect progress.  The original exception is chained via
    ``__cause__``.
    """

    def __init__(self, *, applied: list[Any], address: str, message: str) -> None:
        from scw_provisioner.engine.types import ApplyResult

        self.result = ApplyResult(applied=applied)
        self.address = address
        super().__init__(f"Apply failed on {address}: {message}")

    @property
    def retryable(self) -> bool:
        """Whether re-running the apply later may succeed without config changes."""
        return bool(getattr(self.__cause__, "retryable", False))


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled (e.g., Ctrl-C)."""


# ── Lifecycle errors ────────────────────────────────────────────────


class LifecycleError(EngineError):
    """Base class for failures of a single resource lifecycle operation.

    ``retryable`` tells callers whether running the whole operation again later
    may succeed (``True``) or whether the configuration itself is wrong.
    """

    retryable = False


class MalformedIdentifierError(LifecycleError):
    """A persisted or operator-supplied identifier could not be parsed."""

    def __init__(self, raw: str, reason: str) -> None:
        super().__init__(f"Malformed identifier {raw!r}: {reason}")
        self.raw = raw
        self.reason = reason


class NoLocalityError(LifecycleError):
    """No explicit, inherited or default locality is available."""


class RemoteProvisioningError(LifecycleError):
    """The remote object reached a failure status."""

    def __init__(self, what: str, status: str | None, payload: dict[str, Any]) -> None:
        super().__init__(f"{what} reached failure status {status!r}")
        self.status = status
        self.payload = payload


class ResourceVanishedError(LifecycleError):
    """An object expected to settle disappeared while being waited on."""


class OperationTimeout(LifecycleError):
    """The caller-supplied deadline elapsed."""

    retryable = True


class OperationCanceled(LifecycleError):
    """The caller aborted the operation."""

    retryable = True
