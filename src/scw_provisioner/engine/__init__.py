"""Plan and apply engine for Scaleway resources."""

from scw_provisioner.engine.engine import DEFAULT_PARALLELISM, ScalewayEngine
from scw_provisioner.engine.errors import (
    AlreadyManagedError,
    ApplyCanceled,
    ApplyError,
    DependencyCycleError,
    DuplicateAddressError,
    EngineError,
    ImportNotFoundError,
    LifecycleError,
    MalformedIdentifierError,
    NoLocalityError,
    OperationCanceled,
    OperationTimeout,
    RemoteProvisioningError,
    ResourceVanishedError,
    StalePlanError,
    StateLockError,
    StateProjectMismatchError,
    UnknownResourceTypeError,
    ValidationError,
)
from scw_provisioner.engine.handlers import EngineContext, PlanContext, ResourceHandler
from scw_provisioner.engine.identifier import Identifier
from scw_provisioner.engine.lifecycle import LifecycleHandler, ParentLink
from scw_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from scw_provisioner.engine.types import Action, ApplyResult, Plan, PlanMetadata, ResourceChange

__all__ = [
    "DEFAULT_PARALLELISM",
    "Action",
    "AlreadyManagedError",
    "ApplyCanceled",
    "ApplyError",
    "ApplyResult",
    "DependencyCycleError",
    "DuplicateAddressError",
    "EngineContext",
    "EngineError",
    "Identifier",
    "ImportNotFoundError",
    "LifecycleError",
    "LifecycleHandler",
    "MalformedIdentifierError",
    "NoLocalityError",
    "OperationCanceled",
    "OperationTimeout",
    "ParentLink",
    "Plan",
    "PlanContext",
    "PlanMetadata",
    "RemoteProvisioningError",
    "ResourceChange",
    "ResourceHandler",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "ResourceVanishedError",
    "ScalewayEngine",
    "StalePlanError",
    "StateLockError",
    "StateProjectMismatchError",
    "UnknownResourceTypeError",
    "ValidationError",
]
