"""Default resource type registry factory."""

from __future__ import annotations

from scw_provisioner.engine.rdb_handler import (
    RdbDatabaseHandler,
    RdbInstanceHandler,
    RdbUserHandler,
)
from scw_provisioner.engine.registry import ResourceTypeRegistry
from scw_provisioner.engine.vpc_handler import PublicGatewayDhcpHandler, PublicGatewayHandler
from scw_provisioner.resources.rdb import (
    RdbDatabaseResource,
    RdbInstanceResource,
    RdbUserResource,
)
from scw_provisioner.resources.vpc import PublicGatewayDhcpResource, PublicGatewayResource


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types and handlers."""
    registry = ResourceTypeRegistry()

    registry.register(RdbInstanceResource, RdbInstanceHandler())
    registry.register(RdbUserResource, RdbUserHandler())
    registry.register(RdbDatabaseResource, RdbDatabaseHandler())

    registry.register(PublicGatewayResource, PublicGatewayHandler())
    registry.register(PublicGatewayDhcpResource, PublicGatewayDhcpHandler())

    return registry
