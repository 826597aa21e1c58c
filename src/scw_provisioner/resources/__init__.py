"""Scaleway resource definitions."""

from scw_provisioner.resources.base import (
    RegionalResource,
    Resource,
    Timeouts,
    ZonalResource,
)
from scw_provisioner.resources.rdb import (
    RdbDatabaseResource,
    RdbInstanceResource,
    RdbUserResource,
)
from scw_provisioner.resources.vpc import PublicGatewayDhcpResource, PublicGatewayResource

__all__ = [
    "PublicGatewayDhcpResource",
    "PublicGatewayResource",
    "RdbDatabaseResource",
    "RdbInstanceResource",
    "RdbUserResource",
    "RegionalResource",
    "Resource",
    "Timeouts",
    "ZonalResource",
]
