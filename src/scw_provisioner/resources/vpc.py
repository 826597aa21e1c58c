"""VPC public gateway resource models."""

from __future__ import annotations

from typing import Annotated, ClassVar, Self

from pydantic import Field, model_validator

from scw_provisioner.resources.base import ZonalResource
from scw_provisioner.resources.markers import ApiField, Compare, ForceNew


class PublicGatewayResource(ZonalResource):
    """A VPC public gateway."""

    resource_type: ClassVar[str] = "scaleway_vpc_public_gateway"
    plan_priority: ClassVar[int] = 10

    name: Annotated[str, ApiField("name")] = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    type: Annotated[str, ApiField("type", read_path="type.name"), ForceNew()] = "VPC-GW-S"
    tags: Annotated[list[str], ApiField("tags"), Compare("set")] = Field(default_factory=list)
    upstream_dns_servers: Annotated[
        list[str], ApiField("upstream_dns_servers", update=False), ForceNew()
    ] = Field(default_factory=list)
    bastion_enabled: Annotated[
        bool, ApiField("enable_bastion", read_path="bastion_enabled")
    ] = False
    bastion_port: Annotated[int, ApiField("bastion_port")] = Field(default=61000, ge=1, le=65535)
    smtp_enabled: Annotated[bool, ApiField("enable_smtp", read_path="smtp_enabled")] = False

    ip_address: Annotated[str | None, ApiField("ip.address", create=False, update=False)] = None


class PublicGatewayDhcpResource(ZonalResource):
    """DHCP configuration for public gateways.

    Created synchronously; every setting is updatable in place. Lease timers
    are expressed in seconds.
    """

    resource_type: ClassVar[str] = "scaleway_vpc_public_gateway_dhcp"

    subnet: Annotated[str, ApiField("subnet")] = Field(min_length=1)
    gateway_address: Annotated[str | None, ApiField("address")] = None
    pool_low: Annotated[str | None, ApiField("pool_low")] = None
    pool_high: Annotated[str | None, ApiField("pool_high")] = None
    enable_dynamic: Annotated[bool, ApiField("enable_dynamic")] = True
    valid_lifetime: Annotated[int, ApiField("valid_lifetime")] = Field(default=3600, gt=0)
    renew_timer: Annotated[int, ApiField("renew_timer")] = Field(default=3000, gt=0)
    rebind_timer: Annotated[int, ApiField("rebind_timer")] = Field(default=3060, gt=0)
    push_default_route: Annotated[bool, ApiField("push_default_route")] = True
    push_dns_server: Annotated[bool, ApiField("push_dns_server")] = True
    dns_servers_override: Annotated[list[str], ApiField("dns_servers_override")] = Field(
        default_factory=list
    )
    dns_search: Annotated[list[str], ApiField("dns_search")] = Field(default_factory=list)
    dns_local_name: Annotated[str | None, ApiField("dns_local_name")] = None

    @model_validator(mode="after")
    def _check_timers(self) -> Self:
        if not self.renew_timer < self.rebind_timer < self.valid_lifetime:
            raise ValueError("expected renew_timer < rebind_timer < valid_lifetime")
        return self
