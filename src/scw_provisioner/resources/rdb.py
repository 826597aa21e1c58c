"""Managed database (RDB) resource models."""

from __future__ import annotations

from typing import Annotated, ClassVar

from pydantic import Field

from scw_provisioner.resources.base import RegionalResource
from scw_provisioner.resources.markers import ApiField, Compare, ForceNew, LocalOnly, Ref


class RdbInstanceResource(RegionalResource):
    """A managed database instance.

    Provisioning is asynchronous: the instance goes through ``provisioning``
    and ``configuring`` before it is ``ready``.
    """

    resource_type: ClassVar[str] = "scaleway_rdb_instance"
    plan_priority: ClassVar[int] = 10

    name: Annotated[str, ApiField("name")] = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    engine: Annotated[str, ApiField("engine"), ForceNew()] = Field(min_length=1)
    node_type: Annotated[str, ApiField("node_type"), ForceNew()] = Field(min_length=1)
    is_ha_cluster: Annotated[bool, ApiField("is_ha_cluster"), ForceNew()] = False
    disable_backup: Annotated[bool, ApiField("disable_backup", update=False), ForceNew()] = False
    user_name: Annotated[str, ApiField("user_name", update=False), LocalOnly(), ForceNew()] = (
        Field(min_length=1)
    )
    password: Annotated[str, ApiField("password", update=False), LocalOnly()] = Field(
        min_length=1, repr=False
    )
    tags: Annotated[list[str], ApiField("tags"), Compare("set")] = Field(default_factory=list)

    endpoint_ip: Annotated[
        str | None, ApiField("endpoints.0.ip", create=False, update=False)
    ] = None
    endpoint_port: Annotated[
        int | None, ApiField("endpoints.0.port", create=False, update=False)
    ] = None


class RdbUserResource(RegionalResource):
    """A user on a managed database instance.

    Identified by ``region/instanceID/userName``.
    """

    resource_type: ClassVar[str] = "scaleway_rdb_user"

    instance_id: Annotated[str, Ref("scaleway_rdb_instance"), ForceNew()] = Field(min_length=1)
    name: Annotated[str, ApiField("name", update=False), ForceNew()] = Field(
        pattern=r"^[a-zA-Z0-9_-]+$"
    )
    password: Annotated[str, ApiField("password"), LocalOnly()] = Field(min_length=1, repr=False)
    is_admin: Annotated[bool, ApiField("is_admin")] = False


class RdbDatabaseResource(RegionalResource):
    """A logical database on a managed database instance.

    Identified by ``region/instanceID/databaseName``. Nothing is updatable in
    place.
    """

    resource_type: ClassVar[str] = "scaleway_rdb_database"

    instance_id: Annotated[str, Ref("scaleway_rdb_instance"), ForceNew()] = Field(min_length=1)
    name: Annotated[str, ApiField("name", update=False), ForceNew()] = Field(
        pattern=r"^[a-zA-Z0-9_-]+$"
    )

    owner: Annotated[str | None, ApiField("owner", create=False, update=False)] = None
    size: Annotated[int | None, ApiField("size", create=False, update=False)] = None
