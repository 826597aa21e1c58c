"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from scw_provisioner.api.client import DEFAULT_API_URL
from scw_provisioner.resources.base import (  # noqa: TC001
    Region,
    Resource,
    Zone,
)
from scw_provisioner.resources.rdb import (
    RdbDatabaseResource,  # noqa: TC001
    RdbInstanceResource,  # noqa: TC001
    RdbUserResource,  # noqa: TC001
)
from scw_provisioner.resources.vpc import (
    PublicGatewayDhcpResource,  # noqa: TC001
    PublicGatewayResource,  # noqa: TC001
)


class ProviderConfig(BaseSettings):
    """Scaleway provider connection settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``SCW_`` prefix.  Constructor kwargs take precedence.

    ``secret_key`` is typically provided via the ``SCW_SECRET_KEY`` environment
    variable rather than YAML to avoid committing secrets to version control.
    """

    model_config = SettingsConfigDict(env_prefix="SCW_")

    access_key: str | None = None
    secret_key: SecretStr | None = None
    project_id: str
    region: Region | None = None
    zone: Zone | None = None
    api_url: str = DEFAULT_API_URL
    poll_interval: float = Field(default=5.0, gt=0)


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


class Config(BaseModel):
    """Provisioning configuration; validates YAML structure directly."""

    provider: ProviderConfig
    state_path: Path = Path(".scw-state.json")
    rdb_instances: Annotated[list[RdbInstanceResource], BeforeValidator(_none_to_list)] = []
    rdb_users: Annotated[list[RdbUserResource], BeforeValidator(_none_to_list)] = []
    rdb_databases: Annotated[list[RdbDatabaseResource], BeforeValidator(_none_to_list)] = []
    public_gateways: Annotated[list[PublicGatewayResource], BeforeValidator(_none_to_list)] = []
    public_gateway_dhcps: Annotated[
        list[PublicGatewayDhcpResource],
        BeforeValidator(_none_to_list),
    ] = []
    config_dir: Path = Path()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def resources(self) -> list[Resource]:
        """All declared resources; ordering is not significant."""
        return [
            *self.rdb_instances,
            *self.rdb_users,
            *self.rdb_databases,
            *self.public_gateways,
            *self.public_gateway_dhcps,
        ]
