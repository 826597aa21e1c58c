"""Scaleway provider - connection configuration and locality defaults."""

import threading
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, SecretStr

from scw_provisioner.api.client import DEFAULT_API_URL, RemoteClient, ScalewayClient
from scw_provisioner.engine.locality import region_of


class SecretKeyAuth(BaseModel):
    """API key authentication for Scaleway.

    Only the secret key authenticates requests; the access key is kept for
    display and auditing.
    """

    access_key: str | None = None
    secret_key: SecretStr


class ScalewayProvider(BaseModel):
    """Connection configuration for the Scaleway API.

    For normal use, provide ``auth``. For tests or embedding, use the
    ``from_client`` classmethod to inject any ``RemoteClient``.

    Examples:
        provider = ScalewayProvider(
            auth=SecretKeyAuth(secret_key="..."),
            region="fr-par",
        )

        provider = ScalewayProvider.from_client(fake_client, region="fr-par")
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    api_url: str = DEFAULT_API_URL
    auth: SecretKeyAuth | None = None
    region: str | None = None
    zone: str | None = None
    poll_interval: float = Field(default=5.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)

    # Injected client (for embedding / testing)
    _injected_client: RemoteClient | None = None
    # Apply workers share one client; it is built once under the lock.
    _client: RemoteClient | None = None
    _client_lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    @classmethod
    def from_client(cls, client: RemoteClient, **defaults: object) -> Self:
        """Create a provider with an injected client.

        Args:
            client: Any object implementing ``RemoteClient``
            **defaults: Provider fields such as ``region``, ``zone`` or ``poll_interval``
        """
        provider = cls.model_validate(defaults)
        provider._injected_client = client
        return provider

    @property
    def client(self) -> RemoteClient:
        """Get the API client, building it on first use."""
        if self._injected_client is not None:
            return self._injected_client
        with self._client_lock:
            if self._client is None:
                self._client = self._build_client()
            return self._client

    def _build_client(self) -> RemoteClient:
        if self.auth is None:
            raise ValueError(
                "Either provide auth (SCW_SECRET_KEY), or use ScalewayProvider.from_client() "
                "to inject a client"
            )

        return ScalewayClient(
            self.auth.secret_key.get_secret_value(),
            api_url=self.api_url,
            timeout=self.request_timeout,
        )

    @property
    def default_region(self) -> str | None:
        """Provider-wide default region, derived from the default zone if unset."""
        if self.region:
            return self.region
        if self.zone:
            return region_of(self.zone)
        return None

    @property
    def default_zone(self) -> str | None:
        """Provider-wide default zone; the first zone of the default region if unset."""
        if self.zone:
            return self.zone
        if self.region:
            return f"{self.region}-1"
        return None
