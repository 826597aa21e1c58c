"""Remote API client for Scaleway."""

from scw_provisioner.api.client import ROUTES, RemoteClient, Route, ScalewayClient
from scw_provisioner.api.errors import ApiError, ConflictError, NotFoundError, TransportError
from scw_provisioner.api.types import Handle

__all__ = [
    "ROUTES",
    "ApiError",
    "ConflictError",
    "Handle",
    "NotFoundError",
    "RemoteClient",
    "Route",
    "ScalewayClient",
    "TransportError",
]
