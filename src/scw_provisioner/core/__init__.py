"""Core infrastructure components for scw-provisioner."""

from scw_provisioner.core.provider import ScalewayProvider, SecretKeyAuth
from scw_provisioner.core.state import ResourceInstance, State

__all__ = ["ResourceInstance", "ScalewayProvider", "SecretKeyAuth", "State"]
