"""VPC public gateway handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from scw_provisioner.engine.lifecycle import LifecycleHandler
from scw_provisioner.engine.waiter import status_classifier
from scw_provisioner.resources.vpc import PublicGatewayDhcpResource, PublicGatewayResource

if TYPE_CHECKING:
    from collections.abc import Mapping

    from scw_provisioner.api.types import Handle
    from scw_provisioner.engine.handlers import EngineContext
    from scw_provisioner.engine.identifier import Identifier
    from scw_provisioner.engine.waiter import Readiness

logger = logging.getLogger(__name__)

classify_public_gateway = status_classifier(
    ready={"running", "stopped"},
    error={"failed"},
)


class PublicGatewayHandler(LifecycleHandler[PublicGatewayResource]):
    model = PublicGatewayResource
    api_resource = "vpc_public_gateway"
    scope = "zone"
    asynchronous = True
    default_timeout = 10 * 60.0

    def classify(self, handle: Handle) -> Readiness:
        return classify_public_gateway(handle)


# The API encodes lease timers as protobuf durations ("3600s").
_TIMER_FIELDS = ("valid_lifetime", "renew_timer", "rebind_timer")


def _to_duration(seconds: int) -> str:
    return f"{seconds}s"


def _from_duration(value: Any) -> Any:
    if isinstance(value, str) and value.endswith("s"):
        try:
            return int(float(value[:-1]))
        except ValueError:
            logger.debug("Unparseable duration %r left as-is", value)
    return value


class PublicGatewayDhcpHandler(LifecycleHandler[PublicGatewayDhcpResource]):
    """DHCP configurations are created synchronously and fully updatable."""

    model = PublicGatewayDhcpResource
    api_resource = "vpc_public_gateway_dhcp"
    scope = "zone"

    def _encode_timers(self, body: dict[str, Any]) -> dict[str, Any]:
        for name in _TIMER_FIELDS:
            if name in body:
                body[name] = _to_duration(body[name])
        return body

    def build_create_request(
        self, ctx: EngineContext, desired: PublicGatewayDhcpResource
    ) -> dict[str, Any]:
        return self._encode_timers(super().build_create_request(ctx, desired))

    def build_update_request(
        self, desired: PublicGatewayDhcpResource, changed: set[str]
    ) -> dict[str, Any]:
        return self._encode_timers(super().build_update_request(desired, changed))

    def flatten(
        self, handle: Handle, ident: Identifier, local: Mapping[str, Any]
    ) -> dict[str, Any]:
        attrs = super().flatten(handle, ident, local)
        for name in _TIMER_FIELDS:
            attrs[name] = _from_duration(attrs.get(name))
        return attrs
