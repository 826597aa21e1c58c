"""Managed database handlers: instances, users and logical databases."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from scw_provisioner.engine.lifecycle import LifecycleHandler, ParentLink
from scw_provisioner.engine.retry import mutate
from scw_provisioner.engine.waiter import status_classifier
from scw_provisioner.resources.rdb import (
    RdbDatabaseResource,
    RdbInstanceResource,
    RdbUserResource,
)

if TYPE_CHECKING:
    from scw_provisioner.api.types import Handle
    from scw_provisioner.engine.handlers import EngineContext
    from scw_provisioner.engine.identifier import Identifier
    from scw_provisioner.engine.waiter import Deadline, Readiness

logger = logging.getLogger(__name__)

RDB_DEFAULT_TIMEOUT = 15 * 60.0

# Anything not listed (provisioning, configuring, backuping, autohealing, ...)
# is a transition the instance will leave on its own.
classify_rdb_instance = status_classifier(
    ready={"ready"},
    error={"error", "locked", "disk_full"},
)

RDB_INSTANCE_PARENT = ParentLink(
    field="instance_id",
    api_resource="rdb_instance",
    resource_type=RdbInstanceResource.resource_type,
    classify=classify_rdb_instance,
)


class RdbInstanceHandler(LifecycleHandler[RdbInstanceResource]):
    """Database instances are provisioned asynchronously.

    The instance API only takes the default user's password at creation; a
    later change is sent as an update of that user.
    """

    model = RdbInstanceResource
    api_resource = "rdb_instance"
    scope = "region"
    asynchronous = True
    default_timeout = RDB_DEFAULT_TIMEOUT
    side_update_fields = frozenset({"password"})

    def classify(self, handle: Handle) -> Readiness:
        return classify_rdb_instance(handle)

    def update_side_fields(
        self,
        ctx: EngineContext,
        ident: Identifier,
        desired: RdbInstanceResource,
        fields: set[str],
        deadline: Deadline,
    ) -> None:
        _ = fields
        client = self._client(ctx)
        logger.debug("%s: rotating password of default user %s", desired.address, desired.user_name)
        mutate(
            lambda: client.update(
                "rdb_user",
                ident.locality,
                ident.remote_id,
                {"password": desired.password},
                sub_name=desired.user_name,
            ),
            deadline,
            what=f"update {desired.address} password",
            on_conflict=self._settle(ctx, ident),
        )


class RdbUserHandler(LifecycleHandler[RdbUserResource]):
    """Users live on an instance and can only be changed while it is ready.

    The API has no single-user GET; the client looks users up by name.
    """

    model = RdbUserResource
    api_resource = "rdb_user"
    scope = "region"
    parent = RDB_INSTANCE_PARENT
    default_timeout = RDB_DEFAULT_TIMEOUT


class RdbDatabaseHandler(LifecycleHandler[RdbDatabaseResource]):
    model = RdbDatabaseResource
    api_resource = "rdb_database"
    scope = "region"
    parent = RDB_INSTANCE_PARENT
    default_timeout = RDB_DEFAULT_TIMEOUT
