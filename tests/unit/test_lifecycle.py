"""Generic lifecycle controller behaviour, driven through the built-in handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, ClassVar

import pytest
from pydantic import Field

from scw_provisioner.api.errors import ConflictError, NotFoundError, TransportError
from scw_provisioner.core.state import ResourceInstance
from scw_provisioner.engine.errors import (
    LifecycleError,
    MalformedIdentifierError,
    NoLocalityError,
    OperationTimeout,
    RemoteProvisioningError,
    ResourceVanishedError,
)
from scw_provisioner.engine.handlers import EngineContext
from scw_provisioner.engine.lifecycle import LifecycleHandler, ParentLink
from scw_provisioner.engine.rdb_handler import RdbInstanceHandler, RdbUserHandler
from scw_provisioner.engine.vpc_handler import PublicGatewayHandler, classify_public_gateway
from scw_provisioner.resources.base import ZonalResource
from scw_provisioner.resources.markers import ApiField, ForceNew, LocalOnly, Ref
from scw_provisioner.resources.rdb import RdbInstanceResource, RdbUserResource
from scw_provisioner.resources.vpc import PublicGatewayResource

if TYPE_CHECKING:
    from conftest import FakeClient, FakeClock

PROJECT_ID = "00000000-0000-0000-0000-000000000000"
INSTANCE_ID = "11111111-1111-1111-1111-111111111111"


class GatewayUserResource(ZonalResource):
    """A zonal sub-resource, used to exercise three-part zonal identifiers."""

    resource_type: ClassVar[str] = "test_gateway_user"

    gateway_id: Annotated[str, Ref("scaleway_vpc_public_gateway"), ForceNew()] = Field(
        min_length=1
    )
    name: Annotated[str, ApiField("name", update=False), ForceNew()] = Field(
        pattern=r"^[a-zA-Z0-9_-]+$"
    )
    password: Annotated[str | None, ApiField("password"), LocalOnly()] = None


class GatewayUserHandler(LifecycleHandler[GatewayUserResource]):
    model = GatewayUserResource
    api_resource = "gateway_user"
    scope = "zone"
    parent = ParentLink(
        field="gateway_id",
        api_resource="vpc_public_gateway",
        resource_type="scaleway_vpc_public_gateway",
        classify=classify_public_gateway,
    )


class SealedGatewayResource(ZonalResource):
    """A top-level resource with a setting only the create request accepts."""

    resource_type: ClassVar[str] = "test_sealed_gateway"

    name: Annotated[str, ApiField("name")] = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    seed: Annotated[str, ApiField("seed", update=False), LocalOnly()] = "a"


class SealedGatewayHandler(LifecycleHandler[SealedGatewayResource]):
    model = SealedGatewayResource
    api_resource = "vpc_public_gateway"
    scope = "zone"


def _user(**overrides: object) -> RdbUserResource:
    values: dict[str, object] = {
        "name": "alice",
        "instance_id": f"fr-par/{INSTANCE_ID}",
        "password": "s3cret",
    }
    values.update(overrides)
    return RdbUserResource.model_validate(values)


def _prior(address: str, resource_id: str, **attrs: object) -> ResourceInstance:
    resource_type, name = address.split(".", 1)
    return ResourceInstance(
        address=address,
        resource_type=resource_type,
        name=name,
        id=resource_id,
        attributes=dict(attrs),
    )


def _user_prior(**attrs: object) -> ResourceInstance:
    values: dict[str, object] = {
        "name": "alice",
        "instance_id": f"fr-par/{INSTANCE_ID}",
        "region": "fr-par",
        "password": "s3cret",
        "is_admin": False,
    }
    values.update(attrs)
    return _prior("scaleway_rdb_user.alice", f"fr-par/{INSTANCE_ID}/alice", **values)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreate:
    def test_zonal_create_ready_on_first_fetch(
        self, ctx: EngineContext, client: FakeClient
    ) -> None:
        handler = PublicGatewayHandler()
        desired = PublicGatewayResource(name="gw", zone="fr-par-1")

        resource_id, attrs = handler.create(ctx, desired)

        (create,) = client.calls_of("create")
        remote_id = client.calls_of("get")[0][3]
        assert resource_id == f"fr-par-1/{remote_id}"
        assert create[2] == "fr-par-1"
        assert create[3]["project_id"] == PROJECT_ID
        assert create[3]["type"] == "VPC-GW-S"
        assert len(client.calls_of("get")) == 1
        assert attrs["zone"] == "fr-par-1"
        assert attrs["name"] == "gw"

    def test_conflict_on_create_is_retried_without_duplicates(
        self, ctx: EngineContext, client: FakeClient
    ) -> None:
        client.fail_next("create", "vpc_public_gateway", ConflictError("busy"))
        handler = PublicGatewayHandler()

        resource_id, _ = handler.create(ctx, PublicGatewayResource(name="gw"))

        assert len(client.calls_of("create")) == 2
        assert client.count("vpc_public_gateway") == 1
        assert resource_id.startswith("fr-par-1/")

    def test_sub_resource_waits_for_parent(
        self, ctx: EngineContext, client: FakeClient, clock: FakeClock
    ) -> None:
        client.add(
            "rdb_instance",
            "fr-par",
            INSTANCE_ID,
            statuses=["provisioning", "configuring", "ready"],
        )

        resource_id, attrs = RdbUserHandler().create(ctx, _user())

        kinds = [(c[0], c[1]) for c in client.calls]
        first_create = kinds.index(("create", "rdb_user"))
        assert kinds[:first_create] == [("get", "rdb_instance")] * 3
        assert clock.sleeps == [1.0, 1.0]
        assert resource_id == f"fr-par/{INSTANCE_ID}/alice"
        assert attrs == {
            "name": "alice",
            "is_admin": False,
            "password": "s3cret",
            "region": "fr-par",
            "instance_id": f"fr-par/{INSTANCE_ID}",
        }

    def test_sub_resource_body_has_no_project(self, ctx: EngineContext, client: FakeClient) -> None:
        client.add("rdb_instance", "fr-par", INSTANCE_ID)

        RdbUserHandler().create(ctx, _user(is_admin=True))

        (create,) = client.calls_of("create")
        assert create[3] == {"name": "alice", "password": "s3cret", "is_admin": True}
        assert create[4] == INSTANCE_ID

    def test_locality_inherited_from_parent(self, ctx: EngineContext, client: FakeClient) -> None:
        client.add("rdb_instance", "nl-ams", INSTANCE_ID)

        desired = _user(instance_id=f"nl-ams/{INSTANCE_ID}")

        resource_id, attrs = RdbUserHandler().create(ctx, desired)

        assert resource_id == f"nl-ams/{INSTANCE_ID}/alice"
        assert attrs["region"] == "nl-ams"

    def test_bare_parent_id_uses_provider_default(
        self, ctx: EngineContext, client: FakeClient
    ) -> None:
        client.add("rdb_instance", "fr-par", INSTANCE_ID)

        resource_id, _ = RdbUserHandler().create(ctx, _user(instance_id=INSTANCE_ID))

        assert resource_id == f"fr-par/{INSTANCE_ID}/alice"

    def test_explicit_locality_contradicting_parent(self, ctx: EngineContext) -> None:
        with pytest.raises(LifecycleError, match="does not match parent locality"):
            RdbUserHandler().create(ctx, _user(region="nl-ams"))

    def test_no_locality_available(self, client: FakeClient, clock: FakeClock) -> None:
        from scw_provisioner.core.provider import ScalewayProvider

        bare = EngineContext(
            provider=ScalewayProvider.from_client(client),
            project_id=PROJECT_ID,
            clock=clock,
            sleep=clock.sleep,
        )
        with pytest.raises(NoLocalityError):
            PublicGatewayHandler().create(bare, PublicGatewayResource(name="gw"))
        assert client.calls == []

    def test_parent_in_error_state(self, ctx: EngineContext, client: FakeClient) -> None:
        client.add("rdb_instance", "fr-par", INSTANCE_ID, statuses=["error"])

        with pytest.raises(RemoteProvisioningError) as exc_info:
            RdbUserHandler().create(ctx, _user())

        assert exc_info.value.status == "error"
        assert client.calls_of("create") == []

    def test_parent_never_ready_times_out(
        self, ctx: EngineContext, client: FakeClient, clock: FakeClock
    ) -> None:
        client.add("rdb_instance", "fr-par", INSTANCE_ID, statuses=["autohealing"])

        with pytest.raises(OperationTimeout):
            RdbUserHandler().create(ctx, _user(timeouts={"create": "10s"}))

        assert clock.now == 10
        assert client.calls_of("create") == []

    def test_failed_provisioning_logs_orphan(
        self, ctx: EngineContext, client: FakeClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        remote_id = "22222222-0000-0000-0000-000000000001"
        client.statuses[("vpc_public_gateway", "fr-par-1", remote_id, None)] = [
            "allocating",
            "failed",
        ]

        with (
            caplog.at_level(logging.WARNING, logger="scw_provisioner"),
            pytest.raises(RemoteProvisioningError),
        ):
            PublicGatewayHandler().create(ctx, PublicGatewayResource(name="gw"))

        assert f"fr-par-1/{remote_id}" in caplog.text
        assert "not tracked in state" in caplog.text

    def test_transport_error_is_not_retried(self, ctx: EngineContext, client: FakeClient) -> None:
        client.fail_next("create", "vpc_public_gateway", TransportError("connection reset"))

        with pytest.raises(TransportError):
            PublicGatewayHandler().create(ctx, PublicGatewayResource(name="gw"))

        assert len(client.calls_of("create")) == 1

    def test_instance_create_request(self, ctx: EngineContext, client: FakeClient) -> None:
        desired = RdbInstanceResource(
            name="main",
            engine="PostgreSQL-15",
            node_type="DB-DEV-S",
            user_name="admin",
            password="p@ss",
            tags=["prod"],
        )

        resource_id, attrs = RdbInstanceHandler().create(ctx, desired)

        (create,) = client.calls_of("create")
        assert create[3] == {
            "name": "main",
            "engine": "PostgreSQL-15",
            "node_type": "DB-DEV-S",
            "is_ha_cluster": False,
            "disable_backup": False,
            "user_name": "admin",
            "password": "p@ss",
            "tags": ["prod"],
            "project_id": PROJECT_ID,
        }
        assert resource_id.startswith("fr-par/")
        assert attrs["password"] == "p@ss"
        assert attrs["user_name"] == "admin"
        assert attrs["endpoint_ip"] is None


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


class TestRead:
    def test_zonal_sub_resource_absent(self, ctx: EngineContext, client: FakeClient) -> None:
        client.add("vpc_public_gateway", "fr-par-1", "abc")
        prior = _prior("test_gateway_user.alice", "fr-par-1/abc/alice", name="alice")

        assert GatewayUserHandler().read(ctx, prior) is None

    def test_parent_gone_means_absent(self, ctx: EngineContext, client: FakeClient) -> None:
        assert RdbUserHandler().read(ctx, _user_prior()) is None
        assert client.calls_of("get", "rdb_user") == []

    def test_remote_wins_and_local_only_is_preserved(
        self, ctx: EngineContext, client: FakeClient
    ) -> None:
        client.add("rdb_instance", "fr-par", INSTANCE_ID)
        client.add("rdb_user", "fr-par", INSTANCE_ID, "alice", name="alice", is_admin=True)

        attrs = RdbUserHandler().read(ctx, _user_prior(password="kept", is_admin=False))

        assert attrs is not None
        assert attrs["is_admin"] is True
        assert attrs["password"] == "kept"
        assert attrs["instance_id"] == f"fr-par/{INSTANCE_ID}"

    def test_pending_object_is_waited_on(
        self, ctx: EngineContext, client: FakeClient, clock: FakeClock
    ) -> None:
        client.add(
            "rdb_instance",
            "fr-par",
            INSTANCE_ID,
            statuses=["backuping", "backuping", "ready"],
            name="main",
            engine="PostgreSQL-15",
            endpoints=[{"ip": "10.0.0.1", "port": 5432}],
        )
        prior = _prior(
            "scaleway_rdb_instance.main",
            f"fr-par/{INSTANCE_ID}",
            name="main",
            user_name="admin",
            password="p@ss",
        )

        attrs = RdbInstanceHandler().read(ctx, prior)

        assert attrs is not None
        assert attrs["endpoint_ip"] == "10.0.0.1"
        assert attrs["endpoint_port"] == 5432
        assert attrs["user_name"] == "admin"
        assert len(clock.sleeps) == 1

    def test_malformed_persisted_identifier(self, ctx: EngineContext) -> None:
        prior = _prior("scaleway_rdb_user.alice", "fr-par/abc", name="alice")
        with pytest.raises(MalformedIdentifierError):
            RdbUserHandler().read(ctx, prior)


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


class TestUpdate:
    @pytest.fixture(autouse=True)
    def _remote_user(self, client: FakeClient) -> None:
        client.add("rdb_instance", "fr-par", INSTANCE_ID)
        client.add("rdb_user", "fr-par", INSTANCE_ID, "alice", name="alice", is_admin=False)

    def test_only_changed_field_is_sent(self, ctx: EngineContext, client: FakeClient) -> None:
        attrs = RdbUserHandler().update(ctx, _user(is_admin=True), _user_prior())

        (update,) = client.calls_of("update")
        assert update[4] == {"is_admin": True}
        assert attrs["is_admin"] is True

    def test_write_only_field_change_is_sent(
        self, ctx: EngineContext, client: FakeClient
    ) -> None:
        attrs = RdbUserHandler().update(ctx, _user(password="rotated"), _user_prior())

        (update,) = client.calls_of("update")
        assert update[4] == {"password": "rotated"}
        assert attrs["password"] == "rotated"

    def test_nothing_remote_changed(self, ctx: EngineContext, client: FakeClient) -> None:
        attrs = RdbUserHandler().update(
            ctx, _user(timeouts={"update": "5m"}), _user_prior()
        )

        assert client.calls_of("update") == []
        assert attrs["timeouts"]["update"] == 300

    def test_instance_password_rotates_default_user(
        self, ctx: EngineContext, client: FakeClient
    ) -> None:
        client.add("rdb_user", "fr-par", INSTANCE_ID, "admin", name="admin")
        prior = _prior(
            "scaleway_rdb_instance.main",
            f"fr-par/{INSTANCE_ID}",
            name="main",
            tags=[],
            user_name="admin",
            password="old",
        )
        desired = RdbInstanceResource(
            name="main",
            engine="PostgreSQL-15",
            node_type="DB-DEV-S",
            user_name="admin",
            password="new",
        )

        attrs = RdbInstanceHandler().update(ctx, desired, prior)

        assert client.calls_of("update") == [
            ("update", "rdb_user", "fr-par", INSTANCE_ID, {"password": "new"})
        ]
        assert attrs["password"] == "new"

    def test_create_only_change_is_refused(self, ctx: EngineContext, client: FakeClient) -> None:
        client.add("vpc_public_gateway", "fr-par-1", "abc", name="gw")
        prior = _prior("test_sealed_gateway.gw", "fr-par-1/abc", name="gw", seed="a")

        with pytest.raises(LifecycleError, match="seed cannot be changed in place"):
            SealedGatewayHandler().update(ctx, SealedGatewayResource(name="gw", seed="b"), prior)

        assert client.calls_of("update") == []
        assert client.calls_of("get") == []

    def test_conflict_waits_for_parent_and_retries(
        self, ctx: EngineContext, client: FakeClient
    ) -> None:
        client.statuses[("rdb_instance", "fr-par", INSTANCE_ID, None)] = [
            "ready",
            "backuping",
            "backuping",
            "ready",
        ]
        client.fail_next("update", "rdb_user", ConflictError("instance is backuping"))

        attrs = RdbUserHandler().update(ctx, _user(is_admin=True), _user_prior())

        assert len(client.calls_of("update")) == 2
        assert attrs["is_admin"] is True

    def test_vanished_during_update(self, ctx: EngineContext, client: FakeClient) -> None:
        client.fail_next("get", "rdb_user", NotFoundError("gone"))

        with pytest.raises(ResourceVanishedError):
            RdbUserHandler().update(ctx, _user(is_admin=True), _user_prior())

    def test_not_found_on_update_is_fatal(self, ctx: EngineContext, client: FakeClient) -> None:
        client.fail_next("update", "rdb_user", NotFoundError("gone"))

        with pytest.raises(NotFoundError):
            RdbUserHandler().update(ctx, _user(is_admin=True), _user_prior())


# ---------------------------------------------------------------------------
# Delete / import
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_is_idempotent(self, ctx: EngineContext, client: FakeClient) -> None:
        client.add("rdb_instance", "fr-par", INSTANCE_ID)
        client.add("rdb_user", "fr-par", INSTANCE_ID, "alice", name="alice")
        handler = RdbUserHandler()

        handler.delete(ctx, _user_prior())
        handler.delete(ctx, _user_prior())

        assert len(client.calls_of("delete")) == 2
        assert client.count("rdb_user") == 0

    def test_parent_gone_means_deleted(self, ctx: EngineContext, client: FakeClient) -> None:
        RdbUserHandler().delete(ctx, _user_prior())

        assert client.calls_of("delete") == []

    def test_top_level_delete_of_absent(self, ctx: EngineContext, client: FakeClient) -> None:
        prior = _prior("scaleway_vpc_public_gateway.gw", "fr-par-1/abc", name="gw")

        PublicGatewayHandler().delete(ctx, prior)

        assert len(client.calls_of("delete")) == 1

    def test_conflict_waits_for_object(self, ctx: EngineContext, client: FakeClient) -> None:
        client.add("vpc_public_gateway", "fr-par-1", "abc", statuses=["configuring", "running"])
        client.fail_next("delete", "vpc_public_gateway", ConflictError("busy"))
        prior = _prior("scaleway_vpc_public_gateway.gw", "fr-par-1/abc", name="gw")

        PublicGatewayHandler().delete(ctx, prior)

        assert len(client.calls_of("delete")) == 2
        assert client.count("vpc_public_gateway") == 0


class TestImport:
    def test_import_parses_without_remote_calls(self, client: FakeClient) -> None:
        assert RdbUserHandler().import_id("fr-par/abc/alice") == "fr-par/abc/alice"
        assert PublicGatewayHandler().import_id("fr-par-1/abc") == "fr-par-1/abc"
        assert client.calls == []

    @pytest.mark.parametrize("raw", ["fr-par/abc", "fr-par-1/abc/alice", "abc", ""])
    def test_import_rejects_malformed(self, raw: str) -> None:
        with pytest.raises(MalformedIdentifierError):
            RdbUserHandler().import_id(raw)


class TestValidate:
    def test_malformed_literal_reference(self, ctx: EngineContext) -> None:
        errors = RdbUserHandler().validate(ctx, _user(instance_id="fr-par/abc/extra"))
        assert len(errors) == 1
        assert "instance_id" in errors[0]

    def test_conflicting_locality(self, ctx: EngineContext) -> None:
        errors = RdbUserHandler().validate(ctx, _user(region="pl-waw"))
        assert errors == [
            "scaleway_rdb_user.alice: locality 'pl-waw' does not match parent locality 'fr-par'"
        ]

    def test_interpolated_reference_is_deferred(self, ctx: EngineContext) -> None:
        user = _user(instance_id="${scaleway_rdb_instance.main.id}")
        assert RdbUserHandler().validate(ctx, user) == []
