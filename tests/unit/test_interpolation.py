from __future__ import annotations

from scw_provisioner.resources.interpolation import (
    Reference,
    find_references,
    has_references,
    resolve_references,
)
from scw_provisioner.resources.rdb import RdbUserResource


def test_find_references_recursively_in_order() -> None:
    value = {
        "a": "${scaleway_rdb_instance.main.id}",
        "b": ["x", "${scaleway_vpc_public_gateway.gw.ip_address}:22"],
        "c": 3,
    }

    assert find_references(value) == [
        Reference("scaleway_rdb_instance", "main", "id"),
        Reference("scaleway_vpc_public_gateway", "gw", "ip_address"),
    ]


def test_plain_values_have_no_references() -> None:
    assert not has_references("fr-par/abc")
    assert not has_references("${not a reference}")
    assert has_references("${scaleway_rdb_instance.main.id}")


def test_resolve_leaves_unknown_references() -> None:
    def lookup(ref: Reference) -> str | None:
        return "fr-par/abc" if ref.address == "scaleway_rdb_instance.main" else None

    value = {
        "known": "${scaleway_rdb_instance.main.id}",
        "unknown": "${scaleway_rdb_instance.other.id}",
        "nested": ["${scaleway_rdb_instance.main.id}/alice"],
    }

    assert resolve_references(value, lookup) == {
        "known": "fr-par/abc",
        "unknown": "${scaleway_rdb_instance.other.id}",
        "nested": ["fr-par/abc/alice"],
    }


def test_resource_references_dedupe_and_skip_depends_on() -> None:
    user = RdbUserResource(
        name="alice",
        instance_id="${scaleway_rdb_instance.main.id}",
        password="${scaleway_rdb_instance.main.password}",
        depends_on=["scaleway_vpc_public_gateway.gw"],
    )

    assert user.references() == ["scaleway_rdb_instance.main"]
