from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from scw_provisioner.core.state import (
    STATE_VERSION,
    ResourceInstance,
    State,
    compute_attributes_hash,
    compute_state_digest,
)

PROJECT_ID = "00000000-0000-0000-0000-000000000000"


def _instance(**overrides: object) -> ResourceInstance:
    values: dict[str, object] = {
        "address": "scaleway_rdb_user.alice",
        "resource_type": "scaleway_rdb_user",
        "name": "alice",
        "id": "fr-par/11111111-1111-1111-1111-111111111111/alice",
        "attributes": {"name": "alice", "is_admin": False},
        "attributes_hash": compute_attributes_hash({"name": "alice", "is_admin": False}),
        "dependencies": ["scaleway_rdb_instance.main"],
    }
    values.update(overrides)
    return ResourceInstance.model_validate(values)


def test_state_digest_excludes_timestamps() -> None:
    t0 = datetime(2020, 1, 1, tzinfo=UTC)
    t1 = t0 + timedelta(days=1)

    state = State(
        project_id=PROJECT_ID,
        resources={"scaleway_rdb_user.alice": _instance(created_at=t0, updated_at=t0)},
    )
    d0 = compute_state_digest(state)

    # Changing timestamps should not affect the digest.
    state.resources["scaleway_rdb_user.alice"].created_at = t1
    state.resources["scaleway_rdb_user.alice"].updated_at = t1
    d1 = compute_state_digest(state)

    assert d0 == d1


def test_state_digest_includes_serial_and_lineage() -> None:
    state = State(project_id=PROJECT_ID)
    d0 = compute_state_digest(state)

    state.serial += 1
    assert compute_state_digest(state) != d0

    # Reset serial; lineage change should still alter digest.
    state.serial = 0
    state.lineage = "different"
    assert compute_state_digest(state) != d0


def test_state_digest_includes_identifier() -> None:
    state = State(project_id=PROJECT_ID, resources={"scaleway_rdb_user.alice": _instance()})
    d0 = compute_state_digest(state)

    state.resources["scaleway_rdb_user.alice"].id = "nl-ams/other/alice"
    assert compute_state_digest(state) != d0


def test_state_digest_includes_configured_settings() -> None:
    state = State(project_id=PROJECT_ID, resources={"scaleway_rdb_user.alice": _instance()})
    d0 = compute_state_digest(state)

    state.resources["scaleway_rdb_user.alice"].configured = ["dns_local_name"]
    assert compute_state_digest(state) != d0


def test_attributes_hash_is_key_order_independent() -> None:
    assert compute_attributes_hash({"a": 1, "b": 2}) == compute_attributes_hash({"b": 2, "a": 1})


class TestPersistence:
    def test_save_and_load_roundtrip(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        state = State(project_id=PROJECT_ID, resources={"scaleway_rdb_user.alice": _instance()})

        state.save(path)
        loaded = State.load(path)

        assert loaded.resources["scaleway_rdb_user.alice"].id == _instance().id
        assert loaded.lineage == state.lineage
        assert not Path(str(path) + ".backup").exists()
        assert list(path.parent.iterdir()) == [path]

    def test_save_keeps_backup_of_previous_state(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        state = State(project_id=PROJECT_ID)
        state.save(path)
        state.serial = 5
        state.save(path)

        backup = json.loads(Path(str(path) + ".backup").read_text())
        assert backup["serial"] == 0
        assert State.load(path).serial == 5

    def test_newer_version_is_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        State(project_id=PROJECT_ID, version=STATE_VERSION + 1).save(path)

        with pytest.raises(ValueError, match="understands up to"):
            State.load(path)

    def test_load_or_create(self, tmp_path: Path) -> None:
        state = State.load_or_create(tmp_path / "missing.json", PROJECT_ID)
        assert state.project_id == PROJECT_ID
        assert state.resources == {}
        assert not (tmp_path / "missing.json").exists()

    def test_find_by_id(self) -> None:
        inst = _instance()
        state = State(project_id=PROJECT_ID, resources={inst.address: inst})

        assert state.find_by_id("scaleway_rdb_user", inst.id) is not None
        assert state.find_by_id("scaleway_rdb_database", inst.id) is None
        assert state.find_by_id("scaleway_rdb_user", "fr-par/x/alice") is None
