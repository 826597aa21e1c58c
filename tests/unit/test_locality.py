from __future__ import annotations

import pytest

from scw_provisioner.engine.errors import NoLocalityError
from scw_provisioner.engine.locality import (
    REGIONS,
    ZONES,
    is_known,
    locality_conflict,
    region_of,
    resolve_locality,
)


def test_known_localities() -> None:
    assert "fr-par" in REGIONS
    assert "fr-par-1" in ZONES
    assert is_known("nl-ams-1", "zone")
    assert not is_known("nl-ams-1", "region")
    assert is_known("nl-ams-1")


def test_region_of_zone() -> None:
    assert region_of("fr-par-2") == "fr-par"
    assert region_of("fr-par") == "fr-par"
    with pytest.raises(ValueError, match="Unknown zone"):
        region_of("mars-1")


class TestResolveLocality:
    def test_explicit_wins(self) -> None:
        assert resolve_locality("nl-ams", "fr-par", inherited="pl-waw") == "nl-ams"

    def test_inherited_before_default(self) -> None:
        assert resolve_locality(None, "fr-par", inherited="pl-waw") == "pl-waw"

    def test_default(self) -> None:
        assert resolve_locality(None, "fr-par") == "fr-par"

    def test_nothing_available(self) -> None:
        with pytest.raises(NoLocalityError) as exc_info:
            resolve_locality(None, None)
        assert exc_info.value.retryable is False


def test_locality_conflict() -> None:
    assert locality_conflict("fr-par", "fr-par") is None
    assert locality_conflict(None, "fr-par") is None
    assert locality_conflict("nl-ams", "fr-par") == (
        "locality 'nl-ams' does not match parent locality 'fr-par'"
    )
