"""Scaleway regions/zones and locality resolution."""

from __future__ import annotations

from typing import Literal, TypeAlias, get_args

from scw_provisioner.engine.errors import NoLocalityError
from scw_provisioner.resources.base import Region, Zone

Scope: TypeAlias = Literal["region", "zone"]

REGIONS: frozenset[str] = frozenset(get_args(Region))
ZONES: frozenset[str] = frozenset(get_args(Zone))


def known_localities(scope: Scope | None = None) -> frozenset[str]:
    if scope == "region":
        return REGIONS
    if scope == "zone":
        return ZONES
    return REGIONS | ZONES


def is_known(locality: str, scope: Scope | None = None) -> bool:
    return locality in known_localities(scope)


def region_of(zone: str) -> str:
    """Region a zone belongs to (``fr-par-1`` -> ``fr-par``)."""
    if zone in REGIONS:
        return zone
    if zone not in ZONES:
        raise ValueError(f"Unknown zone: {zone}")
    return zone.rsplit("-", 1)[0]


def resolve_locality(
    explicit: str | None,
    default: str | None,
    inherited: str | None = None,
) -> str:
    """Pick the locality a remote call must target.

    Precedence: explicit per-resource setting, then the locality inherited
    from a parent identifier, then the provider-wide default.
    """
    for candidate in (explicit, inherited, default):
        if candidate:
            return candidate
    raise NoLocalityError(
        "No locality available: set it on the resource, reference a parent with a "
        "locality, or configure a provider default"
    )


def locality_conflict(explicit: str | None, inherited: str | None) -> str | None:
    """Describe a mismatch between an explicit and an inherited locality, if any."""
    if explicit and inherited and explicit != inherited:
        return f"locality {explicit!r} does not match parent locality {inherited!r}"
    return None
