"""Base resource classes for Scaleway resources."""

from __future__ import annotations

import re
from typing import Annotated, Any, ClassVar, Literal, TypeAlias

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, computed_field

from scw_provisioner.resources.interpolation import find_references
from scw_provisioner.resources.markers import ForceNew, LocalOnly

Region: TypeAlias = Literal["fr-par", "nl-ams", "pl-waw"]
Zone: TypeAlias = Literal[
    "fr-par-1",
    "fr-par-2",
    "fr-par-3",
    "nl-ams-1",
    "nl-ams-2",
    "nl-ams-3",
    "pl-waw-1",
    "pl-waw-2",
    "pl-waw-3",
]

_DURATION_RE = re.compile(r"^(?:(?P<h>\d+)h)?(?:(?P<m>\d+)m)?(?:(?P<s>\d+)s)?$")


def _parse_duration(value: Any) -> Any:
    """Accept seconds as a number or Terraform-style strings like ``"1h30m"``."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    m = _DURATION_RE.match(text)
    if not text or m is None:
        raise ValueError(f"Invalid duration {value!r}; use e.g. '90s', '15m', '1h30m'")
    return int(m["h"] or 0) * 3600 + int(m["m"] or 0) * 60 + int(m["s"] or 0)


Duration = Annotated[float, BeforeValidator(_parse_duration), Field(gt=0)]

Operation: TypeAlias = Literal["create", "read", "update", "delete"]


class Timeouts(BaseModel):
    """Per-operation time budgets in seconds; ``default`` covers unset ones."""

    model_config = ConfigDict(extra="forbid")

    create: Duration | None = None
    read: Duration | None = None
    update: Duration | None = None
    delete: Duration | None = None
    default: Duration | None = None

    def for_operation(self, operation: Operation) -> float | None:
        value = getattr(self, operation)
        return value if value is not None else self.default


class Resource(BaseModel):
    """Base class for all Scaleway resources.

    Resources are pure data - they define the desired state.
    Handlers know how to CRUD resources.
    """

    model_config = ConfigDict(extra="forbid")

    resource_type: ClassVar[str]
    plan_priority: ClassVar[int] = 100

    name: str = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    timeouts: Annotated[Timeouts | None, LocalOnly()] = None

    # Lifecycle
    depends_on: list[str] = []

    def references(self) -> list[str]:
        """Addresses of resources referenced through ``${…}`` interpolations."""
        seen: list[str] = []
        for ref in find_references(self.model_dump(exclude={"depends_on"})):
            if ref.address not in seen:
                seen.append(ref.address)
        return seen

    @computed_field
    @property
    def address(self) -> str:
        """Unique address for this resource (e.g., 'scaleway_rdb_user.alice')."""
        return f"{self.resource_type}.{self.name}"


class RegionalResource(Resource):
    """A resource living in a Scaleway region."""

    region: Annotated[Region | None, ForceNew()] = None


class ZonalResource(Resource):
    """A resource living in a Scaleway availability zone."""

    zone: Annotated[Zone | None, ForceNew()] = None
