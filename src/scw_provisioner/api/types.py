"""Remote resource handle."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Handle:
    """A transient copy of a remote object as last fetched from the API."""

    id: str
    status: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
