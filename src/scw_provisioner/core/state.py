"""State management for tracking deployed resources."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's stored attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResourceInstance(BaseModel):
    """A tracked resource instance in the state file.

    Attributes:
        address: Unique resource address (e.g., "scaleway_rdb_user.alice")
        resource_type: Type of the resource (e.g., "scaleway_rdb_user")
        name: Resource name (e.g., "alice")
        id: Persisted identifier (``locality/remoteID[/subName]``)
        attributes: Last known attribute values (remote truth + local-only fields)
        attributes_hash: SHA256 hash for change detection
        dependencies: Addresses of dependencies
        configured: Optional settings the configuration last set explicitly; removing
            one from the configuration resets it remotely
        created_at: When the resource was created or imported
        updated_at: When the resource was last updated or refreshed
    """

    address: str
    resource_type: str
    name: str
    id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    configured: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class State(BaseModel):
    """Terraform-style state file for tracking deployed resources.

    The identifier stored on each instance is the only durable handle on the
    remote object; everything else can be rebuilt by a refresh.
    """

    version: int = STATE_VERSION
    project_id: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceInstance] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        """Load state from a JSON file."""
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        if state.version > STATE_VERSION:
            raise ValueError(
                f"State file {path} has version {state.version}; "
                f"this release understands up to {STATE_VERSION}"
            )
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path, project_id: str) -> "State":
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for project %s", project_id)
        return cls(project_id=project_id)

    def find_by_id(self, resource_type: str, resource_id: str) -> ResourceInstance | None:
        """Return the tracked instance with this type and identifier, if any."""
        for inst in self.resources.values():
            if inst.resource_type == resource_type and inst.id == resource_id:
                return inst
        return None


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection.
    """
    resources = []
    for address, inst in sorted(state.resources.items(), key=lambda kv: kv[0]):
        resources.append(
            {
                "address": address,
                "resource_type": inst.resource_type,
                "name": inst.name,
                "id": inst.id,
                "attributes_hash": inst.attributes_hash,
                "dependencies": sorted(inst.dependencies),
                "configured": sorted(inst.configured),
            }
        )

    digestable = {
        "version": state.version,
        "project_id": state.project_id,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
