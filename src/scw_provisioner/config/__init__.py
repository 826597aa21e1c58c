"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from scw_provisioner.config.loader import ConfigError, load_config
from scw_provisioner.config.registry import default_registry
from scw_provisioner.config.schema import Config, ProviderConfig
from scw_provisioner.core.provider import ScalewayProvider, SecretKeyAuth
from scw_provisioner.core.state import ResourceInstance, State
from scw_provisioner.engine.engine import DEFAULT_PARALLELISM, ProgressCallback, ScalewayEngine
from scw_provisioner.engine.lock import StateLock
from scw_provisioner.engine.types import Action, ResourceChange

if TYPE_CHECKING:
    from pathlib import Path

    from scw_provisioner.engine.types import ApplyResult, Plan

__all__ = [
    "Config",
    "ConfigError",
    "ProviderConfig",
    "State",
    "apply",
    "drift",
    "import_resource",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def _engine_from_config(config: Config) -> ScalewayEngine:
    """Build a ``ScalewayEngine`` from a ``Config`` instance."""
    settings = config.provider
    if settings.secret_key is None:
        raise ConfigError("provider.secret_key is required (set SCW_SECRET_KEY env var)")
    provider = ScalewayProvider(
        api_url=settings.api_url,
        auth=SecretKeyAuth(access_key=settings.access_key, secret_key=settings.secret_key),
        region=settings.region,
        zone=settings.zone,
        poll_interval=settings.poll_interval,
    )
    return ScalewayEngine(
        provider=provider,
        project_id=settings.project_id,
        state_path=config.state_path,
        registry=default_registry(),
    )


def plan(config: Config, *, destroy: bool = False, refresh: bool = True) -> Plan:
    """Plan changes for the given configuration."""
    engine = _engine_from_config(config)
    return engine.plan(config.resources, destroy=destroy, refresh=refresh)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    parallelism: int = DEFAULT_PARALLELISM,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = _engine_from_config(config)
    return engine.apply(plan_obj, progress=progress, parallelism=parallelism)


def plan_and_apply(config: Config, *, destroy: bool = False, refresh: bool = True) -> ApplyResult:
    """Plan and apply in one step."""
    plan_obj = plan(config, destroy=destroy, refresh=refresh)
    return apply(plan_obj, config)


def refresh(config: Config) -> tuple[list[ResourceChange], State]:
    """Refresh state from the live Scaleway API (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state to disk.
    """
    engine = _engine_from_config(config)
    old_state, new_state = engine.refresh()
    return _build_drift_changes(old_state, new_state), new_state


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    with StateLock(config.state_path):
        state.serial += 1
        state.save(config.state_path)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between state file and live Scaleway resources."""
    changes, _ = refresh(config)
    return changes


def import_resource(
    config: Config, resource_type: str, name: str, resource_id: str
) -> ResourceInstance:
    """Start managing an existing remote object."""
    engine = _engine_from_config(config)
    return engine.import_resource(resource_type, name, resource_id)


def _build_drift_changes(old_state: State, new_state: State) -> list[ResourceChange]:
    """Compare old vs new state and return a list of drift changes."""
    changes: list[ResourceChange] = []
    for addr, inst in new_state.resources.items():
        old_inst = old_state.resources.get(addr)
        if old_inst is None:
            continue
        old = old_inst.attributes
        if old != inst.attributes:
            all_keys = set(old) | set(inst.attributes)
            diff = {
                k: {"from": old.get(k), "to": inst.attributes.get(k)}
                for k in sorted(all_keys)
                if old.get(k) != inst.attributes.get(k)
            }
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=inst.resource_type,
                    action=Action.UPDATE,
                    id=inst.id,
                    prior=dict(old),
                    planned=dict(inst.attributes),
                    diff=diff,
                )
            )
    for addr in sorted(set(old_state.resources) - set(new_state.resources)):
        old_inst = old_state.resources[addr]
        changes.append(
            ResourceChange(
                address=addr,
                resource_type=old_inst.resource_type,
                action=Action.DELETE,
                id=old_inst.id,
                prior=dict(old_inst.attributes),
            )
        )
    return changes
