"""Shared fixtures for unit tests."""

from __future__ import annotations

import copy
import itertools
import threading
from typing import TYPE_CHECKING, Any

import pytest

from scw_provisioner.api.errors import NotFoundError
from scw_provisioner.api.types import Handle
from scw_provisioner.config import load
from scw_provisioner.core.provider import ScalewayProvider
from scw_provisioner.engine.handlers import EngineContext

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from scw_provisioner.config.schema import Config

_SCW_ENV_VARS = (
    "SCW_ACCESS_KEY",
    "SCW_SECRET_KEY",
    "SCW_DEFAULT_PROJECT_ID",
    "SCW_DEFAULT_REGION",
    "SCW_DEFAULT_ZONE",
    "SCW_API_URL",
    "SCW_POLL_INTERVAL",
    "SCW_LOG",
    "SCW_PROJECT_ID",
    "SCW_REGION",
    "SCW_ZONE",
)

PROJECT_ID = "00000000-0000-0000-0000-000000000000"
INSTANCE_ID = "11111111-1111-1111-1111-111111111111"

# Status a freshly created object reports, per API resource.
_SETTLED_STATUS: dict[str, str | None] = {
    "rdb_instance": "ready",
    "vpc_public_gateway": "running",
}

Key = tuple[str, str, str, str | None]


@pytest.fixture(autouse=True)
def _clean_scw_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove SCW_* env vars so unit tests don't leak real credentials."""
    for var in _SCW_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeClient:
    """In-memory ``RemoteClient``.

    Objects are keyed by ``(resource, locality, remote_id, sub_name)``; a
    sub-resource is stored under its parent's id with its name as sub_name.
    ``statuses`` scripts the status returned by successive GETs of one key
    (the last entry sticks). ``failures`` queues exceptions raised by the next
    calls of ``(operation, resource)``.
    """

    def __init__(self) -> None:
        self.objects: dict[Key, dict[str, Any]] = {}
        self.statuses: dict[Key, list[str]] = {}
        self.failures: dict[tuple[str, str], list[Exception]] = {}
        self.calls: list[tuple[Any, ...]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # ── Test helpers ────────────────────────────────────────────────

    def add(
        self,
        resource: str,
        locality: str,
        remote_id: str,
        sub_name: str | None = None,
        *,
        statuses: list[str] | None = None,
        **attrs: Any,
    ) -> Key:
        key = (resource, locality, remote_id, sub_name)
        self.objects[key] = {"id": sub_name or remote_id, **attrs}
        if statuses is not None:
            self.statuses[key] = list(statuses)
        return key

    def fail_next(self, operation: str, resource: str, *errors: Exception) -> None:
        self.failures.setdefault((operation, resource), []).extend(errors)

    def calls_of(self, operation: str, resource: str | None = None) -> list[tuple[Any, ...]]:
        return [
            c for c in self.calls if c[0] == operation and (resource is None or c[1] == resource)
        ]

    def count(self, resource: str) -> int:
        return sum(1 for key in self.objects if key[0] == resource)

    # ── RemoteClient ────────────────────────────────────────────────

    def _maybe_fail(self, operation: str, resource: str) -> None:
        queue = self.failures.get((operation, resource))
        if queue:
            raise queue.pop(0)

    def _status(self, key: Key) -> str | None:
        script = self.statuses.get(key)
        if script:
            return script.pop(0) if len(script) > 1 else script[0]
        return _SETTLED_STATUS.get(key[0])

    def _handle(self, key: Key, status: str | None = None) -> Handle:
        attrs = copy.deepcopy(self.objects[key])
        status = status if status is not None else self._status(key)
        if status is not None:
            attrs["status"] = status
        return Handle(id=attrs["id"], status=status, attributes=attrs)

    def create(
        self,
        resource: str,
        locality: str,
        body: dict[str, Any],
        *,
        parent_id: str | None = None,
    ) -> Handle:
        with self._lock:
            self.calls.append(("create", resource, locality, copy.deepcopy(body), parent_id))
            self._maybe_fail("create", resource)
            if parent_id is not None:
                key: Key = (resource, locality, parent_id, body["name"])
                remote_id = body["name"]
            else:
                remote_id = f"22222222-0000-0000-0000-{next(self._ids):012d}"
                key = (resource, locality, remote_id, None)
            self.objects[key] = {"id": remote_id, **copy.deepcopy(body)}
            return self._handle(key)

    def get(
        self,
        resource: str,
        locality: str,
        remote_id: str,
        sub_name: str | None = None,
    ) -> Handle:
        with self._lock:
            self.calls.append(("get", resource, locality, remote_id, sub_name))
            self._maybe_fail("get", resource)
            key = (resource, locality, remote_id, sub_name)
            if key not in self.objects:
                raise NotFoundError(f"{resource} {remote_id} not found", status_code=404)
            return self._handle(key)

    def update(
        self,
        resource: str,
        locality: str,
        remote_id: str,
        body: dict[str, Any],
        *,
        sub_name: str | None = None,
    ) -> Handle:
        with self._lock:
            self.calls.append(("update", resource, locality, remote_id, copy.deepcopy(body)))
            self._maybe_fail("update", resource)
            key = (resource, locality, remote_id, sub_name)
            if key not in self.objects:
                raise NotFoundError(f"{resource} {remote_id} not found", status_code=404)
            self.objects[key].update(copy.deepcopy(body))
            return self._handle(key)

    def delete(
        self,
        resource: str,
        locality: str,
        remote_id: str,
        sub_name: str | None = None,
    ) -> None:
        with self._lock:
            self.calls.append(("delete", resource, locality, remote_id, sub_name))
            self._maybe_fail("delete", resource)
            key = (resource, locality, remote_id, sub_name)
            if key not in self.objects:
                raise NotFoundError(f"{resource} {remote_id} not found", status_code=404)
            del self.objects[key]
            if sub_name is None:
                # Deleting a parent removes everything living on it.
                for other in [k for k in self.objects if k[1:3] == (locality, remote_id)]:
                    del self.objects[other]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def provider(client: FakeClient) -> ScalewayProvider:
    return ScalewayProvider.from_client(client, region="fr-par", zone="fr-par-1", poll_interval=1.0)


@pytest.fixture
def ctx(provider: ScalewayProvider, clock: FakeClock) -> EngineContext:
    return EngineContext(
        provider=provider,
        project_id=PROJECT_ID,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make
