"""Scaleway HTTP API client.

The client is a thin RPC layer: it builds URLs from a route table, attaches
authentication, and maps HTTP failures to typed errors. It never retries;
retry policy belongs to the lifecycle layer.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from scw_provisioner.api.errors import ApiError, ConflictError, NotFoundError, TransportError
from scw_provisioner.api.types import Handle

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.scaleway.com"


@dataclass(frozen=True)
class Route:
    """URL layout for one API resource.

    ``collection`` is a template with ``{locality}`` and, for sub-resources,
    ``{parent_id}``. Sub-resources that have no single-object endpoint are
    looked up by listing the collection filtered by name; ``list_key`` names
    the array in that listing and ``id_key`` the field used as handle id.
    """

    collection: str
    list_key: str | None = None
    id_key: str = "id"

    @property
    def is_sub_resource(self) -> bool:
        return "{parent_id}" in self.collection


ROUTES: dict[str, Route] = {
    "rdb_instance": Route("/rdb/v1/regions/{locality}/instances"),
    "rdb_user": Route(
        "/rdb/v1/regions/{locality}/instances/{parent_id}/users",
        list_key="users",
        id_key="name",
    ),
    "rdb_database": Route(
        "/rdb/v1/regions/{locality}/instances/{parent_id}/databases",
        list_key="databases",
        id_key="name",
    ),
    "vpc_public_gateway": Route("/vpc-gw/v1/zones/{locality}/gateways"),
    "vpc_public_gateway_dhcp": Route("/vpc-gw/v1/zones/{locality}/dhcps"),
}


class RemoteClient(Protocol):
    """Operations the lifecycle layer consumes from the remote API."""

    def create(
        self,
        resource: str,
        locality: str,
        body: dict[str, Any],
        *,
        parent_id: str | None = None,
    ) -> Handle: ...

    def get(
        self, resource: str, locality: str, remote_id: str, sub_name: str | None = None
    ) -> Handle: ...

    def update(
        self,
        resource: str,
        locality: str,
        remote_id: str,
        body: dict[str, Any],
        *,
        sub_name: str | None = None,
    ) -> Handle: ...

    def delete(
        self, resource: str, locality: str, remote_id: str, sub_name: str | None = None
    ) -> None: ...


def _route(resource: str) -> Route:
    try:
        return ROUTES[resource]
    except KeyError as e:
        raise ValueError(f"Unknown API resource: {resource}") from e


def _error_message(payload: dict[str, Any] | None, text: str) -> str:
    if payload:
        for key in ("message", "help_message", "type"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return text[:200] or "no response body"


class ScalewayClient:
    """``RemoteClient`` implementation over the Scaleway REST API."""

    def __init__(
        self,
        secret_key: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "X-Auth-Token": secret_key,
                "Accept": "application/json",
                "User-Agent": "scw-provisioner",
            }
        )

    def _collection_path(self, route: Route, locality: str, parent_id: str | None) -> str:
        if route.is_sub_resource:
            if parent_id is None:
                raise ValueError(f"Sub-resource route requires a parent id: {route.collection}")
            return route.collection.format(locality=locality, parent_id=parent_id)
        return route.collection.format(locality=locality)

    def _item_path(
        self, route: Route, locality: str, remote_id: str, sub_name: str | None
    ) -> str:
        if route.is_sub_resource:
            if sub_name is None:
                raise ValueError(f"Sub-resource route requires a name: {route.collection}")
            return f"{self._collection_path(route, locality, remote_id)}/{sub_name}"
        return f"{self._collection_path(route, locality, None)}/{remote_id}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.api_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            response = self._session.request(
                method, url, json=body, params=params, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        payload: dict[str, Any] | None = None
        if response.content:
            try:
                payload = response.json()
            except json.JSONDecodeError:
                logger.debug("Non-JSON response body for %s %s", method, path)

        status = response.status_code
        if status < 400:
            return payload or {}

        message = f"{method} {path}: {_error_message(payload, response.text)}"
        if status == 404:
            raise NotFoundError(message, status_code=status, payload=payload)
        if status == 409:
            raise ConflictError(message, status_code=status, payload=payload)
        raise ApiError(message, status_code=status, payload=payload)

    @staticmethod
    def _handle(route: Route, body: dict[str, Any]) -> Handle:
        return Handle(
            id=str(body.get(route.id_key, "")), status=body.get("status"), attributes=body
        )

    def create(
        self,
        resource: str,
        locality: str,
        body: dict[str, Any],
        *,
        parent_id: str | None = None,
    ) -> Handle:
        route = _route(resource)
        data = self._request("POST", self._collection_path(route, locality, parent_id), body=body)
        return self._handle(route, data)

    def get(
        self, resource: str, locality: str, remote_id: str, sub_name: str | None = None
    ) -> Handle:
        route = _route(resource)
        if route.list_key is None:
            data = self._request("GET", self._item_path(route, locality, remote_id, sub_name))
            return self._handle(route, data)

        # No single-object endpoint: list filtered by name and require an exact match.
        data = self._request(
            "GET",
            self._collection_path(route, locality, remote_id),
            params={"name": sub_name},
        )
        for item in data.get(route.list_key, []):
            if item.get(route.id_key) == sub_name:
                return self._handle(route, item)
        raise NotFoundError(
            f"{resource} {locality}/{remote_id}/{sub_name} not found", status_code=404
        )

    def update(
        self,
        resource: str,
        locality: str,
        remote_id: str,
        body: dict[str, Any],
        *,
        sub_name: str | None = None,
    ) -> Handle:
        route = _route(resource)
        data = self._request(
            "PATCH", self._item_path(route, locality, remote_id, sub_name), body=body
        )
        return self._handle(route, data)

    def delete(
        self, resource: str, locality: str, remote_id: str, sub_name: str | None = None
    ) -> None:
        route = _route(resource)
        self._request("DELETE", self._item_path(route, locality, remote_id, sub_name))
