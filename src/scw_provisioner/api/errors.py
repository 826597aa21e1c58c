"""Typed errors raised by the remote API client."""

from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """Base exception for remote API failures.

    ``payload`` carries the decoded response body when the API returned one.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
        if status_code is not None and status_code >= 500:
            self.retryable = True


class NotFoundError(ApiError):
    """The remote object does not exist (HTTP 404)."""


class ConflictError(ApiError):
    """The remote object or its parent is mid-transition (HTTP 409)."""

    retryable = True


class TransportError(ApiError):
    """The request never produced an HTTP response (DNS, TLS, timeout...)."""

    retryable = True
