"""Polling remote objects until they settle."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import TYPE_CHECKING

from scw_provisioner.api.errors import NotFoundError
from scw_provisioner.engine.errors import (
    OperationCanceled,
    OperationTimeout,
    RemoteProvisioningError,
    ResourceVanishedError,
)

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable

    from scw_provisioner.api.types import Handle

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


class Readiness(str, Enum):
    PENDING = "pending"
    READY = "ready"
    ERROR = "error"
    GONE = "gone"


def always_ready(handle: Handle) -> Readiness:
    """Classifier for objects created synchronously."""
    _ = handle
    return Readiness.READY


def status_classifier(
    ready: set[str], error: set[str], gone: set[str] | None = None
) -> Callable[[Handle], Readiness]:
    """Build a classifier from status sets; unknown statuses are pending."""
    gone = gone or set()

    def _classify(handle: Handle) -> Readiness:
        if handle.status in ready:
            return Readiness.READY
        if handle.status in error:
            return Readiness.ERROR
        if handle.status in gone:
            return Readiness.GONE
        return Readiness.PENDING

    return _classify


class Deadline:
    """A time budget shared by every wait of one lifecycle operation.

    ``cancel`` aborts sleeps promptly. ``clock`` and ``sleep`` are injectable so
    tests can run on a fake clock.
    """

    def __init__(
        self,
        seconds: float,
        *,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.seconds = seconds
        self._cancel = cancel
        self._clock = clock
        self._sleep = sleep
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    @property
    def canceled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    def check(self, what: str) -> None:
        if self.canceled:
            raise OperationCanceled(f"{what}: canceled")
        if self.expired:
            raise OperationTimeout(f"{what}: timed out after {self.seconds:g}s")

    def sleep(self, seconds: float) -> None:
        """Sleep up to *seconds*, never past the deadline."""
        seconds = min(seconds, self.remaining())
        if seconds <= 0:
            return
        if self._cancel is not None:
            self._cancel.wait(seconds)
        else:
            self._sleep(seconds)


def wait_until_stable(
    fetch: Callable[[], Handle],
    classify: Callable[[Handle], Readiness],
    deadline: Deadline,
    *,
    what: str = "resource",
    interval: float = DEFAULT_POLL_INTERVAL,
    max_interval: float | None = None,
    backoff: float = 1.0,
) -> Handle:
    """Poll ``fetch`` until ``classify`` reports a terminal status.

    ``backoff`` > 1 grows the interval exponentially, capped at ``max_interval``.

    Raises:
        RemoteProvisioningError: the object reached a failure status.
        ResourceVanishedError: the object was not found while being waited on.
        OperationTimeout: the deadline elapsed first.
        OperationCanceled: the deadline's cancel event was set.
    """
    delay = interval
    polls = 0
    while True:
        deadline.check(f"waiting for {what}")
        polls += 1
        try:
            handle = fetch()
        except NotFoundError as e:
            raise ResourceVanishedError(f"{what} disappeared while waiting") from e

        readiness = classify(handle)
        logger.debug("Poll %d of %s: status=%s (%s)", polls, what, handle.status, readiness.value)
        if readiness is Readiness.READY:
            return handle
        if readiness is Readiness.ERROR:
            raise RemoteProvisioningError(what, handle.status, dict(handle.attributes))
        if readiness is Readiness.GONE:
            raise ResourceVanishedError(f"{what} disappeared while waiting")

        deadline.sleep(delay)
        delay *= backoff
        if max_interval is not None:
            delay = min(delay, max_interval)
