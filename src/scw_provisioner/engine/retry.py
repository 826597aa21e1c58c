"""Conflict-aware retry around single remote mutations.

Only ``ConflictError`` is retried: the remote reports that the object or its
parent is mid-transition and the call will succeed once it settles. Anything
else, network errors included, may already have had side effects remotely
and is surfaced as-is.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from scw_provisioner.api.errors import ConflictError, NotFoundError
from scw_provisioner.engine.errors import OperationTimeout

if TYPE_CHECKING:
    from collections.abc import Callable

    from scw_provisioner.engine.waiter import Deadline

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_INTERVAL = 1.0
MAX_RETRY_INTERVAL = 10.0


def mutate(
    operation: Callable[[], T],
    deadline: Deadline,
    *,
    what: str = "mutation",
    on_conflict: Callable[[Deadline], object] | None = None,
    missing_ok: bool = False,
    interval: float = DEFAULT_RETRY_INTERVAL,
    max_interval: float = MAX_RETRY_INTERVAL,
) -> T | None:
    """Run ``operation``, retrying on conflicts until ``deadline``.

    ``on_conflict`` is called before each retry, typically to wait for the
    dependency that caused the conflict to settle; errors it raises are not
    retried. With ``missing_ok`` a ``NotFoundError`` counts as success and
    ``None`` is returned (idempotent delete).
    """
    delay = interval
    attempt = 0
    last_conflict: ConflictError | None = None
    while True:
        try:
            deadline.check(what)
        except OperationTimeout:
            if last_conflict is not None:
                raise OperationTimeout(
                    f"{what}: still conflicting after {attempt} attempts: {last_conflict}"
                ) from last_conflict
            raise

        attempt += 1
        try:
            return operation()
        except ConflictError as e:
            last_conflict = e
            logger.debug("%s: conflict on attempt %d, retrying: %s", what, attempt, e)
        except NotFoundError:
            if missing_ok:
                logger.debug("%s: already gone", what)
                return None
            raise

        if on_conflict is not None:
            on_conflict(deadline)
        deadline.sleep(delay)
        delay = min(delay * 2, max_interval)
