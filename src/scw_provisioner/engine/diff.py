"""Value comparison shared by planning and partial updates."""

from __future__ import annotations

from typing import Any

from scw_provisioner.resources.markers import CompareStrategy


def _bare_id(value: Any) -> Any:
    if isinstance(value, str) and "/" in value:
        return value.rsplit("/", 1)[1]
    return value


def values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (stored) value.

    Comparison semantics depend on *strategy*:

    - ``strategy="set"``:
      - If both values are lists, they are compared as sets (order-insensitive).
      - Other types fall back to strict equality.
    - ``strategy="id"``:
      - Identifier references are equal if they are equal as written, or if
        one of them omits the locality prefix and the remote IDs match.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Extra keys present only in *prior* (API-added defaults) are ignored.
      - Non-dict values use strict equality.
    """
    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            return set(desired) != set(prior)
        return desired != prior

    if strategy == "id":
        if desired == prior:
            return False
        if isinstance(desired, str) and isinstance(prior, str):
            if "/" in desired and "/" in prior:
                return True
            return _bare_id(desired) != _bare_id(prior)
        return True

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    return desired != prior
