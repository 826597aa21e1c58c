"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

if TYPE_CHECKING:
    from scw_provisioner.engine.errors import ApplyError


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def _retry_hint(exc: BaseException | None) -> str | None:
    if exc is None or not hasattr(exc, "retryable"):
        return None
    if exc.retryable:
        return "This error is transient; re-running the command later may succeed."
    return "Retrying will not help until the configuration or remote object is fixed."


def _timeout_hint(exc: ApplyError) -> str | None:
    from scw_provisioner.engine.errors import OperationTimeout

    if not isinstance(exc.__cause__, OperationTimeout):
        return None
    return (
        f"The object may still settle on Scaleway. Run `scw-provisioner refresh`, then raise "
        f"`timeouts` on {exc.address} if it regularly needs longer."
    )


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from scw_provisioner.api.errors import ApiError
    from scw_provisioner.config.loader import ConfigError
    from scw_provisioner.engine.errors import (
        ApplyCanceled,
        ApplyError,
        LifecycleError,
        StalePlanError,
        StateLockError,
        StateProjectMismatchError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateProjectMismatchError):
        _err(f"State mismatch: {exc}", fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"State lock: {exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed: {exc}", fg=fg)
        s = exc.result.summary()
        parts = [
            f"{n} {verb}"
            for n, verb in (
                (s["create"], "added"),
                (s["update"], "changed"),
                (s["replace"], "replaced"),
                (s["delete"], "destroyed"),
            )
            if n
        ]
        if parts:
            _err(f"  Partial result: {', '.join(parts)}.", fg=fg)
        hint = _timeout_hint(exc) or _retry_hint(exc.__cause__)
        if hint:
            _err(f"  {hint}", fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
        _err("  Run `scw-provisioner refresh` before the next apply.", fg=fg)
    elif isinstance(exc, LifecycleError | ApiError):
        _err(f"Error: {exc}", fg=fg)
        hint = _retry_hint(exc)
        if hint:
            _err(f"  {hint}", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
