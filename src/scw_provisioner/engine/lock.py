"""Local state locking."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from scw_provisioner.engine.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

LOCK_POLL_INTERVAL = 0.2


class StateLock:
    """Exclusive advisory lock guarding a local state file.

    With ``timeout=None`` acquisition blocks until the lock is free; otherwise
    it gives up after ``timeout`` seconds with ``StateLockError``. The holder's
    PID is written into the lock file to help diagnose stuck locks.
    """

    def __init__(self, state_path: Path, *, timeout: float | None = None) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._file: TextIO | None = None

    @property
    def path(self) -> Path:
        return self._lock_path

    def __enter__(self) -> StateLock:
        if fcntl is None:  # pragma: no cover
            raise StateLockError("State locking requires fcntl (POSIX)")

        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire(self._file)
        except BaseException:
            self._file.close()
            self._file = None
            raise

        self._file.seek(0)
        self._file.truncate()
        self._file.write(f"{os.getpid()}\n")
        self._file.flush()
        logger.debug("Acquired state lock %s", self._lock_path)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None
        logger.debug("Released state lock %s", self._lock_path)

    def _holder(self) -> str:
        try:
            return self._lock_path.read_text(encoding="utf-8").strip() or "unknown"
        except OSError:
            return "unknown"

    def _acquire(self, f: TextIO) -> None:
        if self._timeout is None:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            except OSError as e:
                raise StateLockError(f"Cannot lock {self._lock_path}: {e}") from e
            return

        expires_at = time.monotonic() + self._timeout
        while True:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= expires_at:
                    raise StateLockError(
                        f"State is locked by another process (pid {self._holder()}): "
                        f"{self._lock_path}"
                    ) from None
                time.sleep(LOCK_POLL_INTERVAL)
            except OSError as e:
                raise StateLockError(f"Cannot lock {self._lock_path}: {e}") from e
