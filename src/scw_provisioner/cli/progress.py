"""Live apply progress.

Apply runs independent operations concurrently, so progress is tracked per
resource: each in-flight operation gets its own spinner row with the time
spent so far, and a finished one is replaced by a one-line status.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Literal

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from scw_provisioner.cli.formatting import _ACTION_STYLES, format_elapsed

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from rich.progress import TaskID

    from scw_provisioner.engine.types import ResourceChange


class ApplyReporter:
    """Progress callback for ``config.apply``, used as a context manager.

    Example:
        with ApplyReporter(total=3) as reporter:
            apply(plan, config, progress=reporter)
    """

    def __init__(
        self,
        total: int,
        *,
        color: bool = True,
        console: Console | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console or Console(no_color=not color),
        )
        self._clock = clock
        self._overall = self._progress.add_task("Applying", total=total)
        self._running: dict[str, tuple[TaskID, ResourceChange, float]] = {}
        self.completed: list[tuple[str, float]] = []

    def __enter__(self) -> ApplyReporter:
        self._progress.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._progress.stop()

    def __call__(self, change: ResourceChange, event: Literal["start", "done"]) -> None:
        style = _ACTION_STYLES[change.action.value]
        if event == "start":
            description = f"  {change.address}: {style.progress_verb}..."
            row = self._progress.add_task(description, total=None)
            self._running[change.address] = (row, change, self._clock())
            return

        row, _, started = self._running.pop(change.address)
        elapsed = self._clock() - started
        self._progress.remove_task(row)
        self._progress.advance(self._overall)
        self._progress.console.print(
            f"  {change.address}: {style.done_verb} after {format_elapsed(elapsed)}"
        )
        self.completed.append((change.address, elapsed))

    @property
    def unfinished(self) -> list[ResourceChange]:
        """Operations that started but never reported completion, by address."""
        return [self._running[address][1] for address in sorted(self._running)]

    def unfinished_lines(self) -> list[str]:
        return [
            f"  {c.address}: stopped while {_ACTION_STYLES[c.action.value].progress_verb.lower()}"
            for c in self.unfinished
        ]
