"""CLI progress display for synchronization attempts.

This module provides a Rich spinner that follows the steps reported by
the sync engine.
"""

from typing import Callable, Optional

from rich.progress import Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn

from .sync.result import SyncStep


class SyncProgressDisplay:
    """Rich-based progress display for one synchronization attempt."""

    def __init__(self) -> None:
        """Initialize the progress display."""
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self.steps: list[SyncStep] = []

    def create_callback(self) -> Callable[[SyncStep], None]:
        """Create a progress callback for ``SyncEngine``."""
        return self._handle_step

    def _handle_step(self, step: SyncStep) -> None:
        self.steps.append(step)
        if self._progress is None or self._task is None:
            return
        self._progress.update(self._task, description=step.description)

    def pause(self) -> None:
        """Hide the spinner, e.g. while prompting the user."""
        if self._progress is not None:
            self._progress.stop()

    def resume(self) -> None:
        if self._progress is not None:
            self._progress.start()

    def __enter__(self) -> "SyncProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            TimeElapsedColumn(),
            transient=True,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task("Preparing...", total=None)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None
