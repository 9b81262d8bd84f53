from __future__ import annotations

import os
from typing import Any, Dict, List

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .base import Reporter, TaskRecord, completion_line, get_verbosity

TRANSIENT_ENV = "ASSETBIN_PROGRESS_TRANSIENT"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "0").strip().lower() in ("1", "true", "yes", "on")


class RichReporter(Reporter):
    """Progress bars for counted tasks; messages printed above them.

    With ``ASSETBIN_PROGRESS_TRANSIENT`` set the bars vanish when the last
    task ends and completion lines are printed afterwards in one block.
    """

    supports_progress = True

    def __init__(self, console: Console | None = None):
        super().__init__()
        self.console = console or Console(
            stderr=True, highlight=False, soft_wrap=False
        )
        self.transient = _env_flag(TRANSIENT_ENV)
        self.progress: Progress | None = None
        self._bars: Dict[str, TaskID] = {}
        self._deferred: List[str] = []

    def _bar_display(self) -> Progress:
        if self.progress is None:
            self.progress = Progress(
                SpinnerColumn(spinner_name="dots"),
                TextColumn("{task.fields[name]}"),
                BarColumn(bar_width=None),
                TextColumn("{task.completed}/{task.total}"),
                TextColumn("{task.fields[item]}"),
                TimeElapsedColumn(),
                console=self.console,
                transient=self.transient,
                expand=True,
            )
            self.progress.start()
        return self.progress

    def _close_display(self) -> None:
        if self.progress is not None:
            try:
                self.progress.stop()
            finally:
                self.progress = None
                self._bars.clear()
        for line in self._deferred:
            self.console.print(line, markup=False)
        self._deferred.clear()

    # Task hooks ---------------------------------------------------------------
    def _on_start(self, rec: TaskRecord) -> None:
        if rec.total is None:
            self.console.rule(escape(rec.name))
            return
        self._bars[rec.task_id] = self._bar_display().add_task(
            "", total=rec.total, name=rec.name, item=""
        )

    def _on_advance(self, rec: TaskRecord, item: Any) -> None:
        bar = self._bars.get(rec.task_id)
        if bar is not None and self.progress is not None:
            self.progress.update(
                bar, completed=rec.completed, item="" if item is None else str(item)
            )

    def _on_end(self, rec: TaskRecord) -> None:
        bar = self._bars.pop(rec.task_id, None)
        if bar is not None and self.progress is not None and rec.total:
            self.progress.update(bar, completed=rec.total, item="")
        line = completion_line(rec)
        if self.transient and self.progress is not None:
            self._deferred.append(line)
        else:
            self.console.print(line, markup=False)
        if not self._bars:
            self._close_display()

    # Messages -----------------------------------------------------------------
    def status(self, message: str, **fields: Any) -> None:
        self.console.print(f"[green]INFO[/]: {escape(message)}")

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        if get_verbosity() >= level:
            self.console.print(f"[cyan]VERB{level}[/]: {escape(message)}")

    def warning(self, message: str, **fields: Any) -> None:
        self.console.print(f"[yellow]WARN[/]: {escape(message)}")

    def error(self, message: str, **fields: Any) -> None:
        self.console.print(f"[bold red]ERROR[/]: {escape(message)}")

    def section(self, title: str) -> None:
        self.console.rule(escape(title))

    def flush(self) -> None:
        self._close_display()
