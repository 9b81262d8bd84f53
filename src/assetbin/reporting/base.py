"""Reporter protocol, task bookkeeping and the process-wide active reporter."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Iterator, Optional

__all__ = [
    "TaskStatus",
    "TaskRecord",
    "Reporter",
    "STAT_KEYS",
    "STATUS_ICONS",
    "completion_line",
    "format_stats",
    "set_reporter",
    "get_reporter",
    "set_verbosity",
    "get_verbosity",
    "section",
    "task",
]

# Task metadata keys echoed in completion lines, in display order.
STAT_KEYS = ("segments", "bytes", "packed", "padding")


class TaskStatus(Enum):
    RUNNING = auto()
    SUCCESS = auto()
    FAILED = auto()
    SKIPPED = auto()


STATUS_ICONS = {
    TaskStatus.SUCCESS: "✔",
    TaskStatus.FAILED: "✖",
    TaskStatus.SKIPPED: "→",
}


@dataclass(slots=True)
class TaskRecord:
    task_id: str
    name: str
    total: Optional[int] = None
    completed: int = 0
    status: TaskStatus = TaskStatus.RUNNING
    started: float = field(default_factory=time.monotonic)
    finished: Optional[float] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def duration(self) -> float:
        if self.finished is None:
            return 0.0
        return self.finished - self.started


def format_stats(meta: Dict[str, Any]) -> str:
    stats = [f"{key}={meta[key]}" for key in STAT_KEYS if key in meta]
    return f" [{' '.join(stats)}]" if stats else ""


def completion_line(rec: TaskRecord) -> str:
    """``✔ name done/total (1.23s) [stats]`` for a finished task."""
    icon = STATUS_ICONS.get(rec.status, "?")
    counts = f" {rec.completed}/{rec.total}" if rec.total is not None else ""
    return (
        f"{icon} {rec.name}{counts} ({rec.duration():.2f}s)"
        f"{format_stats(rec.meta)}"
    )


_verbosity = 0


def set_verbosity(level: int) -> None:
    global _verbosity
    _verbosity = max(0, level)


def get_verbosity() -> int:
    return _verbosity


class Reporter:
    """Progress and message sink used by bundle assembly and logging.

    The base class owns task bookkeeping. Backends render through the
    ``_on_start`` / ``_on_advance`` / ``_on_end`` hooks and override the
    message methods they display; everything defaults to doing nothing.
    """

    supports_progress: bool = False

    def __init__(self) -> None:
        self._tasks: Dict[str, TaskRecord] = {}

    # Tasks --------------------------------------------------------------------
    def start_task(
        self, task_id: str, name: str, total: int | None = None, **meta: Any
    ) -> None:
        rec = TaskRecord(task_id, name, total, meta=dict(meta))
        self._tasks[task_id] = rec
        self._on_start(rec)

    def advance(self, task_id: str, step: int = 1, **meta: Any) -> None:
        rec = self._tasks.get(task_id)
        if rec is None:
            return
        rec.completed += step
        rec.meta.update(meta)
        self._on_advance(rec, meta.get("current_item"))

    def end_task(
        self,
        task_id: str,
        status: TaskStatus = TaskStatus.SUCCESS,
        **final_meta: Any,
    ) -> None:
        rec = self._tasks.pop(task_id, None)
        if rec is None:
            return
        rec.status = status
        rec.finished = time.monotonic()
        rec.meta.update(final_meta)
        self._on_end(rec)

    def _on_start(self, rec: TaskRecord) -> None:
        pass

    def _on_advance(self, rec: TaskRecord, item: Any) -> None:
        pass

    def _on_end(self, rec: TaskRecord) -> None:
        pass

    # Messages -----------------------------------------------------------------
    def status(self, message: str, **fields: Any) -> None:
        pass

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        pass

    def warning(self, message: str, **fields: Any) -> None:
        self.status(message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        pass

    def section(self, title: str) -> None:
        pass

    def flush(self) -> None:
        pass


_active: Reporter | None = None


def set_reporter(rep: Reporter | None) -> None:
    """Install ``rep`` as the active reporter (``None`` restores the default)."""
    global _active
    _active = rep


def get_reporter() -> Reporter:
    global _active
    if _active is None:
        from .silent import SilentReporter

        _active = SilentReporter()
    return _active


@contextmanager
def section(title: str) -> Iterator[Reporter]:
    rep = get_reporter()
    rep.section(title)
    yield rep


@contextmanager
def task(
    task_id: str, name: str, total: int | None = None, **meta: Any
) -> Iterator[Reporter]:
    """Run a block as one reported task; an escaping exception marks it failed."""
    rep = get_reporter()
    rep.start_task(task_id, name, total, **meta)
    try:
        yield rep
    except Exception:
        rep.end_task(task_id, TaskStatus.FAILED)
        raise
    rep.end_task(task_id, TaskStatus.SUCCESS)
