"""Progress and message reporting backends."""

from .base import (
    STAT_KEYS,
    Reporter,
    TaskRecord,
    TaskStatus,
    completion_line,
    format_stats,
    get_reporter,
    get_verbosity,
    section,
    set_reporter,
    set_verbosity,
    task,
)
from .plain import PlainReporter
from .silent import SilentReporter
from .rich_reporter import RichReporter

__all__ = [
    "STAT_KEYS",
    "Reporter",
    "TaskRecord",
    "TaskStatus",
    "completion_line",
    "format_stats",
    "get_reporter",
    "get_verbosity",
    "section",
    "set_reporter",
    "set_verbosity",
    "task",
    "PlainReporter",
    "SilentReporter",
    "RichReporter",
]
