from __future__ import annotations

import sys
from typing import Any, TextIO

from .base import Reporter, TaskRecord, completion_line, get_verbosity

_COLORS = {"INFO": "32", "WARN": "33", "ERROR": "31"}


class PlainReporter(Reporter):
    """Line-oriented, deterministic output with optional ANSI color."""

    def __init__(self, stream: TextIO | None = None, use_color: bool | None = None):
        super().__init__()
        self.stream = stream or sys.stderr
        if use_color is None:
            use_color = bool(getattr(self.stream, "isatty", lambda: False)())
        self.use_color = use_color

    def _write(self, text: str) -> None:
        self.stream.write(text + "\n")

    def _label(self, label: str, color: str | None = None) -> str:
        code = color or _COLORS.get(label)
        if not self.use_color or code is None:
            return label
        return f"\x1b[{code}m{label}\x1b[0m"

    def _on_advance(self, rec: TaskRecord, item: Any) -> None:
        total = "?" if rec.total is None else rec.total
        shown = item or f"item#{rec.completed}"
        self._write(f"   · {rec.name}: {shown} ({rec.completed}/{total})")

    def _on_end(self, rec: TaskRecord) -> None:
        self._write(" " + completion_line(rec))

    def status(self, message: str, **fields: Any) -> None:
        self._write(f"{self._label('INFO')}: {message}")

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        if get_verbosity() >= level:
            self._write(f"{self._label(f'VERB{level}', '36')}: {message}")

    def warning(self, message: str, **fields: Any) -> None:
        self._write(f"{self._label('WARN')}: {message}")

    def error(self, message: str, **fields: Any) -> None:
        self._write(f"{self._label('ERROR')}: {message}")

    def section(self, title: str) -> None:
        self._write(f"\n[{title}]")

    def flush(self) -> None:
        if hasattr(self.stream, "flush"):
            self.stream.flush()
