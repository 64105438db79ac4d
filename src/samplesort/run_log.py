"""Run logging and cooperative cancellation.

:class:`RunLog` is the per-run message sink. Messages go to the console
(optional), to a host callback (optional) and to a ``run_log.txt`` file
(optional). A failing callback never interrupts the pipeline.

:class:`CancelToken` is created by the host and handed to the run; the
pipeline only ever reads it.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TextIO

SEVERITIES = ("info", "warning", "error", "success")

LogCallback = Callable[[str, str], None]
ProgressCallback = Callable[[int, int], None]


class CancelToken:
    """Advisory cancellation flag, safe to set from another thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class RunLog:
    callback: Optional[LogCallback] = None
    to_console: bool = True
    dry_run: bool = False
    log_path: Optional[Path] = None
    counts: Dict[str, int] = field(default_factory=lambda: {s: 0 for s in SEVERITIES})
    _handle: Optional[TextIO] = field(init=False, default=None, repr=False)

    def open(self) -> None:
        if self.log_path is None or self._handle is not None:
            return
        path = Path(self.log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(path, "w", encoding="utf-8", buffering=1)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "RunLog":
        self.open()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def emit(self, message: str, severity: str = "info") -> None:
        if severity not in SEVERITIES:
            severity = "info"
        self.counts[severity] = self.counts.get(severity, 0) + 1
        if self.to_console:
            print(f"[{severity}] {message}")
        if self._handle is not None:
            self._handle.write(f"[{severity}] {message}\n")
        if self.callback is not None:
            try:
                self.callback(message, severity)
            except Exception:
                pass

    def info(self, message: str) -> None:
        self.emit(message, "info")

    def warning(self, message: str) -> None:
        self.emit(message, "warning")

    def error(self, message: str) -> None:
        self.emit(message, "error")

    def success(self, message: str) -> None:
        self.emit(message, "success")


class MemoryLog(RunLog):
    """RunLog that also keeps every message (used by tests and reports)."""

    def __init__(self, dry_run: bool = False) -> None:
        super().__init__(callback=None, to_console=False, dry_run=dry_run)
        self.messages: List[tuple[str, str]] = []

    def emit(self, message: str, severity: str = "info") -> None:
        super().emit(message, severity)
        self.messages.append((severity, message))

    def texts(self, severity: Optional[str] = None) -> List[str]:
        return [m for s, m in self.messages if severity is None or s == severity]


@dataclass
class YieldPoint:
    """Counts work items and yields to other threads at a fixed cadence."""

    every: int
    token: Optional[CancelToken] = None
    progress: Optional[ProgressCallback] = None
    total: int = 0
    done: int = 0

    def tick(self) -> bool:
        """Count one item; return True when cancellation was requested."""
        self.done += 1
        if self.every > 0 and self.done % self.every == 0:
            if self.progress is not None:
                try:
                    self.progress(self.done, self.total)
                except Exception:
                    pass
            time.sleep(0)
        return self.cancelled

    @property
    def cancelled(self) -> bool:
        return bool(self.token is not None and self.token.cancelled)
