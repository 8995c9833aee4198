"""
core/logger.py — JSONL structured event log for the Sentinel actuation guard.

Every subsystem reports through one :class:`GuardLogger`. Each event becomes
a single JSON line in ``<log_dir>/guard_{YYYY-MM-DD}.jsonl``; the file rolls
over at UTC midnight. Events at WARN and above are mirrored to the
``sentinel`` stdlib logger on stderr so an operator console sees them too.

Concurrent submissions write from several threads, so each line carries a
process-wide sequence number and the emitting thread's name; sorting by
``seq`` recovers the exact write order.

Usage::

    from core.logger import get_logger
    log = get_logger()
    log.info("pipeline", "verdict", {"allowed": True})
    log.perf("oracle", "security_check", latency_ms=412.0, data={"role": "RULE_ENGINE"})
"""

from __future__ import annotations

import itertools
import json
import logging
import platform
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, TextIO

_mirror = logging.getLogger("sentinel")
if not _mirror.handlers:
    _stderr = logging.StreamHandler(sys.stderr)
    _stderr.setFormatter(logging.Formatter("[%(levelname)s] sentinel.%(phase)s: %(message)s"))
    _mirror.addHandler(_stderr)
_mirror.setLevel(logging.DEBUG)
_mirror.propagate = False

# JSONL level → stdlib level for the stderr mirror; unlisted levels stay file-only
_MIRRORED_LEVELS: dict[str, int] = {
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_instance: Optional["GuardLogger"] = None
_instance_lock = threading.Lock()


class _DailyFile:
    """Append-only handle that reopens itself when the UTC date changes."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._date = ""
        self._fh: Optional[TextIO] = None

    def write(self, line: str, now: datetime) -> None:
        today = now.strftime("%Y-%m-%d")
        if today != self._date or self._fh is None or self._fh.closed:
            self.close()
            self.directory.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.directory / f"guard_{today}.jsonl", "a", encoding="utf-8")
            self._date = today
        self._fh.write(line + "\n")
        self._fh.flush()

    def flush(self) -> None:
        if self._fh is not None and not self._fh.closed:
            self._fh.flush()

    def close(self) -> None:
        if self._fh is not None and not self._fh.closed:
            self._fh.close()
        self._fh = None


class GuardLogger:
    """
    Thread-safe JSONL event writer.

    Line shape::

        {"seq": 17, "ts": "2026-03-02T10:20:49.123456+00:00", "level": "PERF",
         "phase": "pipeline", "event": "validate", "thread": "MainThread",
         "data": {"allowed": true}, "latency_ms": 3.412}

    ``latency_ms`` appears on PERF lines only.

    Use :func:`get_logger` / :func:`configure_logger` rather than building
    instances directly.

    Args:
        log_dir: Directory receiving the daily files.
    """

    def __init__(self, log_dir: Path | str = "logs") -> None:
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._file = _DailyFile(Path(log_dir))
        self.info("system", "logger_started", {
            "python": sys.version.split()[0],
            "platform": platform.platform(),
            "host": platform.node(),
        })

    @property
    def log_dir(self) -> Path:
        return self._file.directory

    # ──────────────────────────────────────────
    # Levels
    # ──────────────────────────────────────────

    def info(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Record a routine event.

        Args:
            phase: Emitting subsystem (``gateway``, ``pipeline``, ``oracle``, ...).
            event: Short snake_case event name.
            data: JSON-serialisable context; non-serialisable values are
                written with ``str()``.
        """
        self.emit("INFO", phase, event, data)

    def warn(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self.emit("WARN", phase, event, data)

    def error(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self.emit("ERROR", phase, event, data)

    def critical(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self.emit("CRITICAL", phase, event, data)

    def perf(
        self,
        phase: str,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """Record how long ``event`` took, in milliseconds."""
        self.emit("PERF", phase, event, data, latency_ms=latency_ms)

    def emit(
        self,
        level: str,
        phase: str,
        event: str,
        data: Optional[dict] = None,
        latency_ms: Optional[float] = None,
    ) -> None:
        """Write one line at an arbitrary ``level`` and mirror it if WARN or above."""
        now = datetime.now(tz=timezone.utc)
        with self._lock:
            record: dict[str, Any] = {
                "seq": next(self._seq),
                "ts": now.isoformat(),
                "level": level,
                "phase": phase,
                "event": event,
                "thread": threading.current_thread().name,
                "data": data or {},
            }
            if latency_ms is not None:
                record["latency_ms"] = round(latency_ms, 3)
            self._file.write(json.dumps(record, default=str, separators=(",", ":")), now)

        mirror_level = _MIRRORED_LEVELS.get(level)
        if mirror_level is not None:
            _mirror.log(mirror_level, "%s %s", event, data or {}, extra={"phase": phase})

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def flush(self) -> None:
        with self._lock:
            self._file.flush()

    def close(self) -> None:
        """Close the current file; the next event reopens it."""
        with self._lock:
            self._file.close()


def get_logger() -> GuardLogger:
    """Return the process-wide logger, creating it under ``logs/`` on first use."""
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = GuardLogger()
    return _instance


def configure_logger(log_dir: Path | str) -> GuardLogger:
    """
    Point the process-wide logger at ``log_dir``.

    Modules bind ``log = get_logger()`` at import time, so the existing
    instance is redirected in place rather than replaced.
    """
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = GuardLogger(log_dir)
        else:
            with _instance._lock:
                _instance._file.close()
                _instance._file = _DailyFile(Path(log_dir))
    return _instance
