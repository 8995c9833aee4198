"""
output/audit.py — Per-request audit records and their sinks.

Every command submitted to the gateway produces exactly one
:class:`AuditRecord`, authorized or not. Sinks keep records newest-first.
"""

from __future__ import annotations

import json
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

from core.constants import GuardConstants as C
from core.logger import get_logger

log = get_logger()


@dataclass(frozen=True)
class AuditRecord:
    """
    One gateway transaction.

    Attributes:
        transaction_id:          ``tx_<hex>`` identifier.
        user_prompt:             Raw operator text.
        normalized_prompt:       Strict command lines the pipeline folded.
        obfuscation_check:       True when the local vector scan flagged the input.
        vector_similarity_score: Highest local similarity to any reference phrase.
        connector_used:          Source of the live state (``LIVE_TELEMETRY``, ``CSV_IMPORT``).
        live_state:              The snapshot the command was validated against.
        verdict:                 ``ALLOWED`` or ``DENIED: <reason>``.
        final_decision:          ``AUTHORIZED`` / ``DENIED`` / ``FILTERED``.
    """

    user_prompt: str
    normalized_prompt: str
    obfuscation_check: bool
    vector_similarity_score: float
    connector_used: str
    live_state: dict[str, Any]
    agent_role: str
    reasoning: str
    verdict: str
    risk_score: float
    final_decision: str
    admin: bool = False
    transaction_id: str = field(default_factory=lambda: f"tx_{uuid.uuid4().hex[:12]}")
    timestamp: str = field(default_factory=lambda: datetime.now(tz=timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AuditSink(Protocol):
    """Anything that can store audit records."""

    def record(self, entry: AuditRecord) -> None: ...

    def recent(self, limit: Optional[int] = None) -> list[AuditRecord]: ...


class InMemoryAuditSink:
    """
    Bounded, thread-safe, newest-first record buffer.

    Args:
        capacity: Oldest records are dropped beyond this many.
    """

    def __init__(self, capacity: int = C.AUDIT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._records: deque[AuditRecord] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def record(self, entry: AuditRecord) -> None:
        with self._lock:
            self._records.appendleft(entry)

    def recent(self, limit: Optional[int] = None) -> list[AuditRecord]:
        """Return up to ``limit`` records, newest first."""
        with self._lock:
            records = list(self._records)
        return records if limit is None else records[: max(0, limit)]

    def export_json(self) -> str:
        """Serialise the whole buffer (newest first) as a JSON array."""
        return json.dumps([r.to_dict() for r in self.recent()], indent=2, default=str)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class JsonlAuditSink(InMemoryAuditSink):
    """
    In-memory buffer that also appends every record to a JSONL file.

    Write failures are logged and never propagate to the gateway.
    """

    def __init__(self, path: str | Path, capacity: int = C.AUDIT_CAPACITY) -> None:
        super().__init__(capacity)
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def record(self, entry: AuditRecord) -> None:
        super().record(entry)
        line = json.dumps(entry.to_dict(), default=str)
        try:
            with self._file_lock, self._path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as exc:
            log.error("audit", "jsonl_write_failed", {"path": str(self._path), "error": str(exc)})
