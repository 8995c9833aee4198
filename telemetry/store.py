"""
telemetry/store.py — Thread-safe owner of the live TelemetryState.

The store holds exactly one live state plus a monotonically increasing
version. Readers take a :class:`StateSnapshot`; writers publish a whole new
record either unconditionally (:meth:`TelemetryStore.replace`,
:meth:`TelemetryStore.merge`) or only if nobody else published since their
snapshot (:meth:`TelemetryStore.compare_and_swap`).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from telemetry.state import TelemetryState

logger = logging.getLogger(__name__)

Subscriber = Callable[["StateSnapshot"], None]


@dataclass(frozen=True)
class StateSnapshot:
    """A live state together with the version it was published under."""

    version: int
    state: TelemetryState


class TelemetryStore:
    """
    Versioned, lock-guarded holder of the live telemetry record.

    Args:
        initial: The reading installed at version 0.
    """

    def __init__(self, initial: Optional[TelemetryState] = None) -> None:
        self._lock = threading.Lock()
        self._state = initial if initial is not None else TelemetryState()
        self._version = 0
        self._subscribers: list[Subscriber] = []

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    @property
    def state(self) -> TelemetryState:
        with self._lock:
            return self._state

    def snapshot(self) -> StateSnapshot:
        """Return the live state and its version, read together."""
        with self._lock:
            return StateSnapshot(self._version, self._state)

    def compare_and_swap(self, expected_version: int, new_state: TelemetryState) -> bool:
        """
        Publish ``new_state`` only if the live version is still ``expected_version``.

        Returns:
            True if the state was published, False on a version conflict.
        """
        with self._lock:
            if self._version != expected_version:
                logger.info(
                    "CAS conflict: expected v%d, live v%d", expected_version, self._version
                )
                return False
            published = self._publish_locked(new_state)
        self._notify(published)
        return True

    def replace(self, new_state: TelemetryState) -> StateSnapshot:
        """Unconditionally publish a whole new record."""
        with self._lock:
            published = self._publish_locked(new_state)
        self._notify(published)
        return published

    def merge(self, partial: Mapping[str, Any]) -> StateSnapshot:
        """
        Publish the live record with ``partial`` applied, atomically.

        Raises:
            KeyError: If ``partial`` names an unknown field.
            ValueError: If a merged value is invalid.
        """
        with self._lock:
            published = self._publish_locked(self._state.merge(partial))
        self._notify(published)
        return published

    def subscribe(self, callback: Subscriber) -> None:
        """Register ``callback`` to receive every published snapshot."""
        with self._lock:
            self._subscribers.append(callback)

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _publish_locked(self, new_state: TelemetryState) -> StateSnapshot:
        self._state = new_state
        self._version += 1
        return StateSnapshot(self._version, new_state)

    def _notify(self, snapshot: StateSnapshot) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception as exc:  # noqa: BLE001
                logger.error("Telemetry subscriber %r failed: %s", callback, exc)

    def __repr__(self) -> str:
        snap = self.snapshot()
        return f"TelemetryStore(version={snap.version}, op_mode={snap.state.op_mode})"
