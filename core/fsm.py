"""
core/fsm.py — Validation state machine for the Sentinel actuation guard.

One ValidationFSM is created per pipeline invocation. It enforces the
explicit transition map INIT → SEMANTIC_SCAN → PHYSICS_FOLD → CONTEXT_CHECK
→ AUTHORIZED | DENIED, records transition history and fires per-state
``_on_enter_<state>`` hooks.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from core.constants import ValidationState

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Custom exception
# ──────────────────────────────────────────────────────────────

class InvalidTransitionError(RuntimeError):
    """
    Raised when a requested transition is not in the valid transition map.

    Args:
        from_state: Current state at the time of the illegal attempt.
        to_state: Requested (invalid) target state.
        reason: Caller-supplied reason string.
    """

    def __init__(
        self,
        from_state: ValidationState,
        to_state: ValidationState,
        reason: str = "",
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(
            f"Invalid transition {from_state.value} → {to_state.value}"
            + (f" (reason: {reason})" if reason else "")
        )


# ──────────────────────────────────────────────────────────────
# Valid transition map
# ──────────────────────────────────────────────────────────────

_VALID_TRANSITIONS: dict[ValidationState, list[ValidationState]] = {
    ValidationState.INIT: [
        ValidationState.SEMANTIC_SCAN,
    ],
    ValidationState.SEMANTIC_SCAN: [
        ValidationState.PHYSICS_FOLD,
        ValidationState.DENIED,
    ],
    ValidationState.PHYSICS_FOLD: [
        ValidationState.CONTEXT_CHECK,
        ValidationState.DENIED,
    ],
    ValidationState.CONTEXT_CHECK: [
        ValidationState.AUTHORIZED,
        ValidationState.DENIED,
    ],
    ValidationState.AUTHORIZED: [],
    ValidationState.DENIED: [],
}

_TERMINAL_STATES = frozenset({ValidationState.AUTHORIZED, ValidationState.DENIED})


# ──────────────────────────────────────────────────────────────
# FSM class
# ──────────────────────────────────────────────────────────────

class ValidationFSM:
    """
    Finite state machine tracking one validation invocation.

    Illegal transitions raise :class:`InvalidTransitionError` immediately.
    Terminal states (AUTHORIZED, DENIED) accept no further transitions.

    Args:
        on_transition: Optional callback invoked after every successful
            transition with signature ``(from_state, to_state, reason)``.
    """

    def __init__(
        self,
        on_transition: Callable[[ValidationState, ValidationState, str], None] | None = None,
    ) -> None:
        self._state: ValidationState = ValidationState.INIT
        self._lock = threading.Lock()
        self._history: list[dict] = []
        self._external_callback = on_transition

    @property
    def current_state(self) -> ValidationState:
        """Return the current state (thread-safe read)."""
        with self._lock:
            return self._state

    @property
    def is_terminal(self) -> bool:
        """True once the invocation reached AUTHORIZED or DENIED."""
        return self.current_state in _TERMINAL_STATES

    def transition(self, new_state: ValidationState, reason: str = "") -> None:
        """
        Attempt a validated state transition.

        Args:
            new_state: Target state to transition to.
            reason: Human-readable reason for the transition (for history).

        Raises:
            InvalidTransitionError: If the transition is not in the valid map.
        """
        with self._lock:
            from_state = self._state
            if new_state not in _VALID_TRANSITIONS.get(from_state, []):
                raise InvalidTransitionError(from_state, new_state, reason)
            self._state = new_state
            self._history.append(
                {
                    "from": from_state.value,
                    "to": new_state.value,
                    "reason": reason,
                    "timestamp": time.time(),
                }
            )

        logger.debug(
            "FSM: %s → %s%s",
            from_state.value,
            new_state.value,
            f" [{reason}]" if reason else "",
        )

        self._fire_on_enter(new_state)

        if self._external_callback is not None:
            try:
                self._external_callback(from_state, new_state, reason)
            except Exception as exc:  # noqa: BLE001
                logger.warning("FSM external callback raised: %s", exc)

    def deny(self, reason: str = "") -> None:
        """Move to DENIED from any non-terminal state that allows it."""
        self.transition(ValidationState.DENIED, reason)

    def get_history(self) -> list[dict]:
        """
        Return a copy of the transition records, oldest first.

        Each record is a dict with keys ``from``, ``to``, ``reason`` and
        ``timestamp`` (Unix epoch float).
        """
        with self._lock:
            return list(self._history)

    def path(self) -> list[ValidationState]:
        """Return the visited states, starting with INIT."""
        with self._lock:
            return [ValidationState.INIT] + [
                ValidationState(record["to"]) for record in self._history
            ]

    def can_transition(self, target: ValidationState) -> bool:
        """Check whether a transition to ``target`` is currently valid."""
        return target in _VALID_TRANSITIONS.get(self._state, [])

    # ──────────────────────────────────────────
    # on_enter callbacks, overridden in subclasses
    # ──────────────────────────────────────────

    def _on_enter_authorized(self) -> None:
        logger.debug("FSM enter: AUTHORIZED")

    def _on_enter_denied(self) -> None:
        logger.debug("FSM enter: DENIED")

    def _fire_on_enter(self, state: ValidationState) -> None:
        """Dispatch to ``_on_enter_<state>`` if the subclass defines one."""
        method_name = f"_on_enter_{state.value.lower()}"
        method = getattr(self, method_name, None)
        if callable(method):
            try:
                method()
            except Exception as exc:  # noqa: BLE001
                logger.warning("on_enter callback %r raised: %s", method_name, exc)

    def __repr__(self) -> str:
        with self._lock:
            steps = len(self._history)
            state = self._state.value
        return f"ValidationFSM(state={state}, transitions={steps})"
