"""
tests/test_fsm.py — pytest unit tests for core.fsm.ValidationFSM.
"""

from __future__ import annotations

import pytest

from core.constants import ValidationState
from core.fsm import InvalidTransitionError, ValidationFSM

S = ValidationState

# ──────────────────────────────────────────────────────────────
# Transition map mirror (must stay in sync with core/fsm.py)
# ──────────────────────────────────────────────────────────────

VALID_TRANSITIONS: dict[ValidationState, list[ValidationState]] = {
    S.INIT: [S.SEMANTIC_SCAN],
    S.SEMANTIC_SCAN: [S.PHYSICS_FOLD, S.DENIED],
    S.PHYSICS_FOLD: [S.CONTEXT_CHECK, S.DENIED],
    S.CONTEXT_CHECK: [S.AUTHORIZED, S.DENIED],
    S.AUTHORIZED: [],
    S.DENIED: [],
}

_PATHS: dict[ValidationState, list[ValidationState]] = {
    S.INIT: [],
    S.SEMANTIC_SCAN: [S.SEMANTIC_SCAN],
    S.PHYSICS_FOLD: [S.SEMANTIC_SCAN, S.PHYSICS_FOLD],
    S.CONTEXT_CHECK: [S.SEMANTIC_SCAN, S.PHYSICS_FOLD, S.CONTEXT_CHECK],
    S.AUTHORIZED: [S.SEMANTIC_SCAN, S.PHYSICS_FOLD, S.CONTEXT_CHECK, S.AUTHORIZED],
    S.DENIED: [S.SEMANTIC_SCAN, S.DENIED],
}


def _drive(fsm: ValidationFSM, target: ValidationState) -> None:
    for state in _PATHS[target]:
        fsm.transition(state)


@pytest.fixture()
def fsm() -> ValidationFSM:
    return ValidationFSM()


@pytest.fixture()
def fsm_with_callbacks() -> tuple[ValidationFSM, list[tuple]]:
    calls: list[tuple] = []
    machine = ValidationFSM(on_transition=lambda f, t, r: calls.append((f, t, r)))
    return machine, calls


class TestValidTransitions:

    def test_starts_in_init(self, fsm: ValidationFSM) -> None:
        assert fsm.current_state is S.INIT
        assert not fsm.is_terminal

    @pytest.mark.parametrize(
        "source,target",
        [(s, t) for s, targets in VALID_TRANSITIONS.items() for t in targets],
    )
    def test_every_mapped_transition_succeeds(
        self, fsm: ValidationFSM, source: ValidationState, target: ValidationState
    ) -> None:
        _drive(fsm, source)
        fsm.transition(target, reason="test")
        assert fsm.current_state is target

    def test_happy_path_reaches_authorized(self, fsm: ValidationFSM) -> None:
        _drive(fsm, S.AUTHORIZED)
        assert fsm.is_terminal
        assert fsm.path() == [S.INIT, S.SEMANTIC_SCAN, S.PHYSICS_FOLD, S.CONTEXT_CHECK, S.AUTHORIZED]

    @pytest.mark.parametrize("source", [S.SEMANTIC_SCAN, S.PHYSICS_FOLD, S.CONTEXT_CHECK])
    def test_deny_from_each_check(self, fsm: ValidationFSM, source: ValidationState) -> None:
        _drive(fsm, source)
        fsm.deny("blocked")
        assert fsm.current_state is S.DENIED
        assert fsm.get_history()[-1]["reason"] == "blocked"


class TestInvalidTransition:

    @pytest.mark.parametrize(
        "source,target",
        [
            (s, t)
            for s in VALID_TRANSITIONS
            for t in ValidationState
            if t not in VALID_TRANSITIONS[s]
        ],
    )
    def test_unmapped_transition_raises(
        self, fsm: ValidationFSM, source: ValidationState, target: ValidationState
    ) -> None:
        _drive(fsm, source)
        with pytest.raises(InvalidTransitionError) as excinfo:
            fsm.transition(target, reason="illegal")
        assert excinfo.value.from_state is source
        assert excinfo.value.to_state is target
        assert fsm.current_state is source

    def test_cannot_deny_before_scan(self, fsm: ValidationFSM) -> None:
        with pytest.raises(InvalidTransitionError):
            fsm.deny()

    def test_terminal_states_accept_nothing(self, fsm: ValidationFSM) -> None:
        _drive(fsm, S.DENIED)
        for state in ValidationState:
            assert not fsm.can_transition(state)

    def test_error_message_names_states(self) -> None:
        err = InvalidTransitionError(S.INIT, S.AUTHORIZED, "skip")
        assert "INIT" in str(err)
        assert "AUTHORIZED" in str(err)
        assert "skip" in str(err)


class TestHistory:

    def test_history_records_each_step(self, fsm: ValidationFSM) -> None:
        _drive(fsm, S.CONTEXT_CHECK)
        history = fsm.get_history()
        assert [h["to"] for h in history] == ["SEMANTIC_SCAN", "PHYSICS_FOLD", "CONTEXT_CHECK"]
        assert history[0]["from"] == "INIT"
        assert all(isinstance(h["timestamp"], float) for h in history)

    def test_history_is_a_copy(self, fsm: ValidationFSM) -> None:
        fsm.transition(S.SEMANTIC_SCAN)
        fsm.get_history().clear()
        assert len(fsm.get_history()) == 1

    def test_repr(self, fsm: ValidationFSM) -> None:
        fsm.transition(S.SEMANTIC_SCAN)
        assert repr(fsm) == "ValidationFSM(state=SEMANTIC_SCAN, transitions=1)"


class TestCallbacks:

    def test_external_callback_sees_every_transition(self, fsm_with_callbacks) -> None:
        machine, calls = fsm_with_callbacks
        machine.transition(S.SEMANTIC_SCAN, "scan")
        machine.deny("nope")
        assert calls == [
            (S.INIT, S.SEMANTIC_SCAN, "scan"),
            (S.SEMANTIC_SCAN, S.DENIED, "nope"),
        ]

    def test_raising_callback_does_not_break_transition(self) -> None:
        def boom(*_: object) -> None:
            raise RuntimeError("callback failure")

        machine = ValidationFSM(on_transition=boom)
        machine.transition(S.SEMANTIC_SCAN)
        assert machine.current_state is S.SEMANTIC_SCAN

    def test_on_enter_hook_dispatch(self) -> None:
        entered: list[str] = []

        class Recording(ValidationFSM):
            def _on_enter_denied(self) -> None:
                entered.append("denied")

        machine = Recording()
        machine.transition(S.SEMANTIC_SCAN)
        machine.deny()
        assert entered == ["denied"]
