"""
tests/test_state_store.py — TelemetryState invariants and TelemetryStore
publication semantics (compare-and-swap, merge, subscribers, threads).
"""

from __future__ import annotations

import dataclasses
import threading
from unittest.mock import MagicMock

import pytest

from telemetry.state import (
    HAZARD_FIRE,
    REFERENCE_READINGS,
    HazardContext,
    ProposedChange,
    TelemetryState,
    reference_reading,
)
from telemetry.store import StateSnapshot, TelemetryStore


class TestTelemetryState:

    def test_defaults_are_normal_reading(self) -> None:
        state = TelemetryState()
        assert state.op_mode == "NORMAL"
        assert state.axis_1_rpm == 1500.0
        assert state.ventilation_active == 1

    def test_frozen(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            TelemetryState().axis_1_rpm = 10.0  # type: ignore[misc]

    @pytest.mark.parametrize("field", ["axis_1_rpm", "main_pressure_psi", "fire_sprinkler_active"])
    def test_negative_reading_rejected(self, field: str) -> None:
        with pytest.raises(ValueError):
            TelemetryState(**{field: -1})

    @pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_reading_rejected(self, value: float) -> None:
        with pytest.raises(ValueError):
            TelemetryState(coolant_flow_lpm=value)
        with pytest.raises(ValueError):
            TelemetryState().merge({"network_jitter_ms": value})

    def test_non_numeric_reading_rejected(self) -> None:
        with pytest.raises(ValueError):
            TelemetryState(axis_1_rpm="fast")  # type: ignore[arg-type]

    def test_evolve_leaves_original_untouched(self) -> None:
        base = TelemetryState()
        changed = base.evolve(axis_1_rpm=2000.0)
        assert changed.axis_1_rpm == 2000.0
        assert base.axis_1_rpm == 1500.0

    def test_merge_unknown_field(self) -> None:
        with pytest.raises(KeyError):
            TelemetryState().merge({"warp_drive": 1.0})

    def test_get_unknown_field(self) -> None:
        with pytest.raises(KeyError):
            TelemetryState().get("warp_drive")

    def test_round_trip_through_dict(self) -> None:
        state = reference_reading("HIGH_LOAD")
        assert TelemetryState.from_dict(state.to_dict()) == state

    def test_numeric_fields_exclude_labels(self) -> None:
        numeric = TelemetryState.numeric_fields()
        assert "axis_1_rpm" in numeric
        assert "igniter_active" in numeric
        assert "hazard_detected" not in numeric
        assert "cycle_id" not in numeric

    def test_reference_readings(self) -> None:
        assert set(REFERENCE_READINGS) == {
            "IDLE", "NORMAL", "HIGH_LOAD", "DEGRADED", "CRITICAL", "EMERGENCY",
        }
        assert reference_reading("emergency").hazard_detected == HAZARD_FIRE
        with pytest.raises(KeyError):
            reference_reading("TURBO")

    def test_change_and_hazard_views(self) -> None:
        change = ProposedChange("rpm", "axis_1_rpm", 1500.0, 1800.0)
        assert change.to_dict() == {
            "parameter": "rpm", "state_key": "axis_1_rpm", "from": 1500.0, "to": 1800.0,
        }
        hazard = HazardContext.from_state(reference_reading("EMERGENCY"))
        assert hazard.hazard_detected == HAZARD_FIRE
        assert hazard.to_dict()["fire_sprinkler_active"] == 0


class TestTelemetryStore:

    def test_initial_snapshot(self) -> None:
        store = TelemetryStore()
        snap = store.snapshot()
        assert isinstance(snap, StateSnapshot)
        assert snap.version == 0
        assert snap.state == TelemetryState()

    def test_cas_succeeds_on_current_version(self) -> None:
        store = TelemetryStore()
        new_state = store.state.evolve(axis_1_rpm=1800.0)
        assert store.compare_and_swap(0, new_state) is True
        assert store.version == 1
        assert store.state.axis_1_rpm == 1800.0

    def test_cas_fails_on_stale_version(self) -> None:
        store = TelemetryStore()
        store.replace(store.state.evolve(axis_1_rpm=1700.0))
        assert store.compare_and_swap(0, store.state.evolve(axis_1_rpm=9.0)) is False
        assert store.state.axis_1_rpm == 1700.0
        assert store.version == 1

    def test_merge_publishes_partial(self) -> None:
        store = TelemetryStore()
        snap = store.merge({"axis_1_temp_c": 44.0})
        assert snap.version == 1
        assert store.state.axis_1_temp_c == 44.0
        assert store.state.axis_1_rpm == 1500.0

    def test_merge_unknown_field_does_not_publish(self) -> None:
        store = TelemetryStore()
        with pytest.raises(KeyError):
            store.merge({"nope": 1})
        assert store.version == 0

    def test_subscribers_notified_and_isolated(self) -> None:
        store = TelemetryStore()
        failing = MagicMock(side_effect=RuntimeError("subscriber down"))
        received: list[StateSnapshot] = []
        store.subscribe(failing)
        store.subscribe(received.append)
        store.replace(TelemetryState(axis_1_rpm=100.0))
        failing.assert_called_once()
        assert [s.version for s in received] == [1]

    def test_concurrent_cas_never_loses_an_increment(self) -> None:
        store = TelemetryStore(TelemetryState(axis_1_rpm=0.0))
        n_threads, per_thread = 8, 50

        def worker() -> None:
            done = 0
            while done < per_thread:
                snap = store.snapshot()
                bumped = snap.state.evolve(axis_1_rpm=snap.state.axis_1_rpm + 1)
                if store.compare_and_swap(snap.version, bumped):
                    done += 1

        threads = [threading.Thread(target=worker) for _ in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)

        assert store.state.axis_1_rpm == n_threads * per_thread
        assert store.version == n_threads * per_thread

    def test_repr(self) -> None:
        assert repr(TelemetryStore()) == "TelemetryStore(version=0, op_mode=NORMAL)"
