"""
telemetry/state.py — Immutable machine telemetry snapshot.

TelemetryState is a frozen, flat record of sensor and actuator readings.
It is never mutated in place: every change produces a new record via
:meth:`TelemetryState.evolve` or :meth:`TelemetryState.merge`, so a reader
holding a snapshot always sees a consistent whole.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from typing import Any, Mapping

# Advisory hazard classifications understood by the context rules
HAZARD_NONE = "NONE"
HAZARD_FIRE = "FIRE"
HAZARD_OVERHEAT = "OVERHEAT"
HAZARD_GAS_LEAK = "GAS_LEAK"


@dataclass(frozen=True)
class TelemetryState:
    """
    One consistent reading of the machine.

    Numeric fields must be finite and non-negative. Auxiliary subsystems are
    stored as 0/1 integers.

    Raises:
        ValueError: On construction with a negative, non-finite or non-numeric
            reading.
    """

    timestamp_seq: int = 4
    cycle_id: str = "CYC-X100"
    op_mode: str = "NORMAL"
    safety_lock: str = "UNLOCKED"

    axis_1_rpm: float = 1500.0
    axis_1_temp_c: float = 35.2
    axis_1_torque_nm: float = 120.0
    axis_2_rpm: float = 1200.0
    axis_2_temp_c: float = 36.8
    axis_2_torque_nm: float = 110.0

    main_pressure_psi: float = 1500.0
    coolant_flow_lpm: float = 15.2
    power_draw_kw: float = 4.5
    voltage_v: float = 219.9
    network_jitter_ms: float = 4.0
    controller_cpu_load: float = 25.0

    fire_sprinkler_active: int = 0
    emergency_lights_active: int = 0
    ventilation_active: int = 1
    aux_maglock_active: int = 1
    igniter_active: int = 0

    hazard_detected: str = HAZARD_NONE
    system_health_status: str = "NOMINAL"

    def __post_init__(self) -> None:
        for name in self.numeric_fields():
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be numeric, got {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

    # ──────────────────────────────────────────
    # Introspection
    # ──────────────────────────────────────────

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in dataclasses.fields(cls))

    @classmethod
    def numeric_fields(cls) -> tuple[str, ...]:
        """Names of the int/float fields, the ones the pipeline may fold."""
        return tuple(
            f.name for f in dataclasses.fields(cls) if f.type in ("int", "float", int, float)
        )

    def get(self, name: str) -> Any:
        """
        Return one reading by field name.

        Raises:
            KeyError: If ``name`` is not a TelemetryState field.
        """
        if name not in self.field_names():
            raise KeyError(name)
        return getattr(self, name)

    # ──────────────────────────────────────────
    # Copy-on-write updates
    # ──────────────────────────────────────────

    def evolve(self, **changes: Any) -> "TelemetryState":
        """Return a new state with ``changes`` applied."""
        return dataclasses.replace(self, **changes)

    def merge(self, partial: Mapping[str, Any]) -> "TelemetryState":
        """
        Return a new state with the readings in ``partial`` applied.

        Args:
            partial: Field name → value mapping (e.g. from a batch import).

        Raises:
            KeyError: If ``partial`` names an unknown field.
            ValueError: If a merged value violates the record's invariants.
        """
        known = set(self.field_names())
        unknown = sorted(set(partial) - known)
        if unknown:
            raise KeyError(f"Unknown telemetry fields: {', '.join(unknown)}")
        return dataclasses.replace(self, **dict(partial))

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TelemetryState":
        """Build a state from a mapping; missing fields take their defaults."""
        return cls().merge(data)


# ──────────────────────────────────────────────────────────────
# Reference readings, one per operating profile
# ──────────────────────────────────────────────────────────────

REFERENCE_READINGS: dict[str, TelemetryState] = {
    "IDLE": TelemetryState(
        timestamp_seq=1, cycle_id="CYC-X100", op_mode="IDLE", safety_lock="LOCKED",
        axis_1_rpm=0.0, axis_1_temp_c=22.0, axis_1_torque_nm=0.0,
        axis_2_rpm=0.0, axis_2_temp_c=21.5, axis_2_torque_nm=0.0,
        main_pressure_psi=50.0, coolant_flow_lpm=0.0, power_draw_kw=0.5,
        voltage_v=220.1, network_jitter_ms=2.0, controller_cpu_load=5.0,
    ),
    "NORMAL": TelemetryState(),
    "HIGH_LOAD": TelemetryState(
        timestamp_seq=10, cycle_id="CYC-X102", op_mode="HIGH_LOAD",
        axis_1_rpm=3200.0, axis_1_temp_c=60.2, axis_1_torque_nm=310.0,
        axis_2_rpm=2400.0, axis_2_temp_c=65.2, axis_2_torque_nm=290.0,
        main_pressure_psi=2200.0, coolant_flow_lpm=14.2, power_draw_kw=10.2,
        voltage_v=218.1, network_jitter_ms=15.0, controller_cpu_load=60.0,
    ),
    "DEGRADED": TelemetryState(
        timestamp_seq=15, cycle_id="CYC-X104", op_mode="DEGRADED",
        axis_1_rpm=4300.0, axis_1_temp_c=78.9, axis_1_torque_nm=440.0,
        axis_2_rpm=3600.0, axis_2_temp_c=94.2, axis_2_torque_nm=430.0,
        main_pressure_psi=2700.0, coolant_flow_lpm=6.5, power_draw_kw=14.8,
        voltage_v=216.5, network_jitter_ms=68.0, controller_cpu_load=82.0,
        hazard_detected=HAZARD_OVERHEAT, system_health_status="DEGRADED",
    ),
    "CRITICAL": TelemetryState(
        timestamp_seq=18, cycle_id="CYC-X105", op_mode="CRITICAL",
        axis_1_rpm=5100.0, axis_1_temp_c=90.5, axis_1_torque_nm=510.0,
        axis_2_rpm=4200.0, axis_2_temp_c=108.5, axis_2_torque_nm=490.0,
        main_pressure_psi=3100.0, coolant_flow_lpm=3.5, power_draw_kw=17.1,
        voltage_v=215.0, network_jitter_ms=150.0, controller_cpu_load=92.0,
        hazard_detected=HAZARD_OVERHEAT, system_health_status="CRITICAL",
    ),
    "EMERGENCY": TelemetryState(
        timestamp_seq=22, cycle_id="CYC-X106", op_mode="EMERGENCY",
        axis_1_rpm=8900.0, axis_1_temp_c=125.2, axis_1_torque_nm=850.0,
        axis_2_rpm=6000.0, axis_2_temp_c=148.2, axis_2_torque_nm=720.0,
        main_pressure_psi=4500.0, coolant_flow_lpm=1.0, power_draw_kw=23.8,
        voltage_v=210.5, network_jitter_ms=800.0, controller_cpu_load=100.0,
        hazard_detected=HAZARD_FIRE, system_health_status="EMERGENCY",
    ),
}


def reference_reading(profile: str) -> TelemetryState:
    """
    Return the reference reading for an operating profile.

    Raises:
        KeyError: If ``profile`` is not one of :data:`REFERENCE_READINGS`.
    """
    return REFERENCE_READINGS[profile.upper()]


# ──────────────────────────────────────────────────────────────
# Change descriptions exchanged with the reasoning oracle
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProposedChange:
    """One field a command would change, with its before/after values."""

    parameter: str
    state_key: str
    from_value: float
    to_value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameter": self.parameter,
            "state_key": self.state_key,
            "from": self.from_value,
            "to": self.to_value,
        }


@dataclass(frozen=True)
class HazardContext:
    """The advisory flags and safety subsystems the context rules look at."""

    hazard_detected: str
    system_health_status: str
    fire_sprinkler_active: int
    ventilation_active: int
    igniter_active: int

    @classmethod
    def from_state(cls, state: TelemetryState) -> "HazardContext":
        return cls(
            hazard_detected=state.hazard_detected,
            system_health_status=state.system_health_status,
            fire_sprinkler_active=state.fire_sprinkler_active,
            ventilation_active=state.ventilation_active,
            igniter_active=state.igniter_active,
        )

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)
