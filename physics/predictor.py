"""
physics/predictor.py — Physical consequence predictor.

Projects the correlated readings (temperature, vibration, torque, power)
that a machine axis settles at for a requested value of one physical
parameter, by piecewise-linear interpolation over a table of empirical
anchors, and scores the physical risk of that projection.

The predictor is pure and total: any float input produces a Prediction.
Out-of-range inputs are clamped to the anchor table, never rejected.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from core.config import PhysicsConfig, SafetyThresholds
from core.constants import PredictionStatus


@dataclass(frozen=True)
class CorrelationPoint:
    """Joint machine behaviour observed at one rotational speed. Power is in W."""

    rotational_speed: float
    temperature: float
    vibration: float
    torque: float
    power: float
    voltage: float
    pressure: float


DEFAULT_ANCHORS: tuple[CorrelationPoint, ...] = (
    CorrelationPoint(0, 24.5, 0.02, 0, 50, 0, 50),
    CorrelationPoint(1200, 35.2, 0.15, 100, 450, 12, 1000),
    CorrelationPoint(1500, 42.1, 0.18, 120, 600, 24, 1500),
    CorrelationPoint(2500, 51.0, 0.28, 130, 1000, 32, 2000),
    CorrelationPoint(3800, 65.8, 0.68, 310, 1850, 40, 2800),
    CorrelationPoint(4500, 78.1, 1.10, 440, 2500, 44, 3500),
    CorrelationPoint(5500, 94.5, 4.10, 550, 3800, 48, 4500),
    CorrelationPoint(7500, 105.2, 6.80, 750, 5000, 52, 6000),
    CorrelationPoint(9200, 118.0, 8.20, 850, 6200, 60, 8000),
)


@dataclass(frozen=True)
class Prediction:
    """Projected readings for one requested operating point. Power is in kW."""

    expected_speed: float
    expected_temperature: float
    expected_vibration: float
    expected_torque: float
    expected_power: float
    risk_score: float
    status: PredictionStatus

    @property
    def is_critical(self) -> bool:
        return self.status is PredictionStatus.CRITICAL


# Parameter name → (anchor column, factor converting the caller's unit to it)
_QUANTITY_COLUMNS: dict[str, tuple[str, float]] = {
    "rpm": ("rotational_speed", 1.0),
    "speed": ("rotational_speed", 1.0),
    "voltage": ("voltage", 1.0),
    "v": ("voltage", 1.0),
    "pressure": ("pressure", 1.0),
    "psi": ("pressure", 1.0),
    "torque": ("torque", 1.0),
    "nm": ("torque", 1.0),
    "temperature": ("temperature", 1.0),
    "temp": ("temperature", 1.0),
    "power": ("power", 1000.0),
    "kw": ("power", 1000.0),
}


def _bracket(
    anchors: Sequence[CorrelationPoint],
    key: Callable[[CorrelationPoint], float],
    value: float,
) -> tuple[CorrelationPoint, CorrelationPoint, float]:
    """
    Find the anchors surrounding ``value`` along ``key``.

    ``anchors`` must be sorted ascending by ``key``. Returns the greatest
    anchor at or below ``value`` and the least at or above it, clamped to the
    extremes, plus the interpolation factor (0 on a degenerate span).
    """
    lower = next((a for a in reversed(anchors) if key(a) <= value), anchors[0])
    upper = next((a for a in anchors if key(a) >= value), anchors[-1])
    span = key(upper) - key(lower)
    factor = 0.0 if span == 0 else (value - key(lower)) / span
    return lower, upper, factor


def _lerp(lower: float, upper: float, factor: float) -> float:
    return lower + (upper - lower) * factor


def _clamp(value: float, low: float, high: float) -> float:
    if math.isnan(value):
        return low
    return max(low, min(high, value))


class PhysicsPredictor:
    """
    Interpolation engine over a :class:`CorrelationPoint` table.

    Args:
        anchors: Anchor table; order does not matter.
        thresholds: Safety ceilings (``max_torque_nm`` feeds the risk score).
        physics: Temperature thresholds and risk weights.

    Raises:
        ValueError: If ``anchors`` is empty.
    """

    def __init__(
        self,
        anchors: Sequence[CorrelationPoint] = DEFAULT_ANCHORS,
        thresholds: Optional[SafetyThresholds] = None,
        physics: Optional[PhysicsConfig] = None,
    ) -> None:
        if not anchors:
            raise ValueError("PhysicsPredictor needs at least one correlation anchor")
        self._anchors = tuple(anchors)
        self._thresholds = thresholds or SafetyThresholds()
        self._physics = physics or PhysicsConfig()

    @property
    def anchors(self) -> tuple[CorrelationPoint, ...]:
        return self._anchors

    @property
    def speed_range(self) -> tuple[float, float]:
        speeds = [a.rotational_speed for a in self._anchors]
        return min(speeds), max(speeds)

    def predict_from_parameter(self, parameter_name: str, target_value: float) -> Prediction:
        """
        Predict the operating point reached when ``parameter_name`` is driven
        to ``target_value``.

        Non-speed parameters are first mapped to a speed by inverse lookup
        on their anchor column. Unknown parameter names fall back to the
        baseline speed.
        """
        column = _QUANTITY_COLUMNS.get(parameter_name.strip().lower())
        if column is None:
            return self.predict_from_speed(self._physics.baseline_speed_rpm)

        attribute, unit_factor = column
        if attribute == "rotational_speed":
            return self.predict_from_speed(target_value)

        target = target_value * unit_factor
        key = lambda a: getattr(a, attribute)  # noqa: E731
        by_column = sorted(self._anchors, key=key)
        low, high = key(by_column[0]), key(by_column[-1])
        lower, upper, factor = _bracket(by_column, key, _clamp(target, low, high))
        speed = _lerp(lower.rotational_speed, upper.rotational_speed, factor)
        return self.predict_from_speed(speed)

    def predict_from_speed(self, requested_speed: float) -> Prediction:
        """Project correlated readings at ``requested_speed`` (clamped to the table)."""
        by_speed = sorted(self._anchors, key=lambda a: a.rotational_speed)
        low, high = by_speed[0].rotational_speed, by_speed[-1].rotational_speed
        speed = _clamp(requested_speed, low, high)
        lower, upper, factor = _bracket(by_speed, lambda a: a.rotational_speed, speed)

        temperature = _lerp(lower.temperature, upper.temperature, factor)
        vibration = _lerp(lower.vibration, upper.vibration, factor)
        torque = _lerp(lower.torque, upper.torque, factor)
        power_w = _lerp(lower.power, upper.power, factor)

        risk = self._risk(temperature, torque)
        status = (
            PredictionStatus.CRITICAL
            if risk > self._physics.critical_risk_above
            else PredictionStatus.SAFE
        )
        return Prediction(
            expected_speed=float(round(speed)),
            expected_temperature=temperature,
            expected_vibration=vibration,
            expected_torque=torque,
            expected_power=power_w / 1000.0,
            risk_score=round(risk, 2),
            status=status,
        )

    def _risk(self, temperature: float, torque: float) -> float:
        physics = self._physics
        risk = 0.0
        if temperature > physics.temp_critical_c:
            risk = physics.temp_critical_risk
        elif temperature > physics.temp_warning_c:
            risk = physics.temp_warning_risk
        if torque > self._thresholds.max_torque_nm:
            risk = max(risk, physics.torque_risk)
        return risk
