"""
telemetry/registry.py — Natural-language parameter registry.

Static mapping from parameter keys and their aliases to TelemetryState
fields, units, axis identity and, for physically coupled parameters, the
predictor quantity used to project correlated readings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Optional

from telemetry.state import TelemetryState

BOOLEAN_UNIT = "BOOL"


@dataclass(frozen=True)
class ParameterSpec:
    """
    One controllable parameter.

    Attributes:
        key: Canonical key used in the strict command grammar (e.g. ``rpm2``).
        aliases: Lowercase phrases that refer to this parameter in free text.
        unit: Display unit; ``BOOL`` marks 0/1 auxiliary subsystems.
        state_key: TelemetryState field the parameter writes.
        quantity: Predictor quantity name when the parameter is physically
            coupled, else ``None``.
        axis: Axis whose rpm/temp/torque receive the forward projection.
        broad_aliases: Aliases that name a situation rather than the
            parameter (``fire`` for the sprinklers). In free text they only
            count when no other parameter is named.
    """

    key: str
    aliases: tuple[str, ...]
    unit: str
    state_key: str
    quantity: Optional[str] = None
    axis: int = 1
    broad_aliases: tuple[str, ...] = ()

    @property
    def coupled(self) -> bool:
        return self.quantity is not None

    @property
    def is_boolean(self) -> bool:
        return self.unit == BOOLEAN_UNIT

    def names(self) -> tuple[str, ...]:
        return (self.key,) + tuple(a for a in self.aliases if a != self.key)

    def specific_names(self) -> tuple[str, ...]:
        return tuple(n for n in self.names() if n not in self.broad_aliases)


# Order matters for free-text lookup: axis-2 entries precede their axis-1
# counterparts so "axis 2 rpm" never resolves to plain "rpm".
DEFAULT_PARAMETERS: tuple[ParameterSpec, ...] = (
    ParameterSpec("rpm2", ("rpm2", "axis 2 rpm", "axis2 rpm", "axis 2 speed"), "RPM", "axis_2_rpm", "rpm", 2),
    ParameterSpec("temp2", ("temp2", "axis 2 temp", "axis2 temp", "axis 2 temperature"), "C", "axis_2_temp_c", "temperature", 2),
    ParameterSpec("torque2", ("torque2", "axis 2 torque", "axis2 torque"), "Nm", "axis_2_torque_nm", "torque", 2),
    ParameterSpec("rpm", ("rpm", "speed", "rotation"), "RPM", "axis_1_rpm", "rpm"),
    ParameterSpec("temperature", ("temperature", "temp", "heat"), "C", "axis_1_temp_c", "temperature"),
    ParameterSpec("torque", ("torque", "nm"), "Nm", "axis_1_torque_nm", "torque"),
    ParameterSpec("power", ("power", "watt", "kw"), "kW", "power_draw_kw", "power"),
    ParameterSpec("pressure", ("pressure", "psi"), "PSI", "main_pressure_psi", "pressure"),
    ParameterSpec("voltage", ("voltage", "volt"), "V", "voltage_v", "voltage"),
    ParameterSpec("coolant", ("coolant", "flow"), "LPM", "coolant_flow_lpm"),
    ParameterSpec("jitter", ("jitter", "latency"), "ms", "network_jitter_ms"),
    ParameterSpec("load", ("load", "cpu"), "%", "controller_cpu_load"),
    ParameterSpec("sprinkler", ("sprinkler", "sprinklers", "fire"), BOOLEAN_UNIT, "fire_sprinkler_active", broad_aliases=("fire",)),
    ParameterSpec("lights", ("lights", "emergency"), BOOLEAN_UNIT, "emergency_lights_active", broad_aliases=("emergency",)),
    ParameterSpec("ventilation", ("ventilation", "fan", "fans"), BOOLEAN_UNIT, "ventilation_active"),
    ParameterSpec("maglock", ("maglock", "lock"), BOOLEAN_UNIT, "aux_maglock_active"),
    ParameterSpec("igniter", ("igniter", "ignition", "spark"), BOOLEAN_UNIT, "igniter_active"),
)


class ParameterRegistry:
    """
    Lookup table over :class:`ParameterSpec` entries.

    Args:
        parameters: Entries in free-text priority order.

    Raises:
        ValueError: If two entries share a key or an entry targets an
            unknown TelemetryState field.
    """

    def __init__(self, parameters: tuple[ParameterSpec, ...] = DEFAULT_PARAMETERS) -> None:
        fields = set(TelemetryState.field_names())
        self._entries: tuple[ParameterSpec, ...] = tuple(parameters)
        self._by_key: dict[str, ParameterSpec] = {}
        self._by_alias: dict[str, ParameterSpec] = {}
        for spec in self._entries:
            if spec.key in self._by_key:
                raise ValueError(f"Duplicate parameter key: {spec.key}")
            if spec.state_key not in fields:
                raise ValueError(f"{spec.key} targets unknown field {spec.state_key}")
            self._by_key[spec.key] = spec
            for alias in spec.aliases:
                self._by_alias.setdefault(alias, spec)
        self._specific = [(spec, _word_patterns(spec.specific_names())) for spec in self._entries]
        self._broad = [(spec, _word_patterns(spec.broad_aliases)) for spec in self._entries]

    def __iter__(self) -> Iterator[ParameterSpec]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None

    def resolve(self, name: str) -> Optional[ParameterSpec]:
        """Return the entry for a key or exact alias (case-insensitive), else None."""
        needle = name.strip().lower()
        return self._by_key.get(needle) or self._by_alias.get(needle)

    def find_in_text(self, text: str) -> Optional[ParameterSpec]:
        """
        Return the first entry, in registry order, with a name occurring in
        ``text`` as a whole word or phrase.

        Broad aliases are only consulted when no entry is named specifically,
        so "disable ventilation during the fire drill" targets ventilation.
        """
        lowered = text.lower()
        for table in (self._specific, self._broad):
            for spec, patterns in table:
                if any(p.search(lowered) for p in patterns):
                    return spec
        return None

    def for_state_key(self, state_key: str) -> Optional[ParameterSpec]:
        for spec in self._entries:
            if spec.state_key == state_key:
                return spec
        return None


def _word_patterns(names: tuple[str, ...]) -> list[re.Pattern[str]]:
    return [re.compile(rf"\b{re.escape(name)}\b") for name in names]


_default_registry: Optional[ParameterRegistry] = None


def default_registry() -> ParameterRegistry:
    """Return the shared registry built from :data:`DEFAULT_PARAMETERS`."""
    global _default_registry
    if _default_registry is None:
        _default_registry = ParameterRegistry()
    return _default_registry
