"""
telemetry/csv_connector.py — Batch telemetry import from tabular text.

Two layouts are accepted:

* wide: a header row of column names and a data row (only the first data row
  is read);
* key/value: a ``parameter,value`` (or ``key,value``) header followed by one
  row per reading.

Column names are mapped onto TelemetryState fields by exact alias match, then
by substring match. Cells that are not numeric are skipped; non-finite or
negative cells are skipped and listed in :attr:`ImportResult.rejected`. No
other range validation is done; the resulting partial state is merged into
the live store as-is.
"""

from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from telemetry.registry import ParameterRegistry, default_registry

logger = logging.getLogger(__name__)

_KEY_VALUE_HEADERS = {("parameter", "value"), ("key", "value"), ("name", "value")}

# Column spellings seen in exported controller logs, checked before the
# registry aliases so axis-specific columns win over the generic names.
_COLUMN_ALIASES: dict[str, str] = {
    "axis_1_rpm": "axis_1_rpm",
    "axis 1 rpm": "axis_1_rpm",
    "a1_rpm": "axis_1_rpm",
    "axis_1_temp": "axis_1_temp_c",
    "axis 1 temp": "axis_1_temp_c",
    "a1_temp": "axis_1_temp_c",
    "axis_1_torque": "axis_1_torque_nm",
    "axis 1 torque": "axis_1_torque_nm",
    "a1_torque": "axis_1_torque_nm",
    "axis_2_rpm": "axis_2_rpm",
    "axis 2 rpm": "axis_2_rpm",
    "a2_rpm": "axis_2_rpm",
    "axis_2_temp": "axis_2_temp_c",
    "axis 2 temp": "axis_2_temp_c",
    "a2_temp": "axis_2_temp_c",
    "axis_2_torque": "axis_2_torque_nm",
    "axis 2 torque": "axis_2_torque_nm",
    "a2_torque": "axis_2_torque_nm",
}


@dataclass(frozen=True)
class ImportedParameter:
    """One numeric cell of the import and where it landed."""

    name: str
    value: float
    mapped_key: Optional[str]
    unit: str


@dataclass
class ImportResult:
    """Parsed cells plus the partial state ready to merge."""

    parameters: list[ImportedParameter] = field(default_factory=list)
    partial_state: dict[str, float] = field(default_factory=dict)
    rejected: list[str] = field(default_factory=list)

    @property
    def unmapped(self) -> list[str]:
        return [p.name for p in self.parameters if p.mapped_key is None]


class CSVConnector:
    """
    Maps CSV telemetry exports onto TelemetryState fields.

    Args:
        registry: Parameter registry whose aliases extend the column map.
    """

    def __init__(self, registry: Optional[ParameterRegistry] = None) -> None:
        self._registry = registry or default_registry()
        self._key_mapping: dict[str, str] = dict(_COLUMN_ALIASES)
        self._units: dict[str, str] = {}
        for spec in self._registry:
            self._units[spec.state_key] = spec.unit
            for name in (spec.state_key,) + spec.names():
                self._key_mapping.setdefault(name, spec.state_key)

    def map_column(self, header: str) -> Optional[str]:
        """Return the TelemetryState field for a column name, or None."""
        name = header.strip().lower()
        if name in self._key_mapping:
            return self._key_mapping[name]
        for alias, state_key in self._key_mapping.items():
            if alias in name:
                return state_key
        return None

    def extract(self, content: str) -> ImportResult:
        """
        Parse CSV text into an :class:`ImportResult`.

        Fewer than two non-empty rows yields an empty result.
        """
        rows = [
            [cell.strip() for cell in row]
            for row in csv.reader(io.StringIO(content))
            if any(cell.strip() for cell in row)
        ]
        result = ImportResult()
        if len(rows) < 2:
            return result

        header = [h.lower() for h in rows[0]]
        if len(header) == 2 and tuple(header) in _KEY_VALUE_HEADERS:
            pairs = [(row[0], row[1]) for row in rows[1:] if len(row) >= 2]
        else:
            pairs = list(zip(header, rows[1]))

        for name, raw in pairs:
            try:
                value = float(raw)
            except ValueError:
                logger.debug("Skipping non-numeric cell %s=%r", name, raw)
                continue
            if not math.isfinite(value) or value < 0:
                logger.warning("Rejecting out-of-range cell %s=%r", name, raw)
                result.rejected.append(name.strip().upper())
                continue
            mapped = self.map_column(name)
            if mapped is not None:
                result.partial_state[mapped] = value
            result.parameters.append(
                ImportedParameter(
                    name=name.strip().upper(),
                    value=value,
                    mapped_key=mapped,
                    unit=self._units.get(mapped, "") if mapped else "",
                )
            )

        logger.info(
            "CSV import: %d numeric cells, %d mapped",
            len(result.parameters),
            len(result.partial_state),
        )
        return result
