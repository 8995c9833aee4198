"""
core/config.py — Typed configuration loader for the Sentinel actuation guard.

Loads config/sentinel.yaml and validates all values into typed dataclasses.
All downstream modules import from this module; never read YAML directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from core.constants import GuardConstants as C

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Dataclass hierarchy, mirrors sentinel.yaml
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class SafetyThresholds:
    """Static numeric ceilings consulted read-only by pipeline and predictor."""

    # Motion
    max_rpm: float = 6000.0
    max_acceleration_rpm: float = 1500.0
    max_torque_nm: float = 600.0
    max_position_error_mm: float = 0.5
    vibration_trip_threshold_g: float = 4.0
    # Electrical
    max_voltage: float = 240.0
    min_voltage_cutoff: float = 200.0
    max_current_continuous_amps: float = 32.0
    max_current_peak_amps: float = 60.0
    max_power_watts: float = 5000.0
    insulation_resistance_min_ohm: float = 1_000_000.0
    # Thermal / fluid
    max_temp: float = 95.0
    max_case_temp: float = 85.0
    min_coolant_flow_lpm: float = 5.0
    max_humidity_percent: float = 80.0
    max_pressure_psi: float = 4000.0
    # Network / control
    max_latency_ms: float = 100.0
    max_packet_loss_percent: float = 1.0
    allowed_ports: tuple[int, ...] = (502, 4840)
    allowed_modes: tuple[str, ...] = ("IDLE", "NORMAL", "HIGH_LOAD")
    emergency_stop_override: bool = False
    requires_physical_key: bool = True
    geo_fencing_radius_m: float = 50.0

    @property
    def max_power_kw(self) -> float:
        """The power ceiling in kW, the unit TelemetryState reports."""
        return self.max_power_watts / 1000.0


@dataclass(frozen=True)
class PhysicsConfig:
    """Risk thresholds applied to predictor output."""

    temp_critical_c: float = 115.0
    temp_warning_c: float = 85.0
    temp_critical_risk: float = 1.0
    temp_warning_risk: float = 0.75
    torque_risk: float = 0.85
    critical_risk_above: float = C.CRITICAL_RISK_ABOVE
    baseline_speed_rpm: float = C.BASELINE_SPEED_RPM


@dataclass(frozen=True)
class ScorerConfig:
    """Semantic risk scorer tuning."""

    jailbreak_threshold: float = C.JAILBREAK_THRESHOLD
    honeypot_threshold: float = C.HONEYPOT_THRESHOLD
    exact_match_weight: float = C.EXACT_MATCH_WEIGHT
    shingle_size: int = C.SHINGLE_SIZE


@dataclass(frozen=True)
class OracleConfig:
    """Reasoning oracle backend and latency budgets."""

    backend: str = "rules"
    model_id: str = C.DEFAULT_MODEL_ID
    cache_dir: str = "~/.cache/huggingface/hub"
    max_new_tokens: int = 160
    temperature: float = 0.1
    do_sample: bool = False
    device_map: str = "auto"
    timeout_ms: float = C.ORACLE_TIMEOUT_MS
    reaction_timeout_ms: float = C.REACTION_TIMEOUT_MS
    reactions_enabled: bool = True

    @property
    def resolved_cache_dir(self) -> Path:
        """Return the cache directory as an absolute Path, expanding ~ if needed."""
        return Path(os.path.expanduser(self.cache_dir))


@dataclass(frozen=True)
class PipelineConfig:
    """Gateway behaviour around the validation pipeline."""

    max_commit_attempts: int = C.MAX_COMMIT_ATTEMPTS
    initial_profile: str = "NORMAL"
    connector_name: str = "LIVE_TELEMETRY"


@dataclass(frozen=True)
class AuditConfig:
    """Audit sink configuration."""

    capacity: int = C.AUDIT_CAPACITY
    jsonl_path: Optional[str] = None


@dataclass(frozen=True)
class ServerConfig:
    """FastAPI / uvicorn server configuration."""

    host: str = "127.0.0.1"
    port: int = 7860


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    log_dir: str = "logs"


@dataclass(frozen=True)
class GuardConfig:
    """Root configuration object — single source of truth for all settings."""

    thresholds: SafetyThresholds = field(default_factory=SafetyThresholds)
    physics: PhysicsConfig = field(default_factory=PhysicsConfig)
    scorer: ScorerConfig = field(default_factory=ScorerConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────


def _merge(defaults: dict, overrides: dict) -> dict:
    """
    Deep-merge *overrides* into *defaults*, returning a new dict.

    Nested dicts are merged recursively; scalar values in overrides win.
    """
    result: dict = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping, got: {type(section)}")
    return section


def load_config(
    config_path: Path | str | None = None,
    overrides: Optional[dict] = None,
) -> GuardConfig:
    """
    Load, validate, and return a GuardConfig from a YAML file.

    The search order for the config file is:
    1. *config_path* argument (if provided)
    2. SENTINEL_CONFIG environment variable
    3. ``config/sentinel.yaml`` relative to the project root
    4. Built-in defaults (no file required)

    Args:
        config_path: Optional path to a ``sentinel.yaml`` file.
        overrides: Optional nested dict merged on top of the file contents
            (used by the CLI and tests).

    Returns:
        A fully populated and frozen :class:`GuardConfig` instance.

    Raises:
        ValueError: If a YAML field has an unknown name, invalid type or value.
        FileNotFoundError: If *config_path* is explicitly given but does not exist.
    """
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = Path(config_path)
        if not resolved_path.exists():
            raise FileNotFoundError(f"Config file not found: {resolved_path}")
    elif "SENTINEL_CONFIG" in os.environ:
        resolved_path = Path(os.environ["SENTINEL_CONFIG"])
        if not resolved_path.exists():
            raise FileNotFoundError(
                f"SENTINEL_CONFIG points to missing file: {resolved_path}"
            )
    else:
        candidate = Path(__file__).resolve().parent.parent / "config" / "sentinel.yaml"
        if candidate.exists():
            resolved_path = candidate

    raw: dict = {}
    if resolved_path is not None:
        logger.info("Loading config from: %s", resolved_path)
        with resolved_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must be a YAML mapping, got: {type(loaded)}")
        raw = loaded
    else:
        logger.info("No config file found — using built-in defaults")

    if overrides:
        raw = _merge(raw, overrides)

    try:
        thr_raw = dict(_section(raw, "thresholds"))
        # YAML lists → tuples for the frozen dataclass
        for key in ("allowed_ports", "allowed_modes"):
            if isinstance(thr_raw.get(key), list):
                thr_raw[key] = tuple(thr_raw[key])
        thresholds = SafetyThresholds(**thr_raw)
        physics = PhysicsConfig(**_section(raw, "physics"))
        scorer = ScorerConfig(**_section(raw, "scorer"))
        oracle = OracleConfig(**_section(raw, "oracle"))
        pipeline = PipelineConfig(**_section(raw, "pipeline"))
        audit = AuditConfig(**_section(raw, "audit"))
        server = ServerConfig(**_section(raw, "server"))
        log_cfg = LoggingConfig(**_section(raw, "logging"))
    except TypeError as exc:
        raise ValueError(f"Invalid config value: {exc}") from exc

    _validate_config(thresholds, physics, scorer, oracle, pipeline)

    config = GuardConfig(
        thresholds=thresholds,
        physics=physics,
        scorer=scorer,
        oracle=oracle,
        pipeline=pipeline,
        audit=audit,
        server=server,
        logging=log_cfg,
    )
    logger.debug("Config loaded: %s", config)
    return config


def _validate_config(
    thresholds: SafetyThresholds,
    physics: PhysicsConfig,
    scorer: ScorerConfig,
    oracle: OracleConfig,
    pipeline: PipelineConfig,
) -> None:
    """
    Validate cross-field constraints on the loaded configuration.

    Raises:
        ValueError: If any configured value violates a hard constraint.
    """
    for name in ("max_rpm", "max_torque_nm", "max_temp", "max_power_watts", "max_pressure_psi"):
        value = getattr(thresholds, name)
        if value <= 0:
            raise ValueError(f"thresholds.{name} must be positive, got {value}")
    if thresholds.min_voltage_cutoff > thresholds.max_voltage:
        raise ValueError(
            "thresholds.min_voltage_cutoff must not exceed thresholds.max_voltage"
        )
    if physics.temp_warning_c >= physics.temp_critical_c:
        raise ValueError(
            f"physics.temp_warning_c ({physics.temp_warning_c}) must be below "
            f"physics.temp_critical_c ({physics.temp_critical_c})"
        )
    for name in ("jailbreak_threshold", "honeypot_threshold"):
        value = getattr(scorer, name)
        if not (0.0 < value <= 1.0):
            raise ValueError(f"scorer.{name} must be in (0, 1], got {value}")
    if scorer.shingle_size < 2:
        raise ValueError(f"scorer.shingle_size must be ≥2, got {scorer.shingle_size}")
    if oracle.backend not in {"rules", "llm"}:
        raise ValueError(f"oracle.backend must be 'rules' or 'llm', got '{oracle.backend}'")
    if oracle.timeout_ms <= 0 or oracle.reaction_timeout_ms <= 0:
        raise ValueError("oracle timeouts must be positive")
    if pipeline.max_commit_attempts < 1:
        raise ValueError(
            f"pipeline.max_commit_attempts must be ≥1, got {pipeline.max_commit_attempts}"
        )
