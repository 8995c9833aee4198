"""
core/constants.py — System constants for the Sentinel actuation guard.

Enums shared across the validation pipeline (FSM states, log severities,
prediction status, final audit decisions) plus a single frozen dataclass of
typed constant groups. Tunable values live in ``config/sentinel.yaml``; the
constants here are the defaults and the fixed protocol values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Validation FSM states
# ──────────────────────────────────────────────────────────────

class ValidationState(Enum):
    """States of a single safety-validation invocation."""

    INIT = "INIT"
    SEMANTIC_SCAN = "SEMANTIC_SCAN"
    PHYSICS_FOLD = "PHYSICS_FOLD"
    CONTEXT_CHECK = "CONTEXT_CHECK"
    AUTHORIZED = "AUTHORIZED"
    DENIED = "DENIED"


class LogSeverity(Enum):
    """Severity tag of a per-invocation security log entry."""

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    BLOCK = "BLOCK"
    NORMALIZATION = "NORMALIZATION"


class PredictionStatus(Enum):
    """Physical predictor classification. Only SAFE and CRITICAL are produced."""

    SAFE = "SAFE"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    FAIL_IMMINENT = "FAIL_IMMINENT"
    EMERGENCY = "EMERGENCY"


class FinalDecision(Enum):
    """Decision tag written to the audit sink."""

    AUTHORIZED = "AUTHORIZED"
    DENIED = "DENIED"
    FILTERED = "FILTERED"


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GuardConstants:
    """
    Frozen dataclass holding the Sentinel guard's fixed constants.

    Use the class attributes directly — do not instantiate this class.

    Example::

        from core.constants import GuardConstants as C, ValidationState

        print(C.JAILBREAK_THRESHOLD)     # 0.8
        print(ValidationState.DENIED)    # ValidationState.DENIED
    """

    # ── Semantic scorer ───────────────────────────────────────
    JAILBREAK_THRESHOLD: ClassVar[float] = 0.80
    """Similarity above which input is treated as jailbreak phrasing."""

    HONEYPOT_THRESHOLD: ClassVar[float] = 0.85
    """Similarity above which input is treated as a request for a protected identifier."""

    EXACT_MATCH_WEIGHT: ClassVar[float] = 1.5
    """Feature weight for a contiguous substring hit (deliberately > 1)."""

    SHINGLE_SIZE: ClassVar[int] = 3
    """Character n-gram width used for fuzzy matching."""

    MIN_WORD_LENGTH: ClassVar[int] = 3
    """Shortest whole word added to the token set."""

    # ── Risk scores ───────────────────────────────────────────
    CRITICAL_RISK_ABOVE: ClassVar[float] = 0.9
    """Predictor risk strictly above this is classified CRITICAL."""

    BREACH_RISK_FLOOR: ClassVar[float] = 0.9
    """Minimum risk reported on a physical-limit denial."""

    CONTEXT_DENIAL_RISK_FLOOR: ClassVar[float] = 0.8
    """Minimum risk reported on a contextual (fruitfulness) denial."""

    # ── Predictor ─────────────────────────────────────────────
    BASELINE_SPEED_RPM: ClassVar[float] = 1500.0
    """Speed assumed for parameters with no anchor column."""

    # ── Oracle ────────────────────────────────────────────────
    ORACLE_TIMEOUT_MS: ClassVar[float] = 4000.0
    """Default budget for one security/context oracle call."""

    REACTION_TIMEOUT_MS: ClassVar[float] = 6000.0
    """Shared budget for the two concurrent reaction-text calls."""

    REACTION_FALLBACK: ClassVar[str] = "HARDWARE_INTERFACE_OFFLINE"
    """Hardware reaction text used when the oracle does not answer in time."""

    CONVERSATION_FALLBACK: ClassVar[str] = "The assistant is currently unavailable."
    """Conversational reply used when the oracle does not answer in time."""

    DEFAULT_MODEL_ID: ClassVar[str] = "Qwen/Qwen2.5-0.5B-Instruct"
    """HuggingFace model identifier for the optional local LLM oracle."""

    # ── Gateway ───────────────────────────────────────────────
    MAX_COMMIT_ATTEMPTS: ClassVar[int] = 3
    """Re-validation attempts when the live state changed during validation."""

    AUDIT_CAPACITY: ClassVar[int] = 1000
    """Transactions kept in memory by the audit sink."""

    # ── FSM states reference ──────────────────────────────────
    States: ClassVar[type[ValidationState]] = ValidationState
    """Convenience reference to :class:`ValidationState`."""


# Short alias used throughout the codebase
C = GuardConstants
