"""
pipeline/validator.py — Safety validation pipeline.

Sequences the semantic risk scan, the physics fold and the context check for
one command batch against one telemetry snapshot, and returns a
:class:`Verdict`. The pipeline never mutates the snapshot it is given and
never publishes anything: committing an authorized ``predicted_state`` is the
caller's job (see ``pipeline/controller.py``).

State machine::

    INIT → SEMANTIC_SCAN ─┬─► PHYSICS_FOLD ─┬─► CONTEXT_CHECK ─┬─► AUTHORIZED
                          └─► DENIED        └─► DENIED         └─► DENIED

:class:`AdminPipeline` keeps the protected-identifier scan, folds without
blocking and skips the context check; every forced mutation is logged at
WARNING.
"""

from __future__ import annotations

import math
import time
import unicodedata
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from core.config import SafetyThresholds
from core.constants import FinalDecision, GuardConstants as C, LogSeverity, ValidationState
from core.fsm import ValidationFSM
from core.logger import get_logger
from intent.parser import CommandParser, Intent, PhraseNormalizer
from intent.vocabulary import Operation
from llm.oracle import GuardedOracle, OracleResult
from physics.predictor import PhysicsPredictor, Prediction
from safety.semantic import ScanResult, SemanticRiskScorer
from telemetry.registry import ParameterRegistry, ParameterSpec, default_registry
from telemetry.state import HazardContext, ProposedChange, TelemetryState

log = get_logger()


# ──────────────────────────────────────────────────────────────
# Log detail payloads (tagged union)
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RiskDetail:
    """A similarity or risk score and the threshold it was compared with."""

    category: str
    score: float
    threshold: Optional[float] = None
    matched: Optional[str] = None
    kind: Literal["risk"] = field(default="risk", init=False)


@dataclass(frozen=True)
class ParameterDetail:
    """A folded parameter value."""

    parameter: str
    state_key: str
    from_value: float
    to_value: float
    percentage: bool = False
    kind: Literal["parameter"] = field(default="parameter", init=False)


@dataclass(frozen=True)
class PredictionDetail:
    """Predictor projection for a physically coupled parameter."""

    parameter: str
    expected_speed: float
    expected_temperature: float
    expected_torque: float
    expected_power: float
    risk_score: float
    status: str
    kind: Literal["prediction"] = field(default="prediction", init=False)


@dataclass(frozen=True)
class LimitBreachDetail:
    """A projected value above its configured ceiling."""

    limit: str
    value: float
    ceiling: float
    kind: Literal["limit_breach"] = field(default="limit_breach", init=False)


@dataclass(frozen=True)
class OracleDetail:
    """Outcome of one oracle call."""

    phase: str
    role: str
    available: bool
    error: Optional[str] = None
    kind: Literal["oracle"] = field(default="oracle", init=False)


@dataclass(frozen=True)
class NormalizationDetail:
    """Free text rewritten into strict command lines."""

    original: str
    normalized: str
    intents: int
    kind: Literal["normalization"] = field(default="normalization", init=False)


LogDetail = Union[
    RiskDetail,
    ParameterDetail,
    PredictionDetail,
    LimitBreachDetail,
    OracleDetail,
    NormalizationDetail,
]


@dataclass(frozen=True)
class SecurityLogEntry:
    """One line of a single invocation's audit trail."""

    id: str
    timestamp: str
    severity: LogSeverity
    message: str
    details: Optional[LogDetail] = None

    def to_dict(self) -> dict[str, Any]:
        details = None
        if self.details is not None:
            details = {k: getattr(self.details, k) for k in self.details.__dataclass_fields__}
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "severity": self.severity.value,
            "message": self.message,
            "details": details,
        }


class _Trail:
    """Fresh per-invocation log list."""

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        self.entries: list[SecurityLogEntry] = []

    def add(
        self,
        severity: LogSeverity,
        message: str,
        details: Optional[LogDetail] = None,
    ) -> None:
        self.entries.append(
            SecurityLogEntry(
                id=f"{self._prefix}_{len(self.entries):03d}_{uuid.uuid4().hex[:6]}",
                timestamp=datetime.now(tz=timezone.utc).isoformat(),
                severity=severity,
                message=message,
                details=details,
            )
        )

    def has(self, severity: LogSeverity) -> bool:
        return any(e.severity is severity for e in self.entries)


# ──────────────────────────────────────────────────────────────
# Verdict
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Verdict:
    """
    Result of one pipeline invocation.

    ``reason`` is present iff the command was denied; ``predicted_state`` is
    present iff it was authorized.
    """

    allowed: bool
    risk_score: float
    semantic_risk: float
    physical_risk: float
    logs: tuple[SecurityLogEntry, ...]
    final_state: ValidationState
    decision: FinalDecision
    reason: Optional[str] = None
    predicted_state: Optional[TelemetryState] = None
    proposed_changes: tuple[ProposedChange, ...] = ()
    intents: tuple[Intent, ...] = ()
    normalized_command: str = ""
    similarity_score: float = 0.0
    obfuscation_check: bool = False
    oracle_degraded: bool = False
    agent_role: str = "LOCAL_GUARD"
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "risk_score": self.risk_score,
            "semantic_risk": self.semantic_risk,
            "physical_risk": self.physical_risk,
            "final_state": self.final_state.value,
            "decision": self.decision.value,
            "normalized_command": self.normalized_command,
            "proposed_changes": [c.to_dict() for c in self.proposed_changes],
            "predicted_state": self.predicted_state.to_dict() if self.predicted_state else None,
            "oracle_degraded": self.oracle_degraded,
            "agent_role": self.agent_role,
            "reasoning": self.reasoning,
            "logs": [e.to_dict() for e in self.logs],
        }


@dataclass
class _ScanOutcome:
    allowed: bool
    semantic_risk: float
    similarity: float
    flagged: bool
    reason: Optional[str] = None
    degraded: bool = False
    agent_role: str = "LOCAL_GUARD"
    reasoning: str = ""


@dataclass
class _FoldOutcome:
    state: TelemetryState
    changes: list[ProposedChange] = field(default_factory=list)
    physical_risk: float = 0.0
    breach_reason: Optional[str] = None


# ──────────────────────────────────────────────────────────────
# Fold arithmetic
# ──────────────────────────────────────────────────────────────

def compute_target(intent: Intent, current: float) -> float:
    """
    Apply one intent to the current folded value.

    Percentages are relative to ``current``; DECREASE never goes below 0.
    """
    op = intent.operation
    operand = intent.operand
    if op is Operation.TOGGLE:
        return operand
    if intent.operand_is_percentage:
        fraction = operand / 100.0
        if op is Operation.INCREASE:
            return current * (1.0 + fraction)
        if op is Operation.DECREASE:
            return max(0.0, current * (1.0 - fraction))
        return current * fraction
    if op is Operation.SET:
        return operand
    if op is Operation.INCREASE:
        return current + operand
    if op is Operation.DECREASE:
        return max(0.0, current - operand)
    return current * operand


# Requested values checked directly against their own ceiling
_DIRECT_LIMITS: dict[str, tuple[str, str]] = {
    "main_pressure_psi": ("PRESSURE", "max_pressure_psi"),
    "voltage_v": ("VOLTAGE", "max_voltage"),
}


# ──────────────────────────────────────────────────────────────
# Pipeline
# ──────────────────────────────────────────────────────────────

class SafetyPipeline:
    """
    Orchestrates scorer, parser, predictor and oracle for one command batch.

    Args:
        predictor: Physical consequence predictor.
        scorer: Semantic risk scorer.
        oracle: Timeout-guarded reasoning oracle.
        thresholds: Static safety ceilings.
        registry: Parameter registry.
    """

    log_prefix = "log"

    def __init__(
        self,
        predictor: PhysicsPredictor,
        scorer: SemanticRiskScorer,
        oracle: GuardedOracle,
        thresholds: Optional[SafetyThresholds] = None,
        registry: Optional[ParameterRegistry] = None,
    ) -> None:
        self._predictor = predictor
        self._scorer = scorer
        self._oracle = oracle
        self._thresholds = thresholds or SafetyThresholds()
        self._registry = registry or default_registry()
        self._parser = CommandParser()
        self._normalizer = PhraseNormalizer(self._registry)

    def validate(self, text: str, state: TelemetryState) -> Verdict:
        """
        Validate ``text`` against ``state``.

        Never raises: internal errors become a DENIED verdict.
        """
        t0 = time.perf_counter()
        trail = _Trail(self.log_prefix)
        fsm = ValidationFSM()
        try:
            verdict = self._run(text, state, trail, fsm)
        except Exception as exc:  # noqa: BLE001
            log.error("pipeline", "internal_error", {"error": repr(exc)})
            trail.add(LogSeverity.BLOCK, f"INTERNAL_ERROR: {type(exc).__name__}")
            verdict = Verdict(
                allowed=False,
                reason=f"INTERNAL_ERROR: {exc}",
                risk_score=1.0,
                semantic_risk=0.0,
                physical_risk=0.0,
                logs=tuple(trail.entries),
                final_state=ValidationState.DENIED,
                decision=FinalDecision.DENIED,
            )
        log.perf(
            "pipeline",
            "validate",
            (time.perf_counter() - t0) * 1000.0,
            {
                "variant": self.log_prefix,
                "allowed": verdict.allowed,
                "final_state": verdict.final_state.value,
                "risk_score": verdict.risk_score,
            },
        )
        return verdict

    # ──────────────────────────────────────────
    # Standard flow
    # ──────────────────────────────────────────

    def _run(
        self,
        text: str,
        state: TelemetryState,
        trail: _Trail,
        fsm: ValidationFSM,
    ) -> Verdict:
        trail.add(LogSeverity.INFO, "INIT_SCAN: semantic scan started")
        fsm.transition(ValidationState.SEMANTIC_SCAN)

        scan = self._semantic_scan(text, trail)
        if not scan.allowed:
            trail.add(LogSeverity.BLOCK, scan.reason or "SECURITY_ALERT")
            fsm.deny(scan.reason or "")
            return Verdict(
                allowed=False,
                reason=scan.reason,
                risk_score=scan.semantic_risk,
                semantic_risk=scan.semantic_risk,
                physical_risk=0.0,
                logs=tuple(trail.entries),
                final_state=fsm.current_state,
                decision=FinalDecision.FILTERED,
                similarity_score=scan.similarity,
                obfuscation_check=scan.flagged,
                oracle_degraded=scan.degraded,
                agent_role=scan.agent_role,
                reasoning=scan.reasoning,
            )

        fsm.transition(ValidationState.PHYSICS_FOLD)
        normalized, intents = self._parse(text, trail)
        fold = self._fold(intents, state, trail, enforce=True)

        common = dict(
            semantic_risk=scan.semantic_risk,
            physical_risk=fold.physical_risk,
            normalized_command=normalized,
            intents=tuple(intents),
            proposed_changes=tuple(fold.changes),
            similarity_score=scan.similarity,
            obfuscation_check=scan.flagged,
        )

        if fold.breach_reason is not None:
            fsm.deny(fold.breach_reason)
            return Verdict(
                allowed=False,
                reason=fold.breach_reason,
                risk_score=max(C.BREACH_RISK_FLOOR, fold.physical_risk),
                logs=tuple(trail.entries),
                final_state=fsm.current_state,
                decision=FinalDecision.DENIED,
                oracle_degraded=scan.degraded,
                agent_role="PHYSICS_ENGINE",
                reasoning=fold.breach_reason,
                **common,
            )

        fsm.transition(ValidationState.CONTEXT_CHECK)
        context = self._oracle.check_context(text, fold.changes, HazardContext.from_state(state))
        self._note_oracle(trail, "context_check", context)
        degraded = scan.degraded or not context.available
        opinion = context.value

        if not opinion.fruitful:
            reason = f"LOGIC_OVERRIDE: {opinion.reasoning}"
            trail.add(
                LogSeverity.BLOCK,
                f"LOGIC_FAILURE: {opinion.reasoning}",
                OracleDetail("context_check", self._oracle.role, context.available, context.error),
            )
            fsm.deny(reason)
            return Verdict(
                allowed=False,
                reason=reason,
                risk_score=max(C.CONTEXT_DENIAL_RISK_FLOOR, fold.physical_risk),
                logs=tuple(trail.entries),
                final_state=fsm.current_state,
                decision=FinalDecision.DENIED,
                oracle_degraded=degraded,
                agent_role=self._oracle.role,
                reasoning=opinion.reasoning,
                **common,
            )

        risk = max(scan.semantic_risk, fold.physical_risk)
        trail.add(
            LogSeverity.INFO,
            "VALIDATION_PASSED",
            RiskDetail("combined", round(risk, 4)),
        )
        fsm.transition(ValidationState.AUTHORIZED)
        return Verdict(
            allowed=True,
            risk_score=risk,
            logs=tuple(trail.entries),
            final_state=fsm.current_state,
            decision=FinalDecision.AUTHORIZED,
            predicted_state=fold.state.evolve(timestamp_seq=state.timestamp_seq + 1),
            oracle_degraded=degraded,
            agent_role=self._oracle.role,
            reasoning=opinion.reasoning,
            **common,
        )

    def _semantic_scan(self, text: str, trail: _Trail) -> _ScanOutcome:
        honeypot = self._scorer.scan_honeypot(text)
        jailbreak = self._scorer.scan_jailbreak(text)
        similarity = max(honeypot.score, jailbreak.score)

        for scan, label in ((honeypot, "protected identifier"), (jailbreak, "jailbreak phrasing")):
            if scan.flagged:
                self._log_match(trail, scan)
                return _ScanOutcome(
                    allowed=False,
                    semantic_risk=min(1.0, scan.score),
                    similarity=similarity,
                    flagged=True,
                    reason=f"SECURITY_ALERT: input matches {label} (similarity {scan.score:.2f}).",
                    reasoning=f"Local vector scan flagged {label}.",
                )

        result = self._oracle.check_security(text, self._scorer.honeypot_keys)
        self._note_oracle(trail, "security_check", result)
        opinion = result.value
        semantic_risk = max(similarity, opinion.risk_score)
        if not opinion.allowed:
            trail.add(
                LogSeverity.CRITICAL,
                f"AGENT_ALERT: {opinion.reason}",
                RiskDetail("oracle_security", opinion.risk_score),
            )
            return _ScanOutcome(
                allowed=False,
                semantic_risk=semantic_risk,
                similarity=similarity,
                flagged=False,
                reason=f"SECURITY_ALERT: {opinion.reason}",
                agent_role=self._oracle.role,
                reasoning=opinion.reason,
            )

        trail.add(
            LogSeverity.INFO,
            f"SEMANTIC_SCAN_PASSED: similarity {similarity:.2f}",
            RiskDetail("semantic", round(semantic_risk, 4)),
        )
        return _ScanOutcome(
            allowed=True,
            semantic_risk=semantic_risk,
            similarity=similarity,
            flagged=False,
            degraded=not result.available,
            agent_role=self._oracle.role,
            reasoning=opinion.reason,
        )

    # ──────────────────────────────────────────
    # Shared steps
    # ──────────────────────────────────────────

    def _parse(self, text: str, trail: _Trail) -> tuple[str, list[Intent]]:
        normalized = self._normalizer.normalize(text)
        if normalized.rewritten:
            trail.add(
                LogSeverity.NORMALIZATION,
                f"NORMALIZED: {len(normalized.intents)} phrase(s) rewritten to command grammar",
                NormalizationDetail(text, normalized.text, len(normalized.intents)),
            )
        intents = self._parser.parse_many(normalized.text)
        if not intents:
            trail.add(LogSeverity.INFO, "NO_INTENTS: nothing to apply")
        return normalized.text, intents

    def _fold(
        self,
        intents: list[Intent],
        state: TelemetryState,
        trail: _Trail,
        *,
        enforce: bool,
    ) -> _FoldOutcome:
        outcome = _FoldOutcome(state=state)
        for intent in intents:
            spec = self._registry.resolve(intent.parameter_key)
            if spec is None:
                trail.add(LogSeverity.WARNING, f"UNKNOWN_PARAMETER: {intent.parameter_key}")
                continue

            current = float(outcome.state.get(spec.state_key))
            target = compute_target(intent, current)
            # Stops the fold even when limits are not enforced
            if not math.isfinite(target):
                reason = f"SAFETY_BREACH: {spec.key} target is not a finite number."
                trail.add(
                    LogSeverity.BLOCK,
                    f"PHYSICAL_VIOLATION: {spec.key} target out of numeric range",
                    RiskDetail("physics", 1.0),
                )
                outcome.physical_risk = 1.0
                outcome.breach_reason = reason
                return outcome
            value: float = (1 if target >= 0.5 else 0) if spec.is_boolean else target
            updates: dict[str, Any] = {spec.state_key: value}
            detail = ParameterDetail(
                spec.key, spec.state_key, current, value, intent.operand_is_percentage
            )

            prediction: Optional[Prediction] = None
            if spec.coupled:
                prediction = self._predictor.predict_from_parameter(spec.quantity or "", value)
                outcome.physical_risk = max(outcome.physical_risk, prediction.risk_score)
                breach = self._first_breach(spec, value, prediction)
                if breach is not None:
                    limit, breached, ceiling = breach
                    if enforce:
                        trail.add(
                            LogSeverity.BLOCK,
                            f"PHYSICAL_VIOLATION: {limit} breach",
                            LimitBreachDetail(limit, breached, ceiling),
                        )
                        outcome.breach_reason = (
                            f"SAFETY_BREACH: {limit} forced to {breached:g} exceeds limit."
                        )
                        return outcome
                    trail.add(
                        LogSeverity.WARNING,
                        f"LIMIT_OVERRIDDEN: {limit} {breached:g} above {ceiling:g}",
                        LimitBreachDetail(limit, breached, ceiling),
                    )
                updates.update(self._projected_fields(spec, prediction))

            self._log_mutation(trail, spec, value, detail, prediction)
            outcome.state = outcome.state.evolve(**updates)
            outcome.changes.append(ProposedChange(spec.key, spec.state_key, current, value))
        return outcome

    def _log_mutation(
        self,
        trail: _Trail,
        spec: ParameterSpec,
        value: float,
        detail: ParameterDetail,
        prediction: Optional[Prediction],
    ) -> None:
        trail.add(LogSeverity.INFO, f"FOLD: {spec.key} {detail.from_value:g} -> {value:g}", detail)
        if prediction is not None:
            trail.add(
                LogSeverity.INFO,
                f"PREDICTION: {spec.key} -> {prediction.expected_speed:g} RPM, "
                f"{prediction.expected_temperature:.1f} C",
                _prediction_detail(spec.key, prediction),
            )

    @staticmethod
    def _projected_fields(spec: ParameterSpec, prediction: Prediction) -> dict[str, Any]:
        prefix = f"axis_{spec.axis}"
        # Overwrites the requested field too when it is one of the projected ones
        return {
            f"{prefix}_rpm": prediction.expected_speed,
            f"{prefix}_temp_c": round(prediction.expected_temperature, 2),
            f"{prefix}_torque_nm": round(prediction.expected_torque, 2),
            "power_draw_kw": round(prediction.expected_power, 2),
        }

    def _first_breach(
        self,
        spec: ParameterSpec,
        requested: float,
        prediction: Prediction,
    ) -> Optional[tuple[str, float, float]]:
        thr = self._thresholds
        direct = _DIRECT_LIMITS.get(spec.state_key)
        if direct is not None:
            label, attr = direct
            if requested > getattr(thr, attr):
                return label, requested, getattr(thr, attr)
        if prediction.expected_speed > thr.max_rpm:
            return "RPM", prediction.expected_speed, thr.max_rpm
        if prediction.expected_temperature > thr.max_temp:
            return "TEMP", round(prediction.expected_temperature, 2), thr.max_temp
        if prediction.expected_torque > thr.max_torque_nm:
            return "TORQUE", round(prediction.expected_torque, 2), thr.max_torque_nm
        if prediction.expected_power > thr.max_power_kw:
            return "POWER", round(prediction.expected_power, 3), thr.max_power_kw
        if prediction.is_critical:
            return "RISK", prediction.risk_score, C.CRITICAL_RISK_ABOVE
        return None

    def _note_oracle(self, trail: _Trail, phase: str, result: OracleResult) -> None:
        if not result.available:
            trail.add(
                LogSeverity.WARNING,
                f"ORACLE_UNAVAILABLE: {phase} fell back to allow ({result.error})",
                OracleDetail(phase, self._oracle.role, False, result.error),
            )

    @staticmethod
    def _log_match(trail: _Trail, scan: ScanResult) -> None:
        # Honeypot identifiers are never echoed back into the trail
        matched = scan.matched if scan.category == "jailbreak" else None
        trail.add(
            LogSeverity.CRITICAL,
            f"{scan.category.upper()}_MATCH: similarity {scan.score:.2f}",
            RiskDetail(scan.category, scan.score, scan.threshold, matched),
        )


def _prediction_detail(parameter: str, prediction: Prediction) -> PredictionDetail:
    return PredictionDetail(
        parameter=parameter,
        expected_speed=prediction.expected_speed,
        expected_temperature=round(prediction.expected_temperature, 2),
        expected_torque=round(prediction.expected_torque, 2),
        expected_power=round(prediction.expected_power, 3),
        risk_score=prediction.risk_score,
        status=prediction.status.value,
    )


# ──────────────────────────────────────────────────────────────
# Administrative override variant
# ──────────────────────────────────────────────────────────────

class AdminPipeline(SafetyPipeline):
    """
    Override variant for privileged operators.

    Only the protected-identifier scan and a non-finite setpoint can deny.
    Physical folding still runs so correlated fields stay consistent, but
    limits never block; the context check is skipped.
    """

    log_prefix = "adm"

    def _run(
        self,
        text: str,
        state: TelemetryState,
        trail: _Trail,
        fsm: ValidationFSM,
    ) -> Verdict:
        text = unicodedata.normalize("NFKC", text)
        trail.add(LogSeverity.INFO, "ADMIN_PRIVILEGE_ACTIVE: physical and context blocks disabled")
        fsm.transition(ValidationState.SEMANTIC_SCAN)

        honeypot = self._scorer.scan_honeypot(text)
        if honeypot.flagged:
            self._log_match(trail, honeypot)
            reason = f"SECURITY_ALERT: input matches protected identifier (similarity {honeypot.score:.2f})."
            trail.add(LogSeverity.BLOCK, reason)
            fsm.deny(reason)
            return Verdict(
                allowed=False,
                reason=reason,
                risk_score=min(1.0, honeypot.score),
                semantic_risk=min(1.0, honeypot.score),
                physical_risk=0.0,
                logs=tuple(trail.entries),
                final_state=fsm.current_state,
                decision=FinalDecision.FILTERED,
                similarity_score=honeypot.score,
                obfuscation_check=True,
                agent_role="ADMIN_GUARD",
                reasoning="Protected identifiers are never bypassable.",
            )

        fsm.transition(ValidationState.PHYSICS_FOLD)
        normalized, intents = self._parse(text, trail)
        fold = self._fold(intents, state, trail, enforce=False)

        if fold.breach_reason is not None:
            fsm.deny(fold.breach_reason)
            return Verdict(
                allowed=False,
                reason=fold.breach_reason,
                risk_score=1.0,
                semantic_risk=honeypot.score,
                physical_risk=fold.physical_risk,
                logs=tuple(trail.entries),
                final_state=fsm.current_state,
                decision=FinalDecision.DENIED,
                proposed_changes=tuple(fold.changes),
                intents=tuple(intents),
                normalized_command=normalized,
                similarity_score=honeypot.score,
                agent_role="ADMIN_GUARD",
                reasoning="Setpoints outside the numeric range are never applied.",
            )

        fsm.transition(ValidationState.CONTEXT_CHECK, "skipped for admin")
        fsm.transition(ValidationState.AUTHORIZED)
        return Verdict(
            allowed=True,
            risk_score=fold.physical_risk,
            semantic_risk=honeypot.score,
            physical_risk=fold.physical_risk,
            logs=tuple(trail.entries),
            final_state=fsm.current_state,
            decision=FinalDecision.AUTHORIZED,
            predicted_state=fold.state.evolve(timestamp_seq=state.timestamp_seq + 1),
            proposed_changes=tuple(fold.changes),
            intents=tuple(intents),
            normalized_command=normalized,
            similarity_score=honeypot.score,
            agent_role="ADMIN_OVERRIDE",
            reasoning="Administrative override: physical and context checks not enforced.",
        )

    def _log_mutation(
        self,
        trail: _Trail,
        spec: ParameterSpec,
        value: float,
        detail: ParameterDetail,
        prediction: Optional[Prediction],
    ) -> None:
        if prediction is not None:
            trail.add(
                LogSeverity.WARNING,
                f"ADMIN_OVERRIDE: Forcing {spec.key} to {value:g} "
                f"(predicted {prediction.expected_speed:g} RPM, "
                f"{prediction.expected_temperature:.1f} C)",
                _prediction_detail(spec.key, prediction),
            )
        else:
            trail.add(LogSeverity.WARNING, f"ADMIN_OVERRIDE: Forcing {spec.key} to {value:g}", detail)
