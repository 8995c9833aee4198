"""
pipeline/controller.py — GuardController: request gateway for the actuation guard.

Owns the live telemetry store and drives one command submission end to end::

    snapshot ─► SafetyPipeline ─► compare-and-swap commit ─► reactions ─► audit

An internal EventBus lets the web layer (or any observer) subscribe to
gateway events without holding references to internal modules. Validation
runs against an immutable snapshot; an authorized state is published only if
nobody else committed since that snapshot, otherwise the command is
re-validated against the newer state (bounded by
``pipeline.max_commit_attempts``).
"""

from __future__ import annotations

import dataclasses
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from core.config import GuardConfig, load_config
from core.constants import FinalDecision, ValidationState
from core.logger import get_logger
from llm.oracle import GuardedOracle, ReactionTexts, build_oracle
from output.audit import AuditRecord, InMemoryAuditSink, JsonlAuditSink
from physics.predictor import PhysicsPredictor
from pipeline.validator import AdminPipeline, SafetyPipeline, Verdict
from safety.semantic import SemanticRiskScorer
from telemetry.csv_connector import CSVConnector, ImportResult
from telemetry.registry import ParameterRegistry, default_registry
from telemetry.state import TelemetryState, reference_reading
from telemetry.store import StateSnapshot, TelemetryStore

_log = get_logger()

# ── EventBus event-name constants ─────────────────────────────────────────────

ON_VERDICT            = "ON_VERDICT"
"""Fired after every submission with the verdict payload."""

ON_STATE_COMMITTED    = "ON_STATE_COMMITTED"
"""Fired when an authorized state is published to the store."""

ON_AUDIT_RECORDED     = "ON_AUDIT_RECORDED"
"""Fired after the audit record for a submission is stored."""

ON_TELEMETRY_IMPORTED = "ON_TELEMETRY_IMPORTED"
"""Fired after a CSV import or profile load replaces live readings."""

CSV_CONNECTOR = "CSV_IMPORT"


@dataclass(frozen=True)
class CommandOutcome:
    """Everything the gateway knows about one submission."""

    verdict: Verdict
    committed: bool
    attempts: int
    state_version: int
    state: TelemetryState
    audit: AuditRecord
    reactions: Optional[ReactionTexts] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.audit.transaction_id,
            "committed": self.committed,
            "attempts": self.attempts,
            "state_version": self.state_version,
            "state": self.state.to_dict(),
            "verdict": self.verdict.to_dict(),
            "hardware_reaction": self.reactions.hardware if self.reactions else None,
            "assistant_reply": self.reactions.conversation if self.reactions else None,
            "reactions_degraded": self.reactions.degraded if self.reactions else False,
        }


class GuardController:
    """
    Request gateway for the actuation guard.

    Subsystem initialisation order:

    1.  :class:`~telemetry.store.TelemetryStore` seeded with the configured profile
    2.  :class:`~physics.predictor.PhysicsPredictor`
    3.  :class:`~safety.semantic.SemanticRiskScorer`
    4.  :func:`~llm.oracle.build_oracle`
    5.  :class:`~pipeline.validator.SafetyPipeline` and
        :class:`~pipeline.validator.AdminPipeline`
    6.  Audit sink (JSONL-backed when ``audit.jsonl_path`` is set)

    Args:
        config: Root configuration.
        store: Pre-built store (tests); default seeds one from the config.
        oracle: Pre-built guarded oracle (tests); default from ``config.oracle``.
        audit_sink: Pre-built sink (tests); default from ``config.audit``.
        registry: Parameter registry.

    Example::

        ctrl = GuardController.from_config()
        ctrl.subscribe(ON_VERDICT, lambda d: print(d["decision"]))
        outcome = ctrl.submit("set rpm 1500")
    """

    def __init__(
        self,
        config: Optional[GuardConfig] = None,
        *,
        store: Optional[TelemetryStore] = None,
        oracle: Optional[GuardedOracle] = None,
        audit_sink: Optional[InMemoryAuditSink] = None,
        registry: Optional[ParameterRegistry] = None,
    ) -> None:
        self._config = config or GuardConfig()
        cfg = self._config
        self._registry = registry or default_registry()

        # ── 1. Telemetry store ────────────────────────────────────────────
        _t = time.perf_counter()
        self._store = store or TelemetryStore(reference_reading(cfg.pipeline.initial_profile))
        self._connector_name = cfg.pipeline.connector_name
        self._connector_lock = threading.Lock()
        _log.perf("gateway", "init_store", (time.perf_counter() - _t) * 1_000.0,
                  {"profile": cfg.pipeline.initial_profile})

        # ── 2–3. Predictor and scorer ─────────────────────────────────────
        self._predictor = PhysicsPredictor(thresholds=cfg.thresholds, physics=cfg.physics)
        self._scorer = SemanticRiskScorer(cfg.scorer)

        # ── 4. Oracle ─────────────────────────────────────────────────────
        _t = time.perf_counter()
        self._oracle = oracle or build_oracle(cfg.oracle)
        _log.perf("gateway", "init_oracle", (time.perf_counter() - _t) * 1_000.0,
                  {"role": self._oracle.role})

        # ── 5. Pipelines ──────────────────────────────────────────────────
        pipeline_args = (self._predictor, self._scorer, self._oracle, cfg.thresholds, self._registry)
        self._pipeline = SafetyPipeline(*pipeline_args)
        self._admin_pipeline = AdminPipeline(*pipeline_args)

        # ── 6. Audit sink ─────────────────────────────────────────────────
        if audit_sink is not None:
            self._audit = audit_sink
        elif cfg.audit.jsonl_path:
            self._audit = JsonlAuditSink(cfg.audit.jsonl_path, cfg.audit.capacity)
        else:
            self._audit = InMemoryAuditSink(cfg.audit.capacity)

        self._csv = CSVConnector(self._registry)

        # ── EventBus ──────────────────────────────────────────────────────
        self._subscribers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = (
            defaultdict(list)
        )

        _log.info("gateway", "controller_ready", {
            "oracle_role": self._oracle.role,
            "max_commit_attempts": cfg.pipeline.max_commit_attempts,
            "audit_capacity": cfg.audit.capacity,
        })

    @classmethod
    def from_config(
        cls,
        config_path: Path | str | None = None,
        overrides: Optional[dict] = None,
    ) -> "GuardController":
        """Build a controller from YAML configuration (see :func:`core.config.load_config`)."""
        return cls(load_config(config_path, overrides))

    # ── Accessors ─────────────────────────────────────────────────────────────

    @property
    def config(self) -> GuardConfig:
        return self._config

    @property
    def store(self) -> TelemetryStore:
        return self._store

    @property
    def audit(self) -> InMemoryAuditSink:
        return self._audit

    @property
    def connector_name(self) -> str:
        with self._connector_lock:
            return self._connector_name

    # ── EventBus ──────────────────────────────────────────────────────────────

    def subscribe(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        """
        Register *callback* to receive payloads whenever *event* is published.

        Callbacks run synchronously on the submitting thread, in registration
        order; a failing callback is logged and never disrupts the others.

        Args:
            event:    One of the ``ON_*`` module-level constants.
            callback: Callable ``(data: dict) → None``.
        """
        self._subscribers[event].append(callback)
        _log.info("gateway", "event_subscribed", {"event": event})

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        """Dispatch *event* to all registered callbacks with payload *data*."""
        for cb in list(self._subscribers.get(event, [])):
            try:
                cb(data)
            except Exception as exc:  # noqa: BLE001
                _log.error("gateway", "event_callback_error", {
                    "event": event,
                    "error": str(exc),
                })

    # ── Command submission ────────────────────────────────────────────────────

    def submit(self, text: str, admin: bool = False) -> CommandOutcome:
        """
        Validate *text* and commit the predicted state if authorized.

        The live store is updated only through a compare-and-swap against the
        snapshot the verdict was computed from. A denied command never
        changes the store.

        Args:
            text:  Raw operator input (strict lines or free text).
            admin: Use the administrative override pipeline.

        Returns:
            :class:`CommandOutcome` with the verdict, commit status and audit record.
        """
        pipeline = self._admin_pipeline if admin else self._pipeline
        max_attempts = max(1, self._config.pipeline.max_commit_attempts)
        connector = self.connector_name

        attempts = 0
        committed = False
        while True:
            attempts += 1
            snap = self._store.snapshot()
            verdict = pipeline.validate(text, snap.state)
            if not verdict.allowed or verdict.predicted_state is None:
                break
            if self._store.compare_and_swap(snap.version, verdict.predicted_state):
                committed = True
                break
            if attempts >= max_attempts:
                verdict = self._conflict_verdict(verdict, attempts)
                break
            _log.info("gateway", "commit_retry", {"attempt": attempts, "version": snap.version})

        live = self._store.snapshot()
        if committed:
            _log.info("gateway", "state_committed", {
                "version": live.version,
                "changes": [c.to_dict() for c in verdict.proposed_changes],
            })
            self.publish(ON_STATE_COMMITTED, {
                "version": live.version,
                "state": live.state.to_dict(),
            })
        else:
            _log.warn("gateway", "command_denied", {
                "reason": verdict.reason,
                "decision": verdict.decision.value,
                "admin": admin,
            })

        self.publish(ON_VERDICT, {
            "allowed": verdict.allowed,
            "decision": verdict.decision.value,
            "reason": verdict.reason,
            "risk_score": verdict.risk_score,
        })

        reactions: Optional[ReactionTexts] = None
        if self._config.oracle.reactions_enabled:
            reactions = self._oracle.reactions(
                text, self._decision_label(verdict), verdict.proposed_changes
            )

        record = AuditRecord(
            user_prompt=text,
            normalized_prompt=verdict.normalized_command,
            obfuscation_check=verdict.obfuscation_check,
            vector_similarity_score=round(verdict.similarity_score, 4),
            connector_used=connector,
            live_state=snap.state.to_dict(),
            agent_role=verdict.agent_role,
            reasoning=verdict.reasoning,
            verdict="ALLOWED" if verdict.allowed else f"DENIED: {verdict.reason}",
            risk_score=round(verdict.risk_score, 4),
            final_decision=verdict.decision.value,
            admin=admin,
        )
        self._audit.record(record)
        self.publish(ON_AUDIT_RECORDED, record.to_dict())

        return CommandOutcome(
            verdict=verdict,
            committed=committed,
            attempts=attempts,
            state_version=live.version,
            state=live.state,
            audit=record,
            reactions=reactions,
        )

    # ── Telemetry sources ─────────────────────────────────────────────────────

    def import_csv(self, content: str) -> ImportResult:
        """
        Merge the numeric cells of a CSV export into the live state.

        Imports bypass the safety pipeline. Nothing is published when no
        column maps onto a telemetry field.

        Raises:
            ValueError: If the live state refuses the imported readings; the
                store is left unchanged.
        """
        result = self._csv.extract(content)
        if not result.partial_state:
            _log.warn("gateway", "csv_import_empty", {
                "unmapped": result.unmapped,
                "rejected": result.rejected,
            })
            return result
        try:
            snap = self._store.merge(result.partial_state)
        except (KeyError, ValueError) as exc:
            _log.warn("gateway", "csv_import_refused", {
                "fields": sorted(result.partial_state),
                "error": str(exc),
            })
            raise ValueError(f"CSV import refused: {exc}") from exc
        with self._connector_lock:
            self._connector_name = CSV_CONNECTOR
        _log.info("gateway", "csv_imported", {
            "version": snap.version,
            "mapped": sorted(result.partial_state),
            "unmapped": result.unmapped,
            "rejected": result.rejected,
        })
        self.publish(ON_TELEMETRY_IMPORTED, {
            "source": CSV_CONNECTOR,
            "version": snap.version,
            "fields": sorted(result.partial_state),
        })
        return result

    def load_profile(self, profile: str) -> StateSnapshot:
        """
        Replace the live state with a reference reading.

        Raises:
            KeyError: If *profile* is not a known operating profile.
        """
        snap = self._store.replace(reference_reading(profile))
        with self._connector_lock:
            self._connector_name = self._config.pipeline.connector_name
        _log.info("gateway", "profile_loaded", {"profile": profile.upper(), "version": snap.version})
        self.publish(ON_TELEMETRY_IMPORTED, {
            "source": f"PROFILE:{profile.upper()}",
            "version": snap.version,
            "fields": list(TelemetryState.field_names()),
        })
        return snap

    def shutdown(self) -> None:
        """Flush the structured log."""
        _log.info("gateway", "controller_shutdown", {})
        _log.flush()

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def _decision_label(verdict: Verdict) -> str:
        if verdict.allowed:
            return FinalDecision.AUTHORIZED.value
        return f"{verdict.decision.value}: {verdict.reason}"

    @staticmethod
    def _conflict_verdict(verdict: Verdict, attempts: int) -> Verdict:
        reason = f"STATE_CONFLICT: live state kept changing across {attempts} attempts."
        _log.warn("gateway", "commit_conflict", {"attempts": attempts})
        return dataclasses.replace(
            verdict,
            allowed=False,
            reason=reason,
            predicted_state=None,
            final_state=ValidationState.DENIED,
            decision=FinalDecision.DENIED,
            reasoning=reason,
        )
