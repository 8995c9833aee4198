"""
llm/oracle.py — Reasoning oracle: security, context and reaction opinions.

The pipeline asks an oracle two questions (is this request malicious? is it
sensible given the hazard state?) and, after the verdict, the gateway asks for
two best-effort texts (how the hardware reacts, a reply to the operator).

Backends
--------
* :class:`RuleBasedOracle` — deterministic, offline, always available.
* :class:`LLMOracle` — a local instruction-tuned model through
  :class:`~llm.engine.TextGenerationEngine`; replies validated with pydantic.

Every call made by the pipeline goes through :class:`GuardedOracle`, which
runs it on a :class:`concurrent.futures.ThreadPoolExecutor` with a hard
timeout. Timeouts and errors degrade to fixed fallback opinions that allow
the request (fail-open) and are reported as ``available=False`` so the caller
logs a WARNING. No call is retried.
"""

from __future__ import annotations

import concurrent.futures
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Sequence, TypeVar

from core.config import OracleConfig
from core.constants import GuardConstants as C
from core.logger import get_logger
from llm.prompt_builder import ContextOpinion, PromptBuilder, SecurityOpinion, parse_reply
from safety.semantic import normalize_text
from telemetry.state import (
    HAZARD_FIRE,
    HAZARD_GAS_LEAK,
    HAZARD_OVERHEAT,
    HazardContext,
    ProposedChange,
)

log = get_logger()

T = TypeVar("T")

SECURITY_FALLBACK = SecurityOpinion(
    allowed=True,
    reason="Security guard offline, falling back to local vectors.",
    risk_score=0.0,
)
CONTEXT_FALLBACK = ContextOpinion(
    fruitful=True,
    reasoning="Logical analyst bypassed due to error.",
)


class OracleUnavailableError(RuntimeError):
    """Raised by a backend that cannot answer (model missing, bad reply, ...)."""


# ──────────────────────────────────────────────────────────────
# Backend interface
# ──────────────────────────────────────────────────────────────

class ReasoningOracle(ABC):
    """Interface every oracle backend implements."""

    role: str = "REASONING_ORACLE"

    @abstractmethod
    def check_security(
        self, prompt: str, protected_identifiers: Sequence[str]
    ) -> SecurityOpinion:
        """Judge whether ``prompt`` is an injection or extraction attempt."""

    @abstractmethod
    def check_context(
        self,
        prompt: str,
        changes: Sequence[ProposedChange],
        hazard: HazardContext,
    ) -> ContextOpinion:
        """Judge whether ``changes`` make sense given ``hazard``."""

    @abstractmethod
    def describe_reaction(self, decision: str, changes: Sequence[ProposedChange]) -> str:
        """Describe how the hardware reacts to ``decision``."""

    @abstractmethod
    def converse(self, prompt: str, decision: str) -> str:
        """Explain ``decision`` to the operator."""


# ──────────────────────────────────────────────────────────────
# Deterministic backend
# ──────────────────────────────────────────────────────────────

class _HazardRule:
    """A subsystem change that is senseless while a given hazard is active."""

    def __init__(self, hazard: str, state_key: str, forbidden_value: int, message: str) -> None:
        self.hazard = hazard
        self.state_key = state_key
        self.forbidden_value = forbidden_value
        self.message = message

    def violated_by(self, change: ProposedChange, hazard: HazardContext) -> bool:
        return (
            hazard.hazard_detected == self.hazard
            and change.state_key == self.state_key
            and int(round(change.to_value)) == self.forbidden_value
        )


_HAZARD_RULES: tuple[_HazardRule, ...] = (
    _HazardRule(
        HAZARD_FIRE, "fire_sprinkler_active", 0,
        "Disabling fire suppression while a FIRE hazard is active is counterproductive.",
    ),
    _HazardRule(
        HAZARD_OVERHEAT, "ventilation_active", 0,
        "Stopping ventilation during an OVERHEAT removes the only heat sink.",
    ),
    _HazardRule(
        HAZARD_GAS_LEAK, "igniter_active", 1,
        "Enabling an ignition source during a GAS_LEAK risks detonation.",
    ),
)


class RuleBasedOracle(ReasoningOracle):
    """Offline oracle built from regex patterns and hazard rules."""

    role = "RULE_ENGINE"

    _INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
        re.compile(r"ignore\s+(all\s+)?(previous|prior|above)\s+instructions", re.IGNORECASE),
        re.compile(r"reveal\s+(the\s+)?system\s+prompt", re.IGNORECASE),
        re.compile(r"print\s+(the\s+)?api[_\s-]?key", re.IGNORECASE),
        re.compile(r"developer\s+mode", re.IGNORECASE),
        re.compile(r"bypass\s+(the\s+)?(safety|policy|interlock)", re.IGNORECASE),
    )

    def check_security(
        self, prompt: str, protected_identifiers: Sequence[str]
    ) -> SecurityOpinion:
        smashed = normalize_text(prompt)
        for identifier in protected_identifiers:
            token = normalize_text(identifier)
            if token and token in smashed:
                return SecurityOpinion(
                    allowed=False,
                    reason="Request references a protected identifier.",
                    risk_score=0.95,
                )
        for pattern in self._INJECTION_PATTERNS:
            if pattern.search(prompt):
                return SecurityOpinion(
                    allowed=False,
                    reason=f"Injection pattern matched: {pattern.pattern}",
                    risk_score=0.9,
                )
        return SecurityOpinion(allowed=True, reason="No injection pattern matched.", risk_score=0.0)

    def check_context(
        self,
        prompt: str,
        changes: Sequence[ProposedChange],
        hazard: HazardContext,
    ) -> ContextOpinion:
        for change in changes:
            for rule in _HAZARD_RULES:
                if rule.violated_by(change, hazard):
                    return ContextOpinion(fruitful=False, reasoning=rule.message)
        return ContextOpinion(fruitful=True, reasoning="Standard logical path.")

    def describe_reaction(self, decision: str, changes: Sequence[ProposedChange]) -> str:
        if decision != "AUTHORIZED":
            return "Actuators held at current setpoints. No mechanical change."
        if not changes:
            return "Command acknowledged. No actuator setpoint changed."
        moves = ", ".join(
            f"{c.parameter} {c.from_value:g} -> {c.to_value:g}" for c in changes
        )
        return f"Actuators ramping to new setpoints: {moves}."

    def converse(self, prompt: str, decision: str) -> str:
        if decision == "AUTHORIZED":
            return "Your command passed all safety checks and has been applied."
        return f"Your command was not applied: {decision}"


# ──────────────────────────────────────────────────────────────
# Local LLM backend
# ──────────────────────────────────────────────────────────────

class LLMOracle(ReasoningOracle):
    """
    Oracle backed by a local chat model.

    Args:
        engine: Any object with ``generate(messages) -> str`` (normally a
            :class:`~llm.engine.TextGenerationEngine`).
        prompts: Prompt builder; defaults to :class:`PromptBuilder`.
    """

    role = "LLM_ANALYST"

    def __init__(self, engine: object, prompts: Optional[PromptBuilder] = None) -> None:
        self._engine = engine
        self._prompts = prompts or PromptBuilder()

    def _ask(self, messages: list[dict[str, str]]) -> str:
        return self._engine.generate(messages)  # type: ignore[attr-defined]

    def check_security(
        self, prompt: str, protected_identifiers: Sequence[str]
    ) -> SecurityOpinion:
        reply = self._ask(self._prompts.security(prompt, protected_identifiers))
        try:
            return parse_reply(reply, SecurityOpinion)
        except ValueError as exc:
            raise OracleUnavailableError(str(exc)) from exc

    def check_context(
        self,
        prompt: str,
        changes: Sequence[ProposedChange],
        hazard: HazardContext,
    ) -> ContextOpinion:
        reply = self._ask(self._prompts.context(prompt, changes, hazard))
        try:
            return parse_reply(reply, ContextOpinion)
        except ValueError as exc:
            raise OracleUnavailableError(str(exc)) from exc

    def describe_reaction(self, decision: str, changes: Sequence[ProposedChange]) -> str:
        return self._ask(self._prompts.reaction(decision, changes))

    def converse(self, prompt: str, decision: str) -> str:
        return self._ask(self._prompts.conversation(prompt, decision))


# ──────────────────────────────────────────────────────────────
# Timeout + fail-open wrapper
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OracleResult(Generic[T]):
    """
    An oracle answer or its fallback.

    Attributes:
        value: The opinion (real or fallback).
        available: False when ``value`` is the fallback.
        error: Timeout/exception description when unavailable.
        latency_ms: Time spent waiting.
    """

    value: T
    available: bool
    error: Optional[str] = None
    latency_ms: float = 0.0


@dataclass(frozen=True)
class ReactionTexts:
    """The two best-effort texts produced after a verdict."""

    hardware: str
    conversation: str
    degraded: bool = False


class GuardedOracle:
    """
    Applies timeouts and fail-open fallbacks around a backend.

    Args:
        oracle: The backend.
        timeout_ms: Budget for one security/context call.
        reaction_timeout_ms: Shared budget for the two reaction texts.
    """

    def __init__(
        self,
        oracle: ReasoningOracle,
        timeout_ms: float = C.ORACLE_TIMEOUT_MS,
        reaction_timeout_ms: float = C.REACTION_TIMEOUT_MS,
    ) -> None:
        self._oracle = oracle
        self._timeout_s = timeout_ms / 1000.0
        self._reaction_timeout_s = reaction_timeout_ms / 1000.0

    @property
    def role(self) -> str:
        return self._oracle.role

    def check_security(
        self, prompt: str, protected_identifiers: Sequence[str]
    ) -> OracleResult[SecurityOpinion]:
        return self._call(
            "security_check",
            lambda: self._oracle.check_security(prompt, protected_identifiers),
            SECURITY_FALLBACK,
        )

    def check_context(
        self,
        prompt: str,
        changes: Sequence[ProposedChange],
        hazard: HazardContext,
    ) -> OracleResult[ContextOpinion]:
        return self._call(
            "context_check",
            lambda: self._oracle.check_context(prompt, changes, hazard),
            CONTEXT_FALLBACK,
        )

    def reactions(
        self,
        prompt: str,
        decision: str,
        changes: Sequence[ProposedChange],
    ) -> ReactionTexts:
        """
        Fetch the hardware reaction and the operator reply concurrently.

        Both calls share one deadline; whichever is late or fails is
        replaced by its fixed fallback text.
        """
        t0 = time.perf_counter()
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="oracle-react")
        try:
            hardware = pool.submit(self._oracle.describe_reaction, decision, changes)
            conversation = pool.submit(self._oracle.converse, prompt, decision)
            done, _ = concurrent.futures.wait(
                [hardware, conversation], timeout=self._reaction_timeout_s
            )
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        hardware_text = self._settled(hardware, done, C.REACTION_FALLBACK)
        conversation_text = self._settled(conversation, done, C.CONVERSATION_FALLBACK)
        degraded = hardware_text is None or conversation_text is None
        latency_ms = (time.perf_counter() - t0) * 1000.0
        if degraded:
            log.warn("oracle", "reactions_degraded", {"latency_ms": round(latency_ms, 1)})
        else:
            log.perf("oracle", "reactions", latency_ms)
        return ReactionTexts(
            hardware=hardware_text or C.REACTION_FALLBACK,
            conversation=conversation_text or C.CONVERSATION_FALLBACK,
            degraded=degraded,
        )

    @staticmethod
    def _settled(
        future: concurrent.futures.Future,
        done: set,
        fallback: str,
    ) -> Optional[str]:
        if future not in done or future.exception() is not None:
            return None
        text = future.result()
        return text if isinstance(text, str) and text.strip() else None

    def _call(self, phase: str, fn: Callable[[], T], fallback: T) -> OracleResult[T]:
        t0 = time.perf_counter()
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"oracle-{phase}")
        try:
            future = pool.submit(fn)
            try:
                value = future.result(timeout=self._timeout_s)
                latency_ms = (time.perf_counter() - t0) * 1000.0
                log.perf("oracle", phase, latency_ms, {"role": self.role})
                return OracleResult(value=value, available=True, latency_ms=latency_ms)
            except concurrent.futures.TimeoutError:
                error = f"timeout after {self._timeout_s * 1000.0:.0f}ms"
            except Exception as exc:  # noqa: BLE001
                error = f"{type(exc).__name__}: {exc}"
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        latency_ms = (time.perf_counter() - t0) * 1000.0
        log.warn("oracle", f"{phase}_unavailable", {"error": error, "role": self.role})
        return OracleResult(value=fallback, available=False, error=error, latency_ms=latency_ms)


def build_oracle(config: OracleConfig) -> GuardedOracle:
    """
    Build the configured backend wrapped in a :class:`GuardedOracle`.

    The LLM backend loads its model lazily, so a missing model surfaces as
    oracle-unavailable fallbacks rather than a startup failure.
    """
    if config.backend == "llm":
        from llm.engine import TextGenerationEngine

        backend: ReasoningOracle = LLMOracle(TextGenerationEngine(config))
    else:
        backend = RuleBasedOracle()
    return GuardedOracle(backend, config.timeout_ms, config.reaction_timeout_ms)
