"""
intent/parser.py — Strict command grammar and loose phrase normalisation.

Strict lines have the shape::

    <set|increase|decrease|multiply|toggle> <parameter> <number[%]> <relative|absolute>

Anything else is skipped by :class:`CommandParser` (a parse-skip, not an
error). :class:`PhraseNormalizer` rewrites free text such as "turn off the
sprinkler and raise rpm by 10%" into strict lines first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from intent.vocabulary import (
    ABSOLUTE,
    RELATIVE,
    STRICT_OPERATIONS,
    Operation,
    detect_verb,
)
from telemetry.registry import ParameterRegistry, default_registry

logger = logging.getLogger(__name__)

_STRICT_LINE = re.compile(
    rf"^({'|'.join(STRICT_OPERATIONS)})\s+(\w+)\s+([\d.%]+)\s+({RELATIVE}|{ABSOLUTE})$",
    re.IGNORECASE,
)

# Clause boundaries: sentence punctuation (a period before a digit is a
# decimal point), semicolons, newlines and the word "and".
_CLAUSE_SPLIT = re.compile(r"[!?;\n]|\.(?!\d)|\band\b")
_VALUE = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?)\s*(%|percent\b)?")
_AXIS_DESIGNATOR = re.compile(r"\baxis\s*\d+\b")


# ──────────────────────────────────────────────────────────────
# Strict grammar
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Intent:
    """One parsed instruction, consumed once by the pipeline."""

    parameter_key: str
    operation: Operation
    operand: float
    operand_is_percentage: bool
    raw_phrase: str
    modifier: str = ABSOLUTE

    def to_command_line(self) -> str:
        operand = f"{self.operand:g}" + ("%" if self.operand_is_percentage else "")
        return f"{self.operation.value} {self.parameter_key} {operand} {self.modifier}"


class CommandParser:
    """Parser for the fixed five-verb line grammar."""

    def parse(self, line: str) -> Optional[Intent]:
        """
        Parse one line.

        Returns:
            The :class:`Intent`, or ``None`` if the line does not match the
            grammar or its operand is not a number (``1.2.3``, ``%``).
        """
        match = _STRICT_LINE.match(line.strip())
        if match is None:
            return None
        op_name, parameter, raw_operand, modifier = match.groups()

        is_percentage = raw_operand.endswith("%")
        number = raw_operand[:-1] if is_percentage else raw_operand
        if "%" in number:
            return None
        try:
            operand = float(number)
        except ValueError:
            return None

        return Intent(
            parameter_key=parameter.lower(),
            operation=Operation(op_name.lower()),
            operand=operand,
            operand_is_percentage=is_percentage,
            raw_phrase=line.strip(),
            modifier=modifier.lower(),
        )

    def parse_many(self, text: str) -> list[Intent]:
        """Parse every line of ``text``, dropping the ones that do not match."""
        intents = []
        for line in text.splitlines():
            intent = self.parse(line)
            if intent is not None:
                intents.append(intent)
            elif line.strip():
                logger.debug("Skipping unparsable line: %r", line)
        return intents

    @staticmethod
    def is_strict(line: str) -> bool:
        return _STRICT_LINE.match(line.strip()) is not None


# ──────────────────────────────────────────────────────────────
# Loose phrase normalisation
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PhraseIntent:
    """An intent recognised in free text, before strict re-parsing."""

    primary_parameter: str
    operation: Operation
    value: str
    modifier_type: str
    raw_phrase: str
    modifier_source: str = "local_nlp_engine"

    def to_command_line(self) -> str:
        return f"{self.operation.value} {self.primary_parameter} {self.value} {self.modifier_type}"


@dataclass(frozen=True)
class NormalizedCommand:
    """
    Result of normalising one request.

    Attributes:
        text: Strict-grammar lines joined by newlines.
        intents: Phrase intents recognised in free-text lines.
        rewritten: True if any line was produced from free text.
    """

    text: str
    intents: tuple[PhraseIntent, ...] = ()
    rewritten: bool = False

    @property
    def lines(self) -> list[str]:
        return [line for line in self.text.splitlines() if line]


class PhraseNormalizer:
    """
    Keyword-driven free text → strict grammar rewriter.

    Args:
        registry: Parameter registry used to spot parameter names.
    """

    def __init__(self, registry: Optional[ParameterRegistry] = None) -> None:
        self._registry = registry or default_registry()

    def extract(self, text: str) -> list[PhraseIntent]:
        """Return one :class:`PhraseIntent` per recognisable clause of ``text``."""
        intents = []
        for clause in _CLAUSE_SPLIT.split(text.lower()):
            clause = clause.strip()
            if clause:
                intent = self._extract_clause(clause)
                if intent is not None:
                    intents.append(intent)
        return intents

    def normalize(self, text: str) -> NormalizedCommand:
        """
        Rewrite ``text`` into strict lines.

        Lines already in strict grammar pass through untouched; other lines
        are run through :meth:`extract`.
        """
        lines: list[str] = []
        found: list[PhraseIntent] = []
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            if CommandParser.is_strict(line):
                lines.append(line)
                continue
            extracted = self.extract(line)
            found.extend(extracted)
            lines.extend(intent.to_command_line() for intent in extracted)
        return NormalizedCommand(
            text="\n".join(lines),
            intents=tuple(found),
            rewritten=bool(found),
        )

    def _extract_clause(self, clause: str) -> Optional[PhraseIntent]:
        spec = self._registry.find_in_text(clause)
        if spec is None:
            return None

        verb = detect_verb(clause)
        if verb.toggle_value is not None:
            return PhraseIntent(
                primary_parameter=spec.key,
                operation=Operation.TOGGLE,
                value=f"{verb.toggle_value:g}",
                modifier_type=ABSOLUTE,
                raw_phrase=clause,
            )

        value_match = _VALUE.search(_AXIS_DESIGNATOR.sub(" ", clause))
        if value_match is None:
            return None
        number, percent = value_match.groups()
        return PhraseIntent(
            primary_parameter=spec.key,
            operation=verb.operation,
            value=number + ("%" if percent else ""),
            modifier_type=RELATIVE if percent else ABSOLUTE,
            raw_phrase=clause,
        )
