"""
intent/vocabulary.py — Operations and verb synonyms for command parsing.

The one place that defines which words mean which operation. Both the strict
grammar (operation names) and the loose phrase normaliser (synonyms) read
from here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Operation(Enum):
    """Operation applied by one intent."""

    SET = "set"
    INCREASE = "increase"
    DECREASE = "decrease"
    MULTIPLY = "multiply"
    TOGGLE = "toggle"


RELATIVE = "relative"
ABSOLUTE = "absolute"


@dataclass(frozen=True)
class VerbGroup:
    """
    Synonyms mapping to one operation.

    ``toggle_value`` is the operand implied by the verb itself (1 for "turn
    on", 0 for "turn off"); ``None`` for verbs that need a numeral.
    """

    operation: Operation
    phrases: tuple[str, ...]
    toggle_value: Optional[float] = None

    def matches(self, text: str) -> bool:
        return any(re.search(rf"\b{re.escape(p)}\b", text) for p in self.phrases)


# Checked in order: "turn off"/"deactivate" must be tested before
# "turn on"/"activate", and toggles before the numeric verbs.
VERB_GROUPS: tuple[VerbGroup, ...] = (
    VerbGroup(Operation.TOGGLE, ("turn off", "switch off", "deactivate", "disable", "stop", "kill"), 0.0),
    VerbGroup(Operation.TOGGLE, ("turn on", "switch on", "activate", "enable", "start"), 1.0),
    VerbGroup(Operation.INCREASE, ("increase", "raise", "boost", "up")),
    VerbGroup(Operation.DECREASE, ("decrease", "reduce", "lower", "drop", "down")),
    VerbGroup(Operation.MULTIPLY, ("multiply", "times")),
)

DEFAULT_OPERATION = Operation.SET

# Strict grammar operation names, derived from the enum
STRICT_OPERATIONS: tuple[str, ...] = tuple(op.value for op in Operation)


def detect_verb(text: str) -> VerbGroup:
    """
    Return the first verb group with a phrase in ``text`` (lowercase).

    Falls back to a SET group when no synonym occurs.
    """
    for group in VERB_GROUPS:
        if group.matches(text):
            return group
    return VerbGroup(DEFAULT_OPERATION, (DEFAULT_OPERATION.value,))
