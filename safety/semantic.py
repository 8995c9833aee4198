"""
safety/semantic.py — Heuristic semantic risk scorer.

Flags input that resembles known jailbreak phrasing or asks for protected
("honeypot") identifiers, including obfuscated spellings such as
``a-d-m-i-n override key`` or ``IgnoreAllPreviousInstructions``.

Feature space::

    term weight = 1.5                      normalised term is a substring of
                                           the normalised input
                = |shingles(term) ∩ T| /   otherwise, where T is the input's
                  |shingles(term)|         3-char shingles plus its words

Vectors are not unit length; :func:`cosine_similarity` renormalises. Each
reference phrase is compared in its own vocabulary: the phrase plus its
words longer than two characters.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from core.config import ScorerConfig
from core.constants import GuardConstants as C
from core.logger import get_logger
from safety.phrases import HONEYPOT_KEYS, JAILBREAK_VECTORS

log = get_logger()

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_WORD_SPLIT = re.compile(r"\W+")


# ──────────────────────────────────────────────────────────────
# Feature extraction
# ──────────────────────────────────────────────────────────────

def normalize_text(text: str) -> str:
    """Lowercase and strip everything but ``[a-z0-9]``."""
    return _NON_ALNUM.sub("", text.lower())


def shingles(normalized: str, size: int = C.SHINGLE_SIZE) -> list[str]:
    """Overlapping ``size``-character substrings of ``normalized``, in order."""
    return [normalized[i:i + size] for i in range(len(normalized) - size + 1)]


def token_set(text: str, size: int = C.SHINGLE_SIZE) -> set[str]:
    """Shingles of the normalised text plus words longer than two characters."""
    tokens = set(shingles(normalize_text(text), size))
    tokens.update(
        w for w in _WORD_SPLIT.split(text.lower()) if len(w) >= C.MIN_WORD_LENGTH
    )
    return tokens


def vectorize(
    text: str,
    vocabulary: Sequence[str],
    *,
    exact_weight: float = C.EXACT_MATCH_WEIGHT,
    shingle_size: int = C.SHINGLE_SIZE,
) -> np.ndarray:
    """
    Score each vocabulary term against ``text``.

    Args:
        text: Raw input text.
        vocabulary: Terms defining the vector's dimensions.
        exact_weight: Weight for a contiguous substring hit.
        shingle_size: Shingle width.

    Returns:
        A float vector with one entry per vocabulary term.
    """
    normalized = normalize_text(text)
    tokens = token_set(text, shingle_size)
    weights = np.zeros(len(vocabulary), dtype=float)
    for index, term in enumerate(vocabulary):
        term_norm = normalize_text(term)
        if term_norm and term_norm in normalized:
            weights[index] = exact_weight
            continue
        term_shingles = shingles(term_norm, shingle_size)
        if term_shingles:
            hits = sum(1 for s in term_shingles if s in tokens)
            weights[index] = hits / len(term_shingles)
    return weights


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine of the angle between ``a`` and ``b``, clipped to ``[0, 1]``.

    Returns 0.0 when either vector is empty or has zero norm.

    Raises:
        ValueError: If the vectors have different lengths.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"Vector length mismatch: {a.shape} vs {b.shape}")
    if a.size == 0:
        return 0.0
    denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denominator == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / denominator, 0.0, 1.0))


def reference_vocabulary(phrase: str) -> list[str]:
    """The phrase itself plus its alphanumeric words longer than two characters."""
    words = [w for w in re.split(r"[^a-z0-9]+", phrase.lower()) if len(w) >= C.MIN_WORD_LENGTH]
    vocabulary = [phrase]
    for word in words:
        if word not in vocabulary:
            vocabulary.append(word)
    return vocabulary


# ──────────────────────────────────────────────────────────────
# Scorer
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ScanResult:
    """
    Outcome of scanning one text against one reference category.

    Attributes:
        category: ``"jailbreak"`` or ``"honeypot"``.
        flagged: True if ``score`` exceeds ``threshold``.
        score: Highest similarity over the category's references.
        matched: The reference phrase that produced ``score``.
        threshold: Threshold applied.
    """

    category: str
    flagged: bool
    score: float
    matched: Optional[str]
    threshold: float


class SemanticRiskScorer:
    """
    Similarity scorer over reference phrase sets.

    Args:
        config: Thresholds and feature weights.
        jailbreak_phrases: Reference jailbreak phrasing.
        honeypot_keys: Protected identifiers.
    """

    def __init__(
        self,
        config: Optional[ScorerConfig] = None,
        jailbreak_phrases: Sequence[str] = JAILBREAK_VECTORS,
        honeypot_keys: Sequence[str] = HONEYPOT_KEYS,
    ) -> None:
        self._cfg = config or ScorerConfig()
        self._jailbreak = tuple(jailbreak_phrases)
        self._honeypots = tuple(honeypot_keys)

    @property
    def honeypot_keys(self) -> tuple[str, ...]:
        return self._honeypots

    def similarity(self, text: str, reference: str) -> float:
        """Similarity of ``text`` to one reference in the reference's vocabulary."""
        vocabulary = reference_vocabulary(reference)
        kwargs = {
            "exact_weight": self._cfg.exact_match_weight,
            "shingle_size": self._cfg.shingle_size,
        }
        return cosine_similarity(
            vectorize(text, vocabulary, **kwargs),
            vectorize(reference, vocabulary, **kwargs),
        )

    def best_match(
        self, text: str, reference_phrases: Sequence[str]
    ) -> tuple[float, Optional[str]]:
        """Return the highest similarity and the reference that produced it."""
        best_score, best_phrase = 0.0, None
        for phrase in reference_phrases:
            score = self.similarity(text, phrase)
            if score > best_score:
                best_score, best_phrase = score, phrase
        return best_score, best_phrase

    def score(self, text: str, reference_phrases: Sequence[str]) -> float:
        """Maximum similarity of ``text`` across ``reference_phrases``."""
        return self.best_match(text, reference_phrases)[0]

    def scan_jailbreak(self, text: str) -> ScanResult:
        return self._scan("jailbreak", text, self._jailbreak, self._cfg.jailbreak_threshold)

    def scan_honeypot(self, text: str) -> ScanResult:
        return self._scan("honeypot", text, self._honeypots, self._cfg.honeypot_threshold)

    def _scan(
        self,
        category: str,
        text: str,
        references: Sequence[str],
        threshold: float,
    ) -> ScanResult:
        t0 = time.perf_counter()
        score, matched = self.best_match(text, references)
        result = ScanResult(
            category=category,
            flagged=score > threshold,
            score=round(score, 4),
            matched=matched,
            threshold=threshold,
        )
        log.perf(
            "scorer",
            f"{category}_scan",
            (time.perf_counter() - t0) * 1000.0,
            {"score": result.score, "flagged": result.flagged},
        )
        return result
