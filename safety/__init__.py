"""
safety — Semantic risk scoring of operator input.

Character-shingle vectors and cosine similarity against reference jailbreak
phrasing and protected identifiers.
"""
