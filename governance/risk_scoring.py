"""Heuristic risk tiers for proposed changes."""

from __future__ import annotations

import re

# Ordered rules, first match wins.
RISK_RULES: list[tuple[str, re.Pattern[str], str]] = [
    ("high", re.compile(r"delete|remove|drop|destroy", re.IGNORECASE), "Destructive operation"),
    ("high", re.compile(r"database.*migration", re.IGNORECASE), "Database schema change"),
    ("high", re.compile(r"production|deploy", re.IGNORECASE), "Production environment"),
    ("high", re.compile(r"security.*change", re.IGNORECASE), "Security modification"),
    ("high", re.compile(r"auth.*modify", re.IGNORECASE), "Authentication change"),
    ("medium", re.compile(r"refactor", re.IGNORECASE), "Code refactoring"),
    ("medium", re.compile(r"dependency|package", re.IGNORECASE), "Dependency change"),
    ("medium", re.compile(r"config.*change", re.IGNORECASE), "Configuration change"),
    ("medium", re.compile(r"api.*endpoint", re.IGNORECASE), "API modification"),
]


COMPLEXITY_INDICATORS: list[tuple[re.Pattern[str], float, str]] = [
    (re.compile(r"multiple.*files|several.*files|\d+.*files", re.IGNORECASE), 0.3, "Multiple file changes"),
    (re.compile(r"complex|complicated|advanced|sophisticated", re.IGNORECASE), 0.4, "Self-described complexity"),
    (re.compile(r"integration|connect.*services|microservice", re.IGNORECASE), 0.5, "Service integration"),
    (re.compile(r"algorithm|optimization|performance", re.IGNORECASE), 0.4, "Algorithmic changes"),
    (re.compile(r"async|promise|callback|concurrent", re.IGNORECASE), 0.3, "Asynchronous operations"),
    (re.compile(r"state.*management|redux|context", re.IGNORECASE), 0.3, "State management"),
]
_LONG_WORD = re.compile(r"\w{8,}")


def assess_complexity(suggestion_text: str) -> tuple[float, list[str], str]:
    """Return ``(score, factors, difficulty)`` for a proposal, score in [0, 1]."""
    score = 0.2
    factors: list[str] = []
    for pattern, weight, reason in COMPLEXITY_INDICATORS:
        if pattern.search(suggestion_text):
            factors.append(reason)
            score += weight
    score += min(0.3, len(suggestion_text) / 1000)
    score += min(0.2, len(_LONG_WORD.findall(suggestion_text)) * 0.05)
    score = min(1.0, score)

    if score > 0.8:
        difficulty = "very_complex"
    elif score > 0.6:
        difficulty = "complex"
    elif score > 0.4:
        difficulty = "moderate"
    else:
        difficulty = "simple"
    return round(score, 4), factors, difficulty


def matching_risk_rule(suggestion_text: str) -> tuple[str, str] | None:
    """Return ``(tier, reason)`` of the first rule that matches."""
    for tier, pattern, reason in RISK_RULES:
        if pattern.search(suggestion_text):
            return tier, reason
    return None


def assess_risk_level(suggestion_text: str) -> str:
    """Classify a proposal as low, medium or high risk."""
    hit = matching_risk_rule(suggestion_text)
    return hit[0] if hit else "low"
