"""Confidence scoring for proposed sandbox experiments."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal

from core.errors import ScoringDegraded
from governance.pattern_catalog import PatternCatalog
from governance.risk_scoring import assess_complexity, assess_risk_level, matching_risk_rule
from memory.types.experiment import ConfidenceAnalysis, ConfidencePattern

logger = logging.getLogger("esm.scoring")

NEUTRAL_CONFIDENCE = 0.5
NEUTRAL_RISK = "low"
MIN_CONFIDENCE = 0.05
MAX_CONFIDENCE = 0.95

SIMILARITY_THRESHOLD = 0.3
HISTORY_LIMIT = 100

DEFAULT_KIND_MULTIPLIERS: dict[str, float] = {
    "general": 1.0,
    "file_modification": 0.9,
    "dependency_change": 0.7,
    "config_update": 0.8,
    "refactoring": 0.6,
    "testing": 0.85,
    "deployment": 0.5,
    "security_fix": 0.6,
}

_CENT = Decimal("0.01")


def clamp_confidence(value: float) -> float:
    """Clamp to [0.05, 0.95] and round half up to two decimals."""
    bounded = min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, value))
    return float(Decimal(str(bounded)).quantize(_CENT, rounding=ROUND_HALF_UP))


def confidence_level(score: float) -> str:
    """Map a score to a coarse label."""
    if score >= 0.8:
        return "very_high"
    if score >= 0.65:
        return "high"
    if score >= 0.35:
        return "medium"
    if score >= 0.2:
        return "low"
    return "very_low"


def text_similarity(left: str, right: str) -> float:
    """Jaccard overlap of lower-cased whitespace-separated words."""
    words_left = set(left.lower().split())
    words_right = set(right.lower().split())
    union = words_left | words_right
    if not union:
        return 0.0
    return len(words_left & words_right) / len(union)


class ConfidenceScorer:
    """Weighted average of matching pattern success rates, scaled per kind.

    Scoring is advisory. Neither ``score`` nor ``assess_risk`` raises; an
    internal failure degrades to the neutral baseline.
    """

    def __init__(
        self,
        catalog: PatternCatalog,
        kind_multipliers: Mapping[str, float] | None = None,
    ) -> None:
        self.catalog = catalog
        self.kind_multipliers = dict(DEFAULT_KIND_MULTIPLIERS)
        if kind_multipliers:
            self.kind_multipliers.update({k: float(v) for k, v in kind_multipliers.items()})

    def score(self, suggestion_text: str, experiment_type: str = "general") -> float:
        try:
            return self._score(suggestion_text, experiment_type)[0]
        except Exception as exc:
            logger.warning("%s", ScoringDegraded(f"confidence scoring failed: {exc}"))
            return NEUTRAL_CONFIDENCE

    def assess_risk(self, suggestion_text: str) -> str:
        try:
            return assess_risk_level(suggestion_text)
        except Exception as exc:
            logger.warning("%s", ScoringDegraded(f"risk assessment failed: {exc}"))
            return NEUTRAL_RISK

    def analyze(
        self,
        suggestion_text: str,
        experiment_type: str = "general",
        user_id: str = "default-user",
        exclude_experiment_id: str | None = None,
    ) -> ConfidenceAnalysis:
        """Explain a score: matched patterns, history, complexity and advice.

        History and complexity are reported alongside the score and do not
        change it.
        """
        try:
            score, matches = self._score(suggestion_text, experiment_type)
            complexity, complexity_factors, difficulty = assess_complexity(suggestion_text)
        except Exception as exc:
            logger.warning("%s", ScoringDegraded(f"confidence analysis failed: {exc}"))
            return ConfidenceAnalysis(
                confidence_score=NEUTRAL_CONFIDENCE,
                confidence_level=confidence_level(NEUTRAL_CONFIDENCE),
                risk_level=NEUTRAL_RISK,
                reasoning=["Unable to analyze - using default confidence"],
                recommendations=["Proceed with caution - analysis unavailable"],
            )
        risk = self.assess_risk(suggestion_text)
        level = confidence_level(score)
        similar = self._similar_successes(suggestion_text, user_id, exclude_experiment_id)

        reasoning: list[str] = []
        if matches:
            avg_success = sum(p.success_rate for p, _ in matches) / len(matches)
            reasoning.append(f"Matched {len(matches)} known patterns")
            reasoning.append(f"Average pattern success rate: {round(avg_success * 100)}%")
        else:
            reasoning.append("No known patterns matched - neutral baseline")
        multiplier = self.kind_multipliers.get(experiment_type, 1.0)
        if multiplier != 1.0:
            reasoning.append(f"Experiment type '{experiment_type}' scaled by {multiplier:g}")
        risk_hit = matching_risk_rule(suggestion_text)
        reasoning.append(f"Risk assessment: {risk}" + (f" ({risk_hit[1]})" if risk_hit else ""))
        reasoning.append(f"Complexity: {difficulty}")
        if similar:
            reasoning.append(f"Found {similar} similar successful experiments")
        else:
            reasoning.append("No similar historical experiments found")

        return ConfidenceAnalysis(
            confidence_score=score,
            confidence_level=level,
            risk_level=risk,
            pattern_matches=[p.pattern_name for p, _ in matches],
            historical_match=similar > 0,
            similar_experiments=similar,
            complexity_score=complexity,
            complexity_factors=complexity_factors,
            estimated_difficulty=difficulty,
            reasoning=reasoning,
            recommendations=self._recommendations(score, risk, difficulty, bool(matches)),
        )

    def _score(
        self, suggestion_text: str, experiment_type: str
    ) -> tuple[float, list[tuple[ConfidencePattern, float]]]:
        matches = self.catalog.match(suggestion_text)
        numerator = 0.0
        denominator = 0.0
        for pattern, weight in matches:
            numerator += pattern.success_rate * weight
            denominator += weight
        baseline = numerator / denominator if denominator else NEUTRAL_CONFIDENCE
        multiplier = self.kind_multipliers.get(experiment_type, 1.0)
        return clamp_confidence(baseline * multiplier), matches

    def _similar_successes(
        self, suggestion_text: str, user_id: str, exclude_experiment_id: str | None
    ) -> int:
        try:
            past = self.catalog.store.list_experiments(
                user_id=user_id, outcome="success", limit=HISTORY_LIMIT
            )
        except Exception as exc:
            logger.warning("%s", ScoringDegraded(f"history lookup failed: {exc}"))
            return 0
        return sum(
            1
            for experiment in past
            if experiment.id != exclude_experiment_id
            and text_similarity(suggestion_text, experiment.suggestion_text) > SIMILARITY_THRESHOLD
        )

    @staticmethod
    def _recommendations(score: float, risk: str, difficulty: str, has_history: bool) -> list[str]:
        recommendations: list[str] = []
        if score >= 0.8:
            recommendations.append("High confidence - safe to proceed")
        elif score >= 0.6:
            recommendations.append("Good confidence - recommended with review")
        elif score >= 0.4:
            recommendations.append("Medium confidence - proceed with caution")
        else:
            recommendations.append("Low confidence - consider manual implementation")
        if risk == "high":
            recommendations.append("High risk detected - keep the change in the sandbox until verified")
            recommendations.append("Have a rollback plan ready")
        elif risk == "medium":
            recommendations.append("Review changes carefully and run tests before applying")
        if difficulty == "very_complex":
            recommendations.append("Complex operation - break into smaller steps")
        if not has_history:
            recommendations.append("No historical patterns - proceed carefully")
        return recommendations
