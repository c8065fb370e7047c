"""Relevance scoring for sandbox memories."""

from __future__ import annotations

from collections.abc import Mapping

DEFAULT_MEMORY_TYPE_WEIGHTS: dict[str, float] = {
    "conversation": 0.8,
    "command_result": 0.7,
    "file_change": 0.6,
    "error_encounter": 0.9,
    "success_pattern": 0.85,
    "lesson_learned": 0.9,
}

SUBSTANTIVE_LENGTH = 500


def content_density(content: str) -> float:
    """Map content length to [0,1], saturating at 500 characters."""
    return min(1.0, len(content) / SUBSTANTIVE_LENGTH)


def memory_relevance(
    content: str,
    memory_type: str,
    type_weights: Mapping[str, float] | None = None,
) -> float:
    """Base weight for the memory type scaled by content density, in [0.1, 0.95]."""
    weights = dict(DEFAULT_MEMORY_TYPE_WEIGHTS)
    if type_weights:
        weights.update(type_weights)
    base = float(weights.get(memory_type, 0.5))
    return max(0.1, min(0.95, base * content_density(content)))
