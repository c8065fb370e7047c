"""Typed sandbox memory payload models."""

from memory.types.experiment import (
    ConfidenceAnalysis,
    ConfidencePattern,
    ConfidenceStats,
    Experiment,
    ExperimentMemory,
    GraduationReport,
    MemoryGraduation,
    OutcomeEvidence,
    PromotionFailure,
)

__all__ = [
    "ConfidenceAnalysis",
    "ConfidencePattern",
    "ConfidenceStats",
    "Experiment",
    "ExperimentMemory",
    "GraduationReport",
    "MemoryGraduation",
    "OutcomeEvidence",
    "PromotionFailure",
]
