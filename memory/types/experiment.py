"""Sandbox experiment models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ExperimentType = Literal[
    "general",
    "file_modification",
    "dependency_change",
    "config_update",
    "refactoring",
    "testing",
    "deployment",
    "security_fix",
]
RiskLevel = Literal["low", "medium", "high"]
Outcome = Literal["pending", "running", "success", "failure", "abandoned", "timeout"]
MemoryType = Literal[
    "conversation",
    "command_result",
    "file_change",
    "error_encounter",
    "success_pattern",
    "lesson_learned",
]
GraduationDecision = Literal["accept", "reject"]
GraduationType = Literal["promote", "reject"]

EXPERIMENT_TYPES = frozenset(ExperimentType.__args__)
RISK_LEVELS = frozenset(RiskLevel.__args__)
MEMORY_TYPES = frozenset(MemoryType.__args__)
GRADUATION_DECISIONS = frozenset(GraduationDecision.__args__)

OPEN_OUTCOMES = ("pending", "running")
TERMINAL_OUTCOMES = ("success", "failure", "abandoned", "timeout")
# Timed-out experiments stay out of graduation and the retention sweep.
GRADUATABLE_OUTCOMES = ("success", "failure", "abandoned")
PURGEABLE_OUTCOMES = GRADUATABLE_OUTCOMES
LEARNING_OUTCOMES = ("success", "failure")


class OutcomeEvidence(BaseModel):
    """Evidence reported with a terminal outcome."""

    model_config = ConfigDict(extra="forbid")

    files_modified: list[str] = Field(default_factory=list)
    commands_run: list[str] = Field(default_factory=list)
    error_messages: list[str] = Field(default_factory=list)
    success_metrics: dict[str, Any] = Field(default_factory=dict)
    execution_time_ms: int = Field(default=0, ge=0)


class Experiment(BaseModel):
    """One proposed, sandboxed change."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    project_path: str
    sandbox_id: str
    suggestion_text: str
    suggestion_hash: str
    confidence_score: float
    risk_level: RiskLevel
    experiment_type: ExperimentType
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    outcome: Outcome = "pending"
    graduated: bool = False
    graduation_decision: GraduationDecision | None = None
    graduation_reason: str | None = None
    graduation_at: datetime | None = None
    files_modified: list[str] | None = None
    commands_run: list[str] | None = None
    error_messages: list[str] | None = None
    success_metrics: dict[str, Any] | None = None
    execution_time_ms: int = 0
    memory_created: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.outcome in TERMINAL_OUTCOMES


class ExperimentMemory(BaseModel):
    """Atomic fact learned inside a sandbox experiment."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    experiment_id: str
    conversation_id: str | None = None
    memory_type: MemoryType
    content: str
    context_data: dict[str, Any] | None = None
    relevance_score: float
    isolation_level: str = "sandbox"
    created_at: datetime
    graduated_to_main: bool = False
    graduation_date: datetime | None = None


class ConfidencePattern(BaseModel):
    """Stored heuristic with its running statistics."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    pattern_name: str
    pattern_description: str
    pattern_regex: str | None = None
    success_rate: float
    total_experiments: int = 0
    successful_experiments: int = 0
    failed_experiments: int = 0
    risk_multiplier: float = 1.0
    pattern_weight: float = 1.0
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")
    last_updated: datetime | None = None


class MemoryGraduation(BaseModel):
    """Audit record for one promotion or rejection."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    experiment_id: str
    memory_id: str
    graduation_type: GraduationType
    decision_reason: str
    human_decision: bool = True
    confidence_threshold: float | None = None
    graduated_at: datetime
    promoted_to_session_id: str | None = None
    promoted_memory_id: str | None = None


class PromotionFailure(BaseModel):
    """A memory that could not be copied into shared memory."""

    memory_id: str
    reason: str


class GraduationReport(BaseModel):
    """Partial-success report returned by the graduation pipeline."""

    experiment_id: str
    decision: GraduationDecision
    graduations: list[MemoryGraduation] = Field(default_factory=list)
    failures: list[PromotionFailure] = Field(default_factory=list)

    @property
    def fully_succeeded(self) -> bool:
        return not self.failures

    @property
    def promoted_memory_ids(self) -> list[str]:
        return [g.memory_id for g in self.graduations if g.graduation_type == "promote"]


class ConfidenceStats(BaseModel):
    """Calibration summary across completed experiments."""

    average_confidence: float = 0.0
    accuracy_score: float = 0.0
    total_experiments: int = 0
    pattern_count: int = 0


class ConfidenceAnalysis(BaseModel):
    """Explained confidence assessment for a proposal."""

    confidence_score: float
    confidence_level: str
    risk_level: RiskLevel
    pattern_matches: list[str] = Field(default_factory=list)
    historical_match: bool = False
    similar_experiments: int = 0
    complexity_score: float = 0.0
    complexity_factors: list[str] = Field(default_factory=list)
    estimated_difficulty: Literal["simple", "moderate", "complex", "very_complex"] = "simple"
    reasoning: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
