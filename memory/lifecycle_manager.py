"""Public API over sandbox experiments and their isolated memories."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from core.event_bus import (
    EXPERIMENT_COMPLETED,
    EXPERIMENT_CREATED,
    EXPERIMENT_STARTED,
    EXPERIMENTS_PURGED,
    MEMORY_CREATED,
    EventBus,
)
from governance.confidence import ConfidenceScorer
from governance.pattern_catalog import PatternCatalog, PatternRule
from memory.experiment_store import ExperimentStore
from memory.provenance import new_id, suggestion_hash
from memory.schemas import ExperimentMemoryRecord, ExperimentRecord, utc_now
from memory.scoring import memory_relevance
from memory.types.experiment import (
    EXPERIMENT_TYPES,
    LEARNING_OUTCOMES,
    MEMORY_TYPES,
    RISK_LEVELS,
    TERMINAL_OUTCOMES,
    ConfidenceStats,
    Experiment,
    ExperimentMemory,
    OutcomeEvidence,
)

logger = logging.getLogger("esm.lifecycle")


class ExperimentLifecycleManager:
    """Creates experiments, records memories and outcomes, feeds pattern stats.

    The manager holds no mutable state besides its injected collaborators, so
    several instances may share one store.
    """

    def __init__(
        self,
        store: ExperimentStore,
        scorer: ConfidenceScorer | None = None,
        event_bus: EventBus | None = None,
        memory_type_weights: Mapping[str, float] | None = None,
        retention_days: int = 30,
        seed_patterns: list[PatternRule] | None = None,
    ) -> None:
        self.store = store
        self.scorer = scorer or ConfidenceScorer(PatternCatalog(store))
        self.catalog = self.scorer.catalog
        self.events = event_bus or EventBus()
        self.memory_type_weights = dict(memory_type_weights) if memory_type_weights else None
        self.retention_days = retention_days
        self.catalog.seed(seed_patterns)

    def create_experiment(
        self,
        suggestion_text: str,
        sandbox_id: str,
        user_id: str | None = None,
        project_path: str | None = None,
        experiment_type: str | None = None,
        risk_level: str | None = None,
    ) -> Experiment:
        """Score, persist and announce a new proposal."""
        if not sandbox_id:
            raise ValueError("sandbox_id is required")
        kind = experiment_type or "general"
        if kind not in EXPERIMENT_TYPES:
            raise ValueError(f"Unknown experiment type: {kind}")
        if risk_level is not None and risk_level not in RISK_LEVELS:
            raise ValueError(f"Unknown risk level: {risk_level}")

        confidence = self.scorer.score(suggestion_text, kind)
        record = ExperimentRecord(
            id=new_id(),
            user_id=user_id or "default-user",
            project_path=project_path or "/current-project",
            sandbox_id=sandbox_id,
            suggestion_text=suggestion_text,
            suggestion_hash=suggestion_hash(suggestion_text),
            confidence_score=confidence,
            risk_level=risk_level or self.scorer.assess_risk(suggestion_text),
            experiment_type=kind,
            created_at=utc_now(),
            outcome="pending",
            graduated=False,
            execution_time_ms=0,
            memory_created=0,
        )
        experiment = self.store.insert_experiment(record)
        logger.info(
            "Created sandbox experiment %s (confidence %d%%, risk %s)",
            experiment.id,
            round(confidence * 100),
            experiment.risk_level,
        )
        self.events.emit(EXPERIMENT_CREATED, {"experiment": experiment.model_dump()})
        return experiment

    def start_experiment(self, experiment_id: str) -> Experiment:
        """pending -> running."""
        experiment = self.store.mark_running(experiment_id)
        logger.info("Experiment %s running", experiment_id)
        self.events.emit(EXPERIMENT_STARTED, {"experiment": experiment.model_dump()})
        return experiment

    def create_experiment_memory(
        self,
        experiment_id: str,
        memory_type: str,
        content: str,
        context_data: dict[str, Any] | None = None,
        conversation_id: str | None = None,
    ) -> ExperimentMemory:
        """Append one sandbox-isolated memory to an experiment."""
        if memory_type not in MEMORY_TYPES:
            raise ValueError(f"Unknown memory type: {memory_type}")
        record = ExperimentMemoryRecord(
            id=new_id(),
            experiment_id=experiment_id,
            conversation_id=conversation_id,
            memory_type=memory_type,
            content=content,
            context_data=context_data,
            relevance_score=memory_relevance(content, memory_type, self.memory_type_weights),
            isolation_level="sandbox",
            created_at=utc_now(),
            graduated_to_main=False,
        )
        memory = self.store.insert_memory(record)
        logger.debug("Created experiment memory %s (type %s)", memory.id, memory_type)
        self.events.emit(MEMORY_CREATED, {"memory": memory.model_dump()})
        return memory

    def update_outcome(
        self,
        experiment_id: str,
        outcome: str,
        evidence: OutcomeEvidence | Mapping[str, Any] | None = None,
    ) -> Experiment:
        """Record how an experiment ended and learn from success/failure."""
        if outcome == "running":
            return self.start_experiment(experiment_id)
        if outcome not in TERMINAL_OUTCOMES:
            raise ValueError(f"Not a terminal outcome: {outcome}")
        if evidence is not None and not isinstance(evidence, OutcomeEvidence):
            evidence = OutcomeEvidence.model_validate(dict(evidence))

        experiment = self.store.complete_experiment(experiment_id, outcome, evidence)
        updated_patterns: list[str] = []
        if outcome in LEARNING_OUTCOMES:
            updated_patterns = self.catalog.record_outcome(
                experiment.suggestion_text, success=outcome == "success"
            )
        logger.info("Experiment %s -> %s", experiment_id, outcome)
        self.events.emit(
            EXPERIMENT_COMPLETED,
            {
                "experiment_id": experiment_id,
                "outcome": outcome,
                "evidence": evidence.model_dump() if evidence else None,
                "patterns_updated": updated_patterns,
            },
        )
        return experiment

    def get_experiment(self, experiment_id: str) -> Experiment:
        return self.store.get_experiment(experiment_id)

    def list_experiments(self, user_id: str = "default-user", **filters: Any) -> list[Experiment]:
        """Filters: project_path, outcome, experiment_type, graduated, limit."""
        return self.store.list_experiments(user_id=user_id, **filters)

    def list_memories(self, experiment_id: str, **filters: Any) -> list[ExperimentMemory]:
        """Filters: memory_type, graduated."""
        return self.store.list_memories(experiment_id, **filters)

    def find_duplicates(self, suggestion_text: str) -> list[Experiment]:
        """Earlier experiments with the same proposal text."""
        return self.store.find_by_hash(suggestion_hash(suggestion_text))

    def get_confidence_stats(self) -> ConfidenceStats:
        return self.store.confidence_stats()

    def get_success_rates(self) -> list[dict[str, Any]]:
        return self.store.success_rates()

    def get_calibration(self) -> list[dict[str, Any]]:
        return self.store.calibration()

    def purge_older_than(self, days: int | None = None) -> int:
        """Retention sweep over completed experiments."""
        window = self.retention_days if days is None else days
        if window < 0:
            raise ValueError("days must be non-negative")
        removed = self.store.purge_older_than(window)
        self.events.emit(EXPERIMENTS_PURGED, {"days": window, "removed": removed})
        return removed
