"""Durable, queryable storage for experiments and their isolated memories."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Float, case, cast, func, inspect, or_
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from core.errors import InvalidTransition, NotFound
from memory.schemas import (
    ConfidencePatternRecord,
    ExperimentMemoryRecord,
    ExperimentRecord,
    MemoryGraduationRecord,
    utc_now,
)
from memory.stores.sql_store import SQLStore
from memory.types.experiment import (
    LEARNING_OUTCOMES,
    OPEN_OUTCOMES,
    PURGEABLE_OUTCOMES,
    ConfidencePattern,
    ConfidenceStats,
    Experiment,
    ExperimentMemory,
    MemoryGraduation,
    OutcomeEvidence,
)

logger = logging.getLogger("esm.store")


class ExperimentStore:
    """Owns persistence of experiments, memories, patterns and graduations.

    Every public write runs in its own ``SQLStore.session()`` transaction.
    Lifecycle transitions are conditional updates so that concurrent callers
    race safely without external locks.
    """

    def __init__(self, sql_store: SQLStore) -> None:
        self.sql_store = sql_store
        self.sql_store.create_all()

    # Experiments

    def insert_experiment(self, record: ExperimentRecord) -> Experiment:
        """Persist a newly proposed experiment."""
        with self.sql_store.session() as sess:
            sess.add(record)
            sess.flush()
            return Experiment.model_validate(record)

    def get_experiment(self, experiment_id: str) -> Experiment:
        """Return one experiment or raise NotFound."""
        with self.sql_store.session() as sess:
            row = sess.get(ExperimentRecord, experiment_id)
            if row is None:
                raise NotFound("experiment", experiment_id)
            return Experiment.model_validate(row)

    def find_by_hash(self, suggestion_hash: str, limit: int = 20) -> list[Experiment]:
        """List experiments whose proposal hashes to the same value."""
        with self.sql_store.session() as sess:
            rows = (
                sess.query(ExperimentRecord)
                .filter(ExperimentRecord.suggestion_hash == suggestion_hash)
                .order_by(ExperimentRecord.created_at.desc())
                .limit(limit)
                .all()
            )
            return [Experiment.model_validate(row) for row in rows]

    def list_experiments(
        self,
        user_id: str = "default-user",
        project_path: str | None = None,
        outcome: str | None = None,
        experiment_type: str | None = None,
        graduated: bool | None = None,
        limit: int | None = None,
    ) -> list[Experiment]:
        """List a user's experiments, newest first."""
        with self.sql_store.session() as sess:
            query = sess.query(ExperimentRecord).filter(ExperimentRecord.user_id == user_id)
            if project_path:
                query = query.filter(ExperimentRecord.project_path == project_path)
            if outcome:
                query = query.filter(ExperimentRecord.outcome == outcome)
            if experiment_type:
                query = query.filter(ExperimentRecord.experiment_type == experiment_type)
            if graduated is not None:
                query = query.filter(ExperimentRecord.graduated.is_(graduated))
            query = query.order_by(ExperimentRecord.created_at.desc())
            if limit:
                query = query.limit(limit)
            return [Experiment.model_validate(row) for row in query.all()]

    def mark_running(self, experiment_id: str) -> Experiment:
        """Move a pending experiment to running."""
        with self.sql_store.session() as sess:
            changed = (
                sess.query(ExperimentRecord)
                .filter(ExperimentRecord.id == experiment_id, ExperimentRecord.outcome == "pending")
                .update(
                    {ExperimentRecord.outcome: "running", ExperimentRecord.started_at: utc_now()},
                    synchronize_session=False,
                )
            )
            row = sess.get(ExperimentRecord, experiment_id)
            if row is None:
                raise NotFound("experiment", experiment_id)
            if not changed:
                raise InvalidTransition(experiment_id, row.outcome, "running")
            return Experiment.model_validate(row)

    def complete_experiment(
        self,
        experiment_id: str,
        outcome: str,
        evidence: OutcomeEvidence | None = None,
    ) -> Experiment:
        """Write a terminal outcome exactly once.

        The ``outcome IN ('pending', 'running')`` predicate makes the write a
        compare-and-set: of two concurrent completions only one matches.
        """
        evidence = evidence or OutcomeEvidence()
        with self.sql_store.session() as sess:
            changed = (
                sess.query(ExperimentRecord)
                .filter(
                    ExperimentRecord.id == experiment_id,
                    ExperimentRecord.outcome.in_(OPEN_OUTCOMES),
                )
                .update(
                    {
                        ExperimentRecord.outcome: outcome,
                        ExperimentRecord.completed_at: utc_now(),
                        ExperimentRecord.files_modified: evidence.files_modified,
                        ExperimentRecord.commands_run: evidence.commands_run,
                        ExperimentRecord.error_messages: evidence.error_messages,
                        ExperimentRecord.success_metrics: evidence.success_metrics,
                        ExperimentRecord.execution_time_ms: evidence.execution_time_ms,
                    },
                    synchronize_session=False,
                )
            )
            row = sess.get(ExperimentRecord, experiment_id)
            if row is None:
                raise NotFound("experiment", experiment_id)
            if not changed:
                raise InvalidTransition(experiment_id, row.outcome, outcome)
            return Experiment.model_validate(row)

    def set_graduation(self, experiment_id: str, decision: str, reason: str) -> Experiment:
        """Record the latest graduation decision on the experiment."""
        with self.sql_store.session() as sess:
            changed = (
                sess.query(ExperimentRecord)
                .filter(ExperimentRecord.id == experiment_id)
                .update(
                    {
                        ExperimentRecord.graduated: True,
                        ExperimentRecord.graduation_decision: decision,
                        ExperimentRecord.graduation_reason: reason,
                        ExperimentRecord.graduation_at: utc_now(),
                    },
                    synchronize_session=False,
                )
            )
            if not changed:
                raise NotFound("experiment", experiment_id)
            return Experiment.model_validate(sess.get(ExperimentRecord, experiment_id))

    def purge_older_than(self, days: int) -> int:
        """Delete completed experiments older than ``days``; cascades to memories."""
        cutoff = datetime.now(UTC) - timedelta(days=days)
        with self.sql_store.session() as sess:
            removed = (
                sess.query(ExperimentRecord)
                .filter(
                    ExperimentRecord.created_at < cutoff,
                    ExperimentRecord.outcome.in_(PURGEABLE_OUTCOMES),
                )
                .delete(synchronize_session=False)
            )
        logger.info("Purged %d experiments older than %d days", removed, days)
        return int(removed)

    # Memories

    def insert_memory(self, record: ExperimentMemoryRecord) -> ExperimentMemory:
        """Insert a memory and bump the owner's counter in one transaction."""
        with self.sql_store.session() as sess:
            changed = (
                sess.query(ExperimentRecord)
                .filter(ExperimentRecord.id == record.experiment_id)
                .update(
                    {ExperimentRecord.memory_created: ExperimentRecord.memory_created + 1},
                    synchronize_session=False,
                )
            )
            if not changed:
                raise NotFound("experiment", record.experiment_id)
            sess.add(record)
            sess.flush()
            return ExperimentMemory.model_validate(record)

    def get_memory(self, memory_id: str) -> ExperimentMemory:
        with self.sql_store.session() as sess:
            row = sess.get(ExperimentMemoryRecord, memory_id)
            if row is None:
                raise NotFound("memory", memory_id)
            return ExperimentMemory.model_validate(row)

    def list_memories(
        self,
        experiment_id: str,
        memory_type: str | None = None,
        graduated: bool | None = None,
    ) -> list[ExperimentMemory]:
        """List an experiment's memories, newest first."""
        with self.sql_store.session() as sess:
            query = sess.query(ExperimentMemoryRecord).filter(
                ExperimentMemoryRecord.experiment_id == experiment_id
            )
            if memory_type:
                query = query.filter(ExperimentMemoryRecord.memory_type == memory_type)
            if graduated is not None:
                query = query.filter(ExperimentMemoryRecord.graduated_to_main.is_(graduated))
            rows = query.order_by(ExperimentMemoryRecord.created_at.desc()).all()
            return [ExperimentMemory.model_validate(row) for row in rows]

    def pending_graduation(
        self,
        experiment_id: str,
        memory_ids: Sequence[str] | None = None,
    ) -> list[ExperimentMemory]:
        """Memories of an experiment that have not graduated yet, oldest first."""
        with self.sql_store.session() as sess:
            query = sess.query(ExperimentMemoryRecord).filter(
                ExperimentMemoryRecord.experiment_id == experiment_id,
                ExperimentMemoryRecord.graduated_to_main.is_(False),
            )
            if memory_ids is not None:
                query = query.filter(ExperimentMemoryRecord.id.in_(list(memory_ids)))
            rows = query.order_by(ExperimentMemoryRecord.created_at.asc()).all()
            return [ExperimentMemory.model_validate(row) for row in rows]

    # Graduations

    def claim_memory(self, memory_id: str, claim_id: str, stale_before: datetime) -> bool:
        """Reserve an un-graduated memory for one promotion attempt.

        A claim older than ``stale_before`` is treated as abandoned and may be
        taken over. Returns False when the memory is graduated or held.
        """
        with self.sql_store.session() as sess:
            changed = (
                sess.query(ExperimentMemoryRecord)
                .filter(
                    ExperimentMemoryRecord.id == memory_id,
                    ExperimentMemoryRecord.graduated_to_main.is_(False),
                    or_(
                        ExperimentMemoryRecord.graduation_claim.is_(None),
                        ExperimentMemoryRecord.graduation_claimed_at < stale_before,
                    ),
                )
                .update(
                    {
                        ExperimentMemoryRecord.graduation_claim: claim_id,
                        ExperimentMemoryRecord.graduation_claimed_at: utc_now(),
                    },
                    synchronize_session=False,
                )
            )
        return bool(changed)

    def release_claim(self, memory_id: str, claim_id: str) -> None:
        """Drop a claim after a failed promotion so a later call can retry."""
        with self.sql_store.session() as sess:
            sess.query(ExperimentMemoryRecord).filter(
                ExperimentMemoryRecord.id == memory_id,
                ExperimentMemoryRecord.graduation_claim == claim_id,
            ).update(
                {
                    ExperimentMemoryRecord.graduation_claim: None,
                    ExperimentMemoryRecord.graduation_claimed_at: None,
                },
                synchronize_session=False,
            )

    def mark_memory_graduated(self, graduation: MemoryGraduationRecord) -> MemoryGraduation | None:
        """Flag a sandbox memory as graduated and append its audit record.

        Returns None when another caller graduated the memory first.
        """
        with self.sql_store.session() as sess:
            changed = (
                sess.query(ExperimentMemoryRecord)
                .filter(
                    ExperimentMemoryRecord.id == graduation.memory_id,
                    ExperimentMemoryRecord.graduated_to_main.is_(False),
                )
                .update(
                    {
                        ExperimentMemoryRecord.graduated_to_main: True,
                        ExperimentMemoryRecord.graduation_date: graduation.graduated_at,
                        ExperimentMemoryRecord.graduation_claim: None,
                        ExperimentMemoryRecord.graduation_claimed_at: None,
                    },
                    synchronize_session=False,
                )
            )
            if not changed:
                return None
            sess.add(graduation)
            sess.flush()
            return MemoryGraduation.model_validate(graduation)

    def record_rejection(self, graduation: MemoryGraduationRecord) -> MemoryGraduation:
        """Append a rejection audit record without touching the memory."""
        with self.sql_store.session() as sess:
            sess.add(graduation)
            sess.flush()
            return MemoryGraduation.model_validate(graduation)

    def list_graduations(self, experiment_id: str) -> list[MemoryGraduation]:
        with self.sql_store.session() as sess:
            rows = (
                sess.query(MemoryGraduationRecord)
                .filter(MemoryGraduationRecord.experiment_id == experiment_id)
                .order_by(MemoryGraduationRecord.graduated_at.asc())
                .all()
            )
            return [MemoryGraduation.model_validate(row) for row in rows]

    # Statistics

    def confidence_stats(self) -> ConfidenceStats:
        """Mean predicted confidence against the realised success rate."""
        with self.sql_store.session() as sess:
            avg_confidence, total, successes = (
                sess.query(
                    func.avg(ExperimentRecord.confidence_score),
                    func.count(ExperimentRecord.id),
                    func.count(case((ExperimentRecord.outcome == "success", 1))),
                )
                .filter(ExperimentRecord.outcome.in_(LEARNING_OUTCOMES))
                .one()
            )
            pattern_count = sess.query(func.count(ConfidencePatternRecord.id)).scalar() or 0
        total = int(total or 0)
        return ConfidenceStats(
            average_confidence=float(avg_confidence or 0.0),
            accuracy_score=(int(successes or 0) / total) if total else 0.0,
            total_experiments=total,
            pattern_count=int(pattern_count),
        )

    def success_rates(self) -> list[dict[str, Any]]:
        """Success rate grouped by experiment type and risk level."""
        successes = func.count(case((ExperimentRecord.outcome == "success", 1)))
        failures = func.count(case((ExperimentRecord.outcome == "failure", 1)))
        with self.sql_store.session() as sess:
            rows = (
                sess.query(
                    ExperimentRecord.experiment_type,
                    ExperimentRecord.risk_level,
                    func.count(ExperimentRecord.id),
                    successes,
                    failures,
                    func.avg(ExperimentRecord.confidence_score),
                    func.avg(ExperimentRecord.execution_time_ms),
                )
                .filter(ExperimentRecord.outcome.in_(LEARNING_OUTCOMES))
                .group_by(ExperimentRecord.experiment_type, ExperimentRecord.risk_level)
                .order_by(ExperimentRecord.experiment_type, ExperimentRecord.risk_level)
                .all()
            )
        return [
            {
                "experiment_type": kind,
                "risk_level": risk,
                "total_experiments": int(total),
                "successful": int(ok),
                "failed": int(bad),
                "success_rate": round(ok / total, 4) if total else 0.0,
                "avg_predicted_confidence": float(avg_conf or 0.0),
                "avg_execution_time_ms": float(avg_ms or 0.0),
            }
            for kind, risk, total, ok, bad, avg_conf, avg_ms in rows
        ]

    def calibration(self) -> list[dict[str, Any]]:
        """Predicted vs actual success per 0.1-wide confidence bucket."""
        bucket = func.round(ExperimentRecord.confidence_score, 1)
        successes = func.count(case((ExperimentRecord.outcome == "success", 1)))
        with self.sql_store.session() as sess:
            rows = (
                sess.query(bucket, func.count(ExperimentRecord.id), successes)
                .filter(ExperimentRecord.outcome.in_(LEARNING_OUTCOMES))
                .group_by(bucket)
                .order_by(bucket)
                .all()
            )
        result: list[dict[str, Any]] = []
        for confidence_bucket, total, ok in rows:
            actual = ok / total if total else 0.0
            result.append(
                {
                    "confidence_bucket": float(confidence_bucket),
                    "total_predictions": int(total),
                    "actual_successes": int(ok),
                    "actual_success_rate": round(actual, 4),
                    "accuracy_error": round(abs(float(confidence_bucket) - actual), 4),
                }
            )
        return result

    # Patterns

    def insert_pattern_if_absent(self, record: ConfidencePatternRecord) -> bool:
        """Insert a pattern unless one with the same name exists.

        ``ON CONFLICT DO NOTHING`` lets concurrent seeders race on the unique
        ``pattern_name`` without an IntegrityError.
        """
        values: dict[str, Any] = {}
        for prop in inspect(ConfidencePatternRecord).column_attrs:
            value = getattr(record, prop.key)
            if value is not None:
                values[prop.columns[0].name] = value
        stmt = (
            sqlite_insert(ConfidencePatternRecord.__table__)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["pattern_name"])
        )
        with self.sql_store.session() as sess:
            inserted = sess.execute(stmt).rowcount
        return bool(inserted)

    def list_patterns(self) -> list[ConfidencePattern]:
        """All stored patterns, heaviest first."""
        with self.sql_store.session() as sess:
            rows = (
                sess.query(ConfidencePatternRecord)
                .order_by(
                    ConfidencePatternRecord.pattern_weight.desc(),
                    ConfidencePatternRecord.pattern_name.asc(),
                )
                .all()
            )
            return [ConfidencePattern.model_validate(row) for row in rows]

    def get_pattern(self, pattern_name: str) -> ConfidencePattern:
        with self.sql_store.session() as sess:
            row = (
                sess.query(ConfidencePatternRecord)
                .filter(ConfidencePatternRecord.pattern_name == pattern_name)
                .first()
            )
            if row is None:
                raise NotFound("pattern", pattern_name)
            return ConfidencePattern.model_validate(row)

    def record_pattern_outcome(self, pattern_id: str, success: bool) -> None:
        """Increment counters and recompute success_rate in one UPDATE.

        SQLite evaluates every SET expression against the pre-update row, so
        the new rate is computed from the incremented values explicitly.
        """
        total = ConfidencePatternRecord.total_experiments + 1
        successful = ConfidencePatternRecord.successful_experiments + (1 if success else 0)
        values: dict[Any, Any] = {
            ConfidencePatternRecord.total_experiments: total,
            ConfidencePatternRecord.success_rate: cast(successful, Float) / cast(total, Float),
            ConfidencePatternRecord.last_updated: utc_now(),
        }
        if success:
            values[ConfidencePatternRecord.successful_experiments] = successful
        else:
            values[ConfidencePatternRecord.failed_experiments] = (
                ConfidencePatternRecord.failed_experiments + 1
            )
        with self.sql_store.session() as sess:
            changed = (
                sess.query(ConfidencePatternRecord)
                .filter(ConfidencePatternRecord.id == pattern_id)
                .update(values, synchronize_session=False)
            )
            if not changed:
                raise NotFound("pattern", pattern_id)
