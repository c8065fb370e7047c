"""Selective promotion of sandbox memories into shared memory."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta
from typing import Any

from core.event_bus import MEMORIES_GRADUATED, EventBus
from core.errors import InvalidTransition
from memory.experiment_store import ExperimentStore
from memory.provenance import new_id
from memory.schemas import MemoryGraduationRecord, utc_now
from memory.stores.shared_memory import SharedMemory
from memory.types.experiment import (
    GRADUATABLE_OUTCOMES,
    GRADUATION_DECISIONS,
    ExperimentMemory,
    GraduationReport,
    PromotionFailure,
)

logger = logging.getLogger("esm.graduation")


class GraduationPipeline:
    """Copies accepted memories out of isolation and keeps the audit trail.

    Graduation is transactional per memory: one failed promotion leaves that
    memory un-graduated and the rest of the batch proceeds.
    Each memory is claimed before promotion so that concurrent accepts copy
    it into shared memory at most once.
    """

    def __init__(
        self,
        store: ExperimentStore,
        shared_memory: SharedMemory,
        event_bus: EventBus | None = None,
        auto_threshold: float = 0.6,
        claim_ttl_s: float = 300.0,
    ) -> None:
        self.store = store
        self.shared_memory = shared_memory
        self.events = event_bus or EventBus()
        self.auto_threshold = auto_threshold
        self.claim_ttl_s = claim_ttl_s

    def graduate(
        self,
        experiment_id: str,
        decision: str,
        reason: str,
        selected_memory_ids: Sequence[str] | None = None,
        target_session_id: str | None = None,
        human_decision: bool = True,
        confidence_threshold: float | None = None,
    ) -> GraduationReport:
        """Apply an accept/reject decision to a completed experiment."""
        if decision not in GRADUATION_DECISIONS:
            raise ValueError(f"Unknown graduation decision: {decision}")
        experiment = self.store.get_experiment(experiment_id)
        if experiment.outcome not in GRADUATABLE_OUTCOMES:
            raise InvalidTransition(experiment_id, experiment.outcome, f"graduate:{decision}")

        report = GraduationReport(experiment_id=experiment_id, decision=decision)
        candidates = self.store.pending_graduation(experiment_id, selected_memory_ids)

        for memory in candidates:
            record = MemoryGraduationRecord(
                id=new_id(),
                experiment_id=experiment_id,
                memory_id=memory.id,
                graduation_type="promote" if decision == "accept" else "reject",
                decision_reason=reason,
                human_decision=human_decision,
                confidence_threshold=confidence_threshold,
                graduated_at=utc_now(),
                promoted_to_session_id=target_session_id if decision == "accept" else None,
            )
            if decision == "reject":
                report.graduations.append(self.store.record_rejection(record))
                continue

            claim_id = new_id()
            stale_before = utc_now() - timedelta(seconds=self.claim_ttl_s)
            if not self.store.claim_memory(memory.id, claim_id, stale_before):
                logger.debug("Memory %s is being graduated by another caller; skipping", memory.id)
                continue
            try:
                record.promoted_memory_id = self.shared_memory.promote_memory(
                    memory.content, self._promotion_context(memory), target_session_id
                )
            except Exception as exc:
                self.store.release_claim(memory.id, claim_id)
                logger.warning("Promotion of memory %s failed: %s", memory.id, exc)
                report.failures.append(PromotionFailure(memory_id=memory.id, reason=str(exc)))
                continue

            graduation = self.store.mark_memory_graduated(record)
            if graduation is None:
                logger.debug("Memory %s was graduated concurrently; skipping", memory.id)
                continue
            report.graduations.append(graduation)

        self.store.set_graduation(experiment_id, decision, reason)
        logger.info(
            "Graduation of experiment %s: %s, %d recorded, %d failed",
            experiment_id,
            decision,
            len(report.graduations),
            len(report.failures),
        )
        self.events.emit(MEMORIES_GRADUATED, {"report": report.model_dump()})
        return report

    def auto_graduate(
        self,
        experiment_id: str,
        threshold: float | None = None,
        target_session_id: str | None = None,
    ) -> GraduationReport:
        """Policy decision: accept successful experiments scored at or above ``threshold``."""
        cutoff = self.auto_threshold if threshold is None else threshold
        experiment = self.store.get_experiment(experiment_id)
        if experiment.outcome == "success" and experiment.confidence_score >= cutoff:
            decision = "accept"
            reason = f"Auto-accepted: success with confidence {experiment.confidence_score:.2f} >= {cutoff:.2f}"
        elif experiment.outcome == "success":
            decision = "reject"
            reason = f"Auto-rejected: confidence {experiment.confidence_score:.2f} below {cutoff:.2f}"
        else:
            decision = "reject"
            reason = f"Auto-rejected: outcome was {experiment.outcome}"
        return self.graduate(
            experiment_id,
            decision,
            reason,
            target_session_id=target_session_id,
            human_decision=False,
            confidence_threshold=cutoff,
        )

    @staticmethod
    def _promotion_context(memory: ExperimentMemory) -> dict[str, Any]:
        context = dict(memory.context_data or {})
        context.update(
            {
                "experiment_id": memory.experiment_id,
                "memory_id": memory.id,
                "memory_type": memory.memory_type,
                "relevance_score": memory.relevance_score,
                "conversation_id": memory.conversation_id,
                "source": "sandbox_graduation",
            }
        )
        return context
