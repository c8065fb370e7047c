"""Experiment lifecycle and pattern learning tests."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import pytest

from core.errors import InvalidTransition, NotFound
from core.event_bus import (
    EXPERIMENT_COMPLETED,
    EXPERIMENT_CREATED,
    EXPERIMENT_STARTED,
    MEMORY_CREATED,
    EventBus,
)
from governance.pattern_catalog import PatternRule
from memory.experiment_store import ExperimentStore
from memory.lifecycle_manager import ExperimentLifecycleManager
from memory.scoring import memory_relevance
from memory.stores.sql_store import SQLStore


def build_lifecycle(
    tmp_path: Path,
    seed_patterns: list[PatternRule] | None = None,
    event_bus: EventBus | None = None,
) -> ExperimentLifecycleManager:
    store = ExperimentStore(SQLStore(db_path=tmp_path / "esm.db"))
    return ExperimentLifecycleManager(store, event_bus=event_bus, seed_patterns=seed_patterns)


CACHE_RULE = PatternRule("cache_change", "Cache tuning", r"cache", success_rate=0.5)


def test_create_scores_and_classifies(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path)
    experiment = lifecycle.create_experiment(
        "delete production database migration", sandbox_id="sb-1"
    )

    assert experiment.risk_level == "high"
    assert 0.05 <= experiment.confidence_score <= 0.95
    assert experiment.outcome == "pending"
    assert experiment.started_at is None


def test_create_accepts_explicit_risk_and_kind(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [])
    experiment = lifecycle.create_experiment(
        "novel change", sandbox_id="sb-1", experiment_type="deployment", risk_level="medium"
    )
    assert experiment.risk_level == "medium"
    assert experiment.experiment_type == "deployment"
    assert experiment.confidence_score == 0.25


@pytest.mark.parametrize(
    "kwargs",
    [
        {"sandbox_id": ""},
        {"sandbox_id": "sb-1", "experiment_type": "astrology"},
        {"sandbox_id": "sb-1", "risk_level": "extreme"},
    ],
)
def test_create_rejects_invalid_input(tmp_path: Path, kwargs: dict[str, Any]) -> None:
    lifecycle = build_lifecycle(tmp_path, [])
    with pytest.raises(ValueError):
        lifecycle.create_experiment("anything", **kwargs)
    assert lifecycle.list_experiments() == []


def test_lifecycle_transitions(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [])
    experiment = lifecycle.create_experiment("Tune retry backoff", sandbox_id="sb-1")

    running = lifecycle.update_outcome(experiment.id, "running")
    assert running.outcome == "running"
    assert running.started_at is not None
    with pytest.raises(InvalidTransition):
        lifecycle.start_experiment(experiment.id)

    done = lifecycle.update_outcome(
        experiment.id,
        "success",
        {"files_modified": ["retry.py"], "execution_time_ms": 420},
    )
    assert done.outcome == "success"
    assert done.is_terminal
    assert done.execution_time_ms == 420

    with pytest.raises(InvalidTransition) as excinfo:
        lifecycle.update_outcome(experiment.id, "failure")
    assert excinfo.value.current == "success"
    assert lifecycle.get_experiment(experiment.id).outcome == "success"


def test_pending_may_complete_directly(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [])
    experiment = lifecycle.create_experiment("Tune retry backoff", sandbox_id="sb-1")
    assert lifecycle.update_outcome(experiment.id, "abandoned").outcome == "abandoned"


def test_update_outcome_rejects_bad_input(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [])
    experiment = lifecycle.create_experiment("Tune retry backoff", sandbox_id="sb-1")
    with pytest.raises(ValueError):
        lifecycle.update_outcome(experiment.id, "pending")
    with pytest.raises(ValueError):
        lifecycle.update_outcome(experiment.id, "success", {"execution_time_ms": -5})
    with pytest.raises(NotFound):
        lifecycle.update_outcome("missing", "success")
    assert lifecycle.get_experiment(experiment.id).outcome == "pending"


def test_pattern_statistics_follow_outcomes(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [CACHE_RULE])
    first = lifecycle.create_experiment("tune cache size", sandbox_id="sb-1")
    second = lifecycle.create_experiment("rewrite cache eviction", sandbox_id="sb-2")

    lifecycle.update_outcome(first.id, "success")
    after_success = lifecycle.catalog.get_pattern("cache_change")
    assert after_success.total_experiments == 1
    assert after_success.success_rate == 1.0

    lifecycle.update_outcome(second.id, "failure")
    pattern = lifecycle.catalog.get_pattern("cache_change")
    assert pattern.total_experiments == 2
    assert pattern.successful_experiments == 1
    assert pattern.failed_experiments == 1
    assert pattern.success_rate == pytest.approx(0.5)


def test_non_learning_outcomes_leave_patterns_untouched(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [CACHE_RULE])
    abandoned = lifecycle.create_experiment("tune cache size", sandbox_id="sb-1")
    timed_out = lifecycle.create_experiment("warm cache on boot", sandbox_id="sb-2")

    lifecycle.update_outcome(abandoned.id, "abandoned")
    lifecycle.update_outcome(timed_out.id, "timeout")

    pattern = lifecycle.catalog.get_pattern("cache_change")
    assert pattern.total_experiments == 0
    assert pattern.success_rate == 0.5


def test_observed_outcomes_replace_seeded_prior(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(
        tmp_path, [PatternRule("cache_change", "Cache tuning", r"cache", success_rate=0.9)]
    )
    experiment = lifecycle.create_experiment("tune cache size", sandbox_id="sb-1")
    assert experiment.confidence_score == 0.9

    lifecycle.update_outcome(experiment.id, "failure")
    assert lifecycle.catalog.get_pattern("cache_change").success_rate == 0.0
    assert lifecycle.create_experiment("shrink cache", sandbox_id="sb-2").confidence_score == 0.05


@pytest.mark.parametrize(
    ("memory_type", "length", "expected"),
    [
        ("lesson_learned", 500, 0.9),
        ("lesson_learned", 5000, 0.9),
        ("error_encounter", 250, 0.45),
        ("file_change", 1000, 0.6),
        ("conversation", 1, 0.1),
    ],
)
def test_memory_relevance(memory_type: str, length: int, expected: float) -> None:
    assert memory_relevance("x" * length, memory_type) == pytest.approx(expected)


def test_memory_relevance_weight_override() -> None:
    assert memory_relevance("x" * 500, "conversation", {"conversation": 2.0}) == 0.95
    assert memory_relevance("x" * 500, "lesson_learned", {"conversation": 2.0}) == pytest.approx(0.9)


def test_created_memory_is_sandbox_isolated(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [])
    experiment = lifecycle.create_experiment("Tune retry backoff", sandbox_id="sb-1")
    memory = lifecycle.create_experiment_memory(
        experiment.id,
        "lesson_learned",
        "y" * 500,
        context_data={"file": "retry.py"},
        conversation_id="conv-1",
    )

    assert memory.isolation_level == "sandbox"
    assert memory.graduated_to_main is False
    assert memory.relevance_score == pytest.approx(0.9)
    assert memory.context_data == {"file": "retry.py"}
    with pytest.raises(ValueError):
        lifecycle.create_experiment_memory(experiment.id, "gossip", "hello")


def test_lifecycle_events(tmp_path: Path) -> None:
    bus = EventBus()
    received: list[tuple[str, dict[str, Any]]] = []
    for name in (EXPERIMENT_CREATED, EXPERIMENT_STARTED, EXPERIMENT_COMPLETED, MEMORY_CREATED):
        bus.subscribe(name, lambda payload, name=name: received.append((name, payload)))
    lifecycle = build_lifecycle(tmp_path, [CACHE_RULE], event_bus=bus)

    experiment = lifecycle.create_experiment("tune cache size", sandbox_id="sb-1")
    lifecycle.start_experiment(experiment.id)
    lifecycle.create_experiment_memory(experiment.id, "command_result", "ok")
    lifecycle.update_outcome(experiment.id, "success")

    assert [name for name, _ in received] == [
        EXPERIMENT_CREATED,
        EXPERIMENT_STARTED,
        MEMORY_CREATED,
        EXPERIMENT_COMPLETED,
    ]
    completed = received[-1][1]
    assert completed["outcome"] == "success"
    assert completed["patterns_updated"] == ["cache_change"]


def test_failing_subscriber_does_not_break_the_write(tmp_path: Path) -> None:
    bus = EventBus()

    def explode(payload: dict[str, Any]) -> None:
        raise RuntimeError("subscriber bug")

    bus.subscribe(EXPERIMENT_CREATED, explode)
    lifecycle = build_lifecycle(tmp_path, [], event_bus=bus)
    experiment = lifecycle.create_experiment("Tune retry backoff", sandbox_id="sb-1")
    assert lifecycle.get_experiment(experiment.id).id == experiment.id


def test_confidence_statistics(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [CACHE_RULE])
    assert lifecycle.get_confidence_stats().total_experiments == 0

    ok = lifecycle.create_experiment("tune cache size", sandbox_id="sb-1")
    bad = lifecycle.create_experiment("novel idea", sandbox_id="sb-2", experiment_type="deployment")
    gone = lifecycle.create_experiment("abandon me", sandbox_id="sb-3")
    lifecycle.update_outcome(ok.id, "success")
    lifecycle.update_outcome(bad.id, "failure")
    lifecycle.update_outcome(gone.id, "abandoned")

    stats = lifecycle.get_confidence_stats()
    assert stats.total_experiments == 2
    assert stats.accuracy_score == pytest.approx(0.5)
    assert stats.average_confidence == pytest.approx((0.5 + 0.25) / 2)
    assert stats.pattern_count == 1

    rates = {(r["experiment_type"], r["risk_level"]): r for r in lifecycle.get_success_rates()}
    assert rates[("general", "low")]["successful"] == 1
    assert rates[("deployment", "low")]["failed"] == 1

    buckets = {row["confidence_bucket"]: row for row in lifecycle.get_calibration()}
    assert buckets[0.5]["actual_success_rate"] == 1.0
    assert sum(row["total_predictions"] for row in buckets.values()) == 2


def test_concurrent_outcome_reports_have_one_winner(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [CACHE_RULE])
    other = ExperimentLifecycleManager(lifecycle.store, seed_patterns=[])
    experiment = lifecycle.create_experiment("tune cache size", sandbox_id="sb-race")
    lifecycle.start_experiment(experiment.id)

    barrier = threading.Barrier(2)
    results: dict[str, str] = {}

    def report(manager: ExperimentLifecycleManager, outcome: str) -> None:
        barrier.wait()
        try:
            manager.update_outcome(experiment.id, outcome)
            results[outcome] = "won"
        except InvalidTransition:
            results[outcome] = "lost"

    threads = [
        threading.Thread(target=report, args=(lifecycle, "success")),
        threading.Thread(target=report, args=(other, "failure")),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(results.values()) == ["lost", "won"]
    winner = next(outcome for outcome, result in results.items() if result == "won")
    assert lifecycle.get_experiment(experiment.id).outcome == winner
    assert lifecycle.catalog.get_pattern("cache_change").total_experiments == 1


def test_broken_scorer_does_not_block_creation(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    lifecycle = build_lifecycle(tmp_path, [CACHE_RULE])

    def broken(*args: Any, **kwargs: Any) -> Any:
        raise RuntimeError("scoring backend down")

    monkeypatch.setattr(lifecycle.catalog, "match", broken)
    monkeypatch.setattr("governance.confidence.assess_risk_level", broken)

    experiment = lifecycle.create_experiment("delete the cache layer", sandbox_id="sb-1")

    assert experiment.confidence_score == 0.5
    assert experiment.risk_level == "low"
    assert lifecycle.get_experiment(experiment.id).suggestion_text == "delete the cache layer"


def test_misspelled_evidence_key_is_rejected(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [])
    experiment = lifecycle.create_experiment("Tune retry backoff", sandbox_id="sb-1")
    with pytest.raises(ValueError):
        lifecycle.update_outcome(experiment.id, "success", {"files_modifed": ["retry.py"]})
    assert lifecycle.get_experiment(experiment.id).outcome == "pending"


def test_analysis_reports_similar_successes(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path, [])
    succeeded = lifecycle.create_experiment("add retry logic to http client", sandbox_id="sb-1")
    lifecycle.update_outcome(succeeded.id, "success")
    failed = lifecycle.create_experiment("add retry logic to http server", sandbox_id="sb-2")
    lifecycle.update_outcome(failed.id, "failure")

    similar = lifecycle.scorer.analyze("add retry logic to grpc client")
    assert similar.similar_experiments == 1
    assert similar.historical_match is True
    assert "Found 1 similar successful experiments" in similar.reasoning

    unrelated = lifecycle.scorer.analyze("rename the changelog")
    assert unrelated.similar_experiments == 0
    assert unrelated.historical_match is False
    assert "No similar historical experiments found" in unrelated.reasoning

    itself = lifecycle.scorer.analyze(
        "add retry logic to http client", exclude_experiment_id=succeeded.id
    )
    assert itself.similar_experiments == 0
    assert lifecycle.scorer.analyze("add retry logic to grpc client", user_id="someone-else").similar_experiments == 0


def test_analysis_reports_complexity_without_changing_score(tmp_path: Path) -> None:
    lifecycle = build_lifecycle(tmp_path)
    text = "refactor async state management across multiple files for performance"

    analysis = lifecycle.scorer.analyze(text)

    assert analysis.estimated_difficulty == "very_complex"
    assert analysis.complexity_score == 1.0
    assert set(analysis.complexity_factors) == {
        "Multiple file changes",
        "Algorithmic changes",
        "Asynchronous operations",
        "State management",
    }
    assert "Complex operation - break into smaller steps" in analysis.recommendations
    assert analysis.confidence_score == lifecycle.scorer.score(text)

    simple = lifecycle.scorer.analyze("fix typo")
    assert simple.estimated_difficulty == "simple"
    assert simple.complexity_factors == []
