"""Confidence scoring and risk assessment tests."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from governance.confidence import ConfidenceScorer, clamp_confidence, confidence_level
from governance.pattern_catalog import DEFAULT_PATTERNS, PatternCatalog, PatternRule
from governance.risk_scoring import assess_risk_level
from memory.experiment_store import ExperimentStore
from memory.stores.sql_store import SQLStore


def build_catalog(tmp_path: Path, rules: list[PatternRule] | None = None) -> PatternCatalog:
    store = ExperimentStore(SQLStore(db_path=tmp_path / "esm.db"))
    catalog = PatternCatalog(store)
    catalog.seed(rules)
    return catalog


class BrokenCatalog:
    def match(self, suggestion_text: str) -> list:
        raise RuntimeError("pattern table corrupted")


PATHOLOGICAL_TEXTS = [
    "",
    " ",
    "a" * 100_000,
    "(((",
    "\x00\n\t",
    "ünïcødé 🚀 deploy",
    "edit modify change update single file " * 50,
    "delete " * 1000,
]


@pytest.mark.parametrize("text", PATHOLOGICAL_TEXTS)
@pytest.mark.parametrize(
    "kind",
    ["general", "file_modification", "dependency_change", "config_update",
     "refactoring", "testing", "deployment", "security_fix", "not-a-kind"],
)
def test_score_is_always_clamped(tmp_path: Path, text: str, kind: str) -> None:
    scorer = ConfidenceScorer(build_catalog(tmp_path))
    score = scorer.score(text, kind)
    assert 0.05 <= score <= 0.95
    assert score == round(score, 2)


def test_extreme_rates_and_multipliers_hit_the_bounds(tmp_path: Path) -> None:
    catalog = build_catalog(
        tmp_path,
        [
            PatternRule("certain", "always works", r"certain", success_rate=1.0),
            PatternRule("doomed", "never works", r"doomed", success_rate=0.0),
        ],
    )
    scorer = ConfidenceScorer(catalog, kind_multipliers={"general": 100.0})
    assert scorer.score("certain change") == 0.95
    assert scorer.score("doomed change") == 0.05
    assert scorer.score("unmatched") == 0.95


def test_unmatched_proposal_uses_neutral_baseline(tmp_path: Path) -> None:
    scorer = ConfidenceScorer(build_catalog(tmp_path, []))
    assert scorer.score("completely novel idea") == 0.5
    assert scorer.score("completely novel idea", "deployment") == 0.25
    assert scorer.score("completely novel idea", "security_fix") == 0.3


def test_weighted_average_of_matching_patterns(tmp_path: Path) -> None:
    catalog = build_catalog(
        tmp_path,
        [
            PatternRule("cache", "cache work", r"cache", success_rate=0.8, weight=1.0),
            PatternRule("cache_layer", "cache layers", r"cache.*layer", success_rate=0.2, weight=3.0),
            PatternRule("unrelated", "never matches", r"kubernetes", success_rate=0.1, weight=5.0),
        ],
    )
    scorer = ConfidenceScorer(catalog)

    assert scorer.score("add a CACHE layer") == pytest.approx(0.35)
    assert scorer.score("warm the cache") == pytest.approx(0.8)
    assert scorer.score("warm the cache", "refactoring") == pytest.approx(0.48)
    assert scorer.score("warm the cache", "deployment") == pytest.approx(0.4)


def test_match_skips_invalid_regex_and_is_case_insensitive(tmp_path: Path) -> None:
    catalog = build_catalog(
        tmp_path,
        [
            PatternRule("broken", "bad regex", r"([", success_rate=0.9),
            PatternRule("no_rule", "no regex at all", None, success_rate=0.9),
            PatternRule("ok", "fine", r"retry", success_rate=0.6),
        ],
    )
    matches = catalog.match("Add RETRY logic")
    assert [p.pattern_name for p, _ in matches] == ["ok"]
    assert matches[0][1] == 1.0


def test_seed_is_idempotent(tmp_path: Path) -> None:
    catalog = build_catalog(tmp_path)
    assert catalog.seed() == 0
    assert len(catalog.list_patterns()) == len(DEFAULT_PATTERNS)
    assert catalog.get_pattern("simple_file_edit").pattern_weight == 1.2


def test_scorer_degrades_to_neutral_baseline() -> None:
    scorer = ConfidenceScorer(BrokenCatalog())  # type: ignore[arg-type]
    assert scorer.score("anything", "deployment") == 0.5

    analysis = scorer.analyze("anything")
    assert analysis.confidence_score == 0.5
    assert analysis.risk_level == "low"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("delete production database migration", "high"),
        ("Drop the users table", "high"),
        ("deploy to staging", "high"),
        ("security settings change", "high"),
        ("auth flow: modify token expiry", "high"),
        ("Refactor the parser", "medium"),
        ("bump package versions", "medium"),
        ("config change for logging", "medium"),
        ("new API endpoint for exports", "medium"),
        ("add unit tests for parser", "low"),
        ("", "low"),
    ],
)
def test_risk_rules_first_match_wins(text: str, expected: str) -> None:
    assert assess_risk_level(text) == expected


def test_confidence_helpers() -> None:
    assert clamp_confidence(1.7) == 0.95
    assert clamp_confidence(-3.0) == 0.05
    assert clamp_confidence(0.456) == 0.46
    assert confidence_level(0.9) == "very_high"
    assert confidence_level(0.7) == "high"
    assert confidence_level(0.5) == "medium"
    assert confidence_level(0.25) == "low"
    assert confidence_level(0.1) == "very_low"


def test_analyze_explains_score(tmp_path: Path) -> None:
    scorer = ConfidenceScorer(
        build_catalog(tmp_path, [PatternRule("retry", "retry work", r"retry", success_rate=0.9)])
    )
    analysis = scorer.analyze("delete old retry helper")

    assert analysis.confidence_score == 0.9
    assert analysis.confidence_level == "very_high"
    assert analysis.risk_level == "high"
    assert analysis.pattern_matches == ["retry"]
    assert any("Destructive" in line for line in analysis.reasoning)
    assert any("rollback" in rec for rec in analysis.recommendations)


def test_rounding_is_half_up() -> None:
    assert clamp_confidence(0.125) == 0.13
    assert clamp_confidence(0.625) == 0.63
    assert clamp_confidence(0.135) == 0.14


@pytest.mark.parametrize(
    ("rate", "kind", "expected"),
    [(0.625, "general", 0.63), (0.25, "deployment", 0.13), (0.45, "security_fix", 0.27)],
)
def test_scores_round_half_up(tmp_path: Path, rate: float, kind: str, expected: float) -> None:
    scorer = ConfidenceScorer(
        build_catalog(tmp_path, [PatternRule("retry", "retry work", r"retry", success_rate=rate)])
    )
    assert scorer.score("add retry", kind) == expected


def test_concurrent_seeding_inserts_each_pattern_once(tmp_path: Path) -> None:
    store = ExperimentStore(SQLStore(db_path=tmp_path / "esm.db"))
    barrier = threading.Barrier(4)
    added: list[int] = []
    errors: list[Exception] = []

    def seed() -> None:
        catalog = PatternCatalog(store)
        barrier.wait()
        try:
            added.append(catalog.seed())
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=seed) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert sum(added) == len(DEFAULT_PATTERNS)
    assert len(store.list_patterns()) == len(DEFAULT_PATTERNS)
