"""Named confidence heuristics with store-resident success statistics."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from memory.experiment_store import ExperimentStore
from memory.provenance import new_id
from memory.schemas import ConfidencePatternRecord
from memory.types.experiment import ConfidencePattern

logger = logging.getLogger("esm.patterns")


@dataclass(frozen=True)
class PatternRule:
    """Declarative seed for one confidence pattern."""

    name: str
    description: str
    regex: str | None
    success_rate: float = 0.5
    weight: float = 1.0
    risk_multiplier: float = 1.0
    metadata: dict[str, Any] = field(default_factory=dict)


DEFAULT_PATTERNS: list[PatternRule] = [
    PatternRule(
        "simple_file_edit",
        "Single file modifications without dependencies",
        r"(edit|modify|change|update).*single.*file",
        0.85,
        1.2,
    ),
    PatternRule(
        "package_install",
        "Installing packages or dependencies",
        r"(npm install|pip install|add package|install.*dependency)",
        0.75,
        1.0,
    ),
    PatternRule(
        "config_update",
        "Configuration file changes",
        r"(config|\.json|\.yaml|\.yml|\.toml|settings).*update",
        0.70,
        1.1,
    ),
    PatternRule(
        "refactor_small",
        "Small refactoring operations",
        r"refactor.*(function|method|component|class)",
        0.65,
        1.0,
    ),
    PatternRule("test_addition", "Adding or modifying tests", r"(test|spec|pytest|jest).*add", 0.80, 1.1),
    PatternRule(
        "database_migration",
        "Database schema changes",
        r"(migration|schema|database).*change",
        0.45,
        0.8,
    ),
    PatternRule(
        "deployment_change",
        "Deployment configuration changes",
        r"(deploy|docker|kubernetes).*config",
        0.40,
        0.7,
    ),
    PatternRule("security_fix", "Security-related modifications", r"(security|auth|permission).*fix", 0.55, 0.9),
    PatternRule("api_endpoint", "Adding or modifying API endpoints", r"(api|endpoint|route).*add", 0.60, 1.0),
    PatternRule("ui_component", "UI component creation or modification", r"(component|ui|interface).*create", 0.70, 1.0),
]


class PatternCatalog:
    """Matches proposals against stored patterns and records outcomes.

    Patterns are re-read from the store on every call so that concurrent
    managers observe each other's statistic updates immediately.
    """

    def __init__(self, store: ExperimentStore) -> None:
        self.store = store

    def seed(self, rules: list[PatternRule] | None = None) -> int:
        """Insert any missing patterns by name; returns how many were added."""
        added = 0
        for rule in DEFAULT_PATTERNS if rules is None else rules:
            record = ConfidencePatternRecord(
                id=new_id(),
                pattern_name=rule.name,
                pattern_description=rule.description,
                pattern_regex=rule.regex,
                success_rate=max(0.0, min(1.0, rule.success_rate)),
                total_experiments=0,
                successful_experiments=0,
                failed_experiments=0,
                risk_multiplier=rule.risk_multiplier,
                pattern_weight=rule.weight,
                metadata_json=dict(rule.metadata),
            )
            if self.store.insert_pattern_if_absent(record):
                added += 1
        if added:
            logger.info("Seeded %d confidence patterns", added)
        return added

    def list_patterns(self) -> list[ConfidencePattern]:
        return self.store.list_patterns()

    def get_pattern(self, pattern_name: str) -> ConfidencePattern:
        return self.store.get_pattern(pattern_name)

    def match(self, suggestion_text: str) -> list[tuple[ConfidencePattern, float]]:
        """Return every pattern whose rule matches, with its weight."""
        matches: list[tuple[ConfidencePattern, float]] = []
        for pattern in self.store.list_patterns():
            if not pattern.pattern_regex:
                continue
            try:
                rule = re.compile(pattern.pattern_regex, re.IGNORECASE)
            except re.error as exc:
                logger.warning("Invalid regex in pattern %s: %s", pattern.pattern_name, exc)
                continue
            if rule.search(suggestion_text):
                logger.debug(
                    "Pattern match: %s (%.0f%%)", pattern.pattern_name, pattern.success_rate * 100
                )
                matches.append((pattern, pattern.pattern_weight))
        return matches

    def record_outcome(self, suggestion_text: str, success: bool) -> list[str]:
        """Feed one success/failure into every matching pattern."""
        updated: list[str] = []
        for pattern, _weight in self.match(suggestion_text):
            self.store.record_pattern_outcome(pattern.id, success)
            updated.append(pattern.pattern_name)
            logger.debug(
                "Updated pattern %s (%s)", pattern.pattern_name, "success" if success else "failure"
            )
        return updated
