"""Top-level wiring of the sandbox memory components."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.event_bus import EventBus
from core.policy_runtime import ensure_runtime_dirs, load_effective_config
from governance.confidence import ConfidenceScorer
from governance.pattern_catalog import PatternCatalog
from memory.experiment_store import ExperimentStore
from memory.graduation import GraduationPipeline
from memory.lifecycle_manager import ExperimentLifecycleManager
from memory.stores.shared_memory import JsonlSharedMemory, SharedMemory
from memory.stores.sql_store import SQLStore


@dataclass
class RuntimeBundle:
    """Holds initialized runtime components."""

    config: dict[str, Any]
    sql_store: SQLStore
    store: ExperimentStore
    events: EventBus
    lifecycle: ExperimentLifecycleManager
    graduation: GraduationPipeline

    def close(self) -> None:
        self.sql_store.dispose()


class Orchestrator:
    """Creates and wires runtime components; the host owns their lifetime."""

    def __init__(self, root: Path | None = None, config_path: Path | None = None) -> None:
        self.root = (root or Path.cwd()).resolve()
        self.config_path = config_path

    def build(self, shared_memory: SharedMemory | None = None) -> RuntimeBundle:
        config = load_effective_config(self.root, self.config_path)
        paths = ensure_runtime_dirs(self.root, config)

        sql_store = SQLStore(
            paths["db_path"],
            busy_timeout_s=float(config.get("store", {}).get("busy_timeout_s", 5.0)),
        )
        store = ExperimentStore(sql_store)
        events = EventBus()

        scoring_cfg = config.get("scoring", {})
        graduation_cfg = config.get("graduation", {})
        scorer = ConfidenceScorer(
            PatternCatalog(store),
            kind_multipliers=scoring_cfg.get("kind_multipliers") or None,
        )
        lifecycle = ExperimentLifecycleManager(
            store,
            scorer=scorer,
            event_bus=events,
            memory_type_weights=scoring_cfg.get("memory_type_weights") or None,
            retention_days=int(config.get("retention", {}).get("days", 30)),
        )
        graduation = GraduationPipeline(
            store,
            shared_memory or JsonlSharedMemory(paths["shared_memory_path"]),
            event_bus=events,
            auto_threshold=float(graduation_cfg.get("auto_threshold", 0.6)),
            claim_ttl_s=float(graduation_cfg.get("claim_ttl_s", 300.0)),
        )
        return RuntimeBundle(
            config=config,
            sql_store=sql_store,
            store=store,
            events=events,
            lifecycle=lifecycle,
            graduation=graduation,
        )
