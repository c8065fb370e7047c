"""Configuration and runtime path bootstrapping."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "db_path": "workspace/sandbox_memory.db",
        "shared_memory_path": "workspace/shared_memory.jsonl",
    },
    "store": {"busy_timeout_s": 5.0},
    "retention": {"days": 30},
    "scoring": {"kind_multipliers": {}, "memory_type_weights": {}},
    "graduation": {"auto_threshold": 0.6, "claim_ttl_s": 300.0},
    "logging": {"level": "INFO"},
}


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML from file, returning empty mapping when missing."""
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries."""
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def ensure_runtime_dirs(root: Path, config: dict[str, Any]) -> dict[str, Path]:
    """Ensure storage directories exist and return resolved paths."""
    paths_cfg = config.get("paths", {})
    db_path = (root / paths_cfg.get("db_path", "workspace/sandbox_memory.db")).resolve()
    shared_memory_path = (
        root / paths_cfg.get("shared_memory_path", "workspace/shared_memory.jsonl")
    ).resolve()

    db_path.parent.mkdir(parents=True, exist_ok=True)
    shared_memory_path.parent.mkdir(parents=True, exist_ok=True)

    return {"db_path": db_path, "shared_memory_path": shared_memory_path}


def load_effective_config(root: Path, override_path: Path | None = None) -> dict[str, Any]:
    """Merge built-in defaults, ``config/default.yaml`` and an optional override file."""
    merged = merge_dicts(DEFAULT_CONFIG, load_yaml(root / "config" / "default.yaml"))
    if override_path is not None:
        merged = merge_dicts(merged, load_yaml(override_path))
    return merged
