"""Typer command handlers."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, NoReturn

import typer

from core.errors import SandboxMemoryError
from core.orchestrator import Orchestrator, RuntimeBundle


@contextmanager
def _runtime(root: Path | None = None) -> Iterator[RuntimeBundle]:
    """Build the runtime for one command and dispose of it afterwards."""
    bundle = Orchestrator(root=root).build()
    level = str(bundle.config.get("logging", {}).get("level", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO))
    try:
        yield bundle
    finally:
        bundle.close()


def _echo_json(payload: object) -> None:
    typer.echo(json.dumps(_json_safe(payload), indent=2))


def _fail(exc: SandboxMemoryError) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=1)


def experiment_create(
    suggestion: str,
    sandbox_id: str,
    user_id: str | None,
    project_path: str | None,
    experiment_type: str | None,
    risk_level: str | None,
) -> None:
    """Create an experiment and print it."""
    with _runtime() as bundle:
        try:
            experiment = bundle.lifecycle.create_experiment(
                suggestion,
                sandbox_id,
                user_id=user_id,
                project_path=project_path,
                experiment_type=experiment_type,
                risk_level=risk_level,
            )
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        except SandboxMemoryError as exc:
            _fail(exc)
        _echo_json(experiment.model_dump())


def experiment_start(experiment_id: str) -> None:
    with _runtime() as bundle:
        try:
            experiment = bundle.lifecycle.start_experiment(experiment_id)
        except SandboxMemoryError as exc:
            _fail(exc)
        typer.echo(f"{experiment.id}: {experiment.outcome}")


def experiment_outcome(
    experiment_id: str,
    outcome: str,
    files: list[str],
    commands_run: list[str],
    errors: list[str],
    execution_time_ms: int,
) -> None:
    """Record a terminal outcome."""
    evidence = {
        "files_modified": files,
        "commands_run": commands_run,
        "error_messages": errors,
        "execution_time_ms": execution_time_ms,
    }
    with _runtime() as bundle:
        try:
            experiment = bundle.lifecycle.update_outcome(experiment_id, outcome, evidence)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        except SandboxMemoryError as exc:
            _fail(exc)
        typer.echo(f"{experiment.id}: {experiment.outcome}")


def experiment_list(
    user_id: str,
    project_path: str | None,
    outcome: str | None,
    experiment_type: str | None,
    limit: int,
) -> None:
    with _runtime() as bundle:
        experiments = bundle.lifecycle.list_experiments(
            user_id=user_id,
            project_path=project_path,
            outcome=outcome,
            experiment_type=experiment_type,
            limit=limit,
        )
        _echo_json([e.model_dump() for e in experiments])


def experiment_show(experiment_id: str) -> None:
    """Show an experiment with its memories and graduation history."""
    with _runtime() as bundle:
        try:
            experiment = bundle.lifecycle.get_experiment(experiment_id)
        except SandboxMemoryError as exc:
            _fail(exc)
        analysis = bundle.lifecycle.scorer.analyze(
            experiment.suggestion_text,
            experiment.experiment_type,
            user_id=experiment.user_id,
            exclude_experiment_id=experiment.id,
        )
        _echo_json(
            {
                "experiment": experiment.model_dump(),
                "analysis": analysis.model_dump(),
                "memories": [m.model_dump() for m in bundle.lifecycle.list_memories(experiment_id)],
                "graduations": [g.model_dump() for g in bundle.store.list_graduations(experiment_id)],
            }
        )


def experiment_graduate(
    experiment_id: str,
    decision: str,
    reason: str,
    memory_ids: list[str],
    target_session_id: str | None,
) -> None:
    with _runtime() as bundle:
        try:
            report = bundle.graduation.graduate(
                experiment_id,
                decision,
                reason,
                selected_memory_ids=memory_ids or None,
                target_session_id=target_session_id,
            )
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        except SandboxMemoryError as exc:
            _fail(exc)
        _echo_json(report.model_dump())
        if report.failures:
            raise typer.Exit(code=2)


def experiment_auto_graduate(experiment_id: str, threshold: float | None) -> None:
    with _runtime() as bundle:
        try:
            report = bundle.graduation.auto_graduate(experiment_id, threshold=threshold)
        except SandboxMemoryError as exc:
            _fail(exc)
        _echo_json(report.model_dump())


def memory_add(
    experiment_id: str,
    memory_type: str,
    content: str,
    conversation_id: str | None,
) -> None:
    with _runtime() as bundle:
        try:
            memory = bundle.lifecycle.create_experiment_memory(
                experiment_id, memory_type, content, conversation_id=conversation_id
            )
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        except SandboxMemoryError as exc:
            _fail(exc)
        typer.echo(f"Added {memory_type} memory {memory.id} (relevance {memory.relevance_score:.2f})")


def memory_list(experiment_id: str, memory_type: str | None, graduated: bool | None) -> None:
    with _runtime() as bundle:
        memories = bundle.lifecycle.list_memories(
            experiment_id, memory_type=memory_type, graduated=graduated
        )
        _echo_json([m.model_dump() for m in memories])


def patterns_list() -> None:
    with _runtime() as bundle:
        for pattern in bundle.lifecycle.catalog.list_patterns():
            typer.echo(
                f"{pattern.pattern_name}: success_rate={pattern.success_rate:.2f} "
                f"weight={pattern.pattern_weight:g} "
                f"({pattern.successful_experiments}/{pattern.total_experiments})"
            )


def stats(detailed: bool) -> None:
    """Show scorer calibration statistics."""
    with _runtime() as bundle:
        payload: dict[str, Any] = {"summary": bundle.lifecycle.get_confidence_stats().model_dump()}
        if detailed:
            payload["success_rates"] = bundle.lifecycle.get_success_rates()
            payload["calibration"] = bundle.lifecycle.get_calibration()
        _echo_json(payload)


def purge(days: int | None) -> None:
    with _runtime() as bundle:
        removed = bundle.lifecycle.purge_older_than(days)
        typer.echo(f"Purged {removed} experiments")


def config_show() -> None:
    """Show effective runtime config."""
    with _runtime() as bundle:
        _echo_json(bundle.config)


def _json_safe(payload: object) -> object:
    """Convert datetimes to strings for JSON output."""
    if isinstance(payload, dict):
        return {k: _json_safe(v) for k, v in payload.items()}
    if isinstance(payload, list):
        return [_json_safe(v) for v in payload]
    if hasattr(payload, "isoformat"):
        return payload.isoformat()
    return payload
