"""CLI entrypoint for the evolutionary sandbox memory."""

from __future__ import annotations

from typing import Optional

import typer

from ui.cli import commands

app = typer.Typer(help="Evolutionary Sandbox Memory")
experiment_app = typer.Typer(help="Experiment commands")
memory_app = typer.Typer(help="Sandbox memory commands")
patterns_app = typer.Typer(help="Confidence pattern commands")
config_app = typer.Typer(help="Configuration commands")


@experiment_app.command("create")
def experiment_create_cmd(
    suggestion: str = typer.Argument(..., help="Proposed change text"),
    sandbox_id: str = typer.Option(..., "--sandbox-id", help="Sandbox running the experiment"),
    user_id: Optional[str] = typer.Option(None, "--user-id"),
    project_path: Optional[str] = typer.Option(None, "--project-path"),
    experiment_type: Optional[str] = typer.Option(None, "--type", help="Experiment kind"),
    risk_level: Optional[str] = typer.Option(None, "--risk", help="Override risk tier"),
) -> None:
    """Create a scored experiment."""
    commands.experiment_create(
        suggestion=suggestion,
        sandbox_id=sandbox_id,
        user_id=user_id,
        project_path=project_path,
        experiment_type=experiment_type,
        risk_level=risk_level,
    )


@experiment_app.command("start")
def experiment_start_cmd(experiment_id: str) -> None:
    """Mark an experiment as running."""
    commands.experiment_start(experiment_id=experiment_id)


@experiment_app.command("outcome")
def experiment_outcome_cmd(
    experiment_id: str,
    outcome: str = typer.Argument(..., help="success, failure, abandoned or timeout"),
    files: list[str] = typer.Option([], "--file", help="Modified file (repeatable)"),
    commands_run: list[str] = typer.Option([], "--command", help="Command run (repeatable)"),
    errors: list[str] = typer.Option([], "--error", help="Error message (repeatable)"),
    execution_time_ms: int = typer.Option(0, "--duration-ms", min=0),
) -> None:
    """Record an experiment outcome."""
    commands.experiment_outcome(
        experiment_id=experiment_id,
        outcome=outcome,
        files=files,
        commands_run=commands_run,
        errors=errors,
        execution_time_ms=execution_time_ms,
    )


@experiment_app.command("list")
def experiment_list_cmd(
    user_id: str = typer.Option("default-user", "--user-id"),
    project_path: Optional[str] = typer.Option(None, "--project-path"),
    outcome: Optional[str] = typer.Option(None, "--outcome"),
    experiment_type: Optional[str] = typer.Option(None, "--type"),
    limit: int = typer.Option(20, min=1, max=500),
) -> None:
    """List experiments."""
    commands.experiment_list(
        user_id=user_id,
        project_path=project_path,
        outcome=outcome,
        experiment_type=experiment_type,
        limit=limit,
    )


@experiment_app.command("show")
def experiment_show_cmd(experiment_id: str) -> None:
    """Show one experiment in detail."""
    commands.experiment_show(experiment_id=experiment_id)


@experiment_app.command("graduate")
def experiment_graduate_cmd(
    experiment_id: str,
    decision: str = typer.Argument(..., help="accept or reject"),
    reason: str = typer.Option(..., "--reason"),
    memory_ids: list[str] = typer.Option([], "--memory", help="Limit to memory id (repeatable)"),
    target_session_id: Optional[str] = typer.Option(None, "--session"),
) -> None:
    """Graduate experiment memories into shared memory."""
    commands.experiment_graduate(
        experiment_id=experiment_id,
        decision=decision,
        reason=reason,
        memory_ids=memory_ids,
        target_session_id=target_session_id,
    )


@experiment_app.command("auto-graduate")
def experiment_auto_graduate_cmd(
    experiment_id: str,
    threshold: Optional[float] = typer.Option(None, "--threshold", min=0.0, max=1.0),
) -> None:
    """Apply the confidence-threshold graduation policy."""
    commands.experiment_auto_graduate(experiment_id=experiment_id, threshold=threshold)


@memory_app.command("add")
def memory_add_cmd(
    experiment_id: str,
    memory_type: str = typer.Argument(..., help="Memory kind, e.g. lesson_learned"),
    content: str = typer.Argument(..., help="Memory text content"),
    conversation_id: Optional[str] = typer.Option(None, "--conversation-id"),
) -> None:
    """Add a sandbox memory to an experiment."""
    commands.memory_add(
        experiment_id=experiment_id,
        memory_type=memory_type,
        content=content,
        conversation_id=conversation_id,
    )


@memory_app.command("list")
def memory_list_cmd(
    experiment_id: str,
    memory_type: Optional[str] = typer.Option(None, "--type"),
    graduated: Optional[bool] = typer.Option(None, "--graduated/--isolated"),
) -> None:
    """List an experiment's memories."""
    commands.memory_list(experiment_id=experiment_id, memory_type=memory_type, graduated=graduated)


@patterns_app.command("list")
def patterns_list_cmd() -> None:
    """List confidence patterns and their statistics."""
    commands.patterns_list()


@app.command("stats")
def stats_cmd(detailed: bool = typer.Option(False, "--detailed")) -> None:
    """Show confidence calibration statistics."""
    commands.stats(detailed=detailed)


@app.command("purge")
def purge_cmd(days: Optional[int] = typer.Option(None, "--days", min=0)) -> None:
    """Delete completed experiments older than the retention window."""
    commands.purge(days=days)


@config_app.command("show")
def config_show_cmd() -> None:
    """Show effective configuration."""
    commands.config_show()


app.add_typer(experiment_app, name="experiment")
app.add_typer(memory_app, name="memory")
app.add_typer(patterns_app, name="patterns")
app.add_typer(config_app, name="config")


def main() -> None:
    """Console script entrypoint."""
    app()


if __name__ == "__main__":
    main()
