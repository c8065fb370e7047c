"""SQLAlchemy schemas for sandbox experiment tables."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Return UTC datetime for default timestamps."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base."""


class ExperimentRecord(Base):
    """One proposed, sandboxed change and its lifecycle."""

    __tablename__ = "sandbox_experiments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), default="default-user", index=True)
    project_path: Mapped[str] = mapped_column(Text, index=True)
    sandbox_id: Mapped[str] = mapped_column(String(128))
    suggestion_text: Mapped[str] = mapped_column(Text)
    suggestion_hash: Mapped[str] = mapped_column(String(64), index=True)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.5, index=True)
    risk_level: Mapped[str] = mapped_column(String(16), default="medium")
    experiment_type: Mapped[str] = mapped_column(String(32), default="general")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    outcome: Mapped[str] = mapped_column(String(16), default="pending", index=True)
    graduated: Mapped[bool] = mapped_column(Boolean, default=False)
    graduation_decision: Mapped[str | None] = mapped_column(String(16), nullable=True)
    graduation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    graduation_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    files_modified: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    commands_run: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    error_messages: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    success_metrics: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    execution_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    memory_created: Mapped[int] = mapped_column(Integer, default=0)


class ExperimentMemoryRecord(Base):
    """Sandbox-isolated memory captured during an experiment."""

    __tablename__ = "experiment_memories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    experiment_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("sandbox_experiments.id", ondelete="CASCADE"), index=True
    )
    conversation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    memory_type: Mapped[str] = mapped_column(String(32), index=True)
    content: Mapped[str] = mapped_column(Text)
    context_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    relevance_score: Mapped[float] = mapped_column(Float, default=0.5)
    isolation_level: Mapped[str] = mapped_column(String(16), default="sandbox")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    graduated_to_main: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    graduation_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # In-flight promotion marker; cleared on graduation or failure.
    graduation_claim: Mapped[str | None] = mapped_column(String(64), nullable=True)
    graduation_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ConfidencePatternRecord(Base):
    """Named heuristic with running success statistics."""

    __tablename__ = "confidence_patterns"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    pattern_name: Mapped[str] = mapped_column(String(128), unique=True)
    pattern_description: Mapped[str] = mapped_column(Text)
    pattern_regex: Mapped[str | None] = mapped_column(Text, nullable=True)
    success_rate: Mapped[float] = mapped_column(Float, default=0.5, index=True)
    total_experiments: Mapped[int] = mapped_column(Integer, default=0)
    successful_experiments: Mapped[int] = mapped_column(Integer, default=0)
    failed_experiments: Mapped[int] = mapped_column(Integer, default=0)
    risk_multiplier: Mapped[float] = mapped_column(Float, default=1.0)
    pattern_weight: Mapped[float] = mapped_column(Float, default=1.0)
    metadata_json: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class MemoryGraduationRecord(Base):
    """Append-only audit of promotion and rejection decisions."""

    __tablename__ = "memory_graduation"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    experiment_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("sandbox_experiments.id", ondelete="CASCADE"), index=True
    )
    memory_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("experiment_memories.id", ondelete="CASCADE")
    )
    graduation_type: Mapped[str] = mapped_column(String(16), index=True)
    decision_reason: Mapped[str] = mapped_column(Text)
    human_decision: Mapped[bool] = mapped_column(Boolean, default=True)
    confidence_threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    graduated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    promoted_to_session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    promoted_memory_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
