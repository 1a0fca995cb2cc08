# ideator/entities.py
from typing import Any, TypeAlias
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

UUID: TypeAlias = str
Timestamp: TypeAlias = str
Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite in local runs and tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class TimestampMixin:
    created_at: Mapped[Timestamp] = mapped_column(DateTime, nullable=False, server_default=func.now())
    updated_at: Mapped[Timestamp] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class AgentIdea(Base, TimestampMixin):
    """
    A persisted SpecificationArtifact. Written once on finalize; never updated by the pipeline.
    """
    __tablename__ = "agent_ideas"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    title: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    summary_message: Mapped[str | None] = mapped_column(Text)

    steps: Mapped[Any] = mapped_column(JsonColumn, nullable=False, default=list)
    agent_stack: Mapped[Any] = mapped_column(JsonColumn, nullable=False, default=dict)
    client_requirements: Mapped[Any] = mapped_column(JsonColumn, nullable=False, default=list)
    build_phases: Mapped[Any] = mapped_column(JsonColumn, nullable=False, default=list)
    security_considerations: Mapped[Any] = mapped_column(JsonColumn, nullable=False, default=list)
    future_enhancements: Mapped[Any] = mapped_column(JsonColumn, nullable=False, default=list)
    implementation_estimate: Mapped[Any] = mapped_column(JsonColumn, nullable=True)

    # keys the model returned beyond the known ones (agent_type, documents, ...)
    extra: Mapped[Any] = mapped_column(JsonColumn, nullable=False, default=dict)

    owner_id: Mapped[str | None] = mapped_column(String)
    project_id: Mapped[str | None] = mapped_column(String)
    node_id: Mapped[str | None] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, nullable=False, default="idea")

    __table_args__ = (
        Index("ix_agent_ideas_title", "title"),
        Index("ix_agent_ideas_project_id", "project_id"),
    )
