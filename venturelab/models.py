from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from venturelab.lifecycle import ApprovalDecision, IdeaStatus, Verdict


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls, name=name, native_enum=False, validate_strings=True,
        values_callable=lambda e: [m.value for m in e], length=20,
    )


class Base(DeclarativeBase):
    pass


class Doc(Base):
    __tablename__ = "docs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    body: Mapped[str] = mapped_column(Text, default="")
    type: Mapped[str] = mapped_column(String(50), default="page")
    domain: Mapped[str] = mapped_column(String(50), default="")
    status: Mapped[str] = mapped_column(String(30), default="draft")
    tags: Mapped[str] = mapped_column(String(300), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


class VentureIdea(Base):
    __tablename__ = "venture_ideas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(String(50), default="")
    target_customer: Mapped[str] = mapped_column(Text, default="")
    initial_thoughts: Mapped[str] = mapped_column(Text, default="")

    status: Mapped[IdeaStatus] = mapped_column(
        _enum(IdeaStatus, "venture_idea_status"), default=IdeaStatus.IDEA, nullable=False, index=True,
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    research_doc_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("docs.id", ondelete="SET NULL"), nullable=True,
    )
    research_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    research_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    research_tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)

    score_data_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    final_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    verdict: Mapped[Verdict | None] = mapped_column(_enum(Verdict, "venture_idea_verdict"), nullable=True, index=True)
    score_input_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scored_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    approval_decision: Mapped[ApprovalDecision | None] = mapped_column(
        _enum(ApprovalDecision, "approval_decision"), nullable=True,
    )
    approval_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    venture_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("ventures.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    compiled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    compilation_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optimistic-concurrency token: stale writers get StaleDataError.
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    research_doc: Mapped[Doc | None] = relationship("Doc", foreign_keys=[research_doc_id])

    __mapper_args__ = {"version_id_col": version}


class Venture(Base):
    __tablename__ = "ventures"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    domain: Mapped[str] = mapped_column(String(50), default="other")
    one_liner: Mapped[str] = mapped_column(Text, default="")
    primary_focus: Mapped[str] = mapped_column(Text, default="")
    icon: Mapped[str] = mapped_column(String(20), default="")
    color: Mapped[str] = mapped_column(String(20), default="")
    status: Mapped[str] = mapped_column(String(30), default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    projects: Mapped[list[Project]] = relationship(
        "Project", back_populates="venture", cascade="all, delete-orphan",
    )


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    venture_id: Mapped[str] = mapped_column(String(36), ForeignKey("ventures.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="not_started")
    category: Mapped[str] = mapped_column(String(50), default="")
    priority: Mapped[str] = mapped_column(String(5), default="P2")
    outcome: Mapped[str] = mapped_column(Text, default="")
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    venture: Mapped[Venture] = relationship("Venture", back_populates="projects")
    phases: Mapped[list[Phase]] = relationship(
        "Phase", back_populates="project", cascade="all, delete-orphan", order_by="Phase.order",
    )


class Phase(Base):
    __tablename__ = "phases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="not_started")
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="")

    project: Mapped[Project] = relationship("Project", back_populates="phases")
    tasks: Mapped[list[Task]] = relationship("Task", back_populates="phase", cascade="all, delete-orphan")


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    venture_id: Mapped[str] = mapped_column(String(36), ForeignKey("ventures.id"), nullable=False)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    phase_id: Mapped[str] = mapped_column(String(36), ForeignKey("phases.id"), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="todo")
    type: Mapped[str] = mapped_column(String(30), default="deep_work")
    priority: Mapped[str] = mapped_column(String(5), default="P2")
    est_effort: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="")

    phase: Mapped[Phase] = relationship("Phase", back_populates="tasks")
