"""Pydantic request/response schemas for the Venture Lab API."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from venturelab.lifecycle import ApprovalDecision, IdeaDomain


class IdeaCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    domain: IdeaDomain | None = None
    target_customer: str = ""
    initial_thoughts: str = ""

    @field_validator("name", "description")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class DocOut(BaseModel):
    id: str
    title: str
    body: str
    type: str
    domain: str
    tags: str


class IdeaOut(BaseModel):
    id: str
    name: str
    description: str
    domain: str
    target_customer: str
    initial_thoughts: str
    status: str
    last_error: str | None = None
    research_doc_id: str | None = None
    research_completed_at: str | None = None
    research_model: str | None = None
    research_tokens_used: int | None = None
    final_score: float | None = None
    verdict: str | None = None
    scored_at: str | None = None
    approval_decision: str | None = None
    approval_comment: str | None = None
    approved_by: str | None = None
    approved_at: str | None = None
    venture_id: str | None = None
    compiled_at: str | None = None
    created_at: str | None = None


class IdeaDetail(IdeaOut):
    score: dict[str, Any] | None = None
    score_input_hash: str | None = None
    compilation: dict[str, Any] | None = None
    research_doc: DocOut | None = None


class IdeaListResponse(BaseModel):
    items: list[IdeaOut]
    total: int


class ResearchUpdate(BaseModel):
    body: str = Field(min_length=1)


class ApprovalRequest(BaseModel):
    decision: ApprovalDecision
    comment: str = ""
    approver: str | None = None


class CompileRequest(BaseModel):
    create_venture: bool = True
    venture_id: str | None = None
    use_ai: bool = True
    scope: Literal["small", "medium", "large"] = "medium"


class ScoreResult(BaseModel):
    idea: IdeaDetail
    cached: bool


class CompileResult(BaseModel):
    idea: IdeaDetail
    stats: dict[str, Any]


class ResearchPromptRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = Field(min_length=10)
    domain: str | None = None
    target_customer: str = ""
    initial_thoughts: str = ""
    provider: Literal["gemini", "perplexity"] = "gemini"


class ResearchPromptOut(BaseModel):
    prompt: str
    method: str
    model: str | None = None
    tokens_used: int | None = None


class TaskOut(BaseModel):
    id: str
    title: str
    status: str
    type: str
    priority: str
    est_effort: float | None = None


class PhaseOut(BaseModel):
    id: str
    name: str
    order: int
    notes: str
    tasks: list[TaskOut] = []


class ProjectOut(BaseModel):
    id: str
    name: str
    category: str
    priority: str
    outcome: str
    phases: list[PhaseOut] = []


class VentureOut(BaseModel):
    id: str
    name: str
    domain: str
    one_liner: str
    primary_focus: str
    status: str
    projects: list[ProjectOut] = []


class StatsOut(BaseModel):
    total: int
    by_status: dict[str, int]
    by_verdict: dict[str, int]
    compiled: int
