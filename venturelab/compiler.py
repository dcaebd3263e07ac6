"""Compilation stage: expand an approved idea into venture, project, phases and tasks.

A plan comes either from the LLM or from a deterministic template. Both are
validated against the same schema, and phase order is always renumbered to
1..N before anything is written; generator-supplied order values are only
used to sort.
"""
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.orm import Session

from venturelab.errors import CompileFailed, NotFound, ParseFailed, UpstreamServiceFailed
from venturelab.llm import LLMClient
from venturelab.models import Phase, Project, Task, Venture
from venturelab.utils import idea_context

log = logging.getLogger(__name__)

Scope = Literal["small", "medium", "large"]

SCOPE_GUIDELINES: dict[str, dict[str, str]] = {
    "small": {"phases": "2-3 phases", "tasks_per_phase": "3-5 tasks", "total_effort": "10-40 hours total"},
    "medium": {"phases": "3-4 phases", "tasks_per_phase": "4-7 tasks", "total_effort": "40-120 hours total"},
    "large": {"phases": "4-6 phases", "tasks_per_phase": "5-10 tasks", "total_effort": "120+ hours total"},
}

VENTURE_DOMAINS = ("saas", "media", "realty", "trading", "personal", "other")

PROJECT_CATEGORIES = (
    "marketing", "sales_biz_dev", "customer_success", "product", "tech_engineering",
    "operations", "research_dev", "finance", "people_hr", "legal_compliance",
    "admin_general", "strategy_leadership",
)

TASK_TYPES = ("business", "deep_work", "admin", "learning")
PRIORITIES = ("P0", "P1", "P2", "P3")


# ---------------------------------------------------------------------------
# Plan schema
# ---------------------------------------------------------------------------


def _one_of(value: Any, allowed: tuple[str, ...], default: str) -> str:
    v = str(value or "").strip()
    return v if v in allowed else default


class GeneratedTask(BaseModel):
    title: str = Field(min_length=1)
    type: str = "deep_work"
    priority: str = "P2"
    est_effort: float | None = Field(default=None, alias="estEffort")
    notes: str = ""

    model_config = {"populate_by_name": True}

    @field_validator("type", mode="before")
    @classmethod
    def _task_type(cls, v: Any) -> str:
        return _one_of(v, TASK_TYPES, "deep_work")

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> str:
        return _one_of(v, PRIORITIES, "P2")


class GeneratedPhase(BaseModel):
    name: str = Field(min_length=1)
    order: Any = None
    notes: str = ""
    tasks: list[GeneratedTask] = Field(default_factory=list)


class GeneratedProject(BaseModel):
    name: str = Field(min_length=1)
    category: str = "strategy_leadership"
    outcome: str = ""
    notes: str = ""
    priority: str = "P1"

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> str:
        return _one_of(v, PROJECT_CATEGORIES, "strategy_leadership")

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> str:
        return _one_of(v, PRIORITIES, "P1")


class GeneratedVenture(BaseModel):
    name: str = Field(min_length=1)
    domain: str = "other"
    one_liner: str = Field(default="", alias="oneLiner")
    primary_focus: str = Field(default="", alias="primaryFocus")
    icon: str = ""
    color: str = ""

    model_config = {"populate_by_name": True}

    @field_validator("domain", mode="before")
    @classmethod
    def _domain(cls, v: Any) -> str:
        return _one_of(v, VENTURE_DOMAINS, "other")


class GeneratedPlan(BaseModel):
    venture: GeneratedVenture | None = None
    project: GeneratedProject
    phases: list[GeneratedPhase] = Field(min_length=1)


def _order_key(indexed: tuple[int, GeneratedPhase]) -> tuple[float, int]:
    index, phase = indexed
    try:
        order = float(phase.order)
    except (TypeError, ValueError):
        order = math.inf
    if math.isnan(order):
        order = math.inf
    return order, index


def normalize_phase_order(phases: list[GeneratedPhase]) -> list[GeneratedPhase]:
    """Sort phases by their generator order (stable) and renumber them 1..N.

    Phases whose order is missing or non-numeric keep their relative position
    after all numbered phases.
    """
    ordered = [p for _, p in sorted(enumerate(phases), key=_order_key)]
    return [p.model_copy(update={"order": i}) for i, p in enumerate(ordered, start=1)]


def validate_plan(raw: dict[str, Any], require_venture: bool = False) -> GeneratedPlan:
    """Validate a generator payload and normalize its phase order."""
    try:
        plan = GeneratedPlan.model_validate(raw)
    except ValidationError as exc:
        raise CompileFailed(f"Generated plan is incomplete: {exc.error_count()} error(s)") from exc
    if require_venture and plan.venture is None:
        raise CompileFailed("Generated plan has no venture")
    return plan.model_copy(update={"phases": normalize_phase_order(plan.phases)})


# ---------------------------------------------------------------------------
# Plan generation
# ---------------------------------------------------------------------------

PLAN_SYSTEM_PROMPT = "You are a project planning expert. Return only valid JSON."

_PLAN_JSON_SHAPE = """\
{
  %(venture)s"project": {
    "name": "string",
    "category": "one of: %(categories)s",
    "outcome": "what success looks like",
    "notes": "strategy, approach, key considerations",
    "priority": "P0, P1, P2, or P3"
  },
  "phases": [
    {
      "name": "phase name",
      "order": 1,
      "notes": "what this phase covers",
      "tasks": [
        {"title": "specific, actionable task", "type": "business, deep_work, admin, or learning",
         "priority": "P0-P3", "estEffort": 2.0, "notes": "optional context"}
      ]
    }
  ]
}"""

_VENTURE_JSON = """"venture": {
    "name": "string",
    "domain": "saas, media, realty, trading, personal, or other",
    "oneLiner": "one sentence description",
    "primaryFocus": "main strategic focus",
    "icon": "single emoji",
    "color": "hex color like #3B82F6"
  },
  """


def build_plan_prompt(idea, scope: str = "medium", venture: Venture | None = None, score_summary: str = "") -> str:
    guide = SCOPE_GUIDELINES[scope]
    if venture is None:
        task = ("You are an expert business strategist and project manager. Turn this approved "
                "venture idea into a NEW venture with its first launch project.")
        context = idea_context(idea, header="## APPROVED IDEA")
    else:
        task = ("You are an expert project manager. Scaffold a launch project for this approved "
                "idea inside an EXISTING venture.")
        context = (
            f"## VENTURE CONTEXT\n- Venture Name: {venture.name}\n"
            f"- Venture Description: {venture.one_liner or 'No description provided'}\n"
            f"- Domain: {venture.domain}\n\n" + idea_context(idea, header="## APPROVED IDEA")
        )
    shape = _PLAN_JSON_SHAPE % {
        "venture": _VENTURE_JSON if venture is None else "",
        "categories": ", ".join(PROJECT_CATEGORIES),
    }
    parts = [
        task, "", context,
        f"- Scope: {scope} ({guide['phases']}, {guide['tasks_per_phase']}, {guide['total_effort']})",
    ]
    if score_summary:
        parts += ["", "## VALIDATION NOTES", score_summary]
    parts += [
        "",
        "## GUIDELINES",
        f"1. Phases: {guide['phases']} in sequential order.",
        f"2. Tasks: {guide['tasks_per_phase']} per phase, each atomic and completable in 0.5-8 hours,"
        " mixing deep_work, business, admin and learning.",
        "3. Priorities: P0 (critical path), P1 (important), P2 (normal), P3 (nice to have).",
        "",
        "## OUTPUT FORMAT",
        "Return a JSON object with this exact structure:",
        shape,
    ]
    return "\n".join(parts)


async def generate_plan(
    client: LLMClient, idea, *, scope: str = "medium",
    venture: Venture | None = None, score_summary: str = "", temperature: float = 0.7,
) -> GeneratedPlan:
    """Ask the LLM for a plan. A new venture is required when *venture* is None."""
    prompt = build_plan_prompt(idea, scope=scope, venture=venture, score_summary=score_summary)
    try:
        raw, completion = await client.complete_json(PLAN_SYSTEM_PROMPT, prompt, temperature=temperature)
    except (ParseFailed, UpstreamServiceFailed) as exc:
        raise CompileFailed(f"Plan generation failed: {exc}") from exc
    log.info("Plan generated by %s (%s tokens)", completion.model, completion.tokens_used)
    plan = validate_plan(raw, require_venture=venture is None)
    if venture is not None and plan.venture is not None:
        log.warning("Ignoring generated venture %r; compiling into %s", plan.venture.name, venture.id)
        plan = plan.model_copy(update={"venture": None})
    return plan


def template_plan(idea, scope: str = "medium", with_venture: bool = True) -> GeneratedPlan:
    """Deterministic Validation -> MVP -> Launch plan, no LLM involved."""
    effort = {"small": 1.0, "medium": 2.0, "large": 3.0}[scope]
    customer = getattr(idea, "target_customer", "") or "target customers"
    phases = [
        GeneratedPhase(name="Validation", order=1, notes="Confirm the problem and the buyer before building.", tasks=[
            GeneratedTask(title=f"Interview 10 {customer} about the problem", type="business",
                          priority="P0", est_effort=effort * 2),
            GeneratedTask(title="Write a one-page value proposition and pricing hypothesis", type="deep_work",
                          priority="P0", est_effort=effort),
            GeneratedTask(title="Launch a landing page and measure sign-up intent", type="admin",
                          priority="P1", est_effort=effort),
        ]),
        GeneratedPhase(name="MVP Build", order=2, notes="Smallest product that delivers the core outcome.", tasks=[
            GeneratedTask(title="Define the MVP scope and success metric", type="deep_work",
                          priority="P0", est_effort=effort),
            GeneratedTask(title="Build the core workflow", type="deep_work", priority="P0", est_effort=effort * 4),
            GeneratedTask(title="Onboard 3 pilot users", type="business", priority="P1", est_effort=effort * 2),
        ]),
        GeneratedPhase(name="Launch", order=3, notes="First paying customers.", tasks=[
            GeneratedTask(title="Set up billing and terms", type="admin", priority="P1", est_effort=effort),
            GeneratedTask(title="Run the first acquisition channel experiment", type="business",
                          priority="P1", est_effort=effort * 2),
            GeneratedTask(title="Review metrics and decide next project", type="learning",
                          priority="P2", est_effort=effort),
        ]),
    ]
    venture = None
    if with_venture:
        venture = GeneratedVenture(
            name=idea.name,
            domain=_one_of(getattr(idea, "domain", ""), VENTURE_DOMAINS, "other"),
            one_liner=idea.description[:300],
            primary_focus="Validate demand and reach first revenue",
        )
    return GeneratedPlan(
        venture=venture,
        project=GeneratedProject(
            name=f"{idea.name} launch", category="strategy_leadership",
            outcome="First paying customers for a validated MVP", priority="P1",
        ),
        phases=normalize_phase_order(phases),
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@dataclass
class CompileStats:
    venture_id: str
    venture_created: bool
    project_id: str
    projects_created: int
    phases_created: int
    tasks_created: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def commit_plan(session: Session, plan: GeneratedPlan, venture_id: str | None = None) -> CompileStats:
    """Insert venture (if new), project, phases and tasks in order (caller must commit)."""
    venture_created = False
    if plan.venture is not None:
        v = plan.venture
        venture = Venture(
            name=v.name, domain=v.domain, one_liner=v.one_liner,
            primary_focus=v.primary_focus, icon=v.icon, color=v.color, status="active",
        )
        session.add(venture)
        session.flush()
        venture_id = venture.id
        venture_created = True
        log.info("Created venture %s (%s)", venture.name, venture.id)
    elif venture_id is None or session.get(Venture, venture_id) is None:
        raise NotFound(f"Venture not found: {venture_id}")

    p = plan.project
    project = Project(
        venture_id=venture_id, name=p.name, status="not_started", category=p.category,
        priority=p.priority, outcome=p.outcome, notes=p.notes,
    )
    session.add(project)
    session.flush()

    phases_created = tasks_created = 0
    for position, gen_phase in enumerate(normalize_phase_order(plan.phases), start=1):
        phase = Phase(
            project_id=project.id, name=gen_phase.name, status="not_started",
            order=position, notes=gen_phase.notes,
        )
        session.add(phase)
        session.flush()
        phases_created += 1
        for gen_task in gen_phase.tasks:
            session.add(Task(
                venture_id=venture_id, project_id=project.id, phase_id=phase.id,
                title=gen_task.title, status="todo", type=gen_task.type,
                priority=gen_task.priority, est_effort=gen_task.est_effort, notes=gen_task.notes,
            ))
            tasks_created += 1
    session.flush()

    log.info("Committed plan: project=%s phases=%d tasks=%d", project.id, phases_created, tasks_created)
    return CompileStats(
        venture_id=venture_id, venture_created=venture_created, project_id=project.id,
        projects_created=1, phases_created=phases_created, tasks_created=tasks_created,
    )
