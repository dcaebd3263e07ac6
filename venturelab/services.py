"""Shared business logic for the Venture Lab API, MCP server and CLI.

Every stage follows the same shape: check the entry status, commit the
in-progress status (the claim), call the collaborators, then commit the
success status together with the stage outputs. On failure the stage's
compensation runs before the error is re-raised.
"""
from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from venturelab.compiler import (
    PROJECT_CATEGORIES,
    SCOPE_GUIDELINES,
    VENTURE_DOMAINS,
    CompileStats,
    commit_plan,
    generate_plan,
    template_plan,
)
from venturelab.config import Settings, get_settings
from venturelab.errors import NotFound, ResearchFailed, StateConflict, UpstreamServiceFailed, ValidationFailed
from venturelab.lifecycle import (
    COMPILATION,
    DECISION_STATUS,
    IN_PROGRESS,
    RESEARCH,
    SCORING,
    ApprovalDecision,
    IdeaDomain,
    IdeaStatus,
    Stage,
    Verdict,
    require_entry,
    transition,
)
from venturelab.llm import LLMClient, llm_configured
from venturelab.models import Doc, Venture, VentureIdea
from venturelab.research import (
    RESEARCH_DOC_DOMAIN,
    RESEARCH_DOC_TAGS,
    RESEARCH_DOC_TYPE,
    generate_research_prompt,
    research_doc_title,
    run_research_call,
)
from venturelab.scorer import compute_input_hash, compute_verdict, score_idea
from venturelab.utils import DOMAIN_LABELS, json_parse

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

SUMMARY_FIELDS = (
    "id", "name", "description", "domain", "target_customer", "initial_thoughts",
    "last_error", "research_doc_id", "research_model", "research_tokens_used",
    "final_score", "approval_comment", "approved_by", "venture_id",
)

_TIMESTAMP_FIELDS = ("research_completed_at", "scored_at", "approved_at", "compiled_at", "created_at")

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _value(enum_value) -> str | None:
    return enum_value.value if enum_value is not None else None


def doc_summary(doc: Doc) -> dict:
    return {
        "id": doc.id, "title": doc.title, "body": doc.body,
        "type": doc.type, "domain": doc.domain, "tags": doc.tags,
    }


def idea_summary(idea: VentureIdea) -> dict:
    result: dict[str, Any] = {f: getattr(idea, f) for f in SUMMARY_FIELDS}
    result.update({f: _iso(getattr(idea, f)) for f in _TIMESTAMP_FIELDS})
    result["domain"] = idea.domain or ""
    result["target_customer"] = idea.target_customer or ""
    result["initial_thoughts"] = idea.initial_thoughts or ""
    result["status"] = _value(idea.status)
    result["verdict"] = _value(idea.verdict)
    result["approval_decision"] = _value(idea.approval_decision)
    return result


def idea_detail(idea: VentureIdea) -> dict:
    base = idea_summary(idea)
    base["score"] = json_parse(idea.score_data_json, None)
    base["score_input_hash"] = idea.score_input_hash
    base["compilation"] = json_parse(idea.compilation_json, None)
    base["research_doc"] = doc_summary(idea.research_doc) if idea.research_doc else None
    return base


def venture_detail(session: Session, venture_id: str) -> dict:
    venture = session.get(Venture, venture_id)
    if venture is None:
        raise NotFound(f"Venture not found: {venture_id}")
    return {
        "id": venture.id, "name": venture.name, "domain": venture.domain,
        "one_liner": venture.one_liner, "primary_focus": venture.primary_focus,
        "status": venture.status,
        "projects": [
            {
                "id": p.id, "name": p.name, "category": p.category,
                "priority": p.priority, "outcome": p.outcome,
                "phases": [
                    {
                        "id": ph.id, "name": ph.name, "order": ph.order, "notes": ph.notes,
                        "tasks": [
                            {"id": t.id, "title": t.title, "status": t.status, "type": t.type,
                             "priority": t.priority, "est_effort": t.est_effort}
                            for t in ph.tasks
                        ],
                    }
                    for ph in p.phases
                ],
            }
            for p in venture.projects
        ],
    }


def options() -> dict:
    return {
        "domains": [{"value": d.value, "label": DOMAIN_LABELS[d.value]} for d in IdeaDomain],
        "statuses": [s.value for s in IdeaStatus],
        "decisions": [d.value for d in ApprovalDecision],
        "scopes": {k: dict(v) for k, v in SCOPE_GUIDELINES.items()},
        "project_categories": list(PROJECT_CATEGORIES),
        "venture_domains": list(VENTURE_DOMAINS),
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _parse_statuses(status: str | Iterable[str] | None) -> list[IdeaStatus]:
    if not status:
        return []
    raw = status.split(",") if isinstance(status, str) else list(status)
    parsed = []
    for s in raw:
        s = s.strip().lower()
        if not s:
            continue
        try:
            parsed.append(IdeaStatus(s))
        except ValueError as exc:
            raise ValidationFailed(f"Unknown status: {s!r}") from exc
    return parsed


def list_ideas(session: Session, status: str | Iterable[str] | None = None) -> list[VentureIdea]:
    """Ideas newest first, optionally restricted to the given statuses."""
    query = select(VentureIdea).order_by(VentureIdea.created_at.desc(), VentureIdea.name)
    statuses = _parse_statuses(status)
    if statuses:
        query = query.where(VentureIdea.status.in_(statuses))
    return list(session.execute(query).scalars().all())


def get_idea(session: Session, idea_id: str) -> VentureIdea:
    idea = session.get(VentureIdea, idea_id)
    if idea is None:
        raise NotFound(f"Idea not found: {idea_id}")
    return idea


def compute_stats(session: Session) -> dict:
    ideas = session.execute(select(VentureIdea)).scalars().all()
    by_status: Counter[str] = Counter()
    by_verdict: Counter[str] = Counter()
    for idea in ideas:
        by_status[idea.status.value] += 1
        if idea.verdict is not None:
            by_verdict[idea.verdict.value] += 1
    return {
        "total": len(ideas),
        "by_status": dict(by_status),
        "by_verdict": dict(by_verdict),
        "compiled": by_status.get(IdeaStatus.COMPILED.value, 0),
    }


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def _commit(session: Session) -> None:
    """Commit, turning a lost optimistic-lock race into StateConflict."""
    try:
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        raise StateConflict("Idea was modified by another request; reload and retry") from exc


def create_idea(
    session: Session, *, name: str, description: str, domain: str | None = None,
    target_customer: str = "", initial_thoughts: str = "",
) -> VentureIdea:
    name = (name or "").strip()
    description = (description or "").strip()
    if not name:
        raise ValidationFailed("Name is required")
    if not description:
        raise ValidationFailed("Description is required")
    if domain:
        try:
            domain = IdeaDomain(domain.strip().lower()).value
        except ValueError as exc:
            raise ValidationFailed(f"Unknown domain: {domain!r}") from exc
    idea = VentureIdea(
        name=name, description=description, domain=domain or "",
        target_customer=(target_customer or "").strip(),
        initial_thoughts=(initial_thoughts or "").strip(),
        status=IdeaStatus.IDEA,
    )
    session.add(idea)
    session.commit()
    log.info("Created idea %s (%s)", idea.name, idea.id)
    return idea


def delete_idea(session: Session, idea: VentureIdea) -> None:
    """Delete *idea* and the research document it owns. Compiled ventures are kept."""
    if idea.status in IN_PROGRESS:
        raise StateConflict(f"Cannot delete an idea while it is '{idea.status}'")
    doc = idea.research_doc
    session.delete(idea)
    if doc is not None:
        session.delete(doc)
    session.commit()
    log.info("Deleted idea %s", idea.id)


def update_research(session: Session, idea: VentureIdea, body: str) -> VentureIdea:
    """Replace the research text. A scored idea stays scored; the next score request re-hashes."""
    if idea.status not in (IdeaStatus.RESEARCHED, IdeaStatus.SCORED):
        raise StateConflict(f"Research can only be edited when researched or scored (status: '{idea.status}')")
    if not (body or "").strip():
        raise ValidationFailed("Research text must not be empty")
    doc = idea.research_doc
    if doc is None:
        raise NotFound(f"Research document not found for idea {idea.id}")
    doc.body = body
    doc.updated_at = _utcnow()
    session.commit()
    return idea


def _ensure_client(client: LLMClient | None) -> LLMClient:
    if client is not None:
        return client
    try:
        return LLMClient()
    except Exception as exc:
        raise UpstreamServiceFailed(f"LLM client unavailable: {exc}") from exc


def _claim(session: Session, idea: VentureIdea, stage: Stage) -> IdeaStatus:
    """Commit the stage's in-progress status; return the status it replaced."""
    require_entry(stage, idea.status)
    previous = IdeaStatus(idea.status)
    transition(idea, stage.in_progress)
    idea.last_error = None
    _commit(session)
    log.info("Idea %s: %s -> %s", idea.id, previous, stage.in_progress)
    return previous


def _compensate(session: Session, idea_id: str, stage: Stage, previous: IdeaStatus, exc: Exception) -> None:
    """Undo a failed stage: revert to *previous* or mark the idea failed."""
    session.rollback()
    idea = session.get(VentureIdea, idea_id)
    if idea is None or idea.status != stage.in_progress:
        log.warning("Skipping %s compensation for %s: status changed concurrently", stage.name, idea_id)
        return
    target = previous if stage.revert_on_failure else IdeaStatus.FAILED
    transition(idea, target)
    idea.last_error = str(exc)
    try:
        _commit(session)
    except StateConflict as conflict:
        log.warning("Skipping %s compensation for %s: %s", stage.name, idea_id, conflict)
        return
    log.warning("Idea %s: %s failed, status -> %s: %s", idea_id, stage.name, target, exc)


async def run_research(
    session: Session, idea: VentureIdea, client: LLMClient | None = None,
    settings: Settings | None = None,
) -> VentureIdea:
    """Research stage. Creates the research document and moves the idea to researched."""
    settings = settings or get_settings()
    idea_id = idea.id
    previous = _claim(session, idea, RESEARCH)
    try:
        try:
            client = _ensure_client(client)
        except UpstreamServiceFailed as exc:
            raise ResearchFailed(f"Research failed: {exc}", retryable=exc.retryable) from exc
        result = await run_research_call(client, idea, temperature=settings.research_temperature)
        doc = Doc(
            title=research_doc_title(idea), body=result.text, type=RESEARCH_DOC_TYPE,
            domain=RESEARCH_DOC_DOMAIN, status="published", tags=RESEARCH_DOC_TAGS,
        )
        session.add(doc)
        session.flush()
        idea.research_doc_id = doc.id
        idea.research_doc = doc
        idea.research_completed_at = result.completed_at.replace(tzinfo=None)
        idea.research_model = result.model
        idea.research_tokens_used = result.tokens_used
        transition(idea, RESEARCH.success)
        _commit(session)
    except Exception as exc:
        _compensate(session, idea_id, RESEARCH, previous, exc)
        raise
    log.info("Idea %s researched (doc %s)", idea_id, idea.research_doc_id)
    return idea


def _research_text(idea: VentureIdea) -> str:
    if idea.research_doc is None or not (idea.research_doc.body or "").strip():
        raise ValidationFailed(f"Idea {idea.id} has no research text to score")
    return idea.research_doc.body


async def run_scoring(
    session: Session, idea: VentureIdea, client: LLMClient | None = None,
    settings: Settings | None = None,
) -> tuple[VentureIdea, bool]:
    """Scoring stage. Returns ``(idea, cached)``.

    A stored score whose input hash matches the current description, research
    text and rubric version is reused without an LLM call.
    """
    settings = settings or get_settings()
    require_entry(SCORING, idea.status)
    research_text = _research_text(idea)
    input_hash = compute_input_hash(idea.description, research_text, settings.rubric_version)

    if idea.score_data_json and idea.score_input_hash == input_hash:
        if idea.status != IdeaStatus.SCORED:
            transition(idea, SCORING.in_progress)
            transition(idea, SCORING.success)
            _commit(session)
        log.info("Idea %s: score cache hit (%s)", idea.id, input_hash[:12])
        return idea, True

    idea_id = idea.id
    previous = _claim(session, idea, SCORING)
    try:
        client = _ensure_client(client)
        score = await score_idea(
            client, idea, research_text,
            temperature=settings.scoring_temperature, rubric_version=settings.rubric_version,
        )
        verdict = compute_verdict(score.final_score, settings.thresholds)
        idea.score_data_json = score.model_dump_json()
        idea.final_score = score.final_score
        idea.verdict = verdict
        idea.score_input_hash = input_hash
        idea.scored_at = _utcnow()
        transition(idea, SCORING.success)
        _commit(session)
    except Exception as exc:
        _compensate(session, idea_id, SCORING, previous, exc)
        raise
    log.info("Idea %s scored %.1f (%s)", idea_id, idea.final_score, idea.verdict)
    return idea, False


def record_approval(
    session: Session, idea: VentureIdea, decision: ApprovalDecision | str,
    comment: str = "", approver: str | None = None, settings: Settings | None = None,
) -> VentureIdea:
    """Record a human decision: approved -> approved, parked -> parked, killed -> rejected."""
    settings = settings or get_settings()
    try:
        decision = ApprovalDecision(decision)
    except ValueError as exc:
        raise ValidationFailed(f"Unknown decision: {decision!r} (expected approved, parked or killed)") from exc

    if idea.status == IdeaStatus.PARKED and not settings.allow_parked_reentry:
        raise StateConflict("Idea is parked; parked ideas cannot be decided again")
    if idea.status not in (IdeaStatus.SCORED, IdeaStatus.PARKED):
        raise StateConflict(f"Cannot record a decision on an idea in status '{idea.status}' (requires: scored)")
    if settings.block_red_approval and decision == ApprovalDecision.APPROVED and idea.verdict == Verdict.RED:
        raise StateConflict("Approving an idea with a RED verdict is blocked")

    transition(idea, DECISION_STATUS[decision])
    idea.approval_decision = decision
    idea.approval_comment = comment or ""
    idea.approved_by = approver or settings.approver
    idea.approved_at = _utcnow()
    _commit(session)
    log.info("Idea %s decision=%s by %s", idea.id, decision, idea.approved_by)
    return idea


def _score_summary(idea: VentureIdea) -> str:
    score = json_parse(idea.score_data_json, None)
    if not score:
        return ""
    lines = [f"- Final score: {idea.final_score} ({_value(idea.verdict)})"]
    if score.get("kill_reasons"):
        lines.append("- Kill reasons: " + "; ".join(score["kill_reasons"]))
    if score.get("next_validation_steps"):
        lines.append("- Next validation steps: " + "; ".join(score["next_validation_steps"]))
    if idea.approval_comment:
        lines.append(f"- Approver comment: {idea.approval_comment}")
    return "\n".join(lines)


async def run_compilation(
    session: Session, idea: VentureIdea, *, create_venture: bool = True,
    venture_id: str | None = None, use_ai: bool = True, scope: str = "medium",
    client: LLMClient | None = None, settings: Settings | None = None,
) -> tuple[VentureIdea, CompileStats]:
    """Compilation stage. Returns ``(idea, stats)``; failures leave the idea failed."""
    settings = settings or get_settings()
    require_entry(COMPILATION, idea.status)
    if scope not in SCOPE_GUIDELINES:
        raise ValidationFailed(f"Unknown scope: {scope!r}")
    venture = None
    if not create_venture:
        if not venture_id:
            raise ValidationFailed("venture_id is required when not creating a new venture")
        venture = session.get(Venture, venture_id)
        if venture is None:
            raise NotFound(f"Venture not found: {venture_id}")

    idea_id = idea.id
    previous = _claim(session, idea, COMPILATION)
    try:
        if use_ai:
            plan = await generate_plan(
                _ensure_client(client), idea, scope=scope, venture=venture,
                score_summary=_score_summary(idea), temperature=settings.planning_temperature,
            )
        else:
            plan = template_plan(idea, scope, with_venture=venture is None)
        stats = commit_plan(session, plan, venture_id=venture.id if venture else None)
        idea.venture_id = stats.venture_id
        idea.compiled_at = _utcnow()
        idea.compilation_json = json.dumps(stats.to_dict())
        transition(idea, COMPILATION.success)
        _commit(session)
    except Exception as exc:
        _compensate(session, idea_id, COMPILATION, previous, exc)
        raise
    log.info("Idea %s compiled into venture %s", idea_id, stats.venture_id)
    return idea, stats


async def external_research_prompt(idea, provider: str = "gemini", client: LLMClient | None = None) -> dict:
    """Tailored prompt for an external research tool; template when no LLM key is set."""
    if client is None and llm_configured():
        client = _ensure_client(None)
    return await generate_research_prompt(idea, provider, client)
