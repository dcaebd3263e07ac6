from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from venturelab import services
from venturelab.db import init_db, session_scope
from venturelab.errors import VentureLabError
from venturelab.lifecycle import TRANSITIONS
from venturelab.scorer import RUBRIC

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def venturelab_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Venture Lab",
    instructions=(
        "Venture Lab evaluates business ideas through a fixed pipeline: "
        "research -> score -> approve -> compile. Start with get_stats() for an overview, "
        "then list_ideas() to browse and get_idea(id) for full details. Each stage tool "
        "only works from the status the previous stage leaves behind."
    ),
    lifespan=venturelab_lifespan,
    json_response=True,
)


def _error(exc: VentureLabError) -> dict:
    return {"error": str(exc), "type": type(exc).__name__}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("venturelab://overview")
def venturelab_overview() -> str:
    """Overview of Venture Lab: lifecycle, rubric and verdicts."""
    return json.dumps({
        "system": "Venture Lab: idea evaluation pipeline",
        "lifecycle": {s.value: sorted(t.value for t in targets) for s, targets in TRANSITIONS.items()},
        "rubric": [{"key": d.key, "label": d.label, "max": d.max, "inverse": d.inverse} for d in RUBRIC],
        "verdicts": {
            "GREEN": "Go: strong enough to approve and compile.",
            "YELLOW": "Pilot: validate the weakest dimensions first.",
            "RED": "No-go: kill or park unless something changes.",
        },
        "workflow": [
            "1. create_idea(name, description, ...) - status 'idea'.",
            "2. research_idea(id) - LLM venture analysis, status 'researched'.",
            "3. score_idea(id) - rubric score and verdict, status 'scored'. Cached while inputs are unchanged.",
            "4. approve_idea(id, decision) - approved | parked | killed (killed -> 'rejected').",
            "5. compile_idea(id) - creates venture, project, phases and tasks, status 'compiled'.",
        ],
        "options": services.options(),
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Ideas
# ---------------------------------------------------------------------------


@mcp.tool()
def list_ideas(status: str | None = None, limit: int = 50) -> list[dict] | dict:
    """List venture ideas, newest first.

    Args:
        status: Comma-separated statuses, e.g. "scored,parked".
        limit: Max results (default 50, max 500).
    """
    try:
        with session_scope() as session:
            ideas = services.list_ideas(session, status=status)
            return [services.idea_summary(i) for i in ideas[:max(1, min(limit, 500))]]
    except VentureLabError as exc:
        return _error(exc)


@mcp.tool()
def get_idea(idea_id: str) -> dict:
    """Get full details for one idea including its research document and score."""
    try:
        with session_scope() as session:
            return services.idea_detail(services.get_idea(session, idea_id))
    except VentureLabError as exc:
        return _error(exc)


@mcp.tool()
def create_idea(
    name: str, description: str, domain: str | None = None,
    target_customer: str = "", initial_thoughts: str = "",
) -> dict:
    """Create a new venture idea.

    Args:
        name: Short idea name.
        description: What the business does and for whom.
        domain: One of saas, media, ecommerce, services, marketplace, fintech,
                healthtech, edtech, realty, other.
        target_customer: Who pays.
        initial_thoughts: Hypotheses to test during research.
    """
    try:
        with session_scope() as session:
            idea = services.create_idea(
                session, name=name, description=description, domain=domain,
                target_customer=target_customer, initial_thoughts=initial_thoughts,
            )
            return services.idea_detail(idea)
    except VentureLabError as exc:
        return _error(exc)


@mcp.tool()
def delete_idea(idea_id: str) -> dict:
    """Delete an idea and its research document. Compiled ventures are kept."""
    try:
        with session_scope() as session:
            services.delete_idea(session, services.get_idea(session, idea_id))
            return {"ok": True, "deleted": idea_id}
    except VentureLabError as exc:
        return _error(exc)


# ---------------------------------------------------------------------------
# Tools: Lifecycle stages
# ---------------------------------------------------------------------------


@mcp.tool()
async def research_idea(idea_id: str) -> dict:
    """Run LLM research on an idea in status 'idea'. Requires an LLM API key."""
    try:
        with session_scope() as session:
            idea = await services.run_research(session, services.get_idea(session, idea_id))
            return services.idea_detail(idea)
    except VentureLabError as exc:
        return _error(exc)


@mcp.tool()
async def score_idea(idea_id: str) -> dict:
    """Score a researched idea against the eight-dimension rubric.

    Returns the idea plus ``cached``: true when the stored score was reused
    because description and research text are unchanged.
    """
    try:
        with session_scope() as session:
            idea, cached = await services.run_scoring(session, services.get_idea(session, idea_id))
            return {"idea": services.idea_detail(idea), "cached": cached}
    except VentureLabError as exc:
        return _error(exc)


@mcp.tool()
def approve_idea(idea_id: str, decision: str, comment: str = "") -> dict:
    """Record a decision on a scored idea.

    Args:
        idea_id: The idea.
        decision: approved, parked, or killed (killed moves the idea to 'rejected').
        comment: Optional reasoning.
    """
    try:
        with session_scope() as session:
            idea = services.record_approval(session, services.get_idea(session, idea_id), decision, comment=comment)
            return services.idea_detail(idea)
    except VentureLabError as exc:
        return _error(exc)


@mcp.tool()
async def compile_idea(
    idea_id: str, use_ai: bool = True, scope: str = "medium", venture_id: str | None = None,
) -> dict:
    """Compile an approved idea into a venture with a phased launch project.

    Args:
        idea_id: The idea (must be 'approved').
        use_ai: Generate the plan with the LLM; False uses the built-in template.
        scope: small, medium, or large.
        venture_id: Add the project to this existing venture instead of creating one.
    """
    try:
        with session_scope() as session:
            idea, stats = await services.run_compilation(
                session, services.get_idea(session, idea_id),
                create_venture=venture_id is None, venture_id=venture_id,
                use_ai=use_ai, scope=scope,
            )
            return {"idea": services.idea_detail(idea), "stats": stats.to_dict()}
    except VentureLabError as exc:
        return _error(exc)


@mcp.tool()
def get_venture(venture_id: str) -> dict:
    """Get a compiled venture with its projects, phases and tasks."""
    try:
        with session_scope() as session:
            return services.venture_detail(session, venture_id)
    except VentureLabError as exc:
        return _error(exc)


@mcp.tool()
def get_stats() -> dict:
    """Idea counts by status and verdict."""
    with session_scope() as session:
        return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Venture Lab MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
