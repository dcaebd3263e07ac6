from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from venturelab import services
from venturelab.db import init_db, session_generator
from venturelab.errors import VentureLabError
from venturelab.schemas import (
    ApprovalRequest,
    CompileRequest,
    CompileResult,
    IdeaCreate,
    IdeaDetail,
    IdeaListResponse,
    ResearchPromptOut,
    ResearchPromptRequest,
    ResearchUpdate,
    ScoreResult,
    StatsOut,
    VentureOut,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Venture Lab",
    version="0.1.0",
    description=(
        "Idea evaluation pipeline: research, score, approve and compile venture ideas "
        "into ventures with projects, phases and tasks. All endpoints return JSON. "
        "Research, scoring and AI compilation require an LLM API key."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Ideas", "description": "Create, browse and delete venture ideas."},
        {"name": "Research", "description": "LLM venture analysis stored as a research document."},
        {"name": "Scoring", "description": "Eight-dimension rubric scoring with input-hash caching."},
        {"name": "Approval", "description": "Human go / park / kill decisions."},
        {"name": "Compilation", "description": "Expand approved ideas into ventures, projects and tasks."},
        {"name": "Ventures", "description": "Compiled ventures with their plans."},
        {"name": "Stats", "description": "Aggregate counts and option lists."},
    ],
)


@app.exception_handler(VentureLabError)
async def venturelab_error_handler(request: Request, exc: VentureLabError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


# ---------------------------------------------------------------------------
# Routes: Ideas
# ---------------------------------------------------------------------------


@app.post("/api/ideas", response_model=IdeaDetail, status_code=201,
          tags=["Ideas"], summary="Create a new idea in status 'idea'")
async def create_idea(body: IdeaCreate, session: Session = Depends(db_session)):
    idea = services.create_idea(
        session, name=body.name, description=body.description,
        domain=body.domain.value if body.domain else None,
        target_customer=body.target_customer, initial_thoughts=body.initial_thoughts,
    )
    return services.idea_detail(idea)


@app.get("/api/ideas", response_model=IdeaListResponse,
         tags=["Ideas"], summary="List ideas, newest first")
async def list_ideas(
    status: str | None = Query(None, description="Comma-separated statuses, e.g. scored,parked"),
    session: Session = Depends(db_session),
):
    items = [services.idea_summary(i) for i in services.list_ideas(session, status=status)]
    return {"items": items, "total": len(items)}


@app.get("/api/ideas/{idea_id}", response_model=IdeaDetail,
         tags=["Ideas"], summary="Get an idea with its research document and score")
async def get_idea(idea_id: str, session: Session = Depends(db_session)):
    return services.idea_detail(services.get_idea(session, idea_id))


@app.delete("/api/ideas/{idea_id}", tags=["Ideas"], summary="Delete an idea and its research document")
async def delete_idea(idea_id: str, session: Session = Depends(db_session)):
    services.delete_idea(session, services.get_idea(session, idea_id))
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Lifecycle stages
# ---------------------------------------------------------------------------


@app.post("/api/ideas/{idea_id}/research", response_model=IdeaDetail,
          tags=["Research"], summary="Run LLM research on an idea in status 'idea'")
async def research_idea(idea_id: str, session: Session = Depends(db_session)):
    idea = await services.run_research(session, services.get_idea(session, idea_id))
    return services.idea_detail(idea)


@app.put("/api/ideas/{idea_id}/research", response_model=IdeaDetail,
         tags=["Research"], summary="Replace the research document text")
async def update_research(idea_id: str, body: ResearchUpdate, session: Session = Depends(db_session)):
    idea = services.update_research(session, services.get_idea(session, idea_id), body.body)
    return services.idea_detail(idea)


@app.post("/api/ideas/{idea_id}/score", response_model=ScoreResult,
          tags=["Scoring"], summary="Score a researched idea (cached when inputs are unchanged)")
async def score_idea(idea_id: str, session: Session = Depends(db_session)):
    idea, cached = await services.run_scoring(session, services.get_idea(session, idea_id))
    return {"idea": services.idea_detail(idea), "cached": cached}


@app.post("/api/ideas/{idea_id}/approval", response_model=IdeaDetail,
          tags=["Approval"], summary="Record an approved / parked / killed decision")
async def approve_idea(idea_id: str, body: ApprovalRequest, session: Session = Depends(db_session)):
    idea = services.record_approval(
        session, services.get_idea(session, idea_id), body.decision,
        comment=body.comment, approver=body.approver,
    )
    return services.idea_detail(idea)


@app.post("/api/ideas/{idea_id}/compile", response_model=CompileResult,
          tags=["Compilation"], summary="Compile an approved idea into a venture plan")
async def compile_idea(idea_id: str, body: CompileRequest | None = None, session: Session = Depends(db_session)):
    body = body or CompileRequest()
    idea, stats = await services.run_compilation(
        session, services.get_idea(session, idea_id),
        create_venture=body.create_venture, venture_id=body.venture_id,
        use_ai=body.use_ai, scope=body.scope,
    )
    return {"idea": services.idea_detail(idea), "stats": stats.to_dict()}


# ---------------------------------------------------------------------------
# Routes: Ventures & research prompts
# ---------------------------------------------------------------------------


@app.get("/api/ventures/{venture_id}", response_model=VentureOut,
         tags=["Ventures"], summary="Get a venture with its projects, phases and tasks")
async def get_venture(venture_id: str, session: Session = Depends(db_session)):
    return services.venture_detail(session, venture_id)


@app.post("/api/research-prompt", response_model=ResearchPromptOut,
          tags=["Research"], summary="Generate a tailored prompt for Gemini or Perplexity")
async def research_prompt(body: ResearchPromptRequest):
    return await services.external_research_prompt(body, provider=body.provider)


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/options", tags=["Stats"], summary="Domains, statuses, scopes and category lists")
async def get_options():
    return services.options()


@app.get("/api/stats", response_model=StatsOut,
         tags=["Stats"], summary="Idea counts by status and verdict")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("venturelab.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
