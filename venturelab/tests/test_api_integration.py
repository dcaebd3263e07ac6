"""Integration tests for the FastAPI endpoints.

Uses TestClient against an in-memory database; the LLM client is patched at
the services layer so no network call is ever made.
"""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from venturelab.errors import UpstreamServiceFailed
from venturelab.llm import Completion, LLMClient
from venturelab.models import Base
from venturelab.scorer import RUBRIC


@pytest.fixture()
def test_db():
    """Create a temporary SQLite in-memory database for testing.

    Uses StaticPool so all connections share the same in-memory database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, TestSession


@pytest.fixture()
def client(test_db):
    """FastAPI TestClient using in-memory database."""
    engine, TestSession = test_db
    from venturelab.app import app, db_session

    def override_db_session():
        session = TestSession()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    with patch("venturelab.app.init_db"), TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def llm():
    """Stub LLM returned wherever the services build a default client."""
    stub = AsyncMock(spec=LLMClient)
    stub.complete.return_value = Completion(text="## Research\nStrong pull.", model="stub-model", tokens_used=500)
    stub.complete_json.return_value = (
        {
            "dimensions": {d.key: {"score": d.max, "justification": "ok"} for d in RUBRIC},
            "confidence": 0.75,
            "kill_reasons": [],
            "next_validation_steps": ["Pre-sell to 3 customers"],
        },
        Completion(text="{}", model="stub-model", tokens_used=100),
    )
    with patch("venturelab.services.LLMClient", return_value=stub):
        yield stub


def _create(c, **overrides) -> dict:
    body = {"name": "ShiftPilot", "description": "Scheduling for restaurant shift managers", **overrides}
    resp = c.post("/api/ideas", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _advance_to_scored(c) -> str:
    idea_id = _create(c)["id"]
    assert c.post(f"/api/ideas/{idea_id}/research").status_code == 200
    assert c.post(f"/api/ideas/{idea_id}/score").status_code == 200
    return idea_id


class TestIdeaEndpoints:
    def test_create_idea(self, client):
        data = _create(client, domain="saas", target_customer="restaurant managers")
        assert data["status"] == "idea"
        assert data["domain"] == "saas"
        assert data["research_doc"] is None

    def test_create_requires_description(self, client):
        resp = client.post("/api/ideas", json={"name": "X"})
        assert resp.status_code == 422

    def test_create_rejects_blank_name(self, client):
        resp = client.post("/api/ideas", json={"name": "   ", "description": "Y"})
        assert resp.status_code == 422

    def test_create_rejects_unknown_domain(self, client):
        resp = client.post("/api/ideas", json={"name": "X", "description": "Y", "domain": "crypto"})
        assert resp.status_code == 422

    def test_list_and_filter(self, client):
        _create(client, name="A")
        _create(client, name="B")
        resp = client.get("/api/ideas")
        assert resp.status_code == 200
        assert resp.json()["total"] == 2
        assert client.get("/api/ideas", params={"status": "scored"}).json() == {"items": [], "total": 0}

    def test_list_unknown_status(self, client):
        resp = client.get("/api/ideas", params={"status": "done"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "ValidationFailed"

    def test_get_idea_404(self, client):
        resp = client.get("/api/ideas/does-not-exist")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Idea not found: does-not-exist", "error": "NotFound"}

    def test_delete_idea(self, client):
        idea_id = _create(client)["id"]
        assert client.delete(f"/api/ideas/{idea_id}").json() == {"ok": True}
        assert client.get(f"/api/ideas/{idea_id}").status_code == 404


class TestLifecycleEndpoints:
    def test_research(self, client, llm):
        idea_id = _create(client)["id"]
        resp = client.post(f"/api/ideas/{idea_id}/research")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "researched"
        assert data["research_doc_id"]
        assert data["research_doc"]["body"].startswith("## Research")
        assert data["research_model"] == "stub-model"
        assert data["research_tokens_used"] == 500

    def test_research_twice_conflicts(self, client, llm):
        idea_id = _create(client)["id"]
        client.post(f"/api/ideas/{idea_id}/research")
        resp = client.post(f"/api/ideas/{idea_id}/research")
        assert resp.status_code == 409
        assert resp.json()["error"] == "StateConflict"

    def test_research_failure_is_502_and_reverts(self, client, llm):
        llm.complete.side_effect = UpstreamServiceFailed("LLM API call failed: overloaded", retryable=True)
        idea_id = _create(client)["id"]
        resp = client.post(f"/api/ideas/{idea_id}/research")
        assert resp.status_code == 502
        assert resp.json()["error"] == "ResearchFailed"
        idea = client.get(f"/api/ideas/{idea_id}").json()
        assert idea["status"] == "idea"
        assert "overloaded" in idea["last_error"]

    def test_score_then_cached(self, client, llm):
        idea_id = _create(client)["id"]
        client.post(f"/api/ideas/{idea_id}/research")
        first = client.post(f"/api/ideas/{idea_id}/score").json()
        second = client.post(f"/api/ideas/{idea_id}/score").json()
        assert first["cached"] is False
        assert second["cached"] is True
        assert first["idea"]["final_score"] == second["idea"]["final_score"] == 75.0
        assert first["idea"]["verdict"] == "GREEN"
        assert first["idea"]["score"] == second["idea"]["score"]
        assert llm.complete_json.await_count == 1

    def test_edit_research_invalidates_cache(self, client, llm):
        idea_id = _advance_to_scored(client)
        resp = client.put(f"/api/ideas/{idea_id}/research", json={"body": "Edited research"})
        assert resp.status_code == 200
        assert resp.json()["research_doc"]["body"] == "Edited research"
        assert resp.json()["status"] == "scored"
        assert client.post(f"/api/ideas/{idea_id}/score").json()["cached"] is False

    def test_score_before_research_conflicts(self, client):
        idea_id = _create(client)["id"]
        assert client.post(f"/api/ideas/{idea_id}/score").status_code == 409

    def test_approval_killed(self, client, llm):
        idea_id = _advance_to_scored(client)
        resp = client.post(f"/api/ideas/{idea_id}/approval", json={"decision": "killed", "comment": "Too crowded"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "rejected"
        assert data["approval_decision"] == "killed"
        assert data["approval_comment"] == "Too crowded"

    def test_approval_unknown_decision(self, client, llm):
        idea_id = _advance_to_scored(client)
        resp = client.post(f"/api/ideas/{idea_id}/approval", json={"decision": "maybe"})
        assert resp.status_code == 422

    def test_compile_with_template(self, client, llm):
        idea_id = _advance_to_scored(client)
        client.post(f"/api/ideas/{idea_id}/approval", json={"decision": "approved"})
        resp = client.post(f"/api/ideas/{idea_id}/compile", json={"use_ai": False, "scope": "small"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["idea"]["status"] == "compiled"
        assert data["stats"]["phases_created"] == 3
        assert data["idea"]["compilation"] == data["stats"]

        venture = client.get(f"/api/ventures/{data['stats']['venture_id']}").json()
        assert venture["name"] == "ShiftPilot"
        phases = venture["projects"][0]["phases"]
        assert [p["order"] for p in phases] == [1, 2, 3]
        assert len(phases[0]["tasks"]) == 3

    def test_compile_requires_approval(self, client, llm):
        idea_id = _advance_to_scored(client)
        resp = client.post(f"/api/ideas/{idea_id}/compile", json={"use_ai": False})
        assert resp.status_code == 409

    def test_venture_404(self, client):
        resp = client.get("/api/ventures/nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotFound"


class TestMiscEndpoints:
    def test_options(self, client):
        data = client.get("/api/options").json()
        assert {"value": "saas", "label": "SaaS / Software"} in data["domains"]
        assert set(data["scopes"]) == {"small", "medium", "large"}
        assert "killed" in data["decisions"]

    def test_stats(self, client, llm):
        _advance_to_scored(client)
        _create(client, name="Fresh")
        data = client.get("/api/stats").json()
        assert data["total"] == 2
        assert data["by_status"] == {"scored": 1, "idea": 1}
        assert data["by_verdict"] == {"GREEN": 1}
        assert data["compiled"] == 0

    def test_research_prompt_template(self, client):
        with patch("venturelab.services.llm_configured", return_value=False):
            resp = client.post("/api/research-prompt", json={
                "name": "ShiftPilot", "description": "Scheduling for restaurant shift managers",
                "provider": "perplexity",
            })
        assert resp.status_code == 200
        data = resp.json()
        assert data["method"] == "template"
        assert "ShiftPilot" in data["prompt"]

    def test_research_prompt_validates_description(self, client):
        resp = client.post("/api/research-prompt", json={"name": "X", "description": "short"})
        assert resp.status_code == 422
