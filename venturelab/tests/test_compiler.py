"""Tests for plan validation, phase-order normalization and plan persistence."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from venturelab.compiler import (
    SCOPE_GUIDELINES,
    GeneratedPhase,
    GeneratedPlan,
    GeneratedProject,
    GeneratedTask,
    build_plan_prompt,
    commit_plan,
    generate_plan,
    normalize_phase_order,
    template_plan,
    validate_plan,
)
from venturelab.errors import CompileFailed, NotFound, ParseFailed, UpstreamServiceFailed
from venturelab.llm import Completion, LLMClient
from venturelab.models import Base, Phase, Project, Task, Venture


@pytest.fixture()
def session():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    SessionLocal = sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def idea():
    return SimpleNamespace(
        name="ShiftPilot", description="Scheduling for restaurant shift managers",
        domain="saas", target_customer="restaurant managers", initial_thoughts="",
    )


def _raw_plan(orders=(5, 1), with_venture=True) -> dict:
    raw = {
        "project": {"name": "Launch", "category": "product", "outcome": "10 customers", "priority": "P0"},
        "phases": [
            {"name": f"Phase ordered {o}", "order": o,
             "tasks": [{"title": f"Task in {o}", "type": "business", "priority": "P1", "estEffort": 2}]}
            for o in orders
        ],
    }
    if with_venture:
        raw["venture"] = {"name": "ShiftPilot", "domain": "saas", "oneLiner": "Shifts, solved"}
    return raw


# ---------------------------------------------------------------------------
# Phase order
# ---------------------------------------------------------------------------


class TestNormalizePhaseOrder:
    def test_reversed_orders(self):
        phases = [GeneratedPhase(name="B", order=5), GeneratedPhase(name="A", order=1)]
        result = normalize_phase_order(phases)
        assert [(p.name, p.order) for p in result] == [("A", 1), ("B", 2)]

    def test_gapped_orders(self):
        phases = [GeneratedPhase(name=n, order=o) for n, o in (("x", 10), ("y", 20), ("z", 40))]
        assert [p.order for p in normalize_phase_order(phases)] == [1, 2, 3]

    def test_ties_keep_input_order(self):
        phases = [GeneratedPhase(name="first", order=2), GeneratedPhase(name="second", order=2),
                  GeneratedPhase(name="zero", order=0)]
        assert [p.name for p in normalize_phase_order(phases)] == ["zero", "first", "second"]

    def test_non_numeric_orders_go_last(self):
        phases = [GeneratedPhase(name="none"), GeneratedPhase(name="text", order="later"),
                  GeneratedPhase(name="numeric", order="3")]
        result = normalize_phase_order(phases)
        assert [p.name for p in result] == ["numeric", "none", "text"]
        assert [p.order for p in result] == [1, 2, 3]

    def test_input_not_mutated(self):
        phases = [GeneratedPhase(name="B", order=5)]
        normalize_phase_order(phases)
        assert phases[0].order == 5


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidatePlan:
    def test_valid_plan_is_normalized(self):
        plan = validate_plan(_raw_plan())
        assert [p.name for p in plan.phases] == ["Phase ordered 1", "Phase ordered 5"]
        assert [p.order for p in plan.phases] == [1, 2]
        assert plan.venture.one_liner == "Shifts, solved"
        assert plan.phases[0].tasks[0].est_effort == 2.0

    def test_missing_project(self):
        raw = _raw_plan()
        del raw["project"]
        with pytest.raises(CompileFailed, match="incomplete"):
            validate_plan(raw)

    def test_no_phases(self):
        raw = _raw_plan(orders=())
        with pytest.raises(CompileFailed):
            validate_plan(raw)

    def test_venture_required(self):
        with pytest.raises(CompileFailed, match="no venture"):
            validate_plan(_raw_plan(with_venture=False), require_venture=True)

    def test_unknown_enums_fall_back(self):
        task = GeneratedTask(title="t", type="meeting", priority="urgent")
        assert (task.type, task.priority) == ("deep_work", "P2")
        project = GeneratedProject(name="p", category="growth hacking", priority="P9")
        assert (project.category, project.priority) == ("strategy_leadership", "P1")


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class TestPlanGeneration:
    def test_prompt_new_venture(self, idea):
        prompt = build_plan_prompt(idea, scope="small")
        assert '"venture"' in prompt
        assert SCOPE_GUIDELINES["small"]["phases"] in prompt
        assert "ShiftPilot" in prompt

    def test_prompt_existing_venture(self, idea):
        venture = Venture(name="Hospitality Tools", domain="saas", one_liner="Tools for restaurants")
        prompt = build_plan_prompt(idea, venture=venture, score_summary="- Final score: 72.0 (GREEN)")
        assert "EXISTING venture" in prompt
        assert "Hospitality Tools" in prompt
        assert '"oneLiner"' not in prompt
        assert "VALIDATION NOTES" in prompt

    @pytest.mark.asyncio
    async def test_generate_plan(self, idea):
        client = AsyncMock(spec=LLMClient)
        client.complete_json.return_value = (_raw_plan(), Completion("{}", "m", 100))
        plan = await generate_plan(client, idea)
        assert plan.venture is not None
        assert [p.order for p in plan.phases] == [1, 2]

    @pytest.mark.asyncio
    async def test_generate_plan_drops_venture_for_existing(self, idea):
        client = AsyncMock(spec=LLMClient)
        client.complete_json.return_value = (_raw_plan(), Completion("{}", "m", 100))
        venture = Venture(id="v-1", name="Existing", domain="saas")
        plan = await generate_plan(client, idea, venture=venture)
        assert plan.venture is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc", [ParseFailed("bad json"), UpstreamServiceFailed("down", retryable=True)])
    async def test_generate_plan_failures(self, idea, exc):
        client = AsyncMock(spec=LLMClient)
        client.complete_json.side_effect = exc
        with pytest.raises(CompileFailed, match="Plan generation failed"):
            await generate_plan(client, idea)

    def test_template_plan(self, idea):
        plan = template_plan(idea, "medium")
        assert [p.name for p in plan.phases] == ["Validation", "MVP Build", "Launch"]
        assert [p.order for p in plan.phases] == [1, 2, 3]
        assert plan.venture.domain == "saas"
        assert "restaurant managers" in plan.phases[0].tasks[0].title

    def test_template_plan_without_venture(self, idea):
        assert template_plan(idea, "small", with_venture=False).venture is None

    def test_template_domain_outside_venture_domains(self, idea):
        idea.domain = "fintech"
        assert template_plan(idea).venture.domain == "other"


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestCommitPlan:
    def test_creates_everything(self, session):
        stats = commit_plan(session, validate_plan(_raw_plan()))
        session.commit()
        assert stats.venture_created is True
        assert (stats.projects_created, stats.phases_created, stats.tasks_created) == (1, 2, 2)
        venture = session.get(Venture, stats.venture_id)
        assert venture.name == "ShiftPilot"
        tasks = session.execute(select(Task)).scalars().all()
        assert {t.venture_id for t in tasks} == {stats.venture_id}

    def test_persisted_order_renumbered(self, session):
        # Plan built directly, bypassing validate_plan's normalization
        plan = GeneratedPlan(
            venture=None,
            project=GeneratedProject(name="P"),
            phases=[GeneratedPhase(name="Build", order=5), GeneratedPhase(name="Validate", order=1)],
        )
        venture = Venture(name="Existing")
        session.add(venture)
        session.flush()
        stats = commit_plan(session, plan, venture_id=venture.id)
        session.commit()
        assert stats.venture_created is False
        phases = session.execute(
            select(Phase).where(Phase.project_id == stats.project_id).order_by(Phase.order)
        ).scalars().all()
        assert [(p.name, p.order) for p in phases] == [("Validate", 1), ("Build", 2)]

    def test_missing_venture(self, session):
        plan = template_plan(SimpleNamespace(name="X", description="Y"), with_venture=False)
        with pytest.raises(NotFound, match="Venture not found"):
            commit_plan(session, plan, venture_id="nope")
        assert session.execute(select(Project)).scalars().all() == []
