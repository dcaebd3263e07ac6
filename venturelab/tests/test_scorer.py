"""Tests for the scoring engine: rubric, aggregation, verdicts and input hashing."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from venturelab.config import VerdictThresholds
from venturelab.errors import ParseFailed, ScoreParseFailed
from venturelab.lifecycle import Verdict
from venturelab.llm import Completion, LLMClient
from venturelab.scorer import (
    MAX_TOTAL,
    RUBRIC,
    RUBRIC_KEYS,
    RUBRIC_VERSION,
    SCORING_SYSTEM_PROMPT,
    build_scoring_prompt,
    compute_final_score,
    compute_input_hash,
    compute_verdict,
    parse_score,
    score_idea,
)


def _payload(scores: dict[str, float] | None = None, confidence: float = 1.0, **extra) -> dict:
    scores = scores or {d.key: d.max for d in RUBRIC}
    return {
        "dimensions": {k: {"score": v, "justification": f"{k} reasoning"} for k, v in scores.items()},
        "confidence": confidence,
        **extra,
    }


# ---------------------------------------------------------------------------
# Rubric
# ---------------------------------------------------------------------------


class TestRubric:
    def test_eight_dimensions_summing_to_100(self):
        assert len(RUBRIC) == 8
        assert MAX_TOTAL == 100
        assert [d.max for d in RUBRIC] == [15, 15, 15, 15, 10, 10, 10, 10]

    def test_inverse_dimensions(self):
        inverse = {d.key for d in RUBRIC if d.inverse}
        assert inverse == {"execution_complexity", "regulatory_friction"}

    def test_prompt_lists_every_dimension(self):
        for key in RUBRIC_KEYS:
            assert key in SCORING_SYSTEM_PROMPT
        assert "ONLY valid JSON" in SCORING_SYSTEM_PROMPT

    def test_scoring_prompt_includes_research(self):
        idea = SimpleNamespace(name="X", description="Y", domain="saas", target_customer="", initial_thoughts="")
        prompt = build_scoring_prompt(idea, "Deep research text")
        assert "Name: X" in prompt
        assert "SaaS / Software" in prompt
        assert "Deep research text" in prompt


# ---------------------------------------------------------------------------
# Verdicts
# ---------------------------------------------------------------------------


class TestVerdict:
    @pytest.mark.parametrize("score,expected", [
        (100.0, Verdict.GREEN),
        (70.0, Verdict.GREEN),
        (69.9, Verdict.YELLOW),
        (50.0, Verdict.YELLOW),
        (49.9, Verdict.RED),
        (0.0, Verdict.RED),
    ])
    def test_default_thresholds(self, score, expected):
        assert compute_verdict(score) is expected

    def test_custom_thresholds(self):
        t = VerdictThresholds(green=80, yellow=60)
        assert compute_verdict(80, t) is Verdict.GREEN
        assert compute_verdict(79.9, t) is Verdict.YELLOW
        assert compute_verdict(60, t) is Verdict.YELLOW
        assert compute_verdict(59.9, t) is Verdict.RED


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class TestAggregation:
    def test_final_score(self):
        assert compute_final_score(80, 0.5) == 40.0
        assert compute_final_score(77, 0.33) == 25.4

    def test_confidence_clamped(self):
        assert compute_final_score(80, 1.7) == 80.0
        assert compute_final_score(80, -0.2) == 0.0

    def test_all_max_scores(self):
        score = parse_score(_payload())
        assert score.raw_total == MAX_TOTAL
        assert score.final_score == 100.0
        assert score.rubric_version == RUBRIC_VERSION
        assert score.dimensions["buyer_clarity"].max == 15

    def test_confidence_scales_final(self):
        score = parse_score(_payload(confidence=0.7))
        assert score.raw_total == 100
        assert score.final_score == 70.0
        assert compute_verdict(score.final_score) is Verdict.GREEN

    def test_out_of_range_scores_clamped(self):
        scores = {d.key: d.max for d in RUBRIC}
        scores["buyer_clarity"] = 40
        scores["ai_leverage"] = -3
        score = parse_score(_payload(scores))
        assert score.dimensions["buyer_clarity"].score == 15
        assert score.dimensions["ai_leverage"].score == 0
        assert score.raw_total == 90

    def test_lists_kept(self):
        score = parse_score(_payload(kill_reasons=["No budget"], next_validation_steps=["Call 5 buyers"]))
        assert score.kill_reasons == ["No budget"]
        assert score.next_validation_steps == ["Call 5 buyers"]

    def test_missing_dimension_raises(self):
        scores = {d.key: d.max for d in RUBRIC}
        del scores["distribution"]
        with pytest.raises(ScoreParseFailed, match="distribution"):
            parse_score(_payload(scores))

    def test_wrong_shape_raises(self):
        with pytest.raises(ScoreParseFailed):
            parse_score({"dimensions": "all good", "confidence": 1})

    def test_non_numeric_score_raises(self):
        payload = _payload()
        payload["dimensions"]["pain_intensity"]["score"] = "high"
        with pytest.raises(ScoreParseFailed):
            parse_score(payload)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_score_raises(self, bad):
        scores = {d.key: d.max for d in RUBRIC}
        scores["buyer_clarity"] = bad
        with pytest.raises(ScoreParseFailed):
            parse_score(_payload(scores))

    @pytest.mark.parametrize("bad", [float("nan"), float("inf")])
    def test_non_finite_confidence_raises(self, bad):
        with pytest.raises(ScoreParseFailed):
            parse_score(_payload(confidence=bad))

    def test_missing_confidence_raises(self):
        payload = _payload()
        del payload["confidence"]
        with pytest.raises(ScoreParseFailed):
            parse_score(payload)


# ---------------------------------------------------------------------------
# Input hash
# ---------------------------------------------------------------------------


class TestInputHash:
    def test_deterministic(self):
        assert compute_input_hash("desc", "research") == compute_input_hash("desc", "research")

    def test_changes_with_research_text(self):
        assert compute_input_hash("desc", "research") != compute_input_hash("desc", "research v2")

    def test_changes_with_rubric_version(self):
        assert compute_input_hash("d", "r", "v1") != compute_input_hash("d", "r", "v2")

    def test_field_boundaries_matter(self):
        assert compute_input_hash("ab", "c") != compute_input_hash("a", "bc")

    def test_none_treated_as_empty(self):
        assert compute_input_hash(None, None) == compute_input_hash("", "")


# ---------------------------------------------------------------------------
# LLM call
# ---------------------------------------------------------------------------


class TestScoreIdea:
    @pytest.mark.asyncio
    async def test_returns_parsed_score(self):
        client = AsyncMock(spec=LLMClient)
        client.complete_json.return_value = (_payload(confidence=0.5), Completion("{}", "m", 10))
        idea = SimpleNamespace(name="X", description="Y", domain="", target_customer="", initial_thoughts="")
        score = await score_idea(client, idea, "research")
        assert score.final_score == 50.0
        _, kwargs = client.complete_json.call_args
        assert kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_invalid_json_becomes_score_parse_failed(self):
        client = AsyncMock(spec=LLMClient)
        client.complete_json.side_effect = ParseFailed("LLM returned invalid JSON: nope")
        idea = SimpleNamespace(name="X", description="Y")
        with pytest.raises(ScoreParseFailed, match="invalid JSON"):
            await score_idea(client, idea, "research")
