"""Scoring engine: one rubric call with deterministic aggregation.

Architecture
------------
The LLM grades the idea (plus its research document) on eight fixed
dimensions, each against its own maximum. Everything after the call is
deterministic:

- ``raw_total``: sum of the (clamped) dimension scores, 0-100
- ``final_score``: ``raw_total * confidence``, rounded to one decimal
- ``verdict``: GREEN / YELLOW / RED from fixed thresholds on final_score
- ``input_hash``: SHA-256 over description + research text + rubric version;
  a stored score with the same hash is reused instead of calling the LLM again
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from venturelab.config import VerdictThresholds
from venturelab.errors import ParseFailed, ScoreParseFailed
from venturelab.lifecycle import Verdict
from venturelab.llm import LLMClient
from venturelab.utils import idea_context

log = logging.getLogger(__name__)

RUBRIC_VERSION = "v1"


@dataclass(frozen=True)
class Dimension:
    key: str
    label: str
    max: int
    inverse: bool = False
    guidance: str = ""


RUBRIC: tuple[Dimension, ...] = (
    Dimension("buyer_clarity", "Buyer clarity & budget", 15,
              guidance="A named buyer with budget authority who already spends on alternatives."),
    Dimension("pain_intensity", "Pain intensity & urgency", 15,
              guidance="Severe, frequent pain with a clear trigger to seek a solution now."),
    Dimension("distribution", "Distribution feasibility", 15,
              guidance="A concrete, affordable path to the first 100 customers."),
    Dimension("revenue_model", "Revenue model realism", 15,
              guidance="Pricing anchored to alternatives; plausible CAC/LTV."),
    Dimension("competitive_edge", "Competitive edge", 10,
              guidance="A defensible insight or advantage incumbents cannot copy quickly."),
    Dimension("execution_complexity", "Execution complexity", 10, inverse=True,
              guidance="INVERSE: a simple MVP with a small team scores high; heavy build scores low."),
    Dimension("regulatory_friction", "Regulatory friction", 10, inverse=True,
              guidance="INVERSE: little regulation scores high; licensing or compliance burden scores low."),
    Dimension("ai_leverage", "AI leverage", 10,
              guidance="AI gives a 10x improvement or automation moat."),
)
RUBRIC_KEYS = tuple(d.key for d in RUBRIC)
MAX_TOTAL = sum(d.max for d in RUBRIC)


def _rubric_lines() -> str:
    return "\n".join(f"- {d.key} ({d.label}, 0-{d.max}): {d.guidance}" for d in RUBRIC)


def _json_shape() -> str:
    dims = ",\n".join(
        f'    "{d.key}": {{"score": <0-{d.max}>, "justification": "<1-2 sentences>"}}' for d in RUBRIC
    )
    return (
        "{\n  \"dimensions\": {\n" + dims + "\n  },\n"
        '  "confidence": <0.0-1.0, how well the research supports these scores>,\n'
        '  "kill_reasons": ["<reason this idea could die>"],\n'
        '  "next_validation_steps": ["<cheapest next experiment>"]\n}'
    )


SCORING_SYSTEM_PROMPT = f"""\
You are a skeptical venture analyst scoring a business idea with a fixed rubric.
Use the idea description and the research document. Be opinionated; do not \
give the benefit of the doubt when the research is silent.

RUBRIC (score each dimension from 0 to its maximum; higher is always better):
{_rubric_lines()}

Respond with ONLY valid JSON:
{_json_shape()}
"""


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------


class DimensionScore(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    score: float
    max: int = 0
    justification: str = ""


class _RawScore(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    dimensions: dict[str, DimensionScore]
    confidence: float
    kill_reasons: list[str] = Field(default_factory=list)
    next_validation_steps: list[str] = Field(default_factory=list)


class ScoreObject(BaseModel):
    dimensions: dict[str, DimensionScore]
    raw_total: float
    confidence: float
    final_score: float
    kill_reasons: list[str] = Field(default_factory=list)
    next_validation_steps: list[str] = Field(default_factory=list)
    rubric_version: str = RUBRIC_VERSION


# ---------------------------------------------------------------------------
# Deterministic aggregation
# ---------------------------------------------------------------------------


def compute_input_hash(description: str, research_text: str, rubric_version: str = RUBRIC_VERSION) -> str:
    h = hashlib.sha256()
    for part in (description or "", research_text or "", rubric_version):
        h.update(part.encode("utf-8"))
        h.update(b"\x00")
    return h.hexdigest()


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compute_raw_total(dimensions: dict[str, DimensionScore]) -> float:
    return round(sum(d.score for d in dimensions.values()), 2)


def compute_final_score(raw_total: float, confidence: float) -> float:
    return round(raw_total * _clamp(confidence, 0.0, 1.0), 1)


def compute_verdict(final_score: float, thresholds: VerdictThresholds | None = None) -> Verdict:
    """Map a final score to a verdict tier. Thresholds are inclusive."""
    t = thresholds or VerdictThresholds()
    if final_score >= t.green:
        return Verdict.GREEN
    if final_score >= t.yellow:
        return Verdict.YELLOW
    return Verdict.RED


def parse_score(raw: dict[str, Any], rubric_version: str = RUBRIC_VERSION) -> ScoreObject:
    """Validate the LLM payload against the rubric and aggregate it.

    Missing dimensions or wrongly-typed fields raise ScoreParseFailed.
    Out-of-range sub-scores are clamped into ``[0, max]``.
    """
    try:
        parsed = _RawScore.model_validate(raw)
    except ValidationError as exc:
        raise ScoreParseFailed(f"Score response has the wrong shape: {exc.error_count()} error(s)") from exc

    missing = [k for k in RUBRIC_KEYS if k not in parsed.dimensions]
    if missing:
        raise ScoreParseFailed(f"Score response is missing dimensions: {', '.join(missing)}")

    dimensions: dict[str, DimensionScore] = {}
    for dim in RUBRIC:
        got = parsed.dimensions[dim.key]
        score = _clamp(got.score, 0.0, float(dim.max))
        if score != got.score:
            log.warning("Clamped %s score %s into [0, %d]", dim.key, got.score, dim.max)
        dimensions[dim.key] = DimensionScore(score=score, max=dim.max, justification=got.justification)

    confidence = _clamp(parsed.confidence, 0.0, 1.0)
    raw_total = compute_raw_total(dimensions)
    return ScoreObject(
        dimensions=dimensions,
        raw_total=raw_total,
        confidence=confidence,
        final_score=compute_final_score(raw_total, confidence),
        kill_reasons=[str(r) for r in parsed.kill_reasons[:10]],
        next_validation_steps=[str(s) for s in parsed.next_validation_steps[:10]],
        rubric_version=rubric_version,
    )


def build_scoring_prompt(idea, research_text: str) -> str:
    return (
        idea_context(idea, header="IDEA:")
        + "\n\n--- RESEARCH DOCUMENT ---\n"
        + (research_text or "(no research text)")
    )


async def score_idea(
    client: LLMClient, idea, research_text: str,
    temperature: float = 0.2, rubric_version: str = RUBRIC_VERSION,
) -> ScoreObject:
    """Run the rubric call for *idea* and return the aggregated score.

    Raises ScoreParseFailed when the response is not JSON or has the wrong shape.
    """
    try:
        raw, _ = await client.complete_json(
            SCORING_SYSTEM_PROMPT, build_scoring_prompt(idea, research_text), temperature=temperature,
        )
    except ParseFailed as exc:
        raise ScoreParseFailed(str(exc)) from exc
    return parse_score(raw, rubric_version)
