"""Research stage: one LLM call that produces a venture analysis document.

Also hosts the research-prompt generator, which writes a prompt tailored to
the idea for use in an external research tool (Gemini, Perplexity).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime

from venturelab.errors import ResearchFailed, UpstreamServiceFailed, ValidationFailed
from venturelab.llm import Completion, LLMClient
from venturelab.utils import domain_label, idea_context

log = logging.getLogger(__name__)

RESEARCH_DOC_TYPE = "research"
RESEARCH_DOC_DOMAIN = "venture_ops"
RESEARCH_DOC_TAGS = "venture-lab,research"

RESEARCH_SYSTEM_PROMPT = """\
Act as a venture analyst. Evaluate the business idea strictly for commercial \
feasibility. Be specific: name real competitors, real channels and real \
regulations. Structure your answer in clean markdown with the headers below.

1. **Problem Definition** - who feels this pain, how badly (severity 1-10), \
what triggers them to seek a solution, how they solve it today.
2. **Target Buyer with Budget** - who pays (job title, company size), budget \
authority, current spend on alternatives.
3. **Market Demand Signals** - search volume, active communities, evidence of spending.
4. **Competitive Landscape** - direct and indirect competitors with pricing, \
positioning and weaknesses.
5. **Differentiation Angle** - defensibility, unique insight, why an incumbent \
would not just copy it.
6. **Revenue Model + Unit Economics** - best model, realistic pricing, CAC and LTV.
7. **Distribution Path to First 100 Customers** - channels, sales motion, \
where these customers congregate.
8. **Regulatory/Compliance Risks** - regulations, data privacy, licensing.
9. **AI Leverage Opportunities** - where AI gives a 10x improvement.
10. **Top 3 Failure Modes** - what kills this business, assumptions that must hold.

**Verdict:** GO / NO-GO / NEEDS VALIDATION, with one-line reasoning.
"""


def build_research_prompt(idea) -> str:
    return (
        idea_context(idea, header="BUSINESS IDEA TO RESEARCH:")
        + "\n\nProduce the full venture analysis for this idea."
    )


def research_doc_title(idea) -> str:
    return f"Venture Research: {idea.name}"


@dataclass
class ResearchResult:
    text: str
    model: str
    tokens_used: int | None
    completed_at: datetime


async def run_research_call(client: LLMClient, idea, temperature: float = 0.7) -> ResearchResult:
    """Send the idea to the LLM and return the research text.

    Raises ResearchFailed when the call fails or returns no content.
    """
    try:
        completion: Completion = await client.complete(
            RESEARCH_SYSTEM_PROMPT, build_research_prompt(idea), temperature=temperature,
        )
    except UpstreamServiceFailed as exc:
        raise ResearchFailed(f"Research failed: {exc}", retryable=exc.retryable) from exc
    if not completion.text.strip():
        raise ResearchFailed("Research failed: LLM returned no content", retryable=True)
    log.info("Research for %r complete (%s chars, model=%s)", idea.name, len(completion.text), completion.model)
    return ResearchResult(
        text=completion.text,
        model=completion.model,
        tokens_used=completion.tokens_used,
        completed_at=datetime.now(UTC),
    )


# ---------------------------------------------------------------------------
# External research-prompt generator
# ---------------------------------------------------------------------------

PROVIDER_NAMES = {"gemini": "Google Gemini", "perplexity": "Perplexity"}


def _generator_system_prompt(provider: str) -> str:
    name = PROVIDER_NAMES[provider]
    citations = " with sources and citations" if provider == "perplexity" else ""
    return f"""\
You are a strategic business analyst and venture researcher. Your task is to \
create a CUSTOMIZED research prompt for an external AI ({name}) to thoroughly \
research a business idea.

The prompt must be SPECIFICALLY TAILORED to this idea, not a generic template:
1. Analyze the industry, likely named competitors, working business models, \
regulatory issues and technical requirements.
2. Ask about SPECIFIC competitors, request metrics relevant to THIS market, \
probe the specific pain points and customer segment, and cover the unique \
risks for this type of business.
3. Format the prompt so {name} returns structured, actionable insights{citations}.

Output a complete, ready-to-paste research prompt and nothing else."""


_GENERATOR_USER_SUFFIX = """

Generate a customized research prompt that helps make a GO/NO-GO decision by covering:
1. Market validation specific to this idea
2. Named competitors to research
3. Business model analysis for this type of business
4. Go-to-market strategies relevant to this space
5. Execution requirements for this specific idea
6. Risks specific to this industry/approach
7. An opportunity scoring framework
8. Clear recommendation criteria"""


def template_research_prompt(idea, provider: str = "gemini") -> str:
    """Deterministic research prompt used when no LLM is configured."""
    if provider == "perplexity":
        note = "Please include sources and links where possible. Use your web search capabilities to find current data."
    else:
        note = ("Please provide thorough analysis based on your knowledge. Where you reference "
                "specific data or trends, note the source if known.")
    lines = [
        f"# Venture Research Request: {idea.name}",
        "",
        "## Context",
        f"I'm evaluating a business idea and need comprehensive research to make a GO/NO-GO decision. {note}",
        "",
        "## The Idea",
        f"**Name:** {idea.name}",
        f"**Description:** {idea.description}",
    ]
    if getattr(idea, "domain", None):
        lines.append(f"**Domain:** {domain_label(idea.domain)}")
    if getattr(idea, "target_customer", None):
        lines.append(f"**Target Customer:** {idea.target_customer}")
    if getattr(idea, "initial_thoughts", None):
        lines.append(f"**Initial Thoughts:** {idea.initial_thoughts}")
    lines += [
        "",
        "## Research Required",
        "",
        "### 1. Problem & Market Validation",
        "- Is this a real problem that people/businesses actively pay to solve?",
        "- What is the market size? (TAM/SAM/SOM with sources)",
        "### 2. Competitive Landscape",
        "- Who are the direct and indirect competitors? What would differentiate a new entrant?",
        "### 3. Business Model Analysis",
        "- Which revenue models work here? Pricing benchmarks and unit economics?",
        "### 4. Go-to-Market Intelligence",
        "- Which distribution channels work best? What is a typical customer acquisition cost?",
        "### 5. Execution Requirements",
        "- What is needed for an MVP? Realistic timeline to first revenue?",
        "### 6. Risk Assessment",
        "- Barriers to entry, key risks, regulatory or legal considerations, timing factors.",
        "### 7. Opportunity Scorecard",
        "- Rate 1-10: market attractiveness, competition intensity, execution feasibility, "
        "revenue potential, timing, overall.",
        "### 8. Recommendation",
        "**Decision:** [GO / NO-GO / NEEDS MORE RESEARCH] with the three key reasons.",
        "",
        f"_Generated {date.today().isoformat()}_",
    ]
    return "\n".join(lines)


async def generate_research_prompt(idea, provider: str = "gemini", client: LLMClient | None = None) -> dict:
    """Return ``{prompt, method, model, tokens_used}``; ``method`` is ``ai`` or ``template``."""
    if provider not in PROVIDER_NAMES:
        raise ValidationFailed(f"Unknown research provider: {provider!r}")
    if client is None:
        return {
            "prompt": template_research_prompt(idea, provider),
            "method": "template", "model": None, "tokens_used": None,
        }
    try:
        completion = await client.complete(
            _generator_system_prompt(provider),
            idea_context(idea, header="BUSINESS IDEA TO RESEARCH:") + _GENERATOR_USER_SUFFIX,
            temperature=0.7,
        )
    except UpstreamServiceFailed as exc:
        log.warning("Research prompt generation failed, using template: %s", exc)
        return {
            "prompt": template_research_prompt(idea, provider),
            "method": "template", "model": None, "tokens_used": None,
        }
    return {
        "prompt": completion.text, "method": "ai",
        "model": completion.model, "tokens_used": completion.tokens_used,
    }
