"""Shared utility functions used across Venture Lab modules."""
from __future__ import annotations

import json
from typing import Any

_MISSING = object()

DOMAIN_LABELS: dict[str, str] = {
    "saas": "SaaS / Software",
    "media": "Media / Content",
    "ecommerce": "E-commerce / Retail",
    "services": "Services / Consulting",
    "marketplace": "Marketplace / Platform",
    "fintech": "Fintech / Finance",
    "healthtech": "Healthtech / Wellness",
    "edtech": "Edtech / Education",
    "realty": "Real Estate",
    "other": "Other",
}

# (label, attribute) pairs describing an idea to an LLM
IDEA_FIELDS: list[tuple[str, str]] = [
    ("Name", "name"),
    ("Description", "description"),
    ("Domain/Industry", "domain"),
    ("Target Customer", "target_customer"),
    ("Initial Hypotheses", "initial_thoughts"),
]


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def domain_label(domain: str | None) -> str:
    if not domain:
        return ""
    return DOMAIN_LABELS.get(domain, domain)


def build_dossier(
    obj,
    fields: list[tuple[str, str]],
    header: list[str] | None = None,
    bullet: str = "- ",
) -> str:
    """Render the non-empty attributes of *obj* as ``label: value`` lines.

    Args:
        obj: ORM object or pydantic model to read attributes from.
        fields: List of (label, attr_name) pairs.
        header: Initial header lines (e.g. ``["BUSINESS IDEA TO RESEARCH:"]``).
        bullet: Prefix for each field line.
    """
    sections: list[str] = list(header or [])
    for label, attr in fields:
        val = getattr(obj, attr, None)
        if attr == "domain":
            val = domain_label(val)
        if val:
            sections.append(f"{bullet}{label}: {val}")
    return "\n".join(sections)


def idea_context(idea, header: str = "BUSINESS IDEA:") -> str:
    return build_dossier(idea, IDEA_FIELDS, header=[header])
