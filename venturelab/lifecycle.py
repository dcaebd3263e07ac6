"""Idea lifecycle: closed status set and the transitions between statuses.

::

    idea -> researching -> researched -> scoring -> scored
         -> {approved | parked | rejected}
    approved -> compiling -> compiled

``failed`` is absorbing and reachable from ``compiling``. Research and
scoring failures revert to the status held before the stage was claimed.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from venturelab.errors import StateConflict


class IdeaStatus(StrEnum):
    IDEA = "idea"
    RESEARCHING = "researching"
    RESEARCHED = "researched"
    SCORING = "scoring"
    SCORED = "scored"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARKED = "parked"
    COMPILING = "compiling"
    COMPILED = "compiled"
    FAILED = "failed"


class Verdict(StrEnum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


class ApprovalDecision(StrEnum):
    APPROVED = "approved"
    PARKED = "parked"
    KILLED = "killed"


class IdeaDomain(StrEnum):
    SAAS = "saas"
    MEDIA = "media"
    ECOMMERCE = "ecommerce"
    SERVICES = "services"
    MARKETPLACE = "marketplace"
    FINTECH = "fintech"
    HEALTHTECH = "healthtech"
    EDTECH = "edtech"
    REALTY = "realty"
    OTHER = "other"


S = IdeaStatus

TRANSITIONS: dict[IdeaStatus, frozenset[IdeaStatus]] = {
    S.IDEA: frozenset({S.RESEARCHING}),
    S.RESEARCHING: frozenset({S.RESEARCHED, S.IDEA, S.FAILED}),
    S.RESEARCHED: frozenset({S.SCORING}),
    S.SCORING: frozenset({S.SCORED, S.RESEARCHED, S.FAILED}),
    S.SCORED: frozenset({S.SCORING, S.APPROVED, S.PARKED, S.REJECTED}),
    # parked -> decision only when re-entry is enabled (checked by services)
    S.PARKED: frozenset({S.APPROVED, S.PARKED, S.REJECTED}),
    S.APPROVED: frozenset({S.COMPILING}),
    S.COMPILING: frozenset({S.COMPILED, S.FAILED}),
    S.REJECTED: frozenset(),
    S.COMPILED: frozenset(),
    S.FAILED: frozenset(),
}

IN_PROGRESS = frozenset({S.RESEARCHING, S.SCORING, S.COMPILING})

DECISION_STATUS: dict[ApprovalDecision, IdeaStatus] = {
    ApprovalDecision.APPROVED: S.APPROVED,
    ApprovalDecision.PARKED: S.PARKED,
    ApprovalDecision.KILLED: S.REJECTED,
}


@dataclass(frozen=True)
class Stage:
    name: str
    entry: frozenset[IdeaStatus]
    in_progress: IdeaStatus
    success: IdeaStatus
    revert_on_failure: bool


RESEARCH = Stage("research", frozenset({S.IDEA}), S.RESEARCHING, S.RESEARCHED, True)
SCORING = Stage("scoring", frozenset({S.RESEARCHED, S.SCORED}), S.SCORING, S.SCORED, True)
COMPILATION = Stage("compilation", frozenset({S.APPROVED}), S.COMPILING, S.COMPILED, False)


def can_transition(current: IdeaStatus | str, target: IdeaStatus | str) -> bool:
    return IdeaStatus(target) in TRANSITIONS[IdeaStatus(current)]


def check_transition(current: IdeaStatus | str, target: IdeaStatus | str) -> IdeaStatus:
    """Return *target* as an IdeaStatus, or raise StateConflict if the move is illegal."""
    if not can_transition(current, target):
        raise StateConflict(f"Cannot move idea from '{current}' to '{target}'")
    return IdeaStatus(target)


def require_entry(stage: Stage, current: IdeaStatus | str) -> None:
    if IdeaStatus(current) not in stage.entry:
        allowed = ", ".join(sorted(s.value for s in stage.entry))
        raise StateConflict(
            f"Cannot run {stage.name} on an idea in status '{current}' (requires: {allowed})"
        )


STAGES: dict[str, Stage] = {s.name: s for s in (RESEARCH, SCORING, COMPILATION)}


def transition(idea, target: IdeaStatus | str) -> IdeaStatus:
    """Move *idea* to *target* in place; illegal moves raise StateConflict."""
    idea.status = check_transition(idea.status, target)
    return idea.status
