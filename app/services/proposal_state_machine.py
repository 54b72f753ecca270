"""
Proposal State Machine.

States are the ten stage ordinals plus two absorbing super-states
(Rejected, Completed).  The machine:

  - initialises a new proposal at stage 1 / UnderReview,
  - advances it when the ledger holds an authoritative decision for the
    current stage,
  - derives stage states and a completion percentage from canonical status
    plus the stage pointer — nothing derived is ever stored.

Transitions (advance):
    Approved at stage n < 10   → stage n completed, n+1 current
    Approved at stage 10       → Completed
    Rejected at stage n        → Rejected; n marked rejected, n+1..10 pending forever
    RevisionRequested / none   → no change (safe to call after every ledger write)
    Rejected / Completed       → no change

Completion:
    completion_percent = round_half_up(100 * (completed + 0.5 * in_review) / 10)
    where in_review is 1 when the current stage has seen review activity
    (a RevisionRequested record) and the proposal is not terminal.
    Rejected pins the value to 0.

Usage:
    from app.services import proposal_state_machine as psm

    progress = psm.derive_progress(proposal_id)
    progress.completion_percent
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from app.core.exceptions import ProposalNotFoundError, ValidationError
from app.models import db
from app.models.endorsement import (
    DECISION_APPROVED,
    DECISION_REJECTED,
    DECISION_REVISION_REQUESTED,
    DECISIVE_DECISIONS,
    EndorsementRecord,
)
from app.models.proposal import (
    STATUS_APPROVED,
    STATUS_COMPLETED,
    STATUS_ONGOING,
    STATUS_ORDER,
    STATUS_REJECTED,
    STATUS_UNDER_REVIEW,
    TERMINAL_STATUSES,
    VALID_STATUSES,
    Proposal,
)
from app.services import endorsement_ledger, stage_catalog

logger = logging.getLogger(__name__)

STATE_COMPLETED = "completed"
STATE_CURRENT = "current"
STATE_REJECTED = "rejected"
STATE_PENDING = "pending"


# ── Derived value objects ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class StageState:
    ordinal: int
    name: str
    authorizing_role: str
    state: str

    def to_dict(self) -> dict:
        return {
            "ordinal": self.ordinal,
            "name": self.name,
            "authorizing_role": self.authorizing_role,
            "state": self.state,
        }


@dataclass(frozen=True)
class DerivedProgress:
    proposal_id: int
    canonical_status: str
    current_stage_ordinal: int
    stage_states: tuple[StageState, ...]
    completion_percent: int

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.stage_states if s.state == STATE_COMPLETED)

    def state_of(self, ordinal: int) -> str:
        return self.stage_states[ordinal - 1].state

    def to_dict(self) -> dict:
        return {
            "proposal_id": self.proposal_id,
            "canonical_status": self.canonical_status,
            "current_stage_ordinal": self.current_stage_ordinal,
            "current_stage_name": stage_catalog.stage_at(self.current_stage_ordinal).name,
            "stage_states": [s.to_dict() for s in self.stage_states],
            "completion_percent": self.completion_percent,
        }


# ── Pure helpers ───────────────────────────────────────────────────────────────


def _utc(ts: datetime | None) -> datetime:
    """Normalise timestamps; SQLite hands back naive datetimes."""
    if ts is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def compute_completion_percent(completed: int, in_review: bool, rejected: bool = False) -> int:
    if rejected:
        return 0
    total = len(stage_catalog.STAGES)
    value = 100 * (completed + 0.5 * int(in_review)) / total
    return max(0, min(100, math.floor(value + 0.5)))


def resolve_stage_decision(records) -> EndorsementRecord | None:
    """Pick the authoritative Approved/Rejected record from a stage's records.

    The earliest by issued_at (then id) wins.  More than one decisive record
    means the single-authority guard was bypassed; later ones are ignored and
    the inconsistency is logged.
    """
    decisive = [r for r in records if r.decision in DECISIVE_DECISIONS]
    if not decisive:
        return None
    decisive.sort(key=lambda r: (_utc(r.issued_at), r.id or 0))
    if len(decisive) > 1:
        first = decisive[0]
        logger.warning(
            "Inconsistent ledger: %d decisive records for proposal %s stage %s; using #%s",
            len(decisive), first.proposal_id, first.stage_ordinal, first.id,
            extra={
                "proposal_id": first.proposal_id,
                "stage_ordinal": first.stage_ordinal,
                "event_type": "ledger.inconsistency",
            },
        )
    return decisive[0]


def build_progress(proposal: Proposal, in_review: bool = False) -> DerivedProgress:
    """Derive stage states and completion from a proposal row alone."""
    status = proposal.canonical_status
    current = proposal.current_stage_ordinal
    states = []
    for stage in stage_catalog.all_stages():
        if status == STATUS_COMPLETED or stage.ordinal < current:
            state = STATE_COMPLETED
        elif stage.ordinal == current:
            state = STATE_REJECTED if status == STATUS_REJECTED else STATE_CURRENT
        else:
            state = STATE_PENDING
        states.append(StageState(stage.ordinal, stage.name, stage.authorizing_role, state))

    completed = sum(1 for s in states if s.state == STATE_COMPLETED)
    percent = compute_completion_percent(
        completed,
        in_review=in_review and status not in TERMINAL_STATUSES,
        rejected=status == STATUS_REJECTED,
    )
    return DerivedProgress(
        proposal_id=proposal.id,
        canonical_status=status,
        current_stage_ordinal=current,
        stage_states=tuple(states),
        completion_percent=percent,
    )


def status_for_stage(ordinal: int) -> str:
    """Canonical status of a live proposal whose current stage is ``ordinal``."""
    if ordinal < stage_catalog.IMPLEMENTATION_BOUNDARY:
        return STATUS_UNDER_REVIEW
    if ordinal == stage_catalog.IMPLEMENTATION_BOUNDARY:
        return STATUS_APPROVED
    return STATUS_ONGOING


# ── Mutations ──────────────────────────────────────────────────────────────────


def _get_proposal(proposal_id: int) -> Proposal:
    proposal = db.session.get(Proposal, proposal_id)
    if proposal is None:
        raise ProposalNotFoundError(proposal_id)
    return proposal


def initialize(proposal: Proposal) -> Proposal:
    """Place a freshly created proposal at stage 1 / UnderReview."""
    proposal.current_stage_ordinal = 1
    proposal.canonical_status = STATUS_UNDER_REVIEW
    return proposal


def advance_canonical_status(proposal: Proposal, new_status: str) -> bool:
    """Move canonical_status forward.  Returns True if the value changed.

    Rejected and Completed are absorbing; the forward order is
    UnderReview → Approved → Ongoing → Completed, and Rejected may be
    entered from any live status.
    """
    if new_status not in VALID_STATUSES:
        raise ValidationError(f"Invalid canonical status '{new_status}'")
    old = proposal.canonical_status
    if old == new_status:
        return False
    if old in TERMINAL_STATUSES:
        raise ValidationError(
            f"Proposal {proposal.id} is {old}; canonical status cannot change",
            details={"canonical_status": old},
        )
    if new_status != STATUS_REJECTED and STATUS_ORDER.index(new_status) < STATUS_ORDER.index(old):
        raise ValidationError(
            f"Canonical status cannot move backwards from {old} to {new_status}",
            details={"canonical_status": old},
        )
    proposal.canonical_status = new_status
    logger.info(
        "Proposal %s status %s → %s", proposal.id, old, new_status,
        extra={"proposal_id": proposal.id, "event_type": "proposal.status_changed"},
    )
    return True


def advance(proposal_id: int) -> DerivedProgress:
    """Apply the current stage's authoritative decision, if there is one."""
    proposal = _get_proposal(proposal_id)
    if proposal.canonical_status in TERMINAL_STATUSES:
        return derive_progress(proposal_id)

    stage = proposal.current_stage_ordinal
    decision = resolve_stage_decision(endorsement_ledger.decisions_at(proposal_id, stage))
    if decision is None:
        return derive_progress(proposal_id)

    if decision.decision == DECISION_APPROVED:
        if stage == stage_catalog.FINAL_STAGE:
            advance_canonical_status(proposal, STATUS_COMPLETED)
        else:
            proposal.current_stage_ordinal = stage + 1
            advance_canonical_status(proposal, status_for_stage(stage + 1))
    elif decision.decision == DECISION_REJECTED:
        advance_canonical_status(proposal, STATUS_REJECTED)

    db.session.flush()
    logger.info(
        "Proposal %s advanced from stage %s (%s)", proposal_id, stage, decision.decision,
        extra={
            "proposal_id": proposal_id,
            "stage_ordinal": stage,
            "decision": decision.decision,
            "event_type": "proposal.advanced",
        },
    )
    return derive_progress(proposal_id)


# ── Queries ────────────────────────────────────────────────────────────────────


def derive_progress(proposal_id: int) -> DerivedProgress:
    """Recompute the proposal's derived progress.  Read-only."""
    proposal = _get_proposal(proposal_id)
    in_review = False
    if proposal.canonical_status not in TERMINAL_STATUSES:
        in_review = any(
            r.decision == DECISION_REVISION_REQUESTED
            for r in endorsement_ledger.decisions_at(proposal_id, proposal.current_stage_ordinal)
        )
    return build_progress(proposal, in_review=in_review)
