"""
Endorsement Ledger Service.

Accepts and validates decision events issued by reviewing roles and answers
"what is the authoritative decision at stage N for proposal P".

Design decisions:
    - EndorsementRecord is APPEND-ONLY — no update or delete.
    - One authoritative (Approved/Rejected) decision per (proposal, stage).
      RevisionRequested records accumulate but never move the stage.
    - Role gating happens here, never in the blueprint: a decision from the
      wrong role is refused outright, never reassigned.
    - record() flushes but does not commit; the workflow gateway owns the
      transaction so the ledger write and the stage advance land together.
    - record() never touches Proposal.canonical_status.

Usage:
    from app.services import endorsement_ledger

    rec = endorsement_ledger.record(
        proposal_id=7, stage_ordinal=1,
        issuer_role="CollegeCommittee", issuer_id="u-12",
        decision="Approved",
    )
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ProposalNotAtStageError,
    ProposalNotFoundError,
    RoleMismatchError,
    StageAlreadyDecidedError,
    StageNotFoundError,
    ValidationError,
)
from app.models import db
from app.models.endorsement import (
    DECISIVE_DECISIONS,
    DECISIVE_INDEX_NAME,
    DECISION_REVISION_REQUESTED,
    VALID_DECISIONS,
    EndorsementRecord,
)
from app.models.proposal import Proposal
from app.services import stage_catalog

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _chronological(stmt):
    return stmt.order_by(EndorsementRecord.issued_at.asc(), EndorsementRecord.id.asc())


def _decisive_record(proposal_id: int, stage_ordinal: int) -> EndorsementRecord | None:
    """Earliest Approved/Rejected record at the stage, if any."""
    return db.session.execute(
        _chronological(
            select(EndorsementRecord).where(
                EndorsementRecord.proposal_id == proposal_id,
                EndorsementRecord.stage_ordinal == stage_ordinal,
                EndorsementRecord.decision.in_(DECISIVE_DECISIONS),
            )
        ).limit(1)
    ).scalar_one_or_none()


def _is_decisive_index_violation(error: IntegrityError) -> bool:
    msg = str(error.orig)
    if DECISIVE_INDEX_NAME in msg:
        return True
    # SQLite names the columns, not the index
    return "UNIQUE constraint failed" in msg and "endorsement_records.stage_ordinal" in msg


def _optional_text(value, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "not a string"})
    return value.strip() or None


class EndorsementHistory:
    """Lazy, restartable view of a proposal's endorsement records.

    Nothing is read until iteration starts; every new iteration re-queries
    the store, so a second pass sees records appended since the first.
    """

    def __init__(self, proposal_id: int) -> None:
        self.proposal_id = proposal_id

    def _statement(self):
        return _chronological(
            select(EndorsementRecord).where(EndorsementRecord.proposal_id == self.proposal_id)
        )

    def __iter__(self) -> Iterator[EndorsementRecord]:
        yield from db.session.execute(self._statement()).scalars()

    def to_list(self) -> list[dict]:
        return [r.to_dict() for r in self]


# ── Public API ─────────────────────────────────────────────────────────────────


def record(
    proposal_id: int,
    stage_ordinal: int,
    issuer_role: str,
    issuer_id: str,
    decision: str,
    comments: str | None = None,
) -> EndorsementRecord:
    """Validate and append one decision event.

    Checks run in this order so the most fundamental problem is reported:
        1. proposal exists                      → ProposalNotFoundError
        2. decision / stage / issuer well-formed → ValidationError
        3. issuer_role authorizes the stage      → RoleMismatchError
        4. stage not already decided             → StageAlreadyDecidedError
        5. proposal currently at this stage      → ProposalNotAtStageError

    A failed check leaves the ledger untouched.

    Returns:
        The new, flushed EndorsementRecord (id assigned, not yet committed).
    """
    proposal = db.session.get(Proposal, proposal_id)
    if proposal is None:
        raise ProposalNotFoundError(proposal_id)

    if not isinstance(decision, str) or decision not in VALID_DECISIONS:
        raise ValidationError(
            f"Invalid decision '{decision}'. Must be one of: {', '.join(sorted(VALID_DECISIONS))}",
            details={"decision": decision},
        )
    if not isinstance(issuer_id, str) or not issuer_id.strip():
        raise ValidationError("issuer_id is required", details={"issuer_id": "missing"})
    comments = _optional_text(comments, "comments")
    try:
        expected_role = stage_catalog.authorized_role(stage_ordinal)
    except StageNotFoundError:
        raise ValidationError(
            f"stage_ordinal must be between 1 and {stage_catalog.FINAL_STAGE}",
            details={"stage_ordinal": stage_ordinal},
        ) from None

    if issuer_role != expected_role:
        logger.warning(
            "Endorsement refused: role mismatch",
            extra={
                "proposal_id": proposal_id,
                "stage_ordinal": stage_ordinal,
                "issuer_role": issuer_role,
                "event_type": "endorsement.role_mismatch",
            },
        )
        raise RoleMismatchError(stage_ordinal, expected_role, issuer_role)

    existing = _decisive_record(proposal_id, stage_ordinal)
    if existing is not None:
        raise StageAlreadyDecidedError(proposal_id, stage_ordinal, existing.decision)

    # Deferred import: the state machine reads this module's queries.
    from app.services.proposal_state_machine import derive_progress

    progress = derive_progress(proposal_id)
    if proposal.is_terminal or progress.current_stage_ordinal != stage_ordinal:
        raise ProposalNotAtStageError(
            proposal_id,
            stage_ordinal,
            progress.current_stage_ordinal,
            proposal.canonical_status,
        )

    rec = EndorsementRecord(
        proposal_id=proposal_id,
        stage_ordinal=stage_ordinal,
        issuer_role=issuer_role,
        issuer_id=issuer_id.strip(),
        decision=decision,
        comments=comments,
    )
    db.session.add(rec)
    try:
        db.session.flush()
    except IntegrityError as e:
        if not _is_decisive_index_violation(e):
            raise
        # A concurrent request decided the stage first; the gateway rolls back.
        raise StageAlreadyDecidedError(proposal_id, stage_ordinal) from None

    logger.info(
        "Endorsement recorded",
        extra={
            "proposal_id": proposal_id,
            "stage_ordinal": stage_ordinal,
            "issuer_role": issuer_role,
            "decision": decision,
            "event_type": "endorsement.recorded",
        },
    )
    return rec


def decisions_at(proposal_id: int, stage_ordinal: int) -> list[EndorsementRecord]:
    """All records at one stage, oldest first."""
    return list(
        db.session.execute(
            _chronological(
                select(EndorsementRecord).where(
                    EndorsementRecord.proposal_id == proposal_id,
                    EndorsementRecord.stage_ordinal == stage_ordinal,
                )
            )
        ).scalars()
    )


def latest_decision(proposal_id: int, stage_ordinal: int) -> EndorsementRecord | None:
    """Return the decision that governs the stage.

    The authoritative Approved/Rejected record wins (earliest one if the
    store somehow holds several).  Otherwise the most recent
    RevisionRequested record, otherwise None.
    """
    decisive = _decisive_record(proposal_id, stage_ordinal)
    if decisive is not None:
        return decisive
    return db.session.execute(
        select(EndorsementRecord)
        .where(
            EndorsementRecord.proposal_id == proposal_id,
            EndorsementRecord.stage_ordinal == stage_ordinal,
            EndorsementRecord.decision == DECISION_REVISION_REQUESTED,
        )
        .order_by(EndorsementRecord.issued_at.desc(), EndorsementRecord.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def history(proposal_id: int) -> EndorsementHistory:
    """Return the proposal's records ordered by issued_at (lazy, restartable)."""
    return EndorsementHistory(proposal_id)


def records_for_issuer(issuer_id: str) -> list[EndorsementRecord]:
    """Every decision a given user has issued, newest first."""
    return list(
        db.session.execute(
            select(EndorsementRecord)
            .where(EndorsementRecord.issuer_id == str(issuer_id))
            .order_by(EndorsementRecord.issued_at.desc(), EndorsementRecord.id.desc())
        ).scalars()
    )
