"""
Workflow Gateway — the façade API handlers call.

One function per external use case, no business rules of its own:

    submit_proposal        → create + state machine initialize
    record_endorsement     → ledger record + state machine advance (one unit)
    get_proposal_view      → proposal + derived progress + endorsement history
    submit_progress_report → progress report service submit
    list_unit_progress     → progress report service summary
    list_user_reports      → reports the caller may see
    get_report             → one report, scoped the same way

Rules:
  - db.session.commit() happens only in this file; the services below flush.
  - Every failure rolls the session back, so no call leaves a partial effect.
  - record_endorsement locks the proposal row (SELECT … FOR UPDATE) and the
    proposal's version_id counter catches any writer that slips past the
    lock.  Locking is per proposal, never global.
  - State-consistency errors leave with the current derived progress
    attached (error.current_progress) so callers can resynchronise.
  - Everything returned is plain dict/list data.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    ConflictError,
    ProposalNotFoundError,
    StateConsistencyError,
    ValidationError,
)
from app.models import db
from app.models.proposal import Proposal
from app.services import endorsement_ledger, progress_report_service, stage_catalog
from app.services import proposal_state_machine as psm

logger = logging.getLogger(__name__)

_TITLE_MAX = 255
_UNIT_MAX = 200


# ── Private helpers ────────────────────────────────────────────────────────────


def _lock_proposal(proposal_id: int) -> Proposal:
    proposal = db.session.execute(
        select(Proposal)
        .where(Proposal.id == proposal_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if proposal is None:
        raise ProposalNotFoundError(proposal_id)
    return proposal


def _attach_progress(error: StateConsistencyError, proposal_id: int) -> None:
    try:
        error.current_progress = psm.derive_progress(proposal_id).to_dict()
    except ProposalNotFoundError:
        error.current_progress = None


def _commit(proposal_id: int | None = None) -> None:
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent update lost the race",
            extra={"proposal_id": proposal_id, "event_type": "proposal.stale_write"},
        )
        raise ConflictError("Proposal", "version_id", str(proposal_id)) from None


def _required(value, field: str, max_len: int) -> str:
    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(f"{field} is required", details={field: "missing"})
    if len(text) > max_len:
        raise ValidationError(f"{field} must be ≤ {max_len} characters", details={field: "too long"})
    return text


def _optional(value, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "not a string"})
    return value.strip() or None


def _budget(value) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError("budget is required", details={"budget": "missing"})
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("budget must be a number", details={"budget": value}) from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError("budget must be ≥ 0", details={"budget": str(value)})
    return amount.quantize(Decimal("0.01"))


def _agenda(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError("research_agenda must be a list of strings",
                              details={"research_agenda": "invalid"})
    return [v.strip() for v in value if v.strip()]


# ── Public API ─────────────────────────────────────────────────────────────────


def submit_proposal(
    title: str,
    submitting_unit: str,
    budget,
    *,
    description: str | None = None,
    objectives: str | None = None,
    research_agenda: list[str] | None = None,
    proponent_id: str | None = None,
) -> dict:
    """Create a proposal and place it at stage 1 / UnderReview."""
    proposal = Proposal(
        title=_required(title, "title", _TITLE_MAX),
        submitting_unit=_required(submitting_unit, "submitting_unit", _UNIT_MAX),
        budget=_budget(budget),
        description=_optional(description, "description"),
        objectives=_optional(objectives, "objectives"),
        research_agenda=_agenda(research_agenda),
        proponent_id=str(proponent_id) if proponent_id else None,
    )
    psm.initialize(proposal)
    db.session.add(proposal)
    _commit()

    logger.info(
        "Proposal submitted",
        extra={"proposal_id": proposal.id, "event_type": "proposal.submitted"},
    )
    return proposal.to_dict()


def record_endorsement(
    proposal_id: int,
    stage_ordinal: int,
    issuer_role: str,
    issuer_id: str,
    decision: str,
    comments: str | None = None,
) -> dict:
    """Record a decision and advance the proposal as one atomic unit.

    Returns:
        {"endorsement": {...}, "derived_progress": {...}}
    """
    try:
        _lock_proposal(proposal_id)
        record = endorsement_ledger.record(
            proposal_id, stage_ordinal, issuer_role, issuer_id, decision, comments,
        )
        progress = psm.advance(proposal_id)
        _commit(proposal_id)
    except StateConsistencyError as e:
        db.session.rollback()
        _attach_progress(e, proposal_id)
        raise
    except StaleDataError:
        # version_id check failed at the advance() flush
        db.session.rollback()
        raise ConflictError("Proposal", "version_id", str(proposal_id)) from None
    except Exception:
        db.session.rollback()
        raise

    return {"endorsement": record.to_dict(), "derived_progress": progress.to_dict()}


def get_proposal_view(proposal_id: int) -> dict:
    proposal = db.session.get(Proposal, proposal_id)
    if proposal is None:
        raise ProposalNotFoundError(proposal_id)
    return {
        "proposal": proposal.to_dict(),
        "derived_progress": psm.derive_progress(proposal_id).to_dict(),
        "endorsement_history": endorsement_ledger.history(proposal_id).to_list(),
    }


def get_progress(proposal_id: int) -> dict:
    return psm.derive_progress(proposal_id).to_dict()


def list_endorsements(proposal_id: int) -> list[dict]:
    if db.session.get(Proposal, proposal_id) is None:
        raise ProposalNotFoundError(proposal_id)
    return endorsement_ledger.history(proposal_id).to_list()


def list_issuer_endorsements(issuer_id: str) -> list[dict]:
    return [r.to_dict() for r in endorsement_ledger.records_for_issuer(issuer_id)]


def list_stages() -> list[dict]:
    return [s.to_dict() for s in stage_catalog.all_stages()]


def submit_progress_report(
    proposal_id: int,
    report_type: str,
    achievements: str,
    next_milestone: str,
    attachments: list[str] | None = None,
    **optional,
) -> dict:
    """Store a progress report.  ``optional`` carries report_period,
    progress_percentage, budget_utilized, challenges, additional_notes and
    submitted_by straight through to the service."""
    try:
        report = progress_report_service.submit(
            proposal_id, report_type, achievements, next_milestone, attachments, **optional,
        )
        _commit(proposal_id)
    except StateConsistencyError as e:
        db.session.rollback()
        _attach_progress(e, proposal_id)
        raise
    except Exception:
        db.session.rollback()
        raise
    return report.to_dict()


def list_proposal_reports(proposal_id: int) -> list[dict]:
    return [r.to_dict() for r in progress_report_service.reports_for_proposal(proposal_id)]


def list_user_reports(role: str | None, user_id: str | None) -> list[dict]:
    return [r.to_dict() for r in progress_report_service.reports_for_user(role, user_id)]


def get_report(report_id: int, role: str | None, user_id: str | None) -> dict:
    return progress_report_service.get_report(report_id, role, user_id).to_dict()


def list_unit_progress() -> list[dict]:
    """[{unit, report_count, most_recent_report}] sorted by unit name."""
    summary = progress_report_service.summary_by_unit()
    return [
        {
            "unit": unit,
            "report_count": bucket["report_count"],
            "most_recent_report": bucket["most_recent_report"],
        }
        for unit, bucket in sorted(summary.items())
    ]
