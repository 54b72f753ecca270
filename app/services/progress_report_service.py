"""
Progress Report Service.

Accepts progress reports for proposals that have reached Implementation and
folds them into per-unit summaries for dashboards.

Rules:
  - A report is accepted only when the proposal's derived current stage is
    at or past the implementation boundary (stage 8) and the proposal is
    not Rejected.
  - achievements is capped at PROGRESS_REPORT_MAX_WORDS words (default 250;
    a word is a maximal run of non-whitespace).  Over-long text is refused,
    never truncated.
  - Per-unit summaries are recomputed on every call; there is no stored
    aggregate to go stale.
  - RDD sees every report; any other caller sees only the reports they
    submitted.  A hidden report looks the same as a missing one.
  - submit() flushes; the workflow gateway commits.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from flask import current_app, has_app_context
from sqlalchemy import false, select

from app.core.exceptions import (
    AchievementsTooLongError,
    NotYetImplementingError,
    ProgressReportNotFoundError,
    ProposalNotFoundError,
    ValidationError,
)
from app.models import db
from app.models.progress_report import REPORT_TYPES, VALID_REPORT_TYPES, ProgressReport
from app.models.proposal import STATUS_REJECTED, Proposal
from app.services import stage_catalog
from app.services.stage_catalog import ROLE_RDD
from app.services.proposal_state_machine import derive_progress

logger = logging.getLogger(__name__)

ACHIEVEMENTS_MAX_WORDS = 250


def _word_limit() -> int:
    if has_app_context():
        return int(current_app.config.get("PROGRESS_REPORT_MAX_WORDS", ACHIEVEMENTS_MAX_WORDS))
    return ACHIEVEMENTS_MAX_WORDS


def _recency_key(report: ProgressReport) -> tuple[datetime, int]:
    ts = report.submitted_at or datetime.min
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts, report.id or 0


def count_words(text: str) -> int:
    """Number of maximal non-whitespace runs in ``text``."""
    return len((text or "").split())


def _required_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={field: "missing"})
    return value.strip()


def _optional_text(value, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "not a string"})
    return value.strip() or None


def _clean_attachments(attachments) -> list[str]:
    if attachments is None:
        return []
    if not isinstance(attachments, (list, tuple)):
        raise ValidationError("attachments must be a list of file handles",
                              details={"attachments": "not a list"})
    handles = []
    for handle in attachments:
        if not isinstance(handle, str) or not handle.strip():
            raise ValidationError("attachment handles must be non-empty strings",
                                  details={"attachments": repr(handle)})
        handles.append(handle.strip())
    return handles


def _clean_percentage(value) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("progress_percentage must be an integer 0-100")
    try:
        pct = int(value)
    except (TypeError, ValueError):
        raise ValidationError("progress_percentage must be an integer 0-100",
                              details={"progress_percentage": value}) from None
    if not 0 <= pct <= 100:
        raise ValidationError("progress_percentage must be an integer 0-100",
                              details={"progress_percentage": pct})
    return pct


def _clean_budget(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("budget_utilized must be a number",
                              details={"budget_utilized": value}) from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError("budget_utilized must be ≥ 0", details={"budget_utilized": str(value)})
    return amount


# ── Public API ─────────────────────────────────────────────────────────────────


def submit(
    proposal_id: int,
    report_type: str,
    achievements: str,
    next_milestone: str,
    attachments: list[str] | None = None,
    *,
    report_period: str | None = None,
    progress_percentage: int | None = None,
    budget_utilized=None,
    challenges: str | None = None,
    additional_notes: str | None = None,
    submitted_by: str | None = None,
) -> ProgressReport:
    """Validate and store one progress report.

    Raises:
        ProposalNotFoundError: unknown proposal.
        ValidationError: malformed input.
        NotYetImplementingError: proposal has not reached stage 8, or was rejected.
        AchievementsTooLongError: achievements over the word limit.
    """
    proposal = db.session.get(Proposal, proposal_id)
    if proposal is None:
        raise ProposalNotFoundError(proposal_id)

    if not isinstance(report_type, str) or report_type not in VALID_REPORT_TYPES:
        raise ValidationError(
            f"Invalid report_type '{report_type}'. Must be one of: {', '.join(REPORT_TYPES)}",
            details={"report_type": report_type},
        )
    achievements = _required_text(achievements, "achievements")
    next_milestone = _required_text(next_milestone, "next_milestone")
    handles = _clean_attachments(attachments)
    pct = _clean_percentage(progress_percentage)
    budget = _clean_budget(budget_utilized)
    report_period = _optional_text(report_period, "report_period")
    challenges = _optional_text(challenges, "challenges")
    additional_notes = _optional_text(additional_notes, "additional_notes")

    progress = derive_progress(proposal_id)
    if (
        progress.canonical_status == STATUS_REJECTED
        or progress.current_stage_ordinal < stage_catalog.IMPLEMENTATION_BOUNDARY
    ):
        raise NotYetImplementingError(
            proposal_id, progress.current_stage_ordinal, progress.canonical_status,
        )

    limit = _word_limit()
    words = count_words(achievements)
    if words > limit:
        raise AchievementsTooLongError(words, limit)

    report = ProgressReport(
        proposal_id=proposal_id,
        report_type=report_type,
        submitting_unit=proposal.submitting_unit,
        report_period=report_period,
        progress_percentage=pct,
        budget_utilized=budget,
        achievements=achievements,
        challenges=challenges,
        next_milestone=next_milestone,
        additional_notes=additional_notes,
        attachments=handles,
        submitted_by=str(submitted_by) if submitted_by else None,
    )
    db.session.add(report)
    db.session.flush()

    logger.info(
        "Progress report submitted",
        extra={
            "proposal_id": proposal_id,
            "event_type": "progress_report.submitted",
        },
    )
    return report


def summary_by_unit() -> dict[str, dict]:
    """Fold every stored report into {unit: {report_count, most_recent_report}}.

    most_recent_report is the max by submitted_at; equal timestamps resolve
    to the higher id.  Deterministic for a given report set.
    """
    summary: dict[str, dict] = {}
    latest: dict[str, ProgressReport] = {}
    reports = db.session.execute(select(ProgressReport).order_by(ProgressReport.id)).scalars()
    for report in reports:
        bucket = summary.setdefault(report.submitting_unit, {"report_count": 0})
        bucket["report_count"] += 1
        best = latest.get(report.submitting_unit)
        if best is None or _recency_key(report) > _recency_key(best):
            latest[report.submitting_unit] = report

    for unit, bucket in summary.items():
        bucket["most_recent_report"] = latest[unit].to_dict()
    return summary


def reports_for_proposal(proposal_id: int) -> list[ProgressReport]:
    """All reports for one proposal, newest first."""
    if db.session.get(Proposal, proposal_id) is None:
        raise ProposalNotFoundError(proposal_id)
    reports = db.session.execute(
        select(ProgressReport).where(ProgressReport.proposal_id == proposal_id)
    ).scalars().all()
    return sorted(reports, key=_recency_key, reverse=True)


def _visible_to(stmt, role: str | None, user_id: str | None):
    # RDD oversees every report; everyone else sees only what they filed.
    if role == ROLE_RDD:
        return stmt
    if not user_id:
        return stmt.where(false())
    return stmt.where(ProgressReport.submitted_by == str(user_id))


def reports_for_user(role: str | None, user_id: str | None) -> list[ProgressReport]:
    """Reports the caller may see, newest first."""
    reports = db.session.execute(
        _visible_to(select(ProgressReport), role, user_id)
    ).scalars().all()
    return sorted(reports, key=_recency_key, reverse=True)


def get_report(report_id: int, role: str | None, user_id: str | None) -> ProgressReport:
    """One report by id.  A report the caller may not see is reported as missing."""
    report = db.session.execute(
        _visible_to(select(ProgressReport).where(ProgressReport.id == report_id), role, user_id)
    ).scalar_one_or_none()
    if report is None:
        raise ProgressReportNotFoundError(report_id)
    return report
