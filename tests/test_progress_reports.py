"""
Tests: progress reports — implementation gating, word limit, unit summaries.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import (
    AchievementsTooLongError,
    NotYetImplementingError,
    ProgressReportNotFoundError,
    ProposalNotFoundError,
    ValidationError,
)
from app.models import db as _db
from app.models.progress_report import ProgressReport
from app.services import progress_report_service, stage_catalog, workflow_gateway


# ── Helpers ──────────────────────────────────────────────────────────────────


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


def _submit(proposal_id: int, **kwargs) -> dict:
    return workflow_gateway.submit_progress_report(
        proposal_id,
        kwargs.pop("report_type", "Interim"),
        kwargs.pop("achievements", _words(180)),
        kwargs.pop("next_milestone", "Phase 2 start"),
        kwargs.pop("attachments", []),
        **kwargs,
    )


def _new_proposal(unit: str) -> int:
    return workflow_gateway.submit_proposal("Study", unit, 1000, proponent_id="u-p")["id"]


def _report_count() -> int:
    return ProgressReport.query.count()


# ── Word counting ────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "text, expected",
    [("", 0), ("   ", 0), ("one", 1), ("two  words", 2), ("tabs\tand\nnewlines here", 4)],
)
def test_count_words(text, expected):
    assert progress_report_service.count_words(text) == expected


# ── Scenario walkthroughs ────────────────────────────────────────────────────


def test_scenario_c_report_accepted_at_implementation(implementing_proposal):
    report = _submit(implementing_proposal["id"])

    assert report["id"] is not None
    assert report["submitting_unit"] == "College of Agriculture"

    units = workflow_gateway.list_unit_progress()
    assert units == [{
        "unit": "College of Agriculture",
        "report_count": 1,
        "most_recent_report": report,
    }]


def test_scenario_d_overlong_achievements_refused(implementing_proposal):
    with pytest.raises(AchievementsTooLongError) as exc:
        _submit(implementing_proposal["id"], achievements=_words(260))

    assert exc.value.word_count == 260
    assert exc.value.limit == 250
    assert _report_count() == 0


def test_exactly_250_words_accepted(implementing_proposal):
    _submit(implementing_proposal["id"], achievements=_words(250))
    assert _report_count() == 1


def test_word_limit_is_configurable(app, implementing_proposal, monkeypatch):
    monkeypatch.setitem(app.config, "PROGRESS_REPORT_MAX_WORDS", 10)
    with pytest.raises(AchievementsTooLongError):
        _submit(implementing_proposal["id"], achievements=_words(11))


# ── Implementation gating ────────────────────────────────────────────────────


def test_report_before_implementation_refused(proposal):
    with pytest.raises(NotYetImplementingError) as exc:
        _submit(proposal["id"])

    assert exc.value.current_stage == 1
    assert exc.value.current_progress["current_stage_ordinal"] == 1
    assert _report_count() == 0


def test_report_at_stage_seven_refused(proposal, approve_through):
    approve_through(proposal["id"], 6)
    with pytest.raises(NotYetImplementingError):
        _submit(proposal["id"])


def test_gate_check_is_idempotent(proposal):
    """Repeated refusals leave the proposal untouched."""
    before = workflow_gateway.get_progress(proposal["id"])
    for _ in range(3):
        with pytest.raises(NotYetImplementingError):
            _submit(proposal["id"])
    assert workflow_gateway.get_progress(proposal["id"]) == before


def test_report_on_rejected_proposal_refused(proposal):
    workflow_gateway.record_endorsement(proposal["id"], 1, "CollegeCommittee", "u-1", "Rejected")
    with pytest.raises(NotYetImplementingError):
        _submit(proposal["id"])


def test_reports_accepted_while_ongoing_and_completed(implementing_proposal):
    pid = implementing_proposal["id"]
    for ordinal in (8, 9):
        workflow_gateway.record_endorsement(
            pid, ordinal, stage_catalog.authorized_role(ordinal), "u-1", "Approved",
        )
    _submit(pid, report_type="Quarterly")
    workflow_gateway.record_endorsement(pid, 10, "RDD", "u-1", "Approved")
    _submit(pid, report_type="Final")

    assert _report_count() == 2


def test_report_unknown_proposal_raises():
    with pytest.raises(ProposalNotFoundError):
        _submit(12345)


# ── Input validation ─────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "overrides",
    [
        {"report_type": "Monthly"},
        {"achievements": "   "},
        {"next_milestone": ""},
        {"attachments": "file-1"},
        {"attachments": ["ok", ""]},
        {"progress_percentage": 101},
        {"progress_percentage": "lots"},
        {"budget_utilized": "-5"},
        {"report_type": ["Interim"]},
        {"report_period": 2025},
        {"challenges": ["late"]},
        {"additional_notes": {"note": 1}},
    ],
)
def test_invalid_input_raises_validation(implementing_proposal, overrides):
    with pytest.raises(ValidationError):
        _submit(implementing_proposal["id"], **overrides)
    assert _report_count() == 0


def test_optional_fields_are_stored(implementing_proposal):
    report = _submit(
        implementing_proposal["id"],
        attachments=["blob://reports/1.pdf"],
        report_period="Q1 2025",
        progress_percentage=40,
        budget_utilized="12500.50",
        challenges="Supplier delay",
        submitted_by="u-cm",
    )

    assert report["attachments"] == ["blob://reports/1.pdf"]
    assert report["report_period"] == "Q1 2025"
    assert report["progress_percentage"] == 40
    assert report["budget_utilized"] == "12500.50"
    assert report["challenges"] == "Supplier delay"
    assert report["submitted_by"] == "u-cm"


# ── Unit summaries ───────────────────────────────────────────────────────────


def test_unit_summary_counts_and_latest_per_unit(approve_through):
    agri = _new_proposal("College of Agriculture")
    eng = _new_proposal("College of Engineering")
    approve_through(agri, 7)
    approve_through(eng, 7)

    _submit(agri, report_type="Interim")
    latest_agri = _submit(agri, report_type="Quarterly")
    only_eng = _submit(eng, report_type="Annual")

    units = {u["unit"]: u for u in workflow_gateway.list_unit_progress()}
    assert units["College of Agriculture"]["report_count"] == 2
    assert units["College of Agriculture"]["most_recent_report"]["id"] == latest_agri["id"]
    assert units["College of Engineering"]["report_count"] == 1
    assert units["College of Engineering"]["most_recent_report"]["id"] == only_eng["id"]


def test_unit_summary_equal_timestamps_resolve_to_higher_id(implementing_proposal):
    first = _submit(implementing_proposal["id"])
    second = _submit(implementing_proposal["id"])
    stamp = datetime(2025, 3, 1, tzinfo=timezone.utc)
    for report in ProgressReport.query.all():
        report.submitted_at = stamp
    _db.session.commit()

    summary = progress_report_service.summary_by_unit()
    assert summary["College of Agriculture"]["most_recent_report"]["id"] == max(first["id"], second["id"])


def test_unit_summary_uses_submission_time_not_insert_order(implementing_proposal):
    older = _submit(implementing_proposal["id"])
    newer = _submit(implementing_proposal["id"])
    row = _db.session.get(ProgressReport, older["id"])
    row.submitted_at = datetime.now(timezone.utc) + timedelta(days=1)
    _db.session.commit()

    summary = progress_report_service.summary_by_unit()
    assert summary["College of Agriculture"]["most_recent_report"]["id"] == older["id"]
    assert newer["id"] != older["id"]


def test_unit_summary_empty():
    assert workflow_gateway.list_unit_progress() == []


def test_reports_for_proposal_newest_first(implementing_proposal):
    first = _submit(implementing_proposal["id"])
    second = _submit(implementing_proposal["id"], report_type="Quarterly")

    items = workflow_gateway.list_proposal_reports(implementing_proposal["id"])
    assert [r["id"] for r in items] == [second["id"], first["id"]]


# ── Caller-scoped listing and lookup ─────────────────────────────────────────


def test_rdd_sees_every_report_newest_first(implementing_proposal):
    mine = _submit(implementing_proposal["id"], submitted_by="u-cm")
    theirs = _submit(implementing_proposal["id"], submitted_by="u-other")

    items = workflow_gateway.list_user_reports("RDD", "u-rdd")
    assert [r["id"] for r in items] == [theirs["id"], mine["id"]]


def test_other_roles_see_only_their_own_reports(implementing_proposal):
    mine = _submit(implementing_proposal["id"], submitted_by="u-cm")
    _submit(implementing_proposal["id"], submitted_by="u-other")

    items = workflow_gateway.list_user_reports("CM", "u-cm")
    assert [r["id"] for r in items] == [mine["id"]]
    assert workflow_gateway.list_user_reports("CM", "u-nobody") == []


def test_get_report_by_id(implementing_proposal):
    report = _submit(implementing_proposal["id"], submitted_by="u-cm")

    assert workflow_gateway.get_report(report["id"], "CM", "u-cm") == report
    assert workflow_gateway.get_report(report["id"], "RDD", "u-rdd") == report


def test_get_report_hidden_from_other_users(implementing_proposal):
    report = _submit(implementing_proposal["id"], submitted_by="u-cm")

    with pytest.raises(ProgressReportNotFoundError):
        workflow_gateway.get_report(report["id"], "CM", "u-other")


def test_get_report_unknown_id():
    with pytest.raises(ProgressReportNotFoundError):
        workflow_gateway.get_report(999, "RDD", "u-rdd")
