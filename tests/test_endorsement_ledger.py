"""
Tests: endorsement ledger — role gating, single authority per stage, history.

The ledger is exercised both directly (record() flushes only) and through the
workflow gateway where the test needs a committed, advanced proposal.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ProposalNotAtStageError,
    ProposalNotFoundError,
    RoleMismatchError,
    StageAlreadyDecidedError,
    ValidationError,
)
from app.models import db as _db
from app.models.endorsement import EndorsementRecord
from app.services import endorsement_ledger, stage_catalog, workflow_gateway


# ── Helpers ──────────────────────────────────────────────────────────────────


def _decide(proposal_id: int, ordinal: int, decision: str = "Approved", **kwargs):
    role = kwargs.pop("role", stage_catalog.authorized_role(ordinal))
    issuer_id = kwargs.pop("issuer_id", "u-1")
    return workflow_gateway.record_endorsement(
        proposal_id, ordinal, role, issuer_id, decision, kwargs.pop("comments", None),
    )


def _insert_record(proposal_id: int, ordinal: int, decision: str, issued_at=None) -> EndorsementRecord:
    rec = EndorsementRecord(
        proposal_id=proposal_id,
        stage_ordinal=ordinal,
        issuer_role=stage_catalog.authorized_role(ordinal),
        issuer_id="u-direct",
        decision=decision,
        issued_at=issued_at or datetime.now(timezone.utc),
    )
    _db.session.add(rec)
    _db.session.commit()
    return rec


def _record_count(proposal_id: int) -> int:
    return EndorsementRecord.query.filter_by(proposal_id=proposal_id).count()


# ── record() ─────────────────────────────────────────────────────────────────


def test_record_creates_entry_for_authorized_role(proposal):
    rec = endorsement_ledger.record(
        proposal["id"], 1, "CollegeCommittee", "u-12", "Approved", "  Looks solid  ",
    )

    assert rec.id is not None
    assert rec.decision == "Approved"
    assert rec.issuer_id == "u-12"
    assert rec.comments == "Looks solid"


def test_record_unknown_proposal_raises_not_found():
    with pytest.raises(ProposalNotFoundError):
        endorsement_ledger.record(999, 1, "CollegeCommittee", "u-1", "Approved")


def test_record_wrong_role_is_refused_and_not_stored(proposal):
    """A decision from the wrong role is refused outright, never reassigned."""
    with pytest.raises(RoleMismatchError) as exc:
        endorsement_ledger.record(proposal["id"], 1, "RDD", "u-1", "Approved")

    assert exc.value.expected_role == "CollegeCommittee"
    assert exc.value.actual_role == "RDD"
    _db.session.rollback()
    assert _record_count(proposal["id"]) == 0


@pytest.mark.parametrize("decision", ["Approve", "approved", "", None, 5, ["Approved"]])
def test_record_invalid_decision_raises_validation(proposal, decision):
    with pytest.raises(ValidationError):
        endorsement_ledger.record(proposal["id"], 1, "CollegeCommittee", "u-1", decision)


@pytest.mark.parametrize("ordinal", [0, 11])
def test_record_out_of_range_stage_raises_validation(proposal, ordinal):
    with pytest.raises(ValidationError):
        endorsement_ledger.record(proposal["id"], ordinal, "CollegeCommittee", "u-1", "Approved")


def test_record_requires_issuer_id(proposal):
    with pytest.raises(ValidationError):
        endorsement_ledger.record(proposal["id"], 1, "CollegeCommittee", "  ", "Approved")


def test_record_for_future_stage_raises_not_at_stage(proposal):
    with pytest.raises(ProposalNotAtStageError) as exc:
        endorsement_ledger.record(proposal["id"], 3, "Reviewer", "u-1", "Approved")

    assert exc.value.current_stage == 1


def test_second_decisive_decision_raises_already_decided(proposal):
    _decide(proposal["id"], 1, "Approved")

    with pytest.raises(StageAlreadyDecidedError) as exc:
        _decide(proposal["id"], 1, "Rejected")

    assert exc.value.decision == "Approved"
    assert exc.value.current_progress["current_stage_ordinal"] == 2
    assert _record_count(proposal["id"]) == 1


def test_revision_requests_accumulate_without_moving_stage(proposal):
    _decide(proposal["id"], 1, "RevisionRequested", comments="Clarify budget")
    _decide(proposal["id"], 1, "RevisionRequested", comments="Still unclear")
    result = _decide(proposal["id"], 1, "Approved")

    assert _record_count(proposal["id"]) == 3
    assert result["derived_progress"]["current_stage_ordinal"] == 2


def test_decision_after_rejection_is_refused(proposal):
    _decide(proposal["id"], 1, "Rejected")

    with pytest.raises(ProposalNotAtStageError):
        _decide(proposal["id"], 2, "Approved")


def test_unique_index_blocks_second_decisive_row(proposal):
    """Storage-level backstop for the single-authority rule."""
    _insert_record(proposal["id"], 1, "Approved")
    _db.session.add(EndorsementRecord(
        proposal_id=proposal["id"], stage_ordinal=1, issuer_role="CollegeCommittee",
        issuer_id="u-2", decision="Rejected",
    ))
    with pytest.raises(IntegrityError):
        _db.session.flush()
    _db.session.rollback()


def test_unique_index_allows_many_revision_requests(proposal):
    _insert_record(proposal["id"], 1, "RevisionRequested")
    _insert_record(proposal["id"], 1, "RevisionRequested")
    _insert_record(proposal["id"], 1, "Approved")

    assert _record_count(proposal["id"]) == 3


def test_race_past_the_check_surfaces_as_already_decided(proposal, monkeypatch):
    """If a concurrent writer decides the stage between check and flush, the
    index rejects the insert and the caller sees StageAlreadyDecided."""
    _insert_record(proposal["id"], 1, "Approved")
    monkeypatch.setattr(endorsement_ledger, "_decisive_record", lambda p, s: None)

    with pytest.raises(StageAlreadyDecidedError):
        endorsement_ledger.record(proposal["id"], 1, "CollegeCommittee", "u-9", "Rejected")
    _db.session.rollback()
    assert _record_count(proposal["id"]) == 1


def test_lost_race_through_gateway_rolls_back_with_progress(proposal, monkeypatch):
    _insert_record(proposal["id"], 1, "Approved")
    monkeypatch.setattr(endorsement_ledger, "_decisive_record", lambda p, s: None)

    with pytest.raises(StageAlreadyDecidedError) as exc:
        _decide(proposal["id"], 1, "Rejected")

    assert exc.value.current_progress["current_stage_ordinal"] == 1
    assert _record_count(proposal["id"]) == 1


def test_other_integrity_errors_are_not_masked(proposal, monkeypatch):
    def _fk_failure():
        raise IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))

    monkeypatch.setattr(_db.session, "flush", _fk_failure)

    with pytest.raises(IntegrityError):
        endorsement_ledger.record(proposal["id"], 1, "CollegeCommittee", "u-9", "Approved")


def test_record_non_string_comments_raises_validation(proposal):
    with pytest.raises(ValidationError):
        endorsement_ledger.record(proposal["id"], 1, "CollegeCommittee", "u-1", "Approved", 42)
    assert _record_count(proposal["id"]) == 0


# ── Queries ──────────────────────────────────────────────────────────────────


def test_latest_decision_prefers_decisive_record(proposal):
    now = datetime.now(timezone.utc)
    _insert_record(proposal["id"], 1, "RevisionRequested", now - timedelta(minutes=5))
    approved = _insert_record(proposal["id"], 1, "Approved", now - timedelta(minutes=3))
    _insert_record(proposal["id"], 1, "RevisionRequested", now)

    assert endorsement_ledger.latest_decision(proposal["id"], 1).id == approved.id


def test_latest_decision_falls_back_to_newest_revision_request(proposal):
    now = datetime.now(timezone.utc)
    _insert_record(proposal["id"], 1, "RevisionRequested", now - timedelta(minutes=5))
    newest = _insert_record(proposal["id"], 1, "RevisionRequested", now)

    assert endorsement_ledger.latest_decision(proposal["id"], 1).id == newest.id


def test_latest_decision_none_for_untouched_stage(proposal):
    assert endorsement_ledger.latest_decision(proposal["id"], 1) is None


def test_history_is_chronological_and_restartable(proposal):
    _decide(proposal["id"], 1, "RevisionRequested")
    _decide(proposal["id"], 1, "Approved")

    hist = endorsement_ledger.history(proposal["id"])
    first_pass = [r.decision for r in hist]
    assert first_pass == ["RevisionRequested", "Approved"]

    _decide(proposal["id"], 2, "Approved")
    second_pass = [(r.stage_ordinal, r.decision) for r in hist]
    assert second_pass == [(1, "RevisionRequested"), (1, "Approved"), (2, "Approved")]


def test_records_for_issuer_newest_first(proposal):
    _decide(proposal["id"], 1, "Approved", issuer_id="u-77")
    _decide(proposal["id"], 2, "Approved", issuer_id="u-77")
    _decide(proposal["id"], 3, "Approved", issuer_id="u-other")

    records = endorsement_ledger.records_for_issuer("u-77")
    assert [r.stage_ordinal for r in records] == [2, 1]
