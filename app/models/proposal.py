"""
Proposal model — the unit of work that moves through the approval pipeline.

The workflow engine owns every row once it is created:
    - canonical_status is written only by
      proposal_state_machine.advance_canonical_status().
    - current_stage_ordinal is written only by proposal_state_machine.
    - version_id is SQLAlchemy's optimistic-lock counter; two writers racing
      on the same proposal cannot both commit.

Canonical status follows the stage pointer:
    stages 1..7 current   → UnderReview
    stage 8 current       → Approved   (Implementation)
    stages 9..10 current  → Ongoing    (Monitoring / For Completion)
    stage 10 approved     → Completed
    any stage rejected    → Rejected
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

STATUS_UNDER_REVIEW = "UnderReview"
STATUS_APPROVED = "Approved"
STATUS_REJECTED = "Rejected"
STATUS_ONGOING = "Ongoing"
STATUS_COMPLETED = "Completed"

VALID_STATUSES = frozenset({
    STATUS_UNDER_REVIEW,
    STATUS_APPROVED,
    STATUS_REJECTED,
    STATUS_ONGOING,
    STATUS_COMPLETED,
})

TERMINAL_STATUSES = frozenset({STATUS_REJECTED, STATUS_COMPLETED})

# Forward order of the non-rejected statuses.  Rejected sits outside the order.
STATUS_ORDER = (
    STATUS_UNDER_REVIEW,
    STATUS_APPROVED,
    STATUS_ONGOING,
    STATUS_COMPLETED,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Proposal(db.Model):
    """A research proposal submitted by a proponent on behalf of a unit."""

    __tablename__ = "proposals"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    submitting_unit = db.Column(
        db.String(200),
        nullable=False,
        index=True,
        comment="Department or research center the proposal is filed under",
    )
    budget = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # Narrative fields carried over from the submission form
    description = db.Column(db.Text, nullable=True)
    objectives = db.Column(db.Text, nullable=True)
    research_agenda = db.Column(db.JSON, nullable=True, default=list)

    proponent_id = db.Column(
        db.String(64),
        nullable=True,
        index=True,
        comment="Opaque user id supplied by the identity provider",
    )

    canonical_status = db.Column(
        db.String(20),
        nullable=False,
        default=STATUS_UNDER_REVIEW,
        index=True,
        comment="UnderReview | Approved | Rejected | Ongoing | Completed",
    )
    current_stage_ordinal = db.Column(
        db.Integer,
        nullable=False,
        default=1,
        comment="1..10; on Rejected it stays on the rejected stage",
    )

    version_id = db.Column(db.Integer, nullable=False)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    endorsements = db.relationship(
        "EndorsementRecord",
        back_populates="proposal",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="EndorsementRecord.issued_at",
    )
    progress_reports = db.relationship(
        "ProgressReport",
        back_populates="proposal",
        lazy="select",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        db.CheckConstraint("budget >= 0", name="ck_proposals_budget_non_negative"),
        db.CheckConstraint(
            "current_stage_ordinal BETWEEN 1 AND 10",
            name="ck_proposals_stage_range",
        ),
        db.Index("ix_proposals_unit_status", "submitting_unit", "canonical_status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.canonical_status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "submitting_unit": self.submitting_unit,
            "budget": str(self.budget) if self.budget is not None else None,
            "description": self.description,
            "objectives": self.objectives,
            "research_agenda": self.research_agenda or [],
            "proponent_id": self.proponent_id,
            "canonical_status": self.canonical_status,
            "current_stage_ordinal": self.current_stage_ordinal,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Proposal #{self.id} stage={self.current_stage_ordinal} {self.canonical_status}>"
