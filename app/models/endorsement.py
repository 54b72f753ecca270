"""
Endorsement ledger — EndorsementRecord model.

Every decision a reviewing role issues against a proposal creates one record.
Records are never mutated or deleted, so the table is the full audit trail of
the approval pipeline.

Business rules:
- At most one Approved or Rejected record per (proposal_id, stage_ordinal).
  The service checks first; the partial unique index below is the storage
  backstop when two requests race past the check.
- RevisionRequested records accumulate freely and never move the stage.
- issuer_role / issuer_id are snapshots from the identity provider at the time
  of the decision; no FK to a users table.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

DECISION_APPROVED = "Approved"
DECISION_REJECTED = "Rejected"
DECISION_REVISION_REQUESTED = "RevisionRequested"

VALID_DECISIONS = frozenset({
    DECISION_APPROVED,
    DECISION_REJECTED,
    DECISION_REVISION_REQUESTED,
})

# Decisions that close a stage.
DECISIVE_DECISIONS = frozenset({DECISION_APPROVED, DECISION_REJECTED})

_DECISIVE_WHERE = "decision IN ('Approved', 'Rejected')"
DECISIVE_INDEX_NAME = "uq_endorsement_decisive_stage"


class EndorsementRecord(db.Model):
    """Immutable decision issued by a role at one stage of one proposal."""

    __tablename__ = "endorsement_records"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(
        db.Integer,
        db.ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_ordinal = db.Column(db.Integer, nullable=False)
    issuer_role = db.Column(db.String(50), nullable=False)
    issuer_id = db.Column(
        db.String(64),
        nullable=False,
        index=True,
        comment="Opaque user id supplied by the identity provider",
    )
    decision = db.Column(
        db.String(20),
        nullable=False,
        comment="Approved | Rejected | RevisionRequested",
    )
    comments = db.Column(db.Text, nullable=True)
    issued_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    proposal = db.relationship("Proposal", back_populates="endorsements")

    __table_args__ = (
        db.Index("ix_endorsement_proposal_stage", "proposal_id", "stage_ordinal"),
        db.Index(
            DECISIVE_INDEX_NAME,
            "proposal_id",
            "stage_ordinal",
            unique=True,
            postgresql_where=db.text(_DECISIVE_WHERE),
            sqlite_where=db.text(_DECISIVE_WHERE),
        ),
    )

    @property
    def is_decisive(self) -> bool:
        return self.decision in DECISIVE_DECISIONS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "stage_ordinal": self.stage_ordinal,
            "issuer_role": self.issuer_role,
            "issuer_id": self.issuer_id,
            "decision": self.decision,
            "comments": self.comments,
            "issued_at": self.issued_at.isoformat() if self.issued_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<EndorsementRecord #{self.id} proposal={self.proposal_id} "
            f"stage={self.stage_ordinal} {self.decision}>"
        )
