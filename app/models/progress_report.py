"""
ProgressReport model — periodic reports filed once a proposal is implementing.

submitting_unit is copied from the proposal at submission time so unit
dashboards group reports without joining back to proposals.
attachments holds opaque handles issued by the file store; the engine never
opens the underlying bytes.
"""

from datetime import datetime, timezone

from app.models import db

REPORT_TYPES = ("Interim", "Quarterly", "Annual", "Final")
VALID_REPORT_TYPES = frozenset(REPORT_TYPES)


class ProgressReport(db.Model):
    __tablename__ = "progress_reports"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(
        db.Integer,
        db.ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    report_type = db.Column(
        db.String(20),
        nullable=False,
        comment="Interim | Quarterly | Annual | Final",
    )
    submitting_unit = db.Column(db.String(200), nullable=False, index=True)
    report_period = db.Column(db.String(100), nullable=True, comment="Free text, e.g. 'Q1 2025'")
    progress_percentage = db.Column(db.Integer, nullable=True, comment="Self-reported 0..100")
    budget_utilized = db.Column(db.Numeric(14, 2), nullable=True)
    achievements = db.Column(db.Text, nullable=False)
    challenges = db.Column(db.Text, nullable=True)
    next_milestone = db.Column(db.Text, nullable=False)
    additional_notes = db.Column(db.Text, nullable=True)
    attachments = db.Column(db.JSON, nullable=False, default=list)
    submitted_by = db.Column(db.String(64), nullable=True)
    submitted_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    proposal = db.relationship("Proposal", back_populates="progress_reports")

    __table_args__ = (
        db.Index("ix_progress_reports_unit_submitted", "submitting_unit", "submitted_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "report_type": self.report_type,
            "submitting_unit": self.submitting_unit,
            "report_period": self.report_period,
            "progress_percentage": self.progress_percentage,
            "budget_utilized": str(self.budget_utilized) if self.budget_utilized is not None else None,
            "achievements": self.achievements,
            "challenges": self.challenges,
            "next_milestone": self.next_milestone,
            "additional_notes": self.additional_notes,
            "attachments": list(self.attachments or []),
            "submitted_by": self.submitted_by,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }

    def __repr__(self) -> str:
        return f"<ProgressReport #{self.id} proposal={self.proposal_id} {self.report_type}>"
