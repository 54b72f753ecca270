"""proposal_workflow_tables

Creates the approval pipeline tables:
  - proposals            — one row per submitted proposal, optimistic-lock counter
  - endorsement_records  — immutable decision log, one decisive row per stage
  - progress_reports     — reports filed once a proposal reaches Implementation

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5f2a9c1e7b30
Revises:
Create Date: 2026-10-19 09:12:44.517301
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5f2a9c1e7b30'
down_revision = None
branch_labels = None
depends_on = None

_DECISIVE_WHERE = "decision IN ('Approved', 'Rejected')"


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Proposal ──────────────────────────────────────────────────────────
    if "proposals" not in existing:
        op.create_table(
            "proposals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column(
                "submitting_unit", sa.String(length=200), nullable=False,
                comment="Department or research center the proposal is filed under",
            ),
            sa.Column("budget", sa.Numeric(precision=14, scale=2), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("objectives", sa.Text(), nullable=True),
            sa.Column("research_agenda", sa.JSON(), nullable=True),
            sa.Column(
                "proponent_id", sa.String(length=64), nullable=True,
                comment="Opaque user id supplied by the identity provider",
            ),
            sa.Column(
                "canonical_status", sa.String(length=20), nullable=False,
                server_default="UnderReview",
                comment="UnderReview | Approved | Rejected | Ongoing | Completed",
            ),
            sa.Column(
                "current_stage_ordinal", sa.Integer(), nullable=False,
                server_default="1",
                comment="1..10; on Rejected it stays on the rejected stage",
            ),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("budget >= 0", name="ck_proposals_budget_non_negative"),
            sa.CheckConstraint(
                "current_stage_ordinal BETWEEN 1 AND 10",
                name="ck_proposals_stage_range",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_proposals_submitting_unit", "proposals", ["submitting_unit"])
        op.create_index("ix_proposals_proponent_id", "proposals", ["proponent_id"])
        op.create_index("ix_proposals_canonical_status", "proposals", ["canonical_status"])
        op.create_index(
            "ix_proposals_unit_status", "proposals", ["submitting_unit", "canonical_status"],
        )

    # ── EndorsementRecord ─────────────────────────────────────────────────
    if "endorsement_records" not in existing:
        op.create_table(
            "endorsement_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("proposal_id", sa.Integer(), nullable=False),
            sa.Column("stage_ordinal", sa.Integer(), nullable=False),
            sa.Column("issuer_role", sa.String(length=50), nullable=False),
            sa.Column(
                "issuer_id", sa.String(length=64), nullable=False,
                comment="Opaque user id supplied by the identity provider",
            ),
            sa.Column(
                "decision", sa.String(length=20), nullable=False,
                comment="Approved | Rejected | RevisionRequested",
            ),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_endorsement_records_proposal_id", "endorsement_records", ["proposal_id"],
        )
        op.create_index(
            "ix_endorsement_records_issuer_id", "endorsement_records", ["issuer_id"],
        )
        op.create_index(
            "ix_endorsement_proposal_stage", "endorsement_records",
            ["proposal_id", "stage_ordinal"],
        )
        # At most one Approved/Rejected per (proposal, stage)
        op.create_index(
            "uq_endorsement_decisive_stage", "endorsement_records",
            ["proposal_id", "stage_ordinal"],
            unique=True,
            postgresql_where=sa.text(_DECISIVE_WHERE),
            sqlite_where=sa.text(_DECISIVE_WHERE),
        )

    # ── ProgressReport ────────────────────────────────────────────────────
    if "progress_reports" not in existing:
        op.create_table(
            "progress_reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("proposal_id", sa.Integer(), nullable=False),
            sa.Column(
                "report_type", sa.String(length=20), nullable=False,
                comment="Interim | Quarterly | Annual | Final",
            ),
            sa.Column("submitting_unit", sa.String(length=200), nullable=False),
            sa.Column("report_period", sa.String(length=100), nullable=True),
            sa.Column("progress_percentage", sa.Integer(), nullable=True),
            sa.Column("budget_utilized", sa.Numeric(precision=14, scale=2), nullable=True),
            sa.Column("achievements", sa.Text(), nullable=False),
            sa.Column("challenges", sa.Text(), nullable=True),
            sa.Column("next_milestone", sa.Text(), nullable=False),
            sa.Column("additional_notes", sa.Text(), nullable=True),
            sa.Column("attachments", sa.JSON(), nullable=False),
            sa.Column("submitted_by", sa.String(length=64), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_progress_reports_proposal_id", "progress_reports", ["proposal_id"],
        )
        op.create_index(
            "ix_progress_reports_submitting_unit", "progress_reports", ["submitting_unit"],
        )
        op.create_index(
            "ix_progress_reports_unit_submitted", "progress_reports",
            ["submitting_unit", "submitted_at"],
        )


def downgrade():
    op.drop_table("progress_reports")
    op.drop_index("uq_endorsement_decisive_stage", table_name="endorsement_records")
    op.drop_table("endorsement_records")
    op.drop_table("proposals")
