"""verification request workflow

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190002"
down_revision = "202610190001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "verification_requests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("dept_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("review_note", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["dept_id"], ["departments.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_verification_requests_status",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_verification_requests_user_id", "verification_requests", ["user_id"])
    op.create_index("ix_verification_requests_status", "verification_requests", ["status"])
    op.create_index("ix_verification_requests_created_at", "verification_requests", ["created_at"])
    op.create_index("ix_verification_requests_resolved_by", "verification_requests", ["resolved_by"])
    op.create_index("ix_verification_requests_org_status", "verification_requests", ["org_id", "status"])
    op.create_index("ix_verification_requests_dept_status", "verification_requests", ["dept_id", "status"])
    op.create_index(
        "uq_verification_requests_pending",
        "verification_requests",
        ["user_id", "org_id", "dept_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_table("verification_requests")
