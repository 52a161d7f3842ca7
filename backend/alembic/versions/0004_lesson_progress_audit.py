"""create lesson progress audit trail

Revision ID: 0004_lesson_progress_audit
Revises: 0003_lesson_progress
Create Date: 2026-03-16 10:15:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mssql

revision = "0004_lesson_progress_audit"
down_revision = "0003_lesson_progress"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "lesson_progress_audit",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("SchoolId", sa.Integer(), nullable=False),
        sa.Column("CardId", sa.Integer(), nullable=False),
        sa.Column("Action", sa.String(length=20), nullable=False),
        sa.Column("ActorUserId", sa.Integer(), nullable=False),
        sa.Column("Summary", sa.String(length=300), nullable=True),
        sa.Column("BeforeJson", sa.Text(), nullable=True),
        sa.Column("AfterJson", sa.Text(), nullable=True),
        sa.Column("CreatedAt", mssql.DATETIME2(), nullable=False, server_default=sa.text("SYSUTCDATETIME()")),
        sa.CheckConstraint(
            "Action IN ('created', 'updated', 'moved', 'reordered', 'deleted', 'locked', 'unlocked')",
            name="ck_school_lesson_progress_audit_action",
        ),
        sa.ForeignKeyConstraint(["SchoolId"], ["school.schools.Id"], name="fk_school_lesson_progress_audit_school"),
        schema="school",
    )
    op.create_index(
        "ix_school_lesson_progress_audit_card",
        "lesson_progress_audit",
        ["SchoolId", "CardId", "CreatedAt"],
        schema="school",
    )


def downgrade() -> None:
    op.drop_index("ix_school_lesson_progress_audit_card", table_name="lesson_progress_audit", schema="school")
    op.drop_table("lesson_progress_audit", schema="school")
