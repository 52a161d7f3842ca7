"""create lesson progress cards with lock columns

Revision ID: 0003_lesson_progress
Revises: 0002_school_children_enrollments
Create Date: 2026-03-09 14:40:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mssql

revision = "0003_lesson_progress"
down_revision = "0002_school_children_enrollments"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "lesson_progress",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("SchoolId", sa.Integer(), nullable=False),
        sa.Column("TeacherId", sa.Integer(), nullable=False),
        sa.Column("LessonId", sa.Integer(), nullable=False),
        sa.Column("StudentId", sa.Integer(), nullable=True),
        sa.Column("Title", sa.String(length=200), nullable=True),
        sa.Column("Notes", sa.Text(), nullable=True),
        sa.Column("Status", sa.String(length=20), nullable=False, server_default="not_started"),
        sa.Column("Position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("LockedBy", sa.Integer(), nullable=True),
        sa.Column("LockedAt", mssql.DATETIME2(), nullable=True),
        sa.Column("CreatedBy", sa.Integer(), nullable=False),
        sa.Column("UpdatedBy", sa.Integer(), nullable=True),
        sa.Column("CreatedAt", mssql.DATETIME2(), nullable=False, server_default=sa.text("SYSUTCDATETIME()")),
        sa.Column("UpdatedAt", mssql.DATETIME2(), nullable=False, server_default=sa.text("SYSUTCDATETIME()")),
        sa.CheckConstraint("Position >= 0", name="ck_school_lesson_progress_position"),
        sa.CheckConstraint(
            "Status IN ('not_started', 'in_progress', 'completed', 'on_hold')",
            name="ck_school_lesson_progress_status",
        ),
        sa.ForeignKeyConstraint(["SchoolId"], ["school.schools.Id"], name="fk_school_lesson_progress_school"),
        sa.ForeignKeyConstraint(["StudentId"], ["school.children.Id"], name="fk_school_lesson_progress_student"),
        schema="school",
    )
    op.create_index("ix_school_lesson_progress_school", "lesson_progress", ["SchoolId"], schema="school")
    op.create_index(
        "ix_school_lesson_progress_board",
        "lesson_progress",
        ["SchoolId", "TeacherId", "Status", "Position"],
        schema="school",
    )
    op.create_index(
        "ix_school_lesson_progress_locked",
        "lesson_progress",
        ["LockedBy", "LockedAt"],
        schema="school",
    )
    op.create_index(
        "ux_school_lesson_progress_lesson_student",
        "lesson_progress",
        ["SchoolId", "LessonId", "StudentId"],
        unique=True,
        schema="school",
        mssql_where=sa.text("StudentId IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index("ux_school_lesson_progress_lesson_student", table_name="lesson_progress", schema="school")
    op.drop_index("ix_school_lesson_progress_locked", table_name="lesson_progress", schema="school")
    op.drop_index("ix_school_lesson_progress_board", table_name="lesson_progress", schema="school")
    op.drop_index("ix_school_lesson_progress_school", table_name="lesson_progress", schema="school")
    op.drop_table("lesson_progress", schema="school")
