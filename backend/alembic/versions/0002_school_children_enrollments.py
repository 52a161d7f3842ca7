"""create school schema with schools, children and enrollments

Revision ID: 0002_school_children_enrollments
Revises: 0001_auth_users
Create Date: 2026-03-02 09:20:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_school_children_enrollments"
down_revision = "0001_auth_users"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        "IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = 'school') EXEC('CREATE SCHEMA school')"
    )

    op.create_table(
        "schools",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("Name", sa.String(length=200), nullable=False),
        sa.Column(
            "CreatedAt",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("SYSUTCDATETIME()"),
        ),
        schema="school",
    )

    op.create_table(
        "children",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("SchoolId", sa.Integer(), nullable=False),
        sa.Column("FirstName", sa.String(length=100), nullable=False),
        sa.Column("LastName", sa.String(length=100), nullable=False),
        sa.Column("DateOfBirth", sa.Date(), nullable=False),
        sa.Column("Gender", sa.String(length=50), nullable=True),
        sa.Column("StartDate", sa.Date(), nullable=True),
        sa.Column("SpecialNeeds", sa.Text(), nullable=True),
        sa.Column("MedicalConditions", sa.Text(), nullable=True),
        sa.Column("MonthlyFee", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("Status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("CreatedByUserId", sa.Integer(), nullable=False),
        sa.Column("UpdatedByUserId", sa.Integer(), nullable=True),
        sa.Column(
            "CreatedAt",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("SYSUTCDATETIME()"),
        ),
        sa.Column(
            "UpdatedAt",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("SYSUTCDATETIME()"),
        ),
        sa.CheckConstraint("MonthlyFee >= 0", name="ck_school_children_monthly_fee"),
        sa.ForeignKeyConstraint(["SchoolId"], ["school.schools.Id"], name="fk_school_children_school"),
        schema="school",
    )
    op.create_index("ix_school_children_school", "children", ["SchoolId"], schema="school")

    op.create_table(
        "enrollments",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("SchoolId", sa.Integer(), nullable=False),
        sa.Column("ChildId", sa.Integer(), nullable=False),
        sa.Column("Status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("EnrollmentDate", sa.Date(), nullable=False),
        sa.Column("WithdrawalDate", sa.Date(), nullable=True),
        sa.Column("MonthlyFeeOverride", sa.Integer(), nullable=True),
        sa.Column("Notes", sa.Text(), nullable=True),
        sa.Column("CreatedByUserId", sa.Integer(), nullable=False),
        sa.Column("UpdatedByUserId", sa.Integer(), nullable=True),
        sa.Column(
            "CreatedAt",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("SYSUTCDATETIME()"),
        ),
        sa.Column(
            "UpdatedAt",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("SYSUTCDATETIME()"),
        ),
        sa.CheckConstraint(
            "MonthlyFeeOverride IS NULL OR MonthlyFeeOverride >= 0",
            name="ck_school_enrollments_fee_override",
        ),
        sa.ForeignKeyConstraint(["SchoolId"], ["school.schools.Id"], name="fk_school_enrollments_school"),
        sa.ForeignKeyConstraint(["ChildId"], ["school.children.Id"], name="fk_school_enrollments_child"),
        schema="school",
    )
    op.create_index("ix_school_enrollments_school", "enrollments", ["SchoolId"], schema="school")
    op.create_index("ix_school_enrollments_child", "enrollments", ["ChildId"], schema="school")
    op.create_index(
        "ux_school_enrollments_active_child",
        "enrollments",
        ["SchoolId", "ChildId"],
        unique=True,
        schema="school",
        mssql_where=sa.text("Status = 'active'"),
    )


def downgrade() -> None:
    op.drop_index("ux_school_enrollments_active_child", table_name="enrollments", schema="school")
    op.drop_index("ix_school_enrollments_child", table_name="enrollments", schema="school")
    op.drop_index("ix_school_enrollments_school", table_name="enrollments", schema="school")
    op.drop_table("enrollments", schema="school")
    op.drop_index("ix_school_children_school", table_name="children", schema="school")
    op.drop_table("children", schema="school")
    op.drop_table("schools", schema="school")
