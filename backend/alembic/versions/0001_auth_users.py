"""create auth schema, school-scoped users and refresh tokens

Revision ID: 0001_auth_users
Revises:
Create Date: 2026-03-02 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_auth_users"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        "IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = 'auth') EXEC('CREATE SCHEMA auth')"
    )

    op.create_table(
        "users",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("Username", sa.String(length=120), nullable=False),
        sa.Column("PasswordHash", sa.String(length=255), nullable=False),
        sa.Column("FirstName", sa.String(length=120), nullable=True),
        sa.Column("LastName", sa.String(length=120), nullable=True),
        sa.Column("Email", sa.String(length=254), nullable=True),
        sa.Column("Role", sa.String(length=20), nullable=False, server_default="Teacher"),
        sa.Column("SchoolId", sa.Integer(), nullable=True),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("FailedLoginCount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("LockedUntil", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "CreatedAt",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("SYSUTCDATETIME()"),
        ),
        sa.UniqueConstraint("Username", name="ux_auth_users_username"),
        schema="auth",
    )
    op.create_index("ix_auth_users_username", "users", ["Username"], unique=True, schema="auth")
    op.create_index("ix_auth_users_school", "users", ["SchoolId"], schema="auth")

    op.create_table(
        "refresh_tokens",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("UserId", sa.Integer(), nullable=False),
        sa.Column("TokenHash", sa.String(length=255), nullable=False),
        sa.Column(
            "CreatedAt",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("SYSUTCDATETIME()"),
        ),
        sa.Column("ExpiresAt", sa.DateTime(timezone=True), nullable=False),
        sa.Column("RevokedAt", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["UserId"], ["auth.users.Id"], name="fk_auth_refresh_tokens_user"),
        schema="auth",
    )
    op.create_index("ix_auth_refresh_tokens_user", "refresh_tokens", ["UserId"], schema="auth")


def downgrade() -> None:
    op.drop_index("ix_auth_refresh_tokens_user", table_name="refresh_tokens", schema="auth")
    op.drop_table("refresh_tokens", schema="auth")
    op.drop_index("ix_auth_users_school", table_name="users", schema="auth")
    op.drop_index("ix_auth_users_username", table_name="users", schema="auth")
    op.drop_table("users", schema="auth")
