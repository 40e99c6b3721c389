"""add session, policy & block tables

Revision ID: c4e5f6a7b8c9
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "c4e5f6a7b8c9"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create user_sessions, security_policies, security_blocks & user_profiles."""
    op.create_table(
        "user_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("origin_address", sa.String(length=64), nullable=False),
        sa.Column("client_descriptor", sa.String(length=512), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "is_active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])
    op.create_index("ix_user_sessions_started_at", "user_sessions", ["started_at"])
    op.create_index("ix_user_sessions_is_active", "user_sessions", ["is_active"])
    op.create_index(
        "ix_user_sessions_user_active",
        "user_sessions",
        ["user_id", "is_active"],
    )
    op.create_index(
        "ix_user_sessions_user_address",
        "user_sessions",
        ["user_id", "origin_address"],
    )

    op.create_table(
        "security_policies",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("max_addresses_per_user", sa.Integer(), nullable=False),
        sa.Column("block_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("max_addresses_per_user >= 1", name="ck_security_policies_max_addresses"),
        sa.CheckConstraint("block_duration_minutes >= 1", name="ck_security_policies_block_duration"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_security_policies_single_active",
        "security_policies",
        ["is_active"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "security_blocks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("reason", sa.String(length=256), nullable=False),
        sa.Column("blocked_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("address_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("system_imposed", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("lifted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_security_blocks_user_id", "security_blocks", ["user_id"])
    op.create_index(
        "ix_security_blocks_user_active_until",
        "security_blocks",
        ["user_id", "is_active", "blocked_until"],
    )

    # Read model of the identity service; skip if it already owns this table.
    op.create_table(
        "user_profiles",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("full_name", sa.String(length=256), nullable=False),
        sa.Column("plan", sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint("user_id"),
        if_not_exists=True,
    )


def downgrade() -> None:
    """Drop the security tables (user_profiles belongs to identity)."""
    op.drop_index("ix_security_blocks_user_active_until", table_name="security_blocks")
    op.drop_index("ix_security_blocks_user_id", table_name="security_blocks")
    op.drop_table("security_blocks")
    op.drop_index("uq_security_policies_single_active", table_name="security_policies")
    op.drop_table("security_policies")
    op.drop_index("ix_user_sessions_user_address", table_name="user_sessions")
    op.drop_index("ix_user_sessions_user_active", table_name="user_sessions")
    op.drop_index("ix_user_sessions_is_active", table_name="user_sessions")
    op.drop_index("ix_user_sessions_started_at", table_name="user_sessions")
    op.drop_index("ix_user_sessions_user_id", table_name="user_sessions")
    op.drop_table("user_sessions")
