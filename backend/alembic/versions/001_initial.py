"""Initial schema: users, user_batch_entitlements, batches, enrolled_tokens, reconcile_runs

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("provider_access_token", sa.Text(), nullable=True),
        sa.Column("provider_refresh_token", sa.Text(), nullable=True),
        sa.Column("provider_correlation_id", sa.String(64), nullable=True),
        sa.Column("refresh_token", sa.String(128), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="user"),
        sa.Column("role_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_logged_in", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("refresh_token"),
    )
    op.create_index("ix_users_phone_number", "users", ["phone_number"], unique=True)

    op.create_table(
        "user_batch_entitlements",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "batch_id", name="uq_user_batch_entitlement"),
    )
    op.create_index("ix_user_batch_entitlements_user_id", "user_batch_entitlements", ["user_id"])

    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("batch_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("template", sa.String(32), nullable=False, server_default="NORMAL"),
        sa.Column("language", sa.String(64), nullable=False, server_default="English"),
        sa.Column("by_name", sa.String(255), nullable=False, server_default="Unknown"),
        sa.Column("start_date", sa.String(64), nullable=False, server_default=""),
        sa.Column("end_date", sa.String(64), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_batches_batch_id", "batches", ["batch_id"], unique=True)
    op.create_index("ix_batches_is_active", "batches", ["is_active"])

    op.create_table(
        "enrolled_tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("batch_pk", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False, server_default=""),
        sa.Column("refresh_token", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("correlation_id", sa.String(64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["batch_pk"], ["batches.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_pk", "owner_id", name="uq_enrolled_token_batch_owner"),
    )
    op.create_index("ix_enrolled_tokens_batch_pk", "enrolled_tokens", ["batch_pk"])
    op.create_index("ix_enrolled_tokens_owner_id", "enrolled_tokens", ["owner_id"])

    op.create_table(
        "reconcile_runs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
        sa.Column("trigger", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("batches_scanned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credentials_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refreshed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pruned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reconcile_runs_status", "reconcile_runs", ["status"])


def downgrade() -> None:
    op.drop_index("ix_reconcile_runs_status", table_name="reconcile_runs")
    op.drop_table("reconcile_runs")
    op.drop_index("ix_enrolled_tokens_owner_id", table_name="enrolled_tokens")
    op.drop_index("ix_enrolled_tokens_batch_pk", table_name="enrolled_tokens")
    op.drop_table("enrolled_tokens")
    op.drop_index("ix_batches_is_active", table_name="batches")
    op.drop_index("ix_batches_batch_id", table_name="batches")
    op.drop_table("batches")
    op.drop_index("ix_user_batch_entitlements_user_id", table_name="user_batch_entitlements")
    op.drop_table("user_batch_entitlements")
    op.drop_index("ix_users_phone_number", table_name="users")
    op.drop_table("users")
