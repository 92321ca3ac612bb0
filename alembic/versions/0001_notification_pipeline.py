"""Create notifications and push_subscriptions tables, and users when the database has none.

Revision ID: 0001
Revises:
Create Date: 2026-10-16
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _create_users() -> None:
  op.create_table(
    "users",
    sa.Column("id", sa.Uuid(), nullable=False),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("full_name", sa.String(), nullable=True),
    sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)


def upgrade() -> None:
  """Upgrade schema."""
  # users belongs to the helpdesk application; only standalone databases get a minimal copy.
  if not sa.inspect(op.get_bind()).has_table("users"):
    _create_users()

  op.create_table(
    "notifications",
    sa.Column("id", sa.Uuid(), nullable=False),
    sa.Column("user_id", sa.Uuid(), nullable=False),
    sa.Column("type", sa.Text(), nullable=False),
    sa.Column("priority", sa.Text(), server_default="medium", nullable=False),
    sa.Column("title", sa.Text(), nullable=False),
    sa.Column("message", sa.Text(), nullable=False),
    sa.Column("ticket_id", sa.Uuid(), nullable=True),
    sa.Column("ticket_code", sa.Text(), nullable=True),
    sa.Column("metadata", sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql"), nullable=True),
    sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    sa.CheckConstraint("priority IN ('low', 'medium', 'high', 'critical')", name="ck_notifications_priority"),
    sa.CheckConstraint("type <> ''", name="ck_notifications_type_not_empty"),
    sa.CheckConstraint("title <> ''", name="ck_notifications_title_not_empty"),
    sa.CheckConstraint("message <> ''", name="ck_notifications_message_not_empty"),
    sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  for column in ("user_id", "type", "priority", "ticket_id", "read_at", "created_at"):
    op.create_index(op.f(f"ix_notifications_{column}"), "notifications", [column], unique=False)
  op.create_index("ix_notifications_user_read_created", "notifications", ["user_id", "read_at", "created_at"], unique=False)

  op.create_table(
    "push_subscriptions",
    sa.Column("id", sa.Uuid(), nullable=False),
    sa.Column("user_id", sa.Uuid(), nullable=False),
    sa.Column("endpoint", sa.Text(), nullable=False),
    sa.Column("p256dh", sa.Text(), nullable=False),
    sa.Column("auth", sa.Text(), nullable=False),
    sa.Column("user_agent", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_push_subscriptions_user_id"), "push_subscriptions", ["user_id"], unique=False)
  op.create_index(op.f("ix_push_subscriptions_last_used_at"), "push_subscriptions", ["last_used_at"], unique=False)
  op.create_index("ux_push_subscriptions_endpoint", "push_subscriptions", ["endpoint"], unique=True)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ux_push_subscriptions_endpoint", table_name="push_subscriptions")
  op.drop_index(op.f("ix_push_subscriptions_last_used_at"), table_name="push_subscriptions")
  op.drop_index(op.f("ix_push_subscriptions_user_id"), table_name="push_subscriptions")
  op.drop_table("push_subscriptions")

  op.drop_index("ix_notifications_user_read_created", table_name="notifications")
  for column in ("user_id", "type", "priority", "ticket_id", "read_at", "created_at"):
    op.drop_index(op.f(f"ix_notifications_{column}"), table_name="notifications")
  op.drop_table("notifications")
  # users is not dropped; it may predate this revision.
