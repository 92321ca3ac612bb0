"""Create user_notification_settings table.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-16
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

_FLAGS = (
  "new_ticket_assigned",
  "ticket_status_changed",
  "new_reply_received",
  "ticket_escalated",
  "ticket_due_soon",
  "new_customer_registered",
  "new_user_created",
  "system_maintenance",
)


def upgrade() -> None:
  """Upgrade schema."""
  # The helpdesk application may have created the table already.
  if sa.inspect(op.get_bind()).has_table("user_notification_settings"):
    return
  op.create_table(
    "user_notification_settings",
    sa.Column("user_id", sa.Uuid(), nullable=False),
    *(sa.Column(flag, sa.Boolean(), server_default=sa.true(), nullable=False) for flag in _FLAGS),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("user_id"),
  )


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_table("user_notification_settings")
