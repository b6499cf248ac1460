"""Task board schema: tasks, dependency graph, trigger queue and webhook delivery log.

Revision ID: 0001_taskboard_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_taskboard_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(), nullable=True)
    return sa.Column(name, sa.DateTime(), nullable=False, server_default=sa.text("now()"))


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # 1. Agents & tasks
    # -----------------------------------------------------------------------

    op.create_table(
        "agents",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("level", sa.Text(), nullable=False, server_default="specialist"),
        sa.Column("cron_job_id", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_agents_name", "agents", ["name"], unique=True)

    op.create_table(
        "tasks",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="inbox"),
        sa.Column("priority", sa.Text(), nullable=False, server_default="normal"),
        sa.Column("workspace_id", _uuid(), nullable=True),
        sa.Column("parent_task_id", _uuid(), sa.ForeignKey("tasks.id"), nullable=True),
        _timestamp("due_date", nullable=True),
        sa.Column("estimated_minutes", sa.Integer(), nullable=True),
        sa.Column("blocked_reason", sa.Text(), nullable=True),
        sa.Column("deliverable_path", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_workspace_id", "tasks", ["workspace_id"])
    op.create_index("ix_tasks_parent_task_id", "tasks", ["parent_task_id"])

    op.create_table(
        "task_assignees",
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id"), primary_key=True),
        sa.Column("agent_id", _uuid(), sa.ForeignKey("agents.id"), primary_key=True),
        _timestamp("assigned_at"),
    )

    op.create_table(
        "task_dependencies",
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id"), primary_key=True),
        sa.Column("depends_on_task_id", _uuid(), sa.ForeignKey("tasks.id"), primary_key=True),
        _timestamp("created_at"),
        sa.CheckConstraint("task_id != depends_on_task_id", name="no_self_dependency"),
    )
    op.create_index("ix_task_dependencies_depends_on_task_id", "task_dependencies", ["depends_on_task_id"])

    op.create_table(
        "task_subscriptions",
        sa.Column("agent_id", _uuid(), sa.ForeignKey("agents.id"), primary_key=True),
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id"), primary_key=True),
        _timestamp("subscribed_at"),
    )
    op.create_index("ix_task_subscriptions_task_id", "task_subscriptions", ["task_id"])

    # -----------------------------------------------------------------------
    # 2. Messages, notifications, activity
    # -----------------------------------------------------------------------

    op.create_table(
        "messages",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id"), nullable=False),
        sa.Column("from_agent_id", _uuid(), sa.ForeignKey("agents.id"), nullable=True),
        sa.Column("author_type", sa.Text(), nullable=False, server_default="agent"),
        sa.Column("content", sa.Text(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_messages_task_id", "messages", ["task_id"])

    op.create_table(
        "notifications",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("agent_id", _uuid(), sa.ForeignKey("agents.id"), nullable=False),
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id"), nullable=True),
        sa.Column("message_id", _uuid(), sa.ForeignKey("messages.id"), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
    )
    op.create_index("ix_notifications_agent_read", "notifications", ["agent_id", "read"])

    op.create_table(
        "activities",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("agent_id", _uuid(), sa.ForeignKey("agents.id"), nullable=True),
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id"), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_activities_task_id", "activities", ["task_id"])

    # -----------------------------------------------------------------------
    # 3. Trigger queue
    # -----------------------------------------------------------------------

    op.create_table(
        "pending_triggers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("agent_id", _uuid(), sa.ForeignKey("agents.id"), nullable=False),
        sa.Column("cron_job_id", sa.Text(), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id"), nullable=True),
        sa.Column("message_id", _uuid(), sa.ForeignKey("messages.id"), nullable=True),
        sa.Column("context", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("claim_token", _uuid(), nullable=True),
        _timestamp("created_at"),
        _timestamp("claimed_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index("ix_pending_triggers_agent_id", "pending_triggers", ["agent_id"])
    op.create_index("ix_pending_triggers_claim_token", "pending_triggers", ["claim_token"])
    op.create_index("ix_pending_triggers_status_created", "pending_triggers", ["status", "created_at"])

    # -----------------------------------------------------------------------
    # 4. Webhooks
    # -----------------------------------------------------------------------

    op.create_table(
        "webhooks",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("workspace_id", _uuid(), nullable=True),
        sa.Column("secret", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("name", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_webhooks_workspace_id", "webhooks", ["workspace_id"])

    op.create_table(
        "webhook_events",
        sa.Column("webhook_id", _uuid(), sa.ForeignKey("webhooks.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("event_type", sa.Text(), primary_key=True),
    )
    op.create_index("ix_webhook_events_event_type", "webhook_events", ["event_type"])

    op.create_table(
        "webhook_deliveries",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("webhook_id", _uuid(), sa.ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("event_id", sa.Text(), nullable=True),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_status_code", sa.Integer(), nullable=True),
        _timestamp("next_retry_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("completed_at", nullable=True),
    )
    op.create_index("ix_webhook_deliveries_webhook_id", "webhook_deliveries", ["webhook_id"])
    op.create_index("ix_webhook_deliveries_status_retry", "webhook_deliveries", ["status", "next_retry_at"])


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.drop_table("webhook_deliveries")
    op.drop_table("webhook_events")
    op.drop_table("webhooks")
    op.drop_table("pending_triggers")
    op.drop_table("activities")
    op.drop_table("notifications")
    op.drop_table("messages")
    op.drop_table("task_subscriptions")
    op.drop_table("task_dependencies")
    op.drop_table("task_assignees")
    op.drop_table("tasks")
    op.drop_table("agents")
