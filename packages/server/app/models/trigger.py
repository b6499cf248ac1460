"""Pending trigger: a durable wake-up request for an agent-side consumer."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import json_type, utcnow


class PendingTrigger(SQLModel, table=True):
    __tablename__ = "pending_triggers"
    __table_args__ = (
        sa.Index("ix_pending_triggers_status_created", "status", "created_at"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    agent_id: uuid.UUID = Field(foreign_key="agents.id", nullable=False, index=True)
    cron_job_id: str = Field(nullable=False)
    event_type: str = Field(nullable=False)  # task_assigned | mention_created | task_rejected
    task_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tasks.id")
    message_id: Optional[uuid.UUID] = Field(default=None, foreign_key="messages.id")
    context: Optional[dict] = Field(default=None, sa_column=sa.Column(json_type(), nullable=True))
    status: str = Field(default="pending", nullable=False)  # pending | processing | completed | failed
    claim_token: Optional[uuid.UUID] = Field(default=None, index=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(),
    )
    claimed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    completed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    error: Optional[str] = None
