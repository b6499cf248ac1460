"""Notification model (append-only per-agent inbox)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"
    __table_args__ = (
        sa.Index("ix_notifications_agent_read", "agent_id", "read"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    agent_id: uuid.UUID = Field(foreign_key="agents.id", nullable=False)
    task_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tasks.id")
    message_id: Optional[uuid.UUID] = Field(default=None, foreign_key="messages.id")
    content: str = Field(nullable=False)
    type: str = Field(nullable=False)  # mention | assignment | reply | status_change | approval | rejection
    delivered: bool = Field(default=False, nullable=False)
    read: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(),
    )
