"""Task subscription: the agent receives fanout notifications for the task."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class Subscription(SQLModel, table=True):
    __tablename__ = "task_subscriptions"

    agent_id: uuid.UUID = Field(foreign_key="agents.id", primary_key=True)
    task_id: uuid.UUID = Field(foreign_key="tasks.id", primary_key=True, index=True)
    subscribed_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(),
    )
