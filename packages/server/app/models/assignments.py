"""Task assignee join table."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class TaskAssignee(SQLModel, table=True):
    __tablename__ = "task_assignees"

    task_id: uuid.UUID = Field(foreign_key="tasks.id", primary_key=True)
    agent_id: uuid.UUID = Field(foreign_key="agents.id", primary_key=True)
    assigned_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(),
    )
