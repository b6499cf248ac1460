"""Task comment. ``from_agent_id`` is null for system-authored notes."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class Message(SQLModel, table=True):
    __tablename__ = "messages"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    from_agent_id: Optional[uuid.UUID] = Field(default=None, foreign_key="agents.id")
    author_type: str = Field(default="agent", nullable=False)  # agent | system
    content: str = Field(nullable=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(),
    )
