"""Activity feed row (immutable)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import json_type, utcnow


class Activity(SQLModel, table=True):
    __tablename__ = "activities"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    type: str = Field(nullable=False)
    agent_id: Optional[uuid.UUID] = Field(default=None, foreign_key="agents.id")
    task_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tasks.id", index=True)
    message: str = Field(nullable=False)
    # "metadata" is reserved on declarative models
    details: Optional[dict] = Field(
        default=None,
        sa_column=sa.Column("metadata", json_type(), nullable=True),
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(),
    )
