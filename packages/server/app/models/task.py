"""Task model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Task(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "tasks"

    title: str = Field(nullable=False)
    description: Optional[str] = None
    status: str = Field(default="inbox", nullable=False, index=True)  # inbox | assigned | in_progress | review | blocked | done | archived
    priority: str = Field(default="normal", nullable=False)  # low | normal | high | urgent
    workspace_id: Optional[uuid.UUID] = Field(default=None, index=True)  # external reference
    parent_task_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tasks.id", index=True)
    due_date: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    estimated_minutes: Optional[int] = None
    blocked_reason: Optional[str] = None
    deliverable_path: Optional[str] = None
