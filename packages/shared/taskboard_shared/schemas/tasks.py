"""Task-related Pydantic schemas for shared use across server and consumers."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .common import NotificationType, TaskPriority, TaskStatus


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

class TaskBase(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.NORMAL
    workspace_id: Optional[UUID] = None
    parent_task_id: Optional[UUID] = None
    due_date: Optional[datetime] = None
    estimated_minutes: Optional[int] = Field(default=None, ge=0)
    deliverable_path: Optional[str] = None


class TaskCreate(TaskBase):
    pass


class TaskUpdate(BaseModel):
    """Partial update. Only these fields are mutable through PATCH."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    workspace_id: Optional[UUID] = None
    parent_task_id: Optional[UUID] = None
    due_date: Optional[datetime] = None
    estimated_minutes: Optional[int] = Field(default=None, ge=0)
    blocked_reason: Optional[str] = None
    deliverable_path: Optional[str] = None


class TaskRead(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    workspace_id: Optional[UUID] = None
    parent_task_id: Optional[UUID] = None
    due_date: Optional[datetime] = None
    estimated_minutes: Optional[int] = None
    blocked_reason: Optional[str] = None
    deliverable_path: Optional[str] = None
    assignee_ids: List[UUID] = Field(default_factory=list)
    dependency_ids: List[UUID] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

class DependencyAdd(BaseModel):
    """Request body for POST /tasks/{taskId}/dependencies."""
    depends_on_task_id: UUID


class DependencyTaskRead(BaseModel):
    id: UUID
    title: str
    status: TaskStatus
    priority: TaskPriority
    dependency_created_at: datetime


class DependenciesRead(BaseModel):
    blockers: List[DependencyTaskRead] = Field(default_factory=list)
    blocking: List[DependencyTaskRead] = Field(default_factory=list)
    is_blocked: bool = False
    blocker_count: int = 0
    blocking_count: int = 0


# ---------------------------------------------------------------------------
# Assignment & review
# ---------------------------------------------------------------------------

class AgentAction(BaseModel):
    """Body for actions performed on behalf of one agent (assign, approve, subscribe)."""
    agent_id: UUID


class TaskReject(AgentAction):
    feedback: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Messages & notifications
# ---------------------------------------------------------------------------

class MessageCreate(BaseModel):
    from_agent_id: UUID
    content: str = Field(min_length=1)


class MessageRead(BaseModel):
    id: UUID
    task_id: UUID
    from_agent_id: Optional[UUID] = None
    author_type: str
    content: str
    created_at: datetime


class MessageCreated(BaseModel):
    id: UUID
    mentioned_agent_ids: List[UUID] = Field(default_factory=list)


class NotificationRead(BaseModel):
    id: UUID
    agent_id: UUID
    task_id: Optional[UUID] = None
    message_id: Optional[UUID] = None
    content: str
    type: NotificationType
    delivered: bool
    read: bool
    created_at: datetime
