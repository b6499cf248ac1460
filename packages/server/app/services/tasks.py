"""
Task service layer: creation, partial updates and assignment.

Status changes go through StatusGuard before anything is written; the
downstream effects (activity, subscriber fanout, triggers, webhook events)
are staged in the caller's unit of work and the webhook outbox.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFoundError, ValidationError
from app.models.assignments import TaskAssignee
from app.models.task import Task
from app.services.activity import log_activity
from app.services.dependencies import get_dependency_ids
from app.services.lookups import get_agent_or_404, get_assignee_ids, get_task_or_404
from app.services.notifications import create_notification, notify_subscribers, subscribe
from app.services.status_guard import StatusGuard
from app.services.triggers import create_trigger
from app.services.webhooks import EventOutbox
from taskboard_shared.schemas.common import (
    ActivityType,
    NotificationType,
    TaskStatus,
    TriggerEventType,
    WebhookEventType,
)
from taskboard_shared.schemas.tasks import TaskCreate, TaskRead, TaskUpdate

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def to_task_read(session: AsyncSession, task: Task) -> TaskRead:
    """Convert a Task row to a TaskRead with its assignees and blockers."""
    return TaskRead(
        id=task.id,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        workspace_id=task.workspace_id,
        parent_task_id=task.parent_task_id,
        due_date=task.due_date,
        estimated_minutes=task.estimated_minutes,
        blocked_reason=task.blocked_reason,
        deliverable_path=task.deliverable_path,
        assignee_ids=await get_assignee_ids(session, task.id),
        dependency_ids=await get_dependency_ids(session, task.id),
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


async def _validate_parent(
    session: AsyncSession,
    parent_task_id: uuid.UUID,
    task_id: Optional[uuid.UUID] = None,
) -> Task:
    """Subtasks are one level deep: a parent cannot itself have a parent."""
    if task_id is not None and parent_task_id == task_id:
        raise ValidationError("A task cannot be its own parent", field="parent_task_id")

    parent = await get_task_or_404(session, parent_task_id, label="Parent task")
    if parent.parent_task_id is not None:
        raise ValidationError(
            "Cannot create subtask of a subtask (max 2 levels)", field="parent_task_id"
        )

    if task_id is not None:
        children = await session.execute(
            select(Task.id).where(Task.parent_task_id == task_id).limit(1)
        )
        if children.first():
            raise ValidationError(
                "A task with subtasks cannot become a subtask", field="parent_task_id"
            )
    return parent


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def create_task(
    session: AsyncSession,
    task_in: TaskCreate,
    outbox: EventOutbox,
) -> Task:
    workspace_id = task_in.workspace_id
    if task_in.parent_task_id is not None:
        parent = await _validate_parent(session, task_in.parent_task_id)
        workspace_id = parent.workspace_id

    task = Task(
        title=task_in.title.strip(),
        description=task_in.description,
        status=TaskStatus.INBOX.value,
        priority=task_in.priority.value,
        workspace_id=workspace_id,
        parent_task_id=task_in.parent_task_id,
        due_date=task_in.due_date,
        estimated_minutes=task_in.estimated_minutes,
        deliverable_path=task_in.deliverable_path,
    )
    session.add(task)
    await session.flush()

    label = "Subtask" if task.parent_task_id else "Task"
    log_activity(session, ActivityType.TASK_CREATED, f'{label} "{task.title}" created', task_id=task.id)
    await session.flush()

    outbox.emit(
        WebhookEventType.TASK_CREATED,
        task.workspace_id,
        {
            "task_id": str(task.id),
            "title": task.title,
            "description": task.description or "",
            "status": task.status,
            "priority": task.priority,
            "workspace_id": str(task.workspace_id) if task.workspace_id else None,
            "parent_task_id": str(task.parent_task_id) if task.parent_task_id else None,
        },
        str(task.id),
    )
    log.info("task.created", task_id=str(task.id), parent_task_id=str(task.parent_task_id) if task.parent_task_id else None)
    return task


async def update_task(
    session: AsyncSession,
    task_id: uuid.UUID,
    task_in: TaskUpdate,
    outbox: EventOutbox,
) -> Task:
    task = await get_task_or_404(session, task_id)
    changes = task_in.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No valid fields to update")

    for required in ("title", "status", "priority"):
        if required in changes and changes[required] is None:
            raise ValidationError(f"{required} cannot be null", field=required)

    if changes.get("parent_task_id") is not None:
        await _validate_parent(session, changes["parent_task_id"], task_id=task.id)

    guard = StatusGuard(session)
    old_status = task.status
    new_status: Optional[TaskStatus] = changes.get("status")
    if new_status is not None:
        await guard.check_transition(task, new_status)

    for key, value in changes.items():
        setattr(task, key, value.value if isinstance(value, Enum) else value)
    await session.flush()

    if new_status is not None and new_status.value != old_status:
        log_activity(
            session,
            ActivityType.TASK_STATUS_CHANGED,
            f"Task status: {old_status} -> {new_status.value}",
            task_id=task.id,
            details={"old_status": old_status, "new_status": new_status.value},
        )
        await notify_subscribers(
            session,
            task.id,
            f"Task status changed to {new_status.value}",
            NotificationType.STATUS_CHANGE,
        )
        outbox.emit(
            WebhookEventType.TASK_STATUS_CHANGED,
            task.workspace_id,
            {
                "task_id": str(task.id),
                "title": task.title,
                "old_status": old_status,
                "new_status": new_status.value,
            },
            str(task.id),
        )
        if new_status == TaskStatus.DONE:
            await guard.complete(task)
    else:
        outbox.emit(
            WebhookEventType.TASK_UPDATED,
            task.workspace_id,
            {
                "task_id": str(task.id),
                "title": task.title,
                "updated_fields": sorted(changes),
            },
            str(task.id),
        )

    await session.flush()
    log.info("task.updated", task_id=str(task.id), fields=sorted(changes))
    return task


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


async def assign_agent(
    session: AsyncSession,
    task_id: uuid.UUID,
    agent_id: uuid.UUID,
    outbox: EventOutbox,
) -> Task:
    task = await get_task_or_404(session, task_id)
    agent = await get_agent_or_404(session, agent_id)

    if not await session.get(TaskAssignee, (task_id, agent_id)):
        session.add(TaskAssignee(task_id=task_id, agent_id=agent_id))
    await subscribe(session, agent_id, task_id)

    if task.status == TaskStatus.INBOX.value:
        task.status = TaskStatus.ASSIGNED.value

    log_activity(
        session,
        ActivityType.TASK_ASSIGNED,
        f"{agent.name} assigned to task",
        task_id=task_id,
        agent_id=agent_id,
    )
    await create_notification(
        session,
        agent_id,
        "You were assigned to a task",
        NotificationType.ASSIGNMENT,
        task_id=task_id,
    )
    await create_trigger(
        session,
        agent_id,
        TriggerEventType.TASK_ASSIGNED,
        task_id=task_id,
        context={"task_title": task.title},
    )
    outbox.emit(
        WebhookEventType.TASK_ASSIGNED,
        task.workspace_id,
        {
            "task_id": str(task.id),
            "task_title": task.title,
            "assigned_agent_id": str(agent.id),
            "assigned_agent_name": agent.name,
        },
        str(task.id),
    )
    await session.flush()
    log.info("task.assigned", task_id=str(task_id), agent_id=str(agent_id))
    return task


async def unassign_agent(
    session: AsyncSession, task_id: uuid.UUID, agent_id: uuid.UUID
) -> None:
    await get_task_or_404(session, task_id)
    assignment = await session.get(TaskAssignee, (task_id, agent_id))
    if not assignment:
        raise NotFoundError("Agent is not assigned to this task")
    await session.delete(assignment)
    await session.flush()
    log.info("task.unassigned", task_id=str(task_id), agent_id=str(agent_id))
