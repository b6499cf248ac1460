"""Review sign-off: approve (review -> done) and reject (review -> in_progress)."""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AuthorizationError, ValidationError
from app.models.message import Message
from app.models.task import Task
from app.services.activity import log_activity
from app.services.lookups import get_agent_or_404, get_assignee_ids, get_task_or_404
from app.services.notifications import create_notification, notify_assignees
from app.services.status_guard import StatusGuard
from app.services.triggers import create_trigger
from app.services.webhooks import EventOutbox
from taskboard_shared.schemas.common import (
    ActivityType,
    AgentLevel,
    NotificationType,
    TaskStatus,
    TriggerEventType,
    WebhookEventType,
)

log = structlog.get_logger()


def _emit_status_change(outbox: EventOutbox, task: Task, old_status: str, agent_id: uuid.UUID) -> None:
    outbox.emit(
        WebhookEventType.TASK_STATUS_CHANGED,
        task.workspace_id,
        {
            "task_id": str(task.id),
            "title": task.title,
            "old_status": old_status,
            "new_status": task.status,
            "changed_by": str(agent_id),
        },
        str(task.id),
    )


async def approve_task(
    session: AsyncSession,
    task_id: uuid.UUID,
    agent_id: uuid.UUID,
    outbox: EventOutbox,
) -> Task:
    """
    Sign off a task in review. Leads and assignees may approve.

    Approval does not apply the subtask gate; the completion cascade then
    auto-closes any subtask still in assigned/in_progress.
    """
    task = await get_task_or_404(session, task_id)
    agent = await get_agent_or_404(session, agent_id)
    if task.status != TaskStatus.REVIEW.value:
        raise ValidationError("Task must be in review status to approve", field="status")

    assignees = await get_assignee_ids(session, task_id)
    if agent.level != AgentLevel.LEAD.value and agent_id not in assignees:
        raise AuthorizationError("Only leads or assignees can approve tasks")

    old_status = task.status
    task.status = TaskStatus.DONE.value
    log_activity(
        session,
        ActivityType.TASK_STATUS_CHANGED,
        f"{agent.name} approved task -> Done",
        task_id=task_id,
        agent_id=agent_id,
    )
    await notify_assignees(
        session,
        task_id,
        f'Task "{task.title}" was approved',
        NotificationType.APPROVAL,
        exclude_agent_id=agent_id,
    )
    await StatusGuard(session).complete(task)
    _emit_status_change(outbox, task, old_status, agent_id)
    log.info("task.approved", task_id=str(task_id), agent_id=str(agent_id))
    return task


async def reject_task(
    session: AsyncSession,
    task_id: uuid.UUID,
    agent_id: uuid.UUID,
    feedback: str,
    outbox: EventOutbox,
) -> Task:
    feedback = feedback.strip()
    if not feedback:
        raise ValidationError("feedback is required when rejecting", field="feedback")

    task = await get_task_or_404(session, task_id)
    agent = await get_agent_or_404(session, agent_id)
    if task.status != TaskStatus.REVIEW.value:
        raise ValidationError("Task must be in review status to reject", field="status")
    if agent.level != AgentLevel.LEAD.value:
        raise AuthorizationError("Only leads can reject tasks")

    old_status = task.status
    task.status = TaskStatus.IN_PROGRESS.value
    message = Message(task_id=task_id, from_agent_id=agent_id, content=f"[REJECTED] {feedback}")
    session.add(message)
    await session.flush()

    log_activity(
        session,
        ActivityType.TASK_STATUS_CHANGED,
        f"{agent.name} rejected task -> In Progress",
        task_id=task_id,
        agent_id=agent_id,
    )

    for assignee_id in await get_assignee_ids(session, task_id):
        if assignee_id == agent_id:
            continue
        await create_notification(
            session,
            assignee_id,
            f"Task rejected: {feedback[:50]}...",
            NotificationType.REJECTION,
            task_id=task_id,
            message_id=message.id,
        )
        await create_trigger(
            session,
            assignee_id,
            TriggerEventType.TASK_REJECTED,
            task_id=task_id,
            message_id=message.id,
            context={"rejected_by": agent.name, "feedback_preview": feedback[:100]},
        )

    _emit_status_change(outbox, task, old_status, agent_id)
    await session.flush()
    log.info("task.rejected", task_id=str(task_id), agent_id=str(agent_id))
    return task
