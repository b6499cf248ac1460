"""
Notification fanout and task subscriptions.

Fanout writes every notification for one event in a single flush, so a
failure leaves either all of them or none in the caller's unit of work.
"""

from __future__ import annotations

import uuid
from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFoundError
from app.models.notification import Notification
from app.models.subscription import Subscription
from app.services.lookups import get_assignee_ids, get_subscriber_ids
from taskboard_shared.schemas.common import NotificationType

log = structlog.get_logger()

NOTIFICATION_PAGE_SIZE = 50


async def create_notification(
    session: AsyncSession,
    agent_id: uuid.UUID,
    content: str,
    type: NotificationType,
    *,
    task_id: Optional[uuid.UUID] = None,
    message_id: Optional[uuid.UUID] = None,
) -> Notification:
    notification = Notification(
        agent_id=agent_id,
        task_id=task_id,
        message_id=message_id,
        content=content,
        type=type.value,
    )
    session.add(notification)
    await session.flush()
    return notification


async def _fanout(
    session: AsyncSession,
    recipients: Iterable[uuid.UUID],
    content: str,
    type: NotificationType,
    *,
    task_id: Optional[uuid.UUID],
    message_id: Optional[uuid.UUID] = None,
    exclude_agent_id: Optional[uuid.UUID] = None,
) -> list[Notification]:
    notifications = [
        Notification(
            agent_id=agent_id,
            task_id=task_id,
            message_id=message_id,
            content=content,
            type=type.value,
        )
        for agent_id in dict.fromkeys(recipients)
        if agent_id != exclude_agent_id
    ]
    if notifications:
        session.add_all(notifications)
        await session.flush()
    return notifications


async def notify_subscribers(
    session: AsyncSession,
    task_id: uuid.UUID,
    content: str,
    type: NotificationType,
    *,
    exclude_agent_id: Optional[uuid.UUID] = None,
    message_id: Optional[uuid.UUID] = None,
) -> list[Notification]:
    """One notification per subscriber of the task, minus the excluded agent."""
    subscribers = await get_subscriber_ids(session, task_id)
    notifications = await _fanout(
        session,
        subscribers,
        content,
        type,
        task_id=task_id,
        message_id=message_id,
        exclude_agent_id=exclude_agent_id,
    )
    log.debug("notifications.fanout", task_id=str(task_id), type=type.value, count=len(notifications))
    return notifications


async def notify_assignees(
    session: AsyncSession,
    task_id: uuid.UUID,
    content: str,
    type: NotificationType,
    *,
    exclude_agent_id: Optional[uuid.UUID] = None,
) -> list[Notification]:
    assignees = await get_assignee_ids(session, task_id)
    return await _fanout(
        session,
        assignees,
        content,
        type,
        task_id=task_id,
        exclude_agent_id=exclude_agent_id,
    )


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------


async def list_notifications(
    session: AsyncSession,
    agent_id: uuid.UUID,
    unread_only: bool = False,
    limit: int = NOTIFICATION_PAGE_SIZE,
) -> list[Notification]:
    query = select(Notification).where(Notification.agent_id == agent_id)
    if unread_only:
        query = query.where(Notification.read == False)  # noqa: E712
    result = await session.execute(
        query.order_by(Notification.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def _get_notification_or_404(
    session: AsyncSession, notification_id: uuid.UUID
) -> Notification:
    notification = await session.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification not found")
    return notification


async def mark_read(session: AsyncSession, notification_id: uuid.UUID) -> Notification:
    notification = await _get_notification_or_404(session, notification_id)
    notification.read = True
    await session.flush()
    return notification


async def mark_delivered(session: AsyncSession, notification_id: uuid.UUID) -> Notification:
    notification = await _get_notification_or_404(session, notification_id)
    notification.delivered = True
    await session.flush()
    return notification


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


async def subscribe(
    session: AsyncSession, agent_id: uuid.UUID, task_id: uuid.UUID
) -> Subscription:
    """Subscribe an agent to a task. Subscribing twice is a no-op."""
    existing = await session.get(Subscription, (agent_id, task_id))
    if existing:
        return existing
    subscription = Subscription(agent_id=agent_id, task_id=task_id)
    session.add(subscription)
    await session.flush()
    return subscription


async def unsubscribe(
    session: AsyncSession, agent_id: uuid.UUID, task_id: uuid.UUID
) -> None:
    existing = await session.get(Subscription, (agent_id, task_id))
    if not existing:
        raise NotFoundError("Subscription not found")
    await session.delete(existing)
    await session.flush()
