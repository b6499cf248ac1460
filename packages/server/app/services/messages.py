"""Task comments and @mention propagation."""

from __future__ import annotations

import re
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.agent import Agent
from app.models.message import Message
from app.services.activity import log_activity
from app.services.lookups import get_agent_or_404, get_task_or_404
from app.services.notifications import create_notification, notify_subscribers, subscribe
from app.services.triggers import create_trigger
from app.services.webhooks import EventOutbox
from taskboard_shared.schemas.common import (
    ActivityType,
    NotificationType,
    TriggerEventType,
    WebhookEventType,
)

log = structlog.get_logger()

# Agent names may contain hyphens (@Content-Writer)
MENTION_PATTERN = re.compile(r"@([\w-]+)")
PREVIEW_LENGTH = 100


def extract_mentions(content: str) -> list[str]:
    """Mentioned names in order of first appearance, without duplicates."""
    return list(dict.fromkeys(MENTION_PATTERN.findall(content)))


async def list_messages(session: AsyncSession, task_id: uuid.UUID) -> list[Message]:
    await get_task_or_404(session, task_id)
    result = await session.execute(
        select(Message).where(Message.task_id == task_id).order_by(Message.created_at.asc())
    )
    return list(result.scalars().all())


async def post_message(
    session: AsyncSession,
    task_id: uuid.UUID,
    from_agent_id: uuid.UUID,
    content: str,
    outbox: EventOutbox,
) -> tuple[Message, list[uuid.UUID]]:
    """
    Store a comment and propagate it.

    The author is subscribed to the task. Each mention of a known agent
    notifies and subscribes that agent, queues a mention trigger and emits an
    ``agent_mentioned`` webhook. Remaining subscribers get a reply notification.
    Returns the message and the ids of the agents that were mentioned.
    """
    task = await get_task_or_404(session, task_id)
    author = await get_agent_or_404(session, from_agent_id)

    message = Message(task_id=task_id, from_agent_id=from_agent_id, author_type="agent", content=content)
    session.add(message)
    await session.flush()

    await subscribe(session, from_agent_id, task_id)
    log_activity(
        session,
        ActivityType.MESSAGE_SENT,
        f"{author.name} commented",
        task_id=task_id,
        agent_id=from_agent_id,
    )

    preview = content[:PREVIEW_LENGTH]
    outbox.emit(
        WebhookEventType.MESSAGE_SENT,
        task.workspace_id,
        {
            "message_id": str(message.id),
            "task_id": str(task_id),
            "task_title": task.title,
            "from_agent_id": str(from_agent_id),
            "from_agent_name": author.name,
            "content": content,
        },
        str(message.id),
    )

    mentioned: list[uuid.UUID] = []
    for name in extract_mentions(content):
        result = await session.execute(select(Agent).where(Agent.name == name))
        agent = result.scalar_one_or_none()
        if agent is None:
            continue

        await create_notification(
            session,
            agent.id,
            f"{author.name} mentioned you: {preview}",
            NotificationType.MENTION,
            task_id=task_id,
            message_id=message.id,
        )
        await subscribe(session, agent.id, task_id)
        await create_trigger(
            session,
            agent.id,
            TriggerEventType.MENTION_CREATED,
            task_id=task_id,
            message_id=message.id,
            context={"mentioned_by": author.name, "message_preview": preview},
        )
        outbox.emit(
            WebhookEventType.AGENT_MENTIONED,
            task.workspace_id,
            {
                "task_id": str(task_id),
                "task_title": task.title,
                "message_id": str(message.id),
                "mentioned_agent_id": str(agent.id),
                "mentioned_agent_name": agent.name,
                "mentioned_by_id": str(from_agent_id),
                "mentioned_by_name": author.name,
                "message_preview": preview,
            },
            str(message.id),
        )
        mentioned.append(agent.id)

    await notify_subscribers(
        session,
        task_id,
        f"{author.name}: {preview}",
        NotificationType.REPLY,
        exclude_agent_id=from_agent_id,
        message_id=message.id,
    )
    log.info("message.posted", task_id=str(task_id), message_id=str(message.id), mentions=len(mentioned))
    return message, mentioned
