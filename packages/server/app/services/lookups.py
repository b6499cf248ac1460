"""Row lookups shared by the service modules."""

from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFoundError
from app.models.agent import Agent
from app.models.assignments import TaskAssignee
from app.models.subscription import Subscription
from app.models.task import Task


async def get_task_or_404(
    session: AsyncSession, task_id: uuid.UUID, label: str = "Task"
) -> Task:
    task = await session.get(Task, task_id)
    if not task:
        raise NotFoundError(f"{label} not found", {"task_id": str(task_id)})
    return task


async def get_agent_or_404(session: AsyncSession, agent_id: uuid.UUID) -> Agent:
    agent = await session.get(Agent, agent_id)
    if not agent:
        raise NotFoundError("Agent not found", {"agent_id": str(agent_id)})
    return agent


async def get_assignee_ids(session: AsyncSession, task_id: uuid.UUID) -> list[uuid.UUID]:
    result = await session.execute(
        select(TaskAssignee.agent_id).where(TaskAssignee.task_id == task_id)
    )
    return [row[0] for row in result.all()]


async def get_subscriber_ids(session: AsyncSession, task_id: uuid.UUID) -> list[uuid.UUID]:
    result = await session.execute(
        select(Subscription.agent_id).where(Subscription.task_id == task_id)
    )
    return [row[0] for row in result.all()]
