"""Activity feed writes."""

from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.activity import Activity
from taskboard_shared.schemas.common import ActivityType


def log_activity(
    session: AsyncSession,
    type: ActivityType,
    message: str,
    *,
    task_id: Optional[uuid.UUID] = None,
    agent_id: Optional[uuid.UUID] = None,
    details: Optional[dict[str, Any]] = None,
) -> Activity:
    """Stage an activity row in the caller's unit of work (flushed with it)."""
    activity = Activity(
        type=type.value,
        message=message,
        task_id=task_id,
        agent_id=agent_id,
        details=details,
    )
    session.add(activity)
    return activity


async def list_task_activity(
    session: AsyncSession, task_id: uuid.UUID, limit: int = 50
) -> list[Activity]:
    result = await session.execute(
        select(Activity)
        .where(Activity.task_id == task_id)
        .order_by(Activity.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
