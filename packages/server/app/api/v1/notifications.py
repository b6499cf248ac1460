"""Per-agent notification inbox."""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.services import notifications as notification_service
from taskboard_shared.schemas.tasks import NotificationRead

router = APIRouter()


@router.get("/{agent_id}", response_model=List[NotificationRead])
async def list_notifications_endpoint(
    agent_id: uuid.UUID,
    unread_only: bool = Query(False),
    session: AsyncSession = Depends(get_session),
):
    """Latest 50 notifications for an agent, newest first."""
    rows = await notification_service.list_notifications(session, agent_id, unread_only=unread_only)
    return [NotificationRead.model_validate(n, from_attributes=True) for n in rows]


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_read_endpoint(
    notification_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    notification = await notification_service.mark_read(session, notification_id)
    await session.commit()
    return NotificationRead.model_validate(notification, from_attributes=True)


@router.post("/{notification_id}/delivered", response_model=NotificationRead)
async def mark_delivered_endpoint(
    notification_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    notification = await notification_service.mark_delivered(session, notification_id)
    await session.commit()
    return NotificationRead.model_validate(notification, from_attributes=True)
