"""
Trigger queue endpoints used by agent-side consumers.

Consumers claim a batch (POST /claim), wake the agents, then acknowledge each
trigger with PATCH as completed or failed.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session
from app.services import triggers as trigger_service
from taskboard_shared.schemas.common import APIResponse, TriggerStatus
from taskboard_shared.schemas.triggers import (
    TriggerClaim,
    TriggerClaimResult,
    TriggerList,
    TriggerUpdate,
)

router = APIRouter()


@router.post("/claim", response_model=TriggerClaimResult)
async def claim_triggers_endpoint(
    body: Optional[TriggerClaim] = None,
    session: AsyncSession = Depends(get_session),
):
    """Atomically claim the oldest pending triggers (FIFO)."""
    limit = body.limit if body else TriggerClaim().limit
    triggers = await trigger_service.claim_triggers(session, limit)
    await session.commit()
    return TriggerClaimResult(triggers=triggers, claimed=len(triggers))


@router.patch("/{trigger_id}", response_model=APIResponse)
async def update_trigger_endpoint(
    trigger_id: uuid.UUID,
    body: TriggerUpdate,
    session: AsyncSession = Depends(get_session),
):
    await trigger_service.acknowledge_trigger(session, trigger_id, body.status, body.error)
    await session.commit()
    return APIResponse()


@router.get("", response_model=TriggerList)
async def list_triggers_endpoint(
    status: Optional[TriggerStatus] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    """Recent triggers, newest first (monitoring)."""
    if limit is None:
        limit = get_settings().trigger_list_default_limit
    triggers = await trigger_service.list_triggers(session, status, limit)
    return TriggerList(triggers=triggers)
