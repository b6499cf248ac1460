"""
Trigger queue: durable wake-up requests for agent-side consumers.

Entries move pending -> processing -> completed | failed. Claiming is a
conditional UPDATE guarded by ``status = 'pending'`` that stamps a per-call
claim token, so two consumers racing for the same rows never both receive a
row: whichever UPDATE lands second matches nothing for that row.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.agent import Agent
from app.models.base import utcnow
from app.models.trigger import PendingTrigger
from taskboard_shared.schemas.common import (
    TERMINAL_TRIGGER_STATUSES,
    TriggerEventType,
    TriggerStatus,
)
from taskboard_shared.schemas.triggers import TriggerRead

log = structlog.get_logger()

ACTIVE_STATUSES = (TriggerStatus.PENDING.value, TriggerStatus.PROCESSING.value)


def to_trigger_read(trigger: PendingTrigger, agent_name: Optional[str]) -> TriggerRead:
    return TriggerRead(
        id=trigger.id,
        agent_id=trigger.agent_id,
        agent_name=agent_name,
        cron_job_id=trigger.cron_job_id,
        event_type=trigger.event_type,
        task_id=trigger.task_id,
        message_id=trigger.message_id,
        context=trigger.context,
        status=trigger.status,
        created_at=trigger.created_at,
        claimed_at=trigger.claimed_at,
        completed_at=trigger.completed_at,
        error=trigger.error,
    )


# ---------------------------------------------------------------------------
# Producers
# ---------------------------------------------------------------------------


async def create_trigger(
    session: AsyncSession,
    agent_id: uuid.UUID,
    event_type: TriggerEventType,
    *,
    task_id: Optional[uuid.UUID] = None,
    message_id: Optional[uuid.UUID] = None,
    context: Optional[dict[str, Any]] = None,
    dedup_window_seconds: Optional[int] = None,
) -> Optional[PendingTrigger]:
    """
    Queue a trigger for an agent's consumer.

    Returns None without raising when the agent cannot be woken (unknown agent
    or no ``cron_job_id``) or when an equivalent trigger is already pending or
    in flight within the dedup window. A null ``task_id`` is its own dedup key.
    """
    agent = await session.get(Agent, agent_id)
    if not agent or not agent.cron_job_id:
        log.info("trigger.skipped_no_consumer", agent_id=str(agent_id), event_type=event_type.value)
        return None

    if dedup_window_seconds is None:
        dedup_window_seconds = get_settings().trigger_dedup_window_seconds
    since = utcnow() - timedelta(seconds=dedup_window_seconds)

    query = select(PendingTrigger.id).where(
        PendingTrigger.agent_id == agent_id,
        PendingTrigger.event_type == event_type.value,
        PendingTrigger.status.in_(ACTIVE_STATUSES),
        PendingTrigger.created_at > since,
    )
    if task_id is None:
        query = query.where(PendingTrigger.task_id.is_(None))
    else:
        query = query.where(PendingTrigger.task_id == task_id)
    recent = await session.execute(query.limit(1))
    if recent.first():
        log.info(
            "trigger.deduplicated",
            agent_id=str(agent_id),
            event_type=event_type.value,
            task_id=str(task_id) if task_id else None,
        )
        return None

    trigger = PendingTrigger(
        agent_id=agent_id,
        cron_job_id=agent.cron_job_id,
        event_type=event_type.value,
        task_id=task_id,
        message_id=message_id,
        context=context,
    )
    session.add(trigger)
    await session.flush()
    log.info("trigger.created", trigger_id=str(trigger.id), agent_id=str(agent_id), event_type=event_type.value)
    return trigger


# ---------------------------------------------------------------------------
# Claiming
# ---------------------------------------------------------------------------


async def _select_pending_ids(session: AsyncSession, limit: int) -> list[uuid.UUID]:
    result = await session.execute(
        select(PendingTrigger.id)
        .where(PendingTrigger.status == TriggerStatus.PENDING.value)
        .order_by(PendingTrigger.created_at.asc())
        .limit(limit)
    )
    return [row[0] for row in result.all()]


async def _mark_claimed(
    session: AsyncSession, ids: Sequence[uuid.UUID], claim_token: uuid.UUID
) -> int:
    """Flip still-pending rows among ``ids`` to processing. Returns the number won."""
    result = await session.execute(
        update(PendingTrigger)
        .where(
            PendingTrigger.id.in_(ids),
            PendingTrigger.status == TriggerStatus.PENDING.value,
        )
        .values(
            status=TriggerStatus.PROCESSING.value,
            claimed_at=utcnow(),
            claim_token=claim_token,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def _load_claimed(
    session: AsyncSession, claim_token: uuid.UUID
) -> list[tuple[PendingTrigger, Optional[str]]]:
    result = await session.execute(
        select(PendingTrigger, Agent.name)
        .outerjoin(Agent, Agent.id == PendingTrigger.agent_id)
        .where(
            PendingTrigger.claim_token == claim_token,
            PendingTrigger.status == TriggerStatus.PROCESSING.value,
        )
        .order_by(PendingTrigger.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return [(trigger, name) for trigger, name in result.all()]


async def claim_triggers(session: AsyncSession, limit: int = 5) -> list[TriggerRead]:
    """Claim up to ``limit`` of the oldest pending triggers, FIFO by creation time."""
    ids = await _select_pending_ids(session, limit)
    if not ids:
        return []

    claim_token = uuid.uuid4()
    won = await _mark_claimed(session, ids, claim_token)
    if not won:
        log.debug("trigger.claim_lost_race", candidates=len(ids))
        return []

    claimed = await _load_claimed(session, claim_token)
    log.info("trigger.claimed", count=len(claimed), requested=limit)
    return [to_trigger_read(trigger, name) for trigger, name in claimed]


# ---------------------------------------------------------------------------
# Acknowledgement & monitoring
# ---------------------------------------------------------------------------


async def acknowledge_trigger(
    session: AsyncSession,
    trigger_id: uuid.UUID,
    status: TriggerStatus,
    error: Optional[str] = None,
) -> PendingTrigger:
    if status not in TERMINAL_TRIGGER_STATUSES:
        raise ValidationError(
            "Trigger status must be 'completed' or 'failed'", field="status"
        )

    trigger = await session.get(PendingTrigger, trigger_id)
    if not trigger:
        raise NotFoundError("Trigger not found", {"trigger_id": str(trigger_id)})

    if trigger.status == status.value:
        return trigger
    if trigger.status in (TriggerStatus.COMPLETED.value, TriggerStatus.FAILED.value):
        raise ConflictError(
            f"Trigger already acknowledged as {trigger.status}",
            {"trigger_id": str(trigger_id), "current_status": trigger.status},
        )

    trigger.status = status.value
    trigger.completed_at = utcnow()
    if error:
        trigger.error = error
    await session.flush()
    log.info("trigger.acknowledged", trigger_id=str(trigger_id), status=status.value)
    return trigger


async def list_triggers(
    session: AsyncSession,
    status: Optional[TriggerStatus] = None,
    limit: int = 20,
) -> list[TriggerRead]:
    query = select(PendingTrigger, Agent.name).outerjoin(
        Agent, Agent.id == PendingTrigger.agent_id
    )
    if status is not None:
        query = query.where(PendingTrigger.status == status.value)
    result = await session.execute(
        query.order_by(PendingTrigger.created_at.desc()).limit(limit)
    )
    return [to_trigger_read(trigger, name) for trigger, name in result.all()]


async def reap_stale_triggers(
    session: AsyncSession, lease_seconds: Optional[int] = None
) -> int:
    """Return processing triggers whose claim outlived the lease to the queue."""
    if lease_seconds is None:
        lease_seconds = get_settings().trigger_claim_lease_seconds
    cutoff = utcnow() - timedelta(seconds=lease_seconds)

    result = await session.execute(
        update(PendingTrigger)
        .where(
            PendingTrigger.status == TriggerStatus.PROCESSING.value,
            PendingTrigger.claimed_at < cutoff,
        )
        .values(
            status=TriggerStatus.PENDING.value,
            claimed_at=None,
            claim_token=None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        log.warning("trigger.reaped", count=result.rowcount, lease_seconds=lease_seconds)
    return result.rowcount
