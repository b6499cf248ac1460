"""Trigger queue schemas: the contract between the board and agent-side consumers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .common import TriggerEventType, TriggerStatus


class TriggerClaim(BaseModel):
    """Request body for POST /triggers/claim."""
    limit: int = Field(default=5, ge=1, le=100)


class TriggerRead(BaseModel):
    id: UUID
    agent_id: UUID
    agent_name: Optional[str] = None
    cron_job_id: str
    event_type: TriggerEventType
    task_id: Optional[UUID] = None
    message_id: Optional[UUID] = None
    context: Optional[dict[str, Any]] = None
    status: TriggerStatus
    created_at: datetime
    claimed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class TriggerClaimResult(BaseModel):
    triggers: List[TriggerRead] = Field(default_factory=list)
    claimed: int = 0


class TriggerUpdate(BaseModel):
    """Request body for PATCH /triggers/{id} (consumer acknowledgement)."""
    status: TriggerStatus
    error: Optional[str] = None


class TriggerList(BaseModel):
    triggers: List[TriggerRead] = Field(default_factory=list)
