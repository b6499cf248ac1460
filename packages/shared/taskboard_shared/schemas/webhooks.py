"""Webhook registration and delivery schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .common import DeliveryStatus, WebhookEventType


# ---------------------------------------------------------------------------
# Registrations
# ---------------------------------------------------------------------------

class WebhookCreate(BaseModel):
    url: str
    events: List[WebhookEventType] = Field(default_factory=list)
    workspace_id: Optional[UUID] = None
    name: Optional[str] = None
    active: bool = True


class WebhookUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: Optional[str] = None
    events: Optional[List[WebhookEventType]] = None
    workspace_id: Optional[UUID] = None
    name: Optional[str] = None
    active: Optional[bool] = None


class WebhookRead(BaseModel):
    """Registration as exposed by the API. The secret is never included."""
    id: UUID
    url: str
    events: List[WebhookEventType] = Field(default_factory=list)
    workspace_id: Optional[UUID] = None
    name: Optional[str] = None
    active: bool
    created_at: datetime
    updated_at: datetime


class WebhookSecret(BaseModel):
    """Returned on creation and on secret regeneration only."""
    id: UUID
    secret: str
    success: bool = True


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------

class DeliveryRead(BaseModel):
    id: UUID
    webhook_id: UUID
    event_type: str
    event_id: Optional[str] = None
    payload: str
    status: DeliveryStatus
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    last_status_code: Optional[int] = None
    next_retry_at: Optional[datetime] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class DeliveryList(BaseModel):
    deliveries: List[DeliveryRead] = Field(default_factory=list)


class DeliveryResult(BaseModel):
    """Outcome of a single delivery attempt (used by the test endpoint)."""
    success: bool
    delivery_id: UUID
    status_code: Optional[int] = None
    error: Optional[str] = None


class RetryOutcome(BaseModel):
    id: UUID
    success: bool
    attempt: int
    failed: bool = False
    retry_scheduled: bool = False
    status_code: Optional[int] = None
    error: Optional[str] = None


class ProcessRetriesResult(BaseModel):
    processed: int = 0
    results: List[RetryOutcome] = Field(default_factory=list)
