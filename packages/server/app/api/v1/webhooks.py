"""
Webhook registration endpoints and delivery operations.

Secrets are returned only when a registration is created or its secret is
regenerated. Test deliveries and retry processing run through the dispatcher,
which manages its own database sessions.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.services import webhooks as webhook_service
from app.services.webhooks import WebhookDispatcher, get_dispatcher
from taskboard_shared.schemas.common import APIResponse, DeliveryStatus
from taskboard_shared.schemas.webhooks import (
    DeliveryList,
    DeliveryRead,
    DeliveryResult,
    ProcessRetriesResult,
    WebhookCreate,
    WebhookRead,
    WebhookSecret,
    WebhookUpdate,
)

router = APIRouter()


@router.get("", response_model=List[WebhookRead])
async def list_webhooks_endpoint(
    workspace_id: Optional[uuid.UUID] = None,
    session: AsyncSession = Depends(get_session),
):
    webhooks = await webhook_service.list_webhooks(session, workspace_id)
    return [await webhook_service.to_webhook_read(session, w) for w in webhooks]


@router.post("", response_model=WebhookSecret, status_code=201)
async def create_webhook_endpoint(
    body: WebhookCreate,
    session: AsyncSession = Depends(get_session),
):
    """Register a webhook. The response carries the signing secret, shown once."""
    webhook = await webhook_service.create_webhook(session, body)
    await session.commit()
    return WebhookSecret(id=webhook.id, secret=webhook.secret)


@router.post("/process-retries", response_model=ProcessRetriesResult)
async def process_retries_endpoint(
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    return await dispatcher.process_retries()


@router.get("/{webhook_id}", response_model=WebhookRead)
async def get_webhook_endpoint(
    webhook_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    webhook = await webhook_service.get_webhook_or_404(session, webhook_id)
    return await webhook_service.to_webhook_read(session, webhook)


@router.patch("/{webhook_id}", response_model=WebhookRead)
async def update_webhook_endpoint(
    webhook_id: uuid.UUID,
    body: WebhookUpdate,
    session: AsyncSession = Depends(get_session),
):
    webhook = await webhook_service.update_webhook(session, webhook_id, body)
    await session.commit()
    return await webhook_service.to_webhook_read(session, webhook)


@router.delete("/{webhook_id}", response_model=APIResponse)
async def delete_webhook_endpoint(
    webhook_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    await webhook_service.delete_webhook(session, webhook_id)
    await session.commit()
    return APIResponse()


@router.post("/{webhook_id}/regenerate-secret", response_model=WebhookSecret)
async def regenerate_secret_endpoint(
    webhook_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    webhook = await webhook_service.regenerate_secret(session, webhook_id)
    await session.commit()
    return WebhookSecret(id=webhook.id, secret=webhook.secret)


@router.post("/{webhook_id}/test", response_model=DeliveryResult)
async def test_webhook_endpoint(
    webhook_id: uuid.UUID,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Send a synthetic ``test`` event to one registration, bypassing event matching."""
    return await dispatcher.send_test(webhook_id)


@router.get("/{webhook_id}/deliveries", response_model=DeliveryList)
async def list_deliveries_endpoint(
    webhook_id: uuid.UUID,
    status: Optional[DeliveryStatus] = None,
    limit: int = Query(20, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
):
    deliveries = await webhook_service.list_deliveries(session, webhook_id, status, limit)
    return DeliveryList(
        deliveries=[DeliveryRead.model_validate(d, from_attributes=True) for d in deliveries]
    )
