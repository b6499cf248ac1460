"""Webhook registrations, their event subscriptions and delivery records."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, utcnow


class Webhook(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "webhooks"

    url: str = Field(nullable=False)
    workspace_id: Optional[uuid.UUID] = Field(default=None, index=True)  # null = global
    secret: str = Field(nullable=False)
    active: bool = Field(default=True, nullable=False)
    name: Optional[str] = None


class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_events"

    webhook_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid(),
            sa.ForeignKey("webhooks.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    event_type: str = Field(primary_key=True, index=True)


class WebhookDelivery(SQLModel, table=True):
    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        sa.Index("ix_webhook_deliveries_status_retry", "status", "next_retry_at"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    webhook_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid(),
            sa.ForeignKey("webhooks.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    event_type: str = Field(nullable=False)
    event_id: Optional[str] = None
    payload: str = Field(sa_type=sa.Text(), nullable=False)  # exact bytes that were signed
    status: str = Field(default="pending", nullable=False)  # pending | success | retrying | failed
    attempts: int = Field(default=0, nullable=False)
    max_attempts: int = Field(default=3, nullable=False)
    last_error: Optional[str] = None
    last_status_code: Optional[int] = None
    next_retry_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(),
    )
    completed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
