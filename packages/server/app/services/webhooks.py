"""
Webhook registrations and the delivery engine.

Deliveries are signed with HMAC-SHA-256 over the exact serialized body, which
is stored on the delivery row so retries resend identical bytes. A delivery
row is committed before the first POST, so a crash mid-request still leaves a
trace. Failed deliveries move to ``retrying`` with an exponential backoff and
become ``failed`` once ``max_attempts`` is reached. A retry run claims each
due row by bumping its attempt count with a conditional update, so
overlapping runs never resend the same attempt.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import random
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

import httpx
import structlog
from sqlalchemy import delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from app.core.config import Settings, get_settings
from app.core.database import async_session_factory
from app.core.errors import (
    NotFoundError,
    TerminalDeliveryError,
    TransientDeliveryError,
    ValidationError,
)
from app.models.base import utcnow
from app.models.webhook import Webhook, WebhookDelivery, WebhookEvent
from taskboard_shared.schemas.common import TEST_EVENT, DeliveryStatus, WebhookEventType
from taskboard_shared.schemas.webhooks import (
    DeliveryResult,
    ProcessRetriesResult,
    RetryOutcome,
    WebhookCreate,
    WebhookRead,
    WebhookUpdate,
)

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Signing & backoff
# ---------------------------------------------------------------------------


def sign_payload(payload: str, secret: str) -> str:
    """Lowercase hex HMAC-SHA-256 of ``payload`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def compute_backoff(
    attempt: int,
    base: int = 60,
    cap: int = 3600,
    jitter: float = 0.2,
    rng: Callable[[], float] = random.random,
) -> int:
    """Seconds to wait before the next attempt: capped exponential plus jitter."""
    delay = min(base * 2**attempt, cap)
    return int(delay + delay * jitter * rng())


def generate_secret() -> str:
    return secrets.token_hex(32)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Registration management
# ---------------------------------------------------------------------------


def _validate_https_url(url: str) -> str:
    url = url.strip()
    parts = urlsplit(url)
    if parts.scheme != "https" or not parts.netloc:
        raise ValidationError("URL must be a valid HTTPS URL", field="url")
    return url


async def get_webhook_or_404(session: AsyncSession, webhook_id: uuid.UUID) -> Webhook:
    webhook = await session.get(Webhook, webhook_id)
    if not webhook:
        raise NotFoundError("Webhook not found", {"webhook_id": str(webhook_id)})
    return webhook


async def get_webhook_events(session: AsyncSession, webhook_id: uuid.UUID) -> list[str]:
    result = await session.execute(
        select(WebhookEvent.event_type)
        .where(WebhookEvent.webhook_id == webhook_id)
        .order_by(WebhookEvent.event_type)
    )
    return [row[0] for row in result.all()]


async def _replace_events(
    session: AsyncSession, webhook_id: uuid.UUID, events: list[WebhookEventType]
) -> None:
    await session.execute(delete(WebhookEvent).where(WebhookEvent.webhook_id == webhook_id))
    session.add_all(
        WebhookEvent(webhook_id=webhook_id, event_type=e.value) for e in dict.fromkeys(events)
    )


async def to_webhook_read(session: AsyncSession, webhook: Webhook) -> WebhookRead:
    return WebhookRead(
        id=webhook.id,
        url=webhook.url,
        events=await get_webhook_events(session, webhook.id),
        workspace_id=webhook.workspace_id,
        name=webhook.name,
        active=webhook.active,
        created_at=webhook.created_at,
        updated_at=webhook.updated_at,
    )


async def create_webhook(session: AsyncSession, data: WebhookCreate) -> Webhook:
    webhook = Webhook(
        url=_validate_https_url(data.url),
        workspace_id=data.workspace_id,
        name=data.name.strip() if data.name else None,
        active=data.active,
        secret=generate_secret(),
    )
    session.add(webhook)
    await session.flush()
    await _replace_events(session, webhook.id, data.events)
    await session.flush()
    log.info("webhook.created", webhook_id=str(webhook.id), events=[e.value for e in data.events])
    return webhook


async def list_webhooks(
    session: AsyncSession, workspace_id: Optional[uuid.UUID] = None
) -> list[Webhook]:
    query = select(Webhook)
    if workspace_id is not None:
        query = query.where(Webhook.workspace_id == workspace_id)
    result = await session.execute(query.order_by(Webhook.created_at.desc()))
    return list(result.scalars().all())


async def update_webhook(
    session: AsyncSession, webhook_id: uuid.UUID, data: WebhookUpdate
) -> Webhook:
    webhook = await get_webhook_or_404(session, webhook_id)
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No valid fields to update")

    if "url" in changes:
        if changes["url"] is None:
            raise ValidationError("URL must be a valid HTTPS URL", field="url")
        webhook.url = _validate_https_url(changes["url"])
    if "events" in changes:
        await _replace_events(session, webhook.id, data.events or [])
    if "name" in changes:
        webhook.name = changes["name"].strip() if changes["name"] else None
    if "active" in changes and changes["active"] is not None:
        webhook.active = changes["active"]
    if "workspace_id" in changes:
        webhook.workspace_id = changes["workspace_id"]

    webhook.updated_at = utcnow()
    await session.flush()
    log.info("webhook.updated", webhook_id=str(webhook.id), fields=sorted(changes))
    return webhook


async def delete_webhook(session: AsyncSession, webhook_id: uuid.UUID) -> None:
    webhook = await get_webhook_or_404(session, webhook_id)
    await session.execute(delete(WebhookEvent).where(WebhookEvent.webhook_id == webhook_id))
    await session.execute(delete(WebhookDelivery).where(WebhookDelivery.webhook_id == webhook_id))
    await session.delete(webhook)
    await session.flush()
    log.info("webhook.deleted", webhook_id=str(webhook_id))


async def regenerate_secret(session: AsyncSession, webhook_id: uuid.UUID) -> Webhook:
    webhook = await get_webhook_or_404(session, webhook_id)
    webhook.secret = generate_secret()
    webhook.updated_at = utcnow()
    await session.flush()
    log.info("webhook.secret_regenerated", webhook_id=str(webhook_id))
    return webhook


async def list_deliveries(
    session: AsyncSession,
    webhook_id: uuid.UUID,
    status: Optional[DeliveryStatus] = None,
    limit: int = 20,
) -> list[WebhookDelivery]:
    await get_webhook_or_404(session, webhook_id)
    query = select(WebhookDelivery).where(WebhookDelivery.webhook_id == webhook_id)
    if status is not None:
        query = query.where(WebhookDelivery.status == status.value)
    result = await session.execute(
        query.order_by(WebhookDelivery.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WebhookTarget:
    """Detached copy of the registration fields a POST needs."""

    id: uuid.UUID
    url: str
    secret: str

    @classmethod
    def from_model(cls, webhook: Webhook) -> "WebhookTarget":
        return cls(id=webhook.id, url=webhook.url, secret=webhook.secret)


class WebhookDispatcher:
    """
    Delivers events to matching registrations and drives retries.

    Runs outside the request's unit of work: it opens its own sessions from
    ``session_factory`` so it can be scheduled as a background task after the
    response is sent. ``transport`` lets tests swap in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session_factory,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
        rng: Callable[[], float] = random.random,
    ):
        self.session_factory = session_factory
        self.transport = transport
        self.settings = settings or get_settings()
        self.rng = rng

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self.transport,
            timeout=self.settings.webhook_timeout_seconds,
            headers={"User-Agent": self.settings.webhook_user_agent},
        )

    def _backoff(self, attempt: int) -> int:
        return compute_backoff(
            attempt,
            base=self.settings.webhook_backoff_base_seconds,
            cap=self.settings.webhook_backoff_max_seconds,
            jitter=self.settings.webhook_backoff_jitter,
            rng=self.rng,
        )

    async def _post(
        self,
        client: httpx.AsyncClient,
        target: WebhookTarget,
        event_type: str,
        delivery_id: uuid.UUID,
        payload: str,
        retry: Optional[int] = None,
    ) -> int:
        """POST a signed payload. Returns the 2xx status or raises TransientDeliveryError."""
        headers = {
            "Content-Type": "application/json",
            "X-MC-Signature": sign_payload(payload, target.secret),
            "X-MC-Timestamp": str(int(time.time() * 1000)),
            "X-MC-Event": event_type,
            "X-MC-Delivery": str(delivery_id),
        }
        if retry is not None:
            headers["X-MC-Retry"] = str(retry)

        try:
            response = await client.post(target.url, content=payload.encode("utf-8"), headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransientDeliveryError(str(e) or e.__class__.__name__) from e

        if not response.is_success:
            raise TransientDeliveryError(f"HTTP {response.status_code}", response.status_code)
        return response.status_code

    async def deliver(
        self,
        target: WebhookTarget,
        event_type: str,
        event_id: Optional[str],
        body: dict[str, Any],
        client: Optional[httpx.AsyncClient] = None,
    ) -> DeliveryResult:
        """First delivery attempt of one event to one registration."""
        payload = json.dumps(body, default=str)

        async with self.session_factory() as session:
            delivery = WebhookDelivery(
                webhook_id=target.id,
                event_type=event_type,
                event_id=event_id,
                payload=payload,
                status=DeliveryStatus.PENDING.value,
                attempts=1,
                max_attempts=self.settings.webhook_max_attempts,
            )
            session.add(delivery)
            await session.commit()
            delivery_id = delivery.id

            try:
                if client is None:
                    async with self._client() as own_client:
                        status_code = await self._post(own_client, target, event_type, delivery_id, payload)
                else:
                    status_code = await self._post(client, target, event_type, delivery_id, payload)
            except TransientDeliveryError as e:
                delay = self._backoff(1)
                delivery.status = DeliveryStatus.RETRYING.value
                delivery.last_error = str(e)
                delivery.last_status_code = e.status_code
                delivery.next_retry_at = utcnow() + timedelta(seconds=delay)
                await session.commit()
                log.warning(
                    "webhook.delivery_failed",
                    webhook_id=str(target.id),
                    delivery_id=str(delivery_id),
                    event_type=event_type,
                    error=str(e),
                    retry_in_seconds=delay,
                )
                return DeliveryResult(
                    success=False,
                    delivery_id=delivery_id,
                    status_code=e.status_code,
                    error=str(e),
                )
            except Exception as e:
                # Not retryable: close the row so it never lingers in pending.
                error = str(e) or e.__class__.__name__
                delivery.status = DeliveryStatus.FAILED.value
                delivery.last_error = error
                delivery.completed_at = utcnow()
                await session.commit()
                log.exception(
                    "webhook.delivery_error",
                    webhook_id=str(target.id),
                    delivery_id=str(delivery_id),
                    event_type=event_type,
                )
                return DeliveryResult(success=False, delivery_id=delivery_id, error=error)

            delivery.status = DeliveryStatus.SUCCESS.value
            delivery.last_status_code = status_code
            delivery.completed_at = utcnow()
            await session.commit()

        log.info(
            "webhook.delivered",
            webhook_id=str(target.id),
            delivery_id=str(delivery_id),
            event_type=event_type,
            status_code=status_code,
        )
        return DeliveryResult(success=True, delivery_id=delivery_id, status_code=status_code)

    async def _matching_targets(
        self, session: AsyncSession, event_type: str, workspace_id: Optional[uuid.UUID]
    ) -> list[WebhookTarget]:
        scope = (
            or_(Webhook.workspace_id.is_(None), Webhook.workspace_id == workspace_id)
            if workspace_id is not None
            else Webhook.workspace_id.is_(None)
        )
        result = await session.execute(
            select(Webhook)
            .join(WebhookEvent, WebhookEvent.webhook_id == Webhook.id)
            .where(
                Webhook.active == True,  # noqa: E712
                WebhookEvent.event_type == event_type,
                scope,
            )
            .order_by(Webhook.created_at)
        )
        return [WebhookTarget.from_model(w) for w in result.scalars().all()]

    async def dispatch_event(
        self,
        event_type: WebhookEventType,
        workspace_id: Optional[uuid.UUID],
        data: dict[str, Any],
        event_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Deliver an event to every matching registration.

        Never raises: per-registration failures are collected in ``errors``.
        """
        dispatched = 0
        errors: list[str] = []
        try:
            async with self.session_factory() as session:
                targets = await self._matching_targets(session, event_type.value, workspace_id)

            if targets:
                async with self._client() as client:
                    for target in targets:
                        body = {"event": event_type.value, "timestamp": _iso_now(), "data": data}
                        try:
                            await self.deliver(target, event_type.value, event_id, body, client=client)
                            dispatched += 1
                        except Exception as e:
                            errors.append(f"Failed to dispatch to webhook {target.id}: {e}")
                            log.exception("webhook.dispatch_error", webhook_id=str(target.id), event_type=event_type.value)
        except Exception as e:
            errors.append(f"Event dispatch error: {e}")
            log.exception("webhook.dispatch_error", event_type=event_type.value)

        log.debug("webhook.dispatched", event_type=event_type.value, dispatched=dispatched, errors=len(errors))
        return {"dispatched": dispatched, "errors": errors}

    async def send_test(self, webhook_id: uuid.UUID) -> DeliveryResult:
        async with self.session_factory() as session:
            webhook = await get_webhook_or_404(session, webhook_id)
            if not webhook.active:
                raise ValidationError("Webhook is not active")
            target = WebhookTarget.from_model(webhook)

        body = {
            "event": TEST_EVENT,
            "webhook_id": str(target.id),
            "timestamp": _iso_now(),
            "data": {
                "message": "This is a test delivery from Mission Control",
                "test": True,
            },
        }
        return await self.deliver(target, TEST_EVENT, None, body)

    async def process_retries(self, limit: Optional[int] = None) -> ProcessRetriesResult:
        """Reattempt due deliveries. Each row is committed on its own."""
        if limit is None:
            limit = self.settings.webhook_retry_batch_size
        results: list[RetryOutcome] = []

        async with self.session_factory() as session:
            due = await session.execute(
                select(WebhookDelivery, Webhook)
                .join(Webhook, Webhook.id == WebhookDelivery.webhook_id)
                .where(
                    WebhookDelivery.status == DeliveryStatus.RETRYING.value,
                    WebhookDelivery.next_retry_at <= utcnow(),
                    WebhookDelivery.attempts < WebhookDelivery.max_attempts,
                    Webhook.active == True,  # noqa: E712
                )
                .order_by(WebhookDelivery.next_retry_at)
                .limit(limit)
            )
            rows = [(d, WebhookTarget.from_model(w)) for d, w in due.all()]
            if not rows:
                return ProcessRetriesResult(processed=0, results=[])

            async with self._client() as client:
                for delivery, target in rows:
                    if not await self._claim_retry(session, delivery):
                        log.debug("webhook.retry_claim_lost", delivery_id=str(delivery.id))
                        continue
                    results.append(await self._retry_one(session, client, delivery, target))

        log.info(
            "webhook.retries_processed",
            processed=len(results),
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if r.failed),
        )
        return ProcessRetriesResult(processed=len(results), results=results)

    async def _claim_retry(self, session: AsyncSession, delivery: WebhookDelivery) -> bool:
        """
        Take a due delivery for this run by bumping ``attempts`` from the value
        it was read with. A concurrent run that already took it leaves the
        guard unmatched, and the row is skipped.
        """
        read_attempts = delivery.attempts
        result = await session.execute(
            update(WebhookDelivery)
            .where(
                WebhookDelivery.id == delivery.id,
                WebhookDelivery.status == DeliveryStatus.RETRYING.value,
                WebhookDelivery.attempts == read_attempts,
            )
            .values(attempts=read_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if result.rowcount == 0:
            return False
        delivery.attempts = read_attempts + 1
        return True

    async def _retry_one(
        self,
        session: AsyncSession,
        client: httpx.AsyncClient,
        delivery: WebhookDelivery,
        target: WebhookTarget,
    ) -> RetryOutcome:
        """Reattempt a delivery already claimed by ``_claim_retry``."""
        attempt = delivery.attempts
        try:
            status_code = await self._post(
                client, target, delivery.event_type, delivery.id, delivery.payload, retry=attempt
            )
        except TransientDeliveryError as e:
            delivery.last_status_code = e.status_code
            if attempt >= delivery.max_attempts:
                terminal = TerminalDeliveryError(e, attempt)
                delivery.status = DeliveryStatus.FAILED.value
                delivery.last_error = str(terminal)
                delivery.completed_at = utcnow()
                delivery.next_retry_at = None
                await session.commit()
                log.warning(
                    "webhook.delivery_exhausted",
                    delivery_id=str(delivery.id),
                    webhook_id=str(target.id),
                    attempts=attempt,
                    error=str(terminal),
                )
                return RetryOutcome(
                    id=delivery.id,
                    success=False,
                    failed=True,
                    attempt=attempt,
                    status_code=e.status_code,
                    error=str(terminal),
                )

            delay = self._backoff(attempt)
            delivery.last_error = str(e)
            delivery.next_retry_at = utcnow() + timedelta(seconds=delay)
            await session.commit()
            return RetryOutcome(
                id=delivery.id,
                success=False,
                retry_scheduled=True,
                attempt=attempt,
                status_code=e.status_code,
                error=str(e),
            )

        delivery.status = DeliveryStatus.SUCCESS.value
        delivery.last_status_code = status_code
        delivery.completed_at = utcnow()
        delivery.next_retry_at = None
        await session.commit()
        return RetryOutcome(id=delivery.id, success=True, attempt=attempt, status_code=status_code)


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OutboundEvent:
    event_type: WebhookEventType
    workspace_id: Optional[uuid.UUID]
    data: dict[str, Any]
    event_id: Optional[str] = None


class EventOutbox:
    """
    Webhook events produced by one unit of work.

    Services append to it while mutating; the endpoint schedules the events
    once the unit of work has committed.
    """

    def __init__(self):
        self.events: list[OutboundEvent] = []

    def emit(
        self,
        event_type: WebhookEventType,
        workspace_id: Optional[uuid.UUID],
        data: dict[str, Any],
        event_id: Optional[str] = None,
    ) -> None:
        self.events.append(OutboundEvent(event_type, workspace_id, data, event_id))

    def schedule(self, background_tasks, dispatcher: "WebhookDispatcher") -> None:
        for event in self.events:
            background_tasks.add_task(
                dispatcher.dispatch_event,
                event.event_type,
                event.workspace_id,
                event.data,
                event.event_id,
            )
        self.events = []


_dispatcher: Optional[WebhookDispatcher] = None


def get_dispatcher() -> WebhookDispatcher:
    """FastAPI dependency returning the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher()
    return _dispatcher
