"""
ARQ background tasks: periodic maintenance of the delivery engine.

- process_webhook_retries: reattempt due webhook deliveries (every minute).
- reap_stale_triggers: return triggers whose consumer never acknowledged them
  to the queue (every 5 minutes).
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.database import async_session_factory, get_session_context
from app.services import triggers as trigger_service
from app.services.webhooks import WebhookDispatcher
from taskboard_shared.logging import configure_logging

log = structlog.get_logger()


async def process_webhook_retries(ctx: dict) -> int:
    """Returns the number of deliveries reattempted."""
    dispatcher: WebhookDispatcher = ctx.get("dispatcher") or WebhookDispatcher(
        session_factory=ctx.get("session_factory", async_session_factory)
    )
    result = await dispatcher.process_retries()
    if result.processed:
        log.info(
            "maintenance.webhook_retries",
            processed=result.processed,
            failed=sum(1 for r in result.results if r.failed),
        )
    return result.processed


async def reap_stale_triggers(ctx: dict) -> int:
    """Returns the number of triggers put back to pending."""
    settings = get_settings()
    async with get_session_context(ctx.get("session_factory")) as session:
        count = await trigger_service.reap_stale_triggers(
            session, settings.trigger_claim_lease_seconds
        )
    if count:
        log.info("maintenance.triggers_reaped", count=count)
    return count


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    ctx["session_factory"] = async_session_factory
    ctx["dispatcher"] = WebhookDispatcher(session_factory=async_session_factory)
    log.info("maintenance.worker_started")


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration (``arq app.tasks.maintenance.WorkerSettings``)."""

    functions = [process_webhook_retries, reap_stale_triggers]
    cron_jobs = [
        cron(process_webhook_retries, second=0, run_at_startup=True),
        cron(reap_stale_triggers, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}, second=30),
    ]
    on_startup = startup
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
