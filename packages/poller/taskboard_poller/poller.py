"""
Poll loop: claim, wake, acknowledge.

Each cycle claims up to ``batch_size`` triggers, runs every trigger's cron job
on the gateway and acknowledges it completed or failed. A trigger whose
acknowledgement cannot be delivered stays in processing on the board and is
returned to the queue by the board's reaper.
"""

from __future__ import annotations

import asyncio
import signal
import time
from dataclasses import asdict, dataclass

import httpx
import structlog

from taskboard_shared.schemas.common import TriggerStatus

from .client import BoardClient, GatewayClient
from .config import PollerConfig
from .health import HealthServer
from .metrics import MetricsCollector

log = structlog.get_logger()

SHUTDOWN_TIMEOUT = 15.0


@dataclass
class PollResult:
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    ack_errors: int = 0
    webhook_retries: int = 0


class TriggerPoller:
    def __init__(
        self,
        config: PollerConfig,
        board: BoardClient | None = None,
        gateway: GatewayClient | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._config = config
        self._metrics = metrics or MetricsCollector()
        self._board = board or BoardClient(config.board, metrics=self._metrics)
        self._gateway = gateway or GatewayClient(config.gateway)
        self._health = HealthServer(config.metrics.host, config.metrics.port, self._metrics)
        self._shutdown_event = asyncio.Event()
        self._last_poll: dict | None = None

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    async def open(self) -> None:
        await self._board.open()
        await self._gateway.open()

    async def close(self) -> None:
        await self._gateway.close()
        await self._board.close()

    async def poll_once(self) -> PollResult:
        """Run one claim, wake and acknowledge cycle."""
        result = PollResult()
        started = time.monotonic()
        self._metrics.inc("polls_total")
        triggers = await self._board.claim(self._config.polling.batch_size)
        result.claimed = len(triggers)

        for trigger in triggers:
            event_type = trigger.event_type.value
            self._metrics.inc("triggers_claimed_total", event_type=event_type)
            log.info(
                "poller.trigger_processing",
                trigger_id=str(trigger.id),
                event_type=event_type,
                agent=trigger.agent_name or "unknown",
                cron_job_id=trigger.cron_job_id,
            )
            error = await self._gateway.run_cron(trigger.cron_job_id)
            status = TriggerStatus.FAILED if error else TriggerStatus.COMPLETED
            try:
                await self._board.acknowledge(trigger.id, status, error)
            except httpx.HTTPError as exc:
                result.ack_errors += 1
                self._metrics.inc("ack_errors_total")
                log.error("poller.ack_failed", trigger_id=str(trigger.id), error=str(exc))
                continue

            if error:
                result.failed += 1
                self._metrics.inc("triggers_failed_total", event_type=event_type)
            else:
                result.completed += 1
                self._metrics.inc("triggers_completed_total", event_type=event_type)

        if self._config.polling.process_webhook_retries:
            result.webhook_retries = await self._board.process_webhook_retries()

        self._metrics.record_cycle(started, result.claimed)
        self._last_poll = {"at": time.time(), **asdict(result)}
        if result.claimed:
            log.info("poller.cycle_done", **asdict(result))
        else:
            log.debug("poller.no_pending_triggers")
        return result

    async def run_forever(self) -> None:
        """Poll every ``interval_seconds`` until SIGTERM/SIGINT."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._shutdown_event.set)

        await self.open()
        if self._config.metrics.enabled:
            try:
                await self._health.start()
            except OSError as exc:
                log.warning("poller.health_start_failed", error=str(exc))

        log.info("poller.started", interval=self._config.polling.interval_seconds)
        try:
            while not self._shutdown_event.is_set():
                try:
                    await self.poll_once()
                except httpx.HTTPError as exc:
                    self._metrics.inc("poll_errors_total")
                    log.error("poller.cycle_failed", error=str(exc))
                self._health.update_status(await self._board.check_health(), self._last_poll)
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=self._config.polling.interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await asyncio.wait_for(self._shutdown(), timeout=SHUTDOWN_TIMEOUT)

    async def _shutdown(self) -> None:
        await self._health.stop()
        await self.close()
        log.info("poller.stopped")
