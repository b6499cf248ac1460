"""
HTTP clients for the task board and the agent gateway.

Board requests are retried on 5xx, 429 and connection errors with exponential
backoff. A 4xx answer is a caller error and is raised immediately.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import httpx
import structlog

from taskboard_shared.schemas.common import TriggerStatus
from taskboard_shared.schemas.triggers import TriggerClaimResult, TriggerRead

from .config import BoardConfig, GatewayConfig
from .metrics import MetricsCollector

log = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


class BoardClient:
    """Talks to the board's trigger queue API."""

    def __init__(
        self,
        config: BoardConfig,
        metrics: MetricsCollector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._config = config
        self._base_url = config.url.rstrip("/")
        self._metrics = metrics
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        headers = {}
        if self._config.api_token:
            headers["Authorization"] = f"Bearer {self._config.api_token}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._config.request_timeout_seconds),
            verify=self._config.verify_tls,
            headers=headers,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        assert self._client
        last_exc: Exception | None = None
        for attempt in range(self._config.max_retries):
            backoff = self._config.retry_base_seconds * (2 ** attempt)
            try:
                resp = await self._client.request(method, path, **kwargs)

                if resp.status_code == 429:
                    retry_after = float(resp.headers.get("Retry-After", backoff))
                    log.warning("board.rate_limited", path=path, retry_after=retry_after)
                    last_exc = httpx.HTTPStatusError("rate limited", request=resp.request, response=resp)
                    await self._sleep(retry_after)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.HTTPStatusError as exc:
                if 400 <= exc.response.status_code < 500:
                    log.error("board.client_error", status=exc.response.status_code, path=path)
                    if self._metrics:
                        self._metrics.inc("board_errors_total")
                    raise
                last_exc = exc
            except httpx.TransportError as exc:
                last_exc = exc

            if self._metrics:
                self._metrics.inc("board_retries_total")
            log.warning("board.retry", path=path, attempt=attempt + 1, backoff=backoff, error=str(last_exc))
            await self._sleep(backoff)

        if self._metrics:
            self._metrics.inc("board_errors_total")
        assert last_exc is not None
        raise last_exc

    async def claim(self, limit: int) -> list[TriggerRead]:
        resp = await self._request("POST", "/api/v1/triggers/claim", json={"limit": limit})
        return TriggerClaimResult.model_validate(resp.json()).triggers

    async def acknowledge(self, trigger_id: Any, status: TriggerStatus, error: str | None = None) -> None:
        body: dict[str, Any] = {"status": status.value}
        if error:
            body["error"] = error
        await self._request("PATCH", f"/api/v1/triggers/{trigger_id}", json=body)

    async def process_webhook_retries(self) -> int:
        resp = await self._request("POST", "/api/v1/webhooks/process-retries")
        return resp.json().get("processed", 0)

    async def check_health(self) -> bool:
        if not self._client:
            return False
        try:
            resp = await self._client.get("/health")
            return resp.status_code == 200
        except httpx.HTTPError:
            return False


class GatewayClient:
    """Runs agent cron jobs on the gateway."""

    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._base_url = config.url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        headers = {}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            # the gateway holds the request open while the job runs
            timeout=httpx.Timeout(self._config.cron_timeout_seconds + 10),
            headers=headers,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def run_cron(self, cron_job_id: str) -> str | None:
        """Force-run a cron job. Returns None on success, else an error string."""
        assert self._client
        try:
            resp = await self._client.post(
                f"/v1/cron/{cron_job_id}/run",
                json={"force": True, "timeout_ms": self._config.cron_timeout_seconds * 1000},
            )
        except httpx.HTTPError as exc:
            log.error("gateway.unreachable", cron_job_id=cron_job_id, error=str(exc))
            return f"gateway unreachable: {exc}"

        if not resp.is_success:
            log.error("gateway.cron_failed", cron_job_id=cron_job_id, status=resp.status_code)
            return f"cron run failed: HTTP {resp.status_code}"
        return None
