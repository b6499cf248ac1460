"""
Shared fixtures for poller tests: in-memory fakes of the board and gateway
served through httpx.MockTransport.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import httpx
import pytest

from taskboard_poller.client import BoardClient, GatewayClient
from taskboard_poller.config import PollerConfig
from taskboard_poller.metrics import MetricsCollector


def _make_trigger(cron_job_id: str = "cron-1", event_type: str = "task_assigned") -> dict:
    return {
        "id": str(uuid.uuid4()),
        "agent_id": str(uuid.uuid4()),
        "agent_name": "writer",
        "cron_job_id": cron_job_id,
        "event_type": event_type,
        "task_id": str(uuid.uuid4()),
        "status": "processing",
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


class FakeBoard:
    """Serves claim/ack/process-retries and records what the poller sent."""

    def __init__(self):
        self.pending: list[dict] = []
        self.acks: dict[str, dict] = {}
        self.claim_limits: list[int] = []
        self.retry_calls = 0
        self.failures: list[int] = []  # status codes to answer before serving normally
        self.ack_failures: list[int] = []
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures:
            return httpx.Response(self.failures.pop(0), json={"error": {"code": "UPSTREAM"}})

        path = request.url.path
        if path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/v1/triggers/claim":
            limit = json.loads(request.content)["limit"]
            self.claim_limits.append(limit)
            batch, self.pending = self.pending[:limit], self.pending[limit:]
            return httpx.Response(200, json={"triggers": batch, "claimed": len(batch)})
        if path.startswith("/api/v1/triggers/") and request.method == "PATCH":
            if self.ack_failures:
                return httpx.Response(self.ack_failures.pop(0), json={"error": {"code": "NOT_FOUND"}})
            trigger_id = path.rsplit("/", 1)[-1]
            self.acks[trigger_id] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})
        if path == "/api/v1/webhooks/process-retries":
            self.retry_calls += 1
            return httpx.Response(200, json={"processed": 2, "results": []})
        return httpx.Response(404, json={"error": {"code": "NOT_FOUND"}})


class FakeGateway:
    """Answers cron runs; cron ids listed in ``failing`` get a 500."""

    def __init__(self):
        self.runs: list[str] = []
        self.bodies: list[dict] = []
        self.failing: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        cron_job_id = request.url.path.split("/")[3]
        self.runs.append(cron_job_id)
        self.bodies.append(json.loads(request.content))
        if cron_job_id in self.failing:
            return httpx.Response(500, json={"error": "job crashed"})
        return httpx.Response(200, json={"ok": True})


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def make_trigger():
    return _make_trigger


@pytest.fixture
def config() -> PollerConfig:
    return PollerConfig.model_validate({
        "board": {"url": "http://board.test", "max_retries": 3, "retry_base_seconds": 0.5},
        "gateway": {"url": "http://gateway.test", "cron_timeout_seconds": 30},
        "polling": {"batch_size": 2},
        "metrics": {"enabled": False},
    })


@pytest.fixture
def fake_board() -> FakeBoard:
    return FakeBoard()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
async def board(config, fake_board, metrics, sleep):
    client = BoardClient(
        config.board,
        metrics=metrics,
        transport=httpx.MockTransport(fake_board.handler),
        sleep=sleep,
    )
    await client.open()
    yield client
    await client.close()


@pytest.fixture
async def gateway(config, fake_gateway):
    client = GatewayClient(config.gateway, transport=httpx.MockTransport(fake_gateway.handler))
    await client.open()
    yield client
    await client.close()
