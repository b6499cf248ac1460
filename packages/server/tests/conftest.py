"""
Shared fixtures for task-board server tests.

Every test gets a fresh in-memory SQLite database (aiosqlite) and an HTTP
client bound to the app with the session and webhook dispatcher overridden.
"""

import os

os.environ["MC_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("MC_LOG_FORMAT", "text")

from datetime import datetime
from typing import Optional
import uuid

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from app.core.config import get_settings
from app.core.database import get_session
from app.main import app
from app.models import Agent, Task, TaskAssignee, TaskDependency
from app.services.webhooks import WebhookDispatcher, get_dispatcher


class WebhookReceiver:
    """Records webhook POSTs and answers with queued status codes (default 200)."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: list = []

    def respond_with(self, *responses) -> None:
        """Queue status codes or exceptions to return for the next requests."""
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if self.responses else 200
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"received": True})


class Factory:
    """Row builders for tests. Every call commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def agent(
        self,
        name: Optional[str] = None,
        level: str = "specialist",
        cron_job_id: Optional[str] = "cron-default",
    ) -> Agent:
        agent = Agent(
            name=name or f"agent-{uuid.uuid4().hex[:8]}",
            level=level,
            cron_job_id=cron_job_id,
        )
        self.session.add(agent)
        await self.session.commit()
        return agent

    async def task(
        self,
        title: str = "Task",
        status: str = "inbox",
        parent: Optional[Task] = None,
        workspace_id: Optional[uuid.UUID] = None,
        created_at: Optional[datetime] = None,
    ) -> Task:
        task = Task(
            title=title,
            status=status,
            parent_task_id=parent.id if parent else None,
            workspace_id=workspace_id,
        )
        if created_at is not None:
            task.created_at = created_at
        self.session.add(task)
        await self.session.commit()
        return task

    async def edge(self, task: Task, depends_on: Task) -> TaskDependency:
        edge = TaskDependency(task_id=task.id, depends_on_task_id=depends_on.id)
        self.session.add(edge)
        await self.session.commit()
        return edge

    async def assign(self, task: Task, agent: Agent) -> None:
        self.session.add(TaskAssignee(task_id=task.id, agent_id=agent.id))
        await self.session.commit()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def factory(session) -> Factory:
    return Factory(session)


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest.fixture
def dispatcher(session_factory, receiver) -> WebhookDispatcher:
    # rng pinned to 0 so backoff is exactly min(base * 2**attempt, cap)
    return WebhookDispatcher(
        session_factory=session_factory,
        transport=httpx.MockTransport(receiver.handler),
        settings=get_settings(),
        rng=lambda: 0.0,
    )


@pytest.fixture
async def client(session_factory, dispatcher):
    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
