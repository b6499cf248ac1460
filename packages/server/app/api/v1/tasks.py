"""
Task endpoints: CRUD, dependencies, assignment, review, messages, subscriptions.

Status lifecycle: inbox -> assigned -> in_progress -> review -> done
- Dependency guard: a task cannot start while any blocker is not done.
- Subtask gate: a parent cannot be closed while a subtask is open.
- Webhook events are dispatched in the background after the commit.
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.services import dependencies as dependency_service
from app.services import messages as message_service
from app.services import notifications as notification_service
from app.services.lookups import get_agent_or_404, get_task_or_404
from app.services.review import approve_task, reject_task
from app.services.tasks import (
    assign_agent,
    create_task,
    to_task_read,
    unassign_agent,
    update_task,
)
from app.services.webhooks import EventOutbox, WebhookDispatcher, get_dispatcher
from taskboard_shared.schemas.common import APIResponse
from taskboard_shared.schemas.tasks import (
    AgentAction,
    DependenciesRead,
    DependencyAdd,
    MessageCreate,
    MessageCreated,
    MessageRead,
    TaskCreate,
    TaskRead,
    TaskReject,
    TaskUpdate,
)

router = APIRouter()


async def _commit_and_dispatch(
    session: AsyncSession,
    outbox: EventOutbox,
    background_tasks: BackgroundTasks,
    dispatcher: WebhookDispatcher,
) -> None:
    await session.commit()
    outbox.schedule(background_tasks, dispatcher)


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------


@router.post("", response_model=TaskRead, status_code=201)
async def create_task_endpoint(
    task_in: TaskCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Create a task in the inbox."""
    outbox = EventOutbox()
    task = await create_task(session, task_in, outbox)
    await _commit_and_dispatch(session, outbox, background_tasks, dispatcher)
    return await to_task_read(session, task)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task_endpoint(
    task_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    task = await get_task_or_404(session, task_id)
    return await to_task_read(session, task)


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task_endpoint(
    task_id: uuid.UUID,
    task_in: TaskUpdate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """
    Partially update a task.

    A status change is checked against blockers and subtasks first (409 with
    the offending tasks). Completing a task unblocks its dependents.
    """
    outbox = EventOutbox()
    task = await update_task(session, task_id, task_in, outbox)
    await _commit_and_dispatch(session, outbox, background_tasks, dispatcher)
    await session.refresh(task)
    return await to_task_read(session, task)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@router.get("/{task_id}/dependencies", response_model=DependenciesRead)
async def get_dependencies_endpoint(
    task_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    return await dependency_service.get_dependencies(session, task_id)


@router.post("/{task_id}/dependencies", response_model=APIResponse, status_code=201)
async def add_dependency_endpoint(
    task_id: uuid.UUID,
    dep_in: DependencyAdd,
    session: AsyncSession = Depends(get_session),
):
    """Make the task depend on another. Rejects self, duplicate and cyclic edges."""
    await dependency_service.add_dependency(session, task_id, dep_in.depends_on_task_id)
    await session.commit()
    return APIResponse(message="Dependency added")


@router.delete("/{task_id}/dependencies/{depends_on_task_id}", response_model=APIResponse)
async def remove_dependency_endpoint(
    task_id: uuid.UUID,
    depends_on_task_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    await dependency_service.remove_dependency(session, task_id, depends_on_task_id)
    await session.commit()
    return APIResponse(message="Dependency removed")


# ---------------------------------------------------------------------------
# Assignment & review
# ---------------------------------------------------------------------------


@router.post("/{task_id}/assign", response_model=APIResponse)
async def assign_endpoint(
    task_id: uuid.UUID,
    body: AgentAction,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    outbox = EventOutbox()
    await assign_agent(session, task_id, body.agent_id, outbox)
    await _commit_and_dispatch(session, outbox, background_tasks, dispatcher)
    return APIResponse()


@router.post("/{task_id}/unassign", response_model=APIResponse)
async def unassign_endpoint(
    task_id: uuid.UUID,
    body: AgentAction,
    session: AsyncSession = Depends(get_session),
):
    await unassign_agent(session, task_id, body.agent_id)
    await session.commit()
    return APIResponse()


@router.post("/{task_id}/approve", response_model=APIResponse)
async def approve_endpoint(
    task_id: uuid.UUID,
    body: AgentAction,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    outbox = EventOutbox()
    await approve_task(session, task_id, body.agent_id, outbox)
    await _commit_and_dispatch(session, outbox, background_tasks, dispatcher)
    return APIResponse()


@router.post("/{task_id}/reject", response_model=APIResponse)
async def reject_endpoint(
    task_id: uuid.UUID,
    body: TaskReject,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    outbox = EventOutbox()
    await reject_task(session, task_id, body.agent_id, body.feedback, outbox)
    await _commit_and_dispatch(session, outbox, background_tasks, dispatcher)
    return APIResponse()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get("/{task_id}/messages", response_model=List[MessageRead])
async def list_messages_endpoint(
    task_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    messages = await message_service.list_messages(session, task_id)
    return [MessageRead.model_validate(m, from_attributes=True) for m in messages]


@router.post("/{task_id}/messages", response_model=MessageCreated, status_code=201)
async def post_message_endpoint(
    task_id: uuid.UUID,
    body: MessageCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    outbox = EventOutbox()
    message, mentioned = await message_service.post_message(
        session, task_id, body.from_agent_id, body.content, outbox
    )
    await _commit_and_dispatch(session, outbox, background_tasks, dispatcher)
    return MessageCreated(id=message.id, mentioned_agent_ids=mentioned)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@router.post("/{task_id}/subscribe", response_model=APIResponse)
async def subscribe_endpoint(
    task_id: uuid.UUID,
    body: AgentAction,
    session: AsyncSession = Depends(get_session),
):
    await get_task_or_404(session, task_id)
    await get_agent_or_404(session, body.agent_id)
    await notification_service.subscribe(session, body.agent_id, task_id)
    await session.commit()
    return APIResponse()


@router.delete("/{task_id}/subscribe/{agent_id}", response_model=APIResponse)
async def unsubscribe_endpoint(
    task_id: uuid.UUID,
    agent_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    await notification_service.unsubscribe(session, agent_id, task_id)
    await session.commit()
    return APIResponse()
