"""
Dependency graph between tasks.

An edge ``task_id -> depends_on_task_id`` means the task cannot start until
the other task is done. The graph is kept acyclic: an edge is rejected when
its target can already reach its source.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.dependency import TaskDependency
from app.models.task import Task
from app.services.activity import log_activity
from app.services.lookups import get_task_or_404
from app.services.notifications import notify_assignees
from taskboard_shared.schemas.common import ActivityType, NotificationType, TaskStatus
from taskboard_shared.schemas.tasks import DependenciesRead, DependencyTaskRead

log = structlog.get_logger()

UNBLOCKED_NOTICE = "Task unblocked - ready to work on"


# ---------------------------------------------------------------------------
# Graph queries
# ---------------------------------------------------------------------------


async def _has_path(
    session: AsyncSession,
    from_id: uuid.UUID,
    to_id: uuid.UUID,
) -> bool:
    """BFS along depends_on edges: is ``to_id`` reachable from ``from_id``?"""
    visited: set[uuid.UUID] = {from_id}
    frontier = [from_id]
    while frontier:
        result = await session.execute(
            select(TaskDependency.depends_on_task_id).where(
                TaskDependency.task_id.in_(frontier)
            )
        )
        next_frontier = []
        for (node,) in result.all():
            if node == to_id:
                return True
            if node not in visited:
                visited.add(node)
                next_frontier.append(node)
        frontier = next_frontier
    return False


async def incomplete_blockers(
    session: AsyncSession, task_id: uuid.UUID
) -> list[Task]:
    """Tasks ``task_id`` depends on that are not done yet."""
    result = await session.execute(
        select(Task)
        .join(TaskDependency, TaskDependency.depends_on_task_id == Task.id)
        .where(
            TaskDependency.task_id == task_id,
            Task.status != TaskStatus.DONE.value,
        )
        .order_by(TaskDependency.created_at)
    )
    return list(result.scalars().all())


async def _get_edge(
    session: AsyncSession, task_id: uuid.UUID, depends_on_task_id: uuid.UUID
) -> Optional[TaskDependency]:
    return await session.get(TaskDependency, (task_id, depends_on_task_id))


def _unblock(session: AsyncSession, task: Task, message: str) -> None:
    task.status = TaskStatus.ASSIGNED.value
    task.blocked_reason = None
    log_activity(
        session,
        ActivityType.TASK_UNBLOCKED,
        message,
        task_id=task.id,
    )


# ---------------------------------------------------------------------------
# Edge mutations
# ---------------------------------------------------------------------------


async def add_dependency(
    session: AsyncSession,
    task_id: uuid.UUID,
    depends_on_task_id: uuid.UUID,
) -> TaskDependency:
    if task_id == depends_on_task_id:
        raise ValidationError("A task cannot depend on itself", field="depends_on_task_id")

    task = await get_task_or_404(session, task_id)
    depends_on = await get_task_or_404(session, depends_on_task_id, label="Dependency task")

    if await _get_edge(session, task_id, depends_on_task_id):
        raise ConflictError("Dependency already exists")

    # Adding task -> depends_on closes a cycle when depends_on already
    # (transitively) depends on task.
    if await _has_path(session, depends_on_task_id, task_id):
        raise ConflictError(
            "Adding this dependency would create a circular dependency",
            {"task_id": str(task_id), "depends_on_task_id": str(depends_on_task_id)},
        )

    edge = TaskDependency(task_id=task_id, depends_on_task_id=depends_on_task_id)
    session.add(edge)

    if depends_on.status != TaskStatus.DONE.value and task.status not in (
        TaskStatus.DONE.value,
        TaskStatus.BLOCKED.value,
    ):
        task.status = TaskStatus.BLOCKED.value
        task.blocked_reason = f"Blocked by: {depends_on.title}"
        log_activity(
            session,
            ActivityType.TASK_STATUS_CHANGED,
            f'Task blocked by "{depends_on.title}"',
            task_id=task.id,
        )

    log_activity(
        session,
        ActivityType.DEPENDENCY_ADDED,
        f'Dependency added: blocked by "{depends_on.title}"',
        task_id=task.id,
        details={"depends_on_task_id": str(depends_on_task_id)},
    )
    await session.flush()
    log.info("dependency.added", task_id=str(task_id), depends_on_task_id=str(depends_on_task_id))
    return edge


async def remove_dependency(
    session: AsyncSession,
    task_id: uuid.UUID,
    depends_on_task_id: uuid.UUID,
) -> None:
    edge = await _get_edge(session, task_id, depends_on_task_id)
    if not edge:
        raise NotFoundError("Dependency not found")
    await session.delete(edge)
    await session.flush()

    task = await get_task_or_404(session, task_id)
    if task.status == TaskStatus.BLOCKED.value and not await incomplete_blockers(session, task_id):
        _unblock(session, task, "Task unblocked - all dependencies completed")

    log_activity(
        session,
        ActivityType.DEPENDENCY_REMOVED,
        "Dependency removed",
        task_id=task_id,
        details={"depends_on_task_id": str(depends_on_task_id)},
    )
    await session.flush()
    log.info("dependency.removed", task_id=str(task_id), depends_on_task_id=str(depends_on_task_id))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def _edge_tasks(session: AsyncSession, task_id: uuid.UUID, *, blockers: bool):
    if blockers:
        join_on = TaskDependency.depends_on_task_id == Task.id
        where = TaskDependency.task_id == task_id
    else:
        join_on = TaskDependency.task_id == Task.id
        where = TaskDependency.depends_on_task_id == task_id
    result = await session.execute(
        select(Task, TaskDependency.created_at)
        .join(TaskDependency, join_on)
        .where(where)
        .order_by(TaskDependency.created_at.desc())
    )
    return [
        DependencyTaskRead(
            id=t.id,
            title=t.title,
            status=t.status,
            priority=t.priority,
            dependency_created_at=created_at,
        )
        for t, created_at in result.all()
    ]


async def get_dependencies(session: AsyncSession, task_id: uuid.UUID) -> DependenciesRead:
    await get_task_or_404(session, task_id)
    blockers = await _edge_tasks(session, task_id, blockers=True)
    blocking = await _edge_tasks(session, task_id, blockers=False)
    return DependenciesRead(
        blockers=blockers,
        blocking=blocking,
        is_blocked=any(b.status != TaskStatus.DONE for b in blockers),
        blocker_count=len(blockers),
        blocking_count=len(blocking),
    )


async def get_dependency_ids(session: AsyncSession, task_id: uuid.UUID) -> list[uuid.UUID]:
    result = await session.execute(
        select(TaskDependency.depends_on_task_id).where(TaskDependency.task_id == task_id)
    )
    return [row[0] for row in result.all()]


# ---------------------------------------------------------------------------
# Completion cascade
# ---------------------------------------------------------------------------


async def on_task_completed(session: AsyncSession, task: Task) -> list[Task]:
    """Unblock dependents of a just-completed task that have no other open blocker."""
    result = await session.execute(
        select(Task)
        .join(TaskDependency, TaskDependency.task_id == Task.id)
        .where(
            TaskDependency.depends_on_task_id == task.id,
            Task.status == TaskStatus.BLOCKED.value,
        )
    )
    unblocked = []
    for dependent in result.scalars().all():
        if await incomplete_blockers(session, dependent.id):
            continue
        _unblock(session, dependent, "Task auto-unblocked - all dependencies completed")
        await notify_assignees(
            session,
            dependent.id,
            UNBLOCKED_NOTICE,
            NotificationType.STATUS_CHANGE,
        )
        unblocked.append(dependent)

    if unblocked:
        await session.flush()
        log.info(
            "dependency.unblocked",
            completed_task_id=str(task.id),
            unblocked=[str(t.id) for t in unblocked],
        )
    return unblocked
