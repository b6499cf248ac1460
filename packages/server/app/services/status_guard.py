"""
StatusGuard: validation and cascades around task status transitions.

``check_transition`` runs before any mutation and raises ConflictError with the
offending tasks. ``complete`` runs after a task reached "done" inside the same
unit of work: it unblocks dependents and auto-closes open subtasks. It only
touches rows that still need the change, so running it twice is harmless.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import ConflictError
from app.models.message import Message
from app.models.task import Task
from app.services.activity import log_activity
from app.services.dependencies import incomplete_blockers, on_task_completed
from taskboard_shared.schemas.common import ActivityType, TaskStatus

log = structlog.get_logger()

AUTO_CLOSE_NOTE = "[SYSTEM] Auto-closed: parent task completed"
AUTO_CLOSABLE_STATUSES = (TaskStatus.ASSIGNED.value, TaskStatus.IN_PROGRESS.value)


def _summaries(tasks: list[Task]) -> list[dict]:
    return [{"id": str(t.id), "title": t.title, "status": t.status} for t in tasks]


class StatusGuard:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def incomplete_subtasks(self, task_id: uuid.UUID) -> list[Task]:
        result = await self.session.execute(
            select(Task).where(
                Task.parent_task_id == task_id,
                Task.status != TaskStatus.DONE.value,
            )
        )
        return list(result.scalars().all())

    async def check_transition(self, task: Task, target: TaskStatus) -> None:
        """Raise ConflictError if ``task`` may not move to ``target``."""
        if target.value == task.status:
            return

        if target == TaskStatus.IN_PROGRESS:
            blockers = await incomplete_blockers(self.session, task.id)
            if blockers:
                titles = ", ".join(b.title for b in blockers)
                raise ConflictError(
                    "Cannot start task - blocked by incomplete dependencies",
                    {"blockers": _summaries(blockers), "detail": f"Blocked by: {titles}"},
                )

        if target == TaskStatus.DONE:
            subtasks = await self.incomplete_subtasks(task.id)
            if subtasks:
                titles = ", ".join(f"{t.title} ({t.status})" for t in subtasks)
                raise ConflictError(
                    "Cannot close task - incomplete subtasks exist",
                    {
                        "incomplete_subtasks": _summaries(subtasks),
                        "detail": f"Complete these subtasks first: {titles}",
                    },
                )

    async def complete(self, task: Task) -> list[Task]:
        """
        Run the completion cascade for a task that just became done.

        Returns the subtasks that were auto-closed.
        """
        await self.session.flush()
        await on_task_completed(self.session, task)

        result = await self.session.execute(
            select(Task).where(
                Task.parent_task_id == task.id,
                Task.status.in_(AUTO_CLOSABLE_STATUSES),
            )
        )
        closed = list(result.scalars().all())
        for subtask in closed:
            subtask.status = TaskStatus.DONE.value
            self.session.add(
                Message(
                    task_id=subtask.id,
                    from_agent_id=None,
                    author_type="system",
                    content=AUTO_CLOSE_NOTE,
                )
            )
            log_activity(
                self.session,
                ActivityType.TASK_STATUS_CHANGED,
                "Auto-closed: parent task completed",
                task_id=subtask.id,
                details={"parent_task_id": str(task.id)},
            )

        await self.session.flush()
        for subtask in closed:
            await on_task_completed(self.session, subtask)

        if closed:
            log_activity(
                self.session,
                ActivityType.SUBTASKS_AUTO_CLOSED,
                f"Auto-closed {len(closed)} orphaned subtask(s)",
                task_id=task.id,
                details={"subtask_ids": [str(t.id) for t in closed]},
            )
            log.info("task.subtasks_auto_closed", task_id=str(task.id), count=len(closed))

        await self.session.flush()
        return closed
