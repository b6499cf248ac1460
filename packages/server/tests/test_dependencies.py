"""
Dependency graph tests: edge validation, cycle rejection, blocking and
unblocking cascades.
"""

from __future__ import annotations

import uuid

import pytest
from sqlmodel import select

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models import Activity, Notification, TaskDependency
from app.services import dependencies as dependency_service


# ---------------------------------------------------------------------------
# Edge validation
# ---------------------------------------------------------------------------


class TestAddDependency:
    @pytest.mark.asyncio
    async def test_self_dependency_rejected(self, session, factory):
        task = await factory.task()
        with pytest.raises(ValidationError):
            await dependency_service.add_dependency(session, task.id, task.id)

    @pytest.mark.asyncio
    async def test_missing_task_is_404(self, session, factory):
        task = await factory.task()
        with pytest.raises(NotFoundError):
            await dependency_service.add_dependency(session, task.id, uuid.uuid4())
        with pytest.raises(NotFoundError):
            await dependency_service.add_dependency(session, uuid.uuid4(), task.id)

    @pytest.mark.asyncio
    async def test_duplicate_edge_conflicts(self, session, factory):
        a = await factory.task("A")
        b = await factory.task("B", status="done")
        await dependency_service.add_dependency(session, a.id, b.id)
        with pytest.raises(ConflictError, match="already exists"):
            await dependency_service.add_dependency(session, a.id, b.id)

    @pytest.mark.asyncio
    async def test_two_node_cycle_rejected(self, session, factory):
        """A depends on B; adding B -> A would close a cycle."""
        a = await factory.task("A")
        b = await factory.task("B")
        await dependency_service.add_dependency(session, a.id, b.id)
        with pytest.raises(ConflictError, match="circular"):
            await dependency_service.add_dependency(session, b.id, a.id)

    @pytest.mark.asyncio
    async def test_longer_cycle_rejected(self, session, factory):
        """A -> B -> C exists; C -> A must be rejected."""
        a = await factory.task("A")
        b = await factory.task("B")
        c = await factory.task("C")
        await factory.edge(a, b)
        await factory.edge(b, c)
        with pytest.raises(ConflictError, match="circular"):
            await dependency_service.add_dependency(session, c.id, a.id)

        edges = (await session.execute(select(TaskDependency))).scalars().all()
        assert len(edges) == 2

    @pytest.mark.asyncio
    async def test_unrelated_branches_allowed(self, session, factory):
        """A -> B and C -> D; D -> A creates no cycle."""
        a, b, c, d = [await factory.task(t) for t in "ABCD"]
        await factory.edge(a, b)
        await factory.edge(c, d)
        edge = await dependency_service.add_dependency(session, d.id, a.id)
        assert edge.depends_on_task_id == a.id

    @pytest.mark.asyncio
    async def test_diamond_is_not_a_cycle(self, session, factory):
        a, b, c, d = [await factory.task(t) for t in "ABCD"]
        await factory.edge(a, b)
        await factory.edge(a, c)
        await factory.edge(b, d)
        await dependency_service.add_dependency(session, c.id, d.id)


# ---------------------------------------------------------------------------
# Blocking on add, unblocking on removal
# ---------------------------------------------------------------------------


class TestBlocking:
    @pytest.mark.asyncio
    async def test_incomplete_blocker_blocks_task(self, session, factory):
        task = await factory.task("Write docs", status="assigned")
        blocker = await factory.task("Ship API", status="in_progress")

        await dependency_service.add_dependency(session, task.id, blocker.id)
        await session.refresh(task)

        assert task.status == "blocked"
        assert task.blocked_reason == "Blocked by: Ship API"

    @pytest.mark.asyncio
    async def test_done_blocker_does_not_block(self, session, factory):
        task = await factory.task(status="assigned")
        blocker = await factory.task(status="done")
        await dependency_service.add_dependency(session, task.id, blocker.id)
        await session.refresh(task)
        assert task.status == "assigned"

    @pytest.mark.asyncio
    async def test_done_task_is_not_reblocked(self, session, factory):
        task = await factory.task(status="done")
        blocker = await factory.task(status="inbox")
        await dependency_service.add_dependency(session, task.id, blocker.id)
        await session.refresh(task)
        assert task.status == "done"
        assert task.blocked_reason is None

    @pytest.mark.asyncio
    async def test_already_blocked_keeps_first_reason(self, session, factory):
        task = await factory.task(status="assigned")
        first = await factory.task("First")
        second = await factory.task("Second")
        await dependency_service.add_dependency(session, task.id, first.id)
        await dependency_service.add_dependency(session, task.id, second.id)
        await session.refresh(task)
        assert task.blocked_reason == "Blocked by: First"

    @pytest.mark.asyncio
    async def test_removing_last_blocker_unblocks(self, session, factory):
        task = await factory.task(status="assigned")
        blocker = await factory.task("Blocker")
        await dependency_service.add_dependency(session, task.id, blocker.id)

        await dependency_service.remove_dependency(session, task.id, blocker.id)
        await session.refresh(task)

        assert task.status == "assigned"
        assert task.blocked_reason is None

    @pytest.mark.asyncio
    async def test_removing_one_of_two_blockers_keeps_block(self, session, factory):
        task = await factory.task(status="assigned")
        first = await factory.task("First")
        second = await factory.task("Second")
        await dependency_service.add_dependency(session, task.id, first.id)
        await dependency_service.add_dependency(session, task.id, second.id)

        await dependency_service.remove_dependency(session, task.id, first.id)
        await session.refresh(task)
        assert task.status == "blocked"

    @pytest.mark.asyncio
    async def test_remove_missing_edge_is_404(self, session, factory):
        a = await factory.task()
        b = await factory.task()
        with pytest.raises(NotFoundError):
            await dependency_service.remove_dependency(session, a.id, b.id)


# ---------------------------------------------------------------------------
# Completion cascade
# ---------------------------------------------------------------------------


class TestCompletionCascade:
    @pytest.mark.asyncio
    async def test_completion_unblocks_and_notifies_assignees(self, session, factory):
        agent = await factory.agent("Writer")
        blocker = await factory.task("Blocker", status="in_progress")
        dependent = await factory.task("Dependent", status="blocked")
        await factory.assign(dependent, agent)
        await factory.edge(dependent, blocker)

        blocker.status = "done"
        unblocked = await dependency_service.on_task_completed(session, blocker)
        await session.commit()
        await session.refresh(dependent)

        assert [t.id for t in unblocked] == [dependent.id]
        assert dependent.status == "assigned"
        assert dependent.blocked_reason is None

        notes = (await session.execute(select(Notification))).scalars().all()
        assert len(notes) == 1
        assert notes[0].agent_id == agent.id
        assert notes[0].content == "Task unblocked - ready to work on"
        assert notes[0].type == "status_change"

        activity = (
            await session.execute(select(Activity).where(Activity.task_id == dependent.id))
        ).scalars().all()
        assert any(a.type == "task_unblocked" for a in activity)

    @pytest.mark.asyncio
    async def test_other_open_blocker_keeps_task_blocked(self, session, factory):
        first = await factory.task("First", status="in_progress")
        second = await factory.task("Second", status="in_progress")
        dependent = await factory.task("Dependent", status="blocked")
        await factory.edge(dependent, first)
        await factory.edge(dependent, second)

        first.status = "done"
        unblocked = await dependency_service.on_task_completed(session, first)
        await session.refresh(dependent)

        assert unblocked == []
        assert dependent.status == "blocked"

    @pytest.mark.asyncio
    async def test_edges_persist_after_completion(self, session, factory):
        blocker = await factory.task(status="in_progress")
        dependent = await factory.task(status="blocked")
        await factory.edge(dependent, blocker)

        blocker.status = "done"
        await dependency_service.on_task_completed(session, blocker)
        deps = await dependency_service.get_dependencies(session, dependent.id)

        assert deps.blocker_count == 1
        assert deps.is_blocked is False


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


class TestDependencyEndpoints:
    @pytest.mark.asyncio
    async def test_add_and_read(self, client, factory):
        a = await factory.task("A", status="assigned")
        b = await factory.task("B")

        response = await client.post(
            f"/api/v1/tasks/{a.id}/dependencies", json={"depends_on_task_id": str(b.id)}
        )
        assert response.status_code == 201

        deps = (await client.get(f"/api/v1/tasks/{a.id}/dependencies")).json()
        assert deps["is_blocked"] is True
        assert deps["blocker_count"] == 1
        assert deps["blockers"][0]["id"] == str(b.id)

        reverse = (await client.get(f"/api/v1/tasks/{b.id}/dependencies")).json()
        assert reverse["blocking_count"] == 1
        assert reverse["blocking"][0]["id"] == str(a.id)

        task = (await client.get(f"/api/v1/tasks/{a.id}")).json()
        assert task["status"] == "blocked"
        assert task["dependency_ids"] == [str(b.id)]

    @pytest.mark.asyncio
    async def test_cycle_is_409(self, client, factory):
        a = await factory.task("A")
        b = await factory.task("B")
        await factory.edge(a, b)

        response = await client.post(
            f"/api/v1/tasks/{b.id}/dependencies", json={"depends_on_task_id": str(a.id)}
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_self_edge_is_400(self, client, factory):
        a = await factory.task("A")
        response = await client.post(
            f"/api/v1/tasks/{a.id}/dependencies", json={"depends_on_task_id": str(a.id)}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete_edge(self, client, factory):
        a = await factory.task("A", status="blocked")
        b = await factory.task("B")
        await factory.edge(a, b)

        response = await client.delete(f"/api/v1/tasks/{a.id}/dependencies/{b.id}")
        assert response.status_code == 200

        task = (await client.get(f"/api/v1/tasks/{a.id}")).json()
        assert task["status"] == "assigned"
        assert task["dependency_ids"] == []

    @pytest.mark.asyncio
    async def test_dependencies_of_missing_task_is_404(self, client):
        response = await client.get(f"/api/v1/tasks/{uuid.uuid4()}/dependencies")
        assert response.status_code == 404
