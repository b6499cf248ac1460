"""
Integration tests for the task workflow endpoints.

Tests cover:
- Creation and the one-level subtask rule
- Partial updates and status-change fanout
- Assignment (status, subscription, notification, trigger)
- Comments with @mentions
- Review sign-off: approve and reject
"""

from __future__ import annotations

import uuid

import pytest
from sqlmodel import select

from app.models import Activity, Message, Notification, PendingTrigger, Subscription
from app.services.messages import extract_mentions


async def _notifications(session, agent):
    result = await session.execute(
        select(Notification).where(Notification.agent_id == agent.id).order_by(Notification.created_at)
    )
    return list(result.scalars().all())


async def _triggers(session, agent):
    result = await session.execute(
        select(PendingTrigger).where(PendingTrigger.agent_id == agent.id).order_by(PendingTrigger.created_at)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_defaults(self, client):
        response = await client.post("/api/v1/tasks", json={"title": "  Draft launch post  "})

        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "Draft launch post"
        assert data["status"] == "inbox"
        assert data["priority"] == "normal"
        assert data["assignee_ids"] == []
        assert data["dependency_ids"] == []

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, client):
        assert (await client.post("/api/v1/tasks", json={"title": ""})).status_code == 422

    @pytest.mark.asyncio
    async def test_subtask_inherits_workspace(self, client, factory):
        workspace = uuid.uuid4()
        parent = await factory.task("Parent", workspace_id=workspace)

        response = await client.post(
            "/api/v1/tasks",
            json={"title": "Child", "parent_task_id": str(parent.id), "workspace_id": str(uuid.uuid4())},
        )

        assert response.status_code == 201
        assert response.json()["workspace_id"] == str(workspace)
        assert response.json()["parent_task_id"] == str(parent.id)

    @pytest.mark.asyncio
    async def test_subtask_of_subtask_rejected(self, client, factory):
        parent = await factory.task("Parent")
        child = await factory.task("Child", parent=parent)

        response = await client.post(
            "/api/v1/tasks", json={"title": "Grandchild", "parent_task_id": str(child.id)}
        )

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "parent_task_id"

    @pytest.mark.asyncio
    async def test_missing_parent(self, client):
        response = await client.post(
            "/api/v1/tasks", json={"title": "Orphan", "parent_task_id": str(uuid.uuid4())}
        )
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Parent task not found"

    @pytest.mark.asyncio
    async def test_creation_is_logged(self, client, session):
        task_id = (await client.post("/api/v1/tasks", json={"title": "Logged"})).json()["id"]

        result = await session.execute(select(Activity).where(Activity.task_id == uuid.UUID(task_id)))
        [activity] = result.scalars().all()
        assert activity.type == "task_created"
        assert activity.message == 'Task "Logged" created'


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


class TestUpdate:
    @pytest.mark.asyncio
    async def test_partial_update(self, client, factory):
        task = await factory.task("Before")

        response = await client.patch(
            f"/api/v1/tasks/{task.id}", json={"title": "After", "estimated_minutes": 45}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "After"
        assert data["estimated_minutes"] == 45
        assert data["status"] == "inbox"

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, client, factory):
        task = await factory.task()
        response = await client.patch(f"/api/v1/tasks/{task.id}", json={})
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "No valid fields to update"

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, client, factory):
        task = await factory.task()
        response = await client.patch(f"/api/v1/tasks/{task.id}", json={"created_at": "2020-01-01T00:00:00"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_null_status_rejected(self, client, factory):
        task = await factory.task()
        response = await client.patch(f"/api/v1/tasks/{task.id}", json={"status": None})
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "status"

    @pytest.mark.asyncio
    async def test_missing_task(self, client):
        response = await client.patch(f"/api/v1/tasks/{uuid.uuid4()}", json={"title": "x"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_status_change_notifies_subscribers(self, client, session, factory):
        watcher = await factory.agent("watcher")
        task = await factory.task(status="assigned")
        await client.post(f"/api/v1/tasks/{task.id}/subscribe", json={"agent_id": str(watcher.id)})

        response = await client.patch(f"/api/v1/tasks/{task.id}", json={"status": "in_progress"})

        assert response.status_code == 200
        [notification] = await _notifications(session, watcher)
        assert notification.type == "status_change"
        assert notification.content == "Task status changed to in_progress"

        activity = (
            await session.execute(
                select(Activity).where(Activity.task_id == task.id, Activity.type == "task_status_changed")
            )
        ).scalar_one()
        assert activity.details == {"old_status": "assigned", "new_status": "in_progress"}

    @pytest.mark.asyncio
    async def test_same_status_is_plain_update(self, client, session, factory):
        watcher = await factory.agent("watcher")
        task = await factory.task(status="assigned")
        await client.post(f"/api/v1/tasks/{task.id}/subscribe", json={"agent_id": str(watcher.id)})

        response = await client.patch(f"/api/v1/tasks/{task.id}", json={"status": "assigned"})

        assert response.status_code == 200
        assert await _notifications(session, watcher) == []


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


class TestAssign:
    @pytest.mark.asyncio
    async def test_assign_from_inbox(self, client, session, factory):
        agent = await factory.agent("writer")
        task = await factory.task("Write copy")

        response = await client.post(f"/api/v1/tasks/{task.id}/assign", json={"agent_id": str(agent.id)})

        assert response.status_code == 200
        data = (await client.get(f"/api/v1/tasks/{task.id}")).json()
        assert data["status"] == "assigned"
        assert data["assignee_ids"] == [str(agent.id)]

        [notification] = await _notifications(session, agent)
        assert notification.type == "assignment"
        assert notification.task_id == task.id

        [trigger] = await _triggers(session, agent)
        assert trigger.event_type == "task_assigned"
        assert trigger.status == "pending"
        assert trigger.cron_job_id == "cron-default"
        assert trigger.context == {"task_title": "Write copy"}

        assert await session.get(Subscription, (agent.id, task.id)) is not None

    @pytest.mark.asyncio
    async def test_assign_keeps_later_status(self, client, factory):
        agent = await factory.agent()
        task = await factory.task(status="in_progress")

        await client.post(f"/api/v1/tasks/{task.id}/assign", json={"agent_id": str(agent.id)})

        assert (await client.get(f"/api/v1/tasks/{task.id}")).json()["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_repeat_assignment_dedups_trigger(self, client, session, factory):
        agent = await factory.agent()
        task = await factory.task()

        for _ in range(2):
            response = await client.post(f"/api/v1/tasks/{task.id}/assign", json={"agent_id": str(agent.id)})
            assert response.status_code == 200

        assert len(await _triggers(session, agent)) == 1
        assert len(await _notifications(session, agent)) == 2
        assert (await client.get(f"/api/v1/tasks/{task.id}")).json()["assignee_ids"] == [str(agent.id)]

    @pytest.mark.asyncio
    async def test_agent_without_consumer_gets_no_trigger(self, client, session, factory):
        agent = await factory.agent(cron_job_id=None)
        task = await factory.task()

        response = await client.post(f"/api/v1/tasks/{task.id}/assign", json={"agent_id": str(agent.id)})

        assert response.status_code == 200
        assert await _triggers(session, agent) == []
        assert len(await _notifications(session, agent)) == 1

    @pytest.mark.asyncio
    async def test_unknown_agent(self, client, factory):
        task = await factory.task()
        response = await client.post(f"/api/v1/tasks/{task.id}/assign", json={"agent_id": str(uuid.uuid4())})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unassign(self, client, factory):
        agent = await factory.agent()
        task = await factory.task()
        await factory.assign(task, agent)

        first = await client.post(f"/api/v1/tasks/{task.id}/unassign", json={"agent_id": str(agent.id)})
        second = await client.post(f"/api/v1/tasks/{task.id}/unassign", json={"agent_id": str(agent.id)})

        assert first.status_code == 200
        assert second.status_code == 404
        assert (await client.get(f"/api/v1/tasks/{task.id}")).json()["assignee_ids"] == []


# ---------------------------------------------------------------------------
# Messages & mentions
# ---------------------------------------------------------------------------


class TestMentions:
    def test_extract_mentions(self):
        assert extract_mentions("@Content-Writer and @jarvis, ping @jarvis") == ["Content-Writer", "jarvis"]
        assert extract_mentions("no mentions here, email@") == []

    @pytest.mark.asyncio
    async def test_mention_notifies_subscribes_and_triggers(self, client, session, factory):
        author = await factory.agent("lead", level="lead")
        writer = await factory.agent("Content-Writer")
        task = await factory.task("Launch")

        response = await client.post(
            f"/api/v1/tasks/{task.id}/messages",
            json={"from_agent_id": str(author.id), "content": "@Content-Writer please draft, thanks @Content-Writer"},
        )

        assert response.status_code == 201
        created = response.json()
        assert created["mentioned_agent_ids"] == [str(writer.id)]

        by_type = {n.type: n for n in await _notifications(session, writer)}
        assert set(by_type) == {"mention", "reply"}
        notification = by_type["mention"]
        assert notification.content.startswith("lead mentioned you: @Content-Writer")
        assert str(notification.message_id) == created["id"]

        [trigger] = await _triggers(session, writer)
        assert trigger.event_type == "mention_created"
        assert str(trigger.message_id) == created["id"]
        assert trigger.context["mentioned_by"] == "lead"

        assert await session.get(Subscription, (writer.id, task.id)) is not None
        assert await session.get(Subscription, (author.id, task.id)) is not None

    @pytest.mark.asyncio
    async def test_unknown_mention_ignored(self, client, factory):
        author = await factory.agent("lead")
        task = await factory.task()

        response = await client.post(
            f"/api/v1/tasks/{task.id}/messages",
            json={"from_agent_id": str(author.id), "content": "@nobody are you there?"},
        )

        assert response.status_code == 201
        assert response.json()["mentioned_agent_ids"] == []

    @pytest.mark.asyncio
    async def test_reply_fanout_excludes_author(self, client, session, factory):
        author = await factory.agent("author")
        follower = await factory.agent("follower")
        task = await factory.task()
        await client.post(f"/api/v1/tasks/{task.id}/subscribe", json={"agent_id": str(follower.id)})

        await client.post(
            f"/api/v1/tasks/{task.id}/messages",
            json={"from_agent_id": str(author.id), "content": "Progress update"},
        )

        [reply] = await _notifications(session, follower)
        assert reply.type == "reply"
        assert reply.content == "author: Progress update"
        assert await _notifications(session, author) == []

    @pytest.mark.asyncio
    async def test_message_list_in_order(self, client, factory):
        author = await factory.agent("author")
        task = await factory.task()
        for text in ("first", "second"):
            await client.post(
                f"/api/v1/tasks/{task.id}/messages",
                json={"from_agent_id": str(author.id), "content": text},
            )

        messages = (await client.get(f"/api/v1/tasks/{task.id}/messages")).json()

        assert [m["content"] for m in messages] == ["first", "second"]
        assert all(m["author_type"] == "agent" for m in messages)

    @pytest.mark.asyncio
    async def test_unknown_author(self, client, factory):
        task = await factory.task()
        response = await client.post(
            f"/api/v1/tasks/{task.id}/messages",
            json={"from_agent_id": str(uuid.uuid4()), "content": "hello"},
        )
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


class TestApprove:
    @pytest.mark.asyncio
    async def test_requires_review_status(self, client, factory):
        lead = await factory.agent("lead", level="lead")
        task = await factory.task(status="in_progress")

        response = await client.post(f"/api/v1/tasks/{task.id}/approve", json={"agent_id": str(lead.id)})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_outsider_cannot_approve(self, client, factory):
        intern = await factory.agent("intern", level="intern")
        task = await factory.task(status="review")

        response = await client.post(f"/api/v1/tasks/{task.id}/approve", json={"agent_id": str(intern.id)})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_assignee_can_approve(self, client, session, factory):
        owner = await factory.agent("owner", level="intern")
        other = await factory.agent("other")
        task = await factory.task(status="review")
        await factory.assign(task, owner)
        await factory.assign(task, other)

        response = await client.post(f"/api/v1/tasks/{task.id}/approve", json={"agent_id": str(owner.id)})

        assert response.status_code == 200
        assert (await client.get(f"/api/v1/tasks/{task.id}")).json()["status"] == "done"
        [approval] = await _notifications(session, other)
        assert approval.type == "approval"
        assert await _notifications(session, owner) == []

    @pytest.mark.asyncio
    async def test_approval_auto_closes_open_subtasks(self, client, session, factory):
        lead = await factory.agent("lead", level="lead")
        parent = await factory.task("Parent", status="review")
        open_child = await factory.task("Open", status="in_progress", parent=parent)
        inbox_child = await factory.task("Untouched", status="inbox", parent=parent)

        response = await client.post(f"/api/v1/tasks/{parent.id}/approve", json={"agent_id": str(lead.id)})

        assert response.status_code == 200
        assert (await client.get(f"/api/v1/tasks/{open_child.id}")).json()["status"] == "done"
        assert (await client.get(f"/api/v1/tasks/{inbox_child.id}")).json()["status"] == "inbox"

        [note] = (
            await session.execute(select(Message).where(Message.task_id == open_child.id))
        ).scalars().all()
        assert note.author_type == "system"
        assert note.content == "[SYSTEM] Auto-closed: parent task completed"

    @pytest.mark.asyncio
    async def test_approval_unblocks_dependents(self, client, factory):
        lead = await factory.agent("lead", level="lead")
        blocker = await factory.task("Blocker", status="review")
        dependent = await factory.task("Dependent", status="blocked")
        await factory.edge(dependent, blocker)

        await client.post(f"/api/v1/tasks/{blocker.id}/approve", json={"agent_id": str(lead.id)})

        data = (await client.get(f"/api/v1/tasks/{dependent.id}")).json()
        assert data["status"] == "assigned"
        assert data["blocked_reason"] is None


class TestReject:
    @pytest.mark.asyncio
    async def test_only_leads_reject(self, client, factory):
        specialist = await factory.agent("spec")
        task = await factory.task(status="review")
        await factory.assign(task, specialist)

        response = await client.post(
            f"/api/v1/tasks/{task.id}/reject", json={"agent_id": str(specialist.id), "feedback": "no"}
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_feedback_required(self, client, factory):
        lead = await factory.agent("lead", level="lead")
        task = await factory.task(status="review")

        missing = await client.post(f"/api/v1/tasks/{task.id}/reject", json={"agent_id": str(lead.id)})
        blank = await client.post(
            f"/api/v1/tasks/{task.id}/reject", json={"agent_id": str(lead.id), "feedback": "   "}
        )

        assert missing.status_code == 422
        assert blank.status_code == 400

    @pytest.mark.asyncio
    async def test_requires_review_status(self, client, factory):
        lead = await factory.agent("lead", level="lead")
        task = await factory.task(status="done")

        response = await client.post(
            f"/api/v1/tasks/{task.id}/reject", json={"agent_id": str(lead.id), "feedback": "redo"}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_reject_sends_task_back(self, client, session, factory):
        lead = await factory.agent("lead", level="lead")
        owner = await factory.agent("owner")
        task = await factory.task(status="review")
        await factory.assign(task, owner)
        feedback = "The summary misses the pricing section entirely; please add it."

        response = await client.post(
            f"/api/v1/tasks/{task.id}/reject", json={"agent_id": str(lead.id), "feedback": feedback}
        )

        assert response.status_code == 200
        assert (await client.get(f"/api/v1/tasks/{task.id}")).json()["status"] == "in_progress"

        [message] = (await session.execute(select(Message).where(Message.task_id == task.id))).scalars().all()
        assert message.content == f"[REJECTED] {feedback}"
        assert message.from_agent_id == lead.id

        [notification] = await _notifications(session, owner)
        assert notification.type == "rejection"
        assert notification.content == f"Task rejected: {feedback[:50]}..."
        assert notification.message_id == message.id

        [trigger] = await _triggers(session, owner)
        assert trigger.event_type == "task_rejected"
        assert trigger.context == {"rejected_by": "lead", "feedback_preview": feedback}
