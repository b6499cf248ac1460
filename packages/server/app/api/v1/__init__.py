"""
API v1 Router

Task-board endpoints: tasks and their dependency graph, the trigger queue
consumed by agents, webhook registrations and notifications.
"""

from fastapi import APIRouter
from . import notifications, tasks, triggers, webhooks

router = APIRouter()

router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(triggers.router, prefix="/triggers", tags=["Triggers"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/tasks",
            "/tasks/{id}/dependencies",
            "/triggers",
            "/webhooks",
            "/notifications/{agent_id}",
        ],
    }
