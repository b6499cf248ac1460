from enum import Enum
from typing import Optional
from pydantic import BaseModel

class TaskStatus(str, Enum):
    INBOX = "inbox"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    BLOCKED = "blocked"
    DONE = "done"
    ARCHIVED = "archived"

class TaskPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

class AgentLevel(str, Enum):
    INTERN = "intern"
    SPECIALIST = "specialist"
    LEAD = "lead"

class TriggerEventType(str, Enum):
    TASK_ASSIGNED = "task_assigned"
    MENTION_CREATED = "mention_created"
    TASK_REJECTED = "task_rejected"

class TriggerStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

# Statuses a consumer may acknowledge a claimed trigger with
TERMINAL_TRIGGER_STATUSES = {TriggerStatus.COMPLETED, TriggerStatus.FAILED}

class WebhookEventType(str, Enum):
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_ASSIGNED = "task_assigned"
    TASK_STATUS_CHANGED = "task_status_changed"
    MESSAGE_SENT = "message_sent"
    AGENT_MENTIONED = "agent_mentioned"
    AGENT_STATUS_CHANGED = "agent_status_changed"
    DELIVERABLE_CREATED = "deliverable_created"
    DOC_UPDATED = "doc_updated"

# Synthetic event used only by operator test deliveries
TEST_EVENT = "test"

class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    RETRYING = "retrying"
    FAILED = "failed"

class NotificationType(str, Enum):
    MENTION = "mention"
    ASSIGNMENT = "assignment"
    REPLY = "reply"
    STATUS_CHANGE = "status_change"
    APPROVAL = "approval"
    REJECTION = "rejection"

class ActivityType(str, Enum):
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_ASSIGNED = "task_assigned"
    TASK_STATUS_CHANGED = "task_status_changed"
    TASK_UNBLOCKED = "task_unblocked"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"
    SUBTASKS_AUTO_CLOSED = "subtasks_auto_closed"
    MESSAGE_SENT = "message_sent"

class APIResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
