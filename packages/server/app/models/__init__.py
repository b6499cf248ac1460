# SQLModel definitions, imported here so the metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin, utcnow  # noqa: F401
from .agent import Agent  # noqa: F401
from .task import Task  # noqa: F401
from .assignments import TaskAssignee  # noqa: F401
from .dependency import TaskDependency  # noqa: F401
from .subscription import Subscription  # noqa: F401
from .message import Message  # noqa: F401
from .notification import Notification  # noqa: F401
from .activity import Activity  # noqa: F401
from .trigger import PendingTrigger  # noqa: F401
from .webhook import Webhook, WebhookDelivery, WebhookEvent  # noqa: F401
