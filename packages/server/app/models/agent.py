"""Agent model.

Agents are managed outside the board; this table only carries what the
propagation engine needs: the @mention handle, the review level and the
consumer binding used to wake the agent.
"""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Agent(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "agents"

    name: str = Field(nullable=False, unique=True, index=True)
    level: str = Field(default="specialist", nullable=False)  # intern | specialist | lead
    cron_job_id: Optional[str] = None
