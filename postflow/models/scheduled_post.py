# postflow/models/scheduled_post.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional, List
import uuid
from datetime import datetime
from sqlalchemy import String, JSON

from postflow.clock import utcnow

PENDING = "pending"
SUCCESS = "success"
FAILED = "failed"
TERMINAL_STATUSES = (SUCCESS, FAILED)


class ScheduledPost(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    brand_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    content: dict = Field(sa_column=Column(JSON, nullable=False))  # MediaContent.model_dump()
    platforms: List[str] = Field(sa_column=Column(JSON, nullable=False))
    scheduled_time: datetime = Field(index=True)
    status: str = Field(default=PENDING, index=True)  # pending, success, failed
    error: Optional[str] = Field(default=None)
    external_job_id: Optional[str] = Field(default=None, index=True)
    attempts: int = Field(default=0)
    delivered_platforms: List[str] = Field(sa_column=Column(JSON, nullable=False), default=[])
    last_error: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def remaining_platforms(self) -> List[str]:
        delivered = set(self.delivered_platforms or [])
        return [p for p in self.platforms if p not in delivered]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
