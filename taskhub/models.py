from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import field_validator
from sqlalchemy import DateTime
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def new_task_id() -> str:
    return str(uuid4())


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str = Field(min_length=1, max_length=200, index=True)
    description: str = Field(min_length=1)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    assignee: str | None = Field(default=None)
    comments: str = Field(default="")


class Task(TaskBase, table=True):
    """Database model"""

    __tablename__ = "tasks"

    id: str = Field(default_factory=new_task_id, primary_key=True)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class TaskCreate(TaskBase):
    """Schema for creating a task"""

    pass


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional"""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, min_length=1)
    status: TaskStatus | None = None
    assignee: str | None = None
    comments: str | None = None

    @field_validator("title", "description", "status", "comments", mode="before")
    @classmethod
    def reject_null(cls, value):
        """Only assignee may be cleared; the other columns are NOT NULL."""
        if value is None:
            raise ValueError("field may be omitted but not null")
        return value


class TaskResponse(TaskBase):
    """Schema for task responses"""

    id: str
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
