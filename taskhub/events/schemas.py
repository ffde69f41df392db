"""Change events published on the task update channel.

Wire format (JSON):

    {"action": "created", "task": {"id": ..., "title": ..., ...}}
    {"action": "updated", "task": {...}}
    {"action": "deleted", "taskId": "..."}
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from taskhub.core.errors import MalformedEventError

ChangeAction = Literal["created", "updated", "deleted"]


class TaskPayload(BaseModel):
    """Task state carried by created/updated events."""

    id: str
    title: str
    description: str | None = None
    status: str
    assignee: str | None = None
    comments: str | None = None


class ChangeEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: ChangeAction
    task: TaskPayload | None = None
    task_id: str | None = Field(default=None, alias="taskId")

    @model_validator(mode="after")
    def _check_shape(self) -> "ChangeEvent":
        if self.action == "deleted":
            if self.task_id is None:
                raise ValueError("deleted events require taskId")
        elif self.task is None:
            raise ValueError(f"{self.action} events require task")
        return self

    @classmethod
    def created(cls, task: Any) -> "ChangeEvent":
        return cls(action="created", task=_payload(task))

    @classmethod
    def updated(cls, task: Any) -> "ChangeEvent":
        return cls(action="updated", task=_payload(task))

    @classmethod
    def deleted(cls, task_id: str) -> "ChangeEvent":
        return cls(action="deleted", task_id=task_id)

    @classmethod
    def parse(cls, raw: str | bytes) -> "ChangeEvent":
        """Decode a channel payload, raising MalformedEventError on bad input."""
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise MalformedEventError(f"Invalid change event: {e}") from e

    def to_wire(self) -> dict:
        """JSON-ready dict with only the fields relevant to the action."""
        data: dict[str, Any] = {"action": self.action}
        if self.task is not None:
            data["task"] = self.task.model_dump(mode="json")
        if self.task_id is not None:
            data["taskId"] = self.task_id
        return data


def _payload(task: Any) -> TaskPayload:
    if isinstance(task, TaskPayload):
        return task
    if isinstance(task, dict):
        return TaskPayload.model_validate(task)
    data = task.model_dump(mode="json")
    return TaskPayload.model_validate(data)
