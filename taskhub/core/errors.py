"""Error taxonomy shared by the task and notification services.

Store failures propagate to the caller. Cache and publish failures are
recoverable: the write path and the read-through cache catch them by type,
log them and carry on.
"""


class TaskHubError(Exception):
    """Base class for all taskhub errors."""


class NotFoundError(TaskHubError):
    """A read or mutation targeted an entity that does not exist."""

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity.capitalize()} with id {identifier} not found")


class CacheUnavailableError(TaskHubError):
    """The cache backend is unreachable or rejected an operation."""


class PublishConnectionError(TaskHubError):
    """The messaging backend could not be reached to publish an event."""


class MalformedEventError(TaskHubError):
    """A change event payload could not be decoded or failed validation."""
