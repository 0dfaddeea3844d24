"""Typed failures raised by the service layer.

The transport maps each of these to an HTTP status (see `tasksync.api.errors`).
"""


class TaskSyncError(Exception):
    """Base class for all tasksync failures."""

    public_message = "Internal server error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationError(TaskSyncError):
    """Missing/empty required field, or a malformed identifier."""

    public_message = "Missing required fields"


class NotFoundError(TaskSyncError):
    """Update or delete target does not exist."""

    public_message = "Not found"


class AlreadyExists(TaskSyncError):
    """A unique key (e.g. a user's externalId) is already taken."""

    public_message = "Already exists"


class StoreUnavailable(TaskSyncError):
    """The document store failed or timed out. Safe to retry."""

    public_message = "Store unavailable"


class ResumeTokenExpired(StoreUnavailable):
    """The change stream can no longer resume from the given token."""

    public_message = "Change stream resume token is no longer valid"
