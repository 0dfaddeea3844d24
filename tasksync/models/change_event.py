"""Change notification payloads forwarded to realtime clients."""

from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from tasksync.models.task import Task


class ChangeOperation(str, Enum):
    """Change stream operation types the bridge understands."""
    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"


class TaskChangeEvent(BaseModel):
    """One observed mutation of the tasks collection."""

    operation: ChangeOperation = Field(..., description="Kind of mutation")
    taskId: str = Field(..., description="Identifier of the affected task")
    task: Optional[Task] = Field(None, description="Full task state (absent for deletes)")
    deleted: bool = Field(False, description="Tombstone marker for deletes")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready payload for the `taskUpdate` event."""
        payload = self.model_dump(mode="json")
        if payload["task"] is None:
            payload.pop("task")
        return payload
