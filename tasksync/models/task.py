"""Task data model for tasksync."""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

_DATETIME = TypeAdapter(datetime)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp; values that are not a recognizable datetime become None."""
    if value is None:
        return None
    try:
        return _DATETIME.validate_python(value)
    except ValidationError:
        return None


class Task(BaseModel):
    """Canonical Task model."""

    id: str = Field(..., description="Store-assigned identifier (ObjectId hex string)")
    title: str = Field(..., description="Task title")
    description: str = Field(..., description="Task description")
    category: str = Field(..., description="Free-form task category")
    ownerId: Optional[str] = Field(None, description="externalId of the owning user, if any")
    createdAt: Optional[datetime] = Field(None, description="Task creation timestamp")
    updatedAt: Optional[datetime] = Field(None, description="Task last update timestamp")

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Task":
        """Build a Task from a raw store document (`_id` becomes `id`).

        Raises pydantic's ValidationError when a required field is missing.
        """
        data = {k: v for k, v in document.items() if k != "_id"}
        data["id"] = str(document["_id"])
        # Documents written by the original clients carried `timestamp` instead of `createdAt`,
        # often as a locale string such as "2/20/2025, 10:00:00 AM"
        if data.get("createdAt") is None and "timestamp" in data:
            data["createdAt"] = data.pop("timestamp")
        data.pop("timestamp", None)
        data["createdAt"] = parse_timestamp(data.get("createdAt"))
        data["updatedAt"] = parse_timestamp(data.get("updatedAt"))
        return cls(**data)
