"""User data model for tasksync."""

from datetime import datetime
from typing import Any, Dict
from pydantic import BaseModel, Field


class User(BaseModel):
    """User model, keyed by the identity provider's user id."""

    externalId: str = Field(..., description="Unique user identifier from the identity provider")
    email: str = Field(..., description="User email address")
    displayName: str = Field(..., description="User display name")
    createdAt: datetime = Field(..., description="First login timestamp")
    lastLogin: datetime = Field(..., description="Most recent login timestamp")

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "User":
        data = {k: v for k, v in document.items() if k != "_id"}
        return cls(**data)
