"""Request/response models for the HTTP API.

Request fields are all optional so that missing fields reach the service layer
and come back as 400 rather than FastAPI's 422.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Request model for recording a login."""
    externalId: Optional[str] = Field(None, description="Identity provider user id")
    uid: Optional[str] = Field(None, description="Alias of externalId (Firebase-style clients)")
    userId: Optional[str] = Field(None, description="Alias of externalId (legacy clients)")
    email: Optional[str] = None
    displayName: Optional[str] = None

    def resolved_external_id(self) -> Optional[str]:
        return self.externalId or self.uid or self.userId


class TaskCreateRequest(BaseModel):
    """Request model for task creation."""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    ownerId: Optional[str] = None
    timestamp: Optional[datetime] = Field(None, description="Client-side creation time (defaults to now)")


class TaskUpdateRequest(BaseModel):
    """Request model for task update. Only these fields are mutable."""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class LoginResponse(MessageResponse):
    created: bool


class TaskCreatedResponse(BaseModel):
    success: bool = True
    taskId: str
