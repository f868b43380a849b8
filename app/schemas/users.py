from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class UpdateActivationRequest(BaseModel):
    """Admin switch for a user's ``is_active`` flag."""
    is_active: bool
    reason: Optional[str] = Field(default=None, max_length=500)


class ActivationResponse(BaseModel):
    id: UUID
    is_active: bool
    message: str


class UserSessionsResponse(BaseModel):
    """Number of live refresh tokens indexed for a user."""
    user_id: UUID
    active_sessions: int


class StaffProfileRequest(BaseModel):
    position: str = Field(..., min_length=2, max_length=100)
    department: Optional[str] = Field(default=None, max_length=100)


class StaffProfileResponse(BaseModel):
    id: UUID
    user_id: UUID
    position: str
    department: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}
