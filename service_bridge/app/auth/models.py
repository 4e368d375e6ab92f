"""
Session models for Bridge Service.
"""

from typing import Optional, List
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class StudyParticipant(BaseModel):
    """Participant view carried on a session."""
    id: Optional[str] = Field(None, description="User ID")
    email: Optional[str] = Field(None, description="Email address")
    org_membership: Optional[str] = Field(None, description="Organization the account belongs to")
    roles: List[str] = Field(default_factory=list, description="Administrative roles")
    study_ids: List[str] = Field(default_factory=list, description="Studies the participant is enrolled in")


class UserSession(BaseModel):
    """Authenticated session stored in the cache under its token."""
    session_token: str = Field(..., description="Opaque session credential")
    id: Optional[str] = Field(None, description="User ID")
    app_id: Optional[str] = Field(None, description="App the session was created in")
    authenticated: bool = Field(True, description="Whether the caller has signed in")
    participant: StudyParticipant = Field(default_factory=StudyParticipant)
    created_on: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
