"""
Study and schedule models for Bridge Service.
"""

from typing import Dict, Any, Optional, List
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

STUDY_MODEL = "Study"
SCHEDULE_MODEL = "Schedule"


class StudyPhase(str, Enum):
    """Study lifecycle phases."""
    LEGACY = "legacy"
    DESIGN = "design"
    RECRUITMENT = "recruitment"
    IN_FLIGHT = "in_flight"
    ANALYSIS = "analysis"
    COMPLETED = "completed"
    WITHDRAWN = "withdrawn"


class StudyRequest(BaseModel):
    """Request model for creating or updating a study."""
    name: str = Field(..., min_length=1, description="Display name")
    details: Optional[str] = Field(None, description="Description of the study")
    phase: StudyPhase = Field(StudyPhase.DESIGN, description="Lifecycle phase")


class Study(BaseModel):
    """Stored study."""
    identifier: str
    app_id: str
    name: str
    details: Optional[str] = None
    phase: StudyPhase = StudyPhase.DESIGN
    version: int = 1
    modified_on: datetime


class ScheduleRequest(BaseModel):
    """Request model for creating or updating a study's schedule."""
    name: str = Field(..., min_length=1, description="Display name")
    duration: str = Field("P1W", description="ISO 8601 duration of the protocol")
    sessions: List[Dict[str, Any]] = Field(default_factory=list, description="Session definitions")


class Schedule(BaseModel):
    """Stored schedule."""
    study_id: str
    app_id: str
    name: str
    duration: str
    sessions: List[Dict[str, Any]] = Field(default_factory=list)
    version: int = 1
    modified_on: datetime


class Timeline(BaseModel):
    """A participant-facing view combining a study and its schedule."""
    study_id: str
    study_name: str
    phase: StudyPhase
    duration: str
    sessions: List[Dict[str, Any]] = Field(default_factory=list)
