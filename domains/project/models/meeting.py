from pydantic import Field
from typing import List, Optional
from datetime import datetime

from domains.project.models.base import Record, RecordFields, RecordUpdate


class MeetingFields(RecordFields):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    date: datetime
    time: str = Field("09:00", description="Start time as HH:MM")
    duration: int = Field(60, ge=0, description="Duration in minutes")
    location: str = ""
    attendees: List[str] = Field(default_factory=list)
    status: str = "scheduled"
    priority: str = "medium"
    agenda: str = ""


class MeetingUpdate(RecordUpdate):
    not_nullable = (
        "title", "description", "date", "time", "duration",
        "location", "attendees", "status", "priority", "agenda",
    )

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    date: Optional[datetime] = None
    time: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0)
    location: Optional[str] = None
    attendees: Optional[List[str]] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    agenda: Optional[str] = None


class Meeting(Record, MeetingFields):
    pass
