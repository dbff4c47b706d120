from pydantic import Field
from typing import List, Optional
from datetime import datetime

from domains.project.models.base import Record, RecordFields, RecordUpdate


class TaskFields(RecordFields):
    """
    A unit of project work.
    Status and priority are free text; no workflow is enforced.
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    status: str = Field("todo", description="e.g. todo, in_progress, review, completed, blocked")
    priority: str = Field("medium", description="e.g. low, medium, high, critical")

    # Free text, not a foreign key
    assignee: Optional[str] = None
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None


class TaskUpdate(RecordUpdate):
    not_nullable = ("title", "description", "status", "priority", "tags")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    due_date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = None


class Task(Record, TaskFields):
    pass
