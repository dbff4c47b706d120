from pydantic import Field
from typing import List, Optional
from datetime import datetime
from enum import Enum

from domains.project.models.base import Record, RecordFields, RecordUpdate


class UserRole(str, Enum):
    admin = "admin"
    project_manager = "project_manager"
    team_member = "team_member"
    investor = "investor"


class UserFields(RecordFields):
    email: str
    display_name: str = "User"
    role: UserRole = UserRole.team_member
    permissions: List[str] = Field(default_factory=lambda: ["tasks:read"])
    is_active: bool = True
    department: Optional[str] = None
    phone_number: Optional[str] = None
    last_login: Optional[datetime] = None


class UserUpdate(RecordUpdate):
    not_nullable = ("display_name", "role", "permissions", "is_active")

    display_name: Optional[str] = None
    role: Optional[UserRole] = None
    permissions: Optional[List[str]] = None
    is_active: Optional[bool] = None
    department: Optional[str] = None
    phone_number: Optional[str] = None
    last_login: Optional[datetime] = None


class User(Record, UserFields):
    """A signed-in identity with its role and permission list. id is the identity uid."""
