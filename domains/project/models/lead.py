from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from domains.project.models.base import Record, RecordFields, RecordUpdate


class LeadAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class LeadSocialMedia(BaseModel):
    linkedin: Optional[str] = None
    facebook: Optional[str] = None
    twitter: Optional[str] = None


class LeadFields(RecordFields):
    """
    A prospective investor, partner or customer.

    Source, status and priority are free text. Typical values:
    - source: website, social-media, referral, cold-call, event, advertisement, other
    - status: new, contacted, qualified, proposal-sent, negotiation, closed-won, closed-lost
    """

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = ""
    email: str = ""
    phone: str = ""
    company: Optional[str] = None
    position: Optional[str] = None

    source: str = "other"
    status: str = "new"
    priority: str = "medium"
    expected_value: Optional[float] = Field(None, description="Expected deal value")
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    assigned_to: Optional[str] = None

    last_contact_date: Optional[datetime] = None
    next_follow_up_date: Optional[datetime] = None

    address: Optional[LeadAddress] = None
    social_media: Optional[LeadSocialMedia] = None


class LeadUpdate(RecordUpdate):
    not_nullable = ("first_name", "last_name", "email", "phone", "source", "status", "priority", "tags")

    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    source: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    expected_value: Optional[float] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    assigned_to: Optional[str] = None
    last_contact_date: Optional[datetime] = None
    next_follow_up_date: Optional[datetime] = None
    address: Optional[LeadAddress] = None
    social_media: Optional[LeadSocialMedia] = None


class Lead(Record, LeadFields):
    pass
