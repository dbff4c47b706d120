from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import ClassVar, Optional, Tuple
from datetime import datetime


class RecordFields(BaseModel):
    """
    Base for the writable part of a record.
    Unknown fields are kept so free-form data survives a round trip.
    """

    model_config = ConfigDict(extra="allow")


class RecordUpdate(RecordFields):
    """
    Base for partial updates: only the fields that were sent are applied.

    Fields listed in not_nullable hold a value on every stored record, so an
    explicit null for them is rejected instead of being merged.
    """

    not_nullable: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_nulls(self):
        nulls = [name for name in self.not_nullable if name in self.model_fields_set and getattr(self, name) is None]
        if nulls:
            raise ValueError(f"Fields cannot be null: {', '.join(nulls)}")
        return self


class Record(BaseModel):
    """
    Identity and timestamps shared by every stored record.
    The id is assigned by the store at creation time.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, description="Record ID assigned at creation")
    created_at: Optional[datetime] = Field(None, description="When the record was created (UTC)")
    updated_at: Optional[datetime] = Field(None, description="When the record was last updated (UTC)")
