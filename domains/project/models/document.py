from pydantic import Field
from typing import List, Literal, Optional

from domains.project.models.base import Record, RecordFields, RecordUpdate

DocumentType = Literal["file", "folder"]


class DocumentFields(RecordFields):
    """
    A file or folder entry.

    Folders form a flat parent-pointer list (parent_id); nothing checks that
    the parent exists or that the hierarchy is acyclic.
    """

    name: str = Field(..., min_length=1, max_length=255)
    type: DocumentType = "file"
    parent_id: Optional[str] = Field(None, description="Containing folder id, None for the root")
    size: int = Field(0, ge=0, description="Size in bytes (0 for folders)")
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    url: Optional[str] = None


class DocumentUpdate(RecordUpdate):
    not_nullable = ("name", "size", "tags")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    parent_id: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    description: Optional[str] = None
    url: Optional[str] = None


class Document(Record, DocumentFields):
    pass
