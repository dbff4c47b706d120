"""
backend/services.py

Typed per-entity services over DataService.

CollectionService[T] is the one generic CRUD implementation: it fixes the
collection name, turns pydantic inputs into plain dicts for DataService and
validates what comes back into T. Entity services compose a CollectionService
and add the named queries the pages need (by status, by assignee, ...).

No service keeps state of its own; failure semantics are DataService's.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel

try:
    from backend.data_service import Condition, DataService, where
except ModuleNotFoundError:
    from data_service import Condition, DataService, where

from domains.project.models.base import Record, RecordUpdate
from domains.project.models.document import Document, DocumentFields, DocumentUpdate
from domains.project.models.finance import FinanceRecord, FinanceRecordFields, FinanceRecordUpdate
from domains.project.models.lead import Lead, LeadFields, LeadUpdate
from domains.project.models.meeting import Meeting, MeetingFields, MeetingUpdate
from domains.project.models.task import Task, TaskFields, TaskUpdate
from domains.project.models.user import User, UserFields, UserRole, UserUpdate

T = TypeVar("T", bound=Record)

Payload = Union[BaseModel, Mapping[str, Any]]


def _as_dict(data: Payload, partial: bool = False) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=partial)
    return dict(data)


class CollectionService(Generic[T]):
    """Generic CRUD for one collection of records of type T."""

    def __init__(
        self,
        data: DataService,
        collection: str,
        model: Type[T],
        fields_model: Type[BaseModel],
        update_model: Type[RecordUpdate],
    ) -> None:
        self.data = data
        self.collection = collection
        self.model = model
        self.fields_model = fields_model
        self.update_model = update_model

    def _to_model(self, record: Dict[str, Any]) -> T:
        return self.model.model_validate(record)

    def _to_models(self, records: Sequence[Dict[str, Any]]) -> List[T]:
        return [self._to_model(r) for r in records]

    def create(self, data: Payload, record_id: Optional[str] = None) -> T:
        # validate plain dicts against the entity's fields before storing
        fields = data if isinstance(data, self.fields_model) else self.fields_model.model_validate(_as_dict(data))
        stored = self.data.create(self.collection, fields.model_dump(), record_id=record_id)
        return self._to_model(stored)

    def get_all(self) -> List[T]:
        return self._to_models(self.data.read_all(self.collection))

    def get(self, record_id: str) -> Optional[T]:
        record = self.data.read_one(self.collection, record_id)
        return None if record is None else self._to_model(record)

    def update(self, record_id: str, changes: Payload) -> T:
        if not isinstance(changes, self.update_model):
            changes = self.update_model.model_validate(_as_dict(changes))
        # a merged record that no longer validates is never stored
        stored = self.data.update(
            self.collection, record_id, _as_dict(changes, partial=True), validate=self.model.model_validate
        )
        return self._to_model(stored)

    def delete(self, record_id: str) -> None:
        self.data.delete(self.collection, record_id)

    def query(self, conditions: Sequence[Condition]) -> List[T]:
        return self._to_models(self.data.query(self.collection, conditions))

    def find_by(self, field: str, value: Any) -> List[T]:
        return self.query([where(field, "==", value)])


class TaskService:
    def __init__(self, data: DataService) -> None:
        self.records: CollectionService[Task] = CollectionService(data, "tasks", Task, TaskFields, TaskUpdate)

    def create_task(self, task: Union[TaskFields, Mapping[str, Any]]) -> Task:
        return self.records.create(task)

    def get_all_tasks(self) -> List[Task]:
        return self.records.get_all()

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.records.get(task_id)

    def update_task(self, task_id: str, updates: Union[TaskUpdate, Mapping[str, Any]]) -> Task:
        return self.records.update(task_id, updates)

    def delete_task(self, task_id: str) -> None:
        self.records.delete(task_id)

    def get_tasks_by_status(self, status: str) -> List[Task]:
        return self.records.find_by("status", status)

    def get_tasks_by_assignee(self, assignee: str) -> List[Task]:
        return self.records.find_by("assignee", assignee)

    def get_tasks_by_tag(self, tag: str) -> List[Task]:
        return self.records.query([where("tags", "array-contains", tag)])


class FinanceService:
    def __init__(self, data: DataService) -> None:
        self.records: CollectionService[FinanceRecord] = CollectionService(
            data, "finances", FinanceRecord, FinanceRecordFields, FinanceRecordUpdate
        )

    def create_record(self, record: Union[FinanceRecordFields, Mapping[str, Any]]) -> FinanceRecord:
        return self.records.create(record)

    def get_all_records(self) -> List[FinanceRecord]:
        return self.records.get_all()

    def get_record(self, record_id: str) -> Optional[FinanceRecord]:
        return self.records.get(record_id)

    def update_record(
        self, record_id: str, updates: Union[FinanceRecordUpdate, Mapping[str, Any]]
    ) -> FinanceRecord:
        return self.records.update(record_id, updates)

    def delete_record(self, record_id: str) -> None:
        self.records.delete(record_id)

    def get_records_by_type(self, record_type: str) -> List[FinanceRecord]:
        return self.records.find_by("type", record_type)

    def get_records_by_category(self, category: str) -> List[FinanceRecord]:
        return self.records.find_by("category", category)

    def get_records_by_date_range(self, start_date: datetime, end_date: datetime) -> List[FinanceRecord]:
        """Records dated between start_date and end_date, both inclusive."""
        return self.records.query([
            where("date", ">=", start_date),
            where("date", "<=", end_date),
        ])


class LeadService:
    def __init__(self, data: DataService) -> None:
        self.records: CollectionService[Lead] = CollectionService(data, "leads", Lead, LeadFields, LeadUpdate)

    def create_lead(self, lead: Union[LeadFields, Mapping[str, Any]]) -> Lead:
        return self.records.create(lead)

    def get_all_leads(self) -> List[Lead]:
        return self.records.get_all()

    def get_lead(self, lead_id: str) -> Optional[Lead]:
        return self.records.get(lead_id)

    def update_lead(self, lead_id: str, updates: Union[LeadUpdate, Mapping[str, Any]]) -> Lead:
        return self.records.update(lead_id, updates)

    def delete_lead(self, lead_id: str) -> None:
        self.records.delete(lead_id)

    def get_leads_by_status(self, status: str) -> List[Lead]:
        return self.records.find_by("status", status)

    def get_leads_by_assignee(self, assignee: str) -> List[Lead]:
        return self.records.find_by("assigned_to", assignee)

    def get_high_value_leads(self, min_value: float) -> List[Lead]:
        return self.records.query([where("expected_value", ">=", min_value)])

    def get_follow_ups_due(self, before: datetime) -> List[Lead]:
        return self.records.query([where("next_follow_up_date", "<=", before)])


class MeetingService:
    def __init__(self, data: DataService) -> None:
        self.records: CollectionService[Meeting] = CollectionService(data, "meetings", Meeting, MeetingFields, MeetingUpdate)

    def create_meeting(self, meeting: Union[MeetingFields, Mapping[str, Any]]) -> Meeting:
        return self.records.create(meeting)

    def get_all_meetings(self) -> List[Meeting]:
        return self.records.get_all()

    def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        return self.records.get(meeting_id)

    def update_meeting(self, meeting_id: str, updates: Union[MeetingUpdate, Mapping[str, Any]]) -> Meeting:
        return self.records.update(meeting_id, updates)

    def delete_meeting(self, meeting_id: str) -> None:
        self.records.delete(meeting_id)

    def get_meetings_by_status(self, status: str) -> List[Meeting]:
        return self.records.find_by("status", status)

    def get_meetings_for_attendee(self, attendee: str) -> List[Meeting]:
        return self.records.query([where("attendees", "array-contains", attendee)])

    def get_upcoming_meetings(self, after: datetime) -> List[Meeting]:
        return self.records.query([where("date", ">=", after)])


class DocumentService:
    def __init__(self, data: DataService) -> None:
        self.records: CollectionService[Document] = CollectionService(
            data, "documents", Document, DocumentFields, DocumentUpdate
        )

    def create_document(self, document: Union[DocumentFields, Mapping[str, Any]]) -> Document:
        return self.records.create(document)

    def create_folder(self, name: str, parent_id: Optional[str] = None, description: Optional[str] = None) -> Document:
        return self.records.create(
            DocumentFields(name=name, type="folder", parent_id=parent_id, description=description)
        )

    def get_all_documents(self) -> List[Document]:
        return self.records.get_all()

    def get_document(self, document_id: str) -> Optional[Document]:
        return self.records.get(document_id)

    def update_document(
        self, document_id: str, updates: Union[DocumentUpdate, Mapping[str, Any]]
    ) -> Document:
        return self.records.update(document_id, updates)

    def delete_document(self, document_id: str) -> None:
        self.records.delete(document_id)

    def get_documents_in_folder(self, parent_id: Optional[str]) -> List[Document]:
        """Direct children of a folder; parent_id=None lists the root."""
        return self.records.find_by("parent_id", parent_id)

    def get_folders(self) -> List[Document]:
        return self.records.find_by("type", "folder")


class UserService:
    def __init__(self, data: DataService) -> None:
        self.records: CollectionService[User] = CollectionService(data, "users", User, UserFields, UserUpdate)

    def create_user(self, user: Union[UserFields, Mapping[str, Any]], uid: Optional[str] = None) -> User:
        return self.records.create(user, record_id=uid)

    def get_all_users(self) -> List[User]:
        return self.records.get_all()

    def get_user(self, uid: str) -> Optional[User]:
        return self.records.get(uid)

    def update_user(self, uid: str, updates: Union[UserUpdate, Mapping[str, Any]]) -> User:
        return self.records.update(uid, updates)

    def delete_user(self, uid: str) -> None:
        self.records.delete(uid)

    def get_users_by_role(self, role: Union[UserRole, str]) -> List[User]:
        return self.records.find_by("role", UserRole(role).value)
