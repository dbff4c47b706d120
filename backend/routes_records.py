"""
backend/routes_records.py

CRUD endpoints for the project collections, plus user administration.

Security guarantees:
- All endpoints require authentication (require_auth_context)
- Collection access is checked against COLLECTION_RULES for the token's role
- Deletes additionally need the role's can_delete flag
- User administration needs the users:read / users:write permissions
- Input validation via the domain pydantic models; a patch that would leave
  a record invalid is rejected with 422 and nothing is stored

Storage failures never reach this layer: DataService falls back to local
storage. The only storage error routes handle is RecordNotFoundError (404).
"""

# Endpoint annotations must be real classes for FastAPI, so no postponed annotations here.

from datetime import datetime
from typing import Any, Callable, List, Optional, Type

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response
from pydantic import BaseModel, ValidationError

try:
    from backend.dependencies import get_services, require_collection_access, require_permission
    from backend.errors import RecordNotFoundError
    from backend.services import CollectionService
except ModuleNotFoundError:
    from dependencies import get_services, require_collection_access, require_permission
    from errors import RecordNotFoundError
    from services import CollectionService

from domains.project.models.document import Document, DocumentFields, DocumentUpdate
from domains.project.models.finance import FinanceRecord, FinanceRecordFields, FinanceRecordUpdate
from domains.project.models.lead import Lead, LeadFields, LeadUpdate
from domains.project.models.meeting import Meeting, MeetingFields, MeetingUpdate
from domains.project.models.task import Task, TaskFields, TaskUpdate
from domains.project.models.user import User, UserRole, UserUpdate


def _intersect(result_sets: List[List[Any]]) -> List[Any]:
    """Records present in every result set, in the order of the first one."""
    first, rest = result_sets[0], result_sets[1:]
    keep = set.intersection(*({r.id for r in results} for results in rest)) if rest else None
    return [r for r in first if keep is None or r.id in keep]


def _crud_router(
    collection: str,
    model: Type[BaseModel],
    fields_model: Type[BaseModel],
    update_model: Type[BaseModel],
    records_of: Callable[[Any], CollectionService],
) -> APIRouter:
    """
    Create / get / patch / delete endpoints for one collection.

    List endpoints are added by the caller since each collection has its
    own filters.
    """
    router = APIRouter(prefix=f"/api/{collection}", tags=[collection])
    singular = collection.rstrip("s")

    @router.post(
        "",
        response_model=model,
        status_code=201,
        dependencies=[Depends(require_collection_access(collection, "write"))],
    )
    def create_record(body: fields_model, services=Depends(get_services)):
        return records_of(services).create(body)

    @router.get(
        "/{record_id}",
        response_model=model,
        dependencies=[Depends(require_collection_access(collection, "read"))],
    )
    def get_record(record_id: str = Path(..., min_length=1), services=Depends(get_services)):
        record = records_of(services).get(record_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"{singular.capitalize()} not found")
        return record

    @router.patch(
        "/{record_id}",
        response_model=model,
        dependencies=[Depends(require_collection_access(collection, "write"))],
    )
    def update_record(body: update_model, record_id: str = Path(..., min_length=1), services=Depends(get_services)):
        try:
            return records_of(services).update(record_id, body)
        except RecordNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))

    @router.delete(
        "/{record_id}",
        status_code=204,
        dependencies=[Depends(require_collection_access(collection, "delete"))],
    )
    def delete_record(record_id: str = Path(..., min_length=1), services=Depends(get_services)):
        # Deleting an absent record is not an error
        records_of(services).delete(record_id)
        return Response(status_code=204)

    return router


# ---------------------------------------------------------
# Tasks
# ---------------------------------------------------------
tasks_router = _crud_router("tasks", Task, TaskFields, TaskUpdate, lambda s: s.tasks.records)


@tasks_router.get("", response_model=List[Task], dependencies=[Depends(require_collection_access("tasks", "read"))])
def list_tasks(
    status: Optional[str] = Query(None),
    assignee: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    services=Depends(get_services),
):
    """All tasks, newest first. Filters combine with AND."""
    results = []
    if status is not None:
        results.append(services.tasks.get_tasks_by_status(status))
    if assignee is not None:
        results.append(services.tasks.get_tasks_by_assignee(assignee))
    if tag is not None:
        results.append(services.tasks.get_tasks_by_tag(tag))
    return _intersect(results) if results else services.tasks.get_all_tasks()


# ---------------------------------------------------------
# Finances
# ---------------------------------------------------------
finances_router = _crud_router(
    "finances", FinanceRecord, FinanceRecordFields, FinanceRecordUpdate, lambda s: s.finances.records
)


@finances_router.get(
    "", response_model=List[FinanceRecord], dependencies=[Depends(require_collection_access("finances", "read"))]
)
def list_finances(
    type: Optional[str] = Query(None, description="income or expense"),
    category: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None, description="Inclusive start of the date range"),
    end: Optional[datetime] = Query(None, description="Inclusive end of the date range"),
    services=Depends(get_services),
):
    """All finance records, newest first. start and end must be given together."""
    if (start is None) != (end is None):
        raise HTTPException(status_code=400, detail="start and end must be provided together")

    results = []
    if type is not None:
        results.append(services.finances.get_records_by_type(type))
    if category is not None:
        results.append(services.finances.get_records_by_category(category))
    if start is not None:
        results.append(services.finances.get_records_by_date_range(start, end))
    return _intersect(results) if results else services.finances.get_all_records()


# ---------------------------------------------------------
# Leads
# ---------------------------------------------------------
leads_router = _crud_router("leads", Lead, LeadFields, LeadUpdate, lambda s: s.leads.records)


@leads_router.get("", response_model=List[Lead], dependencies=[Depends(require_collection_access("leads", "read"))])
def list_leads(
    status: Optional[str] = Query(None),
    assigned_to: Optional[str] = Query(None),
    min_value: Optional[float] = Query(None, ge=0),
    follow_up_before: Optional[datetime] = Query(None),
    services=Depends(get_services),
):
    results = []
    if status is not None:
        results.append(services.leads.get_leads_by_status(status))
    if assigned_to is not None:
        results.append(services.leads.get_leads_by_assignee(assigned_to))
    if min_value is not None:
        results.append(services.leads.get_high_value_leads(min_value))
    if follow_up_before is not None:
        results.append(services.leads.get_follow_ups_due(follow_up_before))
    return _intersect(results) if results else services.leads.get_all_leads()


# ---------------------------------------------------------
# Meetings
# ---------------------------------------------------------
meetings_router = _crud_router("meetings", Meeting, MeetingFields, MeetingUpdate, lambda s: s.meetings.records)


@meetings_router.get(
    "", response_model=List[Meeting], dependencies=[Depends(require_collection_access("meetings", "read"))]
)
def list_meetings(
    status: Optional[str] = Query(None),
    attendee: Optional[str] = Query(None),
    after: Optional[datetime] = Query(None, description="Only meetings on or after this time"),
    services=Depends(get_services),
):
    results = []
    if status is not None:
        results.append(services.meetings.get_meetings_by_status(status))
    if attendee is not None:
        results.append(services.meetings.get_meetings_for_attendee(attendee))
    if after is not None:
        results.append(services.meetings.get_upcoming_meetings(after))
    return _intersect(results) if results else services.meetings.get_all_meetings()


# ---------------------------------------------------------
# Documents
# ---------------------------------------------------------
documents_router = _crud_router(
    "documents", Document, DocumentFields, DocumentUpdate, lambda s: s.documents.records
)


@documents_router.get(
    "", response_model=List[Document], dependencies=[Depends(require_collection_access("documents", "read"))]
)
def list_documents(
    parent_id: Optional[str] = Query(None, description="Only direct children of this folder"),
    folders_only: bool = Query(False),
    services=Depends(get_services),
):
    results = []
    if parent_id is not None:
        results.append(services.documents.get_documents_in_folder(parent_id))
    if folders_only:
        results.append(services.documents.get_folders())
    return _intersect(results) if results else services.documents.get_all_documents()


# ---------------------------------------------------------
# Users
# ---------------------------------------------------------
users_router = APIRouter(prefix="/api/users", tags=["users"])


@users_router.get("", response_model=List[User], dependencies=[Depends(require_permission("users:read"))])
def list_users(role: Optional[UserRole] = Query(None), services=Depends(get_services)):
    if role is not None:
        return services.users.get_users_by_role(role)
    return services.users.get_all_users()


@users_router.patch("/{user_id}", response_model=User, dependencies=[Depends(require_permission("users:write"))])
def update_user(body: UserUpdate, user_id: str = Path(..., min_length=1), services=Depends(get_services)):
    """Change a user's role, permissions or profile fields."""
    try:
        return services.users.update_user(user_id, body)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


ROUTERS: List[APIRouter] = [
    tasks_router,
    finances_router,
    leads_router,
    meetings_router,
    documents_router,
    users_router,
]
