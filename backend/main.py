# ---------------------------------------------------------
# backend/main.py
# Project management data platform - HTTP backend
#
# Run: uvicorn backend.main:app --reload (from repo root)
#
# - FastAPI over DataService (remote document store + local fallback)
# - /auth/login  : sign in through the identity gate, returns a JWT
# - /auth/logout : end the caller's session on the gate
# - /auth/me     : identity carried by the token
# - /auth/demo-users : list (GET) or provision (POST) demo accounts, dev only
# - /api/<collection> : CRUD for tasks, finances, leads, meetings, documents
# - /api/users        : user administration
# - /api/reports/*    : finance / task / document aggregations
# ---------------------------------------------------------

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

# Import local modules (robust fallback for different run contexts)
try:
    from backend.auth_context import AuthContext, create_access_token, require_auth_context
    from backend.config import (
        CORS_ORIGINS,
        ENV,
        IDENTITY_PROBE_TIMEOUT,
        IDENTITY_URL,
        IS_DEV,
        LOCAL_STORAGE_URL,
        REMOTE_STORE_API_KEY,
        REMOTE_STORE_URL,
        REMOTE_TIMEOUT_SECONDS,
    )
    from backend.data_service import DataService
    from backend.dependencies import get_services, require_collection_access, require_permission
    from backend.errors import AuthenticationError
    from backend.identity import RemoteIdentityProvider, SessionManager
    from backend.local_storage import LocalStorage
    from backend.logging_config import setup_logging
    from backend.remote_store import RemoteDocumentStore
    from backend.reports import (
        document_stats,
        finance_by_category,
        finance_summary,
        monthly_cash_flow,
        task_status_counts,
    )
    from backend.routes_records import ROUTERS
    from backend.services import (
        DocumentService,
        FinanceService,
        LeadService,
        MeetingService,
        TaskService,
        UserService,
    )
except ModuleNotFoundError:
    from auth_context import AuthContext, create_access_token, require_auth_context
    from config import (
        CORS_ORIGINS,
        ENV,
        IDENTITY_PROBE_TIMEOUT,
        IDENTITY_URL,
        IS_DEV,
        LOCAL_STORAGE_URL,
        REMOTE_STORE_API_KEY,
        REMOTE_STORE_URL,
        REMOTE_TIMEOUT_SECONDS,
    )
    from data_service import DataService
    from dependencies import get_services, require_collection_access, require_permission
    from errors import AuthenticationError
    from identity import RemoteIdentityProvider, SessionManager
    from local_storage import LocalStorage
    from logging_config import setup_logging
    from remote_store import RemoteDocumentStore
    from reports import (
        document_stats,
        finance_by_category,
        finance_summary,
        monthly_cash_flow,
        task_status_counts,
    )
    from routes_records import ROUTERS
    from services import (
        DocumentService,
        FinanceService,
        LeadService,
        MeetingService,
        TaskService,
        UserService,
    )

from domains.project.models.user import User

logger = logging.getLogger("project.api")


# --------------------------------------------------------------------
# Service wiring
# --------------------------------------------------------------------
@dataclass
class Services:
    """Everything a request handler may need, built once per process."""

    local: LocalStorage
    data: DataService
    sessions: SessionManager
    tasks: TaskService
    finances: FinanceService
    leads: LeadService
    meetings: MeetingService
    documents: DocumentService
    users: UserService


def build_services(
    local_storage_url: str = LOCAL_STORAGE_URL,
    remote_url: str = REMOTE_STORE_URL,
    remote_api_key: Optional[str] = REMOTE_STORE_API_KEY,
    identity_url: str = IDENTITY_URL,
    remote_timeout: float = REMOTE_TIMEOUT_SECONDS,
    probe_timeout: float = IDENTITY_PROBE_TIMEOUT,
) -> Services:
    """
    Wire storage, DataService, typed services and the identity gate.

    An empty remote_url runs purely on local storage; an empty identity_url
    puts the gate in demo mode.
    """
    local = LocalStorage(local_storage_url)
    remote = (
        RemoteDocumentStore(remote_url, api_key=remote_api_key, timeout=remote_timeout)
        if remote_url
        else None
    )
    data = DataService(local, remote=remote)
    users = UserService(data)
    provider = RemoteIdentityProvider(identity_url, timeout=remote_timeout) if identity_url else None

    logger.info(
        "[BOOT] env=%s remote_store=%s identity=%s local=%s",
        ENV,
        "on" if remote else "off",
        "remote" if provider else "demo",
        local_storage_url,
    )

    return Services(
        local=local,
        data=data,
        sessions=SessionManager(local, users, provider=provider, probe_timeout=probe_timeout),
        tasks=TaskService(data),
        finances=FinanceService(data),
        leads=LeadService(data),
        meetings=MeetingService(data),
        documents=DocumentService(data),
        users=users,
    )


# --------------------------------------------------------------------
# Auth models
# --------------------------------------------------------------------
class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: User


# --------------------------------------------------------------------
# Auth endpoints
# --------------------------------------------------------------------
auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, services: Services = Depends(get_services)):
    try:
        user = services.sessions.sign_in(req.email, req.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return TokenResponse(access_token=create_access_token(user), user=user)


@auth_router.post("/logout")
def logout(
    ctx: AuthContext = Depends(require_auth_context),
    services: Services = Depends(get_services),
):
    # only the caller's own session is ended; the gate may hold someone else
    services.sessions.sign_out(ctx.user_id)
    return {"ok": True}


@auth_router.get("/me", response_model=AuthContext)
def me(ctx: AuthContext = Depends(require_auth_context)):
    return ctx


@auth_router.get("/demo-users")
def demo_users(services: Services = Depends(get_services)) -> List[Dict[str, str]]:
    """Demo credentials for the login page. Development only."""
    if not IS_DEV:
        raise HTTPException(status_code=403, detail="Demo users are only listed in development")
    return services.sessions.demo_users()


@auth_router.post("/demo-users", dependencies=[Depends(require_permission("users:write"))])
def provision_demo_users(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Create the demo accounts in the remote identity provider. Development only."""
    if not IS_DEV:
        raise HTTPException(status_code=403, detail="Demo users are only provisioned in development")
    return {"mode": services.sessions.mode, "created": services.sessions.create_demo_users()}


# --------------------------------------------------------------------
# Reports
# --------------------------------------------------------------------
reports_router = APIRouter(prefix="/api/reports", tags=["reports"])


@reports_router.get("/finance", dependencies=[Depends(require_collection_access("finances", "read"))])
def finance_report(services: Services = Depends(get_services)) -> Dict[str, Any]:
    records = services.finances.get_all_records()
    return {
        "summary": finance_summary(records),
        "by_category": finance_by_category(records),
        "monthly": monthly_cash_flow(records),
    }


@reports_router.get("/tasks", dependencies=[Depends(require_collection_access("tasks", "read"))])
def task_report(services: Services = Depends(get_services)) -> Dict[str, Any]:
    tasks = services.tasks.get_all_tasks()
    return {"total": len(tasks), "by_status": task_status_counts(tasks)}


@reports_router.get("/documents", dependencies=[Depends(require_collection_access("documents", "read"))])
def document_report(services: Services = Depends(get_services)) -> Dict[str, int]:
    return document_stats(services.documents.get_all_documents())


# --------------------------------------------------------------------
# App factory
# --------------------------------------------------------------------
def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Tests pass their own Services (e.g. on "sqlite://"); otherwise services
    are built from config when the app starts.
    """
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        app.state.services.sessions.initialize()
        yield

    app = FastAPI(title="Project Platform Backend", version="0.1", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        current = getattr(app.state, "services", None)
        if current is None:
            return {"status": "starting"}
        return {
            "status": "ok",
            "env": ENV,
            "storage": current.data.backend_status(),
            "identity": current.sessions.mode,
        }

    app.include_router(auth_router)
    for router in ROUTERS:
        app.include_router(router)
    app.include_router(reports_router)
    return app


app = create_app()
