"""
backend/dependencies.py

Reusable FastAPI dependencies for service access and authorization.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request

try:
    from backend.auth_context import require_auth_context, AuthContext
    from backend.rbac import Action, can_access_collection, has_permission
    from backend.config import IS_DEV
except ModuleNotFoundError:
    from auth_context import require_auth_context, AuthContext
    from rbac import Action, can_access_collection, has_permission
    from config import IS_DEV

logger = logging.getLogger("project.authz")


def get_services(request: Request):
    """The Services container built at startup (see main.create_app)."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


def require_collection_access(collection: str, action: Action) -> Callable:
    """
    FastAPI dependency factory for collection-level authorization.

    Checks the caller's role against COLLECTION_RULES. Deletes additionally
    need the role's can_delete flag.

    Usage in routes:
        @router.delete("/{id}", dependencies=[Depends(require_collection_access("tasks", "delete"))])

    Raises:
        HTTPException(403): If the role may not perform the action
    """
    def _check_access(ctx: AuthContext = Depends(require_auth_context)) -> AuthContext:
        if not can_access_collection(ctx.role, collection, action):
            if IS_DEV:
                logger.debug("[AUTHZ] Denied: role=%s collection=%s action=%s", ctx.role, collection, action)
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions to {action} {collection}",
            )
        return ctx

    return _check_access


def require_permission(permission: str) -> Callable:
    """
    FastAPI dependency factory for permission-string authorization
    (e.g. "users:read").

    Raises:
        HTTPException(403): If the permission is not in the token
    """
    def _check_permission(ctx: AuthContext = Depends(require_auth_context)) -> AuthContext:
        if not has_permission(ctx.permissions, permission):
            if IS_DEV:
                logger.debug("[AUTHZ] Permission denied: permission=%s user_id=%s", permission, ctx.user_id)
            raise HTTPException(status_code=403, detail=f"Missing permission {permission}")
        return ctx

    return _check_permission
