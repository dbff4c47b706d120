"""
backend/auth_context.py

Shared authentication context primitives for FastAPI dependency injection.
This module breaks the circular import between main.py and dependencies.py.

Contains:
- AuthContext: Immutable identity context carried by the access token
- create_access_token: JWT issued after a successful sign-in
- verify_token: JWT token verification
- require_auth_context: FastAPI dependency for auth enforcement

This module MUST NOT import backend.main to avoid circular dependencies.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, ConfigDict, Field

try:
    from backend.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_MINUTES, IS_DEV
    from backend.rbac import ALL_ROLES, DEFAULT_ROLE
    from backend.timestamps import utc_now
except ModuleNotFoundError:
    from config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_MINUTES, IS_DEV
    from rbac import ALL_ROLES, DEFAULT_ROLE
    from timestamps import utc_now

from domains.project.models.user import User

logger = logging.getLogger("project.auth")

# Security scheme for HTTPBearer
security = HTTPBearer(auto_error=False)


# ---------------------------------------------------------
# JWT Token Issue / Verification
# ---------------------------------------------------------
def create_access_token(user: User, minutes: int = ACCESS_TOKEN_MINUTES) -> str:
    """
    Issue a signed access token for a signed-in user.

    The token carries everything the API needs for authorization, so
    protected endpoints never go back to storage to resolve the caller.
    """
    now = utc_now()
    payload = {
        "sub": user.id,
        "email": user.email,
        "role": user.role.value,
        "permissions": list(user.permissions),
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify JWT access token and return decoded payload.

    Raises:
        HTTPException(401): If token is expired or invalid
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# ---------------------------------------------------------
# AuthContext
# ---------------------------------------------------------
class AuthContext(BaseModel):
    """
    Immutable identity context derived from the JWT access token.
    This is the ONLY source of truth for user_id, role and permissions in
    protected endpoints. Never trust ids or roles from request bodies.

    Fields:
        user_id: User id (token subject)
        email: User email
        role: admin / project_manager / team_member / investor
        permissions: "<resource>:<read|write>" strings
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    role: str
    permissions: List[str] = Field(default_factory=list)


def require_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    """
    Auth context dependency for FastAPI routes.

    Usage:
        @router.get("/protected")
        def protected_route(ctx: AuthContext = Depends(require_auth_context)):
            ...

    Raises:
        HTTPException(401): Missing, invalid or expired token
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = verify_token(credentials.credentials)
    user_id = payload.get("sub")
    email = payload.get("email")
    if not user_id or not email:
        logger.warning("[AUTH] Missing sub or email in token payload")
        raise HTTPException(status_code=401, detail="Invalid token payload")

    # Unknown roles degrade to least privilege
    role = payload.get("role") or DEFAULT_ROLE
    if role not in ALL_ROLES:
        role = DEFAULT_ROLE

    ctx = AuthContext(
        user_id=str(user_id),
        email=email,
        role=role,
        permissions=[p for p in payload.get("permissions") or [] if isinstance(p, str)],
    )

    if IS_DEV:
        logger.debug("[AUTH] Authenticated: user_id=%s role=%s permissions=%d",
                     ctx.user_id, ctx.role, len(ctx.permissions))
    return ctx
