"""
backend/rbac.py

Role-Based Access Control (RBAC) tables for the project platform.

Two layers, both keyed by role:
- ROLE_PERMISSION_FLAGS: coarse abilities (create/read/update/delete/export,
  manage users, view financials, approve expenses)
- COLLECTION_RULES: which roles may read and write each collection

A delete needs the collection's write rule AND the role's can_delete flag.

Pure Python logic - no FastAPI imports, no storage access.
"""

from typing import Dict, List, Literal, Set

Action = Literal["read", "write", "delete"]


# ============================================================================
# Role Definitions
# ============================================================================

class Role:
    """Role constants for RBAC."""
    ADMIN = "admin"
    PROJECT_MANAGER = "project_manager"
    TEAM_MEMBER = "team_member"
    INVESTOR = "investor"


ALL_ROLES: Set[str] = {Role.ADMIN, Role.PROJECT_MANAGER, Role.TEAM_MEMBER, Role.INVESTOR}

# Least-privileged role, used for identities without a stored profile
DEFAULT_ROLE = Role.TEAM_MEMBER
DEFAULT_PERMISSIONS: List[str] = ["tasks:read"]


# ============================================================================
# Role to Ability Flags
# ============================================================================

ROLE_PERMISSION_FLAGS: Dict[str, Dict[str, bool]] = {
    "admin": {
        "can_create": True,
        "can_read": True,
        "can_update": True,
        "can_delete": True,
        "can_export": True,
        "can_manage_users": True,
        "can_view_financials": True,
        "can_approve_expenses": True,
    },
    "project_manager": {
        "can_create": True,
        "can_read": True,
        "can_update": True,
        "can_delete": False,
        "can_export": True,
        "can_manage_users": False,
        "can_view_financials": True,
        "can_approve_expenses": True,
    },
    "team_member": {
        "can_create": True,
        "can_read": True,
        "can_update": True,
        "can_delete": False,
        "can_export": False,
        "can_manage_users": False,
        "can_view_financials": False,
        "can_approve_expenses": False,
    },
    "investor": {
        # Read-only view of projects and financials
        "can_create": False,
        "can_read": True,
        "can_update": False,
        "can_delete": False,
        "can_export": True,
        "can_manage_users": False,
        "can_view_financials": True,
        "can_approve_expenses": False,
    },
}


# ============================================================================
# Collection Access Rules
# ============================================================================

COLLECTION_RULES: Dict[str, Dict[str, Set[str]]] = {
    "tasks": {
        "read": set(ALL_ROLES),
        "write": {Role.ADMIN, Role.PROJECT_MANAGER, Role.TEAM_MEMBER},
    },
    "finances": {
        "read": {Role.ADMIN, Role.PROJECT_MANAGER, Role.INVESTOR},
        "write": {Role.ADMIN, Role.PROJECT_MANAGER},
    },
    "documents": {
        "read": set(ALL_ROLES),
        "write": {Role.ADMIN, Role.PROJECT_MANAGER},
    },
    "projects": {
        "read": set(ALL_ROLES),
        "write": {Role.ADMIN, Role.PROJECT_MANAGER},
    },
    "leads": {
        "read": set(ALL_ROLES),
        "write": {Role.ADMIN, Role.PROJECT_MANAGER, Role.TEAM_MEMBER},
    },
    "meetings": {
        "read": set(ALL_ROLES),
        "write": {Role.ADMIN, Role.PROJECT_MANAGER, Role.TEAM_MEMBER},
    },
    "users": {
        "read": {Role.ADMIN},
        "write": {Role.ADMIN},
    },
}


def permission_flags(role: str) -> Dict[str, bool]:
    """
    Ability flags for a role.

    Unknown roles get every flag set to False.
    """
    role_lower = role.lower() if role else ""
    flags = ROLE_PERMISSION_FLAGS.get(role_lower)
    if flags is None:
        return {name: False for name in ROLE_PERMISSION_FLAGS[Role.ADMIN]}
    return dict(flags)


def can_access_collection(role: str, collection: str, action: Action) -> bool:
    """
    Check whether a role may perform an action on a collection.

    Args:
        role: User role (e.g. "admin", "investor")
        collection: Collection name (e.g. "tasks")
        action: "read", "write" or "delete"

    Returns:
        True if allowed. Unknown collections and roles are denied.
    """
    rules = COLLECTION_RULES.get(collection)
    if rules is None:
        return False

    role_lower = role.lower() if role else ""
    if action == "read":
        return role_lower in rules["read"]
    if action == "write":
        return role_lower in rules["write"]
    if action == "delete":
        return role_lower in rules["write"] and permission_flags(role_lower)["can_delete"]
    return False


def has_permission(permissions: List[str], permission: str) -> bool:
    """True when the permission string is in the user's permission list."""
    return permission in set(permissions or [])
