"""
backend/identity.py

Identity gate: who is the current user, and who wants to know when it changes.

SessionManager is the single source of truth for the current session:
- initialize(): probes the remote identity provider (bounded by a timeout);
  on success follows the provider's identity changes, otherwise switches to
  demo mode and restores a mirrored session from local storage
- sign_in() / sign_out(): change the session on whichever path is active
- create_demo_users(): provisions the demo accounts in the remote provider
- on_session_changed(): subscribe; called immediately with the current session

The session is held in memory and mirrored to one local storage key
(SESSION_STORAGE_KEY) so it survives a restart in demo mode.

Construct one SessionManager per process and inject it where needed.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError

try:
    from backend.audit import log_audit_event
    from backend.errors import AccountExistsError, AuthenticationError, IdentityProviderError, ProjectError
    from backend.local_storage import LocalStorage
    from backend.rbac import DEFAULT_PERMISSIONS, DEFAULT_ROLE, has_permission
    from backend.services import UserService
    from backend.timestamps import utc_now
except ModuleNotFoundError:
    from audit import log_audit_event
    from errors import AccountExistsError, AuthenticationError, IdentityProviderError, ProjectError
    from local_storage import LocalStorage
    from rbac import DEFAULT_PERMISSIONS, DEFAULT_ROLE, has_permission
    from services import UserService
    from timestamps import utc_now

from domains.project.models.user import User, UserFields, UserRole

logger = logging.getLogger("project.auth")

SESSION_STORAGE_KEY = "demo_current_user"

SessionCallback = Callable[[Optional[User]], None]
IdentityCallback = Callable[[Optional["RemoteIdentity"]], None]

_DEMO_CREATED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)

# Demo users for offline mode
DEMO_USERS: List[Dict[str, Any]] = [
    {
        "uid": "demo-admin",
        "email": "admin@college.edu",
        "password": "admin123",
        "display_name": "Administrator",
        "role": UserRole.admin,
        "permissions": [
            "users:read", "users:write",
            "projects:read", "projects:write",
            "tasks:read", "tasks:write",
            "finances:read", "finances:write",
        ],
    },
    {
        "uid": "demo-manager",
        "email": "manager@college.edu",
        "password": "manager123",
        "display_name": "Project Manager",
        "role": UserRole.project_manager,
        "permissions": ["projects:read", "projects:write", "tasks:read", "tasks:write", "finances:read"],
    },
    {
        "uid": "demo-investor",
        "email": "investor@college.edu",
        "password": "investor123",
        "display_name": "Investor",
        "role": UserRole.investor,
        "permissions": ["finances:read", "projects:read"],
    },
    {
        "uid": "demo-team",
        "email": "team@college.edu",
        "password": "team123",
        "display_name": "Team Member",
        "role": UserRole.team_member,
        "permissions": ["tasks:read", "tasks:write", "projects:read"],
    },
]


# ---------------------------------------------------------
# Remote identity provider
# ---------------------------------------------------------
class RemoteIdentity(BaseModel):
    """Identity as issued by the provider, before mapping to a User."""

    uid: str
    email: str
    display_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class IdentityProvider(Protocol):
    """What SessionManager needs from a remote identity provider."""

    @property
    def current_identity(self) -> Optional[RemoteIdentity]: ...

    def probe(self) -> Optional[RemoteIdentity]: ...

    def sign_in(self, email: str, password: str) -> RemoteIdentity: ...

    def create_account(self, email: str, password: str, display_name: Optional[str] = None) -> RemoteIdentity: ...

    def sign_out(self) -> None: ...

    def on_identity_changed(self, callback: IdentityCallback) -> Callable[[], None]: ...


class RemoteIdentityProvider:
    """
    requests-based client for the identity provider's REST endpoints.

    Listeners registered with on_identity_changed() are called immediately
    with the current identity, then after every successful probe, sign-in
    and sign-out.
    """

    def __init__(self, base_url: str, timeout: float = 10, session: Optional[requests.Session] = None) -> None:
        if not base_url:
            raise ValueError("Identity provider base URL cannot be empty")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._identity: Optional[RemoteIdentity] = None
        self._id_token: Optional[str] = None
        self._listeners: List[IdentityCallback] = []

    @property
    def current_identity(self) -> Optional[RemoteIdentity]:
        return self._identity

    def _post_or_get(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            return self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise IdentityProviderError(f"{method} {path} failed: {e.__class__.__name__}") from e

    @staticmethod
    def _parse_identity(payload: Any) -> RemoteIdentity:
        if not isinstance(payload, dict):
            raise IdentityProviderError("Identity payload is not an object")
        uid = payload.get("uid") or payload.get("localId")
        if not uid or not payload.get("email"):
            raise IdentityProviderError("Identity payload missing uid or email")
        metadata = {
            k: v for k, v in payload.items()
            if k not in ("uid", "localId", "email", "displayName", "idToken", "refreshToken")
        }
        return RemoteIdentity(
            uid=str(uid),
            email=payload["email"],
            display_name=payload.get("displayName"),
            metadata=metadata,
        )

    def _set_identity(self, identity: Optional[RemoteIdentity]) -> None:
        self._identity = identity
        for listener in list(self._listeners):
            listener(identity)

    def probe(self) -> Optional[RemoteIdentity]:
        resp = self._post_or_get("GET", "/session")
        if resp.status_code >= 400:
            raise IdentityProviderError(f"GET /session returned {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as e:
            raise IdentityProviderError("Invalid JSON from GET /session") from e
        payload = body.get("identity") if isinstance(body, dict) else None
        identity = self._parse_identity(payload) if payload else None
        self._set_identity(identity)
        return identity

    def sign_in(self, email: str, password: str) -> RemoteIdentity:
        resp = self._post_or_get(
            "POST",
            "/accounts:signIn",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        if resp.status_code in (400, 401, 403, 404):
            raise AuthenticationError()
        if resp.status_code >= 400:
            raise IdentityProviderError(f"POST /accounts:signIn returned {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise IdentityProviderError("Invalid JSON from POST /accounts:signIn") from e
        identity = self._parse_identity(payload)
        self._id_token = payload.get("idToken")
        self._set_identity(identity)
        return identity

    def create_account(self, email: str, password: str, display_name: Optional[str] = None) -> RemoteIdentity:
        """
        Register a new account. The current identity is left unchanged.

        Raises:
            AccountExistsError: the email is already registered
            IdentityProviderError: any other provider failure
        """
        body: Dict[str, Any] = {"email": email, "password": password, "returnSecureToken": False}
        if display_name:
            body["displayName"] = display_name
        resp = self._post_or_get("POST", "/accounts:signUp", json=body)
        if resp.status_code == 400 and "EMAIL_EXISTS" in resp.text:
            raise AccountExistsError(email)
        if resp.status_code >= 400:
            raise IdentityProviderError(f"POST /accounts:signUp returned {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise IdentityProviderError("Invalid JSON from POST /accounts:signUp") from e
        return self._parse_identity(payload)

    def sign_out(self) -> None:
        headers = {"Authorization": f"Bearer {self._id_token}"} if self._id_token else {}
        resp = self._post_or_get("POST", "/accounts:signOut", headers=headers)
        if resp.status_code >= 400:
            raise IdentityProviderError(f"POST /accounts:signOut returned {resp.status_code}")
        self._id_token = None
        self._set_identity(None)

    def on_identity_changed(self, callback: IdentityCallback) -> Callable[[], None]:
        self._listeners.append(callback)
        callback(self._identity)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe


# ---------------------------------------------------------
# Session manager (identity gate)
# ---------------------------------------------------------
class SessionManager:
    """Current-session holder with remote and demo sign-in paths."""

    def __init__(
        self,
        local_storage: LocalStorage,
        users: UserService,
        provider: Optional[IdentityProvider] = None,
        probe_timeout: float = 3.0,
    ) -> None:
        self.local = local_storage
        self.users = users
        self.provider = provider
        self.probe_timeout = probe_timeout
        self._current_user: Optional[User] = None
        self._listeners: List[SessionCallback] = []
        self._remote_enabled = False
        self._initialized = False
        self._lock = threading.RLock()

    @property
    def current_user(self) -> Optional[User]:
        return self._current_user

    @property
    def is_remote(self) -> bool:
        return self._remote_enabled

    @property
    def mode(self) -> str:
        return "remote" if self._remote_enabled else "demo"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _probe_provider(self) -> bool:
        if self.provider is None:
            return False

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="identity-probe")
        try:
            executor.submit(self.provider.probe).result(timeout=self.probe_timeout)
            return True
        except FutureTimeout:
            logger.warning("[AUTH] Identity provider probe timed out after %.1fs, using demo mode", self.probe_timeout)
            return False
        except Exception as e:
            # any probe failure means demo mode, never a startup error
            logger.warning("[AUTH] Identity provider not available, using demo mode: %s", e)
            return False
        finally:
            # a hung probe keeps its worker thread; do not wait for it
            executor.shutdown(wait=False)

    def initialize(self) -> None:
        """Pick remote or demo mode. Never raises for provider problems."""
        if self._initialized:
            return
        self._initialized = True

        if self._probe_provider():
            self._remote_enabled = True
            logger.info("[AUTH] Remote identity provider enabled")
            self.provider.on_identity_changed(self._handle_identity)
            return

        self._remote_enabled = False
        logger.info("[AUTH] Using demo authentication mode")
        self._restore_mirrored_session()

    def _restore_mirrored_session(self) -> None:
        raw = self.local.get_item(SESSION_STORAGE_KEY)
        if not raw:
            return
        try:
            user = User.model_validate_json(raw)
        except ValidationError as e:
            logger.error("[AUTH] Failed to parse stored session: %s", e.error_count())
            return
        self._set_current_user(user)

    # ------------------------------------------------------------------
    # Remote identity mapping
    # ------------------------------------------------------------------
    def _basic_profile(self, identity: RemoteIdentity) -> User:
        now = utc_now()
        return User(
            id=identity.uid,
            email=identity.email,
            display_name=identity.display_name or "User",
            role=UserRole(DEFAULT_ROLE),
            permissions=list(DEFAULT_PERMISSIONS),
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    def _profile_for(self, identity: RemoteIdentity) -> User:
        """Stored profile for an identity, created with least privilege if missing."""
        try:
            existing = self.users.get_user(identity.uid)
            if existing is not None:
                return existing.model_copy(update={
                    "email": identity.email,
                    "display_name": existing.display_name or identity.display_name or "User",
                    "updated_at": utc_now(),
                })
            return self.users.create_user(
                UserFields(
                    email=identity.email,
                    display_name=identity.display_name or "User",
                    role=UserRole(DEFAULT_ROLE),
                    permissions=list(DEFAULT_PERMISSIONS),
                ),
                uid=identity.uid,
            )
        except (ProjectError, SQLAlchemyError, ValidationError) as e:
            logger.error("[AUTH] Failed to load user profile for %s: %s", identity.uid, e)
            return self._basic_profile(identity)

    def _handle_identity(self, identity: Optional[RemoteIdentity]) -> None:
        self._set_current_user(self._profile_for(identity) if identity else None)

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------
    def _set_current_user(self, user: Optional[User]) -> None:
        with self._lock:
            self._current_user = user
            if user is None:
                self.local.remove_item(SESSION_STORAGE_KEY)
            else:
                self.local.set_item(SESSION_STORAGE_KEY, user.model_dump_json())
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(user)
            except Exception:
                logger.exception("[AUTH] Session listener raised")

    def on_session_changed(self, callback: SessionCallback) -> Callable[[], None]:
        """
        Register a session listener.

        The callback runs immediately with the current session (possibly
        None) and again after every change.

        Returns:
            A function that removes the listener
        """
        with self._lock:
            self._listeners.append(callback)
            current = self._current_user
        callback(current)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def has_permission(self, permission: str) -> bool:
        user = self._current_user
        return user is not None and has_permission(user.permissions, permission)

    # ------------------------------------------------------------------
    # Sign in / out
    # ------------------------------------------------------------------
    def _demo_sign_in(self, email: str, password: str) -> User:
        email_norm = email.strip().lower()
        demo = next(
            (u for u in DEMO_USERS if u["email"] == email_norm and u["password"] == password),
            None,
        )
        if demo is None:
            raise AuthenticationError()

        now = utc_now()
        user = User(
            id=demo["uid"],
            email=demo["email"],
            display_name=demo["display_name"],
            role=demo["role"],
            permissions=list(demo["permissions"]),
            is_active=True,
            created_at=_DEMO_CREATED_AT,
            updated_at=now,
            last_login=now,
        )
        self._set_current_user(user)
        return user

    def _remote_sign_in(self, email: str, password: str) -> User:
        try:
            identity = self.provider.sign_in(email.strip(), password)
        except IdentityProviderError as e:
            logger.warning("[AUTH] Remote sign-in failed: %s", e)
            raise AuthenticationError() from e

        # the provider's change notification normally set the session already
        user = self._current_user
        if user is None or user.id != identity.uid:
            user = self._profile_for(identity)
            self._set_current_user(user)
        return user

    def sign_in(self, email: str, password: str) -> User:
        """
        Sign in on the active path.

        Raises:
            AuthenticationError: credentials rejected (or provider failure)
        """
        if not self._initialized:
            self.initialize()

        try:
            if self._remote_enabled:
                user = self._remote_sign_in(email, password)
                log_audit_event("user_login", user.id, {"email": user.email})
            else:
                user = self._demo_sign_in(email, password)
                log_audit_event("demo_login", user.id, {"email": user.email})
        except AuthenticationError:
            logger.info("[AUTH] Sign-in rejected")
            raise
        return user

    def sign_out(self, user_id: Optional[str] = None) -> None:
        """
        End the current session on every path and notify listeners.

        With user_id, only that user's session is ended: when someone else
        holds the session the sign-out is audited and nothing else changes.
        """
        previous = self._current_user
        if user_id is not None and (previous is None or previous.id != user_id):
            log_audit_event("user_logout", user_id)
            return

        if self._remote_enabled and self.provider is not None and self.provider.current_identity is not None:
            try:
                self.provider.sign_out()
            except IdentityProviderError as e:
                logger.warning("[AUTH] Remote sign-out failed, clearing local session anyway: %s", e)

        # skip the second notification when the provider listener already cleared it
        if self._current_user is not None or previous is None:
            self._set_current_user(None)
        else:
            self.local.remove_item(SESSION_STORAGE_KEY)

        log_audit_event("user_logout", previous.id if previous else None)

    def create_demo_users(self) -> List[str]:
        """
        Provision the demo accounts and their profiles in the remote provider.

        Demo mode already has them, so this is a no-op there. Accounts that
        already exist are skipped; other per-account failures are logged and
        the remaining accounts are still attempted.

        Returns:
            Emails of the accounts created by this call
        """
        if not self._initialized:
            self.initialize()
        if not self._remote_enabled:
            logger.info("[AUTH] Demo users already available in demo mode")
            return []

        created: List[str] = []
        for demo in DEMO_USERS:
            try:
                identity = self.provider.create_account(demo["email"], demo["password"], demo["display_name"])
                self.users.create_user(
                    UserFields(
                        email=identity.email,
                        display_name=demo["display_name"],
                        role=demo["role"],
                        permissions=list(demo["permissions"]),
                    ),
                    uid=identity.uid,
                )
            except AccountExistsError:
                logger.info("[AUTH] Demo user already exists: %s", demo["email"])
                continue
            except (ProjectError, SQLAlchemyError, ValidationError) as e:
                logger.error("[AUTH] Failed to create demo user %s: %s", demo["email"], e)
                continue
            logger.info("[AUTH] Created demo user: %s", demo["email"])
            created.append(demo["email"])
        return created

    def demo_users(self) -> List[Dict[str, str]]:
        """Demo credentials for the login page."""
        return [
            {
                "email": u["email"],
                "password": u["password"],
                "role": u["role"].value,
                "display_name": u["display_name"],
            }
            for u in DEMO_USERS
        ]

