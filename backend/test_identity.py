"""
backend/test_identity.py

Tests for the identity gate (SessionManager) and the remote identity client.

Tests:
1. Demo mode: sign-in with the demo accounts, rejection, mirroring, restore
2. Session listeners: immediate call, change notifications, unsubscribe
3. Remote mode: provider identities mapped to stored profiles
4. Provider probe failures and timeouts fall back to demo mode
5. RemoteIdentityProvider request / error mapping
6. Sign-out scoped to the calling user
7. Demo account provisioning in remote mode

Run:
    pytest backend/test_identity.py -v
"""

import threading
from unittest.mock import MagicMock

import pytest
import requests

from backend.data_service import DataService
from backend.errors import AccountExistsError, AuthenticationError, IdentityProviderError
from backend.identity import (
    DEMO_USERS,
    SESSION_STORAGE_KEY,
    RemoteIdentity,
    RemoteIdentityProvider,
    SessionManager,
)
from backend.local_storage import LocalStorage
from backend.services import UserService
from domains.project.models.user import User, UserFields, UserRole


class FakeProvider:
    """In-memory identity provider with one known account."""

    def __init__(self, accounts=None, probe_error=None, probe_delay=None):
        self.accounts = accounts or {"ann@x.com": ("secret", "uid-ann", "Ann")}
        self.probe_error = probe_error
        self.probe_delay = probe_delay
        self.release = threading.Event()
        self._identity = None
        self._listeners = []
        self.sign_out_error = None

    @property
    def current_identity(self):
        return self._identity

    def _set(self, identity):
        self._identity = identity
        for listener in list(self._listeners):
            listener(identity)

    def probe(self):
        if self.probe_delay:
            self.release.wait(self.probe_delay)
        if self.probe_error:
            raise self.probe_error
        return self._identity

    def sign_in(self, email, password):
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthenticationError()
        identity = RemoteIdentity(uid=account[1], email=email, display_name=account[2])
        self._set(identity)
        return identity

    def create_account(self, email, password, display_name=None):
        if email in self.accounts:
            raise AccountExistsError(email)
        uid = f"uid-{email.split('@')[0]}"
        self.accounts[email] = (password, uid, display_name)
        return RemoteIdentity(uid=uid, email=email, display_name=display_name)

    def sign_out(self):
        if self.sign_out_error:
            raise self.sign_out_error
        self._set(None)

    def on_identity_changed(self, callback):
        self._listeners.append(callback)
        callback(self._identity)
        return lambda: self._listeners.remove(callback)


@pytest.fixture
def local():
    return LocalStorage("sqlite://")


@pytest.fixture
def users(local):
    return UserService(DataService(local))


@pytest.fixture
def demo_gate(local, users):
    gate = SessionManager(local, users)
    gate.initialize()
    return gate


class TestDemoSignIn:
    def test_admin_demo_login(self, demo_gate):
        user = demo_gate.sign_in("admin@college.edu", "admin123")
        assert user.role == UserRole.admin
        assert "users:read" in user.permissions
        assert demo_gate.current_user == user
        assert demo_gate.mode == "demo"

    @pytest.mark.parametrize("account", DEMO_USERS, ids=lambda a: a["email"])
    def test_every_demo_account_signs_in(self, demo_gate, account):
        user = demo_gate.sign_in(account["email"], account["password"])
        assert user.id == account["uid"]
        assert user.role == account["role"]
        assert user.permissions == account["permissions"]

    def test_email_is_normalized(self, demo_gate):
        assert demo_gate.sign_in("  Manager@College.EDU ", "manager123").role == UserRole.project_manager

    def test_wrong_password_rejected(self, demo_gate):
        with pytest.raises(AuthenticationError, match="Invalid credentials"):
            demo_gate.sign_in("admin@college.edu", "wrong")
        assert demo_gate.current_user is None

    def test_unknown_email_rejected(self, demo_gate):
        with pytest.raises(AuthenticationError):
            demo_gate.sign_in("nobody@college.edu", "admin123")

    def test_password_is_case_sensitive(self, demo_gate):
        with pytest.raises(AuthenticationError):
            demo_gate.sign_in("admin@college.edu", "ADMIN123")

    def test_sign_in_initializes_lazily(self, local, users):
        gate = SessionManager(local, users)
        assert gate.sign_in("team@college.edu", "team123").role == UserRole.team_member

    def test_has_permission(self, demo_gate):
        assert demo_gate.has_permission("tasks:read") is False
        demo_gate.sign_in("investor@college.edu", "investor123")
        assert demo_gate.has_permission("finances:read") is True
        assert demo_gate.has_permission("tasks:write") is False


class TestSessionMirror:
    def test_sign_in_mirrors_session(self, demo_gate, local):
        demo_gate.sign_in("admin@college.edu", "admin123")
        stored = User.model_validate_json(local.get_item(SESSION_STORAGE_KEY))
        assert stored.email == "admin@college.edu"

    def test_sign_out_clears_mirror(self, demo_gate, local):
        demo_gate.sign_in("admin@college.edu", "admin123")
        demo_gate.sign_out()
        assert demo_gate.current_user is None
        assert local.get_item(SESSION_STORAGE_KEY) is None

    def test_session_restored_after_restart(self, demo_gate, local, users):
        demo_gate.sign_in("manager@college.edu", "manager123")
        restarted = SessionManager(local, users)
        restarted.initialize()
        assert restarted.current_user is not None
        assert restarted.current_user.email == "manager@college.edu"

    def test_corrupt_mirror_is_ignored(self, local, users):
        local.set_item(SESSION_STORAGE_KEY, "{broken")
        gate = SessionManager(local, users)
        gate.initialize()
        assert gate.current_user is None

    def test_initialize_is_idempotent(self, demo_gate, local):
        demo_gate.sign_in("admin@college.edu", "admin123")
        demo_gate.initialize()
        assert demo_gate.current_user.email == "admin@college.edu"


class TestSessionListeners:
    def test_called_immediately_with_current_session(self, demo_gate):
        seen = []
        demo_gate.on_session_changed(seen.append)
        assert seen == [None]

    def test_notified_on_sign_in_and_out(self, demo_gate):
        seen = []
        demo_gate.on_session_changed(seen.append)
        demo_gate.sign_in("admin@college.edu", "admin123")
        demo_gate.sign_out()
        assert [u.email if u else None for u in seen] == [None, "admin@college.edu", None]

    def test_unsubscribe_stops_notifications(self, demo_gate):
        seen = []
        unsubscribe = demo_gate.on_session_changed(seen.append)
        unsubscribe()
        demo_gate.sign_in("admin@college.edu", "admin123")
        assert seen == [None]

    def test_failing_listener_does_not_break_others(self, demo_gate):
        seen = []

        def broken(user):
            if user is not None:
                raise RuntimeError("boom")

        demo_gate.on_session_changed(broken)
        demo_gate.on_session_changed(seen.append)
        demo_gate.sign_in("admin@college.edu", "admin123")
        assert seen[-1].email == "admin@college.edu"


class TestRemoteMode:
    def test_probe_success_enables_remote(self, local, users):
        gate = SessionManager(local, users, provider=FakeProvider())
        gate.initialize()
        assert gate.is_remote is True
        assert gate.mode == "remote"

    def test_first_sign_in_creates_least_privilege_profile(self, local, users):
        gate = SessionManager(local, users, provider=FakeProvider())
        user = gate.sign_in("ann@x.com", "secret")
        assert user.id == "uid-ann"
        assert user.role == UserRole.team_member
        assert user.permissions == ["tasks:read"]
        assert users.get_user("uid-ann").email == "ann@x.com"

    def test_existing_profile_is_used(self, local, users):
        users.create_user(UserFields(email="ann@x.com", role=UserRole.admin, permissions=["users:read"]), uid="uid-ann")
        gate = SessionManager(local, users, provider=FakeProvider())
        user = gate.sign_in("ann@x.com", "secret")
        assert user.role == UserRole.admin
        assert user.permissions == ["users:read"]

    def test_demo_accounts_do_not_work_in_remote_mode(self, local, users):
        gate = SessionManager(local, users, provider=FakeProvider())
        with pytest.raises(AuthenticationError):
            gate.sign_in("admin@college.edu", "admin123")

    def test_provider_outage_on_sign_in_is_authentication_error(self, local, users):
        provider = FakeProvider()
        gate = SessionManager(local, users, provider=provider)
        gate.initialize()
        provider.sign_in = MagicMock(side_effect=IdentityProviderError("down"))
        with pytest.raises(AuthenticationError):
            gate.sign_in("ann@x.com", "secret")

    def test_sign_out_clears_session_even_if_provider_fails(self, local, users):
        provider = FakeProvider()
        gate = SessionManager(local, users, provider=provider)
        gate.sign_in("ann@x.com", "secret")
        provider.sign_out_error = IdentityProviderError("down")
        gate.sign_out()
        assert gate.current_user is None
        assert local.get_item(SESSION_STORAGE_KEY) is None

    def test_sign_out_notifies_once(self, local, users):
        gate = SessionManager(local, users, provider=FakeProvider())
        gate.sign_in("ann@x.com", "secret")
        seen = []
        gate.on_session_changed(seen.append)
        gate.sign_out()
        assert seen[0] is not None
        assert seen[1:] == [None]

    def test_profile_store_failure_gives_basic_profile(self, local, users):
        users.get_user = MagicMock(side_effect=IdentityProviderError("storage down"))
        gate = SessionManager(local, users, provider=FakeProvider())
        user = gate.sign_in("ann@x.com", "secret")
        assert user.id == "uid-ann"
        assert user.role == UserRole.team_member


class TestProbeFallback:
    def test_probe_error_means_demo_mode(self, local, users):
        gate = SessionManager(local, users, provider=FakeProvider(probe_error=IdentityProviderError("down")))
        gate.initialize()
        assert gate.mode == "demo"
        assert gate.sign_in("admin@college.edu", "admin123").role == UserRole.admin

    def test_probe_timeout_means_demo_mode(self, local, users):
        provider = FakeProvider(probe_delay=5)
        gate = SessionManager(local, users, provider=provider, probe_timeout=0.05)
        try:
            gate.initialize()
            assert gate.mode == "demo"
        finally:
            provider.release.set()

    def test_no_provider_means_demo_mode(self, demo_gate):
        assert demo_gate.is_remote is False

    def test_unexpected_probe_exception_means_demo_mode(self, local, users):
        gate = SessionManager(local, users, provider=FakeProvider(probe_error=RuntimeError("client library crashed")))
        gate.initialize()
        assert gate.mode == "demo"
        assert gate.sign_in("team@college.edu", "team123").role == UserRole.team_member

    def test_malformed_probe_payload_means_demo_mode(self, local, users):
        session = MagicMock()
        resp = MagicMock()
        resp.status_code = 200
        resp.json.return_value = {"identity": "x"}
        session.request.return_value = resp
        provider = RemoteIdentityProvider("https://id.example.com", session=session)
        gate = SessionManager(local, users, provider=provider)
        gate.initialize()
        assert gate.mode == "demo"


class TestRemoteIdentityProvider:
    def make_provider(self, status_code=200, payload=None, side_effect=None):
        session = MagicMock()
        if side_effect is not None:
            session.request.side_effect = side_effect
        else:
            resp = MagicMock()
            resp.status_code = status_code
            resp.json.return_value = payload
            session.request.return_value = resp
        return RemoteIdentityProvider("https://id.example.com/", timeout=2, session=session), session

    def test_sign_in_request_and_identity(self):
        provider, session = self.make_provider(
            200, {"localId": "u1", "email": "a@x.com", "displayName": "A", "idToken": "tok"}
        )
        seen = []
        provider.on_identity_changed(seen.append)
        identity = provider.sign_in("a@x.com", "pw")

        method, url = session.request.call_args.args
        assert method == "POST"
        assert url == "https://id.example.com/accounts:signIn"
        assert session.request.call_args.kwargs["json"]["email"] == "a@x.com"
        assert identity.uid == "u1"
        assert identity.display_name == "A"
        assert "idToken" not in identity.metadata
        assert seen == [None, identity]

    def test_rejected_credentials(self):
        provider, _ = self.make_provider(400, {"error": "INVALID_PASSWORD"})
        with pytest.raises(AuthenticationError):
            provider.sign_in("a@x.com", "bad")

    def test_server_error_is_provider_error(self):
        provider, _ = self.make_provider(500, {})
        with pytest.raises(IdentityProviderError):
            provider.sign_in("a@x.com", "pw")

    def test_transport_error_is_provider_error(self):
        provider, _ = self.make_provider(side_effect=requests.exceptions.ConnectionError())
        with pytest.raises(IdentityProviderError):
            provider.probe()

    def test_probe_without_session(self):
        provider, session = self.make_provider(200, {"identity": None})
        assert provider.probe() is None
        assert session.request.call_args.args == ("GET", "https://id.example.com/session")

    def test_sign_out_sends_token(self):
        provider, session = self.make_provider(
            200, {"localId": "u1", "email": "a@x.com", "idToken": "tok"}
        )
        provider.sign_in("a@x.com", "pw")
        provider.sign_out()
        assert session.request.call_args.kwargs["headers"] == {"Authorization": "Bearer tok"}
        assert provider.current_identity is None

    def test_unsubscribe(self):
        provider, _ = self.make_provider(200, {"localId": "u1", "email": "a@x.com"})
        seen = []
        unsubscribe = provider.on_identity_changed(seen.append)
        unsubscribe()
        provider.sign_in("a@x.com", "pw")
        assert seen == [None]

    def test_probe_with_non_object_identity_is_provider_error(self):
        provider, _ = self.make_provider(200, {"identity": "x"})
        with pytest.raises(IdentityProviderError):
            provider.probe()

    def test_create_account_request(self):
        provider, session = self.make_provider(200, {"localId": "u9", "email": "new@x.com"})
        seen = []
        provider.on_identity_changed(seen.append)
        identity = provider.create_account("new@x.com", "pw", "New")

        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "https://id.example.com/accounts:signUp")
        assert session.request.call_args.kwargs["json"]["displayName"] == "New"
        assert identity.uid == "u9"
        # registering does not change who is signed in
        assert seen == [None]
        assert provider.current_identity is None

    def test_create_account_existing_email(self):
        provider, session = self.make_provider(400, {"error": {"message": "EMAIL_EXISTS"}})
        session.request.return_value.text = '{"error": {"message": "EMAIL_EXISTS"}}'
        with pytest.raises(AccountExistsError):
            provider.create_account("a@x.com", "pw")


class TestScopedSignOut:
    def test_other_users_logout_keeps_session(self, demo_gate, local):
        demo_gate.sign_in("admin@college.edu", "admin123")
        demo_gate.sign_out("demo-team")
        assert demo_gate.current_user.email == "admin@college.edu"
        assert local.get_item(SESSION_STORAGE_KEY) is not None

    def test_own_logout_clears_session(self, demo_gate, local):
        demo_gate.sign_in("admin@college.edu", "admin123")
        demo_gate.sign_out("demo-admin")
        assert demo_gate.current_user is None
        assert local.get_item(SESSION_STORAGE_KEY) is None

    def test_logout_without_session(self, demo_gate):
        demo_gate.sign_out("demo-admin")
        assert demo_gate.current_user is None


class TestCreateDemoUsers:
    def test_noop_in_demo_mode(self, demo_gate, users):
        assert demo_gate.create_demo_users() == []
        assert users.get_all_users() == []

    def test_creates_accounts_and_profiles(self, local, users):
        provider = FakeProvider(accounts={})
        gate = SessionManager(local, users, provider=provider)

        created = gate.create_demo_users()

        assert created == [u["email"] for u in DEMO_USERS]
        admin = users.get_user("uid-admin")
        assert admin.role == UserRole.admin
        assert "users:write" in admin.permissions
        assert admin.display_name == "Administrator"
        assert {u["email"] for u in DEMO_USERS} <= set(provider.accounts)
        # provisioning does not sign anyone in
        assert gate.current_user is None

    def test_existing_accounts_are_skipped(self, local, users):
        provider = FakeProvider(accounts={"admin@college.edu": ("admin123", "uid-old", "Administrator")})
        gate = SessionManager(local, users, provider=provider)

        created = gate.create_demo_users()

        assert "admin@college.edu" not in created
        assert len(created) == len(DEMO_USERS) - 1
        assert users.get_user("uid-old") is None

    def test_provider_failure_skips_only_that_account(self, local, users):
        provider = FakeProvider(accounts={})
        original = provider.create_account

        def flaky(email, password, display_name=None):
            if email == "investor@college.edu":
                raise IdentityProviderError("quota exceeded")
            return original(email, password, display_name)

        provider.create_account = flaky
        gate = SessionManager(local, users, provider=provider)

        created = gate.create_demo_users()

        assert "investor@college.edu" not in created
        assert len(created) == len(DEMO_USERS) - 1
