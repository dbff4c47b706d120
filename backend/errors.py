"""
backend/errors.py

Error taxonomy for the persistence and identity layers.

Only two kinds ever reach callers:
- AuthenticationError: wrong credentials on either identity path
- RecordNotFoundError: fallback update found no record with the given id

RemoteStoreError is internal. DataService catches it and runs the local
fallback, so remote outages are never surfaced as exceptions.
"""

from __future__ import annotations


class ProjectError(Exception):
    """Base class for all project backend errors."""


class RecordNotFoundError(ProjectError, LookupError):
    """Raised when an update targets a record that does not exist."""

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"Record with id {record_id} not found in {collection}")


class RemoteStoreError(ProjectError):
    """Remote document store call failed (transport, status or payload)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(ProjectError):
    """Sign-in failed. The message is intentionally generic."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class IdentityProviderError(ProjectError):
    """Remote identity provider could not be reached or answered badly."""


class AccountExistsError(IdentityProviderError):
    """The provider already has an account for this email."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Account already exists: {email}")
