"""
backend/data_service.py

Generic persistence adapter with transparent remote -> local fallback.

Every operation first tries the remote document store (when one is
configured). Any RemoteStoreError is logged, recorded as a FallbackEvent and
the same operation runs against LocalStorage, where each collection is one
key holding a JSON array of records. Remote failures never reach callers.

Guarantees:
- read_all and query return newest first (created_at descending) on both paths
- read_one returns None when neither store has the record; a remote miss
  still scans local storage, so records written during an outage stay readable
- fallback writes return the record as later reads will see it (codec applied)
- update raises RecordNotFoundError when the fallback scan finds nothing
- delete is idempotent
- fallback read-modify-write cycles hold a per-collection lock, so concurrent
  writers to the same collection cannot drop each other's changes

There is no circuit breaker: each call re-attempts the remote path.
"""

from __future__ import annotations

import json
import logging
import operator
import secrets
import string
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Literal, Optional, Protocol, Sequence

from pydantic import BaseModel

try:
    from backend.errors import RecordNotFoundError, RemoteStoreError
    from backend.local_storage import LocalStorage
    from backend.timestamps import decode_document, encode_document, normalize_value, utc_now
except ModuleNotFoundError:
    from errors import RecordNotFoundError, RemoteStoreError
    from local_storage import LocalStorage
    from timestamps import decode_document, encode_document, normalize_value, utc_now

logger = logging.getLogger("project.data")

# Local storage keys for the fallback store
STORAGE_KEYS: Dict[str, str] = {
    "tasks": "project_tasks",
    "users": "project_users",
    "finances": "project_finances",
    "documents": "project_documents",
    "projects": "project_projects",
    "leads": "project_leads",
    "meetings": "project_meetings",
}

CREATED_AT = "created_at"
UPDATED_AT = "updated_at"

Operator = Literal["==", "!=", ">", ">=", "<", "<=", "array-contains"]

_BASE36 = string.digits + string.ascii_lowercase


class Condition(BaseModel):
    """One (field, operator, value) filter. All conditions of a query are ANDed."""

    field: str
    operator: Operator
    value: Any = None

    def to_wire(self) -> Dict[str, Any]:
        return {"field": self.field, "op": self.operator, "value": self.value}

    def matches(self, record: Dict[str, Any]) -> bool:
        actual = record.get(self.field)
        expected = normalize_value(self.value)
        if self.operator == "array-contains":
            return isinstance(actual, list) and expected in actual
        try:
            return bool(_COMPARATORS[self.operator](actual, expected))
        except TypeError:
            # e.g. None > 5 or str < datetime: not a match
            return False


_COMPARATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


def where(field: str, op: Operator, value: Any) -> Condition:
    """Shorthand for Condition(field=..., operator=..., value=...)."""
    return Condition(field=field, operator=op, value=value)


class RemoteStore(Protocol):
    """What DataService needs from a remote document store."""

    def add(self, collection: str, data: Dict[str, Any], server_timestamps: Sequence[str] = ()) -> Dict[str, Any]: ...

    def set(self, collection: str, record_id: str, data: Dict[str, Any], server_timestamps: Sequence[str] = ()) -> Dict[str, Any]: ...

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]: ...

    def list(self, collection: str, order_by: str = ..., direction: str = ...) -> List[Dict[str, Any]]: ...

    def update(self, collection: str, record_id: str, data: Dict[str, Any], server_timestamps: Sequence[str] = ()) -> Dict[str, Any]: ...

    def delete(self, collection: str, record_id: str) -> None: ...

    def query(self, collection: str, where: Sequence[Dict[str, Any]], order_by: str = ..., direction: str = ...) -> List[Dict[str, Any]]: ...


@dataclass(frozen=True)
class FallbackEvent:
    """A single remote failure that was answered from local storage."""

    collection: str
    operation: str
    error: str
    occurred_at: datetime = field(default_factory=utc_now)


def generate_id() -> str:
    """Base36 millisecond timestamp followed by a random base36 suffix."""
    millis = int(time.time() * 1000)
    head = ""
    while millis:
        millis, rem = divmod(millis, 36)
        head = _BASE36[rem] + head
    tail = "".join(secrets.choice(_BASE36) for _ in range(11))
    return head + tail


def storage_key(collection: str) -> str:
    return STORAGE_KEYS.get(collection.lower(), f"project_{collection}")


def _newest_first(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # records without created_at sort last
    dated = [r for r in records if isinstance(r.get(CREATED_AT), datetime)]
    undated = [r for r in records if not isinstance(r.get(CREATED_AT), datetime)]
    dated.sort(key=lambda r: r[CREATED_AT], reverse=True)
    return dated + undated


class DataService:
    """Collection-scoped CRUD and query over a remote store with local fallback."""

    def __init__(
        self,
        local_storage: LocalStorage,
        remote: Optional[RemoteStore] = None,
        max_fallback_events: int = 100,
    ) -> None:
        self.local = local_storage
        self.remote = remote
        self.fallback_events: Deque[FallbackEvent] = deque(maxlen=max_fallback_events)
        self.fallback_count = 0
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Backend health
    # ------------------------------------------------------------------
    @property
    def remote_available(self) -> bool:
        return self.remote is not None

    @property
    def last_fallback(self) -> Optional[FallbackEvent]:
        return self.fallback_events[-1] if self.fallback_events else None

    def backend_status(self) -> Dict[str, Any]:
        last = self.last_fallback
        return {
            "remote_configured": self.remote_available,
            "fallback_count": self.fallback_count,
            "last_fallback": None if last is None else {
                "collection": last.collection,
                "operation": last.operation,
                "error": last.error,
                "occurred_at": last.occurred_at.isoformat(),
            },
        }

    def _record_fallback(self, collection: str, operation: str, error: Exception) -> None:
        event = FallbackEvent(collection=collection, operation=operation, error=str(error))
        self.fallback_events.append(event)
        self.fallback_count += 1
        logger.warning("[DATA] Remote %s failed for %s, using local storage: %s", operation, collection, error)

    # ------------------------------------------------------------------
    # Local storage helpers
    # ------------------------------------------------------------------
    def _collection_lock(self, collection: str) -> threading.Lock:
        key = storage_key(collection)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _load(self, collection: str) -> List[Dict[str, Any]]:
        raw = self.local.get_item(storage_key(collection))
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except ValueError:
            logger.warning("[DATA] Corrupt local data for %s, treating as empty", collection)
            return []
        if not isinstance(items, list):
            logger.warning("[DATA] Local data for %s is not a list, treating as empty", collection)
            return []
        return [decode_document(item) for item in items if isinstance(item, dict)]

    def _save(self, collection: str, items: List[Dict[str, Any]]) -> None:
        self.local.set_item(storage_key(collection), json.dumps([encode_document(i) for i in items]))

    @staticmethod
    def _as_stored(record: Dict[str, Any]) -> Dict[str, Any]:
        return decode_document(encode_document(record))

    @staticmethod
    def _strip_managed(data: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in data.items() if k not in ("id", CREATED_AT, UPDATED_AT)}

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def create(self, collection: str, data: Dict[str, Any], record_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Store a new record and return it with its id and timestamps.

        Args:
            collection: Collection name (e.g. "tasks")
            data: Record fields (any id/created_at/updated_at are ignored)
            record_id: Explicit id (e.g. an identity uid); generated when omitted

        Returns:
            The stored record including "id", "created_at" and "updated_at"
        """
        payload = self._strip_managed(data)

        if self.remote is not None:
            try:
                if record_id is None:
                    return self.remote.add(collection, payload, server_timestamps=(CREATED_AT, UPDATED_AT))
                return self.remote.set(collection, record_id, payload, server_timestamps=(CREATED_AT, UPDATED_AT))
            except RemoteStoreError as e:
                self._record_fallback(collection, "create", e)

        now = utc_now()
        record = {**payload, "id": record_id or generate_id(), CREATED_AT: now, UPDATED_AT: now}
        with self._collection_lock(collection):
            items = [i for i in self._load(collection) if i.get("id") != record["id"]]
            items.append(record)
            self._save(collection, items)
        logger.debug("[DATA] Created %s/%s locally", collection, record["id"])
        return self._as_stored(record)

    def read_all(self, collection: str) -> List[Dict[str, Any]]:
        """All records of a collection, newest first."""
        if self.remote is not None:
            try:
                return self.remote.list(collection, order_by=CREATED_AT, direction="desc")
            except RemoteStoreError as e:
                self._record_fallback(collection, "read_all", e)

        return _newest_first(self._load(collection))

    def read_one(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """
        The record with the given id, or None.

        A remote miss is not final: local storage is scanned too, since
        records created during an outage only exist there.
        """
        if self.remote is not None:
            try:
                record = self.remote.get(collection, record_id)
                if record is not None:
                    return record
            except RemoteStoreError as e:
                self._record_fallback(collection, "read_one", e)

        return next((i for i in self._load(collection) if i.get("id") == record_id), None)

    def update(
        self,
        collection: str,
        record_id: str,
        changes: Dict[str, Any],
        validate: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ) -> Dict[str, Any]:
        """
        Merge changes into an existing record and re-stamp updated_at.

        Args:
            validate: Called with the merged record before the fallback path
                saves it; whatever it raises aborts the write

        Raises:
            RecordNotFoundError: no record with record_id in local storage
                (reached after the remote path failed or is not configured)
        """
        payload = self._strip_managed(changes)

        if self.remote is not None:
            try:
                return self.remote.update(collection, record_id, payload, server_timestamps=(UPDATED_AT,))
            except RemoteStoreError as e:
                self._record_fallback(collection, "update", e)

        with self._collection_lock(collection):
            items = self._load(collection)
            index = next((n for n, i in enumerate(items) if i.get("id") == record_id), None)
            if index is None:
                raise RecordNotFoundError(collection, record_id)

            current = items[index]
            now = utc_now()
            previous = current.get(UPDATED_AT)
            if isinstance(previous, datetime) and now <= previous:
                now = previous + timedelta(microseconds=1)
            merged = self._as_stored({**current, **payload, "id": record_id, UPDATED_AT: now})
            if validate is not None:
                validate(merged)
            items[index] = merged
            self._save(collection, items)
        logger.debug("[DATA] Updated %s/%s locally", collection, record_id)
        return merged

    def delete(self, collection: str, record_id: str) -> None:
        """
        Remove a record. Deleting a missing id is not an error.

        Any local copy is removed as well, even after a remote delete
        succeeded, since read_one falls through to local storage.
        """
        if self.remote is not None:
            try:
                self.remote.delete(collection, record_id)
            except RemoteStoreError as e:
                self._record_fallback(collection, "delete", e)

        with self._collection_lock(collection):
            items = self._load(collection)
            remaining = [i for i in items if i.get("id") != record_id]
            if len(remaining) != len(items):
                self._save(collection, remaining)

    def query(self, collection: str, conditions: Sequence[Condition]) -> List[Dict[str, Any]]:
        """
        Records matching every condition, newest first.

        The fallback path scans read_all() results in memory with the same
        operator semantics the remote store applies.
        """
        if self.remote is not None:
            try:
                return self.remote.query(
                    collection,
                    [c.to_wire() for c in conditions],
                    order_by=CREATED_AT,
                    direction="desc",
                )
            except RemoteStoreError as e:
                self._record_fallback(collection, "query", e)

        # same semantics as the remote filter, applied to the local array
        records = _newest_first(self._load(collection))
        return [r for r in records if all(c.matches(r) for c in conditions)]
