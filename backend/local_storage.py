# backend/local_storage.py
# Synchronous key-value storage used as the fallback store and session mirror

from __future__ import annotations

import logging
import threading
from typing import List, Optional
from urllib.parse import urlparse

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, delete, pool, select
from sqlalchemy.engine import Engine

logger = logging.getLogger("project.storage")

metadata = MetaData()

local_storage_table = Table(
    "local_storage",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
)


def create_storage_engine(url: str) -> Engine:
    """
    Build a SQLAlchemy engine for the key-value table.

    SQLite in-memory URLs ("sqlite://", "sqlite:///:memory:") share a single
    connection so every caller sees the same data. File-backed SQLite and
    server databases use the default pool.
    """
    parsed = urlparse(url)
    if not parsed.scheme:
        raise ValueError(f"Invalid LOCAL_STORAGE_URL: {url[:20]}...")

    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=pool.StaticPool,
        )

    if parsed.scheme.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(url, pool_pre_ping=True)


class LocalStorage:
    """
    String-keyed get/set/remove store, the server-side stand-in for the
    browser's localStorage.

    Values are opaque strings (callers store JSON). Each call runs in its own
    transaction; there is no multi-key atomicity.
    """

    def __init__(self, url: str = "sqlite://", engine: Optional[Engine] = None) -> None:
        self.engine = engine or create_storage_engine(url)
        metadata.create_all(self.engine)
        # in-memory SQLite shares one connection between threads
        self._lock = threading.Lock()
        logger.debug("[STORAGE] Using %s", self.engine.url.render_as_string(hide_password=True))

    def get_item(self, key: str) -> Optional[str]:
        with self._lock, self.engine.connect() as conn:
            row = conn.execute(
                select(local_storage_table.c.value).where(local_storage_table.c.key == key)
            ).first()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with self._lock, self.engine.begin() as conn:
            conn.execute(delete(local_storage_table).where(local_storage_table.c.key == key))
            conn.execute(local_storage_table.insert().values(key=key, value=value))

    def remove_item(self, key: str) -> None:
        with self._lock, self.engine.begin() as conn:
            conn.execute(delete(local_storage_table).where(local_storage_table.c.key == key))

    def keys(self) -> List[str]:
        with self._lock, self.engine.connect() as conn:
            rows = conn.execute(select(local_storage_table.c.key).order_by(local_storage_table.c.key))
            return [r[0] for r in rows]

    def clear(self) -> None:
        with self._lock, self.engine.begin() as conn:
            conn.execute(delete(local_storage_table))
