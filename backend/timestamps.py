"""
backend/timestamps.py

Timestamp codec used at every storage boundary.

Dates never travel as bare strings or as "something with a seconds field".
They are written as an explicit tagged value:

    {"__type__": "timestamp", "seconds": 1708387200, "nanos": 0}

and decoded back into UTC-aware datetime objects by looking at the tag.
Both the remote document store and the local fallback store use the same
encoding, so callers get native datetimes from either backend.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

TIMESTAMP_TAG = "timestamp"
TYPE_KEY = "__type__"


class RemoteTimestamp(BaseModel):
    """Wire form of a timestamp (seconds + nanos since the epoch, UTC)."""

    seconds: int
    nanos: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> "RemoteTimestamp":
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
        seconds = delta.days * 86400 + delta.seconds
        return cls(seconds=seconds, nanos=delta.microseconds * 1000)

    def to_datetime(self) -> datetime:
        base = datetime.fromtimestamp(self.seconds, tz=timezone.utc)
        return base.replace(microsecond=self.nanos // 1000)

    def to_wire(self) -> Dict[str, Any]:
        return {TYPE_KEY: TIMESTAMP_TAG, "seconds": self.seconds, "nanos": self.nanos}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_tagged_timestamp(value: Any) -> bool:
    return isinstance(value, dict) and value.get(TYPE_KEY) == TIMESTAMP_TAG


def encode_value(value: Any) -> Any:
    """Convert a Python value into its storable form (recursively)."""
    if isinstance(value, datetime):
        return RemoteTimestamp.from_datetime(value).to_wire()
    if isinstance(value, date):
        midnight = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        return RemoteTimestamp.from_datetime(midnight).to_wire()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return encode_value(value.model_dump())
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Turn tagged timestamps back into datetimes (recursively)."""
    if is_tagged_timestamp(value):
        return RemoteTimestamp(seconds=value["seconds"], nanos=value.get("nanos", 0)).to_datetime()
    if isinstance(value, dict):
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


def encode_document(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: encode_value(v) for k, v in data.items()}


def decode_document(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if data is None:
        return None
    return {k: decode_value(v) for k, v in data.items()}


def normalize_value(value: Any) -> Any:
    """Round-trip a value through the codec (naive datetimes become UTC-aware)."""
    return decode_value(encode_value(value))
