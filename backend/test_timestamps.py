"""
Tests for the tagged timestamp codec used by both storage paths.
"""

from datetime import date, datetime, timedelta, timezone

from backend.timestamps import (
    RemoteTimestamp,
    decode_document,
    decode_value,
    encode_document,
    encode_value,
    is_tagged_timestamp,
    normalize_value,
)
from domains.project.models.user import UserRole


class TestRemoteTimestamp:
    def test_from_aware_datetime(self):
        ts = RemoteTimestamp.from_datetime(datetime(2024, 2, 20, 0, 0, 0, 250000, tzinfo=timezone.utc))
        assert ts.seconds == 1708387200
        assert ts.nanos == 250000000

    def test_naive_datetime_is_utc(self):
        naive = RemoteTimestamp.from_datetime(datetime(2024, 2, 20))
        aware = RemoteTimestamp.from_datetime(datetime(2024, 2, 20, tzinfo=timezone.utc))
        assert naive == aware

    def test_other_timezones_are_converted(self):
        plus_two = timezone(timedelta(hours=2))
        ts = RemoteTimestamp.from_datetime(datetime(2024, 2, 20, 2, 0, tzinfo=plus_two))
        assert ts.seconds == 1708387200

    def test_to_datetime_is_utc_aware(self):
        value = RemoteTimestamp(seconds=1708387200, nanos=1500).to_datetime()
        assert value == datetime(2024, 2, 20, 0, 0, 0, 1, tzinfo=timezone.utc)
        assert value.tzinfo is not None

    def test_wire_form(self):
        assert RemoteTimestamp(seconds=5, nanos=6).to_wire() == {"__type__": "timestamp", "seconds": 5, "nanos": 6}


class TestEncodeDecode:
    def test_datetime_round_trip(self):
        value = datetime(2023, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)
        encoded = encode_value(value)
        assert is_tagged_timestamp(encoded)
        assert decode_value(encoded) == value

    def test_date_becomes_midnight_utc(self):
        assert decode_value(encode_value(date(2024, 5, 1))) == datetime(2024, 5, 1, tzinfo=timezone.utc)

    def test_enum_becomes_value(self):
        assert encode_value(UserRole.admin) == "admin"

    def test_nested_structures(self):
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        doc = {"meta": {"seen": [when, "x"]}, "n": 3, "tags": ("a", "b")}
        encoded = encode_document(doc)
        assert encoded["tags"] == ["a", "b"]
        assert is_tagged_timestamp(encoded["meta"]["seen"][0])
        decoded = decode_document(encoded)
        assert decoded["meta"]["seen"] == [when, "x"]
        assert decoded["n"] == 3

    def test_untagged_seconds_dict_is_left_alone(self):
        # only the explicit tag marks a timestamp
        value = {"seconds": 10, "nanos": 0}
        assert decode_value(value) == value

    def test_decode_none_document(self):
        assert decode_document(None) is None

    def test_normalize_value(self):
        assert normalize_value(datetime(2024, 1, 1)) == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert normalize_value("plain") == "plain"
