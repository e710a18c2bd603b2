from datetime import datetime, timedelta, timezone

import pytest

from index_layer.schemas import IndexEntry, format_since, parse_timestamp


def test_parse_timestamp_handles_zulu_and_nanoseconds():
    ts = parse_timestamp("2019-04-10T19:08:52.997264123Z")
    assert ts == datetime(2019, 4, 10, 19, 8, 52, 997264, tzinfo=timezone.utc)


def test_parse_timestamp_normalizes_offsets_to_utc():
    ts = parse_timestamp("2020-01-01T02:00:00+02:00")
    assert ts == datetime(2020, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
    assert ts.utcoffset() == timedelta(0)


def test_parse_timestamp_pads_short_fractions():
    assert parse_timestamp("2020-01-01T00:00:00.5Z").microsecond == 500000


@pytest.mark.parametrize("value", ["", "yesterday", "2020-01-01T00:00:00", 1577836800])
def test_parse_timestamp_rejects_invalid_values(value):
    with pytest.raises(ValueError):
        parse_timestamp(value)


@pytest.mark.parametrize(
    "value",
    [
        "20240301T100000Z",
        "2024-03-01 10:00:00Z",
        "2024-03-01t10:00:00Z",
        "2024-03-01T10:00:00z",
        "2024-03-01T10:00Z",
        "2024-03-01T10:00:00+0200",
        "2024-03-01",
    ],
)
def test_parse_timestamp_rejects_iso_forms_outside_rfc3339(value):
    with pytest.raises(ValueError, match="RFC 3339"):
        parse_timestamp(value)


def test_format_since_drops_fraction_and_uses_z():
    ts = datetime(2020, 1, 1, 10, 30, 15, 123456, tzinfo=timezone.utc)
    assert format_since(ts) == "2020-01-01T10:30:15Z"
    assert format_since(ts.replace(tzinfo=None)) == "2020-01-01T10:30:15Z"


def test_entry_equality_covers_all_fields():
    ts = datetime(2020, 1, 1, tzinfo=timezone.utc)
    a = IndexEntry("example.com/foo", "v1.0.0", ts)
    assert a == IndexEntry("example.com/foo", "v1.0.0", ts)
    assert a != IndexEntry("example.com/foo", "v1.0.1", ts)
    assert a != IndexEntry("example.com/foo", "v1.0.0", ts + timedelta(microseconds=1))
    assert len({a, IndexEntry("example.com/foo", "v1.0.0", ts)}) == 1


def test_entry_is_immutable():
    entry = IndexEntry("example.com/foo", "v1.0.0", datetime(2020, 1, 1, tzinfo=timezone.utc))
    with pytest.raises(AttributeError):
        entry.version = "v2.0.0"


def test_from_record_and_to_record():
    record = {"Path": "golang.org/x/text", "Version": "v0.3.0", "Timestamp": "2019-04-10T19:08:52.997264Z"}
    entry = IndexEntry.from_record(record)

    assert entry.path == "golang.org/x/text"
    assert entry.version == "v0.3.0"
    assert entry.to_record() == record


@pytest.mark.parametrize(
    "record",
    [
        {"Path": "a", "Version": "v1.0.0"},
        {"Path": "a", "Timestamp": "2020-01-01T00:00:00Z"},
        {"Path": 1, "Version": "v1.0.0", "Timestamp": "2020-01-01T00:00:00Z"},
        ["a", "v1.0.0"],
    ],
)
def test_from_record_rejects_malformed_records(record):
    with pytest.raises(ValueError):
        IndexEntry.from_record(record)
