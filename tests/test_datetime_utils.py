from datetime import datetime, timedelta, timezone

from datetime_utils import (
    UTC,
    days_ago,
    ensure_utc,
    parse_rfc3339,
    same_day,
    to_rfc3339_utc,
)


def test_parse_rfc3339_google_millis():
    assert parse_rfc3339("2024-05-01T10:00:00.123Z") == datetime(2024, 5, 1, 10, 0, 0, 123000, tzinfo=UTC)


def test_parse_rfc3339_offset_is_converted():
    assert parse_rfc3339("2024-05-01T12:00:00+02:00") == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)


def test_parse_rfc3339_bad_input():
    assert parse_rfc3339(None) is None
    assert parse_rfc3339("  ") is None
    assert parse_rfc3339("yesterday") is None


def test_ensure_utc_naive_and_aware():
    naive = datetime(2024, 5, 1, 10, 0)
    assert ensure_utc(naive).tzinfo is UTC
    plus_three = datetime(2024, 5, 1, 13, 0, tzinfo=timezone(timedelta(hours=3)))
    assert ensure_utc(plus_three) == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)


def test_to_rfc3339_utc_millisecond_precision():
    value = datetime(2024, 5, 1, 10, 0, 0, 987654, tzinfo=UTC)
    assert to_rfc3339_utc(value) == "2024-05-01T10:00:00.987Z"
    assert to_rfc3339_utc(None) is None


def test_same_day_compares_utc_dates():
    assert same_day(datetime(2024, 5, 1, 23, 0, tzinfo=UTC), datetime(2024, 5, 1, 0, 0, tzinfo=UTC))
    assert not same_day(datetime(2024, 5, 1, tzinfo=UTC), datetime(2024, 5, 2, tzinfo=UTC))
    assert not same_day(datetime(2024, 5, 1, tzinfo=UTC), None)
    assert same_day(None, None)


def test_days_ago():
    now = datetime(2024, 5, 31, tzinfo=UTC)
    assert days_ago(30, now=now) == datetime(2024, 5, 1, tzinfo=UTC)
