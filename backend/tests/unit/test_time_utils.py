from datetime import date, datetime, time, timedelta, timezone

import pytest
import pytz

from slotwise.core.timezone_utils import local_day_bounds_utc, local_to_utc, utc_to_local
from slotwise.utils.time_utils import (
    TimeRange,
    ensure_utc,
    is_in_past,
    minutes_to_time_str,
    overlaps,
    time_to_minutes,
)


class TestMinuteConversion:
    def test_time_to_minutes(self):
        assert time_to_minutes(time(9, 30)) == 570
        assert time_to_minutes(time(0, 0)) == 0

    def test_midnight_as_end_of_day(self):
        assert time_to_minutes(time(0, 0), is_end_time=True) == 1440

    def test_minutes_to_time_str(self):
        assert minutes_to_time_str(570) == "09:30"
        assert minutes_to_time_str(1440) == "24:00"

    def test_minutes_out_of_range(self):
        with pytest.raises(ValueError):
            minutes_to_time_str(1441)


class TestOverlap:
    def test_half_open_edges_do_not_overlap(self):
        start = datetime(2030, 6, 3, 12, tzinfo=timezone.utc)
        assert not overlaps(start, start + timedelta(hours=1), start + timedelta(hours=1), start + timedelta(hours=2))

    def test_partial_overlap(self):
        start = datetime(2030, 6, 3, 12, tzinfo=timezone.utc)
        assert overlaps(start, start + timedelta(hours=1), start + timedelta(minutes=30), start + timedelta(hours=2))

    def test_time_range_rejects_empty(self):
        start = datetime(2030, 6, 3, 12, tzinfo=timezone.utc)
        with pytest.raises(ValueError):
            TimeRange(start, start)

    def test_time_range_from_duration(self):
        start = datetime(2030, 6, 3, 12, tzinfo=timezone.utc)
        window = TimeRange.from_duration(start, 90)
        assert window.end == start + timedelta(minutes=90)
        assert window.duration_minutes == 90


class TestUtcHelpers:
    def test_ensure_utc_tags_naive(self):
        assert ensure_utc(datetime(2030, 1, 1, 9)).tzinfo == timezone.utc

    def test_ensure_utc_converts_offsets(self):
        sydney = pytz.timezone("Australia/Sydney").localize(datetime(2030, 6, 3, 9))
        assert ensure_utc(sydney) == datetime(2030, 6, 2, 23, tzinfo=timezone.utc)

    def test_now_counts_as_past(self):
        now = datetime(2030, 6, 3, 9, tzinfo=timezone.utc)
        assert is_in_past(now, now)
        assert not is_in_past(now + timedelta(minutes=1), now)


class TestProviderTimezones:
    def test_local_to_utc_winter(self):
        tz = pytz.timezone("Australia/Sydney")
        assert local_to_utc(date(2030, 6, 3), time(9), tz) == datetime(
            2030, 6, 2, 23, tzinfo=timezone.utc
        )

    def test_local_to_utc_summer(self):
        tz = pytz.timezone("Australia/Sydney")
        assert local_to_utc(date(2030, 1, 7), time(9), tz) == datetime(
            2030, 1, 6, 22, tzinfo=timezone.utc
        )

    def test_utc_to_local_round_trip(self):
        tz = pytz.timezone("America/New_York")
        instant = datetime(2030, 6, 3, 13, tzinfo=timezone.utc)
        assert utc_to_local(instant, tz).hour == 9

    def test_day_bounds_span_local_day(self):
        tz = pytz.timezone("Australia/Sydney")
        start, end = local_day_bounds_utc(date(2030, 6, 3), tz)
        assert start == datetime(2030, 6, 2, 14, tzinfo=timezone.utc)
        assert end - start == timedelta(hours=24)
