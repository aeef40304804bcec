"""Tests for timezone utilities in datetime_utils."""

from datetime import UTC, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from crmflow.core.datetime_utils import (
    from_local,
    get_zone,
    hours_between,
    is_expired,
    is_valid_timezone,
    parse_schedule_time,
    to_local,
    to_naive_utc,
    utc_now,
)


class TestIsValidTimezone:
    """Tests for is_valid_timezone."""

    def test_valid_iana_timezone(self):
        """Should return True for valid IANA timezone."""
        assert is_valid_timezone("America/New_York") is True
        assert is_valid_timezone("Europe/Paris") is True
        assert is_valid_timezone("Asia/Tokyo") is True
        assert is_valid_timezone("UTC") is True

    def test_invalid_timezone(self):
        """Should return False for invalid timezone."""
        assert is_valid_timezone("Invalid/Timezone") is False
        assert is_valid_timezone("") is False
        assert is_valid_timezone("America/Atlantis") is False

    def test_get_zone(self):
        assert get_zone("Europe/Paris") == ZoneInfo("Europe/Paris")
        assert get_zone("Fake/City") is None
        assert get_zone(None) is None


class TestConversions:
    """Tests for naive UTC <-> local conversions."""

    def test_utc_now_is_naive(self):
        assert utc_now().tzinfo is None

    def test_to_naive_utc(self):
        aware = datetime(2026, 3, 10, 10, 0, tzinfo=timezone(timedelta(hours=1)))

        assert to_naive_utc(aware) == datetime(2026, 3, 10, 9, 0)
        assert to_naive_utc(datetime(2026, 3, 10, 9, 0)) == datetime(2026, 3, 10, 9, 0)

    def test_round_trip_through_zone(self):
        """Local wall-clock time depends on DST; the round trip must not."""
        zone = ZoneInfo("America/New_York")
        winter = datetime(2026, 1, 15, 14, 0)
        summer = datetime(2026, 7, 15, 13, 0)

        assert to_local(winter, zone).hour == 9
        assert to_local(summer, zone).hour == 9
        assert from_local(to_local(winter, zone)) == winter
        assert from_local(to_local(summer, zone)) == summer

    def test_to_local_is_aware(self):
        local = to_local(datetime(2026, 3, 10, 9, 0), ZoneInfo("Asia/Tokyo"))

        assert local.tzinfo is not None
        assert local.hour == 18
        assert local.astimezone(UTC).hour == 9


class TestParseScheduleTime:
    """Tests for parse_schedule_time."""

    def test_valid_times(self):
        assert parse_schedule_time("09:00") == time(9, 0)
        assert parse_schedule_time("9:05") == time(9, 5)
        assert parse_schedule_time("23:59") == time(23, 59)
        assert parse_schedule_time(" 00:00 ") == time(0, 0)

    def test_invalid_times(self):
        """Invalid values have no default."""
        assert parse_schedule_time(None) is None
        assert parse_schedule_time("") is None
        assert parse_schedule_time("24:00") is None
        assert parse_schedule_time("12:60") is None
        assert parse_schedule_time("noon") is None
        assert parse_schedule_time("12:00:00") is None


class TestHelpers:
    def test_hours_between(self):
        start = datetime(2026, 3, 10, 9, 0)

        assert hours_between(start, start + timedelta(hours=2, minutes=30)) == 2.5
        assert hours_between(start, start) == 0

    def test_is_expired(self):
        assert is_expired(utc_now() - timedelta(seconds=1)) is True
        assert is_expired(utc_now() + timedelta(hours=1)) is False
