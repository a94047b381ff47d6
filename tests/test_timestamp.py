"""Tests for timestamps, time ranges and camera offset arithmetic."""

from datetime import datetime, timedelta, timezone

import pytest

from photosync.timestamp import (
    Timestamp,
    TimeRange,
    TimestampError,
    apply_offset,
    deduce_offset,
    display_offset,
    format_timezone,
    parse_offset_spec,
    parse_timezone,
    split_offset,
)

from conftest import LOCAL_ZONE, ts

# =============================================================================
# Parsing and formatting
# =============================================================================


class TestTimestampParsing:
    """Tests for Timestamp.parse and string forms."""

    def test_parse_exiftool_form(self) -> None:
        """Test that exiftool dates keep their clock time and timezone."""
        value = Timestamp.parse("2020:07:30 08:22:30+02:00")
        assert str(value) == "2020-07-30T08:22:30+02:00"
        assert value.timezone_offset == 7200
        assert value.is_dated

    def test_parse_iso_utc(self) -> None:
        """Test that a trailing Z means UTC."""
        value = Timestamp.parse("2020-07-30T06:22:30Z")
        assert value.timezone_offset == 0
        assert value == ts("2020-07-30T08:22:30+02:00")

    def test_parse_without_timezone(self) -> None:
        """Test that a missing timezone stays missing."""
        value = Timestamp.parse("2020:07:30 08:22:30")
        assert not value.has_timezone_offset
        assert value.time_utc is None
        assert str(value) == "2020-07-30T08:22:30"

    def test_parse_fraction(self) -> None:
        """Test that fractional seconds are kept."""
        assert str(Timestamp.parse("2020:07:30 08:22:30.5")) == "2020-07-30T08:22:30.5"

    def test_parse_date_only(self) -> None:
        """Test that a date without a clock time prints without one."""
        value = Timestamp.parse("2020-07-30")
        assert not value.has_time
        assert str(value) == "2020-07-30"

    def test_zero_dates_are_not_timestamps(self) -> None:
        """Test that the all-zero dates some cameras write are rejected."""
        assert Timestamp.parse("0000:00:00 00:00:00") is None
        assert Timestamp.parse("not a date") is None
        assert Timestamp.parse(None) is None

    def test_parse_offset_form(self) -> None:
        """Test that undated values parse as offsets with an optional timezone."""
        value = Timestamp.parse("+00:00:35+02:00")
        assert not value.is_dated
        assert value.time_local == 35
        assert value.timezone_offset == 7200
        assert str(value) == "+00:00:35+02:00"

    def test_negative_offset(self) -> None:
        """Test negative undated values."""
        value = Timestamp.parse("-1:00")
        assert value.time_local == -3600
        assert str(value) == "-01:00:00"

    def test_from_datetime_keeps_offset(self) -> None:
        """Test conversion from an aware datetime."""
        moment = datetime(2020, 7, 30, 8, 22, 30, tzinfo=timezone(timedelta(hours=2)))
        assert Timestamp.from_datetime(moment) == ts("2020-07-30T08:22:30+02:00")

    def test_exif_string(self) -> None:
        """Test the form used when writing tags."""
        assert ts("2020-07-30T08:22:30+02:00").exif_string() == "2020:07:30 08:22:30+02:00"
        assert ts("2020-07-30T08:22:30").exif_string() == "2020:07:30 08:22:30"

    def test_timezone_helpers(self) -> None:
        """Test parse_timezone and format_timezone."""
        assert parse_timezone("Z") == 0
        assert parse_timezone("-0530") == -(5 * 3600 + 30 * 60)
        assert parse_timezone("+2") is None
        assert format_timezone(7200) == "+02:00"
        assert format_timezone(-19800) == "-05:30"
        assert format_timezone(None) == ""


# =============================================================================
# Timezones, arithmetic and comparison
# =============================================================================


class TestTimestampArithmetic:
    """Tests for timezone adjustment, arithmetic and comparison."""

    def test_adjust_keeps_instant(self) -> None:
        """Test that adjusting a timezone keeps the instant."""
        value = ts("2020-07-30T08:22:30+02:00").adjusted_to_utc()
        assert str(value) == "2020-07-30T06:22:30+00:00"

    def test_adjust_attaches_to_naive(self) -> None:
        """Test that a naive timestamp just gets the timezone attached."""
        value = ts("2020-07-30T08:22:30").adjusted_to_timezone(3 * 3600)
        assert str(value) == "2020-07-30T08:22:30+03:00"

    def test_adjust_to_local_zone(self) -> None:
        """Test reading a naive timestamp in a given local zone."""
        value = ts("2020-07-30T08:22:30").adjusted_to_local_timezone(LOCAL_ZONE)
        assert str(value) == "2020-07-30T08:22:30+02:00"

    def test_add_seconds(self) -> None:
        """Test adding a number of seconds."""
        assert str(ts("2020-07-30T23:59:30") + 45) == "2020-07-31T00:00:15"

    def test_difference_is_undated(self) -> None:
        """Test that subtracting two instants gives an undated amount."""
        difference = ts("2020-07-30T09:00:00+03:00") - ts("2020-07-30T08:00:00+02:00")
        assert not difference.is_dated
        assert difference.time_local == 0

    def test_adding_two_dates_fails(self) -> None:
        """Test that two dated timestamps cannot be added."""
        with pytest.raises(TimestampError):
            ts("2020-07-30T08:00:00") + ts("2020-07-30T09:00:00")

    def test_mixed_timezones_are_not_ordered(self) -> None:
        """Test that ordering needs both or neither timezone."""
        with pytest.raises(TimestampError):
            ts("2020-07-30T08:00:00+02:00") < ts("2020-07-30T09:00:00")
        assert ts("2020-07-30T08:00:00+02:00") != ts("2020-07-30T08:00:00")

    def test_values_are_immutable(self) -> None:
        """Test that operations return new values."""
        original = ts("2020-07-30T08:00:00")
        original.adjusted_to_timezone(0)
        _ = original + 10
        assert str(original) == "2020-07-30T08:00:00"


class TestTimeRange:
    """Tests for TimeRange."""

    def test_parse_and_contains(self) -> None:
        """Test containment for clock times."""
        time_range = TimeRange.parse("2020-07-30T08:00/2020-07-30T09:00")
        assert time_range.contains(ts("2020-07-30T08:30:00"))
        assert not time_range.contains(ts("2020-07-30T09:30:00"))

    def test_reversed_bounds_are_swapped(self) -> None:
        """Test that a range given backwards is normalized."""
        time_range = TimeRange.parse("2020-07-30T09:00/2020-07-30T08:00")
        assert time_range.start == ts("2020-07-30T08:00:00")

    def test_invalid(self) -> None:
        """Test that malformed ranges are rejected."""
        assert TimeRange.parse("foo/bar") is None
        assert TimeRange.parse("2020-07-30T08:00") is None


# =============================================================================
# Offsets
# =============================================================================


class TestOffsets:
    """Tests for splitting, deducing and applying camera offsets."""

    def test_split_offset(self) -> None:
        """Test splitting into whole hours and a remainder."""
        assert split_offset(2 * 3600 + 35) == (7200, 35)
        assert split_offset(3600 - 10) == (3600, -10)
        assert split_offset(1800) == (3600, -1800)
        assert split_offset(-1800) == (0, -1800)

    def test_split_offset_adds_up(self) -> None:
        """Test that both parts add up to the offset and the remainder stays within half a period."""
        for value in (-7235, -5400, -1801, -1800, -35, 0, 35, 1799, 1800, 5400, 7235, 93600.5):
            hours, remainder = split_offset(value)
            assert hours + remainder == value
            assert hours % 3600 == 0
            assert -1800 <= remainder < 1800

    def test_deduce_and_apply(self) -> None:
        """Test that applying a deduced offset reproduces the target."""
        camera = ts("2020-07-30T08:22:30+02:00")
        target = ts("2020-07-30T09:23:05+03:00")
        offset = deduce_offset(camera, target)
        assert str(offset) == "+00:00:35+02:00"
        assert apply_offset(camera, offset) == target

    def test_deduce_in_target_zone(self) -> None:
        """Test that a camera time re-expressed in the target's zone gives an offset in that zone."""
        camera = ts("2020-07-30T08:22:30+02:00")
        target = ts("2020-07-30T09:23:05+03:00")
        offset = deduce_offset(camera.adjusted_to_timezone(target.timezone_offset), target)
        assert str(offset) == "+00:00:35+03:00"
        assert str(apply_offset(camera, offset)) == "2020-07-30T09:23:05+03:00"

    def test_deduce_from_naive_camera_time(self) -> None:
        """Test that a camera time without timezone takes the target's."""
        offset = deduce_offset(ts("2020-07-30T08:22:30"), ts("2020-07-30T08:23:05+02:00"))
        assert str(offset) == "+00:00:35+02:00"

    def test_deduce_needs_target_timezone(self) -> None:
        """Test that a target without timezone is rejected."""
        with pytest.raises(TimestampError):
            deduce_offset(ts("2020-07-30T08:22:30"), ts("2020-07-30T08:23:05"))

    def test_apply_plain_seconds(self) -> None:
        """Test that bare seconds are split into timezone and drift."""
        value = apply_offset(ts("2020-07-30T08:22:30"), 2 * 3600 + 35)
        assert str(value) == "2020-07-30T08:23:05+02:00"

    def test_offset_spec(self) -> None:
        """Test the compact offset notation both ways."""
        assert parse_offset_spec("+1d2h") == 93600
        assert parse_offset_spec("-30m") == -1800
        assert parse_offset_spec("1.5s") == 1.5
        assert parse_offset_spec("abc") is None
        assert parse_offset_spec("+") is None
        assert display_offset(93784) == "+1d2h3m4s"
        assert display_offset(-90) == "-1m30s"
        assert display_offset(0) == "0"
