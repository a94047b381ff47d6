"""Tests for parsing and resolving user overrides."""

import pytest

from photosync.attributes import AttributeSet
from photosync.overrides import (
    OverrideError,
    files_ending_with,
    match_files,
    parse_coordinate,
    parse_location,
    resolve_overrides,
    resolve_time,
)

from conftest import LOCAL_ZONE, ts

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def originals():
    def info(create, original=None, lat=None, lon=None):
        values = AttributeSet()
        values.set("CreateDate", ts(create), "EXIF")
        if original:
            values.set("DateTimeOriginal", ts(original), "EXIF")
        values.set("GPSLatitude", lat)
        values.set("GPSLongitude", lon)
        return values

    return {
        "a/IMG_1.JPG": info("2020-07-30T08:22:30"),
        "a/IMG_2.JPG": info("2020-07-30T10:00:00", original="2020-07-30T10:00:05+02:00", lat=48.1, lon=11.5),
        "b/IMG_1.JPG": info("2020-07-31T12:00:00"),
    }


# =============================================================================
# Parsing
# =============================================================================


class TestCoordinates:
    """Tests for coordinate and location parsing."""

    def test_decimal(self) -> None:
        """Test plain decimal degrees."""
        assert parse_coordinate("51.5") == 51.5
        assert parse_coordinate("-4.25") == -4.25

    def test_degrees_minutes_seconds(self) -> None:
        """Test sexagesimal notation with a hemisphere letter."""
        assert parse_coordinate("51°30'15\"N") == pytest.approx(51.504167, abs=1e-6)
        assert parse_coordinate("S 33 52 4.8") == pytest.approx(-33.868, abs=1e-6)

    def test_not_a_coordinate(self) -> None:
        """Test rejection of non-coordinates."""
        assert parse_coordinate("abc") is None
        assert parse_coordinate("") is None

    def test_location(self) -> None:
        """Test lat,lon[,alt] parsing and range checks."""
        assert parse_location("48.1, 11.5") == [48.1, 11.5, None]
        assert parse_location("48.1,11.5,520m") == [48.1, 11.5, 520.0]
        assert parse_location("91,0") is None
        assert parse_location("48.1") is None


# =============================================================================
# Selectors and values
# =============================================================================


class TestSelectors:
    """Tests for selector matching."""

    def test_path_ending(self, originals) -> None:
        """Test that a selector matches path endings."""
        assert match_files("IMG_1.JPG", originals) == ["a/IMG_1.JPG", "b/IMG_1.JPG"]
        assert files_ending_with("a/*.JPG", originals) == ["a/IMG_1.JPG", "a/IMG_2.JPG"]

    def test_time_range(self, originals) -> None:
        """Test that a T1/T2 selector matches by CreateDate."""
        assert match_files("2020-07-30T08:00/2020-07-30T09:00", originals) == ["a/IMG_1.JPG"]

    def test_exact_time(self, originals) -> None:
        """Test that a timestamp selector matches an equal CreateDate."""
        assert match_files("2020-07-31T12:00:00", originals) == ["b/IMG_1.JPG"]

    def test_invalid_range(self, originals) -> None:
        """Test that a malformed range is fatal."""
        with pytest.raises(OverrideError):
            match_files("foo/bar", originals)


class TestResolveTime:
    """Tests for resolve_time."""

    def test_relative_offset(self, originals) -> None:
        """Test an offset relative to the CreateDate."""
        value = resolve_time("+1h", "a/IMG_1.JPG", originals, LOCAL_ZONE)
        assert str(value) == "2020-07-30T09:22:30+02:00"

    def test_relative_seconds(self, originals) -> None:
        """Test a plain number of seconds."""
        value = resolve_time("-30", "a/IMG_1.JPG", originals, LOCAL_ZONE)
        assert str(value) == "2020-07-30T08:22:00+02:00"

    def test_clock_time_on_same_day(self, originals) -> None:
        """Test a clock time on the CreateDate's day."""
        assert str(resolve_time("10:00", "a/IMG_1.JPG", originals)) == "2020-07-30T10:00:00"

    def test_full_timestamp(self, originals) -> None:
        """Test an absolute timestamp."""
        value = resolve_time("2020-08-01T10:00:00+02:00", "a/IMG_1.JPG", originals)
        assert value == ts("2020-08-01T10:00:00+02:00")

    def test_other_file(self, originals) -> None:
        """Test taking the time of another file."""
        assert resolve_time("IMG_2.JPG", "a/IMG_1.JPG", originals) == ts("2020-07-30T10:00:05+02:00")

    def test_other_file_without_original_time(self, originals) -> None:
        """Test that naming a file without DateTimeOriginal is fatal."""
        with pytest.raises(OverrideError):
            resolve_time("b/IMG_1.JPG", "a/IMG_2.JPG", originals)

    def test_ambiguous_file(self, originals) -> None:
        """Test that a file name matching several files is fatal."""
        with pytest.raises(OverrideError):
            resolve_time("IMG_1.JPG", "a/IMG_2.JPG", originals)

    def test_invalid(self, originals) -> None:
        """Test that nonsense is ignored."""
        assert resolve_time("whenever", "a/IMG_1.JPG", originals) is None


class TestResolveOverrides:
    """Tests for resolve_overrides."""

    def test_all_kinds(self, originals) -> None:
        """Test resolving times, locations, camera ids and time jumps together."""
        overrides = resolve_overrides(
            originals,
            times={"a/IMG_1.JPG": "+1h"},
            locations={"b/IMG_1.JPG": "IMG_2.JPG", "a/IMG_2.JPG": ""},
            camera_ids={"IMG_1.JPG": "Canon|EOS|1"},
            summertime=["b/IMG_1.JPG"],
            zone=LOCAL_ZONE,
        )
        assert str(overrides.times["a/IMG_1.JPG"]) == "2020-07-30T09:22:30+02:00"
        assert overrides.locations["b/IMG_1.JPG"] == [48.1, 11.5, None]
        assert overrides.locations["a/IMG_2.JPG"] == []
        assert overrides.camera_ids == {"a/IMG_1.JPG": "Canon|EOS|1", "b/IMG_1.JPG": "Canon|EOS|1"}
        assert overrides.jumps == {"b/IMG_1.JPG": 1}
        assert overrides

    def test_unmatched_selector_is_ignored(self, originals) -> None:
        """Test that a selector matching nothing only warns."""
        overrides = resolve_overrides(originals, times={"IMG_9.JPG": "+1h"})
        assert not overrides

    def test_unmatched_time_jump_is_fatal(self, originals) -> None:
        """Test that a time jump at an unknown file aborts."""
        with pytest.raises(OverrideError):
            resolve_overrides(originals, wintertime=["IMG_9.JPG"])
