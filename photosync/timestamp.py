import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from functools import total_ordering
from typing import Optional, Tuple, Union

EPOCH = datetime(1970, 1, 1)
EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)
SECONDS_PER_DAY = 86400

Number = Union[int, float]


class TimestampError(ValueError):
    """Raised when timestamps are combined or compared in a way that has no meaning."""


# Accepts exiftool ("2020:07:30 08:22:30+02:00") and ISO ("2020-07-30T08:22:30Z") forms.
_DATE_RE = re.compile(
    r"^\s*(\d{4})[-:](\d{2})[-:](\d{2})"
    r"(?:[T ](\d{1,2}):(\d{2})(?::(\d{2})(\.\d+)?)?)?"
    r"\s*(Z|[-+]\d{2}:?\d{2})?\s*$"
)
# Clock times and offsets without a date: "08:22:30", "+00:00:35+02:00", "-1:00".
_UNDATED_RE = re.compile(
    r"^\s*([-+]?)(\d+):(\d{2})(?::(\d{2})(\.\d+)?)?"
    r"\s*(Z|[-+]\d{2}:?\d{2})?\s*$"
)
_OFFSET_SPEC_RE = re.compile(
    r"^\s*([-+]?)"
    r"(?:(\d+)y)?(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+(?:\.\d+)?)s)?\s*$"
)


def _normalize(value: Number) -> Number:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _parse_tz(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    if text == "Z":
        return 0
    sign = -1 if text[0] == "-" else 1
    digits = text[1:].replace(":", "")
    return sign * (int(digits[:2]) * 3600 + int(digits[2:4]) * 60)


def parse_timezone(text: str) -> Optional[int]:
    """Parses 'Z', '+02:00' or '-0530' into seconds; None if it is not a timezone offset."""
    if not re.match(r"^\s*(Z|[-+]\d{2}:?\d{2})\s*$", text or ""):
        return None
    return _parse_tz(text.strip())


def format_timezone(offset: Optional[int]) -> str:
    """Formats a timezone offset in seconds as '+HH:MM' (or '' when unknown)."""
    if offset is None:
        return ""
    sign = "-" if offset < 0 else "+"
    minutes, seconds = divmod(abs(int(offset)), 60)
    hours, minutes = divmod(minutes, 60)
    text = f"{sign}{hours:02d}:{minutes:02d}"
    if seconds:
        text += f":{seconds:02d}"
    return text


def _format_fraction(value: Number) -> str:
    fraction = value - math.floor(value)
    if not fraction:
        return ""
    return f"{fraction:.3f}".rstrip("0")[1:]


@total_ordering
class Timestamp:
    """
    A clock reading with an optional date and an optional timezone offset.

    Dated timestamps keep their clock reading as seconds since 1970-01-01T00:00:00
    *on their own clock*; the UTC instant is only known once a timezone offset is
    attached. Undated timestamps are plain amounts of seconds and double as clock
    times ("08:22:30") and as offsets ("+00:00:35+02:00").

    Instances are immutable; every operation returns a new Timestamp.
    """

    __slots__ = ("_local", "_tz", "_dated", "_has_time")

    def __init__(self, local: Number = 0, tz: Optional[int] = None, dated: bool = True, has_time: bool = True):
        self._local = _normalize(local)
        self._tz = None if tz is None else int(tz)
        self._dated = dated
        self._has_time = has_time

    # --- Construction ---

    @classmethod
    def parse(cls, value) -> Optional["Timestamp"]:
        """
        Parses a metadata value into a Timestamp.
        Returns None for anything that is not a recognizable date/time, including
        the all-zero dates some cameras write.
        """
        if value is None:
            return None
        if isinstance(value, Timestamp):
            return value
        if isinstance(value, datetime):
            return cls.from_datetime(value)
        text = str(value).strip()

        match = _DATE_RE.match(text)
        if match:
            year, month, day = (int(match.group(i)) for i in (1, 2, 3))
            try:
                base = datetime(year, month, day)
            except ValueError:
                return None
            seconds: Number = (base - EPOCH) // timedelta(seconds=1)
            has_time = match.group(4) is not None
            if has_time:
                hour, minute = int(match.group(4)), int(match.group(5))
                second = int(match.group(6) or 0)
                if hour > 23 or minute > 59 or second > 60:
                    return None
                seconds += hour * 3600 + minute * 60 + second
                if match.group(7):
                    seconds += float(match.group(7))
            return cls(seconds, _parse_tz(match.group(8)), dated=True, has_time=has_time)

        match = _UNDATED_RE.match(text)
        if match:
            minutes_part = int(match.group(3))
            seconds_part = int(match.group(4) or 0)
            if minutes_part > 59 or seconds_part > 59:
                return None
            seconds = int(match.group(2)) * 3600 + minutes_part * 60 + seconds_part
            if match.group(5):
                seconds += float(match.group(5))
            if match.group(1) == "-":
                seconds = -seconds
            return cls(seconds, _parse_tz(match.group(6)), dated=False)

        return None

    @classmethod
    def from_datetime(cls, value: datetime) -> "Timestamp":
        """Converts a datetime; aware datetimes keep their UTC offset."""
        naive = value.replace(tzinfo=None)
        seconds = (naive - EPOCH).total_seconds()
        tz = None
        if value.tzinfo is not None and value.utcoffset() is not None:
            tz = int(value.utcoffset().total_seconds())
        return cls(seconds, tz)

    @classmethod
    def from_utc_seconds(cls, seconds: Number, tz: int = 0) -> "Timestamp":
        return cls(seconds + tz, tz)

    @classmethod
    def duration(cls, seconds: Number, tz: Optional[int] = None) -> "Timestamp":
        """Builds an undated timestamp, used as a clock offset."""
        return cls(seconds, tz, dated=False)

    def clone(self) -> "Timestamp":
        return Timestamp(self._local, self._tz, self._dated, self._has_time)

    # --- Accessors ---

    @property
    def time_local(self) -> Number:
        return self._local

    @property
    def timezone_offset(self) -> Optional[int]:
        return self._tz

    @property
    def has_timezone_offset(self) -> bool:
        return self._tz is not None

    @property
    def is_dated(self) -> bool:
        return self._dated

    @property
    def has_time(self) -> bool:
        return self._has_time

    @property
    def time_utc(self) -> Optional[Number]:
        """Seconds since the Unix epoch, or None while the timezone is unknown."""
        if self._tz is None:
            return None
        return _normalize(self._local - self._tz)

    # --- Timezone handling ---

    def with_timezone(self, tz: Optional[int]) -> "Timestamp":
        """Attaches a timezone offset and keeps the clock reading (the instant moves)."""
        return Timestamp(self._local, tz, self._dated, self._has_time)

    def without_timezone(self) -> "Timestamp":
        return self.with_timezone(None)

    def adjusted_to_timezone(self, tz: Optional[int]) -> "Timestamp":
        """
        Re-expresses the timestamp in another timezone offset.
        Keeps the instant when a timezone is already known, otherwise just attaches it.
        """
        if tz is None:
            return self.without_timezone()
        if self._tz is None:
            return self.with_timezone(tz)
        return Timestamp(self._local - self._tz + tz, tz, self._dated, self._has_time)

    def adjusted_to_utc(self) -> "Timestamp":
        return self.adjusted_to_timezone(0)

    def local_timezone_offset(self, zone: Optional[tzinfo] = None) -> int:
        """
        The UTC offset of `zone` (the system zone when None) in effect at this
        timestamp. A timestamp without timezone is read as a wall-clock time in `zone`.
        """
        if self._tz is not None:
            instant = EPOCH_UTC + timedelta(seconds=self.time_utc)
            local = instant.astimezone(zone) if zone is not None else instant.astimezone()
        else:
            naive = EPOCH + timedelta(seconds=self._local)
            local = naive.replace(tzinfo=zone) if zone is not None else naive.astimezone()
        return int(local.utcoffset().total_seconds())

    def adjusted_to_local_timezone(self, zone: Optional[tzinfo] = None) -> "Timestamp":
        offset = self.local_timezone_offset(zone)
        if self._tz is None:
            return self.with_timezone(offset)
        return self.adjusted_to_timezone(offset)

    def start_of_day(self) -> Number:
        """Clock seconds at midnight of this timestamp's date."""
        return self._local - (self._local % SECONDS_PER_DAY)

    # --- Conversions and formatting ---

    def to_datetime(self) -> datetime:
        if not self._dated:
            raise TimestampError(f"'{self}' has no date")
        value = EPOCH + timedelta(seconds=self._local)
        if self._tz is not None:
            value = value.replace(tzinfo=timezone(timedelta(seconds=self._tz)))
        return value

    def date_string(self, separator: str = "-") -> str:
        return self.to_datetime().strftime(f"%Y{separator}%m{separator}%d")

    def time_string(self) -> str:
        return self.to_datetime().strftime("%H:%M:%S") + _format_fraction(self._local)

    def exif_string(self) -> str:
        """The form exiftool expects when writing date tags."""
        if not self._dated:
            return str(self)
        return f"{self.date_string(':')} {self.time_string()}{format_timezone(self._tz)}"

    def __str__(self) -> str:
        if self._dated:
            text = self.date_string()
            if self._has_time:
                text += "T" + self.time_string()
        else:
            sign = "-" if self._local < 0 else "+"
            remaining = abs(self._local)
            whole = int(math.floor(remaining))
            hours, rest = divmod(whole, 3600)
            minutes, seconds = divmod(rest, 60)
            text = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}{_format_fraction(remaining)}"
        return text + format_timezone(self._tz)

    def __repr__(self) -> str:
        return f"Timestamp('{self}')"

    # --- Arithmetic ---

    def __add__(self, other) -> "Timestamp":
        if isinstance(other, Timestamp):
            if other._dated and self._dated:
                raise TimestampError(f"Cannot add two dated timestamps: '{self}' + '{other}'")
            if other._dated:
                return other + self._local
            return self + other._local
        if isinstance(other, (int, float)):
            return Timestamp(self._local + other, self._tz, self._dated, self._has_time)
        return NotImplemented

    __radd__ = __add__

    def __sub__(self, other):
        if isinstance(other, (int, float)):
            return Timestamp(self._local - other, self._tz, self._dated, self._has_time)
        if not isinstance(other, Timestamp):
            return NotImplemented
        if other._dated and not self._dated:
            raise TimestampError(f"Cannot subtract a dated timestamp from an offset: '{self}' - '{other}'")
        if self._dated and not other._dated:
            return self - other._local
        # Both dated (or both undated): the difference is an undated amount of seconds.
        if self._tz is not None and other._tz is not None:
            return Timestamp.duration(self.time_utc - other.time_utc)
        return Timestamp.duration(self._local - other._local)

    # --- Comparison ---

    def _comparable(self, other: "Timestamp") -> Tuple[Number, Number]:
        if self._dated != other._dated:
            raise TimestampError(f"Cannot compare '{self}' with '{other}'")
        if self._tz is not None and other._tz is not None:
            return self.time_utc, other.time_utc
        if self._tz is None and other._tz is None:
            return self._local, other._local
        raise TimestampError(f"Cannot compare '{self}' with '{other}' without resolving a timezone first")

    def __eq__(self, other) -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        try:
            mine, theirs = self._comparable(other)
        except TimestampError:
            return False
        return mine == theirs

    def __lt__(self, other) -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        mine, theirs = self._comparable(other)
        return mine < theirs

    def __hash__(self) -> int:
        if self._tz is not None:
            return hash(("utc", self._dated, self.time_utc))
        return hash(("local", self._dated, self._local))


@dataclass(frozen=True)
class TimeRange:
    """An inclusive range of timestamps, e.g. '2020-07-30T08:00/2020-07-30T12:00'."""
    start: Timestamp
    end: Timestamp

    @classmethod
    def parse(cls, text: str) -> Optional["TimeRange"]:
        parts = text.split("/")
        if len(parts) != 2:
            return None
        start, end = Timestamp.parse(parts[0]), Timestamp.parse(parts[1])
        if start is None or end is None or not start.is_dated or not end.is_dated:
            return None
        low, high = _clock_or_instant(start, end)
        if low > high:
            start, end = end, start
        return cls(start, end)

    def contains(self, value: Timestamp) -> bool:
        low, moment_low = _clock_or_instant(self.start, value)
        high, moment_high = _clock_or_instant(self.end, value)
        return low <= moment_low and moment_high <= high

    def __str__(self) -> str:
        return f"{self.start}/{self.end}"


def _clock_or_instant(a: Timestamp, b: Timestamp) -> Tuple[Number, Number]:
    """Compares instants when both are known, clock readings otherwise."""
    if a.has_timezone_offset and b.has_timezone_offset:
        return a.time_utc, b.time_utc
    return a.time_local, b.time_local


# --- Offset arithmetic ---

def split_offset(total_seconds: Number, period: int = 3600) -> Tuple[Number, Number]:
    """
    Splits an offset into a whole number of periods (in seconds) and a remainder in
    [-period/2, period/2). The midpoint goes to the upper period.
    """
    hours = math.floor(total_seconds / period) * period
    remainder = total_seconds - hours
    if remainder >= period / 2:
        remainder -= period
        hours += period
    return _normalize(hours), _normalize(remainder)


def apply_offset(time: Timestamp, offset: Union[Timestamp, Number]) -> Timestamp:
    """
    Applies a camera offset: adds its time part, then moves the result to the
    offset's timezone part. A bare number or an offset without timezone part is
    first split into whole hours (timezone) and the remaining drift.
    """
    if not isinstance(offset, Timestamp):
        offset = Timestamp.duration(offset)
    if not offset.has_timezone_offset:
        hours, remainder = split_offset(offset.time_local)
        offset = Timestamp.duration(remainder, hours)
    return (time + offset.time_local).adjusted_to_timezone(offset.timezone_offset)


def deduce_offset(source: Timestamp, target: Timestamp) -> Timestamp:
    """
    Deduces the offset that maps `source` (the camera clock) onto `target`.
    The timezone part is the zone the camera clock follows: the source's own offset
    when it carries one, otherwise the target's. To learn an offset in the target's
    zone, pass the source re-expressed in that zone (the engine does so).
    """
    if target is None or not target.has_timezone_offset:
        raise TimestampError(f"Target time '{target}' has no timezone offset")
    if source.has_timezone_offset:
        return Timestamp.duration(target.time_utc - source.time_utc, source.timezone_offset)
    return Timestamp.duration(target.time_local - source.time_local, target.timezone_offset)


def parse_offset_spec(text: str) -> Optional[Number]:
    """Parses offsets like '+1d2h', '-30m' or '90s' into seconds."""
    match = _OFFSET_SPEC_RE.match(text or "")
    if not match or not any(match.group(i) for i in range(2, 7)):
        return None
    years, days, hours, minutes = (int(match.group(i) or 0) for i in range(2, 6))
    seconds = float(match.group(6) or 0)
    total = (((years * 365 + days) * 24 + hours) * 60 + minutes) * 60 + seconds
    return _normalize(-total if match.group(1) == "-" else total)


def display_offset(seconds: Optional[Number]) -> str:
    """Formats seconds compactly: 93784 -> '+1d2h3m4s', 0 -> '0'."""
    if seconds is None:
        return ""
    if not seconds:
        return "0"
    sign = "-" if seconds < 0 else "+"
    remaining = int(round(abs(seconds)))
    parts = []
    for unit, size in (("d", SECONDS_PER_DAY), ("h", 3600), ("m", 60), ("s", 1)):
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count}{unit}")
    return sign + "".join(parts)
