import abc
from typing import Any, Callable, Dict, List, Optional, Set

from photosync.attributes import AttributeSet
from photosync.tags import OWN_NAMESPACE, OWN_TAGS
from photosync.timestamp import Timestamp


def value_str(value: Any) -> str:
    """Formats a value the way exiftool expects it on the command line."""
    if isinstance(value, Timestamp):
        return value.exif_string()
    if isinstance(value, float):
        return repr(value)
    return str(value)


class WriteArgument(abc.ABC):
    """
    Turns one logical tag into the physical exiftool tags that store it.
    A value of None removes the tag: the same physical tags are computed from a
    placeholder value and then cleared.
    """
    placeholder: Any = 0

    def __init__(self, tag: str, value: Any):
        self.tag = tag
        self.value = value

    @property
    def removing(self) -> bool:
        return self.value is None

    @abc.abstractmethod
    def physical(self, value: Any) -> Dict[str, str]:
        """Returns the physical tag -> value writes for a (non-None) value."""
        pass

    def writes(self) -> Dict[str, Optional[str]]:
        if self.removing:
            return {key: None for key in self.physical(self.placeholder)}
        return self.physical(self.value)

    def build(self) -> List[str]:
        """Builds the exiftool arguments; an empty assignment deletes a tag."""
        return [f"-{key}={'' if value is None else value}" for key, value in self.writes().items()]

    def get_managed_tags(self) -> Set[str]:
        return set(self.writes())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.tag}={self.value!r})"


class SimpleArgument(WriteArgument):
    """Writes the value to a tag of the same name."""

    def physical(self, value: Any) -> Dict[str, str]:
        return {self.tag: value_str(value)}


class OwnTagArgument(WriteArgument):
    """Tags of this tool live in their own XMP namespace."""
    placeholder = "-"

    def physical(self, value: Any) -> Dict[str, str]:
        return {f"XMP-{OWN_NAMESPACE}:{self.tag}": value_str(value)}


class GpsCoordinateArgument(WriteArgument):
    """A signed coordinate becomes an unsigned value plus a hemisphere reference."""

    def __init__(self, tag: str, value: Any, positive: str, negative: str):
        super().__init__(tag, value)
        self.positive = positive
        self.negative = negative

    def physical(self, value: Any) -> Dict[str, str]:
        number = float(value)
        return {
            f"{self.tag}#": value_str(abs(number)),
            f"{self.tag}Ref": self.positive if number >= 0 else self.negative,
        }


class GpsAltitudeArgument(WriteArgument):
    """Altitude below sea level is stored as a positive value with reference 1."""

    def physical(self, value: Any) -> Dict[str, str]:
        number = float(value)
        return {
            "GPSAltitude#": value_str(abs(number)),
            "GPSAltitudeRef#": "0" if number >= 0 else "1",
        }


class GpsDateTimeArgument(WriteArgument):
    """The GPS time is always stored in UTC, split into a date stamp and a time stamp."""
    placeholder = Timestamp(0, 0)

    def physical(self, value: Any) -> Dict[str, str]:
        utc = value.adjusted_to_utc()
        return {
            "GPSDateStamp": utc.date_string(":"),
            "GPSTimeStamp": utc.time_string(),
            "XMP:GPSDateTime": utc.exif_string(),
        }


class DateTimeOriginalArgument(WriteArgument):
    """
    EXIF stores the clock time (without a timezone if the file never had one), XMP
    the full timestamp with its timezone.
    """
    placeholder = Timestamp(0)

    def __init__(self, tag: str, value: Any, xmp_value: Any = None):
        super().__init__(tag, value)
        self.xmp_value = xmp_value

    def physical(self, value: Any) -> Dict[str, str]:
        xmp_value = self.xmp_value if self.xmp_value is not None else value
        return {
            "DateTimeOriginal": value_str(value),
            "XMP:DateTimeOriginal": value_str(xmp_value),
        }


# --- Strategy table: logical tag -> argument builder ---

WRITE_ARGUMENTS: Dict[str, Callable[[str, AttributeSet], WriteArgument]] = {
    "GPSLatitude": lambda tag, values: GpsCoordinateArgument(tag, values.get(tag), "N", "S"),
    "GPSLongitude": lambda tag, values: GpsCoordinateArgument(tag, values.get(tag), "E", "W"),
    "GPSAltitude": lambda tag, values: GpsAltitudeArgument(tag, values.get(tag)),
    "GPSDateTime": lambda tag, values: GpsDateTimeArgument(tag, values.get(tag)),
    "DateTimeOriginal": lambda tag, values: DateTimeOriginalArgument(
        tag, values.get(tag), values.get_from("XMP", tag)),
}
for _own_tag in OWN_TAGS:
    WRITE_ARGUMENTS[_own_tag] = lambda tag, values: OwnTagArgument(tag, values.get(tag))


def argument_for(tag: str, values: AttributeSet) -> WriteArgument:
    """Builds the write argument for a logical tag from the proposed values."""
    builder = WRITE_ARGUMENTS.get(tag)
    if builder is None:
        return SimpleArgument(tag, values.get(tag))
    return builder(tag, values)


def removal_for(tag: str) -> WriteArgument:
    """The argument that removes every physical tag a logical tag is stored in."""
    return argument_for(tag, AttributeSet())
