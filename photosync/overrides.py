import logging
import re
from dataclasses import dataclass, field
from datetime import tzinfo
from fnmatch import fnmatchcase
from typing import Dict, Iterable, List, Mapping, Optional

from photosync.attributes import AttributeSet
from photosync.timestamp import Timestamp, TimeRange, parse_offset_spec

logger = logging.getLogger(__name__)


class OverrideError(Exception):
    """An override that cannot be applied unambiguously; aborts the run."""


@dataclass
class Overrides:
    """User overrides resolved to file paths. An empty location removes the position."""
    times: Dict[str, Timestamp] = field(default_factory=dict)
    locations: Dict[str, List[Optional[float]]] = field(default_factory=dict)
    camera_ids: Dict[str, str] = field(default_factory=dict)
    jumps: Dict[str, int] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.times or self.locations or self.camera_ids or self.jumps)


# --- Parsing ---

_HEMISPHERE_SIGN = {"N": 1, "E": 1, "S": -1, "W": -1}


def parse_coordinate(text: str) -> Optional[float]:
    """
    Parses a latitude or longitude: '51.5', '-4.25', '51°30\\'15"', 'S 33 52 4.8'.
    Degrees, minutes and seconds are combined; a leading sign or a hemisphere
    letter sets the sign. Returns None when the text is not a coordinate.
    """
    text = (text or "").strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        pass

    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    for position in (0, -1):
        letter = text[position:][:1].upper() if text else ""
        if letter in _HEMISPHERE_SIGN:
            sign *= _HEMISPHERE_SIGN[letter]
            text = text[1:] if position == 0 else text[:-1]
            break

    components = re.findall(r"\d+(?:\.\d+)?", text)
    leftover = re.sub(r"\d+(?:\.\d+)?", "", text)
    if not 1 <= len(components) <= 3 or re.sub(r"[\s°º'\"′″:dms]", "", leftover):
        return None

    value = 0.0
    for component in reversed(components):
        value = value / 60 + float(component)
    return sign * value


def parse_location(text: str) -> Optional[List[Optional[float]]]:
    """Parses 'lat,lon[,alt]'; None when it is not a location."""
    parts = [part.strip() for part in text.split(",")]
    if len(parts) not in (2, 3):
        return None
    lat, lon = parse_coordinate(parts[0]), parse_coordinate(parts[1])
    if lat is None or lon is None or not -90 <= lat <= 90 or not -180 <= lon <= 180:
        return None
    alt = None
    if len(parts) == 3 and parts[2]:
        try:
            alt = float(parts[2].rstrip("m").strip())
        except ValueError:
            return None
    return [lat, lon, alt]


# --- Selector matching ---

def files_ending_with(pattern: str, paths: Iterable[str]) -> List[str]:
    """Files whose path ends with `pattern` (which may contain glob wildcards)."""
    return sorted(p for p in paths if fnmatchcase(p, "*" + pattern))


def match_files(selector: str, originals: Mapping[str, AttributeSet]) -> List[str]:
    """
    Resolves a selector to files: a path ending, a timestamp matched against
    CreateDate, or a 'T1/T2' range of CreateDate values.
    """
    matches = files_ending_with(selector, originals)
    if matches:
        return matches

    if "/" in selector:
        time_range = TimeRange.parse(selector)
        if time_range is None:
            raise OverrideError(f"'{selector}' matches no file and is not a valid time range")
        return sorted(p for p, info in originals.items()
                      if info.get("CreateDate") is not None and time_range.contains(info.get("CreateDate")))

    instant = Timestamp.parse(selector)
    if instant is not None and instant.is_dated:
        exact = TimeRange(instant, instant)
        return sorted(p for p, info in originals.items()
                      if info.get("CreateDate") is not None and exact.contains(info.get("CreateDate")))
    return []


def _single_file(text: str, originals: Mapping[str, AttributeSet], what: str) -> Optional[str]:
    matches = files_ending_with(text, originals)
    if len(matches) > 1:
        raise OverrideError(f"{what} '{text}' matches more than one file: {', '.join(matches)}")
    return matches[0] if matches else None


# --- Value resolution ---

def resolve_time(value: str, path: str, originals: Mapping[str, AttributeSet],
                 zone: Optional[tzinfo] = None) -> Optional[Timestamp]:
    """
    Turns a time override into a timestamp for one file. Accepted forms:
    seconds or an offset like '+1h30m' relative to the file's CreateDate, a clock
    time 'HH:MM[:SS]' on the CreateDate's day, a full timestamp, or the name of
    another file whose DateTimeOriginal is used.
    """
    text = value.strip()
    if not text:
        logger.error(f"{path}: empty time override ignored")
        return None
    create = originals[path].get("CreateDate")

    seconds = None
    if re.fullmatch(r"[-+]?\d+(?:\.\d+)?", text):
        seconds = float(text)
    elif text[:1] in "+-" or re.search(r"\d[ydhms]$", text):
        seconds = parse_offset_spec(text)
    parsed = Timestamp.parse(text) if seconds is None else None
    if parsed is not None and not parsed.is_dated and text[:1] in "+-":
        seconds, parsed = parsed.time_local, None

    if seconds is not None or (parsed is not None and not parsed.is_dated):
        if create is None:
            logger.error(f"{path}: time override '{value}' is relative but the file has no CreateDate")
            return None
        if seconds is not None:
            return create.adjusted_to_local_timezone(zone) + seconds
        return Timestamp(create.start_of_day() + parsed.time_local, parsed.timezone_offset)

    if parsed is not None:
        return parsed

    donor = _single_file(text, originals, "Time override")
    if donor is not None:
        donor_time = originals[donor].get("DateTimeOriginal")
        if donor_time is None:
            raise OverrideError(f"{path}: file '{donor}' named in time override has no DateTimeOriginal")
        return donor_time

    logger.error(f"{path}: invalid time override '{value}'")
    return None


def resolve_location(value: str, originals: Mapping[str, AttributeSet]) -> Optional[List[Optional[float]]]:
    text = value.strip()
    if not text:
        return []
    location = parse_location(text)
    if location is not None:
        return location

    donor = _single_file(text, originals, "Location override")
    if donor is not None:
        info = originals[donor]
        if info.get("GPSLatitude") is None or info.get("GPSLongitude") is None:
            logger.warning(f"File '{donor}' named in location override has no position")
            return None
        return [info.get("GPSLatitude"), info.get("GPSLongitude"), info.get("GPSAltitude")]

    logger.error(f"Invalid location override '{value}'")
    return None


def resolve_overrides(originals: Mapping[str, AttributeSet],
                      times: Optional[Mapping[str, str]] = None,
                      locations: Optional[Mapping[str, str]] = None,
                      camera_ids: Optional[Mapping[str, str]] = None,
                      summertime: Iterable[str] = (),
                      wintertime: Iterable[str] = (),
                      zone: Optional[tzinfo] = None) -> Overrides:
    """
    Resolves raw 'selector = value' overrides against the inspected files.
    Raises OverrideError for ambiguous or invalid selectors before anything is changed.
    """
    overrides = Overrides()

    for selector, value in (times or {}).items():
        matches = _matches_or_warn(selector, originals, "time")
        for path in matches:
            resolved = resolve_time(value, path, originals, zone)
            if resolved is not None:
                overrides.times[path] = resolved

    for selector, value in (locations or {}).items():
        matches = _matches_or_warn(selector, originals, "location")
        if not matches:
            continue
        resolved = resolve_location(value, originals)
        if resolved is not None:
            for path in matches:
                overrides.locations[path] = list(resolved)

    for selector, value in (camera_ids or {}).items():
        camera_id = (value or "").strip()
        if not camera_id:
            logger.error(f"Empty camera id for '{selector}' ignored")
            continue
        for path in _matches_or_warn(selector, originals, "camera id"):
            overrides.camera_ids[path] = camera_id

    for patterns, jump in ((summertime, 1), (wintertime, -1)):
        for pattern in patterns:
            matches = files_ending_with(pattern, originals)
            if not matches:
                raise OverrideError(f"No file matches '{pattern}' for the {'summer' if jump > 0 else 'winter'} time jump")
            overrides.jumps[matches[0]] = overrides.jumps.get(matches[0], 0) + jump

    return overrides


def _matches_or_warn(selector: str, originals: Mapping[str, AttributeSet], what: str) -> List[str]:
    matches = match_files(selector, originals)
    if not matches:
        logger.warning(f"No file matches '{selector}'; {what} override ignored")
    return matches
