import math
import os
from bisect import bisect_left
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from photosync.timestamp import Timestamp, TimestampError

# --- Configuration ---
CONFIG = {
    # How far (in seconds) before the first or after the last fix a track still applies.
    "GPS_TOLERANCE_SECONDS": 60,
}
# --- End Configuration ---

EARTH_RADIUS = 6378000.0
DEG = 180.0 / math.pi


@dataclass(frozen=True)
class GpsFix:
    """A single track point. `scope` is the directory the track applies to."""
    instant_utc: Timestamp
    lat: float
    lon: float
    alt: Optional[float]
    track_id: str
    scope: str

    @property
    def position(self) -> List[Optional[float]]:
        return [self.lat, self.lon, self.alt]


def scope_for_file(path: str) -> str:
    """The directory of a file as a forward-slash path ('' for the current directory)."""
    directory = os.path.normpath(os.path.dirname(path) or ".")
    if directory == ".":
        return ""
    return directory.replace(os.sep, "/")


def scope_matches(track_scope: str, scope: str) -> bool:
    """True if track_scope is the same directory as scope or one of its ancestors."""
    if not track_scope or track_scope == scope:
        return True
    prefix = track_scope if track_scope.endswith("/") else track_scope + "/"
    return scope.startswith(prefix)


def _rounded(position: Sequence[Optional[float]]) -> Tuple[int, int, Optional[int]]:
    lat, lon = position[0], position[1]
    alt = position[2] if len(position) > 2 else None
    return (
        math.floor(lat * 360000 + 0.5),
        math.floor(lon * 360000 + 0.5),
        None if alt is None else math.floor(alt * 100 + 0.5),
    )


def geo_distance(position1: Optional[Sequence[Optional[float]]],
                 position2: Optional[Sequence[Optional[float]]]) -> Optional[float]:
    """
    Straight-line distance in metres between two (lat, lon[, alt]) positions.

    Returns None unless both positions have a latitude and a longitude. Values are
    first rounded to 0.01 arc second and 1 cm; if the rounded positions are equal the
    distance is exactly 0. Otherwise the chord through a spherical earth is returned,
    which is close enough to the geodesic for the distances that matter here.
    """
    for position in (position1, position2):
        if not position or len(position) < 2 or position[0] is None or position[1] is None:
            return None

    if _rounded(position1) == _rounded(position2):
        return 0.0

    def cartesian(position):
        lat, lon = position[0] / DEG, position[1] / DEG
        alt = position[2] if len(position) > 2 and position[2] is not None else 0.0
        r = EARTH_RADIUS + alt
        return (r * math.cos(lon) * math.cos(lat),
                r * math.sin(lon) * math.cos(lat),
                r * math.sin(lat))

    x1, y1, z1 = cartesian(position1)
    x2, y2, z2 = cartesian(position2)
    return math.sqrt((x1 - x2) ** 2 + (y1 - y2) ** 2 + (z1 - z2) ** 2)


class GpsTrackIndex:
    """
    Append-only collection of GPS fixes grouped per track.

    A lookup considers every track whose scope contains the file's directory and
    whose time span covers the target time, takes the fix nearest in time from each
    such track, and prefers the most specific scope, then the first track id.
    """

    def __init__(self, tolerance: Optional[float] = None):
        self.tolerance = CONFIG["GPS_TOLERANCE_SECONDS"] if tolerance is None else tolerance
        self._fixes: Dict[Tuple[str, str], List[GpsFix]] = {}
        self._times: Dict[Tuple[str, str], List[float]] = {}

    def add(self, instant_utc: Timestamp, lat: float, lon: float, alt: Optional[float],
            track_id: str, scope: str) -> GpsFix:
        if instant_utc is None or not instant_utc.has_timezone_offset:
            raise TimestampError(f"GPS fix time '{instant_utc}' of track '{track_id}' is not an instant")
        fix = GpsFix(instant_utc.adjusted_to_utc(), float(lat), float(lon),
                     None if alt is None else float(alt), track_id, scope)
        key = (scope, track_id)
        times = self._times.setdefault(key, [])
        fixes = self._fixes.setdefault(key, [])
        position = bisect_left(times, fix.instant_utc.time_utc)
        times.insert(position, fix.instant_utc.time_utc)
        fixes.insert(position, fix)
        return fix

    def _nearest_in_track(self, key: Tuple[str, str], when: float) -> Optional[GpsFix]:
        times = self._times[key]
        if when < times[0] - self.tolerance or when > times[-1] + self.tolerance:
            return None
        position = bisect_left(times, when)
        neighbours = [i for i in (position - 1, position) if 0 <= i < len(times)]
        # On equal distance the earlier fix wins.
        best = min(neighbours, key=lambda i: (abs(times[i] - when), times[i]))
        return self._fixes[key][best]

    def candidates_for(self, target: Optional[Timestamp], scope: str) -> List[GpsFix]:
        """One fix per applicable track, most specific scope first, then by track id."""
        if target is None or not target.has_timezone_offset:
            return []
        when = target.time_utc
        candidates = []
        for key in self._fixes:
            track_scope, _ = key
            if not scope_matches(track_scope, scope):
                continue
            fix = self._nearest_in_track(key, when)
            if fix is not None:
                candidates.append(fix)
        return sorted(candidates, key=lambda f: (-len(f.scope), f.track_id))

    def position_for(self, target: Optional[Timestamp], scope: str) -> List[GpsFix]:
        """Returns the selected fix as a one-element list, or an empty list."""
        return self.candidates_for(target, scope)[:1]

    def track_ids(self) -> List[str]:
        return sorted({track_id for _, track_id in self._fixes})

    def __len__(self) -> int:
        return sum(len(fixes) for fixes in self._fixes.values())
