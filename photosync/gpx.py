import logging
import os
from datetime import timezone
from typing import Iterable, Mapping

import gpxpy
import gpxpy.gpx

from photosync.attributes import AttributeSet
from photosync.gps_index import GpsTrackIndex, scope_for_file
from photosync.timestamp import Timestamp

logger = logging.getLogger(__name__)


def is_gpx_file(path: str) -> bool:
    """Recognizes GPX files by extension or by a '<gpx' root element near the start."""
    if path.lower().endswith(".gpx"):
        return True
    try:
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            head = f.read(1024)
    except OSError as e:
        logger.warning(f"{path}: cannot open for reading: {e}")
        return False
    return "<gpx" in head


def read_gpx_track(index: GpsTrackIndex, path: str) -> int:
    """
    Adds the points of every track segment in a GPX file to the index. Each segment
    becomes its own track '<file>-<n>', scoped to the file's directory. Points
    without a time are skipped. Returns the number of points added.
    """
    with open(path, 'r', encoding='utf-8') as f:
        gpx = gpxpy.parse(f)

    scope = scope_for_file(path)
    count = 0
    segment_number = 0
    first = last = None
    for track in gpx.tracks:
        for segment in track.segments:
            segment_number += 1
            track_id = f"{path}-{segment_number}"
            for point in segment.points:
                if point.time is None:
                    continue
                moment = point.time
                if moment.tzinfo is None:
                    moment = moment.replace(tzinfo=timezone.utc)
                instant = Timestamp.from_datetime(moment).adjusted_to_utc()
                index.add(instant, point.latitude, point.longitude, point.elevation, track_id, scope)
                first = instant if first is None or instant < first else first
                last = instant if last is None or instant > last else last
                count += 1

    if count:
        logger.info(f"{path}: read {count} position(s) ({first}/{last})")
    else:
        logger.warning(f"{path}: no timed positions found")
    return count


def read_gpx_tracks(index: GpsTrackIndex, paths: Iterable[str]) -> int:
    """Reads several GPX files; a file that cannot be parsed is logged and skipped."""
    total = 0
    for path in sorted(paths):
        try:
            total += read_gpx_track(index, path)
        except (OSError, gpxpy.gpx.GPXException) as e:
            logger.error(f"{path}: problem parsing GPX tracks: {e}")
    return total


def export_gpx(proposed: Mapping[str, AttributeSet], path: str, creator: str = "photosync") -> int:
    """
    Writes a waypoint for every file whose proposed values have a position and a
    GPS time. Returns the number of waypoints; no file is written when there are none.
    """
    gpx = gpxpy.gpx.GPX()
    gpx.creator = creator
    for file in sorted(proposed):
        values = proposed[file]
        longitude = values.get("GPSLongitude")
        # The GPS time, not the file time: positions lag behind the shutter.
        instant = values.get("GPSDateTime")
        latitude = values.get("GPSLatitude")
        if longitude is None or latitude is None or instant is None:
            continue
        gpx.waypoints.append(gpxpy.gpx.GPXWaypoint(
            latitude=latitude,
            longitude=longitude,
            elevation=values.get("GPSAltitude"),
            time=instant.adjusted_to_utc().to_datetime(),
            name=os.path.basename(file),
        ))

    if not gpx.waypoints:
        logger.info(f"No GPS positions to export to '{path}'")
        return 0

    latitudes = [w.latitude for w in gpx.waypoints]
    longitudes = [w.longitude for w in gpx.waypoints]
    gpx.bounds = gpxpy.gpx.GPXBounds(min(latitudes), max(latitudes), min(longitudes), max(longitudes))
    with open(path, 'w', encoding='utf-8') as f:
        f.write(gpx.to_xml())
    logger.info(f"Exported {len(gpx.waypoints)} position(s) to '{path}'")
    return len(gpx.waypoints)
