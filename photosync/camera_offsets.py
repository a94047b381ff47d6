from datetime import tzinfo
from typing import Any, Dict, List, Optional, Tuple

from photosync.timestamp import Number, Timestamp, format_timezone, parse_timezone

# Appended to a camera id when the file claims to store UTC (QuickTime CreateDate).
UTC_SUFFIX = "|U"


class CameraOffsetsError(ValueError):
    """Raised when persisted camera offsets do not have the expected shape."""


def base_camera_id(camera_id: Optional[str]) -> Optional[str]:
    """Strips the always-UTC suffix from a camera id."""
    if camera_id and camera_id.endswith(UTC_SUFFIX):
        return camera_id[:-len(UTC_SUFFIX)]
    return camera_id


def _axis(value: Timestamp) -> Number:
    """Position of a reference time on the lookup axis."""
    if value.has_timezone_offset:
        return value.time_utc
    return value.time_local


class CameraOffsetStore:
    """
    Learned clock offsets per camera id, keyed by the reference (camera) time at
    which they were observed.

    Offsets are undated Timestamps: the time part is the drift of the camera
    clock, the timezone part the zone the clock was set to. Offsets stored
    without a timezone part (the legacy form) are resolved against the local
    zone when they are looked up.
    """

    def __init__(self, local_zone: Optional[tzinfo] = None):
        self.local_zone = local_zone
        self._samples: Dict[str, Dict[Timestamp, Timestamp]] = {}

    def set(self, camera_id: str, reference_time: Timestamp, offset: Timestamp):
        """Records (or replaces) the offset observed at reference_time."""
        if not camera_id:
            raise ValueError("Camera id must not be empty")
        if reference_time is None or offset is None:
            raise ValueError(f"Camera offset for '{camera_id}' needs a reference time and an offset")
        if offset.is_dated:
            raise ValueError(f"Camera offset '{offset}' for '{camera_id}' must not have a date")
        samples = self._samples.setdefault(camera_id, {})
        # Keys compare by instant; replace the old key so the stored reference time is the new one.
        samples.pop(reference_time, None)
        samples[reference_time] = offset

    def get(self, camera_id: Optional[str], reference_time: Optional[Timestamp]) -> Optional[Timestamp]:
        """
        Returns the offset of the sample nearest to reference_time (the earlier one on
        a tie), always with a timezone part, or None when the camera has no samples.
        """
        if not camera_id or reference_time is None:
            return None
        samples = self._samples.get(camera_id)
        if not samples:
            return None

        wanted = _axis(reference_time)
        best: Optional[Tuple[Number, Number, Timestamp]] = None
        for sample_time, offset in samples.items():
            position = _axis(sample_time)
            candidate = (abs(position - wanted), position, offset)
            if best is None or candidate[:2] < best[:2]:
                best = candidate
        offset = best[2]

        if not offset.has_timezone_offset:
            tz_local = reference_time.local_timezone_offset(self.local_zone)
            return Timestamp.duration(offset.time_local - tz_local, tz_local)
        return offset.clone()

    def samples(self, camera_id: str) -> List[Tuple[Timestamp, Timestamp]]:
        """Samples of one camera ordered by reference time."""
        return sorted(self._samples.get(camera_id, {}).items(), key=lambda item: _axis(item[0]))

    def camera_ids(self) -> List[str]:
        return sorted(self._samples)

    def __contains__(self, camera_id: str) -> bool:
        return camera_id in self._samples

    def __len__(self) -> int:
        return sum(len(samples) for samples in self._samples.values())

    # --- Persistence ---

    def export_data(self) -> Dict[str, List[Dict[str, Optional[str]]]]:
        """Converts the store into a plain map of camera id -> list of samples."""
        data = {}
        for camera_id in self.camera_ids():
            data[camera_id] = [
                {
                    "reference_time": str(reference_time),
                    "offset_time": str(offset.without_timezone()),
                    "offset_timezone": format_timezone(offset.timezone_offset) or None,
                }
                for reference_time, offset in self.samples(camera_id)
            ]
        return data

    def import_data(self, data: Any):
        """
        Loads samples from a map produced by export_data.
        Raises CameraOffsetsError if anything does not match the expected shape.
        """
        if not isinstance(data, dict):
            raise CameraOffsetsError(f"Camera offsets must be a map, got {type(data).__name__}")

        parsed = []
        for camera_id, samples in data.items():
            if not isinstance(camera_id, str) or not camera_id:
                raise CameraOffsetsError(f"Invalid camera id {camera_id!r}")
            if not isinstance(samples, list):
                raise CameraOffsetsError(f"Samples for camera '{camera_id}' must be a list")
            for sample in samples:
                parsed.append((camera_id, *self._parse_sample(camera_id, sample)))

        for camera_id, reference_time, offset in parsed:
            self.set(camera_id, reference_time, offset)

    @staticmethod
    def _parse_sample(camera_id: str, sample: Any) -> Tuple[Timestamp, Timestamp]:
        if not isinstance(sample, dict) or not {"reference_time", "offset_time"} <= set(sample):
            raise CameraOffsetsError(f"Invalid sample for camera '{camera_id}': {sample!r}")

        reference_time = Timestamp.parse(sample["reference_time"])
        if reference_time is None or not reference_time.is_dated:
            raise CameraOffsetsError(
                f"Invalid reference time {sample['reference_time']!r} for camera '{camera_id}'")

        offset = Timestamp.parse(sample["offset_time"])
        if offset is None or offset.is_dated or offset.has_timezone_offset:
            raise CameraOffsetsError(f"Invalid offset {sample['offset_time']!r} for camera '{camera_id}'")

        timezone_text = sample.get("offset_timezone")
        if timezone_text is not None:
            zone = parse_timezone(timezone_text) if isinstance(timezone_text, str) else None
            if zone is None:
                raise CameraOffsetsError(f"Invalid offset timezone {timezone_text!r} for camera '{camera_id}'")
            offset = offset.with_timezone(zone)
        return reference_time, offset
