from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from photosync.attributes import AttributeSet
from photosync.gps_index import geo_distance
from photosync.tags import (CAMERA_ID, GPS_GROUP_TAGS, GPS_SOURCE, MONITORED_TAGS, POSITION_TAGS,
                            TIME_SOURCE, VERSION_TAG)
from photosync.timestamp import Timestamp

MAX_FORCE = 2
# Force required when nothing needs to change; above every real force level.
NO_CHANGE = 99

# Positions closer than this (in metres) are the same position written twice.
POSITION_NOISE_FLOOR = 0.01

FORCE_TIERS = {
    "FileModifyDate": 0,
    CAMERA_ID: 1,
    "DateTimeOriginal": 1,
    VERSION_TAG: 1,
    TIME_SOURCE: 1,
}


class ChangeState(Enum):
    """Where a file's change set ended up."""
    NO_CHANGE = auto()
    NEEDS_FORCE = auto()
    AUTHORIZED = auto()
    SUPPRESSED = auto()


@dataclass
class ChangeSet:
    """The differences between the original and proposed values of one file."""
    path: str
    changes: Dict[str, int] = field(default_factory=dict)
    min_force: int = NO_CHANGE
    state: ChangeState = ChangeState.NO_CHANGE
    position_change: Optional[float] = None
    messages: List[str] = field(default_factory=list)

    @property
    def tags(self) -> List[str]:
        return sorted(self.changes)

    @property
    def authorized(self) -> bool:
        return self.state == ChangeState.AUTHORIZED

    def add(self, tag: str, tier: int):
        self.changes[tag] = tier
        self.min_force = min(self.changes.values())


def normalized(tag: str, value: Any) -> str:
    # The file system keeps only the instant; the zone it is reported in varies.
    if tag == "FileModifyDate" and isinstance(value, Timestamp) and value.has_timezone_offset:
        value = value.adjusted_to_utc()
    return str(value)


def differs(old: Any, new: Any, tag: str = "") -> bool:
    """Values are compared by their string form; None means the tag is absent."""
    if old is None or new is None:
        return (old is None) != (new is None)
    return normalized(tag, old) != normalized(tag, new)


def describe(tag: str, old: Any, new: Any) -> str:
    if old is None:
        return f"{tag} added: {new}"
    if new is None:
        return f"{tag} removed: {old}"
    return f"{tag}: {old} -> {new}"


class ChangeClassifier:
    """
    Decides which tags of a file must change and whether the configured force
    level allows it.

    Every difference gets a force tier: 0 for the file modification time, 1 for
    identity and provenance tags, and for the GPS group 2 when the original
    position came from the device itself (time source absent or 'GPS'), 0 otherwise.
    A change set is authorized when the force level reaches its lowest tier or the
    user explicitly asked for a value.
    """

    def __init__(self, force: int = 0):
        if not 0 <= force <= MAX_FORCE:
            raise ValueError(f"Force level must be between 0 and {MAX_FORCE}, got {force}")
        self.force = force

    def classify(self, path: str, original: AttributeSet, proposed: AttributeSet,
                 can_change: bool = True, explicit_override: bool = False) -> ChangeSet:
        change_set = self.detect(path, original, proposed, can_change)
        return self.authorize(change_set, explicit_override)

    def detect(self, path: str, original: AttributeSet, proposed: AttributeSet,
               can_change: bool = True) -> ChangeSet:
        """
        Finds the differences. May drop incomplete GPS data from `proposed` (see
        _detect_position) and restores the old version tag when only the version
        would change.
        """
        change_set = ChangeSet(path)
        monitored = MONITORED_TAGS if can_change else ("FileModifyDate",)

        for tag in monitored:
            if tag in GPS_GROUP_TAGS:
                continue
            old, new = original.get(tag), proposed.get(tag)
            if differs(old, new, tag):
                change_set.add(tag, FORCE_TIERS[tag])
                change_set.messages.append(describe(tag, old, new))

        if can_change:
            self._detect_position(change_set, original, proposed)

        # A version bump alone is not worth rewriting a file.
        old_version = original.get(VERSION_TAG)
        if change_set.tags == [VERSION_TAG] and old_version is not None:
            change_set.changes.clear()
            change_set.min_force = NO_CHANGE
            change_set.messages.clear()
            proposed.set(VERSION_TAG, old_version, proposed.preferred_group(VERSION_TAG) or "XMP")

        if change_set.changes:
            change_set.state = ChangeState.NEEDS_FORCE
        return change_set

    def _detect_position(self, change_set: ChangeSet, original: AttributeSet, proposed: AttributeSet):
        old_position = [original.get(tag) for tag in POSITION_TAGS]
        new_position = [proposed.get(tag) for tag in POSITION_TAGS]
        old_count = sum(value is not None for value in old_position[:2])
        new_count = sum(value is not None for value in new_position[:2])

        changed = True
        distance = geo_distance(old_position, new_position)
        if distance is not None:
            if distance < POSITION_NOISE_FLOOR:
                changed = False
            else:
                change_set.position_change = distance
                change_set.messages.append(f"Position changed by {distance:.2f} m")
        elif old_count == 2:
            # The whole group goes rather than leaving a position without its time.
            change_set.messages.append("Position has disappeared")
            for tag in GPS_GROUP_TAGS:
                proposed.delete(tag)
        elif new_count:
            change_set.messages.append("New position")
        elif old_count == 0:
            # Some devices log an altitude without coordinates.
            if old_position[2] is not None or new_position[2] is not None:
                change_set.messages.append("Dropping solitary altitude")
            proposed.delete("GPSAltitude")
        else:
            change_set.messages.append("Position is incomplete, dropping it")
            for tag in GPS_GROUP_TAGS:
                proposed.delete(tag)

        if not changed:
            return
        old_source = original.get(TIME_SOURCE)
        tier = MAX_FORCE if old_source is None or old_source == GPS_SOURCE else 0
        for tag in GPS_GROUP_TAGS:
            if differs(original.get(tag), proposed.get(tag)):
                change_set.add(tag, tier)

    def authorize(self, change_set: ChangeSet, explicit_override: bool = False) -> ChangeSet:
        if not change_set.changes:
            change_set.state = ChangeState.NO_CHANGE
        elif explicit_override or self.force >= change_set.min_force:
            change_set.state = ChangeState.AUTHORIZED
        else:
            change_set.state = ChangeState.SUPPRESSED
            change_set.messages.append(f"Needs {' '.join(['--force'] * change_set.min_force)} to apply")
        return change_set
