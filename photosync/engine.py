import abc
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from photosync.attributes import AttributeSet
from photosync.camera_offsets import CameraOffsetStore
from photosync.changes import NO_CHANGE, ChangeClassifier, ChangeState, differs
from photosync.config import SyncOptions
from photosync.donors import DonorSelector
from photosync.gps_index import GpsTrackIndex, scope_for_file
from photosync.overrides import Overrides
from photosync.tags import (CAMERA_ID, COPIED_TAGS, GPS_GROUP_TAGS, GPS_SOURCE, OTHER_SOURCE, OWN_TAGS,
                            POSITION_TAGS, TIME_SOURCE, USER_SOURCE, VERSION, VERSION_TAG)
from photosync.timestamp import Timestamp, apply_offset, deduce_offset

logger = logging.getLogger(__name__)

# Groups whose timestamps say nothing about when the picture was taken.
UNTRUSTED_TIME_GROUPS = {"File"}


# --- Records ---

@dataclass
class FileFacts:
    """What inspection learned about a file besides its tags."""
    file_type: Optional[str] = None
    camera_id: Optional[str] = None
    fallback_camera_id: Optional[str] = None
    is_metadata: bool = False
    supposedly_utc: bool = False
    image_number: Optional[int] = None
    file_size: int = 0

    @property
    def can_change(self) -> bool:
        """Only images and movies get their embedded tags rewritten."""
        return bool(self.file_type) and self.file_type.split("/")[0] in ("image", "video")


@dataclass
class FileExtra:
    force_required: int = NO_CHANGE
    suppressed: bool = False
    change_tags: Dict[str, int] = field(default_factory=dict)
    time_source_letter: str = ""
    explicit_override: bool = False
    needs_modification: bool = False
    position_change: Optional[float] = None
    messages: List[str] = field(default_factory=list)
    status: Optional[str] = None


@dataclass
class FileRecord:
    path: str
    original: AttributeSet
    facts: FileFacts = field(default_factory=FileFacts)
    proposed: Optional[AttributeSet] = None
    extra: FileExtra = field(default_factory=FileExtra)


class RunAccumulator:
    """
    State that carries over from one file to the next within a run: the learned
    camera offsets and which camera ids have been seen. Later files depend on what
    earlier files taught it, so files must be fed in a fixed order.
    """

    def __init__(self, camera_offsets: Optional[CameraOffsetStore] = None):
        self.camera_offsets = camera_offsets if camera_offsets is not None else CameraOffsetStore()
        self.camera_ids_used: Set[str] = set()
        self.fallback_counts: Dict[str, Dict[str, int]] = {}

    def count_fallback(self, fallback_camera_id: Optional[str], camera_id: Optional[str]):
        if fallback_camera_id and camera_id:
            counts = self.fallback_counts.setdefault(fallback_camera_id, {})
            counts[camera_id] = counts.get(camera_id, 0) + 1

    def camera_id_from_fallback(self, fallback_camera_id: Optional[str]) -> Optional[str]:
        """The camera most often seen behind a file name pattern (or the pattern itself)."""
        counts = self.fallback_counts.get(fallback_camera_id or "")
        if not counts:
            return fallback_camera_id
        return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[0][0]


@dataclass
class RunResult:
    records: Dict[str, FileRecord]
    modified: int = 0
    needs_force: Dict[int, int] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)


# --- Per-file context and steps ---

class ReconciliationContext:
    """Holds the state while the proposed values of one file are worked out."""

    def __init__(self, record: FileRecord, donors: List[FileRecord], accumulator: RunAccumulator,
                 options: SyncOptions, overrides: Overrides, gps_index: GpsTrackIndex):
        self.record = record
        self.path = record.path
        self.original = record.original
        self.facts = record.facts
        self.proposed = AttributeSet()
        self.donors = donors
        self.accumulator = accumulator
        self.options = options
        self.overrides = overrides
        self.gps_index = gps_index

        self.camera_id: Optional[str] = None
        self.create_time: Optional[Timestamp] = None
        self.target_time: Optional[Timestamp] = None
        self.letter = ""
        self.source: Optional[str] = None
        self.explicit_override = False

    @property
    def can_change(self) -> bool:
        return self.facts.can_change

    @property
    def offsets(self) -> CameraOffsetStore:
        return self.accumulator.camera_offsets

    def from_donors(self, tag: str) -> Any:
        """The value a donor settled on, best donor first."""
        for donor in self.donors:
            if donor.proposed is None:
                continue
            value = donor.proposed.get(tag)
            if value is not None:
                return value
        return None

    def note(self, message: str):
        self.record.extra.messages.append(message)


class ReconciliationStep(abc.ABC):
    """A single step in working out a file's proposed values."""

    @abc.abstractmethod
    def process(self, context: ReconciliationContext):
        pass


class CopyOriginalValuesStep(ReconciliationStep):
    """Starts from independent copies of the preferred original values."""

    def process(self, context: ReconciliationContext):
        for tag in COPIED_TAGS:
            value = context.original.get(tag)
            if value is not None:
                context.proposed.set(tag, value.clone() if isinstance(value, Timestamp) else value)


class MetadataDonorStep(ReconciliationStep):
    """A metadata sidecar that is the best donor overrides what the file itself says."""

    def process(self, context: ReconciliationContext):
        if not context.can_change or not context.donors or not context.donors[0].facts.is_metadata:
            return
        sidecar = context.donors[0]
        for tag in COPIED_TAGS:
            current = context.proposed.get(tag)
            value = sidecar.original.get(tag)
            if current is not None and differs(current, value):
                context.proposed.set(tag, value)
                context.note(f"{tag} taken from '{sidecar.path}'")


class CameraIdStep(ReconciliationStep):
    def process(self, context: ReconciliationContext):
        camera_id = context.overrides.camera_ids.get(context.path)
        if camera_id:
            context.explicit_override = True
        else:
            camera_id = context.facts.camera_id or context.from_donors(CAMERA_ID)
        if not camera_id:
            camera_id = context.accumulator.camera_id_from_fallback(context.facts.fallback_camera_id)
        context.camera_id = camera_id or None
        context.proposed.set(CAMERA_ID, context.camera_id)


class CreateTimeStep(ReconciliationStep):
    def process(self, context: ReconciliationContext):
        context.create_time = context.proposed.get("CreateDate")
        if context.create_time is None:
            context.create_time = context.from_donors("CreateDate")
            if context.create_time is not None:
                context.letter = "n"
                context.source = OTHER_SOURCE


class TargetTimeStep(ReconciliationStep):
    """
    Picks the time the file was really taken, trying in order: an explicit override,
    the creation time corrected by the learned camera offset, the embedded original
    time, a donor's original time, the embedded creation time and a donor's file time.
    """

    def process(self, context: ReconciliationContext):
        target = context.overrides.times.get(context.path)
        if target is not None:
            context.explicit_override = True
            self._found(context, target, "t", USER_SOURCE)
            return

        if context.camera_id and context.create_time is not None:
            offset = context.offsets.get(context.camera_id, context.create_time)
            if offset is not None:
                self._found(context, apply_offset(context.create_time, offset), "s", OTHER_SOURCE)
                return

        candidates = [
            (lambda: context.proposed.get("DateTimeOriginal"), "o"),
            (lambda: context.from_donors("DateTimeOriginal"), "n"),
            (lambda: context.proposed.get("CreateDate"), "c"),
            (lambda: context.from_donors("FileModifyDate"), "n"),
        ]
        for lookup, letter in candidates:
            value = lookup()
            if value is not None:
                self._found(context, value, letter, context.source)
                return

    @staticmethod
    def _found(context: ReconciliationContext, target: Timestamp, letter: str, source: Optional[str]):
        # A creation time borrowed from a donor already decided the letter and source.
        context.target_time = target.clone()
        context.letter = context.letter or letter
        context.source = context.source or source


class TimezoneStep(ReconciliationStep):
    """Puts the target time in the camera's zone (or the local zone) and applies time jumps."""

    def process(self, context: ReconciliationContext):
        target = context.target_time
        if target is None:
            return
        context.source = context.source or OTHER_SOURCE

        reference = context.create_time if context.create_time is not None else target
        offset = context.offsets.get(context.camera_id, reference)
        if offset is not None:
            target = target.adjusted_to_timezone(offset.timezone_offset)
        else:
            target = target.adjusted_to_local_timezone(context.options.local_zone)

        jump = context.overrides.jumps.get(context.path)
        if jump:
            context.note(f"Time jumped {jump:+d} hour(s)")
            target = target + jump * 3600
        context.target_time = target


class TimeValuesStep(ReconciliationStep):
    def process(self, context: ReconciliationContext):
        target = context.target_time
        context.record.extra.time_source_letter = context.letter
        if target is None:
            return
        if context.can_change:
            context.proposed.set("DateTimeOriginal", target)
            context.proposed.set(TIME_SOURCE, context.source)
        context.proposed.set("FileModifyDate", self.file_time(target, context.options))

    @staticmethod
    def file_time(target: Timestamp, options: SyncOptions) -> Timestamp:
        """
        The file modification time for a target time. With relative file times the
        clock reading is kept and read in the local zone.
        """
        if options.relative_file_time:
            return target.without_timezone().adjusted_to_local_timezone(options.local_zone)
        return target


class OffsetFeedbackStep(ReconciliationStep):
    """Learns the camera offset from this file for the files that come after it."""

    def process(self, context: ReconciliationContext):
        create, target = context.create_time, context.target_time
        if context.letter == "n" or create is None or target is None or not context.camera_id:
            return
        # Read in the target's zone, the camera time makes the offset carry that zone.
        offset = deduce_offset(create.adjusted_to_timezone(target.timezone_offset), target)
        context.offsets.set(context.camera_id, create, offset)
        logger.debug(f"{context.path}: camera '{context.camera_id}' offset {offset} at {create}")


class LocationStep(ReconciliationStep):
    """
    Sets the position from an override or from the GPS tracks. A position the device
    recorded itself is only replaced by track data at force level 2.
    """

    def process(self, context: ReconciliationContext):
        target = context.target_time
        if target is None or not context.can_change:
            return

        position = context.overrides.locations.get(context.path)
        if position is not None:
            context.explicit_override = True
        elif self._may_use_tracks(context):
            fixes = context.gps_index.position_for(target, scope_for_file(context.path))
            if fixes:
                position = fixes[0].position
                context.note(f"Position from track '{fixes[0].track_id}'")

        if position is None:
            return
        if not position:
            for tag in GPS_GROUP_TAGS:
                context.proposed.delete(tag)
            return

        for tag, value in zip(POSITION_TAGS, position):
            old = context.original.get(tag)
            if value is not None and (old is None or value != old):
                context.proposed.set(tag, value)
        old_time = context.original.get("GPSDateTime")
        if old_time is None or target != old_time:
            context.proposed.set("GPSDateTime", target)

    @staticmethod
    def _may_use_tracks(context: ReconciliationContext) -> bool:
        if context.original.get("GPSDateTime") is None:
            return True
        if (context.original.get(TIME_SOURCE) or GPS_SOURCE) != GPS_SOURCE:
            return True
        return context.options.force >= 2


class FinalizeStep(ReconciliationStep):
    """Moves own tags into their namespace and mirrors the original time into XMP."""

    def process(self, context: ReconciliationContext):
        if not context.can_change:
            return
        proposed = context.proposed
        if proposed.get("DateTimeOriginal") is None:
            proposed.set("DateTimeOriginal", proposed.get("FileModifyDate"))
        proposed.set(VERSION_TAG, VERSION)

        for tag in OWN_TAGS:
            value = proposed.get(tag)
            if value is not None:
                proposed.delete(tag)
                proposed.set(tag, value, "XMP")

        dto = proposed.get("DateTimeOriginal")
        if dto is None:
            return
        proposed.set("DateTimeOriginal", dto, "XMP")
        old_dto = context.original.get("DateTimeOriginal")
        if old_dto is not None and not old_dto.has_timezone_offset:
            proposed.set("DateTimeOriginal", dto.without_timezone())


class ReconciliationPipeline:
    def __init__(self, steps: List[ReconciliationStep]):
        self.steps = steps

    @classmethod
    def get_default_pipeline(cls) -> "ReconciliationPipeline":
        steps: List[ReconciliationStep] = [
            CopyOriginalValuesStep(),
            MetadataDonorStep(),
            CameraIdStep(),
            CreateTimeStep(),
            TargetTimeStep(),
            TimezoneStep(),
            TimeValuesStep(),
            OffsetFeedbackStep(),
            LocationStep(),
            FinalizeStep(),
        ]
        return cls(steps)

    def run(self, context: ReconciliationContext) -> ReconciliationContext:
        for step in self.steps:
            step.process(context)
        return context


# --- The batch orchestrator ---

class ReconciliationEngine:
    """
    Works out proposed values for a batch of files in two passes.

    The first pass handles files with a usable timestamp of their own and learns
    camera offsets as it goes; the second pass handles files that can only borrow a
    timestamp from a sibling with the same image number. Files are processed in
    path order so the learned offsets are reproducible. Running files in parallel
    would need the offset feedback to be decoupled first.
    """

    def __init__(self, options: SyncOptions, overrides: Optional[Overrides] = None,
                 gps_index: Optional[GpsTrackIndex] = None,
                 pipeline: Optional[ReconciliationPipeline] = None):
        self.options = options
        self.overrides = overrides or Overrides()
        self.gps_index = gps_index or GpsTrackIndex()
        self.pipeline = pipeline or ReconciliationPipeline.get_default_pipeline()
        self.classifier = ChangeClassifier(options.force)

    def has_useful_timestamp(self, record: FileRecord) -> bool:
        if record.path in self.overrides.times:
            return True
        for tag in ("CreateDate", "DateTimeOriginal", "GPSDateTime"):
            group, value = record.original.get_context(tag)
            if value is not None and group not in UNTRUSTED_TIME_GROUPS:
                return True
        return False

    def run(self, records: Dict[str, FileRecord], accumulator: RunAccumulator, progress=None) -> RunResult:
        result = RunResult(records)
        for record in records.values():
            accumulator.count_fallback(record.facts.fallback_camera_id, record.facts.camera_id)

        selector = DonorSelector({p for p, r in records.items() if r.facts.is_metadata})
        paths = sorted(records)
        first_pass = [p for p in paths if self.has_useful_timestamp(records[p])]
        deferred = [p for p in paths if p not in set(first_pass) and records[p].facts.image_number is not None]

        for path in paths:
            if path not in first_pass and records[path].facts.image_number is None:
                self._skip(result, path, "no usable timestamp and no image number", progress)

        registered: Dict[int, List[str]] = {}
        for path in first_pass:
            # Only files already seen in this pass can donate.
            number = records[path].facts.image_number
            if number is not None:
                registered.setdefault(number, []).append(path)
            donors = self._donors(records, selector, registered, path)
            self.process_file(records[path], donors, accumulator, result)
            if progress is not None:
                progress.update(1)

        for path in deferred:
            number = records[path].facts.image_number
            if not registered.get(number):
                self._skip(result, path, f"no file with a timestamp shares image number {number}", progress)
                continue
            donors = self._donors(records, selector, registered, path)
            self.process_file(records[path], donors, accumulator, result)
            if progress is not None:
                progress.update(1)

        logger.info(f"{result.modified} file(s) need modification")
        for level in sorted(result.needs_force):
            logger.info(f"{result.needs_force[level]} file(s) need {' '.join(['--force'] * level)}")
        return result

    @staticmethod
    def _donors(records: Dict[str, FileRecord], selector: DonorSelector,
                registered: Dict[int, List[str]], path: str) -> List[FileRecord]:
        number = records[path].facts.image_number
        if number is None:
            return []
        return [records[p] for p in selector.rank(path, registered.get(number, []))]

    @staticmethod
    def _skip(result: RunResult, path: str, reason: str, progress):
        logger.info(f"{path}: skipped, {reason}")
        result.skipped.append(path)
        if progress is not None:
            progress.update(1)

    def process_file(self, record: FileRecord, donors: List[FileRecord], accumulator: RunAccumulator,
                     result: Optional[RunResult] = None) -> ChangeState:
        """Determines the proposed values of one file and classifies its changes."""
        context = ReconciliationContext(record, donors, accumulator, self.options, self.overrides, self.gps_index)
        self.pipeline.run(context)
        record.proposed = context.proposed

        extra = record.extra
        extra.explicit_override = context.explicit_override
        change_set = self.classifier.classify(record.path, record.original, record.proposed,
                                              record.facts.can_change, context.explicit_override)
        extra.change_tags = dict(change_set.changes)
        extra.position_change = change_set.position_change
        extra.messages.extend(change_set.messages)
        extra.needs_modification = change_set.authorized
        extra.suppressed = change_set.state == ChangeState.SUPPRESSED
        extra.force_required = change_set.min_force

        camera_id = record.proposed.get(CAMERA_ID) or context.camera_id
        if camera_id:
            accumulator.camera_ids_used.add(camera_id)

        if result is not None:
            if extra.needs_modification:
                result.modified += 1
            elif extra.suppressed:
                result.needs_force[extra.force_required] = result.needs_force.get(extra.force_required, 0) + 1

        level = logging.INFO if change_set.changes else logging.DEBUG
        logger.log(level, f"{record.path}: {change_set.state.name.lower()}"
                          + "".join(f"\n    - {message}" for message in extra.messages))
        return change_set.state
