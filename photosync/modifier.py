import logging
import os
import shutil
from enum import Enum, auto
from typing import Dict, Iterable, List, Optional

import yaml
from tqdm import tqdm

from photosync.attributes import AttributeSet
from photosync.backend import CommitStatus, MetadataBackend
from photosync.changes import ChangeClassifier
from photosync.config import CONFIG
from photosync.engine import FileRecord
from photosync.inspector import read_metadata_file
from photosync.tags import GPS_SOURCE, OWN_NAMESPACE, OWN_TAGS, TIME_SOURCE
from photosync.timestamp import Timestamp
from photosync.write_arguments import argument_for, removal_for

logger = logging.getLogger(__name__)

# Physical tags that hold the position; removed along with the own tags when the
# position did not come from the device.
GPS_PHYSICAL_TAGS = (
    "GPSAltitude", "GPSAltitudeRef", "GPSDateStamp", "GPSDateTime", "GPSLatitude",
    "GPSLatitudeRef", "GPSLongitude", "GPSLongitudeRef", "GPSTimeStamp",
)


class ModifyStatus(Enum):
    """What happened to a file in the apply phase."""
    NOT_NEEDED = auto()
    WRITTEN = auto()
    WRITTEN_NO_CHANGE = auto()
    NO_BACKUP = auto()
    SIDECAR_WRITTEN = auto()
    FAILED = auto()


def backup_path(path: str) -> str:
    return path + CONFIG["BACKUP_SUFFIX"]


def ensure_backup(path: str) -> bool:
    """Copies `path` to its backup unless a backup exists already."""
    copy = backup_path(path)
    if os.path.exists(copy):
        logger.debug(f"{path}: backup '{os.path.basename(copy)}' already exists")
        return True
    try:
        shutil.copy2(path, copy)
    except OSError as e:
        logger.error(f"{path}: creating backup '{os.path.basename(copy)}' failed: {e}")
        return False
    logger.debug(f"{path}: created backup '{os.path.basename(copy)}'")
    return True


def sidecar_values(values: AttributeSet) -> Dict[str, str]:
    """The flat 'Group:Tag' -> text map written to sidecar files."""
    exported = {}
    for group, tag, value in values.items():
        exported[f"{group}:{tag}" if group else tag] = value if isinstance(value, (int, float)) else str(value)
    return exported


def write_sidecar(record: FileRecord) -> ModifyStatus:
    """
    Writes the proposed values to '<file>.yaml' when the file itself cannot be
    written. Only touches the sidecar if its contents would change.
    """
    sidecar = record.path + ".yaml"
    old = read_metadata_file(sidecar) if os.path.exists(sidecar) else None
    change_set = ChangeClassifier(0).detect(sidecar, old or AttributeSet(), record.proposed.clone())
    if not change_set.changes:
        return ModifyStatus.FAILED

    if change_set.tags != ["FileModifyDate"]:
        try:
            with open(sidecar, 'w', encoding='utf-8') as f:
                yaml.safe_dump(sidecar_values(record.proposed), f, default_flow_style=False, sort_keys=True)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"{record.path}: writing metadata to '{sidecar}' failed: {e}")
            return ModifyStatus.FAILED
        logger.warning(f"{record.path}: wrote metadata to '{sidecar}' instead")

    file_time = record.proposed.get("FileModifyDate")
    if file_time is not None:
        os.utime(sidecar, (os.stat(sidecar).st_atime, file_time.time_utc))
    return ModifyStatus.SIDECAR_WRITTEN


def modify_file(record: FileRecord, backend: MetadataBackend, unsafe: bool = False) -> ModifyStatus:
    """
    Applies the authorized changes of one file: backs it up, stages every changed
    tag, commits, and sets the file time. The staging area is always left empty.
    """
    extra = record.extra
    if not extra.needs_modification or not extra.change_tags:
        return ModifyStatus.NOT_NEEDED

    path = record.path
    logger.info(f"{path}: modifying ({record.facts.file_size} bytes)")
    if not unsafe and not ensure_backup(path):
        logger.error(f"{path}: no backup, not modified")
        return ModifyStatus.NO_BACKUP

    status = ModifyStatus.WRITTEN_NO_CHANGE
    try:
        staged = False
        for tag in sorted(extra.change_tags):
            if tag == "FileModifyDate":
                continue
            value = record.proposed.get(tag)
            argument = argument_for(tag, record.proposed) if value is not None else removal_for(tag)
            for physical, text in argument.writes().items():
                backend.stage(physical, text)
                staged = True
                logger.debug(f"{path}: " + (f"set {physical} to '{text}'" if text is not None else f"remove {physical}"))

        if staged:
            result = backend.commit(path)
            if result == CommitStatus.FAILED:
                logger.error(f"{path}: writing failed: {getattr(backend, 'last_error', '') or 'unknown error'}")
                return write_sidecar(record)
            if result == CommitStatus.WRITTEN_NO_CHANGE:
                logger.warning(f"{path}: written but no changes made")
            else:
                status = ModifyStatus.WRITTEN
    finally:
        backend.discard_staged()

    file_time: Optional[Timestamp] = record.proposed.get("FileModifyDate")
    if file_time is not None and file_time.has_timezone_offset:
        try:
            backend.set_file_time(path, file_time)
            status = ModifyStatus.WRITTEN
        except OSError as e:
            logger.warning(f"{path}: error setting the file time to '{file_time}': {e}")
    return status


def modify_files(records: Iterable[FileRecord], backend: MetadataBackend, unsafe: bool = False) -> Dict[str, ModifyStatus]:
    """Applies the changes of every file that needs them, in path order."""
    todo = [r for r in records if r.extra.needs_modification]
    results = {}
    with tqdm(total=sum(r.facts.file_size for r in todo), desc="Modifying", unit="B",
              unit_scale=True, unit_divisor=1024) as pbar:
        for record in sorted(todo, key=lambda r: r.path):
            status = modify_file(record, backend, unsafe)
            record.extra.status = status.name
            results[record.path] = status
            pbar.update(record.facts.file_size)
            pbar.set_postfix(failed=sum(1 for s in results.values() if s in (ModifyStatus.FAILED, ModifyStatus.NO_BACKUP)))
    return results


# --- Maintenance actions ---

def restore_original_files(paths: Iterable[str]) -> int:
    """Moves every backup 'F_original' back over 'F'. Returns the number restored."""
    count = 0
    suffix = CONFIG["BACKUP_SUFFIX"]
    for copy in sorted(p for p in paths if p.endswith(suffix)):
        target = copy[:-len(suffix)]
        try:
            os.replace(copy, target)
        except OSError as e:
            logger.error(f"{copy}: could not restore to '{target}': {e}")
            continue
        logger.info(f"Restored '{target}' from '{os.path.basename(copy)}'")
        count += 1
    return count


def delete_backups(paths: Iterable[str]) -> int:
    """Deletes every backup 'F_original'. Returns the number deleted."""
    count = 0
    for copy in sorted(p for p in paths if p.endswith(CONFIG["BACKUP_SUFFIX"])):
        try:
            os.remove(copy)
        except OSError as e:
            logger.error(f"{copy}: could not delete: {e}")
            continue
        logger.info(f"Deleted backup '{copy}'")
        count += 1
    return count


def remove_own_tags(records: Iterable[FileRecord], backend: MetadataBackend) -> int:
    """
    Removes the tags this tool invented from every file that has a timestamp of its
    own. The position goes too, unless it came from the device. The file time is
    kept. Returns the number of files written.
    """
    count = 0
    for record in records:
        original = record.original
        if not record.facts.can_change:
            continue
        removals: List[str] = [f"XMP-{OWN_NAMESPACE}:{tag}" for tag in OWN_TAGS if original.get(tag) is not None]
        if original.get(TIME_SOURCE) not in (None, GPS_SOURCE):
            removals.extend(tag for tag in GPS_PHYSICAL_TAGS if original.has(tag))
        if not removals:
            continue
        try:
            for tag in removals:
                backend.stage(tag, None)
            status = backend.commit(record.path)
        finally:
            backend.discard_staged()
        if status == CommitStatus.FAILED:
            logger.warning(f"{record.path}: removing own tags failed: {getattr(backend, 'last_error', '')}")
            continue
        file_time = original.get_from("File", "FileModifyDate")
        if file_time is not None and file_time.has_timezone_offset:
            backend.set_file_time(record.path, file_time)
        count += 1
        logger.info(f"{record.path}: removed {', '.join(removals)}")
    return count
