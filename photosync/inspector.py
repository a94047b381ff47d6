import logging
import os
import re
from datetime import datetime, tzinfo
from typing import Any, Dict, Iterable, Optional

import yaml
from tqdm import tqdm

from photosync.attributes import AttributeSet
from photosync.backend import MetadataBackend
from photosync.camera_offsets import UTC_SUFFIX
from photosync.donors import basename_pattern, get_image_number
from photosync.engine import FileFacts, FileRecord
from photosync.tags import CAMERA_ID, GPS_GROUP_TAGS, POSITION_TAGS, TIME_TAGS
from photosync.timestamp import Timestamp

logger = logging.getLogger(__name__)

# --- Configuration ---
CONFIG = {
    "METADATA_FILE_SUFFIXES": (".yaml", ".yml", ".json"),
    # Tag sources for the parts of a camera id, first present wins.
    "CAMERA_ID_TAGS": {
        "Make": ("Make", "QuickTime:AndroidManufacturer"),
        "Model": ("Model", "QuickTime:AndroidModel"),
        "SerialNumber": ("SerialNumber",),
    },
}
# --- End Configuration ---

_ZERO_DATE_RE = re.compile(r"^[0:\s]*$")
_NEGATIVE_REF = {"GPSLatitude": "S", "GPSLongitude": "W", "GPSAltitude": "1"}


def fallback_camera_id(path: str) -> str:
    """The camera id used when a file says nothing about its camera: the shape of its name."""
    return "?" + basename_pattern(path)


def _split_key(key: str):
    group, _, tag = key.rpartition(":")
    return group, tag


def _time_value(path: str, key: str, value: Any) -> Optional[Timestamp]:
    timestamp = Timestamp.parse(value)
    if timestamp is None and not _ZERO_DATE_RE.match(str(value)):
        logger.warning(f"{path}: cannot parse {key} '{value}', ignoring it")
    return timestamp


def attributes_from_tags(path: str, raw: Dict[str, Any], default_group: str = "") -> AttributeSet:
    """Converts a 'Group:Tag' -> value map (exiftool -G -json output) into an AttributeSet."""
    info = AttributeSet()
    for key, value in sorted(raw.items()):
        if key == "SourceFile" or value is None or value == "":
            continue
        group, tag = _split_key(key)
        group = group or default_group
        if tag in TIME_TAGS or tag == "CreationDate":
            value = _time_value(path, key, value)
        info.set(tag, value, group)
    return info


def _resolve_gps(info: AttributeSet):
    """Stores signed GPS values in the preferred group."""
    for tag in POSITION_TAGS:
        for group in ("Composite", "XMP"):
            # XMP altitudes carry no sign.
            if tag == "GPSAltitude" and group == "XMP":
                continue
            value = info.get_from(group, tag)
            if value is not None:
                info.set(tag, float(value))
                break
        if info.get_from("", tag) is not None:
            continue
        for group in info.groups(tag):
            value, ref = info.get_from(group, tag), info.get_from(group, tag + "Ref")
            if value is not None and ref is not None:
                value = float(value)
                if str(ref) == _NEGATIVE_REF[tag]:
                    value = -value
                info.set(tag, value)
                break


def is_supposedly_utc(info: AttributeSet) -> bool:
    """QuickTime creation times are meant to be UTC (but often are not)."""
    return info.get_from("QuickTime", "CreateDate") is not None


def camera_id(info: AttributeSet) -> Optional[str]:
    """Builds 'Make|Model|SerialNumber' (plus '|U' for UTC sources); None without any part."""
    parts = []
    for sources in CONFIG["CAMERA_ID_TAGS"].values():
        value = None
        for source in sources:
            group, tag = _split_key(source)
            value = info.get_from(group, tag) if group else info.get(tag)
            if value is not None:
                break
        parts.append("" if value is None else str(value))
    if not any(parts):
        return None
    camera = "|".join(parts)
    if is_supposedly_utc(info):
        camera += UTC_SUFFIX
    return camera


def _drop_partial_gps(path: str, info: AttributeSet):
    present = [tag for tag in ("GPSDateTime", "GPSLatitude", "GPSLongitude") if info.get(tag) is not None]
    if 0 < len(present) < 3:
        logger.warning(f"{path}: has only {', '.join(present)} of the GPS tags, ignoring its GPS information")
        for tag in GPS_GROUP_TAGS:
            info.delete(tag)


def enhance(path: str, info: AttributeSet, facts: FileFacts, force: int = 0):
    """Derives the camera ids and drops GPS information that is incomplete."""
    _drop_partial_gps(path, info)
    facts.supposedly_utc = is_supposedly_utc(info)

    embedded = info.get(CAMERA_ID)
    camera = embedded if embedded is not None and not force else camera_id(info)
    facts.fallback_camera_id = fallback_camera_id(path)
    if camera == facts.fallback_camera_id:
        camera = None
    facts.camera_id = camera


def read_metadata_file(path: str) -> Optional[AttributeSet]:
    """
    Reads a YAML or JSON sidecar holding tags as written by 'exiftool -G -n -j'.
    Tags without a group go into the 'YAML' group. Returns None when the file
    does not hold a tag map.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"{path}: cannot read metadata file: {e}")
        return None
    if isinstance(data, list) and len(data) == 1:
        data = data[0]
    if not isinstance(data, dict):
        return None
    info = attributes_from_tags(path, {str(k): v for k, v in data.items()}, default_group="YAML")
    return info if info.tags() else None


def _file_modify_date(path: str, zone: Optional[tzinfo]) -> Optional[Timestamp]:
    try:
        mtime = os.stat(path).st_mtime
    except OSError:
        return None
    moment = datetime.fromtimestamp(mtime, tz=zone) if zone is not None else datetime.fromtimestamp(mtime).astimezone()
    return Timestamp.from_datetime(moment)


def inspect_file(path: str, raw: Dict[str, Any], force: int = 0, zone: Optional[tzinfo] = None) -> FileRecord:
    """Builds the record of one file from its extracted tags (and its contents, for sidecars)."""
    info = attributes_from_tags(path, raw)
    facts = FileFacts(
        file_type=raw.get("File:MIMEType"),
        image_number=get_image_number(path),
        file_size=int(raw.get("File:FileSize") or 0),
    )

    if info.get_from("File", "FileModifyDate") is None:
        info.set("FileModifyDate", _file_modify_date(path, zone), "File")

    if not facts.can_change and path.lower().endswith(CONFIG["METADATA_FILE_SUFFIXES"]):
        metadata = read_metadata_file(path)
        if metadata is not None:
            facts.is_metadata = True
            logger.info(f"{path}: is a metadata file")
            for group, tag, value in metadata.items():
                if info.get_from(group, tag) is None:
                    info.set(tag, value, group)

    _resolve_gps(info)

    if is_supposedly_utc(info):
        creation = info.get_from("QuickTime", "CreationDate")
        if creation is not None and creation.has_timezone_offset:
            info.set("CreateDate", creation, "QuickTime")
            info.delete("CreationDate", "QuickTime")
        if info.get("GPSLongitude") is not None and info.get("GPSDateTime") is None:
            info.set("GPSDateTime", info.get_from("QuickTime", "CreateDate").adjusted_to_utc())

    if info.get("CreateDate") is None and info.get_from("RIFF", "DateTimeOriginal") is not None:
        info.set("CreateDate", info.get_from("RIFF", "DateTimeOriginal"))

    if facts.can_change or facts.is_metadata:
        enhance(path, info, facts, force)
    return FileRecord(path, info, facts)


def inspect_files(paths: Iterable[str], backend: MetadataBackend, force: int = 0,
                  zone: Optional[tzinfo] = None) -> Dict[str, FileRecord]:
    """Extracts and interprets the metadata of all files. Nothing is modified."""
    paths = list(paths)
    records = {}
    extracted = backend.extract(paths)
    for path, raw in tqdm(zip(paths, extracted), total=len(paths), desc="Inspecting", unit="file"):
        record = inspect_file(path, raw, force, zone)
        logger.debug(f"{path}:\n{record.original.stringify('    ')}")
        records[path] = record

    with_gps = sum(1 for r in records.values() if r.original.get("GPSDateTime") is not None)
    logger.info(f"Inspected {len(records)} file(s), {with_gps} with a GPS timestamp")
    return records
