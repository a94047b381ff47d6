import os
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

# --- Configuration ---
CONFIG = {
    "EXIFTOOL_PATH": "exiftool",
    "BATCH_SIZE": 100,
    "LOG_FILE": "photosync.log",
    "OFFSETS_FILENAME": ".photosync-offsets.db",
    "GPX_EXPORT_FILENAME": "export.gpx",
    "BACKUP_SUFFIX": "_original",
    "MEDIA_EXTENSIONS": (
        '.jpg', '.jpeg', '.png', '.tif', '.tiff', '.heic', '.dng', '.cr2', '.nef', '.arw',
        '.mp4', '.mov', '.avi', '.mts', '.3gp',
        '.gpx', '.yaml', '.yml', '.json',
    ),
}
# --- End Configuration ---


@dataclass
class SyncOptions:
    """Everything a run is configured with, filled from the command line."""
    force: int = 0
    modify: bool = False
    unsafe: bool = False
    relative_file_time: bool = False
    local_zone: Optional[tzinfo] = None
    offsets_path: Optional[str] = None
    export_gpx: Optional[str] = None
    log_file: str = CONFIG["LOG_FILE"]
    verbose: bool = False
    restore_originals: bool = False
    delete_backups: bool = False
    remove_tags: bool = False
    times: Dict[str, str] = field(default_factory=dict)
    locations: Dict[str, str] = field(default_factory=dict)
    camera_ids: Dict[str, str] = field(default_factory=dict)
    summertime: List[str] = field(default_factory=list)
    wintertime: List[str] = field(default_factory=list)


def load_zone(name: Optional[str]) -> Optional[tzinfo]:
    """The zone used for 'local' times; None means the system zone."""
    if not name:
        return None
    return ZoneInfo(name)


def default_offsets_path(cwd: Optional[str] = None, home: Optional[str] = None) -> str:
    """
    Where camera offsets are kept when no path is given: an existing file in the
    working directory wins over the one in the home directory.
    """
    local = os.path.join(cwd or os.getcwd(), CONFIG["OFFSETS_FILENAME"])
    if os.path.exists(local):
        return local
    return os.path.join(home or os.path.expanduser("~"), CONFIG["OFFSETS_FILENAME"])
