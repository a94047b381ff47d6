import argparse
import logging
import os
import shutil
import sys
from typing import Dict, List, Optional, Sequence

from tqdm import tqdm

from photosync.backend import ExifToolBackend, MetadataBackend
from photosync.camera_offsets import CameraOffsetsError, CameraOffsetStore
from photosync.config import CONFIG, SyncOptions, default_offsets_path, load_zone
from photosync.engine import ReconciliationEngine, RunAccumulator
from photosync.gps_index import GpsTrackIndex
from photosync.gpx import export_gpx, is_gpx_file, read_gpx_tracks
from photosync.inspector import inspect_files
from photosync.modifier import delete_backups, modify_files, remove_own_tags, restore_original_files
from photosync.offset_storage import load_camera_offsets, save_camera_offsets
from photosync.overrides import OverrideError, resolve_overrides
from photosync.report import build_report, print_summary

logger = logging.getLogger("photosync")


def setup_logging(log_path: str, verbose: bool = False) -> logging.Logger:
    """Logs everything to a file and warnings (or, verbose, everything) to the console."""
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    fh = logging.FileHandler(log_path, mode='w', encoding='utf-8')
    fh.setLevel(logging.DEBUG if verbose else logging.INFO)
    fh.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setLevel(logging.INFO if verbose else logging.WARNING)
    sh.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    logger.addHandler(sh)
    return logger


def scan_media_files(directory: str, backups: bool = False) -> List[str]:
    """Finds media, track and sidecar files below a directory (or only backups)."""
    paths = []
    for root, _, files in os.walk(directory):
        for file in files:
            if backups:
                if file.endswith(CONFIG["BACKUP_SUFFIX"]):
                    paths.append(os.path.join(root, file))
            elif file.lower().endswith(CONFIG["MEDIA_EXTENSIONS"]):
                paths.append(os.path.join(root, file))
    return paths


def collect_files(arguments: Sequence[str], backups: bool = False) -> List[str]:
    """Expands directories; files named explicitly are always taken."""
    paths = set()
    for argument in arguments:
        if os.path.isdir(argument):
            paths.update(scan_media_files(argument, backups))
        elif os.path.isfile(argument):
            if backups == argument.endswith(CONFIG["BACKUP_SUFFIX"]):
                paths.add(argument)
        else:
            logger.warning(f"{argument}: no such file or directory")
    return sorted(os.path.normpath(p) for p in paths)


def parse_assignments(items: Optional[Sequence[str]], option: str) -> Dict[str, str]:
    """Turns repeated 'SELECTOR=VALUE' options into a map."""
    assignments = {}
    for item in items or []:
        selector, separator, value = item.rpartition("=")
        if not separator or not selector:
            raise argparse.ArgumentTypeError(f"{option} expects SELECTOR=VALUE, got '{item}'")
        assignments[selector] = value
    return assignments


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Synchronize the recording time, position and camera tags of media files.")
    parser.add_argument("paths", nargs="*", default=["."], help="Files and directories to process.")
    parser.add_argument("--force", "-f", action="count", default=0,
                        help="Allow riskier changes; repeat for more (at most twice).")
    parser.add_argument("--modify", "-m", action="store_true", help="Write the changes (default: report only).")
    parser.add_argument("--unsafe", action="store_true", help="Do not make '_original' backups before writing.")
    parser.add_argument("--relative-file-time", action="store_true",
                        help="Set file times to the clock time in the local timezone.")
    parser.add_argument("--timezone", type=str, help="IANA zone used as the local zone (default: the system's).")
    parser.add_argument("--time", action="append", metavar="SEL=VALUE", help="Set the time of matching files.")
    parser.add_argument("--location", action="append", metavar="SEL=VALUE",
                        help="Set (or, with an empty value, remove) the position of matching files.")
    parser.add_argument("--camera-id", action="append", metavar="SEL=VALUE", help="Set the camera id of matching files.")
    parser.add_argument("--summertime", action="append", default=[], metavar="PATTERN",
                        help="The clock jumped forward an hour at the first matching file.")
    parser.add_argument("--wintertime", action="append", default=[], metavar="PATTERN",
                        help="The clock jumped back an hour at the first matching file.")
    parser.add_argument("--offsets", type=str, help="Camera offsets database.")
    parser.add_argument("--export-gpx", nargs="?", const=CONFIG["GPX_EXPORT_FILENAME"], metavar="FILE",
                        help="Write the positions of the files to a GPX file.")
    parser.add_argument("--restore-originals", action="store_true", help="Move '_original' backups back in place.")
    parser.add_argument("--delete-backups", action="store_true", help="Delete '_original' backups.")
    parser.add_argument("--remove-tags", action="store_true", help="Remove the tags this tool writes.")
    parser.add_argument("--log-file", type=str, default=CONFIG["LOG_FILE"], help="Where to write the log.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show informational messages.")
    return parser


def options_from_args(args: argparse.Namespace) -> SyncOptions:
    return SyncOptions(
        force=args.force,
        modify=args.modify,
        unsafe=args.unsafe,
        relative_file_time=args.relative_file_time,
        local_zone=load_zone(args.timezone),
        offsets_path=args.offsets or default_offsets_path(),
        export_gpx=args.export_gpx,
        log_file=args.log_file,
        verbose=args.verbose,
        restore_originals=args.restore_originals,
        delete_backups=args.delete_backups,
        remove_tags=args.remove_tags,
        times=parse_assignments(args.time, "--time"),
        locations=parse_assignments(args.location, "--location"),
        camera_ids=parse_assignments(args.camera_id, "--camera-id"),
        summertime=args.summertime,
        wintertime=args.wintertime,
    )


def run_maintenance(options: SyncOptions, arguments: Sequence[str]) -> bool:
    """Handles the backup actions. Returns True when one was requested."""
    if options.restore_originals:
        count = restore_original_files(collect_files(arguments, backups=True))
        print(f"✅ Restored {count} file(s) from their backups.")
    if options.delete_backups:
        count = delete_backups(collect_files(arguments, backups=True))
        print(f"✅ Deleted {count} backup(s).")
    return options.restore_originals or options.delete_backups


def sync_main(options: SyncOptions, arguments: Sequence[str], backend: Optional[MetadataBackend] = None) -> int:
    """Inspects, reconciles, reports and (optionally) modifies. Returns the exit status."""
    if run_maintenance(options, arguments) and not options.remove_tags:
        return 0

    files = collect_files(arguments)
    track_files = [p for p in files if is_gpx_file(p)]
    media_files = [p for p in files if p not in set(track_files)]
    print(f"Found {len(media_files)} file(s) and {len(track_files)} GPS track(s).")
    if not media_files:
        return 0

    backend = backend or ExifToolBackend()
    with backend:
        records = inspect_files(media_files, backend, options.force, options.local_zone)

        if options.remove_tags:
            count = remove_own_tags(records.values(), backend)
            print(f"✅ Removed own tags from {count} file(s).")
            return 0

        try:
            store = CameraOffsetStore(options.local_zone)
            store.import_data(load_camera_offsets(options.offsets_path))
            originals = {path: record.original for path, record in records.items()}
            overrides = resolve_overrides(originals, options.times, options.locations, options.camera_ids,
                                          options.summertime, options.wintertime, options.local_zone)
        except (CameraOffsetsError, OverrideError) as e:
            logger.error(str(e))
            print(f"❌ ERROR: {e}")
            return 1

        gps_index = GpsTrackIndex()
        if track_files:
            read_gpx_tracks(gps_index, track_files)

        engine = ReconciliationEngine(options, overrides, gps_index)
        accumulator = RunAccumulator(store)
        with tqdm(total=len(records), desc="Reconciling", unit="file") as pbar:
            result = engine.run(records, accumulator, progress=pbar)
            pbar.set_postfix(modify=result.modified, skipped=len(result.skipped))

        statuses = modify_files(records.values(), backend, options.unsafe) if options.modify else {}

    for line in build_report(result, accumulator.camera_ids_used, options.force):
        tqdm.write(line)

    if options.export_gpx is not None:
        proposed = {path: r.proposed for path, r in records.items() if r.proposed is not None}
        export_gpx(proposed, options.export_gpx)

    if options.modify:
        save_camera_offsets(options.offsets_path, accumulator.camera_offsets.export_data())

    print_summary(result, statuses, options.modify)
    print(f"   Results logged to '{os.path.abspath(options.log_file)}'.")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.force > 2:
        parser.error("--force can be given at most twice.")
    try:
        options = options_from_args(args)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    setup_logging(options.log_file, options.verbose)
    needs_exiftool = not (options.restore_originals or options.delete_backups) or options.remove_tags
    if needs_exiftool and not shutil.which(CONFIG["EXIFTOOL_PATH"]):
        print(f"❌ ERROR: ExifTool not found at '{CONFIG['EXIFTOOL_PATH']}'. Please install it or update the path.")
        return 1
    return sync_main(options, args.paths)


if __name__ == "__main__":
    sys.exit(main())
