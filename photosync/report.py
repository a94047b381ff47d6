import string
from typing import Any, Dict, Iterable, List, Optional

from photosync.changes import NO_CHANGE, differs
from photosync.engine import FileRecord, RunResult
from photosync.modifier import ModifyStatus

_SI_PREFIXES = [(1e9, "G"), (1e6, "M"), (1e3, "k"), (1.0, ""), (1e-3, "m"), (1e-6, "µ")]

LEGEND = """\
 T: DateTimeOriginal   C: CameraID   P: position
  *: modified  =: unchanged  +: added  !: removed  -: absent
 S: time source
  t: --time  s: creation time & camera offset  o: embedded original time
  c: embedded creation time  n: other file with the same number
 ?: one more --force needed per mark"""


def report_letter(old: Any, new: Any, tag: str = "") -> str:
    """One-letter summary of what happens to a value."""
    if old is None and new is None:
        return "-"
    if old is None:
        return "+"
    if new is None:
        return "!"
    return "*" if differs(old, new, tag) else "="


def si_prefix(value: Optional[float], unit: str = "m") -> str:
    """Formats a quantity with an SI prefix: 1234.5 -> '1.23 km', 0.05 -> '50 mm'."""
    if value is None:
        return ""
    if value == 0:
        return f"0 {unit}"
    magnitude = abs(value)
    for factor, prefix in _SI_PREFIXES:
        if magnitude >= factor:
            break
    return f"{value / factor:.3g} {prefix}{unit}"


def prepare_display_cameras(camera_ids: Iterable[str]) -> Dict[str, str]:
    """
    Gives every camera a unique two-character code: its first two letters, or its
    first letter with a digit or letter, or any free lowercase pair, or '**'.
    """
    used = set()
    codes = {}
    for camera in sorted(camera_ids):
        first = camera[:1].upper()
        candidates = [camera[:2].upper().ljust(2)]
        candidates += [first + c for c in string.digits + string.ascii_lowercase + string.ascii_uppercase]
        candidates += [a + b for a in string.ascii_lowercase for b in string.ascii_lowercase]
        code = next((c for c in candidates if c not in used), "**")
        codes[camera] = code
        used.add(code)
    return codes


def _position_letter(record: FileRecord) -> str:
    if record.extra.position_change:
        return "*"
    letter = report_letter(record.original.get("GPSLatitude"), record.proposed.get("GPSLatitude"))
    # A latitude difference too small to survive writing is no change.
    return "=" if letter == "*" else letter


def format_report_line(record: FileRecord, cameras: Dict[str, str], force: int = 0) -> str:
    original, proposed, extra = record.original, record.proposed, record.extra
    camera = proposed.get("CameraID")
    target = proposed.get("DateTimeOriginal") or proposed.get("FileModifyDate")
    missing_force = ""
    if extra.suppressed and extra.force_required < NO_CHANGE:
        missing_force = "?" * max(0, extra.force_required - force)
    return "{letter} {camera:2} {t}{c}{p} {target:25} {distance:>10} {force:2} {path}".format(
        letter=extra.time_source_letter or " ",
        camera=cameras.get(camera, "") if camera else "",
        t=report_letter(original.get("DateTimeOriginal"), proposed.get("DateTimeOriginal")),
        c=report_letter(original.get("CameraID"), proposed.get("CameraID")),
        p=_position_letter(record),
        target=str(target) if target is not None else "",
        distance=si_prefix(extra.position_change),
        force=missing_force,
        path=record.path,
    )


def build_report(result: RunResult, camera_ids: Iterable[str], force: int = 0,
                 everything: bool = False) -> List[str]:
    """
    The per-file report lines followed by the legend of camera codes. Only files
    with changes (applied or suppressed) are listed unless `everything` is set.
    """
    cameras = prepare_display_cameras(camera_ids)
    records = [r for r in result.records.values() if r.proposed is not None
               and (everything or r.extra.needs_modification or r.extra.suppressed)]
    if not records:
        return []

    lines = [LEGEND, "", "S Cm TCP Target time               Position   F  File",
             "-|--|---|" + "-" * 25 + "|" + "-" * 10 + "|--|" + "-" * 8]
    lines.extend(format_report_line(r, cameras, force) for r in sorted(records, key=lambda r: r.path))
    lines.append("")
    lines.append(" Cm Camera ID")
    lines.extend(f" {code} {'UNKNOWN' if camera.startswith('?') else camera}"
                 for camera, code in sorted(cameras.items(), key=lambda item: item[1]))
    return lines


def print_summary(result: RunResult, statuses: Optional[Dict[str, ModifyStatus]], modify: bool):
    """Prints the end-of-run counts."""
    statuses = statuses or {}
    written = sum(1 for s in statuses.values() if s in (ModifyStatus.WRITTEN, ModifyStatus.WRITTEN_NO_CHANGE))
    sidecars = sum(1 for s in statuses.values() if s == ModifyStatus.SIDECAR_WRITTEN)
    failed = sum(1 for s in statuses.values() if s in (ModifyStatus.FAILED, ModifyStatus.NO_BACKUP))

    print("\n--- Synchronization Complete ---")
    if modify:
        print(f"✅ Modified {written} of {result.modified} file(s) that needed it.")
    else:
        print(f"✅ {result.modified} file(s) would be modified (use --modify to apply).")
    if result.skipped:
        print(f"⏩ Skipped {len(result.skipped)} file(s) without a usable timestamp.")
    for level in sorted(result.needs_force):
        flags = " ".join(["--force"] * level)
        print(f"⚠️ {result.needs_force[level]} file(s) have changes that need {flags}.")
    if sidecars:
        print(f"⚠️ Wrote metadata of {sidecars} file(s) to .yaml sidecars instead.")
    if failed:
        print(f"❌ Failed to modify {failed} file(s). See the log for details.")
    print("--------------------------------")
