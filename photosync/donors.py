import os
import re
from typing import Iterable, List, Optional, Set

# --- Configuration ---
CONFIG = {
    # Sidecar files named after the file they describe, e.g. "IMG_1234.JPG.yaml".
    "SIDECAR_SUFFIXES": (".yaml", ".yml", ".json"),
}
# --- End Configuration ---


def get_image_number(path: str) -> Optional[int]:
    """
    Infers the sequence number of a file from its name.

    Anything after the last digit and anything up to the last letter is dropped,
    the digits that remain form the number:
    'IMG_1234.JPG', 'IMG_1234-extra.txt' and 'foo6x1.2_3.4-y.mov' all give 1234.
    """
    name = os.path.basename(path)
    name = os.path.splitext(name)[0]
    name = re.sub(r"\D+$", "", name)
    name = re.sub(r"^.*[A-Za-z]", "", name)
    digits = "".join(re.findall(r"\d+", name))
    if not digits:
        return None
    return int(digits)


def basename_pattern(path: str) -> str:
    """The 'shape' of a file name: extension stripped, digit runs replaced by their length."""
    name = os.path.splitext(os.path.basename(path))[0]
    return re.sub(r"\d+", lambda m: str(len(m.group(0))), name)


def length_of_common_prefix(a: str, b: str) -> int:
    length = 0
    for x, y in zip(a, b):
        if x != y:
            break
        length += 1
    return length


def length_of_common_directory_prefix(a: str, b: str) -> int:
    """Number of leading directory components two paths share."""
    dirs_a = os.path.normpath(os.path.dirname(a) or ".").split(os.sep)
    dirs_b = os.path.normpath(os.path.dirname(b) or ".").split(os.sep)
    length = 0
    for x, y in zip(dirs_a, dirs_b):
        if x != y:
            break
        length += 1
    return length


def is_sidecar_of(candidate: str, path: str) -> bool:
    return any(candidate == path + suffix for suffix in CONFIG["SIDECAR_SUFFIXES"])


class DonorSelector:
    """Ranks sibling files that can lend metadata to a file lacking it."""

    def __init__(self, metadata_files: Optional[Set[str]] = None):
        self.metadata_files: Set[str] = metadata_files if metadata_files is not None else set()

    def sort_key(self, path: str, candidate: str):
        """Criteria in priority order, higher is better."""
        return (
            is_sidecar_of(candidate, path),
            length_of_common_directory_prefix(path, candidate),
            candidate in self.metadata_files,
            length_of_common_prefix(basename_pattern(path), basename_pattern(candidate)),
        )

    def rank(self, path: str, candidates: Iterable[str]) -> List[str]:
        """Best donor first; candidates with equal criteria are ordered by path."""
        others = {c for c in candidates if c != path}

        def descending(candidate: str):
            sidecar, directories, metadata, pattern = self.sort_key(path, candidate)
            return -int(sidecar), -directories, -int(metadata), -pattern, candidate

        return sorted(others, key=descending)
