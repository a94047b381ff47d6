import abc
import json
import logging
import os
import re
import subprocess
import tempfile
from enum import Enum, auto
from typing import Dict, List, Optional, Sequence, Tuple

from photosync.config import CONFIG
from photosync.tags import OWN_NAMESPACE, OWN_TAGS
from photosync.timestamp import Timestamp

logger = logging.getLogger(__name__)

# Namespace URI of the own XMP tags; only used as an identifier inside files.
OWN_NAMESPACE_URI = "http://ns.photosync.local/1.0/"


class CommitStatus(Enum):
    """Outcome of writing the staged values to a file."""
    WRITTEN = auto()
    WRITTEN_NO_CHANGE = auto()
    FAILED = auto()


class MetadataBackend(abc.ABC):
    """
    Reads and writes embedded metadata.

    Writing goes through a staging area: values are staged tag by tag, then
    committed to one file or discarded. The staging area is empty again after
    either call.
    """

    @abc.abstractmethod
    def extract(self, paths: Sequence[str]) -> List[dict]:
        """Returns one 'Group:Tag' -> value dict per path, each with a 'SourceFile' key."""
        pass

    @abc.abstractmethod
    def stage(self, tag: str, value: Optional[str]):
        """Stages a physical tag write; None removes the tag."""
        pass

    @abc.abstractmethod
    def commit(self, path: str) -> CommitStatus:
        pass

    @abc.abstractmethod
    def discard_staged(self):
        pass

    def set_file_time(self, path: str, instant: Timestamp):
        """Sets the file system modification time, keeping the access time."""
        stat = os.stat(path)
        os.utime(path, (stat.st_atime, instant.time_utc))

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def own_namespace_config() -> str:
    """An exiftool config file defining the XMP namespace of the own tags."""
    tags = "\n".join(f"    {tag} => {{ }}," for tag in OWN_TAGS)
    return (
        "%Image::ExifTool::UserDefined = (\n"
        "    'Image::ExifTool::XMP::Main' => {\n"
        f"        {OWN_NAMESPACE} => {{\n"
        "            SubDirectory => {\n"
        f"                TagTable => 'Image::ExifTool::UserDefined::{OWN_NAMESPACE}',\n"
        "            },\n"
        "        },\n"
        "    },\n"
        ");\n"
        f"%Image::ExifTool::UserDefined::{OWN_NAMESPACE} = (\n"
        f"    GROUPS => {{ 0 => 'XMP', 1 => 'XMP-{OWN_NAMESPACE}', 2 => 'Image' }},\n"
        f"    NAMESPACE => {{ '{OWN_NAMESPACE}' => '{OWN_NAMESPACE_URI}' }},\n"
        "    WRITABLE => 'string',\n"
        f"{tags}\n"
        ");\n"
        "1;\n"
    )


def parse_write_summary(output: str) -> Tuple[int, int]:
    """Reads the 'N image files updated' and 'N image files unchanged' counts."""
    updated = re.search(r"(\d+) image files? updated", output)
    unchanged = re.search(r"(\d+) image files? unchanged", output)
    return (int(updated.group(1)) if updated else 0,
            int(unchanged.group(1)) if unchanged else 0)


class ExifToolBackend(MetadataBackend):
    """Drives the exiftool command line program."""

    def __init__(self, exiftool_path: Optional[str] = None, batch_size: Optional[int] = None):
        self.exiftool_path = exiftool_path or CONFIG["EXIFTOOL_PATH"]
        self.batch_size = batch_size or CONFIG["BATCH_SIZE"]
        self.last_error = ""
        self._staged: Dict[str, Optional[str]] = {}
        self._config_path: Optional[str] = None

    def _config(self) -> str:
        if self._config_path is None:
            with tempfile.NamedTemporaryFile(mode='w', delete=False, encoding='utf-8',
                                             suffix=".config") as config_file:
                config_file.write(own_namespace_config())
                self._config_path = config_file.name
        return self._config_path

    def _command(self, *args: str) -> List[str]:
        # -config must come first on the command line.
        return [self.exiftool_path, "-config", self._config(), *args]

    def close(self):
        if self._config_path and os.path.exists(self._config_path):
            os.remove(self._config_path)
        self._config_path = None

    # --- Reading ---

    def _extract_batch(self, paths: Sequence[str]) -> List[dict]:
        args = self._command("-G", "-n", "-json", "-a", *paths)
        # exiftool exits non-zero when any file has an error but still reports the others.
        result = subprocess.run(args, capture_output=True, text=True, encoding='utf-8')
        if not result.stdout.strip():
            raise subprocess.CalledProcessError(result.returncode, args, result.stdout, result.stderr)
        return json.loads(result.stdout)

    def extract(self, paths: Sequence[str]) -> List[dict]:
        """
        Extracts the metadata of many files, one exiftool call per batch. A batch
        that fails is retried file by file so one bad file does not hide the others.
        """
        results = []
        for i in range(0, len(paths), self.batch_size):
            batch = list(paths[i:i + self.batch_size])
            try:
                extracted = self._extract_batch(batch)
                by_path = {os.path.abspath(d.get("SourceFile", "")): d for d in extracted}
                results.extend(by_path.get(os.path.abspath(p), {"SourceFile": p}) for p in batch)
                continue
            except FileNotFoundError:
                logger.error(f"exiftool not found at '{self.exiftool_path}'")
                raise
            except (subprocess.CalledProcessError, json.JSONDecodeError) as e:
                logger.warning(f"exiftool batch of {len(batch)} file(s) failed, retrying one by one: {e}")

            for path in batch:
                try:
                    extracted = self._extract_batch([path])
                    results.append(extracted[0] if extracted else {"SourceFile": path})
                except (subprocess.CalledProcessError, json.JSONDecodeError) as e:
                    logger.warning(f"{path}: could not read metadata: {e}")
                    results.append({"SourceFile": path})
        return results

    # --- Writing ---

    def stage(self, tag: str, value: Optional[str]):
        self._staged[tag] = value

    @property
    def staged(self) -> Dict[str, Optional[str]]:
        return dict(self._staged)

    def discard_staged(self):
        self._staged.clear()

    def commit(self, path: str) -> CommitStatus:
        """Writes the staged values to `path` in place and clears the staging area."""
        self.last_error = ""
        if not self._staged:
            return CommitStatus.WRITTEN_NO_CHANGE

        lines = ["-overwrite_original"]
        lines.extend(f"-{tag}={'' if value is None else value}" for tag, value in sorted(self._staged.items()))
        lines.append(path)
        self.discard_staged()

        argfile_path = None
        try:
            with tempfile.NamedTemporaryFile(mode='w+', delete=False, encoding='utf-8', suffix=".txt") as argfile:
                argfile.write("\n".join(lines))
                argfile_path = argfile.name

            result = subprocess.run(self._command("-charset", "filename=utf8", "-@", argfile_path),
                                    check=True, capture_output=True, text=True, encoding='utf-8')
        except subprocess.CalledProcessError as e:
            self.last_error = (e.stderr or e.stdout or "").strip()
            return CommitStatus.FAILED
        finally:
            if argfile_path and os.path.exists(argfile_path):
                os.remove(argfile_path)

        updated, unchanged = parse_write_summary(result.stdout)
        if result.stderr.strip():
            logger.warning(f"{path}: exiftool reports: {result.stderr.strip()}")
        if updated:
            return CommitStatus.WRITTEN
        if unchanged:
            return CommitStatus.WRITTEN_NO_CHANGE
        self.last_error = result.stdout.strip()
        return CommitStatus.FAILED
