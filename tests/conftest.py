"""Shared fixtures for the photosync tests.

Fixtures included:
- local_zone: a fixed +02:00 zone so results do not depend on the machine
- options: SyncOptions factory bound to local_zone
- inspect: builds FileRecords from exiftool-style tag dicts
- fake_backend: an in-memory MetadataBackend that records what would be written
"""

from datetime import timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from photosync.backend import CommitStatus, MetadataBackend
from photosync.config import SyncOptions
from photosync.inspector import inspect_file
from photosync.timestamp import Timestamp

LOCAL_ZONE = timezone(timedelta(hours=2))


# =============================================================================
# Helpers
# =============================================================================


def ts(text: str) -> Timestamp:
    """Parses a timestamp and fails loudly if it does not parse."""
    value = Timestamp.parse(text)
    assert value is not None, text
    return value


class FakeBackend(MetadataBackend):
    """Keeps extracted tags in memory and records every commit."""

    def __init__(self, tags: Optional[Dict[str, dict]] = None, status: CommitStatus = CommitStatus.WRITTEN):
        self.tags = tags or {}
        self.status = status
        self.staged: Dict[str, Optional[str]] = {}
        self.commits: List[tuple] = []
        self.closed = False
        self.last_error = ""

    def extract(self, paths: Sequence[str]) -> List[dict]:
        return [dict(self.tags.get(p, {}), SourceFile=p) for p in paths]

    def stage(self, tag: str, value: Optional[str]):
        self.staged[tag] = value

    def commit(self, path: str) -> CommitStatus:
        self.commits.append((path, dict(self.staged)))
        self.staged.clear()
        if self.status == CommitStatus.FAILED:
            self.last_error = "simulated failure"
        return self.status

    def discard_staged(self):
        self.staged.clear()

    def close(self):
        self.closed = True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def local_zone():
    return LOCAL_ZONE


@pytest.fixture
def options():
    """Factory for run options in the fixed local zone."""

    def _options(**kwargs) -> SyncOptions:
        kwargs.setdefault("local_zone", LOCAL_ZONE)
        return SyncOptions(**kwargs)

    return _options


@pytest.fixture
def inspect():
    """Factory turning {path: {'Group:Tag': value}} into {path: FileRecord}."""

    def _inspect(raw_by_path: Dict[str, dict], force: int = 0):
        records = {}
        for path, raw in raw_by_path.items():
            raw = dict(raw)
            raw.setdefault("File:MIMEType", "image/jpeg")
            raw.setdefault("File:FileModifyDate", "2021:01:01 12:00:00+02:00")
            records[path] = inspect_file(path, raw, force, LOCAL_ZONE)
        return records

    return _inspect


@pytest.fixture
def fake_backend():
    return FakeBackend()
