"""Tests for applying changes to files and the backup maintenance actions."""

import os

import yaml

from photosync.attributes import AttributeSet
from photosync.backend import CommitStatus
from photosync.engine import FileFacts, FileRecord
from photosync.modifier import (
    ModifyStatus,
    backup_path,
    delete_backups,
    modify_file,
    modify_files,
    remove_own_tags,
    restore_original_files,
)

from conftest import FakeBackend, ts

# =============================================================================
# Helpers
# =============================================================================


def record_to_modify(path: str) -> FileRecord:
    original = AttributeSet()
    original.set("DateTimeOriginal", ts("2020-07-30T08:00:00"), "EXIF")
    original.set("FileModifyDate", ts("2021-01-01T12:00:00+02:00"), "File")
    proposed = AttributeSet()
    proposed.set("DateTimeOriginal", ts("2020-07-30T08:22:30"))
    proposed.set("DateTimeOriginal", ts("2020-07-30T08:22:30+02:00"), "XMP")
    proposed.set("FileModifyDate", ts("2020-07-30T08:22:30+02:00"))

    record = FileRecord(path, original, FileFacts(file_type="image/jpeg", file_size=os.path.getsize(path)))
    record.proposed = proposed
    record.extra.needs_modification = True
    record.extra.change_tags = {"DateTimeOriginal": 1, "FileModifyDate": 0}
    return record


def make_file(tmp_path, name: str = "IMG_1.JPG", content: bytes = b"image") -> str:
    path = tmp_path / name
    path.write_bytes(content)
    return str(path)


# =============================================================================
# Modifying
# =============================================================================


class TestModifyFile:
    """Tests for modify_file and modify_files."""

    def test_writes_changed_tags(self, tmp_path) -> None:
        """Test that changed tags are staged, committed and the file time set."""
        path = make_file(tmp_path)
        backend = FakeBackend()
        status = modify_file(record_to_modify(path), backend)

        assert status == ModifyStatus.WRITTEN
        assert backend.commits == [(path, {
            "DateTimeOriginal": "2020:07:30 08:22:30",
            "XMP:DateTimeOriginal": "2020:07:30 08:22:30+02:00",
        })]
        assert os.stat(path).st_mtime == ts("2020-07-30T08:22:30+02:00").time_utc
        assert os.path.exists(backup_path(path))
        assert backend.staged == {}

    def test_unsafe_skips_backup(self, tmp_path) -> None:
        """Test that --unsafe writes without a backup copy."""
        path = make_file(tmp_path)
        modify_file(record_to_modify(path), FakeBackend(), unsafe=True)
        assert not os.path.exists(backup_path(path))

    def test_existing_backup_is_kept(self, tmp_path) -> None:
        """Test that an earlier backup is never overwritten."""
        path = make_file(tmp_path)
        with open(backup_path(path), "wb") as f:
            f.write(b"first original")
        modify_file(record_to_modify(path), FakeBackend())
        with open(backup_path(path), "rb") as f:
            assert f.read() == b"first original"

    def test_nothing_to_do(self, tmp_path) -> None:
        """Test that files without authorized changes are left alone."""
        record = record_to_modify(make_file(tmp_path))
        record.extra.needs_modification = False
        backend = FakeBackend()
        assert modify_file(record, backend) == ModifyStatus.NOT_NEEDED
        assert backend.commits == []

    def test_failed_write_goes_to_sidecar(self, tmp_path) -> None:
        """Test that a file that cannot be written gets a YAML sidecar."""
        path = make_file(tmp_path)
        status = modify_file(record_to_modify(path), FakeBackend(status=CommitStatus.FAILED))

        assert status == ModifyStatus.SIDECAR_WRITTEN
        with open(path + ".yaml", encoding="utf-8") as f:
            written = yaml.safe_load(f)
        assert written["XMP:DateTimeOriginal"] == "2020-07-30T08:22:30+02:00"
        assert os.stat(path + ".yaml").st_mtime == ts("2020-07-30T08:22:30+02:00").time_utc

    def test_modify_files_records_status(self, tmp_path) -> None:
        """Test that the status of every file is reported."""
        record = record_to_modify(make_file(tmp_path))
        statuses = modify_files([record], FakeBackend(status=CommitStatus.WRITTEN_NO_CHANGE), unsafe=True)
        # The file time was still set, so the file did change.
        assert statuses == {record.path: ModifyStatus.WRITTEN}
        assert record.extra.status == "WRITTEN"


# =============================================================================
# Maintenance actions
# =============================================================================


class TestMaintenance:
    """Tests for restoring, deleting backups and removing own tags."""

    def test_restore_originals(self, tmp_path) -> None:
        """Test that backups are moved back in place."""
        path = make_file(tmp_path, content=b"modified")
        make_file(tmp_path, "IMG_1.JPG_original", b"original")
        assert restore_original_files([backup_path(path)]) == 1
        with open(path, "rb") as f:
            assert f.read() == b"original"
        assert not os.path.exists(backup_path(path))

    def test_delete_backups(self, tmp_path) -> None:
        """Test that only backups are deleted."""
        path = make_file(tmp_path)
        make_file(tmp_path, "IMG_1.JPG_original")
        assert delete_backups([path, backup_path(path)]) == 1
        assert os.path.exists(path)
        assert not os.path.exists(backup_path(path))

    def test_remove_own_tags(self, tmp_path) -> None:
        """Test that own tags and derived positions are removed."""
        path = make_file(tmp_path)
        original = AttributeSet()
        original.set("CameraID", "Canon|EOS|1", "XMP")
        original.set("TimeSource", "Other", "XMP")
        original.set("GPSLatitude", 48.1)
        original.set("GPSLatitude", 48.1, "EXIF")
        original.set("FileModifyDate", ts("2021-01-01T12:00:00+02:00"), "File")
        record = FileRecord(path, original, FileFacts(file_type="image/jpeg"))
        backend = FakeBackend()

        assert remove_own_tags([record], backend) == 1
        staged = backend.commits[0][1]
        assert staged == {"XMP-photosync:CameraID": None, "XMP-photosync:TimeSource": None, "GPSLatitude": None}
        assert os.stat(path).st_mtime == ts("2021-01-01T12:00:00+02:00").time_utc

    def test_device_position_survives_tag_removal(self, tmp_path) -> None:
        """Test that a position from the device itself is kept."""
        path = make_file(tmp_path)
        original = AttributeSet()
        original.set("CameraID", "Canon|EOS|1", "XMP")
        original.set("GPSLatitude", 48.1, "EXIF")
        record = FileRecord(path, original, FileFacts(file_type="image/jpeg"))
        backend = FakeBackend()

        remove_own_tags([record], backend)
        assert backend.commits[0][1] == {"XMP-photosync:CameraID": None}
