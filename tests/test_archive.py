"""
Tests for archive packaging and unpacking.
"""

import zipfile

import pytest

from ledgervault.archive import archive_name_for, package, unpack
from ledgervault.errors import ArchiveError


def _staging(tmp_path):
    staging = tmp_path / "backup_tmp"
    data = staging / "data"
    data.mkdir(parents=True)
    (data / "ledgerDB.db").write_bytes(b"ledger")
    (data / "asyncStorage.json").write_text('{"theme": "dark"}')
    (data / "manifest.json").write_text("{}")
    return staging


class TestArchiveName:

    def test_owner_id(self):
        assert archive_name_for("uid1") == "backup_uid1.zip"

    def test_missing_owner(self):
        assert archive_name_for(None) == "backup_unknown.zip"
        assert archive_name_for("") == "backup_unknown.zip"


class TestPackage:

    def test_entries_under_data(self, tmp_path):
        staging = _staging(tmp_path)

        archive = package(staging, "backup_uid1.zip")

        with zipfile.ZipFile(archive) as zf:
            names = sorted(zf.namelist())
        assert names == ["data/asyncStorage.json", "data/ledgerDB.db", "data/manifest.json"]

    def test_replaces_existing_archive(self, tmp_path):
        staging = _staging(tmp_path)
        (staging / "backup_uid1.zip").write_bytes(b"stale, not a zip")

        archive = package(staging, "backup_uid1.zip")

        assert zipfile.is_zipfile(archive)
        with zipfile.ZipFile(archive) as zf:
            assert "backup_uid1.zip" not in zf.namelist()

    def test_no_partial_file_left(self, tmp_path):
        staging = _staging(tmp_path)

        package(staging, "backup_uid1.zip")

        assert sorted(p.name for p in staging.iterdir()) == ["backup_uid1.zip", "data"]

    def test_missing_staging_raises(self, tmp_path):
        with pytest.raises(ArchiveError):
            package(tmp_path / "nope", "backup_uid1.zip")


class TestUnpack:

    def test_returns_data_dir(self, tmp_path):
        archive = package(_staging(tmp_path), "backup_uid1.zip")

        data_dir = unpack(archive, tmp_path / "restore")

        assert data_dir == tmp_path / "restore" / "data"
        assert (data_dir / "ledgerDB.db").read_bytes() == b"ledger"

    def test_root_layout_fallback(self, tmp_path):
        archive = tmp_path / "flat.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("ledgerDB.db", b"flat")

        data_dir = unpack(archive, tmp_path / "restore")

        assert data_dir == tmp_path / "restore"
        assert (data_dir / "ledgerDB.db").read_bytes() == b"flat"

    def test_rejects_path_traversal(self, tmp_path):
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../escaped.db", b"evil")

        with pytest.raises(ArchiveError, match="path traversal"):
            unpack(archive, tmp_path / "restore")
        assert not (tmp_path / "escaped.db").exists()

    def test_corrupt_archive(self, tmp_path):
        archive = tmp_path / "broken.zip"
        archive.write_bytes(b"this is not a zip")

        with pytest.raises(ArchiveError):
            unpack(archive, tmp_path / "restore")
