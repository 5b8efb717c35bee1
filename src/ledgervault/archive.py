"""
Archive Packager - zip a staging directory into backup_<ownerId>.zip
and unpack downloaded archives for restore.
"""

import logging
import os
import zipfile
from pathlib import Path
from typing import Optional

from .errors import ArchiveError
from .snapshot import DATA_DIR_NAME

logger = logging.getLogger(__name__)

ARCHIVE_NAME_PREFIX = "backup_"
ARCHIVE_SUFFIX = ".zip"


def archive_name_for(owner_id: Optional[str]) -> str:
    """backup_<ownerId>.zip, with 'unknown' standing in for a missing owner"""
    return f"{ARCHIVE_NAME_PREFIX}{owner_id or 'unknown'}{ARCHIVE_SUFFIX}"


def _partial_path(archive_path: Path) -> Path:
    return archive_path.with_name(f".{archive_path.name}.partial")


def package(staging_dir: Path, archive_name: str) -> Path:
    """
    Compress staging_dir into staging_dir/archive_name.

    Any existing archive at the target is removed first. The zip is written
    to a hidden sibling and renamed into place, so the target path either
    holds a complete archive or nothing.

    Args:
        staging_dir: Directory holding the data/ tree
        archive_name: File name of the archive to create

    Returns:
        Path to the finished archive

    Raises:
        ArchiveError: If compression fails
    """
    staging_dir = Path(staging_dir)
    archive_path = staging_dir / archive_name
    partial_path = _partial_path(archive_path)

    archive_path.unlink(missing_ok=True)
    partial_path.unlink(missing_ok=True)

    try:
        with zipfile.ZipFile(partial_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for item in sorted(staging_dir.rglob("*")):
                if item.is_dir() or item in (archive_path, partial_path):
                    continue
                zf.write(item, item.relative_to(staging_dir).as_posix())
        os.replace(partial_path, archive_path)
    except (OSError, zipfile.BadZipFile, ValueError) as e:
        partial_path.unlink(missing_ok=True)
        raise ArchiveError(f"Failed to create archive {archive_name}: {e}") from e

    logger.info(f"Archive created: {archive_path} ({archive_path.stat().st_size} bytes)")
    return archive_path


def unpack(archive_path: Path, dest_dir: Path) -> Path:
    """
    Extract archive_path into dest_dir and return the directory holding the
    backed-up files.

    Archives normally nest everything under data/; archives with the files
    at the root are accepted too.

    Raises:
        ArchiveError: On a corrupt archive or a member escaping dest_dir
    """
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    root = dest_dir.resolve()

    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            # Security: validate members
            for member in zf.namelist():
                member_path = (root / member).resolve()
                try:
                    member_path.relative_to(root)
                except ValueError:
                    raise ArchiveError(
                        f"Malicious archive: path traversal detected in {member}"
                    )
            zf.extractall(dest_dir)
    except (OSError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"Failed to unpack {archive_path.name}: {e}") from e

    data_dir = dest_dir / DATA_DIR_NAME
    if not data_dir.is_dir():
        logger.info("Data folder not found in archive, using archive root")
        data_dir = dest_dir
    return data_dir
