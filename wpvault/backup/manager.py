# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Backup Manager - Local backup directory lifecycle.

This module handles the staging directory, the atomic publish of an
archive pair into the backup directory, and inspection of what is kept
locally.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Tuple

import structlog

from wpvault.exceptions import ArchiveError
from wpvault.integrity import verify
from wpvault.naming import (
    SIDECAR_SUFFIX,
    archive_stem,
    group_members,
    is_archive_name,
    sidecar_name,
    sort_archive_names,
)

logger = structlog.get_logger()

STAGING_PREFIX = ".staging-"


def create_staging_dir(backup_dir: Path) -> Path:
    """
    Create a private staging directory inside the backup directory.

    Living on the same filesystem as the final location keeps the
    publish rename atomic.
    """
    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=backup_dir))
        path.chmod(0o700)
    except OSError as e:
        raise ArchiveError(
            f"Failed to create staging directory: {e}",
            details={"backup_dir": str(backup_dir)},
        ) from e
    return path


def discard_staging_dir(path: Path | None) -> None:
    """Remove a staging directory and anything left in it."""
    if path is None or not path.exists():
        return
    shutil.rmtree(path, ignore_errors=True)
    logger.debug("staging_discarded", path=str(path))


def publish_archive(
    archive_path: Path,
    sidecar_path: Path,
    backup_dir: Path,
) -> Tuple[Path, Path]:
    """
    Move an archive pair from staging into the backup directory.

    The bundle is renamed first, then the sidecar. If the sidecar cannot
    be published the bundle is taken back out again, so the backup
    directory never holds one without the other.

    Returns:
        (published_archive, published_sidecar)
    """
    final_archive = backup_dir / archive_path.name
    final_sidecar = backup_dir / sidecar_path.name

    try:
        os.replace(archive_path, final_archive)
    except OSError as e:
        raise ArchiveError(
            f"Failed to publish archive: {e}",
            details={"archive": archive_path.name},
        ) from e

    try:
        os.replace(sidecar_path, final_sidecar)
    except OSError as e:
        final_archive.unlink(missing_ok=True)
        raise ArchiveError(
            f"Failed to publish checksum sidecar: {e}",
            details={"archive": archive_path.name},
        ) from e

    logger.info("archive_published", archive=final_archive.name, backup_dir=str(backup_dir))
    return final_archive, final_sidecar


def list_local_files(backup_dir: Path) -> List[str]:
    """Every regular, non-hidden file name in the backup directory."""
    if not backup_dir.is_dir():
        return []
    return sorted(
        p.name for p in backup_dir.iterdir() if p.is_file() and not p.name.startswith(".")
    )


def list_local_archives(backup_dir: Path) -> List[str]:
    """Archive names in the backup directory, oldest first."""
    return sort_archive_names(list_local_files(backup_dir))


def delete_local_group(backup_dir: Path, stem: str) -> List[str]:
    """
    Delete every file sharing an archive's stem.

    Returns:
        Names that were deleted
    """
    deleted = []
    for name in group_members(stem, list_local_files(backup_dir)):
        (backup_dir / name).unlink(missing_ok=True)
        deleted.append(name)
    return deleted


async def verify_local_archive(archive_path: Path) -> bool:
    """
    Check a local archive against its sidecar.

    An archive without a sidecar is never trusted.
    """
    sidecar = archive_path.with_name(sidecar_name(archive_path.name))
    return await verify(archive_path, sidecar)


def get_backup_stats(backup_dir: Path) -> dict:
    """
    Summarize the local backup directory.

    Returns:
        Dict with archive count, total bytes, oldest/newest archive and
        archives lacking a sidecar (or sidecars lacking an archive)
    """
    files = set(list_local_files(backup_dir))
    archives = sort_archive_names(files)

    total_bytes = 0
    for name in archives:
        total_bytes += (backup_dir / name).stat().st_size
        sidecar = sidecar_name(name)
        if sidecar in files:
            total_bytes += (backup_dir / sidecar).stat().st_size

    unpaired = [name for name in archives if sidecar_name(name) not in files]
    orphan_sidecars = sorted(
        name
        for name in files
        if name.endswith(SIDECAR_SUFFIX)
        and is_archive_name(name[: -len(SIDECAR_SUFFIX)])
        and name[: -len(SIDECAR_SUFFIX)] not in files
    )

    return {
        "backup_dir": str(backup_dir),
        "archive_count": len(archives),
        "total_bytes": total_bytes,
        "total_mb": round(total_bytes / (1024 * 1024), 2),
        "oldest": archives[0] if archives else None,
        "newest": archives[-1] if archives else None,
        "unpaired": unpaired,
        "orphan_sidecars": orphan_sidecars,
        "stems": [archive_stem(name) for name in archives],
    }
