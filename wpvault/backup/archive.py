# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Archive Builder - One compressed bundle per backup run.

A bundle is a gzip-compressed tar holding two members:

    database.sql          logical dump (single-transaction snapshot)
    wordpress_files.tar   uncompressed tar of the site tree

Everything is produced inside a private staging directory. The bundle is
written as ``<name>.part`` and only renamed to its final name after the
compression stream has been closed.
"""

import os
import tarfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Tuple

import structlog

from wpvault.config import VaultConfig
from wpvault.exceptions import ArchiveError, DumpError
from wpvault.integrity import write_sidecar
from wpvault.naming import DATABASE_MEMBER, FILES_MEMBER, archive_name
from wpvault.process import CommandError, mysql_defaults_file, run_blocking, run_command

logger = structlog.get_logger()

MYSQLDUMP_OPTIONS = (
    "--single-transaction",
    "--routines",
    "--triggers",
    "--events",
    "--quick",
    "--hex-blob",
)


async def dump_database(config: VaultConfig, destination: Path) -> Path:
    """
    Dump the configured database to a file.

    The dump uses a single transaction, so it is one consistent point in
    time for InnoDB tables without locking the site.

    Raises:
        DumpError: If mysqldump fails or produces an empty file
    """
    with mysql_defaults_file(config.db_user, config.db_password, config.db_host) as cnf:
        argv = [
            "mysqldump",
            f"--defaults-extra-file={cnf}",
            *MYSQLDUMP_OPTIONS,
            config.db_name,
        ]
        try:
            await run_command(argv, stdout_path=destination)
        except CommandError as e:
            destination.unlink(missing_ok=True)
            raise DumpError(
                f"Database dump failed: {e.stderr.strip() or e.message}",
                details={"database": config.db_name, "returncode": e.returncode},
            ) from e

    if not destination.is_file() or destination.stat().st_size == 0:
        raise DumpError(
            "Database dump is empty",
            details={"database": config.db_name},
        )

    logger.info(
        "database_dumped",
        database=config.db_name,
        size=destination.stat().st_size,
    )
    return destination


def _archive_site_sync(site_dir: Path, destination: Path) -> None:
    with tarfile.open(destination, "w") as tar:
        tar.add(site_dir, arcname=site_dir.name)


async def archive_site(site_dir: Path, destination: Path) -> Path:
    """
    Write an uncompressed tar of the site tree.

    The single top-level member is the site directory's basename.

    Raises:
        ArchiveError: If the site directory is missing or tar fails
    """
    if not site_dir.is_dir():
        raise ArchiveError(
            f"Site directory not found: {site_dir}",
            details={"site_dir": str(site_dir)},
        )

    try:
        await run_blocking(_archive_site_sync, site_dir, destination)
    except (OSError, tarfile.TarError) as e:
        destination.unlink(missing_ok=True)
        raise ArchiveError(
            f"Failed to archive site files: {e}",
            details={"site_dir": str(site_dir)},
        ) from e

    logger.info(
        "site_archived",
        site_dir=str(site_dir),
        size=destination.stat().st_size,
    )
    return destination


def _bundle_sync(staging_dir: Path, name: str, level: int) -> Path:
    final_path = staging_dir / name
    part_path = staging_dir / f"{name}.part"
    try:
        with tarfile.open(part_path, "w:gz", compresslevel=level) as tar:
            tar.add(staging_dir / DATABASE_MEMBER, arcname=DATABASE_MEMBER)
            tar.add(staging_dir / FILES_MEMBER, arcname=FILES_MEMBER)
        os.replace(part_path, final_path)
    except BaseException:
        part_path.unlink(missing_ok=True)
        raise
    return final_path


async def bundle(staging_dir: Path, name: str, level: int = 6) -> Path:
    """
    Compress the dump and the site tar into the final bundle.

    Returns:
        Path to the bundle inside the staging directory

    Raises:
        ArchiveError: If compression fails (no final-named file is left)
    """
    try:
        path = await run_blocking(_bundle_sync, staging_dir, name, level)
    except (OSError, tarfile.TarError) as e:
        raise ArchiveError(
            f"Failed to create bundle: {e}",
            details={"archive": name},
        ) from e

    logger.info("bundle_created", archive=name, size=path.stat().st_size)
    return path


async def build_archive(
    config: VaultConfig,
    staging_dir: Path,
    moment: datetime | None = None,
    on_stage: Callable[[str], None] | None = None,
) -> Tuple[Path, Path]:
    """
    Build a bundle and its checksum sidecar in the staging directory.

    Steps: dump database, tar site files, compress both into the bundle,
    write the sidecar. Any failure aborts; the caller discards staging.

    Args:
        config: Vault configuration
        staging_dir: Empty private directory
        moment: Timestamp for the archive name (default: now)
        on_stage: Called with "dumping" and "archiving" as each step starts

    Returns:
        (archive_path, sidecar_path), both still inside staging_dir
    """
    name = archive_name(moment, config.tz)
    dump_path = staging_dir / DATABASE_MEMBER
    files_path = staging_dir / FILES_MEMBER

    if on_stage:
        on_stage("dumping")
    await dump_database(config, dump_path)

    if on_stage:
        on_stage("archiving")
    await archive_site(config.site_dir, files_path)
    archive_path = await bundle(staging_dir, name, config.compression_level)

    # Intermediate members are inside the bundle now
    dump_path.unlink(missing_ok=True)
    files_path.unlink(missing_ok=True)

    try:
        sidecar_path = await write_sidecar(archive_path)
    except OSError as e:
        raise ArchiveError(
            f"Failed to write checksum sidecar: {e}",
            details={"archive": name},
        ) from e

    return archive_path, sidecar_path
