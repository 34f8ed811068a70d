# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Retention - Keep-N pruning for the local and remote stores.

Both stores use the same algorithm, applied independently:

1. List archive names and sort them by the timestamp embedded in the name
2. Select the oldest ``count - keep_count`` archives
3. Delete each selected archive's whole group (every file sharing its stem)

Pruning is best-effort: a failed group is recorded and logged, groups
already deleted stay deleted, and a second pass with nothing new to prune
is a no-op.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

import structlog

from wpvault.config import normalize_remote_dir
from wpvault.errors import explain_empty_remote_dir
from wpvault.exceptions import PruneError, WPVaultError
from wpvault.backup.manager import delete_local_group, list_local_files
from wpvault.naming import archive_stem, group_members, sort_archive_names
from wpvault.remote.base import RemoteStore

logger = structlog.get_logger()


@dataclass
class PruneResult:
    """Outcome of one pruning pass on one store."""

    store: str  # "local" or the remote description
    keep_count: int
    found: int
    deleted_archives: List[str] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def remaining(self) -> int:
        return self.found - len(self.deleted_archives)


def select_for_pruning(names: Sequence[str], keep_count: int) -> List[str]:
    """
    Pick the archives that fall outside the keep-N window.

    Args:
        names: File names on a store (non-archive names are ignored)
        keep_count: Number of newest archives to keep

    Returns:
        Archive names to delete, oldest first (empty when within budget)
    """
    if keep_count < 0:
        raise PruneError(f"keep_count must be non-negative, got {keep_count}")
    archives = sort_archive_names(names)
    excess = len(archives) - keep_count
    if excess <= 0:
        return []
    return archives[:excess]


def prune_local(backup_dir: Path, keep_count: int) -> PruneResult:
    """
    Enforce the local keep count on the backup directory.
    """
    files = list_local_files(backup_dir)
    selected = select_for_pruning(files, keep_count)
    result = PruneResult(
        store="local",
        keep_count=keep_count,
        found=len(sort_archive_names(files)),
    )

    if not selected:
        logger.info("local_prune_skipped", found=result.found, keep_count=keep_count)
        return result

    for archive in selected:
        stem = archive_stem(archive)
        try:
            deleted = delete_local_group(backup_dir, stem)
        except OSError as e:
            result.errors.append(f"{archive}: {e}")
            logger.error("local_prune_failed", archive=archive, error=str(e))
            continue
        result.deleted_archives.append(archive)
        result.deleted_files.extend(deleted)
        logger.info("local_archive_pruned", archive=archive, files=len(deleted))

    logger.info(
        "local_prune_complete",
        deleted=len(result.deleted_archives),
        remaining=result.remaining,
        errors=len(result.errors),
    )
    return result


async def prune_remote(store: RemoteStore, remote_dir: str, keep_count: int) -> PruneResult:
    """
    Enforce the remote keep count on the remote backup directory.

    Refuses to run against an empty remote directory, which would mean
    the root of the remote store.
    """
    remote_dir = normalize_remote_dir(remote_dir)
    if not remote_dir:
        raise PruneError(explain_empty_remote_dir())

    files = await store.list_files(remote_dir)
    selected = select_for_pruning(files, keep_count)
    result = PruneResult(
        store=store.describe(),
        keep_count=keep_count,
        found=len(sort_archive_names(files)),
    )

    if not selected:
        logger.info("remote_prune_skipped", found=result.found, keep_count=keep_count)
        return result

    for archive in selected:
        members = group_members(archive_stem(archive), files)
        try:
            await store.delete(remote_dir, members)
        except WPVaultError as e:
            result.errors.append(f"{archive}: {e.message}")
            logger.error("remote_prune_failed", archive=archive, error=e.message)
            continue
        result.deleted_archives.append(archive)
        result.deleted_files.extend(members)
        logger.info("remote_archive_pruned", archive=archive, files=len(members))

    logger.info(
        "remote_prune_complete",
        deleted=len(result.deleted_archives),
        remaining=result.remaining,
        errors=len(result.errors),
    )
    return result
