# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Archive building, local store, retention and restore.
"""

from wpvault.backup.archive import (
    dump_database,
    archive_site,
    bundle,
    build_archive,
)

from wpvault.backup.manager import (
    create_staging_dir,
    discard_staging_dir,
    publish_archive,
    list_local_archives,
    list_local_files,
    delete_local_group,
    verify_local_archive,
    get_backup_stats,
)

from wpvault.backup.retention import (
    select_for_pruning,
    prune_local,
    prune_remote,
    PruneResult,
)

from wpvault.backup.restore import (
    restore_archive,
    rollback,
    load_session,
    list_remote_archives,
    select_archive,
    describe_restore_impact,
    RestoreMode,
    RestoreResult,
    RestoreSession,
    RollbackResult,
    SafetySnapshot,
)

__all__ = [
    # Archive
    "dump_database",
    "archive_site",
    "bundle",
    "build_archive",
    # Manager
    "create_staging_dir",
    "discard_staging_dir",
    "publish_archive",
    "list_local_archives",
    "list_local_files",
    "delete_local_group",
    "verify_local_archive",
    "get_backup_stats",
    # Retention
    "select_for_pruning",
    "prune_local",
    "prune_remote",
    "PruneResult",
    # Restore
    "restore_archive",
    "rollback",
    "load_session",
    "list_remote_archives",
    "select_archive",
    "describe_restore_impact",
    "RestoreMode",
    "RestoreResult",
    "RestoreSession",
    "RollbackResult",
    "SafetySnapshot",
]
