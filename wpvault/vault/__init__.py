# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Run journal and snapshot compression.
"""

from wpvault.vault.journal import (
    init_journal_db,
    record_run_start,
    complete_run,
    record_safety_snapshot,
    get_run,
    list_runs,
    get_safety_snapshots,
    mark_snapshot_rolled_back,
    get_journal_stats,
    RunRecord,
    SnapshotRecord,
)

from wpvault.vault.compressor import (
    compress_file,
    decompress_file,
)

__all__ = [
    # Journal functions
    "init_journal_db",
    "record_run_start",
    "complete_run",
    "record_safety_snapshot",
    "get_run",
    "list_runs",
    "get_safety_snapshots",
    "mark_snapshot_rolled_back",
    "get_journal_stats",
    # Types
    "RunRecord",
    "SnapshotRecord",
    # Compressor
    "compress_file",
    "decompress_file",
]
