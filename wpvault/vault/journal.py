# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Run Journal - Audit trail of backup, restore and rollback runs.

Records are appended when a run starts and closed when it ends. The
journal also remembers every safety snapshot a restore took, which is
what lets an operator roll a failed restore back from a later process.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from wpvault.exceptions import JournalError

logger = structlog.get_logger()

RUN_KINDS = ("backup", "restore", "rollback")


class RunRecord(TypedDict):
    """Record of one pipeline run."""

    id: str  # ULID
    kind: str  # backup, restore, rollback
    started_at: str  # ISO 8601
    completed_at: str | None
    status: str  # running, succeeded, failed
    archive: str | None
    mode: str | None
    error_kind: str | None
    error: str | None
    details: dict


class SnapshotRecord(TypedDict):
    """Record of a safety snapshot taken by a restore run."""

    id: int
    run_id: str
    kind: str  # database, directory
    target: str
    path: str
    created_at: str
    rolled_back_at: str | None


async def init_journal_db(db_path: Path) -> None:
    """
    Initialize the journal schema.

    Creates tables if they don't exist. This is idempotent.
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    status TEXT NOT NULL,
                    archive TEXT,
                    mode TEXT,
                    error_kind TEXT,
                    error TEXT,
                    details TEXT NOT NULL DEFAULT '{}'
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS safety_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    target TEXT NOT NULL,
                    path TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    rolled_back_at TEXT,
                    FOREIGN KEY (run_id) REFERENCES runs(id)
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_started_at
                ON runs(started_at)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_snapshots_run_id
                ON safety_snapshots(run_id)
            """)

            await db.commit()

        logger.debug("journal_db_initialized", db_path=str(db_path))

    except (OSError, aiosqlite.Error) as e:
        raise JournalError(
            f"Failed to initialize run journal: {e}",
            details={"db_path": str(db_path)},
        ) from e


async def record_run_start(
    db: aiosqlite.Connection,
    run_id: str,
    kind: str,
    archive: str | None = None,
    mode: str | None = None,
) -> None:
    """Record that a run has started."""
    if kind not in RUN_KINDS:
        raise JournalError(f"Unknown run kind: {kind}")

    now = datetime.now(UTC).isoformat()
    try:
        await db.execute(
            """
            INSERT INTO runs (id, kind, started_at, status, archive, mode)
            VALUES (?, ?, ?, 'running', ?, ?)
            """,
            (run_id, kind, now, archive, mode),
        )
        await db.commit()
    except aiosqlite.Error as e:
        raise JournalError(
            f"Failed to record run start: {e}",
            details={"run_id": run_id, "kind": kind},
        ) from e

    logger.debug("run_recorded", run_id=run_id, kind=kind)


async def complete_run(
    db: aiosqlite.Connection,
    run_id: str,
    *,
    succeeded: bool,
    archive: str | None = None,
    details: dict | None = None,
    error_kind: str | None = None,
    error: str | None = None,
) -> None:
    """
    Close a run record.

    Args:
        db: Journal connection
        run_id: Run ID
        succeeded: Final outcome
        archive: Archive name, if only known at the end of the run
        details: Final statistics (JSON-serializable)
        error_kind: ErrorKind value when the run failed
        error: Error message when the run failed
    """
    now = datetime.now(UTC).isoformat()
    try:
        await db.execute(
            """
            UPDATE runs
            SET completed_at = ?, status = ?, archive = COALESCE(?, archive),
                details = ?, error_kind = ?, error = ?
            WHERE id = ?
            """,
            (
                now,
                "succeeded" if succeeded else "failed",
                archive,
                json.dumps(details or {}, default=str),
                error_kind,
                error,
                run_id,
            ),
        )
        await db.commit()
    except aiosqlite.Error as e:
        raise JournalError(
            f"Failed to close run record: {e}",
            details={"run_id": run_id},
        ) from e


async def record_safety_snapshot(
    db: aiosqlite.Connection,
    run_id: str,
    kind: str,
    target: str,
    path: str,
    created_at: str,
) -> int:
    """
    Record a safety snapshot.

    Must be called as soon as the snapshot exists on disk, before the
    destructive step it protects runs.

    Returns:
        Snapshot record ID
    """
    try:
        cursor = await db.execute(
            """
            INSERT INTO safety_snapshots (run_id, kind, target, path, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (run_id, kind, target, path, created_at),
        )
        await db.commit()
    except aiosqlite.Error as e:
        raise JournalError(
            f"Failed to record safety snapshot: {e}",
            details={"run_id": run_id, "path": path},
        ) from e
    return cursor.lastrowid


def _run_from_row(row) -> RunRecord:
    return RunRecord(
        id=row[0],
        kind=row[1],
        started_at=row[2],
        completed_at=row[3],
        status=row[4],
        archive=row[5],
        mode=row[6],
        error_kind=row[7],
        error=row[8],
        details=json.loads(row[9] or "{}"),
    )


_RUN_COLUMNS = (
    "id, kind, started_at, completed_at, status, archive, mode, error_kind, error, details"
)


async def get_run(db: aiosqlite.Connection, run_id: str) -> RunRecord | None:
    async with db.execute(
        f"SELECT {_RUN_COLUMNS} FROM runs WHERE id = ?",
        (run_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _run_from_row(row) if row else None


async def list_runs(
    db: aiosqlite.Connection,
    limit: int = 50,
    offset: int = 0,
    kind: str | None = None,
) -> List[RunRecord]:
    """
    List runs, newest first.

    Args:
        db: Journal connection
        limit: Maximum number of records to return
        offset: Number of records to skip
        kind: Optional filter by run kind
    """
    query = f"SELECT {_RUN_COLUMNS} FROM runs"
    params: List = []

    if kind:
        query += " WHERE kind = ?"
        params.append(kind)

    query += " ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    async with db.execute(query, params) as cursor:
        return [_run_from_row(row) async for row in cursor]


async def get_safety_snapshots(
    db: aiosqlite.Connection,
    run_id: str,
    include_rolled_back: bool = False,
) -> List[SnapshotRecord]:
    """Snapshots of a run in the order they were taken."""
    query = """
        SELECT id, run_id, kind, target, path, created_at, rolled_back_at
        FROM safety_snapshots
        WHERE run_id = ?
    """
    if not include_rolled_back:
        query += " AND rolled_back_at IS NULL"
    query += " ORDER BY id"

    records: List[SnapshotRecord] = []
    async with db.execute(query, (run_id,)) as cursor:
        async for row in cursor:
            records.append(
                SnapshotRecord(
                    id=row[0],
                    run_id=row[1],
                    kind=row[2],
                    target=row[3],
                    path=row[4],
                    created_at=row[5],
                    rolled_back_at=row[6],
                )
            )
    return records


async def mark_snapshot_rolled_back(
    db: aiosqlite.Connection,
    run_id: str,
    path: str,
) -> bool:
    now = datetime.now(UTC).isoformat()
    try:
        cursor = await db.execute(
            """
            UPDATE safety_snapshots
            SET rolled_back_at = ?
            WHERE run_id = ? AND path = ? AND rolled_back_at IS NULL
            """,
            (now, run_id, path),
        )
        await db.commit()
    except aiosqlite.Error as e:
        raise JournalError(
            f"Failed to mark snapshot rolled back: {e}",
            details={"run_id": run_id, "path": path},
        ) from e
    return cursor.rowcount > 0


async def get_journal_stats(db: aiosqlite.Connection) -> dict:
    """
    Get journal statistics.

    Returns:
        Dict with run counts and the most recent successful backup
    """
    stats: dict = {}

    async with db.execute("SELECT COUNT(*) FROM runs") as cursor:
        row = await cursor.fetchone()
        stats["total_runs"] = row[0] if row else 0

    async with db.execute(
        "SELECT kind || ':' || status, COUNT(*) FROM runs GROUP BY kind, status"
    ) as cursor:
        stats["runs_by_outcome"] = {row[0]: row[1] async for row in cursor}

    async with db.execute(
        """
        SELECT archive, completed_at FROM runs
        WHERE kind = 'backup' AND status = 'succeeded'
        ORDER BY started_at DESC LIMIT 1
        """
    ) as cursor:
        row = await cursor.fetchone()
        stats["last_backup_archive"] = row[0] if row else None
        stats["last_backup_at"] = row[1] if row else None

    async with db.execute(
        "SELECT error_kind, error FROM runs WHERE status = 'failed' ORDER BY started_at DESC LIMIT 1"
    ) as cursor:
        row = await cursor.fetchone()
        stats["last_error_kind"] = row[0] if row else None
        stats["last_error"] = row[1] if row else None

    async with db.execute(
        "SELECT COUNT(*) FROM safety_snapshots WHERE rolled_back_at IS NULL"
    ) as cursor:
        row = await cursor.fetchone()
        stats["safety_snapshots_kept"] = row[0] if row else 0

    return stats
