# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Core - The backup pipeline orchestrator.

One run walks a fixed sequence of stages:

    idle -> locking -> dumping -> archiving -> publishing -> uploading
         -> verifying -> pruning -> done

Every stage between locking and verifying is fatal on error. Pruning is
best-effort: a verified remote copy already exists, so a failed prune is
reported but the run still succeeds. Nothing here is retried; transient
remote failures are absorbed by the store's own retry policy.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from pathlib import Path
from typing import List

import aiosqlite
import structlog

from wpvault.backup.archive import build_archive
from wpvault.backup.manager import (
    create_staging_dir,
    discard_staging_dir,
    get_backup_stats,
    publish_archive,
)
from wpvault.backup.retention import PruneResult, prune_local, prune_remote
from wpvault.config import RemoteBackend, VaultConfig
from wpvault.exceptions import (
    JournalError,
    LockContentionError,
    RemoteStoreError,
    UploadError,
    WPVaultError,
)
from wpvault.integrity import ensure_match, parse_sidecar, sha256_file
from wpvault.lock import PipelineLock
from wpvault.naming import remote_join
from wpvault.process import require_commands
from wpvault.remote import RemoteStore, create_remote_store
from wpvault.vault.journal import (
    complete_run,
    get_journal_stats,
    init_journal_db,
    record_run_start,
)

logger = structlog.get_logger()


class BackupStage(str, Enum):
    """States of one backup pipeline run."""

    IDLE = "idle"
    LOCKING = "locking"
    DUMPING = "dumping"
    ARCHIVING = "archiving"
    PUBLISHING = "publishing"
    UPLOADING = "uploading"
    VERIFYING = "verifying"
    PRUNING = "pruning"
    DONE = "done"


@dataclass
class BackupResult:
    """Result of a successful backup run."""

    run_id: str  # ULID
    archive: str
    archive_path: Path
    sidecar_path: Path
    sha256: str
    size_bytes: int
    remote: str
    duration_seconds: float
    local_prune: PruneResult | None = None
    remote_prune: PruneResult | None = None
    prune_errors: List[str] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "run_id": self.run_id,
            "archive": self.archive,
            "sha256": self.sha256,
            "size_bytes": self.size_bytes,
            "remote": self.remote,
            "duration_seconds": self.duration_seconds,
            "local_pruned": self.local_prune.deleted_archives if self.local_prune else [],
            "remote_pruned": self.remote_prune.deleted_archives if self.remote_prune else [],
            "prune_errors": self.prune_errors,
        }


def required_commands(config: VaultConfig) -> List[str]:
    """External executables a backup run needs."""
    commands = ["mysqldump"]
    if config.remote_backend == RemoteBackend.RCLONE:
        commands.append("rclone")
    return commands


class _StageTracker:
    def __init__(self, run_id: str):
        self.run_id = run_id
        self.stage = BackupStage.IDLE

    def enter(self, stage: BackupStage | str) -> None:
        self.stage = BackupStage(stage)
        logger.info("backup_stage_started", run_id=self.run_id, stage=self.stage.value)


async def _close_run(db: aiosqlite.Connection, run_id: str, **kwargs) -> None:
    # The backup outcome must not depend on the audit trail
    try:
        await complete_run(db, run_id, **kwargs)
    except JournalError as e:
        logger.error("journal_close_failed", run_id=run_id, error=e.message)


async def _prune(
    config: VaultConfig,
    store: RemoteStore,
    result: BackupResult,
) -> None:
    try:
        result.local_prune = prune_local(config.backup_dir, config.local_keep_count)
        result.prune_errors.extend(result.local_prune.errors)
    except (WPVaultError, OSError) as e:
        result.prune_errors.append(f"local: {e}")
        logger.error("local_prune_aborted", error=str(e))

    try:
        result.remote_prune = await prune_remote(
            store, config.remote_path, config.remote_keep_count
        )
        result.prune_errors.extend(result.remote_prune.errors)
    except WPVaultError as e:
        result.prune_errors.append(f"remote: {e.message}")
        logger.error("remote_prune_aborted", error=e.message)


async def run_backup(
    config: VaultConfig,
    store: RemoteStore | None = None,
    journal_path: Path | None = None,
    moment: datetime | None = None,
) -> BackupResult:
    """
    Run the full backup pipeline once.

    Args:
        config: Vault configuration
        store: Remote store (default: built from config, with retries)
        journal_path: Run journal location (default: config.journal_path)
        moment: Timestamp for the archive name (default: now)

    Returns:
        BackupResult describing the published and verified archive

    Raises:
        LockContentionError: Another run holds the lock (nothing was touched)
        DependencyMissingError: A required executable is missing
        WPVaultError: Any fatal stage failure, with details["stage"] set
    """
    from ulid import ULID

    require_commands(required_commands(config))

    lock = PipelineLock(config.lock_path)
    try:
        lock.acquire()
    except LockContentionError as e:
        e.details.setdefault("stage", BackupStage.LOCKING.value)
        raise

    run_id = str(ULID())
    tracker = _StageTracker(run_id)
    tracker.enter(BackupStage.LOCKING)
    start_time = datetime.now(UTC)
    store = store or create_remote_store(config)
    journal_path = journal_path or config.journal_path
    staging_dir: Path | None = None

    try:
        await init_journal_db(journal_path)
        async with aiosqlite.connect(journal_path) as db:
            await record_run_start(db, run_id, "backup")
            logger.info(
                "backup_started",
                run_id=run_id,
                site_dir=str(config.site_dir),
                remote=store.describe(),
            )

            try:
                staging_dir = create_staging_dir(config.backup_dir)
                staged_archive, staged_sidecar = await build_archive(
                    config, staging_dir, moment, on_stage=tracker.enter
                )

                tracker.enter(BackupStage.PUBLISHING)
                archive_path, sidecar_path = publish_archive(
                    staged_archive, staged_sidecar, config.backup_dir
                )

                tracker.enter(BackupStage.UPLOADING)
                try:
                    await store.upload(archive_path, config.remote_path)
                    await store.upload(sidecar_path, config.remote_path)
                except RemoteStoreError as e:
                    raise UploadError(
                        f"Upload failed: {e.message}",
                        details={"archive": archive_path.name, **e.details},
                    ) from e
                logger.info("archive_uploaded", archive=archive_path.name, remote=store.describe())

                tracker.enter(BackupStage.VERIFYING)
                local_digest = await sha256_file(archive_path)
                remote_text = await store.read_text(
                    remote_join(config.remote_path, sidecar_path.name)
                )
                remote_digest, _ = parse_sidecar(remote_text)
                ensure_match(
                    remote_digest,
                    local_digest,
                    archive=archive_path.name,
                    source="remote_sidecar",
                )
                logger.info("remote_checksum_verified", archive=archive_path.name, sha256=local_digest)

                result = BackupResult(
                    run_id=run_id,
                    archive=archive_path.name,
                    archive_path=archive_path,
                    sidecar_path=sidecar_path,
                    sha256=local_digest,
                    size_bytes=archive_path.stat().st_size,
                    remote=store.describe(),
                    duration_seconds=0.0,
                )

                tracker.enter(BackupStage.PRUNING)
                await _prune(config, store, result)
                if result.prune_errors:
                    logger.warning("prune_incomplete", run_id=run_id, errors=result.prune_errors)

                tracker.enter(BackupStage.DONE)
                result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()

            except WPVaultError as e:
                e.details.setdefault("stage", tracker.stage.value)
                logger.error(
                    "backup_failed",
                    run_id=run_id,
                    stage=tracker.stage.value,
                    kind=e.kind.value,
                    error=e.message,
                )
                await _close_run(
                    db,
                    run_id,
                    succeeded=False,
                    details=e.details,
                    error_kind=e.kind.value,
                    error=e.message,
                )
                raise
            except Exception as e:
                logger.exception("backup_crashed", run_id=run_id, stage=tracker.stage.value)
                await _close_run(
                    db,
                    run_id,
                    succeeded=False,
                    details={"stage": tracker.stage.value},
                    error_kind="unexpected",
                    error=str(e),
                )
                raise

            await _close_run(
                db,
                run_id,
                succeeded=True,
                archive=result.archive,
                details=result.summary(),
            )

        logger.info(
            "backup_completed",
            run_id=run_id,
            archive=result.archive,
            size=result.size_bytes,
            duration_seconds=round(result.duration_seconds, 2),
        )
        return result

    finally:
        discard_staging_dir(staging_dir)
        lock.release()


async def get_status(config: VaultConfig, journal_path: Path | None = None) -> dict:
    """
    Local backup directory summary plus journal statistics.
    """
    journal_path = journal_path or config.journal_path
    status = {"local": get_backup_stats(config.backup_dir), "journal": None}

    if journal_path.exists():
        async with aiosqlite.connect(journal_path) as db:
            status["journal"] = await get_journal_stats(db)

    return status
