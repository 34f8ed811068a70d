# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Restore Manager - Selective, safety-netted restores.

A restore downloads one archive pair, verifies the bundle against its
sidecar, extracts it into a private work directory, and then applies one
of four modes:

    1  database     database only, files untouched
    2  uploads      wp-content/uploads only, database untouched
    3  files        whole site tree, database untouched
    4  full         database, then the whole site tree

Every destructive step is preceded by a safety snapshot of exactly what
it is about to overwrite (a compressed dump of the current database, or
the current directory renamed aside). Snapshots are never pruned. A
failed step leaves them in place; ``rollback`` replays them on request.
"""

import os
import re
import shutil
import tarfile
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime, UTC
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import List, Sequence, Tuple

import aiosqlite
import structlog

from wpvault.backup.archive import dump_database
from wpvault.config import VaultConfig
from wpvault.exceptions import (
    ChecksumMismatchError,
    JournalError,
    RemoteStoreError,
    RestoreStepError,
    RestoreValidationError,
    RollbackError,
    WPVaultError,
)
from wpvault.integrity import ensure_match, read_sidecar_digest, sha256_file
from wpvault.lock import PipelineLock
from wpvault.naming import (
    DATABASE_MEMBER,
    FILES_MEMBER,
    is_archive_name,
    remote_join,
    safety_suffix,
    sidecar_name,
    sort_archive_names,
)
from wpvault.process import mysql_defaults_file, require_commands, run_blocking, run_command
from wpvault.remote.base import RemoteStore
from wpvault.vault.compressor import compress_file, decompress_file
from wpvault.vault.journal import (
    complete_run,
    get_run,
    get_safety_snapshots,
    init_journal_db,
    mark_snapshot_rolled_back,
    record_run_start,
    record_safety_snapshot,
)

logger = structlog.get_logger()

WP_CONFIG = "wp-config.php"
STOP_EDITING_MARKER = "/* That's all, stop editing! Happy publishing. */"

# Constants re-injected into a restored wp-config.php
_INJECTED_CONSTANTS = ("FS_METHOD", "WP_REDIS_HOST", "WP_REDIS_PORT", "WP_REDIS_PASSWORD", "WP_CACHE")


class RestoreMode(int, Enum):
    """What a restore overwrites."""

    DATABASE = 1
    UPLOADS = 2
    FILES = 3
    FULL = 4

    @property
    def label(self) -> str:
        return _MODE_LABELS[self]

    @property
    def restores_database(self) -> bool:
        return self in (RestoreMode.DATABASE, RestoreMode.FULL)

    @property
    def restores_site(self) -> bool:
        return self in (RestoreMode.FILES, RestoreMode.FULL)


_MODE_LABELS = {
    RestoreMode.DATABASE: "Database only",
    RestoreMode.UPLOADS: "Media library (wp-content/uploads) only",
    RestoreMode.FILES: "All site files (database untouched)",
    RestoreMode.FULL: "Full restore (all site files + database)",
}


@dataclass
class SafetySnapshot:
    """Copy of current state taken right before a destructive step."""

    kind: str  # "database" or "directory"
    target: str  # database name, or the directory that was renamed aside
    path: Path
    created_at: str  # ISO 8601

    def to_dict(self) -> dict:
        return {**asdict(self), "path": str(self.path)}


@dataclass
class RestoreSession:
    """State of one restore attempt."""

    run_id: str
    archive: str
    mode: RestoreMode
    suffix: str  # restore-time timestamp shared by all snapshots
    work_dir: Path | None = None
    snapshots: List[SafetySnapshot] = field(default_factory=list)

    @property
    def extract_dir(self) -> Path | None:
        return self.work_dir / "extract" if self.work_dir else None


@dataclass
class RestoreResult:
    """Result of a completed restore."""

    run_id: str
    archive: str
    mode: int
    sha256: str
    snapshots: List[dict]
    wp_config_rewritten: bool
    duration_seconds: float


@dataclass
class RollbackResult:
    """Result of replaying a restore's safety snapshots."""

    run_id: str  # the rollback run
    restore_run_id: str
    restored: List[str]
    moved_aside: List[str]
    duration_seconds: float


def describe_restore_impact(config: VaultConfig, mode: RestoreMode) -> List[str]:
    """
    Human-readable list of what a restore mode will overwrite.

    Shown on the confirmation screen before anything is touched.
    """
    lines = [f"Mode {mode.value}: {mode.label}"]
    if mode.restores_database:
        lines.append(
            f"Database '{config.db_name}' will be DROPPED and re-imported "
            f"(current data dumped to {config.safety_dir} first)"
        )
    if mode == RestoreMode.UPLOADS:
        lines.append(
            f"{config.uploads_dir} will be replaced "
            f"(current directory renamed to uploads.bak.<timestamp>)"
        )
    if mode.restores_site:
        lines.append(
            f"{config.site_dir} will be replaced "
            f"(current tree renamed to {config.site_dir.name}.bak.<timestamp>)"
        )
        lines.append(
            f"{WP_CONFIG} will be rewritten with the current database credentials "
            f"and cache settings"
        )
    if not mode.restores_database:
        lines.append("The database is not touched")
    if mode == RestoreMode.DATABASE:
        lines.append("No files are touched")
    return lines


async def list_remote_archives(config: VaultConfig, store: RemoteStore) -> List[str]:
    """Archive names on the remote store, newest first."""
    names = await store.list_files(config.remote_path)
    return list(reversed(sort_archive_names(names)))


def select_archive(archives: Sequence[str], index: int = 1) -> str:
    """
    Pick an archive by its 1-based position in a newest-first listing.

    Raises:
        RestoreValidationError: If there is nothing to pick or the index is out of range
    """
    if not archives:
        raise RestoreValidationError("No archives found on the remote store")
    if not 1 <= index <= len(archives):
        raise RestoreValidationError(
            f"Archive index {index} out of range (1-{len(archives)})",
            details={"available": len(archives)},
        )
    return archives[index - 1]


# ============================================================================
# Tar extraction
# ============================================================================


def top_level_name(tar_path: Path) -> str:
    """Name of the first top-level directory in a tar."""
    with tarfile.open(tar_path, "r:*") as tar:
        for member in tar:
            parts = PurePosixPath(member.name).parts
            if parts and parts[0] not in ("/", ".."):
                return parts[0]
    raise RestoreValidationError(f"Archive {tar_path.name} is empty")


def has_members_under(tar_path: Path, prefix: Sequence[str]) -> bool:
    prefix = tuple(prefix)
    with tarfile.open(tar_path, "r:*") as tar:
        for member in tar:
            if PurePosixPath(member.name).parts[: len(prefix)] == prefix:
                return True
    return False


def _strip_parts(name: str, strip: int) -> str | None:
    parts = PurePosixPath(name).parts[strip:]
    return "/".join(parts) if parts else None


def extract_members(
    tar_path: Path,
    destination: Path,
    strip: int = 0,
    prefix: Sequence[str] | None = None,
) -> int:
    """
    Extract a tar, refusing members that would land outside destination.

    Args:
        tar_path: Tar (optionally compressed) to read
        destination: Directory to extract into
        strip: Leading path components to drop from every member
        prefix: Only extract members under these leading components

    Returns:
        Number of members extracted
    """
    prefix = tuple(prefix) if prefix else ()
    extracted = 0

    def _filter(member: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo | None:
        nonlocal extracted
        if prefix and PurePosixPath(member.name).parts[: len(prefix)] != prefix:
            return None
        changes = {}
        if strip:
            name = _strip_parts(member.name, strip)
            if name is None:
                return None
            changes["name"] = name
            if member.islnk():
                linkname = _strip_parts(member.linkname, strip)
                if linkname is None:
                    return None
                changes["linkname"] = linkname
        if changes:
            member = member.replace(**changes, deep=False)
        member = tarfile.tar_filter(member, dest_path)
        extracted += 1
        return member

    destination.mkdir(parents=True, exist_ok=True)
    with tarfile.open(tar_path, "r:*") as tar:
        tar.extractall(destination, filter=_filter)
    return extracted


# ============================================================================
# wp-config.php
# ============================================================================


def _php_quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _define_pattern(name: str) -> re.Pattern:
    return re.compile(
        r"define\(\s*(['\"])" + re.escape(name) + r"\1\s*,\s*(['\"])(?:\\.|(?!\2).)*\2\s*\);"
    )


def rewrite_wp_config(text: str, config: VaultConfig) -> str:
    """
    Point a restored wp-config.php at the current environment.

    Database credentials come from the current configuration, not from
    the backup. Filesystem and object-cache constants are removed and
    re-injected just before the "stop editing" marker.
    """
    for name, value in (
        ("DB_NAME", config.db_name),
        ("DB_USER", config.db_user),
        ("DB_PASSWORD", config.db_password),
    ):
        replacement = f"define( '{name}', {_php_quote(value)} );"
        text = _define_pattern(name).sub(lambda _m, r=replacement: r, text)

    text = re.sub(
        r"define\(\s*(['\"])DB_CHARSET\1\s*,\s*(['\"])utf8\2\s*\);",
        "define( 'DB_CHARSET', 'utf8mb4' );",
        text,
    )

    names = "|".join(_INJECTED_CONSTANTS)
    text = re.sub(
        r"^[ \t]*define\(\s*['\"](?:" + names + r")['\"].*(?:\r?\n|$)",
        "",
        text,
        flags=re.MULTILINE,
    )

    block = [
        "define('FS_METHOD', 'direct');",
        f"define('WP_REDIS_HOST', {_php_quote(config.redis_host)});",
        f"define('WP_REDIS_PORT', {int(config.redis_port)});",
    ]
    if config.redis_password:
        block.append(f"define('WP_REDIS_PASSWORD', {_php_quote(config.redis_password)});")
    block.append("define('WP_CACHE', true);")
    block_text = "\n".join(block)

    marker_at = text.find(STOP_EDITING_MARKER)
    if marker_at >= 0:
        line_start = text.rfind("\n", 0, marker_at) + 1
        return text[:line_start] + block_text + "\n\n" + text[line_start:]

    if not text.endswith("\n"):
        text += "\n"
    return text + "\n" + block_text + "\n"


def _rewrite_wp_config_file(path: Path, config: VaultConfig) -> None:
    original = path.read_text(encoding="utf-8")
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(rewrite_wp_config(original, config), encoding="utf-8")
    shutil.copymode(path, tmp)
    os.replace(tmp, path)


# ============================================================================
# Ownership and permissions
# ============================================================================


def apply_permissions(
    root: Path,
    dir_mode: int,
    file_mode: int,
    owner: str | None = None,
    group: str | None = None,
) -> None:
    """Set ownership and modes on a tree (symlinks are left alone)."""
    paths = [root]
    for dirpath, dirnames, filenames in os.walk(root):
        paths.extend(Path(dirpath) / name for name in dirnames + filenames)

    for path in paths:
        if path.is_symlink():
            continue
        if owner or group:
            shutil.chown(path, owner, group)
        path.chmod(dir_mode if path.is_dir() else file_mode)


def _fix_site_permissions(config: VaultConfig, wp_config_writable: bool) -> None:
    apply_permissions(config.site_dir, 0o755, 0o644, config.web_owner, config.web_group)
    wp_content = config.site_dir / "wp-content"
    if wp_content.is_dir():
        apply_permissions(wp_content, 0o775, 0o664)
    wp_config = config.site_dir / WP_CONFIG
    if wp_config.is_file():
        wp_config.chmod(0o664 if wp_config_writable else 0o644)


# ============================================================================
# Database helpers
# ============================================================================


def _quote_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


async def _mysql(config: VaultConfig, *args: str, stdin_path: Path | None = None) -> None:
    with mysql_defaults_file(config.db_user, config.db_password, config.db_host) as cnf:
        await run_command(
            ["mysql", f"--defaults-extra-file={cnf}", *args],
            stdin_path=stdin_path,
        )


async def recreate_database(config: VaultConfig) -> None:
    db = _quote_identifier(config.db_name)
    await _mysql(
        config,
        "-e",
        f"DROP DATABASE IF EXISTS {db}; "
        f"CREATE DATABASE {db} CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci;",
    )


async def import_database(config: VaultConfig, sql_path: Path) -> None:
    await _mysql(config, config.db_name, stdin_path=sql_path)


# ============================================================================
# Safety snapshots
# ============================================================================


async def _remember(
    db: aiosqlite.Connection | None,
    session: RestoreSession,
    snapshot: SafetySnapshot,
) -> SafetySnapshot:
    session.snapshots.append(snapshot)
    logger.info(
        "safety_snapshot_created",
        run_id=session.run_id,
        kind=snapshot.kind,
        path=str(snapshot.path),
    )
    if db is not None:
        await record_safety_snapshot(
            db,
            session.run_id,
            snapshot.kind,
            snapshot.target,
            str(snapshot.path),
            snapshot.created_at,
        )
    return snapshot


def _unused_path(directory: Path, stem: str, suffix: str) -> Path:
    # Restores within the same second share a suffix; an older dump is never overwritten
    path = directory / f"{stem}{suffix}"
    counter = 1
    while path.exists():
        path = directory / f"{stem}_{counter}{suffix}"
        counter += 1
    return path


async def snapshot_database(
    config: VaultConfig,
    session: RestoreSession,
    db: aiosqlite.Connection | None = None,
) -> SafetySnapshot:
    """Dump and compress the current database into the safety directory."""
    config.safety_dir.mkdir(parents=True, exist_ok=True)
    raw_dump = session.work_dir / "current_database.sql"
    snapshot_path = _unused_path(
        config.safety_dir, f"db_before_restore_{session.suffix}", ".sql.zst"
    )

    await dump_database(config, raw_dump)
    await compress_file(raw_dump, snapshot_path)
    raw_dump.unlink(missing_ok=True)

    return await _remember(
        db,
        session,
        SafetySnapshot(
            kind="database",
            target=config.db_name,
            path=snapshot_path,
            created_at=datetime.now(UTC).isoformat(),
        ),
    )


async def snapshot_directory(
    directory: Path,
    session: RestoreSession,
    db: aiosqlite.Connection | None = None,
) -> SafetySnapshot | None:
    """
    Rename a directory aside as ``<dir>.bak.<suffix>``.

    Returns None when there is nothing to protect.
    """
    if not directory.exists():
        logger.info("safety_snapshot_skipped", path=str(directory), reason="missing")
        return None

    snapshot_path = directory.with_name(f"{directory.name}.bak.{session.suffix}")
    if snapshot_path.exists():
        raise RestoreStepError(
            f"Safety snapshot path already exists: {snapshot_path}",
            details={"path": str(snapshot_path)},
        )
    os.rename(directory, snapshot_path)

    return await _remember(
        db,
        session,
        SafetySnapshot(
            kind="directory",
            target=str(directory),
            path=snapshot_path,
            created_at=datetime.now(UTC).isoformat(),
        ),
    )


# ============================================================================
# Restore steps
# ============================================================================


async def restore_database(
    config: VaultConfig,
    session: RestoreSession,
    db: aiosqlite.Connection | None = None,
) -> None:
    """Replace the database with the dump from the archive."""
    logger.info("restore_database_started", database=config.db_name)
    await snapshot_database(config, session, db)
    await recreate_database(config)
    await import_database(config, session.extract_dir / DATABASE_MEMBER)
    logger.info("restore_database_completed", database=config.db_name)


async def restore_uploads(
    config: VaultConfig,
    session: RestoreSession,
    db: aiosqlite.Connection | None = None,
) -> None:
    """Replace wp-content/uploads only."""
    files_tar = session.extract_dir / FILES_MEMBER
    top = await run_blocking(top_level_name, files_tar)
    prefix = (top, "wp-content", "uploads")

    if not await run_blocking(has_members_under, files_tar, prefix):
        raise RestoreValidationError(
            "Archive contains no wp-content/uploads directory",
            details={"archive": session.archive},
        )

    logger.info("restore_uploads_started", uploads_dir=str(config.uploads_dir))
    await snapshot_directory(config.uploads_dir, session, db)

    config.uploads_dir.parent.mkdir(parents=True, exist_ok=True)
    count = await run_blocking(extract_members, files_tar, config.site_dir, 1, prefix)
    await run_blocking(
        apply_permissions,
        config.uploads_dir,
        0o775,
        0o664,
        config.web_owner,
        config.web_group,
    )
    logger.info("restore_uploads_completed", members=count)


async def restore_all_files(
    config: VaultConfig,
    session: RestoreSession,
    db: aiosqlite.Connection | None = None,
    wp_config_writable: bool = False,
) -> bool:
    """
    Replace the whole site tree and adapt wp-config.php.

    Returns:
        True if wp-config.php was found and rewritten
    """
    files_tar = session.extract_dir / FILES_MEMBER
    logger.info("restore_files_started", site_dir=str(config.site_dir))
    await snapshot_directory(config.site_dir, session, db)

    config.site_dir.mkdir(parents=True)
    count = await run_blocking(extract_members, files_tar, config.site_dir, 1)

    wp_config = config.site_dir / WP_CONFIG
    rewritten = wp_config.is_file()
    if rewritten:
        await run_blocking(_rewrite_wp_config_file, wp_config, config)
        logger.info("wp_config_rewritten", path=str(wp_config))
    else:
        logger.warning("wp_config_missing", path=str(wp_config))

    await run_blocking(_fix_site_permissions, config, wp_config_writable)
    logger.info("restore_files_completed", members=count)
    return rewritten


# ============================================================================
# Orchestration
# ============================================================================


async def download_archive(
    config: VaultConfig,
    store: RemoteStore,
    archive: str,
    work_dir: Path,
) -> Tuple[Path, Path]:
    """Fetch an archive and its sidecar into the work directory."""
    bundle_path = work_dir / archive
    sidecar_path = work_dir / sidecar_name(archive)
    try:
        await store.fetch(remote_join(config.remote_path, archive), bundle_path)
        await store.fetch(remote_join(config.remote_path, sidecar_path.name), sidecar_path)
    except RemoteStoreError as e:
        raise RestoreValidationError(
            f"Download failed: {e.message}",
            details={"archive": archive, "reason": "download_failed"},
        ) from e

    for path in (bundle_path, sidecar_path):
        if not path.is_file():
            raise RestoreValidationError(
                f"Downloaded file is missing: {path.name}",
                details={"archive": archive, "reason": "missing_file"},
            )
    return bundle_path, sidecar_path


async def verify_download(bundle_path: Path, sidecar_path: Path) -> str:
    """
    Check a downloaded bundle against its downloaded sidecar.

    Returns:
        The verified digest

    Raises:
        RestoreValidationError: On mismatch or a malformed sidecar
    """
    try:
        expected = await read_sidecar_digest(sidecar_path)
        actual = await sha256_file(bundle_path)
        ensure_match(expected, actual, archive=bundle_path.name)
    except ChecksumMismatchError as e:
        raise RestoreValidationError(
            f"Checksum verification failed for {bundle_path.name}",
            details={"reason": "checksum_mismatch", **e.details},
        ) from e
    return actual


async def extract_bundle(session: RestoreSession, bundle_path: Path) -> None:
    """Unpack the bundle into the session's extraction directory."""
    try:
        await run_blocking(extract_members, bundle_path, session.extract_dir)
    except (OSError, tarfile.TarError) as e:
        raise RestoreValidationError(
            f"Failed to extract {bundle_path.name}: {e}",
            details={"archive": session.archive, "reason": "extract_failed"},
        ) from e

    needed = []
    if session.mode.restores_database:
        needed.append(DATABASE_MEMBER)
    if session.mode != RestoreMode.DATABASE:
        needed.append(FILES_MEMBER)
    missing = [name for name in needed if not (session.extract_dir / name).is_file()]
    if missing:
        raise RestoreValidationError(
            f"Archive is missing {', '.join(missing)}",
            details={"archive": session.archive, "reason": "missing_member"},
        )


async def _apply_mode(
    config: VaultConfig,
    session: RestoreSession,
    db: aiosqlite.Connection,
    wp_config_writable: bool,
) -> bool:
    rewritten = False
    if session.mode.restores_database:
        await restore_database(config, session, db)
    if session.mode == RestoreMode.UPLOADS:
        await restore_uploads(config, session, db)
    if session.mode.restores_site:
        rewritten = await restore_all_files(config, session, db, wp_config_writable)
    return rewritten


async def restore_archive(
    config: VaultConfig,
    store: RemoteStore,
    archive: str,
    mode: RestoreMode | int,
    journal_path: Path | None = None,
    wp_config_writable: bool = False,
) -> RestoreResult:
    """
    Restore one archive in the given mode.

    Nothing on the site or in the database is touched until the bundle
    has been downloaded, verified and extracted.

    Args:
        config: Vault configuration
        store: Remote store holding the archive
        archive: Archive name (as listed on the remote)
        mode: RestoreMode or its number (1-4)
        journal_path: Run journal location (default: config.journal_path)
        wp_config_writable: Leave wp-config.php group-writable (664)

    Raises:
        LockContentionError: A backup run is in progress
        RestoreValidationError: Download, checksum or extraction problem (nothing touched)
        RestoreStepError: A destructive step failed; details list the snapshots kept
    """
    from ulid import ULID

    try:
        mode = RestoreMode(mode)
    except ValueError as e:
        raise RestoreValidationError(f"Invalid restore mode: {mode}") from e
    if not is_archive_name(archive):
        raise RestoreValidationError(f"Not an archive name: {archive}")
    if mode.restores_database:
        require_commands(["mysql", "mysqldump"])

    start_time = datetime.now(UTC)
    journal_path = journal_path or config.journal_path

    with PipelineLock(config.lock_path):
        config.backup_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix=".restore-", dir=config.backup_dir))
        work_dir.chmod(0o700)
        session = RestoreSession(
            run_id=str(ULID()),
            archive=archive,
            mode=mode,
            suffix=safety_suffix(tz=config.tz),
            work_dir=work_dir,
        )

        try:
            await init_journal_db(journal_path)
            async with aiosqlite.connect(journal_path) as db:
                await record_run_start(
                    db, session.run_id, "restore", archive=archive, mode=mode.name.lower()
                )
                logger.info(
                    "restore_started",
                    run_id=session.run_id,
                    archive=archive,
                    mode=mode.value,
                )

                try:
                    bundle_path, sidecar_path = await download_archive(
                        config, store, archive, work_dir
                    )
                    digest = await verify_download(bundle_path, sidecar_path)
                    logger.info("restore_checksum_verified", archive=archive, sha256=digest)
                    await extract_bundle(session, bundle_path)
                    bundle_path.unlink(missing_ok=True)

                    try:
                        rewritten = await _apply_mode(config, session, db, wp_config_writable)
                    except RestoreValidationError:
                        raise
                    except (WPVaultError, OSError, tarfile.TarError) as e:
                        raise RestoreStepError(
                            f"Restore step failed: {e}",
                            details={
                                "archive": archive,
                                "mode": mode.value,
                                "snapshots": [str(s.path) for s in session.snapshots],
                            },
                        ) from e

                except WPVaultError as e:
                    logger.error(
                        "restore_failed",
                        run_id=session.run_id,
                        kind=e.kind.value,
                        error=e.message,
                        snapshots=[str(s.path) for s in session.snapshots],
                    )
                    await _close_run(
                        db,
                        session.run_id,
                        succeeded=False,
                        details=e.details,
                        error_kind=e.kind.value,
                        error=e.message,
                    )
                    raise

                result = RestoreResult(
                    run_id=session.run_id,
                    archive=archive,
                    mode=mode.value,
                    sha256=digest,
                    snapshots=[s.to_dict() for s in session.snapshots],
                    wp_config_rewritten=rewritten,
                    duration_seconds=(datetime.now(UTC) - start_time).total_seconds(),
                )
                await _close_run(db, session.run_id, succeeded=True, details=asdict(result))

        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    logger.info(
        "restore_completed",
        run_id=result.run_id,
        archive=archive,
        mode=mode.value,
        snapshots=len(result.snapshots),
    )
    return result


async def _close_run(db: aiosqlite.Connection, run_id: str, **kwargs) -> None:
    try:
        await complete_run(db, run_id, **kwargs)
    except JournalError as e:
        logger.error("journal_close_failed", run_id=run_id, error=e.message)


# ============================================================================
# Rollback
# ============================================================================


async def load_session(journal_path: Path, run_id: str) -> RestoreSession:
    """
    Rebuild a restore session from the journal.

    Only snapshots that have not been rolled back yet are included.

    Raises:
        RollbackError: If the run is unknown or was not a restore
    """
    if not journal_path.exists():
        raise RollbackError(
            "Run journal not found",
            details={"journal_path": str(journal_path)},
        )

    async with aiosqlite.connect(journal_path) as db:
        run = await get_run(db, run_id)
        if run is None or run["kind"] != "restore":
            raise RollbackError(
                f"No restore run with id {run_id}",
                details={"run_id": run_id},
            )
        records = await get_safety_snapshots(db, run_id)

    snapshots = [
        SafetySnapshot(
            kind=record["kind"],
            target=record["target"],
            path=Path(record["path"]),
            created_at=record["created_at"],
        )
        for record in records
    ]
    return RestoreSession(
        run_id=run_id,
        archive=run["archive"] or "",
        mode=RestoreMode[(run["mode"] or "full").upper()],
        suffix="",
        snapshots=snapshots,
    )


def _rollback_directory(snapshot: SafetySnapshot, suffix: str) -> str | None:
    target = Path(snapshot.target)
    moved_aside = None
    if target.exists() or target.is_symlink():
        failed = target.with_name(f"{target.name}.failed.{suffix}")
        os.rename(target, failed)
        moved_aside = str(failed)
    os.rename(snapshot.path, target)
    return moved_aside


async def _rollback_database(config: VaultConfig, snapshot: SafetySnapshot) -> None:
    config.backup_dir.mkdir(parents=True, exist_ok=True)
    work_dir = Path(tempfile.mkdtemp(prefix=".rollback-", dir=config.backup_dir))
    try:
        work_dir.chmod(0o700)
        sql_path = work_dir / "database.sql"
        await decompress_file(snapshot.path, sql_path)
        await recreate_database(config)
        await import_database(config, sql_path)
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)


async def rollback(
    config: VaultConfig,
    session: RestoreSession,
    journal_path: Path | None = None,
) -> RollbackResult:
    """
    Replay a restore's safety snapshots, newest first.

    Directory snapshots are renamed back into place; whatever the restore
    left at the target is moved aside as ``<dir>.failed.<timestamp>``.
    A database snapshot is decompressed and re-imported.

    Raises:
        RollbackError: On the first snapshot that cannot be replayed
    """
    from ulid import ULID

    start_time = datetime.now(UTC)
    journal_path = journal_path or config.journal_path
    run_id = str(ULID())
    suffix = safety_suffix(tz=config.tz)
    restored: List[str] = []
    moved_aside: List[str] = []

    with PipelineLock(config.lock_path):
        await init_journal_db(journal_path)
        async with aiosqlite.connect(journal_path) as db:
            await record_run_start(
                db, run_id, "rollback", archive=session.archive, mode=session.mode.name.lower()
            )
            logger.info(
                "rollback_started",
                run_id=run_id,
                restore_run_id=session.run_id,
                snapshots=len(session.snapshots),
            )

            for snapshot in reversed(session.snapshots):
                try:
                    if not snapshot.path.exists():
                        raise RollbackError(
                            f"Safety snapshot is gone: {snapshot.path}",
                            details={"path": str(snapshot.path)},
                        )
                    if snapshot.kind == "directory":
                        aside = _rollback_directory(snapshot, suffix)
                        if aside:
                            moved_aside.append(aside)
                    elif snapshot.kind == "database":
                        await _rollback_database(config, snapshot)
                    else:
                        raise RollbackError(f"Unknown snapshot kind: {snapshot.kind}")
                except (WPVaultError, OSError) as e:
                    if isinstance(e, RollbackError):
                        error = e
                    else:
                        error = RollbackError(
                            f"Rollback of {snapshot.path} failed: {e}",
                            details={"path": str(snapshot.path)},
                        )
                        error.__cause__ = e
                    error.details.update({"restored": restored, "restore_run_id": session.run_id})
                    logger.error("rollback_failed", run_id=run_id, error=error.message)
                    await _close_run(
                        db,
                        run_id,
                        succeeded=False,
                        details=error.details,
                        error_kind=error.kind.value,
                        error=error.message,
                    )
                    raise error

                restored.append(str(snapshot.path))
                await mark_snapshot_rolled_back(db, session.run_id, str(snapshot.path))
                logger.info("snapshot_rolled_back", kind=snapshot.kind, target=snapshot.target)

            result = RollbackResult(
                run_id=run_id,
                restore_run_id=session.run_id,
                restored=restored,
                moved_aside=moved_aside,
                duration_seconds=(datetime.now(UTC) - start_time).total_seconds(),
            )
            await _close_run(db, run_id, succeeded=True, details=asdict(result))

    logger.info("rollback_completed", run_id=run_id, restored=len(restored))
    return result

