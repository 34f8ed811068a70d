# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Integration Tests for WPVault.

These tests verify the integration between components:
- Configuration (dataclass, builder, secure.conf)
- Remote store backends and the retry wrapper
- Run journal
- wp-config.php rewriting and rollback
- CLI exit codes
- FastAPI endpoints
"""

import asyncio
import dataclasses
import io
import stat
import tarfile
from datetime import datetime, UTC
from pathlib import Path
from typing import List, Sequence
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import aiosqlite
import pytest
from click.testing import CliRunner

from tests.conftest import DB_PASSWORD, WP_CONFIG_TEXT, read_tree
from wpvault.backup.restore import (
    STOP_EDITING_MARKER,
    RestoreMode,
    extract_members,
    load_session,
    restore_archive,
    rewrite_wp_config,
    rollback,
    select_archive,
)
from wpvault.cli import main
from wpvault.config import RemoteBackend, VaultConfig
from wpvault.core import run_backup
from wpvault.exceptions import (
    ChecksumMismatchError,
    ConfigurationError,
    ErrorKind,
    LockContentionError,
    RemoteStoreError,
    RestoreValidationError,
    RollbackError,
    exit_code_for,
)
from wpvault.lock import PipelineLock
from wpvault.remote import (
    LocalDirRemoteStore,
    RcloneRemoteStore,
    RetryingRemoteStore,
    S3RemoteStore,
    create_remote_store,
)
from wpvault.remote.base import RemoteStore

BASE = datetime(2024, 3, 1, 4, 0, 0, tzinfo=UTC)
AUTH = {"Authorization": "Bearer test-api-key-12345"}


# ============================================================================
# Configuration
# ============================================================================


def test_config_collects_every_validation_error():
    with pytest.raises(ConfigurationError) as exc_info:
        VaultConfig(
            db_name="",
            db_user="",
            remote_name="",
            remote_dir="/",
            local_keep_count=-1,
            timezone="Mars/Olympus",
        )

    errors = exc_info.value.details["errors"]
    assert len(errors) >= 5
    assert any("remote_dir" in e for e in errors)
    assert any("local_keep_count" in e for e in errors)


def test_config_is_immutable_and_redacted(test_config: VaultConfig):
    with pytest.raises(dataclasses.FrozenInstanceError):
        test_config.db_name = "other"  # type: ignore[misc]

    updated = test_config.with_updates(local_keep_count=7)
    assert updated.local_keep_count == 7
    assert test_config.local_keep_count == 3

    assert DB_PASSWORD not in repr(test_config)
    redacted = test_config.redacted()
    assert redacted["db_password"] == "***"
    assert redacted["remote_backend"] == "local"


def test_create_config_builder():
    from wpvault.builder import create_config

    config = create_config(
        "wordpress",
        "wp_user",
        "secret",
        remote_name="onedrive",
        remote_dir="/wordpress/backups/",
        local_keep_count=2,
        remote_keep_count=14,
    )

    assert config.remote_backend == RemoteBackend.RCLONE
    assert config.remote_path == "wordpress/backups"
    assert config.remote_keep_count == 14
    assert config.db_host == "localhost"


def test_load_secure_conf_with_env_override(secure_conf: Path, test_config: VaultConfig):
    from wpvault.env import load_config_file

    config = load_config_file(secure_conf, environ={"WPVAULT_LOCAL_KEEP_COUNT": "5"})

    assert config.db_password == DB_PASSWORD
    assert config.remote_name == test_config.remote_name
    assert config.remote_dir == "wordpress/backups"
    assert config.local_keep_count == 5
    assert config.remote_keep_count == 3
    assert config.lock_path == test_config.lock_path
    assert config.web_owner is None


def test_load_secure_conf_rejects_bad_values(temp_dir: Path, secure_conf: Path):
    from wpvault.env import load_config_file

    with pytest.raises(ConfigurationError):
        load_config_file(temp_dir / "missing.conf", environ={})

    with pytest.raises(ConfigurationError):
        load_config_file(secure_conf, environ={"WPVAULT_REMOTE_KEEP_COUNT": "many"})


def test_exit_codes_are_distinct():
    codes = [kind.exit_code for kind in ErrorKind]

    assert len(set(codes)) == len(codes)
    assert 0 not in codes
    assert exit_code_for(LockContentionError("busy")) == 75
    assert exit_code_for(ChecksumMismatchError("bad")) == 13
    assert exit_code_for(ValueError("boom")) == 1


def test_archive_name_uses_configured_timezone():
    from wpvault.naming import archive_name, is_archive_name, sidecar_name

    name = archive_name(datetime(2024, 5, 6, 7, 8, 9, tzinfo=UTC), ZoneInfo("Asia/Shanghai"))

    assert name == "wp-backup-2024-05-06_15-08-09.tar.gz"
    assert sidecar_name(name) == name + ".sha256"
    assert is_archive_name(name)
    assert not is_archive_name(sidecar_name(name))


def test_archive_name_requires_a_real_timestamp():
    from wpvault.backup.retention import select_for_pruning
    from wpvault.naming import is_archive_name

    assert not is_archive_name("wp-backup-manual.tar.gz")
    assert not is_archive_name("wp-backup-2024-13-01_00-00-00.tar.gz")
    assert not is_archive_name("wp-backup-2024-1-1_0-0-0.tar.gz")

    names = [
        "wp-backup-manual.tar.gz",
        "wp-backup-manual.tar.gz.sha256",
        "wp-backup-2024-01-01_00-00-00.tar.gz",
        "wp-backup-2024-01-02_00-00-00.tar.gz",
    ]
    doomed = select_for_pruning(names, 1)
    assert doomed == ["wp-backup-2024-01-01_00-00-00.tar.gz"]


def test_build_from_steps_for_s3_backend():
    from wpvault.builder import (
        build_from_steps,
        keep_remote,
        with_cache,
        with_database,
        with_s3,
        without_retries,
    )

    config = build_from_steps(
        lambda c: with_database(c, "wordpress", "wp_user", "secret"),
        lambda c: with_s3(c, "site-backups", "/wp/backups/", endpoint_url="http://minio:9000"),
        lambda c: keep_remote(c, 30),
        lambda c: with_cache(c, password="r3dis"),
        without_retries,
    )

    assert config.remote_backend == RemoteBackend.S3
    assert config.remote_path == "wp/backups"
    assert config.remote_keep_count == 30
    assert config.redis_password == "r3dis"
    assert config.retry_attempts == 1
    assert isinstance(create_remote_store(config), S3RemoteStore)


# ============================================================================
# Integrity and compression
# ============================================================================


@pytest.mark.asyncio
async def test_sidecar_verification(temp_dir: Path):
    from wpvault.backup.manager import verify_local_archive
    from wpvault.integrity import parse_sidecar, verify, write_sidecar

    bundle = temp_dir / "wp-backup-2024-01-01_00-00-00.tar.gz"
    bundle.write_bytes(b"bundle contents")
    sidecar = await write_sidecar(bundle)

    digest, filename = parse_sidecar(sidecar.read_text())
    assert filename == bundle.name
    assert len(digest) == 64
    assert await verify(bundle, sidecar)
    assert await verify_local_archive(bundle)

    bundle.write_bytes(b"bundle c0ntents")
    assert not await verify(bundle, sidecar)

    sidecar.write_text("not a digest\n")
    assert not await verify(bundle, sidecar)
    with pytest.raises(ChecksumMismatchError):
        parse_sidecar("not a digest\n")


@pytest.mark.asyncio
async def test_zstd_round_trip(temp_dir: Path):
    from wpvault.vault.compressor import compress_file, decompress_file

    source = temp_dir / "dump.sql"
    source.write_text("INSERT INTO wp_options VALUES (1);\n" * 1000)

    size = await compress_file(source, temp_dir / "dump.sql.zst")
    assert size < source.stat().st_size

    await decompress_file(temp_dir / "dump.sql.zst", temp_dir / "restored.sql")
    assert (temp_dir / "restored.sql").read_bytes() == source.read_bytes()
    assert not list(temp_dir.glob("*.tmp"))


# ============================================================================
# External commands
# ============================================================================


@pytest.mark.asyncio
async def test_credentials_never_appear_in_argv(test_config, local_store, fake_db):
    result = await run_backup(test_config, local_store, moment=BASE)
    await restore_archive(test_config, local_store, result.archive, RestoreMode.DATABASE)

    assert fake_db.calls
    for argv in fake_db.calls:
        assert all(DB_PASSWORD not in arg for arg in argv)
        assert argv[1].startswith("--defaults-extra-file=")


def test_mysql_defaults_file_is_private_and_removed(temp_dir: Path):
    from wpvault.process import mysql_defaults_file

    with mysql_defaults_file("wp_user", 'pa"ss', "db.internal", directory=temp_dir) as cnf:
        assert stat.S_IMODE(cnf.stat().st_mode) == 0o600
        assert stat.S_IMODE(cnf.parent.stat().st_mode) == 0o700
        content = cnf.read_text()
        assert "[client]" in content
        assert 'password="pa\\"ss"' in content
        assert 'host="db.internal"' in content

    assert not cnf.exists()
    assert not cnf.parent.exists()


def test_missing_executables_are_reported_together(monkeypatch):
    from wpvault.exceptions import DependencyMissingError
    from wpvault.process import require_commands

    monkeypatch.setattr("wpvault.process.shutil.which", lambda name: None)

    with pytest.raises(DependencyMissingError) as exc_info:
        require_commands(["mysqldump", "rclone"])

    assert exc_info.value.details["missing"] == ["mysqldump", "rclone"]


# ============================================================================
# Remote stores
# ============================================================================


@pytest.mark.asyncio
async def test_rclone_store_builds_argv(monkeypatch, temp_dir: Path):
    from wpvault.process import CommandError

    run = AsyncMock(return_value="b.tar.gz\na.tar.gz\n")
    monkeypatch.setattr("wpvault.remote.rclone.run_command", run)
    store = RcloneRemoteStore("onedrive:")
    bundle = temp_dir / "a.tar.gz"

    await store.upload(bundle, "/wordpress/backups/")
    assert run.await_args.args[0] == ["rclone", "copy", str(bundle), "onedrive:wordpress/backups"]

    assert await store.list_files("wordpress/backups") == ["a.tar.gz", "b.tar.gz"]
    assert run.await_args.args[0] == ["rclone", "lsf", "--files-only", "onedrive:wordpress/backups"]

    await store.fetch("wordpress/backups/a.tar.gz", temp_dir / "out.tar.gz")
    assert run.await_args.args[0][:2] == ["rclone", "copyto"]

    await store.delete("wordpress/backups", ["a.tar.gz", "a.tar.gz.sha256"])
    argv = run.await_args.args[0]
    assert argv[:3] == ["rclone", "delete", "onedrive:wordpress/backups"]
    assert "--files-from" in argv
    assert not Path(argv[argv.index("--files-from") + 1]).exists()

    run.side_effect = CommandError(["rclone"], 3, "ERROR : directory not found")
    assert await store.list_files("wordpress/missing") == []

    run.side_effect = CommandError(["rclone"], 1, "Failed to create file system")
    with pytest.raises(RemoteStoreError):
        await store.read_text("wordpress/backups/a.tar.gz.sha256")


class FakePaginator:
    def __init__(self, pages: List[dict]):
        self.pages = pages
        self.kwargs = None

    def paginate(self, **kwargs):
        self.kwargs = kwargs

        async def pages():
            for page in self.pages:
                yield page

        return pages()


def _s3_session(client) -> MagicMock:
    session = MagicMock()
    session.create_client.return_value.__aenter__.return_value = client
    session.create_client.return_value.__aexit__.return_value = False
    return session


@pytest.mark.asyncio
async def test_s3_store_upload_list_delete(temp_dir: Path):
    client = AsyncMock()
    paginator = FakePaginator(
        [
            {"Contents": [{"Key": "wp/backups/b.tar.gz"}, {"Key": "wp/backups/a.tar.gz"}]},
            {"Contents": [{"Key": "wp/backups/a.tar.gz.sha256"}]},
        ]
    )
    client.get_paginator = MagicMock(return_value=paginator)
    client.delete_objects.return_value = {}
    store = S3RemoteStore("site-backups", session=_s3_session(client))

    bundle = temp_dir / "a.tar.gz"
    bundle.write_bytes(b"bundle")
    await store.upload(bundle, "wp/backups")
    client.put_object.assert_awaited_once_with(
        Bucket="site-backups", Key="wp/backups/a.tar.gz", Body=b"bundle"
    )

    names = await store.list_files("wp/backups")
    assert names == ["a.tar.gz", "a.tar.gz.sha256", "b.tar.gz"]
    assert paginator.kwargs == {"Bucket": "site-backups", "Prefix": "wp/backups/", "Delimiter": "/"}

    await store.delete("wp/backups", ["a.tar.gz", "a.tar.gz.sha256"])
    request = client.delete_objects.await_args.kwargs["Delete"]
    assert request["Objects"] == [
        {"Key": "wp/backups/a.tar.gz"},
        {"Key": "wp/backups/a.tar.gz.sha256"},
    ]

    client.delete_objects.return_value = {
        "Errors": [{"Key": "wp/backups/a.tar.gz", "Message": "Access Denied"}]
    }
    with pytest.raises(RemoteStoreError):
        await store.delete("wp/backups", ["a.tar.gz"])


class FakeBody:
    """Streaming body returned by get_object."""

    def __init__(self, data: bytes):
        self.data = data
        self.reads: List[int | None] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def read(self, amt: int | None = None) -> bytes:
        self.reads.append(amt)
        if amt is None:
            amt = len(self.data)
        chunk, self.data = self.data[:amt], self.data[amt:]
        return chunk


@pytest.mark.asyncio
async def test_s3_store_uploads_large_files_in_parts(temp_dir: Path, monkeypatch):
    from botocore.exceptions import ClientError

    monkeypatch.setattr("wpvault.remote.s3.PART_SIZE", 5)
    client = AsyncMock()
    client.create_multipart_upload.return_value = {"UploadId": "up-1"}
    client.upload_part.side_effect = [{"ETag": f'"e{i}"'} for i in range(1, 4)]
    store = S3RemoteStore("site-backups", session=_s3_session(client))
    key = "wp/backups/wp-backup-2024-01-01_00-00-00.tar.gz"

    bundle = temp_dir / "wp-backup-2024-01-01_00-00-00.tar.gz"
    bundle.write_bytes(b"0123456789ab")
    await store.upload(bundle, "wp/backups")

    client.put_object.assert_not_awaited()
    calls = client.upload_part.await_args_list
    assert [c.kwargs["Body"] for c in calls] == [b"01234", b"56789", b"ab"]
    assert [c.kwargs["PartNumber"] for c in calls] == [1, 2, 3]
    client.complete_multipart_upload.assert_awaited_once_with(
        Bucket="site-backups",
        Key=key,
        UploadId="up-1",
        MultipartUpload={
            "Parts": [
                {"ETag": '"e1"', "PartNumber": 1},
                {"ETag": '"e2"', "PartNumber": 2},
                {"ETag": '"e3"', "PartNumber": 3},
            ]
        },
    )
    client.abort_multipart_upload.assert_not_awaited()

    client.upload_part.side_effect = ClientError(
        {"Error": {"Code": "InternalError", "Message": "We encountered an internal error"}},
        "UploadPart",
    )
    with pytest.raises(RemoteStoreError) as exc_info:
        await store.upload(bundle, "wp/backups")
    assert exc_info.value.details["key"] == key
    client.abort_multipart_upload.assert_awaited_once_with(
        Bucket="site-backups", Key=key, UploadId="up-1"
    )


@pytest.mark.asyncio
async def test_s3_store_streams_downloads_to_disk(temp_dir: Path, monkeypatch):
    from botocore.exceptions import ClientError

    monkeypatch.setattr("wpvault.remote.s3.CHUNK_SIZE", 4)
    client = AsyncMock()
    body = FakeBody(b"0123456789")
    client.get_object.return_value = {"Body": body}
    store = S3RemoteStore("site-backups", session=_s3_session(client))

    target = temp_dir / "bundle.tar.gz"
    await store.fetch("/wp/backups/a.tar.gz", target)

    assert target.read_bytes() == b"0123456789"
    assert body.reads == [4, 4, 4, 4]
    client.get_object.assert_awaited_once_with(Bucket="site-backups", Key="wp/backups/a.tar.gz")

    client.get_object.side_effect = ClientError(
        {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
        "GetObject",
    )
    missing = temp_dir / "missing.tar.gz"
    with pytest.raises(RemoteStoreError):
        await store.fetch("wp/backups/missing.tar.gz", missing)
    assert not missing.exists()


@pytest.mark.asyncio
async def test_local_store_refuses_paths_outside_root(local_store, temp_dir: Path):
    with pytest.raises(RemoteStoreError):
        await local_store.fetch("../../etc/passwd", temp_dir / "passwd")


class FlakyStore(RemoteStore):
    """Fails a fixed number of times before delegating to a local store."""

    backend = "flaky"

    def __init__(self, inner: RemoteStore, failures: int, error: Exception | None = None):
        self.inner = inner
        self.failures = failures
        self.error = error or RemoteStoreError("connection reset by peer")
        self.calls = 0

    async def _maybe_fail(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error

    async def upload(self, local_path: Path, remote_dir: str) -> None:
        await self._maybe_fail()
        await self.inner.upload(local_path, remote_dir)

    async def list_files(self, remote_dir: str) -> List[str]:
        await self._maybe_fail()
        return await self.inner.list_files(remote_dir)

    async def fetch(self, remote_path: str, local_path: Path) -> None:
        await self._maybe_fail()
        await self.inner.fetch(remote_path, local_path)

    async def delete(self, remote_dir: str, names: Sequence[str]) -> None:
        await self._maybe_fail()
        await self.inner.delete(remote_dir, names)

    async def read_text(self, remote_path: str) -> str:
        await self._maybe_fail()
        return await self.inner.read_text(remote_path)


@pytest.mark.asyncio
async def test_retry_absorbs_transient_remote_errors(local_store):
    flaky = FlakyStore(local_store, failures=2)
    store = RetryingRemoteStore(flaky, attempts=3, initial_delay=0, max_delay=0)

    assert await store.list_files("wordpress/backups") == []
    assert flaky.calls == 3


@pytest.mark.asyncio
async def test_retry_gives_up_after_bounded_attempts(local_store):
    flaky = FlakyStore(local_store, failures=10)
    store = RetryingRemoteStore(flaky, attempts=3, initial_delay=0, max_delay=0)

    with pytest.raises(RemoteStoreError):
        await store.list_files("wordpress/backups")
    assert flaky.calls == 3


@pytest.mark.asyncio
async def test_retry_ignores_non_remote_errors(local_store):
    flaky = FlakyStore(local_store, failures=1, error=ValueError("bug"))
    store = RetryingRemoteStore(flaky, attempts=3, initial_delay=0, max_delay=0)

    with pytest.raises(ValueError):
        await store.list_files("wordpress/backups")
    assert flaky.calls == 1


def test_retry_disabled_with_single_attempt(test_config: VaultConfig):
    assert isinstance(create_remote_store(test_config), LocalDirRemoteStore)

    wrapped = create_remote_store(test_config.with_updates(retry_attempts=4))
    assert isinstance(wrapped, RetryingRemoteStore)
    assert wrapped.attempts == 4


@pytest.mark.asyncio
async def test_backup_survives_flaky_upload(test_config, local_store, fake_db, remote_dir: Path):
    flaky = FlakyStore(local_store, failures=1)
    store = RetryingRemoteStore(flaky, attempts=2, initial_delay=0, max_delay=0)

    result = await run_backup(test_config, store, moment=BASE)

    assert (remote_dir / result.archive).exists()
    assert flaky.calls > 1


@pytest.mark.asyncio
async def test_upload_failure_maps_to_upload_error(test_config, local_store, fake_db):
    from wpvault.exceptions import UploadError

    flaky = FlakyStore(local_store, failures=100)

    with pytest.raises(UploadError) as exc_info:
        await run_backup(test_config, flaky, moment=BASE)

    assert exc_info.value.exit_code == 12
    assert exc_info.value.details["stage"] == "uploading"


# ============================================================================
# Journal
# ============================================================================


@pytest.mark.asyncio
async def test_journal_records_backup_runs(test_config, local_store, fake_db):
    from wpvault.core import get_status
    from wpvault.vault.journal import get_run, list_runs

    result = await run_backup(test_config, local_store, moment=BASE)

    async with aiosqlite.connect(test_config.journal_path) as db:
        run = await get_run(db, result.run_id)
        assert run["kind"] == "backup"
        assert run["status"] == "succeeded"
        assert run["archive"] == result.archive
        assert run["details"]["sha256"] == result.sha256
        assert len(await list_runs(db)) == 1

    status = await get_status(test_config)
    assert status["local"]["archive_count"] == 1
    assert status["journal"]["total_runs"] == 1
    assert status["journal"]["last_backup_archive"] == result.archive


@pytest.mark.asyncio
async def test_journal_records_failed_run_kind(test_config, local_store, fake_db):
    from wpvault.exceptions import DumpError
    from wpvault.vault.journal import list_runs

    fake_db.content = ""
    with pytest.raises(DumpError):
        await run_backup(test_config, local_store, moment=BASE)

    async with aiosqlite.connect(test_config.journal_path) as db:
        runs = await list_runs(db)
    assert runs[0]["status"] == "failed"
    assert runs[0]["error_kind"] == "dump_failure"


async def _add_journal_trigger(journal_path: Path, event: str) -> None:
    from wpvault.vault.journal import init_journal_db

    await init_journal_db(journal_path)
    async with aiosqlite.connect(journal_path) as db:
        await db.execute(
            f"CREATE TRIGGER refuse_runs BEFORE {event} ON runs "
            "BEGIN SELECT RAISE(ABORT, 'journal refuses writes'); END"
        )
        await db.commit()


@pytest.mark.asyncio
async def test_journal_start_failure_is_a_journal_error(
    test_config, local_store, fake_db, remote_dir: Path
):
    from wpvault.exceptions import JournalError

    await _add_journal_trigger(test_config.journal_path, "INSERT")

    with pytest.raises(JournalError) as exc_info:
        await run_backup(test_config, local_store, moment=BASE)

    assert exc_info.value.exit_code == 23
    assert exit_code_for(exc_info.value) == 23
    assert isinstance(exc_info.value.__cause__, aiosqlite.Error)
    assert exc_info.value.details["kind"] == "backup"
    assert fake_db.calls == []
    assert list(test_config.backup_dir.glob("*.tar.gz")) == []
    assert list(remote_dir.glob("*")) == []
    # Lock was released
    with PipelineLock(test_config.lock_path):
        pass


@pytest.mark.asyncio
async def test_journal_close_failure_does_not_fail_backup(test_config, local_store, fake_db):
    from wpvault.exceptions import JournalError
    from wpvault.vault.journal import complete_run, get_run

    await _add_journal_trigger(test_config.journal_path, "UPDATE")

    result = await run_backup(test_config, local_store, moment=BASE)
    assert result.archive_path.exists()

    async with aiosqlite.connect(test_config.journal_path) as db:
        run = await get_run(db, result.run_id)
        assert run["status"] == "running"

        with pytest.raises(JournalError) as exc_info:
            await complete_run(db, result.run_id, succeeded=True)
    assert exc_info.value.exit_code == 23
    assert exc_info.value.details == {"run_id": result.run_id}


# ============================================================================
# Restore building blocks
# ============================================================================


def test_rewrite_wp_config_uses_current_secrets(test_config: VaultConfig):
    config = test_config.with_updates(db_password="it's-new", redis_password="r3dis")

    text = rewrite_wp_config(WP_CONFIG_TEXT, config)

    assert "define( 'DB_NAME', 'wordpress' );" in text
    assert "define( 'DB_USER', 'wp_user' );" in text
    assert "define( 'DB_PASSWORD', 'it\\'s-new' );" in text
    assert "define( 'DB_CHARSET', 'utf8mb4' );" in text
    assert "old-password" not in text
    assert "define('WP_CACHE', false);" not in text
    assert text.count("WP_CACHE") == 1
    assert "define('WP_REDIS_PASSWORD', 'r3dis');" in text
    assert "define('WP_REDIS_PORT', 6379);" in text
    assert text.index("define('FS_METHOD', 'direct');") < text.index(STOP_EDITING_MARKER)


def test_rewrite_wp_config_without_marker_appends(test_config: VaultConfig):
    text = rewrite_wp_config("<?php\ndefine('DB_NAME', 'x');", test_config)

    assert text.rstrip().endswith("define('WP_CACHE', true);")
    assert "WP_REDIS_PASSWORD" not in text


def test_extract_refuses_members_outside_destination(temp_dir: Path):
    tar_path = temp_dir / "evil.tar"
    with tarfile.open(tar_path, "w") as tar:
        payload = b"owned"
        info = tarfile.TarInfo("../escaped.txt")
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))

    with pytest.raises(tarfile.FilterError):
        extract_members(tar_path, temp_dir / "out")
    assert not (temp_dir / "escaped.txt").exists()


def test_select_archive_by_index():
    archives = ["wp-backup-2024-01-03_00-00-00.tar.gz", "wp-backup-2024-01-02_00-00-00.tar.gz"]

    assert select_archive(archives) == archives[0]
    assert select_archive(archives, 2) == archives[1]
    with pytest.raises(RestoreValidationError):
        select_archive(archives, 3)
    with pytest.raises(RestoreValidationError):
        select_archive([], 1)


@pytest.mark.asyncio
async def test_restore_of_unknown_archive_touches_nothing(test_config, local_store, fake_db):
    before = read_tree(test_config.site_dir)

    with pytest.raises(RestoreValidationError) as exc_info:
        await restore_archive(
            test_config, local_store, "wp-backup-2020-01-01_00-00-00.tar.gz", RestoreMode.FULL
        )

    assert exc_info.value.details["reason"] == "download_failed"
    assert read_tree(test_config.site_dir) == before
    assert fake_db.calls == []


# ============================================================================
# Rollback
# ============================================================================


@pytest.mark.asyncio
async def test_rollback_replays_safety_snapshots(test_config, local_store, fake_db):
    result = await run_backup(test_config, local_store, moment=BASE)
    (test_config.site_dir / "index.php").write_text("<?php // v2\n")
    fake_db.content = "-- live database v2\n"
    live_site = read_tree(test_config.site_dir)

    restored = await restore_archive(test_config, local_store, result.archive, RestoreMode.FULL)
    assert fake_db.content.startswith("-- live database v1")

    session = await load_session(test_config.journal_path, restored.run_id)
    assert session.mode == RestoreMode.FULL
    assert [s.kind for s in session.snapshots] == ["database", "directory"]

    outcome = await rollback(test_config, session)

    assert read_tree(test_config.site_dir) == live_site
    assert fake_db.content == "-- live database v2\n"
    assert len(outcome.restored) == 2
    assert len(outcome.moved_aside) == 1
    assert Path(outcome.moved_aside[0]).name.startswith("wordpress.failed.")
    assert not list(test_config.site_dir.parent.glob("wordpress.bak.*"))

    # Snapshots are consumed by a successful rollback
    again = await load_session(test_config.journal_path, restored.run_id)
    assert again.snapshots == []


@pytest.mark.asyncio
async def test_rollback_of_unknown_run(test_config, local_store, fake_db):
    await run_backup(test_config, local_store, moment=BASE)

    with pytest.raises(RollbackError):
        await load_session(test_config.journal_path, "01HZZZZZZZZZZZZZZZZZZZZZZZ")


@pytest.mark.asyncio
async def test_rollback_reports_missing_snapshot(test_config, local_store, fake_db):
    import shutil

    result = await run_backup(test_config, local_store, moment=BASE)
    restored = await restore_archive(test_config, local_store, result.archive, RestoreMode.FILES)
    session = await load_session(test_config.journal_path, restored.run_id)
    shutil.rmtree(session.snapshots[0].path)

    with pytest.raises(RollbackError) as exc_info:
        await rollback(test_config, session)

    assert exc_info.value.exit_code == 22
    assert exc_info.value.details["restored"] == []


# ============================================================================
# CLI
# ============================================================================


def test_cli_run_exit_zero_and_log_file(secure_conf: Path, test_config, fake_db, remote_dir: Path):
    runner = CliRunner()

    result = runner.invoke(main, ["--config", str(secure_conf), "--run"])

    assert result.exit_code == 0, result.output
    assert len(list(test_config.backup_dir.glob("*.tar.gz"))) == 1
    assert len(list(remote_dir.glob("*.tar.gz"))) == 1
    log_text = (test_config.log_dir / "backup.log").read_text()
    assert "backup_completed" in log_text
    assert DB_PASSWORD not in log_text


def test_cli_lock_contention_exit_code(secure_conf: Path, test_config, fake_db):
    runner = CliRunner()

    with PipelineLock(test_config.lock_path):
        result = runner.invoke(main, ["--config", str(secure_conf), "run"])

    assert result.exit_code == ErrorKind.LOCK_CONTENTION.exit_code
    assert not test_config.backup_dir.exists()


def test_cli_missing_config_exit_code(temp_dir: Path):
    runner = CliRunner()

    result = runner.invoke(main, ["--config", str(temp_dir / "nope.conf"), "run"])

    assert result.exit_code == ErrorKind.CONFIGURATION.exit_code


def test_cli_missing_dependency_exit_code(secure_conf: Path, monkeypatch):
    monkeypatch.setattr("wpvault.process.shutil.which", lambda name: None)
    runner = CliRunner()

    result = runner.invoke(main, ["--config", str(secure_conf), "--run"])

    assert result.exit_code == ErrorKind.DEPENDENCY_MISSING.exit_code


def test_cli_scripted_restore_and_rollback(secure_conf: Path, test_config, fake_db):
    runner = CliRunner()
    assert runner.invoke(main, ["--config", str(secure_conf), "run"]).exit_code == 0
    archive = next(test_config.backup_dir.glob("*.tar.gz")).name
    fake_db.content = "-- live database v2\n"

    result = runner.invoke(
        main,
        ["--config", str(secure_conf), "restore", "--archive", archive, "--mode", "1", "--yes"],
    )
    assert result.exit_code == 0, result.output
    assert fake_db.content.startswith("-- live database v1")

    async def _last_restore_id():
        from wpvault.vault.journal import list_runs

        async with aiosqlite.connect(test_config.journal_path) as db:
            return (await list_runs(db, kind="restore"))[0]["id"]

    run_id = asyncio.run(_last_restore_id())
    result = runner.invoke(main, ["--config", str(secure_conf), "rollback", run_id, "--yes"])
    assert result.exit_code == 0, result.output
    assert fake_db.content == "-- live database v2\n"


def test_cli_restore_unknown_archive(secure_conf: Path, fake_db):
    runner = CliRunner()

    result = runner.invoke(
        main,
        [
            "--config", str(secure_conf), "restore",
            "--archive", "wp-backup-2020-01-01_00-00-00.tar.gz", "--mode", "4", "--yes",
        ],
    )

    assert result.exit_code == ErrorKind.RESTORE_VALIDATION.exit_code


def test_cli_interactive_restore_can_be_cancelled(secure_conf: Path, test_config, fake_db):
    runner = CliRunner()
    assert runner.invoke(main, ["--config", str(secure_conf), "--run"]).exit_code == 0
    (test_config.site_dir / "index.php").write_text("<?php // v2\n")
    before = read_tree(test_config.site_dir)
    fake_db.calls.clear()

    result = runner.invoke(main, ["--config", str(secure_conf)], input="1\n4\nno\n")

    assert result.exit_code == 0, result.output
    assert "cancelled" in result.output
    assert read_tree(test_config.site_dir) == before
    assert fake_db.calls == []


def test_cli_status_history_and_prune(secure_conf: Path, test_config, fake_db):
    from tests.conftest import touch_archives

    runner = CliRunner()
    assert runner.invoke(main, ["--config", str(secure_conf), "run"]).exit_code == 0
    touch_archives(test_config.backup_dir, 4, start=datetime(2020, 1, 1, tzinfo=UTC))

    assert runner.invoke(main, ["--config", str(secure_conf), "status"]).exit_code == 0
    assert runner.invoke(main, ["--config", str(secure_conf), "history"]).exit_code == 0
    assert runner.invoke(main, ["--config", str(secure_conf), "list"]).exit_code == 0

    result = runner.invoke(main, ["--config", str(secure_conf), "prune"])
    assert result.exit_code == 0, result.output
    assert len(list(test_config.backup_dir.glob("*.tar.gz"))) == 3


def test_cli_cron_line(secure_conf: Path):
    runner = CliRunner()

    result = runner.invoke(
        main,
        ["--config", str(secure_conf), "cron-line", "--hour", "3", "--minute", "30",
         "--day-of-week", "0"],
    )

    assert result.exit_code == 0
    line = result.output.strip()
    assert line.startswith("30 3 * * 0 ")
    assert line.endswith(f"--config {secure_conf} --run")

    bad = runner.invoke(main, ["cron-line", "--day-of-week", "9"])
    assert bad.exit_code != 0


# ============================================================================
# FastAPI Integration Tests
# ============================================================================


def _app(config, store):
    from fastapi import FastAPI

    from wpvault.integrations.fastapi import register_wpvault_routes

    app = FastAPI()
    register_wpvault_routes(app, config, store)
    return app


@pytest.mark.asyncio
async def test_fastapi_requires_api_key(test_config, local_store, monkeypatch):
    from httpx import AsyncClient, ASGITransport

    transport = ASGITransport(app=_app(test_config, local_store))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        assert (await client.get("/admin/wpvault/health")).status_code == 401
        response = await client.get(
            "/admin/wpvault/health",
            headers={"Authorization": "Bearer wrong-key"},
        )
        assert response.status_code == 403

        monkeypatch.delenv("WPVAULT_ADMIN_API_KEY")
        response = await client.get("/admin/wpvault/health", headers=AUTH)
        assert response.status_code == 500


@pytest.mark.asyncio
async def test_fastapi_health_and_config(test_config, local_store):
    from httpx import AsyncClient, ASGITransport

    transport = ASGITransport(app=_app(test_config, local_store))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/admin/wpvault/health", headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert data["remote_reachable"] is True
        assert data["journal_accessible"] is False
        assert data["status"] == "degraded"

        response = await client.get("/admin/wpvault/config", headers=AUTH)
        assert response.status_code == 200
        assert response.json()["db_password"] == "***"
        assert DB_PASSWORD not in response.text


@pytest.mark.asyncio
async def test_fastapi_run_then_list(test_config, local_store, fake_db):
    from httpx import AsyncClient, ASGITransport

    transport = ASGITransport(app=_app(test_config, local_store))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/admin/wpvault/run", headers=AUTH)
        assert response.status_code == 200
        archive = response.json()["archive"]

        response = await client.get("/admin/wpvault/archives", headers=AUTH)
        data = response.json()
        assert data["local"] == [archive]
        assert data["remote"] == [archive]

        response = await client.get("/admin/wpvault/history", headers=AUTH)
        runs = response.json()
        assert [r["kind"] for r in runs] == ["backup"]

        response = await client.get("/admin/wpvault/stats", headers=AUTH)
        assert response.json()["journal"]["total_runs"] == 1


@pytest.mark.asyncio
async def test_fastapi_run_conflicts_while_locked(test_config, local_store, fake_db):
    from httpx import AsyncClient, ASGITransport

    transport = ASGITransport(app=_app(test_config, local_store))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        with PipelineLock(test_config.lock_path):
            response = await client.post("/admin/wpvault/run", headers=AUTH)

    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "lock_contention"


@pytest.mark.asyncio
async def test_fastapi_plugin_exposes_config(test_config, local_store):
    from fastapi import FastAPI
    from httpx import AsyncClient, ASGITransport

    from wpvault.integrations.fastapi import get_wpvault_config, setup_wpvault_plugin

    bare = FastAPI()
    with pytest.raises(RuntimeError):
        get_wpvault_config(bare)

    app = FastAPI()
    setup_wpvault_plugin(app, test_config, local_store, prefix="/ops/backups")
    assert get_wpvault_config(app) is test_config

    @app.get("/site")
    async def site() -> dict:
        return {"site_dir": str(get_wpvault_config(app).site_dir)}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/site")
        assert response.json() == {"site_dir": str(test_config.site_dir)}

        response = await client.get("/ops/backups/config", headers=AUTH)
        assert response.status_code == 200
        assert response.json()["db_password"] == "***"
