# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for WPVault tests.

Provides a throwaway WordPress tree, a local-directory remote store,
a fake mysqldump/mysql pair, and test configuration helpers.
"""

import logging
import os
import tempfile
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Generator, List, Sequence

import pytest
import structlog

from wpvault.config import RemoteBackend, VaultConfig

# Set test environment variables
os.environ["WPVAULT_ADMIN_API_KEY"] = "test-api-key-12345"

DB_PASSWORD = "s3cret-pa55"

WP_CONFIG_TEXT = """<?php
define( 'DB_NAME', 'old_db' );
define( 'DB_USER', 'old_user' );
define( 'DB_PASSWORD', 'old-password' );
define( 'DB_HOST', 'localhost' );
define( 'DB_CHARSET', 'utf8' );
define('WP_CACHE', false);

$table_prefix = 'wp_';

/* That's all, stop editing! Happy publishing. */

require_once ABSPATH . 'wp-settings.php';
"""


class FakeDatabase:
    """
    Stands in for mysqldump and mysql.

    ``content`` is the live database: mysqldump writes it out verbatim and
    an import through mysql replaces it with the imported file.
    """

    def __init__(self, content: str = "-- live database v1\nINSERT INTO wp_posts VALUES (1);\n"):
        self.content = content
        self.calls: List[List[str]] = []
        self.dropped = 0
        self.before_drop = []  # callbacks run right before DROP DATABASE
        self.fail_import = False

    async def run_command(
        self,
        argv: Sequence[str],
        *,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
    ) -> str:
        argv = list(argv)
        self.calls.append(argv)

        if argv[0] == "mysqldump":
            Path(stdout_path).write_text(self.content)
            return ""

        if argv[0] == "mysql":
            if "-e" in argv:
                for callback in self.before_drop:
                    callback()
                self.dropped += 1
                self.content = ""
                return ""
            if stdin_path is not None:
                if self.fail_import:
                    from wpvault.process import CommandError

                    raise CommandError(argv, 1, "ERROR 1064 (42000): syntax error")
                self.content = Path(stdin_path).read_text()
                return ""

        raise AssertionError(f"unexpected command: {argv}")

    @property
    def mysql_calls(self) -> List[List[str]]:
        return [argv for argv in self.calls if argv[0] == "mysql"]


def make_site(site_dir: Path) -> Path:
    """Create a small WordPress-shaped tree."""
    (site_dir / "wp-content" / "uploads" / "2024" / "05").mkdir(parents=True)
    (site_dir / "wp-content" / "themes" / "twentyfour").mkdir(parents=True)
    (site_dir / "wp-config.php").write_text(WP_CONFIG_TEXT)
    (site_dir / "index.php").write_text("<?php // v1\n")
    (site_dir / "wp-content" / "uploads" / "2024" / "05" / "photo.jpg").write_bytes(b"\xff\xd8v1")
    (site_dir / "wp-content" / "themes" / "twentyfour" / "style.css").write_text("/* v1 */\n")
    return site_dir


def read_tree(root: Path) -> dict:
    """Relative path -> bytes for every file under root."""
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def touch_archives(directory: Path, count: int, start: datetime | None = None) -> List[str]:
    """Create ``count`` archive/sidecar pairs, one day apart, oldest first."""
    from wpvault.naming import archive_name, sidecar_name

    start = start or datetime(2024, 1, 1, 4, 0, 0, tzinfo=UTC)
    directory.mkdir(parents=True, exist_ok=True)
    names = []
    for i in range(count):
        name = archive_name(start + timedelta(days=i), UTC)
        (directory / name).write_bytes(f"bundle {i}".encode())
        (directory / sidecar_name(name)).write_text(f"{'0' * 64}  {name}\n")
        names.append(name)
    return names


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo handlers the CLI installs on the root logger."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    structlog.reset_defaults()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def site_dir(temp_dir: Path) -> Path:
    return make_site(temp_dir / "www" / "wordpress")


@pytest.fixture
def test_config(temp_dir: Path, site_dir: Path) -> VaultConfig:
    """Create a test configuration using a local-directory remote."""
    return VaultConfig(
        db_name="wordpress",
        db_user="wp_user",
        db_password=DB_PASSWORD,
        remote_backend=RemoteBackend.LOCAL,
        remote_name=str(temp_dir / "remote"),
        remote_dir="wordpress/backups",
        local_keep_count=3,
        remote_keep_count=3,
        site_dir=site_dir,
        backup_dir=temp_dir / "backups",
        safety_dir=temp_dir / "safety",
        log_dir=temp_dir / "log",
        state_dir=temp_dir / "state",
        lock_path=temp_dir / "wpvault.lock",
        retry_attempts=1,
        web_owner=None,
        web_group=None,
    )


@pytest.fixture
def remote_dir(test_config: VaultConfig) -> Path:
    """Directory the local remote store writes archives into."""
    return Path(test_config.remote_name) / test_config.remote_path


@pytest.fixture
def local_store(test_config: VaultConfig):
    from wpvault.remote import LocalDirRemoteStore

    return LocalDirRemoteStore(Path(test_config.remote_name))


@pytest.fixture
def fake_db(monkeypatch) -> FakeDatabase:
    """Replace database tooling and the executable pre-flight checks."""
    db = FakeDatabase()
    monkeypatch.setattr("wpvault.backup.archive.run_command", db.run_command)
    monkeypatch.setattr("wpvault.backup.restore.run_command", db.run_command)
    monkeypatch.setattr("wpvault.core.require_commands", lambda names: None)
    monkeypatch.setattr("wpvault.backup.restore.require_commands", lambda names: None)
    return db


@pytest.fixture
def secure_conf(temp_dir: Path, test_config: VaultConfig) -> Path:
    """Write a secure.conf equivalent to test_config."""
    path = temp_dir / "secure.conf"
    path.write_text(
        "\n".join(
            [
                f"DB_NAME='{test_config.db_name}'",
                f"DB_USER='{test_config.db_user}'",
                f"DB_PASS='{DB_PASSWORD}'",
                "REMOTE_BACKEND='local'",
                f"RCLONE_REMOTE_NAME='{test_config.remote_name}'",
                f"RCLONE_BACKUP_DIR='{test_config.remote_dir}'",
                "LOCAL_KEEP_COUNT='3'",
                "REMOTE_KEEP_COUNT='3'",
                f"SITE_DIR='{test_config.site_dir}'",
                f"BACKUP_DIR='{test_config.backup_dir}'",
                f"SAFETY_DIR='{test_config.safety_dir}'",
                f"LOG_DIR='{test_config.log_dir}'",
                f"STATE_DIR='{test_config.state_dir}'",
                f"LOCK_FILE='{test_config.lock_path}'",
                "RETRY_ATTEMPTS='1'",
                "WEB_OWNER='none'",
                "WEB_GROUP='none'",
                "",
            ]
        )
    )
    path.chmod(0o600)
    return path
