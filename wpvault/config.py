# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation. It is built once
at startup and handed to every component by reference, so nothing is
re-read from disk or the environment in the middle of a pipeline run.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class RemoteBackend(str, Enum):
    """Remote object store implementation."""

    RCLONE = "rclone"  # any rclone remote (OneDrive, S3, B2, ...)
    S3 = "s3"  # direct S3 API via aiobotocore
    LOCAL = "local"  # mounted directory (NAS, tests)


SECRET_FIELDS = frozenset({"db_password", "redis_password"})


def _validate_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def normalize_remote_dir(remote_dir: str) -> str:
    """Strip surrounding whitespace and slashes from a remote directory."""
    return (remote_dir or "").strip().strip("/")


@dataclass(frozen=True)
class VaultConfig:
    """
    Immutable configuration for backup and restore runs.

    This configuration is frozen after creation so that a pipeline run
    always sees the same credentials, paths and retention counts.
    """

    # Database credentials (consumed by mysqldump / mysql)
    db_name: str
    db_user: str
    db_password: str = field(default="", repr=False)
    db_host: str = "localhost"

    # Remote store
    remote_backend: RemoteBackend = RemoteBackend.RCLONE
    remote_name: str = ""  # rclone remote name, or root directory for LOCAL
    remote_dir: str = "wordpress/backups"

    # Retention (keep-N per store)
    local_keep_count: int = 10
    remote_keep_count: int = 10

    # Filesystem layout
    site_dir: Path = field(default_factory=lambda: Path("/var/www/wordpress"))
    backup_dir: Path = field(default_factory=lambda: Path("/var/backups/wpvault"))
    safety_dir: Path = field(default_factory=lambda: Path("/var/backups/wpvault/safety"))
    log_dir: Path = field(default_factory=lambda: Path("/var/log/wpvault"))
    state_dir: Path = field(default_factory=lambda: Path("/var/lib/wpvault"))
    lock_path: Path = field(default_factory=lambda: Path("/tmp/wpvault_backup.lock"))

    # Timezone used for archive names and safety snapshot suffixes
    timezone: str = "UTC"

    # gzip level for the final bundle
    compression_level: int = 6

    # Direct S3 backend settings
    s3_bucket: str | None = None
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None

    # Bounded retry for remote operations (1 = single attempt)
    retry_attempts: int = 3
    retry_initial_delay: float = 2.0
    retry_max_delay: float = 30.0

    # Cache settings injected into a restored wp-config.php
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_password: str | None = field(default=None, repr=False)

    # Ownership applied to restored files (None leaves ownership untouched)
    web_owner: str | None = "www-data"
    web_group: str | None = "www-data"

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not self.db_name:
            errors.append("db_name is required")
        if not self.db_user:
            errors.append("db_user is required")

        for name in ("local_keep_count", "remote_keep_count"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                errors.append(f"{name} must be a non-negative integer, got {value!r}")

        if not isinstance(self.remote_backend, RemoteBackend):
            errors.append(f"Invalid remote_backend: {self.remote_backend!r}")

        # An empty remote dir would make remote pruning target the store root
        if not normalize_remote_dir(self.remote_dir):
            errors.append("remote_dir must not be empty")

        if self.remote_backend == RemoteBackend.RCLONE and not self.remote_name:
            errors.append("remote_name required when remote_backend is 'rclone'")
        if self.remote_backend == RemoteBackend.LOCAL and not self.remote_name:
            errors.append("remote_name (root directory) required when remote_backend is 'local'")
        if self.remote_backend == RemoteBackend.S3 and not self.s3_bucket:
            errors.append("s3_bucket required when remote_backend is 's3'")

        if self.retry_attempts < 1:
            errors.append(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        if self.retry_initial_delay < 0 or self.retry_max_delay < 0:
            errors.append("retry delays must be >= 0")

        if not 1 <= self.compression_level <= 9:
            errors.append(f"compression_level must be 1-9, got {self.compression_level}")

        if not _validate_timezone(self.timezone):
            errors.append(f"Unknown timezone: {self.timezone}")

        if errors:
            from wpvault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def remote_path(self) -> str:
        """Normalized remote backup directory."""
        return normalize_remote_dir(self.remote_dir)

    @property
    def journal_path(self) -> Path:
        return self.state_dir / "journal.db"

    @property
    def uploads_dir(self) -> Path:
        return self.site_dir / "wp-content" / "uploads"

    def with_updates(self, **kwargs) -> "VaultConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(kwargs)
        return VaultConfig(**current)

    def redacted(self) -> dict:
        """Configuration as a plain dict with secrets masked."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in SECRET_FIELDS:
                value = "***" if value else None
            elif isinstance(value, Path):
                value = str(value)
            elif isinstance(value, Enum):
                value = value.value
            result[f.name] = value
        return result
