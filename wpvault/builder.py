# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Builder - Functional builder pattern for configuration.

This module provides pure functions for building VaultConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from wpvault.config import RemoteBackend, VaultConfig


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary.

    Only keys set here are passed to VaultConfig; everything else keeps
    the dataclass default.

    Returns:
        Dict with the required fields blank
    """
    return {
        "db_name": "",
        "db_user": "",
        "db_password": "",
        "db_host": "localhost",
        "remote_backend": RemoteBackend.RCLONE,
        "remote_name": "",
        "remote_dir": "wordpress/backups",
        "local_keep_count": 10,
        "remote_keep_count": 10,
    }


def with_database(
    config: ConfigDict,
    name: str,
    user: str,
    password: str,
    host: str = "localhost",
) -> ConfigDict:
    """
    Set the database credentials used for dumps and imports.

    Args:
        config: Current configuration dictionary
        name: Database name
        user: Database user
        password: Database password
        host: Database host (default: localhost)

    Returns:
        New configuration dictionary with credentials set
    """
    return {
        **config,
        "db_name": name,
        "db_user": user,
        "db_password": password,
        "db_host": host or "localhost",
    }


def with_remote(
    config: ConfigDict,
    remote_name: str,
    remote_dir: str,
    backend: RemoteBackend | str = RemoteBackend.RCLONE,
) -> ConfigDict:
    """
    Set the remote store archives are shipped to.

    Args:
        config: Current configuration dictionary
        remote_name: rclone remote name (or root directory for 'local')
        remote_dir: Flat directory on the remote holding all archives
        backend: 'rclone', 's3' or 'local'

    Returns:
        New configuration dictionary with the remote set
    """
    if isinstance(backend, str):
        backend = RemoteBackend(backend.lower())
    return {
        **config,
        "remote_backend": backend,
        "remote_name": remote_name,
        "remote_dir": remote_dir,
    }


def with_s3(
    config: ConfigDict,
    bucket: str,
    remote_dir: str,
    region: str = "us-east-1",
    endpoint_url: str | None = None,
) -> ConfigDict:
    """Ship archives straight to an S3 bucket under a key prefix."""
    return {
        **config,
        "remote_backend": RemoteBackend.S3,
        "s3_bucket": bucket,
        "s3_region": region,
        "s3_endpoint_url": endpoint_url,
        "remote_dir": remote_dir,
    }


def with_site(config: ConfigDict, site_dir: Path | str) -> ConfigDict:
    """
    Set the WordPress root directory to protect.

    Args:
        config: Current configuration dictionary
        site_dir: Path to the site root

    Returns:
        New configuration dictionary with site_dir set
    """
    return {**config, "site_dir": Path(site_dir)}


def with_paths(
    config: ConfigDict,
    *,
    backup_dir: Path | str | None = None,
    safety_dir: Path | str | None = None,
    log_dir: Path | str | None = None,
    state_dir: Path | str | None = None,
    lock_path: Path | str | None = None,
) -> ConfigDict:
    """Override working directories; unset arguments keep their defaults."""
    updates = {
        "backup_dir": backup_dir,
        "safety_dir": safety_dir,
        "log_dir": log_dir,
        "state_dir": state_dir,
        "lock_path": lock_path,
    }
    return {**config, **{k: Path(v) for k, v in updates.items() if v is not None}}


def keep_local(config: ConfigDict, count: int) -> ConfigDict:
    """
    Set how many archives are kept in the local backup directory.

    Args:
        config: Current configuration dictionary
        count: Keep-N count (>= 0)

    Returns:
        New configuration dictionary with local_keep_count set
    """
    if count < 0:
        raise ValueError(f"local keep count must be >= 0, got {count}")
    return {**config, "local_keep_count": count}


def keep_remote(config: ConfigDict, count: int) -> ConfigDict:
    """
    Set how many archives are kept on the remote store.

    Args:
        config: Current configuration dictionary
        count: Keep-N count (>= 0)

    Returns:
        New configuration dictionary with remote_keep_count set
    """
    if count < 0:
        raise ValueError(f"remote keep count must be >= 0, got {count}")
    return {**config, "remote_keep_count": count}


def with_retries(
    config: ConfigDict,
    attempts: int,
    initial_delay: float = 2.0,
    max_delay: float = 30.0,
) -> ConfigDict:
    """
    Configure bounded exponential-backoff retries for remote operations.

    Args:
        config: Current configuration dictionary
        attempts: Total attempts per operation (1 disables retrying)
        initial_delay: First backoff delay in seconds
        max_delay: Upper bound for a single backoff delay

    Returns:
        New configuration dictionary with retry settings
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")
    return {
        **config,
        "retry_attempts": attempts,
        "retry_initial_delay": initial_delay,
        "retry_max_delay": max_delay,
    }


def without_retries(config: ConfigDict) -> ConfigDict:
    """Single-attempt remote operations (useful in tests)."""
    return with_retries(config, 1, 0.0, 0.0)


def with_cache(
    config: ConfigDict,
    password: str | None = None,
    host: str = "127.0.0.1",
    port: int = 6379,
) -> ConfigDict:
    """Set the object cache settings written into a restored wp-config.php."""
    return {
        **config,
        "redis_host": host,
        "redis_port": port,
        "redis_password": password,
    }


def build_config(config_dict: ConfigDict) -> VaultConfig:
    """
    Validate and build an immutable VaultConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary built using builder functions

    Returns:
        Validated, immutable VaultConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    return VaultConfig(**config_dict)


def build_from_steps(*steps: BuilderFunc) -> VaultConfig:
    """
    Build config by applying a sequence of builder functions.

    Example:
        config = build_from_steps(
            lambda c: with_database(c, "wordpress", "wp", "secret"),
            lambda c: with_remote(c, "onedrive", "wordpress/backups"),
            lambda c: keep_remote(c, 30),
        )
    """
    config = create_empty_config()
    for step in steps:
        config = step(config)
    return build_config(config)


def create_config(
    db_name: str,
    db_user: str,
    db_password: str,
    *,
    remote_name: str = "",
    remote_dir: str = "wordpress/backups",
    remote_backend: str | RemoteBackend = RemoteBackend.RCLONE,
    local_keep_count: int = 10,
    remote_keep_count: int = 10,
    db_host: str = "localhost",
    site_dir: str | Path | None = None,
    **kwargs: Any,
) -> VaultConfig:
    """
    Create WPVault configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Example:
        config = create_config(
            "wordpress", "wp_user", "secret",
            remote_name="onedrive",
            remote_dir="wordpress/backups",
            local_keep_count=3,
            remote_keep_count=14,
        )
    """
    config_dict = create_empty_config()
    config_dict = with_database(config_dict, db_name, db_user, db_password, db_host)
    config_dict = with_remote(config_dict, remote_name, remote_dir, remote_backend)
    config_dict = keep_local(config_dict, local_keep_count)
    config_dict = keep_remote(config_dict, remote_keep_count)

    if site_dir:
        config_dict = with_site(config_dict, site_dir)

    # Any other VaultConfig field passes straight through
    config_dict.update(kwargs)

    return build_config(config_dict)
