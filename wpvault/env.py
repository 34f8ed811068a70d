# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment and secure.conf based configuration helpers.

The legacy deployment keeps its secrets in a shell-style ``secure.conf``
(``KEY='value'`` lines). These helpers read that file once, overlay any
``WPVAULT_*`` environment variables, and return a frozen VaultConfig.

Lookup order for a setting ``KEY``:
    1. ``WPVAULT_KEY`` in the process environment
    2. ``WPVAULT_KEY`` in the file
    3. ``KEY`` in the file (legacy names such as DB_PASS, RCLONE_REMOTE_NAME)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Mapping

from dotenv import dotenv_values

from wpvault.builder import create_config
from wpvault.config import RemoteBackend, VaultConfig
from wpvault.errors import (
    explain_invalid_backend,
    explain_invalid_integer,
    explain_invalid_keep_count,
    explain_missing_config_file,
    explain_missing_setting,
)
from wpvault.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path("/etc/wpvault/secure.conf")

ENV_PREFIX = "WPVAULT_"

# Legacy secure.conf key -> canonical setting name
LEGACY_KEYS = {
    "DB_PASS": "DB_PASSWORD",
    "RCLONE_REMOTE_NAME": "REMOTE_NAME",
    "RCLONE_BACKUP_DIR": "REMOTE_DIR",
    "REDIS_PASS": "REDIS_PASSWORD",
}

# Canonical setting name -> VaultConfig field for plain string/path values
_PATH_SETTINGS = {
    "SITE_DIR": "site_dir",
    "BACKUP_DIR": "backup_dir",
    "SAFETY_DIR": "safety_dir",
    "LOG_DIR": "log_dir",
    "STATE_DIR": "state_dir",
    "LOCK_FILE": "lock_path",
}

_STRING_SETTINGS = {
    "TIMEZONE": "timezone",
    "S3_BUCKET": "s3_bucket",
    "S3_REGION": "s3_region",
    "S3_ENDPOINT_URL": "s3_endpoint_url",
    "REDIS_HOST": "redis_host",
    "REDIS_PASSWORD": "redis_password",
}

_INT_SETTINGS = {
    "RETRY_ATTEMPTS": "retry_attempts",
    "REDIS_PORT": "redis_port",
    "COMPRESSION_LEVEL": "compression_level",
}


def resolve_config_path(explicit: str | Path | None = None) -> Path:
    """Pick the config file: explicit argument, WPVAULT_CONFIG, then default."""
    if explicit:
        return Path(explicit)
    env_path = os.getenv("WPVAULT_CONFIG")
    return Path(env_path) if env_path else DEFAULT_CONFIG_PATH


def read_settings_file(path: Path) -> Dict[str, str]:
    """
    Parse a shell-style KEY='value' file into canonical setting names.

    Blank values are dropped so they fall back to defaults.
    """
    if not path.is_file():
        raise ConfigurationError(explain_missing_config_file(path))

    settings: Dict[str, str] = {}
    for key, value in dotenv_values(path).items():
        if value is None or value == "":
            continue
        if key.startswith(ENV_PREFIX):
            key = key[len(ENV_PREFIX):]
        settings[LEGACY_KEYS.get(key, key)] = value
    return settings


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for key, value in environ.items():
        if key.startswith(ENV_PREFIX) and key != "WPVAULT_CONFIG" and value != "":
            name = key[len(ENV_PREFIX):]
            overrides[LEGACY_KEYS.get(name, name)] = value
    return overrides


def _parse_keep_count(key: str, value: str | None) -> int:
    if value is None:
        return 10
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_keep_count(key, value)) from exc
    if count < 0:
        raise ConfigurationError(explain_invalid_keep_count(key, value))
    return count


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_integer(key, value)) from exc


def _parse_backend(value: str | None) -> RemoteBackend:
    if not value:
        return RemoteBackend.RCLONE
    try:
        return RemoteBackend(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_backend(value)) from exc


def _parse_owner(value: str | None, default: str | None) -> str | None:
    if value is None:
        return default
    # "-" or "none" disables chown on restored files
    if value.strip().lower() in {"-", "none"}:
        return None
    return value.strip()


def config_from_settings(settings: Mapping[str, str]) -> VaultConfig:
    """
    Build a VaultConfig from canonical setting names.

    Required: DB_NAME, DB_USER, DB_PASSWORD, and REMOTE_NAME unless the
    backend is 's3'.
    """
    for key in ("DB_NAME", "DB_USER", "DB_PASSWORD"):
        if not settings.get(key):
            raise ConfigurationError(explain_missing_setting(key))

    backend = _parse_backend(settings.get("REMOTE_BACKEND"))
    if backend != RemoteBackend.S3 and not settings.get("REMOTE_NAME"):
        raise ConfigurationError(explain_missing_setting("RCLONE_REMOTE_NAME"))

    extra: Dict[str, object] = {}
    for name, field_name in _PATH_SETTINGS.items():
        if settings.get(name):
            extra[field_name] = Path(settings[name])
    for name, field_name in _STRING_SETTINGS.items():
        if settings.get(name):
            extra[field_name] = settings[name]
    for name, field_name in _INT_SETTINGS.items():
        if settings.get(name):
            extra[field_name] = _parse_int(name, settings[name])

    extra["web_owner"] = _parse_owner(settings.get("WEB_OWNER"), "www-data")
    extra["web_group"] = _parse_owner(settings.get("WEB_GROUP"), "www-data")

    return create_config(
        settings["DB_NAME"],
        settings["DB_USER"],
        settings["DB_PASSWORD"],
        db_host=settings.get("DB_HOST") or "localhost",
        remote_backend=backend,
        remote_name=settings.get("REMOTE_NAME", ""),
        remote_dir=settings.get("REMOTE_DIR", "wordpress/backups"),
        local_keep_count=_parse_keep_count("LOCAL_KEEP_COUNT", settings.get("LOCAL_KEEP_COUNT")),
        remote_keep_count=_parse_keep_count("REMOTE_KEEP_COUNT", settings.get("REMOTE_KEEP_COUNT")),
        **extra,
    )


def load_config_file(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> VaultConfig:
    """
    Load configuration from secure.conf plus WPVAULT_* environment overrides.

    Args:
        path: Config file path (default: WPVAULT_CONFIG or /etc/wpvault/secure.conf)
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated, immutable VaultConfig
    """
    settings = read_settings_file(resolve_config_path(path))
    settings.update(_env_overrides(os.environ if environ is None else environ))
    return config_from_settings(settings)


def create_config_from_env(environ: Mapping[str, str] | None = None) -> VaultConfig:
    """
    Create a VaultConfig from WPVAULT_* environment variables only.

    Environment variables:
        - WPVAULT_DB_NAME, WPVAULT_DB_USER, WPVAULT_DB_PASSWORD (required)
        - WPVAULT_DB_HOST (default: localhost)
        - WPVAULT_REMOTE_BACKEND: 'rclone' | 's3' | 'local' (default: rclone)
        - WPVAULT_REMOTE_NAME, WPVAULT_REMOTE_DIR
        - WPVAULT_LOCAL_KEEP_COUNT, WPVAULT_REMOTE_KEEP_COUNT (default: 10)
        - WPVAULT_SITE_DIR, WPVAULT_BACKUP_DIR, WPVAULT_SAFETY_DIR,
          WPVAULT_LOG_DIR, WPVAULT_STATE_DIR, WPVAULT_LOCK_FILE
        - WPVAULT_TIMEZONE, WPVAULT_RETRY_ATTEMPTS, WPVAULT_COMPRESSION_LEVEL
        - WPVAULT_S3_BUCKET, WPVAULT_S3_REGION, WPVAULT_S3_ENDPOINT_URL
        - WPVAULT_REDIS_HOST, WPVAULT_REDIS_PORT, WPVAULT_REDIS_PASSWORD
        - WPVAULT_WEB_OWNER, WPVAULT_WEB_GROUP ('none' disables chown)
    """
    return config_from_settings(_env_overrides(os.environ if environ is None else environ))
