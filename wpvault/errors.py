# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for WPVault.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""

from pathlib import Path


def explain_missing_config_file(path: Path) -> str:
    """
    Explain that the secure configuration file does not exist.
    """

    return (
        f"Configuration file not found: {path}. "
        "Create it (KEY='value' lines) or point WPVAULT_CONFIG / --config at it."
    )


def explain_missing_setting(key: str) -> str:
    """
    Explain that a required setting is missing.
    """

    return (
        f"{key} is not set. "
        f"Add {key}='...' to secure.conf or export it in the environment."
    )


def explain_invalid_keep_count(key: str, value: str | None) -> str:
    """
    Explain that a retention count is invalid.
    """

    return (
        f"Invalid {key} value: {value!r}. "
        "It must be a non-negative integer number of archives."
    )


def explain_invalid_integer(key: str, value: str | None) -> str:
    """
    Explain that an integer setting could not be parsed.
    """

    return f"Invalid {key} value: {value!r}. Expected an integer."


def explain_invalid_backend(value: str | None) -> str:
    """
    Explain that the remote backend is unknown.
    """

    return (
        f"Invalid WPVAULT_REMOTE_BACKEND value: {value!r}. "
        "Expected one of: 'rclone', 's3', or 'local'."
    )


def explain_empty_remote_dir() -> str:
    """
    Explain why an empty remote directory is refused.
    """

    return (
        "Remote backup directory is empty. "
        "Refusing to continue: pruning would target the root of the remote store."
    )


def explain_missing_commands(commands: list[str]) -> str:
    """
    Explain which external commands must be installed.
    """

    hints = {
        "mysqldump": "install mariadb-client or mysql-client",
        "mysql": "install mariadb-client or mysql-client",
        "rclone": "see https://rclone.org/install/",
    }
    parts = [f"'{c}' ({hints[c]})" if c in hints else f"'{c}'" for c in commands]
    return "Missing required commands: " + ", ".join(parts) + "."
