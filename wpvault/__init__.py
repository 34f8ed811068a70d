# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault - Backup and restore for a single WordPress site.

Dumps the database and the site tree into one timestamped, checksummed
bundle, mirrors it to a remote store, keeps N copies on each side, and
restores any archive in one of four modes behind a safety snapshot.
Package name: wpvault.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from wpvault.builder import create_config
from wpvault.env import create_config_from_env, load_config_file

# Core functions
from wpvault.core import run_backup, get_status
from wpvault.backup.restore import restore_archive, rollback, load_session, RestoreMode

from wpvault.exceptions import ErrorKind, WPVaultError

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    "load_config_file",
    # Core orchestration functions
    "run_backup",
    "get_status",
    "restore_archive",
    "rollback",
    "load_session",
    "RestoreMode",
    # Errors
    "ErrorKind",
    "WPVaultError",
]
