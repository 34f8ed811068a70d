# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Exceptions - Custom exceptions for the wpvault package.

Every exception carries an ErrorKind so callers (schedulers, monitoring)
can tell a busy lock from a corrupt upload by exit status alone.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories of the backup/restore pipeline."""

    UNEXPECTED = "unexpected"
    CONFIGURATION = "configuration"
    DEPENDENCY_MISSING = "dependency_missing"
    LOCK_CONTENTION = "lock_contention"
    DUMP_FAILURE = "dump_failure"
    ARCHIVE_FAILURE = "archive_failure"
    UPLOAD_FAILURE = "upload_failure"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    PRUNE_FAILURE = "prune_failure"
    REMOTE_FAILURE = "remote_failure"
    RESTORE_VALIDATION = "restore_validation"
    RESTORE_STEP = "restore_step"
    ROLLBACK_FAILURE = "rollback_failure"
    JOURNAL_FAILURE = "journal_failure"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    ErrorKind.UNEXPECTED: 1,
    ErrorKind.CONFIGURATION: 2,
    ErrorKind.DEPENDENCY_MISSING: 3,
    ErrorKind.DUMP_FAILURE: 10,
    ErrorKind.ARCHIVE_FAILURE: 11,
    ErrorKind.UPLOAD_FAILURE: 12,
    ErrorKind.CHECKSUM_MISMATCH: 13,
    ErrorKind.PRUNE_FAILURE: 14,
    ErrorKind.REMOTE_FAILURE: 15,
    ErrorKind.RESTORE_VALIDATION: 20,
    ErrorKind.RESTORE_STEP: 21,
    ErrorKind.ROLLBACK_FAILURE: 22,
    ErrorKind.JOURNAL_FAILURE: 23,
    # EX_TEMPFAIL: another run is active, try again later
    ErrorKind.LOCK_CONTENTION: 75,
}


class WPVaultError(Exception):
    """Base exception for all WPVault errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    @property
    def exit_code(self) -> int:
        return self.kind.exit_code


class ConfigurationError(WPVaultError):
    """Raised when configuration is invalid."""

    kind = ErrorKind.CONFIGURATION


class DependencyMissingError(WPVaultError):
    """Raised when a required external command is not installed."""

    kind = ErrorKind.DEPENDENCY_MISSING


class LockContentionError(WPVaultError):
    """Raised when another backup run already holds the pipeline lock."""

    kind = ErrorKind.LOCK_CONTENTION


class DumpError(WPVaultError):
    """Raised when the database dump fails."""

    kind = ErrorKind.DUMP_FAILURE


class ArchiveError(WPVaultError):
    """Raised when archiving, bundling or publishing fails."""

    kind = ErrorKind.ARCHIVE_FAILURE


class UploadError(WPVaultError):
    """Raised when shipping an archive to the remote store fails."""

    kind = ErrorKind.UPLOAD_FAILURE


class ChecksumMismatchError(WPVaultError):
    """Raised when a digest does not match its sidecar."""

    kind = ErrorKind.CHECKSUM_MISMATCH


class PruneError(WPVaultError):
    """Raised when retention pruning could not delete every selected group."""

    kind = ErrorKind.PRUNE_FAILURE


class RemoteStoreError(WPVaultError):
    """Raised when a remote store operation fails."""

    kind = ErrorKind.REMOTE_FAILURE


class RestoreValidationError(WPVaultError):
    """Raised when a restore is aborted before any destructive step."""

    kind = ErrorKind.RESTORE_VALIDATION


class RestoreStepError(WPVaultError):
    """Raised when a destructive restore step fails midway."""

    kind = ErrorKind.RESTORE_STEP


class RollbackError(WPVaultError):
    """Raised when replaying safety snapshots fails."""

    kind = ErrorKind.ROLLBACK_FAILURE


class JournalError(WPVaultError):
    """Raised when run journal operations fail."""

    kind = ErrorKind.JOURNAL_FAILURE


def exit_code_for(exc: BaseException) -> int:
    """Map any exception to the process exit status."""
    if isinstance(exc, WPVaultError):
        return exc.exit_code
    return ErrorKind.UNEXPECTED.exit_code
