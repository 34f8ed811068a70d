# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Lock - Single-instance mutual exclusion for backup runs.

An advisory, non-blocking ``flock`` on a well-known file. The kernel drops
the lock when the process exits, including on a crash, so a stale lock
file on disk never blocks a later run.
"""

import fcntl
import os
from pathlib import Path

import structlog

from wpvault.exceptions import LockContentionError

logger = structlog.get_logger()


class PipelineLock:
    """
    Exclusive lock held for the duration of one backup pipeline run.

    Usage:
        with PipelineLock(config.lock_path):
            ...
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> "PipelineLock":
        """
        Take the lock without waiting.

        Raises:
            LockContentionError: If another process holds it
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            logger.warning("pipeline_lock_busy", lock_path=str(self.path))
            raise LockContentionError(
                "Another backup run is already in progress",
                details={"lock_path": str(self.path), "error": str(e)},
            ) from e

        # Record the holder for operators inspecting the file
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())

        self._fd = fd
        logger.debug("pipeline_lock_acquired", lock_path=str(self.path))
        return self

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("pipeline_lock_released", lock_path=str(self.path))

    def __enter__(self) -> "PipelineLock":
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
