# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
rclone-backed remote store.

Every operation is one ``rclone`` invocation built as an argument vector.
"""

import tempfile
from pathlib import Path
from typing import List, Sequence

import structlog

from wpvault.exceptions import RemoteStoreError
from wpvault.process import CommandError, run_command
from wpvault.remote.base import RemoteStore

logger = structlog.get_logger()

RCLONE = "rclone"


class RcloneRemoteStore(RemoteStore):
    backend = "rclone"

    def __init__(self, remote_name: str, rclone_binary: str = RCLONE):
        self.remote_name = remote_name.rstrip(":")
        self.rclone_binary = rclone_binary

    def target(self, path: str) -> str:
        """Render ``<remote>:<path>`` for rclone."""
        return f"{self.remote_name}:{path.strip('/')}"

    def describe(self) -> str:
        return f"rclone:{self.remote_name}"

    async def _rclone(self, *args: str) -> str:
        argv = [self.rclone_binary, *args]
        try:
            return await run_command(argv)
        except CommandError as e:
            raise RemoteStoreError(
                e.stderr.strip() or e.message,
                details={"operation": args[0], "returncode": e.returncode},
            ) from e

    async def upload(self, local_path: Path, remote_dir: str) -> None:
        await self._rclone("copy", str(local_path), self.target(remote_dir))
        logger.debug("rclone_uploaded", file=local_path.name, remote=self.target(remote_dir))

    async def list_files(self, remote_dir: str) -> List[str]:
        try:
            output = await self._rclone("lsf", "--files-only", self.target(remote_dir))
        except RemoteStoreError as e:
            # A remote directory that was never written to is simply empty
            if "directory not found" in e.message.lower():
                return []
            raise
        return sorted(line.strip() for line in output.splitlines() if line.strip())

    async def fetch(self, remote_path: str, local_path: Path) -> None:
        await self._rclone("copyto", self.target(remote_path), str(local_path))

    async def delete(self, remote_dir: str, names: Sequence[str]) -> None:
        if not names:
            return
        with tempfile.NamedTemporaryFile(
            "w", prefix="wpvault-delete-", suffix=".txt", delete=False
        ) as f:
            f.write("".join(f"{name}\n" for name in names))
            list_path = Path(f.name)
        try:
            await self._rclone(
                "delete",
                self.target(remote_dir),
                "--files-from",
                str(list_path),
                "--no-traverse",
            )
        finally:
            list_path.unlink(missing_ok=True)

    async def read_text(self, remote_path: str) -> str:
        return await self._rclone("cat", self.target(remote_path))
