# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote store interface.

A remote store is a single flat directory of archive files. Backends
surface failures as RemoteStoreError carrying the backend's own message;
they never retry on their own (see RetryingRemoteStore).
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Sequence


class RemoteStore(ABC):
    """Copy, list, fetch, delete and read files in a remote directory."""

    #: Human-readable backend name used in logs
    backend: str = "remote"

    @abstractmethod
    async def upload(self, local_path: Path, remote_dir: str) -> None:
        """Copy a local file into remote_dir, keeping its basename."""

    @abstractmethod
    async def list_files(self, remote_dir: str) -> List[str]:
        """Names of the files directly inside remote_dir, sorted ascending."""

    @abstractmethod
    async def fetch(self, remote_path: str, local_path: Path) -> None:
        """Download one remote file to an exact local path."""

    @abstractmethod
    async def delete(self, remote_dir: str, names: Sequence[str]) -> None:
        """Delete the named files from remote_dir in one call."""

    @abstractmethod
    async def read_text(self, remote_path: str) -> str:
        """Read a small remote file (a sidecar) as text."""

    def describe(self) -> str:
        return self.backend
