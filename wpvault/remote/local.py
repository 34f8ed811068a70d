# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Directory-backed remote store, for a mounted NAS share or tests.
"""

import os
import shutil
from pathlib import Path
from typing import List, Sequence

import aiofiles

from wpvault.exceptions import RemoteStoreError
from wpvault.process import run_blocking
from wpvault.remote.base import RemoteStore


class LocalDirRemoteStore(RemoteStore):
    backend = "local"

    def __init__(self, root: Path):
        self.root = Path(root)

    def describe(self) -> str:
        return f"local:{self.root}"

    def resolve(self, path: str) -> Path:
        resolved = (self.root / path.strip("/")).resolve()
        root = self.root.resolve()
        if resolved != root and root not in resolved.parents:
            raise RemoteStoreError(
                f"Path escapes the remote root: {path}",
                details={"root": str(self.root)},
            )
        return resolved

    async def upload(self, local_path: Path, remote_dir: str) -> None:
        target_dir = self.resolve(remote_dir)
        target = target_dir / local_path.name
        partial = target_dir / f".{local_path.name}.part"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            await run_blocking(shutil.copyfile, local_path, partial)
            os.replace(partial, target)
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise RemoteStoreError(str(e), details={"file": local_path.name}) from e

    async def list_files(self, remote_dir: str) -> List[str]:
        directory = self.resolve(remote_dir)
        if not directory.is_dir():
            return []
        return sorted(
            p.name for p in directory.iterdir() if p.is_file() and not p.name.startswith(".")
        )

    async def fetch(self, remote_path: str, local_path: Path) -> None:
        source = self.resolve(remote_path)
        try:
            await run_blocking(shutil.copyfile, source, local_path)
        except OSError as e:
            raise RemoteStoreError(str(e), details={"remote_path": remote_path}) from e

    async def delete(self, remote_dir: str, names: Sequence[str]) -> None:
        directory = self.resolve(remote_dir)
        errors = []
        for name in names:
            try:
                (directory / name).unlink(missing_ok=True)
            except OSError as e:
                errors.append(f"{name}: {e}")
        if errors:
            raise RemoteStoreError("; ".join(errors), details={"remote_dir": remote_dir})

    async def read_text(self, remote_path: str) -> str:
        try:
            async with aiofiles.open(self.resolve(remote_path), "r") as f:
                return await f.read()
        except OSError as e:
            raise RemoteStoreError(str(e), details={"remote_path": remote_path}) from e
