# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote store backends for mirrored archives.
"""

from pathlib import Path

from wpvault.config import RemoteBackend, VaultConfig
from wpvault.remote.base import RemoteStore
from wpvault.remote.local import LocalDirRemoteStore
from wpvault.remote.rclone import RcloneRemoteStore
from wpvault.remote.retrying import RetryingRemoteStore
from wpvault.remote.s3 import S3RemoteStore


def create_remote_store(config: VaultConfig) -> RemoteStore:
    """
    Build the configured remote store, wrapped in the retry policy.

    With ``retry_attempts == 1`` the bare backend is returned.
    """
    if config.remote_backend == RemoteBackend.S3:
        store: RemoteStore = S3RemoteStore(
            config.s3_bucket,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
        )
    elif config.remote_backend == RemoteBackend.LOCAL:
        store = LocalDirRemoteStore(Path(config.remote_name))
    else:
        store = RcloneRemoteStore(config.remote_name)

    if config.retry_attempts <= 1:
        return store

    return RetryingRemoteStore(
        store,
        attempts=config.retry_attempts,
        initial_delay=config.retry_initial_delay,
        max_delay=config.retry_max_delay,
    )


__all__ = [
    "RemoteStore",
    "RcloneRemoteStore",
    "S3RemoteStore",
    "LocalDirRemoteStore",
    "RetryingRemoteStore",
    "create_remote_store",
]
