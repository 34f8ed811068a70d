# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Bounded retry with exponential backoff around any remote store.

Only RemoteStoreError is retried. A missing rclone binary or a bug in
the caller fails on the first attempt.
"""

from pathlib import Path
from typing import Any, Awaitable, Callable, List, Sequence

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from wpvault.exceptions import RemoteStoreError
from wpvault.remote.base import RemoteStore

logger = structlog.get_logger()


class RetryingRemoteStore(RemoteStore):
    """
    Wrap a store so every operation is retried on RemoteStoreError.

    Args:
        inner: Store doing the actual work
        attempts: Total attempts per operation (1 disables retrying)
        initial_delay: First backoff delay in seconds
        max_delay: Upper bound for a single backoff delay
    """

    def __init__(
        self,
        inner: RemoteStore,
        attempts: int = 3,
        initial_delay: float = 2.0,
        max_delay: float = 30.0,
    ):
        self.inner = inner
        self.attempts = attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backend = inner.backend

    def describe(self) -> str:
        return self.inner.describe()

    def _log_retry(self, retry_state) -> None:
        logger.warning(
            "remote_operation_retry",
            backend=self.backend,
            attempt=retry_state.attempt_number,
            max_attempts=self.attempts,
            error=str(retry_state.outcome.exception()),
        )

    async def _call(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.initial_delay, max=self.max_delay),
            retry=retry_if_exception_type(RemoteStoreError),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return await func(*args)

    async def upload(self, local_path: Path, remote_dir: str) -> None:
        await self._call(self.inner.upload, local_path, remote_dir)

    async def list_files(self, remote_dir: str) -> List[str]:
        return await self._call(self.inner.list_files, remote_dir)

    async def fetch(self, remote_path: str, local_path: Path) -> None:
        await self._call(self.inner.fetch, remote_path, local_path)

    async def delete(self, remote_dir: str, names: Sequence[str]) -> None:
        await self._call(self.inner.delete, remote_dir, names)

    async def read_text(self, remote_path: str) -> str:
        return await self._call(self.inner.read_text, remote_path)
