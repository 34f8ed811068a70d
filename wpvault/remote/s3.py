# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3-backed remote store using aiobotocore.

The remote directory becomes a key prefix inside one bucket. A client is
created per operation from a shared session. Files larger than one part
go up as multipart uploads and downloads are streamed to disk, so memory
use stays bounded by the part size.
"""

from pathlib import Path
from typing import Any, List, Sequence

import aiofiles
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from wpvault.exceptions import RemoteStoreError
from wpvault.naming import remote_join
from wpvault.remote.base import RemoteStore

logger = structlog.get_logger()

# delete_objects accepts at most 1000 keys per request
DELETE_BATCH = 1000

# Every multipart part except the last must be at least 5 MiB
PART_SIZE = 8 * 1024 * 1024

CHUNK_SIZE = 1024 * 1024


class S3RemoteStore(RemoteStore):
    backend = "s3"

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        session: Any = None,
    ):
        if session is None:
            from aiobotocore.session import get_session

            session = get_session()
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self._session = session

    def describe(self) -> str:
        return f"s3://{self.bucket}"

    def _client(self):
        return self._session.create_client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    def _error(self, e: Exception, operation: str, key: str) -> RemoteStoreError:
        return RemoteStoreError(
            str(e),
            details={"operation": operation, "bucket": self.bucket, "key": key},
        )

    async def upload(self, local_path: Path, remote_dir: str) -> None:
        key = remote_join(remote_dir, local_path.name)
        size = local_path.stat().st_size
        try:
            async with self._client() as s3_client:
                if size <= PART_SIZE:
                    async with aiofiles.open(local_path, "rb") as f:
                        content = await f.read()
                    await s3_client.put_object(Bucket=self.bucket, Key=key, Body=content)
                else:
                    await self._upload_multipart(s3_client, local_path, key)
        except (ClientError, BotoCoreError, OSError) as e:
            raise self._error(e, "upload", key) from e
        logger.debug("s3_uploaded", key=key, size=size)

    async def _upload_multipart(self, s3_client, local_path: Path, key: str) -> None:
        """Upload one part at a time so a bundle is never held in memory."""
        created = await s3_client.create_multipart_upload(Bucket=self.bucket, Key=key)
        upload_id = created["UploadId"]
        parts = []
        try:
            async with aiofiles.open(local_path, "rb") as f:
                part_number = 1
                while True:
                    chunk = await f.read(PART_SIZE)
                    if not chunk:
                        break
                    response = await s3_client.upload_part(
                        Bucket=self.bucket,
                        Key=key,
                        UploadId=upload_id,
                        PartNumber=part_number,
                        Body=chunk,
                    )
                    parts.append({"ETag": response["ETag"], "PartNumber": part_number})
                    part_number += 1
            await s3_client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except (ClientError, BotoCoreError, OSError):
            try:
                await s3_client.abort_multipart_upload(
                    Bucket=self.bucket, Key=key, UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(
                    "s3_multipart_abort_failed",
                    key=key,
                    upload_id=upload_id,
                    error=str(abort_error),
                )
            raise
        logger.debug("s3_multipart_completed", key=key, parts=len(parts))

    async def list_files(self, remote_dir: str) -> List[str]:
        prefix = remote_join(remote_dir, "")
        names: List[str] = []
        try:
            async with self._client() as s3_client:
                paginator = s3_client.get_paginator("list_objects_v2")
                async for page in paginator.paginate(
                    Bucket=self.bucket, Prefix=prefix, Delimiter="/"
                ):
                    for obj in page.get("Contents", []):
                        name = obj["Key"][len(prefix):]
                        if name:
                            names.append(name)
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "list_objects_v2", prefix) from e
        return sorted(names)

    async def _get_bytes(self, key: str) -> bytes:
        try:
            async with self._client() as s3_client:
                response = await s3_client.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    return await stream.read()
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "get_object", key) from e

    async def fetch(self, remote_path: str, local_path: Path) -> None:
        key = remote_path.strip("/")
        try:
            async with self._client() as s3_client:
                response = await s3_client.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    async with aiofiles.open(local_path, "wb") as f:
                        while True:
                            chunk = await stream.read(CHUNK_SIZE)
                            if not chunk:
                                break
                            await f.write(chunk)
        except (ClientError, BotoCoreError, OSError) as e:
            local_path.unlink(missing_ok=True)
            raise self._error(e, "get_object", key) from e

    async def delete(self, remote_dir: str, names: Sequence[str]) -> None:
        keys = [remote_join(remote_dir, name) for name in names]
        try:
            async with self._client() as s3_client:
                for i in range(0, len(keys), DELETE_BATCH):
                    batch = keys[i:i + DELETE_BATCH]
                    response = await s3_client.delete_objects(
                        Bucket=self.bucket,
                        Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                    )
                    failed = response.get("Errors", [])
                    if failed:
                        raise RemoteStoreError(
                            "; ".join(f"{err['Key']}: {err.get('Message', '')}" for err in failed),
                            details={"operation": "delete_objects", "bucket": self.bucket},
                        )
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "delete_objects", remote_dir) from e

    async def read_text(self, remote_path: str) -> str:
        content = await self._get_bytes(remote_path.strip("/"))
        return content.decode("utf-8", errors="replace")
