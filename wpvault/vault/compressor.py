# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Compressor - zstd streaming for database safety snapshots.

Dumps can be larger than memory, so files are streamed through the
compressor rather than read whole. Output is written to ``<dst>.tmp``
and renamed once the stream is closed.
"""

import os
from pathlib import Path

import structlog
import zstandard as zstd

from wpvault.exceptions import WPVaultError
from wpvault.process import run_blocking

logger = structlog.get_logger()

DEFAULT_ZSTD_LEVEL = 10
CHUNK_SIZE = 1024 * 1024


def _compress_file_sync(src: Path, dst: Path, level: int) -> int:
    tmp = dst.with_name(dst.name + ".tmp")
    cctx = zstd.ZstdCompressor(level=level)
    try:
        with open(src, "rb") as fin, open(tmp, "wb") as fout:
            cctx.copy_stream(fin, fout, read_size=CHUNK_SIZE)
        os.replace(tmp, dst)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return dst.stat().st_size


def _decompress_file_sync(src: Path, dst: Path) -> int:
    tmp = dst.with_name(dst.name + ".tmp")
    dctx = zstd.ZstdDecompressor()
    try:
        with open(src, "rb") as fin, open(tmp, "wb") as fout:
            dctx.copy_stream(fin, fout, read_size=CHUNK_SIZE)
        os.replace(tmp, dst)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return dst.stat().st_size


async def compress_file(src: Path, dst: Path, level: int = DEFAULT_ZSTD_LEVEL) -> int:
    """
    Compress a file with zstd.

    Returns:
        Compressed size in bytes
    """
    try:
        size = await run_blocking(_compress_file_sync, src, dst, level)
    except (OSError, zstd.ZstdError) as e:
        raise WPVaultError(
            f"Compression failed for {src.name}: {e}",
            details={"src": str(src), "dst": str(dst)},
        ) from e

    original = src.stat().st_size
    logger.debug(
        "compression_complete",
        file=src.name,
        original_size=original,
        compressed_size=size,
        compression_ratio=f"{original / size:.2f}x" if size else "0x",
    )
    return size


async def decompress_file(src: Path, dst: Path) -> int:
    """
    Decompress a zstd file.

    Returns:
        Decompressed size in bytes
    """
    try:
        return await run_blocking(_decompress_file_sync, src, dst)
    except (OSError, zstd.ZstdError) as e:
        raise WPVaultError(
            f"Decompression failed for {src.name}: {e}",
            details={"src": str(src), "dst": str(dst)},
        ) from e
