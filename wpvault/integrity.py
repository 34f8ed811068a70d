# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Integrity - SHA-256 digests and checksum sidecars.

A sidecar holds one line in ``sha256sum`` format::

    <hex-digest>  <filename>
"""

import hashlib
import re
from pathlib import Path
from typing import Tuple

import aiofiles
import structlog

from wpvault.exceptions import ChecksumMismatchError
from wpvault.naming import sidecar_name

logger = structlog.get_logger()

CHUNK_SIZE = 1024 * 1024

_DIGEST_RE = re.compile(r"^[0-9a-fA-F]{64}$")


async def sha256_file(path: Path) -> str:
    """
    Compute the SHA-256 digest of a file, streaming in 1 MiB chunks.

    Args:
        path: File to hash

    Returns:
        Lowercase hex digest
    """
    digest = hashlib.sha256()
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(CHUNK_SIZE)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def format_sidecar(digest: str, filename: str) -> str:
    return f"{digest}  {filename}\n"


def parse_sidecar(text: str) -> Tuple[str, str]:
    """
    Parse sidecar content into (digest, filename).

    Raises:
        ChecksumMismatchError: If the content is not a sha256sum line
    """
    line = text.strip().splitlines()[0] if text.strip() else ""
    parts = line.split(None, 1)
    if not parts or not _DIGEST_RE.match(parts[0]):
        raise ChecksumMismatchError(
            "Malformed checksum sidecar",
            details={"content": line[:120]},
        )
    filename = parts[1].lstrip("*").strip() if len(parts) > 1 else ""
    return parts[0].lower(), filename


async def write_sidecar(archive_path: Path) -> Path:
    """
    Hash an archive and write its sidecar next to it.

    Returns:
        Path to the sidecar file
    """
    digest = await sha256_file(archive_path)
    sidecar_path = archive_path.with_name(sidecar_name(archive_path.name))

    async with aiofiles.open(sidecar_path, "w") as f:
        await f.write(format_sidecar(digest, archive_path.name))

    logger.debug("sidecar_written", archive=archive_path.name, sha256=digest)
    return sidecar_path


async def read_sidecar_digest(sidecar_path: Path) -> str:
    async with aiofiles.open(sidecar_path, "r") as f:
        digest, _ = parse_sidecar(await f.read())
    return digest


def ensure_match(expected: str, actual: str, **context) -> None:
    """
    Raise ChecksumMismatchError unless both digests are equal.
    """
    if expected.lower() != actual.lower():
        raise ChecksumMismatchError(
            "Checksum mismatch",
            details={"expected": expected, "actual": actual, **context},
        )


async def verify(local_bundle: Path, local_sidecar: Path) -> bool:
    """
    Check a bundle against its sidecar.

    Returns:
        True on match, False on mismatch, a missing file or a malformed sidecar
    """
    if not local_bundle.is_file() or not local_sidecar.is_file():
        return False

    try:
        expected = await read_sidecar_digest(local_sidecar)
    except ChecksumMismatchError:
        return False

    actual = await sha256_file(local_bundle)
    if expected != actual:
        logger.warning(
            "checksum_mismatch",
            bundle=str(local_bundle),
            expected=expected,
            actual=actual,
        )
        return False
    return True
