# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Archive naming conventions.

Archives are named ``wp-backup-<YYYY-MM-DD_HH-MM-SS>.tar.gz`` with a
``<archive>.sha256`` sidecar. The embedded timestamp is the sort key:
ordering is purely lexical on the name, never filesystem mtime.
"""

from datetime import datetime
from typing import Iterable, List
from zoneinfo import ZoneInfo

ARCHIVE_PREFIX = "wp-backup-"
ARCHIVE_SUFFIX = ".tar.gz"
SIDECAR_SUFFIX = ".sha256"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

DATABASE_MEMBER = "database.sql"
FILES_MEMBER = "wordpress_files.tar"


def timestamp(moment: datetime | None = None, tz: ZoneInfo | None = None) -> str:
    """Format a moment (default: now) in the archive timestamp format."""
    if moment is None:
        moment = datetime.now(tz)
    elif tz is not None and moment.tzinfo is not None:
        moment = moment.astimezone(tz)
    return moment.strftime(TIMESTAMP_FORMAT)


def archive_name(moment: datetime | None = None, tz: ZoneInfo | None = None) -> str:
    return f"{ARCHIVE_PREFIX}{timestamp(moment, tz)}{ARCHIVE_SUFFIX}"


def sidecar_name(archive: str) -> str:
    return f"{archive}{SIDECAR_SUFFIX}"


def archive_stem(archive: str) -> str:
    """Basename shared by every artifact of one archive group."""
    if archive.endswith(ARCHIVE_SUFFIX):
        return archive[: -len(ARCHIVE_SUFFIX)]
    return archive


def is_archive_name(name: str) -> bool:
    """True for ``wp-backup-<timestamp>.tar.gz`` with a well-formed timestamp."""
    if not (name.startswith(ARCHIVE_PREFIX) and name.endswith(ARCHIVE_SUFFIX)):
        return False
    stamp = name[len(ARCHIVE_PREFIX) : -len(ARCHIVE_SUFFIX)]
    try:
        parsed = datetime.strptime(stamp, TIMESTAMP_FORMAT)
    except ValueError:
        return False
    # strptime accepts unpadded fields, which would break lexical ordering
    return parsed.strftime(TIMESTAMP_FORMAT) == stamp


def sort_archive_names(names: Iterable[str]) -> List[str]:
    """Archive names only, oldest first."""
    return sorted(n for n in names if is_archive_name(n))


def group_members(stem: str, names: Iterable[str]) -> List[str]:
    """All names sharing an archive's stem prefix (bundle, sidecar, extras)."""
    return sorted(n for n in names if n.startswith(stem))


def remote_join(remote_dir: str, name: str) -> str:
    remote_dir = remote_dir.strip().strip("/")
    return f"{remote_dir}/{name}" if remote_dir else name


def safety_suffix(moment: datetime | None = None, tz: ZoneInfo | None = None) -> str:
    """Restore-time suffix shared by every safety snapshot of one restore."""
    return timestamp(moment, tz)
