# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault Process - External commands and blocking work.

External tools (mysqldump, mysql, rclone) are always started from an
argument vector, never through a shell, so archive names, paths and
credentials cannot be interpreted as shell syntax. Database credentials
reach the MySQL clients only through a private option file.
"""

import asyncio
import functools
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Sequence

import structlog

from wpvault.errors import explain_missing_commands
from wpvault.exceptions import DependencyMissingError, WPVaultError

logger = structlog.get_logger()

# Thread pool for blocking filesystem work (tar, zstd, tree renames)
_executor = ThreadPoolExecutor(max_workers=2)

STDERR_TAIL = 2000


class CommandError(WPVaultError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"{argv[0]} exited with status {returncode}: {stderr.strip()[-STDERR_TAIL:]}",
            details={"command": argv[0], "returncode": returncode},
        )


async def run_blocking(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking callable on the shared worker pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, functools.partial(func, *args, **kwargs))


async def run_command(
    argv: Sequence[str],
    *,
    stdin_path: Path | None = None,
    stdout_path: Path | None = None,
) -> str:
    """
    Run an external command and wait for it to finish.

    Args:
        argv: Argument vector; argv[0] is looked up on PATH
        stdin_path: Feed this file to the command's stdin
        stdout_path: Write the command's stdout to this file instead of capturing it

    Returns:
        Captured stdout (empty when redirected to a file)

    Raises:
        DependencyMissingError: If the executable does not exist
        CommandError: If the command exits non-zero
    """
    logger.debug("command_started", command=argv[0], args=len(argv) - 1)

    with ExitStack() as stack:
        stdin = (
            stack.enter_context(open(stdin_path, "rb"))
            if stdin_path
            else asyncio.subprocess.DEVNULL
        )
        stdout = (
            stack.enter_context(open(stdout_path, "wb"))
            if stdout_path
            else asyncio.subprocess.PIPE
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=stdin,
                stdout=stdout,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise DependencyMissingError(
                explain_missing_commands([argv[0]]),
                details={"error": str(e)},
            ) from e

        out, err = await process.communicate()

    stderr_text = err.decode(errors="replace") if err else ""
    if process.returncode != 0:
        raise CommandError(argv, process.returncode, stderr_text)

    return out.decode(errors="replace") if out else ""


def missing_commands(names: Sequence[str]) -> List[str]:
    return [name for name in names if shutil.which(name) is None]


def require_commands(names: Sequence[str]) -> None:
    """
    Pre-flight check that every external command is installed.

    Raises:
        DependencyMissingError: Listing every missing command at once
    """
    missing = missing_commands(names)
    if missing:
        raise DependencyMissingError(
            explain_missing_commands(missing),
            details={"missing": missing},
        )


def _quote_option_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@contextmanager
def mysql_defaults_file(
    user: str,
    password: str,
    host: str,
    directory: Path | None = None,
) -> Iterator[Path]:
    """
    Write a private MySQL option file and remove it afterwards.

    Yields:
        Path to pass as ``--defaults-extra-file``
    """
    private_dir = Path(tempfile.mkdtemp(prefix="wpvault-mysql-", dir=directory))
    try:
        private_dir.chmod(0o700)
        cnf_path = private_dir / "client.cnf"
        fd = os.open(cnf_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write("[client]\n")
            f.write(f"user={_quote_option_value(user)}\n")
            f.write(f"password={_quote_option_value(password)}\n")
            f.write(f"host={_quote_option_value(host or 'localhost')}\n")
        yield cnf_path
    finally:
        shutil.rmtree(private_dir, ignore_errors=True)
