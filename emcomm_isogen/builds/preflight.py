"""Build pre-flight and process guards.

This module handles:
- Checking required host tools, root privileges and the station inputs file
- The exclusive, non-blocking lock on the working directory
- Mapping SIGTERM to KeyboardInterrupt for the duration of a build
"""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType

from emcomm_isogen.config import BuildConfiguration
from emcomm_isogen.errors import PrerequisiteError, WorkDirLockedError

logger = logging.getLogger(__name__)

# Tools run on the host; everything else runs inside the chroot
REQUIRED_TOOLS: dict[str, str] = {
    "xorriso": "xorriso",
    "unsquashfs": "squashfs-tools",
    "mksquashfs": "squashfs-tools",
    "openssl": "openssl",
    "mount": "mount",
    "umount": "mount",
    "chroot": "coreutils",
}

LOCK_FILENAME = ".emcomm-isogen.lock"


def missing_tools(
    tools: dict[str, str] = REQUIRED_TOOLS,
    which: Callable[[str], str | None] = shutil.which,
) -> list[str]:
    """Return the required tools not found on PATH."""
    return [tool for tool in tools if which(tool) is None]


def check_prerequisites(
    config: BuildConfiguration,
    which: Callable[[str], str | None] = shutil.which,
    euid: Callable[[], int] = os.geteuid,
) -> None:
    """Verify the host can run a build.

    Args:
        config: Build configuration.
        which: Tool lookup.
        euid: Effective user id lookup.

    Raises:
        PrerequisiteError: If a tool, root privileges or the secrets file
            is missing.
    """
    missing = missing_tools(which=which)
    if missing:
        packages = sorted({REQUIRED_TOOLS[t] for t in missing})
        raise PrerequisiteError(
            f"Required command(s) not found: {', '.join(missing)}. "
            f"Install with: sudo apt install {' '.join(packages)}",
            code="missing_tools",
        )

    if euid() != 0:
        raise PrerequisiteError(
            "Building an image requires root privileges (run with sudo)",
            code="not_root",
        )

    if not config.secrets_file.is_file():
        raise PrerequisiteError(
            f"Station inputs file not found: {config.secrets_file}. "
            "Copy secrets.env.template to secrets.env and edit it",
            code="secrets_missing",
        )

    logger.info("All prerequisites satisfied")


@contextmanager
def work_dir_lock(work_dir: Path) -> Iterator[Path]:
    """Hold an exclusive lock on a working directory.

    Only one build may own a working directory at a time. The lock is not
    waited for: a second build fails immediately.

    Args:
        work_dir: Working directory (created if missing).

    Yields:
        The lock file path.

    Raises:
        WorkDirLockedError: If another process holds the lock.
    """
    work_dir.mkdir(parents=True, exist_ok=True)
    lock_file = work_dir.parent / f"{work_dir.name}{LOCK_FILENAME}"

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    locked = False
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise WorkDirLockedError(work_dir) from None
        locked = True
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.debug("Work directory lock acquired: %s", lock_file)
        yield lock_file
    finally:
        if locked:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Work directory lock released: %s", lock_file)
        os.close(fd)


def _raise_interrupt(signum: int, frame: FrameType | None) -> None:
    raise KeyboardInterrupt(f"Received signal {signum}")


@contextmanager
def interrupt_on_sigterm() -> Iterator[None]:
    """Turn SIGTERM into KeyboardInterrupt so cleanup guards run.

    Signal handlers can only be installed from the main thread; elsewhere
    this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


__all__ = [
    "REQUIRED_TOOLS",
    "check_prerequisites",
    "interrupt_on_sigterm",
    "missing_tools",
    "work_dir_lock",
]
