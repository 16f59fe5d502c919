"""Chroot session management.

This module handles:
- Bind-mounting device and kernel pseudo-filesystems into an extracted root
- Running commands inside the root with chroot
- Guaranteed teardown of every mount, in reverse order, on any exit path

A leaked bind mount keeps host /dev, /proc and /sys attached to the work
tree, where a later ``rm -rf`` of the tree would reach into the host. Use
ChrootSession as a context manager so release always runs.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any

from emcomm_isogen.commands import CommandResult, chroot_argv, run_command
from emcomm_isogen.errors import ChrootInstallError, CommandError
from emcomm_isogen.types import MountState

logger = logging.getLogger(__name__)

HOST_RESOLV_CONF = Path("/etc/resolv.conf")


@dataclass(frozen=True)
class MountTarget:
    """A host path bind-mounted into the chroot.

    Attributes:
        source: Host path.
        target: Path relative to the chroot root.
        optional: Failure to mount is logged instead of aborting.
    """

    source: str
    target: str
    optional: bool = False


# Mount order matters: /dev/pts lives on top of /dev
DEFAULT_MOUNTS: tuple[MountTarget, ...] = (
    MountTarget("/dev", "dev"),
    MountTarget("/dev/pts", "dev/pts", optional=True),
    MountTarget("/proc", "proc"),
    MountTarget("/sys", "sys"),
    MountTarget("/run", "run", optional=True),
)


def active_mounts(
    root: Path,
    mounts: Sequence[MountTarget] = DEFAULT_MOUNTS,
    is_mounted: Callable[[Path], bool] = os.path.ismount,
) -> list[Path]:
    """Return the mount points of ``mounts`` still active under ``root``.

    A tree with active mounts must never be removed recursively.
    """
    return [root / m.target for m in mounts if is_mounted(root / m.target)]


class ChrootSession:
    """Guard object for the bind mounts of one chroot root.

    ``acquire()`` is idempotent: calling it on an already acquired session
    nests, and finding the first mount point already active (left over
    from an interrupted run) adopts the existing mounts. ``release()``
    unmounts in reverse order, logging individual failures instead of
    raising, so teardown always completes.

    Args:
        root: Extracted root filesystem.
        mounts: Ordered mount set.
        runner: Command runner (``run_command`` signature).
        is_mounted: Predicate telling whether a path is a mount point.
        resolv_conf: Host resolver configuration copied into the root.
    """

    def __init__(
        self,
        root: Path,
        mounts: Sequence[MountTarget] = DEFAULT_MOUNTS,
        runner: Callable[..., CommandResult] = run_command,
        is_mounted: Callable[[Path], bool] = os.path.ismount,
        resolv_conf: Path = HOST_RESOLV_CONF,
    ) -> None:
        self.root = root
        self.mounts = tuple(mounts)
        self._runner = runner
        self._is_mounted = is_mounted
        self._resolv_conf = resolv_conf
        self._mounted: list[MountTarget] = []
        self._resolv_original: str | bytes | None = None
        self._resolv_replaced = False
        self._depth = 0
        self.state = MountState.UNMOUNTED

    def __repr__(self) -> str:
        """Return string representation of ChrootSession."""
        return f"<ChrootSession(root='{self.root}', state='{self.state.value}')>"

    @property
    def mounted_targets(self) -> list[MountTarget]:
        """Targets mounted (or adopted) by this session, in mount order."""
        return list(self._mounted)

    def _path(self, target: MountTarget) -> Path:
        return self.root / target.target

    def acquire(self) -> None:
        """Mount the bind-mount set into the root.

        Raises:
            ChrootInstallError: If a required mount fails. Mounts made before
                the failure are released first.
        """
        if self._depth:
            self._depth += 1
            return

        if not self.root.is_dir():
            raise ChrootInstallError(
                f"Chroot root does not exist: {self.root}", code="chroot_missing"
            )

        first = self.mounts[0]
        if self._is_mounted(self._path(first)):
            logger.debug("Chroot mounts already active in %s, adopting", self.root)
            self._mounted = [m for m in self.mounts if self._is_mounted(self._path(m))]
            self.state = MountState.MOUNTED
            self._depth = 1
            return

        self.state = MountState.MOUNTING
        logger.debug("Setting up chroot bind mounts in %s", self.root)
        try:
            for target in self.mounts:
                self._mount(target)
            self._copy_resolv_conf()
        except BaseException:
            self.release()
            raise

        self.state = MountState.MOUNTED
        self._depth = 1

    def _mount(self, target: MountTarget) -> None:
        dest = self._path(target)
        if target.optional and not Path(target.source).exists():
            logger.debug("Skipping optional mount %s (missing on host)", target.source)
            return
        dest.mkdir(parents=True, exist_ok=True)
        try:
            self._runner(["mount", "--bind", target.source, str(dest)])
        except CommandError as e:
            if target.optional:
                logger.warning("Failed to mount %s: %s", target.source, e)
                return
            raise ChrootInstallError(
                f"Failed to mount {target.source} into {self.root}: {e}",
                code="mount_failed",
            ) from e
        self._mounted.append(target)

    def _copy_resolv_conf(self) -> None:
        """Give the installer working name resolution.

        The image's own entry (usually a symlink to the systemd-resolved
        stub) is remembered and put back by ``_restore_resolv_conf``.
        """
        dest = self.root / "etc" / "resolv.conf"
        try:
            original: str | bytes | None = None
            if dest.is_symlink():
                original = os.readlink(dest)
                dest.unlink()
            elif dest.exists():
                original = dest.read_bytes()
            self._resolv_original = original
            self._resolv_replaced = True
            shutil.copyfile(self._resolv_conf, dest)
        except OSError as e:
            logger.warning("Could not copy resolv.conf into chroot: %s", e)

    def _restore_resolv_conf(self) -> None:
        if not self._resolv_replaced:
            return
        self._resolv_replaced = False
        dest = self.root / "etc" / "resolv.conf"
        original, self._resolv_original = self._resolv_original, None
        try:
            if dest.is_symlink() or dest.exists():
                dest.unlink()
            if isinstance(original, str):
                os.symlink(original, dest)
            elif original is not None:
                dest.write_bytes(original)
        except OSError as e:
            logger.warning("Could not restore resolv.conf in %s: %s", self.root, e)

    def release(self) -> None:
        """Unmount the bind-mount set in reverse order.

        Safe to call in any state; mount points still active under the root
        are unmounted even if this session did not mount them.
        """
        if self._depth > 1:
            self._depth -= 1
            return

        self._depth = 0
        self.state = MountState.UNMOUNTING
        self._restore_resolv_conf()
        for target in reversed(self.mounts):
            dest = self._path(target)
            if target not in self._mounted and not self._is_mounted(dest):
                continue
            try:
                result = self._runner(["umount", "-l", str(dest)], check=False)
            except CommandError as e:
                logger.warning("Failed to unmount %s: %s", dest, e)
                continue
            if not result.ok:
                logger.warning(
                    "Failed to unmount %s (exit code %d)", dest, result.returncode
                )
        self._mounted.clear()
        self.state = MountState.UNMOUNTED
        logger.debug("Chroot mounts released for %s", self.root)

    def run(self, argv: list[str], **kwargs: Any) -> CommandResult:
        """Run a command inside the chroot.

        Args:
            argv: Command and arguments as seen inside the root.
            **kwargs: Passed to the command runner.

        Returns:
            CommandResult of the command.

        Raises:
            ChrootInstallError: If the session is not acquired.
            CommandError: If the command fails and ``check`` is set.
        """
        if self.state != MountState.MOUNTED:
            raise ChrootInstallError(
                "Chroot session is not acquired", code="chroot_not_mounted"
            )
        return self._runner(chroot_argv(self.root, argv), **kwargs)

    def __enter__(self) -> ChrootSession:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


__all__ = ["DEFAULT_MOUNTS", "ChrootSession", "MountTarget", "active_mounts"]
