"""Base image extraction.

This module handles:
- Extracting the top-level file tree of the base image with xorriso
- Locating the embedded squashfs root filesystem
- Unpacking the root filesystem with unsquashfs
- Clearing read-only permission bits copied from the source media
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path

from emcomm_isogen.chroot import ChrootSession, active_mounts
from emcomm_isogen.commands import run_command
from emcomm_isogen.errors import CommandError, ExtractionError

logger = logging.getLogger(__name__)

# Location of the root filesystem in Ubuntu live images
SQUASHFS_RELATIVE_PATH = Path("casper") / "filesystem.squashfs"


@dataclass
class ExtractedImage:
    """Paths of an extracted base image.

    Attributes:
        iso_dir: Writable copy of the image's file tree.
        rootfs_dir: Writable copy of the root filesystem.
        squashfs_path: Root filesystem image inside ``iso_dir``.
    """

    iso_dir: Path
    rootfs_dir: Path
    squashfs_path: Path


def find_squashfs(iso_dir: Path) -> Path:
    """Locate the root filesystem image inside an extracted tree.

    Args:
        iso_dir: Extracted image tree.

    Returns:
        Path of filesystem.squashfs.

    Raises:
        ExtractionError: If no root filesystem image exists.
    """
    expected = iso_dir / SQUASHFS_RELATIVE_PATH
    if expected.is_file():
        return expected

    candidates = sorted(iso_dir.rglob("filesystem.squashfs"))
    if not candidates:
        raise ExtractionError(
            f"filesystem.squashfs not found in {iso_dir}", code="squashfs_missing"
        )
    logger.warning("Root filesystem found at non-standard path %s", candidates[0])
    return candidates[0]


def make_writable(root: Path) -> int:
    """Add the owner write bit to every file and directory under ``root``.

    xorriso copies the read-only modes of the source media; without this,
    later edits of boot menus and checksums fail.

    Args:
        root: Directory to process.

    Returns:
        Number of entries whose mode was changed.
    """
    changed = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        directory = Path(dirpath)
        for path in [directory, *(directory / name for name in filenames)]:
            if path.is_symlink():
                continue
            mode = path.stat().st_mode
            if not mode & stat.S_IWUSR:
                path.chmod(mode | stat.S_IWUSR)
                changed += 1
    logger.debug("Made %d entries writable under %s", changed, root)
    return changed


def _remove_stale(path: Path) -> None:
    if path.exists():
        logger.info("Removing stale work tree %s", path)
        shutil.rmtree(path)


def extract_image(
    iso_path: Path,
    iso_dir: Path,
    rootfs_dir: Path,
    log_path: Path | None = None,
) -> ExtractedImage:
    """Extract a base image and its root filesystem.

    Leftover trees from an earlier run are removed first, after releasing
    any bind mounts still attached to the old root filesystem.

    The root filesystem keeps its own permissions since they become the
    installed system's permissions; the build runs as root and can write
    to it regardless.

    Args:
        iso_path: Base image in the cache.
        iso_dir: Destination of the image's file tree.
        rootfs_dir: Destination of the root filesystem.
        log_path: Log file for tool output.

    Returns:
        ExtractedImage with the extracted paths.

    Raises:
        ExtractionError: If the image or root filesystem cannot be extracted.
    """
    if not iso_path.is_file():
        raise ExtractionError(f"Base image not found: {iso_path}", code="image_missing")

    if rootfs_dir.exists():
        ChrootSession(rootfs_dir).release()
        remaining = active_mounts(rootfs_dir)
        if remaining:
            raise ExtractionError(
                f"Refusing to remove {rootfs_dir}: still mounted: "
                + ", ".join(str(p) for p in remaining),
                code="mounts_remaining",
            )
    _remove_stale(iso_dir)
    _remove_stale(rootfs_dir)
    iso_dir.mkdir(parents=True)

    logger.info("Extracting %s to %s", iso_path.name, iso_dir)
    try:
        run_command(
            [
                "xorriso",
                "-osirrox",
                "on",
                "-indev",
                str(iso_path),
                "-extract",
                "/",
                str(iso_dir),
            ],
            log_path=log_path,
        )
    except CommandError as e:
        raise ExtractionError(
            f"Failed to extract {iso_path.name}: {e}", code="xorriso_failed"
        ) from e

    make_writable(iso_dir)
    squashfs_path = find_squashfs(iso_dir)

    logger.info("Unpacking root filesystem %s", squashfs_path.name)
    try:
        run_command(
            ["unsquashfs", "-f", "-d", str(rootfs_dir), str(squashfs_path)],
            log_path=log_path,
        )
    except CommandError as e:
        raise ExtractionError(
            f"Failed to unpack {squashfs_path}: {e}", code="unsquashfs_failed"
        ) from e

    if not rootfs_dir.is_dir():
        raise ExtractionError(
            f"Root filesystem was not unpacked to {rootfs_dir}", code="rootfs_missing"
        )

    logger.info("Extracted base image to %s", iso_dir.parent)
    return ExtractedImage(
        iso_dir=iso_dir, rootfs_dir=rootfs_dir, squashfs_path=squashfs_path
    )


__all__ = [
    "ExtractedImage",
    "SQUASHFS_RELATIVE_PATH",
    "extract_image",
    "find_squashfs",
    "make_writable",
]
