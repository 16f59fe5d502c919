"""Image rebuilding.

This module handles:
- Recompressing the customized root filesystem with mksquashfs
- Refreshing filesystem.size and md5sum.txt in the image tree
- Reading the boot equipment (MBR, El Torito, EFI partition) of the base image
- Writing the bootable output image atomically
- Reading back the volume label of a written image
"""

from __future__ import annotations

import hashlib
import logging
import os
import shlex
from collections.abc import Callable
from pathlib import Path

from emcomm_isogen.commands import CommandResult, run_command
from emcomm_isogen.errors import CommandError, ImageRebuildError

logger = logging.getLogger(__name__)

MD5SUM_FILENAME = "md5sum.txt"
FILESYSTEM_SIZE_FILENAME = "filesystem.size"

# Entries never listed in md5sum.txt
MD5SUM_EXCLUDES = frozenset({MD5SUM_FILENAME, "boot.catalog"})

# Boot options re-derived for the new image instead of replayed
_DROPPED_BOOT_OPTIONS = frozenset({"-V", "--modification-date"})


def tree_size_bytes(root: Path) -> int:
    """Total size of the regular files under ``root`` (symlinks not followed)."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            path = Path(dirpath) / name
            if path.is_symlink() or not path.is_file():
                continue
            total += path.stat().st_size
    return total


def rebuild_squashfs(
    rootfs_dir: Path,
    squashfs_path: Path,
    work_dir: Path,
    compression: str = "xz",
    block_size: str = "1M",
    log_path: Path | None = None,
) -> Path:
    """Recompress the root filesystem and replace the image's squashfs.

    The new filesystem is written next to the work tree and moved over
    the old one only once mksquashfs succeeded.

    Args:
        rootfs_dir: Customized root filesystem.
        squashfs_path: squashfs file inside the image tree to replace.
        work_dir: Working directory for the temporary file.
        compression: mksquashfs compressor.
        block_size: mksquashfs block size.
        log_path: Log file for tool output.

    Returns:
        Path of the replaced squashfs file.

    Raises:
        ImageRebuildError: If mksquashfs fails.
    """
    new_squashfs = work_dir / "filesystem.squashfs.new"
    new_squashfs.unlink(missing_ok=True)

    argv = [
        "mksquashfs",
        str(rootfs_dir),
        str(new_squashfs),
        "-comp",
        compression,
        "-b",
        block_size,
        "-noappend",
    ]
    if compression == "xz":
        argv += ["-Xbcj", "x86"]

    logger.info("Rebuilding root filesystem (%s); this takes a while", compression)
    try:
        run_command(argv, log_path=log_path)
    except CommandError as e:
        new_squashfs.unlink(missing_ok=True)
        raise ImageRebuildError(
            f"Failed to rebuild root filesystem: {e}", code="mksquashfs_failed"
        ) from e

    if not new_squashfs.is_file():
        raise ImageRebuildError(
            f"mksquashfs produced no output at {new_squashfs}", code="mksquashfs_failed"
        )

    os.replace(new_squashfs, squashfs_path)
    write_filesystem_size(rootfs_dir, squashfs_path.parent / FILESYSTEM_SIZE_FILENAME)
    logger.info("Root filesystem rebuilt: %s", squashfs_path)
    return squashfs_path


def write_filesystem_size(rootfs_dir: Path, size_path: Path) -> int:
    """Write the uncompressed root filesystem size used by the installer.

    Returns:
        Size in bytes.
    """
    size = tree_size_bytes(rootfs_dir)
    size_path.write_text(f"{size}\n")
    logger.debug("filesystem.size: %d bytes", size)
    return size


def _md5(path: Path) -> str:
    hasher = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def write_md5sums(iso_dir: Path) -> int:
    """Regenerate md5sum.txt for the image tree.

    Args:
        iso_dir: Extracted image tree.

    Returns:
        Number of files listed.
    """
    entries: list[str] = []
    for dirpath, dirnames, filenames in os.walk(iso_dir):
        dirnames.sort()
        for name in sorted(filenames):
            path = Path(dirpath) / name
            relative = path.relative_to(iso_dir)
            if str(relative) in MD5SUM_EXCLUDES or path.is_symlink():
                continue
            entries.append(f"{_md5(path)}  ./{relative.as_posix()}")

    (iso_dir / MD5SUM_FILENAME).write_text("\n".join(entries) + "\n")
    logger.info("Wrote %s (%d files)", MD5SUM_FILENAME, len(entries))
    return len(entries)


def parse_boot_report(report: str) -> list[str]:
    """Turn ``-report_el_torito as_mkisofs`` output into mkisofs arguments.

    The volume label and modification date of the base image are dropped
    so the new image gets its own.

    Args:
        report: xorriso report, one option per line.

    Returns:
        Argument list to replay.
    """
    options: list[str] = []
    for line in report.splitlines():
        line = line.strip()
        if not line.startswith("-"):
            continue
        tokens = shlex.split(line)
        option = tokens[0].split("=", 1)[0]
        if option in _DROPPED_BOOT_OPTIONS:
            continue
        options.extend(tokens)
    return options


def read_boot_options(iso_path: Path) -> list[str]:
    """Read the boot equipment of an image as mkisofs arguments.

    Args:
        iso_path: Base image.

    Returns:
        Argument list reproducing the image's boot setup.

    Raises:
        ImageRebuildError: If the report fails or describes no boot setup.
    """
    try:
        result = run_command(
            ["xorriso", "-indev", str(iso_path), "-report_el_torito", "as_mkisofs"]
        )
    except CommandError as e:
        raise ImageRebuildError(
            f"Failed to read boot setup of {iso_path.name}: {e}",
            code="boot_report_failed",
        ) from e

    options = parse_boot_report(result.stdout)
    if not options:
        raise ImageRebuildError(
            f"No boot setup found in {iso_path.name}", code="no_boot_equipment"
        )
    logger.debug("Boot options: %s", shlex.join(options))
    return options


def parse_volume_id(report: str) -> str | None:
    """Extract the volume label from an ``xorriso -pvd_info`` report."""
    for line in report.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == "Volume Id":
            return value.strip() or None
    return None


def read_volume_label(
    iso_path: Path, runner: Callable[..., CommandResult] = run_command
) -> str | None:
    """Read the volume label of an image.

    Args:
        iso_path: Image to inspect.
        runner: Command runner.

    Returns:
        The label, or None if the image has none.

    Raises:
        CommandError: If xorriso fails.
    """
    result = runner(["xorriso", "-indev", str(iso_path), "-pvd_info"])
    return parse_volume_id(result.stdout)


def rebuild_image(
    base_iso: Path,
    iso_dir: Path,
    output_path: Path,
    volume_label: str,
    log_path: Path | None = None,
) -> Path:
    """Write the bootable output image.

    The image is written to a temporary file in the output directory and
    renamed into place once complete, so a failure leaves no output.

    Args:
        base_iso: Base image whose boot setup is replayed.
        iso_dir: Customized image tree.
        output_path: Final image path.
        volume_label: Volume label of the new image.
        log_path: Log file for tool output.

    Returns:
        Path of the written image.

    Raises:
        ImageRebuildError: If the image cannot be written.
    """
    boot_options = read_boot_options(base_iso)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = output_path.with_name(output_path.name + ".tmp")
    tmp_path.unlink(missing_ok=True)

    argv = [
        "xorriso",
        "-as",
        "mkisofs",
        "-r",
        "-V",
        volume_label,
        "-J",
        "-joliet-long",
        "-iso-level",
        "3",
        *boot_options,
        "-o",
        str(tmp_path),
        str(iso_dir),
    ]

    logger.info("Writing image %s (label %s)", output_path.name, volume_label)
    try:
        run_command(argv, log_path=log_path)
        if not tmp_path.is_file() or tmp_path.stat().st_size == 0:
            raise ImageRebuildError(
                f"xorriso produced no image at {tmp_path}", code="empty_image"
            )
        os.replace(tmp_path, output_path)
    except CommandError as e:
        tmp_path.unlink(missing_ok=True)
        raise ImageRebuildError(
            f"Failed to write image {output_path.name}: {e}", code="xorriso_failed"
        ) from e
    except (ImageRebuildError, OSError):
        tmp_path.unlink(missing_ok=True)
        raise

    logger.info("Image written: %s", output_path)
    return output_path


__all__ = [
    "FILESYSTEM_SIZE_FILENAME",
    "MD5SUM_FILENAME",
    "parse_boot_report",
    "parse_volume_id",
    "read_boot_options",
    "read_volume_label",
    "rebuild_image",
    "rebuild_squashfs",
    "tree_size_bytes",
    "write_filesystem_size",
    "write_md5sums",
]
