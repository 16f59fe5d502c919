"""Boot menu patching for the unattended installer.

This module handles:
- Pointing every live-kernel entry of the image's GRUB menus at the
  generated preseed file
- Keeping the patch idempotent (the preseed arguments appear exactly once)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from pathlib import Path

from emcomm_isogen.install.preseed import PRESEED_BOOT_PATH

logger = logging.getLogger(__name__)

BOOT_MENU_PATHS: tuple[Path, ...] = (
    Path("boot") / "grub" / "grub.cfg",
    Path("boot") / "grub" / "loopback.cfg",
)

PRESEED_ARGS: tuple[str, ...] = (
    f"file={PRESEED_BOOT_PATH}",
    "auto=true",
    "priority=critical",
)

# Kernel command line separator; arguments after it go to init
ARG_SEPARATOR = "---"

_KERNEL_LINE = re.compile(r"^(?P<indent>\s*)(?P<cmd>linux|linuxefi)(?P<sep>\s+)(?P<rest>.*)$")


def _is_replaced_arg(arg: str) -> bool:
    return (
        arg.startswith("file=/cdrom/preseed/")
        or arg.startswith("auto=")
        or arg.startswith("priority=")
    )


def _live_kernel(line: str) -> re.Match[str] | None:
    match = _KERNEL_LINE.match(line)
    if match is None:
        return None
    tokens = match.group("rest").split()
    if not tokens or "casper/" not in tokens[0]:
        return None
    return match


def patch_kernel_line(line: str) -> str:
    """Add the preseed arguments to one GRUB ``linux`` line.

    Lines that do not boot the live kernel are returned unchanged.

    Args:
        line: One line of a GRUB menu, without line ending.

    Returns:
        The patched line.
    """
    match = _live_kernel(line)
    if match is None:
        return line

    tokens = match.group("rest").split()
    kernel, args = tokens[0], [a for a in tokens[1:] if not _is_replaced_arg(a)]
    if ARG_SEPARATOR in args:
        index = args.index(ARG_SEPARATOR)
        args[index:index] = PRESEED_ARGS
    else:
        args.extend(PRESEED_ARGS)

    return f"{match.group('indent')}{match.group('cmd')}{match.group('sep')}" + " ".join(
        [kernel, *args]
    )


def patch_boot_menu_text(text: str) -> tuple[str, int]:
    """Patch every live-kernel line of a GRUB menu.

    Returns:
        Tuple of (patched text, number of kernel lines found).
    """
    out: list[str] = []
    count = 0
    for line in text.splitlines(keepends=True):
        body = line.rstrip("\r\n")
        ending = line[len(body) :]
        if _live_kernel(body):
            count += 1
            body = patch_kernel_line(body)
        out.append(body + ending)
    return "".join(out), count


def patch_boot_menus(
    iso_dir: Path,
    menus: Sequence[Path] = BOOT_MENU_PATHS,
) -> list[Path]:
    """Patch the boot menus of an extracted image tree.

    Args:
        iso_dir: Extracted image tree.
        menus: Menu files relative to ``iso_dir``.

    Returns:
        Menu files that contain patched kernel entries.
    """
    patched: list[Path] = []
    for relative in menus:
        path = iso_dir / relative
        if not path.is_file():
            logger.warning("Boot menu not found: /%s", relative)
            continue

        original = path.read_text()
        text, count = patch_boot_menu_text(original)
        if count == 0:
            logger.warning("No live kernel entries in /%s", relative)
            continue
        if text != original:
            path.write_text(text)
        logger.info("Boot menu /%s: %d entries use the preseed", relative, count)
        patched.append(path)
    return patched


__all__ = [
    "BOOT_MENU_PATHS",
    "PRESEED_ARGS",
    "patch_boot_menu_text",
    "patch_boot_menus",
    "patch_kernel_line",
]
