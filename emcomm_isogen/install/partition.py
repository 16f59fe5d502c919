"""Partition strategy resolution for unattended installs.

This module handles:
- Describing a target disk layout (from lsblk JSON or the install target path)
- Classifying a layout into a partitioning strategy
- Applying operator overrides and the entire-disk confirmation rule
- Computing swap and root sizes

The entire-disk strategy wipes the target disk, so it is only ever
returned when the operator explicitly confirmed it. Resolution fails
instead of silently choosing something else.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from emcomm_isogen.commands import CommandResult, run_command
from emcomm_isogen.errors import CommandError, PartitionStrategyError
from emcomm_isogen.types import PartitionStrategy

logger = logging.getLogger(__name__)

GIB = 1024**3

# Swap sizing: a quarter of the available space, clamped (GiB)
SWAP_FRACTION = 0.25
MIN_SWAP_GB = 2.0
MAX_SWAP_GB = 4.0

# Free space below this is not usable for a new installation
MEASURABLE_FREE_BYTES = 1 * GIB

# Tables with more partitions than this are treated as complex
MAX_SIMPLE_PARTITIONS = 4

FOREIGN_FSTYPES = frozenset({"ntfs", "exfat", "apfs", "hfs", "hfsplus", "refs", "BitLocker"})
COMPATIBLE_FSTYPES = frozenset({"ext4", "ext3", "ext2", "btrfs", "xfs", "swap"})
COMPLEX_FSTYPES = frozenset(
    {"LVM2_member", "crypto_LUKS", "linux_raid_member", "zfs_member"}
)

LSBLK_COLUMNS = "NAME,PATH,SIZE,FSTYPE,TYPE,LABEL"

# Patterns for partition detection
# /dev/sdX1, /dev/hdX1, /dev/vdX1
_PARTITION_PATTERN_SD = re.compile(r"^(/dev/[shv]d[a-z]+)(\d+)$")
# /dev/nvme0n1p1, /dev/mmcblk0p1, /dev/loop0p1
_PARTITION_PATTERN_P = re.compile(r"^(/dev/(?:nvme\d+n\d+|mmcblk\d+|loop\d+))p(\d+)$")


def is_partition_path(device_path: str) -> bool:
    """Check if a device path looks like a partition.

    Args:
        device_path: Path to the device.

    Returns:
        True if the path appears to be a partition, False otherwise.
    """
    return partition_parent(device_path) is not None


def partition_parent(device_path: str) -> str | None:
    """Return the whole-disk device of a partition path, or None."""
    for pattern in (_PARTITION_PATTERN_SD, _PARTITION_PATTERN_P):
        match = pattern.match(device_path)
        if match:
            return match.group(1)
    return None


@dataclass(frozen=True)
class PartitionInfo:
    """One partition of the target disk."""

    path: str
    size_bytes: int | None = None
    fstype: str | None = None
    label: str | None = None


@dataclass(frozen=True)
class DiskLayout:
    """Observed layout of the target disk.

    Attributes:
        device: Whole-disk device path.
        size_bytes: Disk size, if known.
        partitions: Partitions in table order.
        free_bytes: Unpartitioned space; derived from sizes when None.
        target_partition: Partition the operator designated for the install.
    """

    device: str
    size_bytes: int | None = None
    partitions: tuple[PartitionInfo, ...] = field(default_factory=tuple)
    free_bytes: int | None = None
    target_partition: str | None = None

    @property
    def unallocated_bytes(self) -> int | None:
        """Free space, explicit or derived from the partition sizes."""
        if self.free_bytes is not None:
            return self.free_bytes
        if self.size_bytes is None or any(
            p.size_bytes is None for p in self.partitions
        ):
            return None
        used = sum(p.size_bytes or 0 for p in self.partitions)
        return max(self.size_bytes - used, 0)

    @property
    def has_foreign_os(self) -> bool:
        """Whether another operating system's partitions are present."""
        return any(p.fstype in FOREIGN_FSTYPES for p in self.partitions)

    @property
    def is_complex(self) -> bool:
        """Whether the table uses volume managers, encryption or many partitions."""
        return len(self.partitions) > MAX_SIMPLE_PARTITIONS or any(
            p.fstype in COMPLEX_FSTYPES for p in self.partitions
        )

    def partition(self, path: str) -> PartitionInfo | None:
        """Look up a partition by device path."""
        for p in self.partitions:
            if p.path == path:
                return p
        return None


@dataclass(frozen=True)
class PartitionPlan:
    """Resolved partitioning plan for the unattended installer."""

    strategy: PartitionStrategy
    device: str
    swap_gb: float
    root_gb: float | None = None
    target_partition: str | None = None

    @property
    def swap_mb(self) -> int:
        """Swap size in MiB."""
        return int(self.swap_gb * 1024)

    @property
    def root_mb(self) -> int | None:
        """Root size in MiB, if known."""
        return None if self.root_gb is None else int(self.root_gb * 1024)


def classify_layout(layout: DiskLayout) -> PartitionStrategy:
    """Select a partitioning strategy for an observed layout.

    Args:
        layout: Observed disk layout.

    Returns:
        ENTIRE_DISK for an empty disk, FREE_SPACE for a foreign OS with
        measurable free space, REUSE_PARTITION otherwise (including
        complex tables, where it is the safe default).
    """
    if not layout.partitions:
        return PartitionStrategy.ENTIRE_DISK
    if layout.is_complex:
        return PartitionStrategy.REUSE_PARTITION
    free = layout.unallocated_bytes
    if layout.has_foreign_os and free is not None and free >= MEASURABLE_FREE_BYTES:
        return PartitionStrategy.FREE_SPACE
    return PartitionStrategy.REUSE_PARTITION


def compute_swap_gb(available_gb: float | None, override_gb: float | None = None) -> float:
    """Compute the swap size for a new installation.

    Args:
        available_gb: Space available for the installation (GiB), if known.
        override_gb: Operator-supplied swap size, which always wins.

    Returns:
        Swap size in GiB.
    """
    if override_gb is not None:
        return override_gb
    if available_gb is None:
        return MIN_SWAP_GB
    return min(max(available_gb * SWAP_FRACTION, MIN_SWAP_GB), MAX_SWAP_GB)


def _reuse_target(layout: DiskLayout) -> PartitionInfo:
    if layout.target_partition:
        found = layout.partition(layout.target_partition)
        return found or PartitionInfo(path=layout.target_partition)

    candidates = [p for p in layout.partitions if p.fstype in COMPATIBLE_FSTYPES - {"swap"}]
    if not candidates:
        raise PartitionStrategyError(
            f"No existing Linux partition to reuse on {layout.device}; "
            "set INSTALL_DISK to the partition to install into",
            code="no_partition_to_reuse",
        )
    return max(candidates, key=lambda p: p.size_bytes or 0)


def resolve_partition_plan(
    layout: DiskLayout,
    override: PartitionStrategy | None = None,
    confirm_entire_disk: bool = False,
    swap_override_gb: float | None = None,
) -> PartitionPlan:
    """Resolve the partitioning plan for a target disk.

    Args:
        layout: Observed target disk layout.
        override: Operator-selected strategy; takes precedence over detection.
        confirm_entire_disk: Explicit consent to erase the whole disk.
        swap_override_gb: Operator-supplied swap size (GiB).

    Returns:
        PartitionPlan.

    Raises:
        PartitionStrategyError: If entire-disk lacks confirmation or the
            selected strategy cannot be applied to the layout.
    """
    if override is not None:
        strategy = override
        logger.info("Using partition strategy override: %s", strategy.value)
    else:
        strategy = classify_layout(layout)
        logger.info("Detected partition strategy for %s: %s", layout.device, strategy.value)

    target_partition: str | None = None
    device = layout.device

    if strategy == PartitionStrategy.ENTIRE_DISK:
        if not confirm_entire_disk:
            raise PartitionStrategyError(
                f"Installing to the entire disk {layout.device} erases all data on it; "
                "explicit confirmation is required",
                code="entire_disk_unconfirmed",
            )
        if layout.target_partition:
            raise PartitionStrategyError(
                f"{layout.target_partition} is a partition; the entire-disk "
                "strategy needs a whole-disk device",
                code="partition_for_entire_disk",
            )
        available = layout.size_bytes

    elif strategy == PartitionStrategy.FREE_SPACE:
        available = layout.unallocated_bytes
        if available is not None and available < MEASURABLE_FREE_BYTES:
            raise PartitionStrategyError(
                f"Not enough free space on {layout.device} for a new installation",
                code="insufficient_free_space",
            )

    else:
        partition = _reuse_target(layout)
        target_partition = partition.path
        device = partition.path
        available = partition.size_bytes

    available_gb = None if available is None else available / GIB
    swap_gb = compute_swap_gb(available_gb, swap_override_gb)
    root_gb = None if available_gb is None else available_gb - swap_gb
    if root_gb is not None and root_gb <= 0:
        raise PartitionStrategyError(
            f"Swap of {swap_gb:.1f} GiB leaves no room for the root filesystem",
            code="no_room_for_root",
        )

    plan = PartitionPlan(
        strategy=strategy,
        device=device,
        swap_gb=swap_gb,
        root_gb=root_gb,
        target_partition=target_partition,
    )
    logger.info(
        "Partition plan: %s on %s (swap %.1f GiB)",
        plan.strategy.value,
        plan.device,
        plan.swap_gb,
    )
    return plan


def _as_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def parse_lsblk(output: str, device: str | None = None) -> DiskLayout:
    """Build a DiskLayout from ``lsblk --json --bytes`` output.

    Args:
        output: lsblk JSON document.
        device: Disk to select (first disk if not given).

    Returns:
        DiskLayout of the selected disk.

    Raises:
        PartitionStrategyError: If the document is invalid or has no such disk.
    """
    try:
        data = json.loads(output)
        disks = [d for d in data["blockdevices"] if d.get("type") == "disk"]
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise PartitionStrategyError(
            f"Invalid lsblk output: {e}", code="invalid_layout"
        ) from e

    for disk in disks:
        path = disk.get("path") or f"/dev/{disk['name']}"
        if device is None or path == device:
            partitions = tuple(
                PartitionInfo(
                    path=child.get("path") or f"/dev/{child['name']}",
                    size_bytes=_as_int(child.get("size")),
                    fstype=child.get("fstype"),
                    label=child.get("label"),
                )
                for child in disk.get("children") or []
                if child.get("type") == "part"
            )
            return DiskLayout(
                device=path, size_bytes=_as_int(disk.get("size")), partitions=partitions
            )

    raise PartitionStrategyError(
        f"Disk {device or '(any)'} not found in lsblk output", code="disk_not_found"
    )


def probe_layout(
    device: str,
    runner: Callable[..., CommandResult] = run_command,
) -> DiskLayout:
    """Observe the layout of a local disk with lsblk.

    Args:
        device: Whole-disk device path.
        runner: Command runner.

    Returns:
        DiskLayout of the device.

    Raises:
        PartitionStrategyError: If lsblk fails or the output is invalid.
    """
    try:
        result = runner(["lsblk", "--json", "--bytes", "-o", LSBLK_COLUMNS, device])
    except CommandError as e:
        raise PartitionStrategyError(
            f"Failed to inspect {device}: {e}", code="probe_failed"
        ) from e
    return parse_lsblk(result.stdout, device)


def load_layout_file(path: Path, install_target: str | None = None) -> DiskLayout:
    """Load a layout captured on the target machine with lsblk.

    Args:
        path: File holding ``lsblk --json --bytes`` output.
        install_target: INSTALL_DISK value; selects the disk and, for a
            partition path, marks the designated partition.

    Returns:
        DiskLayout.
    """
    disk = None
    target_partition = None
    if install_target:
        parent = partition_parent(install_target)
        disk = parent or install_target
        target_partition = install_target if parent else None

    layout = parse_lsblk(path.read_text(), disk)
    if target_partition:
        layout = DiskLayout(
            device=layout.device,
            size_bytes=layout.size_bytes,
            partitions=layout.partitions,
            free_bytes=layout.free_bytes,
            target_partition=target_partition,
        )
    return layout


def layout_from_target(install_target: str) -> DiskLayout:
    """Describe the layout implied by the install target path alone.

    A partition path designates an existing partition to reuse; a
    whole-disk path designates the disk as empty for the installer.

    Args:
        install_target: INSTALL_DISK value (e.g. '/dev/sda5' or '/dev/sda').

    Returns:
        DiskLayout.
    """
    parent = partition_parent(install_target)
    if parent is None:
        return DiskLayout(device=install_target)
    return DiskLayout(
        device=parent,
        partitions=(PartitionInfo(path=install_target),),
        target_partition=install_target,
    )


__all__ = [
    "DiskLayout",
    "PartitionInfo",
    "PartitionPlan",
    "classify_layout",
    "compute_swap_gb",
    "is_partition_path",
    "layout_from_target",
    "load_layout_file",
    "parse_lsblk",
    "partition_parent",
    "probe_layout",
    "resolve_partition_plan",
]
