"""Unattended install support: partition strategy, preseed and boot menus."""

from emcomm_isogen.install.bootmenu import patch_boot_menus
from emcomm_isogen.install.partition import (
    DiskLayout,
    PartitionPlan,
    classify_layout,
    compute_swap_gb,
    resolve_partition_plan,
)
from emcomm_isogen.install.preseed import hash_password, render_preseed, write_preseed

__all__ = [
    "DiskLayout",
    "PartitionPlan",
    "classify_layout",
    "compute_swap_gb",
    "hash_password",
    "patch_boot_menus",
    "render_preseed",
    "resolve_partition_plan",
    "write_preseed",
]
