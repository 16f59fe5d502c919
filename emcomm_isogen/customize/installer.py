"""Unattended installer configuration step.

This module handles:
- Resolving the partition plan from a captured layout or the install target
- Writing the preseed answer file into the image tree
- Pointing the boot menus at the answer file
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from emcomm_isogen.commands import CommandResult, run_command
from emcomm_isogen.config import BuildConfiguration
from emcomm_isogen.customize.pipeline import BuildContext
from emcomm_isogen.errors import CustomizationWarning
from emcomm_isogen.inputs import StationInputs
from emcomm_isogen.install import (
    PartitionPlan,
    hash_password,
    patch_boot_menus,
    render_preseed,
    resolve_partition_plan,
    write_preseed,
)
from emcomm_isogen.install.partition import (
    DiskLayout,
    layout_from_target,
    load_layout_file,
)

logger = logging.getLogger(__name__)


def target_layout(inputs: StationInputs) -> DiskLayout:
    """Layout of the install target.

    A layout captured on the target machine (DISK_LAYOUT_FILE) is used when
    provided; otherwise the layout is inferred from INSTALL_DISK.
    """
    if inputs.disk_layout_file is not None:
        logger.info("Using captured disk layout %s", inputs.disk_layout_file)
        return load_layout_file(inputs.disk_layout_file, inputs.install_disk)
    return layout_from_target(inputs.install_disk)


def plan_partitions(config: BuildConfiguration, inputs: StationInputs) -> PartitionPlan:
    """Resolve the partition plan for a build.

    Raises:
        PartitionStrategyError: If the plan cannot be resolved safely.
    """
    return resolve_partition_plan(
        target_layout(inputs),
        override=inputs.partition_strategy,
        confirm_entire_disk=config.confirm_entire_disk,
        swap_override_gb=inputs.swap_size_gb,
    )


def _password_hash(
    inputs: StationInputs, runner: Callable[..., CommandResult] = run_command
) -> str | None:
    if inputs.user_password is None:
        return None
    try:
        return hash_password(inputs.user_password.get_secret_value(), runner=runner)
    except CustomizationWarning as e:
        logger.warning("%s; the installer will ask for the password", e.message)
        return None


def preseed(ctx: BuildContext) -> str:
    """Write the answer file and enable it in the boot menus."""
    if ctx.partition_plan is None:
        ctx.partition_plan = plan_partitions(ctx.config, ctx.inputs)
    plan = ctx.partition_plan

    text = render_preseed(plan, ctx.inputs, _password_hash(ctx.inputs, ctx.runner))
    write_preseed(ctx.iso_dir, text)

    menus = patch_boot_menus(ctx.iso_dir)
    if not menus:
        logger.warning("No boot menu was patched; the installer will not be unattended")
    return f"{plan.strategy.value} on {plan.device}, {len(menus)} boot menu(s)"


__all__ = ["plan_partitions", "preseed", "target_layout"]
