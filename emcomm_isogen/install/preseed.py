"""Preseed generation for the unattended installer.

This module handles:
- Hashing the operator password (SHA-512 crypt via openssl)
- Rendering the preseed answer file for a resolved partition plan
- Writing the answer file to the image root, where the boot loader can
  reach it before the root filesystem is mounted
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from emcomm_isogen.commands import CommandResult, run_command
from emcomm_isogen.errors import CommandError, CustomizationWarning
from emcomm_isogen.inputs import StationInputs
from emcomm_isogen.install.partition import PartitionPlan, partition_parent
from emcomm_isogen.types import PartitionStrategy

logger = logging.getLogger(__name__)

PRESEED_RELATIVE_PATH = Path("preseed") / "custom.preseed"

# Path of the answer file as seen by the installer
PRESEED_BOOT_PATH = "/cdrom/preseed/custom.preseed"

# The base release is end-of-life; packages come from old-releases
MIRROR_HOSTNAME = "old-releases.ubuntu.com"
MIRROR_SUITE = "kinetic"


def hash_password(
    password: str,
    runner: Callable[..., CommandResult] = run_command,
) -> str:
    """Hash a password as a SHA-512 crypt string.

    The password is passed on stdin so it never appears in a process list.

    Args:
        password: Plain-text password.
        runner: Command runner.

    Returns:
        Hash of the form ``$6$salt$digest``.

    Raises:
        CustomizationWarning: If openssl fails or returns an unexpected value.
    """
    try:
        result = runner(
            ["openssl", "passwd", "-6", "-stdin"], input_text=password + "\n"
        )
    except CommandError as e:
        raise CustomizationWarning(
            f"Password hashing failed: {e}", code="password_hash_failed"
        ) from e

    hashed = result.stdout.strip()
    if not hashed.startswith("$6$"):
        raise CustomizationWarning(
            "openssl returned an unexpected password hash", code="password_hash_failed"
        )
    return hashed


def _partman_lines(plan: PartitionPlan) -> list[str]:
    if plan.strategy == PartitionStrategy.ENTIRE_DISK:
        return [
            f"d-i partman-auto/disk string {plan.device}",
            "d-i partman-auto/method string lvm",
            "d-i partman-lvm/device_remove_lvm boolean true",
            "d-i partman-md/device_remove_md boolean true",
            "d-i partman-lvm/confirm boolean true",
            "d-i partman-lvm/confirm_nooverwrite boolean true",
            "d-i partman-auto-lvm/guided_size string max",
            "d-i partman-auto/choose_recipe select atomic",
            "d-i partman-partitioning/confirm_write_new_label boolean true",
        ]

    if plan.strategy == PartitionStrategy.FREE_SPACE:
        swap_mb = plan.swap_mb
        root_min = 8192
        return [
            f"d-i partman-auto/disk string {plan.device}",
            "d-i partman-auto/method string regular",
            "d-i partman-auto/init_automatically_partition select biggest_free",
            "d-i partman-auto/expert_recipe string \\",
            "    emcomm :: \\",
            f"        {root_min} 10000 -1 ext4 \\",
            "            $primary{ } $bootable{ } \\",
            "            method{ format } format{ } \\",
            "            use_filesystem{ } filesystem{ ext4 } \\",
            "            mountpoint{ / } \\",
            "        . \\",
            f"        {swap_mb} 512 {swap_mb} linux-swap \\",
            "            method{ swap } format{ } \\",
            "        .",
            "d-i partman-auto/choose_recipe select emcomm",
            "d-i partman-partitioning/confirm_write_new_label boolean true",
            "d-i partman-partitioning/default_filesystem string ext4",
        ]

    return [
        "d-i partman-auto/method string regular",
        "d-i partman-basicfilesystems/format_swap_bootable boolean false",
        "d-i partman-partitioning/confirm_write_new_label boolean true",
        "d-i partman-partitioning/default_filesystem string ext4",
        "d-i partman-basicfilesystems/no_swap boolean false",
    ]


def render_preseed(
    plan: PartitionPlan,
    inputs: StationInputs,
    password_hash: str | None = None,
) -> str:
    """Render the installer answer file.

    Args:
        plan: Resolved partition plan.
        inputs: Station inputs (identity, locale, keyboard).
        password_hash: SHA-512 crypt hash of the user password; the
            password question is left to the installer when None.

    Returns:
        Preseed file text.
    """
    grub_device = plan.device
    if plan.strategy != PartitionStrategy.ENTIRE_DISK:
        # grub installs to the disk, not the partition
        grub_device = partition_parent(plan.device) or plan.device

    lines = [
        "# Ubuntu 22.10 preseed for automated installation",
        "# Generated by emcomm-isogen",
        f"# Partition strategy: {plan.strategy.value}",
        f"# Install target: {plan.device}",
        "",
        "# Localization",
        f"d-i debian-installer/locale string {inputs.locale}",
        f"d-i keyboard-configuration/layoutcode string {inputs.keyboard_layout}",
        f"d-i keyboard-configuration/xkb-keymap string {inputs.keyboard_layout}",
        f"d-i time/zone string {inputs.timezone}",
        f"d-i localtime/set-timezone select {inputs.timezone}",
        "d-i clock-setup/utc boolean true",
        "d-i clock-setup/ntp boolean true",
        "",
        "# Network",
        "d-i netcfg/choose_interface select auto",
        f"d-i netcfg/get_hostname string {inputs.hostname}",
        "d-i netcfg/get_domain string local",
        f"d-i netcfg/hostname string {inputs.hostname}",
        "d-i hw-detect/load_firmware boolean true",
        "",
        "# Mirror",
        "d-i mirror/country string manual",
        f"d-i mirror/http/hostname string {MIRROR_HOSTNAME}",
        "d-i mirror/http/directory string /ubuntu",
        f"d-i mirror/suite string {MIRROR_SUITE}",
        "d-i mirror/http/proxy string",
        "",
        "# Account",
        "d-i passwd/root-login boolean false",
        f"d-i passwd/user-fullname string {inputs.user_fullname}",
        f"d-i passwd/username string {inputs.username}",
    ]
    if password_hash:
        lines.append(f"d-i passwd/user-password-crypted password {password_hash}")
    lines += [
        "d-i user-setup/allow-password-weak boolean true",
        "d-i user-setup/encrypt-home boolean false",
        "",
        "# Partitioning",
        *_partman_lines(plan),
        "d-i partman/mount_style select uuid",
        "d-i partman/choose_partition select finish",
        "d-i partman/confirm boolean true",
        "d-i partman/confirm_nooverwrite boolean true",
        "",
        "# Boot loader",
        "d-i grub-installer/only_debian boolean true",
        "d-i grub-installer/with_other_os boolean true",
        f"d-i grub-installer/bootdev string {grub_device}",
        "",
        "# Packages",
        "tasksel tasksel/first multiselect ubuntu-desktop",
        "d-i apt-setup/use_mirror boolean true",
        "d-i apt-setup/universe boolean true",
        "d-i apt-setup/multiverse boolean true",
        f"d-i apt-setup/security_host string {MIRROR_HOSTNAME}",
        "d-i apt-setup/security_path string /ubuntu",
        "d-i pkgsel/upgrade select none",
        "d-i pkgsel/update-policy select none",
        "popularity-contest popularity-contest/participate boolean false",
        "",
        "# Ubiquity",
        "ubiquity ubiquity/reboot_without_asking boolean true",
        "ubiquity ubiquity/keep_installed boolean true",
        "",
        "# Finish",
        "d-i finish-install/reboot_in_background boolean true",
        "d-i cdrom-detect/eject boolean true",
    ]
    return "\n".join(lines) + "\n"


def write_preseed(iso_dir: Path, text: str) -> Path:
    """Write the answer file into the extracted image tree.

    Args:
        iso_dir: Extracted image tree.
        text: Preseed text.

    Returns:
        Path of the written file.
    """
    path = iso_dir / PRESEED_RELATIVE_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    path.chmod(0o644)
    logger.info("Wrote preseed file /%s", PRESEED_RELATIVE_PATH)
    return path


__all__ = [
    "PRESEED_BOOT_PATH",
    "PRESEED_RELATIVE_PATH",
    "hash_password",
    "render_preseed",
    "write_preseed",
]
