"""Desktop and power management defaults.

This module handles:
- The system dconf profile and the local database keyfiles
- GNOME appearance, accessibility and display defaults
- Power button, lid, idle and battery-saver defaults
"""

from __future__ import annotations

import logging
from pathlib import Path

from emcomm_isogen.customize.files import write_file
from emcomm_isogen.customize.pipeline import BuildContext
from emcomm_isogen.inputs import StationInputs

logger = logging.getLogger(__name__)

DCONF_PROFILE = Path("etc") / "dconf" / "profile" / "user"
DCONF_LOCAL_DB = Path("etc") / "dconf" / "db" / "local.d"
DESKTOP_KEYFILE = DCONF_LOCAL_DB / "00-emcomm-defaults"
POWER_KEYFILE = DCONF_LOCAL_DB / "01-power-settings"


def _bool(value: bool) -> str:
    return "true" if value else "false"


def render_desktop_keyfile(inputs: StationInputs) -> str:
    """Render the desktop defaults keyfile."""
    dark = inputs.desktop_color_scheme == "prefer-dark"
    theme = "Yaru-dark" if dark else "Yaru"
    idle_delay = inputs.screen_blank_timeout if inputs.screen_blank else 0

    sections = [
        "# Generated by emcomm-isogen: desktop preferences\n"
        "[org/gnome/desktop/interface]\n"
        f"color-scheme='{inputs.desktop_color_scheme}'\n"
        f"gtk-theme='{theme}'\n"
        f"icon-theme='{theme}'\n"
        f"text-scaling-factor={inputs.desktop_scaling_factor}\n"
    ]
    if inputs.disable_accessibility:
        sections.append(
            "[org/gnome/desktop/a11y]\n"
            "always-show-universal-access-status=false\n"
            "\n"
            "[org/gnome/desktop/a11y/applications]\n"
            "screen-keyboard-enabled=false\n"
            "screen-reader-enabled=false\n"
            "\n"
            "[org/gnome/desktop/a11y/interface]\n"
            "high-contrast=false\n"
        )
    sections.append(
        "[org/gnome/desktop/session]\n"
        f"idle-delay=uint32 {idle_delay}\n"
        "\n"
        "[org/gnome/settings-daemon/plugins/power]\n"
        f"ambient-enabled={_bool(inputs.automatic_screen_brightness)}\n"
        f"idle-dim={_bool(inputs.dim_screen)}\n"
    )
    return "\n".join(sections)


def render_power_keyfile(inputs: StationInputs) -> str:
    """Render the power management keyfile."""
    idle_ac = inputs.power_idle_ac if inputs.automatic_suspend else "nothing"
    idle_battery = inputs.power_idle_battery if inputs.automatic_suspend else "nothing"
    return (
        "# Generated by emcomm-isogen: power management\n"
        "[org/gnome/settings-daemon/plugins/power]\n"
        f"power-profile-daemon='{inputs.power_mode}'\n"
        f"lid-close-ac-action='{inputs.power_lid_close_ac}'\n"
        f"lid-close-battery-action='{inputs.power_lid_close_battery}'\n"
        f"power-button-action='{inputs.power_button_action}'\n"
        f"sleep-inactive-ac-type='{idle_ac}'\n"
        f"sleep-inactive-battery-type='{idle_battery}'\n"
        f"sleep-inactive-ac-timeout={inputs.power_idle_timeout}\n"
        f"sleep-inactive-battery-timeout={inputs.power_idle_timeout}\n"
        "\n"
        "[org/gnome/settings-daemon/plugins/power/battery-saver]\n"
        f"enable-battery-saver={_bool(inputs.automatic_power_saver)}\n"
    )


def _write_profile(rootfs: Path) -> None:
    write_file(rootfs / DCONF_PROFILE, "user-db:user\nsystem-db:local\n")


def compile_dconf(ctx: BuildContext) -> bool:
    """Compile the dconf database inside the chroot (best-effort).

    The database is also compiled on first boot, so a failure only delays
    the defaults until then.
    """
    if ctx.chroot is None:
        logger.debug("No chroot session; dconf database compiles on first boot")
        return False
    result = ctx.chroot.run(["dconf", "update"], check=False, log_path=ctx.log_path)
    if not result.ok:
        logger.warning("dconf update failed; defaults apply after first boot")
    return result.ok


def desktop(ctx: BuildContext) -> str:
    """Write desktop defaults."""
    _write_profile(ctx.rootfs)
    write_file(ctx.rootfs / DESKTOP_KEYFILE, render_desktop_keyfile(ctx.inputs))
    return (
        f"{ctx.inputs.desktop_color_scheme}, "
        f"scaling {ctx.inputs.desktop_scaling_factor}x"
    )


def power(ctx: BuildContext) -> str:
    """Write power management defaults and compile the dconf database."""
    _write_profile(ctx.rootfs)
    write_file(ctx.rootfs / POWER_KEYFILE, render_power_keyfile(ctx.inputs))
    compile_dconf(ctx)
    return f"power mode {ctx.inputs.power_mode}"


__all__ = [
    "compile_dconf",
    "desktop",
    "power",
    "render_desktop_keyfile",
    "render_power_keyfile",
]
