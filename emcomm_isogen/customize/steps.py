"""The fixed customization step order."""

from __future__ import annotations

from emcomm_isogen.customize import (
    addons,
    backups,
    desktop,
    identity,
    installer,
    network,
    radio,
    vendor,
)
from emcomm_isogen.customize.pipeline import FunctionStep

# vendor-install and preseed abort the build; every other step is best-effort
CUSTOMIZATION_STEPS: tuple[FunctionStep, ...] = (
    FunctionStep("vendor-install", vendor.vendor_install, fatal=True),
    FunctionStep("addons-overlay", vendor.addons_overlay),
    FunctionStep("hostname", identity.hostname),
    FunctionStep("wifi", network.wifi),
    FunctionStep("desktop", desktop.desktop),
    FunctionStep("power", desktop.power),
    FunctionStep("aprs-user-config", radio.aprs_user_config),
    FunctionStep("direwolf-template", radio.direwolf_template),
    FunctionStep("radio-configs", radio.radio_configs),
    FunctionStep("user-account", identity.user_account),
    FunctionStep("timezone", identity.timezone),
    FunctionStep("git-config", identity.git_config),
    FunctionStep("pat-aliases", radio.pat_aliases),
    FunctionStep("vara-licenses", radio.vara_licenses),
    FunctionStep("wikipedia-tools", addons.wikipedia_tools),
    FunctionStep("wifi-diagnostics", addons.wifi_diagnostics),
    FunctionStep("additional-packages", vendor.additional_packages),
    FunctionStep("chirp", vendor.chirp),
    FunctionStep("user-backup", backups.user_backup),
    FunctionStep("preseed", installer.preseed, fatal=True),
    FunctionStep("embed-cache", backups.embed_cache),
    FunctionStep("manifest", backups.manifest),
)


def default_steps() -> list[FunctionStep]:
    """Customization steps in execution order."""
    return list(CUSTOMIZATION_STEPS)


def step_names() -> list[str]:
    """Names of the customization steps in execution order."""
    return [step.name for step in CUSTOMIZATION_STEPS]


__all__ = ["CUSTOMIZATION_STEPS", "default_steps", "step_names"]
