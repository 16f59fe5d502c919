"""Post-build verification.

This module handles:
- A fixed checklist run against the work trees and the output image
- Critical and warning severities with pass/warn/fail counts
- A JSON-serializable report for the CLI and the build record

Verification is informational: the output image is kept whatever the
result. The build treats critical failures as an error only when strict
verification is enabled.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from emcomm_isogen.customize.backups import MANIFEST_PATH
from emcomm_isogen.customize.desktop import DESKTOP_KEYFILE
from emcomm_isogen.customize.identity import AUTOLOGIN_CONF
from emcomm_isogen.customize.network import CONNECTIONS_DIR
from emcomm_isogen.customize.pipeline import BuildContext
from emcomm_isogen.customize.radio import DIREWOLF_TEMPLATE, USER_CONFIG
from emcomm_isogen.customize.vendor import EXPECTED_PATHS
from emcomm_isogen.errors import CommandError
from emcomm_isogen.install.bootmenu import BOOT_MENU_PATHS, PRESEED_ARGS
from emcomm_isogen.install.preseed import PRESEED_RELATIVE_PATH
from emcomm_isogen.iso.rebuild import read_volume_label
from emcomm_isogen.templates import Template, TemplatePatchError, strip_generated
from emcomm_isogen.types import Severity

logger = logging.getLogger(__name__)


@dataclass
class VerificationCheck:
    """Result of one checklist item."""

    name: str
    severity: Severity
    passed: bool
    detail: str = ""

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-serializable dict."""
        return {
            "name": self.name,
            "severity": self.severity.value,
            "passed": self.passed,
            "detail": self.detail,
        }


@dataclass
class VerificationReport:
    """Ordered checklist results."""

    checks: list[VerificationCheck] = field(default_factory=list)

    @property
    def passed(self) -> int:
        """Number of checks that passed."""
        return sum(1 for c in self.checks if c.passed)

    @property
    def warnings(self) -> int:
        """Number of failed warning-level checks."""
        return sum(1 for c in self.checks if not c.passed and c.severity == Severity.WARNING)

    @property
    def failures(self) -> int:
        """Number of failed critical checks."""
        return sum(1 for c in self.checks if not c.passed and c.severity == Severity.CRITICAL)

    @property
    def ok(self) -> bool:
        """True when no critical check failed."""
        return self.failures == 0

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-serializable dict."""
        return {
            "passed": self.passed,
            "warnings": self.warnings,
            "failures": self.failures,
            "checks": [c.to_dict() for c in self.checks],
        }


CheckFunc = Callable[[BuildContext], tuple[bool, str]]


def check_image(ctx: BuildContext) -> tuple[bool, str]:
    path = ctx.output_path
    if path is None or not path.is_file():
        return False, "output image missing"
    size = path.stat().st_size
    return size > 0, f"{path.name} ({size} bytes)"


def check_image_label(ctx: BuildContext) -> tuple[bool, str]:
    if ctx.release is None:
        return True, "no release recorded"
    expected = ctx.release.volume_label
    if ctx.output_path is None or not ctx.output_path.is_file():
        return False, "output image missing"
    try:
        label = read_volume_label(ctx.output_path, runner=ctx.runner)
    except CommandError as e:
        return False, f"could not read volume label: {e}"
    return label == expected, f"expected {expected}, found {label}"


def check_hostname(ctx: BuildContext) -> tuple[bool, str]:
    path = ctx.rootfs / "etc" / "hostname"
    if not path.is_file():
        return False, "/etc/hostname missing"
    actual = path.read_text().strip()
    expected = ctx.inputs.hostname
    return actual == expected, f"expected {expected}, found {actual}"


def check_vendor_tree(ctx: BuildContext) -> tuple[bool, str]:
    missing = [f"/{p}" for p in EXPECTED_PATHS if not (ctx.rootfs / p).exists()]
    if missing:
        return False, "missing " + ", ".join(missing)
    return True, "vendor files present"


def check_preseed(ctx: BuildContext) -> tuple[bool, str]:
    path = ctx.iso_dir / PRESEED_RELATIVE_PATH
    if not path.is_file():
        return False, f"/{PRESEED_RELATIVE_PATH} missing"
    text = path.read_text()
    plan = ctx.partition_plan
    if plan is not None and f"# Partition strategy: {plan.strategy.value}" not in text:
        return False, f"strategy {plan.strategy.value} not found in answer file"
    return True, f"/{PRESEED_RELATIVE_PATH}"


def check_boot_menus(ctx: BuildContext) -> tuple[bool, str]:
    args = " ".join(PRESEED_ARGS)
    problems = []
    for relative in BOOT_MENU_PATHS:
        path = ctx.iso_dir / relative
        if not path.is_file():
            problems.append(f"/{relative} missing")
        elif args not in path.read_text():
            problems.append(f"/{relative} lacks preseed arguments")
    if problems:
        return False, "; ".join(problems)
    return True, f"{len(BOOT_MENU_PATHS)} menu(s) use the preseed"


def check_manifest(ctx: BuildContext) -> tuple[bool, str]:
    path = ctx.rootfs / MANIFEST_PATH
    if not path.is_file():
        return False, f"/{MANIFEST_PATH} missing"
    if ctx.release is not None and f"Release: {ctx.release.tag}" not in path.read_text():
        return False, f"manifest does not name release {ctx.release.tag}"
    return True, f"/{MANIFEST_PATH}"


def check_user_config(ctx: BuildContext) -> tuple[bool, str]:
    if not ctx.inputs.has_callsign:
        return True, "no callsign configured"
    path = ctx.rootfs / USER_CONFIG
    if not path.is_file():
        return False, f"/{USER_CONFIG} missing"
    try:
        callsign = json.loads(path.read_text()).get("callsign")
    except (ValueError, AttributeError):
        return False, f"/{USER_CONFIG} is not a JSON object"
    expected = ctx.inputs.callsign.upper()
    return callsign == expected, f"expected {expected}, found {callsign}"


def check_wifi(ctx: BuildContext) -> tuple[bool, str]:
    expected = len(ctx.inputs.wifi_networks)
    directory = ctx.rootfs / CONNECTIONS_DIR
    found = len(list(directory.glob("*.nmconnection"))) if directory.is_dir() else 0
    return found >= expected, f"{found} profile(s), {expected} configured"


def check_direwolf_placeholders(ctx: BuildContext) -> tuple[bool, str]:
    path = ctx.rootfs / DIREWOLF_TEMPLATE
    if not path.is_file():
        return False, f"/{DIREWOLF_TEMPLATE} missing"
    template = Template.parse(path.read_text())
    try:
        strip_generated(template.lines)
    except TemplatePatchError as e:
        return False, e.message
    names = sorted(set(template.placeholders()))
    if not names:
        return False, "no runtime placeholders left"
    return True, "placeholders: " + ", ".join(names)


def check_desktop(ctx: BuildContext) -> tuple[bool, str]:
    path = ctx.rootfs / DESKTOP_KEYFILE
    return path.is_file(), f"/{DESKTOP_KEYFILE}"


def check_autologin(ctx: BuildContext) -> tuple[bool, str]:
    path = ctx.rootfs / AUTOLOGIN_CONF
    enabled = ctx.inputs.enable_autologin
    if enabled != path.is_file():
        state = "present" if path.is_file() else "missing"
        return False, f"autologin {'enabled' if enabled else 'disabled'} but config {state}"
    return True, "enabled" if enabled else "disabled"


CHECKLIST: tuple[tuple[str, Severity, CheckFunc], ...] = (
    ("image-present", Severity.CRITICAL, check_image),
    ("image-label", Severity.CRITICAL, check_image_label),
    ("hostname", Severity.CRITICAL, check_hostname),
    ("vendor-tree", Severity.CRITICAL, check_vendor_tree),
    ("preseed", Severity.CRITICAL, check_preseed),
    ("boot-menus", Severity.CRITICAL, check_boot_menus),
    ("manifest", Severity.CRITICAL, check_manifest),
    ("user-config", Severity.WARNING, check_user_config),
    ("wifi", Severity.WARNING, check_wifi),
    ("direwolf-placeholders", Severity.WARNING, check_direwolf_placeholders),
    ("desktop-defaults", Severity.WARNING, check_desktop),
    ("autologin", Severity.WARNING, check_autologin),
)


def run_verification(ctx: BuildContext) -> VerificationReport:
    """Run the verification checklist.

    Args:
        ctx: Build context after the image has been rebuilt.

    Returns:
        VerificationReport in checklist order.
    """
    report = VerificationReport()
    for name, severity, func in CHECKLIST:
        try:
            passed, detail = func(ctx)
        except OSError as e:
            passed, detail = False, str(e)
        report.checks.append(VerificationCheck(name, severity, passed, detail))
        if not passed:
            log = logger.error if severity == Severity.CRITICAL else logger.warning
            log("Verification %s failed: %s", name, detail)

    logger.info(
        "Verification: %d passed, %d warning(s), %d failure(s)",
        report.passed,
        report.warnings,
        report.failures,
    )
    return report


__all__ = [
    "CHECKLIST",
    "VerificationCheck",
    "VerificationReport",
    "run_verification",
]
