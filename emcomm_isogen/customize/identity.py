"""Identity customization steps.

This module handles:
- Hostname and hosts file
- User account: display-manager autologin and the password hash
- System timezone
- Git identity for new users
"""

from __future__ import annotations

import logging
from pathlib import Path

from emcomm_isogen.customize.files import SKEL_DIR, write_file
from emcomm_isogen.customize.pipeline import BuildContext
from emcomm_isogen.errors import CustomizationWarning
from emcomm_isogen.install.preseed import hash_password

logger = logging.getLogger(__name__)

AUTOLOGIN_CONF = Path("etc") / "lightdm" / "lightdm.conf.d" / "50-autologin.conf"
SHADOW_FILE = Path("etc") / "shadow"

# Template values shipped in the example secrets file
TEMPLATE_FULLNAME = "Your Full Name"
TEMPLATE_EMAIL = "your.email@example.com"


def render_hosts(hostname: str) -> str:
    """Render /etc/hosts for the machine name."""
    return (
        "127.0.0.1       localhost\n"
        f"127.0.1.1       {hostname}\n"
        "\n"
        "::1     ip6-localhost ip6-loopback\n"
        "fe00::0 ip6-localnet\n"
        "ff00::0 ip6-mcastprefix\n"
        "ff02::1 ip6-allnodes\n"
        "ff02::2 ip6-allrouters\n"
    )


def hostname(ctx: BuildContext) -> str:
    """Write /etc/hostname and /etc/hosts."""
    name = ctx.inputs.hostname
    write_file(ctx.rootfs / "etc" / "hostname", f"{name}\n")
    write_file(ctx.rootfs / "etc" / "hosts", render_hosts(name))
    return f"hostname {name}"


def shadow_has_user(shadow_path: Path, username: str) -> bool:
    """Whether a shadow file has an entry for ``username``."""
    if not shadow_path.is_file():
        return False
    prefix = f"{username}:"
    return any(line.startswith(prefix) for line in shadow_path.read_text().splitlines())


def set_shadow_hash(shadow_path: Path, username: str, password_hash: str) -> bool:
    """Replace the password field of one user in a shadow file.

    Returns:
        True if the user was found.
    """
    if not shadow_path.is_file():
        return False

    found = False
    lines = shadow_path.read_text().splitlines(keepends=True)
    for index, line in enumerate(lines):
        fields = line.split(":")
        if len(fields) > 2 and fields[0] == username:
            fields[1] = password_hash
            lines[index] = ":".join(fields)
            found = True
    if found:
        shadow_path.write_text("".join(lines))
    return found


def user_account(ctx: BuildContext) -> str | None:
    """Configure autologin and the user's password hash."""
    inputs = ctx.inputs
    username = inputs.username
    actions: list[str] = []

    autologin = ctx.rootfs / AUTOLOGIN_CONF
    if inputs.enable_autologin:
        write_file(
            autologin,
            "[Seat:*]\n"
            f"autologin-user={username}\n"
            "autologin-user-timeout=0\n"
            "user-session=ubuntu\n",
        )
        actions.append(f"autologin for {username}")
    elif autologin.exists():
        autologin.unlink()
        actions.append("autologin removed")

    shadow = ctx.rootfs / SHADOW_FILE
    if inputs.user_password is None:
        logger.info("No USER_PASSWORD configured; the installer sets the password")
    elif not shadow_has_user(shadow, username):
        # The account is created by the installer from the answer file hash
        logger.info(
            "User %s not in the live system; password left to the preseed", username
        )
    else:
        password_hash = hash_password(
            inputs.user_password.get_secret_value(), runner=ctx.runner
        )
        set_shadow_hash(shadow, username, password_hash)
        actions.append("password set")

    return ", ".join(actions) if actions else None


def timezone(ctx: BuildContext) -> str:
    """Set the system timezone."""
    tz = ctx.inputs.timezone
    zoneinfo = ctx.rootfs / "usr" / "share" / "zoneinfo"
    zone = zoneinfo / tz
    if zoneinfo.is_dir() and not (zone.exists() or zone.is_symlink()):
        raise CustomizationWarning(f"Unknown timezone: {tz}", code="unknown_timezone")

    localtime = ctx.rootfs / "etc" / "localtime"
    if localtime.exists() or localtime.is_symlink():
        localtime.unlink()
    localtime.parent.mkdir(parents=True, exist_ok=True)
    localtime.symlink_to(f"/usr/share/zoneinfo/{tz}")
    write_file(ctx.rootfs / "etc" / "timezone", f"{tz}\n")
    return f"timezone {tz}"


def git_config(ctx: BuildContext) -> str | None:
    """Write the default Git identity for new users."""
    name = ctx.inputs.user_fullname
    email = ctx.inputs.user_email
    if name == TEMPLATE_FULLNAME or email == TEMPLATE_EMAIL:
        logger.warning("Git identity has template values, skipping")
        return None

    write_file(
        ctx.rootfs / SKEL_DIR / ".gitconfig",
        "[user]\n"
        f"    name = {name}\n"
        f"    email = {email}\n"
        "[init]\n"
        "    defaultBranch = main\n"
        "[pull]\n"
        "    rebase = false\n",
    )
    return f"git identity {name} <{email}>"


__all__ = [
    "git_config",
    "hostname",
    "render_hosts",
    "set_shadow_hash",
    "shadow_has_user",
    "timezone",
    "user_account",
]
