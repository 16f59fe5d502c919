"""Backups, embedded cache and build manifest.

This module handles:
- Restoring the newest cached user and Wine backups into /etc/skel
- Embedding downloaded artifacts and build logs for offline rebuilds
- The customization manifest written into the image
"""

from __future__ import annotations

import logging
import shutil
from datetime import datetime
from pathlib import Path

from emcomm_isogen import __version__
from emcomm_isogen.customize.files import SKEL_DIR, extract_tarball, write_file
from emcomm_isogen.customize.pipeline import BuildContext

logger = logging.getLogger(__name__)

USER_BACKUP_GLOB = "etc-user-backup-*.tar.gz"
WINE_BACKUP_GLOB = "etc-wine-backup-*.tar.gz"
EMBEDDED_CACHE_DIR = Path("opt") / "emcomm-customizer-cache"
MANIFEST_PATH = Path("etc") / "emcomm-customizations-manifest.txt"
BUILD_MANIFEST_NAME = "BUILD_MANIFEST.txt"


def newest_backup(cache_dir: Path, pattern: str) -> Path | None:
    """Most recently modified file in cache_dir matching pattern."""
    if not cache_dir.is_dir():
        return None
    candidates = [p for p in cache_dir.glob(pattern) if p.is_file()]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def user_backup(ctx: BuildContext) -> str | None:
    """Restore the newest cached user and Wine backups into /etc/skel."""
    cache_dir = ctx.config.cache_dir
    backups = [
        b
        for b in (
            newest_backup(cache_dir, USER_BACKUP_GLOB),
            newest_backup(cache_dir, WINE_BACKUP_GLOB),
        )
        if b is not None
    ]
    if not backups:
        logger.debug("No backups in %s (expected %s)", cache_dir, USER_BACKUP_GLOB)
        return None

    skel = ctx.rootfs / SKEL_DIR
    restored = []
    for backup in backups:
        count = extract_tarball(backup, skel)
        logger.info("Restored %s (%d entries)", backup.name, count)
        restored.append(backup.name)
    return "restored " + ", ".join(restored)


def _timestamp() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def _copy_into(source: Path | None, target_dir: Path) -> str | None:
    if source is None or not source.is_file():
        return None
    target = target_dir / source.name
    if target.is_file() and target.stat().st_size == source.stat().st_size:
        logger.debug("%s already embedded", source.name)
    else:
        shutil.copy2(source, target)
        logger.info("Embedded %s", source.name)
    return source.name


def render_build_manifest(ctx: BuildContext) -> str:
    """Build summary placed next to the embedded logs."""
    inputs = ctx.inputs
    release = ctx.release
    lines = [
        "EmComm Tools Customizer - Build Manifest",
        "=========================================",
        "",
        f"Build Date: {_timestamp()}",
        f"Build Mode: {ctx.config.release_mode.value}",
        f"ETC Version: {release.tag if release else 'unknown'}",
        f"Ubuntu ISO: {ctx.config.base_image_filename}",
        f"Builder Version: {__version__}",
        "",
        "Configuration Summary:",
        f"- Callsign: {inputs.callsign}",
        f"- Hostname: {inputs.hostname}",
        f"- Username: {inputs.username}",
        f"- Timezone: {inputs.timezone}",
        f"- WiFi Networks: {len(inputs.wifi_networks)}",
        f"- APRS iGate: {'yes' if inputs.enable_aprs_igate else 'no'}",
        f"- Autologin: {'yes' if inputs.enable_autologin else 'no'}",
        f"- Additional Packages: {inputs.additional_packages or 'none'}",
        "",
        "On the installed system:",
        f"  less /{EMBEDDED_CACHE_DIR}/logs/{BUILD_MANIFEST_NAME}",
        "",
        "Build Steps Completed:",
    ]
    lines += [f"  - {o.name}: {o.message}" for o in ctx.customizations.applied]
    return "\n".join(lines) + "\n"


def render_cache_readme(files: list[str]) -> str:
    """README for the embedded cache directory."""
    listing = "".join(f"  {name}\n" for name in sorted(files)) or "  (none)\n"
    return (
        "EmComm Tools Customizer - Embedded Cache\n"
        "=========================================\n"
        "\n"
        "These files were embedded during the image build so you can rebuild\n"
        "without re-downloading large files, and for diagnosing build issues.\n"
        "\n"
        "To use this cache for your next build:\n"
        f"  cp -r /{EMBEDDED_CACHE_DIR}/* ~/emcomm-isogen/cache/\n"
        "\n"
        "Secrets are never embedded; copy your secrets.env separately.\n"
        "\n"
        "Files:\n"
        f"{listing}"
        "\n"
        f"Build date: {_timestamp()}\n"
    )


def embed_cache(ctx: BuildContext) -> str | None:
    """Copy cached artifacts and build logs into the image.

    Skipped for minimal builds. The secrets file is never copied.
    """
    if ctx.config.minimal:
        logger.info("Minimal build, cache not embedded")
        return None

    target = ctx.rootfs / EMBEDDED_CACHE_DIR
    target.mkdir(parents=True, exist_ok=True)

    cache_dir = ctx.config.cache_dir
    sources = [
        ctx.base_image,
        ctx.payload,
        newest_backup(cache_dir, WINE_BACKUP_GLOB),
    ]
    embedded = [name for name in (_copy_into(s, target) for s in sources) if name]

    logs_target = target / "logs"
    logs_target.mkdir(exist_ok=True)
    log_count = 0
    if ctx.config.logs_dir.is_dir():
        for log_file in sorted(ctx.config.logs_dir.glob("*.log")):
            shutil.copy2(log_file, logs_target / log_file.name)
            log_count += 1
    write_file(logs_target / BUILD_MANIFEST_NAME, render_build_manifest(ctx))
    write_file(target / "README.txt", render_cache_readme(embedded))

    return f"{len(embedded)} artifact(s), {log_count} log(s)"


def render_manifest(ctx: BuildContext) -> str:
    """Customization manifest stored at /etc in the image."""
    inputs = ctx.inputs
    release = ctx.release
    result = ctx.customizations
    lines = [
        "EmComm Tools Community - Customizations",
        f"Build Date: {_timestamp()}",
        f"Release: {release.tag if release else 'unknown'}",
        f"Version: {release.version if release else 'unknown'}",
        "",
        "=== CUSTOMIZATIONS APPLIED ===",
        "",
        "Station Configuration:",
        f"- Callsign: {inputs.callsign}",
        f"- Hostname: {inputs.hostname}",
        "",
        "Steps:",
    ]
    lines += [f"- {o.name}: {o.message}" for o in result.applied]
    if result.warnings:
        lines += ["", "Warnings:"]
        lines += [f"- {o.name}: {o.message}" for o in result.warnings]
    lines += [
        "",
        "Build Information:",
        f"- Built with: emcomm-isogen {__version__}",
    ]
    return "\n".join(lines) + "\n"


def manifest(ctx: BuildContext) -> str:
    """Write the customization manifest."""
    path = write_file(ctx.rootfs / MANIFEST_PATH, render_manifest(ctx))
    return f"manifest /{path.relative_to(ctx.rootfs)}"


__all__ = [
    "embed_cache",
    "manifest",
    "newest_backup",
    "render_build_manifest",
    "render_manifest",
    "user_backup",
]
