"""Vendor installer and package steps.

This module handles:
- Running the vendor installer inside the chroot (unattended or attended)
- Pre-answering the installer's map and Wikipedia download dialogs
- Merging the optional add-ons overlay
- Installing additional packages requested by the operator
- Installing the CHIRP radio programmer with pipx
"""

from __future__ import annotations

import logging
import shlex
import shutil
from pathlib import Path

from emcomm_isogen.customize.files import extract_tarball, write_file
from emcomm_isogen.customize.pipeline import BuildContext
from emcomm_isogen.errors import ChrootInstallError, CommandError, CustomizationWarning
from emcomm_isogen.inputs import StationInputs

logger = logging.getLogger(__name__)

INSTALLER_DIR = Path("tmp") / "etc-installer"
INSTALL_SCRIPT = Path("scripts") / "install.sh"

BUILD_PREREQUISITES = ("curl", "git", "build-essential", "make")

# Files and commands the vendor installer is expected to produce
EXPECTED_PATHS = (Path("opt") / "emcomm-tools", Path("usr") / "local" / "bin" / "et-user")
EXPECTED_TOOLS = ("direwolf", "pat")

# Third-party apt sources shipped in the image whose keys no longer validate
STALE_APT_SOURCES = (
    "brave-browser-release.sources",
    "brave-browser-release.list",
    "microsoft-edge-release.sources",
    "microsoft-edge-dev.list",
)

ET_MAP_FILES = {
    "us": "osm-us-zoom0to11-20251120.mbtiles",
    "ca": "osm-ca-zoom0to10-20251120.mbtiles",
    "world": "osm-world-zoom0to7-20251121.mbtiles",
}
ET_MAP_BASE_URL = (
    "https://github.com/thetechprepper/emcomm-tools-os-community/releases/download"
)
ET_MAP_RELEASE = "emcomm-tools-os-community-20251128-r5-final-5.0.0"

# System-wide pipx location so every user gets the CHIRP launcher
PIPX_ENV = {"PIPX_HOME": "/opt/pipx", "PIPX_BIN_DIR": "/usr/local/bin"}

_FIX_APT_SOURCES = (
    "sed -i -e 's/archive.ubuntu.com/old-releases.ubuntu.com/g' "
    "-e 's/security.ubuntu.com/old-releases.ubuntu.com/g' /etc/apt/sources.list"
)


def needs_interactive(inputs: StationInputs) -> bool:
    """Whether the vendor installer will show dialogs nobody pre-answered.

    The map dialogs always run; the Wikipedia dialog runs only in expert mode.
    """
    if not inputs.osm_map_state or not inputs.et_map_region:
        return True
    return bool(inputs.et_expert) and not inputs.wikipedia_sections


def osm_maps_script(state: str) -> str:
    """Replacement for the state map download dialog."""
    return f"""#!/bin/bash
# Generated by emcomm-isogen from OSM_MAP_STATE
set -e

PBF_MAP_DIR=/etc/skel/my-maps
[ ! -e "${{PBF_MAP_DIR}}" ] && mkdir -v "${{PBF_MAP_DIR}}"

STATE_NAME={shlex.quote(state)}
download_file="${{STATE_NAME}}-latest.osm.pbf"
download_url="http://download.geofabrik.de/north-america/us/${{download_file}}"

if [ -e "${{PBF_MAP_DIR}}/${{download_file}}" ]; then
    et-log "${{download_file}} already exists. Skipping download."
else
    et-log "Downloading ${{download_url}}..."
    curl -L -f -O "${{download_url}}"

    if [ -e "${{download_file}}" ]; then
        navit_bin="/etc/skel/.navit/maps/${{STATE_NAME}}-latest.osm.bin"
        et-log "Generating OSM map for Navit: ${{navit_bin}}"
        maptool --protobuf -i "${{download_file}}" "${{navit_bin}}"
        mv -v "${{download_file}}" "${{PBF_MAP_DIR}}"
    fi
fi
"""


def et_maps_script(region: str) -> str:
    """Replacement for the pre-rendered tile download dialog.

    Raises:
        CustomizationWarning: If the region has no tile set.
    """
    try:
        map_file = ET_MAP_FILES[region]
    except KeyError:
        raise CustomizationWarning(
            f"Invalid ET_MAP_REGION '{region}' (expected one of "
            f"{', '.join(ET_MAP_FILES)})",
            code="invalid_map_region",
        ) from None

    return f"""#!/bin/bash
# Generated by emcomm-isogen from ET_MAP_REGION
set -e

BASE_URL="{ET_MAP_BASE_URL}"
RELEASE="{ET_MAP_RELEASE}"
TILESET_DIR="/etc/skel/.local/share/emcomm-tools/mbtileserver/tilesets"

[ ! -e "${{TILESET_DIR}}" ] && mkdir -vp "${{TILESET_DIR}}"

DOWNLOAD_FILE="{map_file}"
DOWNLOAD_URL="${{BASE_URL}}/${{RELEASE}}/${{DOWNLOAD_FILE}}"

if [[ -e "${{TILESET_DIR}}/${{DOWNLOAD_FILE}}" ]]; then
    et-log "${{DOWNLOAD_FILE}} already exists. Skipping download."
else
    et-log "Downloading ${{DOWNLOAD_URL}}..."
    curl -L -f -o "${{DOWNLOAD_FILE}}" "${{DOWNLOAD_URL}}"
    mv -v "${{DOWNLOAD_FILE}}" "${{TILESET_DIR}}"
fi
"""


def wikipedia_script(sections: str) -> str:
    """Replacement for the Wikipedia section download dialog."""
    names = " ".join(shlex.quote(s) for s in sections.replace(",", " ").split())
    return f"""#!/bin/bash
# Generated by emcomm-isogen from WIKIPEDIA_SECTIONS
set -e

URL="http://download.kiwix.org/zim/wikipedia"
ZIM_DIR="/etc/skel/wikipedia"
HTML="/tmp/kiwix.html"

[ ! -e "${{ZIM_DIR}}" ] && mkdir -v "${{ZIM_DIR}}"

et-log "Downloading Wikipedia file index..."
curl -s -L -f -o "${{HTML}}" "${{URL}}"

for section in {names}; do
    zim_file=$(grep -o 'href="wikipedia_en_[^"]*'"${{section}}"'[^"]*_nopic[^"]*\\.zim"' "${{HTML}}" \\
               | sed 's/href="//; s/"$//' | sort -V | tail -1)
    if [[ -z "$zim_file" ]]; then
        et-log "Warning: Could not find Wikipedia section '${{section}}'"
    elif [[ -e "${{ZIM_DIR}}/${{zim_file}}" ]]; then
        et-log "${{zim_file}} already exists. Skipping."
    else
        et-log "Downloading ${{URL}}/${{zim_file}}..."
        curl -L -f -O "${{URL}}/${{zim_file}}" && mv "${{zim_file}}" "${{ZIM_DIR}}"
    fi
done

rm -f "${{HTML}}"
"""


def patch_download_scripts(scripts_dir: Path, inputs: StationInputs) -> list[str]:
    """Replace the installer's download dialogs that have pre-set answers.

    Scripts whose inputs are unset are left alone so their dialogs still
    reach the operator.

    Returns:
        Names of the replaced scripts.
    """
    replacements: dict[str, str] = {}
    if inputs.osm_map_state:
        replacements["download-osm-maps.sh"] = osm_maps_script(inputs.osm_map_state)
    if inputs.et_map_region:
        try:
            replacements["download-et-maps.sh"] = et_maps_script(inputs.et_map_region)
        except CustomizationWarning as e:
            logger.warning("%s; the dialog will be shown", e.message)
    if inputs.wikipedia_sections:
        replacements["download-wikipedia.sh"] = wikipedia_script(inputs.wikipedia_sections)

    for name, content in replacements.items():
        write_file(scripts_dir / name, content, mode=0o755)
        logger.info("Pre-answered installer dialog: %s", name)
    return sorted(replacements)


def _installer_command(inputs: StationInputs) -> list[str]:
    script = "; ".join(
        [
            "export DEBIAN_FRONTEND=noninteractive",
            "export NEEDRESTART_MODE=a",
            f"export ET_EXPERT={shlex.quote(inputs.et_expert or '')}",
            f"cd /{INSTALLER_DIR / INSTALL_SCRIPT.parent}",
            f"./{INSTALL_SCRIPT.name}",
        ]
    )
    return ["/bin/bash", "-c", script]


def fix_apt_sources(ctx: BuildContext) -> None:
    """Point the end-of-life release at old-releases (best-effort)."""
    result = ctx.require_chroot().run(
        ["/bin/bash", "-c", _FIX_APT_SOURCES], check=False, log_path=ctx.log_path
    )
    if not result.ok:
        logger.warning("Could not rewrite apt sources (exit code %d)", result.returncode)


def check_vendor_install(ctx: BuildContext) -> list[str]:
    """Report components the vendor installer should have produced.

    Returns:
        Missing paths and tools (empty when everything is present).
    """
    missing = [f"/{p}" for p in EXPECTED_PATHS if not (ctx.rootfs / p).exists()]
    chroot = ctx.require_chroot()
    for tool in EXPECTED_TOOLS:
        result = chroot.run(["/bin/bash", "-c", f"command -v {tool}"], check=False)
        if not result.ok:
            missing.append(tool)
    for item in missing:
        logger.warning("Expected vendor component not found: %s", item)
    return missing


def vendor_install(ctx: BuildContext) -> str:
    """Run the vendor installer inside the chroot.

    Raises:
        ChrootInstallError: If the payload is unusable or the installer fails.
    """
    if ctx.payload is None:
        raise ChrootInstallError("No vendor payload available", code="payload_missing")

    install_dir = ctx.rootfs / INSTALLER_DIR
    if install_dir.exists():
        shutil.rmtree(install_dir)
    extract_tarball(ctx.payload, install_dir, strip_components=1)

    if not (install_dir / INSTALL_SCRIPT).is_file():
        raise ChrootInstallError(
            f"{INSTALL_SCRIPT} not found in {ctx.payload.name}",
            code="installer_missing",
        )

    chroot = ctx.require_chroot()
    interactive = needs_interactive(ctx.inputs)
    try:
        fix_apt_sources(ctx)
        prereqs = chroot.run(
            [
                "/bin/bash",
                "-c",
                "apt-get update && apt-get install -y " + " ".join(BUILD_PREREQUISITES),
            ],
            check=False,
            log_path=ctx.log_path,
        )
        if not prereqs.ok:
            logger.warning("Failed to install some build prerequisites, continuing")

        patch_download_scripts(install_dir / INSTALL_SCRIPT.parent, ctx.inputs)

        if interactive:
            logger.warning(
                "Installer dialogs without pre-set answers will be shown; "
                "set OSM_MAP_STATE and ET_MAP_REGION for unattended builds"
            )
        else:
            logger.info("All installer dialogs pre-answered, running unattended")

        logger.info("Running vendor installer (this takes 30-60 minutes)")
        try:
            if interactive:
                chroot.run(_installer_command(ctx.inputs), interactive=True)
            else:
                chroot.run(
                    _installer_command(ctx.inputs),
                    log_path=ctx.log_path,
                    stdin_devnull=True,
                )
        except CommandError as e:
            raise ChrootInstallError(
                f"Vendor installer failed with exit code {e.exit_code}",
                code="installer_failed",
            ) from e
    finally:
        shutil.rmtree(install_dir, ignore_errors=True)

    missing = check_vendor_install(ctx)
    mode = "interactive" if interactive else "unattended"
    if missing:
        return f"installed ({mode}), missing: {', '.join(missing)}"
    return f"installed ({mode})"


def addons_overlay(ctx: BuildContext) -> str | None:
    """Merge the add-ons overlay into the root filesystem."""
    if not ctx.config.with_addons:
        return None
    if ctx.addons_archive is None:
        raise CustomizationWarning("Add-ons archive not available", code="addons_missing")

    staging = ctx.config.work_dir / "addons"
    if staging.exists():
        shutil.rmtree(staging)
    extract_tarball(ctx.addons_archive, staging, strip_components=1)

    overlay = staging / "overlay"
    if not overlay.is_dir():
        raise CustomizationWarning(
            f"No overlay directory in {ctx.addons_archive.name}", code="overlay_missing"
        )

    shutil.copytree(overlay, ctx.rootfs, symlinks=True, dirs_exist_ok=True)
    shutil.rmtree(staging, ignore_errors=True)

    addons_dir = ctx.rootfs / "opt" / "emcomm-tools" / "addons"
    names = sorted(p.name for p in addons_dir.iterdir() if p.is_dir()) if addons_dir.is_dir() else []
    for name in names:
        logger.info("Add-on merged: %s", name)
    return f"merged {len(names)} add-on(s)" if names else "overlay merged"


def additional_packages(ctx: BuildContext) -> str | None:
    """Install the operator's additional packages with apt."""
    packages = ctx.inputs.package_list
    if not packages:
        return None

    for name in STALE_APT_SOURCES:
        source = ctx.rootfs / "etc" / "apt" / "sources.list.d" / name
        if source.exists() or source.is_symlink():
            source.unlink()
            logger.debug("Removed apt source %s", name)

    fix_apt_sources(ctx)
    chroot = ctx.require_chroot()
    try:
        chroot.run(["apt-get", "update"], log_path=ctx.log_path)
        chroot.run(
            ["apt-get", "install", "-y", "-qq", *packages],
            log_path=ctx.log_path,
            env_override={"DEBIAN_FRONTEND": "noninteractive"},
        )
    except CommandError as e:
        raise CustomizationWarning(
            f"Failed to install additional packages: {e}", code="apt_failed"
        ) from e
    return f"installed {', '.join(packages)}"


def chirp(ctx: BuildContext) -> str | None:
    """Install the CHIRP radio programmer with pipx.

    Runs when INSTALL_CHIRP is set, or by default when additional
    packages were requested.
    """
    if not ctx.inputs.wants_chirp:
        return None

    chroot = ctx.require_chroot()
    apt_env = {"DEBIAN_FRONTEND": "noninteractive"}
    try:
        if not chroot.run(["/bin/bash", "-c", "command -v pipx"], check=False).ok:
            logger.info("Installing pipx")
            chroot.run(
                ["apt-get", "install", "-y", "-qq", "pipx"],
                log_path=ctx.log_path,
                env_override=apt_env,
            )
        chroot.run(
            ["pipx", "install", "--force", "chirp"],
            log_path=ctx.log_path,
            env_override=PIPX_ENV,
        )
    except CommandError as e:
        raise CustomizationWarning(
            f"Failed to install CHIRP: {e}", code="chirp_failed"
        ) from e
    logger.info("CHIRP installed to %s", PIPX_ENV["PIPX_BIN_DIR"])
    return "installed"


__all__ = [
    "additional_packages",
    "addons_overlay",
    "check_vendor_install",
    "chirp",
    "et_maps_script",
    "needs_interactive",
    "osm_maps_script",
    "patch_download_scripts",
    "vendor_install",
    "wikipedia_script",
]
