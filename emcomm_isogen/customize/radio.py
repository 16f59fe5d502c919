"""Radio and messaging application configuration.

This module handles:
- The vendor's per-user station file (callsign, grid, Winlink password)
- iGate and position-beacon directives in the vendor's direwolf template
- Extra radio definitions
- Pat Winlink alias helper
- VARA license registry files for Wine
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from emcomm_isogen.customize.files import SKEL_DIR, write_file
from emcomm_isogen.customize.pipeline import BuildContext
from emcomm_isogen.errors import CustomizationWarning
from emcomm_isogen.inputs import StationInputs
from emcomm_isogen.templates import patch_template_file

logger = logging.getLogger(__name__)

USER_CONFIG = SKEL_DIR / ".config" / "emcomm-tools" / "user.json"
DIREWOLF_TEMPLATE = (
    Path("opt")
    / "emcomm-tools"
    / "conf"
    / "template.d"
    / "packet"
    / "direwolf.aprs-digipeater.conf"
)
RADIOS_DIR = Path("opt") / "emcomm-tools" / "conf" / "radios.d"
PAT_DIR = SKEL_DIR / ".config" / "pat"
WINE_ADDONS_DIR = SKEL_DIR / "add-ons" / "wine"

# direwolf reads the station callsign from this line; iGate settings follow it
DIREWOLF_ANCHOR = r"^\s*MYCALL\b"

ANYTONE_D578UV = {
    "id": "anytone-d578uv",
    "vendor": "Anytone",
    "model": "D578UV (DigiRig Mobile)",
    "rigctrl": {"id": "301", "baud": "9600", "ptt": "CM108"},
    "notes": [
        "VHF/UHF radio with CAT control",
        "DigiRig Mobile provides USB-to-CAT interface",
        "CM108 PTT via USB audio device",
        "Supports APRS and digital modes",
        "Default baud rate: 9600bps",
    ],
    "fieldNotes": [
        "Connect D578UV to DigiRig Mobile 6-pin connector",
        "DigiRig USB connection to computer",
        "Serial device: /dev/ttyUSB0 (or similar)",
        "Audio device enumerates as CM108-compatible",
        "Use et-mode to select digital mode (APRS, packet, etc.)",
    ],
}

VARA_PRODUCTS = {
    "fm": ("vara-fm-license.reg", "VARA FM"),
    "hf": ("vara-hf-license.reg", "VARA"),
}


def maidenhead_to_latlon(grid: str) -> tuple[float, float]:
    """Center of a Maidenhead locator (2, 4 or 6 characters).

    Args:
        grid: Locator such as 'DN40' or 'DN40ab'.

    Returns:
        Tuple of (latitude, longitude) in decimal degrees.

    Raises:
        ValueError: If the locator is malformed.
    """
    g = grid.strip()
    if len(g) not in (2, 4, 6):
        raise ValueError(f"Invalid grid square: {grid!r}")

    field_lon, field_lat = g[0].upper(), g[1].upper()
    if not ("A" <= field_lon <= "R" and "A" <= field_lat <= "R"):
        raise ValueError(f"Invalid grid square: {grid!r}")
    lon = (ord(field_lon) - ord("A")) * 20.0 - 180.0
    lat = (ord(field_lat) - ord("A")) * 10.0 - 90.0
    lon_size, lat_size = 20.0, 10.0

    if len(g) >= 4:
        if not (g[2].isdigit() and g[3].isdigit()):
            raise ValueError(f"Invalid grid square: {grid!r}")
        lon += int(g[2]) * 2.0
        lat += int(g[3]) * 1.0
        lon_size, lat_size = 2.0, 1.0

    if len(g) == 6:
        sub_lon, sub_lat = g[4].lower(), g[5].lower()
        if not ("a" <= sub_lon <= "x" and "a" <= sub_lat <= "x"):
            raise ValueError(f"Invalid grid square: {grid!r}")
        lon += (ord(sub_lon) - ord("a")) * (5.0 / 60.0)
        lat += (ord(sub_lat) - ord("a")) * (2.5 / 60.0)
        lon_size, lat_size = 5.0 / 60.0, 2.5 / 60.0

    return lat + lat_size / 2, lon + lon_size / 2


def format_aprs_position(lat: float, lon: float) -> tuple[str, str]:
    """Format a position as direwolf degree^minutes values."""

    def _dm(value: float, positive: str, negative: str) -> str:
        hemisphere = positive if value >= 0 else negative
        value = abs(value)
        degrees = int(value)
        minutes = (value - degrees) * 60
        return f"{degrees}^{minutes:05.2f}{hemisphere}"

    return _dm(lat, "N", "S"), _dm(lon, "E", "W")


def direwolf_directives(inputs: StationInputs) -> list[str]:
    """Generated iGate and beacon directives for the station.

    Directives use the literal callsign; the vendor's runtime tokens stay
    on their own lines in the template.
    """
    directives: list[str] = []
    if inputs.enable_aprs_igate:
        directives += [
            f"IGSERVER {inputs.aprs_server}",
            f"IGLOGIN {inputs.callsign.upper()}-{inputs.aprs_ssid} {inputs.aprs_passcode}",
        ]

    if inputs.enable_aprs_beacon:
        if not inputs.grid_square:
            logger.warning("APRS beacon enabled without GRID_SQUARE, beacon skipped")
        else:
            lat, lon = format_aprs_position(*maidenhead_to_latlon(inputs.grid_square))
            minutes, seconds = divmod(inputs.aprs_beacon_interval, 60)
            directives.append(
                f"PBEACON delay=1 every={minutes}:{seconds:02d} "
                f'symbol="{inputs.aprs_symbol}" lat={lat} long={lon} '
                f"power={inputs.aprs_beacon_power} height={inputs.aprs_beacon_height} "
                f"gain={inputs.aprs_beacon_gain} "
                f'comment="{inputs.aprs_comment}" via={inputs.aprs_beacon_via}'
            )
    return directives


def aprs_user_config(ctx: BuildContext) -> str | None:
    """Pre-populate the vendor's per-user station file."""
    inputs = ctx.inputs
    if not inputs.has_callsign:
        logger.warning("Callsign is %s, station config skipped", inputs.callsign)
        return None

    winlink = inputs.winlink_password.get_secret_value() if inputs.winlink_password else ""
    content = {
        "callsign": inputs.callsign.upper(),
        "grid": inputs.grid_square or "",
        "winlinkPasswd": winlink,
    }
    write_file(ctx.rootfs / USER_CONFIG, json.dumps(content, indent=2) + "\n")
    return f"station {content['callsign']}"


def direwolf_template(ctx: BuildContext) -> str | None:
    """Insert iGate and beacon directives into the direwolf template."""
    inputs = ctx.inputs
    if not inputs.has_callsign:
        return None
    if not (inputs.enable_aprs_igate or inputs.enable_aprs_beacon):
        return None

    directives = direwolf_directives(inputs)
    if not directives:
        return None

    changed = patch_template_file(
        ctx.rootfs / DIREWOLF_TEMPLATE, directives, anchor=DIREWOLF_ANCHOR
    )
    state = "patched" if changed else "already up to date"
    return f"{len(directives)} directive(s), {state}"


def radio_configs(ctx: BuildContext) -> str:
    """Add radio definitions to the vendor's radio catalog."""
    path = ctx.rootfs / RADIOS_DIR / f"{ANYTONE_D578UV['id']}.json"
    write_file(path, json.dumps(ANYTONE_D578UV, indent=2) + "\n")
    return f"added {ANYTONE_D578UV['id']}"


def render_pat_alias_script(gateway: str | None) -> str:
    """Helper script adding the emcomm connect alias to Pat's config."""
    header = """#!/bin/bash
# Generated by emcomm-isogen: adds the emcomm alias to Pat's config
PAT_CONFIG="$HOME/.config/pat/config.json"

if [ ! -f "$PAT_CONFIG" ]; then
    echo "Pat config not found. Run Pat first to create initial config."
    exit 1
fi

if grep -q '"emcomm"' "$PAT_CONFIG"; then
    echo "emcomm alias already exists in Pat config."
    exit 0
fi

"""
    if gateway:
        body = f"""if command -v jq > /dev/null; then
    jq '.connect_aliases.emcomm = "{gateway}"' "$PAT_CONFIG" > "$PAT_CONFIG.tmp" && \\
        mv "$PAT_CONFIG.tmp" "$PAT_CONFIG"
    echo "Added emcomm alias -> {gateway}"
else
    echo "jq not found. Install it with: sudo apt install jq"
    exit 1
fi
"""
    else:
        body = """echo "Add an emcomm entry to connect_aliases in $PAT_CONFIG, e.g.:"
echo '  "emcomm": "YOUR-GATEWAY-CALLSIGN"'
"""
    return header + body


PAT_README = """Pat Winlink EmComm Alias
========================

To connect through the emcomm alias, run:
  pat connect emcomm

First-time setup:
1. Run Pat once to create its config: pat configure
2. Run ~/.config/pat/add-emcomm-alias.sh
3. Without a preconfigured gateway, add one under connect_aliases in
   ~/.config/pat/config.json
"""


def pat_aliases(ctx: BuildContext) -> str | None:
    """Install the Pat emcomm alias helper for new users."""
    if not ctx.inputs.pat_emcomm_alias:
        return None
    gateway = ctx.inputs.pat_emcomm_gateway
    pat_dir = ctx.rootfs / PAT_DIR
    write_file(pat_dir / "add-emcomm-alias.sh", render_pat_alias_script(gateway), mode=0o755)
    write_file(pat_dir / "README-emcomm-alias.txt", PAT_README)
    return f"emcomm alias -> {gateway}" if gateway else "emcomm alias helper (no gateway)"


def render_vara_registry(product_key: str, callsign: str, license_key: str) -> str:
    """Wine registry file holding a VARA license."""
    return (
        "REGEDIT4\n"
        "\n"
        f"[HKEY_CURRENT_USER\\Software\\{product_key}]\n"
        f'"Callsign"="{callsign}"\n'
        f'"License"="{license_key}"\n'
    )


def render_vara_import_script(reg_files: list[str]) -> str:
    """Script importing the license files once VARA is installed."""
    imports = "".join(
        f'wine regedit "$SCRIPT_DIR/{name}" && echo "Imported {name}"\n' for name in reg_files
    )
    return f"""#!/bin/bash
# Generated by emcomm-isogen: run after installing VARA to register licenses
set -e

SCRIPT_DIR="$(cd "$(dirname "${{BASH_SOURCE[0]}}")" && pwd)"

if [ ! -d "$HOME/.wine32" ]; then
    echo "Wine prefix ~/.wine32 not found. Install VARA first."
    exit 1
fi

export WINEPREFIX="$HOME/.wine32"
{imports}"""


def vara_licenses(ctx: BuildContext) -> str | None:
    """Write VARA license registry files and their import script."""
    inputs = ctx.inputs
    licenses = {
        "fm": (inputs.vara_fm_callsign, inputs.vara_fm_license_key),
        "hf": (inputs.vara_hf_callsign, inputs.vara_hf_license_key),
    }
    addon_dir = ctx.rootfs / WINE_ADDONS_DIR
    written: list[str] = []
    for product, (callsign, key) in licenses.items():
        if key is None:
            continue
        if not callsign:
            raise CustomizationWarning(
                f"VARA {product.upper()} license configured without a callsign",
                code="vara_callsign_missing",
            )
        filename, registry_key = VARA_PRODUCTS[product]
        write_file(
            addon_dir / filename,
            render_vara_registry(registry_key, callsign, key.get_secret_value()),
        )
        written.append(filename)

    if not written:
        return None
    write_file(
        addon_dir / "99-import-vara-licenses.sh",
        render_vara_import_script(written),
        mode=0o755,
    )
    return ", ".join(written)


__all__ = [
    "aprs_user_config",
    "direwolf_directives",
    "direwolf_template",
    "format_aprs_position",
    "maidenhead_to_latlon",
    "pat_aliases",
    "radio_configs",
    "render_vara_registry",
    "vara_licenses",
]
