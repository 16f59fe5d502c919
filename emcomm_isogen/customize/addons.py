"""Helper tools placed in the new user's home directory.

This module handles:
- The Wikipedia ZIM creator under ``~/add-ons/wikipedia``
- WiFi diagnostic scripts under ``~/add-ons/network``
"""

from __future__ import annotations

import logging
import shlex

from emcomm_isogen.customize.files import SKEL_DIR, write_file
from emcomm_isogen.customize.pipeline import BuildContext

logger = logging.getLogger(__name__)

WIKIPEDIA_ADDON_DIR = SKEL_DIR / "add-ons" / "wikipedia"
NETWORK_ADDON_DIR = SKEL_DIR / "add-ons" / "network"

DEFAULT_ARTICLES = (
    "2-meter_band",
    "70-centimeter_band",
    "General_Mobile_Radio_Service",
    "Family_Radio_Service",
    "Amateur_radio",
    "Amateur_radio_emergency_communications",
    "Automatic_Packet_Reporting_System",
    "Winlink",
    "Digital_mobile_radio",
    "D-STAR",
    "System_Fusion",
    "Shortwave_radio",
    "High_frequency",
    "Very_high_frequency",
    "Ultra_high_frequency",
    "Radio_propagation",
    "Antenna_(radio)",
    "Repeater",
    "Simplex_communication",
    "Duplex_(telecommunications)",
    "Citizens_band_radio",
    "Multi-Use_Radio_Service",
)

ZIM_CREATOR_SCRIPT = """#!/bin/bash
# Build a small offline Wikipedia (.zim) from a list of articles.
#
# Usage: create-ham-wikipedia-zim.sh [--articles "Title_One|Title_Two"]
# Needs curl and zimwriterfs (apt install zim-tools).
set -euo pipefail

ARTICLES="{articles}"
OUTPUT_DIR="${{HOME}}/wikipedia"
WORK_DIR="$(mktemp -d /tmp/ham-wikipedia.XXXXXX)"
trap 'rm -rf "${{WORK_DIR}}"' EXIT

while [ $# -gt 0 ]; do
    case "$1" in
        --articles) ARTICLES="$2"; shift 2 ;;
        -h|--help) sed -n '2,5p' "$0"; exit 0 ;;
        *) echo "Unknown option: $1" >&2; exit 2 ;;
    esac
done

for tool in curl zimwriterfs; do
    if ! command -v "$tool" >/dev/null; then
        echo "Missing $tool" >&2
        exit 1
    fi
done

mkdir -p "${{OUTPUT_DIR}}"
{{
    echo '<!DOCTYPE html><html><head><meta charset="UTF-8">'
    echo '<title>Ham Radio Wikipedia</title></head><body>'
    echo '<h1>Ham Radio Wikipedia</h1><ul>'
}} > "${{WORK_DIR}}/index.html"

count=0
IFS='|' read -r -a titles <<< "${{ARTICLES}}"
for title in "${{titles[@]}}"; do
    page="${{WORK_DIR}}/${{title}}.html"
    echo "Fetching ${{title}}"
    if curl -sfL -o "${{page}}" "https://en.wikipedia.org/api/rest_v1/page/html/${{title}}" \\
            && [ -s "${{page}}" ]; then
        echo "<li><a href=\\"${{title}}.html\\">${{title//_/ }}</a></li>" >> "${{WORK_DIR}}/index.html"
        count=$((count + 1))
    else
        echo "Skipped ${{title}} (not found)" >&2
        rm -f "${{page}}"
    fi
done
echo '</ul><p>Content from Wikipedia, CC BY-SA.</p></body></html>' >> "${{WORK_DIR}}/index.html"

if [ "$count" -eq 0 ]; then
    echo "No articles downloaded" >&2
    exit 1
fi

: > "${{WORK_DIR}}/favicon.png"
output="${{OUTPUT_DIR}}/ham-radio-wikipedia_$(date +%Y-%m).zim"
zimwriterfs --welcome index.html --favicon favicon.png --language eng \\
    --title "Ham Radio Wikipedia" \\
    --description "Offline Wikipedia articles for radio operators" \\
    --creator "EmComm Tools" --publisher "emcomm-isogen" \\
    "${{WORK_DIR}}" "${{output}}"
echo "Wrote ${{output}} (${{count}} articles)"
"""

WIKIPEDIA_README = """# Offline Wikipedia tools

Run `./create-my-wikipedia.sh` to download a set of Wikipedia articles and
package them as a .zim file in `~/wikipedia/`.

Pick your own articles with:

    ./create-ham-wikipedia-zim.sh --articles "Winlink|Repeater|Antenna_(radio)"

Titles are Wikipedia page names with spaces written as underscores.

View the result with Kiwix:

    kiwix-serve --port=8080 ~/wikipedia/ham-radio-wikipedia_*.zim

The installer's Wikipedia download (expert mode) fetches large pre-built
collections; this tool builds small ones from just the pages you list.
"""

WIFI_DIAGNOSTICS_SCRIPT = """#!/bin/bash
# Show WiFi status and common fixes.

echo "== NetworkManager =="
if systemctl is-active --quiet NetworkManager; then
    echo "running"
else
    echo "not running; starting it"
    sudo systemctl start NetworkManager
fi

echo
echo "== Active connections =="
nmcli connection show --active | grep -i wifi || echo "(none)"

echo
echo "== Saved WiFi connections =="
nmcli connection show | grep -i wifi || echo "(none)"

echo
echo "== Networks in range =="
nmcli device wifi list || echo "(scan failed; check the WiFi adapter)"

echo
echo "== Devices =="
nmcli device status | grep -i wifi || echo "(no WiFi device)"

echo
echo "== Internet =="
if ping -c 1 -W 3 8.8.8.8 >/dev/null 2>&1; then
    echo "reachable"
else
    echo "unreachable"
fi

echo
echo "== Recent NetworkManager log =="
journalctl -u NetworkManager -n 10 --no-pager 2>/dev/null || echo "(log not readable)"

echo
echo "Fixes to try:"
echo "  sudo systemctl restart NetworkManager"
echo "  nmcli device wifi connect <SSID> --ask"
echo "  nmcli connection edit <name>"
"""

VALIDATE_WIFI_SCRIPT = """#!/bin/bash
# List the WiFi profiles baked into this system.

CONN_DIR=/etc/NetworkManager/system-connections

if [ ! -d "$CONN_DIR" ]; then
    echo "Missing $CONN_DIR"
    exit 1
fi

count=$(sudo find "$CONN_DIR" -name '*.nmconnection' -type f | wc -l)
if [ "$count" -eq 0 ]; then
    echo "No WiFi profiles configured"
    exit 1
fi

echo "$count profile(s):"
for file in $(sudo find "$CONN_DIR" -name '*.nmconnection' -type f); do
    echo "  $(basename "$file"): $(sudo grep -E '^(ssid|autoconnect)=' "$file" | tr '\\n' ' ')"
done

echo
echo "Bring one up with: nmcli connection up <name>"
"""

WIFI_README = """# WiFi tools

- `wifi-diagnostics.sh` shows NetworkManager state, saved and visible
  networks, connectivity and recent log lines.
- `validate-wifi-config.sh` lists the WiFi profiles that were configured
  when the image was built.

Profiles live in `/etc/NetworkManager/system-connections/`. Add a network by
hand with `nmcli device wifi connect <SSID> --ask`.
"""


def render_zim_creator() -> str:
    """ZIM creator script with the default article list."""
    return ZIM_CREATOR_SCRIPT.format(articles="|".join(DEFAULT_ARTICLES))


def render_wikipedia_wrapper(articles: list[str]) -> str:
    """Wrapper that runs the ZIM creator with the configured articles."""
    call = '"$(dirname "$(readlink -f "$0")")/create-ham-wikipedia-zim.sh"'
    if articles:
        call += " --articles " + shlex.quote("|".join(articles))
    return f"#!/bin/bash\n# Generated by emcomm-isogen\nexec {call}\n"


def wikipedia_tools(ctx: BuildContext) -> str:
    """Install the offline Wikipedia ZIM creator."""
    addon_dir = ctx.rootfs / WIKIPEDIA_ADDON_DIR
    articles = ctx.inputs.article_list

    write_file(addon_dir / "create-ham-wikipedia-zim.sh", render_zim_creator(), mode=0o755)
    write_file(
        addon_dir / "create-my-wikipedia.sh",
        render_wikipedia_wrapper(articles),
        mode=0o755,
    )
    write_file(addon_dir / "README.md", WIKIPEDIA_README)

    if articles:
        logger.info("Wikipedia creator configured with %d article(s)", len(articles))
        return f"{len(articles)} custom article(s)"
    return "default article list"


def wifi_diagnostics(ctx: BuildContext) -> str:
    """Install the WiFi diagnostic scripts."""
    addon_dir = ctx.rootfs / NETWORK_ADDON_DIR
    write_file(addon_dir / "wifi-diagnostics.sh", WIFI_DIAGNOSTICS_SCRIPT, mode=0o755)
    write_file(addon_dir / "validate-wifi-config.sh", VALIDATE_WIFI_SCRIPT, mode=0o755)
    write_file(addon_dir / "README-WIFI.md", WIFI_README)
    return "installed"


__all__ = [
    "DEFAULT_ARTICLES",
    "NETWORK_ADDON_DIR",
    "WIKIPEDIA_ADDON_DIR",
    "render_wikipedia_wrapper",
    "render_zim_creator",
    "wifi_diagnostics",
    "wikipedia_tools",
]
