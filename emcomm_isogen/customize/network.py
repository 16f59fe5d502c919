"""NetworkManager WiFi profiles."""

from __future__ import annotations

import logging
import re
import uuid
from pathlib import Path

from emcomm_isogen.customize.files import write_file
from emcomm_isogen.customize.pipeline import BuildContext
from emcomm_isogen.inputs import WifiNetwork

logger = logging.getLogger(__name__)

CONNECTIONS_DIR = Path("etc") / "NetworkManager" / "system-connections"

# Profile UUIDs are derived from the SSID so rebuilds produce identical files
_UUID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "emcomm-isogen:wifi")

_UNSAFE_FILENAME = re.compile(r"[/\x00]")


def connection_uuid(ssid: str) -> str:
    """Deterministic connection UUID for an SSID."""
    return str(uuid.uuid5(_UUID_NAMESPACE, ssid))


def connection_filename(ssid: str) -> str:
    """Profile file name for an SSID."""
    return _UNSAFE_FILENAME.sub("_", ssid) + ".nmconnection"


def render_connection(network: WifiNetwork) -> str:
    """Render a NetworkManager keyfile for a WPA-PSK network."""
    autoconnect = "true" if network.autoconnect else "false"
    return (
        "[connection]\n"
        f"id={network.ssid}\n"
        f"uuid={connection_uuid(network.ssid)}\n"
        "type=wifi\n"
        f"autoconnect={autoconnect}\n"
        "\n"
        "[wifi]\n"
        "mode=infrastructure\n"
        f"ssid={network.ssid}\n"
        "\n"
        "[wifi-security]\n"
        "key-mgmt=wpa-psk\n"
        f"psk={network.password.get_secret_value()}\n"
        "\n"
        "[ipv4]\n"
        "method=auto\n"
        "\n"
        "[ipv6]\n"
        "addr-gen-mode=default\n"
        "method=auto\n"
    )


def wifi(ctx: BuildContext) -> str | None:
    """Write one NetworkManager profile per configured network."""
    networks = ctx.inputs.wifi_networks
    if not networks:
        logger.warning("No WiFi networks configured")
        return None

    target = ctx.rootfs / CONNECTIONS_DIR
    for network in networks:
        # NetworkManager ignores keyfiles readable by other users
        write_file(target / connection_filename(network.ssid), render_connection(network), mode=0o600)
        logger.info("WiFi configured: %s", network.ssid)
    return f"{len(networks)} network(s)"


__all__ = [
    "connection_filename",
    "connection_uuid",
    "render_connection",
    "wifi",
]
