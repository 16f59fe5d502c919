"""Station inputs for a build.

Station inputs are the operator's personal values (callsign, WiFi
networks, passwords, desktop preferences, ...) kept in a ``secrets.env``
file of ``KEY=value`` lines. The file is read with python-dotenv (it is
never sourced by a shell) and validated into a pydantic model with the
defaults the customization steps rely on.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    model_validator,
)

from emcomm_isogen.errors import ConfigurationError, PrerequisiteError
from emcomm_isogen.types import PartitionStrategy

logger = logging.getLogger(__name__)

# Callsign shipped in the template secrets file
PLACEHOLDER_CALLSIGN = "N0CALL"

_WIFI_SSID_KEY = re.compile(r"^WIFI_SSID_(?P<id>[A-Za-z0-9_]+)$")


class WifiNetwork(BaseModel):
    """A WiFi network to pre-configure with NetworkManager."""

    model_config = ConfigDict(frozen=True)

    ident: str = Field(description="Suffix of the WIFI_SSID_<ID> key")
    ssid: str = Field(min_length=1, max_length=32)
    password: SecretStr = Field(description="WPA-PSK passphrase")
    autoconnect: bool = True

    @model_validator(mode="after")
    def _check_password_length(self) -> WifiNetwork:
        length = len(self.password.get_secret_value())
        if not 8 <= length <= 63:
            raise ValueError(
                f"WiFi password for '{self.ssid}' must be 8-63 characters"
            )
        return self


class StationInputs(BaseModel):
    """Validated station inputs.

    Field aliases are the upper-case keys used in ``secrets.env``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    # Identity
    callsign: str = Field(default=PLACEHOLDER_CALLSIGN, alias="CALLSIGN")
    grid_square: str | None = Field(default=None, alias="GRID_SQUARE")
    machine_name: str | None = Field(default=None, alias="MACHINE_NAME")
    user_username: str | None = Field(default=None, alias="USER_USERNAME")
    user_fullname: str = Field(default="EmComm User", alias="USER_FULLNAME")
    user_email: str = Field(default="user@localhost", alias="USER_EMAIL")
    user_password: SecretStr | None = Field(default=None, alias="USER_PASSWORD")
    enable_autologin: bool = Field(default=False, alias="ENABLE_AUTOLOGIN")

    # Locale
    timezone: str = Field(default="America/Denver", alias="TIMEZONE")
    keyboard_layout: str = Field(default="us", alias="KEYBOARD_LAYOUT")
    locale: str = Field(default="en_US.UTF-8", alias="LOCALE")

    # Desktop
    desktop_color_scheme: str = Field(
        default="prefer-dark", alias="DESKTOP_COLOR_SCHEME"
    )
    desktop_scaling_factor: float = Field(
        default=1.0, gt=0, alias="DESKTOP_SCALING_FACTOR"
    )
    disable_accessibility: bool = Field(default=True, alias="DISABLE_ACCESSIBILITY")
    automatic_screen_brightness: bool = Field(
        default=False, alias="AUTOMATIC_SCREEN_BRIGHTNESS"
    )
    dim_screen: bool = Field(default=True, alias="DIM_SCREEN")
    screen_blank: bool = Field(default=True, alias="SCREEN_BLANK")
    screen_blank_timeout: int = Field(default=300, ge=0, alias="SCREEN_BLANK_TIMEOUT")

    # Power
    power_mode: str = Field(default="balanced", alias="POWER_MODE")
    power_lid_close_ac: str = Field(default="suspend", alias="POWER_LID_CLOSE_AC")
    power_lid_close_battery: str = Field(
        default="suspend", alias="POWER_LID_CLOSE_BATTERY"
    )
    power_button_action: str = Field(
        default="interactive", alias="POWER_BUTTON_ACTION"
    )
    power_idle_ac: str = Field(default="nothing", alias="POWER_IDLE_AC")
    power_idle_battery: str = Field(default="suspend", alias="POWER_IDLE_BATTERY")
    power_idle_timeout: int = Field(default=900, ge=0, alias="POWER_IDLE_TIMEOUT")
    automatic_power_saver: bool = Field(default=True, alias="AUTOMATIC_POWER_SAVER")
    automatic_suspend: bool = Field(default=True, alias="AUTOMATIC_SUSPEND")

    # APRS / radio
    aprs_ssid: int = Field(default=10, ge=0, le=15, alias="APRS_SSID")
    aprs_passcode: str = Field(default="-1", alias="APRS_PASSCODE")
    aprs_symbol: str = Field(default="/r", alias="APRS_SYMBOL")
    aprs_comment: str = Field(default="EmComm iGate", alias="APRS_COMMENT")
    enable_aprs_igate: bool = Field(default=True, alias="ENABLE_APRS_IGATE")
    enable_aprs_beacon: bool = Field(default=False, alias="ENABLE_APRS_BEACON")
    aprs_beacon_interval: int = Field(default=300, ge=30, alias="APRS_BEACON_INTERVAL")
    aprs_beacon_via: str = Field(default="WIDE1-1", alias="APRS_BEACON_VIA")
    aprs_beacon_power: int = Field(default=10, ge=0, alias="APRS_BEACON_POWER")
    aprs_beacon_height: int = Field(default=20, ge=0, alias="APRS_BEACON_HEIGHT")
    aprs_beacon_gain: int = Field(default=3, ge=0, alias="APRS_BEACON_GAIN")
    aprs_server: str = Field(default="noam.aprs2.net", alias="APRS_SERVER")
    direwolf_ptt: str = Field(default="CM108", alias="DIREWOLF_PTT")
    winlink_password: SecretStr | None = Field(default=None, alias="WINLINK_PASSWORD")
    pat_emcomm_alias: bool = Field(default=False, alias="PAT_EMCOMM_ALIAS")
    pat_emcomm_gateway: str | None = Field(default=None, alias="PAT_EMCOMM_GATEWAY")
    vara_fm_callsign: str | None = Field(default=None, alias="VARA_FM_CALLSIGN")
    vara_fm_license_key: SecretStr | None = Field(
        default=None, alias="VARA_FM_LICENSE_KEY"
    )
    vara_hf_callsign: str | None = Field(default=None, alias="VARA_HF_CALLSIGN")
    vara_hf_license_key: SecretStr | None = Field(
        default=None, alias="VARA_HF_LICENSE_KEY"
    )

    # Extra packages installed into the image
    additional_packages: str | None = Field(default=None, alias="ADDITIONAL_PACKAGES")
    install_chirp: bool | None = Field(default=None, alias="INSTALL_CHIRP")

    # Vendor installer steering
    osm_map_state: str | None = Field(default=None, alias="OSM_MAP_STATE")
    et_map_region: str | None = Field(default=None, alias="ET_MAP_REGION")
    wikipedia_sections: str | None = Field(default=None, alias="WIKIPEDIA_SECTIONS")
    wikipedia_articles: str | None = Field(default=None, alias="WIKIPEDIA_ARTICLES")
    et_expert: str | None = Field(default=None, alias="ET_EXPERT")

    # Unattended install
    install_disk: str = Field(default="/dev/sda5", alias="INSTALL_DISK")
    partition_strategy: PartitionStrategy | None = Field(
        default=None, alias="PARTITION_STRATEGY"
    )
    swap_size_gb: float | None = Field(default=None, gt=0, alias="SWAP_SIZE_GB")
    disk_layout_file: Path | None = Field(default=None, alias="DISK_LAYOUT_FILE")

    wifi_networks: tuple[WifiNetwork, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_values(cls, data: Any) -> Any:
        """Treat ``KEY=`` lines the same as missing keys."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None and v != ""}
        return data

    @property
    def has_callsign(self) -> bool:
        """Whether a real callsign (not the template value) is configured."""
        return self.callsign.upper() != PLACEHOLDER_CALLSIGN

    @property
    def hostname(self) -> str:
        """Machine hostname, defaulting to ``ETC-<CALLSIGN>``."""
        return self.machine_name or f"ETC-{self.callsign}"

    @property
    def username(self) -> str:
        """Login name, defaulting to the lower-cased callsign."""
        return self.user_username or self.callsign.lower()

    @property
    def package_list(self) -> list[str]:
        """Additional packages as a list (space or comma separated)."""
        if not self.additional_packages:
            return []
        return [p for p in re.split(r"[\s,]+", self.additional_packages) if p]

    @property
    def wants_chirp(self) -> bool:
        """Whether to install CHIRP; follows ADDITIONAL_PACKAGES when unset."""
        if self.install_chirp is not None:
            return self.install_chirp
        return bool(self.package_list)

    @property
    def article_list(self) -> list[str]:
        """Wikipedia article titles (pipe separated, spaces become underscores)."""
        if not self.wikipedia_articles:
            return []
        return [
            a.strip().replace(" ", "_")
            for a in self.wikipedia_articles.split("|")
            if a.strip()
        ]


def parse_wifi_networks(values: dict[str, str | None]) -> list[WifiNetwork]:
    """Collect WiFi networks from ``WIFI_SSID_<ID>`` style keys.

    Entries with an empty or template SSID are ignored. Entries with a
    missing or invalid password are skipped with a warning.

    Args:
        values: Raw key/value pairs from the secrets file.

    Returns:
        Valid networks in file order.
    """
    networks: list[WifiNetwork] = []
    for key, ssid in values.items():
        match = _WIFI_SSID_KEY.match(key)
        if match is None:
            continue
        ident = match.group("id")
        if not ssid or ssid.startswith("YOUR_"):
            continue

        password = values.get(f"WIFI_PASSWORD_{ident}") or ""
        if not password:
            logger.warning("WiFi '%s' has no password configured, skipping", ssid)
            continue

        autoconnect = (values.get(f"WIFI_AUTOCONNECT_{ident}") or "yes").lower()
        try:
            network = WifiNetwork(
                ident=ident,
                ssid=ssid,
                password=SecretStr(password),
                autoconnect=autoconnect not in ("no", "false", "0"),
            )
        except ValidationError as e:
            logger.warning("Invalid WiFi entry %s, skipping: %s", ident, e)
            continue
        networks.append(network)
    return networks


def load_station_inputs(path: Path) -> StationInputs:
    """Load and validate a station inputs file.

    Args:
        path: Path to the ``secrets.env`` file.

    Returns:
        Validated StationInputs.

    Raises:
        PrerequisiteError: If the file does not exist.
        ConfigurationError: If a value fails validation.
    """
    if not path.is_file():
        raise PrerequisiteError(
            f"Station inputs file not found: {path}", code="secrets_missing"
        )

    values = dotenv_values(path)
    logger.debug("Loaded %d keys from %s", len(values), path)

    try:
        return StationInputs.model_validate(
            {**values, "wifi_networks": tuple(parse_wifi_networks(values))}
        )
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid station inputs in {path}: {e}", code="invalid_inputs"
        ) from e


__all__ = [
    "PLACEHOLDER_CALLSIGN",
    "StationInputs",
    "WifiNetwork",
    "load_station_inputs",
    "parse_wifi_networks",
]
