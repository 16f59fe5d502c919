"""Configuration settings for emcomm_isogen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

``Settings`` holds the operator's environment; ``BuildConfiguration`` is
the immutable per-run record created once from settings plus CLI flags
and handed to every build stage.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from emcomm_isogen.errors import ConfigurationError
from emcomm_isogen.types import ReleaseMode

# Upstream EmComm Tools community edition repository
DEFAULT_RELEASE_API_BASE = (
    "https://api.github.com/repos/thetechprepper/emcomm-tools-os-community"
)

# Ubuntu 22.10 is end-of-life and only served from old-releases
DEFAULT_BASE_IMAGE_URL = (
    "https://old-releases.ubuntu.com/releases/kinetic/ubuntu-22.10-desktop-amd64.iso"
)

DEFAULT_ADDONS_URL = (
    "https://github.com/clifjones/et-os-addons/archive/refs/heads/main.tar.gz"
)


def _default_data_dir() -> Path:
    """Return the default data directory."""
    return Path.home() / ".local" / "share" / "emcomm-isogen"


def _default_cache_dir() -> Path:
    """Return the default artifact cache directory."""
    return Path.home() / ".cache" / "emcomm-isogen"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = _default_data_dir() / "db.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the EMCOMM_ISO_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="EMCOMM_ISO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Persistent cache for the base image and vendor payloads",
    )
    work_dir: Path = Field(
        default_factory=lambda: _default_data_dir() / "work",
        description="Ephemeral working directory for extracted trees",
    )
    output_dir: Path = Field(
        default_factory=lambda: _default_data_dir() / "output",
        description="Directory receiving finished images",
    )
    logs_dir: Path = Field(
        default_factory=lambda: _default_data_dir() / "logs",
        description="Directory receiving build log files",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for cache index and build history",
    )
    secrets_file: Path = Field(
        default=Path("secrets.env"),
        description="Station inputs file (KEY=value lines)",
    )

    # Upstream sources
    release_api_base: str = Field(
        default=DEFAULT_RELEASE_API_BASE,
        description="Release metadata API for the vendor repository",
    )
    base_image_url: str = Field(
        default=DEFAULT_BASE_IMAGE_URL,
        description="Download URL of the base installer image",
    )
    addons_url: str = Field(
        default=DEFAULT_ADDONS_URL,
        description="Download URL of the optional add-ons overlay archive",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - never download, use cached artifacts only",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    strict_verification: bool = Field(
        default=False,
        description="Fail the build when a critical verification check fails",
    )

    # Image rebuild
    squashfs_compression: Literal["xz", "gzip", "zstd", "lz4"] = Field(
        default="xz",
        description="mksquashfs compression method",
    )
    squashfs_block_size: str = Field(
        default="1M",
        description="mksquashfs block size",
    )

    # Timeouts (in seconds)
    api_timeout: int = Field(
        default=30,
        ge=5,
        description="Timeout for release metadata requests",
    )
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for artifact downloads",
    )


@dataclass(frozen=True)
class BuildConfiguration:
    """Immutable configuration for a single build run.

    Attributes:
        release_mode: How the vendor release is selected.
        release_tag: Exact tag when ``release_mode`` is ``tag``.
        cache_dir: Persistent artifact cache.
        work_dir: Ephemeral working directory owned by this run.
        output_dir: Directory receiving the finished image.
        logs_dir: Directory receiving log files.
        secrets_file: Station inputs file.
        minimal: Skip embedding cached artifacts into the image.
        dry_run: Resolve and plan only, never touch cache, work or output.
        confirm_entire_disk: Explicit consent to wipe the whole target disk.
        keep_work: Keep the working directory after the build.
        with_addons: Merge the add-ons overlay into the root filesystem.
        strict_verification: Critical verification failures fail the build.
    """

    release_mode: ReleaseMode
    cache_dir: Path
    work_dir: Path
    output_dir: Path
    logs_dir: Path
    secrets_file: Path
    release_tag: str | None = None
    minimal: bool = False
    dry_run: bool = False
    confirm_entire_disk: bool = False
    keep_work: bool = False
    with_addons: bool = False
    strict_verification: bool = False
    offline: bool = False
    release_api_base: str = DEFAULT_RELEASE_API_BASE
    base_image_url: str = DEFAULT_BASE_IMAGE_URL
    addons_url: str = DEFAULT_ADDONS_URL
    api_timeout: float = 30
    download_timeout: float = 3600
    squashfs_compression: str = "xz"
    squashfs_block_size: str = "1M"

    def __post_init__(self) -> None:
        """Validate option combinations."""
        if self.release_mode == ReleaseMode.TAG and not self.release_tag:
            raise ConfigurationError(
                "Release mode 'tag' requires a tag name", code="missing_tag"
            )

    @property
    def iso_dir(self) -> Path:
        """Extracted top-level tree of the base image."""
        return self.work_dir / "iso"

    @property
    def rootfs_dir(self) -> Path:
        """Extracted root filesystem."""
        return self.work_dir / "squashfs"

    @property
    def base_image_filename(self) -> str:
        """File name of the base image in the cache."""
        return self.base_image_url.rstrip("/").rsplit("/", 1)[-1]

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        release_mode: ReleaseMode = ReleaseMode.STABLE,
        release_tag: str | None = None,
        **flags: bool,
    ) -> BuildConfiguration:
        """Create a build configuration from settings and CLI flags.

        Args:
            settings: Effective application settings.
            release_mode: How the vendor release is selected.
            release_tag: Exact tag for ``ReleaseMode.TAG``.
            **flags: Boolean build flags (minimal, dry_run, ...).

        Returns:
            Frozen BuildConfiguration.

        Raises:
            ConfigurationError: If the option combination is invalid.
        """
        strict = flags.pop("strict_verification", False) or settings.strict_verification
        return cls(
            release_mode=release_mode,
            release_tag=release_tag,
            cache_dir=settings.cache_dir,
            work_dir=settings.work_dir,
            output_dir=settings.output_dir,
            logs_dir=settings.logs_dir,
            secrets_file=settings.secrets_file,
            offline=settings.offline,
            strict_verification=strict,
            release_api_base=settings.release_api_base,
            base_image_url=settings.base_image_url,
            addons_url=settings.addons_url,
            api_timeout=settings.api_timeout,
            download_timeout=settings.download_timeout,
            squashfs_compression=settings.squashfs_compression,
            squashfs_block_size=settings.squashfs_block_size,
            **flags,
        )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "BuildConfiguration",
    "Settings",
    "get_settings",
    "print_settings_json",
]
