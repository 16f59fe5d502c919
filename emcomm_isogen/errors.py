"""Error taxonomy for emcomm_isogen.

Every error carries a stable ``code`` string so the CLI and build records
can report failures in a structured way. Fatal errors abort a build;
``CustomizationWarning`` is recorded by the pipeline and the build continues.
"""

from __future__ import annotations

from pathlib import Path


class IsogenError(Exception):
    """Base class for all emcomm_isogen errors."""

    def __init__(self, message: str, code: str = "isogen_error") -> None:
        """Initialize IsogenError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.message = message
        self.code = code


class PrerequisiteError(IsogenError):
    """A required tool, privilege or input file is missing."""

    def __init__(self, message: str, code: str = "prerequisite_error") -> None:
        super().__init__(message, code)


class ConfigurationError(IsogenError):
    """Invalid combination of build options or station inputs."""

    def __init__(self, message: str, code: str = "configuration_error") -> None:
        super().__init__(message, code)


class NetworkError(IsogenError):
    """A release lookup or artifact download failed."""

    def __init__(self, message: str, code: str = "network_error") -> None:
        super().__init__(message, code)


class ReleaseNotFoundError(NetworkError):
    """The requested release tag does not exist upstream."""

    def __init__(self, tag: str) -> None:
        super().__init__(f"Tag not found: {tag}", code="release_not_found")
        self.tag = tag


class OfflineModeError(NetworkError):
    """A download is required but offline mode is enabled."""

    def __init__(
        self,
        message: str = "Cannot download in offline mode",
        code: str = "offline_mode",
    ) -> None:
        super().__init__(message, code)


class ExtractionError(IsogenError):
    """Unpacking the base image or its root filesystem failed."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        super().__init__(message, code)


class ChrootInstallError(IsogenError):
    """Mounting the chroot or running the vendor installer failed."""

    def __init__(self, message: str, code: str = "chroot_install_error") -> None:
        super().__init__(message, code)


class CustomizationWarning(IsogenError):
    """A best-effort customization step could not be applied."""

    def __init__(self, message: str, code: str = "customization_warning") -> None:
        super().__init__(message, code)


class PartitionStrategyError(IsogenError):
    """No safe partitioning plan could be resolved."""

    def __init__(self, message: str, code: str = "partition_strategy_error") -> None:
        super().__init__(message, code)


class ImageRebuildError(IsogenError):
    """Recompressing the root filesystem or writing the image failed."""

    def __init__(self, message: str, code: str = "image_rebuild_error") -> None:
        super().__init__(message, code)


class WorkDirLockedError(IsogenError):
    """Another build currently owns the working directory."""

    def __init__(self, work_dir: Path) -> None:
        super().__init__(
            f"Working directory {work_dir} is locked by another build",
            code="work_dir_locked",
        )
        self.work_dir = work_dir


class CommandError(IsogenError):
    """An external tool exited with a non-zero status."""

    def __init__(
        self,
        argv: list[str],
        exit_code: int | None,
        log_path: Path | None = None,
        stderr: str | None = None,
        code: str = "command_failed",
    ) -> None:
        """Initialize CommandError.

        Args:
            argv: The command that was executed.
            exit_code: Process exit code (None if it never started).
            log_path: Log file holding the command output, if any.
            stderr: Captured standard error, if any.
            code: Error code for structured error handling.
        """
        message = f"{argv[0]} failed with exit code {exit_code}"
        if log_path is not None:
            message += f" (see {log_path})"
        elif stderr:
            message += f": {stderr.strip()}"
        super().__init__(message, code)
        self.argv = argv
        self.exit_code = exit_code
        self.log_path = log_path
        self.stderr = stderr


__all__ = [
    "ChrootInstallError",
    "CommandError",
    "ConfigurationError",
    "CustomizationWarning",
    "ExtractionError",
    "ImageRebuildError",
    "IsogenError",
    "NetworkError",
    "OfflineModeError",
    "PartitionStrategyError",
    "PrerequisiteError",
    "ReleaseNotFoundError",
    "WorkDirLockedError",
]
