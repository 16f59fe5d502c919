"""Shared type definitions for emcomm_isogen.

This module contains enums and small dataclasses shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class ReleaseMode(str, Enum):
    """How the vendor release is selected."""

    STABLE = "stable"
    LATEST = "latest"
    TAG = "tag"


class ArtifactKind(str, Enum):
    """Kind of artifact kept in the download cache."""

    BASE_IMAGE = "base_image"
    VENDOR_PAYLOAD = "vendor_payload"
    ADDONS = "addons"
    USER_BACKUP = "user_backup"


class ArtifactState(str, Enum):
    """State of a cached artifact record."""

    PENDING = "pending"
    READY = "ready"
    BROKEN = "broken"


class BuildStatus(str, Enum):
    """Status of a build run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Outcome of a single pipeline step."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    WARNED = "warned"
    FAILED = "failed"


class MountState(str, Enum):
    """Lifecycle state of a chroot mount set."""

    UNMOUNTED = "unmounted"
    MOUNTING = "mounting"
    MOUNTED = "mounted"
    UNMOUNTING = "unmounting"


class PartitionStrategy(str, Enum):
    """Partitioning approach for the unattended installer."""

    REUSE_PARTITION = "reuse-partition"
    ENTIRE_DISK = "entire-disk"
    FREE_SPACE = "free-space"


class Severity(str, Enum):
    """Severity of a verification check."""

    CRITICAL = "critical"
    WARNING = "warning"


@dataclass
class OperationResult:
    """Result of an operation (build, cache verify, etc.)."""

    success: bool
    message: str
    code: str | None = None
    log_path: str | None = None
    details: dict[str, object] = field(default_factory=dict)


__all__ = [
    "ArtifactKind",
    "ArtifactState",
    "BuildStatus",
    "MountState",
    "OperationResult",
    "PartitionStrategy",
    "ReleaseMode",
    "Severity",
    "StepStatus",
]
