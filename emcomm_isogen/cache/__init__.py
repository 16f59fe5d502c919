"""Artifact cache management.

This module handles:
- Resumable downloads of the base image and vendor payloads
- Presence-based cache lookups with a file lock per artifact
- The cache index used for on-demand integrity verification
"""

from emcomm_isogen.cache.fetch import (
    DownloadResult,
    compute_file_sha256,
    download_resumable,
)
from emcomm_isogen.cache.models import CachedArtifact
from emcomm_isogen.cache.service import (
    ArtifactCache,
    ArtifactCheck,
    CacheEntry,
    artifact_lock,
    get_cache_info,
    list_artifacts,
    prune_partials,
    verify_artifacts,
)

__all__ = [
    # Models
    "CachedArtifact",
    # Fetch module
    "DownloadResult",
    "compute_file_sha256",
    "download_resumable",
    # Service module
    "ArtifactCache",
    "ArtifactCheck",
    "CacheEntry",
    "artifact_lock",
    "get_cache_info",
    "list_artifacts",
    "prune_partials",
    "verify_artifacts",
]
