"""Artifact cache service.

This module provides high-level APIs for the artifact cache:
- ArtifactCache.ensure(): Return a cached artifact, downloading it on a miss
- list_artifacts(): List indexed artifacts
- verify_artifacts(): Re-hash cached files against the recorded checksums
- prune_partials(): Remove abandoned partial downloads
- get_cache_info(): Summarize cache usage

A file present at its expected cache path is never re-fetched or
overwritten. Downloads of the same artifact are serialized with a file lock.
"""

from __future__ import annotations

import fcntl
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from emcomm_isogen.cache.fetch import (
    DOWNLOAD_TIMEOUT,
    PARTIAL_SUFFIX,
    compute_file_sha256,
    download_resumable,
)
from emcomm_isogen.cache.models import CachedArtifact
from emcomm_isogen.errors import OfflineModeError
from emcomm_isogen.types import ArtifactKind, ArtifactState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """An artifact's expected location in the cache."""

    kind: ArtifactKind
    path: Path

    def is_present(self) -> bool:
        """Whether the artifact exists on disk."""
        return self.path.is_file()


@dataclass
class ArtifactCheck:
    """Result of verifying one cached artifact."""

    filename: str
    status: str  # ok, missing, mismatch, unrecorded
    expected_sha256: str | None = None
    actual_sha256: str | None = None


@contextmanager
def artifact_lock(cache_dir: Path, filename: str) -> Iterator[None]:
    """Hold the download lock of one artifact.

    Blocks while another process downloads the same file; the waiting
    process then finds the artifact present and skips its own download.

    Args:
        cache_dir: Root cache directory.
        filename: Artifact file name.

    Yields:
        None when lock is acquired.
    """
    lock_dir = cache_dir / ".locks"
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"{filename.replace('/', '_')}.lock"

    logger.debug("Acquiring lock for %s", filename)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)

        logger.debug("Lock acquired for %s", filename)
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        logger.debug("Lock released for %s", filename)


def _get_record(session: Session, filename: str) -> CachedArtifact | None:
    stmt = select(CachedArtifact).where(CachedArtifact.filename == filename)
    return session.execute(stmt).scalars().first()


class ArtifactCache:
    """On-disk cache of large downloaded artifacts.

    Args:
        cache_dir: Directory holding cached files.
        client: HTTPX client (one is created per download if not provided).
        session: Database session for the cache index (optional).
        offline: Refuse to download missing artifacts.
        timeout: Download timeout in seconds.
    """

    def __init__(
        self,
        cache_dir: Path,
        client: httpx.Client | None = None,
        session: Session | None = None,
        offline: bool = False,
        timeout: float = DOWNLOAD_TIMEOUT,
    ) -> None:
        self.cache_dir = cache_dir
        self.client = client
        self.session = session
        self.offline = offline
        self.timeout = timeout

    def entry(self, kind: ArtifactKind, filename: str) -> CacheEntry:
        """Return the cache entry for a file name."""
        return CacheEntry(kind=kind, path=self.cache_dir / filename)

    def ensure(
        self,
        kind: ArtifactKind,
        url: str,
        filename: str | None = None,
    ) -> Path:
        """Ensure an artifact is in the cache and return its path.

        A file already present is returned unchanged without any integrity
        check; use verify_artifacts() to detect corruption. Otherwise the
        file is downloaded, continuing any earlier partial download.

        Args:
            kind: Artifact kind.
            url: Download URL.
            filename: Cache file name (defaults to the last URL component).

        Returns:
            Path of the cached file.

        Raises:
            OfflineModeError: If the file is missing and offline mode is on.
            NetworkError: If the download fails.
        """
        filename = filename or url.rstrip("/").rsplit("/", 1)[-1]
        entry = self.entry(kind, filename)

        if entry.is_present():
            logger.info("Using cached %s: %s", kind.value, entry.path)
            self._record(entry, url, downloaded=None)
            return entry.path

        if self.offline:
            raise OfflineModeError(
                f"Cannot download {filename} in offline mode; "
                f"place it at {entry.path}"
            )

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        with artifact_lock(self.cache_dir, filename):
            # Another process may have finished the download meanwhile
            if entry.is_present():
                logger.info("%s became available while waiting for lock", filename)
                self._record(entry, url, downloaded=None)
                return entry.path

            manage_client = self.client is None
            client = (
                self.client
                if self.client is not None
                else httpx.Client(follow_redirects=True)
            )
            try:
                result = download_resumable(
                    client,
                    url,
                    entry.path,
                    timeout=self.timeout,
                )
            finally:
                if manage_client:
                    client.close()

            self._record(entry, url, downloaded=(result.size_bytes, result.checksum))
            return entry.path

    def _record(
        self,
        entry: CacheEntry,
        url: str,
        downloaded: tuple[int, str] | None,
    ) -> None:
        """Create or refresh the index record of an artifact."""
        if self.session is None:
            return

        record = _get_record(self.session, entry.path.name)
        now = datetime.now(timezone.utc)
        if record is None:
            record = CachedArtifact(
                kind=entry.kind.value,
                filename=entry.path.name,
                url=url,
                path=str(entry.path),
                state=ArtifactState.READY.value,
            )
            self.session.add(record)
            if downloaded is None:
                # Placed in the cache by hand; remember what it is now
                record.size_bytes = entry.path.stat().st_size

        if downloaded is not None:
            record.size_bytes, record.sha256 = downloaded
            record.url = url
            record.mark_ready()
        record.last_used_at = now
        self.session.flush()


def list_artifacts(
    session: Session,
    kind: ArtifactKind | None = None,
) -> list[CachedArtifact]:
    """List indexed artifacts.

    Args:
        session: Database session.
        kind: Filter by artifact kind (optional).

    Returns:
        Matching CachedArtifact records ordered by file name.
    """
    stmt = select(CachedArtifact)
    if kind is not None:
        stmt = stmt.where(CachedArtifact.kind == kind.value)
    stmt = stmt.order_by(CachedArtifact.filename)
    return list(session.execute(stmt).scalars().all())


def verify_artifacts(session: Session) -> list[ArtifactCheck]:
    """Re-hash indexed artifacts and compare with recorded checksums.

    Records whose file no longer matches are marked broken; the files
    themselves are left in place for the operator to inspect or delete.

    Args:
        session: Database session.

    Returns:
        One ArtifactCheck per indexed artifact.
    """
    checks: list[ArtifactCheck] = []
    for record in list_artifacts(session):
        path = Path(record.path)
        if not path.is_file():
            checks.append(ArtifactCheck(record.filename, "missing", record.sha256))
            continue

        actual = compute_file_sha256(path)
        if record.sha256 is None:
            # First verification of a hand-placed file establishes the baseline
            record.sha256 = actual
            checks.append(ArtifactCheck(record.filename, "unrecorded", None, actual))
        elif actual != record.sha256:
            logger.warning("Checksum mismatch for cached %s", record.filename)
            record.mark_broken()
            checks.append(
                ArtifactCheck(record.filename, "mismatch", record.sha256, actual)
            )
        else:
            record.mark_ready()
            checks.append(ArtifactCheck(record.filename, "ok", record.sha256, actual))

    session.flush()
    return checks


def prune_partials(cache_dir: Path, dry_run: bool = False) -> list[Path]:
    """Remove partial downloads left behind in the cache.

    Args:
        cache_dir: Root cache directory.
        dry_run: If True, only report what would be removed.

    Returns:
        Paths that were (or would be) removed.
    """
    if not cache_dir.exists():
        return []

    removed: list[Path] = []
    for part in sorted(cache_dir.glob(f"*{PARTIAL_SUFFIX}")):
        if dry_run:
            logger.info("[DRY RUN] Would remove %s", part)
        else:
            part.unlink()
            logger.info("Removed partial download %s", part)
        removed.append(part)
    return removed


def get_cache_info(cache_dir: Path) -> dict[str, object]:
    """Get information about the artifact cache.

    Args:
        cache_dir: Root cache directory.

    Returns:
        Dictionary with cache information.
    """
    total_size = 0
    files = 0
    if cache_dir.exists():
        for path in cache_dir.iterdir():
            if path.is_file():
                total_size += path.stat().st_size
                files += 1

    return {
        "cache_dir": str(cache_dir),
        "files": files,
        "total_size_bytes": total_size,
        "total_size_human": format_size(total_size),
        "exists": cache_dir.exists(),
    }


def format_size(size_bytes: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} PB"


__all__ = [
    "ArtifactCache",
    "ArtifactCheck",
    "CacheEntry",
    "artifact_lock",
    "format_size",
    "get_cache_info",
    "list_artifacts",
    "prune_partials",
    "verify_artifacts",
]
