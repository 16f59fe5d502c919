"""Resumable artifact downloads.

This module handles:
- Streaming downloads of multi-gigabyte artifacts
- Byte-range continuation of interrupted downloads via a ``.part`` file
- Atomic promotion of completed downloads into the cache
- SHA-256 computation for the cache index
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import httpx

from emcomm_isogen.errors import NetworkError

logger = logging.getLogger(__name__)

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

PARTIAL_SUFFIX = ".part"


@dataclass
class DownloadResult:
    """Result of a completed download."""

    path: Path
    checksum: str
    size_bytes: int
    resumed_from: int = 0


def partial_path(dest_path: Path) -> Path:
    """Return the in-progress path used while downloading ``dest_path``."""
    return dest_path.with_name(dest_path.name + PARTIAL_SUFFIX)


def compute_file_sha256(file_path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute SHA256 checksum of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks to read.

    Returns:
        SHA256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def download_resumable(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a file, continuing a previous partial download if present.

    Bytes are appended to ``<dest>.part``. When a partial file exists a
    ``Range`` request asks for the remainder: a 206 response is appended,
    a 200 response (server ignores ranges) restarts from zero and a 416
    response means the partial file is already complete. Only a finished
    download is renamed to ``dest_path``, so a file at ``dest_path`` is
    always complete. The partial file is kept on failure.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Final path of the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path, checksum and size.

    Raises:
        NetworkError: If the download fails.
    """
    part = partial_path(dest_path)
    part.parent.mkdir(parents=True, exist_ok=True)
    offset = part.stat().st_size if part.exists() else 0
    headers = {"Range": f"bytes={offset}-"} if offset else {}

    if offset:
        logger.info("Resuming download of %s at %d bytes", dest_path.name, offset)
    else:
        logger.info("Downloading %s to %s", url, dest_path)

    resumed_from = 0
    try:
        with client.stream(
            "GET", url, headers=headers, timeout=timeout, follow_redirects=True
        ) as response:
            if offset and response.status_code == 416:
                logger.info("Partial download of %s already complete", dest_path.name)
                resumed_from = offset
            else:
                response.raise_for_status()
                if offset and response.status_code == 206:
                    mode = "ab"
                    resumed_from = offset
                else:
                    if offset:
                        logger.warning(
                            "Server ignored range request, restarting %s",
                            dest_path.name,
                        )
                    mode = "wb"

                with part.open(mode) as f:
                    for chunk in response.iter_bytes(chunk_size):
                        f.write(chunk)

    except httpx.HTTPStatusError as e:
        raise NetworkError(
            f"HTTP error downloading {url}: {e.response.status_code} "
            f"{e.response.reason_phrase}",
            code=f"http_{e.response.status_code}",
        ) from e
    except httpx.TimeoutException as e:
        raise NetworkError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise NetworkError(f"Network error downloading {url}: {e}") from e

    os.replace(part, dest_path)
    size_bytes = dest_path.stat().st_size
    checksum = compute_file_sha256(dest_path)

    logger.info(
        "Downloaded %s (%d bytes, checksum: %s)",
        dest_path.name,
        size_bytes,
        checksum[:16] + "...",
    )
    return DownloadResult(
        path=dest_path,
        checksum=checksum,
        size_bytes=size_bytes,
        resumed_from=resumed_from,
    )


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "DOWNLOAD_TIMEOUT",
    "DownloadResult",
    "PARTIAL_SUFFIX",
    "compute_file_sha256",
    "download_resumable",
    "partial_path",
]
