"""Release resolution for the EmComm Tools vendor payload.

This module handles:
- Resolving a release mode (stable, latest, tag) against the GitHub API
- Deriving version, date, release number and file names from a tag
- Listing recent releases and tags for the operator

Resolution only performs read-only HTTP requests; nothing is written to
disk, so a failed lookup leaves the cache and work directories untouched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from emcomm_isogen.config import DEFAULT_RELEASE_API_BASE
from emcomm_isogen.errors import ConfigurationError, NetworkError, ReleaseNotFoundError
from emcomm_isogen.types import ReleaseMode

logger = logging.getLogger(__name__)

# Timeout for metadata requests (seconds)
API_TIMEOUT = 30

# Number of tags fetched when looking up an exact tag
TAG_SEARCH_PAGE_SIZE = 100

_VERSION_PATTERN = re.compile(r"(\d+\.\d+\.\d+)$")
_DATE_PATTERN = re.compile(r"(\d{8})")
_RELEASE_NUMBER_PATTERN = re.compile(r"(r\d+)")
_BUILD_PATTERN = re.compile(r"(build\d+)")

_GITHUB_HEADERS = {"Accept": "application/vnd.github+json"}


@dataclass(frozen=True)
class ResolvedRelease:
    """A concrete vendor release.

    Attributes:
        tag: Tag name, e.g. 'emcomm-tools-os-community-20251128-r5-final-5.0.0'.
        name: Human-readable release name.
        payload_url: Source tarball download URL.
        published_at: Publication time (None for bare tags).
    """

    tag: str
    name: str
    payload_url: str
    published_at: datetime | None = None

    @property
    def version(self) -> str:
        """Semantic version suffix of the tag, or 'dev'."""
        match = _VERSION_PATTERN.search(self.tag)
        return match.group(1) if match else "dev"

    @property
    def date_version(self) -> str:
        """Eight-digit date embedded in the tag, or 'unknown'."""
        match = _DATE_PATTERN.search(self.tag)
        return match.group(1) if match else "unknown"

    @property
    def release_number(self) -> str:
        """Release number such as 'r5', or 'r0'."""
        match = _RELEASE_NUMBER_PATTERN.search(self.tag)
        return match.group(1) if match else "r0"

    @property
    def build_number(self) -> str | None:
        """Build number such as 'build17', if present."""
        match = _BUILD_PATTERN.search(self.tag)
        return match.group(1) if match else None

    @property
    def payload_filename(self) -> str:
        """Cache file name of the vendor payload."""
        return f"{self.tag}.tar.gz"

    @property
    def output_filename(self) -> str:
        """File name of the finished image."""
        return f"{self.tag}-custom.iso"

    @property
    def volume_label(self) -> str:
        """ISO volume label stamped on the finished image."""
        return f"ETC_{self.release_number.upper()}_CUSTOM"


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable publish date: %s", value)
        return None


def _get_json(client: httpx.Client, url: str, timeout: float) -> Any:
    """GET a JSON document, mapping transport errors to NetworkError."""
    logger.debug("Fetching %s", url)
    try:
        response = client.get(url, headers=_GITHUB_HEADERS, timeout=timeout)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        raise NetworkError(
            f"HTTP error fetching {url}: {e.response.status_code} "
            f"{e.response.reason_phrase}",
            code=f"http_{e.response.status_code}",
        ) from e
    except httpx.TimeoutException as e:
        raise NetworkError(f"Timeout fetching {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise NetworkError(f"Network error fetching {url}: {e}") from e
    except ValueError as e:
        raise NetworkError(
            f"Invalid JSON from {url}: {e}", code="invalid_response"
        ) from e


def _entry_list(data: Any, what: str) -> list[dict[str, Any]]:
    """Return ``data`` as a list of JSON objects, or raise NetworkError."""
    if not isinstance(data, list) or not all(isinstance(e, dict) for e in data):
        raise NetworkError(f"Unexpected {what} document", code="invalid_response")
    return data


def _release_from_tag_entry(entry: Any) -> ResolvedRelease:
    try:
        return ResolvedRelease(
            tag=entry["name"],
            name=entry["name"],
            payload_url=entry["tarball_url"],
        )
    except (KeyError, TypeError) as e:
        raise NetworkError(
            f"Unexpected tag entry shape: {e}", code="invalid_response"
        ) from e


def resolve_release(
    client: httpx.Client,
    mode: ReleaseMode,
    tag: str | None = None,
    api_base: str = DEFAULT_RELEASE_API_BASE,
    timeout: float = API_TIMEOUT,
) -> ResolvedRelease:
    """Resolve a release mode to a concrete release.

    Args:
        client: HTTPX client instance.
        mode: stable (latest formal release), latest (most recent tag) or
            tag (exact tag name).
        tag: Tag name, required for ``ReleaseMode.TAG``.
        api_base: Repository API base URL.
        timeout: Request timeout in seconds.

    Returns:
        ResolvedRelease.

    Raises:
        ConfigurationError: If mode is tag and no tag was given.
        ReleaseNotFoundError: If the requested tag or release does not exist.
        NetworkError: If a request fails or returns an unexpected document.
    """
    if mode == ReleaseMode.STABLE:
        data = _get_json(client, f"{api_base}/releases/latest", timeout)
        try:
            release = ResolvedRelease(
                tag=data["tag_name"],
                name=data.get("name") or data["tag_name"],
                payload_url=data["tarball_url"],
                published_at=_parse_timestamp(data.get("published_at")),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise NetworkError(
                f"Unexpected release document: {e}", code="invalid_response"
            ) from e

    elif mode == ReleaseMode.LATEST:
        data = _get_json(client, f"{api_base}/tags?per_page=1", timeout)
        if not isinstance(data, list) or not data:
            raise NetworkError("No tags published", code="no_tags")
        release = _release_from_tag_entry(data[0])

    else:
        if not tag:
            raise ConfigurationError(
                "Release mode 'tag' requires a tag name", code="missing_tag"
            )
        data = _get_json(
            client, f"{api_base}/tags?per_page={TAG_SEARCH_PAGE_SIZE}", timeout
        )
        entries = _entry_list(data, "tag list")
        matches = [entry for entry in entries if entry.get("name") == tag]
        if not matches:
            raise ReleaseNotFoundError(tag)
        release = _release_from_tag_entry(matches[0])

    logger.info(
        "Resolved %s release: %s (version %s, %s)",
        mode.value,
        release.tag,
        release.version,
        release.release_number,
    )
    return release


def list_releases(
    client: httpx.Client,
    api_base: str = DEFAULT_RELEASE_API_BASE,
    timeout: float = API_TIMEOUT,
    release_count: int = 5,
    tag_count: int = 10,
) -> dict[str, list[dict[str, str | None]]]:
    """List recent formal releases and tags.

    Args:
        client: HTTPX client instance.
        api_base: Repository API base URL.
        timeout: Request timeout in seconds.
        release_count: Number of releases to list.
        tag_count: Number of tags to list.

    Returns:
        Dictionary with 'releases' and 'tags' lists.

    Raises:
        NetworkError: If a request fails.
    """
    releases = _entry_list(
        _get_json(client, f"{api_base}/releases?per_page={release_count}", timeout),
        "release list",
    )
    tags = _entry_list(
        _get_json(client, f"{api_base}/tags?per_page={tag_count}", timeout),
        "tag list",
    )
    return {
        "releases": [
            {
                "tag": r.get("tag_name"),
                "name": r.get("name"),
                "published_at": r.get("published_at"),
            }
            for r in releases
        ],
        "tags": [{"tag": t.get("name"), "name": t.get("name")} for t in tags],
    }


__all__ = [
    "API_TIMEOUT",
    "ResolvedRelease",
    "list_releases",
    "resolve_release",
]
