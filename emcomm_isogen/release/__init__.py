"""Vendor release resolution.

This module handles:
- Resolving stable, latest and exact-tag releases from the GitHub API
- Deriving payload and output file names from a release tag
"""

from emcomm_isogen.release.resolver import (
    ResolvedRelease,
    list_releases,
    resolve_release,
)

__all__ = [
    "ResolvedRelease",
    "list_releases",
    "resolve_release",
]
