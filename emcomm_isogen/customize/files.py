"""File helpers shared by customization steps.

This module handles:
- Whole-file writes into the extracted root filesystem
- Extracting tar archives with leading path components stripped
"""

from __future__ import annotations

import logging
import tarfile
from pathlib import Path, PurePosixPath

from emcomm_isogen.errors import ExtractionError

logger = logging.getLogger(__name__)

SKEL_DIR = Path("etc") / "skel"


def write_file(path: Path, content: str, mode: int = 0o644) -> Path:
    """Write a whole file, creating parent directories.

    Args:
        path: Destination file.
        content: Full file content.
        mode: Permission bits applied after writing.

    Returns:
        The written path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(mode)
    logger.debug("Wrote %s", path)
    return path


def _strip(name: str, components: int) -> str | None:
    parts = PurePosixPath(name).parts[components:]
    return str(PurePosixPath(*parts)) if parts else None


def extract_tarball(archive_path: Path, dest_dir: Path, strip_components: int = 0) -> int:
    """Extract a tar archive, dropping leading path components.

    Members are checked for absolute paths and parent references and
    extracted with the ``data`` filter.

    Args:
        archive_path: Archive file (any compression tarfile supports).
        dest_dir: Destination directory.
        strip_components: Leading path components to drop from each member.

    Returns:
        Number of members extracted.

    Raises:
        ExtractionError: If the archive is unreadable, empty or unsafe.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r:*") as tar:
            members: list[tarfile.TarInfo] = []
            for member in tar.getmembers():
                member_path = PurePosixPath(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ExtractionError(
                        f"Refusing to extract {member.name}: path traversal detected",
                        code="path_traversal",
                    )
                name = _strip(member.name, strip_components)
                if name is None:
                    continue
                changes: dict[str, str] = {"name": name}
                if member.islnk():
                    linkname = _strip(member.linkname, strip_components)
                    if linkname is None:
                        continue
                    changes["linkname"] = linkname
                members.append(member.replace(**changes, deep=False))

            if not members:
                raise ExtractionError(
                    f"Archive {archive_path.name} is empty", code="empty_archive"
                )
            tar.extractall(dest_dir, members=members, filter="data")
    except tarfile.TarError as e:
        raise ExtractionError(
            f"Failed to extract {archive_path.name}: {e}", code="tar_error"
        ) from e

    logger.debug("Extracted %d members of %s to %s", len(members), archive_path.name, dest_dir)
    return len(members)


__all__ = ["SKEL_DIR", "extract_tarball", "write_file"]
