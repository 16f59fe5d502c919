"""CachedArtifact ORM model.

This module defines the CachedArtifact model, the index of large files
kept in the artifact cache. Presence on disk decides whether a file is
re-downloaded; the index only records where a file came from and its
checksum so the cache can be verified on demand.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from emcomm_isogen.db import Base
from emcomm_isogen.types import ArtifactState


class CachedArtifact(Base):
    """ORM model for files held in the artifact cache.

    Attributes:
        id: Primary key.
        kind: Artifact kind (base_image, vendor_payload, ...).
        filename: File name inside the cache directory (unique).
        url: URL the file was downloaded from.
        path: Absolute path of the cached file.
        size_bytes: Size recorded after download.
        sha256: Checksum recorded after download.
        state: pending, ready or broken.
        created_at: When the record was created.
        last_used_at: Most recent build that used the file.
    """

    __tablename__ = "cached_artifacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    path: Mapped[str] = mapped_column(String(1000), nullable=False)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ArtifactState.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """Return string representation of CachedArtifact."""
        return (
            f"<CachedArtifact(id={self.id}, kind='{self.kind}', "
            f"filename='{self.filename}', state='{self.state}')>"
        )

    def mark_ready(self) -> None:
        """Mark this artifact as complete and usable."""
        self.state = ArtifactState.READY.value

    def mark_broken(self) -> None:
        """Mark this artifact as failing verification."""
        self.state = ArtifactState.BROKEN.value


__all__ = ["CachedArtifact"]
