"""Build ORM models.

This module defines the BuildRecord model, the history of image builds
with their inputs, outcome and verification summary.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from emcomm_isogen.db import Base
from emcomm_isogen.types import BuildStatus


class BuildRecord(Base):
    """ORM model for build execution records.

    Attributes:
        id: Primary key.
        release_mode: stable, latest or tag.
        release_tag: Resolved release tag (None until resolved).
        status: Build status (pending, running, succeeded, failed).
        requested_at: Timestamp when the build was requested.
        started_at: Timestamp when the build started executing.
        finished_at: Timestamp when the build finished.
        input_snapshot: Non-secret build inputs.
        output_path: Path of the produced image.
        log_path: Path to the build log file.
        steps: Customization step outcomes.
        verification: Verification report.
        error_type: Type of error if the build failed.
        error_message: Error message if the build failed.
    """

    __tablename__ = "build_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    release_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    release_tag: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BuildStatus.PENDING.value, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    input_snapshot: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)

    # Paths
    output_path: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Results
    steps: Mapped[list[dict[str, object]] | None] = mapped_column(JSON, nullable=True)
    verification: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)

    # Error tracking
    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_build_records_tag_status", "release_tag", "status"),)

    def __repr__(self) -> str:
        """Return string representation of BuildRecord."""
        return (
            f"<BuildRecord(id={self.id}, release_tag='{self.release_tag}', "
            f"status='{self.status}')>"
        )

    def mark_running(self) -> None:
        """Mark this build as running."""
        self.status = BuildStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_succeeded(self) -> None:
        """Mark this build as succeeded."""
        self.status = BuildStatus.SUCCEEDED.value
        self.finished_at = datetime.now()

    def mark_failed(self, error_type: str | None = None, message: str | None = None) -> None:
        """Mark this build as failed.

        Args:
            error_type: Error code or exception type.
            message: Error message details.
        """
        self.status = BuildStatus.FAILED.value
        self.finished_at = datetime.now()
        if error_type:
            self.error_type = error_type
        if message:
            self.error_message = message

    def is_succeeded(self) -> bool:
        """Check if this build succeeded."""
        return self.status == BuildStatus.SUCCEEDED.value


__all__ = ["BuildRecord"]
