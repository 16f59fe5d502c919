"""Build service module.

This module provides the high-level build API:
- run_build(): pre-flight, release resolution, locked stage execution,
  verification and work tree cleanup, recorded as a BuildRecord
- plan_build(): the dry-run report (release, cache state, partition plan,
  stages) without touching cache, work or output
- Build history queries
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from emcomm_isogen.builds.models import BuildRecord
from emcomm_isogen.builds.preflight import (
    check_prerequisites,
    interrupt_on_sigterm,
    work_dir_lock,
)
from emcomm_isogen.builds.stages import ADDONS_FILENAME, build_stages
from emcomm_isogen.cache import ArtifactCache
from emcomm_isogen.chroot import active_mounts
from emcomm_isogen.commands import CommandResult, run_command
from emcomm_isogen.config import BuildConfiguration
from emcomm_isogen.customize import BuildContext, PipelineResult, run_steps, step_names
from emcomm_isogen.customize.installer import plan_partitions
from emcomm_isogen.errors import ConfigurationError, IsogenError, OfflineModeError
from emcomm_isogen.inputs import StationInputs
from emcomm_isogen.release import ResolvedRelease, resolve_release
from emcomm_isogen.types import ArtifactKind, BuildStatus, ReleaseMode

logger = logging.getLogger(__name__)


class BuildNotFoundError(IsogenError):
    """Raised when a build record is not found."""

    def __init__(self, build_id: int) -> None:
        super().__init__(f"Build not found: {build_id}", code="build_not_found")
        self.build_id = build_id


@dataclass
class BuildResult:
    """Outcome of a build run.

    Attributes:
        success: False when strict verification rejected the image.
        release: Resolved release.
        output_path: Produced image (kept even when verification failed).
        build_id: BuildRecord id, when a database session was given.
        stages: Top-level stage outcomes.
        customizations: Customization step outcomes.
        verification: Verification report as a dict.
        log_path: Build log file.
    """

    success: bool
    release: ResolvedRelease
    output_path: Path | None
    build_id: int | None = None
    stages: PipelineResult = field(default_factory=PipelineResult)
    customizations: PipelineResult = field(default_factory=PipelineResult)
    verification: dict[str, object] | None = None
    log_path: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-serializable dict."""
        return {
            "success": self.success,
            "release": self.release.tag,
            "version": self.release.version,
            "output_path": str(self.output_path) if self.output_path else None,
            "build_id": self.build_id,
            "stages": [o.to_dict() for o in self.stages.outcomes],
            "customizations": [o.to_dict() for o in self.customizations.outcomes],
            "verification": self.verification,
            "log_path": str(self.log_path) if self.log_path else None,
        }


@dataclass
class BuildPlan:
    """What a build would do, as reported by a dry run."""

    release: ResolvedRelease
    artifacts: dict[str, dict[str, object]]
    partition_plan: dict[str, object]
    stages: list[str]
    customization_steps: list[str]
    output_path: Path

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-serializable dict."""
        return {
            "release": self.release.tag,
            "version": self.release.version,
            "artifacts": self.artifacts,
            "partition_plan": self.partition_plan,
            "stages": self.stages,
            "customization_steps": self.customization_steps,
            "output_path": str(self.output_path),
        }


def offline_release(config: BuildConfiguration) -> ResolvedRelease:
    """Describe a release without contacting the release API.

    Only an exact tag can be resolved offline; its payload must already be
    in the cache.

    Raises:
        OfflineModeError: For stable and latest modes.
    """
    if config.release_mode != ReleaseMode.TAG or not config.release_tag:
        raise OfflineModeError(
            "Offline builds need an exact release tag (--release tag --tag NAME)"
        )
    tag = config.release_tag
    return ResolvedRelease(
        tag=tag, name=tag, payload_url=f"{config.release_api_base}/tarball/{tag}"
    )


def resolve_for_build(config: BuildConfiguration, client: httpx.Client) -> ResolvedRelease:
    """Resolve the release selected by the build configuration."""
    if config.offline:
        release = offline_release(config)
        logger.info("Offline mode: using release %s without lookup", release.tag)
        return release
    return resolve_release(
        client,
        config.release_mode,
        config.release_tag,
        api_base=config.release_api_base,
        timeout=config.api_timeout,
    )


def input_snapshot(config: BuildConfiguration, inputs: StationInputs) -> dict[str, Any]:
    """Non-secret record of the build inputs.

    Secret values are masked by their pydantic type.
    """
    return {
        "release_mode": config.release_mode.value,
        "release_tag": config.release_tag,
        "minimal": config.minimal,
        "with_addons": config.with_addons,
        "strict_verification": config.strict_verification,
        "inputs": inputs.model_dump(mode="json"),
    }


def cleanup_work_dir(config: BuildConfiguration) -> bool:
    """Remove the work tree unless mounts are still attached to it.

    Returns:
        True if the work tree was removed.
    """
    remaining = active_mounts(config.rootfs_dir)
    if remaining:
        logger.warning(
            "Keeping %s: still mounted: %s",
            config.work_dir,
            ", ".join(str(p) for p in remaining),
        )
        return False
    if config.work_dir.exists():
        shutil.rmtree(config.work_dir)
        logger.info("Removed work directory %s", config.work_dir)
    return True


def _save(session: Session | None, record: BuildRecord | None) -> None:
    if session is not None and record is not None:
        session.commit()


def run_build(
    config: BuildConfiguration,
    inputs: StationInputs,
    session: Session | None = None,
    client: httpx.Client | None = None,
    runner: Callable[..., CommandResult] = run_command,
    log_path: Path | None = None,
) -> BuildResult:
    """Build a customized image.

    The release is resolved before anything is written, so an unknown
    release leaves cache, work and output untouched. All filesystem work
    happens under an exclusive lock on the work directory.

    Args:
        config: Build configuration.
        inputs: Station inputs.
        session: Database session for the build record and cache index.
        client: HTTPX client (one is created if not provided).
        runner: Command runner for chroot and helper commands.
        log_path: Build log file.

    Returns:
        BuildResult. ``success`` is False only when strict verification
        rejected the image.

    Raises:
        PrerequisiteError: If the host cannot run a build.
        IsogenError: If a fatal stage fails.
        KeyboardInterrupt: On SIGINT or SIGTERM, after cleanup guards ran.
    """
    if config.dry_run:
        raise ConfigurationError("Dry runs are planned with plan_build()", code="dry_run")

    with interrupt_on_sigterm():
        check_prerequisites(config)

        manage_client = client is None
        http = client if client is not None else httpx.Client(follow_redirects=True)
        try:
            release = resolve_for_build(config, http)
            return _execute(config, inputs, release, session, http, runner, log_path)
        finally:
            if manage_client:
                http.close()


def _execute(
    config: BuildConfiguration,
    inputs: StationInputs,
    release: ResolvedRelease,
    session: Session | None,
    client: httpx.Client,
    runner: Callable[..., CommandResult],
    log_path: Path | None,
) -> BuildResult:
    record: BuildRecord | None = None
    if session is not None:
        record = BuildRecord(
            release_mode=config.release_mode.value,
            release_tag=release.tag,
            status=BuildStatus.PENDING.value,
            input_snapshot=input_snapshot(config, inputs),
            log_path=str(log_path) if log_path else None,
        )
        session.add(record)
        record.mark_running()
        session.flush()

    ctx = BuildContext(
        config=config,
        inputs=inputs,
        log_path=log_path,
        runner=runner,
        cache=ArtifactCache(
            config.cache_dir,
            client=client,
            session=session,
            offline=config.offline,
            timeout=config.download_timeout,
        ),
        release=release,
    )
    stages = PipelineResult()

    try:
        with work_dir_lock(config.work_dir):
            run_steps(ctx, build_stages(), stages)
            if not config.keep_work:
                cleanup_work_dir(config)
    except IsogenError as e:
        if record is not None:
            record.steps = [o.to_dict() for o in ctx.customizations.outcomes]
            record.mark_failed(e.code, e.message)
            _save(session, record)
        logger.error("Build failed: %s", e.message)
        if not config.keep_work:
            logger.info("Work directory kept for inspection: %s", config.work_dir)
        raise
    except KeyboardInterrupt:
        if record is not None:
            record.mark_failed("interrupted", "Build interrupted")
            _save(session, record)
        logger.warning("Build interrupted")
        raise
    except Exception as e:
        if record is not None:
            record.steps = [o.to_dict() for o in ctx.customizations.outcomes]
            record.mark_failed(type(e).__name__, str(e))
            _save(session, record)
        logger.error("Build failed: %s", e)
        raise

    report = ctx.verification
    success = True
    if report is not None and not report.ok and config.strict_verification:
        success = False
        logger.error(
            "Strict verification: %d critical check(s) failed; image kept at %s",
            report.failures,
            ctx.output_path,
        )

    result = BuildResult(
        success=success,
        release=release,
        output_path=ctx.output_path,
        stages=stages,
        customizations=ctx.customizations,
        verification=report.to_dict() if report else None,
        log_path=log_path,
    )

    if record is not None:
        record.output_path = str(ctx.output_path) if ctx.output_path else None
        record.steps = [o.to_dict() for o in ctx.customizations.outcomes]
        record.verification = result.verification
        if success:
            record.mark_succeeded()
        else:
            record.mark_failed("verification_failed", "Critical verification checks failed")
        _save(session, record)
        result.build_id = record.id

    logger.info("Build finished: %s", ctx.output_path)
    return result


def plan_build(
    config: BuildConfiguration,
    inputs: StationInputs,
    client: httpx.Client | None = None,
) -> BuildPlan:
    """Report what a build would do without changing anything on disk.

    Args:
        config: Build configuration.
        inputs: Station inputs.
        client: HTTPX client (one is created if not provided).

    Returns:
        BuildPlan.

    Raises:
        NetworkError: If the release cannot be resolved.
        PartitionStrategyError: If no safe partition plan exists.
    """
    manage_client = client is None
    http = client if client is not None else httpx.Client(follow_redirects=True)
    try:
        release = resolve_for_build(config, http)
    finally:
        if manage_client:
            http.close()

    cache = ArtifactCache(config.cache_dir, offline=True)
    wanted = [
        (ArtifactKind.BASE_IMAGE, config.base_image_filename, config.base_image_url),
        (ArtifactKind.VENDOR_PAYLOAD, release.payload_filename, release.payload_url),
    ]
    if config.with_addons:
        wanted.append((ArtifactKind.ADDONS, ADDONS_FILENAME, config.addons_url))

    artifacts: dict[str, dict[str, object]] = {}
    for kind, filename, url in wanted:
        entry = cache.entry(kind, filename)
        artifacts[kind.value] = {
            "filename": filename,
            "url": url,
            "cached": entry.is_present(),
        }

    partition = plan_partitions(config, inputs)
    return BuildPlan(
        release=release,
        artifacts=artifacts,
        partition_plan={
            "strategy": partition.strategy.value,
            "device": partition.device,
            "swap_gb": partition.swap_gb,
            "root_gb": partition.root_gb,
        },
        stages=[s.name for s in build_stages()],
        customization_steps=step_names(),
        output_path=config.output_dir / release.output_filename,
    )


def get_build(session: Session, build_id: int) -> BuildRecord:
    """Get a build record by ID.

    Raises:
        BuildNotFoundError: If build not found.
    """
    build = session.get(BuildRecord, build_id)
    if build is None:
        raise BuildNotFoundError(build_id)
    return build


def list_builds(
    session: Session,
    status: BuildStatus | None = None,
    limit: int = 20,
) -> list[BuildRecord]:
    """List build records, newest first.

    Args:
        session: Database session.
        status: Filter by status.
        limit: Maximum results to return.

    Returns:
        List of BuildRecord instances.
    """
    stmt = select(BuildRecord)
    if status is not None:
        stmt = stmt.where(BuildRecord.status == status.value)
    stmt = stmt.order_by(BuildRecord.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


__all__ = [
    "BuildNotFoundError",
    "BuildPlan",
    "BuildResult",
    "cleanup_work_dir",
    "get_build",
    "input_snapshot",
    "list_builds",
    "offline_release",
    "plan_build",
    "resolve_for_build",
    "run_build",
]
