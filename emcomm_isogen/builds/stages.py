"""Top-level build stages.

This module handles:
- Resolving the partition plan up front
- Fetching the base image, vendor payload and add-ons into the cache
- Extracting the image, running the customization pipeline under the
  chroot guard, and rebuilding the image
- Running the verification checklist

Stages run through the same step loop as the customizations. Every stage
except verification is fatal.
"""

from __future__ import annotations

import logging

from emcomm_isogen.chroot import ChrootSession
from emcomm_isogen.customize import BuildContext, FunctionStep, default_steps, run_steps
from emcomm_isogen.customize.installer import plan_partitions
from emcomm_isogen.errors import ConfigurationError
from emcomm_isogen.iso import extract_image, rebuild_image, rebuild_squashfs, write_md5sums
from emcomm_isogen.types import ArtifactKind
from emcomm_isogen.verify import run_verification

logger = logging.getLogger(__name__)

ADDONS_FILENAME = "et-os-addons-main.tar.gz"


def plan(ctx: BuildContext) -> str:
    """Resolve the partition plan before any download or extraction."""
    ctx.partition_plan = plan_partitions(ctx.config, ctx.inputs)
    return f"{ctx.partition_plan.strategy.value} on {ctx.partition_plan.device}"


def fetch_artifacts(ctx: BuildContext) -> str:
    """Ensure the base image, payload and optional add-ons are cached."""
    if ctx.cache is None or ctx.release is None:
        raise ConfigurationError("Cache and release must be set before fetching")
    config = ctx.config
    ctx.base_image = ctx.cache.ensure(
        ArtifactKind.BASE_IMAGE, config.base_image_url, config.base_image_filename
    )
    ctx.payload = ctx.cache.ensure(
        ArtifactKind.VENDOR_PAYLOAD, ctx.release.payload_url, ctx.release.payload_filename
    )
    fetched = [ctx.base_image.name, ctx.payload.name]
    if config.with_addons:
        ctx.addons_archive = ctx.cache.ensure(
            ArtifactKind.ADDONS, config.addons_url, ADDONS_FILENAME
        )
        fetched.append(ctx.addons_archive.name)
    return ", ".join(fetched)


def extract(ctx: BuildContext) -> str:
    """Extract the base image and its root filesystem."""
    if ctx.base_image is None:
        raise ConfigurationError("Base image must be fetched before extraction")
    ctx.extracted = extract_image(
        ctx.base_image, ctx.iso_dir, ctx.rootfs, log_path=ctx.log_path
    )
    return f"root filesystem at {ctx.rootfs}"


def customize(ctx: BuildContext) -> str:
    """Run the customization steps with the chroot mounts held."""
    with ChrootSession(ctx.rootfs, runner=ctx.runner) as session:
        ctx.chroot = session
        try:
            run_steps(ctx, default_steps(), ctx.customizations)
        finally:
            ctx.chroot = None

    result = ctx.customizations
    return (
        f"{len(result.applied)} applied, {len(result.skipped)} skipped, "
        f"{len(result.warnings)} warning(s)"
    )


def rebuild(ctx: BuildContext) -> str:
    """Recompress the root filesystem and write the output image."""
    if ctx.extracted is None or ctx.release is None or ctx.base_image is None:
        raise ConfigurationError("Image must be extracted before rebuilding")
    config = ctx.config
    rebuild_squashfs(
        ctx.rootfs,
        ctx.extracted.squashfs_path,
        config.work_dir,
        compression=config.squashfs_compression,
        block_size=config.squashfs_block_size,
        log_path=ctx.log_path,
    )
    write_md5sums(ctx.iso_dir)

    config.output_dir.mkdir(parents=True, exist_ok=True)
    ctx.output_path = rebuild_image(
        ctx.base_image,
        ctx.iso_dir,
        config.output_dir / ctx.release.output_filename,
        ctx.release.volume_label,
        log_path=ctx.log_path,
    )
    return str(ctx.output_path)


def verify(ctx: BuildContext) -> str:
    """Run the verification checklist."""
    ctx.verification = run_verification(ctx)
    report = ctx.verification
    return f"{report.passed} passed, {report.warnings} warning(s), {report.failures} failure(s)"


BUILD_STAGES: tuple[FunctionStep, ...] = (
    FunctionStep("plan-partitions", plan, fatal=True),
    FunctionStep("fetch-artifacts", fetch_artifacts, fatal=True),
    FunctionStep("extract-image", extract, fatal=True),
    FunctionStep("customize", customize, fatal=True),
    FunctionStep("rebuild-image", rebuild, fatal=True),
    FunctionStep("verify", verify),
)


def build_stages() -> list[FunctionStep]:
    """Build stages in execution order."""
    return list(BUILD_STAGES)


__all__ = [
    "BUILD_STAGES",
    "build_stages",
    "customize",
    "extract",
    "fetch_artifacts",
    "plan",
    "rebuild",
    "verify",
]
