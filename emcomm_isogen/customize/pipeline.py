"""Ordered step execution.

This module handles:
- The build context shared by every stage and customization step
- The Step protocol (name, fatal classification, run)
- The single loop that executes steps, records outcomes and decides
  whether a failure aborts the run or becomes a recorded warning
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from emcomm_isogen.commands import CommandResult, run_command
from emcomm_isogen.config import BuildConfiguration
from emcomm_isogen.errors import ChrootInstallError, IsogenError
from emcomm_isogen.inputs import StationInputs
from emcomm_isogen.types import StepStatus

if TYPE_CHECKING:
    from emcomm_isogen.cache.service import ArtifactCache
    from emcomm_isogen.chroot import ChrootSession
    from emcomm_isogen.install.partition import PartitionPlan
    from emcomm_isogen.iso.extract import ExtractedImage
    from emcomm_isogen.release.resolver import ResolvedRelease
    from emcomm_isogen.verify import VerificationReport

logger = logging.getLogger(__name__)


@dataclass
class BuildContext:
    """Mutable state of one build, handed to every stage and step.

    The configuration and station inputs are fixed for the run; the
    remaining attributes are filled in by the stages as they complete.
    """

    config: BuildConfiguration
    inputs: StationInputs
    log_path: Path | None = None
    runner: Callable[..., CommandResult] = run_command
    cache: ArtifactCache | None = None
    release: ResolvedRelease | None = None
    base_image: Path | None = None
    payload: Path | None = None
    addons_archive: Path | None = None
    extracted: ExtractedImage | None = None
    chroot: ChrootSession | None = None
    partition_plan: PartitionPlan | None = None
    customizations: PipelineResult = field(default_factory=lambda: PipelineResult())
    output_path: Path | None = None
    verification: VerificationReport | None = None

    @property
    def rootfs(self) -> Path:
        """Extracted root filesystem."""
        return self.config.rootfs_dir

    @property
    def iso_dir(self) -> Path:
        """Extracted image tree."""
        return self.config.iso_dir

    def require_chroot(self) -> ChrootSession:
        """Return the active chroot session.

        Raises:
            ChrootInstallError: If no session is active.
        """
        if self.chroot is None:
            raise ChrootInstallError(
                "This step needs an active chroot session", code="chroot_not_mounted"
            )
        return self.chroot


class Step(Protocol):
    """A unit of work in a pipeline.

    ``run`` returns a short summary when it changed something, or None
    when there was nothing to do. Raising from a fatal step aborts the
    pipeline; raising from any other step records a warning.
    """

    name: str
    fatal: bool

    def run(self, ctx: BuildContext) -> str | None: ...


@dataclass(frozen=True)
class FunctionStep:
    """Step backed by a plain function."""

    name: str
    func: Callable[[BuildContext], str | None]
    fatal: bool = False

    def run(self, ctx: BuildContext) -> str | None:
        """Run the step function."""
        return self.func(ctx)


@dataclass
class StepOutcome:
    """Recorded result of one step."""

    name: str
    status: StepStatus
    message: str | None = None
    code: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-serializable dict."""
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "code": self.code,
            "duration_seconds": round(self.duration_seconds, 2),
        }


@dataclass
class PipelineResult:
    """Outcomes of a pipeline run, in execution order."""

    outcomes: list[StepOutcome] = field(default_factory=list)

    def _with_status(self, status: StepStatus) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def applied(self) -> list[StepOutcome]:
        """Steps that changed something."""
        return self._with_status(StepStatus.APPLIED)

    @property
    def skipped(self) -> list[StepOutcome]:
        """Steps that had nothing to do."""
        return self._with_status(StepStatus.SKIPPED)

    @property
    def warnings(self) -> list[StepOutcome]:
        """Best-effort steps that failed."""
        return self._with_status(StepStatus.WARNED)

    @property
    def failed(self) -> StepOutcome | None:
        """The fatal step that aborted the pipeline, if any."""
        failed = self._with_status(StepStatus.FAILED)
        return failed[0] if failed else None


def run_steps(
    ctx: BuildContext,
    steps: Iterable[Step],
    result: PipelineResult | None = None,
) -> PipelineResult:
    """Execute steps in order.

    Args:
        ctx: Build context passed to every step.
        steps: Ordered steps.
        result: Result to append outcomes to (a new one when None).

    Returns:
        PipelineResult with one outcome per executed step.

    Raises:
        IsogenError: Re-raised from a fatal step.
        Exception: Unexpected errors from a fatal step propagate unchanged.
    """
    if result is None:
        result = PipelineResult()

    for step in steps:
        logger.info("Step %s", step.name)
        start = time.monotonic()
        try:
            message = step.run(ctx)
        except Exception as e:
            duration = time.monotonic() - start
            code = e.code if isinstance(e, IsogenError) else type(e).__name__
            text = e.message if isinstance(e, IsogenError) else str(e)
            if step.fatal:
                logger.error("Step %s failed: %s", step.name, text)
                result.outcomes.append(
                    StepOutcome(step.name, StepStatus.FAILED, text, code, duration)
                )
                raise
            logger.warning("Step %s did not complete: %s", step.name, text)
            logger.debug("Step %s traceback", step.name, exc_info=True)
            result.outcomes.append(
                StepOutcome(step.name, StepStatus.WARNED, text, code, duration)
            )
            continue

        duration = time.monotonic() - start
        status = StepStatus.SKIPPED if message is None else StepStatus.APPLIED
        if message:
            logger.info("Step %s: %s", step.name, message)
        result.outcomes.append(StepOutcome(step.name, status, message, None, duration))

    return result


__all__ = [
    "BuildContext",
    "FunctionStep",
    "PipelineResult",
    "Step",
    "StepOutcome",
    "run_steps",
]
