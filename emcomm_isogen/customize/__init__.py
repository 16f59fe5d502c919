"""Customization of the extracted root filesystem and image tree."""

from emcomm_isogen.customize.pipeline import (
    BuildContext,
    FunctionStep,
    PipelineResult,
    Step,
    StepOutcome,
    run_steps,
)
from emcomm_isogen.customize.steps import default_steps, step_names

__all__ = [
    "BuildContext",
    "FunctionStep",
    "PipelineResult",
    "Step",
    "StepOutcome",
    "default_steps",
    "run_steps",
    "step_names",
]
