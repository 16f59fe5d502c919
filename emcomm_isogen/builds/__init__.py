"""Build orchestration.

This module handles:
- Pre-flight checks, the work directory lock and interrupt handling
- The ordered build stages
- Build execution, dry-run planning and the build history
"""

from emcomm_isogen.builds.models import BuildRecord
from emcomm_isogen.builds.preflight import check_prerequisites, work_dir_lock
from emcomm_isogen.builds.service import (
    BuildNotFoundError,
    BuildPlan,
    BuildResult,
    get_build,
    list_builds,
    plan_build,
    run_build,
)

__all__ = [
    # Models
    "BuildRecord",
    # Pre-flight
    "check_prerequisites",
    "work_dir_lock",
    # Service
    "BuildNotFoundError",
    "BuildPlan",
    "BuildResult",
    "get_build",
    "list_builds",
    "plan_build",
    "run_build",
]
