"""External command execution for emcomm_isogen.

This module handles:
- Running external tools (xorriso, unsquashfs, mount, chroot, ...) with list args
- Capturing output to per-command log files or in memory
- Attaching the operator's terminal for interactive installers
- Mapping failures and timeouts to CommandError
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from emcomm_isogen.errors import CommandError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of an external command.

    Attributes:
        argv: The command that was executed.
        returncode: Process exit code.
        stdout: Captured output (empty when output went to a log file).
        stderr: Captured standard error (empty when not captured).
        log_path: Log file receiving the output, if any.
    """

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    log_path: Path | None = None

    @property
    def ok(self) -> bool:
        """Whether the command exited successfully."""
        return self.returncode == 0


def chroot_argv(root: Path, argv: list[str]) -> list[str]:
    """Wrap a command so it executes inside ``root``."""
    return ["chroot", str(root), *argv]


def _merged_env(env_override: dict[str, str] | None) -> dict[str, str] | None:
    if not env_override:
        return None
    env = dict(os.environ)
    env.update(env_override)
    return env


def run_command(
    argv: list[str],
    *,
    check: bool = True,
    log_path: Path | None = None,
    input_text: str | None = None,
    env_override: dict[str, str] | None = None,
    cwd: Path | None = None,
    timeout: float | None = None,
    interactive: bool = False,
    stdin_devnull: bool = False,
) -> CommandResult:
    """Run an external command.

    Output handling depends on the arguments: with ``interactive`` the
    command shares the operator's terminal; with ``log_path`` stdout and
    stderr are appended to that file behind a header; otherwise output is
    captured and returned.

    Args:
        argv: Command and arguments.
        check: Raise CommandError on a non-zero exit code.
        log_path: Append output to this log file.
        input_text: Text passed on stdin (captured mode only).
        env_override: Environment variables added to the current environment.
        cwd: Working directory.
        timeout: Timeout in seconds (None = no timeout).
        interactive: Attach the terminal to the command.
        stdin_devnull: Attach /dev/null to stdin so prompts fail fast.

    Returns:
        CommandResult with exit code and captured output.

    Raises:
        CommandError: If the command cannot start, times out or fails with check.
    """
    cmd_str = shlex.join(argv)
    logger.debug("Running: %s", cmd_str)
    env = _merged_env(env_override)
    stdin = subprocess.DEVNULL if stdin_devnull else None
    started_at = datetime.now(timezone.utc)

    try:
        if interactive:
            proc = subprocess.run(
                argv, cwd=cwd, env=env, timeout=timeout, check=False
            )
            result = CommandResult(argv=argv, returncode=proc.returncode)

        elif log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write("# " + "=" * 70 + "\n")
                log_file.flush()

                proc = subprocess.run(
                    argv,
                    cwd=cwd,
                    env=env,
                    stdin=stdin,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=timeout,
                    check=False,
                )

                finished_at = datetime.now(timezone.utc)
                duration = (finished_at - started_at).total_seconds()
                log_file.write(f"\n# Exit code: {proc.returncode}\n")
                log_file.write(f"# Duration: {duration:.1f}s\n\n")
            result = CommandResult(
                argv=argv, returncode=proc.returncode, log_path=log_path
            )

        else:
            proc = subprocess.run(
                argv,
                cwd=cwd,
                env=env,
                input=input_text,
                stdin=stdin if input_text is None else None,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
            result = CommandResult(
                argv=argv,
                returncode=proc.returncode,
                stdout=proc.stdout or "",
                stderr=proc.stderr or "",
            )

    except subprocess.TimeoutExpired as e:
        raise CommandError(
            argv, exit_code=-1, log_path=log_path, code="command_timeout"
        ) from e
    except OSError as e:
        raise CommandError(
            argv, exit_code=None, stderr=str(e), code="command_not_found"
        ) from e

    if check and not result.ok:
        logger.error("Command failed (%d): %s", result.returncode, cmd_str)
        raise CommandError(
            argv,
            exit_code=result.returncode,
            log_path=result.log_path,
            stderr=result.stderr,
        )
    return result


__all__ = ["CommandResult", "chroot_argv", "run_command"]
