"""Thin CLI wrapper for emcomm_isogen.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.

Exit codes: 0 success, 1 build failure, 2 prerequisite or configuration
failure, 130 interrupted.
"""

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console

from emcomm_isogen import __version__
from emcomm_isogen.config import (
    BuildConfiguration,
    Settings,
    get_settings,
    print_settings_json,
)
from emcomm_isogen.errors import (
    ConfigurationError,
    IsogenError,
    NetworkError,
    PartitionStrategyError,
    PrerequisiteError,
)
from emcomm_isogen.logging_setup import configure_logging
from emcomm_isogen.types import PartitionStrategy, ReleaseMode

EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_PREREQUISITE = 2
EXIT_INTERRUPTED = 130

app = typer.Typer(
    name="emcomm-isogen",
    help="EmComm ISO Generator - build customized EmComm Tools installer images",
    no_args_is_help=True,
)
console = Console()


def _print_json(data: Any) -> None:
    console.print(
        json.dumps(data, indent=2, default=str),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def _error(message: str, json_output: bool, code: str | None = None) -> None:
    if json_output:
        _print_json({"success": False, "code": code, "message": message})
    else:
        console.print(f"[red]{message}[/red]", soft_wrap=True)


def _session_factory() -> Any:
    from emcomm_isogen.db import open_database

    return open_database()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"emcomm-isogen version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """EmComm ISO Generator - build customized EmComm Tools installer images."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, soft_wrap=True)
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print(f"  Output directory:    {settings.output_dir}")
    console.print(f"  Logs directory:      {settings.logs_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  Secrets file:        {settings.secrets_file}")
    console.print()
    console.print("[bold]Sources:[/bold]")
    console.print(f"  Release API:         {settings.release_api_base}")
    console.print(f"  Base image:          {settings.base_image_url}")
    console.print(f"  Add-ons:             {settings.addons_url}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Offline mode:        {settings.offline}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Strict verification: {settings.strict_verification}")
    console.print(
        f"  squashfs:            {settings.squashfs_compression}, "
        f"block {settings.squashfs_block_size}"
    )
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  API timeout:         {settings.api_timeout}")
    console.print(f"  Download timeout:    {settings.download_timeout}")


def _print_plan(plan: Any) -> None:
    console.print(f"[bold]Release:[/bold] {plan.release.tag} (version {plan.release.version})")
    console.print()
    console.print("[bold]Artifacts:[/bold]")
    for kind, info in plan.artifacts.items():
        state = "[green]cached[/green]" if info["cached"] else "[yellow]download[/yellow]"
        console.print(f"  {kind}: {info['filename']} ({state})")
    console.print()
    partition = plan.partition_plan
    console.print(
        f"[bold]Partitioning:[/bold] {partition['strategy']} on {partition['device']} "
        f"(swap {partition['swap_gb']:.1f} GiB)"
    )
    console.print()
    console.print("[bold]Stages:[/bold] " + ", ".join(plan.stages))
    console.print("[bold]Customizations:[/bold] " + ", ".join(plan.customization_steps))
    console.print()
    console.print(f"[bold]Output:[/bold] {plan.output_path}")


def _print_result(result: Any) -> None:
    for outcome in result.customizations.outcomes:
        color = {
            "applied": "green",
            "skipped": "dim",
            "warned": "yellow",
            "failed": "red",
        }.get(outcome.status.value, "white")
        message = f": {outcome.message}" if outcome.message else ""
        console.print(f"  [{color}]{outcome.status.value:8}[/{color}] {outcome.name}{message}")
    console.print()
    if result.verification:
        v = result.verification
        console.print(
            f"[bold]Verification:[/bold] {v['passed']} passed, "
            f"{v['warnings']} warning(s), {v['failures']} failure(s)"
        )
    if result.success:
        console.print(f"[green]✓ Image ready: {result.output_path}[/green]")
    else:
        console.print(
            f"[red]Critical verification failures; image kept at {result.output_path}[/red]"
        )
    if result.log_path:
        console.print(f"  Log: {result.log_path}")


@app.command()
def build(
    release: Annotated[
        ReleaseMode,
        typer.Option("--release", "-r", help="Release selection: stable, latest or tag"),
    ] = ReleaseMode.STABLE,
    tag: Annotated[
        str | None,
        typer.Option("--tag", "-t", help="Exact release tag (with --release tag)"),
    ] = None,
    secrets: Annotated[
        Path | None,
        typer.Option("--secrets", "-s", help="Station inputs file (secrets.env)"),
    ] = None,
    minimal: Annotated[
        bool,
        typer.Option("--minimal", "-m", help="Do not embed cached artifacts in the image"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Resolve and plan only; change nothing"),
    ] = False,
    confirm_entire_disk: Annotated[
        bool,
        typer.Option(
            "--confirm-entire-disk",
            help="Allow the installer to erase the whole target disk",
        ),
    ] = False,
    keep_work: Annotated[
        bool,
        typer.Option("--keep-work", help="Keep the working directory after the build"),
    ] = False,
    with_addons: Annotated[
        bool,
        typer.Option("--with-addons", help="Merge the et-os-addons overlay"),
    ] = False,
    strict_verification: Annotated[
        bool,
        typer.Option(
            "--strict-verification",
            help="Exit non-zero when critical verification checks fail",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build a customized EmComm Tools installer image."""
    from emcomm_isogen.builds.service import plan_build, run_build
    from emcomm_isogen.db import get_session
    from emcomm_isogen.inputs import load_station_inputs

    settings: Settings = get_settings()
    if secrets is not None:
        settings = settings.model_copy(update={"secrets_file": secrets})

    try:
        build_config = BuildConfiguration.from_settings(
            settings,
            release_mode=release,
            release_tag=tag,
            minimal=minimal,
            dry_run=dry_run,
            confirm_entire_disk=confirm_entire_disk,
            keep_work=keep_work,
            with_addons=with_addons,
            strict_verification=strict_verification,
        )
    except ConfigurationError as e:
        _error(e.message, json_output, e.code)
        raise typer.Exit(code=EXIT_PREREQUISITE) from None

    # Dry runs log to the console only
    log_path = configure_logging(
        None if dry_run else build_config.logs_dir, settings.log_level
    )

    try:
        inputs = load_station_inputs(build_config.secrets_file)
        if dry_run:
            plan = plan_build(build_config, inputs)
            if json_output:
                _print_json({"dry_run": True, **plan.to_dict()})
            else:
                console.print("[bold][DRY RUN][/bold] Nothing will be written")
                console.print()
                _print_plan(plan)
            return

        with get_session(_session_factory()) as session:
            result = run_build(build_config, inputs, session=session, log_path=log_path)
    except KeyboardInterrupt:
        _error("Build interrupted", json_output, "interrupted")
        raise typer.Exit(code=EXIT_INTERRUPTED) from None
    except (PrerequisiteError, ConfigurationError) as e:
        _error(e.message, json_output, e.code)
        raise typer.Exit(code=EXIT_PREREQUISITE) from None
    except IsogenError as e:
        _error(f"Build failed: {e.message}", json_output, e.code)
        if log_path:
            console.print(f"  Log: {log_path}")
        raise typer.Exit(code=EXIT_BUILD_FAILED) from None

    if json_output:
        _print_json(result.to_dict())
    else:
        _print_result(result)
    if not result.success:
        raise typer.Exit(code=EXIT_BUILD_FAILED)


@app.command()
def releases(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List recent EmComm Tools releases and tags."""
    import httpx

    from emcomm_isogen.release import list_releases

    settings = get_settings()
    try:
        with httpx.Client(follow_redirects=True) as client:
            listing = list_releases(
                client, api_base=settings.release_api_base, timeout=settings.api_timeout
            )
    except NetworkError as e:
        _error(f"Failed to list releases: {e.message}", json_output, e.code)
        raise typer.Exit(code=EXIT_BUILD_FAILED) from None

    if json_output:
        _print_json(listing)
        return

    console.print("[bold]Releases:[/bold]")
    for r in listing["releases"]:
        console.print(f"  {r['tag']}  {r['published_at'] or ''}")
    console.print()
    console.print("[bold]Tags:[/bold]")
    for t in listing["tags"]:
        console.print(f"  {t['tag']}")


@app.command("plan-partitions")
def plan_partitions_cmd(
    install_disk: Annotated[
        str,
        typer.Argument(help="Install target (disk such as /dev/sda or partition /dev/sda5)"),
    ],
    layout_file: Annotated[
        Path | None,
        typer.Option("--layout-file", "-l", help="lsblk --json --bytes output from the target"),
    ] = None,
    probe: Annotated[
        bool,
        typer.Option("--probe", help="Inspect the disk on this machine with lsblk"),
    ] = False,
    strategy: Annotated[
        PartitionStrategy | None,
        typer.Option("--strategy", help="Override the detected strategy"),
    ] = None,
    swap_gb: Annotated[
        float | None,
        typer.Option("--swap-gb", help="Swap size in GiB"),
    ] = None,
    confirm_entire_disk: Annotated[
        bool,
        typer.Option("--confirm-entire-disk", help="Allow erasing the whole disk"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the partition plan the installer would use."""
    from emcomm_isogen.install.partition import (
        layout_from_target,
        load_layout_file,
        partition_parent,
        probe_layout,
        resolve_partition_plan,
    )

    try:
        if layout_file is not None:
            layout = load_layout_file(layout_file, install_disk)
        elif probe:
            layout = probe_layout(partition_parent(install_disk) or install_disk)
        else:
            layout = layout_from_target(install_disk)
        plan = resolve_partition_plan(
            layout,
            override=strategy,
            confirm_entire_disk=confirm_entire_disk,
            swap_override_gb=swap_gb,
        )
    except PartitionStrategyError as e:
        _error(e.message, json_output, e.code)
        raise typer.Exit(code=EXIT_BUILD_FAILED) from None
    except OSError as e:
        _error(f"Cannot read layout: {e}", json_output, "layout_unreadable")
        raise typer.Exit(code=EXIT_PREREQUISITE) from None

    output = {
        "strategy": plan.strategy.value,
        "device": plan.device,
        "swap_gb": plan.swap_gb,
        "root_gb": plan.root_gb,
        "target_partition": plan.target_partition,
    }
    if json_output:
        _print_json(output)
        return
    console.print(f"[bold]Strategy:[/bold] {plan.strategy.value}")
    console.print(f"  Device: {plan.device}")
    console.print(f"  Swap: {plan.swap_gb:.1f} GiB")
    if plan.root_gb is not None:
        console.print(f"  Root: {plan.root_gb:.1f} GiB")


cache_app = typer.Typer(help="Manage the artifact cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("list")
def cache_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List indexed cache artifacts."""
    from emcomm_isogen.cache import list_artifacts
    from emcomm_isogen.cache.service import format_size

    factory = _session_factory()
    with factory() as session:
        artifacts = list_artifacts(session)

        if not artifacts:
            if json_output:
                console.print("[]", markup=False)
            else:
                console.print("[yellow]No cached artifacts[/yellow]")
            return

        if json_output:
            _print_json(
                [
                    {
                        "kind": a.kind,
                        "filename": a.filename,
                        "path": a.path,
                        "url": a.url,
                        "size_bytes": a.size_bytes,
                        "sha256": a.sha256,
                        "state": a.state,
                        "last_used_at": a.last_used_at.isoformat()
                        if a.last_used_at
                        else None,
                    }
                    for a in artifacts
                ]
            )
            return

        console.print(f"[bold]Found {len(artifacts)} cached artifact(s):[/bold]")
        console.print()
        for a in artifacts:
            color = {"ready": "green", "pending": "yellow", "broken": "red"}.get(
                a.state, "white"
            )
            console.print(f"  [{color}]{a.filename}[/{color}]")
            console.print(f"    Kind: {a.kind}")
            console.print(f"    State: {a.state}")
            if a.size_bytes is not None:
                console.print(f"    Size: {format_size(a.size_bytes)}")
            console.print()


@cache_app.command("info")
def cache_info(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show artifact cache information."""
    from emcomm_isogen.cache import get_cache_info

    info = get_cache_info(get_settings().cache_dir)
    if json_output:
        _print_json(info)
        return
    console.print("[bold]Artifact Cache Information:[/bold]")
    console.print()
    console.print(f"  Cache directory: {info['cache_dir']}")
    console.print(f"  Exists: {info['exists']}")
    console.print(f"  Files: {info['files']}")
    console.print(f"  Total size: {info['total_size_human']}")


@cache_app.command("verify")
def cache_verify(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Re-hash cached artifacts against their recorded checksums."""
    from emcomm_isogen.cache import verify_artifacts
    from emcomm_isogen.db import get_session

    with get_session(_session_factory()) as session:
        checks = verify_artifacts(session)

    bad = [c for c in checks if c.status in ("missing", "mismatch")]
    if json_output:
        _print_json(
            [
                {
                    "filename": c.filename,
                    "status": c.status,
                    "expected_sha256": c.expected_sha256,
                    "actual_sha256": c.actual_sha256,
                }
                for c in checks
            ]
        )
    else:
        if not checks:
            console.print("[yellow]No cached artifacts to verify[/yellow]")
        for c in checks:
            color = {"ok": "green", "unrecorded": "yellow"}.get(c.status, "red")
            console.print(f"  [{color}]{c.status:10}[/{color}] {c.filename}")
    if bad:
        raise typer.Exit(code=EXIT_BUILD_FAILED)


@cache_app.command("prune")
def cache_prune(
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run", "-n", help="Show what would be pruned without actually pruning"
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Remove partial downloads from the cache."""
    from emcomm_isogen.cache import prune_partials

    removed = prune_partials(get_settings().cache_dir, dry_run=dry_run)
    if json_output:
        _print_json({"dry_run": dry_run, "pruned": [str(p) for p in removed]})
        return
    if not removed:
        console.print("[yellow]No partial downloads to prune[/yellow]")
        return
    prefix = "[DRY RUN] Would remove" if dry_run else "Removed"
    console.print(f"[bold]{prefix} {len(removed)} partial download(s):[/bold]")
    for p in removed:
        console.print(f"  - {p}")


builds_app = typer.Typer(help="Inspect build history")
app.add_typer(builds_app, name="builds")


@builds_app.command("list")
def builds_list(
    status: Annotated[
        str | None,
        typer.Option(
            "--status", "-s", help="Filter by status (pending/running/succeeded/failed)"
        ),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 20,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List build records."""
    from emcomm_isogen.builds.service import list_builds
    from emcomm_isogen.types import BuildStatus

    status_filter: BuildStatus | None = None
    if status:
        try:
            status_filter = BuildStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: pending, running, succeeded, failed")
            raise typer.Exit(code=EXIT_PREREQUISITE) from None

    factory = _session_factory()
    with factory() as session:
        builds = list_builds(session, status=status_filter, limit=limit)

        if not builds:
            if json_output:
                console.print("[]", markup=False)
            else:
                console.print("[yellow]No build records found[/yellow]")
            return

        if json_output:
            _print_json(
                [
                    {
                        "id": b.id,
                        "release_mode": b.release_mode,
                        "release_tag": b.release_tag,
                        "status": b.status,
                        "requested_at": b.requested_at.isoformat()
                        if b.requested_at
                        else None,
                        "started_at": b.started_at.isoformat() if b.started_at else None,
                        "finished_at": b.finished_at.isoformat() if b.finished_at else None,
                        "output_path": b.output_path,
                        "log_path": b.log_path,
                        "error_type": b.error_type,
                        "error_message": b.error_message,
                    }
                    for b in builds
                ]
            )
            return

        console.print(f"[bold]Found {len(builds)} build(s):[/bold]")
        console.print()
        for b in builds:
            status_color = {
                "succeeded": "green",
                "failed": "red",
                "running": "blue",
                "pending": "yellow",
            }.get(b.status, "white")
            console.print(f"  [{status_color}]Build #{b.id}[/{status_color}]")
            console.print(f"    Release: {b.release_tag or b.release_mode}")
            console.print(f"    Status: {b.status}")
            console.print(
                f"    Requested: {b.requested_at.isoformat() if b.requested_at else 'N/A'}"
            )
            if b.output_path:
                console.print(f"    Output: {b.output_path}")
            if b.error_message:
                console.print(f"    Error: {b.error_message}")
            console.print()


@builds_app.command("show")
def builds_show(
    build_id: Annotated[int, typer.Argument(help="Build record ID")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show a build record with its step outcomes."""
    from emcomm_isogen.builds.service import BuildNotFoundError, get_build

    factory = _session_factory()
    with factory() as session:
        try:
            b = get_build(session, build_id)
        except BuildNotFoundError as e:
            _error(e.message, json_output, e.code)
            raise typer.Exit(code=EXIT_BUILD_FAILED) from None

        data = {
            "id": b.id,
            "release_tag": b.release_tag,
            "status": b.status,
            "output_path": b.output_path,
            "log_path": b.log_path,
            "steps": b.steps or [],
            "verification": b.verification,
            "error_type": b.error_type,
            "error_message": b.error_message,
        }
        if json_output:
            _print_json(data)
            return

        console.print(f"[bold]Build #{b.id}[/bold] {b.release_tag or ''}")
        console.print(f"  Status: {b.status}")
        if b.output_path:
            console.print(f"  Output: {b.output_path}")
        if b.log_path:
            console.print(f"  Log: {b.log_path}")
        for step in b.steps or []:
            console.print(f"  {step['status']:8} {step['name']}", markup=False)
        if b.error_message:
            console.print(f"  [red]Error: {b.error_message}[/red]")


if __name__ == "__main__":
    app()
