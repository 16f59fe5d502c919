"""Smoke tests for the CLI.

These tests verify basic CLI functionality without requiring
network access, root privileges, or external tools.
"""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from emcomm_isogen import __version__
from emcomm_isogen.cli import app
from emcomm_isogen.errors import PrerequisiteError

runner = CliRunner()

TAG = "emcomm-tools-os-community-20251128-r5-final-5.0.0"


@pytest.fixture
def env(tmp_path):
    """Point every configured path at a temporary directory."""
    secrets = tmp_path / "secrets.env"
    secrets.write_text("CALLSIGN=KD0ABC\nINSTALL_DISK=/dev/sda5\n")
    values = {
        "EMCOMM_ISO_CACHE_DIR": str(tmp_path / "cache"),
        "EMCOMM_ISO_WORK_DIR": str(tmp_path / "work"),
        "EMCOMM_ISO_OUTPUT_DIR": str(tmp_path / "output"),
        "EMCOMM_ISO_LOGS_DIR": str(tmp_path / "logs"),
        "EMCOMM_ISO_DB_URL": f"sqlite:///{tmp_path}/test.db",
        "EMCOMM_ISO_SECRETS_FILE": str(secrets),
        "EMCOMM_ISO_OFFLINE": "true",
        "EMCOMM_ISO_LOG_LEVEL": "ERROR",
    }
    with patch.dict("os.environ", values):
        yield tmp_path


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "EmComm ISO Generator" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command_shows_all_sections(self, env) -> None:
        """CLI config should show every section."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        for heading in ("Paths:", "Sources:", "Operational:", "Timeouts (seconds):"):
            assert heading in result.stdout
        assert "Secrets file" in result.stdout

    def test_config_json(self, env) -> None:
        """CLI config --json should contain the configured values."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["cache_dir"] == str(env / "cache")
        assert data["offline"] is True
        assert "release_api_base" in data


class TestCLISubcommands:
    """Test that subcommand groups exist."""

    @pytest.mark.parametrize("group", ["cache", "builds"])
    def test_group_help(self, group) -> None:
        """Subcommand groups should show help."""
        result = runner.invoke(app, [group, "--help"])
        assert result.exit_code == 0
        assert "Usage:" in result.stdout


class TestBuildCommand:
    """Test the build command without running a build."""

    def test_tag_mode_needs_tag(self, env) -> None:
        """--release tag without --tag is a configuration error."""
        result = runner.invoke(app, ["build", "--release", "tag", "--dry-run"])
        assert result.exit_code == 2

    def test_missing_secrets(self, env) -> None:
        """A missing station inputs file exits with code 2."""
        result = runner.invoke(
            app,
            ["build", "--secrets", str(env / "none.env"), "--dry-run", "--json"],
        )
        assert result.exit_code == 2
        assert json.loads(result.stdout)["code"] == "secrets_missing"

    def test_dry_run_json(self, env) -> None:
        """A dry run prints the plan and writes nothing."""
        result = runner.invoke(
            app, ["build", "--release", "tag", "--tag", TAG, "--dry-run", "--json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["dry_run"] is True
        assert data["release"] == TAG
        assert data["partition_plan"]["strategy"] == "reuse-partition"
        for name in ("cache", "work", "output", "logs"):
            assert not (env / name).exists()

    def test_dry_run_offline_needs_tag(self, env) -> None:
        """Offline stable builds cannot be resolved."""
        result = runner.invoke(app, ["build", "--dry-run", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["code"] == "offline_mode"

    def test_build_failure_exit_code(self, env) -> None:
        """Prerequisite failures exit with code 2."""
        with patch(
            "emcomm_isogen.builds.service.check_prerequisites",
            side_effect=PrerequisiteError(
                "Building an image requires root privileges", code="not_root"
            ),
        ):
            result = runner.invoke(app, ["build", "--release", "tag", "--tag", TAG, "--json"])
        assert result.exit_code == 2
        assert json.loads(result.stdout)["code"] == "not_root"


class TestPlanPartitionsCommand:
    """Test the plan-partitions command."""

    def test_partition_target_json(self) -> None:
        """A partition target plans a reuse install."""
        result = runner.invoke(app, ["plan-partitions", "/dev/sda5", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["strategy"] == "reuse-partition"
        assert data["target_partition"] == "/dev/sda5"

    def test_entire_disk_requires_confirmation(self) -> None:
        """A whole disk without confirmation exits with code 1."""
        result = runner.invoke(app, ["plan-partitions", "/dev/sda", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["code"] == "entire_disk_unconfirmed"

    def test_entire_disk_confirmed(self) -> None:
        """Confirmation allows the entire-disk plan."""
        result = runner.invoke(app, ["plan-partitions", "/dev/sda", "--confirm-entire-disk"])
        assert result.exit_code == 0
        assert "entire-disk" in result.stdout

    def test_missing_layout_file(self, tmp_path) -> None:
        """An unreadable layout file exits with code 2."""
        result = runner.invoke(
            app,
            ["plan-partitions", "/dev/sda5", "--layout-file", str(tmp_path / "none.json")],
        )
        assert result.exit_code == 2


class TestCacheCommands:
    """Test cache subcommands against an empty cache."""

    def test_cache_info_json(self, env) -> None:
        """cache info reports a missing cache directory."""
        result = runner.invoke(app, ["cache", "info", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["exists"] is False
        assert data["files"] == 0

    def test_cache_list_empty(self, env) -> None:
        """cache list --json returns [] for an empty index."""
        result = runner.invoke(app, ["cache", "list", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_cache_prune(self, env) -> None:
        """cache prune removes partial downloads."""
        cache = env / "cache"
        cache.mkdir()
        (cache / "ubuntu.iso.part").write_bytes(b"x")

        result = runner.invoke(app, ["cache", "prune", "--json"])
        assert result.exit_code == 0
        assert len(json.loads(result.stdout)["pruned"]) == 1
        assert not (cache / "ubuntu.iso.part").exists()

    def test_cache_verify_empty(self, env) -> None:
        """cache verify succeeds with nothing to check."""
        result = runner.invoke(app, ["cache", "verify", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []


class TestBuildsCommands:
    """Test build history subcommands."""

    def test_builds_list_empty(self, env) -> None:
        """builds list --json returns [] with no history."""
        result = runner.invoke(app, ["builds", "list", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_builds_show_missing(self, env) -> None:
        """An unknown build id exits with code 1."""
        result = runner.invoke(app, ["builds", "show", "42"])
        assert result.exit_code == 1
