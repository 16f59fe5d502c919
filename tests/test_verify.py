"""Tests for post-build verification."""

import pytest

from emcomm_isogen.commands import CommandResult
from emcomm_isogen.config import BuildConfiguration
from emcomm_isogen.customize import backups, desktop, identity, installer, radio
from emcomm_isogen.customize.files import write_file
from emcomm_isogen.customize.pipeline import BuildContext
from emcomm_isogen.customize.vendor import EXPECTED_PATHS
from emcomm_isogen.errors import CommandError
from emcomm_isogen.inputs import StationInputs
from emcomm_isogen.release.resolver import ResolvedRelease
from emcomm_isogen.types import ReleaseMode, Severity
from emcomm_isogen.verify import CHECKLIST, run_verification

DIREWOLF = "MYCALL {{ET_CALLSIGN}}-{{ET_SSID}}\nMODEM 1200\n"


@pytest.fixture
def built(tmp_path):
    """A context whose trees look like a completed build."""
    config = BuildConfiguration(
        release_mode=ReleaseMode.STABLE,
        cache_dir=tmp_path / "cache",
        work_dir=tmp_path / "work",
        output_dir=tmp_path / "output",
        logs_dir=tmp_path / "logs",
        secrets_file=tmp_path / "secrets.env",
    )
    ctx = BuildContext(config=config, inputs=StationInputs(CALLSIGN="KD0ABC"))
    for path in EXPECTED_PATHS:
        (ctx.rootfs / path).mkdir(parents=True)
    write_file(ctx.rootfs / radio.DIREWOLF_TEMPLATE, DIREWOLF)
    for relative in ("grub.cfg", "loopback.cfg"):
        write_file(
            ctx.iso_dir / "boot" / "grub" / relative,
            "menuentry x {\n\tlinux\t/casper/vmlinuz quiet ---\n}\n",
        )

    identity.hostname(ctx)
    desktop.desktop(ctx)
    radio.aprs_user_config(ctx)
    radio.direwolf_template(ctx)
    installer.preseed(ctx)
    backups.manifest(ctx)

    ctx.output_path = config.output_dir / "custom.iso"
    write_file(ctx.output_path, "image")
    return ctx


def check(report, name):
    return next(c for c in report.checks if c.name == name)


class TestRunVerification:
    """Tests for run_verification."""

    def test_all_pass(self, built):
        """A complete build passes every check."""
        report = run_verification(built)

        assert [c.name for c in report.checks] == [name for name, _, _ in CHECKLIST]
        assert report.failures == 0
        assert report.warnings == 0
        assert report.ok

    def test_missing_image_is_critical(self, built):
        """A missing output image fails a critical check."""
        built.output_path.unlink()
        report = run_verification(built)

        image = check(report, "image-present")
        assert not image.passed
        assert image.severity == Severity.CRITICAL
        assert not report.ok

    def test_hostname_mismatch(self, built):
        """A wrong hostname is reported with both values."""
        (built.rootfs / "etc" / "hostname").write_text("other\n")
        result = check(run_verification(built), "hostname")

        assert not result.passed
        assert "ETC-KD0ABC" in result.detail

    def test_warning_does_not_fail(self, built):
        """Warning-level failures leave the report ok."""
        (built.rootfs / desktop.DESKTOP_KEYFILE).unlink()
        report = run_verification(built)

        assert report.warnings == 1
        assert report.ok

    def test_unpatched_boot_menu(self, built):
        """A boot menu without the preseed arguments fails."""
        write_file(built.iso_dir / "boot" / "grub" / "loopback.cfg", "set timeout=5\n")
        result = check(run_verification(built), "boot-menus")

        assert not result.passed
        assert "loopback.cfg" in result.detail

    def test_placeholders_removed(self, built):
        """A template with no runtime placeholders fails."""
        write_file(built.rootfs / radio.DIREWOLF_TEMPLATE, "MYCALL KD0ABC\n")
        assert not check(run_verification(built), "direwolf-placeholders").passed

    def test_report_to_dict(self, built):
        """The report serializes with counts and checks."""
        data = run_verification(built).to_dict()

        assert data["failures"] == 0
        assert data["passed"] == len(CHECKLIST)
        assert data["checks"][0] == {
            "name": "image-present",
            "severity": "critical",
            "passed": True,
            "detail": "custom.iso (5 bytes)",
        }


class TestImageLabel:
    """Tests for the output volume label check."""

    @pytest.fixture
    def released(self, built):
        built.release = ResolvedRelease(
            tag="emcomm-tools-os-community-20251128-r5-final-5.0.0",
            name="R5",
            payload_url="https://example.com/payload.tar.gz",
        )
        return built

    def _runner(self, label):
        def runner(argv, **kwargs):
            assert argv[-1] == "-pvd_info"
            return CommandResult(argv=argv, returncode=0, stdout=f"Volume Id    : {label}\n")

        return runner

    def test_no_release(self, built):
        """Nothing to compare against without a resolved release."""
        result = check(run_verification(built), "image-label")
        assert result.passed
        assert result.detail == "no release recorded"

    def test_label_matches(self, released):
        """The label read from the image is the release label."""
        released.runner = self._runner("ETC_R5_CUSTOM")
        assert check(run_verification(released), "image-label").passed

    def test_label_mismatch(self, released):
        """A stale label is a critical failure."""
        released.runner = self._runner("Ubuntu 22.10 amd64")
        result = check(run_verification(released), "image-label")

        assert not result.passed
        assert result.severity == Severity.CRITICAL
        assert "ETC_R5_CUSTOM" in result.detail

    def test_unreadable_image(self, released):
        """A failing xorriso fails the check instead of the pass."""

        def runner(argv, **kwargs):
            raise CommandError(argv, exit_code=5)

        released.runner = runner
        assert not check(run_verification(released), "image-label").passed
