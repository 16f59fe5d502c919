"""Tests for iso/rebuild.py module."""

import hashlib
from pathlib import Path
from unittest.mock import patch

import pytest

from emcomm_isogen.commands import CommandResult
from emcomm_isogen.errors import CommandError, ImageRebuildError
from emcomm_isogen.iso.rebuild import (
    parse_boot_report,
    parse_volume_id,
    read_volume_label,
    rebuild_image,
    rebuild_squashfs,
    tree_size_bytes,
    write_md5sums,
)

BOOT_REPORT = """\
-V 'Ubuntu 22.10 amd64'
--modification-date='2022102012345600'
--grub2-mbr --interval:local_fs:0s-15s:zero_mbrpt,zero_gpt:'ubuntu.iso'
--protective-msdos-label
-partition_cyl_align off
-c '/boot.catalog'
-b '/boot/grub/i386-pc/eltorito.img'
-no-emul-boot
"""


class TestParseBootReport:
    """Tests for parse_boot_report."""

    def test_drops_label_and_date(self):
        """Label and modification date are not replayed."""
        options = parse_boot_report(BOOT_REPORT)

        assert "-V" not in options
        assert not any(o.startswith("--modification-date") for o in options)
        assert "--protective-msdos-label" in options
        assert options[options.index("-b") + 1] == "/boot/grub/i386-pc/eltorito.img"

    def test_ignores_non_option_lines(self):
        """Lines not starting with a dash are ignored."""
        assert parse_boot_report("xorriso 1.5.4\n\n") == []


PVD_INFO = """\
xorriso 1.5.4 : RockRidge filesystem manipulator
Volume Id    : ETC_R5_CUSTOM
Volume Set Id:
Publisher Id :
"""


class TestVolumeLabel:
    """Tests for reading the volume label back."""

    def test_parse(self):
        """The Volume Id line gives the label."""
        assert parse_volume_id(PVD_INFO) == "ETC_R5_CUSTOM"

    def test_parse_unlabelled(self):
        """An empty or absent Volume Id means no label."""
        assert parse_volume_id("Volume Id    : \n") is None
        assert parse_volume_id("Publisher Id : x\n") is None

    def test_read_runs_xorriso(self, tmp_path):
        """The image is inspected with xorriso -pvd_info."""
        calls = []

        def runner(argv, **kwargs):
            calls.append(argv)
            return CommandResult(argv=argv, returncode=0, stdout=PVD_INFO)

        iso = tmp_path / "out.iso"
        assert read_volume_label(iso, runner=runner) == "ETC_R5_CUSTOM"
        assert calls == [["xorriso", "-indev", str(iso), "-pvd_info"]]

class TestWriteMd5sums:
    """Tests for write_md5sums."""

    def test_lists_files_sorted(self, tmp_path):
        """Should list every file except md5sum.txt and boot.catalog."""
        (tmp_path / "casper").mkdir()
        (tmp_path / "casper" / "vmlinuz").write_bytes(b"kernel")
        (tmp_path / "boot.catalog").write_bytes(b"cat")
        (tmp_path / "md5sum.txt").write_text("old")
        (tmp_path / "README").write_text("hi")

        count = write_md5sums(tmp_path)

        lines = (tmp_path / "md5sum.txt").read_text().splitlines()
        assert count == 2
        assert lines == [
            f"{hashlib.md5(b'hi').hexdigest()}  ./README",
            f"{hashlib.md5(b'kernel').hexdigest()}  ./casper/vmlinuz",
        ]


class TestRebuildSquashfs:
    """Tests for rebuild_squashfs."""

    def test_replaces_squashfs_and_size(self, tmp_path):
        """The new squashfs replaces the old one and filesystem.size is refreshed."""
        rootfs = tmp_path / "rootfs"
        (rootfs / "etc").mkdir(parents=True)
        (rootfs / "etc" / "hostname").write_text("ETC-KD0ABC\n")
        squashfs = tmp_path / "iso" / "casper" / "filesystem.squashfs"
        squashfs.parent.mkdir(parents=True)
        squashfs.write_bytes(b"old")
        calls = []

        def runner(argv, **kwargs):
            calls.append(argv)
            Path(argv[2]).write_bytes(b"new")
            return CommandResult(argv=argv, returncode=0)

        with patch("emcomm_isogen.iso.rebuild.run_command", runner):
            rebuild_squashfs(rootfs, squashfs, tmp_path, compression="xz")

        assert squashfs.read_bytes() == b"new"
        assert calls[0][:3] == ["mksquashfs", str(rootfs), str(tmp_path / "filesystem.squashfs.new")]
        assert "-Xbcj" in calls[0]
        size = (squashfs.parent / "filesystem.size").read_text().strip()
        assert int(size) == tree_size_bytes(rootfs) == len("ETC-KD0ABC\n")

    def test_failure_keeps_original(self, tmp_path):
        """A failed mksquashfs leaves the old squashfs in place."""
        squashfs = tmp_path / "filesystem.squashfs"
        squashfs.write_bytes(b"old")

        def runner(argv, **kwargs):
            raise CommandError(argv, exit_code=1)

        with (
            patch("emcomm_isogen.iso.rebuild.run_command", runner),
            pytest.raises(ImageRebuildError) as exc_info,
        ):
            rebuild_squashfs(tmp_path / "rootfs", squashfs, tmp_path)

        assert exc_info.value.code == "mksquashfs_failed"
        assert squashfs.read_bytes() == b"old"


class TestRebuildImage:
    """Tests for rebuild_image."""

    def _runner(self, calls, write_output=True):
        def runner(argv, **kwargs):
            calls.append(argv)
            if "-report_el_torito" in argv:
                return CommandResult(argv=argv, returncode=0, stdout=BOOT_REPORT)
            if write_output:
                Path(argv[argv.index("-o") + 1]).write_bytes(b"ISO")
            return CommandResult(argv=argv, returncode=0)

        return runner

    def test_writes_image_with_label(self, tmp_path):
        """Should replay boot options and stamp the new label."""
        calls = []
        output = tmp_path / "out" / "custom.iso"
        with patch("emcomm_isogen.iso.rebuild.run_command", self._runner(calls)):
            path = rebuild_image(tmp_path / "base.iso", tmp_path / "iso", output, "ETC_R5_CUSTOM")

        assert path == output
        assert output.read_bytes() == b"ISO"
        write_argv = calls[1]
        assert write_argv[write_argv.index("-V") + 1] == "ETC_R5_CUSTOM"
        assert "--protective-msdos-label" in write_argv
        assert not (tmp_path / "out" / "custom.iso.tmp").exists()

    def test_empty_output_is_error(self, tmp_path):
        """No image written by xorriso fails and leaves no output."""
        output = tmp_path / "custom.iso"
        runner = self._runner([], write_output=False)
        with (
            patch("emcomm_isogen.iso.rebuild.run_command", runner),
            pytest.raises(ImageRebuildError) as exc_info,
        ):
            rebuild_image(tmp_path / "base.iso", tmp_path / "iso", output, "L")

        assert exc_info.value.code == "empty_image"
        assert not output.exists()

    def test_no_boot_equipment(self, tmp_path):
        """A base image without boot setup cannot be rebuilt."""

        def runner(argv, **kwargs):
            return CommandResult(argv=argv, returncode=0, stdout="")

        with (
            patch("emcomm_isogen.iso.rebuild.run_command", runner),
            pytest.raises(ImageRebuildError) as exc_info,
        ):
            rebuild_image(tmp_path / "base.iso", tmp_path / "iso", tmp_path / "o.iso", "L")
        assert exc_info.value.code == "no_boot_equipment"
