"""Tests for preseed generation."""

import pytest

from emcomm_isogen.commands import CommandResult
from emcomm_isogen.errors import CommandError, CustomizationWarning
from emcomm_isogen.inputs import StationInputs
from emcomm_isogen.install.partition import PartitionPlan
from emcomm_isogen.install.preseed import (
    PRESEED_RELATIVE_PATH,
    hash_password,
    render_preseed,
    write_preseed,
)
from emcomm_isogen.types import PartitionStrategy

INPUTS = StationInputs(
    CALLSIGN="KD0ABC",
    USER_FULLNAME="Jane Operator",
    TIMEZONE="America/Chicago",
    KEYBOARD_LAYOUT="de",
)

HASH = "$6$salt$digest"


class TestHashPassword:
    """Tests for hash_password."""

    def test_passes_password_on_stdin(self):
        """The password is sent on stdin, never on the command line."""
        calls = []

        def runner(argv, **kwargs):
            calls.append((argv, kwargs))
            return CommandResult(argv=argv, returncode=0, stdout=HASH + "\n")

        assert hash_password("s3cret", runner=runner) == HASH
        argv, kwargs = calls[0]
        assert "s3cret" not in " ".join(argv)
        assert kwargs["input_text"] == "s3cret\n"

    def test_unexpected_output(self):
        """Output without a SHA-512 prefix is rejected."""

        def runner(argv, **kwargs):
            return CommandResult(argv=argv, returncode=0, stdout="$1$md5\n")

        with pytest.raises(CustomizationWarning):
            hash_password("x", runner=runner)

    def test_openssl_failure(self):
        """openssl failures are warnings, not fatal errors."""

        def runner(argv, **kwargs):
            raise CommandError(argv, exit_code=1)

        with pytest.raises(CustomizationWarning) as exc_info:
            hash_password("x", runner=runner)
        assert exc_info.value.code == "password_hash_failed"


class TestRenderPreseed:
    """Tests for render_preseed."""

    def test_identity_and_locale(self):
        """Station identity and locale are answered."""
        plan = PartitionPlan(PartitionStrategy.REUSE_PARTITION, "/dev/sda5", 2.0)
        text = render_preseed(plan, INPUTS, HASH)

        assert "d-i netcfg/get_hostname string ETC-KD0ABC" in text
        assert "d-i passwd/username string kd0abc" in text
        assert "d-i passwd/user-fullname string Jane Operator" in text
        assert "d-i time/zone string America/Chicago" in text
        assert "d-i keyboard-configuration/xkb-keymap string de" in text
        assert f"d-i passwd/user-password-crypted password {HASH}" in text

    def test_no_password_question_answer_without_hash(self):
        """Without a hash the installer asks for the password."""
        plan = PartitionPlan(PartitionStrategy.REUSE_PARTITION, "/dev/sda5", 2.0)
        assert "user-password-crypted" not in render_preseed(plan, INPUTS)

    def test_reuse_partition(self):
        """Reuse installs grub to the parent disk."""
        plan = PartitionPlan(
            PartitionStrategy.REUSE_PARTITION, "/dev/nvme0n1p3", 2.0, target_partition="/dev/nvme0n1p3"
        )
        text = render_preseed(plan, INPUTS)

        assert "# Partition strategy: reuse-partition" in text
        assert "d-i grub-installer/bootdev string /dev/nvme0n1" in text
        assert "partman-auto/disk" not in text

    def test_entire_disk(self):
        """Entire disk uses the atomic recipe on the disk."""
        plan = PartitionPlan(PartitionStrategy.ENTIRE_DISK, "/dev/sda", 4.0, 250.0)
        text = render_preseed(plan, INPUTS)

        assert "d-i partman-auto/disk string /dev/sda" in text
        assert "d-i partman-auto/choose_recipe select atomic" in text
        assert "d-i grub-installer/bootdev string /dev/sda" in text

    def test_free_space(self):
        """Free space uses a recipe with the planned swap size."""
        plan = PartitionPlan(PartitionStrategy.FREE_SPACE, "/dev/sda", 3.0, 200.0)
        text = render_preseed(plan, INPUTS)

        assert "biggest_free" in text
        assert "3072 512 3072 linux-swap" in text

    def test_strategies_differ(self):
        """Each strategy produces a distinct partitioning section."""
        texts = {
            render_preseed(PartitionPlan(s, "/dev/sda", 2.0), INPUTS)
            for s in PartitionStrategy
        }
        assert len(texts) == len(PartitionStrategy)


class TestWritePreseed:
    """Tests for write_preseed."""

    def test_writes_to_image_root(self, tmp_path):
        """The answer file lands under preseed/ in the image tree."""
        path = write_preseed(tmp_path, "d-i x string y\n")

        assert path == tmp_path / PRESEED_RELATIVE_PATH
        assert path.read_text() == "d-i x string y\n"
        assert path.stat().st_mode & 0o777 == 0o644
