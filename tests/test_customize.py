"""Tests for the customization steps.

Steps run against a root filesystem under tmp_path. Commands that would
run inside the chroot go to FakeChroot, which records them.
"""

import io
import json
import os
import tarfile
import time

import pytest

from emcomm_isogen.commands import CommandResult
from emcomm_isogen.config import BuildConfiguration
from emcomm_isogen.customize import (
    addons,
    backups,
    desktop,
    identity,
    installer,
    network,
    radio,
    vendor,
)
from emcomm_isogen.customize.files import extract_tarball, write_file
from emcomm_isogen.customize.pipeline import BuildContext, StepOutcome
from emcomm_isogen.errors import (
    ChrootInstallError,
    CommandError,
    CustomizationWarning,
    ExtractionError,
    PartitionStrategyError,
)
from emcomm_isogen.inputs import StationInputs, parse_wifi_networks
from emcomm_isogen.release.resolver import ResolvedRelease
from emcomm_isogen.types import PartitionStrategy, ReleaseMode, StepStatus

HASH = "$6$salt$digest"

DIREWOLF = """\
ADEVICE plughw:{{ET_AUDIO_DEVICE}},0
CHANNEL 0
MYCALL {{ET_CALLSIGN}}-{{ET_SSID}}
MODEM 1200
"""


class FakeChroot:
    """Records commands run inside the chroot."""

    def __init__(self, fail=()):
        self.calls = []
        self.fail = fail

    def run(self, argv, check=True, **kwargs):
        self.calls.append(argv)
        joined = " ".join(argv)
        if any(word in joined for word in self.fail):
            if check:
                raise CommandError(argv, exit_code=1)
            return CommandResult(argv=argv, returncode=1)
        return CommandResult(argv=argv, returncode=0)


def hash_runner(argv, **kwargs):
    return CommandResult(argv=argv, returncode=0, stdout=HASH + "\n")


def make_config(tmp_path, **flags):
    return BuildConfiguration(
        release_mode=ReleaseMode.STABLE,
        cache_dir=tmp_path / "cache",
        work_dir=tmp_path / "work",
        output_dir=tmp_path / "output",
        logs_dir=tmp_path / "logs",
        secrets_file=tmp_path / "secrets.env",
        **flags,
    )


def make_ctx(tmp_path, inputs=None, **flags):
    ctx = BuildContext(
        config=make_config(tmp_path, **flags),
        inputs=inputs or StationInputs(CALLSIGN="KD0ABC"),
        runner=hash_runner,
    )
    (ctx.rootfs / "etc").mkdir(parents=True)
    ctx.iso_dir.mkdir(parents=True)
    return ctx


def make_tarball(path, files):
    with tarfile.open(path, "w:gz") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
    return path


@pytest.fixture
def ctx(tmp_path):
    return make_ctx(tmp_path)


class TestFiles:
    """Tests for file helpers."""

    def test_write_file_mode(self, tmp_path):
        """Parents are created and the mode is applied."""
        path = write_file(tmp_path / "a" / "b.txt", "x\n", mode=0o600)
        assert path.read_text() == "x\n"
        assert path.stat().st_mode & 0o777 == 0o600

    def test_extract_strips_components(self, tmp_path):
        """The leading directory is dropped."""
        archive = make_tarball(tmp_path / "a.tar.gz", {"top/scripts/install.sh": "echo hi\n"})
        count = extract_tarball(archive, tmp_path / "out", strip_components=1)

        assert count == 1
        assert (tmp_path / "out" / "scripts" / "install.sh").read_text() == "echo hi\n"

    def test_extract_rejects_traversal(self, tmp_path):
        """Parent references are refused."""
        archive = make_tarball(tmp_path / "a.tar.gz", {"../evil.sh": "x"})
        with pytest.raises(ExtractionError) as exc_info:
            extract_tarball(archive, tmp_path / "out")
        assert exc_info.value.code == "path_traversal"

    def test_extract_empty(self, tmp_path):
        """An archive with nothing left after stripping is empty."""
        archive = make_tarball(tmp_path / "a.tar.gz", {"top": ""})
        with pytest.raises(ExtractionError) as exc_info:
            extract_tarball(archive, tmp_path / "out", strip_components=1)
        assert exc_info.value.code == "empty_archive"

    def test_extract_invalid(self, tmp_path):
        """Unreadable archives raise ExtractionError."""
        archive = tmp_path / "bad.tar.gz"
        archive.write_bytes(b"not a tarball")
        with pytest.raises(ExtractionError) as exc_info:
            extract_tarball(archive, tmp_path / "out")
        assert exc_info.value.code == "tar_error"


class TestIdentity:
    """Tests for identity steps."""

    def test_hostname(self, ctx):
        """Hostname defaults to ETC-<callsign> and lands in hosts."""
        assert identity.hostname(ctx) == "hostname ETC-KD0ABC"
        assert (ctx.rootfs / "etc" / "hostname").read_text() == "ETC-KD0ABC\n"
        assert "127.0.1.1       ETC-KD0ABC" in (ctx.rootfs / "etc" / "hosts").read_text()

    def test_autologin(self, tmp_path):
        """Autologin is configured for the derived username."""
        ctx = make_ctx(tmp_path, StationInputs(CALLSIGN="KD0ABC", ENABLE_AUTOLOGIN="yes"))
        identity.user_account(ctx)

        conf = (ctx.rootfs / identity.AUTOLOGIN_CONF).read_text()
        assert "autologin-user=kd0abc" in conf

    def test_autologin_removed_when_disabled(self, ctx):
        """A stale autologin file is removed."""
        write_file(ctx.rootfs / identity.AUTOLOGIN_CONF, "[Seat:*]\n")
        assert identity.user_account(ctx) == "autologin removed"
        assert not (ctx.rootfs / identity.AUTOLOGIN_CONF).exists()

    def test_password_in_shadow(self, tmp_path):
        """An existing user gets the hash in /etc/shadow."""
        ctx = make_ctx(tmp_path, StationInputs(CALLSIGN="KD0ABC", USER_PASSWORD="s3cret"))
        (ctx.rootfs / "etc" / "shadow").write_text(
            "root:*:19000:0:99999:7:::\nkd0abc:!:19000:0:99999:7:::\n"
        )

        assert identity.user_account(ctx) == "password set"
        shadow = (ctx.rootfs / "etc" / "shadow").read_text()
        assert f"kd0abc:{HASH}:19000" in shadow
        assert shadow.startswith("root:*:")
        assert "s3cret" not in shadow

    def test_password_left_to_preseed(self, tmp_path):
        """Without the user in shadow no hash is written into the image."""
        ctx = make_ctx(tmp_path, StationInputs(CALLSIGN="KD0ABC", USER_PASSWORD="s3cret"))
        (ctx.rootfs / "etc" / "shadow").write_text("root:*:19000:0:99999:7:::\n")

        assert identity.user_account(ctx) is None
        assert (ctx.rootfs / "etc" / "shadow").read_text() == "root:*:19000:0:99999:7:::\n"
        for path in (ctx.rootfs / "etc").rglob("*"):
            assert not path.is_file() or HASH not in path.read_text()

    def test_no_account_changes(self, ctx):
        """Nothing configured means the step is skipped."""
        assert identity.user_account(ctx) is None

    def test_timezone(self, ctx):
        """The localtime link and /etc/timezone are written."""
        identity.timezone(ctx)
        assert os.readlink(ctx.rootfs / "etc" / "localtime") == "/usr/share/zoneinfo/America/Denver"
        assert (ctx.rootfs / "etc" / "timezone").read_text() == "America/Denver\n"

    def test_unknown_timezone(self, tmp_path):
        """A zone missing from the image's zoneinfo is a warning."""
        ctx = make_ctx(tmp_path, StationInputs(TIMEZONE="Mars/Olympus"))
        (ctx.rootfs / "usr" / "share" / "zoneinfo").mkdir(parents=True)

        with pytest.raises(CustomizationWarning) as exc_info:
            identity.timezone(ctx)
        assert exc_info.value.code == "unknown_timezone"

    def test_git_config(self, tmp_path):
        """The Git identity is written to /etc/skel."""
        inputs = StationInputs(USER_FULLNAME="Jane Operator", USER_EMAIL="jane@example.org")
        ctx = make_ctx(tmp_path, inputs)

        identity.git_config(ctx)
        gitconfig = (ctx.rootfs / "etc" / "skel" / ".gitconfig").read_text()
        assert "name = Jane Operator" in gitconfig
        assert "email = jane@example.org" in gitconfig

    def test_git_config_template_values(self, tmp_path):
        """Template values from the example file are not written."""
        ctx = make_ctx(tmp_path, StationInputs(USER_FULLNAME="Your Full Name"))
        assert identity.git_config(ctx) is None


class TestWifi:
    """Tests for WiFi profiles."""

    def test_profiles(self, tmp_path):
        """One keyfile per network, readable by root only."""
        networks = parse_wifi_networks(
            {
                "WIFI_SSID_HOME": "HomeNet",
                "WIFI_PASSWORD_HOME": "password123",
                "WIFI_SSID_FIELD": "Field/AP",
                "WIFI_PASSWORD_FIELD": "fieldpass1",
                "WIFI_AUTOCONNECT_FIELD": "no",
            }
        )
        ctx = make_ctx(tmp_path, StationInputs(wifi_networks=tuple(networks)))

        assert network.wifi(ctx) == "2 network(s)"
        directory = ctx.rootfs / network.CONNECTIONS_DIR
        home = directory / "HomeNet.nmconnection"
        assert home.stat().st_mode & 0o777 == 0o600
        assert "psk=password123" in home.read_text()
        assert "autoconnect=false" in (directory / "Field_AP.nmconnection").read_text()

    def test_uuid_is_stable(self):
        """Rebuilding produces the same connection UUID."""
        assert network.connection_uuid("HomeNet") == network.connection_uuid("HomeNet")
        assert network.connection_uuid("HomeNet") != network.connection_uuid("Other")

    def test_no_networks(self, ctx):
        """No networks means the step is skipped."""
        assert network.wifi(ctx) is None


class TestDesktop:
    """Tests for desktop and power defaults."""

    def test_desktop(self, ctx):
        """Desktop defaults and the dconf profile are written."""
        desktop.desktop(ctx)

        keyfile = (ctx.rootfs / desktop.DESKTOP_KEYFILE).read_text()
        assert "color-scheme='prefer-dark'" in keyfile
        assert "idle-delay=uint32 300" in keyfile
        assert "system-db:local" in (ctx.rootfs / desktop.DCONF_PROFILE).read_text()

    def test_screen_blank_disabled(self, tmp_path):
        """SCREEN_BLANK=false sets the idle delay to zero."""
        ctx = make_ctx(tmp_path, StationInputs(SCREEN_BLANK="false"))
        desktop.desktop(ctx)
        assert "idle-delay=uint32 0" in (ctx.rootfs / desktop.DESKTOP_KEYFILE).read_text()

    def test_power_without_suspend(self, tmp_path):
        """AUTOMATIC_SUSPEND=false disables idle suspend."""
        inputs = StationInputs(AUTOMATIC_SUSPEND="false", AUTOMATIC_POWER_SAVER="false")
        ctx = make_ctx(tmp_path, inputs)

        desktop.power(ctx)
        keyfile = (ctx.rootfs / desktop.POWER_KEYFILE).read_text()
        assert "sleep-inactive-battery-type='nothing'" in keyfile
        assert "enable-battery-saver=false" in keyfile

    def test_power_compiles_dconf(self, ctx):
        """The dconf database is compiled when a chroot is active."""
        ctx.chroot = FakeChroot()
        desktop.power(ctx)
        assert ["dconf", "update"] in ctx.chroot.calls

    def test_dconf_failure_is_tolerated(self, ctx):
        """A failing dconf update does not fail the step."""
        ctx.chroot = FakeChroot(fail=("dconf",))
        assert desktop.power(ctx) == "power mode balanced"


class TestRadio:
    """Tests for radio configuration steps."""

    @pytest.mark.parametrize(
        "grid,lat,lon",
        [
            ("DN40", 40.5, -111.0),
            ("FN31pr", 41.72916, -72.70833),
            ("JJ00", 0.5, 1.0),
        ],
    )
    def test_maidenhead(self, grid, lat, lon):
        """Locators convert to the center of their square."""
        got_lat, got_lon = radio.maidenhead_to_latlon(grid)
        assert got_lat == pytest.approx(lat, abs=1e-3)
        assert got_lon == pytest.approx(lon, abs=1e-3)

    @pytest.mark.parametrize("grid", ["", "D", "ZZ00", "DNAB", "DN40zz"])
    def test_maidenhead_invalid(self, grid):
        """Malformed locators are rejected."""
        with pytest.raises(ValueError):
            radio.maidenhead_to_latlon(grid)

    def test_aprs_position(self):
        """Positions use degree^minutes with hemisphere letters."""
        assert radio.format_aprs_position(40.5, -113.0) == ("40^30.00N", "113^00.00W")

    def test_user_config(self, tmp_path):
        """The station file holds the upper-cased callsign and grid."""
        inputs = StationInputs(CALLSIGN="kd0abc", GRID_SQUARE="DN40", WINLINK_PASSWORD="wl")
        ctx = make_ctx(tmp_path, inputs)

        radio.aprs_user_config(ctx)
        data = json.loads((ctx.rootfs / radio.USER_CONFIG).read_text())
        assert data == {"callsign": "KD0ABC", "grid": "DN40", "winlinkPasswd": "wl"}

    def test_user_config_placeholder_callsign(self, tmp_path):
        """The template callsign is not written."""
        ctx = make_ctx(tmp_path, StationInputs())
        assert radio.aprs_user_config(ctx) is None

    def test_direwolf_template(self, ctx):
        """iGate directives are inserted and runtime tokens are kept."""
        path = write_file(ctx.rootfs / radio.DIREWOLF_TEMPLATE, DIREWOLF)

        assert radio.direwolf_template(ctx).endswith("patched")
        text = path.read_text()
        assert "IGLOGIN KD0ABC-10 -1" in text
        assert "MYCALL {{ET_CALLSIGN}}-{{ET_SSID}}" in text

        assert radio.direwolf_template(ctx).endswith("already up to date")
        assert path.read_text() == text

    def test_direwolf_beacon(self, tmp_path):
        """A beacon directive is added with the grid position."""
        inputs = StationInputs(
            CALLSIGN="KD0ABC",
            GRID_SQUARE="DN40",
            ENABLE_APRS_IGATE="false",
            ENABLE_APRS_BEACON="true",
        )
        directives = radio.direwolf_directives(inputs)

        assert len(directives) == 1
        assert directives[0].startswith("PBEACON delay=1 every=5:00")
        assert "lat=40^30.00N long=111^00.00W" in directives[0]

    def test_direwolf_missing_template(self, ctx):
        """A missing template raises so the step is recorded as a warning."""
        with pytest.raises(CustomizationWarning):
            radio.direwolf_template(ctx)

    def test_radio_configs(self, ctx):
        """The radio definition is written."""
        radio.radio_configs(ctx)
        data = json.loads((ctx.rootfs / radio.RADIOS_DIR / "anytone-d578uv.json").read_text())
        assert data["rigctrl"]["id"] == "301"

    def test_pat_aliases(self, tmp_path):
        """The alias helper is installed with the gateway."""
        inputs = StationInputs(PAT_EMCOMM_ALIAS="true", PAT_EMCOMM_GATEWAY="W1AW-10")
        ctx = make_ctx(tmp_path, inputs)

        assert radio.pat_aliases(ctx) == "emcomm alias -> W1AW-10"
        assert "W1AW-10" in (ctx.rootfs / radio.PAT_DIR / "add-emcomm-alias.sh").read_text()

    def test_vara_licenses(self, tmp_path):
        """License registry files and the import script are written."""
        inputs = StationInputs(VARA_FM_CALLSIGN="KD0ABC", VARA_FM_LICENSE_KEY="ABC-123")
        ctx = make_ctx(tmp_path, inputs)

        assert radio.vara_licenses(ctx) == "vara-fm-license.reg"
        addon_dir = ctx.rootfs / radio.WINE_ADDONS_DIR
        reg = (addon_dir / "vara-fm-license.reg").read_text()
        assert '"License"="ABC-123"' in reg
        assert "[HKEY_CURRENT_USER\\Software\\VARA FM]" in reg
        assert "vara-fm-license.reg" in (addon_dir / "99-import-vara-licenses.sh").read_text()

    def test_vara_without_callsign(self, tmp_path):
        """A license key without a callsign is a warning."""
        ctx = make_ctx(tmp_path, StationInputs(VARA_HF_LICENSE_KEY="XYZ"))
        with pytest.raises(CustomizationWarning) as exc_info:
            radio.vara_licenses(ctx)
        assert exc_info.value.code == "vara_callsign_missing"


class TestVendor:
    """Tests for vendor installer steps."""

    def test_payload_missing(self, ctx):
        """No payload is fatal."""
        with pytest.raises(ChrootInstallError) as exc_info:
            vendor.vendor_install(ctx)
        assert exc_info.value.code == "payload_missing"

    def test_installer_missing(self, ctx, tmp_path):
        """A payload without the install script is fatal."""
        ctx.payload = make_tarball(tmp_path / "payload.tar.gz", {"src/README": "x"})
        with pytest.raises(ChrootInstallError) as exc_info:
            vendor.vendor_install(ctx)
        assert exc_info.value.code == "installer_missing"

    def test_unattended_install(self, tmp_path):
        """With every dialog answered the installer runs unattended."""
        inputs = StationInputs(
            CALLSIGN="KD0ABC", OSM_MAP_STATE="colorado", ET_MAP_REGION="us", WIKIPEDIA_SECTIONS="general"
        )
        ctx = make_ctx(tmp_path, inputs)
        ctx.payload = make_tarball(
            tmp_path / "payload.tar.gz", {"src/scripts/install.sh": "#!/bin/bash\n"}
        )
        ctx.chroot = FakeChroot()

        message = vendor.vendor_install(ctx)

        assert message.startswith("installed (unattended)")
        assert any("install.sh" in " ".join(c) for c in ctx.chroot.calls)
        assert not (ctx.rootfs / vendor.INSTALLER_DIR).exists()

    def test_installer_failure(self, ctx, tmp_path):
        """A failing installer is fatal and the staging tree is removed."""
        ctx.payload = make_tarball(
            tmp_path / "payload.tar.gz", {"src/scripts/install.sh": "#!/bin/bash\n"}
        )
        ctx.chroot = FakeChroot(fail=("./install.sh",))

        with pytest.raises(ChrootInstallError) as exc_info:
            vendor.vendor_install(ctx)
        assert exc_info.value.code == "installer_failed"
        assert not (ctx.rootfs / vendor.INSTALLER_DIR).exists()

    def test_patch_download_scripts(self, tmp_path):
        """Only dialogs with answers are replaced."""
        scripts = tmp_path / "scripts"
        inputs = StationInputs(OSM_MAP_STATE="colorado")

        assert vendor.patch_download_scripts(scripts, inputs) == ["download-osm-maps.sh"]
        assert "colorado" in (scripts / "download-osm-maps.sh").read_text()

    def test_needs_interactive(self):
        """Missing map answers need the operator."""
        assert vendor.needs_interactive(StationInputs()) is True

    def test_invalid_map_region(self):
        """Unknown map regions are rejected."""
        with pytest.raises(CustomizationWarning) as exc_info:
            vendor.et_maps_script("antarctica")
        assert exc_info.value.code == "invalid_map_region"

    def test_addons_skipped_by_default(self, ctx):
        """The overlay is only merged when requested."""
        assert vendor.addons_overlay(ctx) is None

    def test_addons_overlay(self, tmp_path):
        """The overlay tree is merged into the root filesystem."""
        ctx = make_ctx(tmp_path, with_addons=True)
        ctx.addons_archive = make_tarball(
            tmp_path / "addons.tar.gz",
            {"addons-main/overlay/opt/emcomm-tools/addons/js8call/install.sh": "x"},
        )

        assert vendor.addons_overlay(ctx) == "merged 1 add-on(s)"
        assert (ctx.rootfs / "opt" / "emcomm-tools" / "addons" / "js8call" / "install.sh").is_file()

    def test_addons_without_overlay(self, tmp_path):
        """An archive without an overlay directory is a warning."""
        ctx = make_ctx(tmp_path, with_addons=True)
        ctx.addons_archive = make_tarball(tmp_path / "addons.tar.gz", {"addons-main/README": "x"})

        with pytest.raises(CustomizationWarning) as exc_info:
            vendor.addons_overlay(ctx)
        assert exc_info.value.code == "overlay_missing"

    def test_additional_packages(self, tmp_path):
        """Packages are installed with apt inside the chroot."""
        ctx = make_ctx(tmp_path, StationInputs(ADDITIONAL_PACKAGES="vim, htop"))
        ctx.chroot = FakeChroot()

        assert vendor.additional_packages(ctx) == "installed vim, htop"
        assert ["apt-get", "install", "-y", "-qq", "vim", "htop"] in ctx.chroot.calls

    def test_additional_packages_failure(self, tmp_path):
        """apt failures are warnings."""
        ctx = make_ctx(tmp_path, StationInputs(ADDITIONAL_PACKAGES="nosuchpkg"))
        ctx.chroot = FakeChroot(fail=("install",))

        with pytest.raises(CustomizationWarning) as exc_info:
            vendor.additional_packages(ctx)
        assert exc_info.value.code == "apt_failed"

    def test_chirp_follows_additional_packages(self, tmp_path):
        """Without INSTALL_CHIRP, CHIRP comes along with extra packages."""
        assert vendor.chirp(make_ctx(tmp_path / "a")) is None

        ctx = make_ctx(tmp_path / "b", StationInputs(ADDITIONAL_PACKAGES="vim"))
        ctx.chroot = FakeChroot()
        assert vendor.chirp(ctx) == "installed"
        assert ["pipx", "install", "--force", "chirp"] in ctx.chroot.calls

    def test_chirp_installs_pipx(self, tmp_path):
        """pipx is installed with apt when the image lacks it."""
        ctx = make_ctx(tmp_path, StationInputs(INSTALL_CHIRP="true"))
        ctx.chroot = FakeChroot(fail=("command -v pipx",))

        vendor.chirp(ctx)

        assert ["apt-get", "install", "-y", "-qq", "pipx"] in ctx.chroot.calls
        assert ctx.chroot.calls[-1] == ["pipx", "install", "--force", "chirp"]

    def test_chirp_disabled(self, tmp_path):
        """INSTALL_CHIRP=false wins over extra packages."""
        ctx = make_ctx(
            tmp_path, StationInputs(ADDITIONAL_PACKAGES="vim", INSTALL_CHIRP="false")
        )
        ctx.chroot = FakeChroot()

        assert vendor.chirp(ctx) is None
        assert ctx.chroot.calls == []

    def test_chirp_failure(self, tmp_path):
        """A failed pipx install is a warning."""
        ctx = make_ctx(tmp_path, StationInputs(INSTALL_CHIRP="true"))
        ctx.chroot = FakeChroot(fail=("pipx install",))

        with pytest.raises(CustomizationWarning) as exc_info:
            vendor.chirp(ctx)
        assert exc_info.value.code == "chirp_failed"


class TestAddons:
    """Tests for the home directory helper tools."""

    def test_wikipedia_default_articles(self, ctx):
        """The wrapper runs the creator with its built-in list."""
        assert addons.wikipedia_tools(ctx) == "default article list"

        addon_dir = ctx.rootfs / "etc" / "skel" / "add-ons" / "wikipedia"
        creator = addon_dir / "create-ham-wikipedia-zim.sh"
        wrapper = addon_dir / "create-my-wikipedia.sh"
        assert creator.stat().st_mode & 0o777 == 0o755
        assert wrapper.stat().st_mode & 0o777 == 0o755
        assert "Automatic_Packet_Reporting_System|Winlink" in creator.read_text()
        assert "zimwriterfs" in creator.read_text()
        assert "--articles" not in wrapper.read_text()
        assert (addon_dir / "README.md").is_file()

    def test_wikipedia_custom_articles(self, tmp_path):
        """WIKIPEDIA_ARTICLES is passed to the creator."""
        inputs = StationInputs(CALLSIGN="KD0ABC", WIKIPEDIA_ARTICLES="Winlink | Ham radio")
        ctx = make_ctx(tmp_path, inputs)

        assert addons.wikipedia_tools(ctx) == "2 custom article(s)"
        wrapper = ctx.rootfs / "etc/skel/add-ons/wikipedia/create-my-wikipedia.sh"
        assert "--articles 'Winlink|Ham_radio'" in wrapper.read_text()

    def test_wifi_diagnostics(self, ctx):
        """Both scripts are executable and the README is written."""
        assert addons.wifi_diagnostics(ctx) == "installed"

        addon_dir = ctx.rootfs / "etc" / "skel" / "add-ons" / "network"
        for name in ("wifi-diagnostics.sh", "validate-wifi-config.sh"):
            script = addon_dir / name
            assert script.read_text().startswith("#!/bin/bash\n")
            assert script.stat().st_mode & 0o777 == 0o755
        assert "nmcli" in (addon_dir / "README-WIFI.md").read_text()


class TestBackups:
    """Tests for backups, embedded cache and manifest."""

    def test_newest_backup(self, tmp_path):
        """The most recently modified backup wins."""
        old = tmp_path / "etc-user-backup-old.tar.gz"
        new = tmp_path / "etc-user-backup-new.tar.gz"
        old.write_bytes(b"x")
        new.write_bytes(b"x")
        past = time.time() - 3600
        os.utime(old, (past, past))

        assert backups.newest_backup(tmp_path, backups.USER_BACKUP_GLOB) == new
        assert backups.newest_backup(tmp_path / "none", backups.USER_BACKUP_GLOB) is None

    def test_user_backup(self, ctx):
        """The user backup is restored into /etc/skel."""
        ctx.config.cache_dir.mkdir()
        make_tarball(
            ctx.config.cache_dir / "etc-user-backup-host-20250101.tar.gz",
            {".config/pat/config.json": "{}"},
        )

        message = backups.user_backup(ctx)

        assert message.startswith("restored etc-user-backup-host")
        assert (ctx.rootfs / "etc" / "skel" / ".config" / "pat" / "config.json").is_file()

    def test_no_backup(self, ctx):
        """No backups means the step is skipped."""
        assert backups.user_backup(ctx) is None

    def test_embed_cache(self, tmp_path):
        """Artifacts and logs are embedded; secrets are not."""
        ctx = make_ctx(tmp_path)
        ctx.config.logs_dir.mkdir()
        (ctx.config.logs_dir / "build.log").write_text("log\n")
        ctx.base_image = tmp_path / "ubuntu.iso"
        ctx.base_image.write_bytes(b"iso")
        (tmp_path / "secrets.env").write_text("CALLSIGN=KD0ABC\n")

        assert backups.embed_cache(ctx) == "1 artifact(s), 1 log(s)"
        embedded = ctx.rootfs / backups.EMBEDDED_CACHE_DIR
        assert (embedded / "ubuntu.iso").read_bytes() == b"iso"
        assert (embedded / "logs" / "build.log").is_file()
        assert (embedded / "logs" / backups.BUILD_MANIFEST_NAME).is_file()
        assert not list(embedded.rglob("secrets.env"))

    def test_minimal_skips_embedding(self, tmp_path):
        """Minimal builds embed nothing."""
        ctx = make_ctx(tmp_path, minimal=True)
        assert backups.embed_cache(ctx) is None
        assert not (ctx.rootfs / backups.EMBEDDED_CACHE_DIR).exists()

    def test_manifest(self, ctx):
        """The manifest names the release and the applied steps."""
        ctx.release = ResolvedRelease(
            tag="emcomm-tools-os-community-20251128-r5-final-5.0.0",
            name="R5",
            payload_url="https://example.com/payload.tar.gz",
        )
        ctx.customizations.outcomes += [
            StepOutcome("hostname", StepStatus.APPLIED, "hostname ETC-KD0ABC"),
            StepOutcome("wifi", StepStatus.WARNED, "no networks"),
        ]

        backups.manifest(ctx)
        text = (ctx.rootfs / backups.MANIFEST_PATH).read_text()
        assert "Release: emcomm-tools-os-community-20251128-r5-final-5.0.0" in text
        assert "Version: 5.0.0" in text
        assert "- hostname: hostname ETC-KD0ABC" in text
        assert "Warnings:" in text


class TestInstallerStep:
    """Tests for the answer file step."""

    def test_preseed(self, ctx):
        """The answer file is written and the boot menu patched."""
        grub = ctx.iso_dir / "boot" / "grub" / "grub.cfg"
        grub.parent.mkdir(parents=True)
        grub.write_text("menuentry x {\n\tlinux\t/casper/vmlinuz quiet ---\n}\n")

        message = installer.preseed(ctx)

        assert message == "reuse-partition on /dev/sda5, 1 boot menu(s)"
        assert ctx.partition_plan.strategy == PartitionStrategy.REUSE_PARTITION
        assert (ctx.iso_dir / "preseed" / "custom.preseed").is_file()
        assert "preseed/custom.preseed" in grub.read_text()

    def test_preseed_keeps_existing_plan(self, ctx):
        """A plan resolved earlier in the build is reused."""
        ctx.partition_plan = installer.plan_partitions(ctx.config, ctx.inputs)
        plan = ctx.partition_plan
        installer.preseed(ctx)
        assert ctx.partition_plan is plan

    def test_entire_disk_needs_confirmation(self, tmp_path):
        """A whole-disk target is refused without confirmation."""
        inputs = StationInputs(INSTALL_DISK="/dev/nvme0n1")
        with pytest.raises(PartitionStrategyError):
            installer.plan_partitions(make_config(tmp_path), inputs)

        plan = installer.plan_partitions(make_config(tmp_path, confirm_entire_disk=True), inputs)
        assert plan.strategy == PartitionStrategy.ENTIRE_DISK

    def test_password_hash_in_answer_file(self, tmp_path):
        """The configured password reaches the answer file as a hash."""
        ctx = make_ctx(tmp_path, StationInputs(CALLSIGN="KD0ABC", USER_PASSWORD="s3cret"))
        installer.preseed(ctx)

        text = (ctx.iso_dir / "preseed" / "custom.preseed").read_text()
        assert HASH in text
        assert "s3cret" not in text
