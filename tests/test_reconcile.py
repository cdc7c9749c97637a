"""Tests for the reconcile pipeline."""

from unittest.mock import MagicMock, patch

from toolshed.errors import ExternalUnavailable
from toolshed.models import Source, Tool
from toolshed.reconcile import (
    fetch_descriptions,
    fetch_upstream,
    scan_sources,
    sync_all,
    sync_status,
)
from toolshed.results import SyncConfig
from toolshed.sources.cargo import CargoSource

CARGO_LIST = """\
ripgrep v14.1.0:
    rg
fd-find v9.0.0:
    fd
bat v0.24.0:
    bat
"""


def _which_except(*missing):
    return lambda binary: None if binary in missing else f"/usr/bin/{binary}"


class TestScanAndStatus:
    def test_scan_then_status(self, store):
        with patch("subprocess.run", return_value=MagicMock(returncode=0, stdout=CARGO_LIST)):
            result = scan_sources(store, SyncConfig(), {"cargo": CargoSource()})

        assert result.changed == 3
        tools = {t.name: t for t in store.list_tools()}
        assert set(tools) == {"ripgrep", "fd-find", "bat"}
        assert all(t.source == Source.CARGO and t.is_installed for t in tools.values())

        before = store.get_tool_by_name("ripgrep")
        with patch("toolshed.reconcile.shutil.which", side_effect=_which_except("rg")):
            status = sync_status(store)

        assert status.changed == 1
        assert status.unchanged == 2
        after = store.get_tool_by_name("ripgrep")
        assert after.is_installed is False
        assert after.model_dump(exclude={"is_installed", "updated_at"}) == \
            before.model_dump(exclude={"is_installed", "updated_at"})
        assert store.get_tool_by_name("bat").is_installed is True

    def test_scan_leaves_known_tools_alone(self, store, fake_source):
        store.insert_tool(Tool(name="bat", description="mine").with_source(Source.APT))
        result = scan_sources(store, sources={"cargo": fake_source(installed={"bat": "0.24.0"})})
        assert result.unchanged == 1
        bat = store.get_tool_by_name("bat")
        assert bat.source == Source.APT
        assert bat.description == "mine"

    def test_scan_skips_unsafe_names(self, store, fake_source):
        result = scan_sources(store, sources={"npm": fake_source("npm", installed={"a;b": "1"})})
        assert result.skipped == 1
        assert store.list_tools() == []

    def test_scan_dry_run(self, store, fake_source):
        result = scan_sources(store, SyncConfig(dry_run=True),
                              {"cargo": fake_source(installed={"bat": "0.24.0"})})
        assert result.changed == 1
        assert store.list_tools() == []

    def test_status_marks_found_binaries(self, store):
        store.insert_tool(Tool(name="jq"))
        with patch("toolshed.reconcile.shutil.which", side_effect=_which_except()):
            assert sync_status(store).changed == 1
        assert store.get_tool_by_name("jq").is_installed


class TestDescriptions:
    def test_registry_then_skip(self, seeded, fake_source):
        cargo = fake_source(descriptions={"ripgrep": "Recursive grep"})
        with patch("toolshed.reconcile.describe_binary", return_value=None):
            result = fetch_descriptions(seeded, sources={"cargo": cargo})
        assert seeded.get_tool_by_name("ripgrep").description == "Recursive grep"
        assert seeded.get_tool_by_name("bat").description == "cat with wings"
        assert result.changed == 1
        assert result.skipped == 2

    def test_falls_back_to_binary_help(self, seeded):
        with patch("toolshed.reconcile.describe_binary", return_value="Distributed VCS"):
            fetch_descriptions(seeded, sources={})
        assert seeded.get_tool_by_name("git").description == "Distributed VCS"


class TestUpstreamStep:
    def test_missing_gh_aborts_step(self, seeded):
        fetcher = MagicMock()
        fetcher.is_available.return_value = False
        result = fetch_upstream(seeded, fetcher=fetcher)
        assert result.aborted
        assert "gh" in result.aborted


class TestSyncAll:
    def test_runs_requested_steps_in_order(self, store, tmp_path, fake_source):
        history = tmp_path / ".bash_history"
        history.write_text("bat README.md\nbat Cargo.toml\n")
        with patch("toolshed.reconcile.shutil.which", side_effect=_which_except()):
            results = sync_all(
                store, steps=("usage", "scan", "status"),
                sources={"cargo": fake_source(installed={"bat": "0.24.0"})},
                histories={"bash": history},
            )
        assert list(results) == ["status", "scan", "usage"]
        assert results["scan"].changed == 1
        assert store.get_usage("bat").use_count == 2

    def test_failed_step_does_not_stop_pipeline(self, store, tmp_path):
        fetcher = MagicMock()
        fetcher.is_available.side_effect = ExternalUnavailable("gh")
        store.insert_tool(Tool(name="jq"))
        with patch("toolshed.reconcile.shutil.which", side_effect=_which_except()):
            results = sync_all(store, steps=("upstream", "usage"), fetcher=fetcher,
                               histories={"bash": tmp_path / "none"})
        assert results["upstream"].aborted
        assert "usage" in results
