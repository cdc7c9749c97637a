"""Tests for the SQLite store."""

import sqlite3
from datetime import date

import pytest

from toolshed.config import Config
from toolshed.errors import DuplicateName, InvalidName, NotFound, StoreIO
from toolshed.models import ExtractionEntry, Source, Tool, UpstreamInfo
from toolshed.schema import SCHEMA_VERSION
from toolshed.store import Store


def _rows(store, table, tool_id):
    return store.conn.execute(
        f"SELECT COUNT(*) FROM {table} WHERE tool_id = ?", (tool_id,)
    ).fetchone()[0]


class TestSchema:
    def test_creates_db_file(self, store, config):
        _ = store.conn
        assert config.db_path.exists()

    def test_schema_version_recorded(self, store):
        row = store.conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        assert int(row["value"]) == SCHEMA_VERSION

    def test_migrates_old_version(self, config):
        s = Store(config)
        s.conn.execute("UPDATE meta SET value = '1' WHERE key = 'schema_version'")
        s.conn.commit()
        s.close()

        s = Store(config)
        row = s.conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        assert int(row["value"]) == SCHEMA_VERSION
        s.close()

    def test_unopenable_db_is_store_io(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        s = Store(Config(data_dir=str(blocker / "data")))
        with pytest.raises(StoreIO):
            _ = s.conn

    def test_read_only_write_is_store_io(self, store):
        store.insert_tool(Tool(name="jq"))
        store.conn.execute("PRAGMA query_only = ON")
        with pytest.raises(StoreIO, match="readonly"):
            store.insert_tool(Tool(name="fd"))
        with pytest.raises(StoreIO):
            store.record_usage("jq", 1)
        store.conn.execute("PRAGMA query_only = OFF")
        assert store.get_tool_by_name("fd") is None

    def test_locked_database_is_store_io(self, store):
        store.insert_tool(Tool(name="jq"))
        store.conn.execute("PRAGMA busy_timeout = 0")
        other = sqlite3.connect(str(store.db_path), isolation_level=None)
        other.execute("BEGIN IMMEDIATE")
        try:
            with pytest.raises(StoreIO, match="locked"):
                store.set_favorite("jq", True)
        finally:
            other.execute("ROLLBACK")
            other.close()

    def test_duplicate_still_reported_as_duplicate(self, store):
        store.insert_tool(Tool(name="jq"))
        with pytest.raises(DuplicateName):
            store.insert_tool(Tool(name="jq"))


class TestTools:
    def test_insert_and_get(self, store):
        store.insert_tool(Tool(name="ripgrep", description="fast grep")
                          .with_source("cargo").with_binary("rg"))
        tool = store.get_tool_by_name("ripgrep")
        assert tool.source == Source.CARGO
        assert tool.binary == "rg"
        assert tool.description == "fast grep"
        assert tool.created_at and tool.updated_at

    def test_duplicate_name(self, store):
        store.insert_tool(Tool(name="bat"))
        with pytest.raises(DuplicateName):
            store.insert_tool(Tool(name="bat"))

    def test_unsafe_name_rejected(self, store):
        with pytest.raises(InvalidName):
            store.insert_tool(Tool(name="bat; rm -rf /"))

    def test_add_then_delete_restores_absence(self, store):
        store.insert_tool(Tool(name="jq"))
        assert store.delete_tool("jq") is True
        assert store.get_tool_by_name("jq") is None
        assert store.delete_tool("jq") is False

    def test_update_by_name(self, store):
        store.insert_tool(Tool(name="fd-find"))
        tool = store.get_tool_by_name("fd-find")
        store.update_tool(tool.with_category("files").installed())
        updated = store.get_tool_by_name("fd-find")
        assert updated.category == "files"
        assert updated.is_installed is True

    def test_update_missing(self, store):
        with pytest.raises(NotFound):
            store.update_tool(Tool(name="ghost"))

    def test_upsert(self, store):
        _, created = store.upsert_tool(Tool(name="jq", description="one"))
        assert created
        _, created = store.upsert_tool(Tool(name="jq", description="two"))
        assert not created
        assert store.get_tool_by_name("jq").description == "two"

    def test_setters(self, store):
        store.insert_tool(Tool(name="jq"))
        store.set_tool_installed("jq", True)
        store.set_favorite("jq", True)
        store.set_description("jq", "JSON processor")
        store.set_category("jq", "data")
        tool = store.get_tool_by_name("jq")
        assert (tool.is_installed, tool.is_favorite) == (True, True)
        assert (tool.description, tool.category) == ("JSON processor", "data")

    def test_setter_on_missing_tool(self, store):
        with pytest.raises(NotFound):
            store.set_favorite("ghost", True)

    def test_list_filters(self, seeded):
        assert [t.name for t in seeded.list_tools(source="apt")] == ["bat", "git"]
        assert [t.name for t in seeded.list_tools(category="files")] == ["bat", "fd-find"]
        seeded.set_favorite("git", True)
        assert [t.name for t in seeded.list_tools(favorites_only=True)] == ["git"]
        seeded.set_tool_installed("bat", False)
        assert "bat" not in [t.name for t in seeded.list_tools(installed_only=True)]

    def test_search_prefers_name_hits(self, seeded):
        seeded.set_description("git", "not a bat")
        results = [t.name for t in seeded.search_tools("bat")]
        assert results[0] == "bat"
        assert "git" in results

    def test_stats(self, seeded):
        stats = seeded.stats()
        assert stats["tools"] == 4
        assert stats["installed"] == 4
        assert seeded.count_by_source() == {"apt": 2, "cargo": 2}


class TestDeleteCascade:
    def test_delete_leaves_no_dependent_rows(self, seeded):
        tool_id = seeded.get_tool_by_name("ripgrep").id
        seeded.add_labels("ripgrep", ["search", "rust"])
        seeded.record_usage("ripgrep", 5)
        seeded.set_github_info("ripgrep", UpstreamInfo(repo_owner="BurntSushi",
                                                       repo_name="ripgrep"))
        seeded.create_bundle("core", ["ripgrep", "bat"])

        seeded.delete_tool("ripgrep")

        for table in ("tool_labels", "tool_usage", "usage_daily", "tool_github"):
            assert _rows(seeded, table, tool_id) == 0, table
        assert seeded.get_bundle("core").tools == ["bat"]
        assert seeded.count_orphaned_usage() == 0

    def test_orphaned_usage_cleanup(self, seeded):
        seeded.record_usage("git", 3)
        seeded.conn.execute("PRAGMA foreign_keys=OFF")
        seeded.conn.execute("DELETE FROM tools WHERE name = 'git'")
        seeded.conn.commit()
        assert seeded.count_orphaned_usage() == 1
        assert seeded.delete_orphaned_usage() == 1
        assert seeded.count_orphaned_usage() == 0


class TestBundles:
    def test_bundle_lifecycle_keeps_order(self, store):
        store.create_bundle("core", ["tool1", "tool2"])
        store.add_to_bundle("core", ["tool3"])
        store.remove_from_bundle("core", ["tool1"])
        assert store.get_bundle("core").tools == ["tool2", "tool3"]

    def test_add_is_idempotent(self, store):
        store.create_bundle("dev", ["a"])
        assert store.add_to_bundle("dev", ["b", "c"]) == 2
        assert store.add_to_bundle("dev", ["b", "c"]) == 0
        assert store.get_bundle("dev").tools == ["a", "b", "c"]

    def test_duplicates_in_one_call(self, store):
        store.create_bundle("dup", ["x", "y", "x"])
        assert store.get_bundle("dup").tools == ["x", "y"]

    def test_duplicate_bundle(self, store):
        store.create_bundle("core", [])
        with pytest.raises(DuplicateName):
            store.create_bundle("core", [])

    def test_missing_bundle(self, store):
        assert store.get_bundle("nope") is None
        with pytest.raises(NotFound):
            store.add_to_bundle("nope", ["a"])
        assert store.delete_bundle("nope") is False

    def test_delete_bundle_removes_members(self, store):
        bundle_id = store.create_bundle("tmp", ["a", "b"])
        store.delete_bundle("tmp")
        count = store.conn.execute(
            "SELECT COUNT(*) FROM bundle_tools WHERE bundle_id = ?", (bundle_id,)
        ).fetchone()[0]
        assert count == 0

    def test_dangling_members(self, seeded):
        seeded.create_bundle("core", ["bat", "zellij"])
        assert seeded.dangling_bundle_members() == [("core", "zellij")]

    def test_list_bundles(self, store):
        store.create_bundle("b", ["x"])
        store.create_bundle("a", ["y", "z"], description="first")
        bundles = store.list_bundles()
        assert [b.name for b in bundles] == ["a", "b"]
        assert bundles[0].description == "first"


class TestLabels:
    def test_labels_are_lowercased(self, seeded):
        seeded.add_labels("bat", ["Rust", "CLI"])
        assert seeded.get_labels("bat") == ["cli", "rust"]

    def test_duplicate_labels_collapse(self, seeded):
        assert seeded.add_labels("bat", ["rust", "rust", "Rust"]) == 1
        assert seeded.add_labels("bat", ["rust"]) == 0
        assert seeded.get_labels("bat") == ["rust"]

    def test_remove_and_counts(self, seeded):
        seeded.add_labels("bat", ["rust", "pager"])
        seeded.add_labels("ripgrep", ["rust"])
        assert seeded.get_label_counts() == [("rust", 2), ("pager", 1)]
        assert seeded.remove_label("bat", "RUST") is True
        assert seeded.remove_label("bat", "rust") is False
        assert [t.name for t in seeded.list_tools_by_label("rust")] == ["ripgrep"]

    def test_labels_on_missing_tool(self, store):
        with pytest.raises(NotFound):
            store.add_labels("ghost", ["x"])


class TestUsage:
    def test_record_accumulates(self, seeded):
        assert seeded.record_usage("git", 3)
        assert seeded.record_usage("git", 2, "2026-01-01T10:00:00")
        usage = seeded.get_usage("git")
        assert usage.use_count == 5
        assert usage.last_used == "2026-01-01T10:00:00"

    def test_zero_count_is_noop(self, seeded):
        seeded.record_usage("bat", 4, "2026-01-01T10:00:00")
        seeded.record_usage("bat", 0, "2026-01-01T10:00:00")
        assert seeded.get_usage("bat").use_count == 4

    def test_negative_count_rejected(self, seeded):
        with pytest.raises(ValueError):
            seeded.record_usage("bat", -1)

    def test_unknown_tool(self, store):
        assert store.record_usage("ghost", 1) is False

    def test_daily_series(self, seeded):
        seeded.record_usage("git", 2)
        seeded.record_usage("git", 1)
        series = seeded.get_daily_usage("git", days=7)
        assert len(series) == 7
        assert series[-1] == 3
        assert sum(series) == 3
        assert seeded.get_all_daily_usage(7)["git"][-1] == 3

    def test_daily_row_dated_today(self, seeded):
        seeded.record_usage("bat", 1)
        row = seeded.conn.execute("SELECT date FROM usage_daily").fetchone()
        assert row["date"] == date.today().isoformat()

    def test_clear(self, seeded):
        seeded.record_usage("bat", 1)
        seeded.record_usage("git", 1)
        assert seeded.clear_usage() == 2
        assert seeded.get_all_usage() == []
        assert seeded.get_daily_usage("bat", 1) == [0]

    def test_match_prefers_binary_name(self, seeded):
        seeded.insert_tool(Tool(name="rg"))
        assert seeded.match_command_to_tool("rg") == "ripgrep"
        assert seeded.match_command_to_tool("bat") == "bat"
        assert seeded.match_command_to_tool("nope") is None

    def test_unused(self, seeded):
        seeded.record_usage("git", 1)
        unused = [t.name for t in seeded.get_unused_tools()]
        assert "git" not in unused
        assert "bat" in unused


class TestUpstream:
    def test_set_and_get(self, seeded):
        seeded.set_github_info("bat", UpstreamInfo(repo_owner="sharkdp", repo_name="bat",
                                                   stars=48000, language="Rust"))
        info = seeded.get_github_info("bat")
        assert info.full_name == "sharkdp/bat"
        assert info.stars == 48000
        assert info.fetched_at

    def test_without_github(self, seeded):
        seeded.set_github_info("bat", UpstreamInfo(repo_owner="sharkdp", repo_name="bat"))
        names = [t.name for t in seeded.tools_without_github()]
        assert names == ["fd-find", "git", "ripgrep"]
        assert len(seeded.tools_without_github(limit=1)) == 1

    def test_backfill_candidates(self, seeded):
        seeded.set_github_info("ripgrep", UpstreamInfo(
            repo_owner="BurntSushi", repo_name="ripgrep", description="recursive grep"))
        seeded.set_github_info("bat", UpstreamInfo(
            repo_owner="sharkdp", repo_name="bat", description="ignored, bat has one"))
        assert seeded.tools_needing_description_backfill() == [("ripgrep", "recursive grep")]


class TestExtractionCache:
    def test_upsert_by_repo(self, store):
        entry = ExtractionEntry(repo_owner="sharkdp", repo_name="fd", name="fd-find",
                                source=Source.CARGO)
        store.cache_extraction(entry)
        store.cache_extraction(entry.model_copy(update={"version": "9.0.0"}))
        cached = store.list_extractions()
        assert len(cached) == 1
        assert cached[0].version == "9.0.0"
        assert store.get_cached_extraction("sharkdp", "fd").source == Source.CARGO
        assert store.clear_extraction_cache() == 1


class TestSearchLog:
    def test_newest_first(self, store):
        store.save_search("json viewer")
        store.save_search("git tui", ai_enabled=True, sources=["npm", "cargo"])
        history = store.get_search_history()
        assert [h.query for h in history] == ["git tui", "json viewer"]
        assert history[0].ai_enabled is True
        assert history[0].source_filters == ["cargo", "npm"]

    def test_prune_keeps_most_recent(self, store):
        for i in range(5):
            store.save_search(f"q{i}")
        assert store.prune_search_history(2) == 3
        assert [h.query for h in store.get_search_history()] == ["q4", "q3"]
        assert store.clear_search_history() == 2

    def test_connection_is_sqlite(self, store):
        assert isinstance(store.conn, sqlite3.Connection)
