"""Tests for GitHub metadata fetching and quota handling."""

import json
import re
import subprocess
import time

import pytest

from toolshed.errors import ExternalFailed, ExternalUnavailable, QuotaExhausted
from toolshed.models import Source, Tool
from toolshed.results import SyncConfig
from toolshed.upstream import (
    GitHubFetcher,
    TopicMapping,
    backfill_descriptions,
    source_to_language_filter,
    sync_upstream,
    topics_to_category,
)


class FakeGh:
    """Stands in for subprocess.run when the program is ``gh``."""

    def __init__(self, core=5000, search=30, topics=None, fail_search_after=None):
        self.core = core
        self.search = search
        self.topics = topics or ["cli", "rust"]
        self.fail_search_after = fail_search_after
        self.calls = []

    def _ok(self, payload):
        return subprocess.CompletedProcess([], 0, stdout=json.dumps(payload), stderr="")

    def __call__(self, argv, **kwargs):
        self.calls.append(argv)
        args = argv[1:]
        if args == ["--version"]:
            return subprocess.CompletedProcess([], 0, stdout="gh version 2.40.0", stderr="")
        if args[:2] == ["api", "rate_limit"]:
            reset = int(time.time()) + 600
            return self._ok({"resources": {
                "core": {"limit": 5000, "remaining": self.core, "reset": reset, "used": 0},
                "search": {"limit": 30, "remaining": self.search, "reset": reset, "used": 0},
            }})
        if args[:2] == ["search", "repos"]:
            searches = sum(1 for c in self.calls if c[1:3] == ["search", "repos"])
            if self.fail_search_after is not None and searches > self.fail_search_after:
                return subprocess.CompletedProcess(
                    [], 1, stdout="", stderr="API rate limit exceeded for user")
            name = args[2].split()[0]
            return self._ok([{"name": name, "fullName": f"acme/{name}",
                              "description": f"{name} upstream", "stargazersCount": 10,
                              "owner": {"login": "acme"}}])
        if args[0] == "api" and args[1].startswith("repos/"):
            _, owner, repo = args[1].split("/")
            return self._ok({"name": repo, "full_name": f"{owner}/{repo}",
                             "description": f"{repo} upstream", "stargazersCount": 10,
                             "language": "Rust", "homepage": "", "topics": self.topics,
                             "owner": {"login": owner}})
        raise AssertionError(f"unexpected gh call: {argv}")


def _seed(store, n):
    for i in range(n):
        store.insert_tool(Tool(name=f"tool{i}").with_source(Source.CARGO))


def _no_sleep(_seconds):
    pass


class TestTopicMapping:
    def test_default_categories(self):
        assert topics_to_category(["git", "tui"]) == "git"
        assert topics_to_category(["nothing-matches"]) is None

    def test_highest_score_wins(self):
        assert topics_to_category(["terminal", "json", "yaml"]) == "data"

    def test_ties_go_to_first_category(self):
        mapping = TopicMapping({"alpha": ["x"], "beta": ["y"]})
        assert mapping.category_for(["y", "x"]) == "alpha"

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "topic-mapping.yaml"
        path.write_text("categories:\n  fun:\n    - Games\n    - toys\n")
        mapping = TopicMapping.load(path)
        assert mapping.category_for(["games"]) == "fun"
        assert mapping.category_for(["git"]) is None

    def test_load_bad_yaml_falls_back(self, tmp_path):
        path = tmp_path / "topic-mapping.yaml"
        path.write_text("categories: [unclosed\n")
        assert TopicMapping.load(path).category_for(["git"]) == "git"

    def test_missing_file_uses_defaults(self, tmp_path):
        assert TopicMapping.load(tmp_path / "nope.yaml").category_for(["docker"]) == "container"

    def test_language_filter(self):
        assert source_to_language_filter(Source.CARGO) == "language:rust"
        assert source_to_language_filter("apt") is None


class TestGitHubFetcher:
    def test_missing_gh(self):
        def runner(*a, **kw):
            raise FileNotFoundError
        fetcher = GitHubFetcher(runner=runner)
        assert fetcher.is_available() is False
        with pytest.raises(ExternalUnavailable):
            fetcher.get_rate_limits()

    def test_rate_limits(self):
        limits = GitHubFetcher(runner=FakeGh(core=42, search=7)).get_rate_limits()
        assert limits.core.remaining == 42
        assert limits.search.remaining == 7
        assert 0 < limits.core.reset_minutes() <= 10

    def test_find_repo_uses_language_filter(self):
        gh = FakeGh()
        info = GitHubFetcher(runner=gh).find_repo("bat", Source.CARGO)
        assert info.owner.login == "acme"
        assert info.topics == ["cli", "rust"]
        assert "language:rust" in gh.calls[0][3]

    def test_rate_limit_stderr_is_quota_error(self):
        fetcher = GitHubFetcher(runner=FakeGh(fail_search_after=0))
        with pytest.raises(QuotaExhausted) as exc:
            fetcher.search_repo("bat")
        assert exc.value.quota == "search"

    def test_quota_error_carries_real_reset(self):
        fetcher = GitHubFetcher(runner=FakeGh(fail_search_after=0))
        with pytest.raises(QuotaExhausted) as exc:
            fetcher.search_repo("bat")
        assert 590 <= exc.value.wait_seconds <= 600

    def test_quota_wait_defaults_when_rate_limit_unreadable(self):
        def runner(argv, **kw):
            return subprocess.CompletedProcess(argv, 1, stdout="",
                                               stderr="API rate limit exceeded")
        with pytest.raises(QuotaExhausted) as exc:
            GitHubFetcher(runner=runner).search_repo("bat")
        assert exc.value.wait_seconds == 60

    def test_other_failures(self):
        def runner(argv, **kw):
            return subprocess.CompletedProcess(argv, 1, stdout="", stderr="HTTP 502")
        with pytest.raises(ExternalFailed):
            GitHubFetcher(runner=runner).get_repo_info("acme", "bat")

    def test_refuses_odd_repo_names(self):
        with pytest.raises(ExternalFailed):
            GitHubFetcher(runner=FakeGh()).get_repo_info("acme", "bat;rm")


class TestSyncUpstream:
    def test_search_quota_binds_batch(self, store):
        _seed(store, 10)
        gh = FakeGh(core=50, search=2)

        result = sync_upstream(store, GitHubFetcher(runner=gh),
                               SyncConfig(limit=10, delay_ms=2000), sleep=_no_sleep)

        assert result.changed == 2
        assert any("search" in w for w in result.warnings)
        assert len(store.tools_without_github()) == 8
        searches = [c for c in gh.calls if c[1:3] == ["search", "repos"]]
        assert len(searches) == 2

    def test_core_quota_binds_batch(self, store):
        _seed(store, 5)
        result = sync_upstream(store, GitHubFetcher(runner=FakeGh(core=3, search=30)),
                               SyncConfig(limit=5), sleep=_no_sleep)
        assert result.changed == 3
        assert any("core" in w for w in result.warnings)

    def test_exhausted_quota_refuses_to_start(self, store):
        _seed(store, 3)
        with pytest.raises(QuotaExhausted):
            sync_upstream(store, GitHubFetcher(runner=FakeGh(search=0)), SyncConfig(),
                          sleep=_no_sleep)

    def test_quota_hit_mid_batch_aborts(self, store):
        _seed(store, 4)
        result = sync_upstream(store, GitHubFetcher(runner=FakeGh(fail_search_after=1)),
                               SyncConfig(limit=4), sleep=_no_sleep)
        assert result.changed == 1
        assert result.aborted
        assert len(store.tools_without_github()) == 3

    def test_mid_batch_abort_reports_actual_wait(self, store):
        _seed(store, 3)
        result = sync_upstream(store, GitHubFetcher(runner=FakeGh(fail_search_after=1)),
                               SyncConfig(limit=3), sleep=_no_sleep)
        assert "search" in result.aborted
        assert "try again in 60 second" not in result.aborted
        assert re.search(r"in (59\d|600) second", result.aborted)

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit_does_nothing(self, store, limit):
        _seed(store, 10)
        gh = FakeGh(core=50, search=2)
        result = sync_upstream(store, GitHubFetcher(runner=gh), SyncConfig(limit=limit),
                               sleep=_no_sleep)
        assert result.changed == 0
        assert result.warnings
        assert not [c for c in gh.calls if c[1:3] == ["search", "repos"]]
        assert len(store.tools_without_github()) == 10

    def test_pacing(self, store):
        _seed(store, 3)
        slept = []
        sync_upstream(store, GitHubFetcher(runner=FakeGh()), SyncConfig(delay_ms=2500),
                      sleep=slept.append)
        assert slept == [2.5, 2.5]

    def test_low_delay_warns(self, store):
        _seed(store, 2)
        result = sync_upstream(store, GitHubFetcher(runner=FakeGh()), SyncConfig(delay_ms=100),
                               sleep=_no_sleep)
        assert any("100ms" in w for w in result.warnings)

    def test_applies_metadata(self, store):
        store.insert_tool(Tool(name="lazygit").with_source(Source.UNKNOWN))
        gh = FakeGh(topics=["git", "tui", "terminal"])
        sync_upstream(store, GitHubFetcher(runner=gh), SyncConfig(), sleep=_no_sleep)

        tool = store.get_tool_by_name("lazygit")
        assert tool.description == "lazygit upstream"
        assert tool.category == "git"
        assert store.get_labels("lazygit") == ["git", "terminal", "tui"]
        assert store.get_github_info("lazygit").full_name == "acme/lazygit"
        assert store.get_cached_extraction("acme", "lazygit").name == "lazygit"

    def test_dry_run_writes_nothing(self, store):
        _seed(store, 2)
        result = sync_upstream(store, GitHubFetcher(runner=FakeGh()), SyncConfig(dry_run=True),
                               sleep=_no_sleep)
        assert result.changed == 2
        assert len(store.tools_without_github()) == 2

    def test_nothing_to_do_skips_gh(self, store):
        gh = FakeGh()
        result = sync_upstream(store, GitHubFetcher(runner=gh), SyncConfig(), sleep=_no_sleep)
        assert result.changed == 0
        assert gh.calls == []

    def test_backfill(self, store):
        _seed(store, 1)
        sync_upstream(store, GitHubFetcher(runner=FakeGh()), SyncConfig(), sleep=_no_sleep)
        store.set_description("tool0", None)
        result = backfill_descriptions(store)
        assert result.changed == 1
        assert store.get_tool_by_name("tool0").description == "tool0 upstream"
