"""Upstream repository metadata via the gh CLI.

GitHub meters two quotas separately: ``core`` (hourly, thousands of calls)
and ``search`` (per minute, a few dozen). Every tool costs one search call
plus one core call, so batch syncs are sized to whichever budget is
smaller and paced with a delay between tools.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import yaml
from pydantic import ValidationError

from .argsafe import is_valid_package_name
from .errors import ExternalFailed, ExternalUnavailable, QuotaExhausted, ToolshedError
from .models import ExtractionEntry, RateLimit, RateLimits, RepoInfo, SearchHit, Source, Tool
from .results import SyncConfig, SyncResult

if TYPE_CHECKING:
    from .store import Store

log = logging.getLogger(__name__)

GH_INSTALL_HINT = "install from https://cli.github.com and run `gh auth login`"

# Below this the search quota (30/min) can run dry mid-batch
SEARCH_SAFE_DELAY_MS = 2000

# Used when GitHub cannot say when a quota resets
DEFAULT_QUOTA_WAIT = 60

LANGUAGE_FILTERS = {
    "cargo": "language:rust",
    "pip": "language:python",
    "npm": "language:javascript OR language:typescript",
    "go": "language:go",
}

REPO_JQ = ("{name, full_name: .full_name, description, "
           "stargazersCount: .stargazers_count, language, homepage, topics, "
           "owner: {login: .owner.login}}")

DEFAULT_TOPIC_CATEGORIES: dict[str, list[str]] = {
    "search": ["search", "grep", "regex", "find", "ripgrep", "ag", "ack"],
    "files": ["files", "filesystem", "ls", "file-manager", "directory", "tree", "disk"],
    "git": ["git", "github", "gitlab", "version-control", "vcs"],
    "shell": ["shell", "terminal", "cli", "command-line", "bash", "zsh", "fish",
              "prompt", "readline"],
    "container": ["docker", "container", "kubernetes", "k8s", "podman", "oci"],
    "editor": ["editor", "vim", "neovim", "emacs", "text-editor", "ide"],
    "network": ["network", "http", "curl", "api", "rest", "web", "dns", "proxy"],
    "data": ["json", "yaml", "csv", "jq", "data", "parsing", "xml", "toml"],
    "system": ["system", "process", "monitoring", "htop", "top", "performance",
               "benchmark", "profiling"],
    "security": ["security", "encryption", "password", "ssh", "gpg", "crypto",
                 "vault", "secrets"],
    "dev": ["development", "programming", "compiler", "linter", "formatter",
            "testing", "debugging", "build"],
}


def source_to_language_filter(source: Source | str | None) -> str | None:
    if source is None:
        return None
    return LANGUAGE_FILTERS.get(str(source))


class TopicMapping:
    """Ordered category → keywords table used to categorise by topics."""

    def __init__(self, categories: dict[str, list[str]] | None = None):
        source = DEFAULT_TOPIC_CATEGORIES if categories is None else categories
        self.categories = {
            cat: [kw.lower() for kw in keywords] for cat, keywords in source.items()
        }

    @classmethod
    def load(cls, path: Path | None = None) -> TopicMapping:
        """User mapping from YAML (``categories: {name: [keywords]}``) or defaults."""
        if path is None or not path.exists():
            return cls()
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            log.warning("Ignoring unreadable topic mapping %s: %s", path, e)
            return cls()
        categories = data.get("categories") if isinstance(data, dict) else None
        if not isinstance(categories, dict) or not categories:
            log.warning("Topic mapping %s has no categories table; using defaults", path)
            return cls()
        return cls({str(k): [str(kw) for kw in v or []] for k, v in categories.items()})

    def category_for(self, topics: list[str]) -> str | None:
        """Highest-scoring category; ties go to the earlier category."""
        lowered = [t.lower() for t in topics]
        best, best_score = None, 0
        for category, keywords in self.categories.items():
            score = sum(1 for t in lowered if t in keywords)
            if score > best_score:
                best, best_score = category, score
        return best


def topics_to_category(topics: list[str], mapping: TopicMapping | None = None) -> str | None:
    return (mapping or TopicMapping()).category_for(topics)


class GitHubFetcher:
    """Thin wrapper around ``gh`` with quota-aware error mapping."""

    def __init__(self, runner: Callable[..., subprocess.CompletedProcess] | None = None,
                 timeout: float = 30):
        self._runner = runner or subprocess.run
        self.timeout = timeout

    def _gh(self, args: list[str], quota: str = "core") -> str:
        try:
            result = self._runner(["gh", *args], capture_output=True, text=True,
                                  timeout=self.timeout)
        except FileNotFoundError:
            raise ExternalUnavailable("gh", GH_INSTALL_HINT)
        except subprocess.TimeoutExpired:
            raise ExternalFailed("gh", -1, f"timed out after {self.timeout}s")
        if result.returncode != 0:
            stderr = result.stderr or ""
            if "rate limit" in stderr.lower():
                raise QuotaExhausted(quota, self._reset_seconds(quota, args))
            raise ExternalFailed("gh", result.returncode, stderr)
        return result.stdout

    def _reset_seconds(self, quota: str, failed_args: list[str]) -> int:
        """Seconds until ``quota`` refills, asked of GitHub after a rate-limit error."""
        if failed_args[:2] == ["api", "rate_limit"]:
            return DEFAULT_QUOTA_WAIT
        try:
            limits = self.get_rate_limits()
        except ToolshedError as e:
            log.debug("Could not read rate limits after %s hit its limit: %s", quota, e)
            return DEFAULT_QUOTA_WAIT
        return getattr(limits, quota).reset_seconds()

    def is_available(self) -> bool:
        try:
            result = self._runner(["gh", "--version"], capture_output=True, text=True,
                                  timeout=5)
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def get_rate_limits(self) -> RateLimits:
        out = self._gh(["api", "rate_limit"])
        try:
            resources = json.loads(out)["resources"]
            return RateLimits(core=RateLimit(**resources["core"]),
                              search=RateLimit(**resources["search"]))
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            raise ExternalFailed("gh", 0, f"unexpected rate_limit output: {e}")

    def search_repo(self, name: str, source: Source | str | None = None) -> SearchHit | None:
        lang = source_to_language_filter(source)
        query = f"{name} {lang}" if lang else name
        out = self._gh(
            ["search", "repos", query, "--json",
             "name,fullName,description,stargazersCount,owner", "--limit", "1"],
            quota="search",
        )
        try:
            hits = json.loads(out or "[]")
            return SearchHit(**hits[0]) if hits else None
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise ExternalFailed("gh", 0, f"unexpected search output: {e}")

    def get_repo_info(self, owner: str, repo: str) -> RepoInfo:
        if not (is_valid_package_name(owner) and is_valid_package_name(repo)):
            raise ExternalFailed("gh", 0, f"refusing odd repository name {owner}/{repo}")
        out = self._gh(["api", f"repos/{owner}/{repo}", "--jq", REPO_JQ])
        try:
            return RepoInfo(**json.loads(out))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise ExternalFailed("gh", 0, f"unexpected repo output: {e}")

    def find_repo(self, name: str, source: Source | str | None = None) -> RepoInfo | None:
        hit = self.search_repo(name, source)
        if hit is None:
            return None
        return self.get_repo_info(hit.owner.login, hit.name)


def apply_repo_info(store: Store, tool: Tool, info: RepoInfo,
                    mapping: TopicMapping | None = None) -> None:
    """Write one repo's metadata into the catalogue for ``tool``."""
    store.set_github_info(tool.name, info.to_upstream())
    if info.topics:
        store.add_labels(tool.name, info.topics)
    if not tool.description and info.description:
        store.set_description(tool.name, info.description)
    category = tool.category
    if not category:
        category = (mapping or TopicMapping()).category_for(info.topics)
        if category:
            store.set_category(tool.name, category)
    store.cache_extraction(ExtractionEntry(
        repo_owner=info.owner.login, repo_name=info.name, name=tool.name,
        binary=tool.binary_name, source=tool.source,
        install_command=tool.install_command,
        description=tool.description or info.description, category=category,
    ))


def _plan_batch(limits: RateLimits, requested: int, result: SyncResult) -> int:
    core, search = limits.core, limits.search
    if search.remaining <= 0:
        raise QuotaExhausted("search", search.reset_seconds())
    if core.remaining <= 0:
        raise QuotaExhausted("core", core.reset_seconds())

    batch = min(requested, core.remaining, search.remaining)
    if batch < requested:
        if search.remaining <= core.remaining:
            binding, left, wait = "search", search.remaining, f"{search.reset_seconds()}s"
        else:
            binding, left, wait = "core", core.remaining, f"{core.reset_minutes()}m"
        result.warn(f"GitHub {binding} quota allows only {left} more call(s) "
                    f"(resets in {wait}); processing {batch} of {requested} tools")
    return batch


def sync_upstream(
    store: Store,
    fetcher: GitHubFetcher,
    config: SyncConfig | None = None,
    mapping: TopicMapping | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SyncResult:
    """Fetch upstream info for tools that have none, within both quotas."""
    config = config or SyncConfig()
    result = SyncResult(step="upstream")

    tools = store.tools_without_github()
    if not tools:
        return result
    if not fetcher.is_available():
        raise ExternalUnavailable("gh", GH_INSTALL_HINT)

    requested = min(config.limit, len(tools))
    if requested < 1:
        result.warn(f"Batch limit of {config.limit} allows no GitHub lookups")
        return result
    batch = _plan_batch(fetcher.get_rate_limits(), requested, result)
    if config.delay_ms < SEARCH_SAFE_DELAY_MS and batch > 1:
        result.warn(f"Delay of {config.delay_ms}ms is below {SEARCH_SAFE_DELAY_MS}ms; "
                    "the search quota may run out mid-batch")

    for i, tool in enumerate(tools[:batch]):
        try:
            if i and config.delay_ms > 0:
                sleep(config.delay_ms / 1000)
            info = fetcher.find_repo(tool.name, tool.source)
        except QuotaExhausted as e:
            result.aborted = str(e)
            log.warning("%s; %d tool(s) left for the next run", e, batch - i)
            break
        except ToolshedError as e:
            result.fail(tool.name, e)
            continue
        except KeyboardInterrupt:
            result.interrupted = True
            break

        if info is None:
            log.info("%s: no repository found", tool.name)
            result.skipped += 1
            continue
        if config.verbose:
            print(f"  {tool.name} -> {info.owner.login}/{info.name}")
        if not config.dry_run:
            apply_repo_info(store, tool, info, mapping)
        result.changed += 1

    return result


def backfill_descriptions(store: Store, dry_run: bool = False) -> SyncResult:
    """Copy cached upstream descriptions into tools that lack their own."""
    result = SyncResult(step="backfill")
    for name, description in store.tools_needing_description_backfill():
        if not dry_run:
            store.set_description(name, description)
        result.changed += 1
    return result
