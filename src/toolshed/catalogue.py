"""Catalogue façade — the one object the CLI (and any UI) talks to."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path

from . import history, reconcile, updates
from .argsafe import SafeCommand, validate_package_name
from .config import Config
from .errors import ExternalUnavailable, NotFound, ToolshedError
from .models import (
    Bundle, MigrationCandidate, RateLimits, SearchLogEntry, Source, Tool, Update, UpstreamInfo,
    UsageStats,
)
from .results import SyncConfig, SyncResult
from .sources import registry as source_registry
from .sources.base import PackageSource
from .store import Store
from .upstream import GH_INSTALL_HINT, GitHubFetcher, TopicMapping, backfill_descriptions

log = logging.getLogger(__name__)


class Catalogue:
    """Tool catalogue operations over one Store.

    The source registry and the gh fetcher can be injected;
    by default the built-in adapters and the real ``gh`` are used.
    """

    def __init__(
        self,
        config: Config,
        store: Store | None = None,
        registry: dict[str, PackageSource] | None = None,
        fetcher: GitHubFetcher | None = None,
    ):
        self.config = config
        self.store = store or Store(config)
        self._sources = registry
        self._fetcher = fetcher

    @property
    def sources(self) -> dict[str, PackageSource]:
        return source_registry.discover() if self._sources is None else dict(self._sources)

    @property
    def fetcher(self) -> GitHubFetcher:
        if self._fetcher is None:
            self._fetcher = GitHubFetcher()
        return self._fetcher

    def close(self) -> None:
        self.store.close()

    def _require_tool(self, name: str) -> Tool:
        tool = self.store.get_tool_by_name(name)
        if tool is None:
            raise NotFound("Tool", name)
        return tool

    def _adapter_for(self, source: Source | str) -> PackageSource:
        adapter = self.sources.get(str(source))
        if adapter is None:
            raise ToolshedError(f"No package manager for source '{source}'")
        return adapter

    # ── Tools ─────────────────────────────────────────────────────────

    def add_tool(self, tool: Tool) -> Tool:
        self.store.insert_tool(tool)
        return self.store.get_tool_by_name(tool.name)

    def get_tool(self, name: str) -> Tool | None:
        return self.store.get_tool_by_name(name)

    def list_tools(self, **filters) -> list[Tool]:
        return self.store.list_tools(**filters)

    def search_tools(self, query: str) -> list[Tool]:
        return self.store.search_tools(query)

    def update_tool(self, tool: Tool) -> None:
        self.store.update_tool(tool)

    def delete_tool(self, name: str) -> None:
        if not self.store.delete_tool(name):
            raise NotFound("Tool", name)

    def mark_installed(self, name: str, installed: bool = True) -> None:
        self.store.set_tool_installed(name, installed)

    def set_favorite(self, name: str, favorite: bool = True) -> None:
        self.store.set_favorite(name, favorite)

    def set_description(self, name: str, description: str | None) -> None:
        self.store.set_description(name, description)

    def set_category(self, name: str, category: str | None) -> None:
        self.store.set_category(name, category)

    # ── Bundles ───────────────────────────────────────────────────────

    def create_bundle(self, name: str, tools: list[str], description: str | None = None) -> Bundle:
        self.store.create_bundle(name, tools, description)
        return self.store.get_bundle(name)

    def list_bundles(self) -> list[Bundle]:
        return self.store.list_bundles()

    def get_bundle(self, name: str) -> Bundle:
        bundle = self.store.get_bundle(name)
        if bundle is None:
            raise NotFound("Bundle", name)
        return bundle

    def delete_bundle(self, name: str) -> None:
        if not self.store.delete_bundle(name):
            raise NotFound("Bundle", name)

    def add_to_bundle(self, name: str, tools: list[str]) -> int:
        return self.store.add_to_bundle(name, tools)

    def remove_from_bundle(self, name: str, tools: list[str]) -> int:
        return self.store.remove_from_bundle(name, tools)

    def install_bundle_commands(self, name: str, source: Source | str = Source.CARGO
                                ) -> list[tuple[Tool, SafeCommand]]:
        """Install commands for the bundle's members that are not installed.

        Members the catalogue doesn't know yet are added first, with
        ``source`` as their assumed origin.
        """
        plan = []
        for member in self.get_bundle(name).tools:
            tool = self.store.get_tool_by_name(member)
            if tool is None:
                tool = Tool(name=member).with_source(source)
                self.store.insert_tool(tool)
                tool = self.store.get_tool_by_name(member)
            if tool.is_installed:
                continue
            plan.append((tool, self.install_command(tool.name)))
        return plan

    # ── Labels ────────────────────────────────────────────────────────

    def add_labels(self, name: str, labels: list[str]) -> int:
        return self.store.add_labels(name, labels)

    def remove_label(self, name: str, label: str) -> bool:
        return self.store.remove_label(name, label)

    def labels_for(self, name: str) -> list[str]:
        return self.store.get_labels(name)

    def label_counts(self) -> list[tuple[str, int]]:
        return self.store.get_label_counts()

    def tools_with_label(self, label: str) -> list[Tool]:
        return self.store.list_tools_by_label(label)

    # ── Usage ─────────────────────────────────────────────────────────

    def record_usage(self, name: str, count: int = 1, last_used: str | None = None) -> bool:
        return self.store.record_usage(name, count, last_used)

    def bulk_record_usage(self, counts: dict[str, int] | Counter) -> int:
        """Record many counts; returns how many tools were credited."""
        return sum(1 for name, n in counts.items() if self.store.record_usage(name, n))

    def get_usage(self, name: str) -> UsageStats | None:
        return self.store.get_usage(name)

    def list_usage(self) -> list[tuple[str, UsageStats]]:
        return self.store.get_all_usage()

    def clear_usage(self) -> int:
        return self.store.clear_usage()

    def unused_tools(self) -> list[Tool]:
        return self.store.get_unused_tools()

    def daily_usage(self, name: str, days: int = 30) -> list[int]:
        return self.store.get_daily_usage(name, days)

    def recommend(self, count: int = 5, category_bias: str | None = None
                  ) -> list[tuple[Tool, str]]:
        """Uninstalled, unused tools from the categories used most.

        Categories are ranked by summed use counts of their tools; the top
        three are searched. ``category_bias`` is searched first regardless.
        """
        usage = self.store.get_all_usage()
        used = {name for name, _ in usage}
        scores: Counter = Counter()
        for name, stats in usage:
            tool = self.store.get_tool_by_name(name)
            if tool and tool.category:
                scores[tool.category] += stats.use_count

        categories = [cat for cat, _ in scores.most_common(3)]
        if category_bias:
            categories = [category_bias] + [c for c in categories if c != category_bias]

        picks: list[tuple[Tool, str]] = []
        for category in categories:
            for tool in self.store.list_tools(category=category):
                if len(picks) >= count:
                    return picks
                if not tool.is_installed and tool.name not in used:
                    picks.append((tool, category))
        return picks

    def usage_log(self, line: str) -> str | None:
        """Hook entry point: credit one use, never raise, never print."""
        try:
            return history.log_usage_line(self.store, line)
        except Exception:
            # the shell must never notice a failure here
            log.debug("usage log dropped for %r", line, exc_info=True)
            return None

    # ── Upstream ──────────────────────────────────────────────────────

    def set_upstream(self, name: str, info: UpstreamInfo) -> None:
        self.store.set_github_info(name, info)

    def get_upstream(self, name: str) -> UpstreamInfo | None:
        return self.store.get_github_info(name)

    def tools_missing_upstream(self, limit: int | None = None) -> list[Tool]:
        return self.store.tools_without_github(limit)

    def tools_needing_description_backfill(self) -> list[tuple[str, str]]:
        return self.store.tools_needing_description_backfill()

    def topic_mapping(self) -> TopicMapping:
        return TopicMapping.load(self.config.topic_mapping_path)

    def rate_limits(self) -> RateLimits:
        if not self.fetcher.is_available():
            raise ExternalUnavailable("gh", GH_INSTALL_HINT)
        return self.fetcher.get_rate_limits()

    def backfill_descriptions(self, dry_run: bool = False) -> SyncResult:
        return backfill_descriptions(self.store, dry_run)

    # ── Reconcile ─────────────────────────────────────────────────────

    def sync_config(self, **overrides) -> SyncConfig:
        base = SyncConfig(limit=self.config.github.batch_limit,
                          delay_ms=self.config.github.delay_ms)
        for key, value in overrides.items():
            if value is not None:
                setattr(base, key, value)
        return base

    def sync_status(self, config: SyncConfig | None = None) -> SyncResult:
        return reconcile.sync_status(self.store, config or self.sync_config())

    def scan(self, config: SyncConfig | None = None) -> SyncResult:
        sources = self._sources
        if sources is None:
            sources = source_registry.available()
        return reconcile.scan_sources(self.store, config or self.sync_config(), sources)

    def fetch_descriptions(self, config: SyncConfig | None = None) -> SyncResult:
        return reconcile.fetch_descriptions(self.store, config or self.sync_config(),
                                            self.sources)

    def fetch_upstream(self, config: SyncConfig | None = None) -> SyncResult:
        return reconcile.fetch_upstream(self.store, config or self.sync_config(),
                                        self.fetcher, self.topic_mapping())

    def ingest_usage(self, config: SyncConfig | None = None,
                     histories: dict[str, Path] | None = None) -> SyncResult:
        return reconcile.ingest_usage(self.store, config or self.sync_config(), histories)

    def sync_all(self, config: SyncConfig | None = None,
                 steps: tuple[str, ...] = reconcile.STEPS) -> dict[str, SyncResult]:
        sources = self._sources
        return reconcile.sync_all(
            self.store, config or self.sync_config(), steps=steps,
            sources=sources, fetcher=self.fetcher, mapping=self.topic_mapping(),
        )

    # ── Plan ──────────────────────────────────────────────────────────

    def list_updates(self, source: Source | str | None = None, tracked_only: bool = False,
                     tool: str | None = None) -> list[Update]:
        return updates.list_updates(self.store, source, tracked_only, tool, self._sources)

    def list_migrations(self, from_source: Source | str | None = None,
                        to_source: Source | str | None = None) -> list[MigrationCandidate]:
        return updates.list_migrations(self.store, from_source, to_source, self._sources)

    # ── Execute ───────────────────────────────────────────────────────

    def install_command(self, name: str, source: Source | str | None = None,
                        version: str | None = None) -> SafeCommand:
        validate_package_name(name)
        if source is None:
            tool = self.store.get_tool_by_name(name)
            source = tool.source if tool else Source.UNKNOWN
        return self._adapter_for(source).build_install_cmd(name, version)

    def uninstall_command(self, name: str) -> SafeCommand:
        tool = self._require_tool(name)
        return self._adapter_for(tool.source).build_uninstall_cmd(tool.name)

    def upgrade_command(self, name: str, version: str | None = None) -> SafeCommand:
        tool = self._require_tool(name)
        return self._adapter_for(tool.source).build_install_cmd(tool.name, version)

    def record_install(self, name: str, source: Source | str) -> Tool:
        """Catalogue side of a successful install."""
        source = Source.parse(str(source))
        tool = self.store.get_tool_by_name(name)
        if tool is None:
            tool = Tool(name=name).with_source(source)
            adapter = self.sources.get(str(source))
            if adapter is not None:
                tool = tool.with_install_command(str(adapter.build_install_cmd(name)))
            self.store.insert_tool(tool.installed())
        else:
            self.store.update_tool(tool.with_source(source).installed())
        return self.store.get_tool_by_name(name)

    # ── Discover log ──────────────────────────────────────────────────

    def save_search(self, query: str, ai_enabled: bool = False,
                    sources: list[str] | None = None) -> int:
        return self.store.save_search(query, ai_enabled, sources)

    def recent_searches(self, limit: int = 20) -> list[SearchLogEntry]:
        return self.store.get_search_history(limit)

    def clear_searches(self) -> int:
        return self.store.clear_search_history()

    def prune_searches(self, keep: int) -> int:
        return self.store.prune_search_history(keep)

    # ── Export / import ───────────────────────────────────────────────

    def export_data(self) -> dict:
        """Every tool with its labels, plus every bundle."""
        tools = []
        for tool in self.store.list_tools():
            entry = tool.model_dump(exclude={"id", "created_at", "updated_at"}, mode="json")
            entry["labels"] = self.store.get_labels(tool.name)
            tools.append(entry)
        bundles = [b.model_dump(include={"name", "description", "tools"})
                   for b in self.store.list_bundles()]
        return {"version": 1, "tools": tools, "bundles": bundles}

    def import_data(self, data: dict) -> dict[str, int]:
        """Upsert tools (with labels) and bundles from ``export_data`` output."""
        counts = {"created": 0, "updated": 0, "bundles": 0}
        for entry in data.get("tools", []):
            entry = dict(entry)
            labels = entry.pop("labels", [])
            entry["source"] = Source.parse(entry.get("source"))
            _, created = self.store.upsert_tool(Tool(**entry))
            counts["created" if created else "updated"] += 1
            if labels:
                self.store.add_labels(entry["name"], labels)
        for entry in data.get("bundles", []):
            if self.store.get_bundle(entry["name"]) is None:
                self.store.create_bundle(entry["name"], entry.get("tools", []),
                                         entry.get("description"))
            else:
                self.store.add_to_bundle(entry["name"], entry.get("tools", []))
            counts["bundles"] += 1
        return counts
