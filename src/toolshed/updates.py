"""Update planning — what could be upgraded, and from where.

The planner is read-only. It reports Updates within a tool's own source
and MigrationCandidates where another registry ships a newer stable
release than the system package. Acting on either goes through the
source adapter's SafeCommand builders.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from .errors import ToolshedError
from .models import MigrationCandidate, Source, Update
from .sources import registry
from .versions import is_stable_version, version_is_newer

if TYPE_CHECKING:
    from .sources.base import PackageSource
    from .store import Store

log = logging.getLogger(__name__)

# Sources whose packages tend to lag upstream
SLOW_SOURCES = (Source.APT, Source.SNAP)

APT_TO_CARGO = {
    "bat": "bat",
    "fd-find": "fd-find",
    "ripgrep": "ripgrep",
    "exa": "eza",
    "eza": "eza",
    "dust": "du-dust",
    "procs": "procs",
    "bottom": "bottom",
    "zoxide": "zoxide",
    "starship": "starship",
    "delta": "git-delta",
    "git-delta": "git-delta",
    "tokei": "tokei",
    "hyperfine": "hyperfine",
    "just": "just",
    "sd": "sd",
    "tealdeer": "tealdeer",
    "tldr": "tealdeer",
    "gitui": "gitui",
    "zellij": "zellij",
    "helix": "helix",
    "hx": "helix",
    "alacritty": "alacritty",
}

APT_TO_PIP = {name: name for name in (
    "httpie", "youtube-dl", "yt-dlp", "black", "ruff", "mypy", "pylint", "ansible",
)}

APT_TO_NPM = {name: name for name in ("prettier", "eslint", "typescript")}

# Checked in this order; the first newer hit wins
MIGRATION_TARGETS = (
    (Source.CARGO, APT_TO_CARGO),
    (Source.PIP, APT_TO_PIP),
    (Source.NPM, APT_TO_NPM),
)


def _adapters(sources: dict[str, PackageSource] | None) -> dict[str, PackageSource]:
    return registry.discover() if sources is None else sources


def list_updates(
    store: Store,
    source: Source | str | None = None,
    tracked_only: bool = False,
    tool: str | None = None,
    sources: dict[str, PackageSource] | None = None,
) -> list[Update]:
    """Upgrades available within each installed tool's own source.

    Tracked tools are checked one by one against their registry. Unless
    ``tracked_only`` is set, each manager's own outdated report is merged
    in as well.
    """
    adapters = _adapters(sources)
    wanted = str(Source.parse(str(source))) if source else None

    if tool:
        found = store.get_tool_by_name(tool)
        candidates = [found] if found else []
    else:
        candidates = store.list_tools(installed_only=True)

    updates: dict[str, Update] = {}
    for t in candidates:
        if wanted and str(t.source) != wanted:
            continue
        adapter = adapters.get(str(t.source))
        if adapter is None:
            continue
        try:
            current = adapter.query_installed_version(t.name)
            if not current:
                continue
            available = adapter.query_available_versions(t.name, current)
        except (ToolshedError, httpx.HTTPError) as e:
            log.warning("Could not check %s for updates: %s", t.name, e)
            continue
        if available:
            updates[t.name] = Update(name=t.name, source=t.source, current=current,
                                     latest=available[-1], available=available)

    if not tracked_only and not tool:
        for name, adapter in adapters.items():
            if wanted and name != wanted:
                continue
            if not adapter.is_available():
                continue
            try:
                reported = adapter.check_updates()
            except ToolshedError as e:
                log.warning("%s outdated check failed: %s", name, e)
                continue
            for update in reported:
                updates.setdefault(update.name, update)

    return sorted(updates.values(), key=lambda u: (str(u.source), u.name))


def check_cross_source_upgrades(
    tools: list[tuple[str, str, Source]],
    sources: dict[str, PackageSource] | None = None,
) -> list[MigrationCandidate]:
    """Migration candidates for (name, installed version, source) triples.

    Only slow-source tools are considered. For each, the rename tables are
    tried cargo, then pip, then npm; the first registry offering a strictly
    newer stable release wins.
    """
    adapters = _adapters(sources)
    candidates = []
    for name, current, current_source in tools:
        if current_source not in SLOW_SOURCES:
            continue
        for target, table in MIGRATION_TARGETS:
            package = table.get(name)
            adapter = adapters.get(str(target))
            if package is None or adapter is None:
                continue
            try:
                latest = adapter.query_latest_version(package)
            except (ToolshedError, httpx.HTTPError) as e:
                log.warning("Could not query %s for %s: %s", target, package, e)
                continue
            if latest and is_stable_version(latest) and version_is_newer(latest, current):
                candidates.append(MigrationCandidate(
                    name=name, current_version=current, current_source=current_source,
                    better_version=latest, better_source=target,
                ))
                break
    return candidates


def get_migration_candidates(
    tools: list[tuple[str, str, Source]],
    from_source: Source | str | None = None,
    to_source: Source | str | None = None,
    sources: dict[str, PackageSource] | None = None,
) -> list[MigrationCandidate]:
    candidates = check_cross_source_upgrades(tools, sources)
    if from_source:
        candidates = [c for c in candidates if str(c.current_source) == str(from_source)]
    if to_source:
        candidates = [c for c in candidates if str(c.better_source) == str(to_source)]
    return candidates


def list_migrations(
    store: Store,
    from_source: Source | str | None = None,
    to_source: Source | str | None = None,
    sources: dict[str, PackageSource] | None = None,
) -> list[MigrationCandidate]:
    """Migration candidates for every installed slow-source tool in the catalogue."""
    adapters = _adapters(sources)
    triples = []
    for tool in store.list_tools(installed_only=True):
        if tool.source not in SLOW_SOURCES:
            continue
        if from_source and str(tool.source) != str(from_source):
            continue
        adapter = adapters.get(str(tool.source))
        if adapter is None:
            continue
        current = adapter.query_installed_version(tool.name)
        if current:
            triples.append((tool.name, current, tool.source))
    return get_migration_candidates(triples, from_source, to_source, adapters)
