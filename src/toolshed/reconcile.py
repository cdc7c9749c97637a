"""Reconcile pipeline — bring the catalogue in line with the host.

Steps run in a fixed order, each committing on its own:

1. status        is each tool's binary on PATH?
2. scan          what do the package managers report as installed?
3. descriptions  fill empty descriptions from registries or man/--help
4. upstream      fetch GitHub metadata within the rate limits
5. usage         count shell history

Every step honours ``SyncConfig.dry_run`` and returns a SyncResult.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from .argsafe import is_valid_package_name
from .errors import StoreIO, ToolshedError
from .history import scan_usage
from .results import SyncConfig, SyncResult
from .sources import registry
from .sources.manual import describe_binary
from .upstream import GitHubFetcher, TopicMapping, sync_upstream

if TYPE_CHECKING:
    from .sources.base import PackageSource
    from .store import Store

log = logging.getLogger(__name__)

STEPS = ("status", "scan", "descriptions", "upstream", "usage")


def sync_status(store: Store, config: SyncConfig | None = None) -> SyncResult:
    """Set ``is_installed`` from PATH lookups of each tool's binary."""
    config = config or SyncConfig()
    result = SyncResult(step="status")
    for tool in store.list_tools():
        present = shutil.which(tool.binary) is not None
        if present == tool.is_installed:
            result.unchanged += 1
            continue
        if config.verbose:
            print(f"  {tool.name}: {'installed' if present else 'missing'}")
        if not config.dry_run:
            store.set_tool_installed(tool.name, present)
        result.changed += 1
    return result


def scan_sources(
    store: Store,
    config: SyncConfig | None = None,
    sources: dict[str, PackageSource] | None = None,
) -> SyncResult:
    """Track every tool a package manager reports that the catalogue lacks.

    Tools already in the catalogue are left untouched.
    """
    config = config or SyncConfig()
    result = SyncResult(step="scan")
    adapters = registry.available() if sources is None else sources

    for source_name, adapter in adapters.items():
        try:
            detected = adapter.detect_installed_tools()
        except ToolshedError as e:
            result.fail(source_name, e)
            continue
        log.info("%s reports %d installed tool(s)", source_name, len(detected))

        for tool in detected:
            if not is_valid_package_name(tool.name):
                log.debug("Ignoring unsafe name from %s: %r", source_name, tool.name)
                result.skipped += 1
                continue
            if store.get_tool_by_name(tool.name) is not None:
                result.unchanged += 1
                continue
            if config.verbose:
                print(f"  + {tool.name} ({tool.source})")
            if not config.dry_run:
                store.insert_tool(tool)
            result.changed += 1
    return result


def fetch_descriptions(
    store: Store,
    config: SyncConfig | None = None,
    sources: dict[str, PackageSource] | None = None,
) -> SyncResult:
    """Fill empty descriptions from each tool's registry, then man/--help."""
    config = config or SyncConfig()
    result = SyncResult(step="descriptions")
    adapters = registry.discover() if sources is None else sources

    for tool in store.list_tools():
        if tool.description:
            continue
        adapter = adapters.get(str(tool.source))
        try:
            description = adapter.fetch_description(tool.name) if adapter else None
            if not description and tool.is_installed:
                description = describe_binary(tool.binary)
        except (ToolshedError, httpx.HTTPError) as e:
            result.fail(tool.name, e)
            continue

        if not description:
            result.skipped += 1
            continue
        if config.verbose:
            print(f"  {tool.name}: {description}")
        if not config.dry_run:
            store.set_description(tool.name, description)
        result.changed += 1
    return result


def fetch_upstream(
    store: Store,
    config: SyncConfig | None = None,
    fetcher: GitHubFetcher | None = None,
    mapping: TopicMapping | None = None,
) -> SyncResult:
    """Quota-limited GitHub enrichment; an exhausted quota ends the step."""
    config = config or SyncConfig()
    try:
        return sync_upstream(store, fetcher or GitHubFetcher(), config, mapping)
    except StoreIO:
        raise
    except ToolshedError as e:
        log.warning("upstream: %s", e)
        return SyncResult(step="upstream", aborted=str(e))


def ingest_usage(
    store: Store,
    config: SyncConfig | None = None,
    histories: dict[str, Path] | None = None,
) -> SyncResult:
    return scan_usage(store, config, histories)


def sync_all(
    store: Store,
    config: SyncConfig | None = None,
    *,
    steps: tuple[str, ...] = STEPS,
    sources: dict[str, PackageSource] | None = None,
    fetcher: GitHubFetcher | None = None,
    mapping: TopicMapping | None = None,
    histories: dict[str, Path] | None = None,
) -> dict[str, SyncResult]:
    """Run the requested steps in pipeline order and return per-step results.

    A failing step is recorded and the remaining steps still run. An
    interrupt stops the pipeline after the step in progress.
    """
    config = config or SyncConfig()
    runners = {
        "status": lambda: sync_status(store, config),
        "scan": lambda: scan_sources(store, config, sources),
        "descriptions": lambda: fetch_descriptions(store, config, sources),
        "upstream": lambda: fetch_upstream(store, config, fetcher, mapping),
        "usage": lambda: ingest_usage(store, config, histories),
    }

    results: dict[str, SyncResult] = {}
    for step in STEPS:
        if step not in steps:
            continue
        if config.verbose:
            print(f"Syncing {step}...")
        try:
            result = runners[step]()
        except StoreIO:
            raise
        except ToolshedError as e:
            result = SyncResult(step=step, aborted=str(e))
            log.warning("%s: %s", step, e)
        except KeyboardInterrupt:
            results[step] = SyncResult(step=step, interrupted=True)
            break
        results[step] = result
        if result.interrupted:
            break
    return results
