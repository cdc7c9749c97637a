"""toolshed CLI (shed) — catalogue, install and track your command-line tools."""

from __future__ import annotations

import argparse
import datetime
import json
import logging
import shutil
import sys
from pathlib import Path

import yaml

from . import __version__
from .errors import Cancelled, ToolshedError

log = logging.getLogger(__name__)


def _json_default(obj):
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, set):
        return sorted(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    raise TypeError(f"Not JSON serializable: {type(obj)}")


def _dumps(obj, **kw):
    return json.dumps(obj, default=_json_default, **kw)


def _config(args):
    from .config import load_config
    cfg = load_config(getattr(args, "config", None))
    if getattr(args, "data_dir", None):
        cfg.data_dir = args.data_dir
    return cfg


def _catalogue(args):
    from .catalogue import Catalogue
    return Catalogue(_config(args))


def _confirm(action: str, assume_yes: bool = False) -> None:
    """Ask before touching the system. Declining raises Cancelled."""
    if assume_yes:
        return
    try:
        answer = input(f"{action}? [y/N] ")
    except EOFError:
        answer = ""
    if answer.strip().lower() not in ("y", "yes"):
        raise Cancelled(action)


def _run(cmd) -> None:
    """Stream a SafeCommand's output; a non-zero exit is an error."""
    from .errors import ExternalFailed
    print(f"$ {cmd}", file=sys.stderr)
    out = cmd.stream(on_line=print)
    if not out.ok:
        raise ExternalFailed(cmd.program, out.returncode, "\n".join(out.lines[-5:]))


def _print_result(label: str, result) -> None:
    print(f"{label}: {result}")
    for warning in result.warnings:
        print(f"  ! {warning}", file=sys.stderr)
    for error in result.errors[:10]:
        print(f"  x {error}", file=sys.stderr)
    if len(result.errors) > 10:
        print(f"  ... and {len(result.errors) - 10} more", file=sys.stderr)


def _tool_line(tool) -> str:
    mark = "*" if tool.is_favorite else " "
    state = "+" if tool.is_installed else "-"
    desc = f"  {tool.description}" if tool.description else ""
    return f"{mark}{state} {tool.name:24s} [{tool.source}]{desc}"


# ── tools ──────────────────────────────────────────────────────────────

def cmd_add(args):
    from .models import Source, Tool
    cat = _catalogue(args)
    tool = (Tool(name=args.name)
            .with_source(Source.parse(args.source) if args.source else Source.MANUAL)
            .with_description(args.description)
            .with_category(args.category)
            .with_binary(args.binary)
            .with_install_command(args.install_command)
            .with_notes(args.notes)
            .installed(args.installed))
    tool = cat.add_tool(tool)
    if args.label:
        cat.add_labels(tool.name, args.label)
    if args.json:
        print(_dumps(tool.model_dump(mode="json"), indent=2))
    else:
        print(f"Added {tool.name} ({tool.source})")
    cat.close()


def cmd_show(args):
    from .errors import NotFound
    cat = _catalogue(args)
    tool = cat.get_tool(args.name)
    if tool is None:
        raise NotFound("Tool", args.name)
    labels = cat.labels_for(tool.name)
    usage = cat.get_usage(tool.name)
    upstream = cat.get_upstream(tool.name)

    if args.json:
        out = tool.model_dump(mode="json")
        out["labels"] = labels
        out["usage"] = usage.model_dump() if usage else None
        out["upstream"] = upstream.model_dump() if upstream else None
        print(_dumps(out, indent=2))
        cat.close()
        return

    print(f"{tool.name}")
    print(f"  Source:      {tool.source}")
    print(f"  Installed:   {'yes' if tool.is_installed else 'no'}")
    if tool.binary_name:
        print(f"  Binary:      {tool.binary_name}")
    if tool.description:
        print(f"  Description: {tool.description}")
    if tool.category:
        print(f"  Category:    {tool.category}")
    if tool.install_command:
        print(f"  Install:     {tool.install_command}")
    if tool.is_favorite:
        print("  Favorite:    yes")
    if labels:
        print(f"  Labels:      {', '.join(labels)}")
    if usage:
        print(f"  Used:        {usage.use_count}x, last {usage.last_used or 'never'}")
    if upstream:
        print(f"  Upstream:    {upstream.full_name} ({upstream.stars} stars)")
    if tool.notes:
        print(f"  Notes:       {tool.notes}")
    cat.close()


def cmd_list(args):
    cat = _catalogue(args)
    if args.label:
        tools = cat.tools_with_label(args.label)
    else:
        tools = cat.list_tools(installed_only=args.installed, category=args.category,
                               source=args.source, favorites_only=args.favorites)
    if args.json:
        print(_dumps([t.model_dump(mode="json") for t in tools], indent=2))
    elif not tools:
        print("No tools.", file=sys.stderr)
    else:
        for tool in tools:
            print(_tool_line(tool))
    cat.close()


def cmd_search(args):
    cat = _catalogue(args)
    query = " ".join(args.query)
    tools = cat.search_tools(query)
    if args.json:
        print(_dumps([t.model_dump(mode="json") for t in tools], indent=2))
    elif not tools:
        print(f"No tools match \"{query}\".", file=sys.stderr)
    else:
        for tool in tools:
            print(_tool_line(tool))
    cat.close()


def cmd_remove(args):
    cat = _catalogue(args)
    cat.delete_tool(args.name)
    print(f"Removed {args.name} from the catalogue")
    cat.close()


def cmd_fav(args):
    cat = _catalogue(args)
    cat.set_favorite(args.name, not args.off)
    print(f"{args.name}: {'not ' if args.off else ''}a favorite")
    cat.close()


def cmd_label(args):
    cat = _catalogue(args)
    action = args.label_action

    if action == "list":
        if args.name:
            labels = cat.labels_for(args.name)
            print(_dumps(labels) if args.json else "\n".join(labels))
        else:
            counts = cat.label_counts()
            if args.json:
                print(_dumps(dict(counts), indent=2))
            else:
                for label, n in counts:
                    print(f"  {label:24s} {n}")
    elif not args.name or not args.labels:
        print(f"Error: shed label {action} <tool> <label>...", file=sys.stderr)
        sys.exit(1)
    elif action == "add":
        added = cat.add_labels(args.name, args.labels)
        print(f"Added {added} label(s) to {args.name}")
    elif action == "remove":
        removed = sum(1 for label in args.labels if cat.remove_label(args.name, label))
        print(f"Removed {removed} label(s) from {args.name}")
    cat.close()


# ── bundles ────────────────────────────────────────────────────────────

def cmd_bundle(args):
    cat = _catalogue(args)
    action = args.bundle_action

    if action == "list":
        bundles = cat.list_bundles()
        if args.json:
            print(_dumps([b.model_dump() for b in bundles], indent=2))
        elif not bundles:
            print("No bundles.", file=sys.stderr)
        else:
            for b in bundles:
                desc = f"  {b.description}" if b.description else ""
                print(f"  {b.name:20s} {len(b.tools)} tool(s){desc}")
        cat.close()
        return

    if not args.name:
        print(f"Error: shed bundle {action} <name>", file=sys.stderr)
        sys.exit(1)

    if action == "create":
        bundle = cat.create_bundle(args.name, args.tools, args.description)
        print(f"Created bundle {bundle.name} with {len(bundle.tools)} tool(s)")
    elif action == "show":
        bundle = cat.get_bundle(args.name)
        if args.json:
            print(_dumps(bundle.model_dump(), indent=2))
        else:
            print(bundle.name + (f" — {bundle.description}" if bundle.description else ""))
            for i, member in enumerate(bundle.tools, 1):
                tool = cat.get_tool(member)
                state = "untracked" if tool is None else (
                    "installed" if tool.is_installed else "missing")
                print(f"  {i:2d}. {member} ({state})")
    elif action == "add":
        added = cat.add_to_bundle(args.name, args.tools)
        print(f"Added {added} tool(s) to {args.name}")
    elif action == "remove":
        removed = cat.remove_from_bundle(args.name, args.tools)
        print(f"Removed {removed} tool(s) from {args.name}")
    elif action == "delete":
        cat.delete_bundle(args.name)
        print(f"Deleted bundle {args.name}")
    elif action == "install":
        plan = cat.install_bundle_commands(args.name, args.source or "cargo")
        if not plan:
            print(f"Everything in {args.name} is installed.")
        for tool, cmd in plan:
            if args.dry_run:
                print(str(cmd))
                continue
            _confirm(f"Install {tool.name} with `{cmd}`", args.yes)
            _run(cmd)
            cat.mark_installed(tool.name, True)
    cat.close()


# ── usage ──────────────────────────────────────────────────────────────

def _sparkline(values: list[int]) -> str:
    ticks = " ▁▂▃▄▅▆▇█"
    top = max(values) if values else 0
    if not top:
        return " " * len(values)
    return "".join(ticks[min(8, round(v / top * 8))] for v in values)


def cmd_usage(args):
    action = args.usage_action

    if action == "log":
        _usage_log(args)
        return

    cat = _catalogue(args)
    if action == "scan":
        cfg = cat.sync_config(dry_run=args.dry_run, reset=args.reset)
        _print_result("usage", cat.ingest_usage(cfg))
    elif action == "show":
        if args.tool:
            usage = cat.get_usage(args.tool)
            daily = cat.daily_usage(args.tool, args.days)
            if args.json:
                print(_dumps({"tool": args.tool,
                              "usage": usage.model_dump() if usage else None,
                              "daily": daily}, indent=2))
            elif usage is None:
                print(f"No usage recorded for {args.tool}", file=sys.stderr)
            else:
                print(f"{args.tool}: {usage.use_count} use(s), last {usage.last_used or 'never'}")
                print(f"  last {args.days}d |{_sparkline(daily)}|")
        else:
            rows = cat.list_usage()
            if args.json:
                print(_dumps([{"tool": n, **u.model_dump()} for n, u in rows], indent=2))
            elif not rows:
                print("No usage recorded. Run `shed usage scan` first.", file=sys.stderr)
            else:
                for name, usage in rows[:args.limit]:
                    print(f"  {usage.use_count:6d}  {name:24s} {usage.last_used or ''}")
    elif action == "clear":
        n = cat.clear_usage()
        print(f"Cleared usage for {n} tool(s)")
    elif action == "unused":
        tools = cat.unused_tools()
        if args.json:
            print(_dumps([t.name for t in tools]))
        else:
            for tool in tools:
                print(_tool_line(tool))
    elif action == "recommend":
        picks = cat.recommend(args.count, args.category)
        if args.json:
            print(_dumps([{"tool": t.name, "category": c} for t, c in picks], indent=2))
        elif not picks:
            print("Nothing to recommend yet.", file=sys.stderr)
        else:
            for tool, category in picks:
                print(f"  {tool.name:24s} ({category}) {tool.description or ''}")
    cat.close()


def _usage_log(args):
    """Called from the shell hook on every command: silent, always exits 0."""
    try:
        cat = _catalogue(args)
        try:
            parts = ([args.tool] if args.tool else []) + list(args.line)
            cat.usage_log(" ".join(p for p in parts if p != "--"))
        finally:
            cat.close()
    except Exception:
        log.debug("usage log failed", exc_info=True)


# ── sync / gh ──────────────────────────────────────────────────────────

def cmd_sync(args):
    from .reconcile import STEPS
    cat = _catalogue(args)
    chosen = {
        "status": args.status, "scan": args.scan, "descriptions": args.descriptions,
        "upstream": args.github, "usage": args.usage,
    }
    if args.all:
        steps = STEPS
    else:
        steps = tuple(s for s in STEPS if chosen[s]) or ("status", "scan")

    cfg = cat.sync_config(dry_run=args.dry_run, verbose=args.verbose > 0,
                          limit=args.limit, delay_ms=args.delay_ms)
    if args.dry_run:
        print("(dry run: nothing will be written)", file=sys.stderr)
    results = cat.sync_all(cfg, steps)

    if args.json:
        print(_dumps({step: vars(r) for step, r in results.items()}, indent=2))
    else:
        for step, result in results.items():
            _print_result(step, result)
    cat.close()
    if any(r.interrupted for r in results.values()):
        sys.exit(130)


def cmd_gh(args):
    cat = _catalogue(args)
    action = args.gh_action

    if action == "rate-limit":
        limits = cat.rate_limits()
        if args.json:
            print(_dumps(limits.model_dump(), indent=2))
        else:
            for name, rl in (("core", limits.core), ("search", limits.search)):
                reset = (f"{rl.reset_minutes()}m" if name == "core"
                         else f"{rl.reset_seconds()}s")
                print(f"  {name:7s} {rl.remaining}/{rl.limit} remaining, resets in {reset}")
    elif action == "sync":
        cfg = cat.sync_config(dry_run=args.dry_run, verbose=args.verbose > 0,
                              limit=args.limit, delay_ms=args.delay_ms)
        result = cat.fetch_upstream(cfg)
        _print_result("upstream", result)
        if result.interrupted:
            cat.close()
            sys.exit(130)
    elif action == "backfill":
        _print_result("backfill", cat.backfill_descriptions(args.dry_run))
    cat.close()


# ── plan / execute ─────────────────────────────────────────────────────

def cmd_updates(args):
    cat = _catalogue(args)
    found = cat.list_updates(args.source, args.tracked, args.tool)
    if args.json:
        print(_dumps([u.model_dump(mode="json") for u in found], indent=2))
    elif not found:
        print("Everything is up to date.")
    else:
        for update in found:
            print(f"  {update}")
    cat.close()


def cmd_migrate(args):
    cat = _catalogue(args)
    found = cat.list_migrations(args.from_source, args.to_source)
    if args.json:
        print(_dumps([m.model_dump(mode="json") for m in found], indent=2))
    elif not found:
        print("No newer releases elsewhere.")
    else:
        for candidate in found:
            print(f"  {candidate}")
    cat.close()


def cmd_install(args):
    cat = _catalogue(args)
    known = cat.get_tool(args.name)
    source = args.source or (str(known.source) if known else None)
    cmd = cat.install_command(args.name, source, args.pin_version)
    if args.dry_run:
        print(str(cmd))
        cat.close()
        return
    _confirm(f"Run `{cmd}`", args.yes)
    _run(cmd)
    tool = cat.record_install(args.name, source)
    print(f"Installed {tool.name} ({tool.source})")
    cat.close()


def cmd_uninstall(args):
    cat = _catalogue(args)
    cmd = cat.uninstall_command(args.name)
    if args.dry_run:
        print(str(cmd))
        cat.close()
        return
    _confirm(f"Run `{cmd}`", args.yes)
    _run(cmd)
    cat.mark_installed(args.name, False)
    print(f"Uninstalled {args.name}")
    cat.close()


def cmd_upgrade(args):
    cat = _catalogue(args)
    cmd = cat.upgrade_command(args.name, args.pin_version)
    if args.dry_run:
        print(str(cmd))
        cat.close()
        return
    _confirm(f"Run `{cmd}`", args.yes)
    _run(cmd)
    print(f"Upgraded {args.name}")
    cat.close()


# ── hooks ──────────────────────────────────────────────────────────────

def cmd_hook(args):
    from .shell_hooks import install_hook, uninstall_hook
    path = Path(args.rc).expanduser() if args.rc else None
    if args.hook_action == "install":
        actions = install_hook(args.shell, path)
    else:
        actions = uninstall_hook(args.shell, path)
    for action in actions:
        print(action)


# ── export / import ────────────────────────────────────────────────────

def cmd_export(args):
    cat = _catalogue(args)
    data = cat.export_data()
    if args.format == "yaml":
        print(yaml.dump(data, default_flow_style=False, sort_keys=False).strip())
    else:
        print(_dumps(data, indent=2))
    cat.close()


def cmd_import(args):
    path = Path(args.file).expanduser()
    if not path.exists():
        print(f"Error: {path} not found", file=sys.stderr)
        sys.exit(1)
    text = path.read_text()
    try:
        data = yaml.safe_load(text) if path.suffix in (".yaml", ".yml") else json.loads(text)
    except (ValueError, yaml.YAMLError) as e:
        print(f"Error: cannot parse {path}: {e}", file=sys.stderr)
        sys.exit(1)
    cat = _catalogue(args)
    counts = cat.import_data(data or {})
    print(f"Imported: {counts['created']} new, {counts['updated']} updated, "
          f"{counts['bundles']} bundle(s)")
    cat.close()


# ── init / doctor ──────────────────────────────────────────────────────

def cmd_init(args):
    cfg = _config(args)
    dp = cfg.data_path
    if cfg.db_path.exists():
        print(f"Error: database already exists at {cfg.db_path}", file=sys.stderr)
        sys.exit(1)
    dp.mkdir(parents=True, exist_ok=True)

    from .store import Store
    store = Store(cfg)
    _ = store.conn  # triggers schema creation
    store.close()

    print(f"Initialized toolshed at {dp}")
    print("  toolshed.db  — SQLite tool catalogue")
    print("Next: `shed sync --scan` to import installed tools")


def cmd_doctor(args):
    """Catalogue health check."""
    cat = _catalogue(args)
    store = cat.store
    stats = store.stats()
    issues = []
    warnings = []
    fixes_applied = 0
    do_fix = getattr(args, "fix", False)

    if stats["tools"] == 0:
        issues.append("No tools. Run `shed sync --scan` or `shed add`")

    orphaned = store.count_orphaned_usage()
    if orphaned:
        issues.append(f"{orphaned} usage row(s) for deleted tools")
        if do_fix:
            store.delete_orphaned_usage()
            fixes_applied += 1
            issues[-1] += " (FIXED: deleted)"

    drift = [t.name for t in store.list_tools()
             if (shutil.which(t.binary) is not None) != t.is_installed]
    if drift:
        msg = f"{len(drift)} tool(s) disagree with PATH: {', '.join(drift[:5])}"
        if do_fix:
            cat.sync_status()
            fixes_applied += 1
            issues.append(msg + " (FIXED: status synced)")
        else:
            warnings.append(msg + ". Run `shed sync --status`")

    no_desc = [t.name for t in store.list_tools() if not t.description]
    if no_desc:
        warnings.append(f"{len(no_desc)} tool(s) without a description. "
                        f"Run `shed sync --descriptions`")

    for bundle, tool in store.dangling_bundle_members():
        warnings.append(f"Bundle {bundle} lists untracked tool {tool}")

    if not cat.fetcher.is_available():
        warnings.append("gh is not available; upstream sync is disabled")

    if args.json:
        print(_dumps({"stats": stats, "issues": issues, "warnings": warnings,
                      "fixes_applied": fixes_applied}, indent=2))
        cat.close()
        return

    print(f"Catalogue: {stats['tools']} tools ({stats['installed']} installed), "
          f"{stats['bundles']} bundles, {stats['labels']} labels")
    print(f"Database:  {cat.config.db_path}")
    for issue in issues:
        print(f"  ISSUE: {issue}")
    for warning in warnings:
        print(f"  WARN:  {warning}")
    if not issues and not warnings:
        print("  All checks passed.")
    if fixes_applied:
        print(f"\n{fixes_applied} fix(es) applied.")
    cat.close()


# ── cache / discover log ───────────────────────────────────────────────

def cmd_cache(args):
    cat = _catalogue(args)
    if args.cache_action == "clear":
        n = cat.store.clear_extraction_cache()
        print(f"Cleared {n} cached extraction(s)")
    else:
        entries = cat.store.list_extractions()
        if args.json:
            print(_dumps([e.model_dump(mode="json") for e in entries], indent=2))
        elif not entries:
            print("Extraction cache is empty.", file=sys.stderr)
        else:
            for e in entries:
                print(f"  {e.repo_owner}/{e.repo_name:30s} -> {e.name} [{e.source}]")
    cat.close()


def cmd_discover(args):
    cat = _catalogue(args)
    action = args.discover_action
    if action == "clear":
        print(f"Cleared {cat.clear_searches()} search(es)")
    elif action == "prune":
        if args.keep is None:
            print("Error: shed discover prune <N>", file=sys.stderr)
            sys.exit(1)
        print(f"Pruned {cat.prune_searches(args.keep)} search(es)")
    else:
        entries = cat.recent_searches(args.limit)
        if args.json:
            print(_dumps([e.model_dump() for e in entries], indent=2))
        else:
            for e in entries:
                filters = f" [{', '.join(e.source_filters)}]" if e.source_filters else ""
                ai = " (ai)" if e.ai_enabled else ""
                print(f"  {e.created_at}  {e.query}{filters}{ai}")
    cat.close()


# ── config ─────────────────────────────────────────────────────────────

def cmd_config(args):
    """Read or write config values.

    shed config show               — print full config
    shed config get <key>          — read a value (dot-separated: github.delay_ms)
    shed config set <key> <value>  — write a value to config file
    """
    action = args.config_action

    if action == "get":
        if not args.key:
            print("Error: shed config get <key>", file=sys.stderr)
            sys.exit(1)
        cfg = _config(args)
        val = _dotget(cfg.model_dump(), args.key)
        if val is None:
            print(f"No value for '{args.key}'", file=sys.stderr)
            sys.exit(1)
        if isinstance(val, dict):
            print(yaml.dump(val, default_flow_style=False).strip())
        else:
            print(val)
        return

    if action == "set":
        if not args.key or args.value is None:
            print("Error: shed config set <key> <value>", file=sys.stderr)
            sys.exit(1)
        from pydantic import ValidationError
        is_global = getattr(args, "global_", False)
        try:
            path = _config_write(args.key, args.value, getattr(args, "config", None),
                                 global_=is_global)
        except ValidationError as e:
            print(f"Error: invalid value for {args.key}: "
                  f"{e.errors()[0]['msg']}", file=sys.stderr)
            sys.exit(1)
        print(f"Set {args.key} = {args.value} ({path})")
        return

    cfg = _config(args)
    print(yaml.dump(cfg.model_dump(), default_flow_style=False, sort_keys=False).strip())


def _dotget(d: dict, key: str):
    """Get a value from a nested dict via dot-separated key."""
    current = d
    for part in key.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def _dotset(d: dict, key: str, value) -> None:
    """Set a value in a nested dict via dot-separated key."""
    parts = key.split(".")
    current = d
    for part in parts[:-1]:
        if part not in current or not isinstance(current[part], dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def _coerce_value(value: str):
    """Coerce a string value to the appropriate Python type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    if value.lower() in ("null", "none"):
        return None
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _config_write(key: str, value: str, config_path: str | None = None,
                  global_: bool = False) -> Path:
    """Write a config value; returns the file written.

    Resolution (like git config):
    - --config <path>:  explicit file
    - --global:         user-level (~/.config/toolshed/shed.yaml)
    - default:          local file if one exists in cwd, else global
    """
    from .config import _GLOBAL_PATHS, _LOCAL_PATHS, Config

    candidates = [] if global_ else list(_LOCAL_PATHS)
    candidates += _GLOBAL_PATHS
    if config_path:
        path = Path(config_path).expanduser().resolve()
    else:
        path = next((p.expanduser().resolve() for p in candidates
                     if p.expanduser().exists()), None)
        if path is None:
            path = _GLOBAL_PATHS[0].expanduser()

    data = (yaml.safe_load(path.read_text()) or {}) if path.exists() else {}
    _dotset(data, key, _coerce_value(value))
    Config(**data)  # reject values the schema would not load
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    return path


# ── parser ─────────────────────────────────────────────────────────────

def _common(p):
    p.add_argument("--config", help="Path to shed.yaml")
    p.add_argument("--data-dir", help="Override data directory")
    p.add_argument("--json", action="store_true", help="JSON output")
    p.add_argument("-v", "--verbose", action="count", default=0,
                   help="More logging (-vv for debug)")


def _at_least(floor):
    def parse(value):
        n = int(value)
        if n < floor:
            raise argparse.ArgumentTypeError(f"must be at least {floor}")
        return n
    return parse


def _batch_opts(p):
    p.add_argument("--dry-run", action="store_true", help="Report without writing")
    p.add_argument("--limit", type=_at_least(1), help="Max GitHub lookups this run")
    p.add_argument("--delay-ms", type=_at_least(0), help="Pause between GitHub calls")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="shed",
                                description="Catalogue, install and track your command-line tools")
    p.add_argument("--version", action="store_true")
    sub = p.add_subparsers(dest="command")

    # init
    s = sub.add_parser("init", help="Create the catalogue database")
    _common(s)
    s.set_defaults(func=cmd_init)

    # add
    s = sub.add_parser("add", help="Track a tool")
    s.add_argument("name")
    s.add_argument("--source", help="cargo, pip, npm, apt, brew, snap or manual")
    s.add_argument("--description", "-d")
    s.add_argument("--category", "-c")
    s.add_argument("--binary", help="Executable name, if it differs from the tool name")
    s.add_argument("--install-command")
    s.add_argument("--notes")
    s.add_argument("--installed", action="store_true")
    s.add_argument("--label", "-l", action="append", help="Label (repeatable)")
    _common(s)
    s.set_defaults(func=cmd_add)

    # show
    s = sub.add_parser("show", help="Show one tool")
    s.add_argument("name")
    _common(s)
    s.set_defaults(func=cmd_show)

    # list
    s = sub.add_parser("list", help="List tracked tools")
    s.add_argument("--installed", action="store_true", help="Installed tools only")
    s.add_argument("--favorites", action="store_true", help="Favorites only")
    s.add_argument("--source")
    s.add_argument("--category")
    s.add_argument("--label")
    _common(s)
    s.set_defaults(func=cmd_list)

    # search
    s = sub.add_parser("search", help="Search names, descriptions and categories")
    s.add_argument("query", nargs="+")
    _common(s)
    s.set_defaults(func=cmd_search)

    # remove
    s = sub.add_parser("remove", help="Stop tracking a tool")
    s.add_argument("name")
    _common(s)
    s.set_defaults(func=cmd_remove)

    # fav
    s = sub.add_parser("fav", help="Mark a tool as a favorite")
    s.add_argument("name")
    s.add_argument("--off", action="store_true", help="Unmark")
    _common(s)
    s.set_defaults(func=cmd_fav)

    # label
    s = sub.add_parser("label", help="Tool labels")
    s.add_argument("label_action", choices=["add", "remove", "list"])
    s.add_argument("name", nargs="?")
    s.add_argument("labels", nargs="*")
    _common(s)
    s.set_defaults(func=cmd_label)

    # bundle
    s = sub.add_parser("bundle", help="Named, ordered tool sets")
    s.add_argument("bundle_action",
                   choices=["create", "list", "show", "add", "remove", "delete", "install"])
    s.add_argument("name", nargs="?")
    s.add_argument("tools", nargs="*")
    s.add_argument("--description", "-d")
    s.add_argument("--source", help="Source for untracked members (install)")
    s.add_argument("--dry-run", action="store_true", help="Print install commands only")
    s.add_argument("--yes", "-y", action="store_true", help="Don't ask")
    _common(s)
    s.set_defaults(func=cmd_bundle)

    # usage
    s = sub.add_parser("usage", help="Usage tracking from shell history")
    s.add_argument("usage_action",
                   choices=["scan", "show", "log", "clear", "unused", "recommend"])
    s.add_argument("tool", nargs="?", help="Tool name (show)")
    s.add_argument("line", nargs="*", help="Command line (log)")
    s.add_argument("--days", type=int, default=30)
    s.add_argument("--limit", type=int, default=30)
    s.add_argument("--count", type=int, default=5)
    s.add_argument("--category", help="Favor this category (recommend)")
    s.add_argument("--reset", action="store_true", help="Clear counts before scanning")
    s.add_argument("--dry-run", action="store_true")
    _common(s)
    s.set_defaults(func=cmd_usage)

    # sync
    s = sub.add_parser("sync", help="Reconcile the catalogue with this machine")
    s.add_argument("--status", action="store_true", help="Installed flags from PATH")
    s.add_argument("--scan", action="store_true", help="Import tools from package managers")
    s.add_argument("--descriptions", action="store_true", help="Fill missing descriptions")
    s.add_argument("--github", action="store_true", help="Fetch GitHub metadata")
    s.add_argument("--usage", action="store_true", help="Count shell history")
    s.add_argument("--all", action="store_true", help="Every step")
    _batch_opts(s)
    _common(s)
    s.set_defaults(func=cmd_sync)

    # gh
    s = sub.add_parser("gh", help="GitHub metadata via the gh CLI")
    s.add_argument("gh_action", choices=["sync", "rate-limit", "backfill"])
    _batch_opts(s)
    _common(s)
    s.set_defaults(func=cmd_gh)

    # updates
    s = sub.add_parser("updates", help="Upgrades available within each tool's source")
    s.add_argument("--source")
    s.add_argument("--tool")
    s.add_argument("--tracked", action="store_true", help="Catalogue tools only")
    _common(s)
    s.set_defaults(func=cmd_updates)

    # migrate
    s = sub.add_parser("migrate", help="Newer releases available from another source")
    s.add_argument("--from", dest="from_source")
    s.add_argument("--to", dest="to_source")
    _common(s)
    s.set_defaults(func=cmd_migrate)

    # install / uninstall / upgrade
    for name, func, helptext in (
        ("install", cmd_install, "Install a tool through its package manager"),
        ("uninstall", cmd_uninstall, "Uninstall a tool"),
        ("upgrade", cmd_upgrade, "Upgrade a tool in place"),
    ):
        s = sub.add_parser(name, help=helptext)
        s.add_argument("name")
        if name == "install":
            s.add_argument("--source")
        if name != "uninstall":
            s.add_argument("--version", dest="pin_version", help="Exact version to install")
        s.add_argument("--dry-run", action="store_true", help="Print the command only")
        s.add_argument("--yes", "-y", action="store_true", help="Don't ask")
        _common(s)
        s.set_defaults(func=func)

    # hook
    s = sub.add_parser("hook", help="Shell hook for live usage tracking")
    s.add_argument("hook_action", choices=["install", "uninstall"])
    s.add_argument("shell", choices=["fish", "bash", "zsh"])
    s.add_argument("--rc", help="rc file (default: the shell's usual one)")
    _common(s)
    s.set_defaults(func=cmd_hook)

    # export / import
    s = sub.add_parser("export", help="Dump tools, labels and bundles")
    s.add_argument("--format", choices=["json", "yaml"], default="json")
    _common(s)
    s.set_defaults(func=cmd_export)

    s = sub.add_parser("import", help="Load an export file")
    s.add_argument("file")
    _common(s)
    s.set_defaults(func=cmd_import)

    # doctor
    s = sub.add_parser("doctor", help="Catalogue health check")
    s.add_argument("--fix", action="store_true", help="Repair what can be repaired")
    _common(s)
    s.set_defaults(func=cmd_doctor)

    # cache
    s = sub.add_parser("cache", help="Repository extraction cache")
    s.add_argument("cache_action", choices=["list", "clear"])
    _common(s)
    s.set_defaults(func=cmd_cache)

    # discover
    s = sub.add_parser("discover", help="Discover search log")
    s.add_argument("discover_action", choices=["log", "clear", "prune"])
    s.add_argument("keep", nargs="?", type=int, help="Searches to keep (prune)")
    s.add_argument("--limit", type=int, default=20)
    _common(s)
    s.set_defaults(func=cmd_discover)

    # config
    s = sub.add_parser("config", help="Read or write config values")
    s.add_argument("config_action", nargs="?", default="show", choices=["show", "get", "set"])
    s.add_argument("key", nargs="?")
    s.add_argument("value", nargs="?")
    s.add_argument("--global", dest="global_", action="store_true",
                   help="Write to the user-level config")
    _common(s)
    s.set_defaults(func=cmd_config)

    return p


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        print(f"shed {__version__} (toolshed)")
        return

    if not args.command:
        parser.print_help()
        return

    from .logging_setup import resolve_level, setup_logging
    hook_mode = args.command == "usage" and args.usage_action == "log"
    if hook_mode:
        setup_logging("CRITICAL")
    else:
        try:
            configured = _config(args).log_level
        except (OSError, ValueError, yaml.YAMLError) as e:
            print(f"Error: cannot load config: {e}", file=sys.stderr)
            sys.exit(1)
        setup_logging(resolve_level(getattr(args, "verbose", 0), configured))

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except ToolshedError as e:
        if hook_mode:
            return
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
