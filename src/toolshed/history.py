"""Shell history parsing and usage ingest.

Three history dialects are understood:

- fish: YAML-ish blocks, ``- cmd: <line>`` optionally followed by ``  when: <epoch>``
- bash: one command per line, ``#`` lines (timestamps) ignored
- zsh: plain lines or extended ``: <epoch>:<duration>;<command>``

Every line is reduced to a canonical command token before counting.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Iterator

from .results import SyncConfig, SyncResult

if TYPE_CHECKING:
    from .store import Store

log = logging.getLogger(__name__)

# Stripped once, in this order of precedence
COMMAND_PREFIXES = ("sudo ", "env ", "time ", "command ")

SKIP_COMMANDS = frozenset({
    "cd", "ls", "echo", "export", "set", "unset", "alias", "source",
    "if", "then", "else", "fi", "for", "do", "done", "while", "case", "esac",
    "function", "return", "exit", "true", "false", "test", "[", "[[",
    "pwd", "pushd", "popd", "dirs", "history", "clear",
})


@dataclass
class HistoryEntry:
    command: str
    timestamp: int | None = None


def _int_or_none(text: str) -> int | None:
    try:
        return int(text.strip())
    except ValueError:
        return None


def parse_fish_history(text: str) -> Iterator[HistoryEntry]:
    current: HistoryEntry | None = None
    for line in text.splitlines():
        if line.startswith("- cmd: "):
            if current is not None:
                yield current
            current = HistoryEntry(command=line[len("- cmd: "):])
        elif current is not None and line.startswith("  when: "):
            current.timestamp = _int_or_none(line[len("  when: "):])
    if current is not None:
        yield current


def parse_bash_history(text: str) -> Iterator[HistoryEntry]:
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            yield HistoryEntry(command=line)


def parse_zsh_history(text: str) -> Iterator[HistoryEntry]:
    for line in text.splitlines():
        if line.startswith(": ") and ";" in line:
            meta, command = line[2:].split(";", 1)
            yield HistoryEntry(command=command, timestamp=_int_or_none(meta.split(":", 1)[0]))
        elif line.strip():
            yield HistoryEntry(command=line)


PARSERS: dict[str, Callable[[str], Iterator[HistoryEntry]]] = {
    "fish": parse_fish_history,
    "bash": parse_bash_history,
    "zsh": parse_zsh_history,
}


def default_history_paths() -> dict[str, Path]:
    home = Path.home()
    return {
        "fish": home / ".local" / "share" / "fish" / "fish_history",
        "bash": home / ".bash_history",
        "zsh": home / ".zsh_history",
    }


def extract_command(line: str) -> str | None:
    """Canonical command token for a history line, or None if not worth counting.

    >>> extract_command("sudo /usr/bin/rg -i pattern .")
    'rg'
    """
    line = line.strip()
    for prefix in COMMAND_PREFIXES:
        if line.startswith(prefix):
            line = line[len(prefix):].lstrip()
            break
    if not line:
        return None
    command = line.split()[0].rsplit("/", 1)[-1]
    if not command or command in SKIP_COMMANDS:
        return None
    return command


def count_commands(entries: Iterable[HistoryEntry]) -> Counter:
    counts: Counter = Counter()
    for entry in entries:
        command = extract_command(entry.command)
        if command:
            counts[command] += 1
    return counts


def parse_history_file(shell: str, path: Path) -> list[HistoryEntry]:
    # zsh metafies non-ASCII bytes; replace rather than fail
    text = path.read_text(encoding="utf-8", errors="replace")
    return list(PARSERS[shell](text))


def parse_all_histories(paths: dict[str, Path] | None = None) -> Counter:
    """Count canonical commands across every readable history file."""
    counts: Counter = Counter()
    for shell, path in (paths or default_history_paths()).items():
        if not path.exists():
            continue
        try:
            entries = parse_history_file(shell, path)
        except OSError as e:
            log.warning("Skipping %s history %s: %s", shell, path, e)
            continue
        log.info("Read %d %s history entries from %s", len(entries), shell, path)
        counts.update(count_commands(entries))
    return counts


def _match_counts(store: Store, counts: Counter) -> tuple[dict[str, int], int]:
    """Fold command counts onto tool names (binary name first, then name).

    Returns the per-tool totals and the number of commands left unmatched.
    """
    pairs = store.get_tool_binaries()
    by_binary: dict[str, str] = {}
    for name, binary in pairs:
        by_binary.setdefault(binary, name)
    names = {name for name, _ in pairs}

    matched: dict[str, int] = {}
    unmatched = 0
    for command, n in counts.items():
        tool = by_binary.get(command) or (command if command in names else None)
        if tool:
            matched[tool] = matched.get(tool, 0) + n
        else:
            unmatched += 1
    return matched, unmatched


def scan_usage(
    store: Store,
    config: SyncConfig | None = None,
    histories: dict[str, Path] | None = None,
) -> SyncResult:
    """Scan mode: count every history file and add the counts to the catalogue.

    With ``config.reset`` the usage table is cleared first, so the result
    reflects the current history files only.
    """
    config = config or SyncConfig()
    result = SyncResult(step="usage")

    counts = parse_all_histories(histories)
    matched, result.skipped = _match_counts(store, counts)

    if config.dry_run:
        result.changed = len(matched)
        return result

    if config.reset:
        store.clear_usage()
    for name, n in sorted(matched.items()):
        if store.record_usage(name, n):
            result.changed += 1
        else:
            result.fail(name, "tool disappeared during scan")
    return result


def log_usage_line(store: Store, line: str) -> str | None:
    """Hook mode: credit one use to whichever tool ``line`` invokes.

    Returns the tool name on a hit, None on a miss. Never prints.
    """
    command = extract_command(line)
    if command is None:
        return None
    name = store.match_command_to_tool(command)
    if name is None:
        return None
    store.record_usage(name, 1, datetime.now().isoformat(timespec="seconds"))
    return name
