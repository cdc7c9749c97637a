"""SQLite store — the persisted catalogue of tools, bundles, labels and usage."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timedelta

from .argsafe import validate_package_name
from .config import Config
from .errors import DuplicateName, NotFound, StoreIO
from .models import (
    Bundle,
    ExtractionEntry,
    SearchLogEntry,
    Source,
    Tool,
    UpstreamInfo,
    UsageStats,
)
from .schema import CREATE_TABLES, SCHEMA_VERSION

log = logging.getLogger(__name__)

_TOOL_COLUMNS = (
    "name", "description", "category", "source", "install_command",
    "binary_name", "is_installed", "is_favorite", "notes",
)
_SETTABLE = {"description", "category", "notes", "is_installed", "is_favorite",
             "binary_name", "install_command", "source"}


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _today() -> date:
    return date.today()


def _tool_values(tool: Tool) -> tuple:
    return (
        tool.name, tool.description, tool.category, str(tool.source),
        tool.install_command, tool.binary_name, int(tool.is_installed),
        int(tool.is_favorite), tool.notes,
    )


class Store:
    """SQLite-backed tool catalogue.

    Single writer per process. The connection is opened lazily and the
    schema is created (or migrated) on first use.
    """

    def __init__(self, config: Config):
        self.config = config
        self.db_path = config.db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path))
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA foreign_keys=ON")
                self._conn = conn
                self._init_schema()
            except (sqlite3.Error, OSError) as e:
                self._conn = None
                raise StoreIO(f"{self.db_path}: {e}") from e
        return self._conn

    @contextmanager
    def _write(self):
        """Transaction on ``conn``; storage failures surface as StoreIO."""
        try:
            with self.conn:
                yield
        except sqlite3.IntegrityError:
            raise
        except sqlite3.DatabaseError as e:
            raise StoreIO(f"{self.db_path}: {e}") from e

    def _init_schema(self) -> None:
        conn = self._conn
        conn.executescript(CREATE_TABLES)
        row = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        if row is None:
            conn.execute(
                "INSERT INTO meta (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
            conn.commit()
        else:
            self._migrate_schema(int(row["value"]))

    def _migrate_schema(self, current_version: int) -> None:
        """Apply additive schema migrations. Columns are never dropped."""
        conn = self._conn
        if current_version < 2:
            # v2: ordered bundle membership
            try:
                conn.execute("ALTER TABLE bundle_tools ADD COLUMN position INTEGER NOT NULL DEFAULT 0")
                conn.commit()
            except sqlite3.OperationalError:
                pass  # column already exists

        if current_version < 3:
            # v3: remember which release an extraction came from
            try:
                conn.execute("ALTER TABLE extraction_cache ADD COLUMN version TEXT")
                conn.commit()
            except sqlite3.OperationalError:
                pass

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "UPDATE meta SET value = ? WHERE key = 'schema_version'",
                (str(SCHEMA_VERSION),),
            )
            conn.commit()
            log.info("Migrated catalogue schema from v%d to v%d",
                     current_version, SCHEMA_VERSION)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _tool_id(self, name: str) -> int | None:
        row = self.conn.execute("SELECT id FROM tools WHERE name = ?", (name,)).fetchone()
        return row["id"] if row else None

    def _require_tool_id(self, name: str) -> int:
        tool_id = self._tool_id(name)
        if tool_id is None:
            raise NotFound("Tool", name)
        return tool_id

    # ── Tools ─────────────────────────────────────────────────────────

    def insert_tool(self, tool: Tool) -> int:
        """Insert a new tool. Raises DuplicateName if the name is taken."""
        validate_package_name(tool.name)
        now = _now()
        try:
            with self._write():
                cur = self.conn.execute(
                    f"""INSERT INTO tools ({", ".join(_TOOL_COLUMNS)}, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (*_tool_values(tool), tool.created_at or now, now),
                )
        except sqlite3.IntegrityError:
            raise DuplicateName("Tool", tool.name)
        return cur.lastrowid

    def update_tool(self, tool: Tool) -> None:
        """Replace every column of an existing tool, addressed by id (or name)."""
        validate_package_name(tool.name)
        tool_id = tool.id if tool.id is not None else self._tool_id(tool.name)
        if tool_id is None:
            raise NotFound("Tool", tool.name)
        assignments = ", ".join(f"{col} = ?" for col in _TOOL_COLUMNS)
        try:
            with self._write():
                cur = self.conn.execute(
                    f"UPDATE tools SET {assignments}, updated_at = ? WHERE id = ?",
                    (*_tool_values(tool), _now(), tool_id),
                )
        except sqlite3.IntegrityError:
            raise DuplicateName("Tool", tool.name)
        if cur.rowcount == 0:
            raise NotFound("Tool", tool.name)

    def upsert_tool(self, tool: Tool) -> tuple[int, bool]:
        """Insert or replace by name. Returns (id, created)."""
        existing = self.get_tool_by_name(tool.name)
        if existing is None:
            return self.insert_tool(tool), True
        self.update_tool(tool.model_copy(update={"id": existing.id}))
        return existing.id, False

    def get_tool(self, tool_id: int) -> Tool | None:
        row = self.conn.execute("SELECT * FROM tools WHERE id = ?", (tool_id,)).fetchone()
        return Tool.from_row(row) if row else None

    def get_tool_by_name(self, name: str) -> Tool | None:
        row = self.conn.execute("SELECT * FROM tools WHERE name = ?", (name,)).fetchone()
        return Tool.from_row(row) if row else None

    def list_tools(
        self,
        installed_only: bool = False,
        category: str | None = None,
        source: Source | str | None = None,
        favorites_only: bool = False,
    ) -> list[Tool]:
        q = "SELECT * FROM tools WHERE 1=1"
        params: list = []
        if installed_only:
            q += " AND is_installed = 1"
        if favorites_only:
            q += " AND is_favorite = 1"
        if category:
            q += " AND category = ?"
            params.append(category)
        if source:
            q += " AND source = ?"
            params.append(str(source))
        q += " ORDER BY name"
        return [Tool.from_row(r) for r in self.conn.execute(q, params).fetchall()]

    def search_tools(self, query: str) -> list[Tool]:
        like = f"%{query}%"
        rows = self.conn.execute(
            """SELECT * FROM tools
               WHERE name LIKE ? OR description LIKE ? OR category LIKE ?
               ORDER BY CASE WHEN name LIKE ? THEN 0 ELSE 1 END, name""",
            (like, like, like, like),
        ).fetchall()
        return [Tool.from_row(r) for r in rows]

    def delete_tool(self, name: str) -> bool:
        """Delete a tool and everything hanging off it.

        Labels, usage, daily usage and upstream info go by foreign-key
        cascade. Bundle membership is keyed by name, so it is removed here.
        """
        tool_id = self._tool_id(name)
        if tool_id is None:
            return False
        with self._write():
            self.conn.execute("DELETE FROM bundle_tools WHERE tool_name = ?", (name,))
            self.conn.execute("DELETE FROM tools WHERE id = ?", (tool_id,))
        return True

    def _set_field(self, name: str, column: str, value) -> None:
        if column not in _SETTABLE:
            raise ValueError(f"Column not settable: {column}")
        with self._write():
            cur = self.conn.execute(
                f"UPDATE tools SET {column} = ?, updated_at = ? WHERE name = ?",
                (value, _now(), name),
            )
        if cur.rowcount == 0:
            raise NotFound("Tool", name)

    def set_tool_installed(self, name: str, installed: bool) -> None:
        self._set_field(name, "is_installed", int(installed))

    def set_favorite(self, name: str, favorite: bool) -> None:
        self._set_field(name, "is_favorite", int(favorite))

    def set_description(self, name: str, description: str | None) -> None:
        self._set_field(name, "description", description)

    def set_category(self, name: str, category: str | None) -> None:
        self._set_field(name, "category", category)

    def set_notes(self, name: str, notes: str | None) -> None:
        self._set_field(name, "notes", notes)

    def get_categories(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT DISTINCT category FROM tools WHERE category IS NOT NULL ORDER BY category"
        ).fetchall()
        return [r["category"] for r in rows]

    def count_by_source(self) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT source, COUNT(*) AS n FROM tools GROUP BY source ORDER BY n DESC, source"
        ).fetchall()
        return {r["source"]: r["n"] for r in rows}

    def stats(self) -> dict[str, int]:
        one = lambda q: self.conn.execute(q).fetchone()[0]  # noqa: E731
        return {
            "tools": one("SELECT COUNT(*) FROM tools"),
            "installed": one("SELECT COUNT(*) FROM tools WHERE is_installed = 1"),
            "favorites": one("SELECT COUNT(*) FROM tools WHERE is_favorite = 1"),
            "bundles": one("SELECT COUNT(*) FROM bundles"),
            "labels": one("SELECT COUNT(DISTINCT label) FROM tool_labels"),
            "with_usage": one("SELECT COUNT(*) FROM tool_usage WHERE use_count > 0"),
            "with_github": one("SELECT COUNT(*) FROM tool_github"),
        }

    # ── Bundles ───────────────────────────────────────────────────────

    def _bundle_id(self, name: str) -> int | None:
        row = self.conn.execute("SELECT id FROM bundles WHERE name = ?", (name,)).fetchone()
        return row["id"] if row else None

    def _append_members(self, bundle_id: int, tools: list[str]) -> int:
        row = self.conn.execute(
            "SELECT COALESCE(MAX(position), -1) FROM bundle_tools WHERE bundle_id = ?",
            (bundle_id,),
        ).fetchone()
        position = row[0] + 1
        added = 0
        for tool in tools:
            cur = self.conn.execute(
                "INSERT OR IGNORE INTO bundle_tools (bundle_id, tool_name, position) VALUES (?, ?, ?)",
                (bundle_id, tool, position),
            )
            if cur.rowcount:
                position += 1
                added += 1
        return added

    def create_bundle(self, name: str, tools: list[str], description: str | None = None) -> int:
        if not name or not name.strip():
            raise ValueError("Bundle name must not be empty")
        for tool in tools:
            validate_package_name(tool)
        try:
            with self._write():
                cur = self.conn.execute(
                    "INSERT INTO bundles (name, description, created_at) VALUES (?, ?, ?)",
                    (name, description, _now()),
                )
                bundle_id = cur.lastrowid
                self._append_members(bundle_id, tools)
        except sqlite3.IntegrityError:
            raise DuplicateName("Bundle", name)
        return bundle_id

    def get_bundle(self, name: str) -> Bundle | None:
        row = self.conn.execute("SELECT * FROM bundles WHERE name = ?", (name,)).fetchone()
        if row is None:
            return None
        members = self.conn.execute(
            "SELECT tool_name FROM bundle_tools WHERE bundle_id = ? ORDER BY position, rowid",
            (row["id"],),
        ).fetchall()
        return Bundle(id=row["id"], name=row["name"], description=row["description"],
                      tools=[m["tool_name"] for m in members], created_at=row["created_at"])

    def list_bundles(self) -> list[Bundle]:
        rows = self.conn.execute("SELECT name FROM bundles ORDER BY name").fetchall()
        return [self.get_bundle(r["name"]) for r in rows]

    def add_to_bundle(self, name: str, tools: list[str]) -> int:
        """Append tools in order; names already present are left in place."""
        for tool in tools:
            validate_package_name(tool)
        bundle_id = self._bundle_id(name)
        if bundle_id is None:
            raise NotFound("Bundle", name)
        with self._write():
            return self._append_members(bundle_id, tools)

    def remove_from_bundle(self, name: str, tools: list[str]) -> int:
        bundle_id = self._bundle_id(name)
        if bundle_id is None:
            raise NotFound("Bundle", name)
        removed = 0
        with self._write():
            for tool in tools:
                cur = self.conn.execute(
                    "DELETE FROM bundle_tools WHERE bundle_id = ? AND tool_name = ?",
                    (bundle_id, tool),
                )
                removed += cur.rowcount
        return removed

    def delete_bundle(self, name: str) -> bool:
        with self._write():
            cur = self.conn.execute("DELETE FROM bundles WHERE name = ?", (name,))
        return cur.rowcount > 0

    def dangling_bundle_members(self) -> list[tuple[str, str]]:
        """(bundle, tool) pairs naming tools the catalogue does not track."""
        rows = self.conn.execute(
            """SELECT b.name AS bundle, bt.tool_name AS tool
               FROM bundle_tools bt JOIN bundles b ON b.id = bt.bundle_id
               WHERE bt.tool_name NOT IN (SELECT name FROM tools)
               ORDER BY b.name, bt.position"""
        ).fetchall()
        return [(r["bundle"], r["tool"]) for r in rows]

    # ── Labels ────────────────────────────────────────────────────────

    def add_labels(self, name: str, labels: list[str]) -> int:
        """Attach labels (lowercased). Duplicates are ignored. Returns new count."""
        tool_id = self._require_tool_id(name)
        added = 0
        with self._write():
            for label in labels:
                label = label.strip().lower()
                if not label:
                    continue
                cur = self.conn.execute(
                    "INSERT OR IGNORE INTO tool_labels (tool_id, label) VALUES (?, ?)",
                    (tool_id, label),
                )
                added += cur.rowcount
        return added

    def remove_label(self, name: str, label: str) -> bool:
        tool_id = self._require_tool_id(name)
        with self._write():
            cur = self.conn.execute(
                "DELETE FROM tool_labels WHERE tool_id = ? AND label = ?",
                (tool_id, label.strip().lower()),
            )
        return cur.rowcount > 0

    def clear_labels(self, name: str) -> int:
        tool_id = self._require_tool_id(name)
        with self._write():
            cur = self.conn.execute("DELETE FROM tool_labels WHERE tool_id = ?", (tool_id,))
        return cur.rowcount

    def get_labels(self, name: str) -> list[str]:
        rows = self.conn.execute(
            """SELECT l.label FROM tool_labels l JOIN tools t ON t.id = l.tool_id
               WHERE t.name = ? ORDER BY l.label""",
            (name,),
        ).fetchall()
        return [r["label"] for r in rows]

    def get_all_labels(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT DISTINCT label FROM tool_labels ORDER BY label"
        ).fetchall()
        return [r["label"] for r in rows]

    def get_label_counts(self) -> list[tuple[str, int]]:
        rows = self.conn.execute(
            """SELECT label, COUNT(*) AS n FROM tool_labels
               GROUP BY label ORDER BY n DESC, label"""
        ).fetchall()
        return [(r["label"], r["n"]) for r in rows]

    def list_tools_by_label(self, label: str) -> list[Tool]:
        rows = self.conn.execute(
            """SELECT t.* FROM tools t JOIN tool_labels l ON l.tool_id = t.id
               WHERE l.label = ? ORDER BY t.name""",
            (label.strip().lower(),),
        ).fetchall()
        return [Tool.from_row(r) for r in rows]

    # ── Usage ─────────────────────────────────────────────────────────

    def record_usage(self, name: str, count: int, last_used: str | None = None) -> bool:
        """Add ``count`` uses to a tool. Returns False if the tool is unknown.

        ``last_used`` only moves when a value is given.
        """
        if count < 0:
            raise ValueError("Usage count must be non-negative")
        tool_id = self._tool_id(name)
        if tool_id is None:
            return False
        now = _now()
        with self._write():
            cur = self.conn.execute(
                """UPDATE tool_usage
                   SET use_count = use_count + ?, last_used = COALESCE(?, last_used),
                       updated_at = ?
                   WHERE tool_id = ?""",
                (count, last_used, now, tool_id),
            )
            if cur.rowcount == 0:
                self.conn.execute(
                    """INSERT INTO tool_usage (tool_id, use_count, last_used, first_seen, updated_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (tool_id, count, last_used, now, now),
                )
            if count:
                self.conn.execute(
                    """INSERT INTO usage_daily (tool_id, date, count) VALUES (?, ?, ?)
                       ON CONFLICT(tool_id, date) DO UPDATE SET count = count + excluded.count""",
                    (tool_id, _today().isoformat(), count),
                )
        return True

    def get_usage(self, name: str) -> UsageStats | None:
        row = self.conn.execute(
            """SELECT u.use_count, u.last_used, u.first_seen
               FROM tool_usage u JOIN tools t ON t.id = u.tool_id WHERE t.name = ?""",
            (name,),
        ).fetchone()
        return UsageStats(**dict(row)) if row else None

    def get_all_usage(self) -> list[tuple[str, UsageStats]]:
        rows = self.conn.execute(
            """SELECT t.name, u.use_count, u.last_used, u.first_seen
               FROM tool_usage u JOIN tools t ON t.id = u.tool_id
               ORDER BY u.use_count DESC, t.name"""
        ).fetchall()
        return [
            (r["name"], UsageStats(use_count=r["use_count"], last_used=r["last_used"],
                                   first_seen=r["first_seen"]))
            for r in rows
        ]

    def clear_usage(self) -> int:
        """Reset all usage counters and the daily series in one transaction."""
        with self._write():
            cur = self.conn.execute("DELETE FROM tool_usage")
            self.conn.execute("DELETE FROM usage_daily")
        return cur.rowcount

    def get_tool_binaries(self) -> list[tuple[str, str]]:
        rows = self.conn.execute(
            "SELECT name, COALESCE(binary_name, name) AS binary FROM tools ORDER BY name"
        ).fetchall()
        return [(r["name"], r["binary"]) for r in rows]

    def match_command_to_tool(self, command: str) -> str | None:
        """Resolve a command token to a tool name; binary_name wins over name."""
        row = self.conn.execute(
            "SELECT name FROM tools WHERE binary_name = ? ORDER BY id LIMIT 1", (command,)
        ).fetchone()
        if row is None:
            row = self.conn.execute("SELECT name FROM tools WHERE name = ?", (command,)).fetchone()
        return row["name"] if row else None

    def get_unused_tools(self) -> list[Tool]:
        rows = self.conn.execute(
            """SELECT t.* FROM tools t LEFT JOIN tool_usage u ON u.tool_id = t.id
               WHERE t.is_installed = 1 AND (u.tool_id IS NULL OR u.use_count = 0)
               ORDER BY t.name"""
        ).fetchall()
        return [Tool.from_row(r) for r in rows]

    def count_orphaned_usage(self) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM tool_usage WHERE tool_id NOT IN (SELECT id FROM tools)"
        ).fetchone()[0]

    def delete_orphaned_usage(self) -> int:
        with self._write():
            cur = self.conn.execute(
                "DELETE FROM tool_usage WHERE tool_id NOT IN (SELECT id FROM tools)"
            )
            self.conn.execute(
                "DELETE FROM usage_daily WHERE tool_id NOT IN (SELECT id FROM tools)"
            )
        return cur.rowcount

    def get_daily_usage(self, name: str, days: int = 30) -> list[int]:
        """Per-day counts for the last ``days`` days, oldest first, zero-filled."""
        start = _today() - timedelta(days=days - 1)
        rows = self.conn.execute(
            """SELECT d.date, d.count FROM usage_daily d JOIN tools t ON t.id = d.tool_id
               WHERE t.name = ? AND d.date >= ?""",
            (name, start.isoformat()),
        ).fetchall()
        by_date = {r["date"]: r["count"] for r in rows}
        return [by_date.get((start + timedelta(days=i)).isoformat(), 0) for i in range(days)]

    def get_all_daily_usage(self, days: int = 30) -> dict[str, list[int]]:
        start = _today() - timedelta(days=days - 1)
        rows = self.conn.execute(
            """SELECT t.name, d.date, d.count FROM usage_daily d JOIN tools t ON t.id = d.tool_id
               WHERE d.date >= ? ORDER BY t.name""",
            (start.isoformat(),),
        ).fetchall()
        series: dict[str, list[int]] = {}
        for r in rows:
            offset = (date.fromisoformat(r["date"]) - start).days
            series.setdefault(r["name"], [0] * days)[offset] = r["count"]
        return series

    # ── Upstream info ─────────────────────────────────────────────────

    def set_github_info(self, name: str, info: UpstreamInfo) -> None:
        """Replace the upstream row for a tool, stamping fetched_at now."""
        tool_id = self._require_tool_id(name)
        with self._write():
            self.conn.execute(
                """INSERT OR REPLACE INTO tool_github
                   (tool_id, repo_owner, repo_name, description, stars, language, homepage, fetched_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (tool_id, info.repo_owner, info.repo_name, info.description,
                 info.stars, info.language, info.homepage, _now()),
            )

    def get_github_info(self, name: str) -> UpstreamInfo | None:
        row = self.conn.execute(
            """SELECT g.* FROM tool_github g JOIN tools t ON t.id = g.tool_id
               WHERE t.name = ?""",
            (name,),
        ).fetchone()
        if row is None:
            return None
        d = dict(row)
        d.pop("tool_id")
        return UpstreamInfo(**d)

    def tools_without_github(self, limit: int | None = None) -> list[Tool]:
        q = """SELECT t.* FROM tools t LEFT JOIN tool_github g ON g.tool_id = t.id
               WHERE g.tool_id IS NULL ORDER BY t.name"""
        params: tuple = ()
        if limit is not None:
            q += " LIMIT ?"
            params = (limit,)
        return [Tool.from_row(r) for r in self.conn.execute(q, params).fetchall()]

    def tools_needing_description_backfill(self) -> list[tuple[str, str]]:
        """(tool, upstream description) for tools with no description of their own."""
        rows = self.conn.execute(
            """SELECT t.name, g.description FROM tools t JOIN tool_github g ON g.tool_id = t.id
               WHERE (t.description IS NULL OR t.description = '')
                 AND g.description IS NOT NULL AND g.description != ''
               ORDER BY t.name"""
        ).fetchall()
        return [(r["name"], r["description"]) for r in rows]

    def get_github_stats(self) -> dict[str, int]:
        row = self.conn.execute(
            "SELECT COUNT(*) AS n, COALESCE(SUM(stars), 0) AS stars FROM tool_github"
        ).fetchone()
        total = self.conn.execute("SELECT COUNT(*) FROM tools").fetchone()[0]
        return {"with_github": row["n"], "without_github": total - row["n"],
                "total_stars": row["stars"]}

    # ── Extraction cache ──────────────────────────────────────────────

    def cache_extraction(self, entry: ExtractionEntry) -> None:
        with self._write():
            self.conn.execute(
                """INSERT INTO extraction_cache
                   (repo_owner, repo_name, version, name, binary, source,
                    install_command, description, category, extracted_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(repo_owner, repo_name) DO UPDATE SET
                     version = excluded.version, name = excluded.name,
                     binary = excluded.binary, source = excluded.source,
                     install_command = excluded.install_command,
                     description = excluded.description, category = excluded.category,
                     extracted_at = excluded.extracted_at""",
                (entry.repo_owner, entry.repo_name, entry.version, entry.name,
                 entry.binary, str(entry.source), entry.install_command,
                 entry.description, entry.category, _now()),
            )

    def get_cached_extraction(self, owner: str, repo: str) -> ExtractionEntry | None:
        row = self.conn.execute(
            "SELECT * FROM extraction_cache WHERE repo_owner = ? AND repo_name = ?",
            (owner, repo),
        ).fetchone()
        return self._extraction(row) if row else None

    def list_extractions(self) -> list[ExtractionEntry]:
        rows = self.conn.execute(
            "SELECT * FROM extraction_cache ORDER BY repo_owner, repo_name"
        ).fetchall()
        return [self._extraction(r) for r in rows]

    def clear_extraction_cache(self) -> int:
        with self._write():
            cur = self.conn.execute("DELETE FROM extraction_cache")
        return cur.rowcount

    @staticmethod
    def _extraction(row) -> ExtractionEntry:
        d = dict(row)
        d.pop("id")
        d["source"] = Source.parse(d.get("source"))
        return ExtractionEntry(**d)

    # ── Discover search log ───────────────────────────────────────────

    def save_search(self, query: str, ai_enabled: bool = False,
                    sources: list[str] | None = None) -> int:
        with self._write():
            cur = self.conn.execute(
                """INSERT INTO discover_search_history (query, ai_enabled, source_filters, created_at)
                   VALUES (?, ?, ?, ?)""",
                (query, int(ai_enabled), json.dumps(sorted(sources or [])), _now()),
            )
        return cur.lastrowid

    def get_search_history(self, limit: int = 20) -> list[SearchLogEntry]:
        rows = self.conn.execute(
            """SELECT * FROM discover_search_history
               ORDER BY created_at DESC, id DESC LIMIT ?""",
            (limit,),
        ).fetchall()
        return [
            SearchLogEntry(id=r["id"], query=r["query"], ai_enabled=bool(r["ai_enabled"]),
                           source_filters=json.loads(r["source_filters"] or "[]"),
                           created_at=r["created_at"])
            for r in rows
        ]

    def clear_search_history(self) -> int:
        with self._write():
            cur = self.conn.execute("DELETE FROM discover_search_history")
        return cur.rowcount

    def prune_search_history(self, keep: int) -> int:
        """Keep only the ``keep`` most recent searches."""
        with self._write():
            cur = self.conn.execute(
                """DELETE FROM discover_search_history WHERE id NOT IN (
                       SELECT id FROM discover_search_history
                       ORDER BY created_at DESC, id DESC LIMIT ?)""",
                (max(0, keep),),
            )
        return cur.rowcount
