"""Pydantic models for the toolshed catalogue."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Source(str, Enum):
    """Where a tool was installed from."""

    CARGO = "cargo"
    PIP = "pip"
    NPM = "npm"
    APT = "apt"
    BREW = "brew"
    SNAP = "snap"
    MANUAL = "manual"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> Source:
        """Total parse: anything unrecognised is ``unknown``."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_managed(self) -> bool:
        return self not in (Source.MANUAL, Source.UNKNOWN)

    def __str__(self) -> str:
        return self.value


class Tool(BaseModel):
    """A tracked command-line utility.

    Builders return updated copies, so a Tool can be assembled fluently::

        Tool(name="ripgrep").with_source("cargo").with_binary("rg").installed()
    """

    id: int | None = None
    name: str
    description: str | None = None
    category: str | None = None
    source: Source = Source.UNKNOWN
    install_command: str | None = None
    binary_name: str | None = None
    is_installed: bool = False
    is_favorite: bool = False
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def binary(self) -> str:
        return self.binary_name or self.name

    def with_source(self, source: Source | str) -> Tool:
        if not isinstance(source, Source):
            source = Source.parse(source)
        return self.model_copy(update={"source": source})

    def with_description(self, description: str | None) -> Tool:
        return self.model_copy(update={"description": description})

    def with_category(self, category: str | None) -> Tool:
        return self.model_copy(update={"category": category})

    def with_binary(self, binary: str | None) -> Tool:
        return self.model_copy(update={"binary_name": binary})

    def with_install_command(self, command: str | None) -> Tool:
        return self.model_copy(update={"install_command": command})

    def with_notes(self, notes: str | None) -> Tool:
        return self.model_copy(update={"notes": notes})

    def installed(self, value: bool = True) -> Tool:
        return self.model_copy(update={"is_installed": value})

    def favorite(self, value: bool = True) -> Tool:
        return self.model_copy(update={"is_favorite": value})

    @classmethod
    def from_row(cls, row: Any) -> Tool:
        d = dict(row)
        d["source"] = Source.parse(d.get("source"))
        d["is_installed"] = bool(d.get("is_installed"))
        d["is_favorite"] = bool(d.get("is_favorite"))
        return cls(**d)


class Bundle(BaseModel):
    """A named, ordered set of tool names."""

    id: int | None = None
    name: str
    description: str | None = None
    tools: list[str] = Field(default_factory=list)
    created_at: str | None = None


class UsageStats(BaseModel):
    use_count: int = 0
    last_used: str | None = None
    first_seen: str | None = None


class UpstreamInfo(BaseModel):
    """Cached metadata about a tool's upstream repository."""

    repo_owner: str
    repo_name: str
    description: str | None = None
    stars: int = 0
    language: str | None = None
    homepage: str | None = None
    fetched_at: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"


class RepoOwner(BaseModel):
    login: str


class SearchHit(BaseModel, populate_by_name=True):
    """One row of ``gh search repos --json ...``."""

    name: str
    full_name: str = Field(default="", alias="fullName")
    description: str | None = None
    stars: int = Field(default=0, alias="stargazersCount")
    owner: RepoOwner


class RepoInfo(BaseModel, populate_by_name=True):
    """Repository detail from ``gh api repos/<owner>/<repo>``."""

    name: str
    full_name: str = ""
    description: str | None = None
    stars: int = Field(default=0, alias="stargazersCount")
    language: str | None = None
    homepage: str | None = None
    topics: list[str] = Field(default_factory=list)
    owner: RepoOwner

    def to_upstream(self) -> UpstreamInfo:
        return UpstreamInfo(
            repo_owner=self.owner.login,
            repo_name=self.name,
            description=self.description,
            stars=self.stars,
            language=self.language,
            homepage=self.homepage or None,
        )


class ExtractionEntry(BaseModel):
    """Tool details extracted from a repository, cached by (owner, repo)."""

    repo_owner: str
    repo_name: str
    version: str | None = None
    name: str
    binary: str | None = None
    source: Source = Source.UNKNOWN
    install_command: str | None = None
    description: str | None = None
    category: str | None = None
    extracted_at: str | None = None


class SearchLogEntry(BaseModel):
    id: int | None = None
    query: str
    ai_enabled: bool = False
    source_filters: list[str] = Field(default_factory=list)
    created_at: str | None = None


class Update(BaseModel):
    """An available upgrade within a tool's current source."""

    name: str
    source: Source
    current: str
    latest: str
    available: list[str] = Field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.name} ({self.source}): {self.current} -> {self.latest}"


class MigrationCandidate(BaseModel):
    """A newer stable release of a tool offered by a different source."""

    name: str
    current_version: str
    current_source: Source
    better_version: str
    better_source: Source

    def __str__(self) -> str:
        return (f"{self.name}: {self.current_version} ({self.current_source}) "
                f"-> {self.better_version} ({self.better_source})")


class RateLimit(BaseModel):
    limit: int = 0
    remaining: int = 0
    reset: int = 0  # epoch seconds
    used: int = 0

    def reset_seconds(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(0, int(self.reset - now))

    def reset_minutes(self, now: float | None = None) -> int:
        return (self.reset_seconds(now) + 59) // 60


class RateLimits(BaseModel):
    core: RateLimit
    search: RateLimit
