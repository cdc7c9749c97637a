"""Configuration loading — finds and merges config from multiple sources."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field


CONFIG_DIR = Path.home() / ".config" / "toolshed"

# Global (user-level) is loaded first, then a local file in cwd overrides it.
_GLOBAL_PATHS = [
    CONFIG_DIR / "shed.yaml",
]
_LOCAL_PATHS = [
    Path(".shed.yaml"),
    Path("shed.yaml"),
]


class AIConfig(BaseModel):
    provider: Literal["none", "claude", "gemini", "codex", "opencode"] = "none"


class UsageConfig(BaseModel):
    mode: Literal["scan", "hook"] = "scan"
    shell: Literal["fish", "bash", "zsh"] | None = None


class TUIConfig(BaseModel):
    theme: str = "default"


class SourcesConfig(BaseModel):
    """Discover sources the user has enabled."""

    cargo: bool = True
    apt: bool = True
    manual: bool = True
    pip: bool = False
    npm: bool = False
    brew: bool = False
    snap: bool = False

    def enabled(self) -> list[str]:
        return [name for name, on in self.model_dump().items() if on]


class GitHubConfig(BaseModel):
    delay_ms: int = Field(2000, ge=0)
    batch_limit: int = Field(50, ge=1)


class Config(BaseModel):
    data_dir: str = "~/.toolshed"
    config_dir: str = str(CONFIG_DIR)
    log_level: str = "WARNING"
    ai: AIConfig = Field(default_factory=AIConfig)
    usage: UsageConfig = Field(default_factory=UsageConfig)
    tui: TUIConfig = Field(default_factory=TUIConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser().resolve()

    @property
    def db_path(self) -> Path:
        return self.data_path / "toolshed.db"

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir).expanduser()

    @property
    def topic_mapping_path(self) -> Path:
        return self.config_path / "topic-mapping.yaml"

    def save(self, path: str | Path | None = None) -> Path:
        """Write this config as YAML, creating the file on first save."""
        target = Path(path).expanduser() if path else self.config_path / "shed.yaml"
        target.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(exclude={"config_dir"})
        target.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
        return target


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base (override wins)."""
    merged = dict(base)
    for key, val in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(val, dict):
            merged[key] = _deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged


def load_config(config_path: str | Path | None = None) -> Config:
    """Load config with layered merging: code defaults → global → local.

    An explicit config_path bypasses layering and loads only that file.
    A missing file means all defaults.
    """
    if config_path:
        p = Path(config_path).expanduser().resolve()
        if p.exists():
            data = yaml.safe_load(p.read_text()) or {}
            return Config(**data)
        return Config()

    merged: dict = {}
    for paths in (_GLOBAL_PATHS, _LOCAL_PATHS):
        for p in paths:
            p = p.expanduser().resolve()
            if p.exists():
                data = yaml.safe_load(p.read_text()) or {}
                merged = _deep_merge(merged, data)
                break  # first found per layer

    return Config(**merged) if merged else Config()
