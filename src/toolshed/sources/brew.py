"""Homebrew adapter — formulae installed with brew."""

from __future__ import annotations

import json
import logging

from ..argsafe import SafeCommand, validate_package_name
from ..http import get_json
from ..models import Source, Tool, Update
from .base import BaseSource, SourceMeta, run_ok

log = logging.getLogger(__name__)

FORMULAE_API = "https://formulae.brew.sh/api/formula"


class BrewSource(BaseSource):
    meta = SourceMeta(
        name="brew",
        description="Homebrew formulae",
        program="brew",
        install_hint="see https://brew.sh",
    )

    def detect_installed_tools(self) -> list[Tool]:
        out = run_ok(["brew", "list", "--formula", "-1"], timeout=60)
        if out is None:
            return []
        return [
            Tool(name=name).with_source(Source.BREW)
            .with_install_command(f"brew install {name}").installed()
            for name in (line.strip() for line in out.splitlines())
            if name
        ]

    def build_install_cmd(self, name: str, version: str | None = None) -> SafeCommand:
        name, version = self.validate(name, version)
        return SafeCommand("brew", ("install", f"{name}@{version}" if version else name))

    def build_uninstall_cmd(self, name: str) -> SafeCommand:
        name, _ = self.validate(name)
        return SafeCommand("brew", ("uninstall", name))

    def query_installed_version(self, name: str) -> str | None:
        validate_package_name(name)
        out = run_ok(["brew", "list", "--versions", name])
        if not out:
            return None
        parts = out.split()
        return parts[-1] if len(parts) >= 2 else None

    def _info(self, name: str) -> dict | None:
        validate_package_name(name)
        out = run_ok(["brew", "info", "--json=v2", name])
        if not out:
            return None
        try:
            formulae = json.loads(out).get("formulae") or []
        except (json.JSONDecodeError, AttributeError):
            log.warning("Could not parse brew info output for %s", name)
            return None
        return formulae[0] if formulae else None

    def list_versions(self, name: str) -> list[str]:
        info = self._info(name)
        stable = ((info or {}).get("versions") or {}).get("stable")
        return [stable] if stable else []

    def fetch_description(self, name: str) -> str | None:
        validate_package_name(name)
        data = get_json(f"{FORMULAE_API}/{name}.json")
        if not isinstance(data, dict):
            return None
        desc = (data.get("desc") or "").strip()
        return desc or None

    def check_updates(self) -> list[Update]:
        out = run_ok(["brew", "outdated", "--json"], timeout=120)
        if not out:
            return []
        try:
            formulae = json.loads(out).get("formulae") or []
        except (json.JSONDecodeError, AttributeError):
            log.warning("Could not parse brew outdated output")
            return []
        updates = []
        for f in formulae:
            installed = f.get("installed_versions") or []
            if f.get("name") and installed and f.get("current_version"):
                updates.append(Update(name=f["name"], source=Source.BREW,
                                      current=installed[0], latest=f["current_version"]))
        return updates


adapter = BrewSource()
