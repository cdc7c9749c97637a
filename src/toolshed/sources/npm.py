"""npm adapter — globally installed Node packages."""

from __future__ import annotations

import json
import logging

from ..argsafe import SafeCommand, validate_package_name
from ..http import get_json
from ..models import Source, Tool, Update
from .base import BaseSource, SourceMeta, run_capture, run_ok

log = logging.getLogger(__name__)

NPM_REGISTRY = "https://registry.npmjs.org"

# Ships with node itself; never worth tracking
_BUNDLED = {"npm", "corepack"}


def _loads(text: str | None, what: str):
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        log.warning("Could not parse %s output", what)
        return None


class NpmSource(BaseSource):
    meta = SourceMeta(
        name="npm",
        description="Node packages installed with npm -g",
        program="npm",
        install_hint="install Node.js",
    )

    def detect_installed_tools(self) -> list[Tool]:
        data = _loads(run_ok(["npm", "list", "-g", "--depth=0", "--json"]), "npm list")
        if not isinstance(data, dict):
            return []
        tools = []
        for name in sorted((data.get("dependencies") or {}).keys()):
            if name in _BUNDLED:
                continue
            tool = (Tool(name=name).with_source(Source.NPM)
                    .with_install_command(f"npm install -g {name}").installed())
            if name.startswith("@"):
                tool = tool.with_binary(name.rsplit("/", 1)[-1])
            tools.append(tool)
        return tools

    def build_install_cmd(self, name: str, version: str | None = None) -> SafeCommand:
        name, version = self.validate(name, version)
        spec = f"{name}@{version}" if version else name
        return SafeCommand("npm", ("install", "-g", spec))

    def build_uninstall_cmd(self, name: str) -> SafeCommand:
        name, _ = self.validate(name)
        return SafeCommand("npm", ("uninstall", "-g", name))

    def query_installed_version(self, name: str) -> str | None:
        validate_package_name(name)
        # npm list exits non-zero on peer-dependency noise; read stdout anyway
        result = run_capture(["npm", "list", "-g", name, "--depth=0", "--json"])
        data = _loads(result.stdout if result else None, "npm list")
        if not isinstance(data, dict):
            return None
        return ((data.get("dependencies") or {}).get(name) or {}).get("version")

    def list_versions(self, name: str) -> list[str]:
        validate_package_name(name)
        data = _loads(run_ok(["npm", "view", name, "versions", "--json"]), "npm view")
        if isinstance(data, str):
            return [data]
        return list(data) if isinstance(data, list) else []

    def query_latest_version(self, name: str) -> str | None:
        validate_package_name(name)
        out = run_ok(["npm", "view", name, "version"])
        if not out or not out.strip():
            return None
        return out.strip()

    def fetch_description(self, name: str) -> str | None:
        validate_package_name(name)
        data = get_json(f"{NPM_REGISTRY}/{name.replace('/', '%2f')}")
        if not isinstance(data, dict):
            return None
        desc = (data.get("description") or "").strip()
        return desc or None

    def check_updates(self) -> list[Update]:
        # exits 1 when anything is outdated
        result = run_capture(["npm", "outdated", "-g", "--json"], timeout=120)
        data = _loads(result.stdout if result else None, "npm outdated")
        if not isinstance(data, dict):
            return []
        updates = []
        for name, info in sorted(data.items()):
            current, latest = info.get("current"), info.get("latest")
            if current and latest and current != latest:
                updates.append(Update(name=name, source=Source.NPM,
                                      current=current, latest=latest))
        return updates


adapter = NpmSource()
