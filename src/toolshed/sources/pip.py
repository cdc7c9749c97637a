"""pip adapter — Python packages, versions from PyPI."""

from __future__ import annotations

import json
import logging
import shutil

from ..argsafe import SafeCommand, validate_package_name
from ..http import get_json
from ..models import Source, Tool, Update
from .base import BaseSource, SourceMeta, run_ok

log = logging.getLogger(__name__)

PYPI_API = "https://pypi.org/pypi"


def _pip() -> str:
    return "pip3" if shutil.which("pip3") else "pip"


class PipSource(BaseSource):
    meta = SourceMeta(
        name="pip",
        description="Python packages installed with pip",
        program="pip3",
        install_hint="install python3-pip",
    )

    def is_available(self) -> bool:
        return shutil.which("pip3") is not None or shutil.which("pip") is not None

    def detect_installed_tools(self) -> list[Tool]:
        out = run_ok([_pip(), "list", "--format=freeze"])
        if out is None:
            return []
        tools = []
        for line in out.splitlines():
            name, sep, _version = line.strip().partition("==")
            if not sep or not name:
                continue
            tools.append(Tool(name=name).with_source(Source.PIP)
                         .with_install_command(f"pip install {name}").installed())
        return tools

    def build_install_cmd(self, name: str, version: str | None = None) -> SafeCommand:
        name, version = self.validate(name, version)
        if version:
            return SafeCommand(_pip(), ("install", f"{name}=={version}"))
        return SafeCommand(_pip(), ("install", "--upgrade", name))

    def build_uninstall_cmd(self, name: str) -> SafeCommand:
        name, _ = self.validate(name)
        return SafeCommand(_pip(), ("uninstall", "-y", name))

    def query_installed_version(self, name: str) -> str | None:
        validate_package_name(name)
        out = run_ok([_pip(), "show", name])
        if out is None:
            return None
        for line in out.splitlines():
            if line.startswith("Version:"):
                return line.split(":", 1)[1].strip() or None
        return None

    def _project(self, name: str) -> dict | None:
        validate_package_name(name)
        data = get_json(f"{PYPI_API}/{name}/json")
        return data if isinstance(data, dict) else None

    def list_versions(self, name: str) -> list[str]:
        data = self._project(name)
        if not data:
            return []
        return list((data.get("releases") or {}).keys())

    def query_latest_version(self, name: str) -> str | None:
        data = self._project(name)
        if not data:
            return None
        return (data.get("info") or {}).get("version") or None

    def fetch_description(self, name: str) -> str | None:
        data = self._project(name)
        if not data:
            return None
        summary = ((data.get("info") or {}).get("summary") or "").strip()
        if not summary or summary == "UNKNOWN":
            return None
        return summary

    def check_updates(self) -> list[Update]:
        out = run_ok([_pip(), "list", "--outdated", "--format=json"], timeout=120)
        if not out:
            return []
        try:
            rows = json.loads(out)
        except json.JSONDecodeError:
            log.warning("Could not parse pip outdated output")
            return []
        return [
            Update(name=r["name"], source=Source.PIP,
                   current=r["version"], latest=r["latest_version"])
            for r in rows
            if r.get("name") and r.get("version") and r.get("latest_version")
        ]


adapter = PipSource()
