"""Cargo adapter — crates installed with ``cargo install``, versions from crates.io."""

from __future__ import annotations

import logging

from ..argsafe import SafeCommand, validate_package_name
from ..http import get_json
from ..models import Source, Tool, Update
from ..versions import version_is_newer
from .base import BaseSource, SourceMeta, run_ok

log = logging.getLogger(__name__)

CRATES_API = "https://crates.io/api/v1/crates"


def parse_install_list(text: str) -> dict[str, tuple[str, list[str]]]:
    """Parse ``cargo install --list`` into {crate: (version, [binaries])}.

    Unindented lines look like ``ripgrep v14.1.0:``; indented lines under
    them name the binaries that crate installed.
    """
    crates: dict[str, tuple[str, list[str]]] = {}
    current: str | None = None
    for line in text.splitlines():
        if not line.strip():
            continue
        if not line.startswith((" ", "\t")):
            parts = line.split()
            if len(parts) < 2:
                current = None
                continue
            current = parts[0]
            version = parts[1].rstrip(":").lstrip("v")
            crates[current] = (version, [])
        elif current:
            crates[current][1].append(line.strip())
    return crates


class CargoSource(BaseSource):
    meta = SourceMeta(
        name="cargo",
        description="Rust crates installed with cargo install",
        program="cargo",
        install_hint="install Rust via https://rustup.rs",
    )

    def _installed(self) -> dict[str, tuple[str, list[str]]]:
        out = run_ok(["cargo", "install", "--list"])
        if out is None:
            return {}
        return parse_install_list(out)

    def detect_installed_tools(self) -> list[Tool]:
        tools = []
        for name, (_version, binaries) in sorted(self._installed().items()):
            tool = (Tool(name=name).with_source(Source.CARGO)
                    .with_install_command(f"cargo install {name}").installed())
            if binaries and binaries[0] != name:
                tool = tool.with_binary(binaries[0])
            tools.append(tool)
        return tools

    def build_install_cmd(self, name: str, version: str | None = None) -> SafeCommand:
        name, version = self.validate(name, version)
        args = ["install", name]
        if version:
            args += ["--version", version]
        return SafeCommand("cargo", tuple(args))

    def build_uninstall_cmd(self, name: str) -> SafeCommand:
        name, _ = self.validate(name)
        return SafeCommand("cargo", ("uninstall", name))

    def query_installed_version(self, name: str) -> str | None:
        entry = self._installed().get(name)
        return entry[0] if entry else None

    def _crate(self, name: str) -> dict | None:
        validate_package_name(name)
        data = get_json(f"{CRATES_API}/{name}")
        if not isinstance(data, dict):
            return None
        return data

    def list_versions(self, name: str) -> list[str]:
        data = self._crate(name)
        if not data:
            return []
        return [v.get("num", "") for v in data.get("versions") or []
                if not v.get("yanked")]

    def query_latest_version(self, name: str) -> str | None:
        data = self._crate(name)
        if not data:
            return None
        crate = data.get("crate") or {}
        return crate.get("max_stable_version") or crate.get("max_version")

    def fetch_description(self, name: str) -> str | None:
        data = self._crate(name)
        if not data:
            return None
        desc = ((data.get("crate") or {}).get("description") or "").strip()
        return desc or None

    def check_updates(self) -> list[Update]:
        updates = []
        for name, (current, _bins) in sorted(self._installed().items()):
            latest = self.query_latest_version(name)
            if latest and version_is_newer(latest, current):
                updates.append(Update(name=name, source=Source.CARGO,
                                      current=current, latest=latest))
        return updates


adapter = CargoSource()
