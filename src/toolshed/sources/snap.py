"""snap adapter — confined snap packages."""

from __future__ import annotations

import logging

from ..argsafe import SafeCommand, validate_package_name
from ..models import Source, Tool, Update
from .base import BaseSource, SourceMeta, run_ok

log = logging.getLogger(__name__)

# Runtime snaps, not tools
_PLATFORM_PREFIXES = ("core", "snapd", "bare", "gnome-", "gtk-", "kde-", "mesa-")


def parse_snap_list(text: str) -> dict[str, str]:
    """{name: version} from ``snap list`` (header row skipped)."""
    snaps = {}
    for line in text.splitlines()[1:]:
        parts = line.split()
        if len(parts) >= 2:
            snaps[parts[0]] = parts[1]
    return snaps


def parse_snap_info(text: str) -> dict[str, str]:
    """Pull ``summary`` and the ``latest/stable`` channel version out of ``snap info``."""
    info = {}
    for line in text.splitlines():
        stripped = line.strip()
        if line.startswith("summary:"):
            info["summary"] = line.split(":", 1)[1].strip()
        elif stripped.startswith("latest/stable:"):
            fields = stripped.split(":", 1)[1].split()
            if fields and fields[0] not in ("^", "--"):
                info["stable"] = fields[0]
    return info


class SnapSource(BaseSource):
    meta = SourceMeta(
        name="snap",
        description="Snap packages",
        program="snap",
        install_hint="install snapd",
    )

    def _list(self) -> dict[str, str]:
        out = run_ok(["snap", "list"])
        return parse_snap_list(out) if out else {}

    def detect_installed_tools(self) -> list[Tool]:
        return [
            Tool(name=name).with_source(Source.SNAP)
            .with_install_command(f"sudo snap install {name}").installed()
            for name in sorted(self._list())
            if not name.startswith(_PLATFORM_PREFIXES)
        ]

    def build_install_cmd(self, name: str, version: str | None = None) -> SafeCommand:
        """Snaps track channels, not versions; a version selects a channel."""
        name, version = self.validate(name, version)
        args = ["install", name]
        if version:
            args.append(f"--channel={version}")
        return SafeCommand("snap", tuple(args), requires_elevation=True)

    def build_uninstall_cmd(self, name: str) -> SafeCommand:
        name, _ = self.validate(name)
        return SafeCommand("snap", ("remove", name), requires_elevation=True)

    def query_installed_version(self, name: str) -> str | None:
        validate_package_name(name)
        out = run_ok(["snap", "list", name])
        return parse_snap_list(out).get(name) if out else None

    def _info(self, name: str) -> dict[str, str]:
        validate_package_name(name)
        out = run_ok(["snap", "info", name])
        return parse_snap_info(out) if out else {}

    def list_versions(self, name: str) -> list[str]:
        stable = self._info(name).get("stable")
        return [stable] if stable else []

    def fetch_description(self, name: str) -> str | None:
        return self._info(name).get("summary") or None

    def check_updates(self) -> list[Update]:
        out = run_ok(["snap", "refresh", "--list"], timeout=60)
        if not out:
            return []
        installed = self._list()
        updates = []
        for name, latest in parse_snap_list(out).items():
            current = installed.get(name)
            if current and current != latest:
                updates.append(Update(name=name, source=Source.SNAP,
                                      current=current, latest=latest))
        return updates


adapter = SnapSource()
