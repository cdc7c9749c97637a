"""apt adapter — Debian packages that provide a command-line tool."""

from __future__ import annotations

import logging
import shutil

from ..argsafe import SafeCommand, validate_package_name
from ..models import Source, Tool, Update
from .base import BaseSource, SourceMeta, run_ok

log = logging.getLogger(__name__)

DPKG_FORMAT = "${Package}\t${Section}\t${binary:Summary}\n"

# Sections whose packages are desktop software, not CLI tools
GUI_SECTIONS = (
    "x11", "gnome", "kde", "xfce", "lxde", "lxqt", "mate", "cinnamon",
    "graphics", "video", "sound", "games", "fonts", "libdevel",
)
GUI_PACKAGES = (
    "firefox", "thunderbird", "chrome", "chromium", "code", "slack",
    "discord", "telegram", "signal", "spotify", "vlc", "gimp", "inkscape",
    "blender", "libreoffice",
)
GUI_PATTERNS = ("-gtk", "-gnome", "-kde", "-qt", "-gui", "-desktop", "-applet")

_SECTION_CATEGORIES = {
    "admin": "system", "utils": "system", "kernel": "system", "embedded": "system",
    "devel": "dev", "debug": "dev", "electronics": "dev",
    "net": "network", "web": "network", "mail": "network", "comm": "network",
    "text": "text",
    "editors": "editor",
    "shells": "shell",
    "vcs": "git",
    "database": "data", "science": "data", "math": "data",
    "interpreters": "lang", "perl": "lang", "python": "lang", "javascript": "lang",
    "ruby": "lang", "rust": "lang", "golang": "lang",
    "doc": "docs", "documentation": "docs",
}


def section_to_category(section: str) -> str:
    """Map an apt section (``universe/utils``) to a catalogue category."""
    base = section.rsplit("/", 1)[-1]
    return _SECTION_CATEGORIES.get(base, "cli")


def is_cli_package(package: str, section: str) -> bool:
    if any(s in section for s in GUI_SECTIONS):
        return False
    if package.startswith("lib") or package.endswith(("-dev", "-doc")):
        return False
    if any(p in package for p in GUI_PACKAGES):
        return False
    return not any(p in package for p in GUI_PATTERNS)


class AptSource(BaseSource):
    meta = SourceMeta(
        name="apt",
        description="Debian/Ubuntu packages managed by apt",
        program="dpkg-query",
        install_hint="only available on Debian-based systems",
    )

    def detect_installed_tools(self) -> list[Tool]:
        out = run_ok(["dpkg-query", "-W", "-f", DPKG_FORMAT], timeout=60)
        if out is None:
            return []
        tools = []
        for line in out.splitlines():
            parts = line.split("\t", 2)
            if len(parts) < 2:
                continue
            package, section = parts[0], parts[1]
            summary = parts[2].strip() if len(parts) > 2 else ""
            if not is_cli_package(package, section):
                continue
            # only packages that put a same-named binary on PATH
            if shutil.which(package) is None:
                continue
            tool = (Tool(name=package).with_source(Source.APT).with_binary(package)
                    .with_category(section_to_category(section))
                    .with_install_command(f"sudo apt install {package}").installed())
            if summary:
                tool = tool.with_description(summary)
            tools.append(tool)
        return tools

    def build_install_cmd(self, name: str, version: str | None = None) -> SafeCommand:
        name, version = self.validate(name, version)
        target = f"{name}={version}" if version else name
        return SafeCommand("apt", ("install", "-y", target), requires_elevation=True)

    def build_uninstall_cmd(self, name: str) -> SafeCommand:
        name, _ = self.validate(name)
        return SafeCommand("apt", ("remove", "-y", name), requires_elevation=True)

    def query_installed_version(self, name: str) -> str | None:
        validate_package_name(name)
        out = run_ok(["dpkg-query", "-W", "-f", "${Version}", name])
        if not out or not out.strip():
            return None
        return out.strip()

    def _candidate(self, name: str) -> str | None:
        out = run_ok(["apt-cache", "policy", name])
        if out is None:
            return None
        for line in out.splitlines():
            line = line.strip()
            if line.startswith("Candidate:"):
                candidate = line.split(":", 1)[1].strip()
                return None if candidate in ("", "(none)") else candidate
        return None

    def list_versions(self, name: str) -> list[str]:
        validate_package_name(name)
        candidate = self._candidate(name)
        return [candidate] if candidate else []

    def fetch_description(self, name: str) -> str | None:
        validate_package_name(name)
        out = run_ok(["dpkg-query", "-W", "-f", "${binary:Summary}", name])
        if not out or not out.strip():
            return None
        return out.strip()

    def check_updates(self) -> list[Update]:
        out = run_ok(["apt", "list", "--upgradable"], timeout=60)
        if out is None:
            return []
        updates = []
        # "name/suite version arch [upgradable from: old]"
        for line in out.splitlines()[1:]:
            parts = line.split()
            if len(parts) < 6 or "from:" not in parts:
                continue
            current = parts[parts.index("from:") + 1].rstrip("]")
            updates.append(Update(name=parts[0].split("/", 1)[0], source=Source.APT,
                                  current=current, latest=parts[1]))
        return updates


adapter = AptSource()
