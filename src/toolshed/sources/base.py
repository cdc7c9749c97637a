"""Package source protocol.

Every adapter, built-in or third-party, satisfies the PackageSource
protocol. Built-ins share the plumbing in BaseSource::

    from toolshed.argsafe import SafeCommand
    from toolshed.sources.base import BaseSource, SourceMeta

    class PortsSource(BaseSource):
        meta = SourceMeta(name="ports", description="BSD ports", program="pkg")

        def detect_installed_tools(self):
            ...

        def build_install_cmd(self, name, version=None):
            name, version = self.validate(name, version)
            return SafeCommand("pkg", ("install", "-y", name), requires_elevation=True)

    adapter = PortsSource()
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..argsafe import validate_package_name, validate_version
from ..versions import max_stable_version, newer_stable_versions

if TYPE_CHECKING:
    from ..argsafe import SafeCommand
    from ..models import Tool, Update

log = logging.getLogger(__name__)


@dataclass
class SourceMeta:
    """Adapter metadata for discovery and CLI help."""

    name: str
    description: str
    program: str
    install_hint: str = ""


@runtime_checkable
class PackageSource(Protocol):
    """Capability set every package-manager adapter implements.

    Structural: adapters don't need to inherit from this class.
    """

    meta: SourceMeta

    def is_available(self) -> bool:
        """True if the manager's program is on PATH."""
        ...

    def detect_installed_tools(self) -> list[Tool]:
        """Tools this manager reports as installed, tagged with its source.

        Parse failures degrade to an empty list with a warning.
        """
        ...

    def build_install_cmd(self, name: str, version: str | None = None) -> SafeCommand:
        ...

    def build_uninstall_cmd(self, name: str) -> SafeCommand:
        ...

    def query_installed_version(self, name: str) -> str | None:
        ...

    def query_available_versions(self, name: str, current: str) -> list[str]:
        """Stable versions strictly newer than ``current``, oldest first."""
        ...

    def query_latest_version(self, name: str) -> str | None:
        ...

    def fetch_description(self, name: str) -> str | None:
        ...

    def check_updates(self) -> list[Update]:
        """Bulk outdated check using the manager's own report."""
        ...


def run_capture(argv: list[str], timeout: float = 30) -> subprocess.CompletedProcess | None:
    """Run a read-only query; None if the program is missing or hangs."""
    try:
        return subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        log.debug("%s not found", argv[0])
        return None
    except subprocess.TimeoutExpired:
        log.warning("%s timed out after %ss", " ".join(argv[:3]), timeout)
        return None


def run_ok(argv: list[str], timeout: float = 30) -> str | None:
    """stdout of a successful query, else None."""
    result = run_capture(argv, timeout=timeout)
    if result is None or result.returncode != 0:
        return None
    return result.stdout


class BaseSource:
    """Shared defaults for the built-in adapters."""

    meta: SourceMeta

    def is_available(self) -> bool:
        return shutil.which(self.meta.program) is not None

    @staticmethod
    def validate(name: str, version: str | None = None) -> tuple[str, str | None]:
        validate_package_name(name)
        if version:
            validate_version(version)
        return name, version or None

    def list_versions(self, name: str) -> list[str]:
        """Every version the registry knows about, in any order."""
        return []

    def query_available_versions(self, name: str, current: str) -> list[str]:
        validate_package_name(name)
        return newer_stable_versions(self.list_versions(name), current)

    def query_latest_version(self, name: str) -> str | None:
        validate_package_name(name)
        return max_stable_version(self.list_versions(name))

    def fetch_description(self, name: str) -> str | None:
        return None

    def check_updates(self) -> list[Update]:
        return []

    def install_hint(self) -> str:
        return self.meta.install_hint or f"install {self.meta.program}"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.meta.name}>"
