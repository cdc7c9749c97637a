"""Source registry — dispatch table from source tag to adapter.

Built-in adapters are registered at import time. Third-party adapters are
discovered via entry points::

    # In a third-party pyproject.toml:
    [project.entry-points."toolshed.sources"]
    ports = "toolshed_ports:adapter"
"""

from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import Source
    from .base import PackageSource

log = logging.getLogger(__name__)

_BUILTIN: dict[str, PackageSource] = {}
_cache: dict[str, PackageSource] | None = None

EP_GROUP = "toolshed.sources"


def register(adapter: PackageSource) -> None:
    """Register a built-in adapter."""
    global _cache
    _BUILTIN[adapter.meta.name] = adapter
    _cache = None


def discover() -> dict[str, PackageSource]:
    """All adapters: built-in plus entry-point discovered. Cached."""
    global _cache
    if _cache is not None:
        return dict(_cache)

    adapters = dict(_BUILTIN)
    for ep in entry_points(group=EP_GROUP):
        if ep.name in adapters:
            continue  # built-in takes precedence
        try:
            obj = ep.load()
        except Exception:
            log.warning("Failed to load source entry point: %s", ep.name, exc_info=True)
            continue
        if hasattr(obj, "meta") and hasattr(obj, "build_install_cmd"):
            adapters[ep.name] = obj
        elif hasattr(obj, "adapter"):
            adapters[ep.name] = obj.adapter
        else:
            log.warning("Entry point %s does not expose a PackageSource", ep.name)

    _cache = adapters
    return dict(adapters)


def get(source: Source | str) -> PackageSource | None:
    """Adapter for a source tag; None for manual/unknown."""
    return discover().get(str(source))


def available() -> dict[str, PackageSource]:
    """Only adapters whose manager is on PATH."""
    return {k: v for k, v in discover().items() if v.is_available()}


def reset() -> None:
    """Clear the discovery cache (useful for testing)."""
    global _cache
    _cache = None


def _register_builtins() -> None:
    from .apt import adapter as apt
    from .brew import adapter as brew
    from .cargo import adapter as cargo
    from .npm import adapter as npm
    from .pip import adapter as pip
    from .snap import adapter as snap

    for adapter in (cargo, pip, npm, apt, brew, snap):
        register(adapter)


_register_builtins()
