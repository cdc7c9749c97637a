"""Shared run settings and outcome tallies for the reconcile steps."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

log = logging.getLogger(__name__)


@dataclass
class SyncConfig:
    """Constraints applied to every reconcile step."""

    dry_run: bool = False
    verbose: bool = False
    limit: int = 50
    delay_ms: int = 2000
    reset: bool = False


@dataclass
class SyncResult:
    """What a reconcile step did."""

    step: str = ""
    changed: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    aborted: str | None = None
    interrupted: bool = False

    def fail(self, item: str, error: object) -> None:
        self.failed += 1
        self.errors.append(f"{item}: {error}")
        log.warning("%s: %s failed: %s", self.step or "sync", item, error)

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        log.warning(message)

    @property
    def ok(self) -> bool:
        return not self.failed and self.aborted is None

    def __str__(self) -> str:
        parts = [f"{self.changed} updated"]
        if self.unchanged:
            parts.append(f"{self.unchanged} unchanged")
        parts += [f"{self.skipped} skipped", f"{self.failed} failed"]
        text = ", ".join(parts)
        if self.aborted:
            text += f" (aborted: {self.aborted})"
        elif self.interrupted:
            text += " (interrupted)"
        return text
