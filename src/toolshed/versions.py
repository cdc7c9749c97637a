"""Version helpers shared by the package sources and the update planner."""

from __future__ import annotations

import re

_DIGIT_RUNS = re.compile(r"\d+")
_PRERELEASE_WORDS = ("alpha", "beta", "dev", "pre")


def is_stable_version(version: str) -> bool:
    """True if ``version`` carries no pre-release marker.

    Rejects alpha/beta/dev/pre, any ``rc`` not inside ``src``, and a/b
    immediately between two digits (``1.0a1``, ``2.0b3``).
    """
    lower = version.lower()
    if any(word in lower for word in _PRERELEASE_WORDS):
        return False
    if "rc" in lower and "src" not in lower:
        return False
    for i in range(1, len(lower) - 1):
        if lower[i] in "ab" and lower[i + 1].isdigit() and lower[i - 1].isdigit():
            return False
    return True


def version_key(version: str) -> list[int]:
    return [int(run) for run in _DIGIT_RUNS.findall(version)]


def version_is_newer(candidate: str, current: str) -> bool:
    """Tolerant semver-ish comparison: is ``candidate`` strictly newer?"""
    new, old = version_key(candidate), version_key(current)
    for n, o in zip(new, old):
        if n != o:
            return n > o
    return len(new) > len(old)


def newer_stable_versions(versions, current: str) -> list[str]:
    """Stable versions strictly newer than ``current``, oldest first."""
    picked = {v for v in versions
              if v and is_stable_version(v) and version_is_newer(v, current)}
    return sorted(picked, key=version_key)


def max_stable_version(versions) -> str | None:
    stable = [v for v in versions if v and is_stable_version(v)]
    if not stable:
        return None
    return max(stable, key=version_key)
