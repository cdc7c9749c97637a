"""Descriptions for tools no package manager knows about.

Tries the whatis database (``man -f``) first, then scrapes the first
prose-looking line out of ``--help``.
"""

from __future__ import annotations

import re

from ..argsafe import is_valid_package_name
from .base import run_capture, run_ok

_HELP_SKIP_PREFIXES = (
    "Usage:", "usage:", "USAGE:", "-", "[", "Options:", "Commands:",
    "Arguments:", "FLAGS:", "Error:",
)
_HELP_SKIP_FRAGMENTS = ("[--", "<", "├", "└", "▄", "▀", "\x1b[")
_HELP_REJECT_WORDS = ("version", "not found", "deprecated")
_WHATIS_RE = re.compile(r"\s-\s(.+)$")


def fetch_man_description(binary: str) -> str | None:
    """Parse ``tool (1) - description`` from ``man -f``."""
    if not is_valid_package_name(binary):
        return None
    out = run_ok(["man", "-f", binary], timeout=5)
    if not out:
        return None
    for line in out.splitlines():
        m = _WHATIS_RE.search(line)
        if m and m.group(1).strip():
            desc = m.group(1).strip()
            return desc[0].upper() + desc[1:]
    return None


def description_from_help(text: str) -> str | None:
    """Pick a one-line description out of help text, or None."""
    if len(text) < 10:
        return None
    for line in text.splitlines()[:25]:
        line = line.strip()
        if len(line) < 15:
            continue
        if line.startswith(_HELP_SKIP_PREFIXES):
            continue
        if any(frag in line for frag in _HELP_SKIP_FRAGMENTS) or line.count("-") > 3:
            continue
        desc = line.split(". ", 1)[0] if ". " in line else line[:80]
        lower = desc.lower()
        if any(w in lower for w in _HELP_REJECT_WORDS) or lower.startswith("error"):
            continue
        if desc.count(" ") < 2:
            continue
        return desc
    return None


def fetch_help_description(binary: str) -> str | None:
    if not is_valid_package_name(binary):
        return None
    for flag in ("--help", "-h"):
        result = run_capture([binary, flag], timeout=5)
        if result is None:
            return None
        text = result.stdout if len(result.stdout) > len(result.stderr) else result.stderr
        desc = description_from_help(text)
        if desc:
            return desc
    return None


def describe_binary(binary: str) -> str | None:
    return fetch_man_description(binary) or fetch_help_description(binary)
