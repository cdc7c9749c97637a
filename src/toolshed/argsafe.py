"""Input validation and argument-vector construction for package managers.

Every external package-manager invocation is built here as a SafeCommand:
a program plus a list of literal tokens. Nothing is ever joined into a
shell string for execution.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from .errors import ExternalFailed, ExternalUnavailable, InvalidName, InvalidVersion

log = logging.getLogger(__name__)

MAX_NAME_LENGTH = 214
MAX_VERSION_LENGTH = 64

_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._+\-@/]*")
_SCOPED_RE = re.compile(r"@[A-Za-z0-9][A-Za-z0-9._\-]*/[A-Za-z0-9][A-Za-z0-9._+\-@/]*")
_VERSION_RE = re.compile(r"[A-Za-z0-9._+\-~]*")
_SHELL_META = set(";|&$`<>()[]{}*?!#'\"\\=%^,:")


def validate_package_name(name: str) -> str:
    """Return ``name`` unchanged if it is safe to pass to a package manager."""
    if not name:
        raise InvalidName(name, "empty")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidName(name, f"longer than {MAX_NAME_LENGTH} characters")
    if any(ch.isspace() for ch in name):
        raise InvalidName(name, "contains whitespace")
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in name):
        raise InvalidName(name, "contains a control character")
    bad = sorted({ch for ch in name if ch in _SHELL_META})
    if bad:
        raise InvalidName(name, f"contains shell metacharacter {''.join(bad)!r}")
    if ".." in name.split("/"):
        raise InvalidName(name, "contains a path traversal segment")
    pattern = _SCOPED_RE if name.startswith("@") else _NAME_RE
    if not pattern.fullmatch(name):
        raise InvalidName(name, "not a valid package name")
    return name


def validate_version(version: str) -> str:
    if len(version) > MAX_VERSION_LENGTH:
        raise InvalidVersion(version, f"longer than {MAX_VERSION_LENGTH} characters")
    if not _VERSION_RE.fullmatch(version):
        raise InvalidVersion(version, "only letters, digits and . _ + - ~ are allowed")
    return version


def is_valid_package_name(name: str) -> bool:
    try:
        validate_package_name(name)
    except InvalidName:
        return False
    return True


@dataclass
class CommandOutput:
    """Result of a streamed run: exit status plus the tail of its output."""

    returncode: int
    lines: list[str] = field(default_factory=list)
    dropped: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class SafeCommand:
    """A program and its literal argument tokens.

    ``str(cmd)`` is for display only and is never re-parsed.
    """

    program: str
    args: tuple[str, ...] = ()
    requires_elevation: bool = False

    @property
    def argv(self) -> list[str]:
        base = [self.program, *self.args]
        return ["sudo", *base] if self.requires_elevation else base

    def __str__(self) -> str:
        return shlex.join(self.argv)

    def run(self, *, capture: bool = False, timeout: float | None = None) -> subprocess.CompletedProcess:
        """Run to completion, inheriting stdio unless ``capture`` is set."""
        log.debug("exec: %s", self)
        try:
            result = subprocess.run(
                self.argv, capture_output=capture, text=True, timeout=timeout,
            )
        except FileNotFoundError:
            missing = "sudo" if self.requires_elevation else self.program
            raise ExternalUnavailable(missing)
        if result.returncode != 0:
            raise ExternalFailed(self.program, result.returncode,
                                 result.stderr if capture else "")
        return result

    def stream(
        self,
        on_line: Callable[[str], None] | None = None,
        max_lines: int = 200,
    ) -> CommandOutput:
        """Run with merged stdout/stderr piped into a ring buffer.

        The buffer keeps the last ``max_lines`` lines; older ones are dropped.
        """
        log.debug("exec (streamed): %s", self)
        buffer: deque[str] = deque(maxlen=max_lines)
        seen = 0
        try:
            proc = subprocess.Popen(
                self.argv, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                text=True, bufsize=1,
            )
        except FileNotFoundError:
            raise ExternalUnavailable("sudo" if self.requires_elevation else self.program)

        assert proc.stdout is not None
        with proc.stdout:
            for raw in proc.stdout:
                line = raw.rstrip("\n")
                buffer.append(line)
                seen += 1
                if on_line:
                    on_line(line)
        returncode = proc.wait()
        return CommandOutput(returncode=returncode, lines=list(buffer),
                             dropped=max(0, seen - len(buffer)))
