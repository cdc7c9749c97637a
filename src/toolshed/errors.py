"""Error types raised across the catalogue engine."""

from __future__ import annotations


class ToolshedError(Exception):
    """Base error for catalogue operations."""

    pass


class NotFound(ToolshedError):
    """Addressed entity does not exist."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} not found: {name}")
        self.kind = kind
        self.name = name


class DuplicateName(ToolshedError):
    """A uniqueness constraint would be violated."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} already exists: {name}")
        self.kind = kind
        self.name = name


class InvalidName(ToolshedError):
    """Package name rejected before reaching any external process."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Invalid package name {name!r}: {reason}")
        self.name = name
        self.reason = reason


class InvalidVersion(ToolshedError):
    """Version string rejected before reaching any external process."""

    def __init__(self, version: str, reason: str) -> None:
        super().__init__(f"Invalid version {version!r}: {reason}")
        self.version = version
        self.reason = reason


class StoreIO(ToolshedError):
    """The database could not be read or written."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Database error: {message}")


class ExternalUnavailable(ToolshedError):
    """A required external program is not on PATH."""

    def __init__(self, program: str, hint: str = "") -> None:
        msg = f"{program} is not installed or not on PATH"
        if hint:
            msg += f" ({hint})"
        super().__init__(msg)
        self.program = program
        self.hint = hint


class ExternalFailed(ToolshedError):
    """An external program ran and exited non-zero."""

    def __init__(self, program: str, returncode: int, stderr: str = "") -> None:
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        msg = f"{program} exited with status {returncode}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.program = program
        self.returncode = returncode
        self.stderr = stderr


class QuotaExhausted(ToolshedError):
    """An upstream rate limit bars further calls."""

    def __init__(self, quota: str, wait_seconds: int) -> None:
        if quota == "core":
            wait = f"{max(1, (wait_seconds + 59) // 60)} minute(s)"
        else:
            wait = f"{max(1, wait_seconds)} second(s)"
        super().__init__(f"GitHub {quota} rate limit exhausted; try again in {wait}")
        self.quota = quota
        self.wait_seconds = wait_seconds


class Cancelled(ToolshedError):
    """The user declined a confirmation prompt."""

    def __init__(self, action: str) -> None:
        super().__init__(f"Cancelled: {action}")
        self.action = action
