"""Shell integration — a pre-exec hook that feeds ``shed usage log``.

Each installer writes one block, bracketed by marker comments, into the
shell's rc file. Re-running replaces the block in place; uninstalling
removes exactly that block and nothing else.
"""

from __future__ import annotations

import shlex
import shutil
import sys
from pathlib import Path

MARKER_BEGIN = "# >>> toolshed usage hook >>>"
MARKER_END = "# <<< toolshed usage hook <<<"

SHELLS = ("fish", "bash", "zsh")


def rc_path(shell: str) -> Path:
    home = Path.home()
    return {
        "fish": home / ".config" / "fish" / "config.fish",
        "bash": home / ".bashrc",
        "zsh": home / ".zshrc",
    }[shell]


def find_shed() -> str:
    """Command prefix that runs the CLI from inside a shell hook."""
    found = shutil.which("shed")
    if found:
        return shlex.quote(found)
    return f"{shlex.quote(sys.executable)} -m toolshed.cli"


def hook_snippet(shell: str, program: str | None = None) -> str:
    """The marker-bracketed rc block for ``shell``."""
    shed = program or find_shed()
    if shell == "fish":
        body = f"""function __toolshed_preexec --on-event fish_preexec
    {shed} usage log -- "$argv" >/dev/null 2>&1 &
    disown 2>/dev/null
end"""
    elif shell == "zsh":
        body = f"""autoload -Uz add-zsh-hook
__toolshed_preexec() {{ {shed} usage log -- "$1" >/dev/null 2>&1 &! }}
add-zsh-hook preexec __toolshed_preexec"""
    elif shell == "bash":
        # bash has no preexec; use bash-preexec when present, else a DEBUG trap
        body = f"""__toolshed_preexec() {{ ({shed} usage log -- "$1" >/dev/null 2>&1 &) ; }}
if [[ -f ~/.bash-preexec.sh ]]; then
    source ~/.bash-preexec.sh
    preexec_functions+=(__toolshed_preexec)
else
    # logs at most one command per prompt; PROMPT_COMMAND re-arms it last
    __toolshed_armed=
    __toolshed_debug_trap() {{
        [[ -n "$COMP_LINE" || -z "$__toolshed_armed" ]] && return
        __toolshed_armed=
        __toolshed_preexec "$BASH_COMMAND"
    }}
    trap '__toolshed_debug_trap' DEBUG
    PROMPT_COMMAND="${{PROMPT_COMMAND:+$PROMPT_COMMAND; }}__toolshed_armed=1"
fi"""
    else:
        raise ValueError(f"Unsupported shell: {shell} (expected one of {', '.join(SHELLS)})")
    return f"{MARKER_BEGIN}\n{body}\n{MARKER_END}\n"


def _strip_block(content: str) -> tuple[str, bool]:
    lines = content.splitlines(keepends=True)
    kept, inside, found = [], False, False
    for line in lines:
        if line.rstrip("\n") == MARKER_BEGIN:
            inside, found = True, True
            continue
        if inside:
            if line.rstrip("\n") == MARKER_END:
                inside = False
            continue
        kept.append(line)
    return "".join(kept), found


def install_hook(shell: str, path: Path | None = None, program: str | None = None) -> list[str]:
    """Install (or refresh) the usage hook for ``shell``. Returns actions taken."""
    snippet = hook_snippet(shell, program)
    path = path or rc_path(shell)
    actions = []

    existing = path.read_text() if path.exists() else ""
    stripped, found = _strip_block(existing)
    if found and snippet in existing:
        return [f"{shell} hook already installed in {path}"]

    if stripped and not stripped.endswith("\n"):
        stripped += "\n"
    separator = "\n" if stripped.strip() else ""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{stripped}{separator}{snippet}")
    actions.append(f"{'Updated' if found else 'Installed'} {shell} hook in {path}")
    return actions


def uninstall_hook(shell: str, path: Path | None = None) -> list[str]:
    path = path or rc_path(shell)
    if not path.exists():
        return [f"No {path}"]
    stripped, found = _strip_block(path.read_text())
    if not found:
        return [f"No toolshed hook found in {path}"]
    path.write_text(stripped.rstrip("\n") + "\n" if stripped.strip() else "")
    return [f"Removed {shell} hook from {path}"]


def hook_installed(shell: str, path: Path | None = None) -> bool:
    path = path or rc_path(shell)
    return path.exists() and MARKER_BEGIN in path.read_text()
