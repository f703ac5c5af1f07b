"""Allow-listed subprocess execution.

Every external process the service starts goes through :func:`safe_run`,
which refuses executables outside the allow list and never uses a shell.
"""

from __future__ import annotations

import logging
import subprocess  # nosec

# Reason: central wrapper validates executables against an allow list before invocation
from pathlib import Path
from typing import MutableMapping, Optional, Sequence

_LOG = logging.getLogger("cmslookup.subprocess")

# CMSeeK is a python script; nothing else is ever spawned
_ALLOWED_EXECUTABLES = {
    "python",
    "python3",
    "python.exe",
    "python3.exe",
    "py",
    "py.exe",
}


def register_allowed_executable(executable: str) -> None:
    """Allow an additional executable name (case-insensitive)."""
    if executable:
        _ALLOWED_EXECUTABLES.add(Path(executable).name.lower())


def is_allowed_executable(executable: str) -> bool:
    if not executable:
        return False
    return Path(executable).name.lower() in _ALLOWED_EXECUTABLES


def _ensure_allowed(cmd: Sequence[str]) -> Sequence[str]:
    if not cmd:
        raise ValueError("empty command passed to safe subprocess wrapper")
    if not is_allowed_executable(cmd[0]):
        raise ValueError(f"executable {cmd[0]!r} is not permitted by allow list")
    return cmd


def safe_run(
    cmd: Sequence[str],
    *,
    cwd: Optional[str] = None,
    env: Optional[MutableMapping[str, str]] = None,
    timeout: Optional[float] = None,
    merge_stderr: bool = True,
) -> subprocess.CompletedProcess:
    """Run ``cmd`` to completion and return it with its output as text.

    With ``merge_stderr`` the child's stderr is folded into ``stdout`` so a
    single string can be logged when the run fails.
    """
    _ensure_allowed(cmd)
    _LOG.debug("safe_run executing cmd=%s cwd=%s timeout=%s", list(cmd), cwd, timeout)
    return subprocess.run(  # nosec
        list(cmd),
        cwd=cwd,
        env=env,
        timeout=timeout,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        text=True,
        errors="replace",
        check=False,
    )
    # Reason: _ensure_allowed enforces allow list, and shell is never enabled


TimeoutExpired = subprocess.TimeoutExpired
