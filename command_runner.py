#!/usr/bin/env python3
"""
Command Runner - Runs system utilities and hands back their captured output

Probes never want an exception from here: a missing binary, a non-zero exit
and a timeout all come back as a CommandResult with success=False, so the
caller can fall back to its next source.

Exit codes follow the shell convention for the failures that have no real
exit status:
• 127 → executable not found / could not be started
• 124 → killed after the timeout expired
"""

import getpass
import logging
import os
import subprocess
import sys
from typing import List, NamedTuple, Optional, Sequence, Union

logger = logging.getLogger(__name__)


def _env_timeout(default: float = 10.0) -> float:
    """Read HUDAPP_COMMAND_TIMEOUT (seconds), ignoring junk values."""
    raw = os.environ.get("HUDAPP_COMMAND_TIMEOUT", "")
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


COMMAND_TIMEOUT = _env_timeout()

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


class CommandResult(NamedTuple):
    success: bool
    stdout: str
    stderr: str
    exit_code: int


def run_command(
    args: Union[str, Sequence[str]],
    timeout: Optional[float] = None,
    shell: bool = False,
    env: Optional[dict] = None,
) -> CommandResult:
    """
    Run a command and capture its text output.

    `args` is a list for direct exec, or a string when `shell=True` (needed
    for pipelines such as `lspci -v | grep ...`).
    """
    timeout = COMMAND_TIMEOUT if timeout is None else timeout
    display = args if isinstance(args, str) else " ".join(args)
    logger.debug(f"Running: {display}")

    try:
        proc = subprocess.run(
            args,
            capture_output=True,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
            timeout=timeout,
            shell=shell,
            env=env,
        )
    except FileNotFoundError as e:
        logger.info(f"Command not found: {display} ({e})")
        return CommandResult(False, "", str(e), EXIT_NOT_FOUND)
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Command timed out after {timeout}s: {display}")
        stdout = e.stdout or ""
        if isinstance(stdout, bytes):
            stdout = stdout.decode(errors="replace")
        return CommandResult(False, stdout, f"Timed out after {timeout}s", EXIT_TIMEOUT)
    except OSError as e:
        logger.warning(f"Could not start {display}: {e}")
        return CommandResult(False, "", str(e), EXIT_NOT_FOUND)

    if proc.returncode != 0:
        logger.debug(f"{display} exited with {proc.returncode}: {proc.stderr.strip()[:200]}")
    return CommandResult(proc.returncode == 0, proc.stdout, proc.stderr, proc.returncode)


# ── Fresh login shell ──────────────────────────────────────────────────────────
# The server process usually inherits a trimmed environment (systemd unit,
# IDE, container).  A login shell re-reads the user's profile, so tools that
# were added to PATH there (dotnet, pyenv shims) become visible.

def _current_user() -> str:
    user = os.environ.get("USER")
    if user:
        return user
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "root"


def _login_shell_methods(script: str) -> List[List[str]]:
    """Candidate invocations of `script`, most direct first."""
    if sys.platform.startswith("win"):
        return [["cmd", "/c", script]]
    return [
        ["bash", "-l", "-c", script],
        ["su", "-", _current_user(), "-c", script],
        ["env", "-i", "bash", "-l", "-c", script],
    ]


def run_in_login_shell(script: str, timeout: Optional[float] = None) -> CommandResult:
    """
    Run a shell snippet in a fresh login shell, trying each method in turn.

    The first method that succeeds with non-empty stdout wins.  When none do,
    the last failure is returned.
    """
    last = CommandResult(False, "", "No login shell method available", EXIT_NOT_FOUND)
    methods = _login_shell_methods(script)
    for i, cmd in enumerate(methods, start=1):
        logger.debug(f"Trying login shell method {i}/{len(methods)}: {cmd[0]}")
        result = run_command(cmd, timeout=timeout)
        if result.success and result.stdout.strip():
            logger.debug(f"Login shell method {i} succeeded")
            return result
        last = result
    logger.info(f"All login shell methods failed: {last.stderr.strip()[:200]}")
    return last
