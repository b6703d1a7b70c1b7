#!/usr/bin/env python3
"""
Toolchain Indexer - PATH, Python, .NET and shell profile detection

The HUD server often runs with a narrower environment than the user's
terminal, so interpreter and SDK probes go through a fresh login shell
(command_runner.run_in_login_shell) instead of the server's own PATH.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from command_runner import run_command, run_in_login_shell
from system_indexer import detect_platform

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "---SEPARATOR---"
MAX_PACKAGES = 50


class PathUnavailableError(RuntimeError):
    """Raised when the PATH environment variable is missing or empty."""


# ── PATH ───────────────────────────────────────────────────────────────────────

# Entries injected by the process that launched the server, not by the user
_DROP_IF_ENDS_WITH = ("node_modules/.bin", "lib/node-gyp-bin")
_DROP_IF_CONTAINS = ("/tmp/.",)


def should_keep_path(entry: str) -> bool:
    """False for PATH entries that the launching process added (npm shims etc)."""
    unix_style = entry.replace("\\", "/")
    if unix_style.endswith(_DROP_IF_ENDS_WITH):
        return False
    return not any(part in unix_style for part in _DROP_IF_CONTAINS)


def _count_executables(directory: str) -> int:
    count = 0
    try:
        with os.scandir(directory) as it:
            for entry in it:
                try:
                    if entry.is_file() and os.access(entry.path, os.X_OK):
                        count += 1
                except OSError:
                    continue
    except OSError:
        return 0
    return count


def _describe_path_entry(directory: str) -> Dict:
    info: Dict = {
        "path": directory,
        "exists": False,
        "is_directory": False,
        "readable": False,
    }
    try:
        p = Path(directory)
        info["exists"] = p.exists()
        info["is_directory"] = p.is_dir()
    except OSError:
        return info
    if not info["exists"]:
        return info

    info["readable"] = os.access(directory, os.R_OK)
    if info["is_directory"] and info["readable"]:
        info["executable_count"] = _count_executables(directory)
    return info


def get_path_info(path_env: Optional[str] = None, source: str = "process_env") -> Dict:
    """
    Describe every entry of PATH: whether it exists, is a readable directory,
    and how many executables it holds.

    Raises:
        PathUnavailableError: PATH is unset or empty
    """
    path_env = os.environ.get("PATH", "") if path_env is None else path_env
    if not path_env:
        raise PathUnavailableError("PATH environment variable not found")

    dirs = [d for d in path_env.split(os.pathsep) if d.strip()]
    dirs = [d for d in dirs if should_keep_path(d)]
    paths = [_describe_path_entry(d) for d in dirs]

    return {
        "path_variable": path_env,
        "total_paths": len(dirs),
        "paths": paths,
        "shell": os.environ.get("SHELL", "Unknown"),
        "user": os.environ.get("USER", "Unknown"),
        "working_directory": os.getcwd(),
        "existing_paths": sum(1 for p in paths if p["exists"]),
        "readable_paths": sum(1 for p in paths if p["readable"]),
        "source": source,
    }


def get_login_shell_path() -> Optional[str]:
    """PATH as a fresh login shell sees it, or None when no shell could tell us."""
    script = "echo %PATH%" if os.name == "nt" else "echo $PATH"
    result = run_in_login_shell(script)
    path = result.stdout.strip()
    return path if result.success and path else None


# ── Probe output ───────────────────────────────────────────────────────────────

def _split_probe(text: str) -> List[str]:
    return [part.strip() for part in (text or "").split(SECTION_SEPARATOR)]


def _lines(block: str) -> List[str]:
    return [line.strip() for line in block.splitlines() if line.strip()]


# ── Python ─────────────────────────────────────────────────────────────────────

_PYTHON_SCRIPT_UNIX = (
    "python3 --version 2>/dev/null || python --version 2>/dev/null"
    f' && echo "{SECTION_SEPARATOR}"'
    " && pip3 --version 2>/dev/null || pip --version 2>/dev/null"
    f' && echo "{SECTION_SEPARATOR}"'
    " && (pip3 list --format=freeze 2>/dev/null || pip list --format=freeze 2>/dev/null)"
    f" | head -{MAX_PACKAGES}"
)
_PYTHON_SCRIPT_WINDOWS = (
    f'python --version 2>nul && echo "{SECTION_SEPARATOR}"'
    f' && pip --version 2>nul && echo "{SECTION_SEPARATOR}"'
    " && pip list --format=freeze 2>nul"
)

COMMON_PYTHON_PATHS = [
    "/usr/bin/python3",
    "/usr/bin/python",
    "/usr/local/bin/python3",
    "/usr/local/bin/python",
    "/opt/python/bin/python3",
    str(Path.home() / ".local/bin/python3"),
    str(Path.home() / ".pyenv/shims/python3"),
    "/snap/python3/current/bin/python3",
    "/usr/bin/python3.13",
    "/usr/bin/python3.12",
    "/usr/bin/python3.11",
    "/usr/bin/python3.10",
    "/usr/bin/python3.9",
]


def parse_python_probe(text: str) -> Dict:
    """Split the separator-joined python/pip probe output into its fields."""
    parts = _split_probe(text)
    packages = [
        line for line in _lines(parts[2] if len(parts) > 2 else "")
        if "WARNING" not in line
    ]
    return {
        "version": parts[0] or None,
        "pip_version": (parts[1] if len(parts) > 1 else "") or None,
        "packages": packages[:MAX_PACKAGES],
    }


def find_python_installations(candidates: Optional[List[str]] = None) -> List[str]:
    """Which of the well-known interpreter locations exist on this machine."""
    candidates = COMMON_PYTHON_PATHS if candidates is None else candidates
    return [path for path in candidates if os.path.exists(path)]


def detect_python() -> Dict:
    """
    Detect Python and pip through a fresh login shell.

    Falls back to the server's own PATH, and finally to the first interpreter
    found at a well-known location.
    """
    found = find_python_installations()
    script = _PYTHON_SCRIPT_WINDOWS if os.name == "nt" else _PYTHON_SCRIPT_UNIX

    result = run_in_login_shell(script, timeout=15)
    if result.success and result.stdout.strip():
        info = parse_python_probe(result.stdout)
        logger.info(f"Python detected in login shell: {info['version']}")
        info.update({"in_path": True, "executable": None, "all_found_paths": found})
        return info

    for executable in ("python3", "python"):
        direct = run_command([executable, "--version"])
        if direct.success:
            version = (direct.stdout or direct.stderr).strip() or None
            return {
                "in_path": True,
                "version": version,
                "pip_version": None,
                "packages": [],
                "executable": executable,
                "all_found_paths": found,
            }

    logger.info(f"Python not found in PATH; {len(found)} known locations exist")
    return {
        "in_path": False,
        "version": None,
        "pip_version": None,
        "packages": [],
        "executable": found[0] if found else None,
        "all_found_paths": found,
    }


# ── .NET ───────────────────────────────────────────────────────────────────────

_DOTNET_SCRIPT_UNIX = (
    f'dotnet --version 2>/dev/null && echo "{SECTION_SEPARATOR}"'
    f' && dotnet --list-sdks 2>/dev/null && echo "{SECTION_SEPARATOR}"'
    " && dotnet --list-runtimes 2>/dev/null"
)
_DOTNET_SCRIPT_WINDOWS = (
    f'dotnet --version 2>nul && echo "{SECTION_SEPARATOR}"'
    f' && dotnet --list-sdks 2>nul && echo "{SECTION_SEPARATOR}"'
    " && dotnet --list-runtimes 2>nul"
)


def parse_dotnet_probe(text: str) -> Dict:
    """Split the separator-joined dotnet probe output into version, SDKs and runtimes."""
    parts = _split_probe(text)
    return {
        "version": parts[0] or None,
        "sdks": _lines(parts[1] if len(parts) > 1 else ""),
        "runtimes": _lines(parts[2] if len(parts) > 2 else ""),
    }


def detect_dotnet() -> Dict:
    """Detect the .NET SDK through a fresh login shell."""
    script = _DOTNET_SCRIPT_WINDOWS if os.name == "nt" else _DOTNET_SCRIPT_UNIX
    result = run_in_login_shell(script)
    if result.success and result.stdout.strip():
        info = parse_dotnet_probe(result.stdout)
        logger.info(f"dotnet detected: {info['version']}")
        info["in_path"] = True
        return info

    logger.info(f"dotnet not found (exit {result.exit_code})")
    return {"in_path": False, "version": None, "sdks": [], "runtimes": []}


# ── Shell profile files ────────────────────────────────────────────────────────

PLATFORM_DISPLAY_NAMES = {
    "windows": "Windows",
    "mac": "macOS",
    "linux": "Linux",
    "aix": "AIX",
    "freebsd": "FreeBSD",
    "openbsd": "OpenBSD",
    "sunos": "SunOS",
    "android": "Android",
}

UNKNOWN_DISTRO = "Unknown Linux Distribution"

# family → (substrings of NAME, substrings of ID_LIKE); first match wins
_DISTRO_FAMILIES = (
    ("debian", ("ubuntu", "debian", "mint", "elementary", "pop"), ("debian",)),
    ("redhat", ("fedora", "rhel", "centos", "rocky", "alma"), ("rhel", "fedora")),
    ("arch", ("arch", "manjaro"), ("arch",)),
    ("suse", ("opensuse", "suse"), ("suse",)),
)


def _key_values(text: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in (text or "").splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip().replace('"', "")
    return values


def parse_distro_info(os_release: str) -> Tuple[str, str]:
    """(display name, family) from /etc/os-release content."""
    values = _key_values(os_release)
    name = values.get("NAME", "")
    version = values.get("VERSION", "")
    display = values.get("PRETTY_NAME") or (f"{name} {version}".strip() if name else "") or UNKNOWN_DISTRO

    name_lower = name.lower()
    id_like = values.get("ID_LIKE", "").lower()
    for family, names, likes in _DISTRO_FAMILIES:
        if any(n in name_lower for n in names) or any(like in id_like for like in likes):
            return display, family
    return display, "unknown"


def parse_lsb_release(lsb_release: str) -> Tuple[str, str]:
    """(display name, family) from /etc/lsb-release, used when os-release is missing."""
    values = _key_values(lsb_release)
    distro_id = values.get("DISTRIB_ID", "")
    release = values.get("DISTRIB_RELEASE", "")
    display = f"{distro_id} {release}".strip() or UNKNOWN_DISTRO
    family = "debian" if any(d in distro_id.lower() for d in ("ubuntu", "debian")) else "unknown"
    return display, family


def _read_distro_info() -> Tuple[str, str]:
    for path, parser in (("/etc/os-release", parse_distro_info), ("/etc/lsb-release", parse_lsb_release)):
        try:
            return parser(Path(path).read_text())
        except OSError:
            continue
    return UNKNOWN_DISTRO, "unknown"


def linux_profile_files(family: str, home: Optional[Path] = None) -> List[Dict]:
    """
    Shell startup files a user on this distro family would edit, with
    whether each one exists.  The file the login shell reads first is
    flagged is_main_profile.
    """
    home = Path.home() if home is None else Path(home)
    files = [
        (".profile", "POSIX-compliant profile (login shells)", True),
        (".bashrc", "Bash interactive shell configuration", False),
    ]
    if family == "debian":
        files += [
            (".bash_profile", "Bash login shell profile (if exists, overrides .profile)", False),
            (".pam_environment", "Environment variables (PAM-based systems)", False),
        ]
    elif family == "redhat":
        files.insert(0, (".bash_profile", "Bash login shell profile (primary on Red Hat systems)", True))
    elif family == "arch":
        files += [
            (".bash_profile", "Bash login shell profile", False),
            (".zshrc", "Zsh configuration (if using zsh shell)", False),
            (".zprofile", "Zsh login shell profile", False),
        ]
    elif family == "suse":
        files.append((".bash_profile", "Bash login shell profile", False))

    return [
        {
            "path": str(home / name),
            "description": description,
            "exists": (home / name).exists(),
            "is_main_profile": main,
        }
        for name, description, main in files
    ]


def get_profile_info(platform_name: Optional[str] = None) -> Dict:
    """Platform name and, on Linux, the distro and its shell profile files."""
    platform_name = platform_name or detect_platform()
    info: Dict = {
        "platform": PLATFORM_DISPLAY_NAMES.get(platform_name, "Unknown"),
        "platform_type": platform_name,
        "distro_info": None,
        "distro_family": None,
        "profile_files": None,
    }
    if platform_name == "linux":
        distro, family = _read_distro_info()
        info["distro_info"] = distro
        info["distro_family"] = family
        info["profile_files"] = linux_profile_files(family)
    return info
