#!/usr/bin/env python3
"""
System Indexer - Collects machine inventory for the HUD

Sources
───────
• OS name             → /etc/os-release (PRETTY_NAME + VERSION)
• Kernel / arch       → platform.release() / platform.machine()
• Machine model       → /sys/class/dmi/id (Linux), sysctl hw.model (macOS),
                        wmic computersystem (Windows)
• CPU                 → /proc/cpuinfo
• CPU features        → /proc/cpuinfo "flags" / "Features" line
• Memory              → /proc/meminfo
• Mounted filesystems → df -h
• Physical disks      → lsblk -d
• Top processes       → ps aux sorted by memory
• GPUs                → nvidia-smi, then lspci -v (Linux);
                        system_profiler (macOS); wmic (Windows)

Every probe degrades to "Unknown" or an empty list instead of raising, so a
single missing utility never costs the whole inventory.
"""

import json
import logging
import os
import platform
import socket as _socket
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from command_runner import run_command
from gpu_parser import (
    NVIDIA_SMI_QUERY,
    GraphicsDevice,
    format_bytes,
    parse_lspci_output,
    parse_nvidia_smi_csv,
    parse_system_profiler_json,
    parse_wmic_video_csv,
)

logger = logging.getLogger(__name__)
console = Console(stderr=True)

UNKNOWN = "Unknown"
CACHE_TTL_HOURS = 1
TOP_PROCESS_COUNT = 3
PROC_CPUINFO = "/proc/cpuinfo"


# ── Cache location ─────────────────────────────────────────────────────────────

def _cache_dir() -> Path:
    """Return the cache directory ($HUDAPP_CACHE_DIR or ~/.cache/hudapp)."""
    override = os.environ.get("HUDAPP_CACHE_DIR")
    if override:
        d = Path(override)
    else:
        d = Path.home() / ".cache" / "hudapp"
    d.mkdir(parents=True, exist_ok=True)
    return d


# ── Platform detection ─────────────────────────────────────────────────────────

_PLATFORMS = {
    "linux": "linux",
    "win32": "windows",
    "cygwin": "windows",
    "darwin": "mac",
    "aix": "aix",
    "freebsd": "freebsd",
    "openbsd": "openbsd",
    "sunos": "sunos",
    "android": "android",
}


def detect_platform(sys_platform: Optional[str] = None) -> str:
    """Map sys.platform to one of the HUD platform names, or "unknown"."""
    plat = (sys_platform if sys_platform is not None else sys.platform).strip().lower()
    if plat in _PLATFORMS:
        return _PLATFORMS[plat]
    # sys.platform carries a version suffix on some systems ("freebsd14", "aix7")
    for prefix, name in _PLATFORMS.items():
        if plat.startswith(prefix):
            return name
    return "unknown"


# ── Text parsers ───────────────────────────────────────────────────────────────

def parse_os_release(text: str, hostname: str = "") -> Optional[str]:
    """
    Build a display name from os-release content.

    "PRETTY_NAME (VERSION)" when both are present.  Kubuntu reports itself as
    plain Ubuntu, so a "kubuntu" hostname gets
    'Kubuntu 25.04 (Ubuntu 25.04 "Plucky")' instead.
    """
    pretty_name = ""
    version = ""
    for line in (text or "").splitlines():
        line = line.strip()
        if line.startswith("PRETTY_NAME="):
            pretty_name = line.partition("=")[2].replace('"', "")
        elif line.startswith("VERSION="):
            version = line.partition("=")[2].replace('"', "")

    if "kubuntu" in hostname.lower() and pretty_name and version:
        words = pretty_name.split(" ")
        number = words[1] if len(words) > 1 else ""
        codename = ""
        if "(" in version and ")" in version:
            codename = version[version.index("(") + 1:version.index(")")].split(" ")[0]
        return f'Kubuntu {number} (Ubuntu {number} "{codename}")'

    if pretty_name and version:
        return f"{pretty_name} ({version})"
    return pretty_name or None


def parse_cpuinfo(text: str) -> Dict:
    """Summarise /proc/cpuinfo into the HUD CPU fields."""
    info: Dict = {
        "model": UNKNOWN,
        "cores": 0,
        "threads": 0,
        "architecture": platform.machine() or UNKNOWN,
        "frequency": UNKNOWN,
        "cache": UNKNOWN,
        "vendor": UNKNOWN,
        "family": UNKNOWN,
        "stepping": UNKNOWN,
    }
    fields = {
        "model name": "model",
        "vendor_id": "vendor",
        "cpu family": "family",
        "stepping": "stepping",
        "cache size": "cache",
    }

    threads = 0
    core_ids = set()
    cores_per_socket = 0
    physical_id = ""
    for line in (text or "").splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == "processor":
            threads += 1
        elif key == "physical id":
            physical_id = value
        elif key == "core id":
            core_ids.add((physical_id, value))
        elif key == "cpu cores" and value.isdigit():
            cores_per_socket = int(value)
        elif key == "cpu MHz" and info["frequency"] == UNKNOWN:
            try:
                info["frequency"] = f"{float(value):.0f} MHz"
            except ValueError:
                pass
        elif key in fields and info[fields[key]] == UNKNOWN and value:
            info[fields[key]] = value

    info["threads"] = threads
    info["cores"] = len(core_ids) or cores_per_socket or threads
    return info


# Feature name → /proc/cpuinfo flags that imply it.  The kernel spells
# SSE3 "pni"; aarch64 lists NEON as "asimd" on its "Features" line.
_CPU_FEATURE_FLAGS = {
    "sse": ("sse",),
    "sse2": ("sse2",),
    "sse3": ("sse3", "pni"),
    "ssse3": ("ssse3",),
    "sse4_1": ("sse4_1",),
    "sse4_2": ("sse4_2",),
    "avx": ("avx",),
    "avx2": ("avx2",),
    "avx512": ("avx512f", "avx512"),
    "neon": ("neon", "asimd"),
    "fma": ("fma",),
    "aes": ("aes",),
    "sha": ("sha_ni", "sha2"),
}


def parse_cpu_flags(text: str) -> Dict:
    """
    Instruction-set features from the first "flags" (x86) or "Features"
    (ARM) line of /proc/cpuinfo.  Every feature is False when no such line
    exists; the raw flag list is kept under "flags".
    """
    flags: List[str] = []
    for line in (text or "").splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() in ("flags", "Features"):
            flags = value.split()
            break

    present = set(flags)
    features: Dict = {
        name: any(flag in present for flag in aliases)
        for name, aliases in _CPU_FEATURE_FLAGS.items()
    }
    features["flags"] = " ".join(flags)
    return features


def parse_meminfo(text: str) -> Dict[str, int]:
    """Parse /proc/meminfo into {key: bytes}."""
    meminfo: Dict[str, int] = {}
    for line in (text or "").splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        parts = value.split()
        if not parts or not parts[0].isdigit():
            continue
        amount = int(parts[0])
        if len(parts) > 1 and parts[1].lower() == "kb":
            amount *= 1024
        meminfo[key.strip()] = amount
    return meminfo


_PSEUDO_FILESYSTEMS = ("tmpfs", "devtmpfs")


def parse_df_output(text: str) -> List[Dict]:
    """
    Parse `df -h --output=source,target,size,used,avail,pcent`, or plain
    `df -h` (mount point in the last column) when --output is unsupported.

    Pseudo filesystems and non-absolute mount points are dropped.  When
    nothing usable is left, a single "Unknown" row for "/" is returned so the
    HUD always has something to show.
    """
    lines = (text or "").splitlines()
    header = lines[0].split() if lines else []
    # --output puts the mount point second ("Mounted on"); classic df puts it last
    target_second = len(header) > 1 and header[1].lower() == "mounted"

    disks: List[Dict] = []
    for line in lines[1:]:
        parts = line.split()
        if len(parts) < 6:
            continue
        source = parts[0]
        if target_second:
            mount, size, used, avail, pcent = parts[1:6]
        else:
            size, used, avail, pcent = parts[1:5]
            mount = parts[-1]
        if any(fs in source for fs in _PSEUDO_FILESYSTEMS) or mount == "none":
            continue
        if not mount.startswith("/"):
            continue
        pct = pcent.rstrip("%")
        disks.append({
            "mount": mount,
            "total": size,
            "used": used,
            "available": avail,
            "used_percent": int(pct) if pct.isdigit() else 0,
            "filesystem": source,
        })

    if disks:
        return disks
    return [{
        "mount": "/",
        "total": UNKNOWN,
        "used": UNKNOWN,
        "available": UNKNOWN,
        "used_percent": 0,
        "filesystem": UNKNOWN,
    }]


def parse_lsblk_output(text: str) -> List[Dict]:
    """Parse `lsblk -d -o NAME,SIZE,MODEL,ROTA -n`; loop and ram devices are skipped."""
    disks: List[Dict] = []
    for line in (text or "").splitlines():
        parts = line.split()
        if len(parts) < 3:
            continue
        device = parts[0]
        if "loop" in device or "ram" in device:
            continue
        model = " ".join(parts[2:-1]).strip()
        disks.append({
            "device": f"/dev/{device}",
            "size": parts[1],
            "model": model or UNKNOWN,
            "type": "HDD" if parts[-1] == "1" else "SSD",
        })
    return disks


def parse_ps_output(text: str, total_memory: int, limit: int = TOP_PROCESS_COUNT) -> List[Dict]:
    """
    Parse `ps aux` lines (no header, already sorted by memory) into the top
    `limit` processes.  Absolute memory is derived from %MEM and total RAM.
    """
    processes: List[Dict] = []
    for line in (text or "").splitlines():
        parts = line.split()
        if len(parts) < 11:
            continue
        try:
            mem_percent = float(parts[3])
        except ValueError:
            mem_percent = 0.0
        command = " ".join(parts[10:])
        name = command.split(" ")[0].split("/")[-1] or command
        if len(name) > 30:
            name = name[:30] + "..."
        processes.append({
            "pid": parts[1],
            "name": name,
            "memory_usage": f"{mem_percent:.1f}%",
            "memory_percent": round(mem_percent, 2),
            "memory_absolute": format_bytes(mem_percent / 100 * total_memory),
        })
        if len(processes) >= limit:
            break
    return processes


# ── GPU inventory ──────────────────────────────────────────────────────────────

LSPCI_COMMAND = r'lspci -v 2>/dev/null | grep -A 20 -i "vga\|3d\|display"'


def _gpus_from_nvidia_smi() -> List[GraphicsDevice]:
    result = run_command([
        "nvidia-smi",
        f"--query-gpu={NVIDIA_SMI_QUERY}",
        "--format=csv,noheader,nounits",
    ])
    if not result.success:
        return []
    return parse_nvidia_smi_csv(result.stdout)


def _gpus_from_lspci() -> List[GraphicsDevice]:
    # grep exits 1 when nothing matched; the (empty) stdout is still the answer
    result = run_command(LSPCI_COMMAND, shell=True)
    return parse_lspci_output(result.stdout)


def get_gpu_infos(platform_name: Optional[str] = None) -> List[GraphicsDevice]:
    """List graphics devices using the best source available on this platform."""
    platform_name = platform_name or detect_platform()

    if platform_name == "linux":
        gpus = _gpus_from_nvidia_smi()
        if gpus:
            return gpus
        return _gpus_from_lspci()

    if platform_name == "mac":
        result = run_command(["system_profiler", "SPDisplaysDataType", "-json"])
        return parse_system_profiler_json(result.stdout) if result.success else []

    if platform_name == "windows":
        result = run_command([
            "wmic", "path", "win32_VideoController",
            "get", "Name,AdapterRAM,DriverVersion", "/format:csv",
        ])
        return parse_wmic_video_csv(result.stdout) if result.success else []

    logger.info(f"No GPU source for platform {platform_name!r}")
    return []


# ── CPU features ───────────────────────────────────────────────────────────────

_X86_MACHINES = ("x86_64", "amd64", "x86", "i386", "i686")


def get_cpu_features(platform_name: Optional[str] = None) -> Dict:
    """Basic CPU identity plus instruction-set features of this machine."""
    platform_name = platform_name or detect_platform()
    architecture = platform.machine() or UNKNOWN

    text = ""
    if platform_name in ("linux", "android"):
        try:
            text = Path(PROC_CPUINFO).read_text()
        except OSError as e:
            logger.warning(f"Could not read /proc/cpuinfo: {e}")

    features = parse_cpu_flags(text)
    # No flag list on Windows; every x86-64 CPU has SSE2
    if platform_name == "windows" and architecture.lower() in _X86_MACHINES:
        features["sse"] = features["sse2"] = True

    model = parse_cpuinfo(text)["model"] if text else UNKNOWN
    if model == UNKNOWN:
        model = platform.processor() or UNKNOWN

    return {
        "basic": {
            "model": model,
            "architecture": architecture,
            "platform": platform_name,
            "cores": os.cpu_count() or 0,
            "endianness": sys.byteorder,
        },
        "features": features,
    }


class SystemIndexer:
    """Collects and caches machine inventory"""

    def __init__(self, cache_dir: Path = None, quiet: bool = False):
        self.cache_dir = cache_dir or _cache_dir()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.cache_file = self.cache_dir / "system_info.json"
        self.quiet = quiet
        self.platform = detect_platform()
        self.system_info: Dict = {}

    def load_or_collect(self, force_refresh: bool = False) -> Dict:
        """Load cached machine info or collect new"""
        if not force_refresh and self.cache_file.exists():
            try:
                with open(self.cache_file, "r") as f:
                    cached = json.load(f)
                if not isinstance(cached, dict) or not isinstance(cached.get("collected_at"), str):
                    raise ValueError("cache is not an inventory record")
                cached_time = datetime.fromisoformat(cached["collected_at"])
                # aware timestamps raise TypeError here
                age_hours = (datetime.now() - cached_time).total_seconds() / 3600
                if age_hours < CACHE_TTL_HOURS:
                    self.system_info = cached
                    return self.system_info
            except (OSError, ValueError, TypeError) as e:
                logger.warning(f"Failed to load cache {self.cache_file}: {e}")

        return self.collect_system_info()

    def collect_system_info(self) -> Dict:
        """Collect the full machine inventory and write it to the cache"""
        if self.quiet:
            self.system_info = self._collect()
        else:
            console.print("🔍 Collecting system information...", style="#E95420")
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                task = progress.add_task("Gathering system details...", total=None)
                self.system_info = self._collect()
                progress.update(task, completed=True)

        try:
            with open(self.cache_file, "w") as f:
                json.dump(self.system_info, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not write cache {self.cache_file}: {e}")

        if not self.quiet:
            console.print("✓ System information collected", style="green")
        return self.system_info

    def _collect(self) -> Dict:
        memory = self._get_memory_info()
        return {
            "collected_at": datetime.now().isoformat(),
            "platform": self.platform,
            "hostname": self.get_hostname(),
            "local_ip": self._get_local_ip(),
            "machine_model": self._get_machine_model(),
            "os_name": self._get_os_name(),
            "kernel_version": platform.release() or UNKNOWN,
            "cpu": self._get_cpu_info(),
            "memory": memory,
            "disks": self._get_disks(),
            "physical_disks": self._get_physical_disks(),
            "top_processes": self._get_top_processes(memory.get("total_bytes", 0)),
            "gpus": get_gpu_infos(self.platform),
        }

    # ── Individual probes ──────────────────────────────────────────────────────

    @staticmethod
    def get_hostname() -> str:
        return _socket.gethostname() or UNKNOWN

    def _get_local_ip(self) -> str:
        """
        First non-loopback IPv4 address.  Connecting a UDP socket picks the
        outbound interface without sending anything.
        """
        sock = _socket.socket(_socket.AF_INET, _socket.SOCK_DGRAM)
        try:
            sock.connect(("192.0.2.1", 80))
            address = sock.getsockname()[0]
        except OSError:
            return UNKNOWN
        finally:
            sock.close()
        if address.startswith("127.") or address == "0.0.0.0":
            return UNKNOWN
        return address

    def _get_machine_model(self) -> str:
        if self.platform == "linux":
            try:
                vendor = Path("/sys/class/dmi/id/sys_vendor").read_text().strip()
                product = Path("/sys/class/dmi/id/product_name").read_text().strip()
                if product.startswith(vendor):
                    return product or UNKNOWN
                return f"{vendor} {product}".strip() or UNKNOWN
            except OSError:
                return UNKNOWN

        if self.platform == "mac":
            result = run_command(["sysctl", "-n", "hw.model"])
            return result.stdout.strip() if result.success and result.stdout.strip() else UNKNOWN

        if self.platform == "windows":
            result = run_command(["wmic", "computersystem", "get", "model", "/value"])
            for line in result.stdout.splitlines():
                if line.startswith("Model="):
                    return line.partition("=")[2].strip() or UNKNOWN
        return UNKNOWN

    def _get_os_name(self) -> str:
        if self.platform == "linux":
            try:
                name = parse_os_release(
                    Path("/etc/os-release").read_text(), self.get_hostname()
                )
                if name:
                    return name
            except OSError:
                pass
        fallback = f"{platform.system()} {platform.release()}".strip()
        return fallback or "Unknown OS"

    def _get_cpu_info(self) -> Dict:
        try:
            return parse_cpuinfo(Path(PROC_CPUINFO).read_text())
        except OSError:
            info = parse_cpuinfo("")
            info["model"] = platform.processor() or UNKNOWN
            info["threads"] = os.cpu_count() or 0
            info["cores"] = info["threads"]
            return info

    def _get_memory_info(self) -> Dict:
        try:
            meminfo = parse_meminfo(Path("/proc/meminfo").read_text())
        except OSError:
            meminfo = {}

        total = meminfo.get("MemTotal", 0)
        if not total:
            return {"total": UNKNOWN, "free": UNKNOWN, "used": UNKNOWN, "total_bytes": 0}
        free = meminfo.get("MemAvailable", meminfo.get("MemFree", 0))
        return {
            "total": format_bytes(total),
            "free": format_bytes(free),
            "used": format_bytes(total - free),
            "total_bytes": total,
        }

    def _get_disks(self) -> List[Dict]:
        if self.platform not in ("linux", "mac"):
            return parse_df_output("")
        result = run_command(["df", "-h", "--output=source,target,size,used,avail,pcent"])
        if not result.success:
            result = run_command(["df", "-h"])
        return parse_df_output(result.stdout)

    def _get_physical_disks(self) -> List[Dict]:
        if self.platform != "linux":
            return []
        result = run_command(["lsblk", "-d", "-o", "NAME,SIZE,MODEL,ROTA", "-n"])
        return parse_lsblk_output(result.stdout) if result.success else []

    def _get_top_processes(self, total_memory: int) -> List[Dict]:
        if self.platform != "linux":
            return []
        result = run_command(["ps", "aux", "--sort=-%mem", "--no-headers"])
        return parse_ps_output(result.stdout, total_memory) if result.success else []


def main():
    """Print the collected inventory"""
    indexer = SystemIndexer()
    info = indexer.collect_system_info()

    console.print("\n📊 System Information:", style="#E95420 bold")
    console.print(json.dumps(info, indent=2))


if __name__ == "__main__":
    main()
