#!/usr/bin/env python3
"""
HUD App - Host inventory in the terminal, or served over HTTP
"""

import argparse
import json
import logging
import sys
from typing import Dict, List

import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from system_indexer import SystemIndexer, get_cpu_features, get_gpu_infos
from toolchain_indexer import (
    PathUnavailableError,
    detect_dotnet,
    detect_python,
    get_path_info,
    get_profile_info,
)

SECTIONS = ("machine", "gpu", "cpu", "path", "profile", "python", "dotnet")

# Server route for each section when --remote is used
REMOTE_ROUTES = {
    "machine": "/api/machine",
    "gpu": "/api/gpu",
    "cpu": "/api/cpu",
    "path": "/api/path",
    "profile": "/api/profile",
    "python": "/api/python",
    "dotnet": "/api/dotnet",
}

_hud_theme = Theme({
    "hud.label": "bold #E95420",
    "hud.dim":   "#928374",
})
console = Console(theme=_hud_theme)


# ── Data sources ───────────────────────────────────────────────────────────────

def collect_local(section: str, refresh: bool = False):
    """Probe this machine for one section."""
    if section == "machine":
        return SystemIndexer().load_or_collect(force_refresh=refresh)
    if section == "gpu":
        return get_gpu_infos()
    if section == "cpu":
        return get_cpu_features()
    if section == "path":
        return get_path_info()
    if section == "profile":
        return get_profile_info()
    if section == "python":
        return detect_python()
    if section == "dotnet":
        return detect_dotnet()
    raise ValueError(f"Unknown section: {section}")


def fetch_remote(base_url: str, section: str, refresh: bool = False, timeout: float = 30):
    """Fetch one section from a running HUD server."""
    url = base_url.rstrip("/") + REMOTE_ROUTES[section]
    params = {"refresh": "true"} if refresh and section == "machine" else None
    resp = requests.get(url, params=params, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


# ── Rendering ──────────────────────────────────────────────────────────────────

def _kv_table(title: str, rows: List[tuple]) -> Table:
    table = Table(title=title, show_header=False, title_justify="left", box=None)
    table.add_column(style="hud.label", no_wrap=True)
    table.add_column()
    for label, value in rows:
        table.add_row(label, str(value))
    return table


def gpu_table(gpus: List[Dict]) -> Table:
    table = Table(title="GPUs", title_justify="left")
    for column in ("#", "Name", "Bus", "Rev", "Driver", "Memory"):
        table.add_column(column)
    for gpu in gpus:
        memory = gpu.get("memory_total", "")
        if gpu.get("memory_used"):
            memory = f"{gpu['memory_used']} / {memory}"
        table.add_row(
            str(gpu.get("index", "")),
            gpu.get("name", ""),
            gpu.get("bus", ""),
            gpu.get("revision", ""),
            gpu.get("driver", ""),
            memory,
        )
    return table


def render_machine(info: Dict) -> None:
    cpu = info.get("cpu", {})
    memory = info.get("memory", {})
    console.print(_kv_table("Machine", [
        ("Hostname", info.get("hostname", "")),
        ("IP", info.get("local_ip", "")),
        ("Model", info.get("machine_model", "")),
        ("OS", info.get("os_name", "")),
        ("Kernel", info.get("kernel_version", "")),
        ("CPU", f"{cpu.get('model', '')} ({cpu.get('cores', 0)}C/{cpu.get('threads', 0)}T)"),
        ("Memory", f"{memory.get('used', '')} / {memory.get('total', '')}"),
    ]))

    disks = Table(title="Filesystems", title_justify="left")
    for column in ("Mount", "Filesystem", "Size", "Used", "Avail", "Use%"):
        disks.add_column(column)
    for d in info.get("disks", []):
        disks.add_row(d["mount"], d["filesystem"], d["total"], d["used"],
                      d["available"], f"{d['used_percent']}%")
    console.print(disks)

    if info.get("physical_disks"):
        drives = Table(title="Drives", title_justify="left")
        for column in ("Device", "Size", "Model", "Type"):
            drives.add_column(column)
        for d in info["physical_disks"]:
            drives.add_row(d["device"], d["size"], d["model"], d["type"])
        console.print(drives)

    if info.get("top_processes"):
        procs = Table(title="Top processes by memory", title_justify="left")
        for column in ("PID", "Name", "Mem%", "Mem"):
            procs.add_column(column)
        for p in info["top_processes"]:
            procs.add_row(p["pid"], p["name"], p["memory_usage"], p["memory_absolute"])
        console.print(procs)

    console.print(gpu_table(info.get("gpus", [])))


def render_path(info: Dict) -> None:
    table = Table(
        title=f"PATH ({info['existing_paths']}/{info['total_paths']} exist, source: {info['source']})",
        title_justify="left",
    )
    for column in ("Directory", "Exists", "Readable", "Executables"):
        table.add_column(column)
    for p in info["paths"]:
        table.add_row(
            p["path"],
            "✓" if p["exists"] else "✗",
            "✓" if p["readable"] else "✗",
            str(p.get("executable_count", "")),
        )
    console.print(table)


def render_python(info: Dict) -> None:
    if not info.get("in_path"):
        found = ", ".join(info.get("all_found_paths") or []) or "none"
        console.print(Panel(f"Python not found in PATH\nKnown locations: {found}",
                            title="Python", border_style="yellow"))
        return
    console.print(_kv_table("Python", [
        ("Version", info.get("version") or ""),
        ("pip", info.get("pip_version") or ""),
        ("Packages", len(info.get("packages") or [])),
    ]))
    for package in info.get("packages") or []:
        console.print(f"  {package}", style="hud.dim")


def render_dotnet(info: Dict) -> None:
    if not info.get("in_path"):
        console.print(Panel(".NET SDK not found in PATH", title=".NET", border_style="yellow"))
        return
    console.print(_kv_table(".NET", [("Version", info.get("version") or "")]))
    for label in ("sdks", "runtimes"):
        for line in info.get(label) or []:
            console.print(f"  {line}", style="hud.dim")


def render_cpu(info: Dict) -> None:
    basic = info.get("basic", {})
    features = info.get("features", {})
    console.print(_kv_table("CPU", [
        ("Model", basic.get("model", "")),
        ("Architecture", basic.get("architecture", "")),
        ("Cores", basic.get("cores", 0)),
        ("Endianness", basic.get("endianness", "")),
    ]))
    supported = [name for name, value in features.items() if value is True]
    console.print(_kv_table("Features", [("Supported", " ".join(supported) or "none detected")]))


def render_profile(info: Dict) -> None:
    rows = [("Platform", info.get("platform", ""))]
    if info.get("distro_info"):
        rows.append(("Distribution", f"{info['distro_info']} ({info.get('distro_family')})"))
    console.print(_kv_table("Shell profile", rows))

    if info.get("profile_files"):
        table = Table(title="Profile files", title_justify="left")
        for column in ("File", "Exists", "Description"):
            table.add_column(column)
        for f in info["profile_files"]:
            name = f"{f['path']} (main)" if f.get("is_main_profile") else f["path"]
            table.add_row(name, "✓" if f["exists"] else "✗", f["description"])
        console.print(table)


RENDERERS = {
    "machine": render_machine,
    "gpu": lambda gpus: console.print(gpu_table(gpus)),
    "cpu": render_cpu,
    "profile": render_profile,
    "path": render_path,
    "python": render_python,
    "dotnet": render_dotnet,
}


def main():
    """Entry point"""
    parser = argparse.ArgumentParser(
        description="Show hardware and software inventory of this machine.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hudapp                              # Machine overview
  hudapp --section gpu --json         # GPUs as JSON
  hudapp --remote http://box:8765     # Ask a running HUD server instead
  hudapp --serve --port 9000          # Run the HTTP server
        """,
    )
    parser.add_argument("--section", "-s", choices=SECTIONS, default="machine",
                        help="Inventory section to show (default: machine)")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")
    parser.add_argument("--refresh", action="store_true", help="Ignore the cached inventory")
    parser.add_argument("--remote", metavar="URL", default=None,
                        help="Base URL of a running HUD server to query")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument("--host", default=None, help="Server bind address")
    parser.add_argument("--port", type=int, default=None, help="Server port")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)

    if args.serve:
        import server
        server.run(
            host=args.host or server.DEFAULT_HOST,
            port=args.port or server.DEFAULT_PORT,
        )
        return

    try:
        if args.remote:
            data = fetch_remote(args.remote, args.section, refresh=args.refresh)
        else:
            data = collect_local(args.section, refresh=args.refresh)
    except requests.RequestException as e:
        console.print(f"\n❌ Could not reach HUD server: {e}", style="bold red")
        sys.exit(1)
    except PathUnavailableError as e:
        console.print(f"\n❌ {e}", style="bold red")
        sys.exit(1)

    if args.json:
        print(json.dumps(data, indent=2))
    else:
        RENDERERS[args.section](data)


if __name__ == "__main__":
    main()
