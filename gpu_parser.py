#!/usr/bin/env python3
"""
GPU Parser - Turns graphics-device listings into structured records

Sources understood
──────────────────
• lspci -v               → parse_lspci_output()  (Linux, any vendor)
• nvidia-smi --query-gpu → parse_nvidia_smi_csv() (Linux, NVIDIA only)
• system_profiler -json  → parse_system_profiler_json() (macOS)
• wmic win32_VideoController → parse_wmic_video_csv() (Windows)

Every parser is a pure text → list transform.  None of them raise on bad
input: the worst case is an empty list or a record whose fields read
"Unknown".  Indices are always dense and start at 0.
"""

import json
import re
from typing import List, Optional, TypedDict

UNKNOWN = "Unknown"


class _GraphicsDeviceBase(TypedDict):
    index: int
    name: str
    bus: str
    revision: str
    driver: str


class GraphicsDevice(_GraphicsDeviceBase, total=False):
    """One display-class device.  Optional keys only come from vendor tools."""
    memory_total: str
    memory_used: str
    memory_free: str
    utilization: int
    temperature: int


# ── lspci ──────────────────────────────────────────────────────────────────────

# `grep -A N` prints a line of exactly "--" between non-adjacent matches
_SECTION_SEPARATOR = re.compile(r"^--$", re.MULTILINE)

_DEVICE_MARKER = r"(?:VGA compatible controller|3D controller|Display controller):"
_DEVICE_LINE = re.compile(_DEVICE_MARKER, re.IGNORECASE)
_DEVICE_NAME = re.compile(_DEVICE_MARKER + r"\s*(.+)", re.IGNORECASE)
_BUS_ADDRESS = re.compile(r"^([0-9a-f]{2}:[0-9a-f]{2}\.[0-9a-f])", re.IGNORECASE)
_REVISION = re.compile(r"\(rev\s+([a-f0-9]+)\)", re.IGNORECASE)
_REVISION_SUFFIX = re.compile(r"\s*\(rev\s+[a-f0-9]+\).*$", re.IGNORECASE)
_PROG_IF_SUFFIX = re.compile(r"\s*\(prog-if\s+[^)]+\).*$", re.IGNORECASE)
_KERNEL_DRIVER = re.compile(r"Kernel driver in use:\s*(.+)", re.IGNORECASE)

# A wrapped device line never carries any of these on its continuation
_NOT_CONTINUATION = (":", "Subsystem", "Flags")


def split_sections(lspci_output: str) -> List[str]:
    """Split lspci text on "--" separator lines into trimmed, non-blank chunks."""
    if not lspci_output:
        return []
    text = lspci_output.replace("\r\n", "\n").replace("\r", "\n")
    chunks = (chunk.strip() for chunk in _SECTION_SEPARATOR.split(text))
    return [chunk for chunk in chunks if chunk]


def _find_device_line(lines: List[str]) -> Optional[str]:
    """
    Return the first VGA/3D/Display controller line of a section, joined with
    its continuation line when lspci wrapped the device name.
    """
    for i, line in enumerate(lines):
        if not _DEVICE_LINE.search(line):
            continue
        if i + 1 < len(lines):
            following = lines[i + 1]
            if not any(token in following for token in _NOT_CONTINUATION):
                line += following
        return line
    return None


def _clean_device_name(device_line: str) -> str:
    match = _DEVICE_NAME.search(device_line)
    if not match:
        return "Unknown GPU"
    name = match.group(1).strip()
    name = _REVISION_SUFFIX.sub("", name)
    name = _PROG_IF_SUFFIX.sub("", name)
    return name


def _find_driver(lines: List[str]) -> str:
    for line in lines:
        match = _KERNEL_DRIVER.search(line)
        if match:
            return match.group(1).strip()
    return UNKNOWN


def parse_lspci_output(lspci_output: str) -> List[GraphicsDevice]:
    """
    Parse `lspci -v` output (usually pre-filtered with grep -A) into one
    GraphicsDevice per section that describes a display controller.

    Sections without a VGA/3D/Display controller line are skipped and do not
    consume an index.  An empty string, or output from a failed command,
    yields an empty list: callers cannot tell "no GPUs" from "lspci failed"
    by looking at the result alone.
    """
    gpus: List[GraphicsDevice] = []

    for section in split_sections(lspci_output):
        lines = [line.strip() for line in section.split("\n") if line.strip()]

        device_line = _find_device_line(lines)
        if device_line is None:
            continue

        bus_match = _BUS_ADDRESS.match(device_line)
        rev_match = _REVISION.search(device_line)

        gpus.append(
            GraphicsDevice(
                index=len(gpus),
                name=_clean_device_name(device_line),
                bus=bus_match.group(1) if bus_match else UNKNOWN,
                revision=rev_match.group(1) if rev_match else UNKNOWN,
                driver=_find_driver(lines),
            )
        )

    return gpus


# ── Byte formatting ────────────────────────────────────────────────────────────

_BYTE_UNITS = ("Bytes", "KiB", "MiB", "GiB", "TiB")


def format_bytes(num_bytes: float) -> str:
    """Format a byte count with binary units, e.g. 1536 → "1.5 KiB"."""
    if not num_bytes or num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(_BYTE_UNITS) - 1:
        value /= 1024
        i += 1
    value = round(value, 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_BYTE_UNITS[i]}"


def _leading_int(value: str) -> int:
    """Integer prefix of a string ("45", "45.7", " 3 MiB"), 0 when there is none."""
    match = re.match(r"\s*(-?\d+)", value or "")
    return int(match.group(1)) if match else 0


# ── nvidia-smi ─────────────────────────────────────────────────────────────────

NVIDIA_SMI_QUERY = (
    "index,name,memory.total,memory.used,memory.free,"
    "utilization.gpu,temperature.gpu,driver_version"
)


def parse_nvidia_smi_csv(nvidia_output: str) -> List[GraphicsDevice]:
    """
    Parse `nvidia-smi --query-gpu=<NVIDIA_SMI_QUERY> --format=csv,noheader,nounits`.

    Memory columns are MiB.  Rows with fewer than seven columns are ignored.
    The index is the one nvidia-smi reports, since it matches CUDA ordering.
    """
    gpus: List[GraphicsDevice] = []
    if not nvidia_output or not nvidia_output.strip():
        return gpus

    for line in nvidia_output.splitlines():
        if not line.strip():
            continue
        parts = [part.strip() for part in line.split(",")]
        if len(parts) < 7:
            continue

        mib = 1024 * 1024
        gpus.append(
            GraphicsDevice(
                index=_leading_int(parts[0]),
                name=parts[1] or "Unknown GPU",
                bus=UNKNOWN,
                revision=UNKNOWN,
                driver=(parts[7] if len(parts) > 7 else "") or UNKNOWN,
                memory_total=format_bytes(_leading_int(parts[2]) * mib),
                memory_used=format_bytes(_leading_int(parts[3]) * mib),
                memory_free=format_bytes(_leading_int(parts[4]) * mib),
                utilization=_leading_int(parts[5]),
                temperature=_leading_int(parts[6]),
            )
        )

    return gpus


# ── macOS system_profiler ──────────────────────────────────────────────────────

_VRAM_SIZE = re.compile(r"(\d+)\s*(GB|MB|GiB|MiB)", re.IGNORECASE)


def _vram_bytes(vram: object) -> int:
    if not isinstance(vram, str):
        return 0
    match = _VRAM_SIZE.search(vram)
    if not match:
        return 0
    size = int(match.group(1))
    unit = match.group(2).upper()
    if "G" in unit:
        return size * 1024 ** 3
    return size * 1024 ** 2


def parse_system_profiler_json(profiler_output: str) -> List[GraphicsDevice]:
    """Parse `system_profiler SPDisplaysDataType -json`."""
    try:
        data = json.loads(profiler_output)
    except (TypeError, ValueError):
        return []
    if not isinstance(data, dict):
        return []

    gpus: List[GraphicsDevice] = []
    for display in data.get("SPDisplaysDataType") or []:
        if not isinstance(display, dict):
            continue
        gpu = GraphicsDevice(
            index=len(gpus),
            name=display.get("_name") or display.get("sppci_model") or "Unknown GPU",
            bus=UNKNOWN,
            revision=UNKNOWN,
            driver=UNKNOWN,
        )
        vram = _vram_bytes(display.get("sppci_vram") or display.get("spdisplays_vram"))
        if vram > 0:
            gpu["memory_total"] = format_bytes(vram)
        gpus.append(gpu)

    return gpus


# ── Windows wmic ───────────────────────────────────────────────────────────────

def parse_wmic_video_csv(wmic_output: str) -> List[GraphicsDevice]:
    """
    Parse `wmic path win32_VideoController get Name,AdapterRAM,DriverVersion
    /format:csv`.  wmic orders columns alphabetically after Node:
    Node,AdapterRAM,DriverVersion,Name.
    """
    gpus: List[GraphicsDevice] = []
    if not wmic_output:
        return gpus

    for raw_line in wmic_output.splitlines():
        line = raw_line.strip()
        if not line or "," not in line:
            continue
        parts = line.split(",")
        if parts[0] == "Node":
            continue  # header row
        if len(parts) < 4 or not parts[1] or not parts[2]:
            continue

        adapter_ram = _leading_int(parts[1])
        gpu = GraphicsDevice(
            index=len(gpus),
            name=",".join(parts[3:]).strip() or "Unknown GPU",
            bus=UNKNOWN,
            revision=UNKNOWN,
            driver=parts[2].strip() or UNKNOWN,
        )
        if adapter_ram > 0:
            gpu["memory_total"] = format_bytes(adapter_ram)
        gpus.append(gpu)

    return gpus
