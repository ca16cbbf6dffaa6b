"""Direct extraction of system facts from raw command output.

These helpers back the discovery fallback path: when no enrichment service
is available the structured record is built from regex and substring
matches over the raw category -> text map.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

_ARCH_RE = re.compile(r"\b(x86_64|amd64|aarch64|arm64|armv[5-8]\w*|i[3-6]86|riscv64|ppc64le|s390x)\b")
_KERNEL_RE = re.compile(r"\b(\d+\.\d+(?:\.\d+)?[\w.+~-]*)")
_LOAD_RE = re.compile(r"(\d+\.\d+)[,\s]+(\d+\.\d+)[,\s]+(\d+\.\d+)")


@dataclass
class SystemFacts:
    """Structured facts extracted from a raw system fact sheet."""

    operating_system: Optional[str] = None
    os_version: Optional[str] = None
    hostname: Optional[str] = None
    kernel_version: Optional[str] = None
    architecture: Optional[str] = None
    uptime: Optional[str] = None
    total_memory: Optional[str] = None
    memory_percent: Optional[float] = None
    disk_percent: Optional[float] = None
    system_load: Optional[str] = None
    running_services: List[str] = field(default_factory=list)


def _strip_quotes(value: str) -> str:
    return value.strip().strip('"').strip("'")


def parse_os_release(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return (pretty name, version id) from os-release style output."""
    if not text:
        return None, None
    values: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = _strip_quotes(value)

    name = values.get("PRETTY_NAME") or values.get("NAME")
    version = values.get("VERSION_ID") or values.get("VERSION")
    if not name:
        # lsb_release -d / uname -s style output
        first = text.strip().splitlines()[0]
        name = first.split(":", 1)[1].strip() if first.lower().startswith("description:") else first.strip()
    return name or None, version or None


def extract_hostname(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    for line in text.splitlines():
        line = line.strip()
        if line.lower().startswith("static hostname:"):
            return line.split(":", 1)[1].strip() or None
    first = text.strip().splitlines()[0].strip()
    return first.split()[0] if first else None


def extract_kernel_version(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = _KERNEL_RE.search(text)
    return match.group(1) if match else None


def extract_architecture(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = _ARCH_RE.search(text)
    return match.group(1) if match else None


def parse_memory(text: Optional[str]) -> Tuple[Optional[str], Optional[float]]:
    """Return (total, percent used) from ``free`` output."""
    if not text:
        return None, None
    for line in text.splitlines():
        if line.strip().lower().startswith("mem:"):
            parts = line.split()
            if len(parts) < 3:
                return None, None
            total, used = parts[1], parts[2]
            try:
                percent = round(_to_number(used) / _to_number(total) * 100.0, 1)
            except (ValueError, ZeroDivisionError):
                percent = None
            return total, percent
    return None, None


_UNIT_SCALE = {"": 1, "k": 1024, "m": 1024 ** 2, "g": 1024 ** 3, "t": 1024 ** 4}


def _to_number(value: str) -> float:
    match = re.match(r"^([\d.]+)([kmgt]?)i?b?$", value.strip().lower())
    if not match:
        raise ValueError(f"Not a size: {value}")
    return float(match.group(1)) * _UNIT_SCALE[match.group(2)]


def parse_disk_percent(text: Optional[str]) -> Optional[float]:
    """Return the root filesystem usage percentage from ``df`` output."""
    if not text:
        return None
    lines = text.strip().splitlines()
    root_lines = [line for line in lines if line.rstrip().endswith(" /")]
    for line in root_lines + lines:
        match = re.search(r"(\d+(?:\.\d+)?)%", line)
        if match:
            return float(match.group(1))
    # Bare number, e.g. df ... | sed 's/%//'
    stripped = text.strip()
    return float(stripped) if re.fullmatch(r"\d+(?:\.\d+)?", stripped) else None


def parse_load(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = _LOAD_RE.search(text)
    return " ".join(match.groups()) if match else None


def parse_load_1m(text: Optional[str]) -> Optional[float]:
    """One-minute load average from ``/proc/loadavg`` or ``uptime``."""
    load = parse_load(text)
    return float(load.split()[0]) if load else None


def parse_percent(text: Optional[str]) -> Optional[float]:
    """A bare usage figure such as ``12.5`` or ``12.5%``, rounded to one decimal."""
    if not text:
        return None
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*%?\s*", text)
    return round(float(match.group(1)), 1) if match else None


def parse_services(text: Optional[str]) -> List[str]:
    """Service unit names from ``systemctl list-units`` or ``service --status-all``."""
    if not text:
        return []
    services = []
    for line in text.splitlines():
        line = line.strip().lstrip("●").strip()
        if not line:
            continue
        token = line.split()[0]
        if token.endswith(".service"):
            services.append(token[: -len(".service")])
        elif line.startswith("[ + ]"):
            services.append(line[5:].strip())
    return services


def count_lines(text: Optional[str], skip_prefixes: Tuple[str, ...] = ()) -> Optional[int]:
    """Count non-empty lines, or return a bare integer if the output is one."""
    if text is None:
        return None
    stripped = text.strip()
    if re.fullmatch(r"\d+", stripped):
        return int(stripped)
    return sum(
        1
        for line in stripped.splitlines()
        if line.strip() and not line.strip().startswith(skip_prefixes)
    )


def split_apt_updates(listing: Optional[str]) -> Tuple[int, int]:
    """Return (total, security) from ``apt list --upgradable`` output."""
    if not listing:
        return 0, 0
    lines = [
        line for line in listing.splitlines()
        if line.strip() and not line.startswith(("Listing", "WARNING"))
    ]
    security = sum(1 for line in lines if "security" in line.lower())
    return len(lines), security


def extract_facts(raw: Dict[str, str]) -> SystemFacts:
    """Build SystemFacts from the category -> output map."""
    os_name, os_version = parse_os_release(raw.get("os_release"))
    total_memory, memory_percent = parse_memory(raw.get("memory"))
    uptime = raw.get("uptime")
    return SystemFacts(
        operating_system=os_name,
        os_version=os_version,
        hostname=extract_hostname(raw.get("hostname")),
        kernel_version=extract_kernel_version(raw.get("kernel")),
        architecture=extract_architecture(raw.get("architecture")) or extract_architecture(raw.get("kernel")),
        uptime=uptime.strip().splitlines()[0] if uptime else None,
        total_memory=total_memory,
        memory_percent=memory_percent,
        disk_percent=parse_disk_percent(raw.get("disk")),
        system_load=parse_load(raw.get("load")) or parse_load(uptime),
        running_services=parse_services(raw.get("services")),
    )
