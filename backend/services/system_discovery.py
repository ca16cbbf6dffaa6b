"""
System and service discovery.

Collects ~15 categories of raw facts over one SSH session using the
CommandProber, then normalizes them into a SystemDiscoveryResult. The
optional enrichment service is asked for a structured summary first;
if it is absent or fails, facts are extracted directly from the raw map.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from config import settings
from models import HostStatus
from parsers.ip_addr import IpAddrParser
from parsers.system_info import count_lines, extract_facts, split_apt_updates
from schemas import SystemDiscoveryResult
from services.command_sets import PACKAGE_MANAGERS, SYSTEM_COMMANDS
from services.credentials import SshTarget
from services.enrichment import SystemInfoEnricher
from services.errors import CommandFailed, ServiceUnavailable
from services.prober import CommandProber
from services.remote_executor import RemoteExecutor

logger = logging.getLogger(__name__)

# Fixed confidence for the direct-parsing path
FALLBACK_CONFIDENCE = 0.6


def evaluate_host_status(
    memory_percent: Optional[float],
    disk_percent: Optional[float],
    cpu_percent: Optional[float] = None,
) -> str:
    """Online/Warning/Critical from resource usage of a reachable host."""
    memory = memory_percent or 0.0
    disk = disk_percent or 0.0
    cpu = cpu_percent or 0.0
    if (
        memory > settings.HOST_CRITICAL_MEMORY_PERCENT
        or disk > settings.HOST_CRITICAL_DISK_PERCENT
        or cpu > settings.HOST_CRITICAL_CPU_PERCENT
    ):
        return HostStatus.CRITICAL
    if (
        memory > settings.HOST_WARNING_MEMORY_PERCENT
        or disk > settings.HOST_WARNING_DISK_PERCENT
        or cpu > settings.HOST_WARNING_CPU_PERCENT
    ):
        return HostStatus.WARNING
    return HostStatus.ONLINE


async def discover_updates(runner) -> Dict[str, Any]:
    """
    Detect the package manager and count pending updates.

    Managers are checked in fixed priority order; the first whose check
    succeeds is used. Only apt separates security updates.
    """
    prober = CommandProber(runner)
    for manager in PACKAGE_MANAGERS:
        if not await prober.succeeds(manager.check):
            continue

        info: Dict[str, Any] = {"package_manager": manager.name}
        try:
            output = await runner.run(manager.updates)
        except CommandFailed as e:
            # grep -v with no matching lines exits 1: nothing to upgrade
            logger.debug(f"Update listing for {manager.name} failed: {e}")
            output = ""

        if manager.name == "apt":
            total, security = split_apt_updates(output)
            info["available_updates"] = total
            info["security_updates"] = security
        else:
            info["available_updates"] = count_lines(output) or 0

        try:
            info["installed_packages"] = count_lines(await runner.run(manager.installed))
        except CommandFailed as e:
            logger.debug(f"Installed package count for {manager.name} failed: {e}")
        return info

    logger.info("No known package manager found")
    return {}


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def _as_confidence(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class SystemDiscovery:
    """Builds a structured system record for one host."""

    def __init__(self, executor: RemoteExecutor, enricher: Optional[SystemInfoEnricher] = None):
        self.executor = executor
        self.enricher = enricher or SystemInfoEnricher()

    async def collect_raw(self, runner) -> Tuple[Dict[str, str], Dict[str, Any]]:
        """Run every category probe on one session. Unknown categories are omitted."""
        prober = CommandProber(runner)
        raw: Dict[str, str] = {}
        for category, candidates in SYSTEM_COMMANDS.items():
            output = await prober.probe(candidates)
            if output is None:
                logger.debug(f"Category {category} unknown on this host")
                continue
            raw[category] = output
        updates = await discover_updates(runner)
        return raw, updates

    async def discover(self, target: SshTarget) -> SystemDiscoveryResult:
        """
        Discover one host. ConnectionFailed propagates to the caller,
        which records the host as Offline.
        """
        async with self.executor.session(target) as session:
            raw, updates = await self.collect_raw(session)

        logger.info(f"Collected {len(raw)} fact categories from {target.name}")
        facts = extract_facts(raw)

        result = SystemDiscoveryResult(
            host_id=target.host_id,
            operating_system=facts.operating_system,
            os_version=facts.os_version,
            architecture=facts.architecture,
            kernel_version=facts.kernel_version,
            hostname=facts.hostname,
            uptime=facts.uptime,
            total_memory=facts.total_memory,
            memory_percent=facts.memory_percent,
            disk_percent=facts.disk_percent,
            system_load=facts.system_load,
            disk_info=raw.get("disk"),
            running_services=facts.running_services,
            network_interfaces=[
                f"{i.interface}: {i.ip_address}/{i.prefix_length}"
                for i in IpAddrParser().parse(raw.get("network", "")).interfaces
            ],
            package_manager=updates.get("package_manager"),
            available_updates=updates.get("available_updates"),
            security_updates=updates.get("security_updates"),
            installed_packages=updates.get("installed_packages"),
            confidence=FALLBACK_CONFIDENCE,
            raw_system_data=raw,
            discovered_at=datetime.utcnow(),
        )

        if self.enricher.is_configured:
            try:
                summary = await self.enricher.summarize(raw)
            except ServiceUnavailable as e:
                logger.info(f"Enrichment unavailable for {target.name}, using direct parsing: {e}")
            else:
                self._apply_summary(result, summary)

        result.host_status = evaluate_host_status(result.memory_percent, result.disk_percent)
        return result

    @staticmethod
    def _apply_summary(result: SystemDiscoveryResult, summary: Dict[str, Any]) -> None:
        """Overlay enrichment output; directly parsed values fill its gaps."""
        for field in (
            "operating_system",
            "os_version",
            "architecture",
            "kernel_version",
            "hostname",
            "uptime",
            "total_memory",
            "system_load",
            "disk_info",
            "package_manager",
        ):
            value = summary.get(field)
            if value not in (None, ""):
                setattr(result, field, str(value))

        for field in ("available_updates", "security_updates"):
            value = _as_int(summary.get(field))
            if value is not None:
                setattr(result, field, value)

        services = _as_list(summary.get("running_services"))
        if services:
            result.running_services = services
        interfaces = _as_list(summary.get("network_interfaces"))
        if interfaces:
            result.network_interfaces = interfaces

        result.enriched = True
        result.confidence = _as_confidence(summary.get("confidence"))
