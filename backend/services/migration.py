"""
Container migration planning.

analyze_candidates groups a host's containers by network and flags those
whose addresses lie outside every registered subnet and the target range.
suggest_ips scans a last-octet range in ascending order for each
container, asking the ConflictResolver about each candidate, and stops at
the first available address.
"""

import logging
from collections import defaultdict
from ipaddress import IPv4Address, ip_address, ip_network
from typing import Dict, List, Optional, Protocol, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import Subnet
from parsers.base import DiscoveredContainer
from schemas import (
    NO_IP_FOUND,
    ConflictCheckResult,
    ConflictDetail,
    IpSuggestion,
    IpSuggestionResult,
    MigrationAnalysis,
    MigrationContainer,
)
from utils.audit import audit

logger = logging.getLogger(__name__)

# Network modes that never carry their own address
_SHARED_NETWORK_MODES = ("host", "none")


class ConflictChecker(Protocol):
    async def check_conflict(
        self, db: AsyncSession, ip: str, exclude_device_id: Optional[int] = None
    ) -> ConflictCheckResult: ...


def candidate_range(range_start: str, range_end: str) -> List[str]:
    """
    Ascending addresses from start to end inclusive.

    Raises:
        ValueError: not IPv4, start after end, or not within one /24
    """
    start = ip_address(range_start)
    end = ip_address(range_end)
    if not isinstance(start, IPv4Address) or not isinstance(end, IPv4Address):
        raise ValueError("Migration ranges must be IPv4")
    if start.packed[:3] != end.packed[:3]:
        raise ValueError(f"{range_start} and {range_end} are not in the same /24")
    if int(start) > int(end):
        raise ValueError(f"Range start {range_start} is after range end {range_end}")
    return [str(IPv4Address(value)) for value in range(int(start), int(end) + 1)]


class MigrationPlanner:
    def __init__(self, resolver: ConflictChecker):
        self.resolver = resolver

    async def suggest_ips(
        self,
        db: AsyncSession,
        host_id: int,
        containers: List[DiscoveredContainer],
        range_start: str,
        range_end: str,
    ) -> IpSuggestionResult:
        """One suggestion per container, in the order given."""
        candidates = candidate_range(range_start, range_end)
        result = IpSuggestionResult(host_id=host_id)
        # Two containers in one request never receive the same address
        assigned: Set[str] = set()

        for container in containers:
            current_ip = container.ip_addresses[0] if container.ip_addresses else None
            last_conflicts: List[ConflictDetail] = []
            suggested = None

            for candidate in candidates:
                if candidate in assigned:
                    continue
                check = await self.resolver.check_conflict(db, candidate)
                result.total_checked += 1
                if check.is_available:
                    suggested = candidate
                    break
                last_conflicts = check.conflicts

            if suggested:
                assigned.add(suggested)
                result.available_ips_found += 1
                suggestion = IpSuggestion(
                    container_id=container.container_id,
                    container_name=container.name,
                    current_ip=current_ip,
                    suggested_ip=suggested,
                )
            else:
                logger.warning(
                    f"No free address in {range_start}-{range_end} for {container.name}"
                )
                suggestion = IpSuggestion(
                    container_id=container.container_id,
                    container_name=container.name,
                    current_ip=current_ip,
                    suggested_ip=NO_IP_FOUND,
                    has_conflict=True,
                    conflicts=last_conflicts,
                )
            result.suggestions.append(suggestion)
            audit.log_migration_suggestion(host_id, container.name, suggested, current_ip)

        return result

    async def analyze_candidates(
        self,
        db: AsyncSession,
        host_id: int,
        containers: List[DiscoveredContainer],
        range_start: Optional[str] = None,
        range_end: Optional[str] = None,
        target_network: Optional[str] = None,
    ) -> MigrationAnalysis:
        range_start = range_start or settings.MIGRATION_RANGE_START
        range_end = range_end or settings.MIGRATION_RANGE_END

        networks = [ip_network(f"{range_start}/24", strict=False)]
        for subnet in (await db.execute(select(Subnet))).scalars().all():
            try:
                networks.append(ip_network(subnet.network, strict=False))
            except ValueError:
                logger.warning(f"Ignoring subnet {subnet.id} with invalid network '{subnet.network}'")

        grouped: Dict[str, List[MigrationContainer]] = defaultdict(list)
        needing = 0
        for container in containers:
            entry = self._classify(container, networks)
            needing += entry.needs_migration
            for network_name in entry.networks or [container.network_mode or "none"]:
                grouped[network_name].append(entry)

        return MigrationAnalysis(
            host_id=host_id,
            containers_by_network=dict(grouped),
            total_containers=len(containers),
            containers_needing_migration=needing,
            suggested_range_start=range_start,
            suggested_range_end=range_end,
            target_network=target_network or settings.MIGRATION_TARGET_NETWORK,
        )

    @staticmethod
    def _classify(container: DiscoveredContainer, networks) -> MigrationContainer:
        entry = MigrationContainer(
            container_id=container.container_id,
            name=container.name,
            image=container.image,
            status=container.status,
            network_mode=container.network_mode,
            networks=[n.network_name for n in container.networks],
            current_ips=container.ip_addresses,
        )
        if container.network_mode in _SHARED_NETWORK_MODES:
            entry.reason = f"Uses {container.network_mode} networking"
            return entry
        if not entry.current_ips:
            entry.reason = "No address assigned"
            return entry

        routable = [
            ip for ip in entry.current_ips
            if any(ip_address(ip) in network for network in networks)
        ]
        if routable:
            entry.reason = f"Already on LAN address {routable[0]}"
        else:
            entry.needs_migration = True
            entry.reason = "Only has addresses on internal container networks"
        return entry
