"""
IP conflict resolution across every source of truth.

Evidence that an address is in use comes from:
  1. the device registry (optionally excluding one device)
  2. container inventories of every managed host, stopped containers included
  3. hypervisor guest addresses on every managed host
  4. raw interface addresses on every managed host
  5. a single ICMP echo from the engine itself

All sources are always consulted. Per-host checks run concurrently, each on
its own session and under its own timeout, alongside the probe; the verdict
is assembled only after every task has finished. A host that cannot be
reached contributes no evidence and never fails the whole check.
"""

import asyncio
import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import ManagedHost, NetworkDevice
from parsers.docker import find_containers_with_ip
from parsers.ping import PingReply
from schemas import ConflictCheckResult, ConflictDetail
from services.command_sets import DOCKER_INSPECT_ALL
from services.credentials import CredentialStore, SshTarget
from services.errors import CommandFailed, DiscoveryError
from services.host_inventory import collect_interfaces, collect_vm_addresses
from services.reachability import ReachabilityProbe
from services.remote_executor import RemoteExecutor
from utils.audit import audit
from utils.logging_utils import LogTimer

logger = logging.getLogger(__name__)

SOURCE_DATABASE = "Database"
SOURCE_DOCKER = "Docker"
SOURCE_VM = "VM"
SOURCE_INTERFACE = "NetworkInterface"
SOURCE_NETWORK_SCAN = "NetworkScan"


class ConflictResolver:
    """Produces a unified conflict verdict for one candidate address."""

    def __init__(
        self,
        executor: RemoteExecutor,
        probe: Optional[ReachabilityProbe] = None,
        credentials: Optional[CredentialStore] = None,
        host_timeout: Optional[float] = None,
        max_concurrent_hosts: Optional[int] = None,
    ):
        self.executor = executor
        self.probe = probe or ReachabilityProbe()
        self.credentials = credentials or CredentialStore()
        self.host_timeout = host_timeout or settings.CONFLICT_HOST_TIMEOUT
        self.max_concurrent_hosts = max_concurrent_hosts or settings.SYNC_MAX_CONCURRENT_HOSTS

    async def check_conflict(
        self,
        db: AsyncSession,
        ip: str,
        exclude_device_id: Optional[int] = None,
    ) -> ConflictCheckResult:
        with LogTimer(logger, f"Conflict check for {ip}", level=logging.DEBUG) as timer:
            details = await self._registry_evidence(db, ip, exclude_device_id)
            targets = await self._resolve_targets(db)

            semaphore = asyncio.Semaphore(self.max_concurrent_hosts)
            host_tasks = [self._host_evidence(target, ip, semaphore) for target in targets]
            outcomes = await asyncio.gather(
                *host_tasks, self._probe(ip), return_exceptions=True
            )

            host_outcomes, probe_outcome = outcomes[:-1], outcomes[-1]
            hosts_failed = 0
            for target, outcome in zip(targets, host_outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning(f"Conflict check on {target.name} raised: {outcome!r}")
                    hosts_failed += 1
                elif outcome is None:
                    hosts_failed += 1
                else:
                    details.extend(outcome)

            reply = probe_outcome if isinstance(probe_outcome, PingReply) else None
            if isinstance(probe_outcome, BaseException):
                logger.warning(f"Reachability probe for {ip} raised: {probe_outcome!r}")
            reachable = bool(reply and reply.reachable)
            if reachable and not details:
                details.append(
                    ConflictDetail(
                        source=SOURCE_NETWORK_SCAN,
                        device_name="Unknown device",
                        details="IP responds to ping but not found in system",
                        status="Active",
                    )
                )
            timer.set_record_count(len(details))
            timer.add_info("hosts_failed", hosts_failed)

        result = ConflictCheckResult(
            ip_address=ip,
            is_available=not details,
            has_conflict=bool(details),
            conflicts=details,
            is_reachable_on_network=reachable,
            ping_response_ms=reply.rtt_ms if reachable else None,
            hosts_checked=len(targets),
            hosts_failed=hosts_failed,
        )
        audit.log_conflict_check(ip, result.has_conflict, sorted({d.source for d in details}))
        return result

    async def _registry_evidence(
        self, db: AsyncSession, ip: str, exclude_device_id: Optional[int]
    ) -> List[ConflictDetail]:
        query = select(NetworkDevice).where(NetworkDevice.ip_address == ip)
        if exclude_device_id is not None:
            query = query.where(NetworkDevice.id != exclude_device_id)
        devices = (await db.execute(query.order_by(NetworkDevice.id))).scalars().all()

        details = []
        for device in devices:
            host = await db.get(ManagedHost, device.managed_host_id) if device.managed_host_id else None
            details.append(
                ConflictDetail(
                    source=SOURCE_DATABASE,
                    device_name=device.hostname or device.ip_address,
                    server_name=host.name if host else None,
                    server_id=device.managed_host_id,
                    mac_address=device.mac_address,
                    details=f"{device.device_type} registered via {device.source} (device {device.id})",
                    status=device.status,
                )
            )
        return details

    async def _resolve_targets(self, db: AsyncSession) -> List[SshTarget]:
        # Resolved up front: the session must not be shared by the fan-out
        hosts = (await db.execute(select(ManagedHost).order_by(ManagedHost.id))).scalars().all()
        return [await self.credentials.resolve(db, host) for host in hosts]

    async def _host_evidence(
        self, target: SshTarget, ip: str, semaphore: asyncio.Semaphore
    ) -> Optional[List[ConflictDetail]]:
        """Evidence from one host, or None if the host could not be checked."""
        async with semaphore:
            try:
                return await asyncio.wait_for(self._inspect_host(target, ip), self.host_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Conflict check on {target.name} timed out after {self.host_timeout}s"
                )
            except DiscoveryError as e:
                logger.warning(f"Conflict check on {target.name} failed: {e}")
        return None

    async def _inspect_host(self, target: SshTarget, ip: str) -> List[ConflictDetail]:
        details: List[ConflictDetail] = []
        async with self.executor.session(target) as session:
            containers, vms, interfaces = await self._collect_host_sources(session, target)

        try:
            matches = find_containers_with_ip(containers, ip)
        except ValueError as e:
            logger.warning(f"Unreadable docker inspect output from {target.name}: {e}")
            matches = []

        for match in matches:
            details.append(
                ConflictDetail(
                    source=SOURCE_DOCKER,
                    device_name=match["name"],
                    server_name=target.name,
                    server_id=target.host_id,
                    mac_address=match["mac_address"],
                    details=f"Container {match['name']} on network {match['network']}",
                    status=match["state"],
                )
            )
        for guest in vms:
            if guest.ip_address == ip:
                details.append(
                    ConflictDetail(
                        source=SOURCE_VM,
                        device_name=guest.vm_name,
                        server_name=target.name,
                        server_id=target.host_id,
                        mac_address=guest.mac_address,
                        details=f"VM {guest.vm_name} interface {guest.interface or 'unknown'}",
                        status="Running",
                    )
                )
        for iface in interfaces:
            if iface.ip_address == ip:
                details.append(
                    ConflictDetail(
                        source=SOURCE_INTERFACE,
                        device_name=f"{target.name}:{iface.interface}",
                        server_name=target.name,
                        server_id=target.host_id,
                        mac_address=iface.mac_address,
                        details=f"Interface {iface.interface} on {target.name}",
                        status="Active",
                    )
                )
        return details

    async def _collect_host_sources(self, session, target: SshTarget) -> Tuple[str, list, list]:
        # Sequential on one session: docker, then hypervisor, then interfaces
        try:
            containers = await session.run(DOCKER_INSPECT_ALL)
        except CommandFailed as e:
            logger.debug(f"No container inventory on {target.name}: {e}")
            containers = ""
        vms = await collect_vm_addresses(session)
        try:
            interfaces = await collect_interfaces(session)
        except CommandFailed as e:
            logger.warning(f"Could not list interfaces on {target.name}: {e}")
            interfaces = []
        return containers, vms, interfaces

    async def _probe(self, ip: str) -> PingReply:
        return await self.probe.ping(ip)
