"""
Server management facade.

The single entry point used by the HTTP layer. Every public coroutine
returns a result model with ``success``, ``error_message`` and
``error_kind``; none of them raise for per-host or per-item failures.
Only whole-operation preconditions (unknown host, unknown container,
registry errors) turn into a failed result.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from ipaddress import ip_address, ip_network
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import DeviceStatus, DeviceType, DiscoverySource, HostStatus, ManagedHost, Subnet
from parsers.base import DiscoveredContainer
from schemas import (
    AlertInfo,
    AlertListResult,
    BulkSyncResult,
    ConflictCheckResult,
    ContainerDiscoveryResult,
    ContainerInfo,
    ContainerSyncResult,
    HealthCheckResult,
    InterfaceSyncResult,
    IpSuggestionResult,
    MigrationAnalysis,
    ServerSyncSummary,
    SystemDiscoveryResult,
    TerminalAvailability,
    TerminalCommandResult,
)
from services.conflicts import ConflictResolver
from services.container_inventory import ContainerInventory
from services.credentials import CredentialStore, SshTarget, get_host
from services.errors import (
    CommandFailed,
    ConnectionFailed,
    DiscoveryError,
    ErrorKind,
    NotFound,
)
from services.host_health import HostHealthMonitor, list_alerts
from services.host_inventory import collect_interfaces, collect_vm_addresses
from services.migration import MigrationPlanner
from services.reconciler import DeviceReconciler, ObservedDevice
from services.remote_executor import RemoteExecutor
from services.system_discovery import SystemDiscovery
from services.terminal_sessions import TerminalSessionRegistry
from utils.audit import audit
from utils.logging_utils import LogTimer

logger = logging.getLogger(__name__)

# Docker's default bridge network; only synced when no subnets are registered
DEFAULT_BRIDGE_NETWORK = "bridge"


@dataclass
class HostObservations:
    """Everything collected from one host before reconciliation."""

    containers: List[ObservedDevice] = field(default_factory=list)
    vms: List[ObservedDevice] = field(default_factory=list)
    interfaces: List[ObservedDevice] = field(default_factory=list)
    containers_scanned: int = 0
    container_names: List[str] = field(default_factory=list)

    @property
    def all(self) -> List[ObservedDevice]:
        return self.containers + self.vms + self.interfaces


def _error_fields(exc: DiscoveryError) -> dict:
    return {"success": False, "error_message": exc.message, "error_kind": exc.kind.value}


def _registry_error_fields(exc: SQLAlchemyError) -> dict:
    return {
        "success": False,
        "error_message": f"Device registry error: {exc.__class__.__name__}",
        "error_kind": ErrorKind.SERVICE_UNAVAILABLE.value,
    }


def container_observations(
    container: DiscoveredContainer, host: SshTarget, subnets: list
) -> List[ObservedDevice]:
    """One observation per synced network attachment of a container."""
    if container.network_mode == "host":
        return []
    observations = []
    open_ports = sorted({p.host_port for p in container.ports if p.host_port}) or None
    for attachment in container.networks:
        if not attachment.ip_address:
            continue
        if subnets:
            addr = ip_address(attachment.ip_address)
            if not any(addr in network for network in subnets):
                continue
        elif attachment.network_name == DEFAULT_BRIDGE_NETWORK:
            continue
        observations.append(
            ObservedDevice(
                ip_address=attachment.ip_address,
                mac_address=attachment.mac_address or container.mac_address,
                hostname=container.name,
                device_type=DeviceType.SERVER,
                status=DeviceStatus.ONLINE if container.is_running else DeviceStatus.OFFLINE,
                source=DiscoverySource.DOCKER,
                notes=(
                    f"Docker container {container.name} ({container.image}) on {host.name}, "
                    f"network {attachment.network_name}"
                ),
                open_ports=open_ports,
            )
        )
    return observations


class ServerManagementService:
    def __init__(
        self,
        executor: Optional[RemoteExecutor] = None,
        credentials: Optional[CredentialStore] = None,
        discovery: Optional[SystemDiscovery] = None,
        inventory: Optional[ContainerInventory] = None,
        reconciler: Optional[DeviceReconciler] = None,
        resolver: Optional[ConflictResolver] = None,
        planner: Optional[MigrationPlanner] = None,
        terminals: Optional[TerminalSessionRegistry] = None,
        health: Optional[HostHealthMonitor] = None,
        max_concurrent_hosts: Optional[int] = None,
        host_timeout: Optional[float] = None,
    ):
        self.executor = executor or RemoteExecutor()
        self.credentials = credentials or CredentialStore()
        self.discovery = discovery or SystemDiscovery(self.executor)
        self.inventory = inventory or ContainerInventory(self.executor)
        self.reconciler = reconciler or DeviceReconciler()
        self.resolver = resolver or ConflictResolver(self.executor, credentials=self.credentials)
        self.planner = planner or MigrationPlanner(self.resolver)
        self.terminals = terminals or TerminalSessionRegistry(self.executor)
        self.health = health or HostHealthMonitor(self.executor)
        self.max_concurrent_hosts = max_concurrent_hosts or settings.SYNC_MAX_CONCURRENT_HOSTS
        self.host_timeout = host_timeout or settings.HOST_OPERATION_TIMEOUT

    async def _target(self, db: AsyncSession, host_id: int) -> SshTarget:
        host = await get_host(db, host_id)
        return await self.credentials.resolve(db, host)

    async def _subnet_networks(self, db: AsyncSession) -> list:
        networks = []
        for subnet in (await db.execute(select(Subnet).order_by(Subnet.id))).scalars().all():
            try:
                networks.append(ip_network(subnet.network, strict=False))
            except ValueError:
                logger.warning(f"Ignoring subnet {subnet.id} with invalid network '{subnet.network}'")
        return networks

    async def _registry_failure(self, db: AsyncSession, action: str, exc: SQLAlchemyError) -> dict:
        logger.error(f"Registry error while {action}", exc_info=exc)
        await db.rollback()
        return _registry_error_fields(exc)

    async def _mark_host(
        self, db: AsyncSession, host_id: int, status: str, operating_system: Optional[str] = None
    ) -> None:
        host = await db.get(ManagedHost, host_id)
        if host is None:
            return
        host.status = status
        host.last_check_time = datetime.utcnow()
        if operating_system:
            host.operating_system = operating_system
        await db.commit()

    # ── Discovery ──────────────────────────────────────────────────────

    async def discover_system(self, db: AsyncSession, host_id: int) -> SystemDiscoveryResult:
        try:
            target = await self._target(db, host_id)
            try:
                result = await self.discovery.discover(target)
            except ConnectionFailed as e:
                await self._mark_host(db, host_id, HostStatus.OFFLINE)
                return SystemDiscoveryResult(host_id=host_id, host_status=HostStatus.OFFLINE, **_error_fields(e))
            await self._mark_host(db, host_id, result.host_status, result.operating_system)
        except DiscoveryError as e:
            return SystemDiscoveryResult(host_id=host_id, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"discovering host {host_id}", e)
            return SystemDiscoveryResult(host_id=host_id, **fields)

        logger.info(
            f"Discovered {target.name}: {result.operating_system or 'unknown OS'}, "
            f"status {result.host_status}, enriched={result.enriched}"
        )
        return result

    async def discover_containers(self, db: AsyncSession, host_id: int) -> ContainerDiscoveryResult:
        try:
            target = await self._target(db, host_id)
            collected = await self.inventory.discover(target)
        except DiscoveryError as e:
            return ContainerDiscoveryResult(host_id=host_id, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"listing containers for host {host_id}", e)
            return ContainerDiscoveryResult(host_id=host_id, **fields)
        return ContainerDiscoveryResult(
            host_id=host_id,
            containers=[ContainerInfo.model_validate(c) for c in collected.containers],
            warnings=collected.warnings,
        )

    # ── Health cycle ───────────────────────────────────────────────────

    async def perform_health_check(self, db: AsyncSession, host_id: int) -> HealthCheckResult:
        """Sample usage, record the check and raise or resolve alerts."""
        try:
            target = await self._target(db, host_id)
            result = await self.health.check(db, target)
        except DiscoveryError as e:
            return HealthCheckResult(host_id=host_id, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"recording a health check for host {host_id}", e)
            return HealthCheckResult(host_id=host_id, **fields)
        logger.info(
            f"Health check of {target.name}: {result.host_status}, "
            f"{len(result.alerts_raised)} alert(s) raised, {result.alerts_resolved} resolved"
        )
        return result

    async def get_alerts(
        self, db: AsyncSession, host_id: Optional[int] = None, include_resolved: bool = False
    ) -> AlertListResult:
        try:
            if host_id is not None:
                await get_host(db, host_id)
            alerts = await list_alerts(db, host_id, include_resolved)
        except DiscoveryError as e:
            return AlertListResult(**_error_fields(e))
        except SQLAlchemyError as e:
            return AlertListResult(**await self._registry_failure(db, "listing alerts", e))
        return AlertListResult(alerts=[AlertInfo.model_validate(a) for a in alerts], total=len(alerts))

    # ── Reconciliation ─────────────────────────────────────────────────

    async def _collect_containers(self, session, target: SshTarget, subnets: list, obs: HostObservations):
        try:
            collected = await self.inventory.collect(session, target.address)
        except CommandFailed as e:
            logger.info(f"No container runtime on {target.name}: {e}")
            return
        obs.containers_scanned = len(collected.containers)
        for container in collected.containers:
            found = container_observations(container, target, subnets)
            if found:
                obs.container_names.append(container.name)
            obs.containers.extend(found)

    async def _collect_host(self, target: SshTarget, subnets: list) -> HostObservations:
        """All observations for one host, gathered sequentially on one session."""
        obs = HostObservations()
        async with self.executor.session(target) as session:
            await self._collect_containers(session, target, subnets, obs)

            for guest in await collect_vm_addresses(session):
                obs.vms.append(
                    ObservedDevice(
                        ip_address=guest.ip_address,
                        mac_address=guest.mac_address,
                        hostname=guest.vm_name,
                        device_type=DeviceType.VIRTUAL_MACHINE,
                        source=DiscoverySource.VIRTUAL_MACHINE,
                        notes=f"VM {guest.vm_name} on {target.name}",
                    )
                )
            try:
                interfaces = await collect_interfaces(session, include_virtual=False)
            except CommandFailed as e:
                logger.warning(f"Could not list interfaces on {target.name}: {e}")
                interfaces = []
            for iface in interfaces:
                obs.interfaces.append(
                    ObservedDevice(
                        ip_address=iface.ip_address,
                        mac_address=iface.mac_address,
                        hostname=f"{target.name}-{iface.interface}",
                        device_type=DeviceType.NETWORK_INTERFACE,
                        source=DiscoverySource.OTHER,
                        notes=f"Interface {iface.interface} on {target.name}",
                        is_static_ip=not iface.is_dynamic,
                    )
                )
        return obs

    async def _reconcile_all(self, db: AsyncSession, host_id: int, observations: List[ObservedDevice]):
        created = updated = 0
        for observed in observations:
            outcome = await self.reconciler.reconcile(db, observed, host_id)
            if outcome.created:
                created += 1
            else:
                updated += 1
        return created, updated

    async def reconcile_containers(self, db: AsyncSession, host_id: int) -> ContainerSyncResult:
        try:
            target = await self._target(db, host_id)
            subnets = await self._subnet_networks(db)
            collected = await self.inventory.discover(target)
            observations, names = [], []
            for container in collected.containers:
                found = container_observations(container, target, subnets)
                if found:
                    names.append(container.name)
                observations.extend(found)
            created, updated = await self._reconcile_all(db, host_id, observations)
        except DiscoveryError as e:
            return ContainerSyncResult(host_id=host_id, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"syncing containers for host {host_id}", e)
            return ContainerSyncResult(host_id=host_id, **fields)

        audit.log_host_sync(host_id, target.name, "success", created + updated)
        return ContainerSyncResult(
            host_id=host_id,
            devices_created=created,
            devices_updated=updated,
            total_containers_scanned=len(collected.containers),
            synced_containers=names,
        )

    def _interface_result(self, host_id: int, obs: HostObservations) -> InterfaceSyncResult:
        details = [f"Docker: {o.hostname} -> {o.ip_address}" for o in obs.containers]
        details += [f"VM: {o.hostname} -> {o.ip_address}" for o in obs.vms]
        details += [f"Interface: {o.hostname} -> {o.ip_address}" for o in obs.interfaces]
        return InterfaceSyncResult(
            host_id=host_id,
            docker_containers_synced=len(obs.containers),
            vms_synced=len(obs.vms),
            interfaces_synced=len(obs.interfaces),
            total_devices_synced=len(obs.all),
            sync_details=details,
        )

    async def sync_interfaces(self, db: AsyncSession, host_id: int) -> InterfaceSyncResult:
        try:
            target = await self._target(db, host_id)
            subnets = await self._subnet_networks(db)
            obs = await self._collect_host(target, subnets)
            await self._reconcile_all(db, host_id, obs.all)
        except DiscoveryError as e:
            return InterfaceSyncResult(host_id=host_id, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"syncing host {host_id}", e)
            return InterfaceSyncResult(host_id=host_id, **fields)

        audit.log_host_sync(host_id, target.name, "success", len(obs.all))
        return self._interface_result(host_id, obs)

    async def sync_all_hosts(self, db: AsyncSession) -> BulkSyncResult:
        """
        Collect from every host in parallel (bounded pool, per-host timeout),
        then reconcile sequentially. Unreachable hosts are reported, not raised.
        """
        result = BulkSyncResult()
        with LogTimer(logger, "Sync all hosts") as timer:
            try:
                hosts = (await db.execute(select(ManagedHost).order_by(ManagedHost.id))).scalars().all()
                targets = [await self.credentials.resolve(db, host) for host in hosts]
                subnets = await self._subnet_networks(db)
            except SQLAlchemyError as e:
                return BulkSyncResult(**await self._registry_failure(db, "loading managed hosts", e))

            semaphore = asyncio.Semaphore(self.max_concurrent_hosts)

            async def collect(target: SshTarget) -> HostObservations:
                async with semaphore:
                    return await asyncio.wait_for(
                        self._collect_host(target, subnets), self.host_timeout
                    )

            outcomes = await asyncio.gather(
                *(collect(target) for target in targets), return_exceptions=True
            )

            result.total_servers = len(targets)
            for target, outcome in zip(targets, outcomes):
                summary = await self._apply_host_outcome(db, target, outcome)
                result.server_results.append(summary)
                if summary.success:
                    result.successful_servers += 1
                    result.total_devices_synced += summary.devices_synced
                else:
                    result.failed_servers += 1
            timer.set_record_count(result.total_devices_synced)

        audit.log_bulk_sync(result.total_servers, result.successful_servers, result.failed_servers)
        return result

    async def _apply_host_outcome(self, db: AsyncSession, target: SshTarget, outcome) -> ServerSyncSummary:
        summary = ServerSyncSummary(server_id=target.host_id, server_name=target.name, success=False)

        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.TimeoutError):
                summary.error_message = f"Timed out after {self.host_timeout:g}s"
                summary.error_kind = ErrorKind.CONNECTION_FAILED.value
            elif isinstance(outcome, DiscoveryError):
                summary.error_message = outcome.message
                summary.error_kind = outcome.kind.value
            else:
                logger.error(f"Unexpected error syncing {target.name}", exc_info=outcome)
                summary.error_message = f"Unexpected error: {outcome}"
            logger.warning(f"Sync of {target.name} failed: {summary.error_message}")
            if summary.error_kind == ErrorKind.CONNECTION_FAILED.value:
                try:
                    await self._mark_host(db, target.host_id, HostStatus.OFFLINE)
                except SQLAlchemyError as e:
                    await self._registry_failure(db, f"marking {target.name} offline", e)
            audit.log_host_sync(target.host_id, target.name, "failure", 0, summary.error_message)
            return summary

        try:
            await self._reconcile_all(db, target.host_id, outcome.all)
            host = await db.get(ManagedHost, target.host_id)
            if host is not None and host.status in (HostStatus.OFFLINE, HostStatus.UNKNOWN, None):
                await self._mark_host(db, target.host_id, HostStatus.ONLINE)
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"reconciling {target.name}", e)
            summary.error_message = fields["error_message"]
            summary.error_kind = fields["error_kind"]
            return summary

        summary.success = True
        summary.devices_synced = len(outcome.all)
        summary.docker_containers = len(outcome.containers)
        summary.vms = len(outcome.vms)
        summary.interfaces = len(outcome.interfaces)
        audit.log_host_sync(target.host_id, target.name, "success", summary.devices_synced)
        return summary

    # ── Conflicts and migration ────────────────────────────────────────

    async def check_ip_conflict(
        self, db: AsyncSession, ip: str, exclude_device_id: Optional[int] = None
    ) -> ConflictCheckResult:
        try:
            return await self.resolver.check_conflict(db, ip, exclude_device_id)
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"checking {ip} for conflicts", e)
            return ConflictCheckResult(ip_address=ip, **fields)

    async def analyze_migration_candidates(self, db: AsyncSession, host_id: int) -> MigrationAnalysis:
        try:
            target = await self._target(db, host_id)
            collected = await self.inventory.discover(target)
            return await self.planner.analyze_candidates(db, host_id, collected.containers)
        except DiscoveryError as e:
            return MigrationAnalysis(host_id=host_id, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"analyzing migration for host {host_id}", e)
            return MigrationAnalysis(host_id=host_id, **fields)

    async def suggest_migration_ips(
        self,
        db: AsyncSession,
        host_id: int,
        container_ids: List[str],
        range_start: Optional[str] = None,
        range_end: Optional[str] = None,
    ) -> IpSuggestionResult:
        range_start = range_start or settings.MIGRATION_RANGE_START
        range_end = range_end or settings.MIGRATION_RANGE_END
        try:
            target = await self._target(db, host_id)
            collected = await self.inventory.discover(target)
            containers = self._select_containers(collected.containers, container_ids)
            return await self.planner.suggest_ips(db, host_id, containers, range_start, range_end)
        except DiscoveryError as e:
            return IpSuggestionResult(host_id=host_id, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"suggesting addresses for host {host_id}", e)
            return IpSuggestionResult(host_id=host_id, **fields)
        except ValueError as e:
            return IpSuggestionResult(
                host_id=host_id,
                success=False,
                error_message=str(e),
                error_kind=ErrorKind.PARSE_FAILED.value,
            )

    @staticmethod
    def _select_containers(containers: List[DiscoveredContainer], container_ids: List[str]):
        """Match requested ids (short or full) or names, keeping request order."""
        selected = []
        for requested in container_ids:
            match = next(
                (
                    c for c in containers
                    if c.container_id.startswith(requested)
                    or requested.startswith(c.container_id)
                    or c.name == requested
                ),
                None,
            )
            if match is None:
                raise NotFound(f"Container {requested} not found")
            selected.append(match)
        return selected

    # ── Terminal sessions ──────────────────────────────────────────────

    async def check_terminal_availability(self, db: AsyncSession, host_id: int) -> TerminalAvailability:
        try:
            target = await self._target(db, host_id)
            return await self.terminals.check_availability(target)
        except DiscoveryError as e:
            return TerminalAvailability(host_id=host_id, message=e.message, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"checking tmux on host {host_id}", e)
            return TerminalAvailability(host_id=host_id, message=fields["error_message"], **fields)

    async def execute_in_terminal(self, db: AsyncSession, host_id: int, command: str) -> TerminalCommandResult:
        try:
            target = await self._target(db, host_id)
            return await self.terminals.execute(target, command)
        except DiscoveryError as e:
            return TerminalCommandResult(host_id=host_id, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"running a terminal command on host {host_id}", e)
            return TerminalCommandResult(host_id=host_id, **fields)

    async def close_terminal(self, db: AsyncSession, host_id: int) -> TerminalCommandResult:
        try:
            target = await self._target(db, host_id)
            closed = await self.terminals.close(target)
        except DiscoveryError as e:
            return TerminalCommandResult(host_id=host_id, **_error_fields(e))
        except SQLAlchemyError as e:
            fields = await self._registry_failure(db, f"closing the terminal on host {host_id}", e)
            return TerminalCommandResult(host_id=host_id, **fields)
        return TerminalCommandResult(
            host_id=host_id,
            session_name=self.terminals.session_name(host_id),
            output="Session closed" if closed else "No session to close",
            may_be_partial=False,
        )


_service: Optional[ServerManagementService] = None


def get_server_management_service() -> ServerManagementService:
    """FastAPI dependency returning the process-wide service instance."""
    global _service
    if _service is None:
        _service = ServerManagementService()
    return _service
