"""
Lightweight health cycle for managed hosts.

Samples CPU, memory, disk, load and process count over one SSH session
(no full discovery), stores a HostHealthCheck row, updates the host's
status and raises alerts:

- usage above ALERT_USAGE_PERCENT raises a High alert, above
  ALERT_CRITICAL_PERCENT a Critical one
- an unreachable host is marked Offline and raises ConnectionLost

At most one unresolved alert per (host, type) exists. A reachable host
resolves every open alert whose condition it no longer shows; an
unreachable one resolves nothing, since its usage cannot be observed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, NamedTuple, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import AlertSeverity, AlertType, HostAlert, HostHealthCheck, HostStatus, ManagedHost
from parsers.system_info import (
    count_lines,
    parse_disk_percent,
    parse_load_1m,
    parse_memory,
    parse_os_release,
    parse_percent,
)
from schemas import AlertInfo, HealthCheckResult
from services.command_sets import HEALTH_COMMANDS
from services.credentials import SshTarget
from services.errors import ConnectionFailed
from services.prober import CommandProber
from services.remote_executor import RemoteExecutor
from services.system_discovery import evaluate_host_status
from utils.audit import audit

logger = logging.getLogger(__name__)

USAGE_ALERT_TYPES = (AlertType.HIGH_CPU_USAGE, AlertType.HIGH_MEMORY_USAGE, AlertType.HIGH_DISK_USAGE)


@dataclass
class HealthSample:
    cpu_usage: Optional[float] = None
    memory_usage: Optional[float] = None
    disk_usage: Optional[float] = None
    load_average: Optional[float] = None
    running_processes: Optional[int] = None
    operating_system: Optional[str] = None
    raw: Dict[str, str] = field(default_factory=dict)


class AlertCondition(NamedTuple):
    alert_type: str
    severity: str
    message: str


async def collect_health_sample(runner) -> HealthSample:
    """Probe every health category on one session. Unknown metrics stay None."""
    prober = CommandProber(runner)
    raw: Dict[str, str] = {}
    for category, candidates in HEALTH_COMMANDS.items():
        output = await prober.probe(candidates)
        if output is not None:
            raw[category] = output

    _, memory_percent = parse_memory(raw.get("memory"))
    operating_system, _ = parse_os_release(raw.get("os_release"))
    return HealthSample(
        cpu_usage=parse_percent(raw.get("cpu")),
        memory_usage=memory_percent,
        disk_usage=parse_disk_percent(raw.get("disk")),
        load_average=parse_load_1m(raw.get("load")),
        running_processes=count_lines(raw.get("processes")),
        operating_system=operating_system,
        raw=raw,
    )


def usage_alerts(sample: HealthSample) -> List[AlertCondition]:
    conditions = []
    for alert_type, label, value in (
        (AlertType.HIGH_CPU_USAGE, "CPU", sample.cpu_usage),
        (AlertType.HIGH_MEMORY_USAGE, "Memory", sample.memory_usage),
        (AlertType.HIGH_DISK_USAGE, "Disk", sample.disk_usage),
    ):
        if value is None or value <= settings.ALERT_USAGE_PERCENT:
            continue
        severity = AlertSeverity.CRITICAL if value > settings.ALERT_CRITICAL_PERCENT else AlertSeverity.HIGH
        conditions.append(AlertCondition(alert_type, severity, f"{label} usage is {value:.1f}%"))
    return conditions


async def list_alerts(
    db: AsyncSession, host_id: Optional[int] = None, include_resolved: bool = False
) -> List[HostAlert]:
    """Alerts, newest first."""
    query = select(HostAlert)
    if host_id is not None:
        query = query.where(HostAlert.managed_host_id == host_id)
    if not include_resolved:
        query = query.where(HostAlert.is_resolved.is_(False))
    query = query.order_by(HostAlert.created_at.desc(), HostAlert.id.desc())
    return list((await db.execute(query)).scalars().all())


class HostHealthMonitor:
    """Runs health cycles and keeps the alert table in step with them."""

    def __init__(self, executor: RemoteExecutor, clock: Callable[[], datetime] = datetime.utcnow):
        self.executor = executor
        self._clock = clock

    async def sample(self, target: SshTarget) -> HealthSample:
        """ConnectionFailed propagates."""
        async with self.executor.session(target) as session:
            return await collect_health_sample(session)

    async def check(self, db: AsyncSession, target: SshTarget) -> HealthCheckResult:
        """
        One health cycle for a resolved host. Connection failures are
        recorded, not raised; registry errors propagate to the caller.
        """
        now = self._clock()
        host = await db.get(ManagedHost, target.host_id)

        try:
            sample = await self.sample(target)
        except ConnectionFailed as e:
            logger.warning(f"Health check of {target.name} failed: {e.message}")
            sample = None
            record = HostHealthCheck(
                managed_host_id=target.host_id, check_time=now, is_healthy=False, error_message=e.message
            )
            host.status = HostStatus.OFFLINE
            conditions = [
                AlertCondition(
                    AlertType.CONNECTION_LOST,
                    AlertSeverity.HIGH,
                    f"Connection to server failed: {e.message}",
                )
            ]
            cleared: Set[str] = set()
        else:
            record = HostHealthCheck(
                managed_host_id=target.host_id,
                check_time=now,
                is_healthy=True,
                cpu_usage=sample.cpu_usage,
                memory_usage=sample.memory_usage,
                disk_usage=sample.disk_usage,
                load_average=sample.load_average,
                running_processes=sample.running_processes,
                raw_data=sample.raw,
            )
            host.status = evaluate_host_status(sample.memory_usage, sample.disk_usage, sample.cpu_usage)
            if sample.operating_system:
                host.operating_system = sample.operating_system
            conditions = usage_alerts(sample)
            active = {c.alert_type for c in conditions}
            cleared = {t for t in USAGE_ALERT_TYPES + (AlertType.CONNECTION_LOST,) if t not in active}

        host.last_check_time = now
        db.add(record)
        raised = await self._raise(db, target.host_id, conditions, now)
        resolved = await self._resolve(db, target.host_id, cleared, now)
        await db.flush()

        result = HealthCheckResult(
            host_id=target.host_id,
            check_id=record.id,
            is_healthy=record.is_healthy,
            host_status=host.status,
            check_error=record.error_message,
            alerts_raised=[AlertInfo.model_validate(alert) for alert in raised],
            alerts_resolved=resolved,
            checked_at=now,
        )
        if sample is not None:
            result.cpu_usage = sample.cpu_usage
            result.memory_usage = sample.memory_usage
            result.disk_usage = sample.disk_usage
            result.load_average = sample.load_average
            result.running_processes = sample.running_processes
        await db.commit()

        audit.log_health_check(target.host_id, target.name, record.is_healthy, host.status, len(raised))
        return result

    async def _open_alert(self, db: AsyncSession, host_id: int, alert_type: str) -> Optional[HostAlert]:
        query = select(HostAlert).where(
            HostAlert.managed_host_id == host_id,
            HostAlert.alert_type == alert_type,
            HostAlert.is_resolved.is_(False),
        )
        return (await db.execute(query.limit(1))).scalars().first()

    async def _raise(
        self, db: AsyncSession, host_id: int, conditions: List[AlertCondition], now: datetime
    ) -> List[HostAlert]:
        raised = []
        for condition in conditions:
            if await self._open_alert(db, host_id, condition.alert_type) is not None:
                logger.debug(f"{condition.alert_type} already open for host {host_id}")
                continue
            alert = HostAlert(
                managed_host_id=host_id,
                alert_type=condition.alert_type,
                severity=condition.severity,
                message=condition.message,
                created_at=now,
                is_resolved=False,
            )
            db.add(alert)
            raised.append(alert)
            logger.info(f"Alert {condition.alert_type} ({condition.severity}) for host {host_id}: {condition.message}")
            audit.log_alert(host_id, condition.alert_type, condition.severity)
        return raised

    async def _resolve(self, db: AsyncSession, host_id: int, cleared: Set[str], now: datetime) -> int:
        if not cleared:
            return 0
        query = select(HostAlert).where(
            HostAlert.managed_host_id == host_id,
            HostAlert.alert_type.in_(sorted(cleared)),
            HostAlert.is_resolved.is_(False),
        )
        alerts = (await db.execute(query)).scalars().all()
        for alert in alerts:
            alert.is_resolved = True
            alert.resolved_at = now
            audit.log_alert(host_id, alert.alert_type, alert.severity, operation="RESOLVE")
        return len(alerts)
