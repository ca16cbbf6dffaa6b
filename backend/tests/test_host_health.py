"""
Tests for the health cycle.

Tests cover:
- Usage figures parsed from health command output
- Alert thresholds and severities
- Health check records, host status and alert lifecycle
- Connection loss handling
"""

from datetime import datetime

import pytest
from sqlalchemy import func, select

from fakes import ScriptedExecutor, ScriptedHost, add_host, make_service
from models import AlertSeverity, AlertType, HostAlert, HostHealthCheck, HostStatus, ManagedHost
from parsers.system_info import parse_load_1m, parse_percent
from services.credentials import SshTarget
from services.errors import ErrorKind
from services.host_health import HealthSample, HostHealthMonitor, list_alerts, usage_alerts

T0 = datetime(2024, 5, 1, 12, 0, 0)

FREE = (
    "               total        used        free      shared  buff/cache   available\n"
    "Mem:      8000000000  2000000000  5000000000     1000000  1000000000  6000000000\n"
    "Swap:              0           0           0\n"
)


def df_root(percent: int) -> str:
    return (
        "Filesystem      Size  Used Avail Use% Mounted on\n"
        f"/dev/sda1       100G   {percent}G   {100 - percent}G  {percent}% /\n"
    )


def monitored_host(cpu: str = "12.5", disk: int = 40, **kwargs) -> ScriptedHost:
    return ScriptedHost(
        [
            ("/proc/stat", cpu),
            ("free -b", FREE),
            ("df -h /", df_root(disk)),
            ("cat /proc/loadavg", "0.50 0.40 0.30 1/234 5678"),
            ("ps -e --no-headers", "187"),
            ("cat /etc/os-release", 'PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\nVERSION_ID="12"'),
        ],
        **kwargs,
    )


def target_for(host: ManagedHost) -> SshTarget:
    return SshTarget(host_id=host.id, name=host.name, address=host.host_address, port=22, username="admin")


def monitor(scripted: ScriptedHost, address: str = "192.168.4.10") -> HostHealthMonitor:
    return HostHealthMonitor(ScriptedExecutor({address: scripted}), clock=lambda: T0)


async def alert_count(db) -> int:
    return (await db.execute(select(func.count(HostAlert.id)))).scalar_one()


class TestHealthParsers:

    def test_percent(self):
        assert parse_percent("12.3456") == 12.3
        assert parse_percent(" 40% ") == 40.0
        assert parse_percent("7") == 7.0

    def test_percent_rejects_noise(self):
        assert parse_percent("") is None
        assert parse_percent(None) is None
        assert parse_percent("n/a") is None

    def test_one_minute_load(self):
        assert parse_load_1m("0.50 0.40 0.30 1/234 5678") == 0.5
        assert parse_load_1m(" 10:01:02 up 3 days,  load average: 1.25, 0.90, 0.80") == 1.25
        assert parse_load_1m(None) is None


class TestUsageAlerts:

    def test_below_threshold(self):
        assert usage_alerts(HealthSample(cpu_usage=85.0, memory_usage=50.0, disk_usage=None)) == []

    def test_high_and_critical(self):
        conditions = usage_alerts(HealthSample(cpu_usage=86.0, memory_usage=20.0, disk_usage=97.5))
        assert [(c.alert_type, c.severity) for c in conditions] == [
            (AlertType.HIGH_CPU_USAGE, AlertSeverity.HIGH),
            (AlertType.HIGH_DISK_USAGE, AlertSeverity.CRITICAL),
        ]
        assert conditions[1].message == "Disk usage is 97.5%"


class TestHealthCheck:

    @pytest.mark.asyncio
    async def test_healthy_host(self, db_session):
        host = await add_host(db_session, "nas01", "192.168.4.10")
        scripted = monitored_host()
        result = await monitor(scripted).check(db_session, target_for(host))

        assert result.success is True
        assert result.is_healthy is True
        assert result.host_status == HostStatus.ONLINE
        assert result.cpu_usage == 12.5
        assert result.memory_usage == 25.0
        assert result.disk_usage == 40.0
        assert result.load_average == 0.5
        assert result.running_processes == 187
        assert result.alerts_raised == []
        assert scripted.sessions_opened == 1

        record = (await db_session.execute(select(HostHealthCheck))).scalar_one()
        assert record.id == result.check_id
        assert record.check_time == T0
        assert record.raw_data["processes"] == "187"

        await db_session.refresh(host)
        assert host.status == HostStatus.ONLINE
        assert host.last_check_time == T0
        assert host.operating_system == "Debian GNU/Linux 12 (bookworm)"

    @pytest.mark.asyncio
    async def test_full_disk_raises_one_critical_alert(self, db_session):
        host = await add_host(db_session, "nas01", "192.168.4.10")
        health = monitor(monitored_host(disk=97))

        first = await health.check(db_session, target_for(host))
        assert first.host_status == HostStatus.CRITICAL
        [alert] = first.alerts_raised
        assert alert.alert_type == AlertType.HIGH_DISK_USAGE
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.managed_host_id == host.id

        second = await health.check(db_session, target_for(host))
        assert second.alerts_raised == []
        assert await alert_count(db_session) == 1
        assert (await db_session.execute(select(func.count(HostHealthCheck.id)))).scalar_one() == 2

    @pytest.mark.asyncio
    async def test_unreachable_host(self, db_session):
        host = await add_host(db_session, "nas01", "192.168.4.10")
        result = await monitor(monitored_host(unreachable=True)).check(db_session, target_for(host))

        assert result.success is True
        assert result.is_healthy is False
        assert result.host_status == HostStatus.OFFLINE
        assert result.check_error
        assert result.cpu_usage is None
        [alert] = result.alerts_raised
        assert alert.alert_type == AlertType.CONNECTION_LOST
        assert alert.severity == AlertSeverity.HIGH
        assert alert.message.startswith("Connection to server failed")

        record = (await db_session.execute(select(HostHealthCheck))).scalar_one()
        assert record.is_healthy is False
        assert record.error_message == result.check_error

    @pytest.mark.asyncio
    async def test_recovery_resolves_connection_lost(self, db_session):
        host = await add_host(db_session, "nas01", "192.168.4.10")
        scripted = monitored_host(unreachable=True)
        health = monitor(scripted)
        await health.check(db_session, target_for(host))

        scripted.unreachable = False
        result = await health.check(db_session, target_for(host))
        assert result.is_healthy is True
        assert result.alerts_resolved == 1

        assert await list_alerts(db_session, host.id) == []
        [resolved] = await list_alerts(db_session, host.id, include_resolved=True)
        assert resolved.is_resolved is True
        assert resolved.resolved_at == T0

    @pytest.mark.asyncio
    async def test_connection_loss_keeps_usage_alerts_open(self, db_session):
        host = await add_host(db_session, "nas01", "192.168.4.10")
        scripted = monitored_host(cpu="99.0")
        health = monitor(scripted)
        await health.check(db_session, target_for(host))

        scripted.unreachable = True
        result = await health.check(db_session, target_for(host))
        assert result.alerts_resolved == 0
        open_types = sorted(a.alert_type for a in await list_alerts(db_session, host.id))
        assert open_types == [AlertType.CONNECTION_LOST, AlertType.HIGH_CPU_USAGE]

    @pytest.mark.asyncio
    async def test_alerts_are_per_host(self, db_session):
        nas = await add_host(db_session, "nas01", "192.168.4.10")
        kvm = await add_host(db_session, "kvm01", "192.168.4.40")
        await monitor(monitored_host(unreachable=True)).check(db_session, target_for(nas))
        await monitor(monitored_host(unreachable=True), "192.168.4.40").check(db_session, target_for(kvm))

        assert await alert_count(db_session) == 2
        assert [a.managed_host_id for a in await list_alerts(db_session, kvm.id)] == [kvm.id]


class TestHealthEntryPoints:

    @pytest.mark.asyncio
    async def test_perform_health_check(self, db_session):
        host = await add_host(db_session, "nas01", "192.168.4.10")
        result = await make_service({"192.168.4.10": monitored_host(cpu="91.0")}).perform_health_check(
            db_session, host.id
        )
        assert result.success is True
        assert result.host_status == HostStatus.CRITICAL
        assert [a.alert_type for a in result.alerts_raised] == [AlertType.HIGH_CPU_USAGE]

    @pytest.mark.asyncio
    async def test_unknown_host(self, db_session):
        result = await make_service({}).perform_health_check(db_session, 42)
        assert result.success is False
        assert result.error_kind == ErrorKind.NOT_FOUND.value

    @pytest.mark.asyncio
    async def test_get_alerts(self, db_session):
        host = await add_host(db_session, "nas01", "192.168.4.10")
        service = make_service({})
        await service.perform_health_check(db_session, host.id)

        listed = await service.get_alerts(db_session)
        assert listed.success is True
        assert listed.total == 1
        assert listed.alerts[0].alert_type == AlertType.CONNECTION_LOST

        unknown = await service.get_alerts(db_session, host_id=42)
        assert unknown.error_kind == ErrorKind.NOT_FOUND.value
