"""
Device reconciliation.

Merges one observed device into the NetworkDevice registry. Matching is by
hardware address first, then by IP address. A match is updated in place;
otherwise a new entry is inserted with first_seen = last_seen = now and an
owning subnet resolved by first CIDR containment.

Reconciling the same observation twice yields one entry, and last_seen
never moves backwards. Observations that share a MAC or an IP are
serialized through per-key locks held across lookup, write and commit.
An observation that matches an existing entry also holds that entry's
lock and repeats the lookup under it, so two observations with disjoint
keys that resolve to the same device are serialized as well. Unrelated
devices reconcile concurrently. Concurrent callers must each use their
own AsyncSession.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from ipaddress import ip_address, ip_network
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    DeviceEvent,
    DeviceHistory,
    DeviceStatus,
    DeviceType,
    DiscoverySource,
    NetworkDevice,
    Subnet,
)
from parsers.base import normalize_mac
from services.mac_vendor import lookup_mac_vendor
from utils.audit import audit

logger = logging.getLogger(__name__)


@dataclass
class ObservedDevice:
    """A device as reported by one collector on one pass."""

    ip_address: str
    mac_address: Optional[str] = None
    hostname: Optional[str] = None
    device_type: str = DeviceType.UNKNOWN
    status: str = DeviceStatus.ONLINE
    source: str = DiscoverySource.OTHER
    notes: Optional[str] = None
    open_ports: Optional[List[int]] = None
    is_static_ip: Optional[bool] = None
    operating_system: Optional[str] = None


@dataclass
class ReconcileOutcome:
    device_id: int
    created: bool
    changes: Dict[str, list] = field(default_factory=dict)


async def find_subnet_for_ip(db: AsyncSession, ip: str) -> Optional[Subnet]:
    """First registered subnet whose CIDR contains the address."""
    try:
        addr = ip_address(ip)
    except ValueError:
        return None
    result = await db.execute(select(Subnet).order_by(Subnet.id))
    for subnet in result.scalars().all():
        try:
            if addr in ip_network(subnet.network, strict=False):
                return subnet
        except ValueError:
            logger.warning(f"Subnet {subnet.id} has invalid network '{subnet.network}'")
    return None


class KeyedLocks:
    """Named asyncio locks, dropped once nobody holds or awaits them."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def users(self, key: str) -> int:
        """Holders plus waiters of ``key``."""
        return self._users.get(key, 0)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class DeviceReconciler:
    """Reconciles observations into the registry."""

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        vendor_lookup: Optional[Callable[[Optional[str]], Optional[str]]] = None,
    ):
        self._clock = clock or datetime.utcnow
        self._vendor_lookup = vendor_lookup or lookup_mac_vendor
        self.locks = KeyedLocks()

    @staticmethod
    def lock_keys(mac: Optional[str], ip: str) -> List[str]:
        # Sorted so two observations sharing both keys can't deadlock
        keys = [f"ip:{ip}"]
        if mac:
            keys.append(f"mac:{mac}")
        return sorted(keys)

    async def reconcile(
        self, db: AsyncSession, observed: ObservedDevice, host_id: Optional[int]
    ) -> ReconcileOutcome:
        mac = normalize_mac(observed.mac_address)
        ip = observed.ip_address.strip()

        async with AsyncExitStack() as stack:
            for key in self.lock_keys(mac, ip):
                await stack.enter_async_context(self.locks.hold(key))

            device = await self._match(db, mac, ip)
            while device is not None:
                claim = AsyncExitStack()
                stack.push_async_exit(claim)
                await claim.enter_async_context(self.locks.hold(f"device:{device.id}"))
                current = await self._match(db, mac, ip)
                if current is not None and current.id == device.id:
                    break
                # The entry changed while we waited for it; match again
                await claim.aclose()
                device = current

            now = self._clock()
            if device is None:
                outcome = await self._insert(db, observed, mac, ip, host_id, now)
            else:
                outcome = self._update(db, device, observed, mac, ip, host_id, now)
            await db.commit()

        if outcome.created:
            audit.log_device_change("CREATE", outcome.device_id, ip, observed.source)
        elif outcome.changes:
            audit.log_device_change("UPDATE", outcome.device_id, ip, observed.source, outcome.changes)
        return outcome

    async def _match(self, db: AsyncSession, mac: Optional[str], ip: str) -> Optional[NetworkDevice]:
        if mac:
            result = await db.execute(
                select(NetworkDevice)
                .where(NetworkDevice.mac_address == mac)
                .order_by(NetworkDevice.id)
                .limit(1)
                .execution_options(populate_existing=True)
            )
            device = result.scalar_one_or_none()
            if device is not None:
                return device

        result = await db.execute(
            select(NetworkDevice)
            .where(NetworkDevice.ip_address == ip)
            .order_by(NetworkDevice.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _insert(
        self,
        db: AsyncSession,
        observed: ObservedDevice,
        mac: Optional[str],
        ip: str,
        host_id: Optional[int],
        now: datetime,
    ) -> ReconcileOutcome:
        subnet = await find_subnet_for_ip(db, ip)
        device = NetworkDevice(
            ip_address=ip,
            mac_address=mac,
            hostname=observed.hostname,
            vendor=self._vendor_lookup(mac) if mac else None,
            operating_system=observed.operating_system,
            device_type=observed.device_type,
            status=observed.status,
            source=observed.source,
            notes=observed.notes,
            open_ports=observed.open_ports,
            is_static_ip=bool(observed.is_static_ip),
            is_dhcp_assigned=observed.is_static_ip is False,
            managed_host_id=host_id,
            subnet_id=subnet.id if subnet else None,
            first_seen=now,
            last_seen=now,
        )
        db.add(device)
        await db.flush()
        db.add(
            DeviceHistory(
                device_id=device.id,
                event_type=DeviceEvent.FIRST_SEEN,
                new_value=ip,
                details=f"Discovered via {observed.source}",
                timestamp=now,
            )
        )
        logger.info(f"Registered new device {ip} ({mac or 'no MAC'}) from {observed.source}")
        return ReconcileOutcome(device_id=device.id, created=True)

    def _update(
        self,
        db: AsyncSession,
        device: NetworkDevice,
        observed: ObservedDevice,
        mac: Optional[str],
        ip: str,
        host_id: Optional[int],
        now: datetime,
    ) -> ReconcileOutcome:
        changes: Dict[str, list] = {}

        def record(field_name: str, new_value, event: Optional[str] = None) -> None:
            old_value = getattr(device, field_name)
            if new_value == old_value:
                return
            changes[field_name] = [old_value, new_value]
            setattr(device, field_name, new_value)
            if event:
                db.add(
                    DeviceHistory(
                        device_id=device.id,
                        event_type=event,
                        old_value=None if old_value is None else str(old_value),
                        new_value=None if new_value is None else str(new_value),
                        timestamp=now,
                    )
                )

        record("ip_address", ip, DeviceEvent.IP_CHANGE)
        # Never replace a known MAC with nothing
        if mac:
            record("mac_address", mac, DeviceEvent.MAC_CHANGE)
            if not device.vendor:
                device.vendor = self._vendor_lookup(mac)
        if observed.hostname:
            record("hostname", observed.hostname, DeviceEvent.HOSTNAME_CHANGE)
        record("status", observed.status, DeviceEvent.STATUS_CHANGE)
        record("device_type", observed.device_type)
        record("source", observed.source)
        if host_id is not None:
            record("managed_host_id", host_id)
        if observed.notes:
            record("notes", observed.notes)
        if observed.open_ports is not None:
            record("open_ports", observed.open_ports)
        if observed.operating_system:
            record("operating_system", observed.operating_system)
        if observed.is_static_ip is not None:
            record("is_static_ip", observed.is_static_ip)
            record("is_dhcp_assigned", not observed.is_static_ip)

        if device.last_seen is None or now > device.last_seen:
            device.last_seen = now

        if changes:
            db.add(
                DeviceHistory(
                    device_id=device.id,
                    event_type=DeviceEvent.UPDATED,
                    details=f"Updated via {observed.source}: {', '.join(sorted(changes))}",
                    timestamp=now,
                )
            )
        return ReconcileOutcome(device_id=device.id, created=False, changes=changes)
