"""
Pydantic v2 schemas for discovery and reconciliation results.

Every top-level operation returns a model derived from OperationResult:
a ``success`` flag, a human-readable ``error_message`` and the machine
``error_kind`` on failure, plus whatever partial result was gathered.
Callers render these directly and never see internal exceptions.

Request models validate addresses strictly; result models carry no
validators so anything the collectors produce serializes cleanly.
"""

from datetime import datetime
from ipaddress import ip_address as parse_ip
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import settings

NO_IP_FOUND = "No available IP found"


# ── Reusable validators ──────────────────────────────────────────────

def _validate_ip(value: str, field_name: str = "IP address") -> str:
    """Validate an IPv4 address string."""
    try:
        addr = parse_ip(value.strip())
    except ValueError:
        raise ValueError(
            f"Invalid {field_name} '{value}'. Expected IPv4 (e.g. 192.168.1.1)"
        )
    if addr.version != 4:
        raise ValueError(f"{field_name} must be IPv4, got '{value}'")
    if addr.is_unspecified:
        raise ValueError(f"Unspecified {field_name} ({value}) is not allowed")
    return str(addr)


# ═══════════════════════════════════════════════════════════════════════
# BASE
# ═══════════════════════════════════════════════════════════════════════

class OperationResult(BaseModel):
    success: bool = True
    error_message: Optional[str] = None
    error_kind: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════
# DISCOVERY
# ═══════════════════════════════════════════════════════════════════════

class SystemDiscoveryResult(OperationResult):
    host_id: int
    operating_system: Optional[str] = None
    os_version: Optional[str] = None
    architecture: Optional[str] = None
    kernel_version: Optional[str] = None
    hostname: Optional[str] = None
    uptime: Optional[str] = None
    total_memory: Optional[str] = None
    memory_percent: Optional[float] = None
    disk_percent: Optional[float] = None
    system_load: Optional[str] = None
    disk_info: Optional[str] = None
    package_manager: Optional[str] = None
    available_updates: Optional[int] = None
    security_updates: Optional[int] = None
    installed_packages: Optional[int] = None
    running_services: List[str] = Field(default_factory=list)
    network_interfaces: List[str] = Field(default_factory=list)
    host_status: Optional[str] = None
    # Advisory only: enrichment confidence verbatim, fallback path fixed
    confidence: Optional[float] = None
    enriched: bool = False
    raw_system_data: Dict[str, str] = Field(default_factory=dict)
    discovered_at: datetime = Field(default_factory=datetime.utcnow)


class PortMappingSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    container_port: int
    protocol: str = "tcp"
    host_port: Optional[int] = None
    host_ip: Optional[str] = None


class NetworkAttachmentSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    network_name: str
    ip_address: Optional[str] = None
    gateway: Optional[str] = None
    mac_address: Optional[str] = None
    prefix_length: Optional[int] = None
    subnet: Optional[str] = None


class ContainerInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    container_id: str
    name: str
    image: str
    status: str
    created: Optional[str] = None
    ports: List[PortMappingSchema] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    networks: List[NetworkAttachmentSchema] = Field(default_factory=list)
    network_mode: Optional[str] = None
    mac_address: Optional[str] = None
    is_web_service: bool = False
    service_url: Optional[str] = None


class ContainerDiscoveryResult(OperationResult):
    host_id: int
    containers: List[ContainerInfo] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════
# SYNC
# ═══════════════════════════════════════════════════════════════════════

class ContainerSyncResult(OperationResult):
    host_id: int
    devices_created: int = 0
    devices_updated: int = 0
    total_containers_scanned: int = 0
    synced_containers: List[str] = Field(default_factory=list)


class InterfaceSyncResult(OperationResult):
    host_id: int
    docker_containers_synced: int = 0
    vms_synced: int = 0
    interfaces_synced: int = 0
    total_devices_synced: int = 0
    sync_details: List[str] = Field(default_factory=list)


class ServerSyncSummary(BaseModel):
    server_id: int
    server_name: str
    success: bool
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    devices_synced: int = 0
    docker_containers: int = 0
    vms: int = 0
    interfaces: int = 0


class BulkSyncResult(OperationResult):
    total_servers: int = 0
    successful_servers: int = 0
    failed_servers: int = 0
    total_devices_synced: int = 0
    server_results: List[ServerSyncSummary] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════
# HEALTH AND ALERTS
# ═══════════════════════════════════════════════════════════════════════

class AlertInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    managed_host_id: int
    alert_type: str
    severity: str
    message: str
    created_at: datetime
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None


class HealthCheckResult(OperationResult):
    """
    Outcome of one health cycle. An unreachable host is a completed check
    (``is_healthy`` false, host Offline), not a failed operation.
    """

    host_id: int
    check_id: Optional[int] = None
    is_healthy: bool = False
    host_status: Optional[str] = None
    cpu_usage: Optional[float] = None
    memory_usage: Optional[float] = None
    disk_usage: Optional[float] = None
    load_average: Optional[float] = None
    running_processes: Optional[int] = None
    check_error: Optional[str] = None
    alerts_raised: List[AlertInfo] = Field(default_factory=list)
    alerts_resolved: int = 0
    checked_at: Optional[datetime] = None


class AlertListResult(OperationResult):
    alerts: List[AlertInfo] = Field(default_factory=list)
    total: int = 0


# ═══════════════════════════════════════════════════════════════════════
# CONFLICTS
# ═══════════════════════════════════════════════════════════════════════

class ConflictDetail(BaseModel):
    """One piece of evidence that an address is in use."""

    source: str  # Database/Docker/VM/NetworkInterface/NetworkScan
    device_name: Optional[str] = None
    server_name: Optional[str] = None
    server_id: Optional[int] = None
    mac_address: Optional[str] = None
    details: Optional[str] = None
    status: Optional[str] = None


class ConflictCheckResult(OperationResult):
    ip_address: str
    is_available: bool = True
    has_conflict: bool = False
    conflicts: List[ConflictDetail] = Field(default_factory=list)
    is_reachable_on_network: bool = False
    ping_response_ms: Optional[float] = None
    hosts_checked: int = 0
    hosts_failed: int = 0


class IpConflictCheckRequest(BaseModel):
    ip_address: str
    exclude_device_id: Optional[int] = None

    @field_validator("ip_address")
    @classmethod
    def validate_ip_address(cls, v):
        return _validate_ip(v)


# ═══════════════════════════════════════════════════════════════════════
# MIGRATION
# ═══════════════════════════════════════════════════════════════════════

class MigrationContainer(BaseModel):
    container_id: str
    name: str
    image: str
    status: str
    network_mode: Optional[str] = None
    networks: List[str] = Field(default_factory=list)
    current_ips: List[str] = Field(default_factory=list)
    needs_migration: bool = False
    reason: Optional[str] = None


class MigrationAnalysis(OperationResult):
    host_id: int
    containers_by_network: Dict[str, List[MigrationContainer]] = Field(default_factory=dict)
    total_containers: int = 0
    containers_needing_migration: int = 0
    suggested_range_start: Optional[str] = None
    suggested_range_end: Optional[str] = None
    target_network: Optional[str] = None


class IpSuggestion(BaseModel):
    container_id: str
    container_name: str
    current_ip: Optional[str] = None
    # An address, or NO_IP_FOUND when the range is exhausted
    suggested_ip: str
    has_conflict: bool = False
    conflicts: List[ConflictDetail] = Field(default_factory=list)


class IpSuggestionResult(OperationResult):
    host_id: int
    suggestions: List[IpSuggestion] = Field(default_factory=list)
    total_checked: int = 0
    available_ips_found: int = 0


class IpSuggestionRequest(BaseModel):
    server_id: int
    container_ids: List[str] = Field(..., min_length=1)
    range_start: str = Field(default_factory=lambda: settings.MIGRATION_RANGE_START)
    range_end: str = Field(default_factory=lambda: settings.MIGRATION_RANGE_END)
    target_network: str = Field(default_factory=lambda: settings.MIGRATION_TARGET_NETWORK)

    @field_validator("range_start", "range_end")
    @classmethod
    def validate_range(cls, v):
        return _validate_ip(v, "range address")


# ═══════════════════════════════════════════════════════════════════════
# TERMINAL SESSIONS
# ═══════════════════════════════════════════════════════════════════════

class TerminalAvailability(OperationResult):
    host_id: int
    is_available: bool = False
    version: Optional[str] = None
    message: Optional[str] = None


class TerminalCommandResult(OperationResult):
    host_id: int
    session_name: Optional[str] = None
    output: str = ""
    settle_delay: float = 0.0
    # Capture happens after a fixed delay, not on command completion
    may_be_partial: bool = True


class TerminalCommandRequest(BaseModel):
    command: str = Field(..., min_length=1, max_length=4096)
