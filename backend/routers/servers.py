"""
API endpoints for remote discovery and network reconciliation.

Handles:
- System and container discovery on one managed server
- Health checks and alerts
- Syncing containers, VMs and interfaces into the device registry
- IP conflict checks and container migration planning
- Persistent terminal sessions (tmux)

Every endpoint returns the operation's result model. Failed operations
keep their body; ``not_found`` maps to 404 and other failures to 400.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from schemas import (
    AlertListResult,
    BulkSyncResult,
    ConflictCheckResult,
    ContainerDiscoveryResult,
    ContainerSyncResult,
    HealthCheckResult,
    InterfaceSyncResult,
    IpConflictCheckRequest,
    IpSuggestionRequest,
    IpSuggestionResult,
    MigrationAnalysis,
    OperationResult,
    SystemDiscoveryResult,
    TerminalAvailability,
    TerminalCommandRequest,
    TerminalCommandResult,
)
from services.errors import ErrorKind
from services.server_management import ServerManagementService, get_server_management_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/servermanagement", tags=["server-management"])


def _respond(result: OperationResult):
    if result.success:
        return result
    status_code = 404 if result.error_kind == ErrorKind.NOT_FOUND.value else 400
    logger.warning(f"Operation failed [{result.error_kind}]: {result.error_message}")
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.post("/{server_id}/discover-system", response_model=SystemDiscoveryResult)
async def discover_system(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    """Collect OS, kernel, resources, services and update counts from a server."""
    return _respond(await service.discover_system(db, server_id))


@router.get("/{server_id}/containers", response_model=ContainerDiscoveryResult)
async def list_containers(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    return _respond(await service.discover_containers(db, server_id))


@router.post("/{server_id}/health-check", response_model=HealthCheckResult)
async def perform_health_check(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    """
    Sample CPU, memory, disk, load and process count, record the check and
    update the server's status. An unreachable server is a completed check
    with ``is_healthy`` false and a ConnectionLost alert.
    """
    return _respond(await service.perform_health_check(db, server_id))


@router.get("/alerts", response_model=AlertListResult)
async def get_alerts(
    server_id: Optional[int] = Query(None, description="Only alerts of this server"),
    include_resolved: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    """Open alerts, newest first."""
    return _respond(await service.get_alerts(db, server_id, include_resolved))


@router.post("/{server_id}/sync-docker-ips", response_model=ContainerSyncResult)
async def sync_docker_ips(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    """Reconcile the server's container addresses into the device registry."""
    return _respond(await service.reconcile_containers(db, server_id))


@router.post("/{server_id}/sync-all-network-interfaces", response_model=InterfaceSyncResult)
async def sync_network_interfaces(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    """Reconcile containers, VM guests and physical interfaces of one server."""
    return _respond(await service.sync_interfaces(db, server_id))


@router.post("/sync-all", response_model=BulkSyncResult)
async def sync_all_servers(
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    """
    Sync every managed server.

    Unreachable servers are listed in ``server_results`` and counted in
    ``failed_servers``; the call itself only fails if the registry does.
    """
    return _respond(await service.sync_all_hosts(db))


@router.post("/check-ip-conflict", response_model=ConflictCheckResult)
async def check_ip_conflict(
    request: IpConflictCheckRequest,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    return _respond(
        await service.check_ip_conflict(db, request.ip_address, request.exclude_device_id)
    )


@router.get("/{server_id}/analyze-docker-networks", response_model=MigrationAnalysis)
async def analyze_docker_networks(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    return _respond(await service.analyze_migration_candidates(db, server_id))


@router.post("/suggest-ips-for-migration", response_model=IpSuggestionResult)
async def suggest_ips_for_migration(
    request: IpSuggestionRequest,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    """First free address in the range for each container, scanned ascending."""
    return _respond(
        await service.suggest_migration_ips(
            db,
            request.server_id,
            request.container_ids,
            request.range_start,
            request.range_end,
        )
    )


@router.get("/{server_id}/check-tmux", response_model=TerminalAvailability)
async def check_tmux(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    return _respond(await service.check_terminal_availability(db, server_id))


@router.post("/{server_id}/terminal", response_model=TerminalCommandResult)
async def execute_in_terminal(
    server_id: int,
    request: TerminalCommandRequest,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    """
    Run a command in the server's persistent tmux session.

    The pane is captured after a fixed settle delay; long-running commands
    return partial output.
    """
    return _respond(await service.execute_in_terminal(db, server_id, request.command))


@router.delete("/{server_id}/terminal", response_model=TerminalCommandResult)
async def close_terminal(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    service: ServerManagementService = Depends(get_server_management_service),
):
    return _respond(await service.close_terminal(db, server_id))
