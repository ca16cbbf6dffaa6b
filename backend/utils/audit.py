"""
Structured audit logging for the discovery engine.

AuditLogger writes one JSON object per event to a dedicated 'audit' logger.
Events cover registry changes made by reconciliation, per-host sync
outcomes, conflict verdicts and migration suggestions. A request_id is
propagated across async calls using contextvars.ContextVar so every event
emitted while serving one request (or one SyncAllHosts run) shares it.
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, List, Optional


# Context variable for tracking request_id across async calls
_request_id_context: ContextVar[Optional[str]] = ContextVar(
    'request_id', default=None
)


class AuditLogger:
    """
    Structured audit logger for registry and operator-relevant events.

    All events are written to the 'audit' logger in JSON format.
    """

    def __init__(self):
        self.logger = logging.getLogger('audit')

    def set_request_id(self, request_id: str) -> None:
        """Set the request_id for the current context."""
        _request_id_context.set(request_id)

    def get_request_id(self) -> Optional[str]:
        return _request_id_context.get()

    def log(
        self,
        action: str,
        actor: str,
        resource: str,
        resource_id: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Core method to log a structured audit event.

        Args:
            action: Type of action performed (e.g., 'CREATE', 'SYNC', 'CHECK')
            actor: Component performing the action
            resource: Type of resource affected (e.g., 'NetworkDevice', 'ManagedHost')
            resource_id: Identifier of the affected resource
            status: Result status (e.g., 'success', 'failure', 'partial')
            details: Optional dict of additional context
        """
        event = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'action': action,
            'actor': actor,
            'resource': resource,
            'resource_id': resource_id,
            'status': status,
            'request_id': self.get_request_id(),
            'details': details or {},
        }
        self.logger.info(json.dumps(event, default=str))

    def log_device_change(
        self,
        operation: str,
        device_id: int,
        ip_address: str,
        source: str,
        changes: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log a registry insert or in-place update made by reconciliation.

        Args:
            operation: 'CREATE' or 'UPDATE'
            device_id: Registry id of the device
            ip_address: Device IP address after the change
            source: Provenance of the observation
            changes: For updates, field -> [old, new]
        """
        details: Dict[str, Any] = {'ip_address': ip_address, 'source': source}
        if changes:
            details['changes'] = changes
        self.log(
            action=operation,
            actor='reconciler',
            resource='NetworkDevice',
            resource_id=str(device_id),
            status='success',
            details=details,
        )

    def log_host_sync(
        self,
        host_id: int,
        host_name: str,
        status: str,
        devices_synced: int,
        error_message: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {'host_name': host_name, 'devices_synced': devices_synced}
        if error_message:
            details['error_message'] = error_message
        self.log(
            action='SYNC',
            actor='sync',
            resource='ManagedHost',
            resource_id=str(host_id),
            status=status,
            details=details,
        )

    def log_bulk_sync(self, total: int, successful: int, failed: int) -> None:
        self.log(
            action='SYNC_ALL',
            actor='sync',
            resource='ManagedHost',
            resource_id='all',
            status='success' if failed == 0 else ('failure' if successful == 0 else 'partial'),
            details={'total': total, 'successful': successful, 'failed': failed},
        )

    def log_health_check(
        self, host_id: int, host_name: str, healthy: bool, host_status: str, alerts_raised: int
    ) -> None:
        self.log(
            action='HEALTH_CHECK',
            actor='health_monitor',
            resource='ManagedHost',
            resource_id=str(host_id),
            status='healthy' if healthy else 'unhealthy',
            details={'host_name': host_name, 'host_status': host_status, 'alerts_raised': alerts_raised},
        )

    def log_alert(self, host_id: int, alert_type: str, severity: str, operation: str = 'RAISE') -> None:
        self.log(
            action=operation,
            actor='health_monitor',
            resource='HostAlert',
            resource_id=str(host_id),
            status='success',
            details={'alert_type': alert_type, 'severity': severity},
        )

    def log_conflict_check(self, ip_address: str, has_conflict: bool, sources: List[str]) -> None:
        """Log a conflict verdict with the sources that produced evidence."""
        self.log(
            action='CHECK',
            actor='conflict_resolver',
            resource='IpAddress',
            resource_id=ip_address,
            status='conflict' if has_conflict else 'available',
            details={'sources': sources},
        )

    def log_migration_suggestion(
        self,
        host_id: int,
        container_name: str,
        suggested_ip: Optional[str],
        current_ip: Optional[str] = None,
    ) -> None:
        self.log(
            action='SUGGEST',
            actor='migration_planner',
            resource='Container',
            resource_id=container_name,
            status='success' if suggested_ip else 'exhausted',
            details={'host_id': host_id, 'current_ip': current_ip, 'suggested_ip': suggested_ip},
        )


# Global audit logger instance for convenient import
audit = AuditLogger()
