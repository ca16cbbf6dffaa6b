from .ssh_credential import SshCredential
from .managed_host import ManagedHost, HostStatus
from .subnet import Subnet
from .network_device import NetworkDevice, DeviceType, DeviceStatus, DiscoverySource
from .device_history import DeviceHistory, DeviceEvent
from .host_health import HostHealthCheck, HostAlert, AlertType, AlertSeverity

__all__ = [
    "SshCredential",
    "ManagedHost",
    "HostStatus",
    "Subnet",
    "NetworkDevice",
    "DeviceType",
    "DeviceStatus",
    "DiscoverySource",
    "DeviceHistory",
    "DeviceEvent",
    "HostHealthCheck",
    "HostAlert",
    "AlertType",
    "AlertSeverity",
]
