"""Parsers for docker CLI output.

Handles the pipe-delimited ``docker ps`` listing, the port-mapping grammar
(``[hostIp:]hostPort->containerPort/protocol`` or ``containerPort/protocol``)
and the JSON fragments emitted by ``docker inspect --format '{{json ...}}'``.
"""

import json
import logging
import re
from ipaddress import ip_network
from typing import Dict, Iterator, List, Optional, Tuple

from .base import (
    BaseParser,
    DiscoveredContainer,
    NetworkAttachment,
    ParseResult,
    PortMapping,
    normalize_mac,
)

logger = logging.getLogger(__name__)

# Field order must match the listing format below
PS_FIELDS = ("container_id", "name", "image", "status", "ports", "created")
PS_FORMAT = "{{.ID}}|{{.Names}}|{{.Image}}|{{.Status}}|{{.Ports}}|{{.CreatedAt}}"

_PORT_RE = re.compile(r"^(?P<port>\d+)(?:-(?P<port_end>\d+))?(?:/(?P<proto>[a-z]+))?$")


class PortMappingError(ValueError):
    """A single port entry did not match the mapping grammar."""


def _parse_port_range(value: str) -> Tuple[int, int, Optional[str]]:
    match = _PORT_RE.match(value.strip())
    if not match:
        raise PortMappingError(f"Invalid port '{value}'")
    start = int(match.group("port"))
    end = int(match.group("port_end") or start)
    if end < start or start > 65535 or end > 65535:
        raise PortMappingError(f"Invalid port range '{value}'")
    return start, end, match.group("proto")


def parse_port_mapping(entry: str) -> List[PortMapping]:
    """
    Parse one port entry from ``docker ps``.

    ``0.0.0.0:8080->80/tcp`` publishes one port; ``443/tcp`` is exposed but
    unpublished; ``0.0.0.0:8000-8001->8000-8001/tcp`` expands to one mapping
    per port. Protocol defaults to ``tcp``.

    Raises:
        PortMappingError: if the entry does not match the grammar
    """
    entry = entry.strip()
    if not entry:
        raise PortMappingError("Empty port entry")

    if "->" not in entry:
        start, end, proto = _parse_port_range(entry)
        return [PortMapping(container_port=p, protocol=proto or "tcp") for p in range(start, end + 1)]

    host_part, container_part = entry.split("->", 1)
    c_start, c_end, proto = _parse_port_range(container_part)

    host_ip = None
    host_port_str = host_part
    if ":" in host_part:
        host_ip, _, host_port_str = host_part.rpartition(":")
        host_ip = host_ip.strip("[]") or "::"
    h_start, h_end, _ = _parse_port_range(host_port_str)

    if (h_end - h_start) != (c_end - c_start):
        raise PortMappingError(f"Mismatched port ranges in '{entry}'")

    return [
        PortMapping(
            container_port=c_start + offset,
            protocol=proto or "tcp",
            host_port=h_start + offset,
            host_ip=host_ip,
        )
        for offset in range(c_end - c_start + 1)
    ]


def format_port_mapping(mapping: PortMapping) -> str:
    """Render a mapping back into the ``docker ps`` grammar."""
    container = f"{mapping.container_port}/{mapping.protocol}"
    if mapping.host_port is None:
        return container
    host = str(mapping.host_port)
    if mapping.host_ip:
        host = f"{mapping.host_ip}:{host}"
    return f"{host}->{container}"


def parse_ports(port_string: str, warnings: Optional[List[str]] = None) -> List[PortMapping]:
    """Parse a comma-separated ``docker ps`` port column, skipping bad entries."""
    mappings: List[PortMapping] = []
    seen = set()
    for entry in port_string.split(","):
        if not entry.strip():
            continue
        try:
            parsed = parse_port_mapping(entry)
        except PortMappingError as e:
            logger.warning(f"Skipping malformed port mapping: {e}")
            if warnings is not None:
                warnings.append(str(e))
            continue
        for mapping in parsed:
            # docker lists IPv4 and IPv6 bindings of the same port separately
            key = (mapping.container_port, mapping.protocol, mapping.host_port)
            if key in seen and mapping.host_ip == "::":
                continue
            seen.add(key)
            mappings.append(mapping)
    return mappings


def parse_labels(raw: str) -> Dict[str, str]:
    """Parse ``{{json .Config.Labels}}`` output. ``null`` means no labels."""
    raw = raw.strip()
    if not raw or raw == "null":
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Labels output is not a JSON object")
    return {str(k): "" if v is None else str(v) for k, v in data.items()}


def parse_networks(raw: str) -> List[NetworkAttachment]:
    """Parse ``{{json .NetworkSettings.Networks}}`` output."""
    raw = raw.strip()
    if not raw or raw == "null":
        return []
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Networks output is not a JSON object")

    attachments = []
    for name, settings in data.items():
        settings = settings or {}
        ip_address = settings.get("IPAddress") or None
        if not ip_address:
            # Stopped containers keep their static assignment here
            ipam = settings.get("IPAMConfig") or {}
            ip_address = ipam.get("IPv4Address") or None
        gateway = settings.get("Gateway") or None
        prefix = settings.get("IPPrefixLen") or None
        subnet = None
        if gateway and prefix:
            try:
                subnet = str(ip_network(f"{gateway}/{prefix}", strict=False))
            except ValueError:
                subnet = None
        attachments.append(
            NetworkAttachment(
                network_name=name,
                ip_address=ip_address,
                gateway=gateway,
                mac_address=normalize_mac(settings.get("MacAddress")),
                prefix_length=prefix,
                subnet=subnet,
            )
        )
    return attachments


def parse_network_mode(raw: str) -> Tuple[Optional[str], Optional[str]]:
    """Parse ``{{.HostConfig.NetworkMode}}|{{.NetworkSettings.MacAddress}}``."""
    mode, _, mac = raw.strip().partition("|")
    return (mode.strip() or None), normalize_mac(mac)


def iter_inspect_documents(raw: str) -> Iterator[dict]:
    """
    Yield container objects from bulk ``docker inspect`` output.

    Accepts one object per line (``--format '{{json .}}'``) as well as
    arrays, including several arrays back to back when xargs split the
    container list into batches. Anything else raises ValueError.
    """
    decoder = json.JSONDecoder()
    pos = 0
    while True:
        while pos < len(raw) and raw[pos].isspace():
            pos += 1
        if pos >= len(raw):
            return
        value, pos = decoder.raw_decode(raw, pos)
        for container in value if isinstance(value, list) else [value]:
            if not isinstance(container, dict):
                raise ValueError(f"docker inspect output holds a {type(container).__name__}, not a container")
            yield container


def find_containers_with_ip(raw: str, ip_address: str) -> List[Dict[str, Optional[str]]]:
    """
    Scan bulk ``docker inspect`` JSON for containers holding an address.

    Both running and stopped containers count: a stopped container's
    configured address is reported under ``IPAMConfig``.
    """
    matches = []
    for container in iter_inspect_documents(raw):
        name = (container.get("Name") or "").lstrip("/")
        state = (container.get("State") or {}).get("Status") or "unknown"
        networks = (container.get("NetworkSettings") or {}).get("Networks") or {}
        for network_name, settings in networks.items():
            settings = settings or {}
            ipam = settings.get("IPAMConfig") or {}
            if ip_address in (settings.get("IPAddress"), ipam.get("IPv4Address")):
                matches.append(
                    {
                        "container_id": (container.get("Id") or "")[:12],
                        "name": name,
                        "network": network_name,
                        "mac_address": normalize_mac(settings.get("MacAddress")),
                        "state": state,
                    }
                )
                break
    return matches


class DockerPsParser(BaseParser):
    """Parser for the pipe-delimited ``docker ps -a`` listing."""

    source_type: str = "docker"

    def parse(self, data: str, **kwargs) -> ParseResult:
        result = ParseResult(success=True, source_type=self.source_type)

        if not data or not data.strip():
            # No containers is a valid listing
            return result

        for line_no, line in enumerate(data.strip().splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            parts = line.split("|")
            if len(parts) < len(PS_FIELDS):
                msg = f"Line {line_no}: expected {len(PS_FIELDS)} fields, got {len(parts)}"
                logger.warning(f"Skipping malformed container record: {msg}")
                result.warnings.append(msg)
                continue
            # The creation time is last and never contains a pipe
            container_id, name, image, status, ports = parts[:5]
            created = "|".join(parts[5:]).strip() or None
            result.containers.append(
                DiscoveredContainer(
                    container_id=container_id.strip(),
                    name=name.strip(),
                    image=image.strip(),
                    status=status.strip(),
                    created=created,
                    ports=parse_ports(ports, result.warnings),
                )
            )

        return result
