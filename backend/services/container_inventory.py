"""
Container inventory collection.

One ``docker ps`` listing, then three targeted ``docker inspect`` calls per
container (labels as JSON, network attachments as JSON, network mode and
MAC). Every command runs sequentially on the same session. A failed
inspect leaves that part of the container empty; it never drops the
container or aborts the pass.
"""

import logging
from typing import List, Optional

from parsers.base import DiscoveredContainer, ParseResult
from parsers.docker import DockerPsParser, parse_labels, parse_network_mode, parse_networks
from services.command_sets import (
    DOCKER_LABELS,
    DOCKER_NETWORK_MODE,
    DOCKER_NETWORKS,
    DOCKER_PS,
)
from services.credentials import SshTarget
from services.errors import CommandFailed
from services.remote_executor import RemoteExecutor

logger = logging.getLogger(__name__)

WEB_PORTS = frozenset({80, 443, 8080, 3000, 5000, 8000, 9000})


def detect_web_service(container: DiscoveredContainer, host_address: str) -> Optional[str]:
    """Service URL if any published host port is a well-known web port."""
    for mapping in container.ports:
        if mapping.host_port in WEB_PORTS:
            scheme = "https" if mapping.host_port == 443 else "http"
            return f"{scheme}://{host_address}:{mapping.host_port}"
    return None


class ContainerInventory:
    """Enumerates the containers on one host."""

    def __init__(self, executor: RemoteExecutor):
        self.executor = executor
        self.parser = DockerPsParser()

    async def collect(self, runner, host_address: str) -> ParseResult:
        """
        Collect the container inventory over an open session.

        Raises:
            CommandFailed: the listing itself failed (docker missing or not running)
        """
        listing = await runner.run(DOCKER_PS)
        result = self.parser.parse(listing)

        for container in result.containers:
            await self._inspect(runner, container, result.warnings)
            url = detect_web_service(container, host_address)
            container.is_web_service = url is not None
            container.service_url = url

        logger.info(
            f"Collected {len(result.containers)} containers from {host_address}"
            + (f" ({len(result.warnings)} warnings)" if result.warnings else "")
        )
        return result

    async def _inspect(self, runner, container: DiscoveredContainer, warnings: List[str]) -> None:
        cid = container.container_id
        try:
            container.labels = parse_labels(await runner.run(DOCKER_LABELS.format(container_id=cid)))
        except (CommandFailed, ValueError) as e:
            logger.warning(f"Could not read labels for {container.name}: {e}")
            warnings.append(f"{container.name}: labels unavailable")

        try:
            container.networks = parse_networks(
                await runner.run(DOCKER_NETWORKS.format(container_id=cid))
            )
        except (CommandFailed, ValueError) as e:
            logger.warning(f"Could not read networks for {container.name}: {e}")
            warnings.append(f"{container.name}: networks unavailable")

        try:
            container.network_mode, container.mac_address = parse_network_mode(
                await runner.run(DOCKER_NETWORK_MODE.format(container_id=cid))
            )
        except CommandFailed as e:
            logger.warning(f"Could not read network mode for {container.name}: {e}")
            warnings.append(f"{container.name}: network mode unavailable")

        if not container.mac_address:
            macs = [n.mac_address for n in container.networks if n.mac_address]
            container.mac_address = macs[0] if macs else None

    async def discover(self, target: SshTarget) -> ParseResult:
        """Open a session to the host and collect its containers."""
        async with self.executor.session(target) as session:
            return await self.collect(session, target.address)


