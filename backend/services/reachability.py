"""Active reachability probe: one ICMP echo from the engine's own host."""

import asyncio
import logging
from typing import Optional

from config import settings
from parsers.ping import PingParser, PingReply

logger = logging.getLogger(__name__)


class ReachabilityProbe:
    """Sends a single ping to an address and reports whether it answered."""

    def __init__(self, command: Optional[str] = None, timeout_seconds: Optional[int] = None):
        self.command = command or settings.PING_COMMAND
        self.timeout_seconds = timeout_seconds or settings.PING_TIMEOUT_SECONDS
        self.parser = PingParser()

    async def ping(self, ip_address: str) -> PingReply:
        """
        Ping once. Any local failure to run ping reports "no answer";
        the probe is one source among several and must not fail the check.
        """
        cmd = [self.command, "-c", "1", "-W", str(self.timeout_seconds), ip_address]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Could not run {self.command}: {e}")
            return PingReply(target=ip_address)

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds + 2
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.debug(f"Ping to {ip_address} did not finish in time")
            return PingReply(target=ip_address)

        reply = self.parser.parse(stdout.decode(errors="replace"))
        reply.target = reply.target or ip_address
        if process.returncode != 0:
            reply.packets_received = 0
        return reply
