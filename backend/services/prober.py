"""Ordered-candidate command probing across heterogeneous hosts."""

import logging
from typing import Iterable, Optional, Protocol

from services.errors import CommandFailed

logger = logging.getLogger(__name__)


class CommandRunner(Protocol):
    async def run(self, command: str) -> str: ...


class CommandProber:
    """
    Runs candidate commands in order until one returns non-empty output.

    Remaining candidates are never run once one succeeds. A failed or empty
    candidate moves on to the next; if all fail, the capability is unknown
    (None), which is not an error. ConnectionFailed is not caught: a dead
    session makes every remaining candidate pointless.
    """

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    async def probe(self, candidates: Iterable[str]) -> Optional[str]:
        for command in candidates:
            try:
                output = await self.runner.run(command)
            except CommandFailed as e:
                logger.debug(f"Probe candidate failed: {e}")
                continue
            if output and output.strip():
                return output
            logger.debug(f"Probe candidate returned no output: {command!r}")
        return None

    async def succeeds(self, command: str) -> bool:
        """True if the command exits zero (output may be empty)."""
        try:
            await self.runner.run(command)
        except CommandFailed:
            return False
        return True
