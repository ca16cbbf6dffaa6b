"""
Persistent tmux sessions for interactive command execution.

One tmux session per managed host, tracked in an explicit registry:
created when absent, reused while it exists on the remote side, torn down
on request. Each command runs strictly as clear, send, settle, capture,
serialized per host.

Known limitation: the capture is taken after a fixed settle delay, not on
command completion. Output of commands that run longer than the delay is
partial; results are flagged ``may_be_partial``.
"""

import asyncio
import logging
import shlex
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from config import settings
from schemas import TerminalAvailability, TerminalCommandResult
from services.command_sets import TMUX_VERSION
from services.credentials import SshTarget
from services.errors import CommandFailed
from services.remote_executor import RemoteExecutor

logger = logging.getLogger(__name__)


@dataclass
class TerminalSession:
    host_id: int
    name: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    commands_run: int = 0


class TerminalSessionRegistry:
    """Registry of tmux sessions keyed by host id."""

    def __init__(
        self,
        executor: RemoteExecutor,
        settle_delay: Optional[float] = None,
        prefix: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.executor = executor
        self.settle_delay = settings.TERMINAL_SETTLE_DELAY if settle_delay is None else settle_delay
        self.prefix = prefix or settings.TERMINAL_SESSION_PREFIX
        self._sleep = sleep
        self._sessions: Dict[int, TerminalSession] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def session_name(self, host_id: int) -> str:
        return f"{self.prefix}-{host_id}"

    def get(self, host_id: int) -> Optional[TerminalSession]:
        return self._sessions.get(host_id)

    def _lock_for(self, host_id: int) -> asyncio.Lock:
        lock = self._locks.get(host_id)
        if lock is None:
            lock = self._locks[host_id] = asyncio.Lock()
        return lock

    async def check_availability(self, target: SshTarget) -> TerminalAvailability:
        """Is tmux installed on the host? ConnectionFailed propagates."""
        try:
            version = await self.executor.execute(target, TMUX_VERSION)
        except CommandFailed:
            return TerminalAvailability(
                host_id=target.host_id,
                is_available=False,
                message="tmux is not installed on this server",
            )
        return TerminalAvailability(
            host_id=target.host_id,
            is_available=True,
            version=version.strip() or None,
            message="tmux is available",
        )

    async def _ensure_session(self, remote, host_id: int) -> TerminalSession:
        name = self.session_name(host_id)
        session = self._sessions.get(host_id)
        try:
            await remote.run(f"tmux has-session -t {shlex.quote(name)}")
        except CommandFailed:
            # Missing remotely (first use, reboot, or killed by hand)
            await remote.run(f"tmux new-session -d -s {shlex.quote(name)}")
            logger.info(f"Created tmux session {name} for host {host_id}")
            session = None
        if session is None:
            session = self._sessions[host_id] = TerminalSession(host_id=host_id, name=name)
        return session

    async def execute(self, target: SshTarget, command: str) -> TerminalCommandResult:
        """
        Run one command in the host's session and capture the pane.

        Raises:
            ConnectionFailed: host unreachable
            CommandFailed: tmux missing or refused a step
        """
        async with self._lock_for(target.host_id):
            async with self.executor.session(target) as remote:
                session = await self._ensure_session(remote, target.host_id)
                name = shlex.quote(session.name)

                await remote.run(f"tmux send-keys -t {name} clear Enter")
                await remote.run(f"tmux clear-history -t {name}")
                await remote.run(f"tmux send-keys -t {name} {shlex.quote(command)} Enter")
                await self._sleep(self.settle_delay)
                output = await remote.run(f"tmux capture-pane -p -t {name}")

            session.commands_run += 1

        return TerminalCommandResult(
            host_id=target.host_id,
            session_name=session.name,
            output=output,
            settle_delay=self.settle_delay,
        )

    async def close(self, target: SshTarget) -> bool:
        """Tear down the host's session. Returns False if none existed."""
        async with self._lock_for(target.host_id):
            known = self._sessions.pop(target.host_id, None)
            try:
                await self.executor.execute(
                    target, f"tmux kill-session -t {shlex.quote(self.session_name(target.host_id))}"
                )
            except CommandFailed:
                return known is not None
            logger.info(f"Closed tmux session for host {target.host_id}")
            return True
