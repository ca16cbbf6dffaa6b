"""
Credential resolution for managed hosts.

Resolution order: the host's linked SshCredential, then the host's own
username/password/key, then the default SshCredential, then the
configured default username.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import ManagedHost, SshCredential
from services.errors import NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SshTarget:
    """Everything the executor needs to reach one host."""

    host_id: int
    name: str
    address: str
    port: int
    username: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.username}@{self.address}:{self.port}"


async def get_host(db: AsyncSession, host_id: int) -> ManagedHost:
    """Load a managed host or raise NotFound."""
    host = await db.get(ManagedHost, host_id)
    if host is None:
        raise NotFound(f"Server {host_id} not found")
    return host


class CredentialStore:
    """Resolves authentication material for a host from the database."""

    async def resolve(self, db: AsyncSession, host: ManagedHost) -> SshTarget:
        credential: Optional[SshCredential] = None
        if host.credential_id is not None:
            credential = await db.get(SshCredential, host.credential_id)
            if credential is None:
                logger.warning(
                    f"Host {host.name} references missing credential {host.credential_id}"
                )

        if credential is None and not (host.username and (host.password or host.private_key_path)):
            result = await db.execute(
                select(SshCredential).where(SshCredential.is_default.is_(True)).limit(1)
            )
            credential = result.scalar_one_or_none()

        if credential is not None:
            username = credential.username
            password = credential.password
            key_path = credential.private_key_path
            port = host.ssh_port or credential.default_port or settings.SSH_DEFAULT_PORT
        else:
            username = host.username or settings.SSH_DEFAULT_USERNAME
            password = host.password
            key_path = host.private_key_path
            port = host.ssh_port or settings.SSH_DEFAULT_PORT

        return SshTarget(
            host_id=host.id,
            name=host.name,
            address=host.host_address,
            port=port,
            username=username,
            password=password,
            private_key_path=key_path,
        )
