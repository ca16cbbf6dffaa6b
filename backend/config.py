from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


def _load_version() -> str:
    version_path = Path(__file__).resolve().parent / "VERSION"
    try:
        return version_path.read_text().strip()
    except FileNotFoundError:
        return "0.1.0"


class Settings(BaseSettings):
    """Application configuration using Pydantic settings."""

    # Database
    DATABASE_URL: str = "sqlite:///./data/homelab.db"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]

    # Application
    APP_NAME: str = "Homelab Discovery"
    APP_VERSION: str = _load_version()
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── Remote shell ───────────────────────────────────────────────────
    SSH_CONNECT_TIMEOUT: float = 30.0
    SSH_COMMAND_TIMEOUT: float = 60.0
    SSH_DEFAULT_USERNAME: str = "root"
    SSH_DEFAULT_PORT: int = 22
    # None = host keys are not verified (homelab default)
    SSH_KNOWN_HOSTS: Optional[str] = None

    # ── Multi-host fan-out ─────────────────────────────────────────────
    SYNC_MAX_CONCURRENT_HOSTS: int = 5
    HOST_OPERATION_TIMEOUT: float = 120.0
    CONFLICT_HOST_TIMEOUT: float = 45.0

    # Reachability probe (single ICMP echo)
    PING_COMMAND: str = "ping"
    PING_TIMEOUT_SECONDS: int = 1

    # ── Optional text enrichment (Ollama-compatible API) ───────────────
    ENRICHMENT_URL: Optional[str] = None
    ENRICHMENT_MODEL: str = "llama3.2"
    ENRICHMENT_TIMEOUT: float = 60.0

    # ── Persistent terminal sessions (tmux) ────────────────────────────
    TERMINAL_SESSION_PREFIX: str = "homelab"
    TERMINAL_SETTLE_DELAY: float = 2.0

    # ── Container migration ────────────────────────────────────────────
    MIGRATION_RANGE_START: str = "192.168.4.100"
    MIGRATION_RANGE_END: str = "192.168.4.249"
    MIGRATION_TARGET_NETWORK: str = "bond0"

    # Host status thresholds (percent used)
    HOST_WARNING_MEMORY_PERCENT: float = 80.0
    HOST_CRITICAL_MEMORY_PERCENT: float = 90.0
    HOST_WARNING_DISK_PERCENT: float = 90.0
    HOST_CRITICAL_DISK_PERCENT: float = 95.0
    HOST_WARNING_CPU_PERCENT: float = 80.0
    HOST_CRITICAL_CPU_PERCENT: float = 90.0

    # Health alerts: raised above ALERT_USAGE_PERCENT, critical above ALERT_CRITICAL_PERCENT
    ALERT_USAGE_PERCENT: float = 85.0
    ALERT_CRITICAL_PERCENT: float = 95.0

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
