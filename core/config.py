"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the discovery engine happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. db_url -> DB_URL). Type coercion and validation are built in.

  Explicit wiring: the Collector, DeviceStore and BulkScanOrchestrator never
      read settings themselves. Entry points (main.py, api/main.py) build them
      from a Settings instance and pass the values in at construction time.

Layer rule: core/ is the kernel. This module may not import from api/ or cmdb/.
"""

import getpass
import logging
from datetime import datetime, timezone
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("devdisco.config")

WINRM_TRANSPORTS = ("ntlm", "kerberos", "credssp", "basic", "certificate")


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string means "use the SQLite file next to cmdb/store.py".
    db_url: str = ""
    # Empty string means "ask the operating system who is logged in".
    default_actor: str = ""

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    collect_timeout_seconds: float = 120.0
    asset_tag_registry_key: str = r"HKLM:\SOFTWARE\VWG\Inventory"

    # ------------------------------------------------------------------
    # WinRM (remote targets)
    # ------------------------------------------------------------------

    winrm_port: int = 5985
    winrm_use_ssl: bool = False
    winrm_verify_ssl: bool = True
    winrm_transport: str = "ntlm"
    winrm_username: str = ""
    winrm_password: str = ""

    # ------------------------------------------------------------------
    # Bulk scans
    # ------------------------------------------------------------------

    bulk_max_workers: int = 4
    # Empty string: write the failure report beside the input file.
    failure_report_dir: str = ""

    # ------------------------------------------------------------------
    # Audit retention
    # ------------------------------------------------------------------

    audit_retention_days: int = 365

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject values that would make the engine misbehave at runtime.

        A zero-sized worker pool never drains its queue, and a non-positive
        collection budget fails every target before the first query is sent.
        """
        if self.bulk_max_workers < 1:
            raise ValueError("BULK_MAX_WORKERS must be at least 1.")
        if self.collect_timeout_seconds <= 0:
            raise ValueError("COLLECT_TIMEOUT_SECONDS must be greater than zero.")
        if self.audit_retention_days < 1:
            raise ValueError("AUDIT_RETENTION_DAYS must be at least 1.")
        self.winrm_transport = self.winrm_transport.lower()
        if self.winrm_transport not in WINRM_TRANSPORTS:
            raise ValueError(f"WINRM_TRANSPORT must be one of: {', '.join(WINRM_TRANSPORTS)}")
        if self.winrm_use_ssl and self.winrm_port == 5985:
            logger.warning("WINRM_USE_SSL is set but WINRM_PORT is 5985; the HTTPS listener is normally 5986")
        return self

    def actor(self) -> str:
        """Return the operator identity recorded on audit rows for this process."""
        if self.default_actor:
            return self.default_actor
        try:
            return getpass.getuser()
        except (KeyError, OSError):
            # No login name (e.g. container without a passwd entry)
            return "unknown"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
