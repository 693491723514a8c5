"""
Typed runtime settings built from the YAML configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from contact_bridge.api.carddav_client import (
    DEFAULT_INITIAL_RETRY_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    DEFAULT_TIMEOUT,
    ICLOUD_CARDDAV_URL,
    CardDAVClient,
)
from contact_bridge.sync.engine import SyncOrchestrator
from contact_bridge.sync.group import DEFAULT_GROUP_NAME
from contact_bridge.sync.reconciler import DEFAULT_WRITE_DELAY
from contact_bridge.sync.vcard import DEFAULT_ORGANIZATION
from contact_bridge.utils import resolve_config_dir

# Default contact store file name inside the config directory
DEFAULT_DATABASE_FILE = "contacts.db"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@dataclass(frozen=True)
class BridgeSettings:
    """
    Settings for one contact-bridge process.

    Usage:
        config = ConfigLoader(config_dir).load()
        settings = BridgeSettings.from_config(config, config_dir)
        orchestrator = settings.build_orchestrator()
    """

    config_dir: Path
    database_path: Path
    server_url: str = ICLOUD_CARDDAV_URL
    group_name: str = DEFAULT_GROUP_NAME
    organization: str = DEFAULT_ORGANIZATION
    write_delay: float = DEFAULT_WRITE_DELAY
    request_timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY
    max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_file: Optional[Path] = None

    @classmethod
    def from_config(
        cls, config: dict[str, Any], config_dir: Path | str | None = None
    ) -> BridgeSettings:
        """
        Build settings from a validated configuration dictionary.

        Relative database and log paths are resolved against config_dir.
        """
        resolved_dir = resolve_config_dir(config_dir)

        def _path(value: Optional[str]) -> Optional[Path]:
            if not value:
                return None
            path = Path(value).expanduser()
            return path if path.is_absolute() else resolved_dir / path

        return cls(
            config_dir=resolved_dir,
            database_path=_path(config.get("database_path"))
            or resolved_dir / DEFAULT_DATABASE_FILE,
            server_url=config.get("server_url", ICLOUD_CARDDAV_URL),
            group_name=config.get("group_name", DEFAULT_GROUP_NAME),
            organization=config.get("organization", DEFAULT_ORGANIZATION),
            write_delay=float(config.get("write_delay", DEFAULT_WRITE_DELAY)),
            request_timeout=float(config.get("request_timeout", DEFAULT_TIMEOUT)),
            max_retries=config.get("max_retries", DEFAULT_MAX_RETRIES),
            initial_retry_delay=float(
                config.get("initial_retry_delay", DEFAULT_INITIAL_RETRY_DELAY)
            ),
            max_retry_delay=float(
                config.get("max_retry_delay", DEFAULT_MAX_RETRY_DELAY)
            ),
            host=config.get("host", DEFAULT_HOST),
            port=config.get("port", DEFAULT_PORT),
            log_file=_path(config.get("log_file")),
        )

    def build_client(self) -> CardDAVClient:
        """Create a fresh CardDAV client for one request."""
        return CardDAVClient(
            server_url=self.server_url,
            timeout=self.request_timeout,
            max_retries=self.max_retries,
            initial_retry_delay=self.initial_retry_delay,
            max_retry_delay=self.max_retry_delay,
        )

    def build_orchestrator(self) -> SyncOrchestrator:
        """Create a SyncOrchestrator using these settings."""
        return SyncOrchestrator(
            client_factory=self.build_client,
            group_name=self.group_name,
            organization=self.organization,
            write_delay=self.write_delay,
        )
