"""Configuration for the MyMe sync layer.

Settings are read from ``~/.myme/config.json`` and overridden by
``MYME_*`` environment variables. ``MYME_CONFIG_DIR`` relocates the whole
config directory (tokens, queue database, config file).
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_ENV_PREFIX = "MYME_"


def get_config_dir() -> Path:
    """Get/create the config directory."""
    override = os.environ.get(f"{_ENV_PREFIX}CONFIG_DIR")
    config_dir = Path(override).expanduser() if override else Path.home() / ".myme"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_path() -> Path:
    return get_config_dir() / "config.json"


class Settings(BaseSettings):
    """MyMe settings."""

    model_config = SettingsConfigDict(env_prefix=_ENV_PREFIX, extra="ignore")

    # OAuth clients
    github_client_id: str | None = None
    github_client_secret: str | None = None
    google_client_id: str | None = None
    google_client_secret: str | None = None

    # OAuth callback listener
    oauth_callback_port: int = Field(default=8080, ge=1, le=65535)
    oauth_port_range: int = Field(default=10, ge=1)
    oauth_callback_timeout: float = Field(default=300.0, gt=0)

    # HTTP
    http_timeout: float = Field(default=15.0, gt=0)
    retry_max_retries: int = Field(default=3, ge=0)
    retry_initial_delay_ms: int = Field(default=100, ge=0)
    retry_max_delay_ms: int = Field(default=5000, ge=0)

    # Offline queue
    queue_max_attempts: int = Field(default=5, ge=1)
    queue_replay_interval: float = Field(default=30.0, gt=0)

    # Repos
    repos_local_search_path: str = "~/dev"
    repos_max_depth: int = Field(default=5, ge=0)
    github_cache_ttl: float = Field(default=60.0, ge=0)

    log_level: str = "INFO"

    @property
    def repos_path(self) -> Path:
        return Path(self.repos_local_search_path).expanduser()

    def oauth_client(self, service: str) -> tuple[str, str]:
        """Return (client_id, client_secret) for a service, or ("", "")."""
        client_id = getattr(self, f"{service}_client_id", None) or ""
        client_secret = getattr(self, f"{service}_client_secret", None) or ""
        return client_id, client_secret

    @classmethod
    def load(cls) -> Settings:
        """Load settings from the config file; env vars take precedence."""
        path = get_config_path()
        data: dict = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to read %s: %s", path, e)
        data = {
            key: value
            for key, value in data.items()
            if f"{_ENV_PREFIX}{key.upper()}" not in os.environ
        }
        return cls(**data)

    def save(self) -> None:
        """Write settings to the config file (0600, it may hold client secrets)."""
        path = get_config_path()
        path.write_text(json.dumps(self.model_dump(), indent=2))
        try:
            path.chmod(0o600)
        except OSError:
            pass


@lru_cache
def get_settings() -> Settings:
    return Settings.load()
