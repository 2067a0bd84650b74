# Token Store - file-based OAuth token persistence at ~/.myme/tokens/.
# Created: 2026-09-02
#
# One JSON file per service. Files are human-readable but chmod 0600 and
# never logged. Writes go through a temp file + rename under a lock so
# concurrent readers never see a half-written token.

from __future__ import annotations

import json
import logging
import os
import stat
import threading
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from myme.config import get_config_dir
from myme.errors import StorageFailure, TokenNotFound

logger = logging.getLogger(__name__)

# Refresh this many seconds before the server-reported expiry.
REFRESH_MARGIN = 300


@dataclass
class TokenSet:
    """OAuth 2.0 token set for a service."""

    access_token: str
    refresh_token: str | None = None
    expires_at: int = 0  # absolute unix timestamp
    scopes: list[str] = field(default_factory=list)
    token_type: str = "Bearer"
    extra: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at

    def needs_refresh(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at - REFRESH_MARGIN

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=int(data.get("expires_at", 0)),
            scopes=list(data.get("scopes", [])),
            token_type=data.get("token_type", "Bearer"),
            extra=dict(data.get("extra", {})),
        )

    def __repr__(self) -> str:
        # Keep secrets out of logs and tracebacks.
        return (
            f"TokenSet(expires_at={self.expires_at}, scopes={self.scopes!r}, "
            f"has_refresh_token={self.refresh_token is not None})"
        )


def _get_token_dir() -> Path:
    """Get/create the token directory."""
    d = get_config_dir() / "tokens"
    d.mkdir(parents=True, exist_ok=True)
    return d


class TokenStore:
    """File-based token store at ~/.myme/tokens/{service}.json."""

    def __init__(self, base_dir: Path | None = None):
        self._base_dir = base_dir
        self._write_lock = threading.Lock()

    def _dir(self) -> Path:
        if self._base_dir is None:
            return _get_token_dir()
        self._base_dir.mkdir(parents=True, exist_ok=True)
        return self._base_dir

    def _path(self, service: str) -> Path:
        return self._dir() / f"{service}.json"

    def store(self, service: str, tokens: TokenSet) -> None:
        """Persist tokens for a service, replacing any previous set."""
        path = self._path(service)
        tmp = path.with_suffix(".tmp")
        with self._write_lock:
            try:
                tmp.write_text(json.dumps(tokens.to_dict(), indent=2))
                os.chmod(tmp, stat.S_IRUSR | stat.S_IWUSR)
                tmp.replace(path)
            except OSError as e:
                if tmp.exists():
                    tmp.unlink()
                raise StorageFailure(f"Failed to store token for {service}: {e}") from e
        logger.info("Stored OAuth token for %s", service)

    def retrieve(self, service: str) -> TokenSet:
        """Load tokens for a service. Raises TokenNotFound if none are stored."""
        path = self._path(service)
        if not path.exists():
            raise TokenNotFound(service)
        try:
            tokens = TokenSet.from_dict(json.loads(path.read_text()))
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StorageFailure(f"Failed to read token for {service}: {e}") from e
        logger.info("Retrieved OAuth token for %s", service)
        return tokens

    def delete(self, service: str) -> None:
        """Delete tokens for a service. Deleting a missing token is a no-op."""
        path = self._path(service)
        with self._write_lock:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageFailure(f"Failed to delete token for {service}: {e}") from e
        logger.info("Deleted OAuth token for %s", service)

    def has(self, service: str) -> bool:
        return self._path(service).exists()

    def list_services(self) -> list[str]:
        """List all services with stored tokens."""
        return sorted(f.stem for f in self._dir().glob("*.json"))
