# Shared fixtures for the MyMe test suite.
# Created: 2026-09-04

import time

import httpx
import pytest

from myme.auth.token_store import TokenSet, TokenStore
from myme.config import Settings, get_settings
from myme.net.retry import RequestExecutor, RetryConfig


@pytest.fixture(autouse=True)
def isolated_config_dir(tmp_path, monkeypatch):
    """Point ~/.myme at a temp dir so no test touches the real home."""
    config_dir = tmp_path / "myme-config"
    monkeypatch.setenv("MYME_CONFIG_DIR", str(config_dir))
    get_settings.cache_clear()
    yield config_dir
    get_settings.cache_clear()


@pytest.fixture
def token_store(tmp_path):
    return TokenStore(base_dir=tmp_path / "tokens")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        github_client_id="gh-id",
        github_client_secret="gh-secret",
        google_client_id="g-id",
        google_client_secret="g-secret",
        repos_local_search_path=str(tmp_path / "dev"),
        retry_initial_delay_ms=0,
        retry_max_delay_ms=0,
    )


async def _no_sleep(_delay):
    return None


@pytest.fixture
def make_executor():
    """Build a RequestExecutor backed by an httpx.MockTransport that never sleeps."""

    def factory(handler, max_retries=3) -> RequestExecutor:
        return RequestExecutor(
            RetryConfig(max_retries=max_retries, initial_delay=0.0, max_delay=0.0),
            transport=httpx.MockTransport(handler),
            sleep=_no_sleep,
        )

    return factory


@pytest.fixture
def make_tokens():
    def factory(**overrides) -> TokenSet:
        data = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_at": int(time.time()) + 3600,
            "scopes": ["repo"],
        }
        data.update(overrides)
        return TokenSet(**data)

    return factory
