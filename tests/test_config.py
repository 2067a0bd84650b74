# Tests for config.py, errors.py and logging_setup.py
# Created: 2026-09-04

import json
import logging

import pytest

from myme.config import Settings, get_config_dir, get_config_path, get_settings
from myme.errors import (
    AuthFailure,
    CsrfMismatch,
    ErrorKind,
    OperationCancelled,
    PermanentError,
    StorageFailure,
    TransientError,
    user_message_for,
)
from myme.logging_setup import setup_logging


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.oauth_callback_port == 8080
        assert settings.oauth_port_range == 10
        assert settings.http_timeout == 15.0
        assert settings.queue_max_attempts == 5
        assert settings.oauth_client("github") == ("", "")

    def test_config_dir_override(self, isolated_config_dir):
        assert get_config_dir() == isolated_config_dir
        assert isolated_config_dir.is_dir()
        assert get_config_path() == isolated_config_dir / "config.json"

    def test_load_from_file(self, isolated_config_dir):
        get_config_path().write_text(
            json.dumps({"github_client_id": "from-file", "repos_max_depth": 2})
        )
        settings = Settings.load()
        assert settings.github_client_id == "from-file"
        assert settings.repos_max_depth == 2

    def test_env_overrides_file(self, isolated_config_dir, monkeypatch):
        get_config_path().write_text(json.dumps({"github_client_id": "from-file"}))
        monkeypatch.setenv("MYME_GITHUB_CLIENT_ID", "from-env")
        assert Settings.load().github_client_id == "from-env"

    def test_corrupt_file_falls_back_to_defaults(self, isolated_config_dir):
        get_config_path().write_text("{oops")
        assert Settings.load().oauth_callback_port == 8080

    def test_save_is_private(self, isolated_config_dir):
        Settings(google_client_secret="s3cret").save()
        path = get_config_path()
        assert path.stat().st_mode & 0o777 == 0o600
        assert json.loads(path.read_text())["google_client_secret"] == "s3cret"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_invalid_port_rejected(self):
        with pytest.raises(ValueError):
            Settings(oauth_callback_port=0)

    def test_repos_path_expands_user(self):
        assert "~" not in str(Settings(repos_local_search_path="~/code").repos_path)


class TestErrors:
    def test_kinds(self):
        assert AuthFailure("x").kind is ErrorKind.AUTH
        assert CsrfMismatch().kind is ErrorKind.AUTH
        assert TransientError("x").retryable is True
        assert PermanentError("x").retryable is False
        assert StorageFailure("x").kind is ErrorKind.STORAGE

    def test_user_message_depends_on_kind_only(self):
        a = TransientError("GET https://api.example.com: HTTP 503 <html>")
        b = TransientError("something else entirely")
        assert a.user_message() == b.user_message()
        assert "503" not in a.user_message()

    def test_user_message_for_any_exception(self):
        assert user_message_for(OperationCancelled()) == "The operation was cancelled."
        assert user_message_for(ValueError("x")) == "Something went wrong. Please try again."

    def test_csrf_message(self):
        assert "CSRF" in str(CsrfMismatch())


class TestLogging:
    def test_setup_is_idempotent(self):
        root = logging.getLogger()
        before = list(root.handlers)
        try:
            setup_logging("DEBUG")
            count = len(root.handlers)
            setup_logging("WARNING")
            assert len(root.handlers) == count
            assert root.level == logging.WARNING
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            for handler in list(root.handlers):
                if handler not in before:
                    root.removeHandler(handler)
