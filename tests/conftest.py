from pathlib import Path

import pytest

from opsdeck.config import get_settings
from opsdeck.runner.app import limiter


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("RUNNER_TOKEN", "test-runner-token")
    monkeypatch.setenv("RUNNER_URL", "http://runner.test")
    monkeypatch.setenv("RUNNER_DATA_DIR", str(tmp_path / "runner"))
    monkeypatch.setenv("RUNNER_DEFAULT_CWD", str(tmp_path))
    monkeypatch.setenv("PORTAINER_URL", "http://portainer.test")
    monkeypatch.setenv("PORTAINER_USERNAME", "admin")
    monkeypatch.setenv("PORTAINER_PASSWORD", "secret")
    monkeypatch.setenv("PORTAINER_TOKEN", "")
    monkeypatch.setenv("PORTAINER_TOKEN_PATH", str(tmp_path / "portainer_token.json"))
    monkeypatch.setenv("DASHBOARD_TOKEN", "test-session")
    monkeypatch.setenv("DEPLOY_STREAM_POLL_SECONDS", "0")
    monkeypatch.setenv("DEPLOY_STREAM_ERROR_BACKOFF_SECONDS", "0")
    get_settings.cache_clear()
    limiter.reset()
    yield
    get_settings.cache_clear()
