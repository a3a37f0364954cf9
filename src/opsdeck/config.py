"""Application configuration contract."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from opsdeck.errors import ConfigError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    # Execution gateway (runner) process
    runner_host: str = Field(alias="RUNNER_HOST", default="127.0.0.1")
    runner_port: int = Field(alias="RUNNER_PORT", default=8787)
    runner_token: str = Field(alias="RUNNER_TOKEN", default="")
    runner_data_dir: str = Field(alias="RUNNER_DATA_DIR", default="/var/lib/opsdeck/runner")
    runner_default_cwd: str = Field(alias="RUNNER_DEFAULT_CWD", default="")
    runner_shell_timeout_seconds: float = Field(alias="RUNNER_SHELL_TIMEOUT_SECONDS", default=60.0)
    runner_shell_max_output_bytes: int = Field(
        alias="RUNNER_SHELL_MAX_OUTPUT_BYTES", default=5 * 1024 * 1024
    )
    runner_operation_timeout_seconds: float = Field(
        alias="RUNNER_OPERATION_TIMEOUT_SECONDS", default=600.0
    )
    runner_allowed_networks: str = Field(
        alias="RUNNER_ALLOWED_NETWORKS",
        default="127.0.0.0/8,::1/128,172.16.0.0/12,10.0.0.0/8,192.168.0.0/16",
    )
    runner_rate_limit_per_minute: int = Field(alias="RUNNER_RATE_LIMIT_PER_MINUTE", default=120)
    # Each open deploy log stream polls /shell about twice a second.
    runner_shell_rate_limit_per_minute: int = Field(
        alias="RUNNER_SHELL_RATE_LIMIT_PER_MINUTE", default=600
    )

    # Dashboard side: how to reach the runner
    runner_url: str = Field(alias="RUNNER_URL", default="http://127.0.0.1:8787")
    runner_http_timeout_seconds: float = Field(alias="RUNNER_HTTP_TIMEOUT_SECONDS", default=10.0)

    # Container management API (Portainer)
    portainer_url: str = Field(alias="PORTAINER_URL", default="")
    portainer_username: str = Field(alias="PORTAINER_USERNAME", default="")
    portainer_password: str = Field(alias="PORTAINER_PASSWORD", default="")
    portainer_token: str = Field(alias="PORTAINER_TOKEN", default="")
    portainer_token_path: str = Field(
        alias="PORTAINER_TOKEN_PATH", default="/var/lib/opsdeck/portainer_token.json"
    )
    portainer_http_timeout_seconds: float = Field(
        alias="PORTAINER_HTTP_TIMEOUT_SECONDS", default=10.0
    )
    portainer_token_cache_ttl_seconds: float = Field(
        alias="PORTAINER_TOKEN_CACHE_TTL_SECONDS", default=60.0
    )
    portainer_token_validity_hours: float = Field(
        alias="PORTAINER_TOKEN_VALIDITY_HOURS", default=8.0
    )

    # Dashboard session stand-in
    dashboard_token: str = Field(alias="DASHBOARD_TOKEN", default="")
    bind_host: str = Field(alias="BIND_HOST", default="127.0.0.1")
    bind_port: int = Field(alias="BIND_PORT", default=3000)

    # Deploy log streaming
    deploy_log_dir: str = Field(alias="DEPLOY_LOG_DIR", default="/tmp")
    deploy_log_prefix: str = Field(alias="DEPLOY_LOG_PREFIX", default="deploy-")
    deploy_stream_max_polls: int = Field(alias="DEPLOY_STREAM_MAX_POLLS", default=600)
    deploy_stream_poll_seconds: float = Field(alias="DEPLOY_STREAM_POLL_SECONDS", default=1.0)
    deploy_stream_error_backoff_seconds: float = Field(
        alias="DEPLOY_STREAM_ERROR_BACKOFF_SECONDS", default=2.0
    )
    deploy_build_process_pattern: str = Field(
        alias="DEPLOY_BUILD_PROCESS_PATTERN", default="docker compose.*up.*build"
    )


def validate_settings_for_env(settings: Settings) -> None:
    import logging as _logging
    import warnings

    _logger = _logging.getLogger(__name__)

    if settings.runner_host == "0.0.0.0":
        msg = (
            "SECURITY WARNING: RUNNER_HOST=0.0.0.0 exposes the execution gateway on all "
            "interfaces. Requests are still filtered by RUNNER_ALLOWED_NETWORKS, but bind "
            "to a private address where possible."
        )
        _logger.warning(msg)
        warnings.warn(msg, stacklevel=2)

    if settings.app_env != "prod":
        return

    missing: list[str] = []
    required_non_empty = {
        "RUNNER_TOKEN": settings.runner_token,
        "RUNNER_URL": settings.runner_url,
        "PORTAINER_URL": settings.portainer_url,
        "DASHBOARD_TOKEN": settings.dashboard_token,
    }
    for key, value in required_non_empty.items():
        if not value.strip():
            missing.append(key)
    if not settings.portainer_token.strip() and not (
        settings.portainer_username.strip() and settings.portainer_password.strip()
    ):
        missing.append("PORTAINER_TOKEN or PORTAINER_USERNAME/PORTAINER_PASSWORD")
    if len(settings.runner_token.strip()) and len(settings.runner_token.strip()) < 16:
        missing.append("RUNNER_TOKEN(at least 16 characters)")

    if missing:
        keys = ", ".join(sorted(set(missing)))
        raise ValueError(f"invalid production configuration: {keys}")


def require_setting(value: str, name: str) -> str:
    """Return a stripped setting or raise ConfigError naming the env variable."""
    cleaned = value.strip()
    if not cleaned:
        raise ConfigError(f"{name} environment variable is not set")
    return cleaned


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
