"""
Load Generation Controller - Configuration

Centralized configuration management using pydantic-settings.

All configuration is loaded from environment variables prefixed with
``LOADGEN_`` (or a ``.env`` file) with sensible defaults.

Environment Variables:
    # Deployment
    LOADGEN_ENV: Environment (development, test, production) - default: production

    # Server
    LOADGEN_SERVER_HOST: Server bind host (default: 0.0.0.0)
    LOADGEN_SERVER_PORT: Server port (default: 8080)
    LOADGEN_LOG_LEVEL: Logging level (default: INFO)
    LOADGEN_LOG_FORMAT: Log format: json or text (default: json)

    # Controller
    LOADGEN_ROOT_DIR: Directory holding the generator store (default: .)
    LOADGEN_STORE_FILENAME: Generator store file name (default: load_generators.yaml)
    LOADGEN_RECURRENCE_PERIOD_MS: Reconciliation period (default: 2000)
    LOADGEN_AUTOSTART: Start every stored generator at boot (default: false)

    # In-memory host
    LOADGEN_LOCAL_HOST_EXECUTORS: Concurrent run limit, unset for unlimited
    LOADGEN_LOCAL_HOST_POLL_INTERVAL_MS: Dispatcher period (default: 100)
    LOADGEN_ENFORCE_PRIVILEGES: Require elevated context for cancel/stop (default: true)

    # Admin
    LOADGEN_ADMIN_TOKEN: Required X-Admin-Token for mutations (unset: no check)

    # Metrics / Observability
    LOADGEN_METRICS_ENABLED: Expose Prometheus metrics (default: true)
    LOADGEN_REQUEST_ID_HEADER: Header name for request ID (default: X-Request-ID)

    # Shutdown
    LOADGEN_GRACEFUL_SHUTDOWN_TIMEOUT_SECONDS: Timeout for graceful shutdown (default: 30)

Usage:
    from loadgen.server.config import get_config

    config = get_config()
    print(config.recurrence_period_ms)
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from loadgen.runtime.controller import DEFAULT_RECURRENCE_PERIOD_MS
from loadgen.runtime.store import STORE_FILENAME


class ControllerConfig(BaseSettings):
    """Controller configuration loaded from environment variables."""

    # =========================================================================
    # Deployment
    # =========================================================================

    env: str = Field(
        default="production",
        description="Environment name (development, test, production)"
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind host"
    )

    server_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Server port"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)"
    )

    # =========================================================================
    # Controller Configuration
    # =========================================================================

    root_dir: str = Field(
        default=".",
        description="Directory holding the generator store"
    )

    store_filename: str = Field(
        default=STORE_FILENAME,
        description="Generator store file name inside root_dir"
    )

    recurrence_period_ms: int = Field(
        default=DEFAULT_RECURRENCE_PERIOD_MS,
        ge=10,
        description="Interval between reconciliation ticks (milliseconds)"
    )

    autostart: bool = Field(
        default=False,
        description="Start every stored generator once loaded"
    )

    # =========================================================================
    # In-memory Host Configuration
    # =========================================================================

    local_host_executors: Optional[int] = Field(
        default=None,
        ge=1,
        description="Concurrent run limit of the in-memory host (None: unlimited)"
    )

    local_host_poll_interval_ms: int = Field(
        default=100,
        ge=1,
        description="Dispatcher period of the in-memory host (milliseconds)"
    )

    enforce_privileges: bool = Field(
        default=True,
        description="Require the elevated context for cancellation and run stop"
    )

    # =========================================================================
    # Admin Configuration
    # =========================================================================

    admin_token: Optional[str] = Field(
        default=None,
        description="Token required in X-Admin-Token for mutating endpoints"
    )

    # =========================================================================
    # Metrics / Observability Configuration
    # =========================================================================

    metrics_enabled: bool = Field(
        default=True,
        description="Expose Prometheus metrics"
    )

    request_id_header: str = Field(
        default="X-Request-ID",
        description="HTTP header name for request ID"
    )

    redact_log_fields: list = Field(
        default=["admin_token", "password", "token"],
        description="Fields to redact in structured logs"
    )

    # =========================================================================
    # Shutdown Configuration
    # =========================================================================

    graceful_shutdown_timeout_seconds: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Timeout for graceful shutdown (seconds)"
    )

    @property
    def store_path(self) -> Path:
        return Path(self.root_dir) / self.store_filename

    class Config:
        """Pydantic configuration."""
        env_prefix = "LOADGEN_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


@lru_cache()
def get_config() -> ControllerConfig:
    """
    Get controller configuration (cached).

    Returns:
        ControllerConfig instance
    """
    return ControllerConfig()


def reload_config() -> ControllerConfig:
    """
    Reload configuration (clears cache).

    Returns:
        Fresh ControllerConfig instance
    """
    get_config.cache_clear()
    return get_config()
