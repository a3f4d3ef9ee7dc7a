# sitemetrics/config.py

import logging
from typing import Any, Callable, Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Not registered with the logging manager
_noop_logger = logging.Logger("sitemetrics.noop")
_noop_logger.addHandler(logging.NullHandler())
_noop_logger.propagate = False
_noop_logger.disabled = True


def noop_logger() -> logging.Logger:
    """Logger that swallows everything"""
    return _noop_logger


class MetricsSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SITEMETRICS_",
        extra="forbid",
    )

    # Persistence
    data_dir: str = "data/metrics"

    # Development mode enables info-level housekeeping logs
    is_development: bool = False

    # Injected logger, never read from the environment
    logger_factory: Callable[[], logging.Logger] = Field(default=noop_logger, exclude=True)

    # Background jobs
    cleanup_interval_ms: int = 3_600_000
    persist_interval_ms: int = 300_000

    # Final persist through atexit
    register_shutdown_hook: bool = False

    # Operator's own domain, counted as internal traffic
    site_domain: Optional[str] = None

    # Event stream
    metrics_broadcast_interval_seconds: int = 5
    heartbeat_interval_seconds: int = 30
    stream_buffer_size: int = Field(default=100, gt=0)
    stream_poll_seconds: float = 1.0

    @property
    def internal_domains(self) -> tuple:
        if self.site_domain:
            return (self.site_domain.lower(), "localhost")
        return ("localhost",)


_overrides: Dict[str, Any] = {}


def configure_metrics(**options: Any) -> None:
    """
    Merge options into the process configuration.
    Later calls override earlier ones key by key.
    """
    _overrides.update(options)


def get_metrics_config() -> MetricsSettings:
    """Resolve overrides over environment over defaults"""
    return MetricsSettings(**_overrides)


def reset_metrics_config() -> None:
    """Drop all overrides (tests)"""
    _overrides.clear()
