"""
Operator settings using Pydantic.

Provides environment-based configuration loading with CCOPERATOR_ prefix.
"""

from datetime import timedelta
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Operator settings."""

    # Reconciliation
    namespace: str = "kafka"
    requeue_interval_seconds: float = 10.0
    retry_backoff_seconds: float = 30.0
    failed_tasks_history_max_length: int = 50

    # Status write conflicts
    conflict_retry_attempts: int = 5
    conflict_retry_initial_seconds: float = 0.01
    conflict_retry_max_seconds: float = 1.0

    # Work queue
    max_concurrent_reconciles: int = 1
    error_backoff_base_seconds: float = 0.005
    error_backoff_max_seconds: float = 1000.0

    # Kubernetes
    kubeconfig: str | None = None
    kube_context: str | None = None
    resync_interval_seconds: float = 30.0

    # Cruise Control
    cruise_control_url_template: str = (
        "http://{name}-cruisecontrol-svc.{namespace}.svc.cluster.local:8090"
    )

    # HTTP client settings
    http_timeout: float = 30.0
    http_max_retries: int = 3
    http_retry_backoff_factor: float = 2.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "CCOPERATOR_"

    @property
    def requeue_interval(self) -> timedelta:
        return timedelta(seconds=self.requeue_interval_seconds)

    @property
    def retry_backoff(self) -> timedelta:
        return timedelta(seconds=self.retry_backoff_seconds)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
