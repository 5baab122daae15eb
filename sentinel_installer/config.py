"""Configuration management for the kube installer."""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .cluster import KubeClusterClient, is_transient
from .models import ClusterConfig
from .retry import RetryPolicy


class InstallerSettings(BaseSettings):
    """Installer settings, read from SENTINEL_INSTALLER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SENTINEL_INSTALLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file; in-cluster config is used when unset",
    )
    kube_context: Optional[str] = None
    cache_namespaces: list[str] = Field(
        default_factory=list,
        description="Restrict cache listings of namespaced types to these namespaces",
    )

    # Write Retry Settings
    write_retry_attempts: int = Field(default=3, ge=1)
    write_retry_delay_seconds: float = Field(default=0.5, ge=0)
    write_retry_max_delay_seconds: float = Field(default=5.0, ge=0)

    # Readiness Settings
    crd_poll_delay_seconds: float = Field(default=0.25, ge=0)
    crd_poll_attempts: int = Field(
        default=500,
        ge=1,
        description="Generous budget to absorb image pulls behind new CRDs",
    )
    deployment_poll_delay_seconds: float = Field(default=0.25, ge=0)
    deployment_poll_attempts: int = Field(default=100, ge=1)

    # Concurrency Settings
    max_concurrency: int = Field(
        default=16,
        ge=1,
        description="Maximum concurrent writes within one kind group",
    )

    def write_retry_policy(self) -> RetryPolicy:
        """Retry policy for create, update and delete calls."""
        return RetryPolicy(
            attempts=self.write_retry_attempts,
            delay=self.write_retry_delay_seconds,
            max_delay=self.write_retry_max_delay_seconds,
            retryable=is_transient,
        )

    def cluster_config(self) -> ClusterConfig:
        return ClusterConfig(kubeconfig_path=self.kubeconfig_path, context=self.kube_context)

    def cluster_client(self) -> KubeClusterClient:
        """Connect to the cluster named by the kubeconfig settings."""
        return KubeClusterClient.from_config(self.cluster_config())


def configure_logging(settings: Optional[InstallerSettings] = None) -> None:
    """Configure root logging for processes embedding the installer."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@lru_cache
def get_settings() -> InstallerSettings:
    """Get cached settings instance."""
    return InstallerSettings()
