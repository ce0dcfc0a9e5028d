"""Configuration management for the LB Controller."""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from glbc_pools import ClusterManagerConfig


class RunMode(str, Enum):
    """How the controller reaches the Kubernetes API and the cloud."""

    IN_CLUSTER = "in_cluster"
    OUT_OF_CLUSTER = "out_of_cluster"
    PROXY = "proxy"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Service Settings
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8081

    # Controller Settings
    cluster_name: str = Field(
        default="foo",
        description="Tag prefixed to every cloud resource name owned by this controller",
    )
    run_mode: RunMode = Field(
        default=RunMode.IN_CLUSTER,
        description="in_cluster, out_of_cluster or proxy; only in_cluster drives the real cloud",
    )
    resync_period_seconds: float = 30.0
    delete_all_on_quit: bool = False
    ingress_class: str = "gce"

    # Load Balancer Settings
    default_backend_node_port: int = Field(
        ...,
        description="Node port of the default backend service, required",
    )
    health_check_path: str = "/"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = None
    kube_context: Optional[str] = None
    proxy_url: str = Field(
        default="http://127.0.0.1:8001",
        description="Local API relay used in proxy mode (kubectl proxy)",
    )

    # GCE Settings
    gce_project: Optional[str] = None
    gce_zone: str = "us-central1-b"

    def cluster_manager_config(self) -> ClusterManagerConfig:
        """Build the pool configuration from these settings."""
        return ClusterManagerConfig(
            cluster_name=self.cluster_name,
            default_backend_node_port=self.default_backend_node_port,
            health_check_path=self.health_check_path,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
