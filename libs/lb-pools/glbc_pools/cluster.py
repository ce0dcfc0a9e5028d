"""Cluster manager: the pools wired to one set of cloud interfaces."""

import logging
from dataclasses import dataclass
from typing import Optional

from .backends import BackendPool
from .cloud.fake import FakeCloud
from .cloud.interfaces import BackendServices, InstanceGroups, LoadBalancers, SingleHealthCheck
from .errors import ConfigurationError, raise_if_errors
from .healthchecks import HealthChecker
from .instances import NodePool
from .loadbalancers import LoadBalancerPool
from .models import ClusterManagerConfig
from .naming import KEY_SEPARATOR, Namer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CloudInterfaces:
    """The four capability interfaces a cluster manager drives."""

    instance_groups: InstanceGroups
    backend_services: BackendServices
    health_checks: SingleHealthCheck
    load_balancers: LoadBalancers

    @classmethod
    def from_cloud(cls, cloud) -> "CloudInterfaces":
        """Use one object implementing every interface, like FakeCloud or GCECloud."""
        return cls(
            instance_groups=cloud,
            backend_services=cloud,
            health_checks=cloud,
            load_balancers=cloud,
        )


class ClusterManager:
    """
    Aggregates the Node, Backend, Health Check and Load Balancer pools.

    Holds no reconciliation logic of its own: the controller calls the pools
    in dependency order.
    """

    def __init__(self, config: ClusterManagerConfig, cloud: CloudInterfaces):
        """
        Initialize cluster manager.

        Args:
            config: Shared pool configuration
            cloud: Cloud interfaces, real or fake

        Raises:
            ConfigurationError: If the default backend node port is not set or
                the cluster name is empty or contains the name separator
        """
        if config.default_backend_node_port <= 0:
            raise ConfigurationError(
                f"A default backend node port is required, got {config.default_backend_node_port}"
            )
        if not config.cluster_name:
            raise ConfigurationError("A cluster name is required")
        if KEY_SEPARATOR in config.cluster_name:
            raise ConfigurationError(
                f"Cluster name {config.cluster_name!r} must not contain {KEY_SEPARATOR!r}"
            )

        self.config = config
        self.cloud = cloud
        self.namer = Namer(config.cluster_name)

        self.instance_pool = NodePool(cloud.instance_groups, self.namer)
        self.health_checker = HealthChecker(cloud.health_checks, self.namer, config)
        self.backend_pool = BackendPool(
            cloud.backend_services,
            self.instance_pool,
            self.health_checker,
            self.namer,
        )
        self.l7_pool = LoadBalancerPool(
            cloud.load_balancers,
            self.backend_pool,
            self.namer,
            config.default_backend_node_port,
        )

    @classmethod
    def for_gce(
        cls, config: ClusterManagerConfig, project: Optional[str], zone: str
    ) -> "ClusterManager":
        """
        Build a cluster manager driving Google Compute Engine.

        Raises:
            ConfigurationError: If the configuration is invalid or the compute
                clients cannot be constructed
        """
        if config.default_backend_node_port <= 0:
            raise ConfigurationError(
                f"A default backend node port is required, got {config.default_backend_node_port}"
            )
        from .cloud.gce import GCECloud

        return cls(config, CloudInterfaces.from_cloud(GCECloud.create(project, zone)))

    def shutdown(self) -> None:
        """
        Delete every cloud resource of this cluster.

        Tears down load balancers, then backends and health checks, then the
        instance group. Every pool is attempted even if an earlier one failed.

        Raises:
            AggregateError: With every pool failure
        """
        errors: list[Exception] = []
        for name, pool in (
            ("loadbalancers", self.l7_pool),
            ("backends", self.backend_pool),
            ("instance groups", self.instance_pool),
        ):
            try:
                logger.info(f"Shutting down {name}")
                pool.shutdown()
            except Exception as e:
                logger.error(f"Failed to shut down {name}: {e}")
                errors.append(e)
        raise_if_errors("shutdown", errors)


def new_fake_cluster_manager(
    config: ClusterManagerConfig, cloud: Optional[FakeCloud] = None
) -> tuple[ClusterManager, FakeCloud]:
    """
    Build a cluster manager over an in-memory cloud.

    Returns:
        Tuple of (cluster manager, fake cloud)
    """
    cloud = cloud or FakeCloud()
    return ClusterManager(config, CloudInterfaces.from_cloud(cloud)), cloud
