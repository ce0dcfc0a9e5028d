"""GLBC pools - cloud load balancer resources synced from Kubernetes state."""

from .backends import BackendPool
from .cloud import (
    BackendServices,
    FakeCall,
    FakeCloud,
    FakeCloudStore,
    InstanceGroups,
    LoadBalancers,
    SingleHealthCheck,
)
from .cluster import CloudInterfaces, ClusterManager, new_fake_cluster_manager
from .errors import (
    AggregateError,
    AlreadyExistsError,
    CloudError,
    ConfigurationError,
    ConflictError,
    GLBCError,
    MissingDependencyError,
    NotFoundError,
    ResourceInUseError,
    TransientCloudError,
    raise_if_errors,
)
from .healthchecks import HealthChecker
from .instances import NodePool
from .loadbalancers import LoadBalancerPool
from .models import (
    L7,
    Backend,
    BackendService,
    ClusterManagerConfig,
    ForwardingRule,
    HealthCheck,
    HostRule,
    InstanceGroup,
    L7State,
    NamedPort,
    PathMatcher,
    PathRule,
    TargetHttpProxy,
    UrlMap,
    UrlMapSpec,
)
from .naming import Namer
from .storage import Snapshotter

__version__ = "0.1.0"

__all__ = [
    # Cluster management
    "ClusterManager",
    "ClusterManagerConfig",
    "CloudInterfaces",
    "new_fake_cluster_manager",
    # Pools
    "NodePool",
    "BackendPool",
    "HealthChecker",
    "LoadBalancerPool",
    "Namer",
    "Snapshotter",
    # Cloud interfaces
    "InstanceGroups",
    "BackendServices",
    "SingleHealthCheck",
    "LoadBalancers",
    "FakeCloud",
    "FakeCloudStore",
    "FakeCall",
    # Models
    "L7",
    "L7State",
    "UrlMapSpec",
    "InstanceGroup",
    "NamedPort",
    "Backend",
    "BackendService",
    "HealthCheck",
    "UrlMap",
    "HostRule",
    "PathMatcher",
    "PathRule",
    "TargetHttpProxy",
    "ForwardingRule",
    # Errors
    "GLBCError",
    "ConfigurationError",
    "CloudError",
    "NotFoundError",
    "ConflictError",
    "AlreadyExistsError",
    "ResourceInUseError",
    "MissingDependencyError",
    "TransientCloudError",
    "AggregateError",
    "raise_if_errors",
]
