"""Cloud load balancing resource models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def resource_name(link: Optional[str]) -> Optional[str]:
    """
    Extract the resource name from a self link.

    Real cloud links are full URLs while the fake cloud uses relative paths,
    both end with the resource name.

    Args:
        link: Self link or bare name

    Returns:
        Resource name, or None for an empty link
    """
    if not link:
        return None
    return link.rstrip("/").rsplit("/", 1)[-1]


class NamedPort(BaseModel):
    """Named port on an instance group."""

    name: str
    port: int


class InstanceGroup(BaseModel):
    """Unmanaged instance group holding every cluster node."""

    name: str
    zone: Optional[str] = None
    named_ports: list[NamedPort] = Field(default_factory=list)
    self_link: Optional[str] = None

    def named_port(self, port: int) -> Optional[NamedPort]:
        """Return the named port serving ``port``, if any."""
        for named_port in self.named_ports:
            if named_port.port == port:
                return named_port
        return None


class Backend(BaseModel):
    """Instance group attached to a backend service."""

    group: str


class BackendService(BaseModel):
    """Backend service for one node port."""

    name: str
    port: int
    port_name: str
    protocol: str = "HTTP"
    backends: list[Backend] = Field(default_factory=list)
    health_checks: list[str] = Field(default_factory=list)
    fingerprint: Optional[str] = None
    self_link: Optional[str] = None


class HealthCheck(BaseModel):
    """HTTP health check for one node port."""

    name: str
    port: int
    request_path: str = "/"
    check_interval_sec: int = 1
    timeout_sec: int = 1
    healthy_threshold: int = 1
    unhealthy_threshold: int = 10
    description: str = "Default kubernetes L7 Loadbalancing health check."
    self_link: Optional[str] = None


class PathRule(BaseModel):
    """Paths routed to a single backend service."""

    paths: list[str]
    service: str


class PathMatcher(BaseModel):
    """Path rules for a set of hosts."""

    name: str
    default_service: str
    path_rules: list[PathRule] = Field(default_factory=list)


class HostRule(BaseModel):
    """Hosts served by a path matcher."""

    hosts: list[str]
    path_matcher: str


class UrlMap(BaseModel):
    """Host and path routing table of one L7."""

    name: str
    default_service: str
    host_rules: list[HostRule] = Field(default_factory=list)
    path_matchers: list[PathMatcher] = Field(default_factory=list)
    fingerprint: Optional[str] = None
    self_link: Optional[str] = None


class TargetHttpProxy(BaseModel):
    """HTTP proxy pointing at a URL map."""

    name: str
    url_map: str
    self_link: Optional[str] = None


class ForwardingRule(BaseModel):
    """Global forwarding rule pointing at a target proxy."""

    name: str
    target: str
    port_range: str = "80"
    ip_protocol: str = "TCP"
    ip_address: Optional[str] = None
    self_link: Optional[str] = None


class UrlMapSpec(BaseModel):
    """
    Desired routing table of one ingress.

    ``rules`` maps a host ("*" for any host) to a mapping of path to the node
    port of the Service serving it. A missing ``default_backend_port`` falls
    back to the cluster wide default backend.
    """

    model_config = ConfigDict(frozen=True)

    default_backend_port: Optional[int] = None
    rules: dict[str, dict[str, int]] = Field(default_factory=dict)

    def ports(self) -> set[int]:
        """All node ports referenced by this routing table."""
        ports = {port for paths in self.rules.values() for port in paths.values()}
        if self.default_backend_port is not None:
            ports.add(self.default_backend_port)
        return ports


class L7State(str, Enum):
    """Position of an L7 in its creation or teardown pipeline."""

    ABSENT = "absent"
    BACKENDS_READY = "backends_ready"
    URL_MAP_READY = "url_map_ready"
    PROXY_READY = "proxy_ready"
    READY = "ready"
    FORWARDING_RULE_GONE = "forwarding_rule_gone"
    PROXY_GONE = "proxy_gone"


class L7(BaseModel):
    """Composite load balancer (URL map, target proxy, forwarding rule) of one ingress."""

    name: str
    state: L7State = L7State.ABSENT
    url_map: Optional[UrlMap] = None
    target_proxy: Optional[TargetHttpProxy] = None
    forwarding_rule: Optional[ForwardingRule] = None
    default_backend: Optional[BackendService] = None

    @property
    def ip_address(self) -> Optional[str]:
        """External address assigned to the forwarding rule."""
        if self.forwarding_rule is None:
            return None
        return self.forwarding_rule.ip_address

    @property
    def ready(self) -> bool:
        """True when all three resources exist and are linked."""
        return self.state == L7State.READY


class ClusterManagerConfig(BaseModel):
    """Immutable configuration shared by every pool."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str = "foo"
    default_backend_node_port: int = 0
    health_check_path: str = "/"
    health_check_interval_sec: int = 1
    health_check_timeout_sec: int = 1
    healthy_threshold: int = 1
    unhealthy_threshold: int = 10
