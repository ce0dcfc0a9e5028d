"""
Capability interfaces between the pools and the cloud.

Each interface has two implementations with identical observable behavior:
``glbc_pools.cloud.gce`` talks to Google Compute Engine and
``glbc_pools.cloud.fake`` keeps everything in memory. Pools only ever see
these interfaces.

Every method raises ``NotFoundError`` for absent resources,
``AlreadyExistsError`` for duplicate names, ``MissingDependencyError`` when a
referenced resource does not exist and ``ResourceInUseError`` when deleting a
resource another one still references.
"""

from abc import ABC, abstractmethod

from ..models import (
    BackendService,
    ForwardingRule,
    HealthCheck,
    InstanceGroup,
    NamedPort,
    TargetHttpProxy,
    UrlMap,
)


class InstanceGroups(ABC):
    """Instance groups and their members."""

    @abstractmethod
    def get_instance_group(self, name: str) -> InstanceGroup:
        pass

    @abstractmethod
    def create_instance_group(self, name: str) -> InstanceGroup:
        pass

    @abstractmethod
    def delete_instance_group(self, name: str) -> None:
        pass

    @abstractmethod
    def list_instances_in_instance_group(self, name: str) -> list[str]:
        """Return the names of the member instances."""

    @abstractmethod
    def add_instances_to_instance_group(self, name: str, instance_names: list[str]) -> None:
        pass

    @abstractmethod
    def remove_instances_from_instance_group(self, name: str, instance_names: list[str]) -> None:
        pass

    @abstractmethod
    def add_port_to_instance_group(self, name: str, port: int, port_name: str) -> NamedPort:
        """Add a named port. Adding a port that is already present is a no-op."""

    @abstractmethod
    def remove_port_from_instance_group(self, name: str, port: int) -> None:
        """Remove the named port serving ``port``. Absent ports are ignored."""


class BackendServices(ABC):
    """Backend services."""

    @abstractmethod
    def get_backend_service(self, name: str) -> BackendService:
        pass

    @abstractmethod
    def create_backend_service(self, backend_service: BackendService) -> BackendService:
        pass

    @abstractmethod
    def update_backend_service(self, backend_service: BackendService) -> BackendService:
        pass

    @abstractmethod
    def delete_backend_service(self, name: str) -> None:
        pass

    @abstractmethod
    def list_backend_services(self) -> list[BackendService]:
        pass


class SingleHealthCheck(ABC):
    """HTTP health checks."""

    @abstractmethod
    def get_http_health_check(self, name: str) -> HealthCheck:
        pass

    @abstractmethod
    def create_http_health_check(self, health_check: HealthCheck) -> HealthCheck:
        pass

    @abstractmethod
    def update_http_health_check(self, health_check: HealthCheck) -> HealthCheck:
        pass

    @abstractmethod
    def delete_http_health_check(self, name: str) -> None:
        pass

    @abstractmethod
    def list_http_health_checks(self) -> list[HealthCheck]:
        pass


class LoadBalancers(ABC):
    """
    URL maps, target proxies and global forwarding rules.

    None of these are usable on their own, so they share one interface. The
    dependency graph is forwarding rule -> target proxy -> URL map.
    """

    # Forwarding rules
    @abstractmethod
    def get_global_forwarding_rule(self, name: str) -> ForwardingRule:
        pass

    @abstractmethod
    def create_global_forwarding_rule(
        self, proxy: TargetHttpProxy, name: str, port_range: str
    ) -> ForwardingRule:
        pass

    @abstractmethod
    def delete_global_forwarding_rule(self, name: str) -> None:
        pass

    @abstractmethod
    def set_proxy_for_global_forwarding_rule(
        self, forwarding_rule: ForwardingRule, proxy: TargetHttpProxy
    ) -> None:
        pass

    @abstractmethod
    def list_global_forwarding_rules(self) -> list[ForwardingRule]:
        pass

    # URL maps
    @abstractmethod
    def get_url_map(self, name: str) -> UrlMap:
        pass

    @abstractmethod
    def create_url_map(self, url_map: UrlMap) -> UrlMap:
        pass

    @abstractmethod
    def update_url_map(self, url_map: UrlMap) -> UrlMap:
        pass

    @abstractmethod
    def delete_url_map(self, name: str) -> None:
        pass

    @abstractmethod
    def list_url_maps(self) -> list[UrlMap]:
        pass

    # Target proxies
    @abstractmethod
    def get_target_http_proxy(self, name: str) -> TargetHttpProxy:
        pass

    @abstractmethod
    def create_target_http_proxy(self, url_map: UrlMap, name: str) -> TargetHttpProxy:
        pass

    @abstractmethod
    def delete_target_http_proxy(self, name: str) -> None:
        pass

    @abstractmethod
    def set_url_map_for_target_http_proxy(self, proxy: TargetHttpProxy, url_map: UrlMap) -> None:
        pass

    @abstractmethod
    def list_target_http_proxies(self) -> list[TargetHttpProxy]:
        pass
