"""In-memory cloud used by tests and dry runs."""

import itertools
import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Optional

from ..errors import (
    AlreadyExistsError,
    ConflictError,
    MissingDependencyError,
    NotFoundError,
    ResourceInUseError,
)
from ..models import (
    BackendService,
    ForwardingRule,
    HealthCheck,
    InstanceGroup,
    NamedPort,
    TargetHttpProxy,
    UrlMap,
    resource_name,
)
from .interfaces import BackendServices, InstanceGroups, LoadBalancers, SingleHealthCheck

logger = logging.getLogger(__name__)

READ_OPERATIONS = frozenset({"get", "list"})

INSTANCE_GROUP = "instanceGroup"
BACKEND_SERVICE = "backendService"
HEALTH_CHECK = "httpHealthCheck"
URL_MAP = "urlMap"
TARGET_PROXY = "targetHttpProxy"
FORWARDING_RULE = "forwardingRule"


@dataclass(frozen=True)
class FakeCall:
    """One recorded cloud call."""

    operation: str  # get, list, insert, update, delete, add_instances, ...
    kind: str
    name: Optional[str] = None

    @property
    def mutating(self) -> bool:
        return self.operation not in READ_OPERATIONS


@dataclass
class FakeCloudStore:
    """
    Resources of the fake cloud, keyed by name per kind.

    ``calls`` records every call in order, including the ones that failed.
    """

    zone: str = "us-central1-b"
    instance_groups: dict[str, InstanceGroup] = field(default_factory=dict)
    members: dict[str, set[str]] = field(default_factory=dict)
    backend_services: dict[str, BackendService] = field(default_factory=dict)
    health_checks: dict[str, HealthCheck] = field(default_factory=dict)
    url_maps: dict[str, UrlMap] = field(default_factory=dict)
    target_proxies: dict[str, TargetHttpProxy] = field(default_factory=dict)
    forwarding_rules: dict[str, ForwardingRule] = field(default_factory=dict)
    calls: list[FakeCall] = field(default_factory=list)


class FakeCloud(InstanceGroups, BackendServices, SingleHealthCheck, LoadBalancers):
    """
    Fake implementation of every cloud capability interface.

    Enforces the same existence, uniqueness and reference rules as the real
    API so that ordering bugs in the pools surface in tests.
    """

    def __init__(self, store: Optional[FakeCloudStore] = None):
        """
        Initialize fake cloud.

        Args:
            store: Existing store to share, a new empty one by default
        """
        self.store = store or FakeCloudStore()
        self._lock = RLock()
        self._addresses = itertools.count(1)
        self._fingerprints = itertools.count(1)
        self._injected: dict[tuple[str, str, Optional[str]], Exception] = {}

    # Test helpers

    def inject_error(
        self, operation: str, kind: str, name: Optional[str], error: Exception
    ) -> None:
        """Make the next matching call raise ``error`` instead of running."""
        self._injected[(operation, kind, name)] = error

    def mutations(self) -> list[FakeCall]:
        """Every recorded call that changed, or tried to change, the store."""
        return [call for call in self.store.calls if call.mutating]

    def reset_calls(self) -> None:
        self.store.calls.clear()

    def _record(self, operation: str, kind: str, name: Optional[str] = None) -> None:
        self.store.calls.append(FakeCall(operation, kind, name))
        error = self._injected.pop((operation, kind, name), None)
        if error is not None:
            raise error
        if operation not in READ_OPERATIONS:
            logger.info(f"[fake cloud] {operation} {kind} {name or ''}".rstrip())

    @staticmethod
    def _lookup(items: dict, kind: str, name: str):
        if name not in items:
            raise NotFoundError(f"{kind} {name} not found", kind=kind, name=name)
        return items[name]

    @staticmethod
    def _ensure_absent(items: dict, kind: str, name: str) -> None:
        if name in items:
            raise AlreadyExistsError(f"{kind} {name} already exists", kind=kind, name=name)

    @staticmethod
    def _require(items: dict, kind: str, link: Optional[str], referrer: str) -> None:
        name = resource_name(link)
        if name is None or name not in items:
            raise MissingDependencyError(
                f"{referrer} references missing {kind} {link}", kind=kind, name=name
            )

    # InstanceGroups

    def get_instance_group(self, name: str) -> InstanceGroup:
        with self._lock:
            self._record("get", INSTANCE_GROUP, name)
            return self._lookup(self.store.instance_groups, INSTANCE_GROUP, name).model_copy(deep=True)

    def create_instance_group(self, name: str) -> InstanceGroup:
        with self._lock:
            self._record("insert", INSTANCE_GROUP, name)
            self._ensure_absent(self.store.instance_groups, INSTANCE_GROUP, name)
            group = InstanceGroup(
                name=name,
                zone=self.store.zone,
                self_link=f"zones/{self.store.zone}/instanceGroups/{name}",
            )
            self.store.instance_groups[name] = group
            self.store.members[name] = set()
            return group.model_copy(deep=True)

    def delete_instance_group(self, name: str) -> None:
        with self._lock:
            self._record("delete", INSTANCE_GROUP, name)
            self._lookup(self.store.instance_groups, INSTANCE_GROUP, name)
            for backend_service in self.store.backend_services.values():
                if any(resource_name(b.group) == name for b in backend_service.backends):
                    raise ResourceInUseError(
                        f"{INSTANCE_GROUP} {name} is used by {BACKEND_SERVICE} {backend_service.name}",
                        kind=INSTANCE_GROUP,
                        name=name,
                    )
            del self.store.instance_groups[name]
            del self.store.members[name]

    def list_instances_in_instance_group(self, name: str) -> list[str]:
        with self._lock:
            self._record("list", "instance", name)
            self._lookup(self.store.instance_groups, INSTANCE_GROUP, name)
            return sorted(self.store.members[name])

    def add_instances_to_instance_group(self, name: str, instance_names: list[str]) -> None:
        with self._lock:
            self._record("add_instances", INSTANCE_GROUP, name)
            self._lookup(self.store.instance_groups, INSTANCE_GROUP, name)
            self.store.members[name].update(instance_names)

    def remove_instances_from_instance_group(self, name: str, instance_names: list[str]) -> None:
        with self._lock:
            self._record("remove_instances", INSTANCE_GROUP, name)
            self._lookup(self.store.instance_groups, INSTANCE_GROUP, name)
            self.store.members[name].difference_update(instance_names)

    def add_port_to_instance_group(self, name: str, port: int, port_name: str) -> NamedPort:
        with self._lock:
            self._record("get", INSTANCE_GROUP, name)
            group = self._lookup(self.store.instance_groups, INSTANCE_GROUP, name)
            existing = group.named_port(port)
            if existing is not None:
                return existing.model_copy()
            self._record("set_named_ports", INSTANCE_GROUP, name)
            named_port = NamedPort(name=port_name, port=port)
            group.named_ports.append(named_port)
            return named_port.model_copy()

    def remove_port_from_instance_group(self, name: str, port: int) -> None:
        with self._lock:
            self._record("get", INSTANCE_GROUP, name)
            group = self._lookup(self.store.instance_groups, INSTANCE_GROUP, name)
            if group.named_port(port) is None:
                return
            self._record("set_named_ports", INSTANCE_GROUP, name)
            group.named_ports = [p for p in group.named_ports if p.port != port]

    # BackendServices

    def _check_backend_service_refs(self, backend_service: BackendService) -> None:
        for link in backend_service.health_checks:
            self._require(self.store.health_checks, HEALTH_CHECK, link, backend_service.name)
        for backend in backend_service.backends:
            self._require(self.store.instance_groups, INSTANCE_GROUP, backend.group, backend_service.name)

    def get_backend_service(self, name: str) -> BackendService:
        with self._lock:
            self._record("get", BACKEND_SERVICE, name)
            return self._lookup(self.store.backend_services, BACKEND_SERVICE, name).model_copy(deep=True)

    def create_backend_service(self, backend_service: BackendService) -> BackendService:
        with self._lock:
            name = backend_service.name
            self._record("insert", BACKEND_SERVICE, name)
            self._ensure_absent(self.store.backend_services, BACKEND_SERVICE, name)
            self._check_backend_service_refs(backend_service)
            stored = backend_service.model_copy(
                deep=True,
                update={
                    "self_link": f"global/backendServices/{name}",
                    "fingerprint": str(next(self._fingerprints)),
                },
            )
            self.store.backend_services[name] = stored
            return stored.model_copy(deep=True)

    def update_backend_service(self, backend_service: BackendService) -> BackendService:
        with self._lock:
            name = backend_service.name
            self._record("update", BACKEND_SERVICE, name)
            current = self._lookup(self.store.backend_services, BACKEND_SERVICE, name)
            if backend_service.fingerprint is not None and backend_service.fingerprint != current.fingerprint:
                raise ConflictError(
                    f"{BACKEND_SERVICE} {name} was modified concurrently", kind=BACKEND_SERVICE, name=name
                )
            self._check_backend_service_refs(backend_service)
            stored = backend_service.model_copy(
                deep=True,
                update={
                    "self_link": current.self_link,
                    "fingerprint": str(next(self._fingerprints)),
                },
            )
            self.store.backend_services[name] = stored
            return stored.model_copy(deep=True)

    def delete_backend_service(self, name: str) -> None:
        with self._lock:
            self._record("delete", BACKEND_SERVICE, name)
            self._lookup(self.store.backend_services, BACKEND_SERVICE, name)
            for url_map in self.store.url_maps.values():
                if name in _url_map_services(url_map):
                    raise ResourceInUseError(
                        f"{BACKEND_SERVICE} {name} is used by {URL_MAP} {url_map.name}",
                        kind=BACKEND_SERVICE,
                        name=name,
                    )
            del self.store.backend_services[name]

    def list_backend_services(self) -> list[BackendService]:
        with self._lock:
            self._record("list", BACKEND_SERVICE)
            return [b.model_copy(deep=True) for b in self.store.backend_services.values()]

    # SingleHealthCheck

    def get_http_health_check(self, name: str) -> HealthCheck:
        with self._lock:
            self._record("get", HEALTH_CHECK, name)
            return self._lookup(self.store.health_checks, HEALTH_CHECK, name).model_copy(deep=True)

    def create_http_health_check(self, health_check: HealthCheck) -> HealthCheck:
        with self._lock:
            name = health_check.name
            self._record("insert", HEALTH_CHECK, name)
            self._ensure_absent(self.store.health_checks, HEALTH_CHECK, name)
            stored = health_check.model_copy(
                deep=True, update={"self_link": f"global/httpHealthChecks/{name}"}
            )
            self.store.health_checks[name] = stored
            return stored.model_copy(deep=True)

    def update_http_health_check(self, health_check: HealthCheck) -> HealthCheck:
        with self._lock:
            name = health_check.name
            self._record("update", HEALTH_CHECK, name)
            current = self._lookup(self.store.health_checks, HEALTH_CHECK, name)
            stored = health_check.model_copy(deep=True, update={"self_link": current.self_link})
            self.store.health_checks[name] = stored
            return stored.model_copy(deep=True)

    def delete_http_health_check(self, name: str) -> None:
        with self._lock:
            self._record("delete", HEALTH_CHECK, name)
            self._lookup(self.store.health_checks, HEALTH_CHECK, name)
            for backend_service in self.store.backend_services.values():
                if any(resource_name(link) == name for link in backend_service.health_checks):
                    raise ResourceInUseError(
                        f"{HEALTH_CHECK} {name} is used by {BACKEND_SERVICE} {backend_service.name}",
                        kind=HEALTH_CHECK,
                        name=name,
                    )
            del self.store.health_checks[name]

    def list_http_health_checks(self) -> list[HealthCheck]:
        with self._lock:
            self._record("list", HEALTH_CHECK)
            return [h.model_copy(deep=True) for h in self.store.health_checks.values()]

    # LoadBalancers: forwarding rules

    def get_global_forwarding_rule(self, name: str) -> ForwardingRule:
        with self._lock:
            self._record("get", FORWARDING_RULE, name)
            return self._lookup(self.store.forwarding_rules, FORWARDING_RULE, name).model_copy(deep=True)

    def create_global_forwarding_rule(
        self, proxy: TargetHttpProxy, name: str, port_range: str
    ) -> ForwardingRule:
        with self._lock:
            self._record("insert", FORWARDING_RULE, name)
            self._ensure_absent(self.store.forwarding_rules, FORWARDING_RULE, name)
            self._require(self.store.target_proxies, TARGET_PROXY, proxy.self_link or proxy.name, name)
            rule = ForwardingRule(
                name=name,
                target=f"global/targetHttpProxies/{proxy.name}",
                port_range=port_range,
                ip_address=f"203.0.113.{next(self._addresses) % 254 + 1}",
                self_link=f"global/forwardingRules/{name}",
            )
            self.store.forwarding_rules[name] = rule
            return rule.model_copy(deep=True)

    def delete_global_forwarding_rule(self, name: str) -> None:
        with self._lock:
            self._record("delete", FORWARDING_RULE, name)
            self._lookup(self.store.forwarding_rules, FORWARDING_RULE, name)
            del self.store.forwarding_rules[name]

    def set_proxy_for_global_forwarding_rule(
        self, forwarding_rule: ForwardingRule, proxy: TargetHttpProxy
    ) -> None:
        with self._lock:
            self._record("set_target", FORWARDING_RULE, forwarding_rule.name)
            rule = self._lookup(self.store.forwarding_rules, FORWARDING_RULE, forwarding_rule.name)
            self._require(self.store.target_proxies, TARGET_PROXY, proxy.self_link or proxy.name, rule.name)
            rule.target = f"global/targetHttpProxies/{proxy.name}"

    def list_global_forwarding_rules(self) -> list[ForwardingRule]:
        with self._lock:
            self._record("list", FORWARDING_RULE)
            return [r.model_copy(deep=True) for r in self.store.forwarding_rules.values()]

    # LoadBalancers: URL maps

    def _check_url_map_refs(self, url_map: UrlMap) -> None:
        for service in sorted(_url_map_services(url_map)):
            self._require(self.store.backend_services, BACKEND_SERVICE, service, url_map.name)
        matchers = {matcher.name for matcher in url_map.path_matchers}
        for host_rule in url_map.host_rules:
            if host_rule.path_matcher not in matchers:
                raise MissingDependencyError(
                    f"{url_map.name} host rule references missing path matcher {host_rule.path_matcher}",
                    kind="pathMatcher",
                    name=host_rule.path_matcher,
                )

    def get_url_map(self, name: str) -> UrlMap:
        with self._lock:
            self._record("get", URL_MAP, name)
            return self._lookup(self.store.url_maps, URL_MAP, name).model_copy(deep=True)

    def create_url_map(self, url_map: UrlMap) -> UrlMap:
        with self._lock:
            name = url_map.name
            self._record("insert", URL_MAP, name)
            self._ensure_absent(self.store.url_maps, URL_MAP, name)
            self._check_url_map_refs(url_map)
            stored = url_map.model_copy(
                deep=True,
                update={
                    "self_link": f"global/urlMaps/{name}",
                    "fingerprint": str(next(self._fingerprints)),
                },
            )
            self.store.url_maps[name] = stored
            return stored.model_copy(deep=True)

    def update_url_map(self, url_map: UrlMap) -> UrlMap:
        with self._lock:
            name = url_map.name
            self._record("update", URL_MAP, name)
            current = self._lookup(self.store.url_maps, URL_MAP, name)
            if url_map.fingerprint is not None and url_map.fingerprint != current.fingerprint:
                raise ConflictError(
                    f"{URL_MAP} {name} was modified concurrently", kind=URL_MAP, name=name
                )
            self._check_url_map_refs(url_map)
            stored = url_map.model_copy(
                deep=True,
                update={
                    "self_link": current.self_link,
                    "fingerprint": str(next(self._fingerprints)),
                },
            )
            self.store.url_maps[name] = stored
            return stored.model_copy(deep=True)

    def delete_url_map(self, name: str) -> None:
        with self._lock:
            self._record("delete", URL_MAP, name)
            self._lookup(self.store.url_maps, URL_MAP, name)
            for proxy in self.store.target_proxies.values():
                if resource_name(proxy.url_map) == name:
                    raise ResourceInUseError(
                        f"{URL_MAP} {name} is used by {TARGET_PROXY} {proxy.name}",
                        kind=URL_MAP,
                        name=name,
                    )
            del self.store.url_maps[name]

    def list_url_maps(self) -> list[UrlMap]:
        with self._lock:
            self._record("list", URL_MAP)
            return [u.model_copy(deep=True) for u in self.store.url_maps.values()]

    # LoadBalancers: target proxies

    def get_target_http_proxy(self, name: str) -> TargetHttpProxy:
        with self._lock:
            self._record("get", TARGET_PROXY, name)
            return self._lookup(self.store.target_proxies, TARGET_PROXY, name).model_copy(deep=True)

    def create_target_http_proxy(self, url_map: UrlMap, name: str) -> TargetHttpProxy:
        with self._lock:
            self._record("insert", TARGET_PROXY, name)
            self._ensure_absent(self.store.target_proxies, TARGET_PROXY, name)
            self._require(self.store.url_maps, URL_MAP, url_map.self_link or url_map.name, name)
            proxy = TargetHttpProxy(
                name=name,
                url_map=f"global/urlMaps/{url_map.name}",
                self_link=f"global/targetHttpProxies/{name}",
            )
            self.store.target_proxies[name] = proxy
            return proxy.model_copy(deep=True)

    def delete_target_http_proxy(self, name: str) -> None:
        with self._lock:
            self._record("delete", TARGET_PROXY, name)
            self._lookup(self.store.target_proxies, TARGET_PROXY, name)
            for rule in self.store.forwarding_rules.values():
                if resource_name(rule.target) == name:
                    raise ResourceInUseError(
                        f"{TARGET_PROXY} {name} is used by {FORWARDING_RULE} {rule.name}",
                        kind=TARGET_PROXY,
                        name=name,
                    )
            del self.store.target_proxies[name]

    def set_url_map_for_target_http_proxy(self, proxy: TargetHttpProxy, url_map: UrlMap) -> None:
        with self._lock:
            self._record("set_url_map", TARGET_PROXY, proxy.name)
            stored = self._lookup(self.store.target_proxies, TARGET_PROXY, proxy.name)
            self._require(self.store.url_maps, URL_MAP, url_map.self_link or url_map.name, proxy.name)
            stored.url_map = f"global/urlMaps/{url_map.name}"

    def list_target_http_proxies(self) -> list[TargetHttpProxy]:
        with self._lock:
            self._record("list", TARGET_PROXY)
            return [p.model_copy(deep=True) for p in self.store.target_proxies.values()]


def _url_map_services(url_map: UrlMap) -> set[str]:
    """Names of every backend service a URL map references."""
    links = [url_map.default_service]
    for matcher in url_map.path_matchers:
        links.append(matcher.default_service)
        links.extend(rule.service for rule in matcher.path_rules)
    return {name for name in map(resource_name, links) if name}
