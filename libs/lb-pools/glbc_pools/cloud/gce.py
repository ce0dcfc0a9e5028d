"""Google Compute Engine implementation of the cloud capability interfaces."""

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from google.api_core import exceptions as api_exceptions
from google.cloud import compute_v1

from ..errors import (
    AlreadyExistsError,
    CloudError,
    ConfigurationError,
    ConflictError,
    MissingDependencyError,
    NotFoundError,
    ResourceInUseError,
    TransientCloudError,
)
from ..models import (
    Backend,
    BackendService,
    ForwardingRule,
    HealthCheck,
    HostRule,
    InstanceGroup,
    NamedPort,
    PathMatcher,
    PathRule,
    TargetHttpProxy,
    UrlMap,
    resource_name,
)
from .interfaces import BackendServices, InstanceGroups, LoadBalancers, SingleHealthCheck

logger = logging.getLogger(__name__)

# Seconds to wait for a zonal or global operation to finish.
OPERATION_TIMEOUT = 300


@contextmanager
def _translate_errors(kind: str, name: Optional[str] = None) -> Iterator[None]:
    """Map google.api_core exceptions onto the controller's error types."""
    try:
        yield
    except api_exceptions.NotFound as e:
        raise NotFoundError(str(e), kind=kind, name=name) from e
    except api_exceptions.Conflict as e:
        raise AlreadyExistsError(str(e), kind=kind, name=name) from e
    except api_exceptions.PreconditionFailed as e:
        raise ConflictError(str(e), kind=kind, name=name) from e
    except api_exceptions.BadRequest as e:
        message = str(e)
        if "resourceInUseByAnotherResource" in message or "is already being used by" in message:
            raise ResourceInUseError(message, kind=kind, name=name) from e
        if "was not found" in message or "notFound" in message:
            raise MissingDependencyError(message, kind=kind, name=name) from e
        raise CloudError(message, kind=kind, name=name) from e
    except (api_exceptions.ServerError, api_exceptions.TooManyRequests) as e:
        raise TransientCloudError(str(e), kind=kind, name=name) from e
    except api_exceptions.GoogleAPICallError as e:
        raise CloudError(str(e), kind=kind, name=name) from e


def _resolve_project(explicit: Optional[str]) -> str:
    """Resolve GCP project: explicit > env > ADC."""
    if explicit:
        return explicit

    for variable in ("GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT"):
        if env_project := os.environ.get(variable):
            return env_project

    import google.auth

    _, project = google.auth.default()
    if not project:
        raise ConfigurationError(
            "No GCP project found. Set GOOGLE_CLOUD_PROJECT or configure "
            "Application Default Credentials."
        )
    return project


class GCECloud(InstanceGroups, BackendServices, SingleHealthCheck, LoadBalancers):
    """
    Cloud interfaces backed by the Compute Engine API.

    Every mutating call blocks until its operation completes, so the pools
    observe the same read-after-write behavior as with the fake cloud.
    """

    def __init__(
        self,
        project: str,
        zone: str,
        instance_groups_client: Any,
        backend_services_client: Any,
        health_checks_client: Any,
        url_maps_client: Any,
        target_proxies_client: Any,
        forwarding_rules_client: Any,
        operation_timeout: int = OPERATION_TIMEOUT,
    ):
        self.project = project
        self.zone = zone
        self._instance_groups = instance_groups_client
        self._backend_services = backend_services_client
        self._health_checks = health_checks_client
        self._url_maps = url_maps_client
        self._target_proxies = target_proxies_client
        self._forwarding_rules = forwarding_rules_client
        self._operation_timeout = operation_timeout

    @classmethod
    def create(cls, project: Optional[str], zone: str) -> "GCECloud":
        """
        Build the compute clients from Application Default Credentials.

        Args:
            project: GCP project, resolved from the environment when empty
            zone: Zone of the cluster instance group

        Returns:
            GCECloud instance

        Raises:
            ConfigurationError: If the clients cannot be constructed
        """
        if not zone:
            raise ConfigurationError("A GCE zone is required for the instance group")
        try:
            resolved = _resolve_project(project)
            logger.info(f"Using GCP project {resolved}, zone {zone}")
            return cls(
                project=resolved,
                zone=zone,
                instance_groups_client=compute_v1.InstanceGroupsClient(),
                backend_services_client=compute_v1.BackendServicesClient(),
                health_checks_client=compute_v1.HttpHealthChecksClient(),
                url_maps_client=compute_v1.UrlMapsClient(),
                target_proxies_client=compute_v1.TargetHttpProxiesClient(),
                forwarding_rules_client=compute_v1.GlobalForwardingRulesClient(),
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to create compute clients: {e}") from e

    def _wait(self, operation: Any) -> None:
        result = getattr(operation, "result", None)
        if callable(result):
            result(timeout=self._operation_timeout)

    def _instance_link(self, name: str) -> str:
        return f"projects/{self.project}/zones/{self.zone}/instances/{name}"

    # InstanceGroups

    def get_instance_group(self, name: str) -> InstanceGroup:
        with _translate_errors("instanceGroup", name):
            group = self._instance_groups.get(
                request=compute_v1.GetInstanceGroupRequest(
                    project=self.project, zone=self.zone, instance_group=name
                )
            )
        return _instance_group_from_api(group)

    def create_instance_group(self, name: str) -> InstanceGroup:
        with _translate_errors("instanceGroup", name):
            operation = self._instance_groups.insert(
                request=compute_v1.InsertInstanceGroupRequest(
                    project=self.project,
                    zone=self.zone,
                    instance_group_resource=compute_v1.InstanceGroup(name=name),
                )
            )
            self._wait(operation)
        return self.get_instance_group(name)

    def delete_instance_group(self, name: str) -> None:
        with _translate_errors("instanceGroup", name):
            operation = self._instance_groups.delete(
                request=compute_v1.DeleteInstanceGroupRequest(
                    project=self.project, zone=self.zone, instance_group=name
                )
            )
            self._wait(operation)

    def list_instances_in_instance_group(self, name: str) -> list[str]:
        with _translate_errors("instanceGroup", name):
            pager = self._instance_groups.list_instances(
                request=compute_v1.ListInstancesInstanceGroupsRequest(
                    project=self.project,
                    zone=self.zone,
                    instance_group=name,
                    instance_groups_list_instances_request_resource=(
                        compute_v1.InstanceGroupsListInstancesRequest(instance_state="ALL")
                    ),
                )
            )
            return sorted(resource_name(item.instance) for item in pager)

    def add_instances_to_instance_group(self, name: str, instance_names: list[str]) -> None:
        with _translate_errors("instanceGroup", name):
            operation = self._instance_groups.add_instances(
                request=compute_v1.AddInstancesInstanceGroupRequest(
                    project=self.project,
                    zone=self.zone,
                    instance_group=name,
                    instance_groups_add_instances_request_resource=(
                        compute_v1.InstanceGroupsAddInstancesRequest(
                            instances=[
                                compute_v1.InstanceReference(instance=self._instance_link(n))
                                for n in instance_names
                            ]
                        )
                    ),
                )
            )
            self._wait(operation)

    def remove_instances_from_instance_group(self, name: str, instance_names: list[str]) -> None:
        with _translate_errors("instanceGroup", name):
            operation = self._instance_groups.remove_instances(
                request=compute_v1.RemoveInstancesInstanceGroupRequest(
                    project=self.project,
                    zone=self.zone,
                    instance_group=name,
                    instance_groups_remove_instances_request_resource=(
                        compute_v1.InstanceGroupsRemoveInstancesRequest(
                            instances=[
                                compute_v1.InstanceReference(instance=self._instance_link(n))
                                for n in instance_names
                            ]
                        )
                    ),
                )
            )
            self._wait(operation)

    def _set_named_ports(self, name: str, named_ports: list[NamedPort], fingerprint: str) -> None:
        with _translate_errors("instanceGroup", name):
            operation = self._instance_groups.set_named_ports(
                request=compute_v1.SetNamedPortsInstanceGroupRequest(
                    project=self.project,
                    zone=self.zone,
                    instance_group=name,
                    instance_groups_set_named_ports_request_resource=(
                        compute_v1.InstanceGroupsSetNamedPortsRequest(
                            named_ports=[
                                compute_v1.NamedPort(name=p.name, port=p.port) for p in named_ports
                            ],
                            fingerprint=fingerprint,
                        )
                    ),
                )
            )
            self._wait(operation)

    def _get_raw_instance_group(self, name: str) -> Any:
        with _translate_errors("instanceGroup", name):
            return self._instance_groups.get(
                request=compute_v1.GetInstanceGroupRequest(
                    project=self.project, zone=self.zone, instance_group=name
                )
            )

    def add_port_to_instance_group(self, name: str, port: int, port_name: str) -> NamedPort:
        raw = self._get_raw_instance_group(name)
        group = _instance_group_from_api(raw)
        existing = group.named_port(port)
        if existing is not None:
            return existing
        named_port = NamedPort(name=port_name, port=port)
        self._set_named_ports(name, group.named_ports + [named_port], raw.fingerprint)
        return named_port

    def remove_port_from_instance_group(self, name: str, port: int) -> None:
        raw = self._get_raw_instance_group(name)
        group = _instance_group_from_api(raw)
        if group.named_port(port) is None:
            return
        remaining = [p for p in group.named_ports if p.port != port]
        self._set_named_ports(name, remaining, raw.fingerprint)

    # BackendServices

    def get_backend_service(self, name: str) -> BackendService:
        with _translate_errors("backendService", name):
            backend_service = self._backend_services.get(
                request=compute_v1.GetBackendServiceRequest(
                    project=self.project, backend_service=name
                )
            )
        return _backend_service_from_api(backend_service)

    def create_backend_service(self, backend_service: BackendService) -> BackendService:
        with _translate_errors("backendService", backend_service.name):
            operation = self._backend_services.insert(
                request=compute_v1.InsertBackendServiceRequest(
                    project=self.project,
                    backend_service_resource=_backend_service_to_api(backend_service),
                )
            )
            self._wait(operation)
        return self.get_backend_service(backend_service.name)

    def update_backend_service(self, backend_service: BackendService) -> BackendService:
        with _translate_errors("backendService", backend_service.name):
            operation = self._backend_services.update(
                request=compute_v1.UpdateBackendServiceRequest(
                    project=self.project,
                    backend_service=backend_service.name,
                    backend_service_resource=_backend_service_to_api(backend_service),
                )
            )
            self._wait(operation)
        return self.get_backend_service(backend_service.name)

    def delete_backend_service(self, name: str) -> None:
        with _translate_errors("backendService", name):
            operation = self._backend_services.delete(
                request=compute_v1.DeleteBackendServiceRequest(
                    project=self.project, backend_service=name
                )
            )
            self._wait(operation)

    def list_backend_services(self) -> list[BackendService]:
        with _translate_errors("backendService"):
            pager = self._backend_services.list(
                request=compute_v1.ListBackendServicesRequest(project=self.project)
            )
            return [_backend_service_from_api(item) for item in pager]

    # SingleHealthCheck

    def get_http_health_check(self, name: str) -> HealthCheck:
        with _translate_errors("httpHealthCheck", name):
            health_check = self._health_checks.get(
                request=compute_v1.GetHttpHealthCheckRequest(
                    project=self.project, http_health_check=name
                )
            )
        return _health_check_from_api(health_check)

    def create_http_health_check(self, health_check: HealthCheck) -> HealthCheck:
        with _translate_errors("httpHealthCheck", health_check.name):
            operation = self._health_checks.insert(
                request=compute_v1.InsertHttpHealthCheckRequest(
                    project=self.project,
                    http_health_check_resource=_health_check_to_api(health_check),
                )
            )
            self._wait(operation)
        return self.get_http_health_check(health_check.name)

    def update_http_health_check(self, health_check: HealthCheck) -> HealthCheck:
        with _translate_errors("httpHealthCheck", health_check.name):
            operation = self._health_checks.update(
                request=compute_v1.UpdateHttpHealthCheckRequest(
                    project=self.project,
                    http_health_check=health_check.name,
                    http_health_check_resource=_health_check_to_api(health_check),
                )
            )
            self._wait(operation)
        return self.get_http_health_check(health_check.name)

    def delete_http_health_check(self, name: str) -> None:
        with _translate_errors("httpHealthCheck", name):
            operation = self._health_checks.delete(
                request=compute_v1.DeleteHttpHealthCheckRequest(
                    project=self.project, http_health_check=name
                )
            )
            self._wait(operation)

    def list_http_health_checks(self) -> list[HealthCheck]:
        with _translate_errors("httpHealthCheck"):
            pager = self._health_checks.list(
                request=compute_v1.ListHttpHealthChecksRequest(project=self.project)
            )
            return [_health_check_from_api(item) for item in pager]

    # LoadBalancers: forwarding rules

    def get_global_forwarding_rule(self, name: str) -> ForwardingRule:
        with _translate_errors("forwardingRule", name):
            rule = self._forwarding_rules.get(
                request=compute_v1.GetGlobalForwardingRuleRequest(
                    project=self.project, forwarding_rule=name
                )
            )
        return _forwarding_rule_from_api(rule)

    def create_global_forwarding_rule(
        self, proxy: TargetHttpProxy, name: str, port_range: str
    ) -> ForwardingRule:
        with _translate_errors("forwardingRule", name):
            operation = self._forwarding_rules.insert(
                request=compute_v1.InsertGlobalForwardingRuleRequest(
                    project=self.project,
                    forwarding_rule_resource=compute_v1.ForwardingRule(
                        name=name,
                        target=proxy.self_link,
                        port_range=port_range,
                        I_p_protocol="TCP",
                    ),
                )
            )
            self._wait(operation)
        return self.get_global_forwarding_rule(name)

    def delete_global_forwarding_rule(self, name: str) -> None:
        with _translate_errors("forwardingRule", name):
            operation = self._forwarding_rules.delete(
                request=compute_v1.DeleteGlobalForwardingRuleRequest(
                    project=self.project, forwarding_rule=name
                )
            )
            self._wait(operation)

    def set_proxy_for_global_forwarding_rule(
        self, forwarding_rule: ForwardingRule, proxy: TargetHttpProxy
    ) -> None:
        with _translate_errors("forwardingRule", forwarding_rule.name):
            operation = self._forwarding_rules.set_target(
                request=compute_v1.SetTargetGlobalForwardingRuleRequest(
                    project=self.project,
                    forwarding_rule=forwarding_rule.name,
                    target_reference_resource=compute_v1.TargetReference(target=proxy.self_link),
                )
            )
            self._wait(operation)

    def list_global_forwarding_rules(self) -> list[ForwardingRule]:
        with _translate_errors("forwardingRule"):
            pager = self._forwarding_rules.list(
                request=compute_v1.ListGlobalForwardingRulesRequest(project=self.project)
            )
            return [_forwarding_rule_from_api(item) for item in pager]

    # LoadBalancers: URL maps

    def get_url_map(self, name: str) -> UrlMap:
        with _translate_errors("urlMap", name):
            url_map = self._url_maps.get(
                request=compute_v1.GetUrlMapRequest(project=self.project, url_map=name)
            )
        return _url_map_from_api(url_map)

    def create_url_map(self, url_map: UrlMap) -> UrlMap:
        with _translate_errors("urlMap", url_map.name):
            operation = self._url_maps.insert(
                request=compute_v1.InsertUrlMapRequest(
                    project=self.project, url_map_resource=_url_map_to_api(url_map)
                )
            )
            self._wait(operation)
        return self.get_url_map(url_map.name)

    def update_url_map(self, url_map: UrlMap) -> UrlMap:
        with _translate_errors("urlMap", url_map.name):
            operation = self._url_maps.update(
                request=compute_v1.UpdateUrlMapRequest(
                    project=self.project,
                    url_map=url_map.name,
                    url_map_resource=_url_map_to_api(url_map),
                )
            )
            self._wait(operation)
        return self.get_url_map(url_map.name)

    def delete_url_map(self, name: str) -> None:
        with _translate_errors("urlMap", name):
            operation = self._url_maps.delete(
                request=compute_v1.DeleteUrlMapRequest(project=self.project, url_map=name)
            )
            self._wait(operation)

    def list_url_maps(self) -> list[UrlMap]:
        with _translate_errors("urlMap"):
            pager = self._url_maps.list(
                request=compute_v1.ListUrlMapsRequest(project=self.project)
            )
            return [_url_map_from_api(item) for item in pager]

    # LoadBalancers: target proxies

    def get_target_http_proxy(self, name: str) -> TargetHttpProxy:
        with _translate_errors("targetHttpProxy", name):
            proxy = self._target_proxies.get(
                request=compute_v1.GetTargetHttpProxyRequest(
                    project=self.project, target_http_proxy=name
                )
            )
        return _target_proxy_from_api(proxy)

    def create_target_http_proxy(self, url_map: UrlMap, name: str) -> TargetHttpProxy:
        with _translate_errors("targetHttpProxy", name):
            operation = self._target_proxies.insert(
                request=compute_v1.InsertTargetHttpProxyRequest(
                    project=self.project,
                    target_http_proxy_resource=compute_v1.TargetHttpProxy(
                        name=name, url_map=url_map.self_link
                    ),
                )
            )
            self._wait(operation)
        return self.get_target_http_proxy(name)

    def delete_target_http_proxy(self, name: str) -> None:
        with _translate_errors("targetHttpProxy", name):
            operation = self._target_proxies.delete(
                request=compute_v1.DeleteTargetHttpProxyRequest(
                    project=self.project, target_http_proxy=name
                )
            )
            self._wait(operation)

    def set_url_map_for_target_http_proxy(self, proxy: TargetHttpProxy, url_map: UrlMap) -> None:
        with _translate_errors("targetHttpProxy", proxy.name):
            operation = self._target_proxies.set_url_map(
                request=compute_v1.SetUrlMapTargetHttpProxyRequest(
                    project=self.project,
                    target_http_proxy=proxy.name,
                    url_map_reference_resource=compute_v1.UrlMapReference(url_map=url_map.self_link),
                )
            )
            self._wait(operation)

    def list_target_http_proxies(self) -> list[TargetHttpProxy]:
        with _translate_errors("targetHttpProxy"):
            pager = self._target_proxies.list(
                request=compute_v1.ListTargetHttpProxiesRequest(project=self.project)
            )
            return [_target_proxy_from_api(item) for item in pager]


# Conversions between compute_v1 messages and the controller's models.


def _instance_group_from_api(group: Any) -> InstanceGroup:
    return InstanceGroup(
        name=group.name,
        zone=resource_name(group.zone),
        named_ports=[NamedPort(name=p.name, port=p.port) for p in group.named_ports],
        self_link=group.self_link,
    )


def _backend_service_from_api(backend_service: Any) -> BackendService:
    return BackendService(
        name=backend_service.name,
        port=backend_service.port,
        port_name=backend_service.port_name,
        protocol=backend_service.protocol or "HTTP",
        backends=[Backend(group=b.group) for b in backend_service.backends],
        health_checks=list(backend_service.health_checks),
        fingerprint=backend_service.fingerprint or None,
        self_link=backend_service.self_link,
    )


def _backend_service_to_api(backend_service: BackendService) -> Any:
    kwargs: dict[str, Any] = {
        "name": backend_service.name,
        "port": backend_service.port,
        "port_name": backend_service.port_name,
        "protocol": backend_service.protocol,
        "backends": [compute_v1.Backend(group=b.group) for b in backend_service.backends],
        "health_checks": list(backend_service.health_checks),
    }
    if backend_service.fingerprint:
        kwargs["fingerprint"] = backend_service.fingerprint
    return compute_v1.BackendService(**kwargs)


def _health_check_from_api(health_check: Any) -> HealthCheck:
    return HealthCheck(
        name=health_check.name,
        port=health_check.port,
        request_path=health_check.request_path or "/",
        check_interval_sec=health_check.check_interval_sec,
        timeout_sec=health_check.timeout_sec,
        healthy_threshold=health_check.healthy_threshold,
        unhealthy_threshold=health_check.unhealthy_threshold,
        description=health_check.description,
        self_link=health_check.self_link,
    )


def _health_check_to_api(health_check: HealthCheck) -> Any:
    return compute_v1.HttpHealthCheck(
        name=health_check.name,
        port=health_check.port,
        request_path=health_check.request_path,
        check_interval_sec=health_check.check_interval_sec,
        timeout_sec=health_check.timeout_sec,
        healthy_threshold=health_check.healthy_threshold,
        unhealthy_threshold=health_check.unhealthy_threshold,
        description=health_check.description,
    )


def _url_map_from_api(url_map: Any) -> UrlMap:
    return UrlMap(
        name=url_map.name,
        default_service=url_map.default_service,
        host_rules=[
            HostRule(hosts=list(rule.hosts), path_matcher=rule.path_matcher)
            for rule in url_map.host_rules
        ],
        path_matchers=[
            PathMatcher(
                name=matcher.name,
                default_service=matcher.default_service,
                path_rules=[
                    PathRule(paths=list(rule.paths), service=rule.service)
                    for rule in matcher.path_rules
                ],
            )
            for matcher in url_map.path_matchers
        ],
        fingerprint=url_map.fingerprint or None,
        self_link=url_map.self_link,
    )


def _url_map_to_api(url_map: UrlMap) -> Any:
    kwargs: dict[str, Any] = {
        "name": url_map.name,
        "default_service": url_map.default_service,
        "host_rules": [
            compute_v1.HostRule(hosts=rule.hosts, path_matcher=rule.path_matcher)
            for rule in url_map.host_rules
        ],
        "path_matchers": [
            compute_v1.PathMatcher(
                name=matcher.name,
                default_service=matcher.default_service,
                path_rules=[
                    compute_v1.PathRule(paths=rule.paths, service=rule.service)
                    for rule in matcher.path_rules
                ],
            )
            for matcher in url_map.path_matchers
        ],
    }
    if url_map.fingerprint:
        kwargs["fingerprint"] = url_map.fingerprint
    return compute_v1.UrlMap(**kwargs)


def _target_proxy_from_api(proxy: Any) -> TargetHttpProxy:
    return TargetHttpProxy(name=proxy.name, url_map=proxy.url_map, self_link=proxy.self_link)


def _forwarding_rule_from_api(rule: Any) -> ForwardingRule:
    return ForwardingRule(
        name=rule.name,
        target=rule.target,
        port_range=rule.port_range,
        ip_protocol=rule.I_p_protocol or "TCP",
        ip_address=rule.I_p_address or None,
        self_link=rule.self_link,
    )
