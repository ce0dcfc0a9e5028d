"""Load balancer pool: one L7 (URL map, target proxy, forwarding rule) per ingress."""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional

from .backends import BackendPool
from .cloud.interfaces import LoadBalancers
from .errors import MissingDependencyError, NotFoundError, raise_if_errors
from .models import (
    L7,
    BackendService,
    HostRule,
    L7State,
    PathMatcher,
    PathRule,
    UrlMap,
    UrlMapSpec,
    resource_name,
)
from .naming import Namer
from .storage import Snapshotter

logger = logging.getLogger(__name__)

DEFAULT_PORT_RANGE = "80"


@dataclass
class _Pass:
    """State carried through one run of an L7 pipeline."""

    l7: L7
    spec: UrlMapSpec
    backends: dict[int, BackendService] = field(default_factory=dict)


Stage = tuple[L7State, Callable[[_Pass], None]]


class LoadBalancerPool:
    """
    Manages the L7 load balancer of every ingress.

    Creation runs bottom-up through BACKENDS_READY, URL_MAP_READY,
    PROXY_READY and READY. Every stage checks what exists in the cloud and
    only creates or relinks what is missing, so a pass resumes at the first
    stage whose resource is absent or stale. Teardown runs top-down
    (forwarding rule, target proxy, URL map) because the cloud refuses to
    delete a resource that is still referenced. The state reached by each
    stage is committed before the next one starts, so a failure leaves the L7
    at a well defined, resumable state.
    """

    def __init__(
        self,
        cloud: LoadBalancers,
        backend_pool: BackendPool,
        namer: Namer,
        default_backend_port: int,
    ):
        """
        Initialize load balancer pool.

        Args:
            cloud: URL map, target proxy and forwarding rule operations
            backend_pool: Backend pool providing committed backend services
            namer: Cloud resource namer
            default_backend_port: Node port of the cluster default backend
        """
        self.cloud = cloud
        self.backend_pool = backend_pool
        self.namer = namer
        self.default_backend_port = default_backend_port
        self.snapshotter: Snapshotter[str, L7] = Snapshotter()
        self._url_map_specs: Snapshotter[str, UrlMapSpec] = Snapshotter()

    # Public operations

    def add(self, name: str, url_map: Optional[UrlMapSpec] = None) -> L7:
        """
        Build or repair the L7 of ingress ``name``.

        Args:
            name: Ingress key (namespace/name)
            url_map: Desired routing table, the last known one when omitted

        Returns:
            The L7 after the pipeline ran

        Raises:
            MissingDependencyError: If a referenced backend is not committed yet
            CloudError: If a cloud call fails, the L7 keeps the last state reached
        """
        if url_map is not None:
            self._url_map_specs.add(name, url_map)
        spec = self._url_map_specs.get(name) or UrlMapSpec()

        current = self.snapshotter.get(name)
        l7 = current.model_copy() if current else L7(name=name)
        self._run(_Pass(l7=l7, spec=spec), self._creation_stages())
        return l7

    def sync(self, names: Iterable[str], url_maps: Optional[Mapping[str, UrlMapSpec]] = None) -> None:
        """
        Create or update the L7 of every ingress in ``names``. Nothing is deleted.

        Args:
            names: Ingress keys
            url_maps: Desired routing table per ingress key

        Raises:
            AggregateError: With every per-ingress failure
        """
        url_maps = url_maps or {}
        errors: list[Exception] = []
        for name in sorted(set(names)):
            try:
                self.add(name, url_maps.get(name))
            except Exception as e:
                logger.error(f"Failed to sync loadbalancer {name}: {e}")
                errors.append(e)
        raise_if_errors("loadbalancer sync", errors)

    def gc(self, names: Iterable[str]) -> None:
        """
        Tear down every L7 whose ingress is not in ``names``.

        L7s known to this pool are torn down through their pipeline. Resources
        of this cluster left in the cloud by a previous controller are matched
        against the names the desired ingresses map to and deleted top-down.

        Raises:
            AggregateError: With every per-ingress failure
        """
        desired = set(names)
        keep: set[str] = set()
        for name in desired:
            keep |= self.namer.l7_resources(name)

        errors: list[Exception] = []
        for name in sorted(self.snapshotter.keys() - desired):
            try:
                self.delete(name)
            except Exception as e:
                logger.error(f"Failed to delete loadbalancer {name}: {e}")
                errors.append(e)
                # Retried on the next pass, not again as orphans.
                keep |= self.namer.l7_resources(name)
        self._delete_orphans(keep, errors)
        raise_if_errors("loadbalancer gc", errors)

    def delete(self, name: str) -> None:
        """
        Tear down the L7 of ingress ``name``: forwarding rule, target proxy, URL map.

        Resources that are already gone are skipped.
        """
        current = self.snapshotter.get(name)
        l7 = current.model_copy() if current else L7(name=name)
        logger.info(f"Deleting loadbalancer {name}")
        self._run(_Pass(l7=l7, spec=UrlMapSpec()), self._teardown_stages())
        self.snapshotter.remove(name)
        self._url_map_specs.remove(name)

    def get(self, name: str) -> L7:
        """
        Compose the L7 of ingress ``name`` from the cloud.

        Raises:
            NotFoundError: If the URL map, target proxy or forwarding rule is missing
        """
        url_map = self.cloud.get_url_map(self.namer.url_map(name))
        proxy = self.cloud.get_target_http_proxy(self.namer.target_proxy(name))
        rule = self.cloud.get_global_forwarding_rule(self.namer.forwarding_rule(name))

        if resource_name(proxy.url_map) != url_map.name:
            state = L7State.URL_MAP_READY
        elif resource_name(rule.target) != proxy.name:
            state = L7State.PROXY_READY
        else:
            state = L7State.READY

        default_port = self.namer.parse_backend_port(resource_name(url_map.default_service) or "")
        l7 = L7(
            name=name,
            state=state,
            url_map=url_map,
            target_proxy=proxy,
            forwarding_rule=rule,
            default_backend=self.backend_pool.committed(default_port) if default_port else None,
        )
        self.snapshotter.add(name, l7)
        return l7

    def committed(self, name: str) -> Optional[L7]:
        """Last L7 state committed by this pool, without a cloud call."""
        return self.snapshotter.get(name)

    def shutdown(self) -> None:
        """Tear down every L7 of this cluster."""
        self.gc([])

    # Pipeline

    def _creation_stages(self) -> list[Stage]:
        return [
            (L7State.BACKENDS_READY, self._ensure_backends),
            (L7State.URL_MAP_READY, self._ensure_url_map),
            (L7State.PROXY_READY, self._ensure_target_proxy),
            (L7State.READY, self._ensure_forwarding_rule),
        ]

    def _teardown_stages(self) -> list[Stage]:
        return [
            (L7State.FORWARDING_RULE_GONE, self._delete_forwarding_rule),
            (L7State.PROXY_GONE, self._delete_target_proxy),
            (L7State.ABSENT, self._delete_url_map),
        ]

    def _run(self, p: _Pass, stages: list[Stage]) -> None:
        for state, stage in stages:
            stage(p)
            p.l7.state = state
            self.snapshotter.add(p.l7.name, p.l7.model_copy())

    def _ensure_backends(self, p: _Pass) -> None:
        # The cluster default backend is owned here if nothing else created it.
        default = self.backend_pool.committed(self.default_backend_port)
        if default is None:
            default = self.backend_pool.add(self.default_backend_port)
        p.backends[self.default_backend_port] = default

        missing = []
        for port in sorted(p.spec.ports() - {self.default_backend_port}):
            backend_service = self.backend_pool.committed(port)
            if backend_service is None:
                missing.append(port)
            else:
                p.backends[port] = backend_service
        if missing:
            raise MissingDependencyError(
                f"Loadbalancer {p.l7.name} needs backends for node ports {missing}",
                kind="backendService",
                name=p.l7.name,
            )

        default_port = p.spec.default_backend_port or self.default_backend_port
        p.l7.default_backend = p.backends[default_port]

    def _ensure_url_map(self, p: _Pass) -> None:
        desired = self._build_url_map(p)
        try:
            existing = self.cloud.get_url_map(desired.name)
        except NotFoundError:
            logger.info(f"Creating url map {desired.name}")
            p.l7.url_map = self.cloud.create_url_map(desired)
            return

        if _url_map_signature(existing) == _url_map_signature(desired):
            p.l7.url_map = existing
            return
        logger.info(f"Updating url map {desired.name}")
        p.l7.url_map = self.cloud.update_url_map(
            desired.model_copy(update={"fingerprint": existing.fingerprint})
        )

    def _build_url_map(self, p: _Pass) -> UrlMap:
        def link(port: int) -> str:
            backend_service = p.backends[port]
            return backend_service.self_link or backend_service.name

        default_service = link(p.spec.default_backend_port or self.default_backend_port)
        host_rules = []
        path_matchers = []
        for host in sorted(p.spec.rules):
            matcher = _path_matcher_name(host)
            host_rules.append(HostRule(hosts=[host], path_matcher=matcher))
            path_matchers.append(
                PathMatcher(
                    name=matcher,
                    default_service=default_service,
                    path_rules=[
                        PathRule(paths=[path], service=link(port))
                        for path, port in sorted(p.spec.rules[host].items())
                    ],
                )
            )
        return UrlMap(
            name=self.namer.url_map(p.l7.name),
            default_service=default_service,
            host_rules=host_rules,
            path_matchers=path_matchers,
        )

    def _ensure_target_proxy(self, p: _Pass) -> None:
        url_map = p.l7.url_map
        name = self.namer.target_proxy(p.l7.name)
        try:
            proxy = self.cloud.get_target_http_proxy(name)
        except NotFoundError:
            logger.info(f"Creating target http proxy {name}")
            p.l7.target_proxy = self.cloud.create_target_http_proxy(url_map, name)
            return

        if resource_name(proxy.url_map) != url_map.name:
            logger.info(f"Pointing target http proxy {name} at url map {url_map.name}")
            self.cloud.set_url_map_for_target_http_proxy(proxy, url_map)
            proxy = proxy.model_copy(update={"url_map": url_map.self_link or url_map.name})
        p.l7.target_proxy = proxy

    def _ensure_forwarding_rule(self, p: _Pass) -> None:
        proxy = p.l7.target_proxy
        name = self.namer.forwarding_rule(p.l7.name)
        try:
            rule = self.cloud.get_global_forwarding_rule(name)
        except NotFoundError:
            logger.info(f"Creating forwarding rule {name}")
            rule = self.cloud.create_global_forwarding_rule(proxy, name, DEFAULT_PORT_RANGE)
            logger.info(f"Loadbalancer {p.l7.name} serving on {rule.ip_address}")
            p.l7.forwarding_rule = rule
            return

        if resource_name(rule.target) != proxy.name:
            logger.info(f"Pointing forwarding rule {name} at target http proxy {proxy.name}")
            self.cloud.set_proxy_for_global_forwarding_rule(rule, proxy)
            rule = rule.model_copy(update={"target": proxy.self_link or proxy.name})
        p.l7.forwarding_rule = rule

    def _delete_forwarding_rule(self, p: _Pass) -> None:
        name = self.namer.forwarding_rule(p.l7.name)
        try:
            self.cloud.delete_global_forwarding_rule(name)
        except NotFoundError:
            logger.debug(f"Forwarding rule {name} already deleted")
        p.l7.forwarding_rule = None

    def _delete_target_proxy(self, p: _Pass) -> None:
        name = self.namer.target_proxy(p.l7.name)
        try:
            self.cloud.delete_target_http_proxy(name)
        except NotFoundError:
            logger.debug(f"Target http proxy {name} already deleted")
        p.l7.target_proxy = None

    def _delete_url_map(self, p: _Pass) -> None:
        name = self.namer.url_map(p.l7.name)
        try:
            self.cloud.delete_url_map(name)
        except NotFoundError:
            logger.debug(f"Url map {name} already deleted")
        p.l7.url_map = None

    def _delete_orphans(self, keep: set[str], errors: list[Exception]) -> None:
        kinds = [
            ("forwarding rule", self.cloud.list_global_forwarding_rules, self.cloud.delete_global_forwarding_rule),
            ("target http proxy", self.cloud.list_target_http_proxies, self.cloud.delete_target_http_proxy),
            ("url map", self.cloud.list_url_maps, self.cloud.delete_url_map),
        ]
        for kind, list_resources, delete in kinds:
            try:
                orphans = sorted(
                    r.name
                    for r in list_resources()
                    if self.namer.owns_l7_resource(r.name) and r.name not in keep
                )
            except Exception as e:
                logger.error(f"Failed to list {kind}s: {e}")
                errors.append(e)
                continue
            for name in orphans:
                logger.info(f"Deleting orphaned {kind} {name}")
                try:
                    delete(name)
                except NotFoundError:
                    logger.debug(f"{kind.capitalize()} {name} already deleted")
                except Exception as e:
                    logger.error(f"Failed to delete {kind} {name}: {e}")
                    errors.append(e)


def _path_matcher_name(host: str) -> str:
    return f"host-{hashlib.sha1(host.encode('utf-8')).hexdigest()[:16]}"


def _url_map_signature(url_map: UrlMap) -> tuple:
    """Routing content of a URL map with links reduced to resource names."""
    return (
        resource_name(url_map.default_service),
        tuple(sorted((tuple(r.hosts), r.path_matcher) for r in url_map.host_rules)),
        tuple(
            sorted(
                (
                    m.name,
                    resource_name(m.default_service),
                    tuple(sorted((tuple(r.paths), resource_name(r.service)) for r in m.path_rules)),
                )
                for m in url_map.path_matchers
            )
        ),
    )
