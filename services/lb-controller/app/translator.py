"""Desired load balancer state derived from Ingress, Service and Node objects."""

import logging
from typing import Iterable, Optional

from kubernetes.client import V1Ingress, V1IngressBackend, V1Node, V1Service
from pydantic import BaseModel, Field

from glbc_pools import UrlMapSpec

logger = logging.getLogger(__name__)

INGRESS_CLASS_ANNOTATION = "kubernetes.io/ingress.class"
DEFAULT_HOST = "*"
DEFAULT_PATH = "/*"


class DesiredState(BaseModel):
    """Everything one sync pass converges the cloud to."""

    nodes: set[str] = Field(default_factory=set)
    ports: set[int] = Field(default_factory=set)
    url_maps: dict[str, UrlMapSpec] = Field(default_factory=dict)

    @property
    def ingresses(self) -> set[str]:
        return set(self.url_maps)


def ingress_key(ingress: V1Ingress) -> str:
    """Key of an ingress: namespace/name."""
    return f"{ingress.metadata.namespace}/{ingress.metadata.name}"


def is_managed(ingress: V1Ingress, ingress_class: str) -> bool:
    """
    Check if an ingress belongs to this controller.

    Ingresses without a class are managed; ingresses naming another class
    through the annotation or ``spec.ingressClassName`` are not.
    """
    annotations = ingress.metadata.annotations or {}
    requested = annotations.get(INGRESS_CLASS_ANNOTATION)
    if requested is None and ingress.spec is not None:
        requested = ingress.spec.ingress_class_name
    return requested is None or requested == ingress_class


def ready_node_names(nodes: Iterable[V1Node]) -> set[str]:
    """Names of every node whose Ready condition is True."""
    names = set()
    for node in nodes:
        conditions = (node.status.conditions if node.status else None) or []
        if any(c.type == "Ready" and c.status == "True" for c in conditions):
            names.add(node.metadata.name)
    return names


def _index_services(services: Iterable[V1Service]) -> dict[tuple[str, str], V1Service]:
    return {(s.metadata.namespace, s.metadata.name): s for s in services}


def _node_port(
    services: dict[tuple[str, str], V1Service], namespace: str, backend: Optional[V1IngressBackend]
) -> Optional[int]:
    """Node port serving an ingress backend, matched by port number or name."""
    if backend is None or backend.service is None:
        return None
    service = services.get((namespace, backend.service.name))
    if service is None or service.spec is None:
        return None
    wanted = backend.service.port
    for port in service.spec.ports or []:
        if wanted is not None and (
            (wanted.number is not None and port.port == wanted.number)
            or (wanted.name is not None and port.name == wanted.name)
        ):
            return port.node_port
    return None


def url_map_spec(ingress: V1Ingress, services: dict[tuple[str, str], V1Service]) -> UrlMapSpec:
    """
    Build the routing table of one ingress.

    Backends whose Service or node port cannot be resolved are logged and
    left out.
    """
    key = ingress_key(ingress)
    namespace = ingress.metadata.namespace
    spec = ingress.spec

    default_port = None
    if spec is not None and spec.default_backend is not None:
        default_port = _node_port(services, namespace, spec.default_backend)
        if default_port is None:
            logger.warning(f"Ingress {key}: default backend has no node port, using the cluster default")

    rules: dict[str, dict[str, int]] = {}
    for rule in (spec.rules if spec is not None else None) or []:
        if rule.http is None:
            continue
        host = rule.host or DEFAULT_HOST
        for path in rule.http.paths or []:
            port = _node_port(services, namespace, path.backend)
            if port is None:
                logger.warning(f"Ingress {key}: no node port for backend of {host}{path.path or ''}, skipping")
                continue
            rules.setdefault(host, {})[path.path or DEFAULT_PATH] = port

    return UrlMapSpec(default_backend_port=default_port, rules=rules)


def desired_state(
    ingresses: Iterable[V1Ingress],
    services: Iterable[V1Service],
    nodes: Iterable[V1Node],
    ingress_class: str,
    default_backend_port: int,
) -> DesiredState:
    """
    Compute the desired nodes, backend ports and routing tables.

    Args:
        ingresses: Every Ingress in the cluster
        services: Every Service in the cluster
        nodes: Every Node in the cluster
        ingress_class: Class handled by this controller
        default_backend_port: Node port of the cluster default backend

    Returns:
        Desired state for one sync pass
    """
    service_index = _index_services(services)
    url_maps = {}
    ports = {default_backend_port}
    for ingress in ingresses:
        if not is_managed(ingress, ingress_class):
            logger.debug(f"Ignoring ingress {ingress_key(ingress)} of another class")
            continue
        spec = url_map_spec(ingress, service_index)
        url_maps[ingress_key(ingress)] = spec
        ports |= spec.ports()

    return DesiredState(nodes=ready_node_names(nodes), ports=ports, url_maps=url_maps)
