"""Pytest configuration and fixtures for LB Controller tests."""

from types import SimpleNamespace
from typing import Optional
from unittest.mock import MagicMock

import pytest
from kubernetes import client

from glbc_pools import new_fake_cluster_manager

from app.config import Settings
from app.controller import LoadBalancerController
from app.kube import KubeConnection

DEFAULT_BACKEND_PORT = 30000


def make_backend(service: str, port) -> client.V1IngressBackend:
    """Ingress backend referencing a Service port by number or name."""
    if isinstance(port, int):
        service_port = client.V1ServiceBackendPort(number=port)
    else:
        service_port = client.V1ServiceBackendPort(name=port)
    return client.V1IngressBackend(
        service=client.V1IngressServiceBackend(name=service, port=service_port)
    )


def make_ingress(
    name: str,
    namespace: str = "default",
    rules: Optional[dict] = None,
    default_backend: Optional[client.V1IngressBackend] = None,
    annotations: Optional[dict] = None,
    ingress_class_name: Optional[str] = None,
) -> client.V1Ingress:
    """
    Ingress built from ``{host: {path: (service, port)}}``.

    An empty host or path is passed through as None.
    """
    ingress_rules = []
    for host, paths in (rules or {}).items():
        ingress_rules.append(
            client.V1IngressRule(
                host=host or None,
                http=client.V1HTTPIngressRuleValue(
                    paths=[
                        client.V1HTTPIngressPath(
                            path=path or None,
                            path_type="ImplementationSpecific",
                            backend=make_backend(*target),
                        )
                        for path, target in paths.items()
                    ]
                ),
            )
        )
    return client.V1Ingress(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, annotations=annotations),
        spec=client.V1IngressSpec(
            default_backend=default_backend,
            rules=ingress_rules or None,
            ingress_class_name=ingress_class_name,
        ),
    )


def make_service(name: str, ports: list[tuple], namespace: str = "default") -> client.V1Service:
    """Service from ``[(port name, port, node port)]``."""
    return client.V1Service(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace),
        spec=client.V1ServiceSpec(
            type="NodePort",
            ports=[
                client.V1ServicePort(name=port_name, port=port, node_port=node_port)
                for port_name, port, node_port in ports
            ],
        ),
    )


def make_node(name: str, ready: bool = True) -> client.V1Node:
    """Node with a Ready condition."""
    return client.V1Node(
        metadata=client.V1ObjectMeta(name=name),
        status=client.V1NodeStatus(
            conditions=[
                client.V1NodeCondition(type="Ready", status="True" if ready else "False"),
            ]
        ),
    )


@pytest.fixture
def k8s():
    """Builders for Kubernetes objects."""
    return SimpleNamespace(
        backend=make_backend,
        ingress=make_ingress,
        service=make_service,
        node=make_node,
    )


@pytest.fixture
def settings():
    """Settings for a fake cloud and a fast resync."""
    return Settings(
        _env_file=None,
        cluster_name="test",
        run_mode="out_of_cluster",
        default_backend_node_port=DEFAULT_BACKEND_PORT,
        resync_period_seconds=0.01,
    )


@pytest.fixture
def mock_kube():
    """Mock Kubernetes connection listing one ingress, its service and two nodes."""
    kube = MagicMock(spec=KubeConnection)
    kube.list_ingresses.return_value = [
        make_ingress("web", rules={"foo.example.com": {"/api/*": ("api", 80)}}),
    ]
    kube.list_services.return_value = [
        make_service("api", [("http", 80, 30080)]),
    ]
    kube.list_nodes.return_value = [make_node("node-a"), make_node("node-b")]
    return kube


@pytest.fixture
def fake_cluster(settings):
    """Cluster manager over a fake cloud, with the cloud."""
    return new_fake_cluster_manager(settings.cluster_manager_config())


@pytest.fixture
def controller(settings, fake_cluster, mock_kube):
    """Controller without watches."""
    manager, _ = fake_cluster
    return LoadBalancerController(settings, manager, mock_kube)


@pytest.fixture
def cloud(fake_cluster):
    _, cloud = fake_cluster
    return cloud
