"""Pytest configuration and fixtures for the pool tests."""

import pytest

from glbc_pools import (
    BackendPool,
    ClusterManagerConfig,
    FakeCloud,
    HealthChecker,
    LoadBalancerPool,
    Namer,
    NodePool,
    new_fake_cluster_manager,
)

DEFAULT_BACKEND_PORT = 30000


@pytest.fixture
def config():
    """Cluster manager configuration with a default backend."""
    return ClusterManagerConfig(
        cluster_name="test",
        default_backend_node_port=DEFAULT_BACKEND_PORT,
        health_check_path="/healthz",
    )


@pytest.fixture
def cloud():
    """Empty in-memory cloud."""
    return FakeCloud()


@pytest.fixture
def namer(config):
    return Namer(config.cluster_name)


@pytest.fixture
def node_pool(cloud, namer):
    return NodePool(cloud, namer)


@pytest.fixture
def health_checker(cloud, namer, config):
    return HealthChecker(cloud, namer, config)


@pytest.fixture
def backend_pool(cloud, node_pool, health_checker, namer):
    return BackendPool(cloud, node_pool, health_checker, namer)


@pytest.fixture
def l7_pool(cloud, backend_pool, namer, config):
    return LoadBalancerPool(cloud, backend_pool, namer, config.default_backend_node_port)


@pytest.fixture
def cluster_manager(config, cloud):
    """Cluster manager wired to the shared fake cloud."""
    manager, _ = new_fake_cluster_manager(config, cloud)
    return manager
