"""Integration test for the full reconcile flow."""

from unittest.mock import MagicMock

import pytest
from kubernetes import client

from glbc_pools import L7State, new_fake_cluster_manager

from app.config import Settings
from app.controller import LoadBalancerController
from app.kube import KubeConnection


def ingress(name, paths, namespace="default", host=None):
    return client.V1Ingress(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace),
        spec=client.V1IngressSpec(
            rules=[
                client.V1IngressRule(
                    host=host,
                    http=client.V1HTTPIngressRuleValue(
                        paths=[
                            client.V1HTTPIngressPath(
                                path=path,
                                path_type="ImplementationSpecific",
                                backend=client.V1IngressBackend(
                                    service=client.V1IngressServiceBackend(
                                        name=service,
                                        port=client.V1ServiceBackendPort(number=80),
                                    )
                                ),
                            )
                            for path, service in paths.items()
                        ]
                    ),
                )
            ]
        ),
    )


def service(name, node_port, namespace="default"):
    return client.V1Service(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace),
        spec=client.V1ServiceSpec(
            type="NodePort",
            ports=[client.V1ServicePort(name="http", port=80, node_port=node_port)],
        ),
    )


def node(name):
    return client.V1Node(
        metadata=client.V1ObjectMeta(name=name),
        status=client.V1NodeStatus(conditions=[client.V1NodeCondition(type="Ready", status="True")]),
    )


@pytest.mark.integration
class TestReconcileFlow:
    """Integration tests for the controller over a fake cloud."""

    @pytest.fixture
    def cluster(self):
        """Mutable cluster contents served by a mocked connection."""
        objects = {"ingresses": [], "services": [], "nodes": []}
        kube = MagicMock(spec=KubeConnection)
        kube.list_ingresses.side_effect = lambda: list(objects["ingresses"])
        kube.list_services.side_effect = lambda: list(objects["services"])
        kube.list_nodes.side_effect = lambda: list(objects["nodes"])
        return objects, kube

    @pytest.mark.asyncio
    async def test_ingress_lifecycle(self, cluster):
        """Test create, reroute, scale, delete and teardown of one ingress."""
        objects, kube = cluster
        settings = Settings(
            _env_file=None,
            cluster_name="int",
            run_mode="out_of_cluster",
            default_backend_node_port=30000,
            delete_all_on_quit=True,
        )
        manager, cloud = new_fake_cluster_manager(settings.cluster_manager_config())
        controller = LoadBalancerController(settings, manager, kube)

        # 1. Ingress routing /api to one service
        objects["services"] = [service("api", 30080), service("api-v2", 30081)]
        objects["nodes"] = [node("node-a")]
        objects["ingresses"] = [ingress("shop", {"/api/*": "api"}, host="shop.example.com")]
        assert await controller.sync_once() is True

        l7 = manager.l7_pool.get("default/shop")
        assert l7.state == L7State.READY
        assert set(cloud.store.backend_services) == {"k8s-be-int--30000", "k8s-be-int--30080"}

        # 2. Reroute to a new service, the old backend is collected
        objects["ingresses"] = [ingress("shop", {"/api/*": "api-v2"}, host="shop.example.com")]
        objects["nodes"] = [node("node-a"), node("node-b")]
        assert await controller.sync_once() is True

        url_map = cloud.get_url_map("k8s-um-int--default--shop")
        assert url_map.path_matchers[0].path_rules[0].service.endswith("k8s-be-int--30081")
        assert set(cloud.store.backend_services) == {"k8s-be-int--30000", "k8s-be-int--30081"}
        assert cloud.list_instances_in_instance_group("k8s-ig-int") == ["node-a", "node-b"]
        assert manager.l7_pool.get("default/shop").ip_address == l7.ip_address

        # 3. Ingress removed, only the default backend remains
        objects["ingresses"] = []
        assert await controller.sync_once() is True

        assert cloud.store.url_maps == {}
        assert cloud.store.target_proxies == {}
        assert cloud.store.forwarding_rules == {}
        assert set(cloud.store.backend_services) == {"k8s-be-int--30000"}

        # 4. Stop tears everything down
        objects["ingresses"] = [ingress("shop", {"/": "api"})]
        assert await controller.sync_once() is True
        await controller.stop()

        store = cloud.store
        assert store.forwarding_rules == {}
        assert store.url_maps == {}
        assert store.backend_services == {}
        assert store.health_checks == {}
        assert store.instance_groups == {}

    @pytest.mark.asyncio
    async def test_restarted_controller_adopts_resources(self, cluster):
        """Test a new controller with the same cluster name converges without duplicates."""
        objects, kube = cluster
        settings = Settings(
            _env_file=None,
            cluster_name="int",
            run_mode="out_of_cluster",
            default_backend_node_port=30000,
        )
        objects["services"] = [service("api", 30080)]
        objects["nodes"] = [node("node-a")]
        objects["ingresses"] = [ingress("shop", {"/": "api"}), ingress("blog", {"/": "api"})]

        first, cloud = new_fake_cluster_manager(settings.cluster_manager_config())
        assert await LoadBalancerController(settings, first, kube).sync_once() is True

        second, _ = new_fake_cluster_manager(settings.cluster_manager_config(), cloud)
        objects["ingresses"] = [ingress("shop", {"/": "api"})]
        cloud.reset_calls()
        assert await LoadBalancerController(settings, second, kube).sync_once() is True

        assert not [c for c in cloud.mutations() if c.operation == "insert"]
        assert set(cloud.store.url_maps) == {"k8s-um-int--default--shop"}
