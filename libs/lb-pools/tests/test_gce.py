"""Tests for the Compute Engine cloud with mocked API clients."""

from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as api_exceptions
from google.cloud import compute_v1

from glbc_pools import (
    AlreadyExistsError,
    CloudError,
    MissingDependencyError,
    NotFoundError,
    ResourceInUseError,
    TransientCloudError,
    UrlMap,
)
from glbc_pools.cloud.gce import GCECloud, _translate_errors

LINK = "https://www.googleapis.com/compute/v1/projects/p/global/backendServices/k8s-be-test--30000"


@pytest.fixture
def clients():
    return {
        "instance_groups_client": MagicMock(),
        "backend_services_client": MagicMock(),
        "health_checks_client": MagicMock(),
        "url_maps_client": MagicMock(),
        "target_proxies_client": MagicMock(),
        "forwarding_rules_client": MagicMock(),
    }


@pytest.fixture
def gce(clients):
    return GCECloud(project="p", zone="us-central1-b", **clients)


class TestErrorTranslation:
    """Test cases for API error mapping."""

    @pytest.mark.parametrize(
        "raised,expected",
        [
            (api_exceptions.NotFound("gone"), NotFoundError),
            (api_exceptions.Conflict("exists"), AlreadyExistsError),
            (api_exceptions.BadRequest("resourceInUseByAnotherResource"), ResourceInUseError),
            (api_exceptions.BadRequest("The resource 'hc' was not found"), MissingDependencyError),
            (api_exceptions.BadRequest("invalid field"), CloudError),
            (api_exceptions.ServiceUnavailable("later"), TransientCloudError),
            (api_exceptions.TooManyRequests("slow down"), TransientCloudError),
        ],
    )
    def test_mapping(self, raised, expected):
        with pytest.raises(expected) as exc_info:
            with _translate_errors("urlMap", "um"):
                raise raised

        assert exc_info.value.kind == "urlMap"
        assert exc_info.value.name == "um"


class TestGCECloud:
    """Test cases for GCECloud."""

    def test_get_url_map(self, gce, clients):
        """Test API messages are converted to models."""
        clients["url_maps_client"].get.return_value = compute_v1.UrlMap(
            name="um",
            default_service=LINK,
            host_rules=[compute_v1.HostRule(hosts=["a.example.com"], path_matcher="m")],
            path_matchers=[
                compute_v1.PathMatcher(
                    name="m",
                    default_service=LINK,
                    path_rules=[compute_v1.PathRule(paths=["/a/*"], service=LINK)],
                )
            ],
            fingerprint="f1",
            self_link="https://www.googleapis.com/compute/v1/projects/p/global/urlMaps/um",
        )

        url_map = gce.get_url_map("um")

        assert url_map.default_service == LINK
        assert url_map.host_rules[0].hosts == ["a.example.com"]
        assert url_map.path_matchers[0].path_rules[0].paths == ["/a/*"]
        assert url_map.fingerprint == "f1"
        request = clients["url_maps_client"].get.call_args.kwargs["request"]
        assert request.project == "p"
        assert request.url_map == "um"

    def test_create_waits_for_operation(self, gce, clients):
        """Test a create blocks on its operation and reads the result back."""
        client = clients["url_maps_client"]
        client.get.return_value = compute_v1.UrlMap(name="um", default_service=LINK)

        gce.create_url_map(UrlMap(name="um", default_service=LINK))

        client.insert.return_value.result.assert_called_once_with(timeout=300)
        inserted = client.insert.call_args.kwargs["request"].url_map_resource
        assert inserted.name == "um"
        assert inserted.default_service == LINK

    def test_not_found(self, gce, clients):
        clients["backend_services_client"].get.side_effect = api_exceptions.NotFound("gone")

        with pytest.raises(NotFoundError):
            gce.get_backend_service("be")

    def test_add_existing_named_port(self, gce, clients):
        """Test an existing named port is returned without a write."""
        client = clients["instance_groups_client"]
        client.get.return_value = compute_v1.InstanceGroup(
            name="ig",
            named_ports=[compute_v1.NamedPort(name="port30080", port=30080)],
            fingerprint="abc",
        )

        named_port = gce.add_port_to_instance_group("ig", 30080, "port30080")

        assert named_port.name == "port30080"
        client.set_named_ports.assert_not_called()

    def test_add_named_port_keeps_others(self, gce, clients):
        """Test a new named port is appended with the group fingerprint."""
        client = clients["instance_groups_client"]
        client.get.return_value = compute_v1.InstanceGroup(
            name="ig",
            named_ports=[compute_v1.NamedPort(name="port30080", port=30080)],
            fingerprint="abc",
        )

        gce.add_port_to_instance_group("ig", 30081, "port30081")

        body = client.set_named_ports.call_args.kwargs["request"].instance_groups_set_named_ports_request_resource
        assert [(p.name, p.port) for p in body.named_ports] == [("port30080", 30080), ("port30081", 30081)]
        assert body.fingerprint == "abc"

    def test_list_instances(self, gce, clients):
        clients["instance_groups_client"].list_instances.return_value = [
            compute_v1.InstanceWithNamedPorts(instance="projects/p/zones/z/instances/node-b"),
            compute_v1.InstanceWithNamedPorts(instance="projects/p/zones/z/instances/node-a"),
        ]

        assert gce.list_instances_in_instance_group("ig") == ["node-a", "node-b"]
