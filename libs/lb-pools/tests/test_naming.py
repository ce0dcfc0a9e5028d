"""Tests for Namer."""

from glbc_pools import Namer
from glbc_pools.naming import MAX_NAME_LENGTH


class TestNamer:
    """Test cases for Namer."""

    def test_names_carry_cluster(self):
        """Test every name is scoped by the cluster name."""
        namer = Namer("prod")

        assert namer.instance_group() == "k8s-ig-prod"
        assert namer.backend(30080) == "k8s-be-prod--30080"
        assert namer.named_port(30080) == "port30080"
        assert namer.url_map("default/web") == "k8s-um-prod--default--web"
        assert namer.target_proxy("default/web") == "k8s-tp-prod--default--web"
        assert namer.forwarding_rule("default/web") == "k8s-fw-prod--default--web"

    def test_names_are_stable(self):
        """Test two namers for the same cluster agree."""
        assert Namer("prod").url_map("a/b") == Namer("prod").url_map("a/b")

    def test_parse_backend_port(self):
        """Test node ports are recovered from backend names."""
        namer = Namer("prod")

        assert namer.parse_backend_port("k8s-be-prod--30080") == 30080
        assert namer.parse_backend_port("k8s-be-other--30080") is None
        assert namer.parse_backend_port("k8s-um-prod--30080") is None
        assert namer.parse_backend_port("k8s-be-prod--abc") is None

    def test_parse_backend_port_ignores_prefixed_cluster(self):
        """Test a cluster whose name extends another is not adopted."""
        namer = Namer("prod")

        assert namer.parse_backend_port(Namer("prod-eu").backend(30080)) is None

    def test_owns_l7_resource(self):
        """Test L7 resource names are matched to the cluster that made them."""
        namer = Namer("prod")

        assert namer.owns_l7_resource(namer.url_map("default/web"))
        assert namer.owns_l7_resource(namer.target_proxy("a--b/api"))
        assert namer.owns_l7_resource(namer.forwarding_rule("ns/" + "x" * 80))
        assert not namer.owns_l7_resource(Namer("prod-eu").url_map("default/web"))
        assert not namer.owns_l7_resource(namer.backend(30080))

    def test_l7_resources(self):
        """Test the three resource names of an ingress."""
        assert Namer("prod").l7_resources("default/web") == {
            "k8s-um-prod--default--web",
            "k8s-tp-prod--default--web",
            "k8s-fw-prod--default--web",
        }

    def test_long_names_truncated(self):
        """Test names over the limit are cut and get a hash suffix."""
        namer = Namer("prod")
        first = namer.url_map("default/" + "a" * 80)
        second = namer.url_map("default/" + "a" * 79 + "b")

        assert len(first) <= MAX_NAME_LENGTH
        assert len(second) <= MAX_NAME_LENGTH
        assert first != second
