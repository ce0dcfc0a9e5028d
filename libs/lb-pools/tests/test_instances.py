"""Tests for NodePool."""

import pytest

from glbc_pools import NotFoundError


class TestNodePool:
    """Test cases for NodePool."""

    def test_sync_creates_group(self, node_pool, cloud):
        """Test sync creates the instance group with the given nodes."""
        node_pool.sync(["node-a", "node-b"])

        group = node_pool.get()
        assert group.name == "k8s-ig-test"
        assert cloud.list_instances_in_instance_group(group.name) == ["node-a", "node-b"]

    def test_sync_is_idempotent(self, node_pool, cloud):
        """Test a repeated sync with the same nodes mutates nothing."""
        node_pool.sync(["node-a", "node-b"])
        cloud.reset_calls()

        node_pool.sync(["node-b", "node-a"])

        assert cloud.mutations() == []

    def test_sync_removes_stale_members(self, node_pool, cloud):
        """Test members that are no longer nodes are removed."""
        node_pool.sync(["node-a", "node-b", "node-c"])

        node_pool.sync(["node-a", "node-d"])

        assert cloud.list_instances_in_instance_group("k8s-ig-test") == ["node-a", "node-d"]

    def test_add_and_remove(self, node_pool, cloud):
        """Test add and remove only touch the named nodes."""
        node_pool.add(["node-a", "node-b"])
        node_pool.remove(["node-a", "node-z"])

        assert cloud.list_instances_in_instance_group("k8s-ig-test") == ["node-b"]

    def test_remove_without_group(self, node_pool, cloud):
        """Test removing from a missing group is a no-op."""
        node_pool.remove(["node-a"])

        assert cloud.mutations() == []

    def test_get_not_found(self, node_pool):
        """Test get reports a missing group."""
        with pytest.raises(NotFoundError):
            node_pool.get()

    def test_add_named_port_is_idempotent(self, node_pool, cloud):
        """Test adding an existing named port is not an error."""
        group, named_port = node_pool.add_named_port(30080)
        cloud.reset_calls()

        _, again = node_pool.add_named_port(30080)

        assert named_port.name == "port30080"
        assert again == named_port
        assert cloud.mutations() == []
        assert [p.port for p in node_pool.get().named_ports] == [30080]

    def test_remove_named_port(self, node_pool):
        """Test a named port can be dropped, twice."""
        node_pool.add_named_port(30080)
        node_pool.add_named_port(30443)

        node_pool.remove_named_port(30080)
        node_pool.remove_named_port(30080)

        assert [p.port for p in node_pool.get().named_ports] == [30443]

    def test_shutdown(self, node_pool, cloud):
        """Test shutdown deletes the group and tolerates a second call."""
        node_pool.sync(["node-a"])

        node_pool.shutdown()
        node_pool.shutdown()

        assert cloud.store.instance_groups == {}
