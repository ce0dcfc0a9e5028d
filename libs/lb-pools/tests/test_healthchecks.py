"""Tests for HealthChecker."""

import pytest

from glbc_pools import ClusterManagerConfig, HealthChecker, NotFoundError


class TestHealthChecker:
    """Test cases for HealthChecker."""

    def test_add_creates_check(self, health_checker):
        """Test add creates a check on the node port with the configured path."""
        health_check = health_checker.add(30080)

        assert health_check.name == "k8s-be-test--30080"
        assert health_check.port == 30080
        assert health_check.request_path == "/healthz"
        assert health_checker.get(30080) == health_check

    def test_add_existing_is_noop(self, health_checker, cloud):
        """Test an unchanged check is not updated."""
        health_checker.add(30080)
        cloud.reset_calls()

        health_checker.add(30080)

        assert cloud.mutations() == []

    def test_add_updates_changed_path(self, health_checker, cloud, namer):
        """Test a check created with another path is updated in place."""
        health_checker.add(30080)
        other = HealthChecker(
            cloud, namer, ClusterManagerConfig(cluster_name="test", health_check_path="/ready")
        )
        cloud.reset_calls()

        updated = other.add(30080)

        assert updated.request_path == "/ready"
        assert [(c.operation, c.name) for c in cloud.mutations()] == [("update", "k8s-be-test--30080")]

    def test_delete(self, health_checker):
        """Test delete removes the check and a second delete reports not found."""
        health_checker.add(30080)

        health_checker.delete(30080)

        with pytest.raises(NotFoundError):
            health_checker.get(30080)
        with pytest.raises(NotFoundError):
            health_checker.delete(30080)
