"""Tests for the process entrypoint."""

import asyncio
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from glbc_pools import AggregateError, ConfigurationError, FakeCloud

from app.config import Settings
from app.main import Application, build_cluster_manager, main


class TestBuildClusterManager:
    """Test cases for cluster manager selection."""

    def test_out_of_cluster_uses_fake_cloud(self, settings):
        manager = build_cluster_manager(settings)

        assert isinstance(manager.cloud.load_balancers, FakeCloud)
        assert manager.config.default_backend_node_port == 30000

    def test_zero_default_port(self, settings):
        """Test a zero default backend port is rejected."""
        with pytest.raises(ConfigurationError):
            build_cluster_manager(settings.model_copy(update={"default_backend_node_port": 0}))


class TestApplication:
    """Test cases for Application."""

    def test_extra_signals_ignored(self, settings):
        """Test only the first signal requests the stop."""
        controller = MagicMock()
        application = Application(settings, controller)

        application.handle_signal(signal.SIGTERM)
        application.handle_signal(signal.SIGTERM)
        application.handle_signal(signal.SIGINT)

        controller.request_stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_clean_shutdown_exits_zero(self, settings, controller):
        """Test a signal stops the controller and the admin server."""
        application = Application(settings, controller)

        with patch("app.main._APIServer") as server_class:
            server_class.return_value.serve = AsyncMock()
            task = asyncio.create_task(application.start())
            await asyncio.sleep(0.05)
            application.handle_signal(signal.SIGTERM)

            assert await asyncio.wait_for(task, timeout=5) == 0

        assert server_class.return_value.should_exit is True
        assert controller.last_sync is not None

    @pytest.mark.asyncio
    async def test_failed_teardown_exits_one(self, settings):
        controller = MagicMock()
        controller.run = AsyncMock()
        controller.stop = AsyncMock(side_effect=AggregateError("shutdown", [RuntimeError("boom")]))
        application = Application(settings, controller)

        with patch("app.main._APIServer") as server_class:
            server_class.return_value.serve = AsyncMock()
            assert await application.start() == 1


class TestMain:
    """Test cases for main."""

    @pytest.mark.asyncio
    async def test_missing_settings_exit_one(self, monkeypatch):
        """Test the process does not start without a default backend port."""
        monkeypatch.delenv("DEFAULT_BACKEND_NODE_PORT", raising=False)

        with patch("app.main.get_settings", side_effect=lambda: Settings(_env_file=None)):
            assert await main() == 1

    @pytest.mark.asyncio
    async def test_zero_port_exit_one(self, settings):
        """Test the process does not start before any cloud or cluster call."""
        invalid = settings.model_copy(update={"default_backend_node_port": 0})

        with patch("app.main.get_settings", return_value=invalid), patch("app.main.KubeConnection") as kube_class:
            assert await main() == 1

        kube_class.assert_not_called()
