"""LB Controller main application."""

import asyncio
import contextlib
import logging
import signal
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from glbc_pools import ClusterManager, GLBCError, new_fake_cluster_manager

from . import __version__
from .config import RunMode, Settings, get_settings
from .controller import LoadBalancerController
from .kube import KubeConnection
from .watch import ResourceWatcher

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure process wide logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(controller: LoadBalancerController) -> FastAPI:
    """
    Create the admin API.

    Args:
        controller: Controller the endpoints report on and stop

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="LB Controller",
        description="Admin endpoints of the Ingress load balancer controller",
        version=__version__,
    )
    app.state.controller = controller

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz():
        """Liveness check."""
        return "ok"

    @app.api_route("/quit", methods=["GET", "POST"], response_class=PlainTextResponse)
    async def quit_controller():
        """Start the orderly shutdown of the controller."""
        logger.info("Shutdown requested through /quit")
        controller.request_stop()
        return "shutting down"

    @app.get("/loadbalancers")
    async def loadbalancers():
        """Last committed state of every loadbalancer."""
        l7s = controller.cluster_manager.l7_pool.snapshotter.snapshot()
        return {
            "last_sync": controller.last_sync.isoformat() if controller.last_sync else None,
            "last_error": controller.last_error,
            "loadbalancers": {
                name: {
                    "state": l7.state.value,
                    "ip_address": l7.ip_address,
                    "url_map": l7.url_map.name if l7.url_map else None,
                }
                for name, l7 in sorted(l7s.items())
            },
        }

    return app


class _APIServer(uvicorn.Server):
    """Uvicorn server that leaves signal handling to the Application."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def build_cluster_manager(settings: Settings) -> ClusterManager:
    """
    Build the cluster manager for the run mode.

    Only in-cluster mode drives the real cloud, the other modes log what
    they would do against an in-memory cloud.

    Raises:
        ConfigurationError: If the configuration is invalid or the cloud
            client cannot be constructed
    """
    config = settings.cluster_manager_config()
    if settings.run_mode == RunMode.IN_CLUSTER:
        return ClusterManager.for_gce(config, settings.gce_project, settings.gce_zone)
    logger.warning(f"Run mode {settings.run_mode.value}: using a fake cloud, no cloud resources will change")
    manager, _ = new_fake_cluster_manager(config)
    return manager


class Application:
    """Main application orchestrator."""

    def __init__(self, settings: Settings, controller: LoadBalancerController):
        """
        Initialize application.

        Args:
            settings: Application settings
            controller: Reconcile controller
        """
        self.settings = settings
        self.controller = controller
        self.server: Optional[uvicorn.Server] = None
        self._signalled = False

    async def start(self) -> int:
        """
        Run the controller and the admin API until the controller stops.

        Returns:
            Process exit code: 0 on clean shutdown, 1 if teardown failed
        """
        logger.info("🚀 Starting LB Controller...")
        logger.info(f"   Version: {__version__}")
        logger.info(f"   Cluster: {self.settings.cluster_name}")
        logger.info(f"   Run mode: {self.settings.run_mode.value}")
        logger.info(f"   Default backend node port: {self.settings.default_backend_node_port}")

        self.server = _APIServer(
            uvicorn.Config(
                create_app(self.controller),
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level=self.settings.log_level.lower(),
            )
        )
        server_task = asyncio.create_task(self.server.serve())

        try:
            await self.controller.run()
            return await self.stop()
        finally:
            self.server.should_exit = True
            await asyncio.gather(server_task, return_exceptions=True)

    async def stop(self) -> int:
        """Stop the controller and map the outcome to an exit code."""
        try:
            await self.controller.stop()
        except Exception as e:
            logger.error(f"Shutdown failed: {e}", exc_info=True)
            return 1
        logger.info("✓ LB Controller stopped")
        return 0

    def handle_signal(self, sig: int) -> None:
        """
        Handle shutdown signals.

        Args:
            sig: Signal number
        """
        if self._signalled:
            logger.info(f"Received signal {sig}, shutdown already in progress")
            return
        self._signalled = True
        logger.info(f"Received signal {sig}, initiating shutdown...")
        self.controller.request_stop()


async def main() -> int:
    """Main entry point."""
    try:
        settings = get_settings()
    except ValidationError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1
    configure_logging(settings.log_level)

    try:
        cluster_manager = build_cluster_manager(settings)
        kube = KubeConnection(settings)
    except GLBCError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    controller = LoadBalancerController(settings, cluster_manager, kube, ResourceWatcher(kube))
    app = Application(settings, controller)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.handle_signal, sig)

    try:
        return await app.start()
    finally:
        kube.close()


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
