"""LB Controller - reconcile loop driving the cluster manager's pools."""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from glbc_pools import ClusterManager, raise_if_errors

from .config import Settings
from .kube import KubeConnection
from .translator import DesiredState, desired_state
from .watch import INGRESS, NODE, SERVICE, ResourceWatcher, WatchEvent

logger = logging.getLogger(__name__)


class LoadBalancerController:
    """
    Converges cloud load balancers to the Ingresses of the cluster.

    Responsibilities:
    - Watch Ingresses, Services and Nodes
    - Run one sync pass per resync tick or batch of watch events
    - Tear everything down on stop when configured to
    """

    def __init__(
        self,
        settings: Settings,
        cluster_manager: ClusterManager,
        kube: KubeConnection,
        watcher: Optional[ResourceWatcher] = None,
    ):
        """
        Initialize controller.

        Args:
            settings: Application settings
            cluster_manager: Pools to drive
            kube: Kubernetes connection used to list objects
            watcher: Event source, no watches are started when omitted
        """
        self.settings = settings
        self.cluster_manager = cluster_manager
        self.kube = kube
        self.watcher = watcher

        self.last_sync: Optional[datetime] = None
        self.last_error: Optional[str] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup = asyncio.Event()
        self._pass_lock = asyncio.Lock()
        self._stopping = False
        self._stop_task: Optional[asyncio.Task] = None
        self._threads: list[threading.Thread] = []

    # Sync pass

    def sync(self) -> DesiredState:
        """
        Run one blocking sync pass.

        Lists the cluster, then calls, in order: node sync, backend sync,
        loadbalancer sync, loadbalancer gc, backend gc. Every step runs even
        if an earlier one failed.

        Returns:
            The desired state the pass converged to

        Raises:
            AggregateError: With every step failure
            ApiException: If the cluster could not be listed, nothing is
                changed in the cloud in that case
        """
        state = desired_state(
            ingresses=self.kube.list_ingresses(),
            services=self.kube.list_services(),
            nodes=self.kube.list_nodes(),
            ingress_class=self.settings.ingress_class,
            default_backend_port=self.settings.default_backend_node_port,
        )
        logger.debug(
            f"Desired state: {len(state.nodes)} nodes, ports {sorted(state.ports)}, "
            f"ingresses {sorted(state.ingresses)}"
        )

        cm = self.cluster_manager
        steps = [
            ("node sync", lambda: cm.instance_pool.sync(state.nodes)),
            ("backend sync", lambda: cm.backend_pool.sync(state.ports)),
            ("loadbalancer sync", lambda: cm.l7_pool.sync(state.ingresses, state.url_maps)),
            # Loadbalancers release their backends before the backends go.
            ("loadbalancer gc", lambda: cm.l7_pool.gc(state.ingresses)),
            ("backend gc", lambda: cm.backend_pool.gc(state.ports)),
        ]
        errors: list[Exception] = []
        for name, step in steps:
            try:
                step()
            except Exception as e:
                logger.error(f"{name} failed: {e}")
                errors.append(e)
        raise_if_errors("sync", errors)
        return state

    async def sync_once(self) -> bool:
        """
        Run one sync pass in a worker thread unless the controller is stopping.

        Failures are logged and left to the next pass.

        Returns:
            True if the pass succeeded
        """
        async with self._pass_lock:
            if self._stopping:
                return False
            try:
                await asyncio.to_thread(self.sync)
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"Sync failed, retrying in {self.settings.resync_period_seconds}s: {e}", exc_info=True)
                return False
            self.last_sync = datetime.now(timezone.utc)
            self.last_error = None
            return True

    # Loop

    def _handle_event(self, event: WatchEvent) -> None:
        """Wake the loop up, called from watch threads."""
        logger.debug(f"Received {event.event_type} event for {event.resource_type} {event.key}")
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._wakeup.set)

    def _start_watches(self) -> None:
        if self.watcher is None:
            return
        for resource_type in (INGRESS, SERVICE, NODE):
            self.watcher.register_handler(resource_type, self._handle_event)
            thread = threading.Thread(
                target=self._watch,
                args=(resource_type,),
                name=f"watch-{resource_type}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def _watch(self, resource_type: str) -> None:
        try:
            self.watcher.watch(resource_type)
        except Exception as e:
            logger.error(f"Watch on {resource_type}s stopped, relying on resync: {e}")

    async def run(self) -> None:
        """
        Run sync passes until ``stop`` is requested.

        A pass starts on every resync tick and after watch events. Events that
        arrive during a pass are coalesced into the next one.
        """
        self._loop = asyncio.get_running_loop()
        self._start_watches()
        logger.info(
            f"Controller running for cluster {self.settings.cluster_name}, "
            f"resync every {self.settings.resync_period_seconds}s"
        )

        while not self._stopping:
            await self.sync_once()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.settings.resync_period_seconds)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

        logger.info("Controller loop exited")

    # Shutdown

    def request_stop(self) -> asyncio.Task:
        """
        Start the orderly shutdown once; later calls return the same task.

        Must be called from the event loop thread.
        """
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._shutdown())
        return self._stop_task

    async def stop(self) -> None:
        """
        Stop the controller.

        Stops watching, waits for an in-flight pass to finish, then deletes
        every cloud resource of the cluster if ``delete_all_on_quit`` is set.

        Raises:
            AggregateError: If any pool failed to shut down
        """
        await asyncio.shield(self.request_stop())

    async def _shutdown(self) -> None:
        logger.info("Stopping controller...")
        self._stopping = True
        self._wakeup.set()
        if self.watcher is not None:
            self.watcher.stop()

        async with self._pass_lock:
            if not self.settings.delete_all_on_quit:
                logger.info("Leaving cloud resources in place for the next controller")
                return
            logger.info(f"Deleting every cloud resource of cluster {self.settings.cluster_name}")
            await asyncio.to_thread(self.cluster_manager.shutdown)
            logger.info("Cloud resources deleted")
