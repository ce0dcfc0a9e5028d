"""Kubernetes watches on the objects that shape the load balancers."""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from kubernetes import watch as k8s_watch
from kubernetes.client.exceptions import ApiException
from pydantic import BaseModel, Field

from .kube import KubeConnection

logger = logging.getLogger(__name__)

INGRESS = "ingress"
SERVICE = "service"
NODE = "node"


class WatchEvent(BaseModel):
    """Change notification for one watched object."""

    event_type: str
    resource_type: str
    name: str
    namespace: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


class ResourceWatcher:
    """Watches Ingresses, Services and Nodes in every namespace."""

    def __init__(self, kube: KubeConnection, timeout_seconds: int = 300):
        """
        Initialize resource watcher.

        Args:
            kube: Kubernetes connection
            timeout_seconds: Server side timeout of one watch request, the
                stream is reopened after it expires
        """
        self.kube = kube
        self.timeout_seconds = timeout_seconds
        self._handlers: dict[str, list[Callable[[WatchEvent], None]]] = {}
        self._watches: list[k8s_watch.Watch] = []
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def register_handler(self, resource_type: str, handler: Callable[[WatchEvent], None]) -> None:
        """
        Register a handler for watch events.

        Args:
            resource_type: ingress, service or node
            handler: Callback function that takes WatchEvent
        """
        self._handlers.setdefault(resource_type, []).append(handler)

    def _emit_event(self, event: WatchEvent) -> None:
        for handler in self._handlers.get(event.resource_type, []):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in watch event handler: {e}", exc_info=True)

    def _list_function(self, resource_type: str) -> Callable[..., Any]:
        if resource_type == INGRESS:
            return self.kube.networking_v1.list_ingress_for_all_namespaces
        if resource_type == SERVICE:
            return self.kube.core_v1.list_service_for_all_namespaces
        if resource_type == NODE:
            return self.kube.core_v1.list_node
        raise ValueError(f"Unknown resource type {resource_type}")

    def watch(self, resource_type: str) -> None:
        """
        Stream events for ``resource_type`` until ``stop`` is called.

        Blocks, run it in a worker thread. An expired resource version (HTTP
        410) restarts the stream; any other API error is raised.
        """
        list_function = self._list_function(resource_type)
        logger.info(f"Starting watch on {resource_type}s")
        while not self._stopped.is_set():
            stream = k8s_watch.Watch()
            with self._lock:
                self._watches.append(stream)
            try:
                for event in stream.stream(list_function, timeout_seconds=self.timeout_seconds):
                    obj = event["object"]
                    self._emit_event(
                        WatchEvent(
                            event_type=event["type"],
                            resource_type=resource_type,
                            name=obj.metadata.name,
                            namespace=obj.metadata.namespace,
                        )
                    )
            except ApiException as e:
                if e.status != 410:  # Resource version too old
                    logger.error(f"Error watching {resource_type}s: {e}", exc_info=True)
                    raise
                logger.warning(f"Watch on {resource_type}s expired, restarting...")
            finally:
                with self._lock:
                    self._watches.remove(stream)

    def stop(self) -> None:
        """Stop all active watches."""
        self._stopped.set()
        with self._lock:
            for stream in self._watches:
                stream.stop()
