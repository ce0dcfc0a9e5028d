"""Backend pool: one backend service per Kubernetes node port."""

import logging
from typing import Iterable, Optional

from .cloud.interfaces import BackendServices
from .errors import NotFoundError, raise_if_errors
from .healthchecks import HealthChecker
from .instances import NodePool
from .models import Backend, BackendService, HealthCheck, InstanceGroup, NamedPort, resource_name
from .naming import Namer
from .storage import Snapshotter

logger = logging.getLogger(__name__)


class BackendPool:
    """
    Manages backend services and, through the Health Checker, their health checks.

    Every backend service points at the cluster instance group through the
    named port of its node port. ``sync`` only creates and updates, ``gc``
    only deletes, so the controller can run every Sync before any GC.
    """

    def __init__(
        self,
        cloud: BackendServices,
        node_pool: NodePool,
        health_checker: HealthChecker,
        namer: Namer,
    ):
        """
        Initialize backend pool.

        Args:
            cloud: Backend service operations
            node_pool: Node pool owning the instance group
            health_checker: Health checker owning the health checks
            namer: Cloud resource namer
        """
        self.cloud = cloud
        self.node_pool = node_pool
        self.health_checker = health_checker
        self.namer = namer
        self.snapshotter: Snapshotter[int, BackendService] = Snapshotter()

    def add(self, port: int) -> BackendService:
        """
        Create or adopt the backend service for ``port``.

        Order: named port on the instance group, health check, backend
        service. An existing backend service is only updated when its links
        drifted from the desired ones.

        Args:
            port: Node port

        Returns:
            The backend service as stored in the cloud
        """
        group, named_port = self.node_pool.add_named_port(port)
        health_check = self.health_checker.add(port)
        name = self.namer.backend(port)

        try:
            existing = self.cloud.get_backend_service(name)
        except NotFoundError:
            logger.info(f"Creating backend service {name} for node port {port}")
            backend_service = self.cloud.create_backend_service(
                BackendService(
                    name=name,
                    port=port,
                    port_name=named_port.name,
                    backends=[Backend(group=group.self_link or group.name)],
                    health_checks=[health_check.self_link or health_check.name],
                )
            )
        else:
            backend_service = self._update_if_changed(existing, group, named_port, health_check)

        self.snapshotter.add(port, backend_service)
        return backend_service

    def _update_if_changed(
        self,
        existing: BackendService,
        group: InstanceGroup,
        named_port: NamedPort,
        health_check: HealthCheck,
    ) -> BackendService:
        groups = {resource_name(b.group) for b in existing.backends}
        checks = [resource_name(link) for link in existing.health_checks]
        if (
            existing.port_name == named_port.name
            and groups == {group.name}
            and checks == [health_check.name]
        ):
            return existing

        logger.info(f"Updating backend service {existing.name}, links changed")
        updated = existing.model_copy(
            update={
                "port_name": named_port.name,
                "backends": [Backend(group=group.self_link or group.name)],
                "health_checks": [health_check.self_link or health_check.name],
            }
        )
        return self.cloud.update_backend_service(updated)

    def get(self, port: int) -> BackendService:
        """
        Get the backend service for ``port`` from the cloud.

        Raises:
            NotFoundError: If it does not exist
        """
        try:
            backend_service = self.cloud.get_backend_service(self.namer.backend(port))
        except NotFoundError:
            self.snapshotter.remove(port)
            raise
        self.snapshotter.add(port, backend_service)
        return backend_service

    def committed(self, port: int) -> Optional[BackendService]:
        """Last backend service committed for ``port`` by this pool, without a cloud call."""
        return self.snapshotter.get(port)

    def delete(self, port: int) -> None:
        """
        Delete the backend service for ``port``, then its health check.

        Resources that are already gone are skipped so an interrupted delete
        can be resumed.

        Raises:
            ResourceInUseError: If a URL map still references the backend service
        """
        name = self.namer.backend(port)
        try:
            logger.info(f"Deleting backend service {name}")
            self.cloud.delete_backend_service(name)
        except NotFoundError:
            logger.debug(f"Backend service {name} already deleted")
        self.snapshotter.remove(port)

        try:
            self.health_checker.delete(port)
        except NotFoundError:
            logger.debug(f"Health check {name} already deleted")

        self.node_pool.remove_named_port(port)

    def sync(self, ports: Iterable[int]) -> None:
        """
        Make sure a backend service exists for every port in ``ports``.

        Nothing is deleted. Every port is attempted even if an earlier one failed.

        Raises:
            AggregateError: With every per-port failure
        """
        errors: list[Exception] = []
        for port in sorted(set(ports)):
            try:
                self.add(port)
            except Exception as e:
                logger.error(f"Failed to sync backend for node port {port}: {e}")
                errors.append(e)
        raise_if_errors("backend sync", errors)

    def gc(self, ports: Iterable[int]) -> None:
        """
        Delete every backend service whose port is not in ``ports``.

        Backend services left by an earlier controller with the same cluster
        name are found by listing the cloud.

        Raises:
            AggregateError: With every per-port failure
        """
        desired = set(ports)
        errors: list[Exception] = []
        for port in sorted(self._known_ports() - desired):
            try:
                self.delete(port)
            except Exception as e:
                logger.error(f"Failed to delete backend for node port {port}: {e}")
                errors.append(e)
        raise_if_errors("backend gc", errors)

    def _known_ports(self) -> set[int]:
        names = [b.name for b in self.cloud.list_backend_services()]
        names += [h.name for h in self.health_checker.cloud.list_http_health_checks()]
        ports = {self.namer.parse_backend_port(name) for name in names}
        ports.discard(None)
        return ports | self.snapshotter.keys()

    def shutdown(self) -> None:
        """Delete every backend service and health check of this cluster."""
        self.gc([])
